"""
Discretization module for hierarchical fitting.

Provides:
- KnotVector: Knot vector representation with breakpoint/element lookup
- Dyadic refinement and knot insertion matrices used to build hierarchies
"""

from .knot_vector import (
    KnotVector,
    make_open_knot_vector,
    make_uniform_knot_vector,
    refine_knot_vector_dyadic,
)
