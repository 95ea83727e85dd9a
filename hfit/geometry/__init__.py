"""
Geometry module: B-spline evaluation and hierarchical (THB) spline bases.
"""

from .base import Box, HierarchicalBasis, boxes_from_flat, flatten_boxes
from .thb import THBHierarchy1D, THBSplineBasis, THBSplineGeometry
