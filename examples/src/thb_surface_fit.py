#!/usr/bin/env python3
"""
Example: Adaptive THB-spline fitting of a scattered height field.

This example demonstrates:
1. Sampling a surface with a sharp ridge at random parameters
2. Setting up a fitting session from a configuration (file or defaults)
3. Refining the hierarchical basis where the point-wise errors are large
4. Comparing the result with a uniform fit of similar size

The data:
    z(u, v) = tanh(20 * (v - 0.3 - 0.4 * u))  on [0,1]^2
"""

import sys
import os
import logging

# Add project root to path (two levels up from examples/src/)
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

import numpy as np

from hfit.geometry.thb import THBSplineBasis
from hfit.fitting.base import Fitting
from hfit.io.config import FittingConfig, load_config, setup_fitting_from_config


def ridge(u, v):
    """Height field with a steep diagonal transition."""
    return np.tanh(20.0 * (v - 0.3 - 0.4 * u))


def sample_points(n_points, seed=0):
    """Random parameters on the unit square and their heights."""
    rng = np.random.default_rng(seed)
    params = rng.random((n_points, 2))
    values = ridge(params[:, 0], params[:, 1])
    return params, values


def uniform_fit(params, values, n_elem, degree=2, smoothing=1e-6):
    """Fit on a uniform grid of n_elem x n_elem elements."""
    basis = THBSplineBasis.uniform((degree, degree), (n_elem, n_elem))
    fitting = Fitting(params, values, basis)
    fitting.compute(smoothing)
    fitting.compute_errors()
    return fitting


def main():
    import argparse
    parser = argparse.ArgumentParser(description="Adaptive THB-spline fitting example")
    parser.add_argument("--config", help="YAML or JSON fitting configuration")
    parser.add_argument("--points", type=int, default=4000, help="number of samples")
    parser.add_argument("--debug", action="store_true", help="enable debug output")
    options = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if options.debug else logging.INFO,
        format="%(name)s - %(levelname)s - %(message)s",
    )

    if options.config:
        config = load_config(options.config)
    else:
        config = FittingConfig(percentage=0.1, smoothing=1e-6, tolerance=5e-3, iterations=6)

    print("=" * 70)
    print("Adaptive THB-Spline Fitting Example")
    print("=" * 70)
    print("\nData: z(u, v) = tanh(20 * (v - 0.3 - 0.4 * u))")
    print(f"Samples: {options.points}")
    print(f"Degrees: {config.basis.degrees}, base elements: {config.basis.elements}")
    print(f"Refinement: {config.percentage:.0%} of points, extension {config.extension}")

    params, values = sample_points(options.points)
    hfit = setup_fitting_from_config(config, params, values)

    state = hfit.iterative_refine(config.iterations, config.tolerance, config.threshold)

    print("\nMaximum error per iteration:")
    for i, err in enumerate(hfit.history):
        print(f"  {i}: {err:.6e}")

    basis = hfit.basis
    print(f"\nStopped: {state.value} after {hfit.iterations_done} refinements")
    print(f"Levels: {basis.max_level() + 1}, active functions: {basis.size}")
    for level, count in enumerate(basis.n_active_per_level()):
        print(f"  Level {level}: {count} functions")
    print(f"Mean squared error: {hfit.fitting.compute_mse():.6e}")

    # Uniform grid with at least as many functions
    degree = config.basis.degrees[0]
    n_elem = config.basis.elements[0]
    while (n_elem + degree) ** 2 < basis.size:
        n_elem += 1
    uniform = uniform_fit(params, values, n_elem, degree, config.smoothing)

    print(f"\nComparison with uniform {n_elem}x{n_elem} grid:")
    print(f"  Uniform functions: {uniform.basis.size}")
    print(f"  Uniform max error: {uniform.max_error:.6e}")
    print(f"  Adaptive max error: {hfit.fitting.max_error:.6e}")

    print("\n" + "=" * 70)
    print("Fitting completed successfully!")
    print("=" * 70)


if __name__ == "__main__":
    main()
