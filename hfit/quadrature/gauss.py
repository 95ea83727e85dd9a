"""
Gauss-Legendre quadrature for numerical integration.

n points integrate exactly polynomials up to degree 2n-1. The smoothing
energy of a degree-p spline involves products of (p-2)-degree second
derivatives, so p+1 points per element are more than enough.

The reference domain is [0, 1]; standard Gauss points on [-1, 1] are
mapped accordingly, then mapped onto every element of a knot vector.

Usage:
    points, weights = gauss_legendre_1d(n)            # on [0, 1]
    points, weights = element_quadrature_1d(kv, n)    # over all elements of kv
"""

import numpy as np
from typing import Tuple
from functools import lru_cache

from ..discretization.knot_vector import KnotVector


@lru_cache(maxsize=16)
def gauss_legendre_1d(n: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    Gauss-Legendre quadrature points and weights on [0, 1].

    Parameters:
        n: Number of quadrature points

    Returns:
        (points, weights), each of shape (n,); weights sum to 1
    """
    if n < 1:
        raise ValueError("Need at least 1 quadrature point")

    points_std, weights_std = np.polynomial.legendre.leggauss(n)

    # Map to [0, 1]: x = (xi + 1) / 2, dx = 1/2 * dxi
    points = 0.5 * (points_std + 1.0)
    weights = 0.5 * weights_std

    return points, weights


def element_quadrature_1d(kv: KnotVector, n: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    Composite Gauss rule over all elements of a knot vector.

    Parameters:
        kv: Knot vector whose elements are integrated over
        n: Number of points per element

    Returns:
        (points, weights), each of shape (n_elements * n,), element-major
    """
    ref_pts, ref_wts = gauss_legendre_1d(n)
    breaks = kv.unique_knots
    starts = breaks[:-1, np.newaxis]
    lengths = np.diff(breaks)[:, np.newaxis]

    points = starts + lengths * ref_pts[np.newaxis, :]
    weights = lengths * ref_wts[np.newaxis, :]

    return points.ravel(), weights.ravel()
