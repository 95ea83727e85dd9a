"""
B-spline basis function evaluation.

The i-th B-spline basis function of degree p is defined recursively:

    N_{i,0}(xi) = 1 if xi_i <= xi < xi_{i+1}, else 0

    N_{i,p}(xi) = (xi - xi_i)/(xi_{i+p} - xi_i) * N_{i,p-1}(xi)
                + (xi_{i+p+1} - xi)/(xi_{i+p+1} - xi_{i+1}) * N_{i+1,p-1}(xi)

Properties:
- Partition of unity: sum of all basis functions = 1
- Non-negativity: N_{i,p}(xi) >= 0
- Local support: N_{i,p} is non-zero only on [xi_i, xi_{i+p+1})

Point-wise evaluation follows Piegl & Tiller; the collocation helpers
assemble sparse matrices (rows = parameters, columns = basis functions)
for whole point clouds, with tensor-product bases handled by row-wise
Kronecker products in C (last direction fastest) ordering.
"""

import numpy as np
from scipy import sparse
from typing import Optional, Sequence, Tuple

from ..discretization.knot_vector import KnotVector


def eval_basis_ders_1d(kv: KnotVector, xi: float, n_ders: int,
                       span: Optional[int] = None) -> np.ndarray:
    """
    Evaluate B-spline basis functions and derivatives at a parameter value.

    Uses the algorithm from Piegl & Tiller "The NURBS Book" (Algorithm A2.3).

    Parameters:
        kv: Knot vector
        xi: Parameter value
        n_ders: Number of derivatives to compute (0 = just values)
        span: Optional pre-computed span index

    Returns:
        Array of shape (n_ders+1, p+1) where result[k, j] is the k-th derivative
        of the j-th non-zero basis function (N_{span-p+j, p}).
        Derivatives of order above p are zero.
    """
    p = kv.degree
    knots = kv.knots

    if span is None:
        span = kv.find_span(xi)

    ders = np.zeros((n_ders + 1, p + 1))
    n_ders = min(n_ders, p)

    # ndu[j][r] = N_{span-p+r, j} or knot differences
    ndu = np.zeros((p + 1, p + 1))
    ndu[0, 0] = 1.0

    left = np.zeros(p + 1)
    right = np.zeros(p + 1)

    for j in range(1, p + 1):
        left[j] = xi - knots[span + 1 - j]
        right[j] = knots[span + j] - xi

        saved = 0.0
        for r in range(j):
            ndu[j, r] = right[r + 1] + left[j - r]
            temp = ndu[r, j - 1] / ndu[j, r]

            ndu[r, j] = saved + right[r + 1] * temp
            saved = left[j - r] * temp

        ndu[j, j] = saved

    for j in range(p + 1):
        ders[0, j] = ndu[j, p]

    a = np.zeros((2, p + 1))

    for r in range(p + 1):
        s1, s2 = 0, 1
        a[0, 0] = 1.0

        for k in range(1, n_ders + 1):
            d = 0.0
            rk = r - k
            pk = p - k

            if r >= k:
                a[s2, 0] = a[s1, 0] / ndu[pk + 1, rk]
                d = a[s2, 0] * ndu[rk, pk]

            j1 = 1 if rk >= -1 else -rk
            j2 = k - 1 if r - 1 <= pk else p - r

            for j in range(j1, j2 + 1):
                a[s2, j] = (a[s1, j] - a[s1, j - 1]) / ndu[pk + 1, rk + j]
                d += a[s2, j] * ndu[rk + j, pk]

            if r <= pk:
                a[s2, k] = -a[s1, k - 1] / ndu[pk + 1, r]
                d += a[s2, k] * ndu[r, pk]

            ders[k, r] = d
            s1, s2 = s2, s1

    # Multiply by factorial factors
    r = p
    for k in range(1, n_ders + 1):
        ders[k, :] *= r
        r *= (p - k)

    return ders


def local_basis_1d(kv: KnotVector, xi: np.ndarray,
                   n_der: int = 0) -> Tuple[np.ndarray, np.ndarray]:
    """
    Evaluate the p+1 non-zero basis functions (or a derivative) at many points.

    Parameters:
        kv: Knot vector
        xi: Parameter values, shape (N,)
        n_der: Derivative order

    Returns:
        (indices, values), both of shape (N, p+1); indices[k, j] is the global
        basis index of values[k, j]
    """
    xi = np.asarray(xi, dtype=np.float64).ravel()
    p = kv.degree
    spans = kv.find_spans(xi)

    values = np.zeros((len(xi), p + 1))
    for k, (x, span) in enumerate(zip(xi, spans)):
        values[k] = eval_basis_ders_1d(kv, x, n_der, int(span))[n_der]

    indices = spans[:, np.newaxis] - p + np.arange(p + 1)[np.newaxis, :]
    return indices, values


def collocation_matrix(kv: KnotVector, xi: np.ndarray,
                       n_der: int = 0) -> sparse.csr_matrix:
    """
    Sparse matrix of basis values (or derivatives) at parameter values.

    Returns:
        CSR matrix of shape (N, n_basis)
    """
    indices, values = local_basis_1d(kv, xi, n_der)
    n_points = indices.shape[0]
    rows = np.repeat(np.arange(n_points), indices.shape[1])
    return sparse.csr_matrix(
        (values.ravel(), (rows, indices.ravel())),
        shape=(n_points, kv.n_basis)
    )


def tensor_collocation_matrix(knot_vectors: Sequence[KnotVector],
                              params: np.ndarray,
                              ders: Optional[Sequence[int]] = None) -> sparse.csr_matrix:
    """
    Evaluate a tensor-product B-spline basis at a cloud of parameters.

    For a tensor-product basis, the multivariate basis function is:
    N_{i,j,...}(xi, eta, ...) = N_i(xi) * N_j(eta) * ...

    Parameters:
        knot_vectors: One KnotVector per parametric direction
        params: Parameter values, shape (N, d)
        ders: Optional derivative order per direction (default: all zero)

    Returns:
        CSR matrix of shape (N, prod(n_basis)), columns in C order
    """
    params = np.atleast_2d(np.asarray(params, dtype=np.float64))
    n_dim = len(knot_vectors)
    if params.shape[1] != n_dim:
        raise ValueError(
            f"Parameters have dimension {params.shape[1]}, basis has {n_dim}"
        )
    if ders is None:
        ders = (0,) * n_dim

    n_points = params.shape[0]
    idx = np.zeros((n_points, 1), dtype=np.int64)
    vals = np.ones((n_points, 1))

    for d, kv in enumerate(knot_vectors):
        idx_d, vals_d = local_basis_1d(kv, params[:, d], ders[d])
        idx = (idx[:, :, np.newaxis] * kv.n_basis + idx_d[:, np.newaxis, :]).reshape(n_points, -1)
        vals = (vals[:, :, np.newaxis] * vals_d[:, np.newaxis, :]).reshape(n_points, -1)

    n_total = int(np.prod([kv.n_basis for kv in knot_vectors]))
    rows = np.repeat(np.arange(n_points), idx.shape[1])
    return sparse.csr_matrix(
        (vals.ravel(), (rows, idx.ravel())),
        shape=(n_points, n_total)
    )
