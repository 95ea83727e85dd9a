"""
Least-squares fitting of parametrized point clouds with a THB-spline basis.

The fitting session owns the data (parameters and points), the basis and
the current result. One fit solves the smoothed normal equations

    (A^T A + lambda * H) c = A^T X

where A[k, i] = N_i(u_k) is the collocation matrix of the active basis
functions at the parameters, H the thin-plate smoothing energy of the
basis and X the data points (one row per point).

After a fit, compute_errors() stores the Euclidean distance between the
fitted value and the data point for every parameter, together with the
minimum and maximum error. The adaptive refinement engine
(hfit.fitting.hfitting) drives this session; it does not subclass it.
"""

import logging

import numpy as np
from scipy import sparse
from scipy.sparse.linalg import spsolve
from dataclasses import dataclass
from typing import Optional

from ..exceptions import ConfigurationError, PreconditionError
from ..geometry.thb import THBSplineBasis, THBSplineGeometry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ErrorStats:
    """Minimum and maximum point-wise error of the current fit."""
    min_error: float = 0.0
    max_error: float = 0.0


class Fitting:
    """
    Fitting session: data, basis, fitted result and point-wise errors.
    """

    def __init__(self, param_values: np.ndarray, points: np.ndarray,
                 basis: THBSplineBasis):
        """
        Initialize the session.

        Parameters:
            param_values: Parameters of the points, shape (N, d)
            points: Points to be fitted, shape (N, m) or (N,)
            basis: Hierarchical basis used for fitting (refined in place)
        """
        params = np.asarray(param_values, dtype=np.float64)
        if params.ndim == 1:
            params = params[:, np.newaxis]
        pts = np.asarray(points, dtype=np.float64)
        if pts.ndim == 1:
            pts = pts[:, np.newaxis]

        if params.shape[0] != pts.shape[0]:
            raise ValueError(
                f"Got {params.shape[0]} parameters but {pts.shape[0]} points"
            )
        if params.shape[0] == 0:
            raise ValueError("Cannot fit an empty point cloud")
        if params.shape[1] != basis.dim:
            raise ValueError(
                f"Parameters have dimension {params.shape[1]}, basis has {basis.dim}"
            )

        self._param_values = params
        self._points = pts
        self.basis = basis

        self._result: Optional[THBSplineGeometry] = None
        self._point_errors = np.zeros(0)
        self._stats = ErrorStats()

    @property
    def parameters(self) -> np.ndarray:
        """Parameter values, shape (N, d)."""
        return self._param_values

    @property
    def points(self) -> np.ndarray:
        """Data points, shape (N, m)."""
        return self._points

    @property
    def result(self) -> THBSplineGeometry:
        """Fitted geometry of the last compute() call."""
        if self._result is None:
            raise PreconditionError("No fit computed yet. Call compute() first.")
        return self._result

    @property
    def point_errors(self) -> np.ndarray:
        """Point-wise errors of the last fit (empty before compute_errors())."""
        return self._point_errors.copy()

    @property
    def has_errors(self) -> bool:
        """Whether point-wise errors are available."""
        return self._point_errors.size != 0

    @property
    def error_stats(self) -> ErrorStats:
        """Minimum and maximum point-wise error."""
        return self._stats

    @property
    def min_error(self) -> float:
        return self._stats.min_error

    @property
    def max_error(self) -> float:
        return self._stats.max_error

    def assemble(self, smoothing: float = 0.0):
        """
        Assemble the normal equations of the smoothed least-squares problem.

        Parameters:
            smoothing: Smoothing parameter lambda >= 0

        Returns:
            (K, f): sparse system matrix (size, size) and right-hand side (size, m)
        """
        if smoothing < 0:
            raise ConfigurationError(f"Smoothing parameter must be >= 0, got {smoothing}")

        A = self.basis.eval_matrix(self._param_values)
        K = (A.T @ A).tocsr()
        if smoothing > 0:
            K = K + smoothing * self.basis.smoothing_matrix()
        f = A.T @ self._points
        return sparse.csc_matrix(K), np.asarray(f)

    def compute(self, smoothing: float = 0.0) -> THBSplineGeometry:
        """
        Fit the points with the current basis.

        Parameters:
            smoothing: Smoothing parameter lambda >= 0

        Returns:
            Fitted THBSplineGeometry (also stored as self.result)
        """
        K, f = self.assemble(smoothing)
        coefs = spsolve(K, f)
        coefs = np.asarray(coefs).reshape(self.basis.size, -1)

        self._result = THBSplineGeometry(self.basis, coefs)
        logger.debug("fitted %d points with %d functions (lambda=%g)",
                     self._points.shape[0], self.basis.size, smoothing)
        return self._result

    def residuals(self) -> np.ndarray:
        """Fitted values minus data points, shape (N, m)."""
        return self.result.eval(self._param_values) - self._points

    def compute_errors(self) -> ErrorStats:
        """
        Recompute the point-wise errors and their min/max.

        Returns:
            The new ErrorStats
        """
        errors = np.linalg.norm(self.residuals(), axis=1)
        self._point_errors = errors
        self._stats = ErrorStats(min_error=float(errors.min()), max_error=float(errors.max()))
        return self._stats

    def compute_approx_error(self) -> float:
        """Sum of squared residuals of the current fit."""
        return float(np.sum(self.residuals() ** 2))

    def compute_mse(self) -> float:
        """Mean squared point-wise error of the current fit."""
        return float(np.mean(np.sum(self.residuals() ** 2, axis=1)))
