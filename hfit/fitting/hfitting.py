"""
Adaptive hierarchical fitting of parametrized point clouds.

HFitting drives a fitting session: fit, measure point-wise errors, refine
the hierarchical basis where the errors are large, and fit again, until
the maximum error drops below a tolerance, nothing is left to refine, or
the iteration budget is spent.

The error threshold of a step is either given explicitly (any value >= 0;
0 means global refinement) or derived from the refinement percentage
(pass -1). The refinement itself is expressed as boxes, see
hfit.fitting.refinement.

Typical use:
    basis = THBSplineBasis.uniform((2, 2), (4, 4))
    fitting = Fitting(params, points, basis)
    hfit = HFitting(fitting, refinement_percentage=0.1, extension=(2, 2),
                    smoothing=1e-6)
    state = hfit.iterative_refine(iterations=5, tolerance=1e-3)
"""

import logging
from enum import Enum
from typing import List, Sequence, Tuple

from ..exceptions import ConfigurationError, PreconditionError
from ..geometry.base import Box
from .base import Fitting
from .refinement import (
    mark_boxes, select_refine_threshold, validate_extension, validate_percentage
)

logger = logging.getLogger(__name__)


class RefinementState(Enum):
    """Where the refinement loop stands."""
    UNBOOTSTRAPPED = "unbootstrapped"
    REFINING = "refining"
    TOLERANCE_REACHED = "tolerance_reached"
    EXHAUSTED = "exhausted"


class HFitting:
    """
    Adaptive refinement engine on top of a Fitting session.

    Attributes:
        fitting: The fitting session (data, basis, result, errors)
        state: Current RefinementState
        iterations_done: Number of refining steps performed so far
        history: Maximum error after the bootstrap fit and after each step
    """

    def __init__(self, fitting: Fitting, refinement_percentage: float,
                 extension: Sequence[int], smoothing: float = 0.0):
        """
        Parameters:
            fitting: Fitting session holding data and hierarchical basis
            refinement_percentage: Fraction of points to mark, in [0, 1]
            extension: Element margin around marked cells, one per direction
            smoothing: Smoothing parameter passed to every fit
        """
        self.fitting = fitting
        self.basis = fitting.basis
        self._ref = validate_percentage(refinement_percentage)
        self._ext = validate_extension(extension, self.basis.dim)
        self._lambda = 0.0
        self.set_smoothing(smoothing)

        self.state = RefinementState.REFINING if fitting.has_errors else RefinementState.UNBOOTSTRAPPED
        self.iterations_done = 0
        self.history: List[float] = []

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def ref_percentage(self) -> float:
        """Refinement percentage."""
        return self._ref

    def set_ref_percentage(self, percentage: float) -> None:
        self._ref = validate_percentage(percentage)

    @property
    def extension(self) -> Tuple[int, ...]:
        """Cell extension per direction."""
        return self._ext

    def set_extension(self, extension: Sequence[int]) -> None:
        self._ext = validate_extension(extension, self.basis.dim)

    @property
    def smoothing(self) -> float:
        """Smoothing parameter."""
        return self._lambda

    def set_smoothing(self, smoothing: float) -> None:
        if smoothing < 0:
            raise ConfigurationError(f"Smoothing parameter must be >= 0, got {smoothing}")
        self._lambda = float(smoothing)

    # ------------------------------------------------------------------
    # Marking
    # ------------------------------------------------------------------

    def refine_threshold(self) -> float:
        """Error cutoff derived from the refinement percentage."""
        return select_refine_threshold(self.fitting.point_errors, self._ref)

    def get_boxes(self, errors: Sequence[float], threshold: float) -> List[Box]:
        """Boxes around all cells holding a point with error >= threshold."""
        return mark_boxes(self.basis, self.fitting.parameters, errors,
                          threshold, self._ext)

    # ------------------------------------------------------------------
    # Refinement loop
    # ------------------------------------------------------------------

    def _fit(self) -> None:
        self.fitting.compute(self._lambda)
        self.fitting.compute_errors()
        self.history.append(self.fitting.max_error)

    def next_iteration(self, tolerance: float, err_threshold: float = -1) -> bool:
        """
        One refinement step: mark, refine, refit.

        Parameters:
            tolerance: Stop (return False) if the max error is already <= tolerance
            err_threshold: Explicit error cutoff if >= 0, else derived from
                           the refinement percentage

        Returns:
            True if the basis was refined and refitted, False otherwise
        """
        if not self.fitting.has_errors:
            raise PreconditionError(
                "next_iteration() requires an initial fit; call iterative_refine() "
                "or compute() and compute_errors() on the fitting session first"
            )

        if self.fitting.max_error <= tolerance:
            logger.debug("Tolerance reached.")
            return False

        threshold = err_threshold if err_threshold >= 0 else self.refine_threshold()

        boxes = self.get_boxes(self.fitting.point_errors, threshold)
        if not boxes:
            return False

        self.basis.refine_elements(boxes)
        logger.debug("inserted %d boxes.", len(boxes))

        self._fit()
        self.iterations_done += 1
        return True

    def iterative_refine(self, iterations: int, tolerance: float,
                         err_threshold: float = -1) -> RefinementState:
        """
        Refine until the tolerance is met, nothing is left to refine, or
        `iterations` steps were made.

        Parameters:
            iterations: Maximum number of refinement steps
            tolerance: Target maximum point-wise error (>= 0)
            err_threshold: Explicit error cutoff if >= 0; -1 uses the
                           refinement percentage; 0 refines globally

        Returns:
            TOLERANCE_REACHED or EXHAUSTED if the loop stopped on its own,
            REFINING if the iteration budget ran out first
        """
        if tolerance < 0:
            raise ConfigurationError(f"Tolerance must be >= 0, got {tolerance}")

        if not self.fitting.has_errors:
            self._fit()
        self.state = RefinementState.REFINING

        for i in range(iterations):
            progressed = self.next_iteration(tolerance, err_threshold)
            if self.fitting.max_error <= tolerance:
                logger.debug("Tolerance reached at iteration: %d", i)
                self.state = RefinementState.TOLERANCE_REACHED
                break
            if not progressed:
                logger.debug("No more Boxes to insert at iteration: %d", i)
                self.state = RefinementState.EXHAUSTED
                break

        return self.state
