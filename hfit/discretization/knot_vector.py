"""
Knot vector utilities for hierarchical fitting.

A knot vector is a non-decreasing sequence of real numbers that defines
the parametric domain and basis function support for B-splines.

Mathematical background:
- Open knot vectors have p+1 repeated knots at each end (interpolatory at boundaries)
- The number of basis functions n = len(knots) - p - 1
- Knot spans (elements) are unique intervals [xi_i, xi_{i+1}] where xi_i < xi_{i+1}
- Breakpoints are the unique knot values; n_elements = n_breaks - 1

The hierarchy used for adaptive fitting is built from nested knot vectors
obtained by dyadic (midpoint) refinement, see refine_knot_vector_dyadic.
"""

import numpy as np
from typing import List, Tuple
from dataclasses import dataclass


@dataclass
class KnotVector:
    """
    Represents a univariate knot vector.

    Attributes:
        knots: The knot values (non-decreasing sequence)
        degree: Polynomial degree p

    Properties computed:
        n_basis: Number of basis functions
        n_elements: Number of non-zero measure knot spans
        n_breaks: Number of breakpoints (unique knots)
        elements: List of (start, end) parametric coordinates for each element
    """
    knots: np.ndarray
    degree: int

    def __post_init__(self):
        self.knots = np.asarray(self.knots, dtype=np.float64)
        self._validate()
        self._compute_elements()

    def _validate(self):
        """Validate knot vector properties."""
        if self.degree < 0:
            raise ValueError(f"Degree must be non-negative, got {self.degree}.")
        if len(self.knots) < 2 * (self.degree + 1):
            raise ValueError(
                f"Knot vector too short for degree {self.degree}. "
                f"Need at least {2 * (self.degree + 1)} knots, got {len(self.knots)}."
            )
        if not np.all(np.diff(self.knots) >= 0):
            raise ValueError("Knot vector must be non-decreasing.")

    def _compute_elements(self):
        """
        Compute breakpoints and unique knot spans (elements).

        Elements are intervals [xi_i, xi_{i+1}] with non-zero measure.
        The span index of each element is the last occurrence of its left
        breakpoint in the full knot sequence.
        """
        self._unique_knots = np.unique(self.knots)
        starts = self._unique_knots[:-1]
        ends = self._unique_knots[1:]
        self._elements = list(zip(starts.tolist(), ends.tolist()))

        span_idx = np.searchsorted(self.knots, starts, side='right') - 1
        self._element_spans = np.clip(span_idx, self.degree, self.n_basis - 1)

    @property
    def n_basis(self) -> int:
        """Number of basis functions."""
        return len(self.knots) - self.degree - 1

    @property
    def n_elements(self) -> int:
        """Number of non-zero measure knot spans (elements)."""
        return len(self._elements)

    @property
    def n_breaks(self) -> int:
        """Number of breakpoints (unique knot values)."""
        return len(self._unique_knots)

    @property
    def elements(self) -> List[Tuple[float, float]]:
        """List of element intervals as (xi_start, xi_end) tuples."""
        return self._elements.copy()

    @property
    def unique_knots(self) -> np.ndarray:
        """Unique knot values (breakpoints)."""
        return self._unique_knots.copy()

    @property
    def domain(self) -> Tuple[float, float]:
        """Parametric domain (first unique knot, last unique knot)."""
        return (float(self._unique_knots[0]), float(self._unique_knots[-1]))

    def find_span(self, xi: float) -> int:
        """
        Find the knot span index containing parameter value xi.

        For xi in [xi_i, xi_{i+1}), returns i.
        Uses the convention that the last span is closed: [xi_{n-1}, xi_n].

        Parameters:
            xi: Parameter value

        Returns:
            Span index i such that xi in [xi_i, xi_{i+1})
        """
        n = self.n_basis
        p = self.degree

        if xi >= self.knots[n]:
            return n - 1
        if xi <= self.knots[p]:
            return p

        # Binary search
        low = p
        high = n
        mid = (low + high) // 2

        while xi < self.knots[mid] or xi >= self.knots[mid + 1]:
            if xi < self.knots[mid]:
                high = mid
            else:
                low = mid
            mid = (low + high) // 2

        return mid

    def find_spans(self, xi: np.ndarray) -> np.ndarray:
        """Vectorized find_span for an array of parameter values."""
        return self._element_spans[self.find_elements(xi)]

    def find_element(self, xi: float) -> int:
        """
        Find which element contains parameter value xi.

        Uses half-open interval convention [xi_start, xi_end) for interior
        boundaries. The last element includes its right boundary.

        Parameters:
            xi: Parameter value

        Returns:
            Element index (0-based), i.e. the index of the breakpoint
            interval containing xi
        """
        a, b = self.domain
        if xi < a or xi > b:
            raise ValueError(f"Parameter {xi} outside domain {self.domain}")
        return int(self.find_elements(np.array([xi]))[0])

    def find_elements(self, xi: np.ndarray) -> np.ndarray:
        """
        Vectorized element lookup.

        Values outside the domain are clamped to the first/last element;
        callers that need strict checking should use find_element.
        """
        xi = np.asarray(xi, dtype=np.float64)
        idx = np.searchsorted(self._unique_knots, xi, side='right') - 1
        return np.clip(idx, 0, self.n_elements - 1)

    def element_to_span(self, element_idx: int) -> int:
        """
        Convert element index to knot span index.

        Parameters:
            element_idx: Element index (0-based)

        Returns:
            Span index in the original knot vector
        """
        return int(self._element_spans[element_idx])

    def basis_support_elements(self, basis_idx: int) -> Tuple[int, int]:
        """
        Element index range covered by the support of a basis function.

        Returns:
            (first, last) with last exclusive, so the support consists of
            elements first, first+1, ..., last-1
        """
        p = self.degree
        lo = np.searchsorted(self._unique_knots, self.knots[basis_idx], side='left')
        hi = np.searchsorted(self._unique_knots, self.knots[basis_idx + p + 1], side='left')
        return int(lo), int(hi)


def make_open_knot_vector(n_basis: int, degree: int,
                          domain: Tuple[float, float] = (0.0, 1.0)) -> KnotVector:
    """
    Create an open (clamped) uniform knot vector.

    Parameters:
        n_basis: Number of basis functions desired
        degree: Polynomial degree p
        domain: Parametric domain (start, end)

    Returns:
        KnotVector with uniform internal knots
    """
    p = degree
    n_internal = n_basis - p - 1

    if n_internal < 0:
        raise ValueError(
            f"Cannot create knot vector: n_basis={n_basis} too small for degree={degree}"
        )

    a, b = domain
    internal = np.linspace(a, b, n_internal + 2)[1:-1]
    knots = np.concatenate([[a] * (p + 1), internal, [b] * (p + 1)])

    return KnotVector(knots, degree)


def make_uniform_knot_vector(n_elements: int, degree: int,
                             domain: Tuple[float, float] = (0.0, 1.0)) -> KnotVector:
    """Open uniform knot vector with the given number of elements."""
    if n_elements < 1:
        raise ValueError(f"Need at least one element, got {n_elements}")
    return make_open_knot_vector(n_elements + degree, degree, domain)


def compute_multiplicity(kv: KnotVector, xi: float, tol: float = 1e-14) -> int:
    """
    Compute the multiplicity of a knot value.

    Parameters:
        kv: Knot vector
        xi: Knot value to check
        tol: Tolerance for equality

    Returns:
        Number of times xi appears in the knot vector
    """
    return int(np.sum(np.abs(kv.knots - xi) < tol))


def compute_knot_insertion_matrix(kv: KnotVector, xi: float) -> Tuple[KnotVector, np.ndarray]:
    """
    Compute the knot insertion matrix for inserting a single knot.

    When a knot is inserted, coefficients are updated by a linear transformation:
        c_new = A @ c_old

    Parameters:
        kv: Original knot vector
        xi: Knot value to insert

    Returns:
        Tuple of (new_knot_vector, insertion_matrix A)
        A has shape (n_new, n_old) where n_new = n_old + 1
    """
    p = kv.degree
    knots = kv.knots
    n_old = kv.n_basis

    k = kv.find_span(xi)

    new_knots = np.zeros(len(knots) + 1)
    new_knots[:k + 1] = knots[:k + 1]
    new_knots[k + 1] = xi
    new_knots[k + 2:] = knots[k + 1:]

    n_new = n_old + 1
    A = np.zeros((n_new, n_old))

    for i in range(n_new):
        if i <= k - p:
            A[i, i] = 1.0
        elif i >= k + 1:
            A[i, i - 1] = 1.0
        else:
            # alpha_i = (xi - knots[i]) / (knots[i+p] - knots[i])
            denom = knots[i + p] - knots[i]
            alpha = (xi - knots[i]) / denom if abs(denom) > 1e-14 else 0.0
            A[i, i - 1] = 1.0 - alpha
            A[i, i] = alpha

    return KnotVector(new_knots, p), A


def refine_knot_vector_dyadic(kv: KnotVector) -> Tuple[KnotVector, np.ndarray]:
    """
    Refine a knot vector by inserting midpoints of all non-zero spans.

    This is the standard refinement between consecutive hierarchy levels:
    element e of the coarse level splits into elements 2e and 2e+1.

    Parameters:
        kv: Original knot vector

    Returns:
        Tuple of (refined_knot_vector, refinement_matrix)
        The refinement matrix T (n_fine, n_coarse) maps coarse coefficients
        to fine ones, equivalently N_coarse_i = sum_j T[j, i] N_fine_j.
    """
    midpoints = sorted(0.5 * (a + b) for a, b in kv.elements)

    current_kv = kv
    A_total = np.eye(kv.n_basis)

    for xi in midpoints:
        new_kv, A = compute_knot_insertion_matrix(current_kv, xi)
        A_total = A @ A_total
        current_kv = new_kv

    return current_kv, A_total
