#!/usr/bin/env python3
"""
THB-splines (Truncated Hierarchical B-splines) in any parametric dimension.

THB-splines are a hierarchical refinement technique that allows local
refinement while keeping a linearly independent, partition-of-unity basis.

Key concepts:
1. Hierarchical basis: nested tensor-product B-spline bases, one per level,
   obtained by dyadic refinement of the level-0 knot vectors
2. Domains: Omega^0 = whole domain, Omega^0 >= Omega^1 >= ... stored as
   boolean element masks per level
3. Selection: a level-l function is active if its support lies in Omega^l
   but not in Omega^{l+1}
4. Truncation: coarse functions drop their components along finer
   functions whose support lies in the finer domain

Implementation approach: every active function is expressed by its
coefficients in the tensor basis of the deepest level, so evaluation is a
single sparse product with the finest tensor collocation matrix.
"""

from __future__ import annotations

import itertools
import logging
import math

import numpy as np
from scipy import sparse
from typing import List, Optional, Sequence, Tuple
from dataclasses import dataclass, field

from ..discretization.knot_vector import (
    KnotVector, make_uniform_knot_vector, refine_knot_vector_dyadic
)
from ..quadrature.gauss import element_quadrature_1d
from .base import Box, BoxLike, HierarchicalBasis, boxes_from_flat
from .bspline import collocation_matrix, tensor_collocation_matrix

logger = logging.getLogger(__name__)


@dataclass
class THBHierarchy1D:
    """
    1D hierarchical knot vector structure.

    Manages multiple levels of nested knot vectors and the refinement
    matrices relating adjacent levels.

    Attributes:
        degree: Polynomial degree (same for all levels)
        knot_vectors: List of knot vectors, one per level
        refinement_matrices: Matrices relating adjacent levels
    """
    degree: int
    knot_vectors: List[KnotVector] = field(default_factory=list)
    refinement_matrices: List[np.ndarray] = field(default_factory=list)

    @classmethod
    def from_knot_vector(cls, kv: KnotVector) -> 'THBHierarchy1D':
        """Create hierarchy from the initial (level 0) knot vector."""
        return cls(degree=kv.degree, knot_vectors=[kv])

    @property
    def n_levels(self) -> int:
        """Number of levels built so far."""
        return len(self.knot_vectors)

    def get_knot_vector(self, level: int) -> KnotVector:
        """Get knot vector at specified level."""
        return self.knot_vectors[level]

    def get_n_basis(self, level: int) -> int:
        """Get number of basis functions at specified level."""
        return self.knot_vectors[level].n_basis

    def add_level(self) -> None:
        """Create level n+1 from level n by inserting midpoints."""
        new_kv, T = refine_knot_vector_dyadic(self.knot_vectors[-1])
        self.knot_vectors.append(new_kv)
        self.refinement_matrices.append(T)

    def ensure_level(self, level: int) -> None:
        """Ensure hierarchy has at least the specified level."""
        while self.n_levels <= level:
            self.add_level()

    def get_refinement_matrix(self, from_level: int) -> np.ndarray:
        """
        Refinement matrix T from level to level+1.

        N_l_i = sum_j T[j, i] N_{l+1}_j (coarse basis in terms of fine basis).
        """
        return self.refinement_matrices[from_level]

    def support_ranges(self, level: int) -> Tuple[np.ndarray, np.ndarray]:
        """
        Element index ranges [lo, hi) of the supports of all basis functions.
        """
        kv = self.knot_vectors[level]
        ranges = np.array([kv.basis_support_elements(i) for i in range(kv.n_basis)])
        return ranges[:, 0], ranges[:, 1]


class THBSplineBasis(HierarchicalBasis):
    """
    Tensor-product THB-spline basis of arbitrary parametric dimension.

    Basis function states at a level l:
    1. Active & untruncated: support in Omega^l, no overlap with Omega^{l+1}
    2. Active & truncated: support in Omega^l, partially in Omega^{l+1}
    3. Inactive: support not in Omega^l, or entirely inside Omega^{l+1}
    """

    def __init__(self, knot_vectors: Sequence[KnotVector]):
        """
        Initialize a THB basis with a single (unrefined) level.

        Parameters:
            knot_vectors: Level-0 knot vectors, one per parametric direction
        """
        if len(knot_vectors) == 0:
            raise ValueError("Need at least one knot vector")
        self.hierarchies = [THBHierarchy1D.from_knot_vector(kv) for kv in knot_vectors]
        self._domains: List[np.ndarray] = [np.ones(self.n_elements_per_dir(0), dtype=bool)]

        # Cached (active functions, finest-level coefficient matrix, finest level)
        self._cache: Optional[Tuple[List[Tuple[int, Tuple[int, ...]]], sparse.csr_matrix, int]] = None

    @classmethod
    def uniform(cls, degrees: Sequence[int], n_elements: Sequence[int],
                domain: Optional[Sequence[Tuple[float, float]]] = None) -> 'THBSplineBasis':
        """
        Create a basis on open uniform knot vectors.

        Parameters:
            degrees: Polynomial degree per direction
            n_elements: Number of level-0 elements per direction
            domain: Parametric interval per direction (default [0, 1])

        Returns:
            THBSplineBasis with one level
        """
        if len(degrees) != len(n_elements):
            raise ValueError("degrees and n_elements must have the same length")
        if domain is None:
            domain = [(0.0, 1.0)] * len(degrees)
        if len(domain) != len(degrees):
            raise ValueError("domain must have one interval per direction")
        return cls([
            make_uniform_knot_vector(n, p, tuple(dom))
            for p, n, dom in zip(degrees, n_elements, domain)
        ])

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    @property
    def dim(self) -> int:
        """Number of parametric directions."""
        return len(self.hierarchies)

    @property
    def degrees(self) -> Tuple[int, ...]:
        """Polynomial degrees in each direction."""
        return tuple(h.degree for h in self.hierarchies)

    @property
    def n_levels(self) -> int:
        """Number of levels built so far (refined or not)."""
        return len(self._domains)

    @property
    def domain(self) -> Tuple[Tuple[float, float], ...]:
        """Parametric domain."""
        return tuple(h.get_knot_vector(0).domain for h in self.hierarchies)

    def ensure_level(self, level: int) -> None:
        """Ensure all directions (and the domain masks) reach `level`."""
        for h in self.hierarchies:
            h.ensure_level(level)
        while len(self._domains) <= level:
            self._domains.append(np.zeros(self.n_elements_per_dir(len(self._domains)), dtype=bool))

    def n_elements_per_dir(self, level: int) -> Tuple[int, ...]:
        """Number of elements per direction at specified level."""
        return tuple(h.get_knot_vector(level).n_elements for h in self.hierarchies)

    def n_basis_per_dir(self, level: int) -> Tuple[int, ...]:
        """Number of tensor basis functions per direction at specified level."""
        return tuple(h.get_n_basis(level) for h in self.hierarchies)

    def max_level(self) -> int:
        """Deepest level whose domain is non-empty."""
        for level in range(self.n_levels - 1, -1, -1):
            if self._domains[level].any():
                return level
        return 0

    def tensor_basis_at(self, level: int) -> Tuple[KnotVector, ...]:
        """Knot vectors of the tensor basis at `level` (built on demand)."""
        self.ensure_level(level)
        return tuple(h.get_knot_vector(level) for h in self.hierarchies)

    def num_breaks(self, level: int, dim: int) -> int:
        """Number of breakpoints of direction `dim` at `level` (built on demand)."""
        self.ensure_level(level)
        return self.hierarchies[dim].get_knot_vector(level).n_breaks

    def get_domain(self, level: int) -> np.ndarray:
        """Boolean element mask of Omega^level (copy)."""
        self.ensure_level(level)
        return self._domains[level].copy()

    # ------------------------------------------------------------------
    # Refinement and queries
    # ------------------------------------------------------------------

    def refine_elements(self, boxes: Sequence[BoxLike]) -> None:
        """
        Insert refinement boxes.

        Each box marks elements [lower, upper) of its level as part of
        Omega^level. The covering elements of every coarser level are marked
        too so that the domains stay nested.

        Parameters:
            boxes: Box records, or a flat integer sequence of 2d+1 groups
        """
        boxes = list(boxes)
        if boxes and not isinstance(boxes[0], Box):
            boxes = boxes_from_flat(boxes, self.dim)

        for box in boxes:
            if box.dim != self.dim:
                raise ValueError(f"Box of dimension {box.dim} for a {self.dim}D basis")
            self.ensure_level(box.level)
            n_elem = self.n_elements_per_dir(box.level)
            if any(up > n for up, n in zip(box.upper, n_elem)):
                raise ValueError(f"Box {box} exceeds {n_elem} elements at level {box.level}")

            lower = np.array(box.lower)
            upper = np.array(box.upper)
            for level in range(box.level, 0, -1):
                self._domains[level][_box_slices(lower, upper)] = True
                lower = lower // 2
                upper = (upper + 1) // 2

        self._cache = None
        logger.debug("refined %d boxes, max level now %d", len(boxes), self.max_level())

    def leaf_levels(self, level: int) -> np.ndarray:
        """
        Level of the leaf covering each element, at the resolution of `level`.

        Only valid for level >= max_level(), where every element sits in
        exactly one leaf.
        """
        self.ensure_level(level)
        leaf = np.zeros(self.n_elements_per_dir(level), dtype=np.int64)
        for l in range(1, self.n_levels):
            if l > level or not self._domains[l].any():
                continue
            mask = self._domains[l]
            for axis in range(self.dim):
                mask = np.repeat(mask, 2 ** (level - l), axis=axis)
            leaf += mask
        return leaf

    def query_coarsest_active_level(self, lower: Sequence[int],
                                    upper: Sequence[int], level: int) -> int:
        """
        Coarsest leaf level overlapping the box [lower, upper) given at `level`.

        For a single element of the deepest level this is the level at which
        that element is currently represented.
        """
        lower = np.asarray(lower, dtype=np.int64)
        upper = np.asarray(upper, dtype=np.int64)
        if lower.shape != (self.dim,) or upper.shape != (self.dim,):
            raise ValueError(f"Query box must have {self.dim} lower and upper indices")
        if np.any(lower >= upper) or np.any(lower < 0):
            raise ValueError(f"Empty or negative query box {lower.tolist()}, {upper.tolist()}")

        finest = max(self.max_level(), level)
        shift = finest - level
        leaf = self.leaf_levels(finest)
        return int(leaf[_box_slices(lower << shift, upper << shift)].min())

    # ------------------------------------------------------------------
    # Active functions and truncation
    # ------------------------------------------------------------------

    def _support_inside(self, level: int, mask: np.ndarray) -> np.ndarray:
        """
        For each tensor function at `level`, whether its support lies in `mask`.

        Uses a summed-area table of the element mask so all functions are
        tested at once.
        """
        table = mask.astype(np.int64)
        for axis in range(self.dim):
            table = np.cumsum(table, axis=axis)
        table = np.pad(table, [(1, 0)] * self.dim)

        ranges = [h.support_ranges(level) for h in self.hierarchies]
        count = np.zeros(self.n_basis_per_dir(level), dtype=np.int64)
        for corner in itertools.product((0, 1), repeat=self.dim):
            index = [hi if c else lo for c, (lo, hi) in zip(corner, ranges)]
            sign = (-1) ** (self.dim - sum(corner))
            count += sign * table[np.ix_(*index)]

        volume = np.ones(self.n_basis_per_dir(level), dtype=np.int64)
        for axis, (lo, hi) in enumerate(ranges):
            shape = [1] * self.dim
            shape[axis] = -1
            volume = volume * (hi - lo).reshape(shape)

        return count == volume

    def _coarsened_domain(self, level: int) -> np.ndarray:
        """Omega^{level+1} expressed as a mask of level-`level` elements."""
        fine = self._domains[level + 1]
        n_coarse = self.n_elements_per_dir(level)
        blocks = fine.reshape([v for n in n_coarse for v in (n, 2)])
        return blocks.all(axis=tuple(range(1, 2 * self.dim, 2)))

    def _kron_refinement(self, from_level: int) -> sparse.csr_matrix:
        """Tensor refinement matrix from level to level+1 (C ordering)."""
        result = sparse.identity(1, format='csr')
        for h in self.hierarchies:
            result = sparse.kron(result, sparse.csr_matrix(h.get_refinement_matrix(from_level)))
        return result.tocsr()

    def _build(self) -> Tuple[List[Tuple[int, Tuple[int, ...]]], sparse.csr_matrix, int]:
        if self._cache is not None:
            return self._cache

        top = self.max_level()
        inside = [self._support_inside(l, self._domains[l]) for l in range(top + 1)]

        active: List[Tuple[int, Tuple[int, ...]]] = []
        blocks = []
        for level in range(top + 1):
            selected = inside[level].copy()
            if level < top:
                selected &= ~self._support_inside(level, self._coarsened_domain(level))
            tensor_idx = np.argwhere(selected)
            if len(tensor_idx) == 0:
                continue

            flat = np.ravel_multi_index(tensor_idx.T, self.n_basis_per_dir(level))
            coeffs = sparse.csr_matrix(
                (np.ones(len(flat)), (flat, np.arange(len(flat)))),
                shape=(int(np.prod(self.n_basis_per_dir(level))), len(flat))
            )
            for k in range(level + 1, top + 1):
                coeffs = self._kron_refinement(k - 1) @ coeffs
                keep = (~inside[k]).ravel().astype(np.float64)
                coeffs = (sparse.diags(keep) @ coeffs).tocsr()
                coeffs.eliminate_zeros()

            blocks.append(coeffs)
            active.extend((level, tuple(int(i) for i in idx)) for idx in tensor_idx)

        matrix = sparse.hstack(blocks, format='csr')
        self._cache = (active, matrix, top)
        return self._cache

    @property
    def size(self) -> int:
        """Number of active THB functions."""
        return len(self._build()[0])

    def active_functions(self) -> List[Tuple[int, Tuple[int, ...]]]:
        """Active functions as (level, tensor index) pairs, level-major."""
        return list(self._build()[0])

    def n_active_per_level(self) -> List[int]:
        """Number of active functions on each level up to max_level()."""
        counts = [0] * (self.max_level() + 1)
        for level, _ in self._build()[0]:
            counts[level] += 1
        return counts

    def coefficient_matrix(self) -> sparse.csr_matrix:
        """
        Coefficients of all active (truncated) functions in the finest tensor basis.

        Returns:
            Sparse matrix of shape (n_finest_tensor, size)
        """
        return self._build()[1]

    def eval_matrix(self, params: np.ndarray) -> sparse.csr_matrix:
        """
        Evaluate all active functions at parameter values.

        Parameters:
            params: Parameter values, shape (N, d)

        Returns:
            Sparse matrix of shape (N, size)
        """
        _, matrix, top = self._build()
        finest = tensor_collocation_matrix(self.tensor_basis_at(top), params)
        return (finest @ matrix).tocsr()

    def smoothing_matrix(self) -> sparse.csr_matrix:
        """
        Thin-plate energy matrix of the active functions.

        H[i, j] = sum_{|a|=2} (2/a!) int D^a N_i D^a N_j, assembled on the
        finest tensor level from Kronecker products of 1D Gram matrices of
        0th, 1st and 2nd derivatives, then projected onto the active functions.
        """
        _, matrix, top = self._build()

        grams = []
        for kv in self.tensor_basis_at(top):
            points, weights = element_quadrature_1d(kv, kv.degree + 1)
            W = sparse.diags(weights)
            grams.append([
                (collocation_matrix(kv, points, r).T @ W @ collocation_matrix(kv, points, r)).tocsr()
                for r in range(3)
            ])

        n_finest = matrix.shape[0]
        energy = sparse.csr_matrix((n_finest, n_finest))
        for i in range(self.dim):
            for j in range(i, self.dim):
                orders = [0] * self.dim
                orders[i] += 1
                orders[j] += 1
                weight = 2.0 / math.prod(math.factorial(o) for o in orders)
                term = sparse.identity(1, format='csr')
                for axis, order in enumerate(orders):
                    term = sparse.kron(term, grams[axis][order])
                energy = energy + weight * term

        return (matrix.T @ energy @ matrix).tocsr()


class THBSplineGeometry:
    """
    A THB-spline function/geometry: basis plus one coefficient row per active function.
    """

    def __init__(self, basis: THBSplineBasis, coefs: np.ndarray):
        coefs = np.asarray(coefs, dtype=np.float64)
        if coefs.ndim == 1:
            coefs = coefs[:, np.newaxis]
        if coefs.shape[0] != basis.size:
            raise ValueError(
                f"Expected {basis.size} coefficient rows, got {coefs.shape[0]}"
            )
        self.basis = basis
        self.coefs = coefs

    @property
    def geo_dim(self) -> int:
        """Number of components of the evaluated values."""
        return self.coefs.shape[1]

    def eval(self, params: np.ndarray) -> np.ndarray:
        """
        Evaluate at parameter values.

        Parameters:
            params: Parameter values, shape (N, d)

        Returns:
            Values of shape (N, geo_dim)
        """
        if self.coefs.shape[0] != self.basis.size:
            raise ValueError("Basis was refined after these coefficients were computed")
        return self.basis.eval_matrix(params) @ self.coefs


def _box_slices(lower: np.ndarray, upper: np.ndarray) -> Tuple[slice, ...]:
    return tuple(slice(int(lo), int(up)) for lo, up in zip(lower, upper))
