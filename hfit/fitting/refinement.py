"""
Marking: from point-wise errors to refinement boxes.

Three steps turn "the error is too high here" into refinement instructions
for a hierarchical basis:

1. select_refine_threshold picks an error cutoff so that a given fraction
   of the points (by error rank) is marked.
2. Every point with error >= threshold is located in an element (cell) of
   the deepest level of the basis. Cells already seen in this pass are
   skipped (is_cell_already_inserted).
3. Each new cell is turned into a box one level finer than the level the
   cell is currently represented at, grown by the extension in every
   direction and clipped to the domain (cell_box).

All functions here are pure: they return fresh lists and never mutate
their arguments.
"""

import logging

import numpy as np
from typing import List, Sequence, Tuple

from ..exceptions import ConfigurationError, PreconditionError
from ..geometry.base import Box, HierarchicalBasis

logger = logging.getLogger(__name__)

Cell = Tuple[int, ...]


def validate_percentage(percentage: float) -> float:
    """Check a refinement percentage lies in [0, 1]."""
    if not 0.0 <= percentage <= 1.0:
        raise ConfigurationError(
            f"Refinement percentage must be between 0 and 1, got {percentage}"
        )
    return float(percentage)


def validate_extension(extension: Sequence[int], dim: int) -> Tuple[int, ...]:
    """Check an extension has one non-negative integer per direction."""
    extension = tuple(extension)
    if len(extension) != dim:
        raise ConfigurationError(
            f"Extension must have {dim} entries, got {len(extension)}"
        )
    for value in extension:
        if int(value) != value or value < 0:
            raise ConfigurationError(
                f"Extension entries must be non-negative integers, got {extension}"
            )
    return tuple(int(v) for v in extension)


def select_refine_threshold(errors: Sequence[float], percentage: float) -> float:
    """
    Error cutoff marking the `percentage` largest errors.

    The error of ascending rank floor(N * (1 - percentage)) is moved into
    its sorted position with a selection algorithm (no full sort) and
    returned. At least ceil(N * percentage) errors are >= the result; all
    errors equal to the result are marked as well.

    Parameters:
        errors: Point-wise errors, N >= 1
        percentage: Fraction of points to mark, in [0, 1]

    Returns:
        The threshold value
    """
    validate_percentage(percentage)
    errors = np.asarray(errors, dtype=np.float64)
    n = errors.size
    if n == 0:
        raise PreconditionError("No point errors available; run a fit first")

    rank = min(int(n * (1.0 - percentage)), n - 1)
    return float(np.partition(errors, rank)[rank])


def is_cell_already_inserted(cell: Cell, cells: Sequence[Cell]) -> bool:
    """Whether `cell` equals (componentwise) one of the recorded cells."""
    for other in cells:
        if len(other) == len(cell) and all(a == b for a, b in zip(other, cell)):
            return True
    return False


def extend_range(index: int, extension: int, n_elements: int) -> Tuple[int, int]:
    """
    Grow the element [index, index+1) by `extension` on both sides.

    The result [low, upp) is clipped to [0, n_elements].
    """
    low = index - extension if index > extension else 0
    upp = min(index + extension + 1, n_elements)
    return low, upp


def locate_cells(basis: HierarchicalBasis, parameters: np.ndarray,
                 level: int) -> np.ndarray:
    """
    Element multi-indices containing the parameters at `level`.

    Returns:
        Integer array of shape (N, d)
    """
    parameters = np.atleast_2d(parameters)
    knot_vectors = basis.tensor_basis_at(level)
    return np.column_stack([
        kv.find_elements(parameters[:, d]) for d, kv in enumerate(knot_vectors)
    ])


def cell_box(basis: HierarchicalBasis, cell: Cell,
             extension: Sequence[int]) -> Box:
    """
    Refinement box for a cell of the deepest level.

    The box targets one level finer than the level the cell is currently
    represented at. Its corners are element indices at that target level.
    """
    max_lvl = basis.max_level()
    lower = np.asarray(cell, dtype=np.int64)
    level = basis.query_coarsest_active_level(lower, lower + 1, max_lvl) + 1

    low_corner = []
    upp_corner = []
    for dim, index in enumerate(cell):
        if level < max_lvl:
            index = index >> (max_lvl - level)
        else:
            index = index << (level - max_lvl)
        n_elements = basis.num_breaks(level, dim) - 1
        low, upp = extend_range(int(index), extension[dim], n_elements)
        low_corner.append(low)
        upp_corner.append(upp)

    return Box(level, tuple(low_corner), tuple(upp_corner))


def mark_boxes(basis: HierarchicalBasis, parameters: np.ndarray,
               errors: Sequence[float], threshold: float,
               extension: Sequence[int]) -> List[Box]:
    """
    Refinement boxes for all points with error >= threshold.

    Parameters:
        basis: Hierarchical basis (queried, not modified)
        parameters: Parameters of the points, shape (N, d)
        errors: Point-wise errors, index-aligned with parameters
        threshold: Error cutoff (inclusive)
        extension: Element margin per direction

    Returns:
        One box per distinct marked cell, in point order
    """
    errors = np.asarray(errors, dtype=np.float64)
    parameters = np.atleast_2d(np.asarray(parameters, dtype=np.float64))
    if errors.shape[0] != parameters.shape[0]:
        raise ValueError(
            f"Got {errors.shape[0]} errors for {parameters.shape[0]} parameters"
        )

    marked = np.flatnonzero(errors >= threshold)
    if marked.size == 0:
        return []

    cells_at_max = locate_cells(basis, parameters[marked], basis.max_level())

    cells: List[Cell] = []
    boxes: List[Box] = []
    for row in cells_at_max:
        cell = tuple(int(v) for v in row)
        if is_cell_already_inserted(cell, cells):
            continue
        cells.append(cell)
        boxes.append(cell_box(basis, cell, extension))

    logger.debug("marked %d points in %d cells", marked.size, len(cells))
    return boxes
