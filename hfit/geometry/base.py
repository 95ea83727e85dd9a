"""
Abstract interface for hierarchical bases and the refinement box record.

The adaptive fitting engine only needs a small set of capabilities from
the basis it refines. Any concrete hierarchical basis (THB-splines here,
other multilevel constructions in principle) implements HierarchicalBasis
and is bound once to the fitting engine.

Element indices at a level refer to the breakpoint intervals of that
level's knot vectors. Boxes use lower-inclusive, upper-exclusive element
indices, so an element e is the box [e, e+1).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, List, Sequence, Tuple, Union

from ..discretization.knot_vector import KnotVector


@dataclass(frozen=True)
class Box:
    """
    A refinement instruction: activate elements [lower, upper) at `level`.

    Attributes:
        level: Target hierarchy level
        lower: Lower element corner, one index per direction
        upper: Upper element corner (exclusive), one index per direction
    """
    level: int
    lower: Tuple[int, ...]
    upper: Tuple[int, ...]

    def __post_init__(self):
        object.__setattr__(self, "lower", tuple(int(v) for v in self.lower))
        object.__setattr__(self, "upper", tuple(int(v) for v in self.upper))
        if self.level < 0:
            raise ValueError(f"Box level must be non-negative, got {self.level}")
        if len(self.lower) != len(self.upper):
            raise ValueError(
                f"Box corners differ in dimension: {self.lower} vs {self.upper}"
            )
        if any(lo < 0 or lo > up for lo, up in zip(self.lower, self.upper)):
            raise ValueError(
                f"Box corners must satisfy 0 <= lower <= upper, got {self.lower}, {self.upper}"
            )

    @property
    def dim(self) -> int:
        """Number of parametric directions."""
        return len(self.lower)

    def flatten(self) -> List[int]:
        """Flat encoding [level, lower..., upper...] of length 2d+1."""
        return [self.level, *self.lower, *self.upper]

    @classmethod
    def from_flat(cls, values: Sequence[int]) -> 'Box':
        """Inverse of flatten()."""
        if len(values) < 3 or len(values) % 2 == 0:
            raise ValueError(f"Flat box must have 2d+1 entries, got {len(values)}")
        d = (len(values) - 1) // 2
        return cls(int(values[0]), tuple(values[1:1 + d]), tuple(values[1 + d:]))


def boxes_from_flat(values: Sequence[int], dim: int) -> List[Box]:
    """
    Split a flat sequence of 2d+1 integer groups into Box records.

    Parameters:
        values: Concatenated flat boxes
        dim: Parametric dimension d

    Returns:
        List of Box records
    """
    stride = 2 * dim + 1
    if len(values) % stride != 0:
        raise ValueError(
            f"Flat box data of length {len(values)} is not a multiple of {stride}"
        )
    return [Box.from_flat(values[i:i + stride]) for i in range(0, len(values), stride)]


def flatten_boxes(boxes: Iterable[Box]) -> List[int]:
    """Concatenate the flat encodings of several boxes."""
    flat = []
    for box in boxes:
        flat.extend(box.flatten())
    return flat


BoxLike = Union[Box, Sequence[int]]


class HierarchicalBasis(ABC):
    """
    Capabilities the adaptive fitting engine requires from a hierarchical basis.
    """

    @property
    @abstractmethod
    def dim(self) -> int:
        """Number of parametric directions."""

    @abstractmethod
    def max_level(self) -> int:
        """Deepest level that currently holds refined elements."""

    @abstractmethod
    def tensor_basis_at(self, level: int) -> Tuple[KnotVector, ...]:
        """Per-direction knot vectors of the tensor basis at `level`."""

    @abstractmethod
    def num_breaks(self, level: int, dim: int) -> int:
        """Number of breakpoints of direction `dim` at `level`."""

    @abstractmethod
    def query_coarsest_active_level(self, lower: Sequence[int],
                                    upper: Sequence[int], level: int) -> int:
        """
        Coarsest level at which the box [lower, upper) is represented.

        The box is given in element indices of `level`. The query is
        read-only.
        """

    @abstractmethod
    def refine_elements(self, boxes: Sequence[BoxLike]) -> None:
        """Activate the given boxes, each at its own level."""
