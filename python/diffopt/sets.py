"""
diffopt Constraint Sets
=======================

The closed family of sets a constraint function may be restricted to.

Scalar sets (for scalar functions):
    GreaterThan, LessThan, EqualTo, Interval

Vector sets (for vector functions):
    Zeros, Nonnegatives, Nonpositives, SecondOrderCone,
    PositiveSemidefiniteConeTriangle, ExponentialCone, DualExponentialCone

Every set canonicalizes to one of the six cones of the conic form. The
precedence of those cones (:data:`CONE_PRECEDENCE`) is the order in which
constraint rows are stacked, and is the same order the SCS backend uses
internally for its slack and dual vectors.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import IntEnum
from typing import Tuple, Union


class ConeType(IntEnum):
    """Cones of the conic form; the integer value is the stacking precedence."""

    ZERO = 1
    NONNEGATIVE = 2
    SECOND_ORDER = 3
    PSD_TRIANGLE = 4
    EXPONENTIAL = 5
    DUAL_EXPONENTIAL = 6


CONE_PRECEDENCE: Tuple[ConeType, ...] = tuple(sorted(ConeType))


# =============================================================================
# Scalar sets
# =============================================================================


@dataclass(frozen=True)
class GreaterThan:
    """{t : t >= lower}"""

    lower: float

    dimension = 1
    is_equality = False

    def canonical(self) -> "Nonnegatives":
        return Nonnegatives(1)


@dataclass(frozen=True)
class LessThan:
    """{t : t <= upper}"""

    upper: float

    dimension = 1
    is_equality = False

    def canonical(self) -> "Nonnegatives":
        return Nonnegatives(1)


@dataclass(frozen=True)
class EqualTo:
    """{t : t == value}"""

    value: float

    dimension = 1
    is_equality = True

    def canonical(self) -> "Zeros":
        return Zeros(1)


@dataclass(frozen=True)
class Interval:
    """{t : lower <= t <= upper}, stacked as two nonnegative rows."""

    lower: float
    upper: float

    dimension = 1
    is_equality = False

    def __post_init__(self) -> None:
        if self.lower > self.upper:
            raise ValueError(f"Interval lower {self.lower} exceeds upper {self.upper}")

    def canonical(self) -> "Nonnegatives":
        return Nonnegatives(2)


# =============================================================================
# Vector sets
# =============================================================================


@dataclass(frozen=True)
class Reals:
    """The whole space; only appears as the dual of :class:`Zeros`."""

    dimension: int

    is_equality = False


@dataclass(frozen=True)
class Zeros:
    """{0}^dimension"""

    dimension: int

    is_equality = True
    cone_type = ConeType.ZERO

    def canonical(self) -> "Zeros":
        return self

    def dual_set(self) -> Reals:
        return Reals(self.dimension)


@dataclass(frozen=True)
class Nonnegatives:
    """The nonnegative orthant."""

    dimension: int

    is_equality = False
    cone_type = ConeType.NONNEGATIVE

    def canonical(self) -> "Nonnegatives":
        return self

    def dual_set(self) -> "Nonnegatives":
        return self


@dataclass(frozen=True)
class Nonpositives:
    """The nonpositive orthant, stacked as negated nonnegative rows."""

    dimension: int

    is_equality = False

    def canonical(self) -> Nonnegatives:
        return Nonnegatives(self.dimension)

    def dual_set(self) -> "Nonpositives":
        return self


@dataclass(frozen=True)
class SecondOrderCone:
    """{(t, x) : ||x||_2 <= t}"""

    dimension: int

    is_equality = False
    cone_type = ConeType.SECOND_ORDER

    def canonical(self) -> "SecondOrderCone":
        return self

    def dual_set(self) -> "SecondOrderCone":
        return self


@dataclass(frozen=True)
class PositiveSemidefiniteConeTriangle:
    """
    Symmetric PSD matrices of order ``side_dimension``.

    Vectors use the lower triangle in column-major order with the
    off-diagonal entries scaled by sqrt(2), so that the vector inner
    product matches the trace inner product.
    """

    side_dimension: int

    is_equality = False
    cone_type = ConeType.PSD_TRIANGLE

    @property
    def dimension(self) -> int:
        return self.side_dimension * (self.side_dimension + 1) // 2

    def canonical(self) -> "PositiveSemidefiniteConeTriangle":
        return self

    def dual_set(self) -> "PositiveSemidefiniteConeTriangle":
        return self


@dataclass(frozen=True)
class ExponentialCone:
    """closure{(x, y, z) : y * exp(x / y) <= z, y > 0}"""

    is_equality = False
    cone_type = ConeType.EXPONENTIAL
    dimension = 3

    def canonical(self) -> "ExponentialCone":
        return self

    def dual_set(self) -> "DualExponentialCone":
        return DualExponentialCone()


@dataclass(frozen=True)
class DualExponentialCone:
    """closure{(u, v, w) : -u * exp(v / u) <= e * w, u < 0}"""

    is_equality = False
    cone_type = ConeType.DUAL_EXPONENTIAL
    dimension = 3

    def canonical(self) -> "DualExponentialCone":
        return self

    def dual_set(self) -> ExponentialCone:
        return ExponentialCone()


ScalarSet = Union[GreaterThan, LessThan, EqualTo, Interval]
VectorSet = Union[
    Zeros,
    Nonnegatives,
    Nonpositives,
    SecondOrderCone,
    PositiveSemidefiniteConeTriangle,
    ExponentialCone,
    DualExponentialCone,
]
ConeSet = Union[
    Zeros,
    Nonnegatives,
    SecondOrderCone,
    PositiveSemidefiniteConeTriangle,
    ExponentialCone,
    DualExponentialCone,
]

SCALAR_SETS = (GreaterThan, LessThan, EqualTo, Interval)
VECTOR_SETS = (
    Zeros,
    Nonnegatives,
    Nonpositives,
    SecondOrderCone,
    PositiveSemidefiniteConeTriangle,
    ExponentialCone,
    DualExponentialCone,
)
POLYHEDRAL_CONES = frozenset((ConeType.ZERO, ConeType.NONNEGATIVE))


def is_equality(s: Union[ScalarSet, VectorSet]) -> bool:
    """True if constraints on ``s`` are classified as equalities."""
    return s.is_equality


def cone_precedence(s: Union[ScalarSet, VectorSet]) -> int:
    """Stacking precedence of the cone ``s`` canonicalizes to."""
    return int(s.canonical().cone_type)


def psd_side_dimension(dimension: int) -> int:
    """Invert ``n * (n + 1) / 2``; raises if ``dimension`` is not triangular."""
    side = int(round((math.sqrt(8 * dimension + 1) - 1) / 2))
    if side * (side + 1) // 2 != dimension:
        raise ValueError(f"{dimension} is not a triangular number")
    return side
