"""
Tests for constraint sets and the cone precedence table.
"""

import pytest

from diffopt.sets import (
    CONE_PRECEDENCE,
    ConeType,
    DualExponentialCone,
    EqualTo,
    ExponentialCone,
    GreaterThan,
    Interval,
    LessThan,
    Nonnegatives,
    Nonpositives,
    PositiveSemidefiniteConeTriangle,
    Reals,
    SecondOrderCone,
    Zeros,
    cone_precedence,
    is_equality,
    psd_side_dimension,
)


class TestConePrecedence:
    """Tests for the stacking order of cones."""

    def test_precedence_order(self):
        assert CONE_PRECEDENCE == (
            ConeType.ZERO,
            ConeType.NONNEGATIVE,
            ConeType.SECOND_ORDER,
            ConeType.PSD_TRIANGLE,
            ConeType.EXPONENTIAL,
            ConeType.DUAL_EXPONENTIAL,
        )

    @pytest.mark.parametrize("s, expected", [
        (EqualTo(1.0), 1),
        (Zeros(3), 1),
        (GreaterThan(0.0), 2),
        (LessThan(0.0), 2),
        (Interval(0.0, 1.0), 2),
        (Nonnegatives(2), 2),
        (Nonpositives(2), 2),
        (SecondOrderCone(3), 3),
        (PositiveSemidefiniteConeTriangle(2), 4),
        (ExponentialCone(), 5),
        (DualExponentialCone(), 6),
    ])
    def test_cone_precedence(self, s, expected):
        assert cone_precedence(s) == expected


class TestSetProperties:
    """Tests for dimensions, canonical cones and equality classification."""

    def test_equality_classification(self):
        assert is_equality(EqualTo(0.0))
        assert is_equality(Zeros(2))
        assert not is_equality(LessThan(0.0))
        assert not is_equality(Interval(-1.0, 1.0))
        assert not is_equality(SecondOrderCone(3))

    def test_interval_canonical_has_two_rows(self):
        assert Interval(-1.0, 1.0).canonical() == Nonnegatives(2)

    def test_interval_rejects_empty(self):
        with pytest.raises(ValueError):
            Interval(2.0, 1.0)

    def test_nonpositives_canonical(self):
        assert Nonpositives(4).canonical() == Nonnegatives(4)

    def test_psd_dimension(self):
        assert PositiveSemidefiniteConeTriangle(3).dimension == 6
        assert psd_side_dimension(6) == 3
        with pytest.raises(ValueError):
            psd_side_dimension(5)

    def test_exponential_dimensions(self):
        assert ExponentialCone().dimension == 3
        assert DualExponentialCone().dimension == 3

    def test_dual_sets(self):
        assert Zeros(2).dual_set() == Reals(2)
        assert Nonnegatives(3).dual_set() == Nonnegatives(3)
        assert SecondOrderCone(3).dual_set() == SecondOrderCone(3)
        assert ExponentialCone().dual_set() == DualExponentialCone()
        assert DualExponentialCone().dual_set() == ExponentialCone()

    def test_sets_are_hashable(self):
        assert len({Zeros(2), Zeros(2), Nonnegatives(2)}) == 2
