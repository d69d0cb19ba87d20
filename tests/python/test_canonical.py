"""
Tests for the problem canonicalizer.
"""

import numpy as np
import pytest

from diffopt import Model
from diffopt.canonical import conic_form, qp_form, split_by_cones
from diffopt.exceptions import DimensionError, UnsupportedConstraintError, UnsupportedStatusError
from diffopt.sets import (
    ExponentialCone,
    Nonnegatives,
    Nonpositives,
    SecondOrderCone,
    Zeros,
)


class TestConicForm:
    """Tests for the conic form layout."""

    def test_rows_sorted_by_cone_precedence(self):
        model = Model()
        x = model.add_vars(3)
        c_exp = model.add_cone_constr(x, ExponentialCone())
        c_soc = model.add_cone_constr(x, SecondOrderCone(3))
        c_le = model.add_constr(x[0] <= 1)
        c_eq = model.add_constr(x[1] == 2)
        c_ge = model.add_constr(x[2] >= 0)

        form = conic_form(model)

        assert [blk.index for blk in form.blocks] == [
            c_eq.index, c_le.index, c_ge.index, c_soc.index, c_exp.index,
        ]
        assert [blk.start for blk in form.blocks] == [0, 1, 2, 3, 6]
        assert form.m == 9
        assert not form.is_polyhedral

    def test_row_orientation(self):
        """s = b - A x equals the oriented constraint function."""
        model = Model()
        x, y = model.add_vars(2)
        model.add_constr(x + 2 * y >= 1)
        model.add_constr(x - y <= 3)
        model.add_constr(x + y == 2)
        model.add_cone_constr([x + 1, y], Nonpositives(2))
        model.add_cone_constr([x, y - 1], Zeros(2))

        form = conic_form(model)
        point = np.array([0.3, -0.7])
        s = form.b - form.A @ point
        blocks = form.split(s)

        xv, yv = point
        eq, ge, le, npos, zeros = model.constraints[2], model.constraints[0], model.constraints[1], model.constraints[3], model.constraints[4]
        np.testing.assert_allclose(blocks[eq.index], [2 - (xv + yv)])
        np.testing.assert_allclose(blocks[ge.index], [xv + 2 * yv - 1])
        np.testing.assert_allclose(blocks[le.index], [3 - (xv - yv)])
        np.testing.assert_allclose(blocks[npos.index], [-(xv + 1), -yv])
        np.testing.assert_allclose(blocks[zeros.index], [-xv, -(yv - 1)])

    def test_interval_rows(self):
        model = Model()
        x = model.add_var()
        c = model.add_range(2 * x, -1.0, 4.0)

        form = conic_form(model)
        s = form.b - form.A @ np.array([0.5])

        np.testing.assert_allclose(form.split(s)[c.index], [1.0 + 1.0, 4.0 - 1.0])

    def test_objective(self):
        model = Model()
        x, y = model.add_vars(2)
        model.minimize(x * x + 3 * x * y + 2 * y + 5)

        form = conic_form(model)

        np.testing.assert_allclose(form.P.toarray(), [[2.0, 3.0], [3.0, 0.0]])
        np.testing.assert_allclose(form.c, [0.0, 2.0])
        assert form.offset == 5.0

    def test_maximize_negates(self):
        model = Model()
        x = model.add_var()
        model.maximize(-(x * x) + 4 * x)

        form = conic_form(model)

        np.testing.assert_allclose(form.P.toarray(), [[2.0]])
        np.testing.assert_allclose(form.c, [-4.0])

    def test_columns_follow_live_variables(self):
        model = Model()
        x, y, z = model.add_vars(3)
        model.delete(y)
        model.add_constr(x + z <= 1)

        form = conic_form(model)

        assert form.variables == [x.index, z.index]
        np.testing.assert_allclose(form.A.toarray(), [[1.0, 1.0]])

    def test_split_and_stack(self):
        model = Model()
        x = model.add_vars(3)
        c1 = model.add_cone_constr(x, SecondOrderCone(3))
        c2 = model.add_constr(x[0] >= 0)

        form = conic_form(model)
        vec = np.arange(4.0)
        blocks = form.split(vec)

        np.testing.assert_array_equal(blocks[c2.index], [0.0])
        np.testing.assert_array_equal(blocks[c1.index], [1.0, 2.0, 3.0])
        np.testing.assert_array_equal(form.stack(blocks), vec)


class TestSplitByCones:
    """Tests for split_by_cones."""

    def test_split(self):
        parts = split_by_cones(np.arange(6.0), [Zeros(1), Nonnegatives(2), SecondOrderCone(3)])

        assert [p.tolist() for p in parts] == [[0.0], [1.0, 2.0], [3.0, 4.0, 5.0]]

    def test_size_mismatch(self):
        with pytest.raises(DimensionError):
            split_by_cones(np.arange(4.0), [SecondOrderCone(3)])

    def test_empty(self):
        assert split_by_cones(np.zeros(0), []) == []


class TestQPForm:
    """Tests for the QP form."""

    def test_qp_form_matches_input(self, constrained_qp):
        model = Model.from_matrices(
            constrained_qp["q"],
            G=constrained_qp["G"],
            h=constrained_qp["h"],
            A=constrained_qp["A"],
            b=constrained_qp["b"],
            Q=constrained_qp["Q"],
        )
        model.optimize()

        form = qp_form(model)

        np.testing.assert_allclose(form.Q.toarray(), constrained_qp["Q"])
        np.testing.assert_allclose(form.G.toarray(), constrained_qp["G"])
        np.testing.assert_allclose(form.h, constrained_qp["h"])
        np.testing.assert_allclose(form.A.toarray(), constrained_qp["A"])
        np.testing.assert_allclose(form.b, constrained_qp["b"])
        np.testing.assert_allclose(form.z, constrained_qp["expected_z"], atol=1e-8)
        # multipliers enter the KKT system with flipped sign
        np.testing.assert_allclose(form.lam, -constrained_qp["expected_y_ineq"], atol=1e-8)
        np.testing.assert_allclose(form.nu, -constrained_qp["expected_y_eq"], atol=1e-8)

    def test_requires_solution(self, constrained_qp):
        model = Model.from_matrices(constrained_qp["q"], G=constrained_qp["G"], h=constrained_qp["h"])

        with pytest.raises(UnsupportedStatusError):
            qp_form(model)

    @pytest.mark.integration
    def test_rejects_non_polyhedral(self):
        model = Model(solver="scs")
        t, u = model.add_vars(2)
        model.add_cone_constr([t, u - 1], SecondOrderCone(2))
        model.add_constr(u == 0)
        model.minimize(t)
        model.optimize()

        with pytest.raises(UnsupportedConstraintError):
            qp_form(model)
