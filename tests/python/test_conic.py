"""
Tests for the conic sensitivity engine.
"""

import numpy as np
import pytest
from scipy import sparse

from diffopt import Model, Status
from diffopt.conic import ConicDerivative, backward_conic, embedding_matrix
from diffopt.exceptions import DimensionError, IntrospectionError, InvalidInputError, UnsupportedStatusError
from diffopt.model import LinearExpr
from diffopt.sets import ExponentialCone, Nonnegatives, PositiveSemidefiniteConeTriangle, SecondOrderCone
from diffopt.solver import SCSBackend, solve_conic

pytestmark = pytest.mark.integration

SCS_PARAMS = {"tolerance": 1e-10, "max_iterations": 200000}
SQRT2 = float(np.sqrt(2.0))


def _soc_model():
    """min x1 + 2 x2 + x3 s.t. x3 - x1 == 0.3, x1 + x2 <= 10, ||(x1, x2)|| <= 1"""
    model = Model(solver="scs", params=SCS_PARAMS)
    x1, x2, x3 = model.add_vars(3)
    model.add_cone_constr([LinearExpr(constant=1.0), x1, x2], SecondOrderCone(3), name="ball")
    model.add_constr(x1 + x2 <= 10, name="loose")
    model.add_constr(x3 - x1 == 0.3, name="link")
    model.minimize(x1 + 2 * x2 + x3)
    model.optimize()
    return model


def _svm_model(X, labels):
    """
    Hinge-loss SVM as a linear cone program.

    minimize    sum(l)
    subject to  y_i (w'x_i + b) + l_i - 1 >= 0,  l >= 0
    """
    d, N = X.shape
    signs = np.where(labels >= 0.5, 1.0, -1.0)
    model = Model(solver="scs", params=SCS_PARAMS)
    slack = model.add_vars(N, name_prefix="l")
    w = model.add_vars(d, name_prefix="w")
    b = model.add_var(name="b")

    margins = [
        float(signs[i]) * (sum(float(X[j, i]) * w[j] for j in range(d)) + b) + slack[i] - 1
        for i in range(N)
    ]
    model.add_cone_constr(margins, Nonnegatives(N), name="margin")
    model.add_cone_constr(slack, Nonnegatives(N), name="hinge")
    model.minimize(sum(slack))
    model.optimize()
    return model, w, b


def _psd_model():
    """min x0 + 2 x2 s.t. [[x0, x1], [x1, x2]] PSD, x1 == 1"""
    model = Model(solver="scs", params=SCS_PARAMS)
    x0, x1, x2 = model.add_vars(3)
    model.add_cone_constr([x0, SQRT2 * x1, x2], PositiveSemidefiniteConeTriangle(2), name="psd")
    model.add_constr(x1 == 1, name="offdiag")
    model.minimize(x0 + 2 * x2)
    model.optimize()
    return model


def _exp_model():
    """min t - 2u s.t. exp(u) <= t, u <= 5"""
    model = Model(solver="scs", params=SCS_PARAMS)
    u, t = model.add_vars(2)
    model.add_cone_constr([u, LinearExpr(constant=1.0), t], ExponentialCone(), name="exp")
    model.add_constr(u <= 5, name="cap")
    model.minimize(t - 2 * u)
    model.optimize()
    return model


def _perturbation(rng, m, n):
    return rng.standard_normal((m, n)), rng.standard_normal(m), rng.standard_normal(n)


def _central_difference(form, dA, db, dc, eps=1e-4):
    plus = solve_conic(form.A + eps * dA, form.b + eps * db, form.c + eps * dc, form.cones, params=SCS_PARAMS)
    minus = solve_conic(form.A - eps * dA, form.b - eps * db, form.c - eps * dc, form.cones, params=SCS_PARAMS)
    return (plus.x - minus.x) / (2 * eps), (plus.y - minus.y) / (2 * eps)


class TestEmbedding:
    """Tests for the embedding matrix."""

    def test_skew_symmetric(self, rng):
        A = rng.standard_normal((3, 2))
        Q = embedding_matrix(A, rng.standard_normal(3), rng.standard_normal(2)).toarray()

        assert Q.shape == (6, 6)
        np.testing.assert_allclose(Q, -Q.T)

    def test_blocks(self):
        A = np.array([[1.0, 2.0]])
        Q = embedding_matrix(A, np.array([3.0]), np.array([4.0, 5.0])).toarray()

        np.testing.assert_array_equal(Q[:2, 2], [1.0, 2.0])
        np.testing.assert_array_equal(Q[2, :2], [-1.0, -2.0])
        np.testing.assert_array_equal(Q[:2, 3], [4.0, 5.0])
        assert Q[2, 3] == 3.0


class TestBackwardConic:
    """Derivatives against finite differences of re-solved problems."""

    def test_solution(self, soc_problem):
        model = _soc_model()

        assert model.status.is_differentiable
        np.testing.assert_allclose(model.get_values(model.variables), soc_problem["expected_x"], atol=1e-6)

    def test_matches_finite_differences(self, rng):
        model = _soc_model()
        form = model.conic_data()
        dA, db, dc = _perturbation(rng, form.m, form.n)

        deriv = backward_conic(model, dA, db, dc)

        eps = 1e-4
        plus = solve_conic(form.A + eps * dA, form.b + eps * db, form.c + eps * dc, form.cones, params=SCS_PARAMS)
        minus = solve_conic(form.A - eps * dA, form.b - eps * db, form.c - eps * dc, form.cones, params=SCS_PARAMS)

        np.testing.assert_allclose(deriv.dx, (plus.x - minus.x) / (2 * eps), atol=1e-4)
        np.testing.assert_allclose(deriv.dy, (plus.y - minus.y) / (2 * eps), atol=1e-4)
        np.testing.assert_allclose(deriv.ds, (plus.s - minus.s) / (2 * eps), atol=1e-4)

    def test_adjoint_identity(self, rng):
        """v'dx from the engine matches the directional derivative of v'x."""
        model = _soc_model()
        form = model.conic_data()
        dA, db, dc = _perturbation(rng, form.m, form.n)
        v = rng.standard_normal(form.n)

        dx, _, _ = model.backward_conic(dA, db, dc)

        eps = 1e-4
        plus = solve_conic(form.A + eps * dA, form.b + eps * db, form.c + eps * dc, form.cones, params=SCS_PARAMS)
        minus = solve_conic(form.A - eps * dA, form.b - eps * db, form.c - eps * dc, form.cones, params=SCS_PARAMS)
        assert v @ dx == pytest.approx(v @ (plus.x - minus.x) / (2 * eps), abs=1e-4)

    def test_zero_perturbation_is_exactly_zero(self):
        model = _soc_model()
        form = model.conic_data()

        deriv = backward_conic(model, np.zeros((form.m, form.n)), np.zeros(form.m), np.zeros(form.n))

        assert isinstance(deriv, ConicDerivative)
        assert np.all(deriv.dx == 0)
        assert np.all(deriv.dy == 0)
        assert np.all(deriv.ds == 0)

    def test_sparse_perturbation(self, rng):
        model = _soc_model()
        form = model.conic_data()
        dA, db, dc = _perturbation(rng, form.m, form.n)

        dense = backward_conic(model, dA, db, dc)
        from_sparse = backward_conic(model, sparse.csr_matrix(dA), db, dc)

        np.testing.assert_allclose(from_sparse.dx, dense.dx)

    def test_blocks_per_constraint(self, rng):
        model = _soc_model()
        form = model.conic_data()
        deriv = backward_conic(model, *_perturbation(rng, form.m, form.n))

        blocks = form.split(deriv.ds)
        link = model.get_constr_by_name("link")
        ball = model.get_constr_by_name("ball")

        # slack of an equality row stays zero
        np.testing.assert_allclose(blocks[link.index], [0.0], atol=1e-6)
        assert blocks[ball.index].shape == (3,)


class TestOtherCones:
    """Finite-difference checks on the PSD triangle and exponential cones."""

    def test_psd_solution(self):
        model = _psd_model()

        assert model.status.is_differentiable
        # x0 * x2 = 1 at the optimum, x0 = 2 x2
        np.testing.assert_allclose(
            model.get_values(model.variables), [SQRT2, 1.0, 1.0 / SQRT2], atol=1e-6
        )

    def test_psd_matches_finite_differences(self, rng):
        model = _psd_model()
        form = model.conic_data()
        dA, db, dc = _perturbation(rng, form.m, form.n)

        deriv = backward_conic(model, dA, db, dc)
        fd_x, fd_y = _central_difference(form, dA, db, dc)

        np.testing.assert_allclose(deriv.dx, fd_x, atol=1e-4)
        np.testing.assert_allclose(deriv.dy, fd_y, atol=1e-4)

    def test_exp_solution(self):
        model = _exp_model()

        assert model.status.is_differentiable
        # exp(u) = 2 at the optimum
        np.testing.assert_allclose(model.get_values(model.variables), [np.log(2.0), 2.0], atol=1e-6)

    def test_exp_matches_finite_differences(self, rng):
        model = _exp_model()
        form = model.conic_data()
        dA, db, dc = _perturbation(rng, form.m, form.n)

        deriv = backward_conic(model, dA, db, dc)
        fd_x, _ = _central_difference(form, dA, db, dc)

        np.testing.assert_allclose(deriv.dx, fd_x, atol=1e-4)


class TestFailures:
    """Failure modes of the conic engine."""

    def test_backend_without_introspection(self):
        model = Model(solver="qp")
        x = model.add_var()
        model.add_constr(x >= 1)
        model.minimize(x)
        model.optimize()

        with pytest.raises(IntrospectionError):
            model.backward_conic(np.zeros((1, 1)), np.ones(1), np.zeros(1))

    def test_backend_with_other_cone_order(self):
        class ReversedSCS(SCSBackend):
            cone_precedence = tuple(reversed(SCSBackend.cone_precedence))

        model = _soc_model()
        backend = ReversedSCS()
        backend._data = model.backend.raw_conic_data()
        backend._solution = model.backend.raw_solution()
        model._backend = backend
        form = model.conic_data()

        with pytest.raises(IntrospectionError):
            model.backward_conic(np.zeros((form.m, form.n)), np.ones(form.m), np.zeros(form.n))

    def test_quadratic_objective(self):
        model = Model(solver="scs", params=SCS_PARAMS)
        x = model.add_var()
        model.add_constr(x >= 1)
        model.minimize(x * x)
        model.optimize()

        with pytest.raises(InvalidInputError):
            model.backward_conic(np.zeros((1, 1)), np.ones(1), np.zeros(1))

    def test_wrong_shapes(self):
        model = _soc_model()
        form = model.conic_data()

        with pytest.raises(DimensionError):
            model.backward_conic(np.zeros((form.m + 1, form.n)), np.ones(form.m), np.zeros(form.n))
        with pytest.raises(DimensionError):
            model.backward_conic(np.zeros((form.m, form.n)), np.ones(form.m), np.zeros(form.n + 1))

    def test_unsupported_status(self):
        model = _soc_model()
        model.add_constr(model.variables[0] >= 5)
        form = model.conic_data()

        assert model.status == Status.OPTIMIZE_NOT_CALLED
        with pytest.raises(UnsupportedStatusError):
            model.backward_conic(np.zeros((form.m, form.n)), np.ones(form.m), np.zeros(form.n))


@pytest.mark.slow
class TestSVM:
    """Hinge-loss SVM solved with SCS, labels passed explicitly."""

    def test_svm_sensitivities(self, rng):
        d, N = 2, 20
        X = rng.standard_normal((d, N))
        labels = (X[0] + 0.5 * rng.standard_normal(N) > 0).astype(float)

        model, w, b = _svm_model(X, labels)
        assert model.status.is_differentiable

        predictions = X.T @ model.get_values(w) + model.get_value(b)
        signs = np.where(labels >= 0.5, 1.0, -1.0)
        assert np.mean(np.sign(predictions) == signs) >= 0.7

        form = model.conic_data()
        assert form.m == 2 * N
        dA, db, dc = np.zeros((form.m, form.n)), np.zeros(form.m), np.zeros(form.n)
        db[:N] = 1.0
        dx, dy, ds = model.backward_conic(dA, db, dc)

        assert dx.shape == (form.n,)
        assert dy.shape == (form.m,)
        assert np.all(np.isfinite(dx)) and np.all(np.isfinite(dy)) and np.all(np.isfinite(ds))
