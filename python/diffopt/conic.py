"""
diffopt Conic Sensitivity Engine
================================

Forward-mode derivative of the primal-dual solution (x, y, s) of the conic
program

    minimize    c'x
    subject to  A x + s = b,  s in K

along a perturbation (dA, db, dc) of its data, through the residual map of
the homogeneous self-dual embedding (Agrawal et al., "Differentiating
through a cone program").

With u = x, v = y - s, w = 1 and the skew-symmetric embedding matrix

        [  0    A'   c ]
    Q = [ -A    0    b ]
        [ -c'  -b'   0 ]

the derivative solves

    M dz = dQ @ (u, Π*(v), max(w, 0)),   M = (Q - I) diag(I, DΠ*(v), 1) + I

in the least-squares sense, where Π* is the projection onto the dual
cones.
"""

from typing import TYPE_CHECKING, Any, NamedTuple

import numpy as np
from scipy import sparse
from scipy.sparse.linalg import lsqr

from .canonical import conic_form, split_by_cones
from .cones import project, project_gradient
from .exceptions import DimensionError, IntrospectionError, InvalidInputError, UnsupportedStatusError
from .logging import get_logger
from .sets import CONE_PRECEDENCE
from .utils.validation import validate_perturbation

if TYPE_CHECKING:
    from .model import Model

logger = get_logger(__name__)


class ConicDerivative(NamedTuple):
    """Directional derivative of the primal solution, dual and slack."""

    dx: np.ndarray
    dy: np.ndarray
    ds: np.ndarray


def embedding_matrix(A: Any, b: np.ndarray, c: np.ndarray) -> sparse.csc_matrix:
    """Skew-symmetric matrix of the homogeneous self-dual embedding."""
    A = sparse.csc_matrix(A, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64).ravel()
    c = np.asarray(c, dtype=np.float64).ravel()
    return sparse.bmat([
        [None, A.T, np.expand_dims(c, -1)],
        [-A, None, np.expand_dims(b, -1)],
        [-np.expand_dims(c, -1).T, -np.expand_dims(b, -1).T, None],
    ], format="csc")


def _raw_solution(model: "Model", form):
    """Read the raw (x, y, s) of the last solve back from the backend."""
    backend = model.backend
    if backend is None or not hasattr(backend, "raw_solution") or not hasattr(backend, "cone_precedence"):
        name = getattr(backend, "name", "none")
        raise IntrospectionError(f"backend {name!r} does not expose its raw conic solution")
    if tuple(backend.cone_precedence) != CONE_PRECEDENCE:
        raise IntrospectionError(f"backend {backend.name!r} stacks cones in a different order")

    _, _, _, raw_cones = backend.raw_conic_data()
    x, y, s = backend.raw_solution()
    if list(raw_cones) != list(form.cones) or x.size != form.n or y.size != form.m or s.size != form.m:
        raise IntrospectionError("raw solution does not match the current model")
    return x, y, s


def backward_conic(
    model: "Model",
    dA: Any,
    db: np.ndarray,
    dc: np.ndarray,
    tol: float = 1e-4,
    lsqr_tol: float = 1e-12,
) -> ConicDerivative:
    """
    Directional derivative of (x, y, s) along (dA, db, dc).

    Args:
        model: Model solved by a backend exposing its raw conic data
        dA: Perturbation of A (m, n), dense or sparse
        db: Perturbation of b (m,)
        dc: Perturbation of c (n,)
        tol: Right-hand sides with a smaller norm give a zero derivative
        lsqr_tol: atol / btol of the least-squares solve

    Returns:
        ConicDerivative(dx, dy, ds), rows in conic stacking order

    Raises:
        UnsupportedStatusError: If the last solve is not differentiable
        IntrospectionError: If the backend cannot expose its raw solution
        InvalidInputError: If the objective is quadratic
        DimensionError: If the perturbation has the wrong shape
    """
    if not model.status.is_differentiable:
        raise UnsupportedStatusError(f"problem status: {model.status}", model.status)

    form = conic_form(model)
    if form.P is not None and form.P.count_nonzero() > 0:
        raise InvalidInputError("the conic backward pass needs a linear objective")
    m, n = form.m, form.n

    valid, msg = validate_perturbation(dA, db, dc, m, n)
    if not valid:
        raise DimensionError(msg)

    _, y, s = _raw_solution(model, form)
    x = np.array([model.primal_optimal[idx] for idx in form.variables])
    logger.debug(
        "conic backward: n=%d, m=%d, blocks=%s",
        n, m, [blk.size for blk in split_by_cones(y, form.cones)],
    )

    Q = embedding_matrix(form.A, form.b, form.c)
    v = y - s
    w = 1.0
    D_proj = project_gradient(form.cones, v, dual=True)
    D = sparse.block_diag([sparse.identity(n), D_proj, sparse.identity(1)], format="csc")
    size = n + m + 1
    M = (Q - sparse.identity(size)) @ D + sparse.identity(size)
    pi_z = np.concatenate([x, project(form.cones, v, dual=True), [max(w, 0.0)]])

    dQ = embedding_matrix(dA, db, dc)
    rhs = dQ @ pi_z
    if np.linalg.norm(rhs) <= tol:
        logger.debug("perturbation below tolerance, derivative is zero")
        dz = np.zeros(size)
    else:
        dz = lsqr(M, rhs, atol=lsqr_tol, btol=lsqr_tol, iter_lim=20 * size)[0]

    du, dv, dw = np.split(dz, [n, n + m])
    dw = float(dw[0])
    dx = du - x * dw
    dy = D_proj @ dv - y * dw
    ds = D_proj @ dv - dv - s * dw
    return ConicDerivative(-dx, -dy, -ds)
