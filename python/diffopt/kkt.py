"""
diffopt KKT Sensitivity Engine
==============================

Reverse-mode derivatives of the optimal point of a convex QP

    minimize    (1/2) z'Qz + q'z
    subject to  G z <= h,  A z == b

with respect to its data, by implicit differentiation of the KKT
conditions (the OptNet construction).

Given the loss sensitivity dl/dz, the adjoint system

    [ Q      G'D(λ)    A' ] [dz]     [dl/dz]
    [ D(λ)G  D(Gz-h)   0  ] [dλ] = - [  0  ]
    [ A      0         0  ] [dν]     [  0  ]

is solved once, and each requested gradient is an outer-product formula
in (dz, dλ, dν) and the Solution Point (z, λ, ν).

Example:
    >>> model = Model.from_matrices(q, G=G, h=h, Q=Q)
    >>> model.optimize()
    >>> grads = backward(model, ["q", "h"], np.ones(model.num_vars))
    >>> grads["h"].shape
    (3,)
"""

import warnings
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
from scipy import sparse
from scipy.sparse.linalg import splu

from .canonical import QPForm, qp_form
from .exceptions import InvalidInputError
from .logging import get_logger
from .utils.validation import as_vector

if TYPE_CHECKING:
    from .model import Model

logger = get_logger(__name__)


class Param(str, Enum):
    """Data matrices of the QP form a gradient can be requested for."""

    Q = "Q"
    q = "q"
    G = "G"
    h = "h"
    A = "A"
    b = "b"


def _as_param(name: Any) -> Optional[Param]:
    if isinstance(name, Param):
        return name
    try:
        return Param(name)
    except ValueError:
        return None


def kkt_matrix(
    Q: sparse.spmatrix,
    G: sparse.spmatrix,
    h: np.ndarray,
    A: sparse.spmatrix,
    z: np.ndarray,
    lam: np.ndarray,
) -> sparse.csc_matrix:
    """
    Assemble the (square) left-hand side of the adjoint KKT system.

    Blocks belonging to an empty constraint family are left out, so the
    size is n + m_ineq + m_eq.
    """
    n, m_ineq, m_eq = Q.shape[0], G.shape[0], A.shape[0]
    D_lam = sparse.diags(lam)

    rows: List[List[Any]] = [[sparse.csr_matrix(Q)]]
    if m_ineq:
        rows[0].append(G.T @ D_lam)
    if m_eq:
        rows[0].append(A.T)
    if m_ineq:
        row = [D_lam @ G, sparse.diags(G @ z - h)]
        if m_eq:
            row.append(None)
        rows.append(row)
    if m_eq:
        row = [A]
        if m_ineq:
            row.append(None)
        row.append(sparse.csr_matrix((m_eq, m_eq)))
        rows.append(row)
    lhs = sparse.bmat(rows, format="csc")
    logger.debug("KKT matrix: size=%d, nnz=%d", n + m_ineq + m_eq, lhs.nnz)
    return lhs


def _solve(lhs: sparse.csc_matrix, rhs: np.ndarray) -> np.ndarray:
    """Sparse LU solve, falling back to dense least squares when singular."""
    sol = None
    try:
        sol = splu(lhs).solve(rhs)
    except RuntimeError as e:
        logger.debug("sparse LU failed: %s", e)

    if sol is not None:
        residual = np.linalg.norm(lhs @ sol - rhs)
        if not np.all(np.isfinite(sol)) or residual > 1e-8 * max(1.0, np.linalg.norm(rhs)):
            sol = None

    if sol is None:
        warnings.warn(
            "KKT system is singular; using the least-squares solution",
            UserWarning,
            stacklevel=3,
        )
        sol = np.linalg.lstsq(lhs.toarray(), rhs, rcond=None)[0]
    return sol


def kkt_adjoint(form: QPForm, dl_dz: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Solve the adjoint KKT system.

    Args:
        form: QP form with its Solution Point
        dl_dz: Loss sensitivity w.r.t. the optimal z (n,)

    Returns:
        (dz, dλ, dν)
    """
    n, m_ineq = form.n, form.m_ineq
    lhs = kkt_matrix(form.Q, form.G, form.h, form.A, form.z, form.lam)
    rhs = np.concatenate([dl_dz, np.zeros(form.m_ineq + form.m_eq)])
    sol = _solve(lhs, -rhs)
    return sol[:n], sol[n:n + m_ineq], sol[n + m_ineq:]


def _gradient(param: Param, form: QPForm, dz: np.ndarray, dlam: np.ndarray, dnu: np.ndarray) -> np.ndarray:
    z, lam, nu = form.z, form.lam, form.nu
    if param is Param.Q:
        return 0.5 * (np.outer(dz, z) + np.outer(z, dz))
    if param is Param.q:
        return dz
    if param is Param.G:
        return np.outer(lam * dlam, z) - np.outer(lam, dz)
    if param is Param.h:
        return -lam * dlam
    if param is Param.A:
        return np.outer(dnu, z) - np.outer(nu, dz)
    return -dnu


def backward(
    model: "Model",
    requested_params: Sequence[Any],
    dl_dz: np.ndarray,
) -> Dict[Any, np.ndarray]:
    """
    Gradients of a scalar loss l(z*) w.r.t. the requested QP data.

    Args:
        model: Solved model whose constraints are all polyhedral
        requested_params: Names among Q, q, G, h, A, b (strings or Param)
        dl_dz: dl/dz* in variable order (n,)

    Returns:
        Dict keyed by the requested items, in request order. Each value
        has the shape of the matching data matrix; names outside the
        known set map to an empty array.

    Raises:
        InvalidInputError: If no parameter is requested
        UnsupportedStatusError: If the last solve is not differentiable
        UnsupportedConstraintError: If a constraint is not polyhedral
    """
    requested = list(requested_params)
    if not requested:
        raise InvalidInputError("requested_params must not be empty")

    form = qp_form(model)
    dl_dz = as_vector(dl_dz, form.n, "dl_dz")
    dz, dlam, dnu = kkt_adjoint(form, dl_dz)

    grads: Dict[Any, np.ndarray] = {}
    for name in requested:
        param = _as_param(name)
        if param is None:
            logger.debug("unknown parameter %r, returning an empty gradient", name)
            grads[name] = np.zeros(0)
        else:
            grads[name] = _gradient(param, form, dz, dlam, dnu)
    return grads
