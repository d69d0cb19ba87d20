"""diffopt Solver Backends.

Backends turn a :class:`~diffopt.canonical.ConicForm` into a
:class:`~diffopt.result.SolveResult` laid out like the conic form.

- ``qp``: scipy. HiGHS (``linprog``) for linear objectives, SLSQP followed
  by an active-set polish for quadratic ones. Polyhedral cones only.
- ``scs``: the SCS conic solver. Supports every cone and exposes its raw
  conic data for the conic backward pass.
"""

from __future__ import annotations

import time
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
from scipy import sparse

from .exceptions import DimensionError, InvalidInputError, IntrospectionError, SolverError, UnsupportedConstraintError
from .logging import get_logger
from .result import SolveResult, Status
from .sets import CONE_PRECEDENCE, ConeType

logger = get_logger(__name__)

DEFAULT_PARAMS: Dict[str, Any] = {
    "max_iterations": 10000,
    "tolerance": 1e-9,
    "verbose": False,
    "time_limit": None,
    "silent": False,
    "active_tol": 1e-6,
    "polish": True,
}


def _merge_params(defaults: Dict[str, Any], params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    merged = dict(DEFAULT_PARAMS)
    merged.update(defaults)
    merged.update(params or {})
    if merged["silent"]:
        merged["verbose"] = False
    unknown = set(merged) - set(DEFAULT_PARAMS)
    if unknown:
        logger.debug("ignoring unknown parameters %s", sorted(unknown))
    return merged


def _as_matrix(M: Optional[Union[np.ndarray, sparse.spmatrix]], n: int, name: str) -> sparse.csr_matrix:
    if M is None:
        return sparse.csr_matrix((0, n))
    M = sparse.csr_matrix(M, dtype=np.float64)
    if M.shape[1] != n:
        raise DimensionError(f"{name} columns {M.shape[1]} != n={n}")
    return M


def _as_rhs(v: Optional[np.ndarray], m: int, name: str) -> np.ndarray:
    v = np.zeros(0) if v is None else np.asarray(v, dtype=np.float64).ravel()
    if v.size != m:
        raise DimensionError(f"{name} has {v.size} entries, expected {m}")
    return v


# =============================================================================
# QP / LP (scipy)
# =============================================================================


def solve_qp(
    q: np.ndarray,
    G: Optional[Union[np.ndarray, sparse.spmatrix]] = None,
    h: Optional[np.ndarray] = None,
    A: Optional[Union[np.ndarray, sparse.spmatrix]] = None,
    b: Optional[np.ndarray] = None,
    Q: Optional[Union[np.ndarray, sparse.spmatrix]] = None,
    params: Optional[Dict[str, Any]] = None,
    x0: Optional[np.ndarray] = None,
) -> SolveResult:
    """
    Solve ``min ½ x'Qx + q'x  s.t.  G x <= h, A x == b``.

    The returned duals follow the conic convention: ``y = [y_eq; y_ineq]``
    with ``Q x + q + A'y_eq + G'y_ineq = 0`` and ``y_ineq >= 0``; the
    slack is ``s = [b - A x; h - G x]``.

    Args:
        q: Linear cost (n,)
        G, h: Inequality rows
        A, b: Equality rows
        Q: Quadratic cost (n, n); None or all-zero selects HiGHS
        params: Solver parameters (see DEFAULT_PARAMS)
        x0: Starting point for SLSQP

    Returns:
        SolveResult
    """
    start_time = time.perf_counter()
    params = _merge_params({}, params)

    q = np.asarray(q, dtype=np.float64).ravel()
    n = q.size
    G = _as_matrix(G, n, "G")
    A = _as_matrix(A, n, "A")
    h = _as_rhs(h, G.shape[0], "h")
    b = _as_rhs(b, A.shape[0], "b")
    if np.any(np.isnan(q)) or np.any(np.isnan(h)) or np.any(np.isnan(b)):
        raise InvalidInputError("problem data contains NaN")

    is_qp = Q is not None and sparse.csr_matrix(Q).count_nonzero() > 0
    if is_qp:
        Q = sparse.csr_matrix(Q, dtype=np.float64)
        if Q.shape != (n, n):
            raise DimensionError(f"Q must be ({n},{n}), got {Q.shape}")
        result = _solve_slsqp(Q.toarray(), q, G.toarray(), h, A.toarray(), b, params, x0)
    else:
        result = _solve_highs(q, G, h, A, b, params)

    result.s = np.concatenate([b - A @ result.x, h - G @ result.x])
    result.solver_name = "qp"
    result.solve_time = time.perf_counter() - start_time
    return result


_HIGHS_STATUS = {
    0: Status.OPTIMAL,
    1: Status.ITERATION_LIMIT,
    2: Status.INFEASIBLE,
    3: Status.DUAL_INFEASIBLE,
    4: Status.NUMERICAL_ERROR,
}


def _solve_highs(q, G, h, A, b, params) -> SolveResult:
    from scipy.optimize import linprog

    n = q.size
    options: Dict[str, Any] = {
        "maxiter": params["max_iterations"],
        "disp": bool(params["verbose"]),
        "primal_feasibility_tolerance": max(params["tolerance"], 1e-10),
        "dual_feasibility_tolerance": max(params["tolerance"], 1e-10),
    }
    if params["time_limit"] is not None:
        options["time_limit"] = float(params["time_limit"])

    res = linprog(
        q,
        A_ub=G if G.shape[0] else None,
        b_ub=h if G.shape[0] else None,
        A_eq=A if A.shape[0] else None,
        b_eq=b if A.shape[0] else None,
        bounds=(None, None),
        method="highs",
        options=options,
    )
    status = _HIGHS_STATUS.get(res.status, Status.NUMERICAL_ERROR)
    if res.status == 1 and "time" in str(res.message).lower():
        status = Status.TIME_LIMIT

    if res.x is None:
        return SolveResult(
            status=status,
            objective=float("nan"),
            x=np.zeros(n),
            y=np.zeros(A.shape[0] + G.shape[0]),
            s=np.zeros(0),
            info={"message": res.message},
        )

    # HiGHS marginals are d(objective)/d(rhs), the negated conic duals
    y_eq = -res.eqlin.marginals if A.shape[0] else np.zeros(0)
    y_ineq = -res.ineqlin.marginals if G.shape[0] else np.zeros(0)
    return SolveResult(
        status=status,
        objective=float(res.fun),
        x=np.asarray(res.x, dtype=np.float64),
        y=np.concatenate([y_eq, y_ineq]),
        s=np.zeros(0),
        iterations=int(getattr(res, "nit", 0)),
        info={"message": res.message},
    )


_SLSQP_STATUS = {
    0: Status.OPTIMAL,
    4: Status.INFEASIBLE,
    9: Status.ITERATION_LIMIT,
}


def _solve_slsqp(Q, q, G, h, A, b, params, x0) -> SolveResult:
    from scipy.optimize import minimize

    n = q.size
    constraints: List[Dict[str, Any]] = []
    if A.shape[0]:
        constraints.append({"type": "eq", "fun": lambda x, A=A, b=b: A @ x - b, "jac": lambda x, A=A: A})
    if G.shape[0]:
        constraints.append({"type": "ineq", "fun": lambda x, G=G, h=h: h - G @ x, "jac": lambda x, G=G: -G})

    x_start = np.zeros(n) if x0 is None else np.asarray(x0, dtype=np.float64).ravel()
    res = minimize(
        lambda x: 0.5 * x @ Q @ x + q @ x,
        x_start,
        method="SLSQP",
        jac=lambda x: Q @ x + q,
        constraints=constraints,
        options={"maxiter": params["max_iterations"], "ftol": params["tolerance"], "disp": bool(params["verbose"])},
    )
    status = _SLSQP_STATUS.get(res.status, Status.NUMERICAL_ERROR)
    x = np.asarray(res.x, dtype=np.float64)

    polished = None
    if params["polish"] and status is not Status.INFEASIBLE:
        polished = _polish(Q, q, G, h, A, b, x, params["active_tol"])
    if polished is not None:
        x, y_eq, y_ineq = polished
        status = Status.OPTIMAL
    else:
        if params["polish"]:
            logger.debug("active-set polish failed (SLSQP status %d: %s)", res.status, res.message)
        y_eq, y_ineq = _estimate_duals(Q, q, G, h, A, x, params["active_tol"])
        feas_tol = max(params["active_tol"], 1e-6)
        infeasible = (G.shape[0] and np.max(G @ x - h) > feas_tol) or (
            A.shape[0] and np.max(np.abs(A @ x - b)) > feas_tol
        )
        if status is Status.OPTIMAL and infeasible:
            status = Status.NUMERICAL_ERROR

    return SolveResult(
        status=status,
        objective=float(0.5 * x @ Q @ x + q @ x),
        x=x,
        y=np.concatenate([y_eq, y_ineq]),
        s=np.zeros(0),
        iterations=int(getattr(res, "nit", 0)),
        info={"message": res.message, "polished": polished is not None},
    )


def _polish(
    Q: np.ndarray,
    q: np.ndarray,
    G: np.ndarray,
    h: np.ndarray,
    A: np.ndarray,
    b: np.ndarray,
    x: np.ndarray,
    active_tol: float,
    max_rounds: int = 50,
) -> Optional[Tuple[np.ndarray, np.ndarray, np.ndarray]]:
    """
    Refine an approximate QP solution by solving the equality KKT system
    of its active set.

    Constraints with negative multipliers leave the working set and the
    most violated constraint joins it, until the KKT conditions hold.

    Returns:
        (x, y_eq, y_ineq) or None if no KKT point was found
    """
    n, m, p = q.size, h.size, b.size
    active = set(np.flatnonzero(G @ x - h >= -active_tol).tolist()) if m else set()
    tol = max(active_tol, 1e-9)

    for _ in range(max_rounds):
        idx = sorted(active)
        k = len(idx)
        Ga = G[idx] if k else np.zeros((0, n))
        K = np.block([
            [Q, Ga.T, A.T],
            [Ga, np.zeros((k, k)), np.zeros((k, p))],
            [A, np.zeros((p, k)), np.zeros((p, p))],
        ])
        rhs = np.concatenate([-q, h[idx], b])
        sol = np.linalg.lstsq(K, rhs, rcond=None)[0]
        if np.linalg.norm(K @ sol - rhs) > 1e-8 * max(1.0, np.linalg.norm(rhs)):
            return None

        x_p, y_act, y_eq = sol[:n], sol[n:n + k], sol[n + k:]
        violation = G @ x_p - h if m else np.zeros(0)
        if k and y_act.min() < -tol:
            active.discard(idx[int(np.argmin(y_act))])
        elif m and violation.max() > tol:
            active.add(int(np.argmax(violation)))
        else:
            y_ineq = np.zeros(m)
            y_ineq[idx] = np.maximum(y_act, 0.0)
            return x_p, y_eq, y_ineq
    return None


def _estimate_duals(Q, q, G, h, A, x, active_tol) -> Tuple[np.ndarray, np.ndarray]:
    """Least-squares multipliers of the constraints active at ``x``."""
    m = h.size
    y_ineq = np.zeros(m)
    active = np.flatnonzero(G @ x - h >= -active_tol) if m else np.zeros(0, dtype=int)
    M = np.vstack([A, G[active]]).T if (A.shape[0] or active.size) else np.zeros((q.size, 0))
    if M.shape[1] == 0:
        return np.zeros(0), y_ineq
    mult = np.linalg.lstsq(M, -(Q @ x + q), rcond=None)[0]
    y_eq = mult[:A.shape[0]]
    y_ineq[active] = np.maximum(mult[A.shape[0]:], 0.0)
    return y_eq, y_ineq


# =============================================================================
# Conic (SCS)
# =============================================================================

_SCS_STATUS = {
    1: Status.OPTIMAL,
    2: Status.ALMOST_OPTIMAL,
    -1: Status.DUAL_INFEASIBLE,
    -2: Status.INFEASIBLE,
    -6: Status.DUAL_INFEASIBLE,
    -7: Status.INFEASIBLE,
}


def scs_cone_dict(cones: Sequence[Any]) -> Dict[str, Any]:
    """
    Aggregate canonical cones (already in precedence order) into the SCS
    cone dictionary.
    """
    cone_dict: Dict[str, Any] = {"z": 0, "l": 0, "q": [], "s": [], "ep": 0, "ed": 0}
    last = 0
    for cone in cones:
        cone_type = cone.cone_type
        if cone_type < last:
            raise InvalidInputError("cones are not sorted by precedence")
        last = cone_type
        if cone_type == ConeType.ZERO:
            cone_dict["z"] += cone.dimension
        elif cone_type == ConeType.NONNEGATIVE:
            cone_dict["l"] += cone.dimension
        elif cone_type == ConeType.SECOND_ORDER:
            cone_dict["q"].append(cone.dimension)
        elif cone_type == ConeType.PSD_TRIANGLE:
            cone_dict["s"].append(cone.side_dimension)
        elif cone_type == ConeType.EXPONENTIAL:
            cone_dict["ep"] += 1
        else:
            cone_dict["ed"] += 1
    return cone_dict


def solve_conic(
    A: sparse.spmatrix,
    b: np.ndarray,
    c: np.ndarray,
    cones: Sequence[Any],
    P: Optional[sparse.spmatrix] = None,
    params: Optional[Dict[str, Any]] = None,
    warm_start: Optional[Dict[str, np.ndarray]] = None,
) -> SolveResult:
    """
    Solve ``min ½ x'Px + c'x  s.t.  A x + s = b, s in K`` with SCS.

    Args:
        A: Constraint matrix (m, n)
        b: Right-hand side (m,)
        c: Linear cost (n,)
        cones: Canonical cones in precedence order
        P: Quadratic cost (n, n) or None
        params: Solver parameters (see DEFAULT_PARAMS)
        warm_start: Optional dict with any of "x", "y", "s"

    Returns:
        SolveResult with the raw SCS vectors
    """
    import scs

    start_time = time.perf_counter()
    params = _merge_params(SCSBackend.defaults, params)

    A = sparse.csc_matrix(A, dtype=np.float64)
    m, n = A.shape
    if m == 0:
        raise InvalidInputError("SCS needs at least one constraint row")
    b = _as_rhs(b, m, "b")
    c = _as_rhs(c, n, "c")

    data: Dict[str, Any] = {"A": A, "b": b, "c": c}
    if P is not None:
        data["P"] = sparse.triu(sparse.csc_matrix(P, dtype=np.float64), format="csc")
    for key, value in (warm_start or {}).items():
        data[key] = np.asarray(value, dtype=np.float64)

    kwargs: Dict[str, Any] = {
        "eps_abs": params["tolerance"],
        "eps_rel": params["tolerance"],
        "max_iters": int(params["max_iterations"]),
        "verbose": bool(params["verbose"]),
    }
    if params["time_limit"] is not None:
        kwargs["time_limit_secs"] = float(params["time_limit"])

    try:
        raw = scs.solve(data, scs_cone_dict(cones), **kwargs)
    except ValueError as e:
        raise SolverError(f"SCS rejected the problem: {e}") from e

    info = raw["info"]
    status = _SCS_STATUS.get(info.get("status_val"), Status.NUMERICAL_ERROR)
    x = np.asarray(raw["x"], dtype=np.float64)
    objective = float(c @ x)
    if P is not None:
        objective += 0.5 * float(x @ (P @ x))
    return SolveResult(
        status=status,
        objective=objective,
        x=x,
        y=np.asarray(raw["y"], dtype=np.float64),
        s=np.asarray(raw["s"], dtype=np.float64),
        iterations=int(info.get("iter", 0)),
        solve_time=time.perf_counter() - start_time,
        solver_name="scs",
        info=dict(info),
    )


# =============================================================================
# Backends
# =============================================================================


class QPBackend:
    """scipy backend for problems whose cones are all polyhedral."""

    name = "qp"
    defaults: Dict[str, Any] = {}

    def solve(self, form, params: Optional[Dict[str, Any]] = None, warm_start: Optional[np.ndarray] = None) -> SolveResult:
        if not form.is_polyhedral:
            raise UnsupportedConstraintError("the qp backend only handles Zeros/Nonnegatives rows")
        # Zero rows precede nonnegative rows in the stacked form
        A = form.A.tocsr()
        eq = sum(cone.dimension for cone in form.cones if cone.cone_type == ConeType.ZERO)
        return solve_qp(
            form.c,
            G=A[eq:],
            h=form.b[eq:],
            A=A[:eq],
            b=form.b[:eq],
            Q=form.P,
            params=params,
            x0=warm_start,
        )


class SCSBackend:
    """
    SCS backend.

    Keeps the raw conic data and solution of its last solve so the conic
    backward pass can read them back.
    """

    name = "scs"
    defaults: Dict[str, Any] = {"max_iterations": 100000, "tolerance": 1e-9}
    cone_precedence = CONE_PRECEDENCE

    def __init__(self) -> None:
        self._data: Optional[Tuple[sparse.csc_matrix, np.ndarray, np.ndarray, List[Any]]] = None
        self._solution: Optional[Tuple[np.ndarray, np.ndarray, np.ndarray]] = None

    def solve(self, form, params: Optional[Dict[str, Any]] = None, warm_start: Optional[np.ndarray] = None) -> SolveResult:
        start = None
        if warm_start is not None:
            start = {"x": warm_start, "y": np.zeros(form.m), "s": np.zeros(form.m)}
        result = solve_conic(
            form.A,
            form.b,
            form.c,
            form.cones,
            P=form.P,
            params=params,
            warm_start=start,
        )
        self._data = (form.A.copy(), form.b.copy(), form.c.copy(), list(form.cones))
        self._solution = (result.x.copy(), result.y.copy(), result.s.copy())
        return result

    def raw_conic_data(self) -> Tuple[sparse.csc_matrix, np.ndarray, np.ndarray, List[Any]]:
        """(A, b, c, cones) as last passed to SCS."""
        if self._data is None:
            raise IntrospectionError("scs backend has not solved a problem")
        return self._data

    def raw_solution(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """(x, y, s) as last returned by SCS."""
        if self._solution is None:
            raise IntrospectionError("scs backend has not solved a problem")
        return self._solution


_BACKENDS = {"qp": QPBackend, "scs": SCSBackend}


def get_backend(name: str) -> Union[QPBackend, SCSBackend, None]:
    """
    Instantiate the backend called ``name``.

    "auto" is accepted and returns None; the choice is made per problem by
    :func:`select_backend`.
    """
    if name == "auto":
        return None
    if name not in _BACKENDS:
        raise InvalidInputError(f"unknown solver {name!r}, expected one of auto, {', '.join(_BACKENDS)}")
    return _BACKENDS[name]()


def select_backend(name: str, form) -> Union[QPBackend, SCSBackend]:
    """Resolve "auto" to the qp backend for polyhedral forms, scs otherwise."""
    if name == "auto":
        name = "qp" if form.is_polyhedral else "scs"
    return get_backend(name)
