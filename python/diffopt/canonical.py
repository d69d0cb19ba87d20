"""
diffopt Problem Canonicalizer
=============================

Converts the model store into the two canonical forms the sensitivity
engines work with.

Conic form (SCS layout)::

    minimize    (1/2) x'Px + c'x
    subject to  A x + s = b,  s in K

with the cones of K stacked in a fixed precedence (zero, nonnegative,
second-order, PSD, exponential, dual exponential).

QP form::

    minimize    (1/2) z'Qz + q'z
    subject to  G z <= h      (the nonnegative rows)
                A z == b      (the zero rows)

Row orientation. Each constraint ``f(x) in S`` becomes rows ``s = b - A x``
with ``s = f(x)`` shifted to the cone of S, except for LessThan,
Nonpositives and the upper half of an Interval, where ``s = -f(x)``.
Equality rows keep ``A = F`` so that ``A z == b`` reads like the model.
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Sequence, Tuple, Union

import numpy as np
from scipy import sparse

from .exceptions import DimensionError, UnsupportedConstraintError, UnsupportedStatusError
from .logging import get_logger
from .sets import (
    POLYHEDRAL_CONES,
    ConeType,
    EqualTo,
    GreaterThan,
    Interval,
    LessThan,
    Nonpositives,
    Zeros,
    cone_precedence,
)

if TYPE_CHECKING:
    from .model import Constraint, Model

logger = get_logger(__name__)


@dataclass
class ConstraintRows:
    """
    Placement of one constraint inside the stacked conic form.

    Attributes:
        index: Stable constraint identifier
        cone: Canonical cone of the block
        start: First conic row of the block
        signs: +1 where s = f(x) - shift, -1 where s = shift - f(x)
    """

    index: int
    cone: Any
    start: int
    signs: np.ndarray

    @property
    def stop(self) -> int:
        return self.start + self.cone.dimension

    @property
    def rows(self) -> slice:
        return slice(self.start, self.stop)


@dataclass
class ConicForm:
    """
    Canonical conic data of a model.

    Attributes:
        A: Constraint matrix (m, n), CSC
        b: Right-hand side (m,)
        c: Linear cost (n,)
        P: Quadratic cost (n, n) or None for a linear objective
        offset: Objective constant
        cones: Canonical cone of each block, in stacking order
        blocks: Row placement of each constraint, same order as ``cones``
        variables: Variable identifiers in column order
    """

    A: sparse.csc_matrix
    b: np.ndarray
    c: np.ndarray
    P: Any = None
    offset: float = 0.0
    cones: List[Any] = field(default_factory=list)
    blocks: List[ConstraintRows] = field(default_factory=list)
    variables: List[int] = field(default_factory=list)

    @property
    def m(self) -> int:
        return self.A.shape[0]

    @property
    def n(self) -> int:
        return self.A.shape[1]

    @property
    def is_polyhedral(self) -> bool:
        return all(cone.cone_type in POLYHEDRAL_CONES for cone in self.cones)

    @property
    def column(self) -> Dict[int, int]:
        """Map variable identifier -> column."""
        return {idx: j for j, idx in enumerate(self.variables)}

    def split(self, vec: np.ndarray) -> Dict[int, np.ndarray]:
        """Split a conic row vector into per-constraint blocks."""
        vec = np.asarray(vec, dtype=np.float64)
        if vec.size != self.m:
            raise DimensionError(f"expected {self.m} conic rows, got {vec.size}")
        return {block.index: vec[block.rows].copy() for block in self.blocks}

    def stack(self, blocks: Dict[int, np.ndarray]) -> np.ndarray:
        """Inverse of :meth:`split`."""
        vec = np.zeros(self.m)
        for block in self.blocks:
            if block.index not in blocks:
                raise DimensionError(f"no stored values for constraint {block.index}")
            vec[block.rows] = blocks[block.index]
        return vec


@dataclass
class QPForm:
    """
    Canonical QP data with the matching Solution Point.

    ``lam`` and ``nu`` follow the sign convention of the KKT system:
    ``lam = -y`` on the inequality rows (so ``lam <= 0``) and
    ``nu = -y`` on the equality rows, ``y`` being the conic dual.
    """

    Q: sparse.csr_matrix
    q: np.ndarray
    G: sparse.csr_matrix
    h: np.ndarray
    A: sparse.csr_matrix
    b: np.ndarray
    z: np.ndarray
    lam: np.ndarray
    nu: np.ndarray
    variables: List[int] = field(default_factory=list)

    @property
    def n(self) -> int:
        return self.q.size

    @property
    def m_ineq(self) -> int:
        return self.h.size

    @property
    def m_eq(self) -> int:
        return self.b.size


def split_by_cones(vec: np.ndarray, cones: Sequence[Any]) -> List[np.ndarray]:
    """
    Split ``vec`` into consecutive blocks sized by ``cones``.

    Args:
        vec: Stacked vector
        cones: Cones (anything with a ``dimension``) in stacking order

    Returns:
        One array per cone
    """
    vec = np.asarray(vec, dtype=np.float64)
    sizes = [cone.dimension for cone in cones]
    if sum(sizes) != vec.size:
        raise DimensionError(f"cones cover {sum(sizes)} rows, vector has {vec.size}")
    return np.split(vec, np.cumsum(sizes)[:-1]) if sizes else []


def _orient(s: Any, rows: List[Tuple[Dict[int, float], float]]) -> Tuple[List[Tuple[Dict[int, float], float]], np.ndarray]:
    """
    Turn function rows ``f(x) = F x + g`` into conic rows ``(A_i, b_i)``.

    Returns the conic rows and the sign of each row.
    """
    out = []
    signs = []

    def _add(terms: Dict[int, float], rhs: float, sign: float) -> None:
        out.append(({k: -sign * v for k, v in terms.items()}, rhs))
        signs.append(sign)

    if isinstance(s, GreaterThan):
        terms, g = rows[0]
        _add(terms, g - s.lower, 1.0)
    elif isinstance(s, LessThan):
        terms, g = rows[0]
        _add(terms, s.upper - g, -1.0)
    elif isinstance(s, EqualTo):
        terms, g = rows[0]
        _add(terms, s.value - g, -1.0)
    elif isinstance(s, Interval):
        terms, g = rows[0]
        _add(terms, g - s.lower, 1.0)
        _add(terms, s.upper - g, -1.0)
    elif isinstance(s, (Zeros, Nonpositives)):
        for terms, g in rows:
            _add(terms, -g, -1.0)
    else:
        for terms, g in rows:
            _add(terms, g, 1.0)
    return out, np.array(signs)


def conic_form(model: "Model") -> ConicForm:
    """
    Build the conic form of ``model``.

    Constraints are sorted by cone precedence; the sort is stable, so
    constraints on the same cone keep their insertion order. For a
    maximization the objective is negated.

    Args:
        model: Model store

    Returns:
        ConicForm with the row placement of every constraint
    """
    from .model import QuadExpr, function_rows

    variables = [var.index for var in model.variables]
    column = {idx: j for j, idx in enumerate(variables)}
    n = len(variables)

    ordered = sorted(model.constraints, key=lambda c: cone_precedence(c.set))

    rows, cols, vals = [], [], []
    b: List[float] = []
    cones: List[Any] = []
    blocks: List[ConstraintRows] = []
    for constr in ordered:
        conic_rows, signs = _orient(constr.set, function_rows(constr.function))
        cone = constr.set.canonical()
        blocks.append(ConstraintRows(constr.index, cone, len(b), signs))
        cones.append(cone)
        for terms, rhs in conic_rows:
            for idx, coef in terms.items():
                rows.append(len(b))
                cols.append(column[idx])
                vals.append(coef)
            b.append(rhs)

    m = len(b)
    A = sparse.csc_matrix((vals, (rows, cols)), shape=(m, n))
    A.sum_duplicates()

    sign = -1.0 if model.sense == "maximize" else 1.0
    obj = model.objective
    linear = obj.linear if isinstance(obj, QuadExpr) else obj
    c = np.zeros(n)
    for idx, coef in linear.terms.items():
        c[column[idx]] += sign * coef

    P = None
    if isinstance(obj, QuadExpr) and obj.quad_terms:
        prow, pcol, pval = [], [], []
        for (i, j), coef in obj.quad_terms.items():
            ci, cj = column[i], column[j]
            if ci == cj:
                prow.append(ci)
                pcol.append(ci)
                pval.append(2.0 * sign * coef)
            else:
                prow.extend((ci, cj))
                pcol.extend((cj, ci))
                pval.extend((sign * coef, sign * coef))
        P = sparse.csc_matrix((pval, (prow, pcol)), shape=(n, n))
        P.sum_duplicates()

    return ConicForm(
        A=A,
        b=np.array(b, dtype=np.float64),
        c=c,
        P=P,
        offset=sign * linear.constant,
        cones=cones,
        blocks=blocks,
        variables=variables,
    )


def report_dual(constr: "Constraint", y_block: np.ndarray) -> Union[float, np.ndarray]:
    """
    Convert a conic dual block into the convention of the constraint's set.

    Interval constraints report the sum of their two oriented rows.
    """
    _, signs = _orient(constr.set, [({}, 0.0)] * max(constr.set.dimension, 1))
    if isinstance(constr.set, Interval):
        return float(np.dot(signs, y_block))
    values = signs * y_block
    return float(values[0]) if not isinstance(constr.function, tuple) else values


def qp_form(model: "Model") -> QPForm:
    """
    Build the QP form of ``model`` and attach its Solution Point.

    Raises:
        UnsupportedStatusError: If the last solve is not differentiable
        UnsupportedConstraintError: If a cone is not polyhedral
    """
    if not model.status.is_differentiable:
        raise UnsupportedStatusError(f"problem status: {model.status}", model.status)

    form = conic_form(model)
    for block in form.blocks:
        if block.cone.cone_type not in POLYHEDRAL_CONES:
            raise UnsupportedConstraintError(
                f"{type(block.cone).__name__} rows cannot enter the QP form"
            )

    eq_rows = [i for blk in form.blocks if blk.cone.cone_type == ConeType.ZERO for i in range(blk.start, blk.stop)]
    ineq_rows = [i for blk in form.blocks if blk.cone.cone_type == ConeType.NONNEGATIVE for i in range(blk.start, blk.stop)]

    A = form.A.tocsr()
    try:
        z = np.array([model.primal_optimal[idx] for idx in form.variables])
        y = form.stack(model.dual_optimal)
    except KeyError as e:
        raise DimensionError(f"no stored primal value for variable {e.args[0]}") from e

    Q = form.P.tocsr() if form.P is not None else sparse.csr_matrix((form.n, form.n))
    logger.debug("QP form: n=%d, inequalities=%d, equalities=%d", form.n, len(ineq_rows), len(eq_rows))
    return QPForm(
        Q=Q,
        q=form.c.copy(),
        G=A[ineq_rows],
        h=form.b[ineq_rows],
        A=A[eq_rows],
        b=form.b[eq_rows],
        z=z,
        lam=-y[ineq_rows],
        nu=-y[eq_rows],
        variables=form.variables,
    )
