"""
Cone projection oracle.

Thin adapter over diffcp: Euclidean projection onto a
product of cones (or of their duals) through :mod:`diffcp.cones` and the
derivative of that projection through the compiled ``_diffcp.dprojection``,
materialized as a sparse block-diagonal matrix.
"""

from typing import Any, List, Sequence, Tuple

import diffcp._diffcp as _diffcp
import diffcp.cones as cone_lib
import numpy as np
from scipy import sparse

from .canonical import split_by_cones
from .exceptions import DimensionError, UnsupportedConstraintError
from .sets import ConeType

_ORACLE_KEYS = {
    ConeType.ZERO: cone_lib.ZERO,
    ConeType.NONNEGATIVE: cone_lib.POS,
    ConeType.SECOND_ORDER: cone_lib.SOC,
    ConeType.PSD_TRIANGLE: cone_lib.PSD,
    ConeType.EXPONENTIAL: cone_lib.EXP,
    ConeType.DUAL_EXPONENTIAL: cone_lib.EXP_DUAL,
}


def _oracle_cones(cones: Sequence[Any]) -> List[Tuple[str, Any]]:
    """Translate canonical cones into the oracle's (key, size) list."""
    out: List[Tuple[str, Any]] = []
    for cone in cones:
        cone_type = getattr(cone, "cone_type", None)
        if cone_type not in _ORACLE_KEYS:
            raise UnsupportedConstraintError(f"no projection for {type(cone).__name__}")
        key = _ORACLE_KEYS[cone_type]
        if cone_type in (ConeType.ZERO, ConeType.NONNEGATIVE):
            out.append((key, cone.dimension))
        elif cone_type == ConeType.SECOND_ORDER:
            out.append((key, [cone.dimension]))
        elif cone_type == ConeType.PSD_TRIANGLE:
            out.append((key, [cone.side_dimension]))
        else:
            out.append((key, 1))
    return out


def _check_size(cones: Sequence[Any], v: np.ndarray) -> None:
    total = sum(cone.dimension for cone in cones)
    if total != v.size:
        raise DimensionError(f"cones cover {total} rows, vector has {v.size}")


def project(cones: Sequence[Any], v: np.ndarray, dual: bool = False) -> np.ndarray:
    """
    Project ``v`` onto the product of ``cones`` (or of their duals).

    Args:
        cones: Canonical cones in stacking order
        v: Stacked vector
        dual: Project onto the dual cones instead

    Returns:
        Projected vector, same shape as ``v``
    """
    v = np.asarray(v, dtype=np.float64)
    _check_size(cones, v)
    if not cones:
        return v.copy()
    return cone_lib.pi(v, _oracle_cones(cones), dual=dual)


def project_gradient(cones: Sequence[Any], v: np.ndarray, dual: bool = False) -> sparse.csc_matrix:
    """
    Jacobian of :func:`project` at ``v``.

    The compiled oracle returns a linear operator per cone; each block is
    turned into a dense matrix and the blocks are assembled
    block-diagonally.
    """
    v = np.asarray(v, dtype=np.float64)
    _check_size(cones, v)
    if not cones:
        return sparse.csc_matrix((0, 0))
    blocks = []
    for cone, block in zip(cones, split_by_cones(v, cones)):
        parsed = cone_lib.parse_cone_dict_cpp(_oracle_cones([cone]))
        op = _diffcp.dprojection(block, parsed, dual)
        basis = np.eye(block.size)
        blocks.append(np.column_stack([op.matvec(e) for e in basis]))
    return sparse.block_diag(blocks, format="csc")
