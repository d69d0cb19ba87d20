"""Input validation utilities."""

from typing import Any, Tuple

import numpy as np
from scipy import sparse

from ..exceptions import DimensionError, InvalidInputError


def as_vector(v: Any, size: int, name: str) -> np.ndarray:
    """
    Convert ``v`` to a flat float vector of length ``size``.

    Raises:
        DimensionError: If the length is wrong
        InvalidInputError: If ``v`` contains NaN values
    """
    v = np.asarray(v, dtype=np.float64).ravel()
    if v.size != size:
        raise DimensionError(f"{name} has {v.size} elements, expected {size}")
    if np.any(np.isnan(v)):
        raise InvalidInputError(f"{name} contains NaN values")
    return v


def validate_perturbation(
    dA: Any,
    db: np.ndarray,
    dc: np.ndarray,
    m: int,
    n: int,
) -> Tuple[bool, str]:
    """
    Validate a perturbation (dA, db, dc) of conic data with A of shape (m, n).

    Returns:
        (is_valid, error_message) tuple
    """
    try:
        shape = dA.shape if sparse.issparse(dA) else np.shape(dA)
        if tuple(shape) != (m, n):
            return False, f"dA has shape {tuple(shape)}, expected ({m}, {n})"

        if np.size(db) != m:
            return False, f"db has {np.size(db)} elements, expected {m}"

        if np.size(dc) != n:
            return False, f"dc has {np.size(dc)} elements, expected {n}"

        values = dA.data if sparse.issparse(dA) else np.asarray(dA, dtype=np.float64)
        if np.any(np.isnan(values)):
            return False, "dA contains NaN values"

        if np.any(np.isnan(np.asarray(db, dtype=np.float64))):
            return False, "db contains NaN values"

        if np.any(np.isnan(np.asarray(dc, dtype=np.float64))):
            return False, "dc contains NaN values"

        return True, ""

    except (TypeError, ValueError) as e:
        return False, str(e)
