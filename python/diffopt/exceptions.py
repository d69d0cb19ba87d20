"""
diffopt Exception Classes
=========================

Custom exceptions for diffopt error handling.
"""

from typing import Optional


class DiffOptError(Exception):
    """Base exception for all diffopt errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class UnsupportedStatusError(DiffOptError):
    """
    Raised when a backward pass is requested without a valid solution.

    Sensitivities are only defined at an optimum, so the backward passes
    refuse to run unless the last solve terminated as optimal, locally
    optimal or almost optimal.
    """

    def __init__(
        self,
        message: str = "No differentiable solution available",
        status: Optional[object] = None,
    ) -> None:
        self.status = status
        super().__init__(message)


class IntrospectionError(DiffOptError):
    """
    Raised when the solving backend cannot expose raw conic data.

    The conic backward pass needs the backend's (A, b, c), its cone
    ordering and its raw dual/slack vectors.
    """

    def __init__(self, message: str) -> None:
        super().__init__(f"Backend introspection failed: {message}")


class UnsupportedConstraintError(DiffOptError):
    """
    Raised when a (function, set) pair is outside the supported family,
    or when an engine cannot handle a cone present in the model.
    """

    def __init__(self, message: str) -> None:
        super().__init__(f"Unsupported constraint: {message}")


class SolverError(DiffOptError):
    """
    Raised when a backend fails to produce any result at all.

    Ordinary non-optimal terminations are reported through the status,
    not through this exception.
    """

    def __init__(self, message: str = "Solver failed") -> None:
        super().__init__(message)


class DimensionError(DiffOptError):
    """
    Raised when matrix/vector dimensions are incompatible.
    """

    def __init__(self, message: str) -> None:
        super().__init__(f"Dimension mismatch: {message}")


class InvalidInputError(DiffOptError):
    """
    Raised when input data is invalid.

    Examples: NaN values, empty parameter requests, quadratic objective
    passed to the conic engine.
    """

    def __init__(self, message: str) -> None:
        super().__init__(f"Invalid input: {message}")
