"""Helper utilities shared by the sensitivity engines."""

from .validation import as_vector, validate_perturbation

__all__ = ["as_vector", "validate_perturbation"]
