"""Shared helpers: validation, dense linear algebra, timing."""

from .linalg import embed, invert, project_psd, symmetrize
from .timing import TimeProfiler
from .validation import as_matrix, as_vector, validate_costs

__all__ = [
    "as_matrix",
    "as_vector",
    "validate_costs",
    "invert",
    "symmetrize",
    "project_psd",
    "embed",
    "TimeProfiler",
]
