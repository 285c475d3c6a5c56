"""Input validation utilities."""

from typing import Any, Optional, Tuple

import numpy as np

from ..exceptions import DimensionError, InvalidInputError


def as_matrix(
    name: str,
    value: Any,
    shape: Optional[Tuple[int, int]] = None,
) -> np.ndarray:
    """
    Convert ``value`` to a finite float64 matrix.

    Scalars are promoted to 1x1 matrices.

    Raises:
        DimensionError: If the result is not 2D or does not match ``shape``
        InvalidInputError: If the matrix contains NaN or inf
    """
    matrix = np.atleast_2d(np.asarray(value, dtype=np.float64))
    if matrix.ndim != 2:
        raise DimensionError(f"{name} must be 2D, got shape {matrix.shape}")
    if shape is not None and matrix.shape != shape:
        raise DimensionError(f"{name} has shape {matrix.shape}, expected {shape}")
    if not np.all(np.isfinite(matrix)):
        raise InvalidInputError(f"{name} contains NaN or inf values")
    return matrix


def as_vector(name: str, value: Any, size: Optional[int] = None) -> np.ndarray:
    """
    Convert ``value`` to a finite 1D float64 vector.

    Column vectors (n, 1) are flattened.
    """
    vector = np.asarray(value, dtype=np.float64)
    if vector.ndim == 2 and 1 in vector.shape:
        vector = vector.ravel()
    if vector.ndim != 1:
        raise DimensionError(f"{name} must be 1D, got shape {vector.shape}")
    if size is not None and len(vector) != size:
        raise DimensionError(f"{name} has {len(vector)} elements, expected {size}")
    if not np.all(np.isfinite(vector)):
        raise InvalidInputError(f"{name} contains NaN or inf values")
    return vector


def validate_costs(
    terminal_cost: np.ndarray,
    stage_cost: np.ndarray,
    input_cost: np.ndarray,
    tol: float = 1e-9,
) -> Tuple[bool, str]:
    """
    Validate LQR cost matrices.

    Checks that the shapes agree, that each matrix is symmetric and that
    no eigenvalue is negative beyond ``tol``. The input cost may be
    singular; the recursion degrades gracefully in that case.

    Returns:
        (is_valid, error_message) tuple
    """
    n = stage_cost.shape[0]
    if stage_cost.shape != (n, n):
        return False, f"stage cost must be square, got {stage_cost.shape}"
    if terminal_cost.shape != (n, n):
        return False, (
            f"terminal cost has shape {terminal_cost.shape}, expected {(n, n)}"
        )
    m = input_cost.shape[0]
    if input_cost.shape != (m, m):
        return False, f"input cost must be square, got {input_cost.shape}"

    for name, matrix in (
        ("terminal cost", terminal_cost),
        ("stage cost", stage_cost),
        ("input cost", input_cost),
    ):
        scale = max(1.0, float(np.abs(matrix).max()))
        if not np.allclose(matrix, matrix.T, atol=tol * scale):
            return False, f"{name} is not symmetric"
        if np.linalg.eigvalsh(matrix).min() < -tol * scale:
            return False, f"{name} is not positive semidefinite"

    return True, ""
