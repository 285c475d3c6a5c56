"""
Small dense linear-algebra helpers shared by the solvers.
"""

from typing import Sequence

import numpy as np

# Reciprocal condition number below which a matrix is treated as singular.
SINGULAR_RCOND = 1e-12


def invert(matrix: np.ndarray, rcond: float = SINGULAR_RCOND) -> np.ndarray:
    """
    Invert a small square matrix, refusing ill-conditioned ones.

    ``np.linalg.inv`` only raises for exactly singular input; a Riccati step
    needs to reject nearly singular ones as well, otherwise the gains blow up
    instead of degrading.

    Raises:
        np.linalg.LinAlgError: If the matrix is singular to ``rcond``
    """
    singular_values = np.linalg.svd(matrix, compute_uv=False)
    largest = singular_values[0] if len(singular_values) else 0.0
    if not np.isfinite(largest) or largest == 0.0:
        raise np.linalg.LinAlgError("Singular matrix")
    if singular_values[-1] < rcond * largest:
        raise np.linalg.LinAlgError(
            f"Ill-conditioned matrix (rcond {singular_values[-1] / largest:.2e})"
        )
    return np.linalg.inv(matrix)


def symmetrize(matrix: np.ndarray) -> np.ndarray:
    """Return the symmetric part of a square matrix."""
    return 0.5 * (matrix + matrix.T)


def project_psd(matrix: np.ndarray) -> np.ndarray:
    """
    Project a symmetric matrix onto the positive semidefinite cone.

    Eigen-decomposes the symmetric part and clamps negative eigenvalues to
    zero (the Frobenius-nearest PSD matrix).
    """
    eigenvalues, eigenvectors = np.linalg.eigh(symmetrize(matrix))
    clamped = np.maximum(eigenvalues, 0.0)
    return symmetrize((eigenvectors * clamped) @ eigenvectors.T)


def embed(
    block: np.ndarray,
    indices: Sequence[int],
    size: int,
) -> np.ndarray:
    """
    Place a k x k block (or length-k vector) into a zero n x n matrix
    (or length-n vector) at the given state indices.
    """
    index = np.asarray(indices, dtype=int)
    if block.ndim == 1:
        out = np.zeros(size)
        out[index] = block
        return out
    out = np.zeros((size, size))
    out[np.ix_(index, index)] = block
    return out
