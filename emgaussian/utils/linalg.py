"""
Linear Algebra Helpers

Small wrappers used throughout the EM engine: symmetrization, checked
inversion, and half-vectorization of symmetric matrices.

Example usage:
    >>> K = safe_inv(S)
    >>> p = vechr(K)
    >>> assert np.allclose(vechr_reverse(p), K)
"""

import numpy as np
from scipy import linalg
from typing import Tuple

from emgaussian.exceptions import SingularMatrixError


def symmetrize(A: np.ndarray) -> np.ndarray:
    """Return (A + A.T) / 2."""
    return (A + A.T) / 2.0


def safe_inv(A: np.ndarray, what: str = "matrix") -> np.ndarray:
    """
    Invert a square matrix, raising SingularMatrixError on failure.

    scipy only raises for exactly singular input, so the result is
    also checked for non-finite entries.

    Args:
        A: Square matrix to invert.
        what: Name used in the error message.

    Returns:
        Inverse of A.

    Raises:
        SingularMatrixError: If A is singular or the inverse is not finite.
    """
    if A.size == 0:
        return np.zeros_like(A)
    try:
        A_inv = linalg.inv(A)
    except (linalg.LinAlgError, ValueError) as e:
        raise SingularMatrixError(f"{what} is singular: {e}") from e
    if not np.all(np.isfinite(A_inv)):
        raise SingularMatrixError(f"{what} is numerically singular")
    return A_inv


def safe_cholesky(A: np.ndarray, what: str = "matrix") -> Tuple[np.ndarray, bool]:
    """
    Cholesky factorization for use with scipy.linalg.cho_solve.

    Args:
        A: Symmetric positive-definite matrix.
        what: Name used in the error message.

    Returns:
        (c, lower) pair as returned by scipy.linalg.cho_factor.

    Raises:
        SingularMatrixError: If A is not positive definite.
    """
    try:
        return linalg.cho_factor(A, lower=True, check_finite=True)
    except (linalg.LinAlgError, ValueError) as e:
        raise SingularMatrixError(f"{what} is not positive definite: {e}") from e


def is_positive_definite(A: np.ndarray) -> bool:
    """Check positive definiteness via Cholesky."""
    try:
        linalg.cholesky(A, lower=True)
        return True
    except (linalg.LinAlgError, ValueError):
        return False


def vechr(A: np.ndarray) -> np.ndarray:
    """
    Row-wise half-vectorization of a symmetric matrix.

    Stacks the lower triangle (diagonal included) row by row:
    A[0,0], A[1,0], A[1,1], A[2,0], ...

    Args:
        A: Square matrix of shape (p, p).

    Returns:
        Vector of length p * (p + 1) / 2.
    """
    rows, cols = np.tril_indices(A.shape[0])
    return A[rows, cols]


def vechr_reverse(v: np.ndarray) -> np.ndarray:
    """
    Rebuild a symmetric matrix from its row-wise half-vectorization.

    Args:
        v: Vector of length p * (p + 1) / 2.

    Returns:
        Symmetric matrix of shape (p, p).

    Raises:
        ValueError: If len(v) is not a triangular number.
    """
    v = np.asarray(v, dtype=float)
    p = int(round((np.sqrt(8 * v.size + 1) - 1) / 2))
    if p * (p + 1) // 2 != v.size:
        raise ValueError(f"Length {v.size} is not a triangular number")
    A = np.zeros((p, p))
    rows, cols = np.tril_indices(p)
    A[rows, cols] = v
    A[cols, rows] = v
    return A


def cov2cor(S: np.ndarray) -> np.ndarray:
    """Scale a covariance-like matrix to unit diagonal."""
    d = np.sqrt(np.diag(S))
    return S / np.outer(d, d)
