"""
Metrics Utilities for Gaussian Graphical Models

This module provides the quantities used by the EM driver and the
model-selection layer: parameter change, edge counts, pairwise sample
size, EBIC, partial correlations and a monotonicity check.

Example usage:
    >>> change = max_abs_change(p_old, p_new)
    >>> E = count_edges(K, zero_tol=1e-10)
    >>> graph = partial_correlation(K)
"""

import numpy as np
from typing import List, Tuple

from emgaussian.utils.linalg import cov2cor, symmetrize


def max_abs_change(p_old: np.ndarray, p_new: np.ndarray) -> float:
    """
    L-infinity norm of the change between two parameter vectors.

    Args:
        p_old: Previous flattened parameters.
        p_new: New flattened parameters.

    Returns:
        max |p_new - p_old|.
    """
    p_old = np.asarray(p_old, dtype=float)
    p_new = np.asarray(p_new, dtype=float)
    if p_old.shape != p_new.shape:
        raise ValueError(f"Parameter shapes differ: {p_old.shape} vs {p_new.shape}")
    if p_old.size == 0:
        return 0.0
    return float(np.max(np.abs(p_new - p_old)))


def count_edges(K: np.ndarray, zero_tol: float = 1e-10) -> int:
    """
    Number of edges in the graph implied by a precision matrix.

    Counts strictly-lower-triangular entries with |K_ij| > zero_tol.

    Example:
        >>> K = np.array([[1.0, 0.3, 0.0], [0.3, 1.0, 0.0], [0.0, 0.0, 1.0]])
        >>> count_edges(K)
        1
    """
    rows, cols = np.tril_indices(K.shape[0], k=-1)
    return int(np.sum(np.abs(K[rows, cols]) > zero_tol))


def pairwise_sample_size(X: np.ndarray, include_diagonal: bool = False) -> float:
    """
    Average number of rows in which each pair of variables is observed.

    With M the observed-indicator matrix, returns the mean of the strictly
    lower triangle of M'M. With include_diagonal=True the per-variable counts
    (the diagonal) are also averaged in, as some network packages do.

    Args:
        X: Data matrix with NaN for missing values.
        include_diagonal: Whether to include the diagonal of M'M.

    Returns:
        Average pairwise sample size. For a single variable, its count.
    """
    M = (~np.isnan(np.asarray(X, dtype=float))).astype(float)
    counts = M.T @ M
    p = counts.shape[0]
    if p == 1:
        return float(counts[0, 0])
    k = 0 if include_diagonal else -1
    rows, cols = np.tril_indices(p, k=k)
    return float(np.mean(counts[rows, cols]))


def ebic_score(
    nll: float,
    n_edges: int,
    n: float,
    p: int,
    gamma: float = 0.5
) -> float:
    """
    Extended BIC for a Gaussian graphical model.

        EBIC = 2 nll + E log N + 4 γ E log P

    Args:
        nll: Missing-data negative log-likelihood.
        n_edges: Number of non-zero off-diagonal precision entries (E).
        n: Sample size (N).
        p: Number of variables (P).
        gamma: EBIC hyperparameter.

    Returns:
        EBIC value (lower is better).
    """
    return float(2.0 * nll + n_edges * np.log(n) + 4.0 * gamma * n_edges * np.log(p))


def partial_correlation(K: np.ndarray) -> np.ndarray:
    """
    Partial-correlation network from a precision matrix.

    Returns -cov2cor(K) with a zero diagonal, symmetrized.

    Example:
        >>> K = np.array([[2.0, -1.0], [-1.0, 2.0]])
        >>> partial_correlation(K)
        array([[0. , 0.5],
               [0.5, 0. ]])
    """
    pcor = -cov2cor(np.asarray(K, dtype=float))
    np.fill_diagonal(pcor, 0.0)
    return symmetrize(pcor)


def check_monotonicity(
    nll_history: List[float],
    tol: float = 1e-8
) -> Tuple[bool, List[int]]:
    """
    Check that a negative log-likelihood sequence never increases.

    Unregularized EM should decrease the NLL monotonically. This function
    checks for violations and returns their locations.

    Args:
        nll_history: List of negative log-likelihood values.
        tol: Increases smaller than tol are ignored.

    Returns:
        Tuple of:
            - is_monotonic: True if no violations found
            - violations: List of indices where the NLL increased

    Example:
        >>> is_mono, violations = check_monotonicity([100.0, 95.0, 96.0, 90.0])
        >>> print(f"Monotonic: {is_mono}, Violations at: {violations}")
        Monotonic: False, Violations at: [2]
    """
    if len(nll_history) < 2:
        return True, []

    history = np.asarray(nll_history, dtype=float)
    violations = [i for i in range(1, len(history)) if history[i] > history[i - 1] + tol]

    return len(violations) == 0, violations
