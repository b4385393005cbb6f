"""
Tuning-Parameter Grids

Helpers to build and validate the grid of L1 tuning parameters (rho).

Two construction methods are available:
- 'qgraph': log-spaced from rho_min_ratio * rho_max to rho_max, where
  rho_max = max |S - I| (the largest deviation of S from identity)
- 'glassopath': linearly spaced from max|S| / n_rho to max|S|

Example usage:
    >>> rho = rho_grid(50, method='qgraph', X=X)
    >>> rho = validate_grid([0.0, 0.05, 0.1])
"""

import warnings
from typing import Any, Optional, Sequence

import numpy as np

from emgaussian.exceptions import InvalidGridValueError, NonConvergenceWarning


def validate_grid(rho: Any) -> np.ndarray:
    """
    Check a tuning-parameter grid; order is preserved.

    Args:
        rho: Scalar or sequence of tuning parameters.

    Returns:
        1-D float array.

    Raises:
        InvalidGridValueError: If the grid is empty, or any value is
                               negative, NaN or infinite.
    """
    try:
        grid = np.atleast_1d(np.asarray(rho, dtype=float))
    except (TypeError, ValueError) as e:
        raise InvalidGridValueError(f"rho must be numeric: {e}") from e

    if grid.ndim != 1:
        raise InvalidGridValueError(f"rho must be a scalar or 1-D sequence, got shape {grid.shape}")
    if grid.size == 0:
        raise InvalidGridValueError("rho grid is empty")

    bad = np.flatnonzero(~np.isfinite(grid) | (grid < 0))
    if bad.size > 0:
        raise InvalidGridValueError(
            f"rho values must be finite and non-negative; invalid at position(s) "
            f"{bad.tolist()}: {grid[bad].tolist()}"
        )
    return grid


def rho_grid(
    n_rho: int,
    method: str = 'qgraph',
    rho_min_ratio: float = 0.01,
    X: Optional[Any] = None,
    S: Optional[np.ndarray] = None,
    **em_options
) -> np.ndarray:
    """
    Create a sequence of candidate tuning-parameter values.

    Args:
        n_rho: Number of values.
        method: 'qgraph' or 'glassopath'.
        rho_min_ratio: Ratio of smallest to largest value ('qgraph' only).
        X: Raw data; used to estimate S with em_cov when S is not given.
        S: Covariance estimate; takes precedence over X.
        **em_options: EMConfig overrides for the em_cov fit.

    Returns:
        Increasing array of n_rho tuning parameters.

    Raises:
        ValueError: If neither X nor S is given, or method is unknown.

    Example:
        >>> rho_grid(3, method='glassopath', S=np.array([[2.0, 0.5], [0.5, 1.0]]))
        array([0.66666667, 1.33333333, 2.        ])
    """
    if n_rho < 1:
        raise ValueError(f"n_rho must be positive, got {n_rho}")
    if method not in ('qgraph', 'glassopath'):
        raise ValueError(f"Unknown grid method '{method}'; use 'qgraph' or 'glassopath'")
    if S is None and X is None:
        raise ValueError("Either provide raw data (X) or an estimate of the covariance matrix (S)")

    if S is None:
        from emgaussian.algorithms.em_driver import em_cov

        saturated = em_cov(X, **em_options)
        if not saturated['converged']:
            warnings.warn("Estimation of covariance matrix may not have converged.",
                          NonConvergenceWarning)
        S = saturated['S']

    S = np.asarray(S, dtype=float)

    if method == 'qgraph':
        deviation = S - np.eye(S.shape[0])
        rho_max = max(deviation.max(), -deviation.min())
        rho_min = rho_min_ratio * rho_max
        return np.exp(np.linspace(np.log(rho_min), np.log(rho_max), n_rho))
    else:
        rho_max = np.max(np.abs(S))
        return np.linspace(rho_max / n_rho, rho_max, n_rho)


def ordered_candidates(crit: Sequence[float]) -> np.ndarray:
    """
    Grid positions with a valid criterion, best (smallest) first.

    Ties keep grid order; NaN entries are excluded.
    """
    crit = np.asarray(crit, dtype=float)
    valid = np.flatnonzero(~np.isnan(crit))
    return valid[np.argsort(crit[valid], kind='stable')]
