"""
Gaussian Graphical Model Data Generation

Generates synthetic multivariate normal data with a known (sparse)
precision matrix, and punches MCAR holes into it for testing the
missing-data EM estimator.
"""

import numpy as np
from typing import Any, Dict, Optional, Tuple

from emgaussian.utils.linalg import safe_inv, symmetrize


def generate_precision(
    p: int,
    structure: str = 'chain',
    edge_prob: float = 0.2,
    strength: float = 0.4,
    seed: Optional[int] = None
) -> np.ndarray:
    """
    Generate a positive definite precision matrix with a known graph.

    Args:
        p: Number of variables
        structure: 'chain' (tridiagonal), 'random' (Erdos-Renyi edges)
                   or 'diagonal' (no edges)
        edge_prob: Edge probability for 'random'
        strength: Magnitude of the off-diagonal entries
        seed: Random seed for reproducibility

    Returns:
        (p, p) symmetric positive definite precision matrix with unit-scale
        diagonal.
    """
    if seed is not None:
        np.random.seed(seed)

    K = np.eye(p)

    if structure == 'diagonal':
        return K
    elif structure == 'chain':
        for j in range(p - 1):
            K[j, j + 1] = K[j + 1, j] = -strength
    elif structure == 'random':
        for i in range(1, p):
            for j in range(i):
                if np.random.rand() < edge_prob:
                    value = np.random.choice([-1.0, 1.0]) * np.random.uniform(0.5, 1.0) * strength
                    K[i, j] = K[j, i] = value
    else:
        raise ValueError(f"Unknown structure: {structure}")

    # shift the spectrum so the smallest eigenvalue is at least 0.1
    min_eig = np.linalg.eigvalsh(K).min()
    if min_eig < 0.1:
        K = K + (0.1 - min_eig) * np.eye(p)

    return symmetrize(K)


def generate_ggm_data(
    n: int,
    p: int,
    structure: str = 'chain',
    strength: float = 0.4,
    edge_prob: float = 0.2,
    missing_prop: float = 0.0,
    mean_scale: float = 0.0,
    seed: Optional[int] = None
) -> Tuple[np.ndarray, Dict[str, Any]]:
    """
    Generate synthetic Gaussian graphical model data.

    Args:
        n: Number of samples
        p: Number of variables
        structure: Graph structure passed to generate_precision
        strength: Off-diagonal magnitude
        edge_prob: Edge probability for 'random'
        missing_prop: Proportion of entries set missing completely at random
        mean_scale: Standard deviation of the random true mean (0 = zero mean)
        seed: Random seed for reproducibility

    Returns:
        Tuple of:
        - X: (n, p) array of observations, NaN = missing
        - theta_true: dict with keys 'mu', 'S', 'K'
    """
    if seed is not None:
        np.random.seed(seed)

    K = generate_precision(p, structure=structure, edge_prob=edge_prob, strength=strength)
    S = symmetrize(safe_inv(K, "true precision"))
    mu = np.random.randn(p) * mean_scale

    X = np.random.multivariate_normal(mu, S, size=n)

    if missing_prop > 0:
        X = add_missing(X, missing_prop)

    theta_true = {
        'mu': mu,
        'S': S,
        'K': K
    }

    return X, theta_true


def add_missing(
    X: np.ndarray,
    prop: float,
    seed: Optional[int] = None
) -> np.ndarray:
    """
    Set a proportion of entries missing completely at random.

    Every row keeps at least one observed value.

    Args:
        X: (n, p) data; not modified
        prop: Proportion of entries to remove, in [0, 1)
        seed: Random seed for reproducibility

    Returns:
        Copy of X with NaN in the removed entries.
    """
    if not 0 <= prop < 1:
        raise ValueError(f"prop must be in [0, 1), got {prop}")
    if seed is not None:
        np.random.seed(seed)

    X_mis = np.array(X, dtype=float, copy=True)
    n, p = X_mis.shape
    mask = np.random.rand(n, p) < prop

    # restore one entry in rows that lost everything
    empty = np.flatnonzero(mask.all(axis=1))
    for i in empty:
        mask[i, np.random.randint(p)] = False

    X_mis[mask] = np.nan
    return X_mis


def ebic_scenario(seed: Optional[int] = None) -> Tuple[np.ndarray, Dict[str, Any]]:
    """
    Small selection scenario used in tests and examples.

    Configuration:
    - p = 5 variables with a chain graph
    - n = 100 samples
    - 10% of entries missing completely at random

    Args:
        seed: Random seed for reproducibility

    Returns:
        Tuple of (X, theta_true)
    """
    return generate_ggm_data(
        n=100,
        p=5,
        structure='chain',
        strength=0.4,
        missing_prop=0.1,
        seed=seed
    )
