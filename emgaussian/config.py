"""
Configuration Objects

Dataclasses holding the settings for single EM fits (EMConfig) and for
tuning-parameter selection (SelectionConfig).

Example usage:
    >>> config = EMConfig(max_iter=200, solver='lars')
    >>> strict = config.replace(tol=1e-9)
"""

import dataclasses
from dataclasses import dataclass
from typing import Any, Optional, Tuple, Union

import numpy as np


SOLVER_ALIASES = {
    'glasso': 'cd',
    'glassofast': 'lars',
}

VALID_SOLVERS = ('cd', 'lars', 'none')
VALID_STARTS = ('diag', 'pairwise', 'listwise', 'full')
VALID_PARAMETERIZATIONS = ('precision', 'covariance')
VALID_METHODS = ('ebic', 'kfold')


def normalize_solver_name(name: str) -> str:
    """Map user-facing solver names (including aliases) to canonical ones."""
    key = str(name).lower()
    key = SOLVER_ALIASES.get(key, key)
    if key not in VALID_SOLVERS:
        raise ValueError(
            f"Unknown solver '{name}'. Choose one of {VALID_SOLVERS} "
            f"or an alias in {tuple(SOLVER_ALIASES)}."
        )
    return key


@dataclass
class EMConfig:
    """
    Settings for one EM fit.

    Attributes:
        max_iter: Maximum number of EM cycles.
        tol: Convergence tolerance on the largest absolute parameter change.
        start: Starting-value strategy ('diag', 'pairwise', 'listwise',
               'full') or explicit values: a (mu, S) tuple or a dict with
               'mu' and 'S' (or 'K').
        solver: M-step precision solver: 'cd', 'lars' or 'none'.
        penalize_diagonal: Whether the L1 penalty also applies to the
                           diagonal of the precision matrix.
        solver_max_iter: Iteration limit passed to the graphical lasso.
        solver_tol: Tolerance passed to the graphical lasso.
        parameterization: 'precision' or 'covariance'; selects which matrix
                          enters the flattened parameter vector.
        verbose: Print progress during fitting.
    """
    max_iter: int = 500
    tol: float = 1e-7
    start: Union[str, Tuple[Any, Any], dict] = 'diag'
    solver: str = 'cd'
    penalize_diagonal: bool = True
    solver_max_iter: int = 100
    solver_tol: float = 1e-4
    parameterization: str = 'precision'
    verbose: bool = False

    def __post_init__(self):
        if not isinstance(self.max_iter, (int, np.integer)) or self.max_iter < 0:
            raise ValueError(
                f"max_iter must be a non-negative integer, got {self.max_iter}. "
                f"Try max_iter=500."
            )
        if not np.isfinite(self.tol) or self.tol < 0:
            raise ValueError(f"tol must be non-negative, got {self.tol}")
        self.solver = normalize_solver_name(self.solver)
        if isinstance(self.start, str) and self.start not in VALID_STARTS:
            raise ValueError(
                f"Unknown start '{self.start}'. Choose one of {VALID_STARTS} "
                f"or pass explicit (mu, S) values."
            )
        if self.parameterization not in VALID_PARAMETERIZATIONS:
            raise ValueError(
                f"parameterization must be one of {VALID_PARAMETERIZATIONS}, "
                f"got '{self.parameterization}'"
            )
        if self.solver_max_iter < 1:
            raise ValueError(f"solver_max_iter must be positive, got {self.solver_max_iter}")
        if self.solver_tol <= 0:
            raise ValueError(f"solver_tol must be positive, got {self.solver_tol}")

    def replace(self, **overrides) -> 'EMConfig':
        """Return a copy with the given fields replaced."""
        return dataclasses.replace(self, **overrides)


@dataclass
class SelectionConfig:
    """
    Settings for tuning-parameter selection.

    Attributes:
        method: 'ebic' or 'kfold'.
        gamma: EBIC hyperparameter (0.5 is the usual choice).
        zero_tol: Edges with |K_ij| <= zero_tol do not count in EBIC.
        N: Sample size for EBIC; defaults to the mean pairwise count.
        k: Number of cross-validation folds.
        seed: Seed for the fold partition.
        count_failures: Treat non-converged fits as invalid and zero the
                        graph if the final model did not converge.
        n_jobs: Number of worker processes for independent fits.
        log_dir: Directory for JSONL per-grid-point records, or None.
    """
    method: str = 'ebic'
    gamma: float = 0.5
    zero_tol: float = 1e-10
    N: Optional[float] = None
    k: int = 5
    seed: Optional[int] = None
    count_failures: bool = False
    n_jobs: int = 1
    log_dir: Optional[str] = None

    def __post_init__(self):
        self.method = str(self.method).lower()
        if self.method not in VALID_METHODS:
            raise ValueError(f"method must be one of {VALID_METHODS}, got '{self.method}'")
        if self.gamma < 0:
            raise ValueError(f"gamma must be non-negative, got {self.gamma}")
        if self.zero_tol < 0:
            raise ValueError(f"zero_tol must be non-negative, got {self.zero_tol}")
        if self.N is not None and self.N <= 0:
            raise ValueError(f"N must be positive, got {self.N}")
        if not isinstance(self.k, (int, np.integer)) or self.k < 2:
            raise ValueError(f"k must be an integer >= 2, got {self.k}")
        if self.n_jobs < 1:
            raise ValueError(f"n_jobs must be >= 1, got {self.n_jobs}")

    def replace(self, **overrides) -> 'SelectionConfig':
        """Return a copy with the given fields replaced."""
        return dataclasses.replace(self, **overrides)
