"""
K-fold Cross-Validation for the Tuning Parameter

For each grid value ρ and each fold v, the model is fitted on the other
folds and the held-out fold is scored with the missing-data negative
log-likelihood. The per-ρ criterion is the sum over folds; any failed or
non-converged fold makes it NaN.

Example usage:
    >>> folds = create_folds(n=200, k=5, seed=1)
    >>> crit, records = cross_validate(X, rho=[0.01, 0.1], config=EMConfig(), folds=folds)
"""

from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
from sklearn.model_selection import KFold

from emgaussian.config import EMConfig
from emgaussian.algorithms.em_driver import em_prec
from emgaussian.algorithms.tasks import run_tasks
from emgaussian.exceptions import FoldFitFailure
from emgaussian.models.missing_gaussian import nll_missing


def create_folds(n: int, k: int = 5, seed: Optional[int] = None) -> List[np.ndarray]:
    """
    Partition row indices 0..n-1 into k disjoint, shuffled folds.

    Args:
        n: Number of rows.
        k: Number of folds (2 <= k <= n).
        seed: Random seed; the same seed always gives the same folds.

    Returns:
        List of k sorted index arrays whose union is range(n).

    Example:
        >>> folds = create_folds(10, k=3, seed=0)
        >>> sorted(np.concatenate(folds).tolist()) == list(range(10))
        True
    """
    if not 2 <= k <= n:
        raise ValueError(f"k must be between 2 and the number of rows ({n}), got {k}")
    splitter = KFold(n_splits=k, shuffle=True, random_state=seed)
    return [np.sort(test_idx) for _, test_idx in splitter.split(np.arange(n))]


def score_fold(
    X_train: np.ndarray,
    X_test: np.ndarray,
    rho: float,
    config: EMConfig
) -> Dict[str, Any]:
    """
    Fit on training rows and score the held-out rows.

    Args:
        X_train: Training rows (NaN = missing).
        X_test: Held-out rows.
        rho: Tuning parameter.
        config: EM settings.

    Returns:
        Dictionary with 'nll' (held-out negative log-likelihood),
        'converged' and 'iterations'.
    """
    fit = em_prec(X_train, rho=rho, config=config)
    return {
        'nll': nll_missing(X_test, fit['mu'], fit['K']),
        'converged': fit['converged'],
        'iterations': fit['iterations']
    }


def _score_fold_task(args: Tuple) -> Dict[str, Any]:
    return score_fold(*args)


def cross_validate(
    X: np.ndarray,
    rho: Sequence[float],
    config: EMConfig,
    folds: List[np.ndarray],
    n_jobs: int = 1,
    verbose: bool = False
) -> Tuple[np.ndarray, List[Dict[str, Any]]]:
    """
    Cross-validated held-out negative log-likelihood for every grid value.

    Args:
        X: Full data matrix.
        rho: Validated grid of tuning parameters.
        config: EM settings used for every training fit.
        folds: Output of create_folds.
        n_jobs: Worker processes; fits are independent.
        verbose: Show a progress bar.

    Returns:
        Tuple of:
            - crit: array of len(rho), NaN where any fold failed
            - records: one dict per grid value with per-fold details
    """
    n = X.shape[0]
    all_rows = np.arange(n)
    fit_config = config.replace(verbose=False)

    tasks = []
    for r in rho:
        for test_idx in folds:
            train_idx = np.setdiff1d(all_rows, test_idx, assume_unique=True)
            tasks.append((X[train_idx], X[test_idx], float(r), fit_config))

    outcomes = run_tasks(_score_fold_task, tasks, n_jobs=n_jobs, verbose=verbose,
                         desc="Cross-validation fits")

    n_folds = len(folds)
    crit = np.full(len(rho), np.nan)
    records = []

    for i, r in enumerate(rho):
        fold_outcomes = outcomes[i * n_folds:(i + 1) * n_folds]
        total = 0.0
        failures = []
        fold_nll = []

        for v, outcome in enumerate(fold_outcomes):
            if outcome['error'] is not None:
                failures.append(str(FoldFitFailure(float(r), fold=v, cause=outcome['error'])))
                fold_nll.append(float('nan'))
            elif not outcome['result']['converged']:
                failures.append(f"fold {v} did not converge")
                fold_nll.append(outcome['result']['nll'])
            else:
                fold_nll.append(outcome['result']['nll'])
                total += outcome['result']['nll']

        if not failures:
            crit[i] = total

        records.append({
            'rho': float(r),
            'criterion': float(crit[i]),
            'fold_nll': fold_nll,
            'failures': failures
        })

    return crit, records
