"""
Tuning-Parameter Selection for Regularized Gaussian Graphical Models

Fits the L1-regularized EM estimator over a grid of tuning parameters and
picks one value, either by EBIC on the full data or by k-fold
cross-validated held-out negative log-likelihood.

Selection rules:
- Invalid grid values raise InvalidGridValueError before any fit
- A fit that raises scores NaN; NaN values are never selected
- With count_failures, non-converged fits also score NaN and a
  non-converged final model yields an all-zero graph
- k-fold refits on the full data at the best value, walking down the
  criterion ranking while the refit does not converge

Example usage:
    >>> result = em_ggm(X, rho=rho_grid(20, X=X), rho_select='ebic')
    >>> result.rho[result.selected_index]
    0.084
    >>> result.graph.shape
    (5, 5)
"""

import uuid
import warnings
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from emgaussian.config import EMConfig, SelectionConfig
from emgaussian.algorithms.cross_validation import create_folds, cross_validate
from emgaussian.algorithms.em_driver import em_prec
from emgaussian.algorithms.tasks import run_tasks
from emgaussian.exceptions import FoldFitFailure, NoValidFitError, NonConvergenceWarning
from emgaussian.models.missing_gaussian import nll_missing, validate_data
from emgaussian.utils.grid import ordered_candidates, validate_grid
from emgaussian.utils.linalg import vechr_reverse
from emgaussian.utils.logging_utils import FitLogger
from emgaussian.utils.metrics import count_edges, ebic_score, pairwise_sample_size, partial_correlation
from emgaussian.utils.timing import ResourceMonitor


@dataclass
class SelectionResult:
    """
    Outcome of tuning-parameter selection.

    Attributes:
        results: Fit dictionary of the returned model (mu, S, K, p_est,
                 iterations, converged, ...), with 'rho' and 'crit' set to
                 the full grid and criterion vector and 'selected_rho' set
                 to the value actually used.
        rho: Validated grid.
        crit: Criterion per grid value (NaN = invalid).
        selected_index: Grid position of the returned model.
        graph: Partial-correlation network (zero diagonal).
        method: 'ebic' or 'kfold'.
        columns: Variable names when the input was a DataFrame.
        diagnostics: Per-grid-point records, refit attempts, resource usage.
    """
    results: Dict[str, Any]
    rho: np.ndarray
    crit: np.ndarray
    selected_index: int
    graph: np.ndarray
    method: str
    columns: Optional[List[str]] = None
    diagnostics: Dict[str, Any] = field(default_factory=dict)

    @property
    def converged(self) -> bool:
        return bool(self.results['converged'])

    @property
    def selected_rho(self) -> float:
        return float(self.rho[self.selected_index])

    def graph_frame(self):
        """The graph as a pandas DataFrame labelled by variable names."""
        import pandas as pd

        labels = self.columns if self.columns is not None else list(range(self.graph.shape[0]))
        return pd.DataFrame(self.graph, index=labels, columns=labels)


# =============================================================================
# EBIC
# =============================================================================

def nll_from_params(p_est: np.ndarray, X: np.ndarray) -> float:
    """
    Missing-data negative log-likelihood from a flattened parameter vector.

    Args:
        p_est: mu followed by the row-wise lower triangle of K.
        X: Data matrix (NaN = missing).
    """
    p_est = np.asarray(p_est, dtype=float)
    n_features = np.asarray(X).shape[1]
    mu = p_est[:n_features]
    K = vechr_reverse(p_est[n_features:])
    return nll_missing(X, mu, K)


def ebic(
    p_est: np.ndarray,
    X: np.ndarray,
    N: Optional[float] = None,
    gamma: float = 0.5,
    zero_tol: float = 1e-10
) -> float:
    """
    Extended BIC of a precision-matrix fit under missing data.

        EBIC = 2 nll + E log N + 4 γ E log P

    Args:
        p_est: Flattened parameters (mu, then vechr of K).
        X: Data matrix used for the likelihood.
        N: Sample size; defaults to pairwise_sample_size(X).
        gamma: EBIC hyperparameter.
        zero_tol: Precision entries with |K_ij| <= zero_tol are not edges.

    Returns:
        EBIC value (lower is better).
    """
    X = np.asarray(X, dtype=float)
    n_features = X.shape[1]
    if N is None:
        N = pairwise_sample_size(X)

    K = vechr_reverse(np.asarray(p_est, dtype=float)[n_features:])
    nll = nll_from_params(p_est, X)
    return ebic_score(nll, count_edges(K, zero_tol), N, n_features, gamma)


def _ebic_task(args: Tuple) -> Dict[str, Any]:
    X, rho, config, N, gamma, zero_tol = args
    fit = em_prec(X, rho=rho, config=config)
    fit['ebic'] = ebic(fit['p_est'], X, N, gamma, zero_tol)
    fit['n_edges'] = count_edges(fit['K'], zero_tol)
    return fit


def select_ebic(
    X: Any,
    rho: Any,
    config: Optional[EMConfig] = None,
    N: Optional[float] = None,
    gamma: float = 0.5,
    zero_tol: float = 1e-10,
    count_failures: bool = False,
    n_jobs: int = 1,
    verbose: bool = False,
    log_dir: Optional[str] = None
) -> SelectionResult:
    """
    Choose rho by minimizing EBIC over the grid.

    Args:
        X: Data (array or DataFrame), NaN = missing.
        rho: Grid of non-negative tuning parameters.
        config: EM settings shared by all fits.
        N: EBIC sample size; defaults to the mean pairwise count.
        gamma: EBIC hyperparameter.
        zero_tol: Edge threshold for EBIC.
        count_failures: Score non-converged fits as NaN.
        n_jobs: Worker processes for the grid fits.
        verbose: Progress bar and summary.
        log_dir: Write one JSONL record per grid point here.

    Returns:
        SelectionResult with method 'ebic'.

    Raises:
        InvalidGridValueError: Bad grid (before fitting).
        NoValidFitError: Every grid point scored NaN.
    """
    selection = SelectionConfig(method='ebic', gamma=gamma, zero_tol=zero_tol, N=N,
                                count_failures=count_failures, n_jobs=n_jobs, log_dir=log_dir)
    return _select(X, rho, config, selection, verbose)


def _run_ebic(
    X: np.ndarray,
    grid: np.ndarray,
    config: EMConfig,
    selection: SelectionConfig,
    verbose: bool
) -> Tuple[np.ndarray, List[Optional[Dict[str, Any]]], List[Dict[str, Any]]]:
    N = selection.N if selection.N is not None else pairwise_sample_size(X)
    tasks = [(X, float(r), config, N, selection.gamma, selection.zero_tol) for r in grid]
    outcomes = run_tasks(_ebic_task, tasks, n_jobs=selection.n_jobs, verbose=verbose,
                         desc="EBIC fits")

    crit = np.full(len(grid), np.nan)
    fits: List[Optional[Dict[str, Any]]] = []
    records = []

    for i, outcome in enumerate(outcomes):
        fit = outcome['result']
        record = {'rho': float(grid[i]), 'N': float(N)}

        if outcome['error'] is not None:
            record['failure'] = str(FoldFitFailure(float(grid[i]), cause=outcome['error']))
            fits.append(None)
        else:
            fits.append(fit)
            record.update({
                'converged': fit['converged'],
                'iterations': fit['iterations'],
                'n_edges': fit['n_edges'],
                'ebic': fit['ebic'],
            })
            if selection.count_failures and not fit['converged']:
                record['failure'] = "did not converge"
            else:
                crit[i] = fit['ebic']

        record['criterion'] = float(crit[i])
        records.append(record)

    return crit, fits, records


# =============================================================================
# k-fold cross-validation
# =============================================================================

def select_kfold(
    X: Any,
    rho: Any,
    config: Optional[EMConfig] = None,
    k: int = 5,
    seed: Optional[int] = None,
    count_failures: bool = False,
    n_jobs: int = 1,
    verbose: bool = False,
    log_dir: Optional[str] = None
) -> SelectionResult:
    """
    Choose rho by k-fold cross-validated held-out negative log-likelihood.

    The full data is refit at the best value. If that refit fails or does
    not converge, the next-best valid values are tried in criterion order,
    each retry preceded by a NonConvergenceWarning.

    Args:
        X: Data (array or DataFrame), NaN = missing.
        rho: Grid of non-negative tuning parameters.
        config: EM settings shared by all fits.
        k: Number of folds.
        seed: Fold partition seed.
        count_failures: Zero the graph if the returned model did not converge.
        n_jobs: Worker processes for the grid x fold fits.
        verbose: Progress bar and summary.
        log_dir: Write one JSONL record per grid point here.

    Returns:
        SelectionResult with method 'kfold'.

    Raises:
        InvalidGridValueError: Bad grid (before fitting).
        NoValidFitError: Every grid point scored NaN, or no refit succeeded.
    """
    selection = SelectionConfig(method='kfold', k=k, seed=seed, count_failures=count_failures,
                                n_jobs=n_jobs, log_dir=log_dir)
    return _select(X, rho, config, selection, verbose)


def refit_best(
    X: np.ndarray,
    grid: np.ndarray,
    crit: np.ndarray,
    config: EMConfig
) -> Tuple[Optional[Dict[str, Any]], int, List[Dict[str, Any]]]:
    """
    Refit on the full data, walking down the criterion ranking.

    Returns:
        Tuple of:
            - fit: last fit obtained (None if every attempt raised)
            - index: grid position of that fit
            - attempts: one record per attempt
    """
    order = ordered_candidates(crit)
    attempts = []
    fit = None
    index = int(order[0])

    for attempt, candidate in enumerate(order):
        candidate = int(candidate)
        if attempt > 0:
            warnings.warn(
                f"Refit at the best tuning parameter did not converge; "
                f"trying the next best value rho={grid[candidate]:.4g}.",
                NonConvergenceWarning
            )
        try:
            current = em_prec(X, rho=float(grid[candidate]), config=config)
        except (np.linalg.LinAlgError, FloatingPointError, ValueError) as e:
            attempts.append({'rho': float(grid[candidate]), 'converged': False,
                             'failure': str(FoldFitFailure(float(grid[candidate]), cause=e))})
            continue

        fit, index = current, candidate
        attempts.append({'rho': float(grid[candidate]), 'converged': current['converged'],
                         'iterations': current['iterations']})
        if current['converged']:
            break

    return fit, index, attempts


# =============================================================================
# Dispatcher
# =============================================================================

def em_ggm(
    X: Any,
    rho: Any = 0.0,
    rho_select: str = 'ebic',
    config: Optional[EMConfig] = None,
    selection: Optional[SelectionConfig] = None,
    verbose: bool = False,
    **kwargs
) -> SelectionResult:
    """
    Regularized Gaussian graphical model with missing data.

    Args:
        X: Data (array or DataFrame), NaN = missing.
        rho: Tuning parameter or grid.
        rho_select: 'ebic' or 'kfold'.
        config: EM settings; EMConfig fields may also be passed as kwargs.
        selection: Selection settings; SelectionConfig fields may also be
                   passed as kwargs.
        verbose: Progress bar and summary.

    Returns:
        SelectionResult.

    Example:
        >>> result = em_ggm(X, rho=[0.0, 0.05, 0.1], rho_select='kfold', k=5, seed=1)
        >>> result.method
        'kfold'
    """
    em_fields = set(EMConfig.__dataclass_fields__)
    selection_fields = set(SelectionConfig.__dataclass_fields__) - {'method'}
    unknown = set(kwargs) - em_fields - selection_fields
    if unknown:
        raise TypeError(f"Unexpected keyword argument(s): {sorted(unknown)}")

    em_overrides = {key: kwargs[key] for key in kwargs if key in em_fields}
    selection_overrides = {key: kwargs[key] for key in kwargs if key in selection_fields}

    config = (config or EMConfig()).replace(**em_overrides)
    selection = (selection or SelectionConfig()).replace(method=rho_select, **selection_overrides)
    return _select(X, rho, config, selection, verbose)


def _select(
    X: Any,
    rho: Any,
    config: Optional[EMConfig],
    selection: SelectionConfig,
    verbose: bool
) -> SelectionResult:
    grid = validate_grid(rho)
    X_arr, columns = validate_data(X)
    config = (config or EMConfig()).replace(verbose=False)

    if verbose:
        print(f"Selecting rho by {selection.method} over {len(grid)} value(s): "
              f"n={X_arr.shape[0]}, p={X_arr.shape[1]}, "
              f"{100 * np.isnan(X_arr).mean():.1f}% missing")

    with ResourceMonitor() as monitor:
        if selection.method == 'ebic':
            crit, fits, records = _run_ebic(X_arr, grid, config, selection, verbose)
            order = ordered_candidates(crit)
            if order.size == 0:
                raise NoValidFitError(_no_valid_message(grid, records))
            selected_index = int(order[0])
            final = fits[selected_index]
            attempts = []
        else:
            folds = create_folds(X_arr.shape[0], k=selection.k, seed=selection.seed)
            crit, records = cross_validate(X_arr, grid, config, folds,
                                           n_jobs=selection.n_jobs, verbose=verbose)
            if ordered_candidates(crit).size == 0:
                raise NoValidFitError(_no_valid_message(grid, records))
            final, selected_index, attempts = refit_best(X_arr, grid, crit, config)
            if final is None:
                raise NoValidFitError(
                    f"Every refit on the full data failed: {[a.get('failure') for a in attempts]}"
                )

    results = dict(final)
    results['selected_rho'] = float(grid[selected_index])
    results['rho'] = grid
    results['crit'] = crit

    if selection.count_failures and not final['converged']:
        graph = np.zeros_like(final['K'])
    else:
        graph = partial_correlation(final['K'])

    diagnostics = {
        'records': records,
        'refit_attempts': attempts,
        'resources': monitor.stats,
    }

    if selection.log_dir is not None:
        logger = FitLogger(selection.log_dir)
        run_id = str(uuid.uuid4())[:8]
        for i, record in enumerate(records):
            logger.log_run(dict(record, method=selection.method, selected=(i == selected_index)),
                           run_id=run_id)
        diagnostics['run_id'] = run_id

    if verbose:
        n_invalid = int(np.isnan(crit).sum())
        print(f"  Selected rho = {grid[selected_index]:.4g} (index {selected_index}), "
              f"criterion = {crit[selected_index]:.4f}")
        print(f"  Invalid grid points: {n_invalid}/{len(grid)}")
        print(f"  Converged: {final['converged']} after {final['iterations']} iterations")
        print(f"  Time: {monitor.stats['elapsed_time']:.2f}s, "
              f"peak memory {monitor.stats['peak_memory_mb']:.1f}MB")

    return SelectionResult(
        results=results,
        rho=grid,
        crit=crit,
        selected_index=selected_index,
        graph=graph,
        method=selection.method,
        columns=columns,
        diagnostics=diagnostics
    )


def _no_valid_message(grid: np.ndarray, records: List[Dict[str, Any]]) -> str:
    reasons = []
    for record in records[:5]:
        reason = record.get('failure') or record.get('failures')
        reasons.append(f"rho={record['rho']:.4g}: {reason}")
    return (f"No valid fit among {len(grid)} grid value(s). Try larger rho values, "
            f"more iterations, or count_failures=False. First failures: {reasons}")
