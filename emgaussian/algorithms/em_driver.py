"""
EM Driver for Gaussian Models with Missing Data

This module runs the EM cycle of MissingDataGaussian until the largest
absolute parameter change drops below a tolerance or max_iter is reached.
It also provides the em_prec / em_cov convenience functions.

Example usage:
    >>> model = MissingDataGaussian(n_features=5, solver='cd')
    >>> driver = EMDriver(model)
    >>> theta_init = resolve_starting_values(model, X, 'diag')
    >>> theta, diagnostics = driver.fit(X, theta_init, rho=0.1)
    >>> print(f"Converged: {diagnostics['converged']}")
"""

import time
import warnings
import numpy as np
from typing import Any, Dict, Optional, Tuple, Union

from emgaussian.algorithms.solvers import create_solver
from emgaussian.config import EMConfig
from emgaussian.exceptions import NonConvergenceError, NonConvergenceWarning, SingularMatrixError
from emgaussian.models.missing_gaussian import MissingDataGaussian, validate_data
from emgaussian.utils.linalg import is_positive_definite, safe_inv, symmetrize
from emgaussian.utils.metrics import max_abs_change


class EMDriver:
    """
    Expectation-Maximization driver for MissingDataGaussian.

    States: initializing, iterating, then converged (tolerance met),
    max_iter reached, or failed (SingularMatrixError propagates; the
    driver does not retry).

    Attributes:
        model: MissingDataGaussian providing cycle, pack_params and
               negative_log_likelihood.
        verbose: Whether to print progress during fitting.
        verbose_interval: Iterations between progress prints.

    Example:
        >>> em = EMDriver(model, verbose=True)
        >>> theta, diag = em.fit(X, theta_init, max_iter=100, tol=1e-6)
        >>> print(f"Stopped after {diag['iterations']} iterations")
    """

    def __init__(
        self,
        model: MissingDataGaussian,
        verbose: bool = False,
        verbose_interval: int = 10
    ):
        """
        Initialize EMDriver.

        Args:
            model: Model object with methods:
                   - cycle(X, mu, K, rho) -> theta_new
                   - pack_params(theta) -> flat parameter vector
                   - negative_log_likelihood(X, mu, K) -> float
            verbose: If True, print progress during fitting.
            verbose_interval: Print progress every N iterations.
        """
        self.model = model
        self.verbose = verbose
        self.verbose_interval = verbose_interval

    def fit(
        self,
        X: np.ndarray,
        theta_init: Dict[str, np.ndarray],
        rho: float = 0.0,
        max_iter: int = 500,
        tol: float = 1e-7,
        track_history: bool = False
    ) -> Tuple[Dict[str, np.ndarray], Dict[str, Any]]:
        """
        Fit the model with the EM algorithm.

        Args:
            X: Data matrix of shape (n_samples, n_features), NaN = missing.
            theta_init: Starting values with 'mu' and 'S' (K is derived) or
                        'mu' and 'K'.
            rho: L1 tuning parameter passed to the M-step solver.
            max_iter: Maximum number of EM cycles. With 0, only the
                      starting values are checked and returned.
            tol: Convergence tolerance for parameter change (L-infinity norm).
            track_history: Whether to record the NLL after every cycle.

        Returns:
            Tuple of:
                - theta_final: dict with 'mu', 'S', 'K'
                - diagnostics: dict with convergence information

        Diagnostics dictionary contains:
            - 'converged': bool - Whether the tolerance was met
            - 'iterations': int - Number of EM cycles run
            - 'stopping_reason': str - 'tolerance' or 'max_iter'
            - 'p_est': ndarray - Final flattened parameter vector
            - 'max_change': float - Last parameter change (nan if none)
            - 'nll_history': list - NLL after each cycle (if track_history)
            - 'solver_failures': int - M-steps whose solver did not converge
            - 'time_seconds': float - Total wall-clock time

        Raises:
            SingularMatrixError: If the starting covariance is not positive
                                 definite or any cycle hits a singular matrix.
        """
        start_time = time.perf_counter()

        theta = self._check_theta(theta_init)
        p_old = self.model.pack_params(theta)
        converged = False
        stopping_reason = "max_iter"
        max_change = float('nan')
        nll_history = []
        solver_failures = 0
        iteration = 0

        if track_history:
            nll_history.append(self.model.negative_log_likelihood(X, theta['mu'], theta['K']))

        # Main EM loop
        for iteration in range(1, max_iter + 1):
            theta_new = self.model.cycle(X, theta['mu'], theta['K'], rho=rho)
            if not theta_new.pop('solver_converged', True):
                solver_failures += 1

            p_new = self.model.pack_params(theta_new)
            max_change = max_abs_change(p_old, p_new)

            theta = theta_new
            p_old = p_new

            if track_history:
                nll_history.append(self.model.negative_log_likelihood(X, theta['mu'], theta['K']))

            if self.verbose and iteration % self.verbose_interval == 0:
                print(f"Iteration {iteration}: max parameter change = {max_change:.2e}")

            if max_change < tol:
                converged = True
                stopping_reason = "tolerance"
                break

        diagnostics = {
            'converged': converged,
            'iterations': iteration,
            'stopping_reason': stopping_reason,
            'p_est': p_old,
            'max_change': max_change,
            'nll_history': nll_history,
            'solver_failures': solver_failures,
            'time_seconds': time.perf_counter() - start_time
        }

        if self.verbose:
            print(f"\nEM completed: {stopping_reason}")
            print(f"  Iterations: {diagnostics['iterations']}")
            print(f"  Max change: {max_change:.2e}")
            print(f"  Time: {diagnostics['time_seconds']:.2f}s")

        return theta, diagnostics

    def _check_theta(self, theta_init: Dict[str, np.ndarray]) -> Dict[str, np.ndarray]:
        """
        Copy starting values and derive whichever of S / K is missing.

        Raises:
            SingularMatrixError: If the starting matrix is not positive definite.
            ValueError: If shapes do not match the model.
        """
        p = self.model.n_features
        mu = np.array(theta_init['mu'], dtype=float, copy=True).reshape(-1)

        if 'S' in theta_init and theta_init['S'] is not None:
            S = symmetrize(np.array(theta_init['S'], dtype=float))
            if S.shape != (p, p):
                raise ValueError(f"Starting covariance must be ({p}, {p}), got {S.shape}")
            if not is_positive_definite(S):
                raise SingularMatrixError(
                    "Starting covariance matrix is not positive definite. Try start='diag'."
                )
            K = symmetrize(safe_inv(S, "starting covariance"))
        else:
            K = symmetrize(np.array(theta_init['K'], dtype=float))
            if K.shape != (p, p):
                raise ValueError(f"Starting precision must be ({p}, {p}), got {K.shape}")
            if not is_positive_definite(K):
                raise SingularMatrixError("Starting precision matrix is not positive definite.")
            S = symmetrize(safe_inv(K, "starting precision"))

        if mu.shape != (p,):
            raise ValueError(f"Starting mean must have length {p}, got {mu.shape}")

        return {'mu': mu, 'S': S, 'K': K}


# =============================================================================
# Starting values
# =============================================================================

def resolve_starting_values(
    model: MissingDataGaussian,
    X: np.ndarray,
    start: Union[str, Tuple[Any, Any], Dict[str, Any]] = 'diag',
    config: Optional[EMConfig] = None
) -> Dict[str, np.ndarray]:
    """
    Turn a starting-value strategy or explicit values into a theta dictionary.

    Args:
        model: The model being fitted.
        X: Data matrix.
        start: One of:
               - 'diag': available-case means, diagonal variances
               - 'pairwise': pairwise-complete covariance
               - 'listwise': moments of fully observed rows
               - 'full': saturated (unregularized) EM estimate
               - (mu, S) tuple or dict with 'mu' and 'S' or 'K'
        config: Settings for the saturated fit used by 'full'.

    Returns:
        Dictionary with 'mu' and 'S' (or 'K' if only K was given).
    """
    if isinstance(start, dict):
        return dict(start)
    if isinstance(start, (tuple, list)):
        if len(start) != 2:
            raise ValueError("Explicit starting values must be a (mu, S) pair")
        return {'mu': start[0], 'S': start[1]}

    if start == 'diag':
        return model.initialize_diag(X)
    elif start == 'pairwise':
        return model.initialize_pairwise(X)
    elif start == 'listwise':
        return model.initialize_listwise(X)
    elif start == 'full':
        base = config if config is not None else EMConfig()
        saturated = em_cov(X, config=base.replace(start='diag', verbose=False))
        if not saturated['converged']:
            warnings.warn(
                "Saturated EM fit used for starting values did not converge.",
                NonConvergenceWarning
            )
        return {'mu': saturated['mu'], 'S': saturated['S']}
    else:
        raise ValueError(f"Unknown starting value strategy: {start}")


# =============================================================================
# Functional interface
# =============================================================================

def _fit(
    X: Any,
    rho: float,
    config: EMConfig,
    strict: bool,
    track_history: bool
) -> Dict[str, Any]:
    X_arr, _ = validate_data(X)
    n_features = X_arr.shape[1]

    solver_name = config.solver if config.parameterization == 'precision' else 'none'
    model = MissingDataGaussian(
        n_features=n_features,
        solver=create_solver(solver_name, max_iter=config.solver_max_iter, tol=config.solver_tol),
        penalize_diagonal=config.penalize_diagonal,
        parameterization=config.parameterization
    )

    theta_init = resolve_starting_values(model, X_arr, config.start, config)
    driver = EMDriver(model, verbose=config.verbose)
    theta, diagnostics = driver.fit(
        X_arr, theta_init,
        rho=rho,
        max_iter=config.max_iter,
        tol=config.tol,
        track_history=track_history
    )

    if strict and not diagnostics['converged']:
        raise NonConvergenceError(
            f"EM did not converge in {config.max_iter} iterations "
            f"(last change {diagnostics['max_change']:.2e}, tol {config.tol:.2e})"
        )

    return {
        'mu': theta['mu'],
        'S': theta['S'],
        'K': theta['K'],
        'p_est': diagnostics['p_est'],
        'iterations': diagnostics['iterations'],
        'converged': diagnostics['converged'],
        'stopping_reason': diagnostics['stopping_reason'],
        'rho': float(rho),
        'diagnostics': diagnostics
    }


def em_prec(
    X: Any,
    rho: float = 0.0,
    config: Optional[EMConfig] = None,
    strict: bool = False,
    track_history: bool = False,
    **overrides
) -> Dict[str, Any]:
    """
    EM estimate of mean and precision matrix, optionally L1-regularized.

    Args:
        X: Data (array or DataFrame) with NaN for missing values.
        rho: Non-negative L1 tuning parameter. Ignored by solver='none'.
        config: EMConfig; defaults to EMConfig().
        strict: Raise NonConvergenceError if max_iter is reached.
        track_history: Record the NLL after every cycle.
        **overrides: EMConfig fields to override.

    Returns:
        Dictionary with 'mu', 'S', 'K', 'p_est', 'iterations', 'converged',
        'stopping_reason', 'rho' and 'diagnostics'.

    Example:
        >>> fit = em_prec(X, rho=0.1, solver='cd')
        >>> fit['K'].shape
        (5, 5)
    """
    config = (config or EMConfig()).replace(parameterization='precision', **overrides)
    if rho < 0 or not np.isfinite(rho):
        raise ValueError(f"rho must be finite and non-negative, got {rho}")
    return _fit(X, rho, config, strict, track_history)


def em_cov(
    X: Any,
    config: Optional[EMConfig] = None,
    strict: bool = False,
    track_history: bool = False,
    **overrides
) -> Dict[str, Any]:
    """
    Saturated EM estimate of mean and covariance (no regularization).

    Convergence is judged on mu and the covariance matrix.

    Example:
        >>> fit = em_cov(X)
        >>> np.allclose(fit['S'] @ fit['K'], np.eye(X.shape[1]))
        True
    """
    config = (config or EMConfig()).replace(parameterization='covariance', **overrides)
    return _fit(X, 0.0, config, strict, track_history)
