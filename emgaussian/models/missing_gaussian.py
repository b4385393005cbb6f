"""
Multivariate Normal Model with Missing Data

This module provides the EM building blocks for a multivariate normal
distribution observed with arbitrary missing-value patterns (missing at
random), parameterized by a mean vector and a precision matrix K = S⁻¹.

E-step (for each row, obs/mis = observed/missing column indices):
    E[x_mis | x_obs]   = μ_mis - K_mm⁻¹ K_mo (x_obs - μ_obs)
    Cov[x_mis | x_obs] = K_mm⁻¹

M-step:
    μ = T1 / N,   S = T2 / N - μμ',   K = solver(S, ρ)

Rows sharing a missingness pattern are handled together, so each K_mm
block is inverted once per pattern.

Example usage:
    >>> model = MissingDataGaussian(n_features=5)
    >>> theta = model.initialize_diag(X)
    >>> theta['K'] = np.linalg.inv(theta['S'])
    >>> theta_new = model.cycle(X, theta['mu'], theta['K'])
"""

import numpy as np
import pandas as pd
from scipy import linalg
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

from emgaussian.algorithms.solvers import PrecisionSolver, create_solver
from emgaussian.exceptions import EmptyRowError, SingularMatrixError
from emgaussian.utils.linalg import safe_cholesky, safe_inv, symmetrize, vechr


LOG_2PI = np.log(2 * np.pi)


class MissingPattern(NamedTuple):
    """Rows sharing one missingness pattern and that pattern's index sets."""
    rows: np.ndarray
    observed: np.ndarray
    missing: np.ndarray


def find_patterns(X: np.ndarray) -> List[MissingPattern]:
    """
    Group rows of X by missingness pattern.

    Args:
        X: Data matrix of shape (n_samples, n_features), NaN = missing.

    Returns:
        List of MissingPattern. Within each pattern, observed and missing
        are sorted and partition range(n_features).
    """
    mask = np.isnan(X)
    unique_masks, inverse = np.unique(mask, axis=0, return_inverse=True)
    inverse = np.asarray(inverse).reshape(-1)

    patterns = []
    for j, pattern_mask in enumerate(unique_masks):
        patterns.append(MissingPattern(
            rows=np.flatnonzero(inverse == j),
            observed=np.flatnonzero(~pattern_mask),
            missing=np.flatnonzero(pattern_mask)
        ))
    return patterns


def validate_data(X: Any) -> Tuple[np.ndarray, Optional[List[str]]]:
    """
    Convert input to a float array and check it.

    Args:
        X: Array-like or pandas DataFrame, NaN marks missing values.

    Returns:
        Tuple of (float array copy, column names or None).

    Raises:
        ValueError: If X is not 2-D, is empty, or contains infinite values.
        EmptyRowError: If any row has no observed values.
    """
    columns = None
    if hasattr(X, 'columns'):
        columns = [str(c) for c in X.columns]
    if hasattr(X, 'to_numpy'):
        X = X.to_numpy(dtype=float, na_value=np.nan)

    try:
        X_arr = np.array(X, dtype=np.float64, copy=True)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Data cannot be converted to a numeric array: {e}") from e

    if X_arr.ndim != 2:
        raise ValueError(f"Data must be 2D, got {X_arr.ndim}D with shape {X_arr.shape}")
    if X_arr.shape[0] == 0 or X_arr.shape[1] == 0:
        raise ValueError(f"Data must have at least one row and column, got shape {X_arr.shape}")
    if np.any(np.isinf(X_arr)):
        raise ValueError("Data contains infinite values; use NaN for missing entries")

    empty_rows = np.flatnonzero(np.all(np.isnan(X_arr), axis=1))
    if empty_rows.size > 0:
        raise EmptyRowError(
            f"{empty_rows.size} row(s) have no observed values "
            f"(first at index {empty_rows[0]}). Remove them before fitting."
        )

    return X_arr, columns


class MissingDataGaussian:
    """
    Multivariate normal model for data with missing values.

    Provides the E-step (impute + accumulate), M-step, full EM cycle,
    missing-data likelihood and starting values used by EMDriver.

    Attributes:
        n_features: Number of variables (P).
        solver: PrecisionSolver used at the M-step.
        penalize_diagonal: Whether the L1 penalty covers the diagonal.
        parameterization: 'precision' or 'covariance'; which matrix is
                          flattened into the parameter vector.

    Example:
        >>> model = MissingDataGaussian(n_features=3, solver='cd')
        >>> nll = model.negative_log_likelihood(X, mu, K)
    """

    def __init__(
        self,
        n_features: int,
        solver: Any = 'none',
        penalize_diagonal: bool = True,
        parameterization: str = 'precision'
    ):
        """
        Initialize the model.

        Args:
            n_features: Number of variables (P).
            solver: PrecisionSolver instance or solver name.
            penalize_diagonal: Whether the penalty covers the diagonal.
            parameterization: 'precision' or 'covariance'.
        """
        self.n_features = n_features
        self.solver = solver if isinstance(solver, PrecisionSolver) else create_solver(solver)
        self.penalize_diagonal = penalize_diagonal
        self.parameterization = parameterization

    def _check_shape(self, X: np.ndarray) -> None:
        if X.ndim != 2 or X.shape[1] != self.n_features:
            raise ValueError(
                f"Expected data with {self.n_features} columns, got shape {X.shape}"
            )

    # =========================================================================
    # E-step
    # =========================================================================

    def patterns(self, X: np.ndarray) -> List[MissingPattern]:
        """Missingness patterns of X (computed from NaN positions)."""
        self._check_shape(X)
        return find_patterns(X)

    def impute(
        self,
        X: np.ndarray,
        mu: np.ndarray,
        K: np.ndarray,
        patterns: Optional[List[MissingPattern]] = None
    ) -> np.ndarray:
        """
        Replace missing entries with their conditional means.

        Args:
            X: Data with NaN for missing values. Not modified.
            mu: Current mean vector (P,).
            K: Current precision matrix (P, P).
            patterns: Precomputed patterns of X, optional.

        Returns:
            Completed copy of X.

        Raises:
            SingularMatrixError: If K[mis, mis] cannot be inverted.
        """
        if patterns is None:
            patterns = self.patterns(X)
        X_imp = np.array(X, dtype=float, copy=True)

        for pattern in patterns:
            mis, obs = pattern.missing, pattern.observed
            if mis.size == 0:
                continue
            K_mm_inv = safe_inv(K[np.ix_(mis, mis)], "precision sub-block K[mis, mis]")
            diff = X_imp[np.ix_(pattern.rows, obs)] - mu[obs]
            X_imp[np.ix_(pattern.rows, mis)] = mu[mis] - diff @ K[np.ix_(mis, obs)].T @ K_mm_inv.T

        return X_imp

    def accumulate(
        self,
        X: np.ndarray,
        K: np.ndarray,
        T2: np.ndarray,
        patterns: Optional[List[MissingPattern]] = None
    ) -> np.ndarray:
        """
        Add the conditional covariance K[mis, mis]⁻¹ of every row into T2.

        Missingness is read from X, which must be the original data and not
        the imputed matrix. T2 is updated in place and also returned.
        """
        if patterns is None:
            patterns = self.patterns(X)

        for pattern in patterns:
            mis = pattern.missing
            if mis.size == 0:
                continue
            K_mm_inv = safe_inv(K[np.ix_(mis, mis)], "precision sub-block K[mis, mis]")
            T2[np.ix_(mis, mis)] += pattern.rows.size * K_mm_inv

        return T2

    def e_step(
        self,
        X: np.ndarray,
        theta: Dict[str, np.ndarray]
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        E-step: expected sufficient statistics.

        Args:
            X: Data with NaN for missing values.
            theta: Parameter dictionary with 'mu' and 'K'.

        Returns:
            Tuple of (X_imputed, T1, T2).
        """
        patterns = self.patterns(X)
        X_imp = self.impute(X, theta['mu'], theta['K'], patterns)
        T1 = X_imp.sum(axis=0)
        T2 = X_imp.T @ X_imp
        self.accumulate(X, theta['K'], T2, patterns)
        return X_imp, T1, T2

    # =========================================================================
    # M-step
    # =========================================================================

    def m_step(
        self,
        T1: np.ndarray,
        T2: np.ndarray,
        n: int,
        rho: float = 0.0
    ) -> Dict[str, Any]:
        """
        M-step: update mean, covariance and precision.

        Args:
            T1: Sum of completed rows (P,).
            T2: Sum of completed outer products plus corrections (P, P).
            n: Number of rows.
            rho: L1 tuning parameter for the precision solver.

        Returns:
            Dictionary with 'mu', 'S', 'K' and 'solver_converged'.
        """
        mu = T1 / n
        S = symmetrize(T2 / n - np.outer(mu, mu))
        estimate = self.solver.solve(S, rho=rho, penalize_diagonal=self.penalize_diagonal)
        return {
            'mu': mu,
            'S': estimate.covariance,
            'K': estimate.precision,
            'solver_converged': estimate.converged
        }

    def cycle(
        self,
        X: np.ndarray,
        mu: np.ndarray,
        K: np.ndarray,
        rho: float = 0.0
    ) -> Dict[str, Any]:
        """
        One full EM cycle; a pure function of (X, mu, K, rho).

        Raises:
            SingularMatrixError: If any required inversion fails.
        """
        _, T1, T2 = self.e_step(X, {'mu': mu, 'K': K})
        return self.m_step(T1, T2, X.shape[0], rho=rho)

    # =========================================================================
    # Likelihood
    # =========================================================================

    def negative_log_likelihood(
        self,
        X: np.ndarray,
        mu: np.ndarray,
        K: np.ndarray
    ) -> float:
        """
        Missing-data negative log-likelihood.

        Each row contributes the density of its observed entries under the
        marginal N(μ_obs, S_obs,obs), with S = K⁻¹:

            0.5 [log det S_oo + r' S_oo⁻¹ r + |obs| log 2π],  r = x_obs - μ_obs

        Args:
            X: Data with NaN for missing values (raw, not imputed).
            mu: Mean vector (P,).
            K: Precision matrix (P, P).

        Returns:
            Sum over rows.

        Raises:
            SingularMatrixError: If K or a marginal covariance is not
                                 invertible / positive definite.
        """
        self._check_shape(X)
        S = symmetrize(safe_inv(K, "precision matrix"))
        nll = 0.0

        for pattern in find_patterns(X):
            obs = pattern.observed
            if obs.size == 0:
                continue
            n_p = pattern.rows.size
            c_and_lower = safe_cholesky(S[np.ix_(obs, obs)], "marginal covariance S[obs, obs]")
            log_det = 2.0 * np.sum(np.log(np.diag(c_and_lower[0])))
            diff = X[np.ix_(pattern.rows, obs)] - mu[obs]
            solved = linalg.cho_solve(c_and_lower, diff.T)
            quad = np.sum(diff.T * solved)
            nll += 0.5 * (n_p * log_det + quad + n_p * obs.size * LOG_2PI)

        return float(nll)

    def log_likelihood(self, X: np.ndarray, theta: Dict[str, np.ndarray]) -> float:
        """Missing-data log-likelihood (negated negative_log_likelihood)."""
        return -self.negative_log_likelihood(X, theta['mu'], theta['K'])

    # =========================================================================
    # Parameter vector
    # =========================================================================

    def pack_params(self, theta: Dict[str, np.ndarray]) -> np.ndarray:
        """
        Flatten theta into mu followed by the row-wise lower triangle of the
        primary matrix (K for 'precision', S for 'covariance').
        """
        matrix = theta['K'] if self.parameterization == 'precision' else theta['S']
        return np.concatenate([np.asarray(theta['mu'], dtype=float), vechr(matrix)])

    # =========================================================================
    # Initialization Methods
    # =========================================================================

    def initialize_diag(self, X: np.ndarray) -> Dict[str, np.ndarray]:
        """
        Diagonal start: available-case means and variances, zero covariances.

        Raises:
            ValueError: If a column has fewer than two observed values.
        """
        self._check_shape(X)
        counts = np.sum(~np.isnan(X), axis=0)
        if np.any(counts < 2):
            bad = np.flatnonzero(counts < 2)
            raise ValueError(
                f"Column(s) {bad.tolist()} have fewer than two observed values; "
                f"cannot compute starting variances."
            )
        mu = np.nanmean(X, axis=0)
        S = np.diag(np.nanvar(X, axis=0, ddof=1))
        return {'mu': mu, 'S': S}

    def initialize_pairwise(self, X: np.ndarray) -> Dict[str, np.ndarray]:
        """
        Pairwise-complete start: available-case means, and each covariance
        computed from the rows where both variables are observed.

        The result need not be positive definite; the driver checks it.
        """
        self._check_shape(X)
        mu = np.nanmean(X, axis=0)
        S = pd.DataFrame(X).cov(min_periods=2).to_numpy()
        if np.any(np.isnan(S)):
            raise ValueError(
                "Some variable pairs are observed together fewer than two times; "
                "pairwise starting values are undefined. Try start='diag'."
            )
        return {'mu': mu, 'S': symmetrize(S)}

    def initialize_listwise(self, X: np.ndarray) -> Dict[str, np.ndarray]:
        """
        Listwise start: mean and covariance of the fully observed rows.

        Raises:
            ValueError: If fewer than two rows are fully observed.
        """
        self._check_shape(X)
        complete = X[~np.any(np.isnan(X), axis=1)]
        if complete.shape[0] < 2:
            raise ValueError(
                f"Only {complete.shape[0]} fully observed row(s); listwise starting "
                f"values are undefined. Try start='diag'."
            )
        mu = complete.mean(axis=0)
        S = np.atleast_2d(np.cov(complete, rowvar=False))
        return {'mu': mu, 'S': symmetrize(S)}

    def __repr__(self) -> str:
        return (f"MissingDataGaussian(n_features={self.n_features}, solver={self.solver!r}, "
                f"penalize_diagonal={self.penalize_diagonal}, "
                f"parameterization='{self.parameterization}')")


def nll_missing(X: Any, mu: np.ndarray, K: np.ndarray) -> float:
    """
    Missing-data negative log-likelihood of X under N(mu, K⁻¹).

    Convenience wrapper around MissingDataGaussian.negative_log_likelihood
    for scoring held-out data.
    """
    X_arr = np.asarray(X, dtype=float)
    if X_arr.ndim == 1:
        X_arr = X_arr[None, :]
    model = MissingDataGaussian(n_features=X_arr.shape[1])
    return model.negative_log_likelihood(X_arr, np.asarray(mu, dtype=float), np.asarray(K, dtype=float))
