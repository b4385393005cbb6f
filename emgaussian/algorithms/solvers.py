"""
Precision Matrix Solvers for the M-step

The M-step turns the expected covariance S into a precision matrix K.
Without regularization this is a plain inverse; with an L1 penalty it is
a graphical lasso problem, delegated to scikit-learn:

    K = argmin  -log det K + tr(S K) + ρ Σ |K_ij|

Available solvers:
- ExactInverseSolver: K = S⁻¹ (no regularization)
- GraphicalLassoCD: graphical lasso, coordinate descent
- GraphicalLassoLars: graphical lasso, LARS

scikit-learn never penalizes the diagonal. When the diagonal should be
penalized, ρ Σ_i K_ii = tr(ρ I K), so the problem on S is the same as the
off-diagonal-only problem on S + ρ I.

Example usage:
    >>> solver = create_solver('cd')
    >>> estimate = solver.solve(S, rho=0.1, penalize_diagonal=True)
    >>> K = estimate.precision
"""

import warnings
from abc import ABC, abstractmethod
from typing import NamedTuple

import numpy as np
from sklearn.covariance import graphical_lasso
from sklearn.exceptions import ConvergenceWarning

from emgaussian.config import normalize_solver_name
from emgaussian.exceptions import SingularMatrixError
from emgaussian.utils.linalg import safe_inv, symmetrize


class PrecisionEstimate(NamedTuple):
    """Solver output: covariance, precision and whether the solver converged."""
    covariance: np.ndarray
    precision: np.ndarray
    converged: bool


class PrecisionSolver(ABC):
    """
    Abstract base class for M-step precision solvers.

    Subclasses implement _solve_penalized(S, rho, penalize_diagonal). A zero
    penalty always short-circuits to the exact inverse.
    """

    name = 'base'

    def solve(
        self,
        covariance: np.ndarray,
        rho: float = 0.0,
        penalize_diagonal: bool = True
    ) -> PrecisionEstimate:
        """
        Estimate the precision matrix from a covariance estimate.

        Args:
            covariance: Symmetric (p, p) covariance estimate.
            rho: Non-negative L1 tuning parameter.
            penalize_diagonal: Whether the penalty covers the diagonal.

        Returns:
            PrecisionEstimate with symmetric covariance = inv(precision).

        Raises:
            SingularMatrixError: If an inversion fails or the solver
                                 reports an ill-conditioned system.
        """
        S = symmetrize(np.asarray(covariance, dtype=float))
        if rho < 0 or not np.isfinite(rho):
            raise ValueError(f"rho must be finite and non-negative, got {rho}")

        if rho == 0:
            K = symmetrize(safe_inv(S, "covariance matrix"))
            return PrecisionEstimate(S, K, True)

        K, converged = self._solve_penalized(S, float(rho), penalize_diagonal)
        K = symmetrize(K)
        S_new = symmetrize(safe_inv(K, "precision matrix"))
        return PrecisionEstimate(S_new, K, converged)

    @abstractmethod
    def _solve_penalized(
        self,
        S: np.ndarray,
        rho: float,
        penalize_diagonal: bool
    ) -> tuple:
        """Return (precision, converged) for rho > 0."""
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class ExactInverseSolver(PrecisionSolver):
    """
    No regularization: K = S⁻¹ regardless of rho.

    Example:
        >>> est = ExactInverseSolver().solve(np.eye(3), rho=0.5)
        >>> np.allclose(est.precision, np.eye(3))
        True
    """

    name = 'none'

    def _solve_penalized(self, S, rho, penalize_diagonal):
        return safe_inv(S, "covariance matrix"), True


class GraphicalLassoSolver(PrecisionSolver):
    """
    Graphical lasso via sklearn.covariance.graphical_lasso.

    Attributes:
        mode: sklearn solver mode ('cd' or 'lars').
        max_iter: Maximum graphical lasso iterations.
        tol: Dual-gap tolerance.
    """

    mode = 'cd'

    def __init__(self, max_iter: int = 100, tol: float = 1e-4):
        """
        Initialize graphical lasso solver.

        Args:
            max_iter: Maximum number of graphical lasso iterations.
            tol: Convergence tolerance on the dual gap.
        """
        self.max_iter = max_iter
        self.tol = tol

    def _solve_penalized(self, S, rho, penalize_diagonal):
        emp_cov = S + rho * np.eye(S.shape[0]) if penalize_diagonal else S

        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter('always', ConvergenceWarning)
            try:
                _, precision = graphical_lasso(
                    emp_cov,
                    alpha=rho,
                    mode=self.mode,
                    tol=self.tol,
                    max_iter=self.max_iter
                )
            except FloatingPointError as e:
                raise SingularMatrixError(f"graphical lasso failed: {e}") from e

        converged = not any(issubclass(w.category, ConvergenceWarning) for w in caught)
        for w in caught:
            if not issubclass(w.category, ConvergenceWarning):
                warnings.warn_explicit(w.message, w.category, w.filename, w.lineno)

        if not np.all(np.isfinite(precision)):
            raise SingularMatrixError("graphical lasso returned a non-finite precision matrix")

        return precision, converged

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(max_iter={self.max_iter}, tol={self.tol})"


class GraphicalLassoCD(GraphicalLassoSolver):
    """Graphical lasso with coordinate descent (the 'glasso' algorithm)."""

    name = 'cd'
    mode = 'cd'


class GraphicalLassoLars(GraphicalLassoSolver):
    """Graphical lasso with LARS inner solves; better for very sparse graphs."""

    name = 'lars'
    mode = 'lars'


def create_solver(
    name: str = 'cd',
    max_iter: int = 100,
    tol: float = 1e-4
) -> PrecisionSolver:
    """
    Factory function to create precision solvers.

    Args:
        name: 'cd' (alias 'glasso'), 'lars' (alias 'glassoFast') or 'none'.
        max_iter: Iteration limit for graphical lasso solvers.
        tol: Tolerance for graphical lasso solvers.

    Returns:
        PrecisionSolver instance.

    Example:
        >>> solver = create_solver('glasso')
        >>> isinstance(solver, GraphicalLassoCD)
        True
    """
    key = normalize_solver_name(name)

    if key == 'none':
        return ExactInverseSolver()
    elif key == 'cd':
        return GraphicalLassoCD(max_iter=max_iter, tol=tol)
    else:
        return GraphicalLassoLars(max_iter=max_iter, tol=tol)
