"""
Unit Tests for Precision Solvers and Configuration

Run with: pytest emgaussian/tests/test_solvers.py -v
"""

import warnings

import pytest
import numpy as np
from sklearn.exceptions import ConvergenceWarning

from emgaussian.algorithms.solvers import (
    ExactInverseSolver,
    GraphicalLassoCD,
    GraphicalLassoLars,
    create_solver,
)
from emgaussian.config import EMConfig, SelectionConfig, normalize_solver_name


@pytest.fixture
def covariance():
    """Well-conditioned covariance with one strong and one weak correlation."""
    return np.array([[1.0, 0.6, 0.05],
                     [0.6, 1.0, 0.1],
                     [0.05, 0.1, 1.0]])


# =============================================================================
# Factory
# =============================================================================

class TestCreateSolver:
    """Tests for the solver factory and name aliases."""

    @pytest.mark.parametrize('name, cls', [
        ('cd', GraphicalLassoCD),
        ('glasso', GraphicalLassoCD),
        ('lars', GraphicalLassoLars),
        ('glassoFast', GraphicalLassoLars),
        ('none', ExactInverseSolver),
    ])
    def test_names(self, name, cls):
        assert isinstance(create_solver(name), cls)

    def test_unknown(self):
        with pytest.raises(ValueError, match="Unknown solver"):
            create_solver('quic')

    def test_settings_forwarded(self):
        solver = create_solver('lars', max_iter=7, tol=1e-3)
        assert solver.max_iter == 7
        assert solver.tol == 1e-3


# =============================================================================
# Solvers
# =============================================================================

class TestSolvers:
    """Tests for the M-step precision solvers."""

    @pytest.mark.parametrize('name', ['cd', 'lars', 'none'])
    def test_rho_zero_is_inverse(self, covariance, name):
        """Zero penalty gives the exact inverse for every solver."""
        est = create_solver(name).solve(covariance, rho=0.0)

        np.testing.assert_allclose(est.precision, np.linalg.inv(covariance), atol=1e-12)
        np.testing.assert_array_equal(est.covariance, covariance)
        assert est.converged

    @pytest.mark.parametrize('name', ['cd', 'lars'])
    def test_inverse_pair(self, covariance, name):
        """Returned covariance is the inverse of the returned precision."""
        est = create_solver(name).solve(covariance, rho=0.08)

        np.testing.assert_allclose(est.covariance @ est.precision, np.eye(3), atol=1e-8)
        np.testing.assert_array_equal(est.precision, est.precision.T)

    @pytest.mark.parametrize('name', ['cd', 'lars'])
    def test_weak_edge_removed(self, covariance, name):
        """A moderate penalty zeroes the weak partial correlation first."""
        est = create_solver(name).solve(covariance, rho=0.2, penalize_diagonal=False)

        assert abs(est.precision[0, 2]) < 1e-10
        assert abs(est.precision[0, 1]) > 1e-3

    @pytest.mark.parametrize('name', ['cd', 'lars'])
    def test_large_rho_diagonal(self, covariance, name):
        """Penalty above every |S_ij| gives a diagonal precision."""
        est = create_solver(name).solve(covariance, rho=5.0)
        K = est.precision

        np.testing.assert_allclose(K - np.diag(np.diag(K)), 0.0, atol=1e-12)

    def test_penalize_diagonal_shrinks(self, covariance):
        """Penalizing the diagonal shrinks the precision diagonal (S + rho I)."""
        solver = GraphicalLassoCD()
        with_diag = solver.solve(covariance, rho=0.7, penalize_diagonal=True)
        without = solver.solve(covariance, rho=0.7, penalize_diagonal=False)

        assert np.all(np.diag(with_diag.precision) < np.diag(without.precision))
        # off-diagonal zero, so the diagonal is 1 / (S_ii + rho)
        np.testing.assert_allclose(np.diag(with_diag.precision), 1.0 / 1.7, rtol=1e-8)

    def test_negative_rho(self, covariance):
        with pytest.raises(ValueError):
            GraphicalLassoLars().solve(covariance, rho=-1.0)

    def test_nonconvergence_reported(self, covariance):
        """A solver stopped early reports converged=False instead of raising."""
        solver = GraphicalLassoCD(max_iter=1, tol=1e-16)
        with warnings.catch_warnings():
            warnings.simplefilter('error', ConvergenceWarning)
            est = solver.solve(covariance, rho=0.05)

        assert est.converged is False


# =============================================================================
# Configuration
# =============================================================================

class TestConfig:
    """Tests for EMConfig and SelectionConfig validation."""

    def test_defaults(self):
        config = EMConfig()
        assert config.max_iter == 500
        assert config.tol == 1e-7
        assert config.start == 'diag'
        assert config.solver == 'cd'
        assert config.penalize_diagonal

    def test_alias_normalized(self):
        assert EMConfig(solver='glassoFast').solver == 'lars'
        assert normalize_solver_name('GLASSO') == 'cd'

    @pytest.mark.parametrize('kwargs', [
        {'max_iter': -1},
        {'tol': -1e-3},
        {'start': 'kmeans'},
        {'solver': 'bogus'},
        {'parameterization': 'cholesky'},
    ])
    def test_invalid_em_config(self, kwargs):
        with pytest.raises(ValueError):
            EMConfig(**kwargs)

    def test_replace_validates(self):
        with pytest.raises(ValueError):
            EMConfig().replace(solver='bogus')

    def test_explicit_start_allowed(self):
        config = EMConfig(start=(np.zeros(2), np.eye(2)))
        assert isinstance(config.start, tuple)

    @pytest.mark.parametrize('kwargs', [
        {'method': 'aic'},
        {'gamma': -0.5},
        {'k': 1},
        {'N': 0},
        {'n_jobs': 0},
    ])
    def test_invalid_selection_config(self, kwargs):
        with pytest.raises(ValueError):
            SelectionConfig(**kwargs)

    def test_method_case(self):
        assert SelectionConfig(method='KFOLD').method == 'kfold'
