"""
Unit Tests for Tuning-Parameter Selection

This module provides pytest-compatible tests for EBIC and k-fold
selection, the refit retry policy and the em_ggm dispatcher.
Run with: pytest emgaussian/tests/test_selection.py -v
"""

import warnings

import pytest
import numpy as np

from emgaussian.algorithms import selection as selection_module
from emgaussian.algorithms.cross_validation import create_folds, cross_validate
from emgaussian.algorithms.selection import (
    SelectionResult,
    ebic,
    em_ggm,
    nll_from_params,
    refit_best,
    select_ebic,
    select_kfold,
)
from emgaussian.config import EMConfig
from emgaussian.data.generate_ggm import ebic_scenario, generate_ggm_data
from emgaussian.exceptions import InvalidGridValueError, NoValidFitError, NonConvergenceWarning
from emgaussian.models.missing_gaussian import nll_missing
from emgaussian.utils.metrics import pairwise_sample_size


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def scenario():
    """5 variables, 100 rows, 10% missing."""
    X, _ = ebic_scenario(seed=11)
    return X


@pytest.fixture
def diagonal_data():
    """Independent variables: the true graph is empty."""
    X, _ = generate_ggm_data(n=300, p=6, structure='diagonal', missing_prop=0.05, seed=5)
    return X


def _fake_fit(rho, converged, p=3):
    K = np.eye(p)
    K[0, 1] = K[1, 0] = -0.3
    return {
        'mu': np.zeros(p), 'S': np.linalg.inv(K), 'K': K,
        'p_est': np.zeros(p + p * (p + 1) // 2),
        'iterations': 5, 'converged': converged,
        'stopping_reason': 'tolerance' if converged else 'max_iter',
        'rho': rho, 'diagnostics': {}
    }


# =============================================================================
# EBIC
# =============================================================================

class TestEBIC:
    """Tests for the EBIC criterion and EBIC selection."""

    def test_formula(self, scenario):
        """EBIC = 2 nll + E log N + 4 gamma E log P."""
        fit = selection_module.em_prec(scenario, rho=0.1)
        N = pairwise_sample_size(scenario)
        nll = nll_missing(scenario, fit['mu'], fit['K'])
        rows, cols = np.tril_indices(5, k=-1)
        E = np.sum(np.abs(fit['K'][rows, cols]) > 1e-10)

        expected = 2 * nll + E * np.log(N) + 4 * 0.5 * E * np.log(5)
        assert ebic(fit['p_est'], scenario, N=N, gamma=0.5) == pytest.approx(expected)
        assert ebic(fit['p_est'], scenario) == pytest.approx(expected)

    def test_nll_from_params(self, scenario):
        """The flattened vector carries the same likelihood as (mu, K)."""
        fit = selection_module.em_prec(scenario, rho=0.05)
        assert nll_from_params(fit['p_est'], scenario) == pytest.approx(
            nll_missing(scenario, fit['mu'], fit['K']))

    def test_scenario(self, scenario):
        """Small grid: finite criteria and a well-formed graph."""
        rho = [0.0, 0.05, 0.1, 0.2]
        result = select_ebic(scenario, rho)

        assert isinstance(result, SelectionResult)
        assert result.method == 'ebic'
        assert result.crit.shape == (4,)
        assert np.all(np.isfinite(result.crit))
        assert result.selected_index == int(np.nanargmin(result.crit))
        np.testing.assert_array_equal(result.rho, rho)

        graph = result.graph
        assert graph.shape == (5, 5)
        np.testing.assert_array_equal(graph, graph.T)
        np.testing.assert_array_equal(np.diag(graph), 0.0)
        assert np.all(np.abs(graph) <= 1.0)

        np.testing.assert_array_equal(result.results['rho'], result.rho)
        np.testing.assert_array_equal(result.results['crit'], result.crit)
        assert result.results['selected_rho'] == rho[result.selected_index]
        assert 'resources' in result.diagnostics

    def test_records_match_criterion(self, scenario):
        """Records agree with the criterion vector."""
        result = select_ebic(scenario, [0.05, 0.3])
        records = result.diagnostics['records']

        assert [r['rho'] for r in records] == [0.05, 0.3]
        for r, c in zip(records, result.crit):
            assert r['criterion'] == pytest.approx(c)
        assert records[1]['n_edges'] <= records[0]['n_edges']

    def test_diagonal_truth_prefers_large_rho(self, diagonal_data):
        """With no true edges, EBIC picks the penalty that removes all edges."""
        config = EMConfig(penalize_diagonal=False)
        result = select_ebic(diagonal_data, [0.0, 0.01, 0.3], config=config)

        assert result.selected_index == 2
        assert result.crit[2] < result.crit[0]
        assert np.all(result.graph == 0.0)

    def test_negative_grid_before_fitting(self, scenario, monkeypatch):
        """A negative grid value raises before any fit starts."""
        def fail(*args, **kwargs):
            raise AssertionError("fit should not run")

        monkeypatch.setattr(selection_module, 'run_tasks', fail)
        with pytest.raises(InvalidGridValueError):
            select_ebic(scenario, [0.1, -0.05])

    @pytest.mark.parametrize('grid', [[], [np.nan], [0.1, np.inf]])
    def test_invalid_grid(self, scenario, grid):
        with pytest.raises(InvalidGridValueError):
            select_ebic(scenario, grid)

    def test_count_failures_all_invalid(self, scenario):
        """With count_failures, non-converged fits are invalid; none left raises."""
        config = EMConfig(max_iter=1, tol=1e-15)
        with pytest.raises(NoValidFitError):
            select_ebic(scenario, [0.1, 0.2], config=config, count_failures=True)

    def test_nonconverged_kept_without_count_failures(self, scenario):
        """Without count_failures, non-converged fits still get a criterion."""
        config = EMConfig(max_iter=1, tol=1e-15)
        result = select_ebic(scenario, [0.1, 0.2], config=config)

        assert np.all(np.isfinite(result.crit))
        assert not result.converged

    def test_fit_error_scores_nan(self, scenario, monkeypatch):
        """A grid point whose fit raises scores NaN and is never selected."""
        original = selection_module._ebic_task

        def flaky(args):
            if args[1] == 0.1:
                raise np.linalg.LinAlgError("singular")
            return original(args)

        monkeypatch.setattr(selection_module, '_ebic_task', flaky)
        result = select_ebic(scenario, [0.1, 0.2])

        assert np.isnan(result.crit[0])
        assert result.selected_index == 1
        assert 'LinAlgError' in result.diagnostics['records'][0]['failure']

    def test_parallel_matches_sequential(self, scenario):
        """n_jobs > 1 gives the same criterion vector in grid order."""
        rho = [0.2, 0.05, 0.1]
        seq = select_ebic(scenario, rho, n_jobs=1)
        par = select_ebic(scenario, rho, n_jobs=2)

        np.testing.assert_allclose(par.crit, seq.crit)
        assert par.selected_index == seq.selected_index

    def test_dataframe_labels(self, scenario):
        """DataFrame column names label the graph."""
        import pandas as pd

        df = pd.DataFrame(scenario, columns=['v1', 'v2', 'v3', 'v4', 'v5'])
        result = select_ebic(df, [0.1])
        frame = result.graph_frame()

        assert result.columns == ['v1', 'v2', 'v3', 'v4', 'v5']
        assert list(frame.index) == result.columns


# =============================================================================
# k-fold
# =============================================================================

class TestKFold:
    """Tests for k-fold cross-validation selection."""

    def test_folds_partition(self):
        """Folds are disjoint and cover every row."""
        folds = create_folds(23, k=4, seed=1)

        assert len(folds) == 4
        combined = np.sort(np.concatenate(folds))
        np.testing.assert_array_equal(combined, np.arange(23))

    def test_folds_deterministic(self):
        """The same seed gives the same folds."""
        a = create_folds(50, k=5, seed=7)
        b = create_folds(50, k=5, seed=7)
        for fa, fb in zip(a, b):
            np.testing.assert_array_equal(fa, fb)

    def test_folds_invalid_k(self):
        with pytest.raises(ValueError):
            create_folds(3, k=5)

    def test_cross_validate_sums_folds(self, scenario):
        """The criterion is the sum of held-out NLLs."""
        folds = create_folds(scenario.shape[0], k=3, seed=2)
        crit, records = cross_validate(scenario, [0.1], EMConfig(), folds)

        assert crit[0] == pytest.approx(sum(records[0]['fold_nll']))
        assert records[0]['failures'] == []

    def test_deterministic_with_seed(self, scenario):
        """Selection with a fixed seed is reproducible."""
        rho = [0.05, 0.2]
        a = select_kfold(scenario, rho, k=3, seed=42)
        b = select_kfold(scenario, rho, k=3, seed=42)

        np.testing.assert_array_equal(a.crit, b.crit)
        assert a.selected_index == b.selected_index
        assert a.method == 'kfold'

    def test_failed_fold_invalidates_value(self, scenario):
        """A non-converged fold makes the grid value NaN."""
        config = EMConfig(max_iter=1, tol=1e-15)
        folds = create_folds(scenario.shape[0], k=3, seed=0)
        crit, records = cross_validate(scenario, [0.1], config, folds)

        assert np.isnan(crit[0])
        assert len(records[0]['failures']) == 3

    def test_all_invalid(self, scenario):
        config = EMConfig(max_iter=1, tol=1e-15)
        with pytest.raises(NoValidFitError):
            select_kfold(scenario, [0.1, 0.2], config=config, k=3, seed=0)


# =============================================================================
# Refit policy
# =============================================================================

class TestRefitPolicy:
    """Tests for the refit-and-retry step after cross-validation."""

    def test_retry_next_best(self, monkeypatch):
        """A non-converged refit moves on to the next-best value with a warning."""
        calls = []

        def fake_em_prec(X, rho=0.0, config=None):
            calls.append(rho)
            return _fake_fit(rho, converged=(rho != 0.2))

        monkeypatch.setattr(selection_module, 'em_prec', fake_em_prec)
        grid = np.array([0.1, 0.2, 0.3])
        crit = np.array([2.0, 1.0, np.nan])

        with pytest.warns(NonConvergenceWarning):
            fit, index, attempts = refit_best(np.zeros((4, 3)), grid, crit, EMConfig())

        assert calls == [0.2, 0.1]
        assert index == 0
        assert fit['converged']
        assert len(attempts) == 2

    def test_retry_exhausted(self, monkeypatch):
        """When nothing converges the last attempt is returned, flagged non-converged."""
        monkeypatch.setattr(selection_module, 'em_prec',
                            lambda X, rho=0.0, config=None: _fake_fit(rho, converged=False))
        grid = np.array([0.1, 0.2, 0.3])
        crit = np.array([3.0, 1.0, 2.0])

        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter('always')
            fit, index, attempts = refit_best(np.zeros((4, 3)), grid, crit, EMConfig())

        retry_warnings = [w for w in caught if issubclass(w.category, NonConvergenceWarning)]
        assert len(retry_warnings) == 2
        assert index == 0
        assert not fit['converged']

    def test_refit_error_is_skipped(self, monkeypatch):
        """A refit that raises counts as a failure and the next value is tried."""
        def fake_em_prec(X, rho=0.0, config=None):
            if rho == 0.2:
                raise np.linalg.LinAlgError("singular")
            return _fake_fit(rho, converged=True)

        monkeypatch.setattr(selection_module, 'em_prec', fake_em_prec)
        grid = np.array([0.1, 0.2])
        crit = np.array([2.0, 1.0])

        with pytest.warns(NonConvergenceWarning):
            fit, index, attempts = refit_best(np.zeros((4, 3)), grid, crit, EMConfig())

        assert index == 0
        assert 'failure' in attempts[0]

    def test_zero_graph_on_failure(self, scenario, monkeypatch):
        """count_failures with a non-converged final model gives an all-zero graph."""
        def fake_cv(X, rho, config, folds, n_jobs=1, verbose=False):
            crit = np.arange(len(rho), dtype=float)
            return crit, [{'rho': float(r), 'criterion': float(c), 'fold_nll': [], 'failures': []}
                          for r, c in zip(rho, crit)]

        monkeypatch.setattr(selection_module, 'cross_validate', fake_cv)
        monkeypatch.setattr(selection_module, 'em_prec',
                            lambda X, rho=0.0, config=None: _fake_fit(rho, converged=False, p=5))

        with warnings.catch_warnings():
            warnings.simplefilter('ignore', NonConvergenceWarning)
            zeroed = select_kfold(scenario, [0.1, 0.2], k=3, seed=0, count_failures=True)
            kept = select_kfold(scenario, [0.1, 0.2], k=3, seed=0, count_failures=False)

        assert np.all(zeroed.graph == 0.0)
        assert not zeroed.converged
        assert kept.graph[0, 1] == pytest.approx(0.3)


# =============================================================================
# Dispatcher
# =============================================================================

class TestEmGGM:
    """Tests for em_ggm."""

    def test_ebic_default(self, scenario):
        result = em_ggm(scenario, rho=[0.05, 0.1])
        assert result.method == 'ebic'

    def test_kfold_with_options(self, scenario):
        """Keyword options are routed to EM and selection settings."""
        result = em_ggm(scenario, rho=[0.05, 0.1], rho_select='kfold', k=3, seed=1,
                        solver='lars', max_iter=300)
        assert result.method == 'kfold'
        assert result.crit.shape == (2,)

    def test_single_rho(self, scenario):
        """A scalar rho is a one-point grid."""
        result = em_ggm(scenario, rho=0.1)
        assert result.selected_index == 0
        assert result.selected_rho == 0.1

    def test_unknown_option(self, scenario):
        with pytest.raises(TypeError):
            em_ggm(scenario, rho=0.1, bogus=1)

    def test_unknown_method(self, scenario):
        with pytest.raises(ValueError):
            em_ggm(scenario, rho=0.1, rho_select='aic')

    def test_log_dir(self, scenario, tmp_path):
        """log_dir writes one record per grid point."""
        from emgaussian.utils.logging_utils import FitLogger

        result = em_ggm(scenario, rho=[0.05, 0.1, 0.2], log_dir=str(tmp_path))
        records = FitLogger(str(tmp_path)).load_results('ebic')

        assert len(records) == 3
        assert sum(r['selected'] for r in records) == 1
        assert all(r['run_id'] == result.diagnostics['run_id'] for r in records)

    def test_verbose(self, scenario, capsys):
        em_ggm(scenario, rho=[0.1], verbose=True)
        captured = capsys.readouterr()
        assert "Selected rho" in captured.out
