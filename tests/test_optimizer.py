# tests/test_optimizer.py
"""
Tests for maximum-likelihood fitting of the covariance parameters.
"""

import warnings

import numpy as np
import pytest
from numpy.testing import assert_allclose

from envcov.core.config import set_config
from envcov.core.exceptions import (
    ConvergenceWarning, ParameterError, ShapeMismatchError
)
from envcov.core.parameters import CovarianceParameters
from envcov.core.results import FitStatus
from envcov.models.covariance import optimizer as optimizer_module
from envcov.models.covariance.likelihood import LogLikelihoodEvaluator
from envcov.models.covariance.optimizer import (
    default_initial_parameters, fit, parameter_covariance
)
from envcov.models.covariance.uncertainty import report
from tests import SKIP_SLOW_TESTS


def _unit_start(m: int) -> CovarianceParameters:
    return CovarianceParameters(np.zeros(m * (m - 1) // 2), np.zeros(m))


class TestDefaultInitialParameters:

    def test_layout(self):
        params = default_initial_parameters(4)
        assert params.correlation_params.shape == (6,)
        assert_allclose(params.std_devs, np.full(4, 0.1))

    def test_configured_std_dev(self, default_config):
        set_config("numerical", "initial_std_dev", 0.5)
        assert_allclose(default_initial_parameters(2).std_devs, [0.5, 0.5])


class TestThreeYearScenario:
    """Two vital rates, three years, no demographic variance."""

    @pytest.fixture
    def fitted(self, three_year_residuals):
        evaluator = LogLikelihoodEvaluator(three_year_residuals,
                                           np.zeros_like(three_year_residuals))
        return fit(_unit_start(2), evaluator), evaluator

    def test_converges(self, fitted):
        result, _ = fitted
        assert result.status is FitStatus.SUCCESS
        assert result.converged
        assert result.iterations > 0
        assert result.n_function_evals >= result.iterations
        assert result.gradient_norm < 1e-3

    def test_recovers_zero_mean_mle(self, fitted, zero_mean_mle):
        result, evaluator = fitted
        rep = report(result, evaluator)

        assert rep.correlation[0, 1] < 0
        assert_allclose(rep.environmental_covariance, zero_mean_mle, rtol=1e-3, atol=1e-6)
        assert_allclose(rep.std_devs, np.sqrt(np.diag(zero_mean_mle)), rtol=1e-3)

    def test_bfgs_agrees(self, three_year_residuals, zero_mean_mle):
        evaluator = LogLikelihoodEvaluator(three_year_residuals,
                                           np.zeros_like(three_year_residuals))
        result = fit(_unit_start(2), evaluator, method="BFGS")
        rep = report(result, evaluator)

        assert result.status is not FitStatus.INFEASIBLE
        assert_allclose(rep.environmental_covariance, zero_mean_mle, rtol=1e-3, atol=1e-6)

    def test_result_metadata(self, fitted):
        result, _ = fitted
        assert result.metadata["method"] == "L-BFGS-B"
        assert result.n_years == 3
        assert result.labels == ["recruitment_1", "survival_1"]
        assert result.parameter_covariance is None
        assert result.std_errors is None


class TestOverSubtraction:
    """Demographic variance larger than the observed variance of one rate."""

    @pytest.fixture
    def data(self, rng):
        n_years = 20
        residuals = np.column_stack([rng.normal(0.0, 0.1, n_years),
                                     rng.normal(0.0, 0.2, n_years)])
        dem_var = np.column_stack([np.full(n_years, 0.05),
                                   np.full(n_years, 0.001)])
        return residuals, dem_var

    def test_variance_driven_toward_zero(self, data):
        residuals, dem_var = data
        assert np.var(residuals[:, 0], ddof=1) < dem_var[0, 0]

        evaluator = LogLikelihoodEvaluator(residuals, dem_var)
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", ConvergenceWarning)
            result = fit(None, evaluator)
        rep = report(result, evaluator)

        assert result.status is not FitStatus.INFEASIBLE
        assert rep.std_devs[0] < 0.025
        assert np.all(np.diag(rep.environmental_covariance) >= 0)
        assert rep.eigenvalues[0] >= -1e-12


class TestFailureModes:
    """Errors before optimizing, statuses after."""

    def test_row_mismatch_raises_before_optimizer(self, monkeypatch):
        calls = []

        def spy(*args, **kwargs):
            calls.append(args)
            raise AssertionError("optimizer must not be called")

        monkeypatch.setattr(optimizer_module.optimize, "minimize", spy)

        with pytest.raises(ShapeMismatchError):
            fit(None, LogLikelihoodEvaluator(np.zeros((3, 2)), np.zeros((4, 2))))
        assert calls == []

    def test_initial_length_mismatch_raises_before_optimizer(self, monkeypatch,
                                                             three_year_residuals):
        calls = []
        monkeypatch.setattr(optimizer_module.optimize, "minimize",
                            lambda *args, **kwargs: calls.append(args))
        evaluator = LogLikelihoodEvaluator(three_year_residuals,
                                           np.zeros_like(three_year_residuals))

        with pytest.raises(ShapeMismatchError):
            fit(np.zeros(6), evaluator)
        assert calls == []

    def test_unsupported_method(self, three_year_residuals):
        evaluator = LogLikelihoodEvaluator(three_year_residuals,
                                           np.zeros_like(three_year_residuals))
        with pytest.raises(ParameterError):
            fit(None, evaluator, method="Nelder-Mead")

    def test_iteration_cap_reports_not_converged(self, simulated_evaluator):
        with pytest.warns(ConvergenceWarning):
            result = fit(None, simulated_evaluator, max_iterations=1)

        assert result.status is FitStatus.NOT_CONVERGED
        assert not result.converged
        assert np.isfinite(result.neg_log_likelihood)

    def test_bfgs_respects_evaluation_cap(self, simulated_evaluator):
        with pytest.warns(ConvergenceWarning):
            result = fit(None, simulated_evaluator, method="BFGS", max_function_evals=3)

        assert result.status is FitStatus.NOT_CONVERGED
        assert result.n_function_evals == 3
        assert result.parameters is not None
        assert np.isfinite(result.neg_log_likelihood)

    def test_infeasible_start_reports_infeasible(self, three_year_residuals):
        # sd = exp(-800) underflows to zero, so every Σ_t is the zero matrix
        evaluator = LogLikelihoodEvaluator(three_year_residuals,
                                           np.zeros_like(three_year_residuals))
        with warnings.catch_warnings():
            warnings.simplefilter("error", ConvergenceWarning)
            result = fit(np.array([0.0, -800.0, -800.0]), evaluator)

        assert result.status is FitStatus.INFEASIBLE
        assert not result.converged
        assert result.n_infeasible_evals >= 1
        assert result.neg_log_likelihood == evaluator.infeasible_penalty
        assert np.isnan(result.gradient_norm)

    def test_configured_method(self, default_config, three_year_residuals):
        set_config("numerical", "optimization_method", "BFGS")
        evaluator = LogLikelihoodEvaluator(three_year_residuals,
                                           np.zeros_like(three_year_residuals))
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", ConvergenceWarning)
            result = fit(None, evaluator)
        assert result.metadata["method"] == "BFGS"


class TestCallback:

    def test_progress_reported(self, three_year_residuals):
        evaluator = LogLikelihoodEvaluator(three_year_residuals,
                                           np.zeros_like(three_year_residuals))
        progress = []
        result = fit(_unit_start(2), evaluator,
                     callback=lambda it, value: progress.append((it, value)))

        assert 0 < len(progress) <= result.iterations + 1
        assert [it for it, _ in progress] == list(range(1, len(progress) + 1))
        assert all(np.isfinite(value) for _, value in progress)


@pytest.mark.slow
@pytest.mark.skipif(SKIP_SLOW_TESTS, reason="slow optimization test")
class TestSimulatedRecovery:
    """Four vital rates, sixty years of simulated residuals."""

    def test_recovers_true_covariance(self, simulated_evaluator, true_env_cov):
        result = fit(None, simulated_evaluator, compute_covariance=True)
        rep = report(result, simulated_evaluator)

        assert result.status is FitStatus.SUCCESS
        assert rep.is_positive_definite()
        assert_allclose(rep.environmental_covariance, true_env_cov, atol=0.08)

    def test_parameter_standard_errors(self, simulated_evaluator):
        result = fit(None, simulated_evaluator, compute_covariance=True)

        assert result.parameter_covariance.shape == (10, 10)
        assert_allclose(result.parameter_covariance, result.parameter_covariance.T)
        assert np.all(np.isfinite(result.std_errors))
        assert np.all(result.std_errors > 0)

    def test_parameter_covariance_matches_fit(self, simulated_evaluator):
        result = fit(None, simulated_evaluator, compute_covariance=True)
        cov = parameter_covariance(simulated_evaluator, result.parameters)
        assert_allclose(cov, result.parameter_covariance)
