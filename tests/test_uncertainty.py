# tests/test_uncertainty.py
"""
Tests for the covariance report and delta-method standard errors.
"""

import numpy as np
import pytest
from numpy.testing import assert_allclose, assert_array_equal

from envcov.core.exceptions import ParameterError, ShapeMismatchError
from envcov.core.parameters import CovarianceParameters
from envcov.core.results import CovarianceReport, FitResult, FitStatus
from envcov.models.covariance.assembly import build_env_cov
from envcov.models.covariance.correlation import build_correlation
from envcov.models.covariance.optimizer import fit
from envcov.models.covariance.uncertainty import (
    correlation_jacobian, delta_method_se, env_cov_jacobian, report,
    std_dev_jacobian
)
from envcov.utils.differentiation import jacobian


def _derived(theta, m):
    params = CovarianceParameters.from_array(theta, n_vital_rates=m)
    R = build_correlation(params.correlation_params, m)
    E = build_env_cov(R, params.std_devs)
    return params.std_devs, R[np.tril_indices(m, -1)], E[np.tril_indices(m)]


class TestJacobians:
    """Exact Jacobians agree with finite differences."""

    def test_std_dev_jacobian(self, random_theta):
        params = CovarianceParameters.from_array(random_theta)
        numeric = jacobian(lambda th: _derived(th, 4)[0], random_theta, epsilon=1e-6)
        assert_allclose(std_dev_jacobian(params), numeric, rtol=1e-6, atol=1e-9)

    def test_correlation_jacobian(self, random_theta):
        params = CovarianceParameters.from_array(random_theta)
        numeric = jacobian(lambda th: _derived(th, 4)[1], random_theta, epsilon=1e-6)
        exact = correlation_jacobian(params)

        assert exact.shape == (6, 10)
        assert_array_equal(exact[:, 6:], np.zeros((6, 4)))
        assert_allclose(exact, numeric, rtol=1e-6, atol=1e-9)

    def test_env_cov_jacobian(self, random_theta):
        params = CovarianceParameters.from_array(random_theta)
        numeric = jacobian(lambda th: _derived(th, 4)[2], random_theta, epsilon=1e-6)
        exact = env_cov_jacobian(params)

        assert exact.shape == (10, 10)
        assert_allclose(exact, numeric, rtol=1e-6, atol=1e-9)

    def test_delta_method_by_hand(self):
        jac = np.array([[1.0, 0.0], [0.0, 2.0], [1.0, 1.0]])
        cov = np.array([[4.0, 0.0], [0.0, 1.0]])
        assert_allclose(delta_method_se(jac, cov), [2.0, 2.0, np.sqrt(5.0)])

    def test_delta_method_propagates_nan(self):
        se = delta_method_se(np.eye(2), np.full((2, 2), np.nan))
        assert np.all(np.isnan(se))


class TestReport:
    """Derived quantities recomputed from the parameters."""

    def test_quantities(self, simulated_evaluator, random_theta):
        rep = report(random_theta, simulated_evaluator)
        sd = np.exp(random_theta[6:])

        assert isinstance(rep, CovarianceReport)
        assert_allclose(rep.std_devs, sd)
        assert_allclose(rep.environmental_covariance,
                        rep.correlation * np.outer(sd, sd))
        assert rep.year_covariances.shape == (60, 4, 4)
        assert_allclose(rep.year_covariances[3],
                        rep.environmental_covariance + np.diag(simulated_evaluator.dem_var[3]))
        assert np.all(np.diff(rep.eigenvalues) >= 0)
        assert rep.is_positive_definite()
        assert not rep.has_standard_errors

    def test_labelled_frames(self, simulated_evaluator, random_theta):
        rep = report(random_theta, simulated_evaluator)
        frame = rep.covariance_frame()

        assert list(frame.index) == simulated_evaluator.labels
        assert list(rep.correlation_frame().columns) == simulated_evaluator.labels
        assert list(rep.to_dataframe().index) == simulated_evaluator.labels
        assert rep.year_covariance_frame(0).shape == (4, 4)
        assert "Environmental covariance matrix" in rep.summary()

    def test_accepts_data_pair(self, simulated_data, random_theta, simulated_evaluator):
        from_pair = report(random_theta, simulated_data)
        from_evaluator = report(random_theta, simulated_evaluator)
        assert_allclose(from_pair.environmental_covariance,
                        from_evaluator.environmental_covariance)

    def test_rejects_bad_data_argument(self, random_theta):
        with pytest.raises(ParameterError):
            report(random_theta, np.zeros((3, 2)))

    def test_dimension_mismatch(self, simulated_evaluator):
        with pytest.raises(ShapeMismatchError):
            report(np.zeros(3), simulated_evaluator)

    def test_carries_fit_status(self, simulated_evaluator, random_theta):
        fit_result = FitResult(
            model_name="test",
            parameters=CovarianceParameters.from_array(random_theta),
            status=FitStatus.INFEASIBLE,
        )
        rep = report(fit_result, simulated_evaluator)
        assert rep.status is FitStatus.INFEASIBLE
        assert rep.model_name == "test"

    def test_missing_parameters(self, simulated_evaluator):
        with pytest.raises(ParameterError):
            report(FitResult(model_name="empty", status=FitStatus.INFEASIBLE),
                   simulated_evaluator)


class TestStandardErrors:
    """Delta-method standard errors on a well-posed problem."""

    @pytest.fixture
    def fitted_report(self, simulated_evaluator):
        result = fit(None, simulated_evaluator)
        return report(result, simulated_evaluator, standard_errors=True)

    def test_finite_and_positive(self, fitted_report):
        rep = fitted_report
        m = rep.std_devs.shape[0]
        off_diagonal = ~np.eye(m, dtype=bool)

        assert rep.has_standard_errors
        assert np.all(np.isfinite(rep.std_dev_se)) and np.all(rep.std_dev_se > 0)
        assert np.all(np.isfinite(rep.environmental_covariance_se))
        assert np.all(rep.environmental_covariance_se > 0)
        assert np.all(rep.correlation_se[off_diagonal] > 0)
        assert_array_equal(np.diag(rep.correlation_se), np.zeros(m))

    def test_symmetric(self, fitted_report):
        assert_allclose(fitted_report.correlation_se, fitted_report.correlation_se.T)
        assert_allclose(fitted_report.environmental_covariance_se,
                        fitted_report.environmental_covariance_se.T)

    def test_standard_errors_shrink_relative_to_estimates(self, fitted_report):
        # Sixty years pin the standard deviations to well within their own size.
        assert np.all(fitted_report.std_dev_se < fitted_report.std_devs)

    def test_uses_supplied_covariance(self, simulated_evaluator, random_theta):
        cov = np.eye(10) * 1e-4
        rep = report(random_theta, simulated_evaluator, standard_errors=True, param_cov=cov)
        sd = np.exp(random_theta[6:])
        assert_allclose(rep.std_dev_se, sd * 1e-2)
