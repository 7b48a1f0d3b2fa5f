# tests/test_correlation.py
"""
Tests for the correlation parameterization and covariance assembly.

Any real parameter vector must map to a valid correlation matrix (unit
diagonal, entries in [-1, 1], positive semi-definite), and assembling E = D R D
must be undone exactly by rescaling back to a correlation matrix.
"""

import numpy as np
import pytest
from hypothesis import given, settings, strategies as st
from numpy.testing import assert_allclose, assert_array_equal

from envcov.core.exceptions import ParameterError, ShapeMismatchError
from envcov.models.covariance.assembly import (
    build_env_cov, build_year_cov, build_year_covs
)
from envcov.models.covariance.correlation import (
    build_correlation, correlation_factor, correlation_to_params
)
from envcov.utils.matrix_ops import cov2corr
from tests.conftest import correlation_parameter_vectors, parameter_vectors


class TestBuildCorrelation:
    """Tests for build_correlation and correlation_factor."""

    def test_single_rate_is_unit(self):
        assert_array_equal(build_correlation(np.array([])), np.array([[1.0]]))
        assert_array_equal(build_correlation(np.zeros(0), n_vital_rates=1), np.array([[1.0]]))

    def test_zero_parameters_give_identity(self):
        assert_allclose(build_correlation(np.zeros(6)), np.eye(4))

    def test_two_rates_closed_form(self):
        for c in (-3.0, -0.5, 0.0, 1.0, 7.5):
            R = build_correlation(np.array([c]))
            assert_allclose(R[1, 0], c / np.sqrt(1.0 + c * c))
            assert_allclose(R[0, 1], R[1, 0])

    def test_three_rates_row_major_order(self):
        # params fill L[1,0], then L[2,0], L[2,1]
        params = np.array([1.0, 0.0, 2.0])
        L, norms = correlation_factor(params)
        assert_allclose(norms, [1.0, np.sqrt(2.0), np.sqrt(5.0)])
        assert_allclose(L[1], [1.0 / np.sqrt(2.0), 1.0 / np.sqrt(2.0), 0.0])
        assert_allclose(L[2], [0.0, 2.0 / np.sqrt(5.0), 1.0 / np.sqrt(5.0)])

        R = build_correlation(params)
        assert_allclose(R[1, 0], 1.0 / np.sqrt(2.0))
        assert_allclose(R[2, 0], 0.0, atol=1e-15)
        assert_allclose(R[2, 1], (2.0 / np.sqrt(5.0)) / np.sqrt(2.0))

    def test_factor_rows_have_unit_norm(self, rng):
        L, _ = correlation_factor(rng.normal(size=10))
        assert_allclose(np.linalg.norm(L, axis=1), np.ones(5))
        assert_array_equal(np.triu(L, 1), np.zeros((5, 5)))

    def test_invalid_length_raises(self):
        with pytest.raises(ShapeMismatchError):
            build_correlation(np.zeros(2))
        with pytest.raises(ShapeMismatchError):
            build_correlation(np.zeros(3), n_vital_rates=4)

    @given(correlation_parameter_vectors())
    @settings(max_examples=200, deadline=None)
    def test_valid_correlation_for_any_input(self, case):
        m, params = case
        R = build_correlation(params, n_vital_rates=m)

        assert R.shape == (m, m)
        assert_array_equal(np.diag(R), np.ones(m))
        assert_allclose(R, R.T)
        assert np.all(np.abs(R) <= 1.0 + 1e-12)
        assert np.linalg.eigvalsh(R)[0] >= -1e-10


class TestCorrelationToParams:
    """Tests for the inverse map used to build starting values."""

    @given(parameter_vectors(6, bound=3.0))
    @settings(max_examples=100, deadline=None)
    def test_round_trip(self, params):
        R = build_correlation(params)
        assert_allclose(correlation_to_params(R), params, rtol=1e-6, atol=1e-8)

    def test_known_value(self):
        r = 0.6
        params = correlation_to_params(np.array([[1.0, r], [r, 1.0]]))
        assert_allclose(build_correlation(params)[1, 0], r)

    def test_not_positive_definite_raises(self):
        with pytest.raises(ParameterError):
            correlation_to_params(np.array([[1.0, 1.2], [1.2, 1.0]]))

    def test_not_a_correlation_matrix_raises(self):
        with pytest.raises(ParameterError):
            correlation_to_params(np.array([[2.0, 0.1], [0.1, 1.0]]))


class TestAssembly:
    """Tests for build_env_cov, build_year_cov and build_year_covs."""

    def test_env_cov_entries(self):
        R = np.array([[1.0, 0.5], [0.5, 1.0]])
        sd = np.array([2.0, 3.0])
        assert_allclose(build_env_cov(R, sd), [[4.0, 3.0], [3.0, 9.0]])

    @given(parameter_vectors(10, bound=4.0),
           st.lists(st.floats(min_value=0.01, max_value=10.0), min_size=5, max_size=5))
    @settings(max_examples=100, deadline=None)
    def test_env_cov_round_trip(self, params, sds):
        R = build_correlation(params)
        E = build_env_cov(R, np.array(sds))

        assert_allclose(np.sqrt(np.diag(E)), sds, rtol=1e-12)
        assert_allclose(cov2corr(E), R, atol=1e-10)

    def test_year_cov_adds_diagonal_without_mutating(self):
        E = np.array([[1.0, 0.2], [0.2, 0.5]])
        original = E.copy()
        sigma = build_year_cov(E, np.array([0.1, 0.3]))

        assert_allclose(sigma, [[1.1, 0.2], [0.2, 0.8]])
        assert_array_equal(E, original)

    def test_year_covs_stack(self, rng):
        E = build_env_cov(build_correlation(rng.normal(size=3)), np.array([0.3, 0.2, 0.1]))
        dem_var = rng.uniform(0.0, 0.05, size=(7, 3))
        sigmas = build_year_covs(E, dem_var)

        assert sigmas.shape == (7, 3, 3)
        for t in range(7):
            assert_allclose(sigmas[t], build_year_cov(E, dem_var[t]))

    def test_shape_mismatch(self):
        with pytest.raises(ShapeMismatchError):
            build_env_cov(np.eye(3), np.ones(2))
        with pytest.raises(ShapeMismatchError):
            build_year_cov(np.eye(2), np.ones(3))
        with pytest.raises(ShapeMismatchError):
            build_year_covs(np.eye(2), np.ones((4, 3)))
