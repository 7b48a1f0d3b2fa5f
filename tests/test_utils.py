# tests/test_utils.py
"""
Tests for utility functions in envcov.

Covers the covariance/correlation helpers in ``envcov.utils.matrix_ops`` and
the central finite-difference routines in ``envcov.utils.differentiation``.
"""

import numpy as np
import pytest
from hypothesis import given, settings, strategies as st
from numpy.testing import assert_allclose, assert_array_equal

from envcov.core.exceptions import NumericWarning, ShapeMismatchError
from envcov.utils.differentiation import (
    gradient_2sided, hessian_from_gradient, jacobian
)
from envcov.utils.matrix_ops import (
    cov2corr, ensure_symmetric, is_positive_definite, min_eigenvalue
)


# ---- Matrix Operations Tests ----

class TestMatrixOperations:
    """Tests for matrix operations utility functions."""

    def test_cov2corr(self):
        C = np.array([[4.0, 2.0], [2.0, 9.0]])
        assert_allclose(cov2corr(C), [[1.0, 1.0 / 3.0], [1.0 / 3.0, 1.0]])

    def test_cov2corr_non_positive_variance(self):
        C = np.array([[-0.01, 0.02, 0.0],
                      [0.02, 0.04, 0.01],
                      [0.0, 0.01, 0.09]])
        R = cov2corr(C)

        assert_array_equal(np.diag(R), np.ones(3))
        assert R[0, 1] == 0.0 and R[1, 0] == 0.0
        assert_allclose(R[1, 2], 0.01 / (0.2 * 0.3))

    def test_cov2corr_not_square(self):
        with pytest.raises(ShapeMismatchError):
            cov2corr(np.ones((2, 3)))

    @given(st.integers(min_value=1, max_value=6), st.integers(min_value=0, max_value=10_000))
    @settings(max_examples=50, deadline=None)
    def test_cov2corr_property(self, n, seed):
        rng = np.random.default_rng(seed)
        A = rng.normal(size=(n, n))
        C = A @ A.T + 0.1 * np.eye(n)
        R = cov2corr(C)

        assert_allclose(np.diag(R), np.ones(n))
        assert_allclose(R, R.T)
        assert np.all(np.abs(R) <= 1.0 + 1e-12)
        sd = np.sqrt(np.diag(C))
        assert_allclose(R * np.outer(sd, sd), C, rtol=1e-10, atol=1e-12)

    def test_ensure_symmetric(self):
        A = np.array([[1.0, 2.0], [0.0, 1.0]])
        assert_allclose(ensure_symmetric(A), [[1.0, 1.0], [1.0, 1.0]])

        S = np.array([[1.0, 0.5], [0.5, 2.0]])
        assert_array_equal(ensure_symmetric(S), S)

    def test_is_positive_definite(self):
        assert is_positive_definite(np.array([[2.0, 1.0], [1.0, 2.0]]))
        assert not is_positive_definite(np.array([[1.0, 2.0], [2.0, 1.0]]))
        assert not is_positive_definite(np.array([[1.0, 1.0], [1.0, 1.0]]))
        assert not is_positive_definite(np.ones((2, 3)))
        assert not is_positive_definite(np.array([[np.nan, 0.0], [0.0, 1.0]]))

    def test_min_eigenvalue(self):
        A = np.array([[2.0, 1.0], [1.0, 2.0]])
        assert_allclose(min_eigenvalue(A), 1.0)
        assert_allclose(min_eigenvalue(np.diag([3.0, -0.5, 1.0])), -0.5)


# ---- Numerical Differentiation Tests ----

class TestDifferentiation:
    """Tests for the finite-difference routines."""

    def test_gradient_quadratic(self):
        def f(x):
            return x[0] ** 2 + 3.0 * x[0] * x[1] + np.exp(x[1])

        x = np.array([0.5, -0.2])
        expected = np.array([2 * x[0] + 3 * x[1], 3 * x[0] + np.exp(x[1])])
        assert_allclose(gradient_2sided(f, x), expected, rtol=1e-7)
        assert_allclose(gradient_2sided(f, x, epsilon=1e-5), expected, rtol=1e-7)

    def test_gradient_extra_args(self):
        def f(x, scale):
            return scale * np.sum(x ** 2)

        assert_allclose(gradient_2sided(f, np.array([1.0, 2.0]), args=(0.5,)),
                        [1.0, 2.0], rtol=1e-7)

    def test_gradient_rejects_matrix_input(self):
        with pytest.raises(ShapeMismatchError):
            gradient_2sided(np.sum, np.ones((2, 2)))

    def test_gradient_warns_on_non_finite(self):
        with pytest.warns(NumericWarning):
            gradient_2sided(lambda x: np.log(x[0]), np.array([0.0]), epsilon=1e-3)

    def test_jacobian_linear(self):
        A = np.array([[1.0, 2.0, 0.0], [0.0, -1.0, 3.0]])
        assert_allclose(jacobian(lambda x: A @ x, np.array([0.3, -1.0, 2.0])), A,
                        atol=1e-9)

    def test_jacobian_nonlinear(self):
        def f(x):
            return np.array([np.sin(x[0]) * x[1], x[0] ** 3])

        x = np.array([0.7, 1.5])
        expected = np.array([[np.cos(x[0]) * x[1], np.sin(x[0])],
                             [3 * x[0] ** 2, 0.0]])
        assert_allclose(jacobian(f, x), expected, rtol=1e-7, atol=1e-10)

    def test_jacobian_rejects_scalar_output(self):
        with pytest.raises(ShapeMismatchError):
            jacobian(lambda x: float(np.sum(x)), np.ones(2))

    def test_hessian_from_gradient(self):
        H = np.array([[4.0, 1.0], [1.0, 3.0]])
        hess = hessian_from_gradient(lambda x: H @ x, np.array([1.0, -2.0]))

        assert_allclose(hess, H, atol=1e-8)
        assert_array_equal(hess, hess.T)

    def test_hessian_symmetrizes(self):
        # Asymmetric "gradient" map: the result is the symmetric part.
        A = np.array([[2.0, 1.0], [0.0, 2.0]])
        hess = hessian_from_gradient(lambda x: A @ x, np.zeros(2), epsilon=1e-4)
        assert_allclose(hess, [[2.0, 0.5], [0.5, 2.0]], atol=1e-10)

    def test_hessian_rejects_wrong_length(self):
        with pytest.raises(ShapeMismatchError):
            hessian_from_gradient(lambda x: np.ones(3), np.zeros(2))
