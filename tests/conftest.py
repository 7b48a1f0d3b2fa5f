'''
Pytest configuration and fixtures for the envcov test suite.

Provides seeded data generators for the covariance estimator, small
hand-checkable scenarios and hypothesis strategies for unconstrained
parameter vectors.
'''

from typing import Tuple

import numpy as np
import pandas as pd
import pytest
from hypothesis import strategies as st

from envcov.core.config import reset_config
from envcov.core.parameters import n_correlation_params
from envcov.models.covariance.likelihood import LogLikelihoodEvaluator
from envcov.models.demography.vital_rates import vital_rate_labels


# ---- Configuration ----

@pytest.fixture
def default_config():
    """Start and end the test with the default configuration."""
    reset_config()
    yield
    reset_config()


# ---- Basic Data Generation Fixtures ----

@pytest.fixture
def rng() -> np.random.Generator:
    """Provide a seeded random number generator for reproducible tests."""
    return np.random.default_rng(42)


@pytest.fixture
def three_year_residuals() -> np.ndarray:
    """Two vital rates over three years with a clear negative association."""
    return np.array([[0.1, -0.05],
                     [0.0, 0.02],
                     [-0.1, 0.03]])


@pytest.fixture
def zero_mean_mle(three_year_residuals: np.ndarray) -> np.ndarray:
    """Zero-mean maximum-likelihood covariance u'u/T of the three-year residuals."""
    u = three_year_residuals
    return u.T @ u / u.shape[0]


@pytest.fixture
def true_env_cov() -> np.ndarray:
    """Environmental covariance of four vital rates (two age classes)."""
    sd = np.array([0.3, 0.2, 0.15, 0.1])
    R = np.array([[1.0, 0.5, -0.3, 0.1],
                  [0.5, 1.0, 0.2, -0.2],
                  [-0.3, 0.2, 1.0, 0.4],
                  [0.1, -0.2, 0.4, 1.0]])
    return R * np.outer(sd, sd)


@pytest.fixture
def simulated_data(rng: np.random.Generator,
                   true_env_cov: np.ndarray) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """Residuals drawn from N(0, E + diag(dem_var[t])) over 60 years."""
    n_years, m = 60, true_env_cov.shape[0]
    dem_var = rng.uniform(0.001, 0.01, size=(n_years, m))
    residuals = np.empty((n_years, m))
    for t in range(n_years):
        cov = true_env_cov + np.diag(dem_var[t])
        residuals[t] = rng.multivariate_normal(np.zeros(m), cov)

    labels = vital_rate_labels(m // 2)
    index = pd.RangeIndex(1960, 1960 + n_years, name="year")
    return (pd.DataFrame(residuals, index=index, columns=labels),
            pd.DataFrame(dem_var, index=index, columns=labels))


@pytest.fixture
def simulated_evaluator(simulated_data) -> LogLikelihoodEvaluator:
    residuals, dem_var = simulated_data
    return LogLikelihoodEvaluator(residuals, dem_var)


@pytest.fixture
def random_theta(rng: np.random.Generator) -> np.ndarray:
    """A generic parameter vector for four vital rates."""
    m = 4
    return np.concatenate([rng.normal(0.0, 0.8, n_correlation_params(m)),
                           np.log(rng.uniform(0.1, 0.4, m))])


# ---- Hypothesis strategies ----

def parameter_vectors(n_params: int, bound: float = 5.0) -> st.SearchStrategy:
    """Unconstrained parameter vectors of a fixed length."""
    return st.lists(
        st.floats(min_value=-bound, max_value=bound, allow_nan=False, allow_infinity=False),
        min_size=n_params, max_size=n_params
    ).map(np.array)


@st.composite
def correlation_parameter_vectors(draw, max_rates: int = 6):
    """(m, params) pairs with m between 1 and ``max_rates``."""
    m = draw(st.integers(min_value=1, max_value=max_rates))
    params = draw(parameter_vectors(n_correlation_params(m), bound=50.0))
    return m, params
