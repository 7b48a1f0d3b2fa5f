"""
Environmental covariance estimation

Maximum-likelihood estimation of a positive semi-definite environmental
covariance matrix from vital-rate regression residuals, with year-varying
demographic variance added on the diagonal:

- correlation: unconstrained vector -> correlation matrix
- assembly: correlation + standard deviations -> E, and E -> Σ_t
- likelihood: Cholesky-based negative log-likelihood with exact gradient
- optimizer: scipy quasi-Newton fit returning a FitResult
- uncertainty: derived quantities with delta-method standard errors
- model: EnvironmentalCovarianceModel tying the pieces together
"""

import logging

logger = logging.getLogger("envcov.models.covariance")

from .correlation import (
    build_correlation,
    correlation_factor,
    correlation_to_params
)

from .assembly import (
    build_env_cov,
    build_year_cov,
    build_year_covs
)

from .likelihood import (
    LogLikelihoodEvaluator,
    neg_log_likelihood,
    validate_inputs
)

from .optimizer import (
    default_initial_parameters,
    fit,
    parameter_covariance
)

from .uncertainty import report

from .model import EnvironmentalCovarianceModel

__all__ = [
    'build_correlation',
    'correlation_factor',
    'correlation_to_params',
    'build_env_cov',
    'build_year_cov',
    'build_year_covs',
    'LogLikelihoodEvaluator',
    'neg_log_likelihood',
    'validate_inputs',
    'default_initial_parameters',
    'fit',
    'parameter_covariance',
    'report',
    'EnvironmentalCovarianceModel',
]
