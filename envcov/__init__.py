# envcov/__init__.py
"""
envcov - environmental covariance estimation for age-structured vital rates

Estimates the environmental covariance among vital-rate regression residuals
after removing year-varying demographic (sampling) variance. The covariance
is positive semi-definite by construction, the likelihood gradient is exact,
and every fit reports an explicit convergence status.

Subpackages:
- core: base classes, parameters, results, configuration and exceptions
- models.covariance: the estimation engine
- models.demography: vital-rate regressions, demographic variances, diagnostics
- utils: matrix helpers and numerical differentiation
"""

import logging

from .version import __version__

from . import core
from . import utils
from . import models

from .core.config import initialize_config
from .core.exceptions import (
    ConvergenceWarning,
    DataError,
    EnvCovError,
    InfeasibleCovarianceError,
    NumericalDegeneracyError,
    NumericWarning,
    ShapeMismatchError
)
from .core.parameters import CovarianceParameters
from .core.results import CovarianceReport, FitResult, FitStatus
from .models.covariance import (
    EnvironmentalCovarianceModel,
    LogLikelihoodEvaluator,
    build_correlation,
    build_env_cov,
    build_year_cov,
    fit,
    neg_log_likelihood,
    report
)
from .models.demography import naive_environmental_covariance, prepare_inputs

logger = logging.getLogger("envcov")

# Apply the configuration file and ENVCOV_* overrides and set up the package logger
initialize_config()

__all__ = [
    '__version__',
    'ConvergenceWarning',
    'DataError',
    'EnvCovError',
    'InfeasibleCovarianceError',
    'NumericalDegeneracyError',
    'NumericWarning',
    'ShapeMismatchError',
    'CovarianceParameters',
    'CovarianceReport',
    'FitResult',
    'FitStatus',
    'EnvironmentalCovarianceModel',
    'LogLikelihoodEvaluator',
    'build_correlation',
    'build_env_cov',
    'build_year_cov',
    'fit',
    'neg_log_likelihood',
    'report',
    'naive_environmental_covariance',
    'prepare_inputs',
]
