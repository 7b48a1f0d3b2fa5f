"""
envcov core module

Base classes, parameter containers, result objects, type aliases, input
validation, configuration and the exception hierarchy shared by the
estimation engine and the demography front end.
"""

import logging

logger = logging.getLogger("envcov.core")

from .exceptions import (
    ConfigurationError,
    ConvergenceWarning,
    DataError,
    DimensionError,
    EnvCovError,
    EnvCovWarning,
    InfeasibleCovarianceError,
    NotFittedError,
    NumericalDegeneracyError,
    NumericError,
    NumericWarning,
    ParameterError,
    ShapeMismatchError
)

from .parameters import (
    CovarianceParameters,
    n_correlation_params,
    n_total_params
)

from .results import (
    CovarianceReport,
    FitResult,
    FitStatus,
    ModelResult
)

from .base import ModelBase

from .config import (
    get_config,
    get_numerical_config,
    reset_config,
    set_config
)

__all__ = [
    'ConfigurationError',
    'ConvergenceWarning',
    'DataError',
    'DimensionError',
    'EnvCovError',
    'EnvCovWarning',
    'InfeasibleCovarianceError',
    'NotFittedError',
    'NumericalDegeneracyError',
    'NumericError',
    'NumericWarning',
    'ParameterError',
    'ShapeMismatchError',
    'CovarianceParameters',
    'n_correlation_params',
    'n_total_params',
    'CovarianceReport',
    'FitResult',
    'FitStatus',
    'ModelResult',
    'ModelBase',
    'get_config',
    'get_numerical_config',
    'reset_config',
    'set_config',
]
