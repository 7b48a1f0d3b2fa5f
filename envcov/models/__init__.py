"""
envcov models

- covariance: the environmental covariance estimation engine
- demography: vital-rate regressions, demographic variances and diagnostics
"""

import logging

logger = logging.getLogger("envcov.models")

from . import demography
from . import covariance

from .covariance import EnvironmentalCovarianceModel

__all__ = ['covariance', 'demography', 'EnvironmentalCovarianceModel']
