"""
Demography front end

Turns aggregated per-year vital-rate tables into the residual and
demographic-variance matrices consumed by the covariance estimator, and
provides the subtractive covariance estimate as a diagnostic.
"""

import logging

logger = logging.getLogger("envcov.models.demography")

from .vital_rates import (
    VitalRateRegression,
    default_labels,
    demographic_variance,
    density_index,
    prepare_inputs,
    recruitment_demographic_variance,
    regress_on_density,
    survival_demographic_variance,
    vital_rate_labels
)

from .diagnostics import (
    NaiveCovarianceEstimate,
    naive_environmental_covariance
)

__all__ = [
    'VitalRateRegression',
    'default_labels',
    'demographic_variance',
    'density_index',
    'prepare_inputs',
    'recruitment_demographic_variance',
    'regress_on_density',
    'survival_demographic_variance',
    'vital_rate_labels',
    'NaiveCovarianceEstimate',
    'naive_environmental_covariance',
]
