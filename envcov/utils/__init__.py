"""
envcov utilities

Matrix helpers and numerical differentiation used by the estimation engine,
its uncertainty report and the test suite.
"""

import logging

logger = logging.getLogger("envcov.utils")

from .matrix_ops import (
    cov2corr,
    ensure_symmetric,
    is_positive_definite,
    min_eigenvalue
)

from .differentiation import (
    gradient_2sided,
    jacobian,
    hessian_from_gradient
)

__all__ = [
    'cov2corr',
    'ensure_symmetric',
    'is_positive_definite',
    'min_eigenvalue',
    'gradient_2sided',
    'jacobian',
    'hessian_from_gradient',
]
