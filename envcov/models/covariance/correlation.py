"""
Correlation parameterization.

Maps an unconstrained real vector of length m(m-1)/2 to a valid correlation
matrix. A lower-triangular factor L is built row by row: row i >= 1 holds
the next i parameters followed by a unit diagonal seed and is divided by its
Euclidean norm, so every row of L has unit length. R = L L' then has a unit
diagonal, entries in [-1, 1] and is positive semi-definite for every input.
"""

import logging
from typing import Optional, Tuple

import numpy as np
from scipy import linalg

from envcov.core.exceptions import raise_parameter_error
from envcov.core.parameters import (
    n_correlation_params, n_vital_rates_from_correlation_params
)
from envcov.core.types import CorrelationMatrix, TriangularMatrix, Vector
from envcov.core.validation import validate_square_matrix, validate_vector_length
from envcov.models.covariance._numba_core import (
    correlation_factor_backward, correlation_factor_kernel
)

logger = logging.getLogger("envcov.models.covariance.correlation")


def _as_params(correlation_params: Vector, n_vital_rates: Optional[int]) -> Tuple[np.ndarray, int]:
    params = np.atleast_1d(np.asarray(correlation_params, dtype=np.float64))
    if n_vital_rates is None:
        n_vital_rates = n_vital_rates_from_correlation_params(params.shape[0])
    params = validate_vector_length(params, n_correlation_params(n_vital_rates),
                                    "correlation_params")
    return np.ascontiguousarray(params), n_vital_rates


def correlation_factor(correlation_params: Vector,
                       n_vital_rates: Optional[int] = None) -> Tuple[TriangularMatrix, Vector]:
    """
    Row-normalized lower-triangular factor of the correlation matrix.

    Args:
        correlation_params: Unconstrained parameters, length m(m-1)/2
        n_vital_rates: Number of vital rates m; inferred from the length if None

    Returns:
        Tuple of the factor L (m x m) and the norms each row was divided by

    Raises:
        ShapeMismatchError: If the parameter length is not m(m-1)/2
    """
    params, m = _as_params(correlation_params, n_vital_rates)
    return correlation_factor_kernel(params, m)


def build_correlation(correlation_params: Vector,
                      n_vital_rates: Optional[int] = None) -> CorrelationMatrix:
    """
    Build the correlation matrix R = L L' from unconstrained parameters.

    Args:
        correlation_params: Unconstrained parameters, length m(m-1)/2, in
            row-major order over the strictly-lower triangle
        n_vital_rates: Number of vital rates m; inferred from the length if None

    Returns:
        Symmetric m x m correlation matrix with unit diagonal

    Raises:
        ShapeMismatchError: If the parameter length is not m(m-1)/2

    Examples:
        >>> import numpy as np
        >>> from envcov.models.covariance.correlation import build_correlation
        >>> build_correlation(np.array([1.0]))
        array([[1.        , 0.70710678],
               [0.70710678, 1.        ]])
    """
    L, _ = correlation_factor(correlation_params, n_vital_rates)
    R = L @ L.T
    R = (R + R.T) / 2
    # Rows of L are unit vectors; pin the diagonal against rounding.
    np.fill_diagonal(R, 1.0)
    return R


def correlation_to_params(correlation: CorrelationMatrix) -> Vector:
    """
    Inverse of ``build_correlation`` for a positive definite correlation matrix.

    With R = C C' (C lower Cholesky), dividing row i of C by C_ii gives the
    seeds [params_i..., 1] of the parameterization.

    Args:
        correlation: Positive definite correlation matrix

    Returns:
        Parameters of length m(m-1)/2

    Raises:
        ShapeMismatchError: If the matrix is not square
        ParameterError: If the matrix is not a positive definite correlation matrix
    """
    R = validate_square_matrix(correlation, "correlation")
    m = R.shape[0]

    if not np.allclose(np.diag(R), 1.0) or not np.allclose(R, R.T):
        raise_parameter_error(
            "Correlation matrix must be symmetric with unit diagonal",
            param_name="correlation",
            constraint="symmetric, unit diagonal"
        )

    try:
        C = linalg.cholesky(R, lower=True)
    except linalg.LinAlgError:
        raise_parameter_error(
            "Correlation matrix must be positive definite",
            param_name="correlation",
            constraint="positive definite"
        )

    params = np.empty(n_correlation_params(m), dtype=np.float64)
    k = 0
    for i in range(1, m):
        params[k:k + i] = C[i, :i] / C[i, i]
        k += i
    return params


def correlation_backward(grad_correlation: np.ndarray, L: TriangularMatrix,
                         norms: Vector) -> Vector:
    """
    Pull a gradient with respect to R back to the correlation parameters.

    ``grad_correlation`` is the symmetric matrix of partial derivatives of a
    scalar with respect to the entries of R. Since R = L L', the gradient with
    respect to L is 2 G L, which is then passed through the row normalization.

    Args:
        grad_correlation: Symmetric m x m gradient with respect to R
        L: Factor returned by ``correlation_factor``
        norms: Row norms returned by ``correlation_factor``

    Returns:
        Gradient with respect to the correlation parameters, length m(m-1)/2
    """
    grad_L = 2.0 * np.asarray(grad_correlation, dtype=np.float64) @ L
    return correlation_factor_backward(np.ascontiguousarray(grad_L), L, norms)
