"""
Covariance assembly.

Pure functions combining a correlation matrix with environmental standard
deviations into the environmental covariance E = D R D, and adding each
year's demographic variances to its diagonal to form Σ_t. Inputs are never
modified.
"""

import logging

import numpy as np

from envcov.core.exceptions import raise_shape_mismatch
from envcov.core.types import (
    CorrelationMatrix, CovarianceMatrix, Matrix, TriangularMatrix, Vector,
    YearCovarianceStack
)
from envcov.core.validation import validate_square_matrix, validate_vector_length
from envcov.models.covariance.correlation import correlation_backward

logger = logging.getLogger("envcov.models.covariance.assembly")


def build_env_cov(correlation: CorrelationMatrix, std_devs: Vector) -> CovarianceMatrix:
    """
    Environmental covariance E[i, j] = R[i, j] * sd[i] * sd[j].

    Args:
        correlation: Correlation matrix R (m x m)
        std_devs: Environmental standard deviations (m,)

    Returns:
        Environmental covariance matrix (m x m)

    Raises:
        ShapeMismatchError: If the dimensions of R and sd disagree
    """
    R = validate_square_matrix(correlation, "correlation")
    sd = validate_vector_length(std_devs, R.shape[0], "std_devs")
    return R * np.outer(sd, sd)


def build_year_cov(env_cov: CovarianceMatrix, dem_var_row: Vector) -> CovarianceMatrix:
    """
    Per-year covariance Σ_t = E + diag(dem_var_row).

    Returns a new matrix; ``env_cov`` is left untouched.

    Raises:
        ShapeMismatchError: If the row length differs from the size of E
    """
    E = validate_square_matrix(env_cov, "env_cov")
    row = validate_vector_length(dem_var_row, E.shape[0], "dem_var_row")
    sigma = E.copy()
    sigma[np.diag_indices_from(sigma)] += row
    return sigma


def build_year_covs(env_cov: CovarianceMatrix, dem_var: Matrix) -> YearCovarianceStack:
    """
    Stack of per-year covariance matrices, one per row of ``dem_var``.

    Args:
        env_cov: Environmental covariance E (m x m)
        dem_var: Demographic variances (T x m)

    Returns:
        Array of shape (T, m, m) with Σ_t in slice t
    """
    E = validate_square_matrix(env_cov, "env_cov")
    dem_var = np.asarray(dem_var, dtype=np.float64)
    if dem_var.ndim != 2 or dem_var.shape[1] != E.shape[0]:
        raise_shape_mismatch(
            f"dem_var must have {E.shape[0]} columns to match env_cov",
            array_name="dem_var",
            expected_shape=f"(T, {E.shape[0]})",
            actual_shape=dem_var.shape
        )

    m = E.shape[0]
    sigmas = np.broadcast_to(E, (dem_var.shape[0], m, m)).copy()
    idx = np.arange(m)
    sigmas[:, idx, idx] += dem_var
    return sigmas


def env_cov_backward(grad_env_cov: np.ndarray, correlation: CorrelationMatrix,
                     std_devs: Vector, L: TriangularMatrix, norms: Vector) -> Vector:
    """
    Pull a gradient with respect to E back to the flat parameter vector.

    With H = G ∘ (sd sd'), the derivative with respect to log sd_i is
    2 (H R)_ii and the derivative with respect to R is H, which is passed on
    to the correlation parameters.

    Args:
        grad_env_cov: Symmetric m x m gradient with respect to E
        correlation: Correlation matrix R at the current parameters
        std_devs: Standard deviations at the current parameters
        L: Correlation factor at the current parameters
        norms: Row norms of the correlation factor

    Returns:
        Gradient in the flat layout (correlation parameters, log sds)
    """
    H = np.asarray(grad_env_cov, dtype=np.float64) * np.outer(std_devs, std_devs)
    grad_log_sd = 2.0 * np.einsum('ij,ji->i', H, correlation)
    grad_corr = correlation_backward(H, L, norms)
    return np.concatenate([grad_corr, grad_log_sd])
