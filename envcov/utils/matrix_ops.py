# envcov/utils/matrix_ops.py
"""
Matrix Operations Module

Small covariance/correlation helpers shared by the estimation engine, the
uncertainty report and the demography diagnostics.

Functions:
    cov2corr: Convert covariance matrix to correlation matrix
    ensure_symmetric: Ensure a matrix is symmetric
    is_positive_definite: Check if a matrix is positive definite
    min_eigenvalue: Smallest eigenvalue of a symmetric matrix
"""

import logging

import numpy as np
from scipy import linalg

from envcov.core.exceptions import raise_shape_mismatch
from envcov.core.types import CorrelationMatrix, CovarianceMatrix, Matrix

logger = logging.getLogger("envcov.utils.matrix_ops")


def _check_square(matrix: Matrix, name: str) -> np.ndarray:
    matrix = np.asarray(matrix, dtype=float)
    if matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1]:
        raise_shape_mismatch(
            "Input must be a square matrix",
            array_name=name,
            expected_shape="(n, n)",
            actual_shape=matrix.shape
        )
    return matrix


def cov2corr(cov: CovarianceMatrix) -> CorrelationMatrix:
    """
    Convert a covariance matrix to a correlation matrix.

    Rows/columns whose variance is not positive are left at zero correlation
    with every other entry (their diagonal is still set to one), so the
    function can be applied to indefinite diagnostic estimates.

    Args:
        cov: Square covariance matrix

    Returns:
        Correlation matrix

    Raises:
        ShapeMismatchError: If the input matrix is not square

    Examples:
        >>> import numpy as np
        >>> from envcov.utils.matrix_ops import cov2corr
        >>> C = np.array([[4.0, 2.0], [2.0, 9.0]])
        >>> cov2corr(C)
        array([[1.        , 0.33333333],
               [0.33333333, 1.        ]])
    """
    cov = _check_square(cov, "cov")

    variances = np.diag(cov)
    std_devs = np.sqrt(np.where(variances > 0, variances, np.inf))
    corr = cov / np.outer(std_devs, std_devs)
    np.fill_diagonal(corr, 1.0)

    return (corr + corr.T) / 2


def ensure_symmetric(matrix: Matrix, tol: float = 1e-8) -> Matrix:
    """
    Ensure a matrix is symmetric by averaging with its transpose.

    If the matrix is already symmetric within the tolerance it is returned
    unchanged.

    Raises:
        ShapeMismatchError: If the input matrix is not square
    """
    matrix = _check_square(matrix, "matrix")

    if np.allclose(matrix, matrix.T, rtol=tol, atol=tol):
        return matrix

    return (matrix + matrix.T) / 2


def is_positive_definite(matrix: Matrix, tol: float = 1e-8) -> bool:
    """
    Check if a matrix is positive definite via a Cholesky decomposition.

    Args:
        matrix: Matrix to check
        tol: Tolerance for the symmetry check

    Returns:
        True if the matrix is positive definite, False otherwise

    Examples:
        >>> import numpy as np
        >>> from envcov.utils.matrix_ops import is_positive_definite
        >>> is_positive_definite(np.array([[2.0, 1.0], [1.0, 2.0]]))
        True
        >>> is_positive_definite(np.array([[1.0, 2.0], [2.0, 1.0]]))
        False
    """
    matrix = np.asarray(matrix, dtype=float)
    if matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1]:
        return False
    if not np.all(np.isfinite(matrix)):
        return False

    try:
        linalg.cholesky(ensure_symmetric(matrix, tol), lower=True, check_finite=False)
        return True
    except linalg.LinAlgError:
        return False


def min_eigenvalue(matrix: Matrix) -> float:
    """Smallest eigenvalue of a symmetric matrix."""
    matrix = _check_square(matrix, "matrix")
    return float(linalg.eigvalsh(ensure_symmetric(matrix))[0])
