# envcov/core/validation.py

"""
Validation utilities for envcov.

Input checks shared by the estimation engine and the demography front end.
Shape problems are reported as ShapeMismatchError so they surface before any
optimizer iteration; value problems (NaN, infinities, negative variances) are
reported as DataError.
"""

from typing import List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from envcov.core.exceptions import raise_data_error, raise_shape_mismatch
from envcov.core.types import Matrix, Vector


def as_float_matrix(
    data: Union[np.ndarray, pd.DataFrame, Sequence[Sequence[float]]],
    array_name: str = "array"
) -> np.ndarray:
    """Convert tabular input to a contiguous 2D float64 array.

    Args:
        data: Array, DataFrame or nested sequence
        array_name: Name of the array for error messages

    Returns:
        np.ndarray: 2D float64 copy of the data

    Raises:
        ShapeMismatchError: If the data is not two-dimensional
    """
    if isinstance(data, pd.DataFrame):
        array = data.to_numpy(dtype=np.float64, copy=True)
    else:
        array = np.array(data, dtype=np.float64)

    if array.ndim != 2:
        raise_shape_mismatch(
            f"{array_name} must be two-dimensional (years x vital rates)",
            array_name=array_name,
            expected_shape="(T, m)",
            actual_shape=array.shape
        )

    return np.ascontiguousarray(array)


def validate_numeric_array(
    array: np.ndarray,
    array_name: str = "array",
    allow_nan: bool = False,
    allow_inf: bool = False
) -> np.ndarray:
    """Validate that an array contains valid numeric values.

    Args:
        array: Array to validate
        array_name: Name of the array for error messages
        allow_nan: Whether to allow NaN values
        allow_inf: Whether to allow infinite values

    Returns:
        np.ndarray: The validated array

    Raises:
        DataError: If array contains invalid values
    """
    if not allow_nan and np.isnan(array).any():
        bad = tuple(int(i) for i in np.argwhere(np.isnan(array))[0])
        raise_data_error(
            f"{array_name} contains NaN values",
            data_name=array_name,
            issue="contains NaN values",
            index=bad
        )

    if not allow_inf and np.isinf(array).any():
        bad = tuple(int(i) for i in np.argwhere(np.isinf(array))[0])
        raise_data_error(
            f"{array_name} contains infinite values",
            data_name=array_name,
            issue="contains infinite values",
            index=bad
        )

    return array


def validate_non_negative_array(array: np.ndarray, array_name: str = "array") -> np.ndarray:
    """Validate that every element of an array is non-negative."""
    if (array < 0).any():
        bad = tuple(int(i) for i in np.argwhere(array < 0)[0])
        raise_data_error(
            f"{array_name} contains negative values",
            data_name=array_name,
            issue="contains negative values",
            index=bad
        )
    return array


def validate_compatible_shapes(
    arrays: List[np.ndarray],
    array_names: List[str]
) -> None:
    """Validate that arrays share exactly the same shape.

    Args:
        arrays: List of arrays to validate
        array_names: Names of the arrays for error messages

    Raises:
        ShapeMismatchError: If any array differs in shape from the first
    """
    if len(arrays) != len(array_names):
        raise ValueError("arrays and array_names must have the same length")

    if len(arrays) < 2:
        return

    ref_shape = arrays[0].shape
    ref_name = array_names[0]

    for array, name in zip(arrays[1:], array_names[1:]):
        if array.shape != ref_shape:
            raise_shape_mismatch(
                f"{name} has shape {array.shape} which is incompatible with "
                f"{ref_name} shape {ref_shape}",
                array_name=name,
                expected_shape=ref_shape,
                actual_shape=array.shape
            )


def validate_vector_length(
    vector: Vector,
    expected_length: int,
    array_name: str = "vector"
) -> Vector:
    """Validate that a 1D vector has the expected length.

    Raises:
        ShapeMismatchError: If the vector is not 1D or has the wrong length
    """
    vector = np.asarray(vector, dtype=np.float64)
    if vector.ndim != 1 or vector.shape[0] != expected_length:
        raise_shape_mismatch(
            f"{array_name} must be a vector of length {expected_length}, "
            f"got shape {vector.shape}",
            array_name=array_name,
            expected_shape=(expected_length,),
            actual_shape=vector.shape
        )
    return vector


def validate_square_matrix(
    matrix: Matrix,
    array_name: str = "matrix",
    size: Optional[int] = None
) -> Matrix:
    """Validate that a matrix is square (and optionally of a given size).

    Raises:
        ShapeMismatchError: If the matrix is not square or has the wrong size
    """
    matrix = np.asarray(matrix, dtype=np.float64)
    expected: Union[str, Tuple[int, int]] = "(n, n)" if size is None else (size, size)
    if matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1]:
        raise_shape_mismatch(
            f"{array_name} must be a square matrix, got shape {matrix.shape}",
            array_name=array_name,
            expected_shape=expected,
            actual_shape=matrix.shape
        )
    if size is not None and matrix.shape[0] != size:
        raise_shape_mismatch(
            f"{array_name} must be {size}x{size}, got shape {matrix.shape}",
            array_name=array_name,
            expected_shape=expected,
            actual_shape=matrix.shape
        )
    return matrix
