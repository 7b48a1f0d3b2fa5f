# envcov/core/types.py

"""
Core type annotations for envcov.

Type aliases documenting the role of each array flowing through the
estimation engine. They are plain ``np.ndarray`` aliases; shapes are noted
alongside each one.
"""

import asyncio
from typing import Any, Callable, Dict, Literal, Tuple, Union

import numpy as np
import pandas as pd

# NumPy array type aliases
Vector = np.ndarray  # 1D array
Matrix = np.ndarray  # 2D array
Tensor3D = np.ndarray  # 3D array

# Estimation inputs
ResidualMatrix = Union[np.ndarray, pd.DataFrame]  # (T, m) regression residuals
DemographicVarianceMatrix = Union[np.ndarray, pd.DataFrame]  # (T, m) sampling variances
ParameterVector = np.ndarray  # (m(m-1)/2 + m,) unconstrained parameters

# Derived matrices
CorrelationMatrix = np.ndarray  # (m, m) symmetric, unit diagonal
CovarianceMatrix = np.ndarray  # (m, m) symmetric, positive semi-definite
TriangularMatrix = np.ndarray  # (m, m) lower triangular
YearCovarianceStack = np.ndarray  # (T, m, m) per-year covariance matrices

# Optimization types
OptimizationMethod = Literal["L-BFGS-B", "BFGS"]
ObjectiveFunction = Callable[[np.ndarray], float]
GradientFunction = Callable[[np.ndarray], np.ndarray]
ValueAndGradientFunction = Callable[[np.ndarray], Tuple[float, np.ndarray]]

# Callback types for reporting progress
ProgressCallback = Callable[[int, float], None]
AsyncProgressCallback = Callable[[int, float], asyncio.Future]

# Configuration types
ConfigDict = Dict[str, Dict[str, Any]]
LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
