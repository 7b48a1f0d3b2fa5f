'''
Custom exception classes for envcov.

This module defines the exception and warning hierarchy used throughout the
package. Every exception carries a primary message, optional details and a
context dictionary so that failures during estimation can be traced back to
the offending array, parameter or year.

The hierarchy mirrors the failure modes of the estimation engine:

- ShapeMismatchError: residual/variance matrices or parameter vectors with
  inconsistent dimensions (raised before any optimization starts)
- InfeasibleCovarianceError: a per-year covariance matrix failed its Cholesky
  decomposition
- NumericalDegeneracyError: log-determinant or quadratic form is not finite
- DataError: non-finite or negative inputs
'''

from typing import Any, Dict, Optional, Tuple, Union
import inspect
import warnings
import numpy as np
from pathlib import Path


class EnvCovError(Exception):
    """Base exception class for all envcov errors.

    Attributes:
        message: The error message
        details: Additional details about the error
        context: Dictionary containing contextual information about the error
    """

    def __init__(self,
                 message: str,
                 details: Optional[str] = None,
                 context: Optional[Dict[str, Any]] = None) -> None:
        """Initialize the EnvCovError.

        Args:
            message: The primary error message
            details: Additional details about the error
            context: Dictionary containing contextual information about the error
        """
        self.message = message
        self.details = details
        self.context = context or {}

        full_message = message
        if details:
            full_message += f"\n\nDetails: {details}"

        if context:
            context_str = "\n".join(f"  {k}: {v}" for k, v in context.items())
            full_message += f"\n\nContext:\n{context_str}"

        # Add caller information for better debugging
        frame = inspect.currentframe()
        if frame:
            try:
                frame = frame.f_back
                if frame:
                    caller_info = inspect.getframeinfo(frame)
                    full_message += f"\n\nLocation: {Path(caller_info.filename).name}:{caller_info.lineno}"
            finally:
                del frame  # Avoid reference cycles

        super().__init__(full_message)


class ParameterError(EnvCovError):
    """Exception raised for invalid parameter values.

    Attributes:
        param_name: The name of the parameter that caused the error
        param_value: The invalid parameter value
        constraint: Description of the constraint that was violated
    """

    def __init__(self,
                 message: str,
                 param_name: Optional[str] = None,
                 param_value: Optional[Any] = None,
                 constraint: Optional[str] = None,
                 details: Optional[str] = None,
                 context: Optional[Dict[str, Any]] = None) -> None:
        self.param_name = param_name
        self.param_value = param_value
        self.constraint = constraint

        context_dict = context or {}
        if param_name:
            context_dict["Parameter"] = param_name
        if param_value is not None:
            context_dict["Value"] = param_value
        if constraint:
            context_dict["Constraint"] = constraint

        super().__init__(message, details, context_dict)


class DimensionError(EnvCovError):
    """Exception raised for errors related to array dimensions.

    Attributes:
        array_name: The name of the array that caused the error
        expected_shape: The expected shape of the array
        actual_shape: The actual shape of the array
    """

    def __init__(self,
                 message: str,
                 array_name: Optional[str] = None,
                 expected_shape: Optional[Union[Tuple[int, ...], str]] = None,
                 actual_shape: Optional[Tuple[int, ...]] = None,
                 details: Optional[str] = None,
                 context: Optional[Dict[str, Any]] = None) -> None:
        """Initialize the DimensionError.

        Args:
            message: The primary error message
            array_name: The name of the array that caused the error
            expected_shape: The expected shape of the array
            actual_shape: The actual shape of the array
            details: Additional details about the error
            context: Dictionary containing contextual information about the error
        """
        self.array_name = array_name
        self.expected_shape = expected_shape
        self.actual_shape = actual_shape

        context_dict = context or {}
        if array_name:
            context_dict["Array"] = array_name
        if expected_shape is not None:
            context_dict["Expected Shape"] = expected_shape
        if actual_shape is not None:
            context_dict["Actual Shape"] = actual_shape

        super().__init__(message, details, context_dict)


class ShapeMismatchError(DimensionError):
    """Residual, demographic-variance or parameter shapes are inconsistent.

    Raised during input validation, before the optimizer performs any
    iteration.
    """
    pass


class NumericError(EnvCovError):
    """Exception raised for numerical computation errors.

    Attributes:
        operation: The operation that caused the error
        values: The values that caused the error
        error_type: The type of numerical error
    """

    def __init__(self,
                 message: str,
                 operation: Optional[str] = None,
                 values: Optional[Any] = None,
                 error_type: Optional[str] = None,
                 details: Optional[str] = None,
                 context: Optional[Dict[str, Any]] = None) -> None:
        self.operation = operation
        self.values = values
        self.error_type = error_type

        context_dict = context or {}
        if operation:
            context_dict["Operation"] = operation
        if values is not None:
            if isinstance(values, np.ndarray) and values.size > 10:
                # Truncate large arrays for readability
                context_dict["Values"] = f"Array with shape {values.shape}"
            else:
                context_dict["Values"] = values
        if error_type:
            context_dict["Error Type"] = error_type

        super().__init__(message, details, context_dict)


class InfeasibleCovarianceError(NumericError):
    """A per-year covariance matrix is not positive definite.

    Attributes:
        year: Row index of the year whose covariance failed to factorize
    """

    def __init__(self,
                 message: str,
                 year: Optional[int] = None,
                 operation: Optional[str] = None,
                 values: Optional[Any] = None,
                 error_type: Optional[str] = "infeasible_covariance",
                 details: Optional[str] = None,
                 context: Optional[Dict[str, Any]] = None) -> None:
        self.year = year
        context_dict = context or {}
        if year is not None:
            context_dict["Year"] = year
        super().__init__(message, operation, values, error_type, details, context_dict)


class NumericalDegeneracyError(InfeasibleCovarianceError):
    """Log-determinant or quadratic form evaluated to a non-finite value."""

    def __init__(self,
                 message: str,
                 year: Optional[int] = None,
                 operation: Optional[str] = None,
                 values: Optional[Any] = None,
                 details: Optional[str] = None,
                 context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, year, operation, values, "numerical_degeneracy",
                         details, context)


class DataError(EnvCovError):
    """Exception raised for errors related to input data.

    Attributes:
        data_name: The name of the data that caused the error
        issue: Description of the issue with the data
        index: The index or location where the issue was detected
    """

    def __init__(self,
                 message: str,
                 data_name: Optional[str] = None,
                 issue: Optional[str] = None,
                 index: Optional[Union[int, Tuple[int, ...], str]] = None,
                 details: Optional[str] = None,
                 context: Optional[Dict[str, Any]] = None) -> None:
        self.data_name = data_name
        self.issue = issue
        self.index = index

        context_dict = context or {}
        if data_name:
            context_dict["Data"] = data_name
        if issue:
            context_dict["Issue"] = issue
        if index is not None:
            context_dict["Index"] = index

        super().__init__(message, details, context_dict)


class ConfigurationError(EnvCovError):
    """Exception raised for invalid configuration sections, options or values.

    Attributes:
        section: The configuration section involved
        option: The configuration option involved
    """

    def __init__(self,
                 message: str,
                 section: Optional[str] = None,
                 option: Optional[str] = None,
                 details: Optional[str] = None,
                 context: Optional[Dict[str, Any]] = None) -> None:
        self.section = section
        self.option = option

        context_dict = context or {}
        if section:
            context_dict["Section"] = section
        if option:
            context_dict["Option"] = option

        super().__init__(message, details, context_dict)


class NotFittedError(EnvCovError):
    """Exception raised when a model is used before it has been fitted.

    Attributes:
        model_type: The type of model
        operation: The operation that requires a fitted model
    """

    def __init__(self,
                 message: str,
                 model_type: Optional[str] = None,
                 operation: Optional[str] = None,
                 details: Optional[str] = None,
                 context: Optional[Dict[str, Any]] = None) -> None:
        self.model_type = model_type
        self.operation = operation

        context_dict = context or {}
        if model_type:
            context_dict["Model Type"] = model_type
        if operation:
            context_dict["Operation"] = operation

        super().__init__(message, details, context_dict)


class EnvCovWarning(Warning):
    """Base warning class for all envcov warnings.

    Attributes:
        message: The warning message
        details: Additional details about the warning
        context: Dictionary containing contextual information about the warning
    """

    def __init__(self,
                 message: str,
                 details: Optional[str] = None,
                 context: Optional[Dict[str, Any]] = None) -> None:
        self.message = message
        self.details = details
        self.context = context or {}

        full_message = message
        if details:
            full_message += f"\n\nDetails: {details}"

        if context:
            context_str = "\n".join(f"  {k}: {v}" for k, v in context.items())
            full_message += f"\n\nContext:\n{context_str}"

        super().__init__(full_message)


class ConvergenceWarning(EnvCovWarning):
    """Warning issued when the optimizer stops without meeting its tolerance.

    Attributes:
        iterations: The number of iterations performed
        tolerance: The convergence tolerance that was used
        gradient_norm: The norm of the final gradient
    """

    def __init__(self,
                 message: str,
                 iterations: Optional[int] = None,
                 tolerance: Optional[float] = None,
                 gradient_norm: Optional[float] = None,
                 details: Optional[str] = None,
                 context: Optional[Dict[str, Any]] = None) -> None:
        self.iterations = iterations
        self.tolerance = tolerance
        self.gradient_norm = gradient_norm

        context_dict = context or {}
        if iterations is not None:
            context_dict["Iterations"] = iterations
        if tolerance is not None:
            context_dict["Tolerance"] = tolerance
        if gradient_norm is not None:
            context_dict["Gradient Norm"] = gradient_norm

        super().__init__(message, details, context_dict)


class NumericWarning(EnvCovWarning):
    """Warning for numerical issues that do not prevent computation.

    Attributes:
        operation: The operation where the issue was detected
        issue: Description of the numerical issue
        value: The value that may cause numerical issues
    """

    def __init__(self,
                 message: str,
                 operation: Optional[str] = None,
                 issue: Optional[str] = None,
                 value: Optional[Any] = None,
                 details: Optional[str] = None,
                 context: Optional[Dict[str, Any]] = None) -> None:
        self.operation = operation
        self.issue = issue
        self.value = value

        context_dict = context or {}
        if operation:
            context_dict["Operation"] = operation
        if issue:
            context_dict["Issue"] = issue
        if value is not None:
            if isinstance(value, np.ndarray) and value.size > 10:
                context_dict["Value"] = f"Array with shape {value.shape}"
            else:
                context_dict["Value"] = value

        super().__init__(message, details, context_dict)


# Helper functions for raising exceptions with consistent formatting

def raise_parameter_error(message: str,
                          param_name: Optional[str] = None,
                          param_value: Optional[Any] = None,
                          constraint: Optional[str] = None,
                          details: Optional[str] = None,
                          context: Optional[Dict[str, Any]] = None) -> None:
    """Raise a ParameterError with consistent formatting.

    Raises:
        ParameterError: The formatted parameter error
    """
    raise ParameterError(message, param_name, param_value, constraint, details, context)


def raise_shape_mismatch(message: str,
                         array_name: Optional[str] = None,
                         expected_shape: Optional[Union[Tuple[int, ...], str]] = None,
                         actual_shape: Optional[Tuple[int, ...]] = None,
                         details: Optional[str] = None,
                         context: Optional[Dict[str, Any]] = None) -> None:
    """Raise a ShapeMismatchError with consistent formatting.

    Args:
        message: The primary error message
        array_name: The name of the array that caused the error
        expected_shape: The expected shape of the array
        actual_shape: The actual shape of the array
        details: Additional details about the error
        context: Dictionary containing contextual information about the error

    Raises:
        ShapeMismatchError: The formatted shape error
    """
    raise ShapeMismatchError(message, array_name, expected_shape, actual_shape, details, context)


def raise_data_error(message: str,
                     data_name: Optional[str] = None,
                     issue: Optional[str] = None,
                     index: Optional[Union[int, Tuple[int, ...], str]] = None,
                     details: Optional[str] = None,
                     context: Optional[Dict[str, Any]] = None) -> None:
    """Raise a DataError with consistent formatting.

    Raises:
        DataError: The formatted data error
    """
    raise DataError(message, data_name, issue, index, details, context)


def raise_not_fitted_error(message: str,
                           model_type: Optional[str] = None,
                           operation: Optional[str] = None,
                           details: Optional[str] = None,
                           context: Optional[Dict[str, Any]] = None) -> None:
    """Raise a NotFittedError with consistent formatting.

    Raises:
        NotFittedError: The formatted not fitted error
    """
    raise NotFittedError(message, model_type, operation, details, context)


# Helper functions for issuing warnings with consistent formatting

def warn_convergence(message: str,
                     iterations: Optional[int] = None,
                     tolerance: Optional[float] = None,
                     gradient_norm: Optional[float] = None,
                     details: Optional[str] = None,
                     context: Optional[Dict[str, Any]] = None) -> None:
    """Issue a ConvergenceWarning with consistent formatting.

    Args:
        message: The primary warning message
        iterations: The number of iterations performed
        tolerance: The convergence tolerance that was used
        gradient_norm: The norm of the final gradient
        details: Additional details about the warning
        context: Dictionary containing contextual information about the warning
    """
    warnings.warn(
        ConvergenceWarning(message, iterations, tolerance, gradient_norm, details, context),
        stacklevel=2
    )


def warn_numeric(message: str,
                 operation: Optional[str] = None,
                 issue: Optional[str] = None,
                 value: Optional[Any] = None,
                 details: Optional[str] = None,
                 context: Optional[Dict[str, Any]] = None) -> None:
    """Issue a NumericWarning with consistent formatting."""
    warnings.warn(
        NumericWarning(message, operation, issue, value, details, context),
        stacklevel=2
    )
