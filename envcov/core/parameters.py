# envcov/core/parameters.py

"""
Parameter containers for envcov.

The estimation engine optimizes over an unconstrained vector made of two
named groups:

- ``correlation_params``: m(m-1)/2 real numbers seeding the strictly-lower
  triangle of the row-normalized Cholesky-like factor of the correlation
  matrix (row-major order)
- ``log_std_devs``: m real numbers whose exponentials are the environmental
  standard deviations

Both groups are unconstrained, so every real vector maps to a valid
covariance matrix. The flat layout used by the optimizer is the correlation
group followed by the log standard deviations.
"""

import math
from dataclasses import dataclass, asdict, is_dataclass
from typing import Any, Dict, Optional, Type, TypeVar

import numpy as np

from envcov.core.exceptions import raise_parameter_error, raise_shape_mismatch

P = TypeVar('P', bound='ParameterBase')


def n_correlation_params(n_vital_rates: int) -> int:
    """Number of correlation parameters for ``n_vital_rates`` vital rates."""
    return n_vital_rates * (n_vital_rates - 1) // 2


def n_total_params(n_vital_rates: int) -> int:
    """Length of the flat parameter vector for ``n_vital_rates`` vital rates."""
    return n_correlation_params(n_vital_rates) + n_vital_rates


def n_vital_rates_from_correlation_params(n_params: int) -> int:
    """
    Recover m from the number of correlation parameters m(m-1)/2.

    Raises:
        ShapeMismatchError: If ``n_params`` is not a triangular number
    """
    m = int(round((1.0 + math.sqrt(1.0 + 8.0 * n_params)) / 2.0))
    if n_correlation_params(m) != n_params:
        raise_shape_mismatch(
            f"{n_params} correlation parameters do not correspond to a whole "
            f"number of vital rates",
            array_name="correlation_params",
            expected_shape="(m(m-1)/2,)",
            actual_shape=(n_params,)
        )
    return m


def n_vital_rates_from_total_params(n_params: int) -> int:
    """
    Recover m from the flat parameter length m(m-1)/2 + m = m(m+1)/2.

    Raises:
        ShapeMismatchError: If ``n_params`` is not a valid length
    """
    m = int(round((math.sqrt(1.0 + 8.0 * n_params) - 1.0) / 2.0))
    if m < 1 or n_total_params(m) != n_params:
        raise_shape_mismatch(
            f"Parameter vector of length {n_params} does not correspond to a "
            f"whole number of vital rates",
            array_name="parameters",
            expected_shape="(m(m-1)/2 + m,)",
            actual_shape=(n_params,)
        )
    return m


class ParameterBase:
    """Base class for parameter containers.

    Provides serialization helpers shared by the concrete containers.
    """

    def validate(self) -> None:
        """Validate parameter constraints.

        Raises:
            ParameterError: If parameter constraints are violated
        """
        pass

    def to_dict(self) -> Dict[str, Any]:
        """Convert parameters to a dictionary."""
        if is_dataclass(self):
            return asdict(self)
        return {k: v for k, v in self.__dict__.items() if not k.startswith('_')}

    def to_array(self) -> np.ndarray:
        raise NotImplementedError("to_array must be implemented by subclass")

    @classmethod
    def from_array(cls: Type[P], array: np.ndarray, **kwargs: Any) -> P:
        raise NotImplementedError("from_array must be implemented by subclass")

    def copy(self: P) -> P:
        """Create a copy of the parameter object."""
        return type(self).from_array(self.to_array().copy(), **self._copy_kwargs())

    def _copy_kwargs(self) -> Dict[str, Any]:
        return {}


@dataclass
class CovarianceParameters(ParameterBase):
    """Unconstrained parameters of the environmental covariance model.

    Attributes:
        correlation_params: Seeds of the correlation factor, length m(m-1)/2
        log_std_devs: Log environmental standard deviations, length m
    """

    correlation_params: np.ndarray
    log_std_devs: np.ndarray

    def __post_init__(self) -> None:
        """Coerce to float arrays and validate after initialization."""
        self.correlation_params = np.atleast_1d(np.asarray(self.correlation_params, dtype=np.float64))
        self.log_std_devs = np.atleast_1d(np.asarray(self.log_std_devs, dtype=np.float64))
        self.validate()

    @property
    def n_vital_rates(self) -> int:
        """Number of vital rates m."""
        return self.log_std_devs.shape[0]

    @property
    def std_devs(self) -> np.ndarray:
        """Environmental standard deviations, exp(log_std_devs)."""
        return np.exp(self.log_std_devs)

    def validate(self) -> None:
        """Validate group lengths and finiteness.

        Raises:
            ShapeMismatchError: If the group lengths are inconsistent
            ParameterError: If any parameter is not finite
        """
        if self.log_std_devs.ndim != 1 or self.log_std_devs.shape[0] < 1:
            raise_shape_mismatch(
                "log_std_devs must be a non-empty vector",
                array_name="log_std_devs",
                expected_shape="(m,)",
                actual_shape=self.log_std_devs.shape
            )

        expected = n_correlation_params(self.n_vital_rates)
        if self.correlation_params.ndim != 1 or self.correlation_params.shape[0] != expected:
            raise_shape_mismatch(
                f"correlation_params must have length m(m-1)/2 = {expected} "
                f"for m = {self.n_vital_rates}",
                array_name="correlation_params",
                expected_shape=(expected,),
                actual_shape=self.correlation_params.shape
            )

        for name, values in (("correlation_params", self.correlation_params),
                             ("log_std_devs", self.log_std_devs)):
            if not np.all(np.isfinite(values)):
                raise_parameter_error(
                    f"Parameter {name} contains non-finite values",
                    param_name=name,
                    param_value=values,
                    constraint="finite"
                )

    def to_array(self) -> np.ndarray:
        """Flat parameter vector: correlation parameters then log standard deviations."""
        return np.concatenate([self.correlation_params, self.log_std_devs])

    @classmethod
    def from_array(cls, array: np.ndarray, n_vital_rates: Optional[int] = None,
                   **kwargs: Any) -> 'CovarianceParameters':
        """Create parameters from a flat vector.

        Args:
            array: Flat parameter vector
            n_vital_rates: Number of vital rates; inferred from the length if None

        Returns:
            CovarianceParameters: Parameter object

        Raises:
            ShapeMismatchError: If the array length does not match m(m-1)/2 + m
        """
        array = np.asarray(array, dtype=np.float64)
        if array.ndim != 1:
            raise_shape_mismatch(
                "Parameter array must be one-dimensional",
                array_name="parameters",
                expected_shape="(m(m-1)/2 + m,)",
                actual_shape=array.shape
            )

        if n_vital_rates is None:
            n_vital_rates = n_vital_rates_from_total_params(array.shape[0])
        elif array.shape[0] != n_total_params(n_vital_rates):
            raise_shape_mismatch(
                f"Parameter array must have length {n_total_params(n_vital_rates)} "
                f"for {n_vital_rates} vital rates",
                array_name="parameters",
                expected_shape=(n_total_params(n_vital_rates),),
                actual_shape=array.shape
            )

        n_corr = n_correlation_params(n_vital_rates)
        return cls(correlation_params=array[:n_corr].copy(),
                   log_std_devs=array[n_corr:].copy())

    @classmethod
    def default(cls, n_vital_rates: int, std_dev: float = 0.1) -> 'CovarianceParameters':
        """Starting values: zero correlation seeds and log(std_dev) for every rate."""
        if std_dev <= 0:
            raise_parameter_error(
                f"std_dev must be positive, got {std_dev}",
                param_name="std_dev",
                param_value=std_dev,
                constraint="positive"
            )
        return cls(correlation_params=np.zeros(n_correlation_params(n_vital_rates)),
                   log_std_devs=np.full(n_vital_rates, np.log(std_dev)))

    def names(self, labels: Optional[list] = None) -> list:
        """Human-readable names for the entries of the flat vector."""
        m = self.n_vital_rates
        labels = labels if labels is not None else [f"rate_{i + 1}" for i in range(m)]
        corr_names = [f"corr_seed[{labels[i]},{labels[j]}]"
                      for i in range(1, m) for j in range(i)]
        sd_names = [f"log_sd[{label}]" for label in labels]
        return corr_names + sd_names

    def _copy_kwargs(self) -> Dict[str, Any]:
        return {"n_vital_rates": self.n_vital_rates}
