'''
Standardized result containers for envcov.

Dataclass-based result objects for the estimation engine: ``FitResult`` holds
the optimizer outcome with an explicit status, ``CovarianceReport`` holds the
derived covariance quantities and their delta-method standard errors. Both
support text summaries, dictionary/JSON conversion and pickling through the
shared ``ModelResult`` base.
'''

import json
import pickle
from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import numpy as np
import pandas as pd

from envcov.core.exceptions import warn_convergence
from envcov.core.parameters import CovarianceParameters


class FitStatus(Enum):
    """Outcome of an optimization run."""
    SUCCESS = "success"
    NOT_CONVERGED = "not_converged"
    INFEASIBLE = "infeasible"


def _to_serializable(value: Any) -> Any:
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, (np.floating, np.integer)):
        return value.item()
    if isinstance(value, (pd.DataFrame, pd.Series)):
        return value.to_dict()
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, CovarianceParameters):
        return {k: _to_serializable(v) for k, v in value.to_dict().items()}
    if isinstance(value, dict):
        return {k: _to_serializable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_serializable(v) for v in value]
    return value


@dataclass
class ModelResult:
    """Base class for all result objects.

    Attributes:
        model_name: Name of the model that generated the results
        creation_time: Timestamp when the result was created
        metadata: Additional metadata about the result
    """

    model_name: str
    creation_time: datetime = field(default_factory=datetime.now)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.metadata, dict):
            self.metadata = dict(self.metadata)

    def to_dict(self) -> Dict[str, Any]:
        """Convert the result object to a JSON-friendly dictionary."""
        return {f.name: _to_serializable(getattr(self, f.name)) for f in fields(self)}

    def to_json(self, path: Optional[Union[str, Path]] = None, **kwargs: Any) -> Optional[str]:
        """Convert the result object to JSON.

        Args:
            path: Path to save the JSON file (if None, returns the JSON string)
            **kwargs: Additional keyword arguments for json.dump/dumps

        Returns:
            Optional[str]: JSON string if path is None, None otherwise
        """
        result_dict = self.to_dict()

        if path is None:
            return json.dumps(result_dict, **kwargs)

        with open(path, 'w') as f:
            json.dump(result_dict, f, **kwargs)

        return None

    def to_pickle(self, path: Union[str, Path]) -> None:
        """Save the result object as a pickle file."""
        with open(path, 'wb') as f:
            pickle.dump(self, f)

    @classmethod
    def from_pickle(cls, path: Union[str, Path]) -> 'ModelResult':
        """Load a result object from a pickle file.

        Raises:
            TypeError: If the loaded object is not an instance of this class
        """
        with open(path, 'rb') as f:
            result = pickle.load(f)

        if not isinstance(result, cls):
            raise TypeError(f"Loaded object is not a {cls.__name__}, got {type(result)}")

        return result

    def summary(self) -> str:
        """Generate a text summary header."""
        header = f"Model: {self.model_name}\n"
        header += "=" * (len(header) - 1) + "\n\n"

        timestamp = f"Created: {self.creation_time.strftime('%Y-%m-%d %H:%M:%S')}\n\n"

        metadata_str = ""
        if self.metadata:
            metadata_str = "Metadata:\n"
            for key, value in self.metadata.items():
                metadata_str += f"  {key}: {value}\n"
            metadata_str += "\n"

        return header + timestamp + metadata_str

    def __str__(self) -> str:
        return self.summary()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(model_name='{self.model_name}')"


@dataclass
class FitResult(ModelResult):
    """Outcome of maximum-likelihood estimation of the covariance parameters.

    A result is always returned; degenerate outcomes carry a non-success
    status rather than raising.

    Attributes:
        parameters: Optimized (or best-so-far) unconstrained parameters
        neg_log_likelihood: Objective value at ``parameters``
        status: Convergence/feasibility status
        iterations: Number of optimizer iterations
        n_function_evals: Number of objective evaluations
        n_infeasible_evals: Evaluations that hit an infeasible covariance
        gradient_norm: Euclidean norm of the gradient at ``parameters``
        optimization_message: Message from the optimizer
        n_years: Number of years T in the data
        labels: Vital-rate labels (column order)
        parameter_covariance: Inverse Hessian of the objective, if requested
        std_errors: Square roots of the diagonal of ``parameter_covariance``
    """

    parameters: Optional[CovarianceParameters] = None
    neg_log_likelihood: float = float("nan")
    status: FitStatus = FitStatus.NOT_CONVERGED
    iterations: int = 0
    n_function_evals: int = 0
    n_infeasible_evals: int = 0
    gradient_norm: float = float("nan")
    optimization_message: Optional[str] = None
    n_years: int = 0
    labels: List[str] = field(default_factory=list)
    parameter_covariance: Optional[np.ndarray] = None
    std_errors: Optional[np.ndarray] = None

    def __post_init__(self) -> None:
        super().__post_init__()

        if self.status is FitStatus.NOT_CONVERGED:
            warn_convergence(
                f"Model {self.model_name} did not converge after {self.iterations} iterations. "
                f"Results may not be reliable.",
                iterations=self.iterations,
                gradient_norm=self.gradient_norm,
                details=self.optimization_message
            )

    @property
    def converged(self) -> bool:
        """True when the optimizer met its tolerance at a feasible point."""
        return self.status is FitStatus.SUCCESS

    @property
    def log_likelihood(self) -> float:
        return -self.neg_log_likelihood

    @property
    def n_params(self) -> int:
        return 0 if self.parameters is None else self.parameters.to_array().shape[0]

    @property
    def aic(self) -> float:
        """Akaike Information Criterion."""
        return 2.0 * self.neg_log_likelihood + 2.0 * self.n_params

    @property
    def bic(self) -> float:
        """Bayesian Information Criterion (sample size = number of years)."""
        return 2.0 * self.neg_log_likelihood + self.n_params * np.log(max(self.n_years, 1))

    def to_dataframe(self) -> pd.DataFrame:
        """Parameter estimates (and standard errors, if available) as a DataFrame.

        Raises:
            ValueError: If parameters are not available
        """
        if self.parameters is None:
            raise ValueError("Parameters are not available")

        labels = self.labels or None
        data = {"Estimate": self.parameters.to_array()}
        if self.std_errors is not None:
            data["Std. Error"] = self.std_errors
        return pd.DataFrame(data, index=pd.Index(self.parameters.names(labels), name="Parameter"))

    def summary(self) -> str:
        """Generate a text summary of the fit."""
        base_summary = super().summary()

        convergence_info = f"Status: {self.status.value}\n"
        convergence_info += f"Iterations: {self.iterations}\n"
        convergence_info += f"Function evaluations: {self.n_function_evals}\n"
        if self.n_infeasible_evals:
            convergence_info += f"Infeasible evaluations: {self.n_infeasible_evals}\n"
        convergence_info += f"Gradient norm: {self.gradient_norm:.3e}\n"
        if self.optimization_message:
            convergence_info += f"Optimizer message: {self.optimization_message}\n"
        convergence_info += "\n"

        fit_stats = f"Negative log-likelihood: {self.neg_log_likelihood:.6f}\n"
        fit_stats += f"AIC: {self.aic:.6f}\n"
        fit_stats += f"BIC: {self.bic:.6f}\n\n"

        param_table = ""
        if self.parameters is not None:
            param_table = "Parameter Estimates:\n"
            param_table += "-" * 60 + "\n"
            param_table += self.to_dataframe().to_string(float_format=lambda v: f"{v:.6f}")
            param_table += "\n" + "-" * 60 + "\n"

        return base_summary + convergence_info + fit_stats + param_table


@dataclass
class CovarianceReport(ModelResult):
    """Derived covariance quantities at the fitted parameters.

    Standard errors, when present, are first-order delta-method
    approximations: the inverse Hessian of the negative log-likelihood is
    propagated through the exact Jacobian of each derived quantity. They are
    asymptotic and not exact inference.

    Attributes:
        std_devs: Environmental standard deviations (m,)
        correlation: Correlation matrix R (m, m)
        environmental_covariance: E = D R D (m, m)
        year_covariances: Per-year covariance matrices Σ_t (T, m, m)
        eigenvalues: Eigenvalues of E in ascending order
        labels: Vital-rate labels
        status: Status of the fit the report was produced from
        std_dev_se: Standard errors of ``std_devs``
        correlation_se: Standard errors of ``correlation`` (zero diagonal)
        environmental_covariance_se: Standard errors of ``environmental_covariance``
    """

    std_devs: np.ndarray = field(default_factory=lambda: np.empty(0))
    correlation: np.ndarray = field(default_factory=lambda: np.empty((0, 0)))
    environmental_covariance: np.ndarray = field(default_factory=lambda: np.empty((0, 0)))
    year_covariances: np.ndarray = field(default_factory=lambda: np.empty((0, 0, 0)))
    eigenvalues: np.ndarray = field(default_factory=lambda: np.empty(0))
    labels: List[str] = field(default_factory=list)
    status: FitStatus = FitStatus.SUCCESS
    std_dev_se: Optional[np.ndarray] = None
    correlation_se: Optional[np.ndarray] = None
    environmental_covariance_se: Optional[np.ndarray] = None

    @property
    def has_standard_errors(self) -> bool:
        return self.environmental_covariance_se is not None

    def is_positive_definite(self) -> bool:
        """Whether E admits a Cholesky factorization."""
        try:
            np.linalg.cholesky(self.environmental_covariance)
        except np.linalg.LinAlgError:
            return False
        return True

    def _frame(self, matrix: np.ndarray) -> pd.DataFrame:
        return pd.DataFrame(matrix, index=self.labels, columns=self.labels)

    def correlation_frame(self) -> pd.DataFrame:
        return self._frame(self.correlation)

    def covariance_frame(self) -> pd.DataFrame:
        return self._frame(self.environmental_covariance)

    def year_covariance_frame(self, year: int) -> pd.DataFrame:
        """Σ_t for the year at row ``year`` as a labelled DataFrame."""
        return self._frame(self.year_covariances[year])

    def to_dataframe(self) -> pd.DataFrame:
        """Per-rate standard deviations (and standard errors) as a DataFrame."""
        data = {"Std. Dev.": self.std_devs}
        if self.std_dev_se is not None:
            data["Std. Error"] = self.std_dev_se
        return pd.DataFrame(data, index=pd.Index(self.labels, name="Vital rate"))

    def summary(self) -> str:
        base_summary = super().summary()

        body = f"Fit status: {self.status.value}\n"
        body += f"Positive definite: {'Yes' if self.is_positive_definite() else 'No'}\n"
        body += f"Smallest eigenvalue: {self.eigenvalues[0]:.6e}\n\n"
        body += "Standard deviations:\n"
        body += self.to_dataframe().to_string(float_format=lambda v: f"{v:.6f}") + "\n\n"
        body += "Correlation matrix:\n"
        body += self.correlation_frame().to_string(float_format=lambda v: f"{v:.4f}") + "\n\n"
        body += "Environmental covariance matrix:\n"
        body += self.covariance_frame().to_string(float_format=lambda v: f"{v:.6e}") + "\n"

        return base_summary + body
