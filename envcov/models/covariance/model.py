"""
Environmental covariance model.

Object interface over the estimation engine in the style of the other
envcov models: construct, ``fit`` (or ``fit_async``) on a
``(residuals, dem_var)`` pair, then ``report`` and ``summary``.

Examples:
    >>> import numpy as np
    >>> from envcov.models.covariance import EnvironmentalCovarianceModel
    >>> residuals = np.array([[0.1, -0.05], [0.0, 0.02], [-0.1, 0.03]])
    >>> model = EnvironmentalCovarianceModel()
    >>> result = model.fit((residuals, np.zeros_like(residuals)))
    >>> result.status.value
    'success'
"""

import logging
from typing import Any, Optional, Tuple, Union

import numpy as np

from envcov.core.base import ModelBase
from envcov.core.exceptions import raise_not_fitted_error
from envcov.core.parameters import CovarianceParameters
from envcov.core.results import CovarianceReport, FitResult
from envcov.core.types import (
    DemographicVarianceMatrix, ParameterVector, ProgressCallback, ResidualMatrix
)
from envcov.models.covariance.likelihood import LogLikelihoodEvaluator
from envcov.models.covariance.optimizer import fit as fit_parameters
from envcov.models.covariance.uncertainty import report as build_report

logger = logging.getLogger("envcov.models.covariance.model")

CovarianceData = Tuple[ResidualMatrix, DemographicVarianceMatrix]


class EnvironmentalCovarianceModel(ModelBase[CovarianceParameters, FitResult, CovarianceData]):
    """
    Maximum-likelihood estimator of the environmental covariance matrix.

    Residuals for year t are modelled as N(0, E + diag(dem_var[t])) with
    E = D R D, R parameterized through a row-normalized Cholesky-like factor
    and D = diag(exp(log sd)). E is positive semi-definite for every
    parameter value.

    Args:
        name: A descriptive name for the model
        method: Optimization method (``"L-BFGS-B"`` or ``"BFGS"``); configuration default if None
    """

    def __init__(self, name: str = "EnvironmentalCovariance", method: Optional[str] = None):
        super().__init__(name=name)
        self.method = method
        self._evaluator: Optional[LogLikelihoodEvaluator] = None
        self._report: Optional[CovarianceReport] = None

    def validate_data(self, data: CovarianceData) -> LogLikelihoodEvaluator:
        """
        Validate a ``(residuals, dem_var)`` pair and bind an evaluator to it.

        Raises:
            TypeError: If ``data`` is not a pair
            ShapeMismatchError: If the tables differ in shape
            DataError: If values are not finite or variances are negative
        """
        if not isinstance(data, (tuple, list)) or len(data) != 2:
            raise TypeError("data must be a (residuals, dem_var) pair")
        residuals, dem_var = data
        return LogLikelihoodEvaluator(residuals, dem_var)

    def fit(self, data: CovarianceData,
            starting_values: Optional[Union[ParameterVector, CovarianceParameters]] = None,
            max_iterations: Optional[int] = None,
            max_function_evals: Optional[int] = None,
            gradient_tol: Optional[float] = None,
            function_tol: Optional[float] = None,
            compute_covariance: bool = False,
            callback: Optional[ProgressCallback] = None,
            **kwargs: Any) -> FitResult:
        """
        Estimate the covariance parameters.

        Args:
            data: ``(residuals, dem_var)``, each T x m (arrays or DataFrames)
            starting_values: Initial parameters; zero correlation and a small
                standard deviation if None
            max_iterations: Iteration cap
            max_function_evals: Evaluation cap
            gradient_tol: Gradient tolerance
            function_tol: Relative objective tolerance
            compute_covariance: Also compute the parameter covariance matrix
            callback: Progress callback ``callback(iteration, nll)``
            method: Overrides the optimization method given at construction

        Returns:
            FitResult; non-convergence and infeasibility are reported in its status

        Raises:
            ShapeMismatchError: If shapes are inconsistent (before optimizing)
            DataError: If the data are invalid
            TypeError: If an unknown keyword argument is passed
        """
        method = kwargs.pop("method", self.method)
        if kwargs:
            raise TypeError(f"fit() got unexpected keyword arguments: {', '.join(sorted(kwargs))}")

        evaluator = self.validate_data(data)

        result = fit_parameters(
            starting_values,
            evaluator,
            method=method,
            max_iterations=max_iterations,
            max_function_evals=max_function_evals,
            gradient_tol=gradient_tol,
            function_tol=function_tol,
            compute_covariance=compute_covariance,
            callback=callback,
            model_name=self._name,
        )

        self._evaluator = evaluator
        self._results = result
        self._report = None
        self._fitted = True
        return result

    def report(self, standard_errors: bool = False) -> CovarianceReport:
        """
        Derived covariance quantities at the fitted parameters.

        Raises:
            NotFittedError: If the model has not been fitted
        """
        if not self._fitted or self._evaluator is None:
            raise_not_fitted_error(
                "Model has not been fitted. Call fit() first.",
                model_type=self._name,
                operation="report"
            )

        if self._report is None or (standard_errors and not self._report.has_standard_errors):
            self._report = build_report(self.results, self._evaluator,
                                        standard_errors=standard_errors)
        return self._report

    @property
    def environmental_covariance(self) -> np.ndarray:
        return self.report().environmental_covariance

    @property
    def correlation(self) -> np.ndarray:
        return self.report().correlation

    @property
    def std_devs(self) -> np.ndarray:
        return self.report().std_devs

    def summary(self) -> str:
        """Fit summary followed by the covariance report, or a status line if not fitted."""
        if not self._fitted:
            return super().summary()
        return self.results.summary() + "\n" + self.report().summary()
