"""
Negative log-likelihood of the environmental covariance model.

Each year's residual vector u_t is modelled as multivariate normal with
covariance Σ_t = E + diag(dem_var[t]). The negative log-likelihood is

    Σ_t ½ (m log 2π + log|Σ_t| + u_t' Σ_t⁻¹ u_t)

evaluated through a per-year Cholesky factorization. The gradient is exact:
the derivative with respect to E accumulated in the per-year kernel is
back-propagated through the covariance assembly and the correlation
parameterization.
"""

import logging
from typing import List, Optional, Tuple, Union

import numpy as np
import pandas as pd

from envcov.core.config import get_numerical_config
from envcov.core.exceptions import (
    InfeasibleCovarianceError, NumericalDegeneracyError, ParameterError, raise_data_error,
    raise_shape_mismatch
)
from envcov.core.parameters import CovarianceParameters, n_total_params
from envcov.core.types import (
    DemographicVarianceMatrix, ParameterVector, ResidualMatrix
)
from envcov.core.validation import (
    as_float_matrix, validate_compatible_shapes, validate_non_negative_array,
    validate_numeric_array
)
from envcov.models.covariance._numba_core import year_likelihood_kernel
from envcov.models.covariance.assembly import build_env_cov, env_cov_backward
from envcov.models.covariance.correlation import correlation_factor
from envcov.models.demography.vital_rates import default_labels

logger = logging.getLogger("envcov.models.covariance.likelihood")

LOG_2PI = np.log(2.0 * np.pi)


def validate_inputs(residuals: ResidualMatrix,
                    dem_var: DemographicVarianceMatrix) -> Tuple[np.ndarray, np.ndarray, List[str]]:
    """
    Validate and convert the residual and demographic-variance tables.

    Args:
        residuals: Residual matrix (T x m), array or DataFrame
        dem_var: Demographic variance matrix (T x m), array or DataFrame

    Returns:
        Tuple of float arrays (residuals, dem_var) and the vital-rate labels
        (DataFrame columns of ``residuals`` if available)

    Raises:
        ShapeMismatchError: If either table is not 2D, they differ in shape,
            or they are empty
        DataError: If residuals are not finite or demographic variances are
            negative or not finite
    """
    u = as_float_matrix(residuals, "residuals")
    v = as_float_matrix(dem_var, "dem_var")
    validate_compatible_shapes([u, v], ["residuals", "dem_var"])

    if u.shape[0] < 1 or u.shape[1] < 1:
        raise_shape_mismatch(
            "residuals must have at least one year and one vital rate",
            array_name="residuals",
            expected_shape="(T >= 1, m >= 1)",
            actual_shape=u.shape
        )

    validate_numeric_array(u, "residuals")
    validate_numeric_array(v, "dem_var")
    validate_non_negative_array(v, "dem_var")

    if isinstance(residuals, pd.DataFrame):
        labels = [str(c) for c in residuals.columns]
        if isinstance(dem_var, pd.DataFrame) and list(dem_var.columns) != list(residuals.columns):
            raise_data_error(
                "residuals and dem_var have different column labels",
                data_name="dem_var",
                issue="column labels differ from residuals"
            )
    elif isinstance(dem_var, pd.DataFrame):
        labels = [str(c) for c in dem_var.columns]
    else:
        labels = default_labels(u.shape[1])

    return u, v, labels


class LogLikelihoodEvaluator:
    """
    Negative log-likelihood bound to a fixed residual/demographic-variance pair.

    The data are validated once on construction and never modified. Every
    method takes the flat unconstrained parameter vector (or a
    ``CovarianceParameters``) and recomputes all derived quantities from it.

    Attributes:
        residuals: Validated residual matrix (T x m)
        dem_var: Validated demographic variance matrix (T x m)
        labels: Vital-rate labels
        infeasible_penalty: Value returned by ``objective`` at infeasible points
        n_evaluations: Number of ``objective`` calls since the last reset
        n_infeasible: Number of those calls that hit an infeasible covariance
    """

    def __init__(self,
                 residuals: ResidualMatrix,
                 dem_var: DemographicVarianceMatrix,
                 infeasible_penalty: Optional[float] = None):
        self.residuals, self.dem_var, self.labels = validate_inputs(residuals, dem_var)

        if infeasible_penalty is None:
            infeasible_penalty = get_numerical_config().infeasible_penalty
        self.infeasible_penalty = float(infeasible_penalty)

        self.n_evaluations = 0
        self.n_infeasible = 0

    @property
    def n_years(self) -> int:
        return self.residuals.shape[0]

    @property
    def n_vital_rates(self) -> int:
        return self.residuals.shape[1]

    @property
    def n_params(self) -> int:
        return n_total_params(self.n_vital_rates)

    def reset_counters(self) -> None:
        self.n_evaluations = 0
        self.n_infeasible = 0

    def parameters(self, theta: Union[ParameterVector, CovarianceParameters]) -> CovarianceParameters:
        """Coerce ``theta`` to parameters for this data's number of vital rates.

        Raises:
            ShapeMismatchError: If the length is not m(m-1)/2 + m
        """
        if isinstance(theta, CovarianceParameters):
            if theta.n_vital_rates != self.n_vital_rates:
                raise_shape_mismatch(
                    f"Parameters are for {theta.n_vital_rates} vital rates, data has "
                    f"{self.n_vital_rates}",
                    array_name="parameters",
                    expected_shape=(self.n_params,),
                    actual_shape=(n_total_params(theta.n_vital_rates),)
                )
            return theta
        return CovarianceParameters.from_array(theta, n_vital_rates=self.n_vital_rates)

    def _evaluate(self, theta: Union[ParameterVector, CovarianceParameters],
                  compute_grad: bool) -> Tuple[float, Optional[np.ndarray], np.ndarray, np.ndarray]:
        params = self.parameters(theta)
        m = self.n_vital_rates
        T = self.n_years

        L, norms = correlation_factor(params.correlation_params, m)
        R = L @ L.T
        sd = params.std_devs
        E = np.ascontiguousarray(build_env_cov(R, sd))

        log_dets = np.zeros(T)
        quad_forms = np.zeros(T)
        grad_E = np.zeros((m, m))

        failed = year_likelihood_kernel(E, self.residuals, self.dem_var,
                                        log_dets, quad_forms, compute_grad, grad_E)
        if failed >= 0:
            raise InfeasibleCovarianceError(
                f"Covariance matrix for year {failed} is not positive definite",
                year=int(failed),
                operation="cholesky"
            )

        finite = np.isfinite(log_dets) & np.isfinite(quad_forms)
        if not finite.all():
            year = int(np.argmin(finite))
            raise NumericalDegeneracyError(
                f"Non-finite log-determinant or quadratic form in year {year}",
                year=year,
                operation="log_likelihood",
                values=np.array([log_dets[year], quad_forms[year]])
            )

        value = 0.5 * (T * m * LOG_2PI + log_dets.sum() + quad_forms.sum())
        if not np.isfinite(value):
            raise NumericalDegeneracyError(
                "Negative log-likelihood is not finite",
                operation="log_likelihood",
                values=value
            )

        grad = None
        if compute_grad:
            grad = env_cov_backward(grad_E, R, sd, L, norms)

        return float(value), grad, log_dets, quad_forms

    def neg_log_likelihood(self, theta: Union[ParameterVector, CovarianceParameters]) -> float:
        """
        Negative log-likelihood at ``theta``.

        Raises:
            ShapeMismatchError: If ``theta`` has the wrong length
            InfeasibleCovarianceError: If some Σ_t is not positive definite
            NumericalDegeneracyError: If a per-year term is not finite
        """
        return self._evaluate(theta, False)[0]

    def value_and_gradient(self, theta: Union[ParameterVector, CovarianceParameters]) -> Tuple[float, np.ndarray]:
        """
        Negative log-likelihood and its exact gradient at ``theta``.

        Raises:
            ShapeMismatchError: If ``theta`` has the wrong length
            InfeasibleCovarianceError: If some Σ_t is not positive definite
            NumericalDegeneracyError: If a per-year term is not finite
        """
        value, grad, _, _ = self._evaluate(theta, True)
        return value, grad

    def gradient(self, theta: Union[ParameterVector, CovarianceParameters]) -> np.ndarray:
        return self.value_and_gradient(theta)[1]

    def year_components(self, theta: Union[ParameterVector, CovarianceParameters]) -> pd.DataFrame:
        """
        Per-year log-determinants and quadratic forms at ``theta``.

        Returns:
            DataFrame with columns ``log_det`` and ``quad_form``, one row per year
        """
        _, _, log_dets, quad_forms = self._evaluate(theta, False)
        return pd.DataFrame({"log_det": log_dets, "quad_form": quad_forms},
                            index=pd.RangeIndex(self.n_years, name="year"))

    def objective(self, theta: ParameterVector) -> Tuple[float, np.ndarray]:
        """
        Optimizer-facing value and gradient.

        Infeasible points (a Σ_t that is not positive definite, a non-finite
        likelihood term, or non-finite parameters) return
        ``infeasible_penalty`` and a zero gradient instead of raising. The
        penalty exceeds any feasible value, so line searches started from a
        feasible point back off. The zero gradient gives no direction, so a
        run started at an infeasible point stops at its first iteration and
        the fit reports ``FitStatus.INFEASIBLE``.
        """
        self.n_evaluations += 1
        try:
            return self.value_and_gradient(theta)
        except InfeasibleCovarianceError as e:
            self.n_infeasible += 1
            logger.debug(f"Infeasible parameters at evaluation {self.n_evaluations} "
                         f"(year {e.year}); returning penalty")
        except ParameterError as e:
            self.n_infeasible += 1
            logger.debug(f"Invalid parameters at evaluation {self.n_evaluations}: "
                         f"{e.message}; returning penalty")
        return self.infeasible_penalty, np.zeros(self.n_params)


def neg_log_likelihood(params: Union[ParameterVector, CovarianceParameters],
                       residuals: ResidualMatrix,
                       dem_var: DemographicVarianceMatrix) -> float:
    """
    Negative log-likelihood of the residuals under Σ_t = E + diag(dem_var[t]).

    Args:
        params: Flat parameter vector (correlation parameters, log sds) or
            ``CovarianceParameters``
        residuals: Residual matrix (T x m)
        dem_var: Demographic variance matrix (T x m)

    Returns:
        The negative log-likelihood

    Raises:
        ShapeMismatchError: If shapes are inconsistent
        DataError: If inputs are not finite or variances are negative
        InfeasibleCovarianceError: If some Σ_t is not positive definite
    """
    return LogLikelihoodEvaluator(residuals, dem_var).neg_log_likelihood(params)
