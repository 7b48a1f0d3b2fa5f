"""
Derived covariance quantities and their delta-method standard errors.

The report recomputes the standard deviations, the correlation matrix, the
environmental covariance and the per-year covariances from the fitted
parameters. Standard errors use the first-order delta method,

    Var(g(θ̂)) ≈ J Cov(θ̂) J',

where Cov(θ̂) is the inverse Hessian of the negative log-likelihood and J is
the exact Jacobian of g. Each row of J is obtained by back-propagating a
symmetric unit selector through the same graph as the likelihood gradient.
These are asymptotic approximations, not exact inference.
"""

import logging
from typing import Optional, Tuple, Union

import numpy as np
from scipy import linalg

from envcov.core.exceptions import raise_parameter_error
from envcov.core.parameters import CovarianceParameters, n_correlation_params
from envcov.core.results import CovarianceReport, FitResult, FitStatus
from envcov.core.types import (
    DemographicVarianceMatrix, Matrix, ParameterVector, ResidualMatrix
)
from envcov.models.covariance.assembly import (
    build_env_cov, build_year_covs, env_cov_backward
)
from envcov.models.covariance.correlation import (
    build_correlation, correlation_backward, correlation_factor
)
from envcov.models.covariance.likelihood import LogLikelihoodEvaluator
from envcov.models.covariance.optimizer import parameter_covariance

logger = logging.getLogger("envcov.models.covariance.uncertainty")


def _selector(m: int, i: int, j: int) -> np.ndarray:
    G = np.zeros((m, m))
    G[i, j] += 0.5
    G[j, i] += 0.5
    return G


def std_dev_jacobian(params: CovarianceParameters) -> Matrix:
    """
    Jacobian of the standard deviations with respect to the flat parameters.

    Returns:
        Matrix (m x n_params); d sd_i / d log sd_i = sd_i, all else zero
    """
    m = params.n_vital_rates
    n_corr = n_correlation_params(m)
    J = np.zeros((m, n_corr + m))
    J[:, n_corr:] = np.diag(params.std_devs)
    return J


def correlation_jacobian(params: CovarianceParameters) -> Matrix:
    """
    Jacobian of the strictly-lower correlation entries.

    Rows follow ``np.tril_indices(m, -1)``; the log-sd columns are zero.
    """
    m = params.n_vital_rates
    n_corr = n_correlation_params(m)
    L, norms = correlation_factor(params.correlation_params, m)
    rows, cols = np.tril_indices(m, -1)

    J = np.zeros((rows.shape[0], n_corr + m))
    for k, (i, j) in enumerate(zip(rows, cols)):
        J[k, :n_corr] = correlation_backward(_selector(m, i, j), L, norms)
    return J


def env_cov_jacobian(params: CovarianceParameters) -> Matrix:
    """
    Jacobian of the lower-triangular entries of E (diagonal included).

    Rows follow ``np.tril_indices(m)``.
    """
    m = params.n_vital_rates
    L, norms = correlation_factor(params.correlation_params, m)
    R = L @ L.T
    sd = params.std_devs
    rows, cols = np.tril_indices(m)

    J = np.zeros((rows.shape[0], n_correlation_params(m) + m))
    for k, (i, j) in enumerate(zip(rows, cols)):
        J[k] = env_cov_backward(_selector(m, i, j), R, sd, L, norms)
    return J


def delta_method_se(jac: Matrix, param_cov: Matrix) -> np.ndarray:
    """Standard errors sqrt(diag(J C J'))."""
    var = np.einsum('ij,jk,ik->i', jac, param_cov, jac)
    # Rounding can leave tiny negatives; NaN propagates unchanged.
    return np.sqrt(np.where(var < 0, 0.0, var))


def _symmetric_from_lower(values: np.ndarray, m: int, k: int) -> np.ndarray:
    out = np.zeros((m, m))
    rows, cols = np.tril_indices(m, k)
    out[rows, cols] = values
    out[cols, rows] = values
    return out


def _resolve_data(evaluator_or_data: Union[LogLikelihoodEvaluator,
                                           Tuple[ResidualMatrix, DemographicVarianceMatrix]]
                  ) -> LogLikelihoodEvaluator:
    if isinstance(evaluator_or_data, LogLikelihoodEvaluator):
        return evaluator_or_data
    try:
        residuals, dem_var = evaluator_or_data
    except (TypeError, ValueError):
        raise_parameter_error(
            "Expected a LogLikelihoodEvaluator or a (residuals, dem_var) pair",
            param_name="evaluator_or_data",
            constraint="evaluator or (residuals, dem_var)"
        )
    return LogLikelihoodEvaluator(residuals, dem_var)


def report(fit: Union[FitResult, ParameterVector, CovarianceParameters],
           evaluator_or_data: Union[LogLikelihoodEvaluator,
                                    Tuple[ResidualMatrix, DemographicVarianceMatrix]],
           standard_errors: bool = False,
           param_cov: Optional[Matrix] = None) -> CovarianceReport:
    """
    Derived covariance quantities (and optionally standard errors) at the fit.

    Args:
        fit: FitResult, or bare parameters
        evaluator_or_data: Evaluator bound to the data, or (residuals, dem_var)
        standard_errors: Whether to compute delta-method standard errors
        param_cov: Parameter covariance to use; the fit's (or a freshly
            computed inverse Hessian) if None

    Returns:
        CovarianceReport

    Raises:
        ShapeMismatchError: If the parameters do not match the data
        ParameterError: If the fit carries no parameters
    """
    evaluator = _resolve_data(evaluator_or_data)

    status = FitStatus.SUCCESS
    model_name = "EnvironmentalCovariance"
    if isinstance(fit, FitResult):
        if fit.parameters is None:
            raise_parameter_error("FitResult has no parameters", param_name="fit")
        status = fit.status
        model_name = fit.model_name
        if param_cov is None:
            param_cov = fit.parameter_covariance
        params = evaluator.parameters(fit.parameters)
    else:
        params = evaluator.parameters(fit)

    m = params.n_vital_rates
    sd = params.std_devs
    R = build_correlation(params.correlation_params, m)
    E = build_env_cov(R, sd)
    E = (E + E.T) / 2
    sigmas = build_year_covs(E, evaluator.dem_var)
    eigenvalues = linalg.eigvalsh(E)

    sd_se = corr_se = env_se = None
    if standard_errors:
        if param_cov is None:
            param_cov = parameter_covariance(evaluator, params)
        sd_se = delta_method_se(std_dev_jacobian(params), param_cov)
        corr_se = _symmetric_from_lower(
            delta_method_se(correlation_jacobian(params), param_cov), m, -1)
        env_se = _symmetric_from_lower(
            delta_method_se(env_cov_jacobian(params), param_cov), m, 0)
        logger.debug("Computed delta-method standard errors")

    return CovarianceReport(
        model_name=model_name,
        std_devs=sd,
        correlation=R,
        environmental_covariance=E,
        year_covariances=sigmas,
        eigenvalues=eigenvalues,
        labels=list(evaluator.labels),
        status=status,
        std_dev_se=sd_se,
        correlation_se=corr_se,
        environmental_covariance_se=env_se,
    )
