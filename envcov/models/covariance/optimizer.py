"""
Maximum-likelihood optimization of the covariance parameters.

Drives ``scipy.optimize.minimize`` with the evaluator's objective, which
returns the value and the exact gradient together (``jac=True``). Every
outcome is reported through ``FitResult.status``; the optimizer never raises
for non-convergence or for an infeasible final point.
"""

import logging
import time
from typing import Any, Dict, Optional, Union

import numpy as np
from scipy import linalg, optimize

from envcov.core.config import get_numerical_config
from envcov.core.exceptions import (
    InfeasibleCovarianceError, ParameterError, raise_parameter_error, warn_numeric
)
from envcov.core.parameters import CovarianceParameters
from envcov.core.results import FitResult, FitStatus
from envcov.core.types import ParameterVector, ProgressCallback
from envcov.models.covariance.likelihood import LogLikelihoodEvaluator
from envcov.utils.differentiation import hessian_from_gradient

logger = logging.getLogger("envcov.models.covariance.optimizer")

SUPPORTED_METHODS = ("L-BFGS-B", "BFGS")


class _EvaluationLimitReached(Exception):
    """Raised from the objective once the evaluation cap is used up."""


def default_initial_parameters(n_vital_rates: int,
                               std_dev: Optional[float] = None) -> CovarianceParameters:
    """
    Default starting point: zero correlation seeds and a small common standard deviation.

    Args:
        n_vital_rates: Number of vital rates m
        std_dev: Starting standard deviation; ``initial_std_dev`` from the
            numerical configuration if None (0.1 by default)
    """
    if std_dev is None:
        std_dev = get_numerical_config().initial_std_dev
    return CovarianceParameters.default(n_vital_rates, std_dev)


def _optimizer_options(method: str, max_iterations: int, max_function_evals: int,
                       gradient_tol: float, function_tol: float) -> Dict[str, Any]:
    if method == "L-BFGS-B":
        return {
            "maxiter": max_iterations,
            "maxfun": max_function_evals,
            "gtol": gradient_tol,
            "ftol": function_tol,
        }
    return {"maxiter": max_iterations, "gtol": gradient_tol}


def parameter_covariance(evaluator: LogLikelihoodEvaluator,
                         theta: Union[ParameterVector, CovarianceParameters],
                         step: Optional[float] = None) -> np.ndarray:
    """
    Inverse Hessian of the negative log-likelihood at ``theta``.

    The Hessian is obtained by central differences of the exact gradient.
    If it cannot be computed (a neighbouring point is infeasible) or is not
    positive definite, a NumericWarning is issued and a NaN matrix returned.

    Args:
        evaluator: Likelihood evaluator bound to the data
        theta: Parameter vector at which to evaluate the Hessian
        step: Difference step; ``hessian_step`` from the configuration if None

    Returns:
        Parameter covariance matrix (n_params x n_params)
    """
    theta = evaluator.parameters(theta).to_array()
    n = theta.shape[0]
    if step is None:
        step = get_numerical_config().hessian_step

    try:
        hessian = hessian_from_gradient(evaluator.gradient, theta, step)
    except InfeasibleCovarianceError as e:
        warn_numeric(
            "Hessian could not be evaluated: a neighbouring point is infeasible",
            operation="parameter_covariance",
            issue="infeasible_neighbour",
            details=e.message
        )
        return np.full((n, n), np.nan)

    try:
        factor = linalg.cho_factor(hessian, lower=True)
    except linalg.LinAlgError:
        warn_numeric(
            "Hessian of the negative log-likelihood is not positive definite; "
            "standard errors are not available",
            operation="parameter_covariance",
            issue="non_positive_definite_hessian",
            value=np.linalg.eigvalsh(hessian)
        )
        return np.full((n, n), np.nan)

    cov = linalg.cho_solve(factor, np.eye(n))
    return (cov + cov.T) / 2


def fit(initial: Union[ParameterVector, CovarianceParameters, None],
        evaluator: LogLikelihoodEvaluator,
        method: Optional[str] = None,
        max_iterations: Optional[int] = None,
        max_function_evals: Optional[int] = None,
        gradient_tol: Optional[float] = None,
        function_tol: Optional[float] = None,
        compute_covariance: bool = False,
        callback: Optional[ProgressCallback] = None,
        model_name: str = "EnvironmentalCovariance") -> FitResult:
    """
    Maximize the likelihood over the unconstrained parameters.

    Args:
        initial: Starting parameters (flat vector or ``CovarianceParameters``);
            ``default_initial_parameters`` if None
        evaluator: Likelihood evaluator bound to validated data
        method: ``"L-BFGS-B"`` or ``"BFGS"``; configuration default if None
        max_iterations: Iteration cap; configuration default if None
        max_function_evals: Evaluation cap; configuration default if None. Under
            BFGS the run stops at the cap with the best point evaluated so far
        gradient_tol: Gradient tolerance; configuration default if None
        function_tol: Relative objective tolerance (L-BFGS-B only); configuration default if None
        compute_covariance: Also compute the inverse Hessian and parameter standard errors
        callback: Called as ``callback(iteration, neg_log_likelihood)`` after each iteration
        model_name: Name recorded in the result

    Returns:
        FitResult with status SUCCESS, NOT_CONVERGED or INFEASIBLE

    Raises:
        ShapeMismatchError: If the starting parameters do not match the data
        ParameterError: If the method is not supported
    """
    config = get_numerical_config()
    method = method or config.optimization_method
    if method not in SUPPORTED_METHODS:
        raise_parameter_error(
            f"Unsupported optimization method: {method}",
            param_name="method",
            param_value=method,
            constraint=f"one of {', '.join(SUPPORTED_METHODS)}"
        )

    if initial is None:
        initial = default_initial_parameters(evaluator.n_vital_rates)
    theta0 = evaluator.parameters(initial).to_array()

    if max_function_evals is None:
        max_function_evals = config.max_function_evals
    options = _optimizer_options(
        method,
        max_iterations if max_iterations is not None else config.max_iterations,
        max_function_evals,
        gradient_tol if gradient_tol is not None else config.gradient_tol,
        function_tol if function_tol is not None else config.function_tol,
    )

    iteration = [0]

    def scipy_callback(xk: np.ndarray) -> None:
        iteration[0] += 1
        if callback is None:
            return
        try:
            value = evaluator.neg_log_likelihood(xk)
        except InfeasibleCovarianceError:
            value = evaluator.infeasible_penalty
        callback(iteration[0], value)

    # scipy's BFGS has no evaluation cap; enforce it around the objective
    objective = evaluator.objective
    best = {"theta": theta0.copy(), "value": np.inf}
    if method != "L-BFGS-B":
        def capped_objective(theta: np.ndarray):
            if evaluator.n_evaluations >= max_function_evals:
                raise _EvaluationLimitReached
            value, grad = evaluator.objective(theta)
            if value < best["value"]:
                best["theta"] = np.array(theta, dtype=np.float64)
                best["value"] = value
            return value, grad

        objective = capped_objective

    evaluator.reset_counters()
    logger.info(f"Fitting {evaluator.n_vital_rates} vital rates over {evaluator.n_years} "
                f"years with {method} ({theta0.shape[0]} parameters)")
    start = time.perf_counter()

    try:
        opt = optimize.minimize(objective, theta0, jac=True, method=method,
                                options=options, callback=scipy_callback)
    except _EvaluationLimitReached:
        logger.warning(f"Stopped after {evaluator.n_evaluations} function evaluations")
        opt = optimize.OptimizeResult(
            x=best["theta"],
            fun=best["value"],
            success=False,
            nit=iteration[0],
            message="Maximum number of function evaluations has been exceeded.",
        )

    elapsed = time.perf_counter() - start
    theta = np.asarray(opt.x, dtype=np.float64)
    message = str(opt.message)

    try:
        value, grad = evaluator.value_and_gradient(theta)
    except (InfeasibleCovarianceError, ParameterError) as e:
        logger.warning(f"Optimizer stopped at an infeasible point: {e.message}")
        status = FitStatus.INFEASIBLE
        value = float(opt.fun)
        gradient_norm = float("nan")
    else:
        status = FitStatus.SUCCESS if opt.success else FitStatus.NOT_CONVERGED
        gradient_norm = float(np.linalg.norm(grad))

    parameters = None
    if np.all(np.isfinite(theta)):
        parameters = CovarianceParameters.from_array(theta, n_vital_rates=evaluator.n_vital_rates)

    cov = None
    std_errors = None
    if compute_covariance and status is not FitStatus.INFEASIBLE:
        cov = parameter_covariance(evaluator, theta)
        std_errors = np.sqrt(np.diag(cov))

    logger.info(f"Optimization finished in {elapsed:.3f}s: status={status.value}, "
                f"nll={value:.6f}, iterations={opt.get('nit', 0)}, "
                f"evaluations={evaluator.n_evaluations}, infeasible={evaluator.n_infeasible}")

    return FitResult(
        model_name=model_name,
        metadata={"method": method, "elapsed_seconds": elapsed},
        parameters=parameters,
        neg_log_likelihood=value,
        status=status,
        iterations=int(opt.get("nit", 0)),
        n_function_evals=evaluator.n_evaluations,
        n_infeasible_evals=evaluator.n_infeasible,
        gradient_norm=gradient_norm,
        optimization_message=message,
        n_years=evaluator.n_years,
        labels=list(evaluator.labels),
        parameter_covariance=cov,
        std_errors=std_errors,
    )
