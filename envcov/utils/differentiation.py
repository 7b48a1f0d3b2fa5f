"""
Numerical Differentiation Module

Central finite-difference approximations used alongside the analytic
derivatives of the likelihood. The Hessian used for parameter standard errors
is obtained by differencing the exact gradient, and the gradient/Jacobian
approximations here serve as independent checks of the hand-derived
reverse-mode derivatives.

Functions:
    gradient_2sided: Two-sided numerical gradient of a scalar function
    jacobian: Two-sided numerical Jacobian of a vector-valued function
    hessian_from_gradient: Symmetrized Hessian from differences of a gradient
"""

import logging
from typing import Callable, Optional, Tuple

import numpy as np

from envcov.core.exceptions import raise_shape_mismatch, warn_numeric
from envcov.core.types import GradientFunction, Matrix, ObjectiveFunction, Vector

logger = logging.getLogger("envcov.utils.differentiation")


def _check_vector(x: Vector) -> np.ndarray:
    x = np.asarray(x, dtype=float)
    if x.ndim != 1:
        raise_shape_mismatch(
            "Input must be a 1D vector",
            array_name="x",
            expected_shape="(n,)",
            actual_shape=x.shape
        )
    return x


def _default_step(x: np.ndarray) -> np.ndarray:
    # Cube root of machine epsilon balances truncation and rounding error
    # for central differences.
    return np.finfo(float).eps ** (1.0 / 3.0) * np.maximum(np.abs(x), 1.0)


def gradient_2sided(func: ObjectiveFunction,
                    x: Vector,
                    epsilon: Optional[float] = None,
                    args: Tuple = ()) -> Vector:
    """
    Compute two-sided numerical gradient of a function.

    For a function f(x), the gradient is computed as:

    ∂f/∂x_i ≈ [f(x + ε*e_i) - f(x - ε*e_i)] / (2*ε)

    Args:
        func: Function to differentiate, should take a vector and return a scalar
        x: Point at which to compute the gradient
        epsilon: Step size. If None, a per-coordinate step scaled to |x_i| is used
        args: Additional arguments to pass to the function

    Returns:
        Gradient vector of the same shape as x

    Raises:
        ShapeMismatchError: If x is not a 1D array

    Examples:
        >>> import numpy as np
        >>> from envcov.utils.differentiation import gradient_2sided
        >>> def f(x): return x[0]**2 + x[1]**2
        >>> np.round(gradient_2sided(f, np.array([1.0, 2.0])), 6)
        array([2., 4.])
    """
    x = _check_vector(x)
    n = x.shape[0]
    steps = _default_step(x) if epsilon is None else np.full(n, float(epsilon))

    grad = np.zeros(n, dtype=float)
    x_plus = x.copy()
    x_minus = x.copy()

    for i in range(n):
        x_plus[i] = x[i] + steps[i]
        x_minus[i] = x[i] - steps[i]
        grad[i] = (func(x_plus, *args) - func(x_minus, *args)) / (2.0 * steps[i])

        if not np.isfinite(grad[i]):
            warn_numeric(
                f"Non-finite gradient detected at index {i}",
                operation="gradient_2sided",
                issue="non_finite_gradient",
                value=grad[i]
            )

        x_plus[i] = x[i]
        x_minus[i] = x[i]

    return grad


def jacobian(func: Callable[[Vector], Vector],
             x: Vector,
             epsilon: Optional[float] = None,
             args: Tuple = ()) -> Matrix:
    """
    Compute the Jacobian matrix of a vector-valued function.

    Args:
        func: Function to differentiate, should take a vector and return a vector
        x: Point at which to compute the Jacobian
        epsilon: Step size. If None, a per-coordinate step scaled to |x_j| is used
        args: Additional arguments to pass to the function

    Returns:
        Jacobian matrix of shape (k, n) where k is the length of func(x) and
        n is the length of x

    Raises:
        ShapeMismatchError: If x or func(x) is not a 1D array
    """
    x = _check_vector(x)
    n = x.shape[0]
    steps = _default_step(x) if epsilon is None else np.full(n, float(epsilon))

    f_x = np.asarray(func(x, *args), dtype=float)
    if f_x.ndim != 1:
        raise_shape_mismatch(
            "Function must return a 1D vector",
            array_name="func(x)",
            expected_shape="(k,)",
            actual_shape=f_x.shape
        )

    jac = np.zeros((f_x.shape[0], n), dtype=float)
    x_plus = x.copy()
    x_minus = x.copy()

    for j in range(n):
        x_plus[j] = x[j] + steps[j]
        x_minus[j] = x[j] - steps[j]
        f_plus = np.asarray(func(x_plus, *args), dtype=float)
        f_minus = np.asarray(func(x_minus, *args), dtype=float)
        jac[:, j] = (f_plus - f_minus) / (2.0 * steps[j])

        if not np.all(np.isfinite(jac[:, j])):
            warn_numeric(
                f"Non-finite Jacobian elements detected in column {j}",
                operation="jacobian",
                issue="non_finite_jacobian",
                value=jac[:, j]
            )

        x_plus[j] = x[j]
        x_minus[j] = x[j]

    return jac


def hessian_from_gradient(grad_func: GradientFunction,
                          x: Vector,
                          epsilon: Optional[float] = None) -> Matrix:
    """
    Hessian by central differences of an analytic gradient.

    Each column is [g(x + ε e_j) - g(x - ε e_j)] / (2ε); the result is
    symmetrized as (H + Hᵀ)/2.

    Args:
        grad_func: Function returning the gradient vector at a point
        x: Point at which to compute the Hessian
        epsilon: Step size. If None, a per-coordinate step scaled to |x_j| is used

    Returns:
        Symmetric (n, n) Hessian approximation
    """
    hess = jacobian(grad_func, x, epsilon)
    if hess.shape[0] != hess.shape[1]:
        raise_shape_mismatch(
            "Gradient function must return a vector of the same length as x",
            array_name="grad_func(x)",
            expected_shape=(hess.shape[1],),
            actual_shape=(hess.shape[0],)
        )
    logger.debug(f"Computed {hess.shape[0]}x{hess.shape[1]} Hessian from gradient differences")
    return 0.5 * (hess + hess.T)
