# envcov/models/covariance/_numba_core.py

"""
Numba-accelerated core functions for the environmental covariance model.

JIT-compiled loops for the parts of the likelihood that are evaluated at
every optimizer step: building the row-normalized correlation factor,
back-propagating a gradient through that normalization, and the per-year
Cholesky factorization, log-determinant, quadratic form and (optionally)
the accumulated derivative with respect to the environmental covariance.

Functions in this module are not typically called directly by users but are
used internally by the correlation, assembly and likelihood modules.
"""

import logging

import numpy as np
from numba import jit

logger = logging.getLogger("envcov.models.covariance._numba_core")


@jit(nopython=True, cache=True)
def correlation_factor_kernel(params: np.ndarray, m: int):
    """
    Row-normalized lower-triangular factor of a correlation matrix.

    Row 0 is e_0. Row i >= 1 is [params_i..., 1, 0...] divided by its
    Euclidean norm, where params_i are the next i parameters in row-major
    order over the strictly-lower triangle.

    Args:
        params: Correlation parameters, length m(m-1)/2
        m: Number of vital rates

    Returns:
        Tuple of the factor L (m x m) and the pre-normalization row norms (m,)
    """
    L = np.zeros((m, m), dtype=np.float64)
    norms = np.ones(m, dtype=np.float64)
    L[0, 0] = 1.0

    k = 0
    for i in range(1, m):
        ss = 1.0
        for j in range(i):
            L[i, j] = params[k]
            ss += params[k] * params[k]
            k += 1
        L[i, i] = 1.0
        nrm = np.sqrt(ss)
        norms[i] = nrm
        for j in range(i + 1):
            L[i, j] /= nrm

    return L, norms


@jit(nopython=True, cache=True)
def correlation_factor_backward(grad_L: np.ndarray, L: np.ndarray,
                                norms: np.ndarray) -> np.ndarray:
    """
    Gradient with respect to the correlation parameters given dF/dL.

    For row i the normalization L_i = a_i / ||a_i|| has Jacobian
    (I - L_i L_i') / ||a_i||; only the first i entries of a_i are free.
    """
    m = L.shape[0]
    out = np.zeros(m * (m - 1) // 2, dtype=np.float64)

    k = 0
    for i in range(1, m):
        proj = 0.0
        for j in range(i + 1):
            proj += grad_L[i, j] * L[i, j]
        for j in range(i):
            out[k] = (grad_L[i, j] - proj * L[i, j]) / norms[i]
            k += 1

    return out


@jit(nopython=True, cache=True)
def cholesky_lower(A: np.ndarray, out: np.ndarray) -> bool:
    """
    Lower Cholesky factor of a symmetric matrix written into ``out``.

    Only the lower triangle of ``A`` is read and ``out`` must be zeroed by
    the caller. Returns False as soon as a pivot is not strictly positive
    (NaN pivots included), leaving ``out`` partially filled.
    """
    n = A.shape[0]
    for j in range(n):
        s = A[j, j]
        for k in range(j):
            s -= out[j, k] * out[j, k]
        if not (s > 0.0):
            return False
        d = np.sqrt(s)
        out[j, j] = d
        for i in range(j + 1, n):
            t = A[i, j]
            for k in range(j):
                t -= out[i, k] * out[j, k]
            out[i, j] = t / d
    return True


@jit(nopython=True, cache=True)
def year_likelihood_kernel(env_cov: np.ndarray, residuals: np.ndarray,
                           dem_var: np.ndarray, log_dets: np.ndarray,
                           quad_forms: np.ndarray, compute_grad: bool,
                           grad_env_cov: np.ndarray) -> int:
    """
    Per-year Cholesky terms of the multivariate-normal likelihood.

    For each year t, Σ_t = E + diag(dem_var[t]) is factorized as C C'.
    log|Σ_t| = 2 Σ log C_ii and u'Σ_t⁻¹u = ||z||² with C z = u.

    With ``compute_grad`` the derivative of Σ_t ½(log|Σ_t| + u'Σ_t⁻¹u)
    with respect to E, Σ_t ½(Σ_t⁻¹ - αα') with α = Σ_t⁻¹u, is accumulated
    into ``grad_env_cov`` (which must be zeroed by the caller).

    Args:
        env_cov: Environmental covariance E (m x m)
        residuals: Residual matrix (T x m)
        dem_var: Demographic variance matrix (T x m)
        log_dets: Output array for log|Σ_t| (T,)
        quad_forms: Output array for u'Σ_t⁻¹u (T,)
        compute_grad: Whether to accumulate the gradient
        grad_env_cov: Output array for the gradient (m x m)

    Returns:
        -1 if every year factorized, otherwise the index of the first year
        whose Σ_t is not positive definite
    """
    T = residuals.shape[0]
    m = residuals.shape[1]

    sigma = np.empty((m, m), dtype=np.float64)
    chol = np.zeros((m, m), dtype=np.float64)
    linv = np.zeros((m, m), dtype=np.float64)
    z = np.empty(m, dtype=np.float64)
    alpha = np.empty(m, dtype=np.float64)

    for t in range(T):
        for i in range(m):
            for j in range(m):
                sigma[i, j] = env_cov[i, j]
                chol[i, j] = 0.0
            sigma[i, i] += dem_var[t, i]

        if not cholesky_lower(sigma, chol):
            return t

        log_det = 0.0
        for i in range(m):
            log_det += 2.0 * np.log(chol[i, i])

        # Forward substitution C z = u
        quad = 0.0
        for i in range(m):
            s = residuals[t, i]
            for k in range(i):
                s -= chol[i, k] * z[k]
            z[i] = s / chol[i, i]
            quad += z[i] * z[i]

        log_dets[t] = log_det
        quad_forms[t] = quad

        if compute_grad:
            # C⁻¹, lower triangular
            for i in range(m):
                for j in range(m):
                    linv[i, j] = 0.0
            for j in range(m):
                linv[j, j] = 1.0 / chol[j, j]
                for i in range(j + 1, m):
                    s = 0.0
                    for k in range(j, i):
                        s -= chol[i, k] * linv[k, j]
                    linv[i, j] = s / chol[i, i]

            # α = C⁻ᵀ z
            for i in range(m):
                a = 0.0
                for k in range(i, m):
                    a += linv[k, i] * z[k]
                alpha[i] = a

            # Σ⁻¹[i, j] = Σ_k C⁻¹[k, i] C⁻¹[k, j], k >= max(i, j)
            for i in range(m):
                for j in range(i + 1):
                    s = 0.0
                    for k in range(i, m):
                        s += linv[k, i] * linv[k, j]
                    g = 0.5 * (s - alpha[i] * alpha[j])
                    grad_env_cov[i, j] += g
                    if i != j:
                        grad_env_cov[j, i] += g

    return -1
