"""
Diagnostics for the environmental covariance estimate.

``naive_environmental_covariance`` is the subtractive estimate: the sample
covariance of the residuals minus the average demographic variance on the
diagonal. It is frequently not positive definite (over-subtraction drives
diagonal entries negative), which is why the likelihood-based estimator
exists. It is reported for comparison only and never feeds the fitter.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

import numpy as np
import pandas as pd

from envcov.core.exceptions import raise_data_error
from envcov.core.types import DemographicVarianceMatrix, ResidualMatrix
from envcov.utils.matrix_ops import cov2corr, is_positive_definite

logger = logging.getLogger("envcov.models.demography.diagnostics")


@dataclass
class NaiveCovarianceEstimate:
    """
    Subtractive covariance estimate and its definiteness.

    Attributes:
        covariance: Sample covariance minus diag(mean demographic variance)
        correlation: Correlation implied by ``covariance`` (rows with a
            non-positive variance get zero off-diagonal correlation)
        eigenvalues: Eigenvalues of ``covariance`` in ascending order
        is_positive_definite: Whether ``covariance`` admits a Cholesky factor
        negative_variances: Labels whose diagonal entry is negative
        labels: Vital-rate labels
    """
    covariance: np.ndarray
    correlation: np.ndarray
    eigenvalues: np.ndarray
    is_positive_definite: bool
    negative_variances: List[str]
    labels: List[str]

    def covariance_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.covariance, index=self.labels, columns=self.labels)


def naive_environmental_covariance(residuals: ResidualMatrix,
                                   dem_var: DemographicVarianceMatrix,
                                   labels: Optional[List[str]] = None) -> NaiveCovarianceEstimate:
    """
    Sample covariance of the residuals minus the mean demographic variance.

    Args:
        residuals: Residual matrix (T x m)
        dem_var: Demographic variance matrix (T x m)
        labels: Vital-rate labels; taken from the input if None

    Returns:
        NaiveCovarianceEstimate

    Raises:
        ShapeMismatchError: If the tables differ in shape
        DataError: If fewer than two years are available or inputs are invalid
    """
    # Shared input checks live with the likelihood evaluator.
    from envcov.models.covariance.likelihood import validate_inputs

    u, v, input_labels = validate_inputs(residuals, dem_var)
    if u.shape[0] < 2:
        raise_data_error(
            "At least two years are required for a sample covariance",
            data_name="residuals",
            issue="too few years"
        )
    labels = input_labels if labels is None else list(labels)

    sample_cov = np.atleast_2d(np.cov(u, rowvar=False, ddof=1))
    covariance = sample_cov - np.diag(v.mean(axis=0))
    eigenvalues = np.linalg.eigvalsh(covariance)
    pd_flag = is_positive_definite(covariance)
    negative = [labels[i] for i in np.flatnonzero(np.diag(covariance) < 0)]

    if not pd_flag:
        logger.info(f"Naive covariance is not positive definite "
                    f"(smallest eigenvalue {eigenvalues[0]:.3e})")

    return NaiveCovarianceEstimate(
        covariance=covariance,
        correlation=cov2corr(covariance),
        eigenvalues=eigenvalues,
        is_positive_definite=pd_flag,
        negative_variances=negative,
        labels=labels,
    )
