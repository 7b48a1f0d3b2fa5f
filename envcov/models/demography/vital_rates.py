"""
Vital-rate regressions and demographic variances.

Produces the inputs of the covariance estimator from aggregated per-year
tables (one row per year, one column per age class):

- a weighted density index built from the age-class abundances
- ordinary least squares regressions of every vital rate on that index
  (statsmodels), whose residuals form the residual matrix
- the year-specific sampling (demographic) variance of every vital rate,
  binomial for survival and Poisson for per-capita recruitment

Vital-rate columns are ordered recruitment_1..K then survival_1..K.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
import statsmodels.api as sm

from envcov.core.exceptions import raise_data_error, raise_shape_mismatch
from envcov.core.validation import (
    as_float_matrix, validate_compatible_shapes, validate_non_negative_array,
    validate_numeric_array, validate_vector_length
)

logger = logging.getLogger("envcov.models.demography.vital_rates")

TableLike = Union[np.ndarray, pd.DataFrame]


def vital_rate_labels(n_age_classes: int) -> List[str]:
    """Column labels ``recruitment_1..K`` followed by ``survival_1..K``."""
    return ([f"recruitment_{k + 1}" for k in range(n_age_classes)]
            + [f"survival_{k + 1}" for k in range(n_age_classes)])


def default_labels(n_vital_rates: int) -> List[str]:
    """Labels for unlabelled input with ``n_vital_rates`` columns."""
    if n_vital_rates % 2 == 0:
        return vital_rate_labels(n_vital_rates // 2)
    return [f"rate_{i + 1}" for i in range(n_vital_rates)]


def _year_index(*tables: TableLike) -> pd.Index:
    for table in tables:
        if isinstance(table, (pd.DataFrame, pd.Series)):
            return table.index
    n_years = np.asarray(tables[0]).shape[0]
    return pd.RangeIndex(n_years, name="year")


def density_index(abundances: TableLike, weights: Optional[Sequence[float]] = None) -> pd.Series:
    """
    Weighted density index, one value per year.

    Args:
        abundances: Age-class abundances (T x K)
        weights: Per-age-class weights (K,); all ones if None

    Returns:
        Series of Σ_k w_k N_tk indexed by year

    Raises:
        ShapeMismatchError: If the weights do not match the number of age classes
        DataError: If abundances or weights are negative or not finite
    """
    N = as_float_matrix(abundances, "abundances")
    validate_numeric_array(N, "abundances")
    validate_non_negative_array(N, "abundances")

    if weights is None:
        w = np.ones(N.shape[1])
    else:
        w = validate_vector_length(weights, N.shape[1], "weights")
        validate_numeric_array(w, "weights")
        validate_non_negative_array(w, "weights")

    return pd.Series(N @ w, index=_year_index(abundances), name="density")


@dataclass
class VitalRateRegression:
    """
    Per-vital-rate OLS fits of rate = a + b * density.

    Attributes:
        labels: Vital-rate labels
        intercepts: Intercept a for every vital rate
        slopes: Density slope b for every vital rate
        slope_std_errors: Standard errors of the slopes
        r_squared: Coefficient of determination of every fit
        fitted_values: Fitted rates (T x m)
        residuals: Regression residuals (T x m)
    """
    labels: List[str]
    intercepts: np.ndarray
    slopes: np.ndarray
    slope_std_errors: np.ndarray
    r_squared: np.ndarray
    fitted_values: pd.DataFrame
    residuals: pd.DataFrame
    density: Optional[pd.Series] = field(repr=False, default=None)

    def coefficients(self) -> pd.DataFrame:
        """Regression coefficients as a DataFrame indexed by vital rate."""
        return pd.DataFrame({
            "intercept": self.intercepts,
            "slope": self.slopes,
            "slope_se": self.slope_std_errors,
            "r_squared": self.r_squared,
        }, index=pd.Index(self.labels, name="vital_rate"))


def regress_on_density(rates: TableLike, density: Union[Sequence[float], pd.Series],
                       labels: Optional[List[str]] = None) -> VitalRateRegression:
    """
    Regress every vital-rate column on the density index by OLS.

    Args:
        rates: Observed vital rates (T x m)
        density: Density index (T,)
        labels: Column labels; DataFrame columns or ``default_labels`` if None

    Returns:
        VitalRateRegression with residuals ready for the covariance estimator

    Raises:
        ShapeMismatchError: If the density length differs from the number of years
        DataError: If rates or density are not finite, or fewer than 3 years
    """
    y = as_float_matrix(rates, "rates")
    validate_numeric_array(y, "rates")
    T, m = y.shape

    x = validate_vector_length(np.asarray(density, dtype=np.float64), T, "density")
    validate_numeric_array(x, "density")

    if T < 3:
        raise_data_error(
            f"At least 3 years are required for the density regressions, got {T}",
            data_name="rates",
            issue="too few years"
        )

    if labels is None:
        labels = ([str(c) for c in rates.columns] if isinstance(rates, pd.DataFrame)
                  else default_labels(m))
    elif len(labels) != m:
        raise_shape_mismatch(
            f"Expected {m} labels, got {len(labels)}",
            array_name="labels",
            expected_shape=(m,),
            actual_shape=(len(labels),)
        )

    X = sm.add_constant(x, has_constant='add')
    intercepts = np.empty(m)
    slopes = np.empty(m)
    slope_se = np.empty(m)
    r_squared = np.empty(m)
    fitted = np.empty((T, m))
    resid = np.empty((T, m))

    for j in range(m):
        res = sm.OLS(y[:, j], X).fit()
        intercepts[j], slopes[j] = res.params
        slope_se[j] = res.bse[1]
        r_squared[j] = res.rsquared
        fitted[:, j] = res.fittedvalues
        resid[:, j] = res.resid
        logger.debug(f"{labels[j]}: intercept={intercepts[j]:.6g}, slope={slopes[j]:.6g}")

    index = _year_index(rates, density)
    return VitalRateRegression(
        labels=list(labels),
        intercepts=intercepts,
        slopes=slopes,
        slope_std_errors=slope_se,
        r_squared=r_squared,
        fitted_values=pd.DataFrame(fitted, index=index, columns=labels),
        residuals=pd.DataFrame(resid, index=index, columns=labels),
        density=pd.Series(x, index=index, name="density"),
    )


def _check_counts(counts: np.ndarray, name: str) -> None:
    validate_numeric_array(counts, name)
    if (counts <= 0).any():
        bad = tuple(int(i) for i in np.argwhere(counts <= 0)[0])
        raise_data_error(
            f"{name} must be positive to compute a sampling variance",
            data_name=name,
            issue="non-positive count",
            index=bad
        )


def survival_demographic_variance(survival: TableLike, n_at_risk: TableLike) -> np.ndarray:
    """
    Binomial sampling variance p(1 - p)/n of survival proportions.

    Raises:
        DataError: If a proportion is outside [0, 1] or a count is not positive
        ShapeMismatchError: If the tables differ in shape
    """
    p = as_float_matrix(survival, "survival")
    n = as_float_matrix(n_at_risk, "n_at_risk")
    validate_compatible_shapes([p, n], ["survival", "n_at_risk"])
    validate_numeric_array(p, "survival")
    _check_counts(n, "n_at_risk")

    if ((p < 0) | (p > 1)).any():
        bad = tuple(int(i) for i in np.argwhere((p < 0) | (p > 1))[0])
        raise_data_error(
            "Survival proportions must lie in [0, 1]",
            data_name="survival",
            issue="proportion outside [0, 1]",
            index=bad
        )

    return p * (1.0 - p) / n


def recruitment_demographic_variance(recruitment: TableLike, n_parents: TableLike) -> np.ndarray:
    """
    Poisson sampling variance rate/n of per-capita recruitment.

    Raises:
        DataError: If a rate is negative or a count is not positive
        ShapeMismatchError: If the tables differ in shape
    """
    f = as_float_matrix(recruitment, "recruitment")
    n = as_float_matrix(n_parents, "n_parents")
    validate_compatible_shapes([f, n], ["recruitment", "n_parents"])
    validate_numeric_array(f, "recruitment")
    validate_non_negative_array(f, "recruitment")
    _check_counts(n, "n_parents")

    return f / n


def demographic_variance(recruitment: TableLike, survival: TableLike,
                         abundances: TableLike) -> pd.DataFrame:
    """
    Demographic variance table aligned with the vital-rate columns.

    The age-class abundances serve both as the number of potential parents
    for recruitment and as the number at risk for survival.

    Args:
        recruitment: Per-capita recruitment (T x K)
        survival: Survival proportions (T x K)
        abundances: Age-class abundances (T x K)

    Returns:
        DataFrame (T x 2K) with columns recruitment_1..K, survival_1..K
    """
    rec_var = recruitment_demographic_variance(recruitment, abundances)
    surv_var = survival_demographic_variance(survival, abundances)
    validate_compatible_shapes([rec_var, surv_var], ["recruitment", "survival"])

    K = rec_var.shape[1]
    return pd.DataFrame(np.hstack([rec_var, surv_var]),
                        index=_year_index(recruitment, survival, abundances),
                        columns=vital_rate_labels(K))


def prepare_inputs(recruitment: TableLike, survival: TableLike, abundances: TableLike,
                   weights: Optional[Sequence[float]] = None
                   ) -> Tuple[pd.DataFrame, pd.DataFrame, VitalRateRegression]:
    """
    Residual and demographic-variance tables for the covariance estimator.

    Args:
        recruitment: Per-capita recruitment (T x K)
        survival: Survival proportions (T x K)
        abundances: Age-class abundances (T x K)
        weights: Density-index weights per age class; all ones if None

    Returns:
        Tuple of (residuals, dem_var, regression) with matching T x 2K tables
    """
    rec = as_float_matrix(recruitment, "recruitment")
    surv = as_float_matrix(survival, "survival")
    validate_compatible_shapes([rec, surv], ["recruitment", "survival"])

    density = density_index(abundances, weights)
    labels = vital_rate_labels(rec.shape[1])
    rates = pd.DataFrame(np.hstack([rec, surv]), index=density.index, columns=labels)

    regression = regress_on_density(rates, density)
    dem_var = demographic_variance(recruitment, survival, abundances)
    dem_var.index = density.index
    logger.info(f"Prepared {rates.shape[1]} vital rates over {rates.shape[0]} years")

    return regression.residuals, dem_var, regression
