"""
Utility functions for influence-function based inference.
"""

from typing import Tuple

import numpy as np
from scipy import stats


def compute_inf_func_se(inf_func: np.ndarray) -> float:
    """
    Analytical standard error from an influence function.

    Parameters
    ----------
    inf_func : np.ndarray
        Influence function of shape (n,), mean zero.

    Returns
    -------
    float
        ``sqrt(mean(inf_func**2) / n)``.
    """
    inf_func = np.asarray(inf_func, dtype=np.float64)
    n = len(inf_func)
    return float(np.sqrt(np.mean(inf_func ** 2) / n))


def compute_confidence_interval(
    estimate: float,
    se: float,
    alpha: float = 0.05,
) -> Tuple[float, float]:
    """
    Compute a normal-approximation confidence interval for an estimate.

    Parameters
    ----------
    estimate : float
        Point estimate.
    se : float
        Standard error.
    alpha : float
        Significance level (default 0.05 for 95% CI).

    Returns
    -------
    tuple
        (lower_bound, upper_bound) of confidence interval.
    """
    critical_value = stats.norm.ppf(1 - alpha / 2)

    lower = estimate - critical_value * se
    upper = estimate + critical_value * se

    return (float(lower), float(upper))


def compute_p_value(t_stat: float) -> float:
    """
    Two-sided p-value of a t-statistic under the standard normal.

    Parameters
    ----------
    t_stat : float
        T-statistic.

    Returns
    -------
    float
        P-value.
    """
    return float(2 * stats.norm.sf(np.abs(t_stat)))


def safe_t_stat(estimate: float, se: float) -> float:
    """``estimate / se``, NaN when the standard error is zero or not finite."""
    if not np.isfinite(se) or se <= 0:
        return np.nan
    return estimate / se
