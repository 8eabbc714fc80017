"""
Bootstrap inference for IPW and doubly robust DiD estimators.

Two schemes are available:

- Multiplier bootstrap: perturbs the already estimated influence function
  with i.i.d. mean-zero, unit-variance multipliers. Nothing is refitted, so
  it is cheap even for thousands of replicates.
- Weighted bootstrap: multiplies each unit's sampling weight by an i.i.d.
  Exponential(1) draw and refits the whole estimator (propensity score,
  outcome regressions and ATT) on every replicate.
"""

import logging
import warnings
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
from scipy import stats

from drdid.exceptions import (
    BootstrapWarning,
    DegeneratePropensityError,
    NonconvergenceError,
    SingularDesignError,
)
from drdid.prep import DiDData
from drdid.variants import EstimatorVariant, run_variant
from drdid.weights import DEFAULT_TRIM_LEVEL

logger = logging.getLogger(__name__)

# Replicate failures caught by the weighted bootstrap
_REPLICATE_ERRORS = (DegeneratePropensityError, SingularDesignError, NonconvergenceError)


# =============================================================================
# Bootstrap Weight Generators
# =============================================================================


def _generate_multiplier_weights_batch(
    n_bootstrap: int,
    n_units: int,
    weight_type: str,
    rng: np.random.Generator,
) -> np.ndarray:
    """
    Generate multiplier bootstrap weights.

    All weight distributions satisfy E[v] = 0, E[v^2] = 1.

    Parameters
    ----------
    n_bootstrap : int
        Number of bootstrap iterations.
    n_units : int
        Number of units to generate weights for.
    weight_type : str
        Type of weights: "rademacher" (+-1), "mammen" (2-point),
        or "webb" (6-point).
    rng : np.random.Generator
        Random number generator for reproducibility.

    Returns
    -------
    np.ndarray
        Array of bootstrap weights with shape (n_bootstrap, n_units).
    """
    if weight_type == "rademacher":
        return rng.choice([-1.0, 1.0], size=(n_bootstrap, n_units))

    elif weight_type == "mammen":
        # E[v^3] = 1
        sqrt5 = np.sqrt(5)
        val1 = -(sqrt5 - 1) / 2
        val2 = (sqrt5 + 1) / 2
        p1 = (sqrt5 + 1) / (2 * sqrt5)
        return rng.choice([val1, val2], size=(n_bootstrap, n_units), p=[p1, 1 - p1])

    elif weight_type == "webb":
        # Six points, equal probabilities
        values = np.array([
            -np.sqrt(3 / 2), -np.sqrt(2 / 2), -np.sqrt(1 / 2),
            np.sqrt(1 / 2), np.sqrt(2 / 2), np.sqrt(3 / 2)
        ])
        return rng.choice(values, size=(n_bootstrap, n_units))

    else:
        raise ValueError(
            f"weight_type must be 'rademacher', 'mammen', or 'webb', "
            f"got '{weight_type}'"
        )


def generate_resampling_weights(n_units: int, rng: np.random.Generator) -> np.ndarray:
    """
    Weighted bootstrap multipliers: i.i.d. Exponential(1), mean and variance one.

    Parameters
    ----------
    n_units : int
        Number of units (panel) or observations (repeated cross sections).
    rng : np.random.Generator
        Replicate-local random number generator.

    Returns
    -------
    np.ndarray
        Strictly positive weights of shape (n_units,).
    """
    return rng.exponential(1.0, size=n_units)


# =============================================================================
# Bootstrap Draws
# =============================================================================


def multiplier_bootstrap(
    att: float,
    inf_func: np.ndarray,
    nboot: int = 999,
    weight_type: str = "rademacher",
    rng: Optional[np.random.Generator] = None,
    batch_size: int = 1000,
) -> np.ndarray:
    """
    Multiplier bootstrap draws of the ATT.

    Each draw is ``att + mean(v_b * inf_func)`` with fresh multipliers v_b.
    The influence function already accounts for the estimation of the
    nuisance parameters, so no model is refitted.

    Parameters
    ----------
    att : float
        ATT point estimate.
    inf_func : np.ndarray
        Influence function of the estimator, shape (n,).
    nboot : int, default=999
        Number of draws.
    weight_type : str, default="rademacher"
        Multiplier distribution: "rademacher", "mammen" or "webb".
    rng : np.random.Generator, optional
        Random number generator. A fresh unseeded one if None.
    batch_size : int, default=1000
        Number of draws generated at once, bounding memory at
        batch_size x n multipliers.

    Returns
    -------
    np.ndarray
        Bootstrap draws of shape (nboot,).
    """
    if rng is None:
        rng = np.random.default_rng()
    inf_func = np.asarray(inf_func, dtype=np.float64)
    n = len(inf_func)

    draws = np.empty(nboot)
    for start in range(0, nboot, batch_size):
        stop = min(start + batch_size, nboot)
        v = _generate_multiplier_weights_batch(stop - start, n, weight_type, rng)
        draws[start:stop] = att + v @ inf_func / n
    return draws


def _weighted_replicate(
    variant: EstimatorVariant,
    data: DiDData,
    seed: np.random.SeedSequence,
    trim_level: float,
) -> float:
    rng = np.random.default_rng(seed)
    boot_weights = data.i_weights * generate_resampling_weights(data.n, rng)
    try:
        return run_variant(
            variant, data, i_weights=boot_weights, trim_level=trim_level, strict=True
        ).att
    except _REPLICATE_ERRORS as e:
        logger.debug("Bootstrap replicate failed: %s", e)
        return np.nan


def weighted_bootstrap(
    variant: EstimatorVariant,
    data: DiDData,
    nboot: int = 999,
    rng: Optional[np.random.Generator] = None,
    n_jobs: int = 1,
    trim_level: float = DEFAULT_TRIM_LEVEL,
) -> np.ndarray:
    """
    Weighted bootstrap draws of the ATT.

    Every replicate multiplies the sampling weights by i.i.d. Exponential(1)
    draws and refits the propensity score model, the outcome regressions
    (doubly robust variants) and the ATT.

    Parameters
    ----------
    variant : EstimatorVariant
        Estimator to refit.
    data : DiDData
        Pre-processed data.
    nboot : int, default=999
        Number of replicates.
    rng : np.random.Generator, optional
        Random number generator used to seed the replicates. A fresh
        unseeded one if None.
    n_jobs : int, default=1
        Number of worker threads. Results do not depend on n_jobs: each
        replicate draws from its own generator spawned from ``rng``.
    trim_level : float, default=0.995
        Propensity score trimming level for control units.

    Returns
    -------
    np.ndarray
        Bootstrap draws of shape (nboot,); NaN for replicates whose fit
        failed (degenerate propensity scores, singular regressions or
        nonconvergence).
    """
    if rng is None:
        rng = np.random.default_rng()
    seeds = np.random.SeedSequence(int(rng.integers(0, 2**63 - 1))).spawn(nboot)

    draws = np.full(nboot, np.nan)

    def _run(b: int) -> None:
        draws[b] = _weighted_replicate(variant, data, seeds[b], trim_level)

    if n_jobs is None or n_jobs <= 1:
        for b in range(nboot):
            _run(b)
    else:
        with ThreadPoolExecutor(max_workers=n_jobs) as executor:
            list(executor.map(_run, range(nboot)))

    n_failed = int(np.sum(np.isnan(draws)))
    if n_failed > 0:
        logger.debug("%d of %d weighted bootstrap replicates failed", n_failed, nboot)
    return draws


# =============================================================================
# Bootstrap Inference
# =============================================================================


@dataclass
class BootstrapInference:
    """
    Standard error and confidence interval from bootstrap draws.

    Attributes
    ----------
    se : float
        Standard deviation of the finite draws.
    conf_int : tuple of float
        Confidence interval.
    draws : np.ndarray
        All draws, NaN for failed replicates.
    n_failed : int
        Number of failed replicates.
    """

    se: float
    conf_int: Tuple[float, float]
    draws: np.ndarray
    n_failed: int


def bootstrap_inference(
    att: float,
    draws: np.ndarray,
    alpha: float = 0.05,
    ci_type: str = "normal",
    max_failed_frac: float = 0.1,
) -> BootstrapInference:
    """
    Summarize bootstrap draws into a standard error and confidence interval.

    Parameters
    ----------
    att : float
        ATT point estimate.
    draws : np.ndarray
        Bootstrap draws; NaN entries are failed replicates and are ignored.
    alpha : float, default=0.05
        Significance level.
    ci_type : str, default="normal"
        "normal": att +- z_{1-alpha/2} * se. "percentile": empirical
        alpha/2 and 1-alpha/2 quantiles of the draws.
    max_failed_frac : float, default=0.1
        Warn when more than this fraction of replicates failed.

    Returns
    -------
    BootstrapInference

    Raises
    ------
    NonconvergenceError
        If fewer than two replicates succeeded.
    """
    if ci_type not in ("normal", "percentile"):
        raise ValueError(f"ci_type must be 'normal' or 'percentile', got '{ci_type}'")

    draws = np.asarray(draws, dtype=np.float64)
    finite = draws[np.isfinite(draws)]
    n_failed = len(draws) - len(finite)

    if len(finite) < 2:
        raise NonconvergenceError(
            f"Only {len(finite)} of {len(draws)} bootstrap replicates succeeded."
        )
    if n_failed > max_failed_frac * len(draws):
        warnings.warn(
            f"{n_failed} of {len(draws)} bootstrap replicates failed "
            f"({n_failed / len(draws):.1%}); they are excluded from the "
            "standard error and confidence interval.",
            BootstrapWarning,
            stacklevel=2,
        )

    se = float(np.std(finite, ddof=1))
    if ci_type == "normal":
        z = stats.norm.ppf(1 - alpha / 2)
        conf_int = (att - z * se, att + z * se)
    else:
        lower, upper = np.quantile(finite, [alpha / 2, 1 - alpha / 2])
        conf_int = (float(lower), float(upper))

    return BootstrapInference(se=se, conf_int=conf_int, draws=draws, n_failed=n_failed)
