"""
Data generation utilities for two-period IPW and doubly robust DiD.

Simulated designs have selection on observables: covariates drive both
treatment take-up (through a logistic propensity score) and the outcome
trend, so the unconditional DiD is biased while the covariate-adjusted
estimators recover the true ATT.
"""

from typing import Optional, Sequence

import numpy as np
import pandas as pd


def generate_drdid_data(
    n_units: int = 1000,
    panel: bool = True,
    att: float = 1.0,
    ps_intercept: float = 0.0,
    ps_coef: Sequence[float] = (0.5, -0.25),
    trend_coef: Sequence[float] = (1.0, 0.5),
    time_trend: float = 1.0,
    unit_fe_sd: float = 1.0,
    noise_sd: float = 1.0,
    post_fraction: float = 0.5,
    sampling_weights: bool = False,
    binary_covariate: bool = False,
    seed: Optional[int] = None,
) -> pd.DataFrame:
    """
    Generate two-period DiD data with a known, constant ATT.

    Parameters
    ----------
    n_units : int, default=1000
        Number of units (panel) or observations (repeated cross sections).
    panel : bool, default=True
        If True, every unit is observed in both periods. If False, each
        observation is drawn in one period only (post with probability
        ``post_fraction``).
    att : float, default=1.0
        True average treatment effect on the treated.
    ps_intercept : float, default=0.0
        Intercept of the logistic propensity score.
    ps_coef : sequence of float, default=(0.5, -0.25)
        Propensity score coefficients on x1 and x2.
    trend_coef : sequence of float, default=(1.0, 0.5)
        Effect of x1 and x2 on the change in untreated outcomes.
    time_trend : float, default=1.0
        Common change in untreated outcomes between periods.
    unit_fe_sd : float, default=1.0
        Standard deviation of the unit effect.
    noise_sd : float, default=1.0
        Standard deviation of idiosyncratic noise.
    post_fraction : float, default=0.5
        Share of post-period observations (repeated cross sections only).
    sampling_weights : bool, default=False
        Add a ``w`` column of sampling weights drawn from U(0.5, 1.5).
    binary_covariate : bool, default=False
        Draw x2 from Bernoulli(0.5) instead of the standard normal.
    seed : int, optional
        Random seed for reproducibility.

    Returns
    -------
    pd.DataFrame
        Long-format data with columns ``id``, ``period`` (0 or 1), ``d``
        (treatment group), ``x1``, ``x2``, ``y`` and optionally ``w``.

    Examples
    --------
    >>> data = generate_drdid_data(n_units=200, seed=42)
    >>> len(data)
    400
    >>> data.columns.tolist()
    ['id', 'period', 'd', 'x1', 'x2', 'y']
    """
    rng = np.random.default_rng(seed)
    ps_coef = np.asarray(ps_coef, dtype=float)
    trend_coef = np.asarray(trend_coef, dtype=float)

    x = rng.normal(0.0, 1.0, size=(n_units, 2))
    if binary_covariate:
        x[:, 1] = rng.binomial(1, 0.5, n_units)
    pscore = 1.0 / (1.0 + np.exp(-(ps_intercept + x @ ps_coef)))
    d = (rng.uniform(size=n_units) < pscore).astype(int)

    # Treated units may differ in levels; parallel trends hold given x
    unit_fe = 0.5 * d + x @ np.array([1.0, 0.5]) + rng.normal(0.0, unit_fe_sd, n_units)
    y0 = unit_fe + rng.normal(0.0, noise_sd, n_units)
    y1 = (
        unit_fe + time_trend + x @ trend_coef + att * d
        + rng.normal(0.0, noise_sd, n_units)
    )

    ids = np.arange(n_units)
    base = {"id": ids, "d": d, "x1": x[:, 0], "x2": x[:, 1]}
    if sampling_weights:
        base["w"] = rng.uniform(0.5, 1.5, n_units)

    if panel:
        pre = pd.DataFrame({**base, "period": 0, "y": y0})
        post = pd.DataFrame({**base, "period": 1, "y": y1})
        df = pd.concat([pre, post], ignore_index=True).sort_values(["id", "period"])
    else:
        period = (rng.uniform(size=n_units) < post_fraction).astype(int)
        df = pd.DataFrame({**base, "period": period, "y": np.where(period == 1, y1, y0)})

    columns = ["id", "period", "d", "x1", "x2", "y"]
    if sampling_weights:
        columns.append("w")
    return df[columns].reset_index(drop=True)
