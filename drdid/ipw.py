"""
Inverse probability weighted DiD estimators of the ATT.

Four variants: panel data or repeated cross sections, each with
unnormalized (Abadie, 2005) or normalized (Hajek) weights. Every variant
returns the point estimate together with its influence function, which
includes the correction for estimating the propensity score.

References
----------
Abadie, A. (2005). Semiparametric Difference-in-Differences Estimators.
Review of Economic Studies, 72(1), 1-19.

Sant'Anna, P. H. C., & Zhao, J. (2020). Doubly Robust
Difference-in-Differences Estimators. Journal of Econometrics, 219(1),
101-122.
"""

from typing import Optional, Tuple

import numpy as np

from drdid.exceptions import ConfigurationError
from drdid.propensity import fit_propensity_score
from drdid.results import ATTEstimate
from drdid.weights import (
    DEFAULT_TRIM_LEVEL,
    compute_ipw_cell_weights,
    compute_ipw_weights,
    normalize_weights,
)


def _prepare_inputs(
    covariates: Optional[np.ndarray],
    i_weights: Optional[np.ndarray],
    n: int,
) -> Tuple[np.ndarray, np.ndarray]:
    """Intercept-only design when no covariates, weights scaled to mean one."""
    if covariates is None:
        X = np.ones((n, 1))
    else:
        X = np.asarray(covariates, dtype=np.float64)
        if X.ndim == 1:
            X = X[:, np.newaxis]
    if i_weights is None:
        w = np.ones(n)
    else:
        w = np.asarray(i_weights, dtype=np.float64)
        if np.any(w < 0):
            raise ConfigurationError("i_weights must be non-negative")
        w = w / np.mean(w)
    return X, w


def _hajek(weights: np.ndarray, values: np.ndarray) -> Tuple[float, np.ndarray]:
    """
    Weighted mean ``sum(w * v) / sum(w)`` and its direct influence term.

    Returns
    -------
    estimate : float
    inf : np.ndarray
        ``w * (v - estimate) / mean(w)``.
    """
    scaled = normalize_weights(weights)
    estimate = float(np.sum(scaled * values))
    return estimate, len(scaled) * scaled * (values - estimate)


def ipw_did_panel(
    y1: np.ndarray,
    y0: np.ndarray,
    D: np.ndarray,
    covariates: Optional[np.ndarray] = None,
    i_weights: Optional[np.ndarray] = None,
    trim_level: float = DEFAULT_TRIM_LEVEL,
    strict: bool = False,
) -> ATTEstimate:
    """
    IPW DiD estimator for panel data with unnormalized weights (Abadie 2005).

    ATT = [mean(w D dY) - mean(w p/(1-p) (1-D) dY)] / mean(w D),
    where dY = y1 - y0.

    Parameters
    ----------
    y1, y0 : np.ndarray
        Post- and pre-period outcomes, aligned by unit.
    D : np.ndarray
        Treatment-group indicator (0/1).
    covariates : np.ndarray, optional
        Covariate matrix including intercept. None means intercept only.
    i_weights : np.ndarray, optional
        Sampling weights; rescaled to mean one.
    trim_level : float, default=0.995
        Control units with propensity scores at or above this are dropped.
    strict : bool, default=False
        Raise instead of warning if the propensity model does not converge.

    Returns
    -------
    ATTEstimate
    """
    D = np.asarray(D, dtype=np.float64)
    delta_y = np.asarray(y1, dtype=np.float64) - np.asarray(y0, dtype=np.float64)
    X, w = _prepare_inputs(covariates, i_weights, len(D))

    ps = fit_propensity_score(D, X, w, strict=strict)
    weights = compute_ipw_weights(ps.pscore, D, w, trim_level)

    att_treat = weights.treated * delta_y
    att_cont = weights.control * delta_y
    mean_w_treat = np.mean(weights.treated)

    eta_treat = np.mean(att_treat) / mean_w_treat
    eta_cont = np.mean(att_cont) / mean_w_treat
    att = eta_treat - eta_cont

    # Estimation effect of the logit coefficients
    mom_logit = np.mean(att_cont[:, np.newaxis] * X, axis=0)
    att_lin_ps = ps.linear_rep() @ mom_logit

    inf_func = (att_treat - att_cont - weights.treated * att - att_lin_ps) / mean_w_treat

    return ATTEstimate(
        att=float(att),
        inf_func=inf_func,
        variant="ipw_panel_unnormalized",
        nuisance={"pscore": ps, "weights": weights},
    )


def std_ipw_did_panel(
    y1: np.ndarray,
    y0: np.ndarray,
    D: np.ndarray,
    covariates: Optional[np.ndarray] = None,
    i_weights: Optional[np.ndarray] = None,
    trim_level: float = DEFAULT_TRIM_LEVEL,
    strict: bool = False,
) -> ATTEstimate:
    """
    IPW DiD estimator for panel data with normalized (stabilized) weights.

    Treated and control weights each sum to one, which makes the estimator
    invariant to location shifts of the outcome and more stable when some
    propensity scores are close to one.

    Parameters
    ----------
    y1, y0 : np.ndarray
        Post- and pre-period outcomes, aligned by unit.
    D : np.ndarray
        Treatment-group indicator (0/1).
    covariates : np.ndarray, optional
        Covariate matrix including intercept. None means intercept only.
    i_weights : np.ndarray, optional
        Sampling weights; rescaled to mean one.
    trim_level : float, default=0.995
        Control units with propensity scores at or above this are dropped.
    strict : bool, default=False
        Raise instead of warning if the propensity model does not converge.

    Returns
    -------
    ATTEstimate
    """
    D = np.asarray(D, dtype=np.float64)
    delta_y = np.asarray(y1, dtype=np.float64) - np.asarray(y0, dtype=np.float64)
    X, w = _prepare_inputs(covariates, i_weights, len(D))

    ps = fit_propensity_score(D, X, w, strict=strict)
    weights = compute_ipw_weights(ps.pscore, D, w, trim_level)

    eta_treat, inf_treat = _hajek(weights.treated, delta_y)
    eta_cont, inf_cont_1 = _hajek(weights.control, delta_y)
    att = eta_treat - eta_cont

    # Estimation effect of the logit coefficients on the control mean
    M2 = np.mean(
        (weights.control * (delta_y - eta_cont))[:, np.newaxis] * X, axis=0
    ) / np.mean(weights.control)
    inf_cont_2 = ps.linear_rep() @ M2

    inf_func = inf_treat - (inf_cont_1 + inf_cont_2)

    return ATTEstimate(
        att=float(att),
        inf_func=inf_func,
        variant="ipw_panel_normalized",
        nuisance={"pscore": ps, "weights": weights},
    )


def ipw_did_rc(
    y: np.ndarray,
    post: np.ndarray,
    D: np.ndarray,
    covariates: Optional[np.ndarray] = None,
    i_weights: Optional[np.ndarray] = None,
    trim_level: float = DEFAULT_TRIM_LEVEL,
    strict: bool = False,
) -> ATTEstimate:
    """
    IPW DiD estimator for repeated cross sections, unnormalized weights.

    Abadie's (2005) estimator: each cell is weighted by the inverse of the
    share of observations in its period, lambda = mean(w * post), and all
    cells are scaled by the treated share mean(w * D).

    Parameters
    ----------
    y : np.ndarray
        Outcome of each observation.
    post : np.ndarray
        Post-treatment period indicator (0/1).
    D : np.ndarray
        Treatment-group indicator (0/1).
    covariates : np.ndarray, optional
        Covariate matrix including intercept. None means intercept only.
    i_weights : np.ndarray, optional
        Sampling weights; rescaled to mean one.
    trim_level : float, default=0.995
        Control units with propensity scores at or above this are dropped.
    strict : bool, default=False
        Raise instead of warning if the propensity model does not converge.

    Returns
    -------
    ATTEstimate
    """
    D = np.asarray(D, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    post = np.asarray(post, dtype=np.float64)
    X, w = _prepare_inputs(covariates, i_weights, len(D))

    ps = fit_propensity_score(D, X, w, strict=strict)
    cells = compute_ipw_cell_weights(ps.pscore, D, post, w, trim_level)

    estimate, inf_func = _abadie_rc(y, post, w, D, X, cells, ps.linear_rep())

    return ATTEstimate(
        att=estimate,
        inf_func=inf_func,
        variant="ipw_rc_unnormalized",
        nuisance={"pscore": ps, "weights": cells},
    )


def _abadie_rc(
    y: np.ndarray,
    post: np.ndarray,
    w: np.ndarray,
    D: np.ndarray,
    X: np.ndarray,
    cells,
    lin_ps: np.ndarray,
) -> Tuple[float, np.ndarray]:
    """
    Abadie-weighted DiD of means for repeated cross sections.

    Shared by the unnormalized IPW and doubly robust RC estimators, where
    ``y`` is either the outcome or its residual from a control-group
    outcome regression. Returns the estimate and the influence function
    with the estimation effects of the post share and the logit
    coefficients; outcome-regression effects are added by the caller.
    """
    lam = np.mean(w * post)
    mean_w_treat = np.mean(w * D)

    att_treat_post = cells.treat_post * y / lam
    att_treat_pre = cells.treat_pre * y / (1.0 - lam)
    att_cont_post = cells.cont_post * y / lam
    att_cont_pre = cells.cont_pre * y / (1.0 - lam)

    summand = att_treat_post - att_treat_pre - att_cont_post + att_cont_pre
    att = np.mean(summand) / mean_w_treat

    # Estimation effect of lambda = mean(w * post)
    d_lambda = np.mean(
        -att_treat_post / lam - att_treat_pre / (1.0 - lam)
        + att_cont_post / lam + att_cont_pre / (1.0 - lam)
    )
    lin_lambda = w * (post - lam)

    # Estimation effect of the logit coefficients (control odds only)
    mom_logit = np.mean((att_cont_pre - att_cont_post)[:, np.newaxis] * X, axis=0)

    inf_func = (
        summand - w * D * att + d_lambda * lin_lambda + lin_ps @ mom_logit
    ) / mean_w_treat

    return float(att), inf_func


def std_ipw_did_rc(
    y: np.ndarray,
    post: np.ndarray,
    D: np.ndarray,
    covariates: Optional[np.ndarray] = None,
    i_weights: Optional[np.ndarray] = None,
    trim_level: float = DEFAULT_TRIM_LEVEL,
    strict: bool = False,
) -> ATTEstimate:
    """
    IPW DiD estimator for repeated cross sections, normalized weights.

    ATT = (treated post mean - treated pre mean)
          - (reweighted control post mean - reweighted control pre mean),
    where each of the four cell means uses weights that sum to one.

    Parameters
    ----------
    y : np.ndarray
        Outcome of each observation.
    post : np.ndarray
        Post-treatment period indicator (0/1).
    D : np.ndarray
        Treatment-group indicator (0/1).
    covariates : np.ndarray, optional
        Covariate matrix including intercept. None means intercept only.
    i_weights : np.ndarray, optional
        Sampling weights; rescaled to mean one.
    trim_level : float, default=0.995
        Control units with propensity scores at or above this are dropped.
    strict : bool, default=False
        Raise instead of warning if the propensity model does not converge.

    Returns
    -------
    ATTEstimate
    """
    D = np.asarray(D, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    post = np.asarray(post, dtype=np.float64)
    X, w = _prepare_inputs(covariates, i_weights, len(D))

    ps = fit_propensity_score(D, X, w, strict=strict)
    cells = compute_ipw_cell_weights(ps.pscore, D, post, w, trim_level)

    att_treat_post, inf_treat_post = _hajek(cells.treat_post, y)
    att_treat_pre, inf_treat_pre = _hajek(cells.treat_pre, y)
    att_cont_post, inf_cont_post = _hajek(cells.cont_post, y)
    att_cont_pre, inf_cont_pre = _hajek(cells.cont_pre, y)

    att = (att_treat_post - att_treat_pre) - (att_cont_post - att_cont_pre)

    inf_treat = inf_treat_post - inf_treat_pre
    inf_cont = inf_cont_post - inf_cont_pre

    # Estimation effect of the logit coefficients on the control means
    M2_post = np.mean(
        (cells.cont_post * (y - att_cont_post))[:, np.newaxis] * X, axis=0
    ) / np.mean(cells.cont_post)
    M2_pre = np.mean(
        (cells.cont_pre * (y - att_cont_pre))[:, np.newaxis] * X, axis=0
    ) / np.mean(cells.cont_pre)
    inf_cont = inf_cont + ps.linear_rep() @ (M2_post - M2_pre)

    inf_func = inf_treat - inf_cont

    return ATTEstimate(
        att=float(att),
        inf_func=inf_func,
        variant="ipw_rc_normalized",
        nuisance={"pscore": ps, "weights": cells},
    )
