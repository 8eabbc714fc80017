"""
Doubly robust DiD estimators of the ATT.

The doubly robust estimators combine the IPW estimators of ``drdid.ipw``
with linear outcome regressions fitted by weighted least squares. They are
consistent if either the propensity score model or the outcome regression
model is correctly specified.

Panel data: the outcome change of control units is regressed on the
covariates and the IPW estimator is applied to the regression residuals.

Repeated cross sections: with normalized weights, the locally efficient
estimator of Sant'Anna and Zhao (2020) uses four cell regressions
(control/treated by pre/post). With unnormalized weights, the control
group regressions of each period are used with Abadie's (2005) weights.

References
----------
Sant'Anna, P. H. C., & Zhao, J. (2020). Doubly Robust
Difference-in-Differences Estimators. Journal of Econometrics, 219(1),
101-122.
"""

from typing import Optional

import numpy as np

from drdid.ipw import _abadie_rc, _hajek, _prepare_inputs
from drdid.linalg import fit_outcome_regression
from drdid.propensity import fit_propensity_score
from drdid.results import ATTEstimate
from drdid.weights import (
    DEFAULT_TRIM_LEVEL,
    compute_ipw_cell_weights,
    compute_ipw_weights,
    normalize_weights,
)


def _normalized_x_mean(weights: np.ndarray, X: np.ndarray) -> np.ndarray:
    """``sum(weights * X) / sum(weights)``, column-wise."""
    return normalize_weights(weights) @ X


def drdid_panel(
    y1: np.ndarray,
    y0: np.ndarray,
    D: np.ndarray,
    covariates: Optional[np.ndarray] = None,
    i_weights: Optional[np.ndarray] = None,
    trim_level: float = DEFAULT_TRIM_LEVEL,
    strict: bool = False,
) -> ATTEstimate:
    """
    Doubly robust DiD estimator for panel data, normalized weights.

    ATT = mean_w_treat(dY - m(X)) - mean_w_cont(dY - m(X)), where m(X) is
    the weighted least squares fit of dY = y1 - y0 on X among control
    units and both weighted means use weights that sum to one.

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
    out_delta = fit_outcome_regression(delta_y, X, D == 0, w)
    resid = out_delta.residuals

    eta_treat, inf_treat_1 = _hajek(weights.treated, resid)
    eta_cont, inf_cont_1 = _hajek(weights.control, resid)
    att = eta_treat - eta_cont

    lin_ps = ps.linear_rep()
    lin_or = out_delta.linear_rep()

    # Outcome regression effect on the treated mean
    M1 = _normalized_x_mean(weights.treated, X)
    inf_treat = inf_treat_1 - lin_or @ M1

    # Propensity score and outcome regression effects on the control mean
    M2 = np.mean(
        (weights.control * (resid - eta_cont))[:, np.newaxis] * X, axis=0
    ) / np.mean(weights.control)
    M3 = _normalized_x_mean(weights.control, X)
    inf_control = inf_cont_1 + lin_ps @ M2 - lin_or @ M3

    inf_func = inf_treat - inf_control

    return ATTEstimate(
        att=float(att),
        inf_func=inf_func,
        variant="dr_panel_normalized",
        nuisance={"pscore": ps, "weights": weights, "outcome_delta": out_delta},
    )


def drdid_panel_unnormalized(
    y1: np.ndarray,
    y0: np.ndarray,
    D: np.ndarray,
    covariates: Optional[np.ndarray] = None,
    i_weights: Optional[np.ndarray] = None,
    trim_level: float = DEFAULT_TRIM_LEVEL,
    strict: bool = False,
) -> ATTEstimate:
    """
    Doubly robust DiD estimator for panel data, unnormalized weights.

    Same as :func:`drdid_panel` but both groups are scaled by the treated
    share mean(w * D), as in Abadie's (2005) IPW estimator.

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
    out_delta = fit_outcome_regression(delta_y, X, D == 0, w)
    resid = out_delta.residuals

    att_treat = weights.treated * resid
    att_cont = weights.control * resid
    mean_w_treat = np.mean(weights.treated)
    att = (np.mean(att_treat) - np.mean(att_cont)) / mean_w_treat

    mom_logit = np.mean(att_cont[:, np.newaxis] * X, axis=0)
    M1 = np.mean(weights.treated[:, np.newaxis] * X, axis=0)
    M3 = np.mean(weights.control[:, np.newaxis] * X, axis=0)

    inf_func = (
        att_treat - att_cont - weights.treated * att
        - ps.linear_rep() @ mom_logit
        - out_delta.linear_rep() @ (M1 - M3)
    ) / mean_w_treat

    return ATTEstimate(
        att=float(att),
        inf_func=inf_func,
        variant="dr_panel_unnormalized",
        nuisance={"pscore": ps, "weights": weights, "outcome_delta": out_delta},
    )


def drdid_rc(
    y: np.ndarray,
    post: np.ndarray,
    D: np.ndarray,
    covariates: Optional[np.ndarray] = None,
    i_weights: Optional[np.ndarray] = None,
    trim_level: float = DEFAULT_TRIM_LEVEL,
    strict: bool = False,
) -> ATTEstimate:
    """
    Locally efficient doubly robust DiD estimator for repeated cross sections.

    Uses normalized weights and four outcome regressions, one per
    treatment-group by period cell. With mu_c the control regression of the
    observation's own period::

        ATT = [mean_t1(y - mu_c) - mean_t0(y - mu_c)]
              - [mean_c1(y - mu_c) - mean_c0(y - mu_c)]
              + [mean_d(mu_t1 - mu_c1) - mean_t1(mu_t1 - mu_c1)]
              - [mean_d(mu_t0 - mu_c0) - mean_t0(mu_t0 - mu_c0)]

    where mean_t1 / mean_c1 are weighted means over treated / reweighted
    control observations of the post period (t0 / c0: pre period) and
    mean_d is over all treated observations.

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

    or_cont_pre = fit_outcome_regression(y, X, (D == 0) & (post == 0), w)
    or_cont_post = fit_outcome_regression(y, X, (D == 0) & (post == 1), w)
    or_treat_pre = fit_outcome_regression(y, X, (D == 1) & (post == 0), w)
    or_treat_post = fit_outcome_regression(y, X, (D == 1) & (post == 1), w)

    mu_c0 = or_cont_pre.fitted
    mu_c1 = or_cont_post.fitted
    mu_t0 = or_treat_pre.fitted
    mu_t1 = or_treat_post.fitted
    mu_c = post * mu_c1 + (1.0 - post) * mu_c0
    resid = y - mu_c

    w_d = w * D
    w_t1, w_t0 = cells.treat_post, cells.treat_pre
    w_c1, w_c0 = cells.cont_post, cells.cont_pre

    att_treat_post, inf_treat_post = _hajek(w_t1, resid)
    att_treat_pre, inf_treat_pre = _hajek(w_t0, resid)
    att_cont_post, inf_cont_post = _hajek(w_c1, resid)
    att_cont_pre, inf_cont_pre = _hajek(w_c0, resid)
    att_d_post, inf_d_post = _hajek(w_d, mu_t1 - mu_c1)
    att_dt1_post, inf_dt1_post = _hajek(w_t1, mu_t1 - mu_c1)
    att_d_pre, inf_d_pre = _hajek(w_d, mu_t0 - mu_c0)
    att_dt0_pre, inf_dt0_pre = _hajek(w_t0, mu_t0 - mu_c0)

    att = (
        (att_treat_post - att_treat_pre)
        - (att_cont_post - att_cont_pre)
        + (att_d_post - att_dt1_post)
        - (att_d_pre - att_dt0_pre)
    )

    inf_direct = (
        (inf_treat_post - inf_treat_pre)
        - (inf_cont_post - inf_cont_pre)
        + (inf_d_post - inf_dt1_post)
        - (inf_d_pre - inf_dt0_pre)
    )

    # Propensity score effect, through the control weights
    M_ps_post = np.mean(
        (w_c1 * (resid - att_cont_post))[:, np.newaxis] * X, axis=0
    ) / np.mean(w_c1)
    M_ps_pre = np.mean(
        (w_c0 * (resid - att_cont_pre))[:, np.newaxis] * X, axis=0
    ) / np.mean(w_c0)
    inf_ps = ps.linear_rep() @ (M_ps_pre - M_ps_post)

    # Outcome regression effects
    x_d = _normalized_x_mean(w_d, X)
    x_t1 = _normalized_x_mean(w_t1, X)
    x_t0 = _normalized_x_mean(w_t0, X)
    x_c1 = _normalized_x_mean(w_c1, X)
    x_c0 = _normalized_x_mean(w_c0, X)
    inf_or = (
        or_cont_post.linear_rep() @ (x_c1 - x_d)
        + or_cont_pre.linear_rep() @ (x_d - x_c0)
        + or_treat_post.linear_rep() @ (x_d - x_t1)
        + or_treat_pre.linear_rep() @ (x_t0 - x_d)
    )

    inf_func = inf_direct + inf_ps + inf_or

    return ATTEstimate(
        att=float(att),
        inf_func=inf_func,
        variant="dr_rc_normalized",
        nuisance={
            "pscore": ps,
            "weights": cells,
            "outcome_cont_pre": or_cont_pre,
            "outcome_cont_post": or_cont_post,
            "outcome_treat_pre": or_treat_pre,
            "outcome_treat_post": or_treat_post,
        },
    )


def drdid_rc_unnormalized(
    y: np.ndarray,
    post: np.ndarray,
    D: np.ndarray,
    covariates: Optional[np.ndarray] = None,
    i_weights: Optional[np.ndarray] = None,
    trim_level: float = DEFAULT_TRIM_LEVEL,
    strict: bool = False,
) -> ATTEstimate:
    """
    Doubly robust DiD estimator for repeated cross sections, unnormalized weights.

    Applies Abadie's (2005) IPW estimator to the residuals from control
    group outcome regressions fitted separately in the pre and post
    periods.

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

    or_cont_pre = fit_outcome_regression(y, X, (D == 0) & (post == 0), w)
    or_cont_post = fit_outcome_regression(y, X, (D == 0) & (post == 1), w)
    resid = y - (post * or_cont_post.fitted + (1.0 - post) * or_cont_pre.fitted)

    att, inf_func = _abadie_rc(resid, post, w, D, X, cells, ps.linear_rep())

    lam = np.mean(w * post)
    mean_w_treat = np.mean(w * D)
    G_post = np.mean(
        ((cells.cont_post - cells.treat_post) / lam)[:, np.newaxis] * X, axis=0
    )
    G_pre = np.mean(
        ((cells.treat_pre - cells.cont_pre) / (1.0 - lam))[:, np.newaxis] * X, axis=0
    )
    inf_func = inf_func + (
        or_cont_post.linear_rep() @ G_post + or_cont_pre.linear_rep() @ G_pre
    ) / mean_w_treat

    return ATTEstimate(
        att=att,
        inf_func=inf_func,
        variant="dr_rc_unnormalized",
        nuisance={
            "pscore": ps,
            "weights": cells,
            "outcome_cont_pre": or_cont_pre,
            "outcome_cont_post": or_cont_post,
        },
    )
