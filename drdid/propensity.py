"""
Propensity score estimation for IPW and doubly robust DiD estimators.

Fits a weighted logistic regression of the treatment-group indicator on
covariates by maximum likelihood, using a trust-region Newton method so
that the iterations stay stable when the covariates (nearly) separate
treated and control units.
"""

import logging
import warnings
from dataclasses import dataclass
from typing import Optional

import numpy as np
from scipy import optimize
from scipy.special import expit

from drdid.exceptions import (
    ConvergenceWarning,
    DegeneratePropensityError,
    NonconvergenceError,
    SingularDesignError,
)
from drdid.linalg import _detect_rank_deficiency, _format_dropped_columns

logger = logging.getLogger(__name__)

# Fitted scores are clipped to [PSCORE_EPS, 1 - PSCORE_EPS]
PSCORE_EPS = 1e-6


@dataclass
class PropensityFit:
    """
    Fitted propensity score model.

    Attributes
    ----------
    coef : np.ndarray
        Logit coefficients, shape (k,). The first entry is the intercept.
    pscore : np.ndarray
        Fitted probabilities P(D=1|X), clipped away from 0 and 1, shape (n,).
    hessian_inv : np.ndarray
        Inverse of the average weighted Fisher information
        ``mean(w * p * (1 - p) * x x')``, shape (k, k).
    score : np.ndarray
        Per-unit weighted score ``w * (D - p) * x``, shape (n, k).
    converged : bool
        Whether the optimizer met the gradient tolerance.
    n_iter : int
        Number of trust-region iterations used.
    """

    coef: np.ndarray
    pscore: np.ndarray
    hessian_inv: np.ndarray
    score: np.ndarray
    converged: bool
    n_iter: int

    def linear_rep(self) -> np.ndarray:
        """
        Asymptotic linear representation of the logit coefficients.

        Row i is unit i's contribution to ``sqrt(n) * (beta_hat - beta)``.

        Returns
        -------
        np.ndarray
            Array of shape (n, k).
        """
        return self.score @ self.hessian_inv


def _neg_log_likelihood(beta, X, D, w):
    z = X @ beta
    # log(1 + exp(z)) without overflow
    return np.mean(w * (np.logaddexp(0.0, z) - D * z))


def _gradient(beta, X, D, w):
    p = expit(X @ beta)
    return X.T @ (w * (p - D)) / X.shape[0]


def _hessian(beta, X, D, w):
    p = expit(X @ beta)
    return (X * (w * p * (1.0 - p))[:, np.newaxis]).T @ X / X.shape[0]


def _newton_polish(beta, X, D, w, tol, max_steps=5):
    """Plain Newton steps from near the optimum, kept while |grad| shrinks."""
    grad = _gradient(beta, X, D, w)
    grad_norm = np.linalg.norm(grad)
    n_steps = 0
    while grad_norm > tol and n_steps < max_steps:
        try:
            step = np.linalg.solve(_hessian(beta, X, D, w), grad)
        except np.linalg.LinAlgError:
            break
        candidate = beta - step
        cand_grad = _gradient(candidate, X, D, w)
        cand_norm = np.linalg.norm(cand_grad)
        if not cand_norm < grad_norm:
            break
        beta, grad, grad_norm = candidate, cand_grad, cand_norm
        n_steps += 1
    return beta, grad_norm, n_steps


def fit_propensity_score(
    D: np.ndarray,
    covariates: np.ndarray,
    i_weights: Optional[np.ndarray] = None,
    max_iter: int = 100,
    tol: float = 1e-8,
    eps: float = PSCORE_EPS,
    strict: bool = False,
) -> PropensityFit:
    """
    Fit a weighted logistic propensity score model by trust-region MLE.

    Parameters
    ----------
    D : np.ndarray
        Treatment-group indicator (0/1), shape (n,).
    covariates : np.ndarray
        Design matrix including the intercept column, shape (n, k).
    i_weights : np.ndarray, optional
        Non-negative sampling weights. Defaults to ones.
    max_iter : int, default=100
        Maximum number of trust-region iterations.
    tol : float, default=1e-8
        Tolerance on the norm of the gradient of the mean log-likelihood.
        Convergence is decided on this norm at the returned coefficients.
    eps : float, default=1e-6
        Fitted scores are clipped to [eps, 1 - eps]. A control unit whose
        unclipped score falls outside (eps, 1 - eps) is degenerate.
    strict : bool, default=False
        If True, raise NonconvergenceError when the optimizer does not
        converge. Otherwise warn and return best-effort coefficients.

    Returns
    -------
    PropensityFit
        Coefficients, clipped scores and the pieces needed for the
        influence function correction.

    Raises
    ------
    SingularDesignError
        If the covariates are perfectly collinear among units with positive
        weight.
    DegeneratePropensityError
        If a control unit's fitted score reaches the 0/1 boundary.
    NonconvergenceError
        If ``strict=True`` and the optimizer did not converge.

    Notes
    -----
    The objective is the mean weighted negative log-likelihood. scipy's
    ``trust-exact`` method solves the trust-region subproblem exactly at
    every step, accepts or rejects the step on the ratio of actual to
    predicted reduction, and grows or shrinks the trust radius accordingly.
    Unlike a pure Newton iteration it cannot overshoot when the likelihood
    is nearly flat in the separating direction.
    """
    D = np.asarray(D, dtype=np.float64)
    X = np.asarray(covariates, dtype=np.float64)
    n, k = X.shape
    if i_weights is None:
        w = np.ones(n)
    else:
        w = np.asarray(i_weights, dtype=np.float64)

    positive = w > 0
    rank, dropped_cols, _ = _detect_rank_deficiency(
        X[positive] * np.sqrt(w[positive])[:, np.newaxis]
    )
    if len(dropped_cols) > 0:
        raise SingularDesignError(
            f"Propensity score design matrix is rank-deficient ({rank} of {k} "
            f"columns identified; dependent: "
            f"{_format_dropped_columns(dropped_cols)}). Multicollinearity or "
            "lack of variation in the covariates is a likely reason."
        )

    # Start from the intercept-only MLE
    beta_init = np.zeros(k)
    p_bar = np.sum(w * D) / np.sum(w)
    if np.allclose(X[:, 0], 1.0) and 0.0 < p_bar < 1.0:
        beta_init[0] = np.log(p_bar / (1.0 - p_bar))

    result = optimize.minimize(
        _neg_log_likelihood,
        beta_init,
        args=(X, D, w),
        method="trust-exact",
        jac=_gradient,
        hess=_hessian,
        options={"gtol": tol, "maxiter": max_iter},
    )
    beta = result.x
    n_iter = int(result.nit)
    grad_norm = np.linalg.norm(_gradient(beta, X, D, w))

    # trust-exact stops once the predicted reduction is below rounding
    # error; finish with Newton steps unless the iteration limit was hit
    if grad_norm > tol and result.status != 1:
        beta, grad_norm, n_polish = _newton_polish(beta, X, D, w, tol)
        n_iter += n_polish

    converged = bool(grad_norm <= tol)
    logger.debug(
        "Propensity score fit: %d iterations, converged=%s, |grad|=%.3e (%s)",
        n_iter, converged, grad_norm, result.message,
    )

    if not converged:
        msg = (
            f"Propensity score estimation did not converge after {n_iter} "
            f"iterations ({result.message})."
        )
        if strict:
            raise NonconvergenceError(msg)
        warnings.warn(msg, ConvergenceWarning, stacklevel=2)

    pscore_raw = expit(X @ beta)
    controls = (D == 0) & positive
    boundary = (pscore_raw <= eps) | (pscore_raw >= 1.0 - eps)
    n_boundary = int(np.sum(boundary & controls))
    if n_boundary > 0:
        raise DegeneratePropensityError(
            f"{n_boundary} control unit(s) have fitted propensity scores "
            f"outside ({eps:g}, {1 - eps:g}). IPW weights are undefined; the "
            "covariates (nearly) separate treated and control units."
        )
    pscore = np.clip(pscore_raw, eps, 1.0 - eps)

    info = _hessian(beta, X, D, w)
    try:
        hessian_inv = np.linalg.inv(info)
    except np.linalg.LinAlgError as e:
        raise SingularDesignError(
            "Fisher information of the propensity score model is singular."
        ) from e

    score = (w * (D - pscore_raw))[:, np.newaxis] * X

    return PropensityFit(
        coef=beta,
        pscore=pscore,
        hessian_inv=hessian_inv,
        score=score,
        converged=converged,
        n_iter=n_iter,
    )
