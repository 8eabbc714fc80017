"""
Weighted least squares backend for drdid outcome regressions.

The doubly robust estimators fit linear outcome models on subsets of the
sample (control units, or a treatment-group by period cell) and evaluate
them on every unit. The influence function needs the asymptotic linear
representation of those coefficients, so the fit returns the inverse of the
weighted cross-product matrix alongside the coefficients.

Rank Deficiency Handling
------------------------
A rank-deficient weighted design has no unique solution. Unlike a general
regression routine, dropping columns here would silently change the
outcome model, so rank deficiency is detected with pivoted QR decomposition
and reported as a SingularDesignError listing the dependent columns.
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np
from scipy import linalg as scipy_linalg
from scipy.linalg import qr

from drdid.exceptions import SingularDesignError


# =============================================================================
# Rank Deficiency Detection
# =============================================================================


def _detect_rank_deficiency(
    X: np.ndarray,
    rcond: Optional[float] = None,
) -> Tuple[int, np.ndarray, np.ndarray]:
    """
    Detect rank deficiency using pivoted QR decomposition.

    Parameters
    ----------
    X : ndarray of shape (n, k)
        Design matrix.
    rcond : float, optional
        Diagonal elements of R smaller than rcond * max(|R_ii|) are treated
        as zero. If None, uses 1e-07 (R's qr() default tolerance).

    Returns
    -------
    rank : int
        Numerical rank of the matrix.
    dropped_cols : ndarray of int
        Indices of linearly dependent columns. Empty if full rank.
    pivot : ndarray of int
        Column permutation from QR decomposition.
    """
    n, k = X.shape
    if n == 0:
        return 0, np.arange(k), np.arange(k)

    # X @ P = Q @ R, |R[i,i]| decreasing after pivoting
    _, R, pivot = qr(X, mode='economic', pivoting=True)

    if rcond is None:
        rcond = 1e-07

    r_diag = np.abs(np.diag(R))
    if r_diag.size == 0 or r_diag[0] == 0:
        rank = 0
    else:
        rank = int(np.sum(r_diag > rcond * r_diag[0]))

    if rank < k:
        dropped_cols = np.sort(pivot[rank:])
    else:
        dropped_cols = np.array([], dtype=int)

    return rank, dropped_cols, pivot


def _format_dropped_columns(
    dropped_cols: np.ndarray,
    column_names: Optional[List[str]] = None,
) -> str:
    """
    Format dependent column information for error messages.

    Parameters
    ----------
    dropped_cols : ndarray of int
        Indices of dependent columns.
    column_names : list of str, optional
        Names for the columns. If None, uses indices.

    Returns
    -------
    str
        Formatted string describing the columns.
    """
    if len(dropped_cols) == 0:
        return ""

    if column_names is not None:
        names = [f"'{column_names[i]}'" if i < len(column_names) else f"column {i}"
                 for i in dropped_cols]
    else:
        names = [f"column {i}" for i in dropped_cols]

    if len(names) <= 5:
        return ", ".join(names)
    return f"{', '.join(names[:5])}, ... and {len(names) - 5} more"


# =============================================================================
# Weighted Least Squares
# =============================================================================


def solve_wls(
    X: np.ndarray,
    y: np.ndarray,
    weights: np.ndarray,
    column_names: Optional[List[str]] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Solve the weighted normal equations ``(X'WX) b = X'Wy``.

    Parameters
    ----------
    X : ndarray of shape (n, k)
        Design matrix (should include intercept if desired).
    y : ndarray of shape (n,)
        Response vector.
    weights : ndarray of shape (n,)
        Non-negative observation weights. Rows with zero weight do not
        contribute.
    column_names : list of str, optional
        Names for the columns (used in error messages).

    Returns
    -------
    coefficients : ndarray of shape (k,)
        WLS coefficient estimates.
    xtwx_inv : ndarray of shape (k, k)
        Inverse of the average weighted cross-product ``X'WX / n``.

    Raises
    ------
    SingularDesignError
        If the weighted cross-product matrix is singular (perfectly
        collinear covariates, or fewer weighted rows than columns).

    Examples
    --------
    >>> import numpy as np
    >>> from drdid.linalg import solve_wls
    >>> X = np.column_stack([np.ones(100), np.random.randn(100)])
    >>> y = 2 + 3 * X[:, 1] + np.random.randn(100)
    >>> coef, _ = solve_wls(X, y, np.ones(100))
    """
    X = np.asarray(X, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    w = np.asarray(weights, dtype=np.float64)

    if X.ndim != 2:
        raise ValueError(f"X must be 2-dimensional, got shape {X.shape}")
    if y.shape != (X.shape[0],) or w.shape != (X.shape[0],):
        raise ValueError(
            f"X, y and weights must have the same number of observations: "
            f"{X.shape[0]}, {y.shape[0]}, {w.shape[0]}"
        )

    n, k = X.shape
    used = w > 0
    n_used = int(np.sum(used))
    if n_used < k:
        raise SingularDesignError(
            f"Fewer weighted observations ({n_used}) than parameters ({k}). "
            "Cannot solve underdetermined system."
        )

    sqrt_w = np.sqrt(w[used])
    rank, dropped_cols, _ = _detect_rank_deficiency(X[used] * sqrt_w[:, np.newaxis])
    if len(dropped_cols) > 0:
        raise SingularDesignError(
            f"Weighted design matrix is rank-deficient. {k - rank} of {k} columns "
            f"are linearly dependent: {_format_dropped_columns(dropped_cols, column_names)}. "
            "This indicates multicollinearity in the covariates."
        )

    xtwx = (X * w[:, np.newaxis]).T @ X / n
    xtwy = (X * w[:, np.newaxis]).T @ y / n
    try:
        coefficients = scipy_linalg.solve(xtwx, xtwy, assume_a="pos")
        xtwx_inv = scipy_linalg.inv(xtwx)
    except (scipy_linalg.LinAlgError, ValueError) as e:
        raise SingularDesignError(
            "Weighted cross-product matrix is singular."
        ) from e

    return coefficients, xtwx_inv


@dataclass
class OutcomeRegressionFit:
    """
    Linear outcome model fitted on a subset of the sample.

    Attributes
    ----------
    coef : np.ndarray
        WLS coefficients, shape (k,).
    fitted : np.ndarray
        Predicted outcome for every unit of the full sample, shape (n,).
    residuals : np.ndarray
        ``y - fitted`` for every unit of the full sample, shape (n,).
    fit_weights : np.ndarray
        Weights used in the fit: sampling weight times the subset indicator.
    xtwx_inv : np.ndarray
        Inverse of the average weighted cross-product on the subset.
    covariates : np.ndarray
        Design matrix the model was fitted with, shape (n, k).
    """

    coef: np.ndarray
    fitted: np.ndarray
    residuals: np.ndarray
    fit_weights: np.ndarray
    xtwx_inv: np.ndarray
    covariates: np.ndarray

    def linear_rep(self) -> np.ndarray:
        """
        Asymptotic linear representation of the regression coefficients.

        Returns
        -------
        np.ndarray
            Array of shape (n, k); zero rows for units outside the subset.
        """
        wols_ex = (self.fit_weights * self.residuals)[:, np.newaxis] * self.covariates
        return wols_ex @ self.xtwx_inv


def fit_outcome_regression(
    y: np.ndarray,
    covariates: np.ndarray,
    subset: np.ndarray,
    i_weights: np.ndarray,
) -> OutcomeRegressionFit:
    """
    Fit a weighted linear outcome regression on a subset of units.

    Parameters
    ----------
    y : np.ndarray
        Response for every unit (outcome change for panel data, outcome
        level for repeated cross sections), shape (n,).
    covariates : np.ndarray
        Design matrix including intercept, shape (n, k).
    subset : np.ndarray
        Boolean (or 0/1) mask of the units the model is fitted on.
    i_weights : np.ndarray
        Sampling weights, shape (n,).

    Returns
    -------
    OutcomeRegressionFit
        Coefficients plus predictions and residuals for the full sample.
    """
    y = np.asarray(y, dtype=np.float64)
    X = np.asarray(covariates, dtype=np.float64)
    fit_weights = np.asarray(i_weights, dtype=np.float64) * np.asarray(subset, dtype=np.float64)

    coef, xtwx_inv = solve_wls(X, y, fit_weights)
    fitted = X @ coef

    return OutcomeRegressionFit(
        coef=coef,
        fitted=fitted,
        residuals=y - fitted,
        fit_weights=fit_weights,
        xtwx_inv=xtwx_inv,
        covariates=X,
    )
