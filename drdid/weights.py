"""
Inverse probability weights for IPW and doubly robust DiD estimators.

Treated units get their sampling weight ``w * D``; control units are
reweighted by the odds of treatment ``w * p(X) * (1 - D) / (1 - p(X))`` so
that their covariate distribution matches the treated group.

Normalized (Hajek) weights divide each group's weights by their own sum
(Sant'Anna and Zhao, 2020). Unnormalized (Horvitz-Thompson) weights divide
both groups by the treated sum only, which is Abadie's (2005) plug-in
estimator; the control weights then sum to one only in expectation.
"""

from dataclasses import dataclass
import numpy as np

from drdid.exceptions import DegeneratePropensityError

# Control units with fitted scores at or above this level get zero weight
DEFAULT_TRIM_LEVEL = 0.995


def trim_mask(
    pscore: np.ndarray,
    D: np.ndarray,
    trim_level: float = DEFAULT_TRIM_LEVEL,
) -> np.ndarray:
    """
    Indicator of units kept after propensity score trimming.

    Treated units are always kept; control units are dropped when their
    fitted score is at or above ``trim_level``.

    Parameters
    ----------
    pscore : np.ndarray
        Fitted propensity scores.
    D : np.ndarray
        Treatment-group indicator.
    trim_level : float, default=0.995
        Trimming threshold for control units. Use 1.0 to disable.

    Returns
    -------
    np.ndarray
        Float array of 0/1 keep indicators.
    """
    keep = np.where(D == 0, pscore < trim_level, True)
    return keep.astype(np.float64)


def _odds(pscore: np.ndarray, D: np.ndarray) -> np.ndarray:
    one_minus = 1.0 - pscore
    if np.any((D == 0) & (one_minus <= 0)):
        raise DegeneratePropensityError(
            "Propensity score equal to 1 for a control unit; the IPW weight "
            "p / (1 - p) is undefined."
        )
    # Treated units never use the odds; avoid dividing by zero there
    return np.where(D == 0, pscore / np.where(one_minus > 0, one_minus, 1.0), 0.0)


def normalize_weights(weights: np.ndarray) -> np.ndarray:
    """
    Hajek normalization: a weight vector divided by its sum.

    Parameters
    ----------
    weights : np.ndarray
        Non-negative weights with a positive sum.

    Returns
    -------
    np.ndarray
        Weights summing to one.
    """
    weights = np.asarray(weights, dtype=np.float64)
    total = np.sum(weights)
    if not total > 0:
        raise DegeneratePropensityError("Cannot normalize weights that sum to zero.")
    return weights / total


@dataclass
class IPWWeights:
    """
    Treated and control weights for panel data estimators.

    Attributes
    ----------
    treated : np.ndarray
        ``w * D``.
    control : np.ndarray
        ``w * p * (1 - D) / (1 - p)``, zero for trimmed control units.
    keep : np.ndarray
        0/1 trimming indicator.
    """

    treated: np.ndarray
    control: np.ndarray
    keep: np.ndarray


def compute_ipw_weights(
    pscore: np.ndarray,
    D: np.ndarray,
    i_weights: np.ndarray,
    trim_level: float = DEFAULT_TRIM_LEVEL,
) -> IPWWeights:
    """
    Build treated and control IPW weights.

    Parameters
    ----------
    pscore : np.ndarray
        Fitted propensity scores, strictly inside (0, 1) for control units.
    D : np.ndarray
        Treatment-group indicator (0/1).
    i_weights : np.ndarray
        Sampling weights.
    trim_level : float, default=0.995
        Control units with scores at or above this level get zero weight.

    Returns
    -------
    IPWWeights
        Unscaled weights; scaling happens in the estimators, which need the
        sample means of the raw weights for the influence function.

    Raises
    ------
    DegeneratePropensityError
        If the control weights are undefined or all zero.
    """
    D = np.asarray(D, dtype=np.float64)
    w = np.asarray(i_weights, dtype=np.float64)
    keep = trim_mask(pscore, D, trim_level)

    treated = w * D
    control = keep * w * (1.0 - D) * _odds(pscore, D)

    if not np.all(np.isfinite(control)) or np.sum(control) <= 0:
        raise DegeneratePropensityError(
            "Control IPW weights are degenerate (non-finite or summing to zero). "
            "There is no overlap between treated and control units."
        )

    return IPWWeights(treated=treated, control=control, keep=keep)


@dataclass
class IPWCellWeights:
    """
    Treated/control by pre/post weights for repeated cross sections.

    Attributes
    ----------
    treat_pre, treat_post : np.ndarray
        ``w * D * (1 - post)`` and ``w * D * post``.
    cont_pre, cont_post : np.ndarray
        ``w * p * (1 - D) * (1 - post) / (1 - p)`` and the post analogue.
    keep : np.ndarray
        0/1 trimming indicator.
    """

    treat_pre: np.ndarray
    treat_post: np.ndarray
    cont_pre: np.ndarray
    cont_post: np.ndarray
    keep: np.ndarray


def compute_ipw_cell_weights(
    pscore: np.ndarray,
    D: np.ndarray,
    post: np.ndarray,
    i_weights: np.ndarray,
    trim_level: float = DEFAULT_TRIM_LEVEL,
) -> IPWCellWeights:
    """
    Build the four cell weights used by repeated cross-section estimators.

    Parameters
    ----------
    pscore : np.ndarray
        Fitted propensity scores.
    D : np.ndarray
        Treatment-group indicator (0/1).
    post : np.ndarray
        Post-treatment period indicator (0/1).
    i_weights : np.ndarray
        Sampling weights.
    trim_level : float, default=0.995
        Control units with scores at or above this level get zero weight.

    Returns
    -------
    IPWCellWeights

    Raises
    ------
    DegeneratePropensityError
        If a control cell has no positive weight left.
    """
    post = np.asarray(post, dtype=np.float64)
    base = compute_ipw_weights(pscore, D, i_weights, trim_level)

    cells = IPWCellWeights(
        treat_pre=base.treated * (1.0 - post),
        treat_post=base.treated * post,
        cont_pre=base.control * (1.0 - post),
        cont_post=base.control * post,
        keep=base.keep,
    )
    for name in ("cont_pre", "cont_post"):
        if np.sum(getattr(cells, name)) <= 0:
            raise DegeneratePropensityError(
                f"Control IPW weights in cell '{name}' sum to zero; there is "
                "no overlap between treated and control units in that period."
            )
    return cells
