"""
Estimator variant selection.

The (estimator type, panel, normalized) flags are resolved once into an
EstimatorVariant, and each variant maps to one pure estimation function.
"""

import logging
from enum import Enum
from typing import Callable, Dict, Optional

import numpy as np

from drdid.dr import (
    drdid_panel,
    drdid_panel_unnormalized,
    drdid_rc,
    drdid_rc_unnormalized,
)
from drdid.exceptions import ConfigurationError
from drdid.ipw import ipw_did_panel, ipw_did_rc, std_ipw_did_panel, std_ipw_did_rc
from drdid.prep import DiDData
from drdid.results import ATTEstimate
from drdid.weights import DEFAULT_TRIM_LEVEL

logger = logging.getLogger(__name__)


class EstimatorVariant(Enum):
    """IPW / doubly robust x panel / repeated cross section x weighting."""

    IPW_PANEL_NORM = "ipw_panel_normalized"
    IPW_PANEL_RAW = "ipw_panel_unnormalized"
    IPW_RC_NORM = "ipw_rc_normalized"
    IPW_RC_RAW = "ipw_rc_unnormalized"
    DR_PANEL_NORM = "dr_panel_normalized"
    DR_PANEL_RAW = "dr_panel_unnormalized"
    DR_RC_NORM = "dr_rc_normalized"
    DR_RC_RAW = "dr_rc_unnormalized"

    @property
    def est_type(self) -> str:
        return self.value.split("_")[0]

    @property
    def panel(self) -> bool:
        return self.value.split("_")[1] == "panel"

    @property
    def normalized(self) -> bool:
        return self.value.endswith("_normalized")


_VARIANT_FUNCTIONS: Dict[EstimatorVariant, Callable[..., ATTEstimate]] = {
    EstimatorVariant.IPW_PANEL_NORM: std_ipw_did_panel,
    EstimatorVariant.IPW_PANEL_RAW: ipw_did_panel,
    EstimatorVariant.IPW_RC_NORM: std_ipw_did_rc,
    EstimatorVariant.IPW_RC_RAW: ipw_did_rc,
    EstimatorVariant.DR_PANEL_NORM: drdid_panel,
    EstimatorVariant.DR_PANEL_RAW: drdid_panel_unnormalized,
    EstimatorVariant.DR_RC_NORM: drdid_rc,
    EstimatorVariant.DR_RC_RAW: drdid_rc_unnormalized,
}


def select_variant(est_type: str, panel: bool, normalized: bool) -> EstimatorVariant:
    """
    Resolve configuration flags into an estimator variant.

    Parameters
    ----------
    est_type : str
        "ipw" or "dr".
    panel : bool
        Panel data (True) or repeated cross sections (False).
    normalized : bool
        Normalized (True) or unnormalized (False) weights.

    Returns
    -------
    EstimatorVariant
    """
    if est_type not in ("ipw", "dr"):
        raise ConfigurationError(f"est_type must be 'ipw' or 'dr', got '{est_type}'")
    data_kind = "panel" if panel else "rc"
    weighting = "normalized" if normalized else "unnormalized"
    variant = EstimatorVariant(f"{est_type}_{data_kind}_{weighting}")
    logger.debug("Selected estimator variant %s", variant.value)
    return variant


def run_variant(
    variant: EstimatorVariant,
    data: DiDData,
    i_weights: Optional[np.ndarray] = None,
    trim_level: float = DEFAULT_TRIM_LEVEL,
    strict: bool = False,
) -> ATTEstimate:
    """
    Run an estimator variant on pre-processed data.

    Parameters
    ----------
    variant : EstimatorVariant
        Variant to run; its panel flag must match the data.
    data : DiDData
        Output of :func:`drdid.prep.preprocess_drdid`.
    i_weights : np.ndarray, optional
        Weights overriding ``data.i_weights`` (used by the weighted
        bootstrap).
    trim_level : float, default=0.995
        Propensity score trimming level for control units.
    strict : bool, default=False
        Raise on propensity score nonconvergence instead of warning.

    Returns
    -------
    ATTEstimate
    """
    if variant.panel != data.panel:
        raise ConfigurationError(
            f"Variant '{variant.value}' requires "
            f"{'panel' if variant.panel else 'repeated cross-section'} data"
        )
    weights = data.i_weights if i_weights is None else i_weights
    func = _VARIANT_FUNCTIONS[variant]

    if data.panel:
        return func(
            data.y1, data.y0, data.D, data.covariates, weights,
            trim_level=trim_level, strict=strict,
        )
    return func(
        data.y, data.post, data.D, data.covariates, weights,
        trim_level=trim_level, strict=strict,
    )
