"""
drdid: IPW and doubly robust Difference-in-Differences.

This library provides sklearn-like estimators of the average treatment
effect on the treated in two-period designs, for panel data and repeated
cross sections, with influence-function and bootstrap inference.
"""

from drdid.estimators import (
    DRDiD,
    IPWDiD,
    drdid,
    ipwdid,
)
from drdid.exceptions import (
    BootstrapWarning,
    ConfigurationError,
    ConvergenceWarning,
    DegeneratePropensityError,
    DRDIDError,
    NonconvergenceError,
    SingularDesignError,
)
from drdid.results import (
    ATTEstimate,
    DRDIDConfig,
    DRDIDResults,
)
from drdid.prep import (
    DiDData,
    balance_panel,
    preprocess_drdid,
    summarize_drdid_data,
)
from drdid.prep_dgp import generate_drdid_data
from drdid.variants import EstimatorVariant, select_variant

__version__ = "0.1.0"
__all__ = [
    # Estimators
    "IPWDiD",
    "DRDiD",
    "ipwdid",
    "drdid",
    # Results
    "ATTEstimate",
    "DRDIDConfig",
    "DRDIDResults",
    # Variants
    "EstimatorVariant",
    "select_variant",
    # Data preparation
    "DiDData",
    "preprocess_drdid",
    "balance_panel",
    "summarize_drdid_data",
    "generate_drdid_data",
    # Errors and warnings
    "DRDIDError",
    "ConfigurationError",
    "NonconvergenceError",
    "DegeneratePropensityError",
    "SingularDesignError",
    "ConvergenceWarning",
    "BootstrapWarning",
]
