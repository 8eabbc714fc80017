"""
Exceptions and warnings raised by drdid estimators.
"""

import numpy as np


class DRDIDError(Exception):
    """Base class for all drdid errors."""


class ConfigurationError(DRDIDError, ValueError):
    """
    Invalid argument combination or input data.

    Raised at the entry point, before any numeric work is done.
    """


class NonconvergenceError(DRDIDError):
    """
    An iterative fit did not converge within its iteration budget.

    Only raised in strict mode; otherwise a ConvergenceWarning is issued
    and the best-effort estimate is used.
    """


class DegeneratePropensityError(DRDIDError):
    """
    Fitted propensity scores of control units reached the 0/1 boundary.

    IPW weights are undefined in this case (typically near or perfect
    separation of treated and control units by the covariates).
    """


class SingularDesignError(DRDIDError, np.linalg.LinAlgError):
    """Weighted least squares normal equations are singular."""


class ConvergenceWarning(UserWarning):
    """Warning issued when an iterative fit stops before converging."""


class BootstrapWarning(UserWarning):
    """Warning issued when too many bootstrap replicates failed."""
