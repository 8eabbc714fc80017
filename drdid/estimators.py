"""
IPW and doubly robust DiD estimators with sklearn-like API.
"""

import logging
from typing import Any, Dict, Optional, Sequence, Union

import numpy as np
import pandas as pd

from drdid.bootstrap import bootstrap_inference, multiplier_bootstrap, weighted_bootstrap
from drdid.exceptions import ConfigurationError
from drdid.prep import DiDData, preprocess_drdid
from drdid.results import ATTEstimate, DRDIDConfig, DRDIDResults
from drdid.utils import (
    compute_confidence_interval,
    compute_inf_func_se,
    compute_p_value,
    safe_t_stat,
)
from drdid.variants import run_variant, select_variant
from drdid.weights import DEFAULT_TRIM_LEVEL

logger = logging.getLogger(__name__)

_BOOT_TYPES = ("weighted", "multiplier")
_BOOTSTRAP_WEIGHTS = ("rademacher", "mammen", "webb")
_CI_TYPES = ("normal", "percentile")


class _TwoPeriodDiD:
    """Shared configuration, validation and fitting of the two-period estimators."""

    est_type = ""

    def __init__(
        self,
        normalized: bool = True,
        boot: bool = False,
        boot_type: str = "weighted",
        nboot: int = 999,
        inffunc: bool = False,
        alpha: float = 0.05,
        seed: Optional[int] = None,
        n_jobs: int = 1,
        bootstrap_weights: str = "rademacher",
        ci_type: str = "normal",
        trim_level: float = DEFAULT_TRIM_LEVEL,
        max_failed_frac: float = 0.1,
    ):
        self.normalized = normalized
        self.boot = boot
        self.boot_type = boot_type
        self.nboot = nboot
        self.inffunc = inffunc
        self.alpha = alpha
        self.seed = seed
        self.n_jobs = n_jobs
        self.bootstrap_weights = bootstrap_weights
        self.ci_type = ci_type
        self.trim_level = trim_level
        self.max_failed_frac = max_failed_frac

        self._validate_params()

        self.is_fitted_ = False
        self.results_: Optional[DRDIDResults] = None
        self.estimate_: Optional[ATTEstimate] = None

    def _validate_params(self) -> None:
        if self.boot_type not in _BOOT_TYPES:
            raise ConfigurationError(
                f"boot_type must be 'weighted' or 'multiplier', got '{self.boot_type}'"
            )
        if self.bootstrap_weights not in _BOOTSTRAP_WEIGHTS:
            raise ConfigurationError(
                f"bootstrap_weights must be 'rademacher', 'mammen', or 'webb', "
                f"got '{self.bootstrap_weights}'"
            )
        if self.ci_type not in _CI_TYPES:
            raise ConfigurationError(
                f"ci_type must be 'normal' or 'percentile', got '{self.ci_type}'"
            )
        if isinstance(self.nboot, bool) or not isinstance(self.nboot, (int, np.integer)) \
                or self.nboot < 2:
            raise ConfigurationError(f"nboot must be an integer >= 2, got '{self.nboot}'")
        if not 0 < self.alpha < 1:
            raise ConfigurationError(f"alpha must be in (0, 1), got '{self.alpha}'")
        if not 0 < self.trim_level <= 1:
            raise ConfigurationError(f"trim_level must be in (0, 1], got '{self.trim_level}'")
        if not isinstance(self.n_jobs, (int, np.integer)) or self.n_jobs < 1:
            raise ConfigurationError(f"n_jobs must be a positive integer, got '{self.n_jobs}'")
        if not 0 <= self.max_failed_frac <= 1:
            raise ConfigurationError(
                f"max_failed_frac must be in [0, 1], got '{self.max_failed_frac}'"
            )

    def fit(
        self,
        data: pd.DataFrame,
        yname: str,
        tname: str,
        idname: Optional[str] = None,
        dname: Optional[str] = None,
        xformla: Optional[Union[str, Sequence[str]]] = None,
        panel: bool = True,
        weightsname: Optional[str] = None,
    ) -> DRDIDResults:
        """
        Fit the estimator.

        Parameters
        ----------
        data : pd.DataFrame
            Long-format data with exactly two time periods.
        yname : str
            Outcome column.
        tname : str
            Time period column.
        idname : str, optional
            Unit identifier column; required when ``panel=True``.
        dname : str
            Treatment-group column (1 for units treated in the post period).
        xformla : str or list of str, optional
            Covariates, as a list of columns or a formula ``"~ x1 + x2"``.
            Intercept only if None.
        panel : bool, default=True
            Panel data (True) or repeated cross sections (False).
        weightsname : str, optional
            Sampling weight column.

        Returns
        -------
        DRDIDResults
            Estimation results.

        Raises
        ------
        ConfigurationError
            On invalid configuration or data.
        DegeneratePropensityError
            If the propensity score of a control unit is numerically 0 or 1.
        SingularDesignError
            If the propensity or outcome regression design is rank deficient.
        """
        self._validate_params()
        if dname is None:
            raise ConfigurationError("dname must be provided")

        prepared = preprocess_drdid(
            data,
            yname=yname,
            tname=tname,
            dname=dname,
            idname=idname,
            xformla=xformla,
            panel=panel,
            weightsname=weightsname,
        )
        return self._fit_prepared(prepared)

    def _fit_prepared(self, prepared: DiDData) -> DRDIDResults:
        variant = select_variant(self.est_type, prepared.panel, self.normalized)
        estimate = run_variant(variant, prepared, trim_level=self.trim_level)
        att = estimate.att

        boots = None
        n_failed = 0
        if self.boot:
            rng = np.random.default_rng(self.seed)
            if self.boot_type == "multiplier":
                draws = multiplier_bootstrap(
                    att, estimate.inf_func, nboot=self.nboot,
                    weight_type=self.bootstrap_weights, rng=rng,
                )
            else:
                draws = weighted_bootstrap(
                    variant, prepared, nboot=self.nboot, rng=rng,
                    n_jobs=self.n_jobs, trim_level=self.trim_level,
                )
            boot_inf = bootstrap_inference(
                att, draws, alpha=self.alpha, ci_type=self.ci_type,
                max_failed_frac=self.max_failed_frac,
            )
            se = boot_inf.se
            conf_int = boot_inf.conf_int
            boots = boot_inf.draws
            n_failed = boot_inf.n_failed
        else:
            se = compute_inf_func_se(estimate.inf_func)
            conf_int = compute_confidence_interval(att, se, self.alpha)

        t_stat = safe_t_stat(att, se)
        p_value = compute_p_value(t_stat) if np.isfinite(t_stat) else np.nan

        config = DRDIDConfig(
            type=self.est_type,
            panel=prepared.panel,
            normalized=self.normalized,
            boot=self.boot,
            boot_type=self.boot_type,
            nboot=self.nboot,
            alpha=self.alpha,
            seed=self.seed,
            trim_level=self.trim_level,
            ci_type=self.ci_type,
        )
        logger.debug("%s: ATT=%.6f SE=%.6f", variant.value, att, se)

        self.estimate_ = estimate
        self.results_ = DRDIDResults(
            att=att,
            se=se,
            t_stat=t_stat,
            p_value=p_value,
            conf_int=conf_int,
            n_obs=prepared.n,
            n_treated=prepared.n_treated,
            n_control=prepared.n_control,
            config=config,
            boots=boots,
            inf_func=estimate.inf_func if self.inffunc else None,
            n_boot_failed=n_failed,
        )
        self.is_fitted_ = True
        return self.results_

    def get_params(self) -> Dict[str, Any]:
        """
        Get estimator parameters (sklearn-compatible).

        Returns
        -------
        Dict[str, Any]
            Estimator parameters.
        """
        return {
            "normalized": self.normalized,
            "boot": self.boot,
            "boot_type": self.boot_type,
            "nboot": self.nboot,
            "inffunc": self.inffunc,
            "alpha": self.alpha,
            "seed": self.seed,
            "n_jobs": self.n_jobs,
            "bootstrap_weights": self.bootstrap_weights,
            "ci_type": self.ci_type,
            "trim_level": self.trim_level,
            "max_failed_frac": self.max_failed_frac,
        }

    def set_params(self, **params) -> "_TwoPeriodDiD":
        """
        Set estimator parameters (sklearn-compatible).

        Parameters
        ----------
        **params
            Estimator parameters.

        Returns
        -------
        self
        """
        valid = self.get_params()
        for key, value in params.items():
            if key in valid:
                setattr(self, key, value)
            else:
                raise ConfigurationError(f"Unknown parameter: {key}")
        return self

    def summary(self) -> str:
        """
        Get summary of estimation results.

        Returns
        -------
        str
            Formatted summary.
        """
        if not self.is_fitted_:
            raise RuntimeError("Model must be fitted before calling summary()")
        assert self.results_ is not None
        return self.results_.summary()

    def print_summary(self) -> None:
        """Print summary to stdout."""
        print(self.summary())


class IPWDiD(_TwoPeriodDiD):
    """
    Inverse probability weighted DiD estimator (Abadie 2005).

    Estimates the Average Treatment effect on the Treated (ATT) in a
    two-period design by reweighting control units with the odds of their
    fitted propensity score p(X) / (1 - p(X)), so that their covariate
    distribution matches the treated group's.

    Parameters
    ----------
    normalized : bool, default=True
        Use normalized (Hajek) weights that sum to one within each group.
        If False, use the Horvitz-Thompson weights of Abadie (2005), both
        scaled by the treated share.
    boot : bool, default=False
        Use bootstrap inference instead of the analytical influence
        function standard error.
    boot_type : str, default="weighted"
        "weighted": refit the estimator under Exponential(1) reweighting
        of the units. "multiplier": perturb the influence function.
    nboot : int, default=999
        Number of bootstrap replicates.
    inffunc : bool, default=False
        Store the influence function in the results.
    alpha : float, default=0.05
        Significance level for confidence intervals.
    seed : int, optional
        Random seed for the bootstrap.
    n_jobs : int, default=1
        Number of threads for the weighted bootstrap.
    bootstrap_weights : str, default="rademacher"
        Multiplier distribution: "rademacher", "mammen" or "webb".
    ci_type : str, default="normal"
        Bootstrap confidence interval: "normal" (ATT +- z * SE) or
        "percentile".
    trim_level : float, default=0.995
        Control units with a propensity score at or above this level get
        zero weight.
    max_failed_frac : float, default=0.1
        Warn when more than this fraction of bootstrap replicates fail.

    Attributes
    ----------
    results_ : DRDIDResults
        Estimation results after calling fit().
    estimate_ : ATTEstimate
        Point estimate, influence function and fitted nuisance models.
    is_fitted_ : bool
        Whether the model has been fitted.

    Examples
    --------
    >>> from drdid import IPWDiD, generate_drdid_data
    >>> data = generate_drdid_data(n_units=500, seed=42)
    >>> ipw = IPWDiD()
    >>> results = ipw.fit(data, yname="y", tname="period", idname="id",
    ...                   dname="d", xformla="~ x1 + x2")
    >>> results.print_summary()
    """

    est_type = "ipw"


class DRDiD(_TwoPeriodDiD):
    """
    Doubly robust DiD estimator (Sant'Anna and Zhao 2020).

    Combines inverse probability weighting with outcome regressions for the
    control group: the ATT is consistent if either the propensity score
    model or the outcome regression model is correctly specified.

    With panel data the outcome model is a regression of the outcome change
    on covariates among controls, and ``normalized`` only changes the
    weighting.

    With repeated cross sections ``normalized`` selects the estimator, not
    just the weighting. ``normalized=True`` gives the locally efficient
    estimator: normalized weights and regressions in all four group-period
    cells. ``normalized=False`` gives the traditional estimator: unnormalized
    (Abadie) weights and control-group regressions only. There is no
    traditional estimator with normalized weights.

    Parameters
    ----------
    normalized : bool, default=True
        Panel data: use normalized weights. Repeated cross sections: True
        selects the locally efficient estimator, False the traditional one.
        See :class:`IPWDiD` for the remaining parameters, which are shared.
    boot, boot_type, nboot, inffunc, alpha, seed, n_jobs, bootstrap_weights,
    ci_type, trim_level, max_failed_frac
        As in :class:`IPWDiD`.

    Examples
    --------
    >>> from drdid import DRDiD, generate_drdid_data
    >>> data = generate_drdid_data(n_units=500, panel=False, seed=1)
    >>> results = DRDiD(boot=True, nboot=199, seed=1).fit(
    ...     data, yname="y", tname="period", dname="d",
    ...     xformla=["x1", "x2"], panel=False)
    >>> results.conf_int
    """

    est_type = "dr"


def _fit_functional(
    estimator_cls,
    data: pd.DataFrame,
    yname: str,
    tname: str,
    idname: Optional[str],
    dname: Optional[str],
    xformla: Optional[Union[str, Sequence[str]]],
    panel: bool,
    weightsname: Optional[str],
    **params,
) -> DRDIDResults:
    estimator = estimator_cls(**params)
    return estimator.fit(
        data,
        yname=yname,
        tname=tname,
        idname=idname,
        dname=dname,
        xformla=xformla,
        panel=panel,
        weightsname=weightsname,
    )


def ipwdid(
    data: pd.DataFrame,
    yname: str,
    tname: str,
    idname: Optional[str] = None,
    dname: Optional[str] = None,
    xformla: Optional[Union[str, Sequence[str]]] = None,
    panel: bool = True,
    normalized: bool = True,
    weightsname: Optional[str] = None,
    boot: bool = False,
    boot_type: str = "weighted",
    nboot: int = 999,
    inffunc: bool = False,
    **kwargs,
) -> DRDIDResults:
    """
    Estimate the ATT with inverse probability weighting.

    Functional interface to :class:`IPWDiD`; remaining keyword arguments
    (``alpha``, ``seed``, ``n_jobs``, ...) are passed to the constructor.

    Returns
    -------
    DRDIDResults
    """
    return _fit_functional(
        IPWDiD, data, yname, tname, idname, dname, xformla, panel, weightsname,
        normalized=normalized, boot=boot, boot_type=boot_type, nboot=nboot,
        inffunc=inffunc, **kwargs,
    )


def drdid(
    data: pd.DataFrame,
    yname: str,
    tname: str,
    idname: Optional[str] = None,
    dname: Optional[str] = None,
    xformla: Optional[Union[str, Sequence[str]]] = None,
    panel: bool = True,
    normalized: bool = True,
    weightsname: Optional[str] = None,
    boot: bool = False,
    boot_type: str = "weighted",
    nboot: int = 999,
    inffunc: bool = False,
    **kwargs,
) -> DRDIDResults:
    """
    Estimate the ATT with the doubly robust DiD estimator.

    Functional interface to :class:`DRDiD`; remaining keyword arguments
    (``alpha``, ``seed``, ``n_jobs``, ...) are passed to the constructor.
    For repeated cross sections ``normalized`` chooses between the locally
    efficient (True) and traditional (False) estimators.

    Returns
    -------
    DRDIDResults
    """
    return _fit_functional(
        DRDiD, data, yname, tname, idname, dname, xformla, panel, weightsname,
        normalized=normalized, boot=boot, boot_type=boot_type, nboot=nboot,
        inffunc=inffunc, **kwargs,
    )
