"""
Data preparation for IPW and doubly robust DiD estimation.

Turns a long-format DataFrame into the arrays the estimators work on:
outcomes (pre/post outcomes per unit for panel data, one outcome per
observation for repeated cross sections), the treatment-group indicator,
a covariate matrix with intercept and sampling weights scaled to mean one.
"""

import warnings
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np
import pandas as pd

from drdid.exceptions import ConfigurationError


@dataclass
class DiDData:
    """
    Pre-processed two-period DiD data.

    Attributes
    ----------
    panel : bool
        Whether the arrays describe a balanced panel (one row per unit).
    D : np.ndarray
        Treatment-group indicator.
    covariates : np.ndarray
        Covariate matrix, first column is the intercept.
    i_weights : np.ndarray
        Sampling weights with mean one.
    covariate_names : list of str
        Column names of ``covariates``.
    y1, y0 : np.ndarray, optional
        Post- and pre-period outcomes (panel data).
    y, post : np.ndarray, optional
        Outcome and post-period indicator (repeated cross sections).
    ids : np.ndarray, optional
        Unit identifiers (panel data).
    """

    panel: bool
    D: np.ndarray
    covariates: np.ndarray
    i_weights: np.ndarray
    covariate_names: List[str] = field(default_factory=lambda: ["(Intercept)"])
    y1: Optional[np.ndarray] = None
    y0: Optional[np.ndarray] = None
    y: Optional[np.ndarray] = None
    post: Optional[np.ndarray] = None
    ids: Optional[np.ndarray] = None

    @property
    def n(self) -> int:
        """Number of units (panel) or observations (repeated cross sections)."""
        return len(self.D)

    @property
    def n_treated(self) -> int:
        return int(np.sum(self.D == 1))

    @property
    def n_control(self) -> int:
        return int(np.sum(self.D == 0))


def validate_binary(arr: np.ndarray, name: str) -> None:
    """
    Validate that an array contains only binary values (0 or 1).

    Parameters
    ----------
    arr : np.ndarray
        Array to validate.
    name : str
        Name of the variable (for error messages).

    Raises
    ------
    ConfigurationError
        If array contains non-binary values.
    """
    arr = np.asarray(arr, dtype=np.float64)
    unique_values = np.unique(arr[~np.isnan(arr)])
    if not np.all(np.isin(unique_values, [0, 1])):
        raise ConfigurationError(
            f"{name} must be binary (0 or 1). "
            f"Found values: {unique_values}"
        )


def parse_covariates(xformla: Optional[Union[str, Sequence[str]]]) -> List[str]:
    """
    Covariate column names from a list or a one-sided formula.

    Parameters
    ----------
    xformla : str or list of str, optional
        Either a list of column names or a formula of the form
        ``"~ x1 + x2"``. ``None``, ``"~1"`` and ``[]`` mean intercept only.

    Returns
    -------
    list of str
        Covariate column names (without the intercept).

    Examples
    --------
    >>> parse_covariates("~ age + educ")
    ['age', 'educ']
    >>> parse_covariates(None)
    []
    """
    if xformla is None:
        return []
    if isinstance(xformla, str):
        rhs = xformla.strip()
        if not rhs.startswith("~"):
            raise ConfigurationError(
                f"xformla must be a one-sided formula such as '~ x1 + x2', got '{xformla}'"
            )
        terms = [t.strip() for t in rhs[1:].split("+")]
        terms = [t for t in terms if t not in ("", "1")]
        for t in terms:
            if any(op in t for op in ("*", ":", "(", "-", "^", "|")):
                raise ConfigurationError(
                    f"Only additive formulas of column names are supported, got term '{t}'"
                )
        return terms
    return list(xformla)


def balance_panel(
    data: pd.DataFrame,
    unit_column: str,
    time_column: str,
) -> pd.DataFrame:
    """
    Keep only units observed in every time period.

    Parameters
    ----------
    data : pd.DataFrame
        Possibly unbalanced panel data.
    unit_column : str
        Column name for unit identifier.
    time_column : str
        Column name for time period.

    Returns
    -------
    pd.DataFrame
        Balanced panel DataFrame.

    Examples
    --------
    >>> df = pd.DataFrame({
    ...     'unit': [1, 1, 2, 3, 3],
    ...     'period': [1, 2, 1, 1, 2],
    ...     'y': [10, 11, 20, 30, 31]
    ... })
    >>> balance_panel(df, 'unit', 'period')['unit'].unique().tolist()
    [1, 3]
    """
    n_periods = data[time_column].nunique()
    unit_counts = data.groupby(unit_column)[time_column].nunique()
    unit_rows = data.groupby(unit_column).size()
    complete_units = unit_counts[(unit_counts == n_periods) & (unit_rows == n_periods)].index
    return data[data[unit_column].isin(complete_units)].copy()


def _covariate_matrix(frame: pd.DataFrame, covariates: List[str]) -> pd.DataFrame:
    """Intercept plus covariates; non-numeric columns become dummies."""
    design = pd.DataFrame({"(Intercept)": np.ones(len(frame))}, index=frame.index)
    for cov in covariates:
        if pd.api.types.is_numeric_dtype(frame[cov]):
            design[cov] = frame[cov].astype(float)
        else:
            dummies = pd.get_dummies(frame[cov], prefix=cov, drop_first=True)
            for col in dummies.columns:
                design[col] = dummies[col].astype(float)
    return design


def preprocess_drdid(
    data: pd.DataFrame,
    yname: str,
    tname: str,
    dname: str,
    idname: Optional[str] = None,
    xformla: Optional[Union[str, Sequence[str]]] = None,
    panel: bool = True,
    weightsname: Optional[str] = None,
) -> DiDData:
    """
    Validate and reshape long-format data for two-period DiD estimation.

    Parameters
    ----------
    data : pd.DataFrame
        Long-format data: one row per unit and period (panel) or one row
        per observation (repeated cross sections).
    yname : str
        Outcome column.
    tname : str
        Time period column; must contain exactly two distinct values. The
        later one is the post-treatment period.
    dname : str
        Treatment-group column (1 if the unit is treated in the post period).
    idname : str, optional
        Unit identifier column; required when ``panel=True``.
    xformla : str or list of str, optional
        Covariates, as a list of columns or a formula ``"~ x1 + x2"``.
    panel : bool, default=True
        Whether the data is a panel.
    weightsname : str, optional
        Sampling weight column. Defaults to equal weights.

    Returns
    -------
    DiDData

    Raises
    ------
    ConfigurationError
        For missing columns, non-binary treatment, a number of periods
        other than two, negative weights, or empty treatment/period cells.

    Notes
    -----
    Rows with missing values in any used column are dropped with a
    warning. Panel data are balanced by dropping units not observed in
    both periods. Treatment, covariates and weights must be constant
    within units.
    """
    if panel and idname is None:
        raise ConfigurationError("idname must be provided when panel=True")

    covariates = parse_covariates(xformla)
    required = [yname, tname, dname] + covariates
    if panel:
        required.append(idname)
    if weightsname is not None:
        required.append(weightsname)
    required = list(dict.fromkeys(required))

    missing = [c for c in required if c not in data.columns]
    if missing:
        raise ConfigurationError(f"Missing columns: {missing}")

    df = data[required].copy()
    n_before = len(df)
    df = df.dropna()
    if len(df) < n_before:
        warnings.warn(
            f"Dropped {n_before - len(df)} row(s) with missing values.",
            UserWarning,
            stacklevel=2,
        )

    if not pd.api.types.is_numeric_dtype(df[yname]):
        raise ConfigurationError(
            f"Outcome column '{yname}' must be numeric. Got type: {df[yname].dtype}"
        )
    validate_binary(df[dname].values, dname)

    periods = np.sort(df[tname].unique())
    if len(periods) != 2:
        raise ConfigurationError(
            f"Column '{tname}' must contain exactly two time periods, "
            f"found {len(periods)}: {list(periods)}"
        )
    pre_period, post_period = periods

    if weightsname is None:
        df["_w"] = 1.0
    else:
        if not pd.api.types.is_numeric_dtype(df[weightsname]):
            raise ConfigurationError(f"Weights column '{weightsname}' must be numeric")
        if (df[weightsname] < 0).any():
            raise ConfigurationError(f"Weights column '{weightsname}' must be non-negative")
        df["_w"] = df[weightsname].astype(float)

    if panel:
        result = _preprocess_panel(df, yname, tname, dname, idname, covariates,
                                   pre_period, post_period)
    else:
        result = _preprocess_rc(df, yname, tname, dname, covariates, post_period)

    if result.n_treated == 0 or result.n_control == 0:
        raise ConfigurationError(
            "Both treated (D=1) and control (D=0) units are required; found "
            f"{result.n_treated} treated and {result.n_control} control."
        )
    if np.sum(result.i_weights) <= 0:
        raise ConfigurationError("Sampling weights sum to zero")
    result.i_weights = result.i_weights / np.mean(result.i_weights)
    return result


def _preprocess_panel(
    df: pd.DataFrame,
    yname: str,
    tname: str,
    dname: str,
    idname: str,
    covariates: List[str],
    pre_period: Any,
    post_period: Any,
) -> DiDData:
    n_units_before = df[idname].nunique()
    df = balance_panel(df, idname, tname)
    n_dropped = n_units_before - df[idname].nunique()
    if n_dropped > 0:
        warnings.warn(
            f"Panel is unbalanced: dropped {n_dropped} unit(s) not observed "
            "exactly once in both periods.",
            UserWarning,
            stacklevel=3,
        )
    if len(df) == 0:
        raise ConfigurationError("No unit is observed in both time periods")

    varying = df.groupby(idname)[dname].nunique()
    if (varying > 1).any():
        raise ConfigurationError(
            f"Treatment group '{dname}' must be constant within units; it varies "
            f"for {int((varying > 1).sum())} unit(s)."
        )
    if (df.groupby(idname)["_w"].nunique() > 1).any():
        raise ConfigurationError("Sampling weights must be constant within units")
    if covariates:
        cov_varying = (df.groupby(idname)[covariates].nunique() > 1).sum()
        bad = [c for c in covariates if cov_varying[c] > 0]
        if bad:
            raise ConfigurationError(
                f"Covariate '{bad[0]}' must be constant within units; it varies "
                f"for {int(cov_varying[bad[0]])} unit(s). Covariates that vary "
                f"over time: {bad}"
            )

    df = df.sort_values([idname, tname])
    pre = df[df[tname] == pre_period].set_index(idname)
    post = df[df[tname] == post_period].set_index(idname).reindex(pre.index)

    design = _covariate_matrix(pre, covariates)

    return DiDData(
        panel=True,
        D=pre[dname].values.astype(float),
        covariates=design.values,
        i_weights=pre["_w"].values.astype(float),
        covariate_names=list(design.columns),
        y1=post[yname].values.astype(float),
        y0=pre[yname].values.astype(float),
        ids=pre.index.values,
    )


def _preprocess_rc(
    df: pd.DataFrame,
    yname: str,
    tname: str,
    dname: str,
    covariates: List[str],
    post_period: Any,
) -> DiDData:
    post = (df[tname] == post_period).values.astype(float)
    D = df[dname].values.astype(float)

    for d_val in (0, 1):
        for p_val in (0, 1):
            if not np.any((D == d_val) & (post == p_val)):
                raise ConfigurationError(
                    f"No observations for {dname}={d_val}, post={p_val}. "
                    "DiD requires observations in all treatment-period cells."
                )

    design = _covariate_matrix(df, covariates)

    return DiDData(
        panel=False,
        D=D,
        covariates=design.values,
        i_weights=df["_w"].values.astype(float),
        covariate_names=list(design.columns),
        y=df[yname].values.astype(float),
        post=post,
    )


def summarize_drdid_data(data: DiDData) -> Dict[str, Any]:
    """
    Summary counts of pre-processed data.

    Parameters
    ----------
    data : DiDData
        Output of :func:`preprocess_drdid`.

    Returns
    -------
    dict
        Number of units/observations, treated and control counts and,
        for repeated cross sections, counts per period.
    """
    summary = {
        "panel": data.panel,
        "n_obs": data.n,
        "n_treated": data.n_treated,
        "n_control": data.n_control,
        "n_covariates": data.covariates.shape[1] - 1,
    }
    if not data.panel:
        summary["n_post"] = int(np.sum(data.post == 1))
        summary["n_pre"] = int(np.sum(data.post == 0))
    return summary
