"""
Results classes for IPW and doubly robust DiD estimation.

Provides statsmodels-style output with a more Pythonic interface.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional

import numpy as np
import pandas as pd


@dataclass
class ATTEstimate:
    """
    Point estimate and influence function from one estimator variant.

    Attributes
    ----------
    att : float
        ATT point estimate.
    inf_func : np.ndarray
        Influence function, one value per unit (panel) or observation (RC).
    variant : str
        Name of the estimator variant that produced the estimate.
    nuisance : dict
        Fitted nuisance models and weights ("pscore", "weights", and for
        doubly robust variants the outcome regressions).
    """

    att: float
    inf_func: np.ndarray
    variant: str
    nuisance: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DRDIDConfig:
    """
    Resolved configuration of an estimation call.

    Attributes
    ----------
    type : str
        "ipw" or "dr".
    panel : bool
        Whether the data were treated as a panel.
    normalized : bool
        Whether normalized (Hajek) weights were used.
    boot : bool
        Whether bootstrap inference was used.
    boot_type : str
        "weighted" or "multiplier".
    nboot : int
        Number of bootstrap replicates.
    alpha : float
        Significance level of the confidence interval.
    seed : int, optional
        Seed of the bootstrap random number generator.
    trim_level : float
        Propensity score trimming level for control units.
    ci_type : str
        "normal" or "percentile" bootstrap confidence interval.
    """

    type: str
    panel: bool
    normalized: bool
    boot: bool
    boot_type: str
    nboot: int
    alpha: float = 0.05
    seed: Optional[int] = None
    trim_level: float = 0.995
    ci_type: str = "normal"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DRDIDResults:
    """
    Results from an IPW or doubly robust DiD estimation.

    Attributes
    ----------
    att : float
        Average Treatment effect on the Treated (ATT).
    se : float
        Standard error of the ATT estimate (analytical or bootstrap).
    t_stat : float
        T-statistic for the ATT estimate.
    p_value : float
        P-value for the null hypothesis that ATT = 0 (normal approximation).
    conf_int : tuple[float, float]
        Confidence interval for the ATT.
    n_obs : int
        Number of units (panel) or observations (repeated cross sections).
    n_treated : int
        Number of treated units/observations.
    n_control : int
        Number of control units/observations.
    config : DRDIDConfig
        Configuration the estimate was computed with.
    boots : np.ndarray, optional
        Bootstrap draws of the ATT; NaN for failed replicates.
    inf_func : np.ndarray, optional
        Estimated influence function.
    n_boot_failed : int
        Number of failed bootstrap replicates.
    """

    att: float
    se: float
    t_stat: float
    p_value: float
    conf_int: tuple
    n_obs: int
    n_treated: int
    n_control: int
    config: DRDIDConfig
    boots: Optional[np.ndarray] = field(default=None)
    inf_func: Optional[np.ndarray] = field(default=None)
    n_boot_failed: int = 0

    @property
    def alpha(self) -> float:
        return self.config.alpha

    @property
    def lci(self) -> float:
        """Lower bound of the confidence interval."""
        return self.conf_int[0]

    @property
    def uci(self) -> float:
        """Upper bound of the confidence interval."""
        return self.conf_int[1]

    def __repr__(self) -> str:
        """Concise string representation."""
        return (
            f"DRDIDResults(ATT={self.att:.4f}{self.significance_stars}, "
            f"SE={self.se:.4f}, "
            f"p={self.p_value:.4f})"
        )

    def _method_label(self) -> str:
        kind = "Doubly Robust" if self.config.type == "dr" else "IPW"
        weights = "normalized" if self.config.normalized else "unnormalized"
        data = "panel data" if self.config.panel else "repeated cross sections"
        return f"{kind} DiD ({weights} weights, {data})"

    def summary(self, alpha: Optional[float] = None) -> str:
        """
        Generate a formatted summary of the estimation results.

        Parameters
        ----------
        alpha : float, optional
            Only used to label the confidence level; the interval itself
            was computed at the alpha used during estimation.

        Returns
        -------
        str
            Formatted summary table.
        """
        alpha = alpha or self.alpha
        conf_level = int((1 - alpha) * 100)

        if self.config.boot:
            inference = f"{self.config.boot_type} bootstrap ({self.config.nboot} draws)"
        else:
            inference = "analytical (influence function)"

        lines = [
            "=" * 70,
            self._method_label().center(70),
            "=" * 70,
            "",
            f"{'Observations:':<25} {self.n_obs:>10}",
            f"{'Treated:':<25} {self.n_treated:>10}",
            f"{'Control:':<25} {self.n_control:>10}",
            f"{'Inference:':<25} {inference}",
        ]
        if self.config.boot and self.n_boot_failed > 0:
            lines.append(f"{'Failed replicates:':<25} {self.n_boot_failed:>10}")

        lines.extend([
            "",
            "-" * 70,
            f"{'Parameter':<15} {'Estimate':>12} {'Std. Err.':>12} {'z-stat':>10} {'P>|z|':>10}",
            "-" * 70,
            f"{'ATT':<15} {self.att:>12.4f} {self.se:>12.4f} {self.t_stat:>10.3f} {self.p_value:>10.4f}",
            "-" * 70,
            "",
            f"{conf_level}% Confidence Interval: [{self.conf_int[0]:.4f}, {self.conf_int[1]:.4f}]",
            "",
            "Signif. codes: '***' 0.001, '**' 0.01, '*' 0.05, '.' 0.1",
            "=" * 70,
        ])

        return "\n".join(lines)

    def print_summary(self, alpha: Optional[float] = None) -> None:
        """Print the summary to stdout."""
        print(self.summary(alpha))

    def to_dict(self) -> dict:
        """
        Convert results to a dictionary.

        Returns
        -------
        dict
            Dictionary containing the estimation results and configuration.
        """
        return {
            "att": self.att,
            "se": self.se,
            "t_stat": self.t_stat,
            "p_value": self.p_value,
            "conf_int_lower": self.conf_int[0],
            "conf_int_upper": self.conf_int[1],
            "n_obs": self.n_obs,
            "n_treated": self.n_treated,
            "n_control": self.n_control,
            "n_boot_failed": self.n_boot_failed,
            **self.config.to_dict(),
        }

    def to_dataframe(self) -> pd.DataFrame:
        """
        Convert results to a pandas DataFrame.

        Returns
        -------
        pd.DataFrame
            Single-row DataFrame with estimation results.
        """
        return pd.DataFrame([self.to_dict()])

    @property
    def is_significant(self) -> bool:
        """Check if the ATT is statistically significant at the alpha level."""
        return bool(self.p_value < self.alpha)

    @property
    def significance_stars(self) -> str:
        """Return significance stars based on p-value."""
        if self.p_value < 0.001:
            return "***"
        elif self.p_value < 0.01:
            return "**"
        elif self.p_value < 0.05:
            return "*"
        elif self.p_value < 0.1:
            return "."
        return ""
