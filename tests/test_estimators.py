"""Tests for the IPWDiD and DRDiD estimators and functional wrappers."""

import warnings

import numpy as np
import pytest

import drdid as drdid_pkg
from drdid import DRDiD, DRDIDResults, IPWDiD, drdid, ipwdid
from drdid.exceptions import (
    BootstrapWarning,
    ConfigurationError,
    ConvergenceWarning,
    DegeneratePropensityError,
)
from drdid.prep_dgp import generate_drdid_data

PANEL_ARGS = dict(yname="y", tname="period", idname="id", dname="d", xformla="~ x1 + x2")
RC_ARGS = dict(yname="y", tname="period", dname="d", xformla="~ x1 + x2", panel=False)


class TestEstimatorConfiguration:
    """Constructor validation and sklearn-style parameters."""

    @pytest.mark.parametrize("cls", [IPWDiD, DRDiD])
    def test_defaults(self, cls):
        est = cls()
        params = est.get_params()
        assert params["normalized"] is True
        assert params["boot"] is False
        assert params["boot_type"] == "weighted"
        assert params["nboot"] == 999
        assert params["alpha"] == 0.05
        assert not est.is_fitted_
        assert est.results_ is None

    @pytest.mark.parametrize(
        "kwargs, match",
        [
            ({"boot_type": "wild"}, "boot_type"),
            ({"nboot": 0}, "nboot"),
            ({"nboot": 10.5}, "nboot"),
            ({"alpha": 1.5}, "alpha"),
            ({"bootstrap_weights": "normal"}, "bootstrap_weights"),
            ({"ci_type": "bca"}, "ci_type"),
            ({"trim_level": 0.0}, "trim_level"),
            ({"n_jobs": 0}, "n_jobs"),
            ({"max_failed_frac": 2.0}, "max_failed_frac"),
        ],
    )
    def test_invalid_parameters(self, kwargs, match):
        with pytest.raises(ConfigurationError, match=match):
            DRDiD(**kwargs)

    def test_configuration_error_is_value_error(self):
        with pytest.raises(ValueError):
            IPWDiD(boot_type="wild")

    def test_set_params(self):
        est = IPWDiD().set_params(normalized=False, nboot=199)
        assert est.normalized is False
        assert est.nboot == 199

    def test_set_unknown_param(self):
        with pytest.raises(ConfigurationError, match="Unknown parameter"):
            IPWDiD().set_params(estMethod="imp")

    def test_set_params_validated_at_fit(self, panel_df):
        est = DRDiD().set_params(boot_type="jackknife")
        with pytest.raises(ConfigurationError, match="boot_type"):
            est.fit(panel_df, **PANEL_ARGS)

    def test_summary_before_fit(self):
        with pytest.raises(RuntimeError, match="fitted"):
            DRDiD().summary()


class TestFit:
    """Analytical inference through the estimator classes."""

    @pytest.mark.parametrize("cls", [IPWDiD, DRDiD])
    @pytest.mark.parametrize("normalized", [True, False])
    def test_panel(self, panel_df, cls, normalized):
        est = cls(normalized=normalized)
        res = est.fit(panel_df, **PANEL_ARGS)
        assert isinstance(res, DRDIDResults)
        assert est.is_fitted_
        assert res.n_obs == panel_df["id"].nunique()
        assert res.n_treated + res.n_control == res.n_obs
        assert abs(res.att - 1.0) < 4 * res.se
        assert res.config.panel
        assert res.config.type == cls.est_type
        assert res.boots is None
        assert res.inf_func is None

    @pytest.mark.parametrize("cls", [IPWDiD, DRDiD])
    @pytest.mark.parametrize("normalized", [True, False])
    def test_repeated_cross_section(self, rc_df, cls, normalized):
        res = cls(normalized=normalized).fit(rc_df, **RC_ARGS)
        assert res.n_obs == len(rc_df)
        assert not res.config.panel
        assert abs(res.att - 1.0) < 4 * res.se

    def test_inference_consistency(self, panel_df):
        res = DRDiD(alpha=0.1).fit(panel_df, **PANEL_ARGS)
        assert res.t_stat == pytest.approx(res.att / res.se)
        z = 1.6448536
        assert res.conf_int[0] == pytest.approx(res.att - z * res.se, rel=1e-6)
        assert res.conf_int[1] == pytest.approx(res.att + z * res.se, rel=1e-6)
        assert 0.0 <= res.p_value <= 1.0

    def test_inffunc_returned(self, panel_df):
        est = IPWDiD(inffunc=True)
        res = est.fit(panel_df, **PANEL_ARGS)
        assert res.inf_func.shape == (res.n_obs,)
        np.testing.assert_array_equal(res.inf_func, est.estimate_.inf_func)
        assert res.se == pytest.approx(
            np.sqrt(np.mean(res.inf_func ** 2) / res.n_obs)
        )

    def test_estimate_exposes_nuisance(self, rc_df):
        est = DRDiD()
        est.fit(rc_df, **RC_ARGS)
        assert est.estimate_.variant == "dr_rc_normalized"
        assert "outcome_treat_post" in est.estimate_.nuisance

    def test_normalized_selects_repeated_cross_section_estimator(self, rc_df):
        traditional = DRDiD(normalized=False)
        traditional.fit(rc_df, **RC_ARGS)
        assert traditional.estimate_.variant == "dr_rc_unnormalized"
        assert "outcome_treat_post" not in traditional.estimate_.nuisance
        assert "outcome_cont_post" in traditional.estimate_.nuisance

    def test_sampling_weights(self):
        df = generate_drdid_data(n_units=800, sampling_weights=True, seed=11)
        res = DRDiD().fit(df, weightsname="w", **PANEL_ARGS)
        unweighted = DRDiD().fit(df, **PANEL_ARGS)
        assert res.att != unweighted.att
        assert abs(res.att - 1.0) < 4 * res.se

    def test_missing_dname(self, panel_df):
        with pytest.raises(ConfigurationError, match="dname"):
            DRDiD().fit(panel_df, yname="y", tname="period", idname="id")

    def test_separating_covariate_raises(self, panel_df):
        df = panel_df.copy()
        df["sep"] = df["d"] * 10.0 + df["x1"] * 0.01
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            with pytest.raises(DegeneratePropensityError):
                IPWDiD().fit(df, yname="y", tname="period", idname="id",
                             dname="d", xformla=["sep"])

    def test_summary_after_fit(self, panel_df):
        est = DRDiD()
        est.fit(panel_df, **PANEL_ARGS)
        assert "Doubly Robust DiD" in est.summary()


class TestBootstrapFit:
    """Bootstrap inference through the estimator classes."""

    def test_multiplier(self, panel_df):
        res = DRDiD(boot=True, boot_type="multiplier", nboot=499, seed=1).fit(
            panel_df, **PANEL_ARGS
        )
        analytical = DRDiD().fit(panel_df, **PANEL_ARGS)
        assert res.boots.shape == (499,)
        assert res.att == analytical.att
        assert res.se == pytest.approx(analytical.se, rel=0.15)
        assert res.n_boot_failed == 0
        assert res.config.boot_type == "multiplier"

    def test_weighted(self, rc_df):
        res = IPWDiD(boot=True, nboot=49, seed=2).fit(rc_df, **RC_ARGS)
        assert res.boots.shape == (49,)
        assert np.all(np.isfinite(res.boots))
        assert res.se > 0

    def test_weighted_default_has_no_failures(self):
        df = generate_drdid_data(500, seed=3)
        with warnings.catch_warnings():
            warnings.simplefilter("error", BootstrapWarning)
            warnings.simplefilter("error", ConvergenceWarning)
            res = IPWDiD(boot=True, nboot=200, seed=1).fit(df, **PANEL_ARGS)
        assert res.n_boot_failed == 0
        assert np.all(np.isfinite(res.boots))

    def test_seed_reproducible(self, panel_df):
        a = IPWDiD(boot=True, boot_type="multiplier", nboot=99, seed=5).fit(panel_df, **PANEL_ARGS)
        b = IPWDiD(boot=True, boot_type="multiplier", nboot=99, seed=5).fit(panel_df, **PANEL_ARGS)
        np.testing.assert_array_equal(a.boots, b.boots)
        assert a.se == b.se

    def test_weighted_threads_match_serial(self, panel_df):
        serial = DRDiD(boot=True, nboot=20, seed=3, n_jobs=1).fit(panel_df, **PANEL_ARGS)
        threaded = DRDiD(boot=True, nboot=20, seed=3, n_jobs=3).fit(panel_df, **PANEL_ARGS)
        np.testing.assert_allclose(serial.boots, threaded.boots, rtol=1e-10)

    def test_percentile_interval(self, panel_df):
        res = DRDiD(boot=True, boot_type="multiplier", nboot=999, seed=4,
                    ci_type="percentile").fit(panel_df, **PANEL_ARGS)
        np.testing.assert_allclose(res.conf_int, np.quantile(res.boots, [0.025, 0.975]))


class TestFunctionalInterface:
    """Tests for ipwdid() and drdid()."""

    def test_ipwdid_matches_class(self, panel_df):
        res = ipwdid(panel_df, normalized=False, **PANEL_ARGS)
        expected = IPWDiD(normalized=False).fit(panel_df, **PANEL_ARGS)
        assert res.att == expected.att
        assert res.se == expected.se

    def test_drdid_matches_class(self, rc_df):
        res = drdid(rc_df, **RC_ARGS)
        expected = DRDiD().fit(rc_df, **RC_ARGS)
        assert res.att == expected.att

    def test_extra_keyword_arguments(self, panel_df):
        res = drdid(panel_df, boot=True, boot_type="multiplier", nboot=99,
                    seed=0, alpha=0.1, **PANEL_ARGS)
        assert res.config.alpha == 0.1
        assert res.boots.shape == (99,)

    def test_package_exports(self):
        for name in drdid_pkg.__all__:
            assert hasattr(drdid_pkg, name)
        assert drdid_pkg.__version__
