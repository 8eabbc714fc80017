"""Tests for multiplier and weighted bootstrap inference."""

import numpy as np
import pytest

from drdid.bootstrap import (
    _generate_multiplier_weights_batch,
    bootstrap_inference,
    generate_resampling_weights,
    multiplier_bootstrap,
    weighted_bootstrap,
)
from drdid.exceptions import BootstrapWarning, NonconvergenceError
from drdid.prep import DiDData
from drdid.utils import compute_inf_func_se
from drdid.variants import EstimatorVariant, run_variant


class TestMultiplierWeights:
    """Tests for the multiplier distributions."""

    @pytest.mark.parametrize("weight_type", ["rademacher", "mammen", "webb"])
    def test_mean_zero_unit_variance(self, weight_type):
        rng = np.random.default_rng(0)
        v = _generate_multiplier_weights_batch(200, 1000, weight_type, rng)
        assert v.shape == (200, 1000)
        assert abs(v.mean()) < 0.01
        assert abs(v.var() - 1.0) < 0.02

    def test_rademacher_values(self):
        v = _generate_multiplier_weights_batch(10, 50, "rademacher", np.random.default_rng(1))
        assert set(np.unique(v)) <= {-1.0, 1.0}

    def test_invalid_type(self):
        with pytest.raises(ValueError, match="weight_type"):
            _generate_multiplier_weights_batch(1, 1, "gaussian", np.random.default_rng(0))

    def test_resampling_weights_positive(self):
        w = generate_resampling_weights(5000, np.random.default_rng(2))
        assert np.all(w > 0)
        assert w.mean() == pytest.approx(1.0, abs=0.05)


class TestMultiplierBootstrap:
    """Tests for multiplier_bootstrap."""

    def test_draws_centered_on_att(self, panel_data):
        est = run_variant(EstimatorVariant.DR_PANEL_NORM, panel_data)
        draws = multiplier_bootstrap(est.att, est.inf_func, nboot=999,
                                     rng=np.random.default_rng(3))
        assert draws.shape == (999,)
        assert np.all(np.isfinite(draws))
        se = compute_inf_func_se(est.inf_func)
        assert abs(draws.mean() - est.att) < 5 * se / np.sqrt(999)

    def test_se_matches_analytical(self, panel_data):
        est = run_variant(EstimatorVariant.IPW_PANEL_NORM, panel_data)
        draws = multiplier_bootstrap(est.att, est.inf_func, nboot=999,
                                     rng=np.random.default_rng(4))
        se_boot = np.std(draws, ddof=1)
        assert se_boot == pytest.approx(compute_inf_func_se(est.inf_func), rel=0.1)

    def test_reproducible_with_seeded_generator(self):
        inf = np.random.default_rng(0).normal(size=100)
        a = multiplier_bootstrap(0.5, inf, nboot=50, rng=np.random.default_rng(11))
        b = multiplier_bootstrap(0.5, inf, nboot=50, rng=np.random.default_rng(11))
        np.testing.assert_array_equal(a, b)

    def test_batches_cover_all_draws(self):
        inf = np.random.default_rng(0).normal(size=30)
        draws = multiplier_bootstrap(0.0, inf, nboot=25, batch_size=10,
                                     rng=np.random.default_rng(5))
        assert draws.shape == (25,)
        assert np.all(np.isfinite(draws))

    def test_multiplier_does_not_refit(self, panel_data):
        """A constant influence function gives constant draws under Rademacher."""
        draws = multiplier_bootstrap(2.0, np.zeros(panel_data.n), nboot=20,
                                     rng=np.random.default_rng(0))
        np.testing.assert_array_equal(draws, 2.0)


class TestWeightedBootstrap:
    """Tests for weighted_bootstrap."""

    def test_draws(self, panel_data):
        est = run_variant(EstimatorVariant.IPW_PANEL_NORM, panel_data)
        draws = weighted_bootstrap(EstimatorVariant.IPW_PANEL_NORM, panel_data,
                                   nboot=99, rng=np.random.default_rng(6))
        assert draws.shape == (99,)
        assert np.all(np.isfinite(draws))
        se_boot = np.std(draws, ddof=1)
        se = compute_inf_func_se(est.inf_func)
        assert 0.6 * se < se_boot < 1.6 * se

    @pytest.mark.parametrize(
        "variant",
        [EstimatorVariant.IPW_PANEL_NORM, EstimatorVariant.DR_PANEL_NORM],
    )
    def test_benign_data_has_no_failed_replicates(self, panel_data, variant):
        draws = weighted_bootstrap(variant, panel_data, nboot=200,
                                   rng=np.random.default_rng(1))
        assert np.sum(np.isnan(draws)) == 0

    def test_independent_of_n_jobs(self, rc_data):
        variant = EstimatorVariant.DR_RC_NORM
        serial = weighted_bootstrap(variant, rc_data, nboot=20,
                                    rng=np.random.default_rng(7), n_jobs=1)
        threaded = weighted_bootstrap(variant, rc_data, nboot=20,
                                      rng=np.random.default_rng(7), n_jobs=4)
        np.testing.assert_allclose(serial, threaded, rtol=1e-10)

    def test_failed_replicates_are_nan(self):
        """A separating covariate makes every replicate fail."""
        rng = np.random.default_rng(8)
        n = 60
        x = rng.normal(size=n)
        D = (x > 0).astype(float)
        data = DiDData(
            panel=True,
            D=D,
            covariates=np.column_stack([np.ones(n), x]),
            i_weights=np.ones(n),
            covariate_names=["(Intercept)", "x"],
            y1=rng.normal(size=n),
            y0=rng.normal(size=n),
        )
        draws = weighted_bootstrap(EstimatorVariant.IPW_PANEL_NORM, data,
                                   nboot=10, rng=np.random.default_rng(9))
        assert draws.shape == (10,)
        assert np.all(np.isnan(draws))
        with pytest.raises(NonconvergenceError):
            bootstrap_inference(0.0, draws)


class TestBootstrapInference:
    """Tests for bootstrap_inference."""

    def test_normal_interval(self):
        draws = np.random.default_rng(0).normal(1.0, 0.2, 2000)
        res = bootstrap_inference(1.0, draws, alpha=0.05)
        assert res.se == pytest.approx(np.std(draws, ddof=1))
        lower, upper = res.conf_int
        assert lower == pytest.approx(1.0 - 1.959964 * res.se, rel=1e-5)
        assert upper == pytest.approx(1.0 + 1.959964 * res.se, rel=1e-5)
        assert res.n_failed == 0

    def test_percentile_interval(self):
        draws = np.arange(1, 1001, dtype=float)
        res = bootstrap_inference(500.0, draws, alpha=0.1, ci_type="percentile")
        np.testing.assert_allclose(res.conf_int, np.quantile(draws, [0.05, 0.95]))

    def test_nan_draws_ignored(self):
        draws = np.r_[np.random.default_rng(1).normal(size=95), np.full(5, np.nan)]
        res = bootstrap_inference(0.0, draws)
        assert res.n_failed == 5
        assert np.isfinite(res.se)
        assert res.draws.shape == (100,)

    def test_too_many_failures_warns(self):
        draws = np.r_[np.random.default_rng(2).normal(size=80), np.full(20, np.nan)]
        with pytest.warns(BootstrapWarning, match="20 of 100"):
            bootstrap_inference(0.0, draws, max_failed_frac=0.1)

    def test_all_failed_raises(self):
        with pytest.raises(NonconvergenceError):
            bootstrap_inference(0.0, np.full(10, np.nan))

    def test_invalid_ci_type(self):
        with pytest.raises(ValueError, match="ci_type"):
            bootstrap_inference(0.0, np.ones(10), ci_type="bca")
