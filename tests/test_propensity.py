"""Tests for the trust-region logistic propensity score fit."""

import warnings

import numpy as np
import pytest

from drdid.exceptions import (
    ConvergenceWarning,
    DegeneratePropensityError,
    NonconvergenceError,
    SingularDesignError,
)
from drdid.propensity import PSCORE_EPS, fit_propensity_score


@pytest.fixture
def logit_data():
    """Logistic design with known coefficients."""
    rng = np.random.default_rng(42)
    n = 2000
    X = np.column_stack([np.ones(n), rng.normal(size=n), rng.normal(size=n)])
    beta_true = np.array([-0.3, 0.8, -0.5])
    p = 1.0 / (1.0 + np.exp(-X @ beta_true))
    D = (rng.uniform(size=n) < p).astype(float)
    return X, D, beta_true


class TestFitPropensityScore:
    """Tests for fit_propensity_score."""

    def test_converges(self, logit_data):
        X, D, _ = logit_data
        fit = fit_propensity_score(D, X)
        assert fit.converged
        assert fit.n_iter <= 100

    def test_benign_fits_converge_without_warning(self):
        for seed in range(50):
            rng = np.random.default_rng(seed)
            n = 500
            X = np.column_stack([np.ones(n), rng.normal(size=n)])
            D = (rng.uniform(size=n) < 1.0 / (1.0 + np.exp(-0.5 * X[:, 1]))).astype(float)
            w = rng.exponential(1.0, size=n)
            with warnings.catch_warnings():
                warnings.simplefilter("error", ConvergenceWarning)
                fit = fit_propensity_score(D, X)
                fit_weighted = fit_propensity_score(D, X, w, strict=True)
            assert fit.converged
            assert fit_weighted.converged

    def test_recovers_coefficients(self, logit_data):
        X, D, beta_true = logit_data
        fit = fit_propensity_score(D, X)
        np.testing.assert_allclose(fit.coef, beta_true, atol=0.2)

    def test_score_equations_hold(self, logit_data):
        """At the MLE the mean weighted score is zero."""
        X, D, _ = logit_data
        fit = fit_propensity_score(D, X)
        np.testing.assert_allclose(fit.score.mean(axis=0), 0.0, atol=1e-8)

    def test_pscore_strictly_inside_unit_interval(self, logit_data):
        X, D, _ = logit_data
        fit = fit_propensity_score(D, X)
        assert np.all(fit.pscore >= PSCORE_EPS)
        assert np.all(fit.pscore <= 1 - PSCORE_EPS)

    def test_intercept_only_matches_share(self):
        rng = np.random.default_rng(0)
        D = rng.binomial(1, 0.3, 500).astype(float)
        w = rng.uniform(0.5, 2.0, 500)
        fit = fit_propensity_score(D, np.ones((500, 1)), w)
        expected = np.sum(w * D) / np.sum(w)
        np.testing.assert_allclose(fit.pscore, expected, rtol=1e-8)

    def test_linear_rep_shape_and_mean(self, logit_data):
        X, D, _ = logit_data
        fit = fit_propensity_score(D, X)
        lin = fit.linear_rep()
        assert lin.shape == X.shape
        np.testing.assert_allclose(lin.mean(axis=0), 0.0, atol=1e-8)

    def test_hessian_inv_is_inverse_information(self, logit_data):
        X, D, _ = logit_data
        fit = fit_propensity_score(D, X)
        p = 1.0 / (1.0 + np.exp(-X @ fit.coef))
        info = (X * (p * (1 - p))[:, np.newaxis]).T @ X / len(D)
        np.testing.assert_allclose(fit.hessian_inv @ info, np.eye(3), atol=1e-8)

    def test_zero_weight_units_are_ignored(self, logit_data):
        X, D, _ = logit_data
        w = np.ones(len(D))
        w[:500] = 0.0
        fit_weighted = fit_propensity_score(D, X, w)
        fit_subset = fit_propensity_score(D[500:], X[500:])
        np.testing.assert_allclose(fit_weighted.coef, fit_subset.coef, atol=1e-6)


class TestPropensityFailures:
    """Degenerate, singular and nonconvergent propensity fits."""

    def test_perfect_separation_raises(self):
        rng = np.random.default_rng(1)
        n = 200
        x = rng.normal(size=n)
        D = (x > 0).astype(float)
        X = np.column_stack([np.ones(n), x])
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", ConvergenceWarning)
            with pytest.raises(DegeneratePropensityError):
                fit_propensity_score(D, X)

    def test_collinear_covariates_raise(self):
        rng = np.random.default_rng(2)
        n = 300
        x = rng.normal(size=n)
        X = np.column_stack([np.ones(n), x, 2 * x])
        D = rng.binomial(1, 0.5, n).astype(float)
        with pytest.raises(SingularDesignError, match="rank-deficient"):
            fit_propensity_score(D, X)

    def test_singular_design_is_linalg_error(self):
        n = 50
        X = np.column_stack([np.ones(n), np.ones(n)])
        D = np.r_[np.ones(25), np.zeros(25)]
        with pytest.raises(np.linalg.LinAlgError):
            fit_propensity_score(D, X)

    def test_nonconvergence_warns(self, logit_data):
        X, D, _ = logit_data
        with pytest.warns(ConvergenceWarning, match="did not converge"):
            fit = fit_propensity_score(D, X, max_iter=1)
        assert not fit.converged

    def test_nonconvergence_strict_raises(self, logit_data):
        X, D, _ = logit_data
        with pytest.raises(NonconvergenceError):
            fit_propensity_score(D, X, max_iter=1, strict=True)
