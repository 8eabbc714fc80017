"""
Pytest configuration and shared fixtures for drdid tests.

Simulated two-period data sets with selection on observables, in long
format and pre-processed into estimator arrays.
"""

import numpy as np
import pytest

from drdid.prep import preprocess_drdid
from drdid.prep_dgp import generate_drdid_data


# =============================================================================
# Simulated Data Fixtures
# =============================================================================


@pytest.fixture
def panel_df():
    """Balanced two-period panel, 1000 units, true ATT = 1."""
    return generate_drdid_data(n_units=1000, panel=True, att=1.0, seed=123)


@pytest.fixture
def rc_df():
    """Repeated cross sections, 2000 observations, true ATT = 1."""
    return generate_drdid_data(n_units=2000, panel=False, att=1.0, seed=321)


@pytest.fixture
def panel_data(panel_df):
    """Pre-processed panel arrays with covariates x1 and x2."""
    return preprocess_drdid(
        panel_df, yname="y", tname="period", dname="d", idname="id",
        xformla="~ x1 + x2", panel=True,
    )


@pytest.fixture
def rc_data(rc_df):
    """Pre-processed repeated cross-section arrays with covariates x1 and x2."""
    return preprocess_drdid(
        rc_df, yname="y", tname="period", dname="d",
        xformla="~ x1 + x2", panel=False,
    )


@pytest.fixture
def weighted_panel_data():
    """Panel arrays with non-uniform sampling weights."""
    df = generate_drdid_data(n_units=800, panel=True, sampling_weights=True, seed=7)
    return preprocess_drdid(
        df, yname="y", tname="period", dname="d", idname="id",
        xformla=["x1", "x2"], panel=True, weightsname="w",
    )


@pytest.fixture
def weighted_rc_data():
    """Repeated cross-section arrays with non-uniform sampling weights."""
    df = generate_drdid_data(n_units=1500, panel=False, sampling_weights=True, seed=8)
    return preprocess_drdid(
        df, yname="y", tname="period", dname="d",
        xformla=["x1", "x2"], panel=False, weightsname="w",
    )


@pytest.fixture
def randomized_panel():
    """Panel arrays where treatment is independent of the covariates."""
    rng = np.random.default_rng(99)
    n = 600
    x = rng.normal(size=n)
    d = rng.binomial(1, 0.4, n).astype(float)
    y0 = x + rng.normal(size=n)
    y1 = y0 + 1.0 + 0.5 * x + 2.0 * d + rng.normal(size=n)
    X = np.column_stack([np.ones(n), x])
    return {"y1": y1, "y0": y0, "D": d, "X": X}
