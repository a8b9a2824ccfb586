from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from survival_validation.errors import InsufficientDataError
from survival_validation.features import add_spline_columns, rcs_knots, restricted_cubic_spline
from survival_validation.simulation import simulate_exponential_cohort


def test_knots_at_default_quantiles():
    x = np.arange(101.0)
    np.testing.assert_allclose(rcs_knots(x, 3), [10.0, 50.0, 90.0])
    with pytest.raises(ValueError):
        rcs_knots(x, 2)


def test_knots_need_distinct_values():
    with pytest.raises(InsufficientDataError):
        rcs_knots(np.r_[np.zeros(50), np.ones(2)], 3)


def test_spline_is_zero_below_first_knot_and_linear_beyond_last():
    knots = np.array([0.0, 1.0, 2.0])
    x = np.array([-1.0, 0.0, 3.0, 4.0, 5.0])
    basis = restricted_cubic_spline(x, knots)
    assert basis.shape == (5, 1)
    assert basis[0, 0] == pytest.approx(0.0)
    assert basis[1, 0] == pytest.approx(0.0)
    # second difference vanishes in the linear tail
    assert basis[4, 0] - 2 * basis[3, 0] + basis[2, 0] == pytest.approx(0.0, abs=1e-9)


def test_add_spline_columns():
    df = pd.DataFrame({"age": np.linspace(30, 80, 40)})
    out, names = add_spline_columns(df, "age", n_knots=4)
    assert names == ["age_rcs1", "age_rcs2"]
    assert "age_rcs1" not in df.columns
    assert np.all(np.isfinite(out[names].to_numpy()))


def test_simulated_cohort_layout():
    df = simulate_exponential_cohort(n=50, beta=[0.5, -0.5], n_noise=2, seed=1)
    assert list(df.columns) == ["id", "time", "event", "x1", "x2", "x3", "x4"]
    assert (df["time"] > 0).all()
    assert set(df["event"]) <= {0, 1}
    df2 = simulate_exponential_cohort(n=50, beta=[0.5, -0.5], n_noise=2, seed=1)
    pd.testing.assert_frame_equal(df, df2)
