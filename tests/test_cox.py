from __future__ import annotations

import numpy as np
import pandas as pd
import pytest
from lifelines import CoxPHFitter

from survival_validation.cox import PREDICTION_KINDS, fit_cox
from survival_validation.errors import NonConvergenceError


def test_coefficients_match_lifelines(signal_cohort):
    model = fit_cox(signal_cohort, ["x1", "x2"])

    cph = CoxPHFitter().fit(signal_cohort[["x1", "x2", "time", "event"]], "time", "event")
    np.testing.assert_allclose(model.coefficients, cph.params_[["x1", "x2"]].to_numpy(), rtol=1e-6)
    np.testing.assert_allclose(model.standard_errors, cph.standard_errors_[["x1", "x2"]].to_numpy(), rtol=1e-6)
    assert model.ties == "efron"
    assert model.n_obs == 300
    assert model.n_events == int(signal_cohort["event"].sum())


def test_strong_covariate_recovered(signal_cohort):
    model = fit_cox(signal_cohort, ["x1", "x2"])
    assert 0.5 < model.coefficients[0] < 1.1
    assert abs(model.coefficients[1]) < 0.3


def test_predicted_survival_is_monotone_in_time(signal_cohort):
    model = fit_cox(signal_cohort, ["x1"])
    curve = model.survival_curve(signal_cohort.head(20), np.linspace(0.1, 9.0, 40))
    assert curve.shape == (20, 40)
    assert np.all(np.diff(curve, axis=1) <= 1e-12)
    assert np.all((curve > 0) & (curve <= 1))


def test_survival_at_zero_is_one_and_higher_risk_lower_survival(signal_cohort):
    model = fit_cox(signal_cohort, ["x1"])
    assert np.allclose(model.survival_probability(signal_cohort, 0.0), 1.0)

    grid = pd.DataFrame({"x1": [-1.0, 0.0, 1.0]})
    s = model.survival_probability(grid, 3.0)
    assert s[0] > s[1] > s[2]


def test_survival_matches_lifelines_prediction(signal_cohort):
    model = fit_cox(signal_cohort, ["x1"])
    cph = CoxPHFitter().fit(signal_cohort[["x1", "time", "event"]], "time", "event")
    # compare at an observed event time, where step and interpolated curves agree
    event_times = np.sort(signal_cohort.loc[signal_cohort["event"] == 1, "time"].to_numpy())
    t = float(event_times[event_times.size // 2])
    ours = model.survival_probability(signal_cohort.head(10), t)
    theirs = cph.predict_survival_function(signal_cohort[["x1"]].head(10), times=[t]).to_numpy().ravel()
    np.testing.assert_allclose(ours, theirs, rtol=1e-3)


def test_expected_events_uses_truncated_follow_up(signal_cohort):
    model = fit_cox(signal_cohort, ["x1"])
    expected = model.expected_events(signal_cohort, 5.0)
    surv5 = model.survival_probability(signal_cohort, 5.0)
    long = signal_cohort["time"].to_numpy() >= 5.0
    np.testing.assert_allclose(expected[long], -np.log(surv5[long]))
    assert np.all(expected[~long] <= -np.log(surv5[~long]) + 1e-12)


def test_predict_dispatch(signal_cohort):
    model = fit_cox(signal_cohort, ["x1"])
    assert set(PREDICTION_KINDS) == {"linear_predictor", "survival_at", "expected_event_count"}
    np.testing.assert_allclose(model.predict(signal_cohort), model.linear_predictor(signal_cohort))
    np.testing.assert_allclose(
        model.predict(signal_cohort, "survival_at", 2.0), model.survival_probability(signal_cohort, 2.0)
    )
    with pytest.raises(ValueError):
        model.predict(signal_cohort, "survival_at")
    with pytest.raises(ValueError):
        model.predict(signal_cohort, "hazard")


def test_fitted_model_is_immutable(signal_cohort):
    model = fit_cox(signal_cohort, ["x1"])
    with pytest.raises(ValueError):
        model.coefficients[0] = 0.0
    with pytest.raises(AttributeError):
        model.n_obs = 3


def test_summary_table(signal_cohort):
    table = fit_cox(signal_cohort, ["x1", "x2"]).summary()
    assert list(table.index) == ["x1", "x2"]
    assert table.loc["x1", "p_value"] < 0.001
    assert table.loc["x1", "hazard_ratio"] == pytest.approx(np.exp(table.loc["x1", "coef"]))


def test_constant_covariate_does_not_converge(signal_cohort):
    df = signal_cohort.assign(const=1.0)
    with pytest.raises(NonConvergenceError):
        fit_cox(df, ["x1", "const"])


def test_no_events_does_not_converge(signal_cohort):
    with pytest.raises(NonConvergenceError):
        fit_cox(signal_cohort.assign(event=0), ["x1"])


def test_missing_covariate_at_prediction(signal_cohort):
    model = fit_cox(signal_cohort, ["x1"])
    with pytest.raises(KeyError):
        model.linear_predictor(signal_cohort.drop(columns=["x1"]))
