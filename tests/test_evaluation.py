from __future__ import annotations

import numpy as np
import pytest

from survival_validation import evaluation
from survival_validation.config import METRIC_NAMES
from survival_validation.errors import MetricUndefinedError
from survival_validation.cox import fit_cox
from survival_validation.evaluation import (
    DatasetRole,
    evaluate_model,
    percentile_interval,
    records_to_frame,
)


@pytest.fixture
def model(signal_cohort):
    return fit_cox(signal_cohort, ["x1", "x2"])


def test_apparent_evaluation_reports_all_metrics(model, signal_cohort):
    records = evaluate_model(model, signal_cohort, DatasetRole.APPARENT, 4.95, METRIC_NAMES)

    assert [r.metric for r in records] == list(METRIC_NAMES)
    assert all(r.ok for r in records)
    assert all(r.role == DatasetRole.APPARENT for r in records)
    by_name = {r.metric: r for r in records}
    assert by_name["harrell_c"].lower < by_name["harrell_c"].estimate < by_name["harrell_c"].upper
    assert np.isnan(by_name["harrell_c"].horizon)
    assert by_name["brier"].horizon == pytest.approx(4.95)
    assert np.isnan(by_name["ici"].se)


def test_bootstrap_roles_carry_no_uncertainty(model, signal_cohort):
    records = evaluate_model(model, signal_cohort, "bootstrap_internal", 4.95, ["harrell_c", "brier"])
    for r in records:
        assert r.role == DatasetRole.BOOTSTRAP_INTERNAL
        assert np.isfinite(r.estimate)
        assert np.isnan(r.se) and np.isnan(r.lower) and np.isnan(r.upper)


def test_no_events_before_horizon_gives_nan_with_status(model, signal_cohort):
    horizon = float(signal_cohort["time"].min()) / 2
    messages = []
    records = evaluate_model(
        model,
        signal_cohort,
        DatasetRole.VALIDATION,
        horizon,
        ["harrell_c", "uno_auc", "brier", "cal_slope"],
        logger=messages.append,
    )
    by_name = {r.metric: r for r in records}

    assert by_name["harrell_c"].ok
    for name in ["uno_auc", "brier", "cal_slope"]:
        assert np.isnan(by_name[name].estimate)
        assert by_name[name].status == "insufficient_data"
    assert len(messages) == 3


def test_generic_undefined_metric_status(model, signal_cohort, monkeypatch):
    def undefined(*args, **kwargs):
        raise MetricUndefinedError("no observed risk")

    monkeypatch.setattr(evaluation, "oe_ratio", undefined)
    records = evaluate_model(model, signal_cohort, DatasetRole.APPARENT, 4.95, ["harrell_c", "oe_ratio"])
    by_name = {r.metric: r for r in records}
    assert by_name["harrell_c"].ok
    assert by_name["oe_ratio"].status == "undefined"
    assert np.isnan(by_name["oe_ratio"].estimate)


def test_weak_calibration_metrics_share_one_fit(model, signal_cohort):
    records = evaluate_model(model, signal_cohort, DatasetRole.APPARENT, 4.95, ["cal_slope"])
    assert [r.metric for r in records] == ["cal_slope"]


def test_unknown_metric_rejected(model, signal_cohort):
    with pytest.raises(ValueError):
        evaluate_model(model, signal_cohort, DatasetRole.APPARENT, 4.95, ["accuracy"])


def test_records_to_frame(model, signal_cohort):
    frame = records_to_frame(evaluate_model(model, signal_cohort, DatasetRole.APPARENT, 4.95, ["uno_c", "ipa"]))
    assert list(frame["metric"]) == ["uno_c", "ipa"]
    assert set(frame["role"]) == {"apparent"}
    assert list(frame.columns)[:3] == ["metric", "role", "horizon"]
    assert records_to_frame([]).empty


def test_percentile_interval_ignores_nan():
    lo, hi = percentile_interval([np.nan, *np.arange(101.0)], level=0.9)
    assert lo == pytest.approx(5.0)
    assert hi == pytest.approx(95.0)
    assert np.isnan(percentile_interval([np.nan])[0])
