from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from survival_validation.cohort import (
    apply_administrative_censoring,
    load_cohort,
    standardize_cohort,
    summarize_cohort,
    validate_cohort,
)
from survival_validation.errors import CohortError
from survival_validation.resampling import bootstrap_indices, bootstrap_sample, replicate_seed


def test_load_and_standardize(tmp_path):
    raw = pd.DataFrame({"patid": [10, 11], "os_years": [1.5, 2.0], "dead": [1, 0], "age": [60, 70]})
    path = tmp_path / "cohort.tsv"
    raw.to_csv(path, sep="\t", index=False)

    df = standardize_cohort(load_cohort(path), time_col="os_years", event_col="dead", id_col="patid")
    assert {"id", "time", "event", "age"} <= set(df.columns)
    assert list(df["id"]) == [10, 11]


def test_missing_id_column_generated():
    df = standardize_cohort(pd.DataFrame({"time": [1.0, 2.0], "event": [0, 1]}))
    assert list(df["id"]) == [1, 2]


def test_missing_file():
    with pytest.raises(FileNotFoundError):
        load_cohort("/nonexistent/cohort.csv")


@pytest.mark.parametrize(
    "patch",
    [
        {"time": [0.0, 1.0, 2.0]},
        {"time": [np.nan, 1.0, 2.0]},
        {"event": [0, 2, 1]},
        {"id": [1, 1, 2]},
        {"x": [0.1, np.nan, 0.3]},
        {"x": ["a", "b", "c"]},
    ],
)
def test_invalid_cohorts_rejected(patch):
    df = pd.DataFrame({"id": [1, 2, 3], "time": [1.0, 2.0, 3.0], "event": [1, 0, 1], "x": [0.1, 0.2, 0.3]})
    df = df.assign(**patch)
    with pytest.raises(CohortError):
        validate_cohort(df, ["x"])


def test_missing_covariate_column(tiny_cohort):
    with pytest.raises(CohortError):
        validate_cohort(tiny_cohort, ["age"])


def test_administrative_censoring(tiny_cohort):
    out = apply_administrative_censoring(tiny_cohort, 3.5)
    assert list(out["time"]) == [1.0, 2.0, 3.0, 3.5, 3.5]
    assert list(out["event"]) == [1, 0, 1, 0, 0]
    assert apply_administrative_censoring(tiny_cohort, None).equals(tiny_cohort)


def test_summarize_cohort(tiny_cohort):
    s = summarize_cohort(tiny_cohort, horizon=3.5)
    assert s == {"n": 5, "events": 3, "events_by_horizon": 2, "at_risk_beyond_horizon": 2, "median_follow_up": 4.0}


def test_bootstrap_sample_keeps_duplicates_as_rows(signal_cohort):
    rng = np.random.default_rng(replicate_seed(42, 1))
    sample = bootstrap_sample(signal_cohort, rng)
    assert len(sample) == len(signal_cohort)
    assert sample["id"].duplicated().any()
    assert list(sample.index) == list(range(len(sample)))


def test_bootstrap_indices_reproducible():
    a = bootstrap_indices(50, np.random.default_rng(replicate_seed(7, 3)))
    b = bootstrap_indices(50, np.random.default_rng(10))
    np.testing.assert_array_equal(a, b)
    with pytest.raises(ValueError):
        bootstrap_indices(0, np.random.default_rng(0))
