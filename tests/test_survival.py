from __future__ import annotations

import numpy as np
import pytest

from survival_validation.errors import DegenerateWeightError, InsufficientDataError
from survival_validation.survival import ipcw_weights, kaplan_meier, median_follow_up


def test_kaplan_meier_hand_computed(tiny_cohort):
    km = kaplan_meier(tiny_cohort["time"], tiny_cohort["event"])

    assert km.at(0.5) == pytest.approx(1.0)
    assert km.at(1.0) == pytest.approx(0.8)
    assert km.at(2.5) == pytest.approx(0.8)
    assert km.at(3.0) == pytest.approx(0.8 * 2 / 3)
    assert km.at(5.0) == pytest.approx(0.0)
    assert km.variance_at(1.0) == pytest.approx(0.032)


def test_kaplan_meier_holds_last_level_without_extrapolation():
    km = kaplan_meier([1.0, 2.0, 3.0], [1, 1, 0])
    assert km.at(3.0) == pytest.approx(1 / 3)
    assert km.at(100.0) == pytest.approx(1 / 3)


def test_left_limit_is_value_before_jump(tiny_cohort):
    km = kaplan_meier(tiny_cohort["time"], tiny_cohort["event"])
    assert km.at_left(1.0) == pytest.approx(1.0)
    assert km.at_left(3.0) == pytest.approx(0.8)


def test_vectorised_evaluation(tiny_cohort):
    km = kaplan_meier(tiny_cohort["time"], tiny_cohort["event"])
    np.testing.assert_allclose(km.at([0.0, 1.0, 3.5]), [1.0, 0.8, 0.8 * 2 / 3])


def test_reverse_kaplan_meier_is_censoring_distribution(tiny_cohort):
    g = kaplan_meier(tiny_cohort["time"], tiny_cohort["event"], reverse=True)
    assert g.reverse
    assert g.at(1.5) == pytest.approx(1.0)
    assert g.at(2.0) == pytest.approx(0.75)
    assert g.at(4.0) == pytest.approx(0.375)


def test_survival_is_non_increasing(signal_cohort):
    km = kaplan_meier(signal_cohort["time"], signal_cohort["event"])
    assert np.all(np.diff(km.survival) <= 0)
    assert np.all((km.survival >= 0) & (km.survival <= 1))


def test_confidence_interval_brackets_estimate(signal_cohort):
    km = kaplan_meier(signal_cohort["time"], signal_cohort["event"])
    lo, hi = km.confidence_interval(3.0)
    assert lo < km.at(3.0) < hi


def test_median_and_follow_up(tiny_cohort):
    km = kaplan_meier(tiny_cohort["time"], tiny_cohort["event"])
    assert km.median() == pytest.approx(5.0)
    assert median_follow_up(tiny_cohort["time"], tiny_cohort["event"]) == pytest.approx(4.0)


def test_ipcw_weights_and_zero_censoring_survival(tiny_cohort):
    g = kaplan_meier(tiny_cohort["time"], tiny_cohort["event"], reverse=True)
    np.testing.assert_allclose(ipcw_weights(g, [2.0, 4.0]), [1 / 0.75, 1 / 0.375])

    g_zero = kaplan_meier([1.0, 2.0], [1, 0], reverse=True)
    with pytest.raises(DegenerateWeightError):
        ipcw_weights(g_zero, 3.0)


def test_empty_input_rejected():
    with pytest.raises(InsufficientDataError):
        kaplan_meier([], [])
