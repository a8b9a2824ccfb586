from __future__ import annotations

import numpy as np
import pandas as pd
from scipy import stats

from .cox import fit_cox
from .discrimination import MetricEstimate
from .errors import InsufficientDataError
from .features import add_spline_columns
from .survival import StepCurve, ipcw_weights, kaplan_meier

_EPS = 1e-12


def _as_arrays(time, event, surv_pred) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    time = np.asarray(time, dtype=float)
    event = np.asarray(event, dtype=int)
    surv_pred = np.asarray(surv_pred, dtype=float)
    if not (time.shape == event.shape == surv_pred.shape):
        raise ValueError("time, event and surv_pred must have the same length")
    return time, event, surv_pred


def _events_by(time: np.ndarray, event: np.ndarray, horizon: float) -> np.ndarray:
    return (time <= horizon) & (event == 1)


def cloglog_risk(surv_pred) -> np.ndarray:
    """Complementary log-log of the predicted risk 1 - S, i.e. log(-log S)."""
    s = np.clip(np.asarray(surv_pred, dtype=float), _EPS, 1.0 - _EPS)
    return np.log(-np.log(s))


def _truncated_outcome(time: np.ndarray, event: np.ndarray, horizon: float) -> pd.DataFrame:
    return pd.DataFrame(
        {
            "time": np.minimum(time, horizon),
            "event": _events_by(time, event, horizon).astype(int),
        }
    )


def oe_ratio(time, event, surv_pred, horizon: float, level: float = 0.95) -> MetricEstimate:
    """Observed (1 - KM) over expected (mean predicted risk) event proportion at ``horizon``."""
    time, event, surv_pred = _as_arrays(time, event, surv_pred)
    n_events = int(_events_by(time, event, horizon).sum())
    if n_events == 0:
        raise InsufficientDataError(f"No events at or before horizon {horizon}; O/E undefined")
    observed = 1.0 - kaplan_meier(time, event).at(horizon)
    expected = float(np.mean(1.0 - surv_pred))
    if expected <= 0:
        raise InsufficientDataError("Expected event proportion is zero; O/E undefined")

    oe = observed / expected
    z = stats.norm.ppf(0.5 + level / 2)
    se_log = float(np.sqrt(1.0 / n_events))
    return MetricEstimate(
        estimate=float(oe),
        se=se_log * oe,
        n=n_events,
        lower=float(oe * np.exp(-z * se_log)),
        upper=float(oe * np.exp(z * se_log)),
    )


def weak_calibration(
    time,
    event,
    surv_pred,
    expected,
    horizon: float,
) -> tuple[MetricEstimate, MetricEstimate]:
    """Calibration intercept and slope at ``horizon``.

    The slope is the coefficient of log(-log S(t|x)) in a Cox model for the
    outcome truncated at the horizon. The intercept is the Poisson MLE
    log(O / sum(H_i)) where H_i is each subject's predicted cumulative hazard
    over its truncated follow-up, rescaled by the slope on the log scale;
    ``expected`` holds the unscaled H_i.
    """
    time, event, surv_pred = _as_arrays(time, event, surv_pred)
    expected = np.asarray(expected, dtype=float)
    outcome = _truncated_outcome(time, event, horizon)
    n_events = int(outcome["event"].sum())
    if n_events == 0:
        raise InsufficientDataError(f"No events at or before horizon {horizon}; calibration undefined")
    if np.all(surv_pred >= 1.0):
        raise InsufficientDataError("Predicted survival is 1 for every subject; calibration undefined")

    cll = cloglog_risk(surv_pred)
    frame = outcome.assign(cll=cll)
    model = fit_cox(frame, ["cll"])
    slope = float(model.coefficients[0])
    slope_se = float(model.standard_errors[0])

    # H(min(T, t)|x) / H(t|x) carries the baseline shape over follow-up
    shape = expected / np.exp(cll)
    rescaled = np.exp(slope * cll) * shape
    intercept = float(np.log(n_events / np.sum(rescaled)))
    intercept_se = float(np.sqrt(1.0 / n_events))

    return (
        MetricEstimate(estimate=intercept, se=intercept_se, n=n_events),
        MetricEstimate(estimate=slope, se=slope_se, n=n_events),
    )


def moderate_calibration(
    time,
    event,
    surv_pred,
    horizon: float,
    n_knots: int = 3,
) -> dict[str, MetricEstimate]:
    """ICI, E50 and E90 from a flexible calibration curve.

    The observed risk at the horizon is smoothed by a Cox model on a restricted
    cubic spline of log(-log S(t|x)) and compared with each subject's own
    predicted risk.
    """
    time, event, surv_pred = _as_arrays(time, event, surv_pred)
    outcome = _truncated_outcome(time, event, horizon)
    n_events = int(outcome["event"].sum())
    if n_events == 0:
        raise InsufficientDataError(f"No events at or before horizon {horizon}; calibration curve undefined")

    frame, spline_cols = add_spline_columns(outcome.assign(cll=cloglog_risk(surv_pred)), "cll", n_knots)
    model = fit_cox(frame, ["cll", *spline_cols])
    observed = 1.0 - model.survival_probability(frame, horizon)
    diff = np.abs(observed - (1.0 - surv_pred))

    return {
        "ici": MetricEstimate(estimate=float(np.mean(diff)), n=n_events),
        "e50": MetricEstimate(estimate=float(np.median(diff)), n=n_events),
        "e90": MetricEstimate(estimate=float(np.quantile(diff, 0.9)), n=n_events),
    }


def brier_contributions(
    time,
    event,
    surv_pred,
    horizon: float,
    censoring: StepCurve | None = None,
) -> np.ndarray:
    """Per-subject IPCW-weighted squared residuals at ``horizon``.

    Events at or before the horizon contribute S(t|x)^2 / G(T-), subjects still
    at risk contribute (1 - S(t|x))^2 / G(t), earlier censorings contribute 0.
    """
    time, event, surv_pred = _as_arrays(time, event, surv_pred)
    cases = _events_by(time, event, horizon)
    controls = time > horizon
    if not cases.any():
        raise InsufficientDataError(f"No events at or before horizon {horizon}; Brier score undefined")
    if censoring is None:
        censoring = kaplan_meier(time, event, reverse=True)

    terms = np.zeros(time.size)
    terms[cases] = surv_pred[cases] ** 2 * ipcw_weights(censoring, time[cases], left=True)
    if controls.any():
        terms[controls] = (1.0 - surv_pred[controls]) ** 2 * ipcw_weights(censoring, horizon)[0]
    return terms


def brier_score(
    time,
    event,
    surv_pred,
    horizon: float,
    censoring: StepCurve | None = None,
) -> MetricEstimate:
    """Censoring-weighted Brier score (Graf et al.) averaged over all subjects."""
    terms = brier_contributions(time, event, surv_pred, horizon, censoring)
    n = terms.size
    brier = float(np.mean(terms))
    se = float(np.sqrt(np.sum(((terms - brier) / n) ** 2)))
    return MetricEstimate(estimate=brier, se=se, n=n)


def null_survival(time, event, horizon: float) -> float:
    """Covariate-free (Kaplan-Meier) survival at ``horizon``."""
    return float(kaplan_meier(time, event).at(horizon))


def scaled_brier(
    time,
    event,
    surv_pred,
    horizon: float,
    censoring: StepCurve | None = None,
) -> MetricEstimate:
    """Index of prediction accuracy, 1 - Brier(model) / Brier(null); negative values are kept."""
    time, event, surv_pred = _as_arrays(time, event, surv_pred)
    if censoring is None:
        censoring = kaplan_meier(time, event, reverse=True)
    terms = brier_contributions(time, event, surv_pred, horizon, censoring)
    null_pred = np.full(time.size, null_survival(time, event, horizon))
    null_terms = brier_contributions(time, event, null_pred, horizon, censoring)

    n = terms.size
    b_model = float(np.mean(terms))
    b_null = float(np.mean(null_terms))
    if b_null <= 0:
        raise InsufficientDataError("Null-model Brier score is zero; IPA undefined")

    ipa = 1.0 - b_model / b_null
    influence = -((terms - b_model) / b_null - b_model * (null_terms - b_null) / b_null**2) / n
    return MetricEstimate(estimate=float(ipa), se=float(np.sqrt(np.sum(influence**2))), n=n)
