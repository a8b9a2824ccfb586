from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from sklearn.metrics import roc_auc_score

from .errors import InsufficientDataError
from .survival import StepCurve, ipcw_weights, kaplan_meier


@dataclass(frozen=True)
class MetricEstimate:
    """Point estimate with an (optional) analytic standard error.

    ``lower``/``upper`` are only set by metrics whose interval is not a
    symmetric Wald interval (e.g. the log-scale O/E interval).
    """

    estimate: float
    se: float = float("nan")
    n: int = 0
    lower: float = float("nan")
    upper: float = float("nan")


def _as_arrays(time, event, marker) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    time = np.asarray(time, dtype=float)
    event = np.asarray(event, dtype=int)
    marker = np.asarray(marker, dtype=float)
    if not (time.shape == event.shape == marker.shape):
        raise ValueError("time, event and marker must have the same length")
    return time, event, marker


def _pairwise_concordance(
    time: np.ndarray,
    event: np.ndarray,
    marker: np.ndarray,
    pair_weight: np.ndarray,
    tau: float | None = None,
) -> MetricEstimate:
    """Weighted concordance over comparable pairs with an infinitesimal jackknife SE.

    Subject i anchors the pairs (i, j) where i had the event and j was still
    under observation afterwards. ``pair_weight[i]`` weights every pair anchored
    by i. Higher marker means higher risk.
    """
    n = time.size
    num = 0.0
    den = 0.0
    n_pairs = 0
    infl_num = np.zeros(n)
    infl_den = np.zeros(n)

    anchors = np.flatnonzero(event == 1)
    if tau is not None:
        anchors = anchors[time[anchors] < tau]

    for i in anchors:
        later = (time > time[i]) | ((time == time[i]) & (event == 0))
        k = int(later.sum())
        if k == 0:
            continue
        diff = marker[i] - marker[later]
        score = (diff > 0).astype(float) + 0.5 * (diff == 0)
        w = pair_weight[i]
        s = float(score.sum())

        num += w * s
        den += w * k
        n_pairs += k
        infl_num[i] += w * s
        infl_den[i] += w * k
        infl_num[later] += w * score
        infl_den[later] += w

    if n_pairs < 2 or den <= 0:
        raise InsufficientDataError(f"Only {n_pairs} comparable pairs; concordance undefined")

    c = num / den
    influence = (infl_num - c * infl_den) / den
    se = float(np.sqrt(np.sum(influence**2)))
    return MetricEstimate(estimate=float(c), se=se, n=n_pairs)


def harrell_c(time, event, marker) -> MetricEstimate:
    """Harrell's concordance; ties in the marker earn half credit."""
    time, event, marker = _as_arrays(time, event, marker)
    return _pairwise_concordance(time, event, marker, np.ones(time.size))


def uno_c(
    time,
    event,
    marker,
    censoring: StepCurve | None = None,
    tau: float | None = None,
) -> MetricEstimate:
    """Uno's concordance: comparable pairs weighted by 1/G(t-)^2 at the shorter time."""
    time, event, marker = _as_arrays(time, event, marker)
    if censoring is None:
        censoring = kaplan_meier(time, event, reverse=True)

    weights = np.zeros(time.size)
    anchors = event == 1
    if tau is not None:
        anchors &= time < tau
    if anchors.any():
        weights[anchors] = ipcw_weights(censoring, time[anchors], left=True) ** 2
    return _pairwise_concordance(time, event, marker, weights, tau=tau)


def uno_auc(
    time,
    event,
    marker,
    horizon: float,
    censoring: StepCurve | None = None,
) -> MetricEstimate:
    """Cumulative/dynamic AUC at ``horizon`` with marginal (Kaplan-Meier) IPCW weights."""
    time, event, marker = _as_arrays(time, event, marker)
    cases = (time <= horizon) & (event == 1)
    controls = time > horizon
    if not cases.any():
        raise InsufficientDataError(f"No events at or before horizon {horizon}; AUC undefined")
    if not controls.any():
        raise InsufficientDataError(f"No subjects at risk beyond horizon {horizon}; AUC undefined")
    if censoring is None:
        censoring = kaplan_meier(time, event, reverse=True)

    w_case = ipcw_weights(censoring, time[cases], left=True)
    w_control = float(ipcw_weights(censoring, horizon)[0])

    keep = cases | controls
    labels = cases[keep].astype(int)
    weights = np.where(cases, 0.0, w_control)
    weights[cases] = w_case
    auc = roc_auc_score(labels, marker[keep], sample_weight=weights[keep])

    # Infinitesimal jackknife over case/control pairs; control weight cancels.
    diff = marker[cases][:, None] - marker[controls][None, :]
    score = (diff > 0).astype(float) + 0.5 * (diff == 0)
    n_controls = int(controls.sum())
    den = float(w_case.sum()) * n_controls
    infl = np.zeros(time.size)
    infl[cases] = (w_case * score.sum(axis=1) - auc * w_case * n_controls) / den
    infl[controls] = (w_case @ score - auc * w_case.sum()) / den
    se = float(np.sqrt(np.sum(infl**2)))
    return MetricEstimate(estimate=float(auc), se=se, n=int(cases.sum()) * n_controls)
