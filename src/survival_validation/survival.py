from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from lifelines import KaplanMeierFitter
from scipy import stats

from .errors import DegenerateWeightError, InsufficientDataError


@dataclass(frozen=True)
class StepCurve:
    """Right-continuous product-limit survival curve over distinct observed times."""

    times: np.ndarray
    survival: np.ndarray
    at_risk: np.ndarray
    events: np.ndarray
    variance: np.ndarray
    reverse: bool = False

    def _index(self, t, side: str) -> np.ndarray:
        return np.searchsorted(self.times, np.asarray(t, dtype=float), side=side) - 1

    def at(self, t):
        """Survival probability at ``t`` (1 before the first time, last level after the last)."""
        idx = self._index(t, "right")
        values = np.where(idx >= 0, self.survival[np.maximum(idx, 0)], 1.0)
        return float(values) if np.ndim(values) == 0 else values

    def at_left(self, t):
        """Left limit S(t-), i.e. the value just before any jump at ``t``."""
        idx = self._index(t, "left")
        values = np.where(idx >= 0, self.survival[np.maximum(idx, 0)], 1.0)
        return float(values) if np.ndim(values) == 0 else values

    def variance_at(self, t):
        """Greenwood variance of the estimate at ``t``."""
        idx = self._index(t, "right")
        values = np.where(idx >= 0, self.variance[np.maximum(idx, 0)], 0.0)
        return float(values) if np.ndim(values) == 0 else values

    def confidence_interval(self, t: float, level: float = 0.95) -> tuple[float, float]:
        """Pointwise log(-log) confidence interval at a single time."""
        s = float(self.at(t))
        var = float(self.variance_at(t))
        if s <= 0.0 or s >= 1.0 or var <= 0.0:
            return s, s
        z = stats.norm.ppf(0.5 + level / 2)
        se_loglog = np.sqrt(var) / (s * abs(np.log(s)))
        lo = s ** np.exp(z * se_loglog)
        hi = s ** np.exp(-z * se_loglog)
        return float(lo), float(hi)

    def median(self) -> float:
        """Smallest time at which the curve drops to 0.5 or below (inf if never)."""
        below = np.flatnonzero(self.survival <= 0.5)
        if below.size == 0:
            return float("inf")
        return float(self.times[below[0]])


def kaplan_meier(time, event, reverse: bool = False) -> StepCurve:
    """Fit the product-limit estimator; ``reverse`` estimates the censoring distribution G."""
    time = np.asarray(time, dtype=float)
    event = np.asarray(event, dtype=int)
    if time.size == 0:
        raise InsufficientDataError("Cannot fit Kaplan-Meier curve on an empty cohort")
    observed = 1 - event if reverse else event

    kmf = KaplanMeierFitter()
    kmf.fit(time, event_observed=observed)
    table = kmf.event_table
    surv = kmf.survival_function_.iloc[:, 0].reindex(table.index).to_numpy(dtype=float)

    keep = table.index.to_numpy(dtype=float) > 0
    times = table.index.to_numpy(dtype=float)[keep]
    d = table["observed"].to_numpy(dtype=float)[keep]
    n = table["at_risk"].to_numpy(dtype=float)[keep]
    surv = surv[keep]

    # Greenwood; undefined once everybody at risk had the event
    with np.errstate(divide="ignore", invalid="ignore"):
        terms = np.where(n > d, d / (n * (n - d)), 0.0)
    variance = surv**2 * np.cumsum(terms)

    return StepCurve(
        times=times,
        survival=surv,
        at_risk=n.astype(int),
        events=d.astype(int),
        variance=variance,
        reverse=reverse,
    )


def median_follow_up(time, event) -> float:
    """Median potential follow-up from the reverse Kaplan-Meier estimator."""
    return kaplan_meier(time, event, reverse=True).median()


def ipcw_weights(censoring: StepCurve, t, left: bool = False) -> np.ndarray:
    """Inverse probability of censoring weights 1/G(t) (or 1/G(t-) when ``left``)."""
    t = np.atleast_1d(np.asarray(t, dtype=float))
    g = np.asarray(censoring.at_left(t) if left else censoring.at(t), dtype=float)
    if np.any(g <= 0.0):
        raise DegenerateWeightError(
            f"Censoring survival estimate is zero at t={float(np.min(t[g <= 0.0])):.4g}; IPCW weight undefined"
        )
    return 1.0 / g
