from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from functools import cached_property
from typing import Callable

import numpy as np
import pandas as pd
from scipy import stats

from .calibration import brier_score, moderate_calibration, oe_ratio, scaled_brier, weak_calibration
from .config import METRIC_NAMES
from .cox import FittedModel
from .discrimination import MetricEstimate, harrell_c, uno_auc, uno_c
from .errors import MetricUndefinedError, NonConvergenceError
from .survival import StepCurve, kaplan_meier


class DatasetRole(str, Enum):
    """Which data a metric was computed on, relative to the model that produced the predictions."""

    APPARENT = "apparent"
    BOOTSTRAP_INTERNAL = "bootstrap_internal"
    BOOTSTRAP_EXTERNAL = "bootstrap_external"
    VALIDATION = "validation"

    @property
    def reports_uncertainty(self) -> bool:
        """Per-replicate bootstrap evaluations carry no standard errors or intervals."""
        return self in (DatasetRole.APPARENT, DatasetRole.VALIDATION)


# Metrics computed together from one estimator call.
METRIC_GROUPS: dict[str, tuple[str, ...]] = {
    "harrell_c": ("harrell_c",),
    "uno_c": ("uno_c",),
    "uno_auc": ("uno_auc",),
    "brier": ("brier",),
    "ipa": ("ipa",),
    "oe_ratio": ("oe_ratio",),
    "weak_calibration": ("cal_intercept", "cal_slope"),
    "moderate_calibration": ("ici", "e50", "e90"),
}
_GROUP_OF = {m: g for g, members in METRIC_GROUPS.items() for m in members}

HORIZON_FREE_METRICS = frozenset({"harrell_c", "uno_c"})

_LOG_PREFIX = {
    DatasetRole.APPARENT: "[Apparent]",
    DatasetRole.BOOTSTRAP_INTERNAL: "[Bootstrap]",
    DatasetRole.BOOTSTRAP_EXTERNAL: "[Bootstrap]",
    DatasetRole.VALIDATION: "[Validation]",
}


@dataclass(frozen=True)
class MetricRecord:
    """One metric evaluated for one dataset role."""

    metric: str
    role: DatasetRole
    horizon: float
    estimate: float
    se: float = float("nan")
    lower: float = float("nan")
    upper: float = float("nan")
    status: str = "ok"
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    def to_dict(self) -> dict:
        out = asdict(self)
        out["role"] = self.role.value
        return out


class _Predictions:
    """Lazily computed quantities shared by the metrics of one (model, cohort) pair."""

    def __init__(self, model: FittedModel, cohort: pd.DataFrame, horizon: float) -> None:
        self.model = model
        self.cohort = cohort
        self.horizon = float(horizon)
        self.time = cohort["time"].to_numpy(dtype=float)
        self.event = cohort["event"].to_numpy(dtype=int)

    @cached_property
    def lp(self) -> np.ndarray:
        return self.model.linear_predictor(self.cohort)

    @cached_property
    def surv(self) -> np.ndarray:
        return self.model.survival_probability(self.cohort, self.horizon)

    @cached_property
    def expected(self) -> np.ndarray:
        return self.model.expected_events(self.cohort, self.horizon)

    @cached_property
    def censoring(self) -> StepCurve:
        return kaplan_meier(self.time, self.event, reverse=True)


def _compute_group(
    group: str,
    p: _Predictions,
    uno_tau: float | None,
    level: float,
) -> dict[str, MetricEstimate]:
    if group == "harrell_c":
        return {"harrell_c": harrell_c(p.time, p.event, p.lp)}
    if group == "uno_c":
        return {"uno_c": uno_c(p.time, p.event, p.lp, censoring=p.censoring, tau=uno_tau)}
    if group == "uno_auc":
        return {"uno_auc": uno_auc(p.time, p.event, p.lp, p.horizon, censoring=p.censoring)}
    if group == "brier":
        return {"brier": brier_score(p.time, p.event, p.surv, p.horizon, censoring=p.censoring)}
    if group == "ipa":
        return {"ipa": scaled_brier(p.time, p.event, p.surv, p.horizon, censoring=p.censoring)}
    if group == "oe_ratio":
        return {"oe_ratio": oe_ratio(p.time, p.event, p.surv, p.horizon, level=level)}
    if group == "weak_calibration":
        intercept, slope = weak_calibration(p.time, p.event, p.surv, p.expected, p.horizon)
        return {"cal_intercept": intercept, "cal_slope": slope}
    if group == "moderate_calibration":
        return moderate_calibration(p.time, p.event, p.surv, p.horizon)
    raise ValueError(f"Unknown metric group {group!r}")


def _record_horizon(metric: str, horizon: float, uno_tau: float | None) -> float:
    if metric == "uno_c" and uno_tau is not None:
        return float(uno_tau)
    if metric in HORIZON_FREE_METRICS:
        return float("nan")
    return float(horizon)


def _to_record(
    metric: str,
    est: MetricEstimate,
    role: DatasetRole,
    horizon: float,
    level: float,
) -> MetricRecord:
    if not role.reports_uncertainty:
        return MetricRecord(metric=metric, role=role, horizon=horizon, estimate=est.estimate)

    lower, upper = est.lower, est.upper
    if not (np.isfinite(lower) and np.isfinite(upper)) and np.isfinite(est.se):
        z = stats.norm.ppf(0.5 + level / 2)
        lower, upper = est.estimate - z * est.se, est.estimate + z * est.se
    return MetricRecord(
        metric=metric,
        role=role,
        horizon=horizon,
        estimate=est.estimate,
        se=est.se,
        lower=float(lower),
        upper=float(upper),
    )


def evaluate_model(
    model: FittedModel,
    cohort: pd.DataFrame,
    role: DatasetRole | str,
    horizon: float,
    metrics=METRIC_NAMES,
    level: float = 0.95,
    uno_tau: float | None = None,
    logger: Callable[[str], None] | None = None,
) -> list[MetricRecord]:
    """Evaluate ``metrics`` for predictions of ``model`` on ``cohort``.

    Metrics that cannot be estimated come back as NaN records carrying the
    failure status instead of raising.
    """
    role = DatasetRole(role)
    unknown = [m for m in metrics if m not in _GROUP_OF]
    if unknown:
        raise ValueError(f"Unknown metric names: {unknown}")

    preds = _Predictions(model, cohort, horizon)
    by_metric: dict[str, MetricRecord] = {}
    for group in dict.fromkeys(_GROUP_OF[m] for m in metrics):
        requested = [m for m in METRIC_GROUPS[group] if m in metrics]
        try:
            estimates = _compute_group(group, preds, uno_tau, level)
        except (MetricUndefinedError, NonConvergenceError) as exc:
            if logger is not None:
                logger(f"{_LOG_PREFIX[role]} WARNING {', '.join(requested)} undefined ({exc.status}): {exc}")
            for m in requested:
                by_metric[m] = MetricRecord(
                    metric=m,
                    role=role,
                    horizon=_record_horizon(m, horizon, uno_tau),
                    estimate=float("nan"),
                    status=exc.status,
                    message=str(exc),
                )
            continue
        for m in requested:
            by_metric[m] = _to_record(m, estimates[m], role, _record_horizon(m, horizon, uno_tau), level)

    return [by_metric[m] for m in metrics]


def records_to_frame(records: list[MetricRecord]) -> pd.DataFrame:
    """Metric Record table keyed by (metric, role, horizon)."""
    cols = ["metric", "role", "horizon", "estimate", "se", "lower", "upper", "status", "message"]
    if not records:
        return pd.DataFrame(columns=cols)
    return pd.DataFrame([r.to_dict() for r in records], columns=cols)


def percentile_interval(values, level: float = 0.95) -> tuple[float, float]:
    """Percentile interval of bootstrap values, ignoring NaN."""
    values = np.asarray(values, dtype=float)
    values = values[np.isfinite(values)]
    if values.size == 0:
        return float("nan"), float("nan")
    lo = (1 - level) / 2
    hi = 1 - lo
    return float(np.quantile(values, lo)), float(np.quantile(values, hi))
