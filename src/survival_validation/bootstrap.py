"""Bootstrap optimism correction for a proportional hazards model.

Each replicate r = 1..B draws a resample of the development cohort with its
own generator ``default_rng(seed + r)``, refits the model on it and evaluates
the refitted model twice: on the resample (internal) and on the untouched
development cohort (external). The per-replicate optimism is internal minus
external; its mean over successful replicates is subtracted from the apparent
performance of the model fitted on the whole development cohort.
"""
from __future__ import annotations

import math
import os
import time
from concurrent.futures import FIRST_COMPLETED, Future, ProcessPoolExecutor, wait
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable

import numpy as np
import pandas as pd

from .cohort import apply_administrative_censoring, validate_cohort
from .config import ValidationConfig
from .cox import FittedModel, fit_cox
from .errors import BootstrapCancelledError, NonConvergenceError
from .evaluation import DatasetRole, MetricRecord, evaluate_model, percentile_interval, records_to_frame
from .resampling import bootstrap_sample, replicate_seed

# Metrics whose interval comes from the apparent fit's analytic variance under ``ci_method="mixed"``.
ANALYTIC_CI_METRICS = frozenset({"harrell_c", "uno_c", "uno_auc", "oe_ratio", "cal_intercept", "cal_slope"})


class EngineState(str, Enum):
    INIT = "init"
    RESAMPLE = "resample"
    FIT = "fit"
    EVALUATE = "evaluate"
    AGGREGATE = "aggregate"
    DONE = "done"


@dataclass(frozen=True)
class ReplicateResult:
    """Outcome of one bootstrap replicate."""

    index: int
    seed: int
    internal: tuple[MetricRecord, ...] = ()
    external: tuple[MetricRecord, ...] = ()
    failed_stage: EngineState | None = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.failed_stage is None

    def value(self, role: DatasetRole, metric: str) -> float:
        records = self.internal if role == DatasetRole.BOOTSTRAP_INTERNAL else self.external
        for rec in records:
            if rec.metric == metric:
                return rec.estimate
        return float("nan")

    def optimism(self, metric: str) -> float:
        """Internal minus external value; NaN if either side is undefined or the replicate failed."""
        if not self.ok:
            return float("nan")
        diff = self.value(DatasetRole.BOOTSTRAP_INTERNAL, metric) - self.value(DatasetRole.BOOTSTRAP_EXTERNAL, metric)
        return float(diff) if np.isfinite(diff) else float("nan")


@dataclass(frozen=True)
class _ReplicateContext:
    """Read-only inputs shared by every replicate; shipped once per worker task."""

    development: pd.DataFrame
    covariates: tuple[str, ...]
    metrics: tuple[str, ...]
    horizon: float
    seed: int
    penalizer: float
    level: float
    uno_tau: float | None


def _run_replicate(ctx: _ReplicateContext, index: int) -> ReplicateResult:
    """RESAMPLE -> FIT -> EVALUATE for replicate ``index``; must stay importable for worker processes."""
    seed = replicate_seed(ctx.seed, index)
    stage = EngineState.RESAMPLE
    try:
        rng = np.random.default_rng(seed)
        sample = bootstrap_sample(ctx.development, rng)

        stage = EngineState.FIT
        model = fit_cox(sample, ctx.covariates, penalizer=ctx.penalizer)

        stage = EngineState.EVALUATE
        internal = evaluate_model(
            model, sample, DatasetRole.BOOTSTRAP_INTERNAL, ctx.horizon, ctx.metrics, ctx.level, ctx.uno_tau
        )
        external = evaluate_model(
            model, ctx.development, DatasetRole.BOOTSTRAP_EXTERNAL, ctx.horizon, ctx.metrics, ctx.level, ctx.uno_tau
        )
    except NonConvergenceError as exc:
        return ReplicateResult(index=index, seed=seed, failed_stage=stage, message=str(exc))
    return ReplicateResult(index=index, seed=seed, internal=tuple(internal), external=tuple(external))


def _resolve_workers(n_jobs: int, n_bootstrap: int) -> int:
    workers = (os.cpu_count() or 1) if n_jobs == -1 else n_jobs
    return max(1, min(workers, n_bootstrap))


def _check_cancel(should_cancel: Callable[[], bool] | None, index: int) -> None:
    if should_cancel is not None and should_cancel():
        raise BootstrapCancelledError(f"Bootstrap cancelled before replicate {index}")


@dataclass
class OptimismReport:
    """Everything one engine run produced."""

    config: ValidationConfig
    covariates: tuple[str, ...]
    model: FittedModel
    apparent: list[MetricRecord]
    replicates: list[ReplicateResult]
    validation: list[MetricRecord] = field(default_factory=list)
    elapsed_seconds: float = 0.0
    state: EngineState = EngineState.DONE

    @property
    def requested_b(self) -> int:
        return self.config.n_bootstrap

    @property
    def effective_b(self) -> int:
        return sum(1 for r in self.replicates if r.ok)

    @property
    def failed_replicates(self) -> list[ReplicateResult]:
        return [r for r in self.replicates if not r.ok]

    @property
    def metrics(self) -> tuple[str, ...]:
        return tuple(self.config.metrics)

    def _apparent(self, metric: str) -> MetricRecord:
        for rec in self.apparent:
            if rec.metric == metric:
                return rec
        raise KeyError(f"Metric {metric!r} was not evaluated in this run")

    def _role_values(self, role: DatasetRole, metric: str) -> np.ndarray:
        return np.array([r.value(role, metric) for r in self.replicates if r.ok], dtype=float)

    def optimism(self, metric: str) -> np.ndarray:
        """Per-replicate optimism of ``metric`` in replicate order (NaN where undefined)."""
        self._apparent(metric)
        return np.array([r.optimism(metric) for r in self.replicates if r.ok], dtype=float)

    def _ci_method(self, metric: str, apparent: MetricRecord) -> str:
        method = self.config.ci_method
        if method == "mixed":
            method = "analytic" if metric in ANALYTIC_CI_METRICS else "percentile"
        if method == "analytic" and not (np.isfinite(apparent.lower) and np.isfinite(apparent.upper)):
            method = "percentile"
        return method

    def _summary_row(self, metric: str) -> dict[str, Any]:
        app = self._apparent(metric)
        internal = self._role_values(DatasetRole.BOOTSTRAP_INTERNAL, metric)
        optimism = self.optimism(metric)
        usable = np.isfinite(optimism)
        n_used = int(usable.sum())
        method = self._ci_method(metric, app)

        mean_opt = float(np.mean(optimism[usable])) if n_used else float("nan")
        corrected = app.estimate - mean_opt
        if not np.isfinite(corrected):
            lower = upper = float("nan")
        elif method == "percentile":
            lower, upper = percentile_interval(internal[usable] - mean_opt, self.config.confidence_level)
        elif metric == "oe_ratio":
            scale = corrected / app.estimate
            lower, upper = app.lower * scale, app.upper * scale
        else:
            lower, upper = app.lower - mean_opt, app.upper - mean_opt

        row: dict[str, Any] = {
            "metric": metric,
            "horizon": app.horizon,
            "apparent": app.estimate,
            "apparent_lower": app.lower,
            "apparent_upper": app.upper,
            "mean_optimism": mean_opt,
            "corrected": corrected,
            "lower": float(lower),
            "upper": float(upper),
            "ci_method": method,
            "n_replicates": n_used,
            "reduced": n_used < self.requested_b,
            "status": app.status if not app.ok else ("ok" if n_used else "no_replicates"),
        }
        if self.validation:
            val = next((r for r in self.validation if r.metric == metric), None)
            row["validation"] = val.estimate if val is not None else float("nan")
        return row

    def summary(self) -> pd.DataFrame:
        """One row per metric: apparent, mean optimism, corrected estimate and its interval."""
        return pd.DataFrame([self._summary_row(m) for m in self.metrics])

    def records(self) -> pd.DataFrame:
        """Metric Record table keyed by (metric, role, horizon).

        Bootstrap roles are summarized by their mean over successful replicates
        and carry no standard error or interval.
        """
        rows = list(self.apparent) + list(self.validation)
        for role in (DatasetRole.BOOTSTRAP_INTERNAL, DatasetRole.BOOTSTRAP_EXTERNAL):
            for metric in self.metrics:
                values = self._role_values(role, metric)
                values = values[np.isfinite(values)]
                rows.append(
                    MetricRecord(
                        metric=metric,
                        role=role,
                        horizon=self._apparent(metric).horizon,
                        estimate=float(np.mean(values)) if values.size else float("nan"),
                        status="ok" if values.size else "no_replicates",
                    )
                )
        return records_to_frame(rows)

    def replicate_frame(self) -> pd.DataFrame:
        """Raw per-replicate values: one row per replicate, internal/external/optimism per metric."""
        rows = []
        for rep in self.replicates:
            row: dict[str, Any] = {
                "replicate": rep.index,
                "seed": rep.seed,
                "ok": rep.ok,
                "failed_stage": rep.failed_stage.value if rep.failed_stage is not None else "",
                "message": rep.message,
            }
            for m in self.metrics:
                row[f"{m}_internal"] = rep.value(DatasetRole.BOOTSTRAP_INTERNAL, m) if rep.ok else float("nan")
                row[f"{m}_external"] = rep.value(DatasetRole.BOOTSTRAP_EXTERNAL, m) if rep.ok else float("nan")
                row[f"{m}_optimism"] = rep.optimism(m)
            rows.append(row)
        return pd.DataFrame(rows)

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready run summary; NaN becomes None."""

        def clean(v):
            if isinstance(v, (float, np.floating)) and not math.isfinite(v):
                return None
            if isinstance(v, np.generic):
                return v.item()
            return v

        cfg = asdict(self.config)
        cfg["metrics"] = list(cfg["metrics"])
        return {
            "state": self.state.value,
            "requested_b": self.requested_b,
            "effective_b": self.effective_b,
            "evaluation_horizon": self.config.evaluation_horizon,
            "covariates": list(self.covariates),
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "config": {k: clean(v) for k, v in cfg.items()},
            "coefficients": {c: clean(b) for c, b in zip(self.covariates, self.model.coefficients)},
            "failed_replicates": [
                {"replicate": r.index, "stage": r.failed_stage.value, "message": r.message}
                for r in self.failed_replicates
            ],
            "summary": [{k: clean(v) for k, v in row.items()} for row in self.summary().to_dict(orient="records")],
        }


def _run_sequential(
    ctx: _ReplicateContext,
    n_bootstrap: int,
    log: Callable[[str], None],
    should_cancel: Callable[[], bool] | None,
) -> list[ReplicateResult]:
    results = []
    log_every = max(1, n_bootstrap // 10)
    for r in range(1, n_bootstrap + 1):
        _check_cancel(should_cancel, r)
        results.append(_run_replicate(ctx, r))
        if r % log_every == 0 or r == n_bootstrap:
            n_ok = sum(1 for res in results if res.ok)
            log(f"[Bootstrap] replicate {r}/{n_bootstrap} done (ok={n_ok})")
    return results


def _run_parallel(
    ctx: _ReplicateContext,
    n_bootstrap: int,
    workers: int,
    log: Callable[[str], None],
    should_cancel: Callable[[], bool] | None,
) -> list[ReplicateResult]:
    results: dict[int, ReplicateResult] = {}
    log_every = max(1, n_bootstrap // 10)
    pending: set[Future] = set()
    next_index = 1

    with ProcessPoolExecutor(max_workers=workers) as ex:
        try:
            while next_index <= n_bootstrap or pending:
                while next_index <= n_bootstrap and len(pending) < 2 * workers:
                    _check_cancel(should_cancel, next_index)
                    pending.add(ex.submit(_run_replicate, ctx, next_index))
                    next_index += 1
                done, pending = wait(pending, return_when=FIRST_COMPLETED)
                for fut in done:
                    res = fut.result()
                    results[res.index] = res
                    if len(results) % log_every == 0 or len(results) == n_bootstrap:
                        n_ok = sum(1 for v in results.values() if v.ok)
                        log(f"[Bootstrap] {len(results)}/{n_bootstrap} replicates done (ok={n_ok})")
        except BootstrapCancelledError:
            for fut in pending:
                fut.cancel()
            raise

    return [results[r] for r in sorted(results)]


def run_optimism_bootstrap(
    development: pd.DataFrame,
    covariates,
    config: ValidationConfig,
    validation: pd.DataFrame | None = None,
    logger: Callable[[str], None] | None = None,
    should_cancel: Callable[[], bool] | None = None,
) -> OptimismReport:
    """Run the apparent fit, B bootstrap replicates and the aggregation barrier.

    ``development`` (and ``validation``) must use the standard ``id``/``time``/
    ``event`` columns. Administrative censoring from the config is applied to
    both before anything is fitted. A non-converging apparent fit is fatal;
    non-converging replicates are dropped and reported via ``effective_b``.
    ``should_cancel`` is polled before each replicate starts.
    """
    log = logger or (lambda _msg: None)
    t0 = time.time()
    config.validate()
    covariates = tuple(covariates)
    horizon = config.evaluation_horizon

    development = validate_cohort(apply_administrative_censoring(development, config.admin_censor_time), covariates)
    if validation is not None:
        validation = validate_cohort(apply_administrative_censoring(validation, config.admin_censor_time), covariates)

    log(
        f"[Bootstrap] {EngineState.INIT.value}: n={len(development)} events={int(development['event'].sum())} "
        f"covariates={list(covariates)} B={config.n_bootstrap} horizon={horizon:g}"
    )

    try:
        model = fit_cox(development, covariates, penalizer=config.penalizer)
    except NonConvergenceError as exc:
        log(f"[Apparent] ERROR apparent model did not converge: {exc}")
        raise

    apparent = evaluate_model(
        model,
        development,
        DatasetRole.APPARENT,
        horizon,
        config.metrics,
        config.confidence_level,
        config.uno_tau,
        logger=log,
    )
    for rec in apparent:
        log(f"[Apparent] {rec.metric}={rec.estimate:.4f} ({rec.status})")

    validation_records: list[MetricRecord] = []
    if validation is not None:
        validation_records = evaluate_model(
            model,
            validation,
            DatasetRole.VALIDATION,
            horizon,
            config.metrics,
            config.confidence_level,
            config.uno_tau,
            logger=log,
        )
        for rec in validation_records:
            log(f"[Validation] {rec.metric}={rec.estimate:.4f} ({rec.status})")

    ctx = _ReplicateContext(
        development=development,
        covariates=covariates,
        metrics=tuple(config.metrics),
        horizon=horizon,
        seed=config.seed,
        penalizer=config.penalizer,
        level=config.confidence_level,
        uno_tau=config.uno_tau,
    )
    workers = _resolve_workers(config.n_jobs, config.n_bootstrap)
    if workers == 1:
        replicates = _run_sequential(ctx, config.n_bootstrap, log, should_cancel)
    else:
        log(f"[Bootstrap] running {config.n_bootstrap} replicates on {workers} workers")
        replicates = _run_parallel(ctx, config.n_bootstrap, workers, log, should_cancel)

    log(f"[Bootstrap] {EngineState.AGGREGATE.value}")
    for rep in replicates:
        if not rep.ok:
            log(f"[Bootstrap] WARNING replicate {rep.index} failed during {rep.failed_stage.value}: {rep.message}")
    report = OptimismReport(
        config=config,
        covariates=covariates,
        model=model,
        apparent=apparent,
        replicates=replicates,
        validation=validation_records,
    )
    if report.effective_b < report.requested_b:
        log(f"[Bootstrap] WARNING effective B={report.effective_b} of requested {report.requested_b}")
    for metric in config.metrics:
        n_undefined = int(np.sum(~np.isfinite(report.optimism(metric))))
        if report.effective_b and n_undefined:
            log(f"[Bootstrap] WARNING {metric} undefined in {n_undefined}/{report.effective_b} replicates")

    report.elapsed_seconds = time.time() - t0
    log(f"[Bootstrap] {EngineState.DONE.value} in {report.elapsed_seconds:.1f}s")
    return report
