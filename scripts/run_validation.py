#!/usr/bin/env python3
from __future__ import annotations

import argparse
from dataclasses import replace
import json
from pathlib import Path
import time

import pandas as pd

from survival_validation.bootstrap import run_optimism_bootstrap
from survival_validation.cohort import load_cohort, standardize_cohort, summarize_cohort, validate_cohort
from survival_validation.config import CohortSpec, ValidationConfig, ensure_dirs, load_config, resolve_paths
from survival_validation.features import add_spline_columns, rcs_knots


def parse_args() -> argparse.Namespace:
    """Parse CLI arguments for an optimism-corrected validation run."""
    ap = argparse.ArgumentParser(description="Bootstrap optimism-corrected validation of a Cox model")
    ap.add_argument("--config", default="configs/default.yaml")
    ap.add_argument("--root", default=".")
    ap.add_argument("--development", required=True, help="Development cohort (TSV or CSV)")
    ap.add_argument("--validation", default=None, help="Optional external validation cohort")
    ap.add_argument("--n-jobs", type=int, default=None, help="Override validation.n_jobs")
    return ap.parse_args()


def prepare_cohort(path: Path, spec: CohortSpec, knots: dict | None = None) -> tuple[pd.DataFrame, list[str], dict]:
    """Load, standardize and spline-expand a cohort; returns the covariate list actually fitted.

    Knot positions come from the development cohort and are reused for the
    validation cohort through ``knots``.
    """
    df = standardize_cohort(load_cohort(path), spec.time_col, spec.event_col, spec.id_col)
    covariates = list(spec.covariates)
    used_knots: dict = {}
    for column, n_knots in spec.splines.items():
        column_knots = (knots or {}).get(column)
        if column_knots is None:
            column_knots = rcs_knots(df[column], n_knots)
        df, names = add_spline_columns(df, column, n_knots, knots=column_knots)
        used_knots[column] = column_knots
        if column not in covariates:
            covariates.append(column)
        covariates.extend(n for n in names if n not in covariates)
    return validate_cohort(df, covariates), covariates, used_knots


def main() -> None:
    """Run the apparent fit, the bootstrap replicates and write all outputs."""
    args = parse_args()
    cfg = load_config(args.config)
    paths = resolve_paths(cfg, args.root)
    ensure_dirs(paths)
    results_dir = paths.results_dir
    (results_dir / "metrics").mkdir(parents=True, exist_ok=True)
    (results_dir / "tables").mkdir(parents=True, exist_ok=True)

    val_cfg = ValidationConfig.from_dict(cfg)
    if args.n_jobs is not None:
        val_cfg = replace(val_cfg, n_jobs=args.n_jobs)
        val_cfg.validate()
    spec = CohortSpec.from_dict(cfg)
    print(f"[Phase 0] Config loaded: B={val_cfg.n_bootstrap} seed={val_cfg.seed} metrics={list(val_cfg.metrics)}", flush=True)

    print("[Phase 1] Loading cohorts...", flush=True)
    development, covariates, knots = prepare_cohort(Path(args.root) / args.development, spec)
    dev_summary = summarize_cohort(development, val_cfg.horizon)
    print(f"[Phase 1] Development cohort: {dev_summary}", flush=True)

    validation = None
    if args.validation:
        validation, _, _ = prepare_cohort(Path(args.root) / args.validation, spec, knots=knots)
        print(f"[Phase 1] Validation cohort: {summarize_cohort(validation, val_cfg.horizon)}", flush=True)

    print("[Phase 2] Running bootstrap optimism correction...", flush=True)
    t0 = time.time()
    report = run_optimism_bootstrap(
        development,
        covariates,
        val_cfg,
        validation=validation,
        logger=lambda m: print(m, flush=True),
    )
    print(f"[Phase 2] Done in {time.time() - t0:.1f}s (effective B={report.effective_b}/{report.requested_b})", flush=True)

    summary = report.summary()
    summary.to_csv(results_dir / "metrics" / "summary.tsv", sep="\t", index=False)
    report.records().to_csv(results_dir / "metrics" / "records.tsv", sep="\t", index=False)
    report.replicate_frame().to_csv(results_dir / "tables" / "replicates.tsv", sep="\t", index=False)
    report.model.summary().to_csv(results_dir / "tables" / "coefficients.tsv", sep="\t")

    run_summary = report.to_dict()
    run_summary["development"] = dev_summary
    (results_dir / "metrics" / "run_summary.json").write_text(json.dumps(run_summary, indent=2), encoding="utf-8")

    print("Validation completed successfully", flush=True)
    print(summary[["metric", "apparent", "mean_optimism", "corrected", "lower", "upper", "ci_method"]].to_string(index=False), flush=True)


if __name__ == "__main__":
    main()
