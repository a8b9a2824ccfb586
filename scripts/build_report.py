#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
from pathlib import Path

import pandas as pd


def to_markdown_table(df: pd.DataFrame) -> str:
    """Render DataFrame as a markdown table string."""
    cols = list(df.columns)
    header = "| " + " | ".join(cols) + " |"
    sep = "| " + " | ".join(["---"] * len(cols)) + " |"
    rows = []
    for _, r in df.iterrows():
        rows.append("| " + " | ".join(str(r[c]) for c in cols) + " |")
    return "\n".join([header, sep] + rows)


def parse_args() -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Markdown summary of a validation run")
    ap.add_argument("--results-dir", default="results")
    ap.add_argument("--out", default="results/validation_summary.md")
    return ap.parse_args()


def main() -> None:
    """Generate markdown summary of apparent and optimism-corrected performance."""
    args = parse_args()
    results_dir = Path(args.results_dir)
    summary = pd.read_csv(results_dir / "metrics" / "summary.tsv", sep="\t")
    run = json.loads((results_dir / "metrics" / "run_summary.json").read_text(encoding="utf-8"))

    cols = ["metric", "horizon", "apparent", "mean_optimism", "corrected", "lower", "upper", "ci_method"]
    if "validation" in summary.columns:
        cols.append("validation")
    table = summary[cols].round(4)

    out = Path(args.out)
    out.parent.mkdir(parents=True, exist_ok=True)
    with out.open("w", encoding="utf-8") as f:
        f.write("# Internal Validation Summary\n\n")
        f.write(f"Bootstrap replicates: {run['effective_b']} of {run['requested_b']} requested")
        f.write(f", evaluation horizon {run['evaluation_horizon']:g}.\n\n")
        f.write("## Optimism-Corrected Performance\n\n")
        f.write(to_markdown_table(table))
        f.write("\n\n")
        if run["failed_replicates"]:
            f.write("## Failed Replicates\n\n")
            f.write(to_markdown_table(pd.DataFrame(run["failed_replicates"])))
            f.write("\n\n")
        f.write(f"See `{results_dir / 'tables' / 'replicates.tsv'}` for per-replicate values.\n")

    print(f"Wrote {out}")


if __name__ == "__main__":
    main()
