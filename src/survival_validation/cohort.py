from __future__ import annotations

from pathlib import Path

import numpy as np
import pandas as pd

from .errors import CohortError
from .survival import median_follow_up

ID_COL = "id"
TIME_COL = "time"
EVENT_COL = "event"


def load_cohort(path: str | Path) -> pd.DataFrame:
    """Read a cohort table; ``.tsv``/``.txt`` are tab separated, anything else is CSV."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Cohort file not found: {path}")
    sep = "\t" if path.suffix.lower() in {".tsv", ".txt"} else ","
    return pd.read_csv(path, sep=sep)


def standardize_cohort(
    df: pd.DataFrame,
    time_col: str = TIME_COL,
    event_col: str = EVENT_COL,
    id_col: str | None = ID_COL,
) -> pd.DataFrame:
    """Rename outcome/id columns to the standard ``id``, ``time``, ``event`` names."""
    for c in [time_col, event_col]:
        if c not in df.columns:
            raise CohortError(f"Cohort is missing required column {c!r}")

    out = df.rename(columns={time_col: TIME_COL, event_col: EVENT_COL}).copy()
    if id_col is not None and id_col in df.columns:
        out = out.rename(columns={id_col: ID_COL})
    elif ID_COL not in out.columns:
        out[ID_COL] = np.arange(1, len(out) + 1)

    out[TIME_COL] = pd.to_numeric(out[TIME_COL], errors="coerce")
    out[EVENT_COL] = pd.to_numeric(out[EVENT_COL], errors="coerce")
    return out.reset_index(drop=True)


def validate_cohort(df: pd.DataFrame, covariates) -> pd.DataFrame:
    """Check the subject-record invariants and return the cohort with an integer event column."""
    required = [ID_COL, TIME_COL, EVENT_COL, *covariates]
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise CohortError(f"Cohort missing required columns: {missing}")
    if df.empty:
        raise CohortError("Cohort is empty")

    time = df[TIME_COL]
    if time.isna().any() or (time <= 0).any():
        n_bad = int((time.isna() | (time <= 0)).sum())
        raise CohortError(f"Follow-up time must be > 0 for every subject ({n_bad} invalid rows)")
    if not df[EVENT_COL].isin([0, 1]).all():
        raise CohortError("Event indicator must be 0 (censored) or 1 (event)")
    if df[ID_COL].duplicated().any():
        dups = df.loc[df[ID_COL].duplicated(), ID_COL].head(5).tolist()
        raise CohortError(f"Subject ids must be unique; duplicates include {dups}")

    na_cols = [c for c in covariates if df[c].isna().any()]
    if na_cols:
        raise CohortError(f"Covariates contain missing values: {na_cols}")
    non_numeric = [c for c in covariates if not pd.api.types.is_numeric_dtype(df[c])]
    if non_numeric:
        raise CohortError(f"Covariates must be numerically encoded before validation: {non_numeric}")

    out = df.copy()
    out[EVENT_COL] = out[EVENT_COL].astype(int)
    return out


def apply_administrative_censoring(df: pd.DataFrame, censor_time: float | None) -> pd.DataFrame:
    """Censor follow-up at ``censor_time``: later events become censored at that time."""
    if censor_time is None:
        return df.copy()
    out = df.copy()
    beyond = out[TIME_COL] > censor_time
    out.loc[beyond, EVENT_COL] = 0
    out.loc[beyond, TIME_COL] = float(censor_time)
    return out


def summarize_cohort(df: pd.DataFrame, horizon: float) -> dict[str, float]:
    """Size, event counts and median follow-up of a cohort."""
    time = df[TIME_COL].to_numpy(dtype=float)
    event = df[EVENT_COL].to_numpy(dtype=int)
    return {
        "n": int(len(df)),
        "events": int(event.sum()),
        "events_by_horizon": int(((time <= horizon) & (event == 1)).sum()),
        "at_risk_beyond_horizon": int((time > horizon).sum()),
        "median_follow_up": float(median_follow_up(time, event)),
    }
