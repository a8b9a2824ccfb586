from __future__ import annotations

import numpy as np
import pandas as pd


def replicate_seed(base_seed: int, replicate: int) -> int:
    """Seed of replicate ``r`` (1-based): ``base_seed + r``, independent of execution order."""
    return int(base_seed) + int(replicate)


def bootstrap_indices(n: int, rng: np.random.Generator) -> np.ndarray:
    """Draw ``n`` row positions with replacement."""
    if n <= 0:
        raise ValueError("Cannot resample an empty cohort")
    return rng.integers(0, n, n)


def bootstrap_sample(cohort: pd.DataFrame, rng: np.random.Generator) -> pd.DataFrame:
    """Resample rows with replacement; repeated subjects stay as distinct rows."""
    idx = bootstrap_indices(len(cohort), rng)
    return cohort.iloc[idx].reset_index(drop=True)
