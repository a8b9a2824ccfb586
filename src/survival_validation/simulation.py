from __future__ import annotations

import numpy as np
import pandas as pd


def simulate_exponential_cohort(
    n: int,
    rate: float = 0.2,
    censor_max: float = 10.0,
    beta=(0.0,),
    n_noise: int = 0,
    seed: int = 0,
) -> pd.DataFrame:
    """Synthetic cohort with exponential event times and uniform censoring.

    Covariates ``x1..xk`` are standard normal; the first ``len(beta)`` act on
    the hazard ``rate * exp(x @ beta)``, the remaining ``n_noise`` are pure
    noise. Censoring times are independent U(0, censor_max).
    """
    if n <= 0:
        raise ValueError("n must be positive")
    rng = np.random.default_rng(seed)
    beta = np.asarray(beta, dtype=float)
    k = beta.size + int(n_noise)

    x = rng.standard_normal((n, k))
    hazard = rate * np.exp(x[:, : beta.size] @ beta)
    event_time = rng.exponential(1.0 / hazard)
    censor_time = rng.uniform(0.0, censor_max, n)

    # keep follow-up strictly positive
    observed = np.maximum(np.minimum(event_time, censor_time), 1e-6)
    df = pd.DataFrame(x, columns=[f"x{j + 1}" for j in range(k)])
    df.insert(0, "event", (event_time <= censor_time).astype(int))
    df.insert(0, "time", observed)
    df.insert(0, "id", np.arange(1, n + 1))
    return df
