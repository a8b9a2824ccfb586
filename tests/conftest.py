from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from survival_validation.simulation import simulate_exponential_cohort


@pytest.fixture
def tiny_cohort() -> pd.DataFrame:
    """Five subjects with hand-checkable Kaplan-Meier values."""
    return pd.DataFrame(
        {
            "id": [1, 2, 3, 4, 5],
            "time": [1.0, 2.0, 3.0, 4.0, 5.0],
            "event": [1, 0, 1, 0, 1],
        }
    )


@pytest.fixture
def signal_cohort() -> pd.DataFrame:
    """300 subjects, one strong covariate and one noise covariate."""
    return simulate_exponential_cohort(n=300, rate=0.2, censor_max=10.0, beta=[0.8], n_noise=1, seed=11)


@pytest.fixture
def null_cohort() -> pd.DataFrame:
    """The 100-subject exponential scenario: rate 0.2, U(0, 10) censoring, one covariate."""
    return simulate_exponential_cohort(n=100, rate=0.2, censor_max=10.0, beta=[0.0], seed=2024)


@pytest.fixture
def uncensored_cohort() -> pd.DataFrame:
    rng = np.random.default_rng(5)
    x = rng.standard_normal(80)
    time = rng.exponential(1.0 / (0.3 * np.exp(0.7 * x)))
    return pd.DataFrame({"id": np.arange(80), "time": time, "event": 1, "x1": x})
