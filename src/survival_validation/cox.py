"""Proportional hazards fitting adapter.

Coefficients come from lifelines ``CoxPHFitter``, which handles tied event
times with Efron's approximation of the partial likelihood. The baseline
cumulative hazard is the Breslow estimator evaluated at the training means of
the covariates, so ``S(t|x) = exp(-H0(t) * exp((x - mean) @ beta))``.
"""
from __future__ import annotations

import warnings
from dataclasses import dataclass

import numpy as np
import pandas as pd
from lifelines import CoxPHFitter
from lifelines.exceptions import ConvergenceError, ConvergenceWarning
from scipy import stats

from .errors import NonConvergenceError

PREDICTION_KINDS = ("linear_predictor", "survival_at", "expected_event_count")

_FAILED_CONVERGENCE_MESSAGES = ("failed to converge", "norm(delta) is still high")


@dataclass(frozen=True, eq=False)
class FittedModel:
    """Immutable result of a proportional hazards fit."""

    covariates: tuple[str, ...]
    coefficients: np.ndarray
    standard_errors: np.ndarray
    means: np.ndarray
    baseline_times: np.ndarray
    baseline_cumhaz: np.ndarray
    n_obs: int
    n_events: int
    ties: str = "efron"
    penalizer: float = 0.0

    def _design(self, data: pd.DataFrame) -> np.ndarray:
        missing = [c for c in self.covariates if c not in data.columns]
        if missing:
            raise KeyError(f"Covariates missing from prediction data: {missing}")
        return data.loc[:, list(self.covariates)].to_numpy(dtype=float)

    def linear_predictor(self, data: pd.DataFrame) -> np.ndarray:
        """Centered linear predictor (x - mean) @ beta for each row."""
        return (self._design(data) - self.means) @ self.coefficients

    def cumulative_baseline_hazard(self, t):
        """Breslow baseline cumulative hazard H0 at ``t`` (step function, 0 before first event)."""
        idx = np.searchsorted(self.baseline_times, np.asarray(t, dtype=float), side="right") - 1
        values = np.where(idx >= 0, self.baseline_cumhaz[np.maximum(idx, 0)], 0.0)
        return float(values) if np.ndim(values) == 0 else values

    def survival_probability(self, data: pd.DataFrame, t: float) -> np.ndarray:
        """Predicted S(t|x) for every row of ``data``."""
        h0 = float(self.cumulative_baseline_hazard(float(t)))
        return np.exp(-h0 * np.exp(self.linear_predictor(data)))

    def survival_curve(self, data: pd.DataFrame, times) -> np.ndarray:
        """Matrix of predicted survival, rows = subjects, columns = ``times``."""
        h0 = np.atleast_1d(self.cumulative_baseline_hazard(np.asarray(times, dtype=float)))
        return np.exp(-np.outer(np.exp(self.linear_predictor(data)), h0))

    def expected_events(self, data: pd.DataFrame, horizon: float, time_col: str = "time") -> np.ndarray:
        """Predicted cumulative hazard at each subject's follow-up truncated at ``horizon``."""
        follow_up = np.minimum(data[time_col].to_numpy(dtype=float), float(horizon))
        return self.cumulative_baseline_hazard(follow_up) * np.exp(self.linear_predictor(data))

    def predict(self, data: pd.DataFrame, kind: str = "linear_predictor", horizon: float | None = None) -> np.ndarray:
        """Dispatch to one of the supported prediction kinds."""
        if kind not in PREDICTION_KINDS:
            raise ValueError(f"Unknown prediction kind {kind!r}; expected one of {PREDICTION_KINDS}")
        if kind == "linear_predictor":
            return self.linear_predictor(data)
        if horizon is None:
            raise ValueError(f"Prediction kind {kind!r} requires a horizon")
        if kind == "survival_at":
            return self.survival_probability(data, horizon)
        return self.expected_events(data, horizon)

    def summary(self) -> pd.DataFrame:
        """Coefficient table with hazard ratios and Wald p-values."""
        z = self.coefficients / self.standard_errors
        return pd.DataFrame(
            {
                "coef": self.coefficients,
                "se": self.standard_errors,
                "hazard_ratio": np.exp(self.coefficients),
                "z": z,
                "p_value": 2 * stats.norm.sf(np.abs(z)),
            },
            index=pd.Index(self.covariates, name="covariate"),
        )


def _breslow(time: np.ndarray, event: np.ndarray, lp: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Breslow cumulative baseline hazard at the distinct event times."""
    event_times, deaths = np.unique(time[event == 1], return_counts=True)
    order = np.argsort(time, kind="mergesort")
    risk = np.exp(lp[order])
    risk_from_end = np.cumsum(risk[::-1])[::-1]
    first_at_risk = np.searchsorted(time[order], event_times, side="left")
    hazard = deaths / risk_from_end[first_at_risk]
    return event_times, np.cumsum(hazard)


def fit_cox(
    cohort: pd.DataFrame,
    covariates,
    time_col: str = "time",
    event_col: str = "event",
    penalizer: float = 0.0,
) -> FittedModel:
    """Fit a Cox proportional hazards model; raise NonConvergenceError instead of returning a bad fit."""
    covariates = tuple(covariates)
    df = cohort.loc[:, [*covariates, time_col, event_col]].reset_index(drop=True)
    time = df[time_col].to_numpy(dtype=float)
    event = df[event_col].to_numpy(dtype=int)

    if event.sum() == 0:
        raise NonConvergenceError("No events in fitting data; proportional hazards model is not identifiable")
    constant = [c for c in covariates if df[c].nunique(dropna=False) < 2]
    if constant:
        raise NonConvergenceError(f"Constant covariates in fitting data: {constant}")

    cph = CoxPHFitter(penalizer=penalizer)
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always", ConvergenceWarning)
        try:
            cph.fit(df, duration_col=time_col, event_col=event_col)
        except (ConvergenceError, np.linalg.LinAlgError, ZeroDivisionError) as exc:
            raise NonConvergenceError(f"Cox fit failed: {exc}") from exc

    for w in caught:
        msg = str(w.message)
        if issubclass(w.category, ConvergenceWarning) and any(m in msg for m in _FAILED_CONVERGENCE_MESSAGES):
            raise NonConvergenceError(f"Cox fit did not converge: {msg}")

    coefficients = cph.params_.reindex(list(covariates)).to_numpy(dtype=float)
    standard_errors = cph.standard_errors_.reindex(list(covariates)).to_numpy(dtype=float)
    if not np.all(np.isfinite(coefficients)):
        raise NonConvergenceError(f"Cox fit produced non-finite coefficients: {coefficients}")

    means = df[list(covariates)].mean().to_numpy(dtype=float)
    lp = (df[list(covariates)].to_numpy(dtype=float) - means) @ coefficients
    baseline_times, baseline_cumhaz = _breslow(time, event, lp)

    for arr in (coefficients, standard_errors, means, baseline_times, baseline_cumhaz):
        arr.setflags(write=False)

    return FittedModel(
        covariates=covariates,
        coefficients=coefficients,
        standard_errors=standard_errors,
        means=means,
        baseline_times=baseline_times,
        baseline_cumhaz=baseline_cumhaz,
        n_obs=int(len(df)),
        n_events=int(event.sum()),
        penalizer=float(penalizer),
    )
