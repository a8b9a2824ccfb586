from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigurationError

METRIC_NAMES: tuple[str, ...] = (
    "harrell_c",
    "uno_c",
    "uno_auc",
    "brier",
    "ipa",
    "oe_ratio",
    "cal_intercept",
    "cal_slope",
    "ici",
    "e50",
    "e90",
)

DEFAULT_METRICS: tuple[str, ...] = ("harrell_c", "uno_c", "uno_auc", "brier", "ipa")

CI_METHODS = ("mixed", "percentile", "analytic")


@dataclass
class ProjectPaths:
    """Resolved project directory paths used by the validation scripts."""

    root: Path
    data_dir: Path
    results_dir: Path


@dataclass(frozen=True)
class ValidationConfig:
    """Settings for one optimism-corrected bootstrap validation run."""

    n_bootstrap: int = 200
    horizon: float = 5.0
    horizon_offset: float = 0.05
    seed: int = 42
    metrics: tuple[str, ...] = DEFAULT_METRICS
    admin_censor_time: float | None = None
    ci_method: str = "mixed"
    confidence_level: float = 0.95
    n_jobs: int = 1
    penalizer: float = 0.0
    uno_tau: float | None = None

    @property
    def evaluation_horizon(self) -> float:
        """Horizon at which time-dependent metrics are evaluated (horizon - offset)."""
        return float(self.horizon) - float(self.horizon_offset)

    @classmethod
    def from_dict(cls, cfg: dict[str, Any]) -> "ValidationConfig":
        """Build a validated config from the ``validation`` section of a YAML dict."""
        section = (cfg or {}).get("validation") or {}
        known = {
            "B": "n_bootstrap",
            "n_bootstrap": "n_bootstrap",
            "horizon": "horizon",
            "horizon_offset": "horizon_offset",
            "seed": "seed",
            "metrics": "metrics",
            "admin_censor_time": "admin_censor_time",
            "ci_method": "ci_method",
            "confidence_level": "confidence_level",
            "n_jobs": "n_jobs",
            "penalizer": "penalizer",
            "uno_tau": "uno_tau",
        }
        unknown = sorted(set(section) - set(known))
        if unknown:
            raise ConfigurationError(f"Unrecognized validation options: {unknown}")

        kwargs: dict[str, Any] = {}
        for key, value in section.items():
            kwargs[known[key]] = value
        if "metrics" in kwargs:
            metrics = kwargs["metrics"]
            if isinstance(metrics, str):
                metrics = [metrics]
            kwargs["metrics"] = tuple(metrics)

        out = cls(**kwargs)
        out.validate()
        return out

    def validate(self) -> None:
        """Raise ConfigurationError if any option is out of range."""
        if isinstance(self.n_bootstrap, bool) or not isinstance(self.n_bootstrap, int) or self.n_bootstrap <= 0:
            raise ConfigurationError(f"B must be a positive integer, got {self.n_bootstrap!r}")
        if not _is_number(self.horizon) or self.horizon <= 0:
            raise ConfigurationError(f"horizon must be > 0, got {self.horizon!r}")
        if not _is_number(self.horizon_offset) or not 0 <= self.horizon_offset < self.horizon:
            raise ConfigurationError(
                f"horizon_offset must satisfy 0 <= offset < horizon, got {self.horizon_offset!r}"
            )
        if isinstance(self.seed, bool) or not isinstance(self.seed, int):
            raise ConfigurationError(f"seed must be an integer, got {self.seed!r}")
        if not self.metrics:
            raise ConfigurationError("At least one metric must be requested")
        unknown = [m for m in self.metrics if m not in METRIC_NAMES]
        if unknown:
            raise ConfigurationError(f"Unknown metric names: {unknown}; choose from {list(METRIC_NAMES)}")
        if len(set(self.metrics)) != len(self.metrics):
            raise ConfigurationError(f"Duplicate metric names in {list(self.metrics)}")
        if self.admin_censor_time is not None and (
            not _is_number(self.admin_censor_time) or self.admin_censor_time <= 0
        ):
            raise ConfigurationError(f"admin_censor_time must be > 0, got {self.admin_censor_time!r}")
        if self.ci_method not in CI_METHODS:
            raise ConfigurationError(f"ci_method must be one of {list(CI_METHODS)}, got {self.ci_method!r}")
        if not _is_number(self.confidence_level) or not 0 < self.confidence_level < 1:
            raise ConfigurationError(f"confidence_level must be in (0, 1), got {self.confidence_level!r}")
        if isinstance(self.n_jobs, bool) or not isinstance(self.n_jobs, int) or self.n_jobs == 0 or self.n_jobs < -1:
            raise ConfigurationError(f"n_jobs must be a positive integer or -1, got {self.n_jobs!r}")
        if not _is_number(self.penalizer) or self.penalizer < 0:
            raise ConfigurationError(f"penalizer must be >= 0, got {self.penalizer!r}")
        if self.uno_tau is not None and (not _is_number(self.uno_tau) or self.uno_tau <= 0):
            raise ConfigurationError(f"uno_tau must be > 0, got {self.uno_tau!r}")


@dataclass(frozen=True)
class CohortSpec:
    """Column layout of the cohort tables handed to the validation core."""

    covariates: tuple[str, ...]
    time_col: str = "time"
    event_col: str = "event"
    id_col: str | None = "id"
    splines: dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, cfg: dict[str, Any]) -> "CohortSpec":
        """Read the ``cohort`` section of a YAML dict."""
        section = cfg.get("cohort", {})
        covariates = section.get("covariates")
        if not covariates:
            raise ConfigurationError("cohort.covariates must list at least one covariate")
        return cls(
            covariates=tuple(covariates),
            time_col=section.get("time_col", "time"),
            event_col=section.get("event_col", "event"),
            id_col=section.get("id_col", "id"),
            splines={str(k): int(v) for k, v in (section.get("splines") or {}).items()},
        )


def _is_number(x: Any) -> bool:
    return isinstance(x, (int, float)) and not isinstance(x, bool)


def load_config(config_path: str | Path) -> dict[str, Any]:
    """Load YAML configuration into a Python dictionary."""
    with Path(config_path).open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def resolve_paths(config: dict[str, Any], root: str | Path) -> ProjectPaths:
    """Resolve configured relative paths against a chosen repository root."""
    root_path = Path(root).resolve()
    p = config.get("paths", {})
    return ProjectPaths(
        root=root_path,
        data_dir=root_path / p.get("data_dir", "data"),
        results_dir=root_path / p.get("results_dir", "results"),
    )


def ensure_dirs(paths: ProjectPaths) -> None:
    """Create required workspace directories if they do not exist."""
    for d in [paths.data_dir, paths.results_dir]:
        d.mkdir(parents=True, exist_ok=True)
