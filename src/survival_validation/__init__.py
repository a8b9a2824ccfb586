"""Optimism-corrected internal validation of survival prediction models."""

__all__ = [
    "config",
    "errors",
    "cohort",
    "survival",
    "cox",
    "features",
    "discrimination",
    "calibration",
    "evaluation",
    "resampling",
    "bootstrap",
    "simulation",
]
