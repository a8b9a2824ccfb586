from __future__ import annotations


class ConfigurationError(ValueError):
    """Invalid run configuration; raised before any model is fitted."""


class CohortError(ValueError):
    """Cohort table violates the subject-record invariants."""


class MetricUndefinedError(RuntimeError):
    """A performance metric cannot be estimated on the given data.

    Raised directly only when no narrower subclass applies; its records then
    carry the generic ``"undefined"`` status.
    """

    status = "undefined"


class InsufficientDataError(MetricUndefinedError):
    """Too few comparable pairs, events or controls for a metric."""

    status = "insufficient_data"


class DegenerateWeightError(MetricUndefinedError):
    """Censoring survival estimate is zero where an IPCW weight is required."""

    status = "degenerate_weight"


class NonConvergenceError(RuntimeError):
    """Proportional hazards fit failed to converge or produced unusable coefficients."""

    status = "non_convergence"


class BootstrapCancelledError(RuntimeError):
    """Bootstrap run was cancelled between replicates; nothing was aggregated."""
