from __future__ import annotations

import numpy as np
import pandas as pd

from .errors import InsufficientDataError

# Harrell's default knot quantiles for restricted cubic splines.
KNOT_QUANTILES: dict[int, tuple[float, ...]] = {
    3: (0.10, 0.50, 0.90),
    4: (0.05, 0.35, 0.65, 0.95),
    5: (0.05, 0.275, 0.50, 0.725, 0.95),
    6: (0.05, 0.23, 0.41, 0.59, 0.77, 0.95),
    7: (0.025, 0.1833, 0.3417, 0.50, 0.6583, 0.8167, 0.975),
}


def rcs_knots(x, n_knots: int = 3) -> np.ndarray:
    """Place knots at the default quantiles of ``x``."""
    if n_knots not in KNOT_QUANTILES:
        raise ValueError(f"n_knots must be one of {sorted(KNOT_QUANTILES)}, got {n_knots}")
    x = np.asarray(x, dtype=float)
    knots = np.quantile(x, KNOT_QUANTILES[n_knots])
    if np.unique(knots).size < n_knots:
        raise InsufficientDataError(
            f"Cannot place {n_knots} distinct spline knots; only {np.unique(x).size} distinct values"
        )
    return knots


def restricted_cubic_spline(x, knots) -> np.ndarray:
    """Non-linear restricted cubic spline terms (linear beyond the outer knots).

    Returns an ``(n, k - 2)`` array; the linear term is ``x`` itself. Terms are
    scaled by the squared knot range.
    """
    x = np.asarray(x, dtype=float)
    t = np.asarray(knots, dtype=float)
    k = t.size
    if k < 3:
        raise ValueError("A restricted cubic spline needs at least 3 knots")
    norm = (t[-1] - t[0]) ** 2

    def cube(v):
        return np.maximum(v, 0.0) ** 3

    cols = []
    for j in range(k - 2):
        term = (
            cube(x - t[j])
            - cube(x - t[k - 2]) * (t[k - 1] - t[j]) / (t[k - 1] - t[k - 2])
            + cube(x - t[k - 1]) * (t[k - 2] - t[j]) / (t[k - 1] - t[k - 2])
        )
        cols.append(term / norm)
    return np.column_stack(cols)


def add_spline_columns(
    df: pd.DataFrame,
    column: str,
    n_knots: int = 3,
    knots=None,
) -> tuple[pd.DataFrame, list[str]]:
    """Append spline basis columns ``{column}_rcs1..`` and return the new column names."""
    x = df[column].to_numpy(dtype=float)
    if knots is None:
        knots = rcs_knots(x, n_knots)
    basis = restricted_cubic_spline(x, knots)
    names = [f"{column}_rcs{j + 1}" for j in range(basis.shape[1])]
    out = df.copy()
    for j, name in enumerate(names):
        out[name] = basis[:, j]
    return out, names
