"""
Trend estimation — least-squares slope over an observation window.

For the non-missing values y₀ … yₙ₋₁ of one field, taken in sequence
order with x = 0 … n−1 as the sample index:

    slope = Σ (x − x̄)(y − ȳ) / Σ (x − x̄)²

The slope is in field units PER SAMPLE, not per hour. Observations are
expected roughly hourly, but irregular sampling is not corrected for.

Returns 0.0 when fewer than two values are present, when the values are
constant, or when the arithmetic does not produce a finite number.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional, Sequence

import numpy as np

from hazardwatch.ml.models import Observation

logger = logging.getLogger(__name__)


def slope(values: Sequence[Optional[float]]) -> float:
    """OLS slope of `values` against their index, skipping None."""
    y = np.array([v for v in values if v is not None], dtype=float)
    y = y[np.isfinite(y)]
    if y.size < 2 or np.ptp(y) == 0:
        return 0.0

    x = np.arange(y.size, dtype=float)
    x_centered = x - x.mean()
    result = float(np.dot(x_centered, y - y.mean()) / np.dot(x_centered, x_centered))
    return result if np.isfinite(result) else 0.0


def compute_trend(observations: Iterable[Observation], field: str) -> float:
    """
    Slope of one observation field over the sequence.

    Parameters
    ----------
    observations : iterable of Observation, oldest first
    field : canonical name or any accepted alias ("waveHeight", "hs", ...)
    """
    return slope([obs.value(field) for obs in observations])
