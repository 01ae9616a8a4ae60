"""Integer per-hour quotas from relative weights."""

from __future__ import annotations

import logging
import math
from datetime import datetime

import numpy as np
from numpy.random import Generator

_LOGGER = logging.getLogger(__name__)

HOUR_SECONDS = 3600


def plan_hours(start: datetime, end: datetime, total: int, max_per_hour: int) -> int:
    """
    Number of hour buckets needed for `total` events.

    Starts from ceil((end - start) / 1h), at least 1, and extends the window
    when `hours * max_per_hour` cannot hold `total`.
    """
    if max_per_hour < 1:
        raise ValueError(f"max_per_hour must be >= 1; got {max_per_hour}")
    span = (end - start).total_seconds()
    hours = max(1, math.ceil(span / HOUR_SECONDS))
    capacity = hours * max_per_hour
    if capacity < total:
        extra = math.ceil((total - capacity) / max_per_hour)
        _LOGGER.info("Extending window hours=%d extra=%d total=%d", hours, extra, total)
        hours += extra
    return hours


def allocate_quotas(
    weights: np.ndarray,
    total: int,
    max_per_hour: int,
    rng: Generator,
) -> list[int]:
    """
    Split `total` events across hours in proportion to `weights`.

    Each hour gets round(w / sum(w) * total) (half rounds up), clipped to
    `max_per_hour`. Rounding drift is then repaired one unit at a time,
    visiting hours in a shuffled order: shortfall goes to hours with headroom,
    excess comes off hours with count > 0.

    Raises
    ------
    ValueError
        If the hours cannot hold `total` events or weights are not positive.
    """
    hours = len(weights)
    if total < 0:
        raise ValueError(f"total must be >= 0; got {total}")
    if hours * max_per_hour < total:
        raise ValueError(f"{hours} hours x {max_per_hour}/h cannot hold {total} events")
    if total == 0:
        return [0] * hours
    weight_sum = float(np.sum(weights))
    if weight_sum <= 0:
        raise ValueError("Sum of weights must be > 0")

    raw = np.asarray(weights, dtype=float) / weight_sum * total
    quotas = np.minimum(np.floor(raw + 0.5).astype(np.int64), max_per_hour)

    diff = total - int(quotas.sum())
    while diff > 0:
        for idx in rng.permutation(hours):
            if diff == 0:
                break
            if quotas[idx] < max_per_hour:
                quotas[idx] += 1
                diff -= 1
    while diff < 0:
        for idx in rng.permutation(hours):
            if diff == 0:
                break
            if quotas[idx] > 0:
                quotas[idx] -= 1
                diff += 1
    return [int(q) for q in quotas]
