"""
Per-hour activity weights with diurnal and weekly patterns.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import numpy as np
from numpy.random import Generator

# Sun..Sat
WEEKDAY_BIAS: tuple[float, ...] = (0.90, 0.95, 1.00, 1.05, 1.10, 1.20, 1.25)
NOISE_LOW = 0.9
NOISE_HIGH = 1.2


def diurnal(hour: np.ndarray | int) -> np.ndarray | float:
    """Time-of-day factor; peaks mid-afternoon and stays positive."""
    return 0.95 + 0.35 * np.sin(2 * np.pi * (np.asarray(hour) + 2) / 24)


def generate_hour_weights(start: datetime, hours: int, rng: Generator) -> np.ndarray:
    """
    Relative weight per hour of an `hours`-long window starting at `start`.

    weight[i] = diurnal(hour_of_day) * WEEKDAY_BIAS[day_of_week] * noise,
    with hour/day taken in UTC and noise ~ U[0.9, 1.2).

    Returns
    -------
    np.ndarray
        1D float array of length `hours`, all entries > 0. Not normalized.
    """
    if hours < 0:
        raise ValueError(f"hours must be >= 0; got {hours}")
    start_utc = start.astimezone(timezone.utc)
    hour_of_day = np.empty(hours, dtype=np.int64)
    day_bias = np.empty(hours, dtype=float)
    for i in range(hours):
        moment = start_utc + timedelta(hours=i)
        hour_of_day[i] = moment.hour
        # datetime.weekday() is Mon=0; the bias table starts on Sunday
        day_bias[i] = WEEKDAY_BIAS[(moment.weekday() + 1) % 7]
    noise = rng.uniform(NOISE_LOW, NOISE_HIGH, size=hours)
    return diurnal(hour_of_day) * day_bias * noise
