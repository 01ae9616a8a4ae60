"""
Schedule generator: weights -> quotas -> seconds -> unique gaps -> special phase.
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

from numpy.random import Generator, default_rng

from ..config import PulseConfig
from .allocation import HOUR_SECONDS, allocate_quotas, plan_hours
from .contracts import ScheduleEvent, from_epoch, sort_events, to_iso
from .intervals import enforce_unique_intervals
from .sampling import sample_unique_seconds
from .special_phase import plan_special_phase
from .weights import generate_hour_weights

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegularSchedule:
    times: list[datetime]
    quotas: list[int]
    effective_end: datetime


@dataclass(frozen=True)
class GeneratedSchedule:
    events: list[ScheduleEvent]
    effective_end: datetime
    total_messages: int
    quotas: list[int] = field(default_factory=list)

    def summary(self) -> dict[str, Any]:
        counts = Counter(event.kind for event in self.events)
        return {
            "total": len(self.events),
            "counts": dict(sorted(counts.items())),
            "first_at": to_iso(self.events[0].at) if self.events else None,
            "last_at": to_iso(self.events[-1].at) if self.events else None,
            "effective_end": to_iso(self.effective_end),
            "hours": len(self.quotas),
        }


def build_rng(seed: Optional[int] = None) -> Generator:
    return default_rng(seed)


def generate_regular_schedule(
    start: datetime,
    end: datetime,
    total: int,
    max_per_hour: int,
    rng: Generator,
) -> RegularSchedule:
    """
    Spread `total` buy instants over hour buckets starting at `start`.

    The window is extended past `end` when `max_per_hour` cannot hold
    `total`; `effective_end` is `start + hours`. Instants are whole seconds.
    """
    hours = plan_hours(start, end, total, max_per_hour)
    weights = generate_hour_weights(start, hours, rng)
    quotas = allocate_quotas(weights, total, max_per_hour, rng)

    start_epoch = math.floor(start.timestamp())
    stamps: list[int] = []
    for hour_idx, quota in enumerate(quotas):
        hour_start = start_epoch + hour_idx * HOUR_SECONDS
        for offset in sample_unique_seconds(quota, HOUR_SECONDS, rng):
            stamps.append(hour_start + offset)
    stamps.sort()
    stamps = enforce_unique_intervals(stamps)

    return RegularSchedule(
        times=[from_epoch(ts) for ts in stamps],
        quotas=quotas,
        effective_end=from_epoch(start_epoch) + timedelta(hours=hours),
    )


def generate_schedule(cfg: PulseConfig, rng: Generator | None = None) -> GeneratedSchedule:
    """
    Build the full ordered event list for `cfg`.

    With the special phase enabled, countdown/start (and burst) events come
    first and the regular feed starts after launch; otherwise the regular feed
    covers [start_time_utc, end_time_utc], extended as needed.
    """
    rng = rng if rng is not None else build_rng(cfg.seed)
    total_messages = cfg.total_messages
    entries: list[ScheduleEvent] = []
    remaining = total_messages
    regular_start = cfg.start_time_utc

    phase = cfg.special_phase
    if phase is not None and phase.enabled:
        phase_plan = plan_special_phase(phase, total_messages, rng, feed_title=cfg.feed_title)
        entries.extend(phase_plan.events)
        remaining = phase_plan.remaining
        regular_start = phase_plan.regular_start

    if remaining > 0:
        regular = generate_regular_schedule(regular_start, cfg.end_time_utc, remaining, cfg.max_per_hour, rng)
        entries.extend(ScheduleEvent(at=at, kind="buy") for at in regular.times)
        events = sort_events(entries)
        _LOGGER.info(
            "Pulse schedule generated events=%d regular=%d hours=%d effective_end=%s",
            len(events),
            len(regular.times),
            len(regular.quotas),
            to_iso(regular.effective_end),
        )
        return GeneratedSchedule(events, regular.effective_end, total_messages, regular.quotas)

    events = sort_events(entries)
    effective_end = events[-1].at if events else cfg.start_time_utc
    return GeneratedSchedule(events, effective_end, total_messages)
