"""Countdown, launch and initial-burst events ahead of the regular feed."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from numpy.random import Generator

from ..config import SpecialPhaseConfig
from .contracts import ScheduleEvent
from .sampling import sample_unique_seconds

COUNTDOWN_MINUTES: tuple[int, ...] = (59, 30, 15, 5, 4, 3, 2, 1)
LAUNCH_IMAGE = "live.png"


def countdown_text(minutes: int, feed_title: str) -> str:
    unit = "MINUTE" if minutes == 1 else "MINUTES"
    return (
        f"🚀 {minutes} {unit} TO LAUNCH! 🚀\n\n"
        f"⚡ {feed_title} opens soon. First come, first served.\n"
        "🔗 Be ready when the countdown ends."
    )


def launch_text(feed_title: str) -> str:
    return (
        f"🎯 {feed_title} IS LIVE! 🎯\n\n"
        "⚡ First come, first served.\n"
        "🔗 Secure your spot now."
    )


@dataclass(frozen=True)
class SpecialPhasePlan:
    events: list[ScheduleEvent]
    remaining: int
    regular_start: datetime


def plan_special_phase(
    phase: SpecialPhaseConfig,
    total_messages: int,
    rng: Generator,
    *,
    feed_title: str = "PRESALE",
) -> SpecialPhasePlan:
    """
    Build the countdown/start events and the optional launch burst.

    Burst buys are capped at `total_messages`; `remaining` is what the
    regular schedule still owes, and `regular_start` is where it begins
    (end of the burst window, or the launch instant without a burst).
    """
    if phase.presale_start_utc is None:
        raise ValueError("presale_start_utc is required for the special phase")
    launch = phase.presale_start_utc
    events: list[ScheduleEvent] = []
    for minutes in COUNTDOWN_MINUTES:
        events.append(
            ScheduleEvent(
                at=launch - timedelta(minutes=minutes),
                kind="countdown",
                text=countdown_text(minutes, feed_title),
                image=f"{minutes}.png",
            )
        )
    events.append(ScheduleEvent(at=launch, kind="start", text=launch_text(feed_title), image=LAUNCH_IMAGE))

    remaining = total_messages
    burst_count = min(phase.initial_burst_count, total_messages)
    if burst_count <= 0:
        return SpecialPhasePlan(events=events, remaining=remaining, regular_start=launch)

    span_seconds = phase.initial_burst_minutes * 60
    offsets = sample_unique_seconds(burst_count, span_seconds, rng)
    for offset in offsets:
        events.append(ScheduleEvent(at=launch + timedelta(seconds=offset), kind="buy"))
    remaining -= len(offsets)
    return SpecialPhasePlan(
        events=events,
        remaining=remaining,
        regular_start=launch + timedelta(seconds=span_seconds),
    )
