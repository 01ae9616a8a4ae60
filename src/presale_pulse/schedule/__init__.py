"""Schedule generation for the pulse feed."""

from .contracts import ScheduleEvent
from .generator import GeneratedSchedule, build_rng, generate_schedule

__all__ = ["GeneratedSchedule", "ScheduleEvent", "build_rng", "generate_schedule"]
