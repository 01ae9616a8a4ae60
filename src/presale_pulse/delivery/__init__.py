"""Crash-safe delivery of a planned schedule."""

from .loop import COMPLETED, DELIVERED, FAILED, WAITING, DeliveryLoop, TickOutcome
from .notifier import DiscordNotifier, Notifier, SendResult
from .state import DeliveryState, FileStateStore, SqliteStateStore, StateStore

__all__ = [
    "COMPLETED",
    "DELIVERED",
    "FAILED",
    "WAITING",
    "DeliveryLoop",
    "DeliveryState",
    "DiscordNotifier",
    "FileStateStore",
    "Notifier",
    "SendResult",
    "SqliteStateStore",
    "StateStore",
    "TickOutcome",
]
