"""
Delivery loop: fires each scheduled event once, in order, from a persisted cursor.

Each tick resolves at most one delivery attempt:

- cursor at the end            -> COMPLETED (persist, stop)
- head more than 30s overdue   -> skipped without sending, persisted, next head re-evaluated
- head due (within 30s)        -> send; DELIVERED advances the cursor, FAILED keeps it; retry/next after 1s
- state write fails            -> FAILED; the write is retried first on the next tick, 1s later
- head in the future           -> WAITING; next tick after min(time until due, 5s)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import logging
import sqlite3
import time
from typing import Callable

from ..clock import Clock
from ..config import PulseConfig
from ..schedule.contracts import ScheduleEvent, to_iso
from .messages import OutboundMessage, build_announcement, build_buy_message
from .notifier import Notifier, SendResult
from .state import DeliveryState, StateStore

logger = logging.getLogger(__name__)

STALE_THRESHOLD_SECONDS = 30.0
AFTER_ATTEMPT_DELAY_SECONDS = 1.0
MAX_WAIT_SECONDS = 5.0

WAITING = "WAITING"
DELIVERED = "DELIVERED"
FAILED = "FAILED"
COMPLETED = "COMPLETED"


@dataclass(frozen=True)
class TickOutcome:
    status: str
    delay_seconds: float | None
    skipped: int = 0
    index: int | None = None
    reason: str | None = None


class DeliveryLoop:
    def __init__(
        self,
        cfg: PulseConfig,
        state: DeliveryState,
        store: StateStore,
        notifier: Notifier,
        clock: Clock,
        *,
        sleep: Callable[[float], None] = time.sleep,
        stale_threshold_seconds: float = STALE_THRESHOLD_SECONDS,
    ) -> None:
        self.cfg = cfg
        self.state = state
        self.store = store
        self.notifier = notifier
        self.clock = clock
        self._sleep = sleep
        self.stale_threshold_seconds = stale_threshold_seconds
        self._unsaved = False

    def run(self) -> TickOutcome:
        """Tick until the schedule is exhausted."""
        while True:
            outcome = self.tick()
            if outcome.status == COMPLETED:
                return outcome
            self._sleep(outcome.delay_seconds or 0.0)

    def tick(self) -> TickOutcome:
        state = self.state
        now = self.clock.now()
        skipped = 0
        if self._unsaved:
            write_error = self._persist(state.next_event, state.cursor)
            if write_error:
                return TickOutcome(FAILED, AFTER_ATTEMPT_DELAY_SECONDS, 0, state.cursor, write_error)
        while True:
            event = state.next_event
            if event is None:
                return self._complete(skipped)
            until = (event.at - now).total_seconds()
            if until >= -self.stale_threshold_seconds:
                break
            logger.warning(
                "Pulse skipping stale event kind=%s at=%s behind_ms=%d index=%d",
                event.kind,
                to_iso(event.at),
                round(-until * 1000),
                state.cursor,
            )
            state.cursor += 1
            skipped += 1
            write_error = self._persist(event, state.cursor - 1)
            if write_error:
                return TickOutcome(FAILED, AFTER_ATTEMPT_DELAY_SECONDS, skipped, state.cursor - 1, write_error)

        if until > 0:
            logger.debug("Pulse waiting kind=%s at=%s ms_until=%d", event.kind, to_iso(event.at), round(until * 1000))
            return TickOutcome(WAITING, min(until, MAX_WAIT_SECONDS), skipped, state.cursor)

        index = state.cursor
        result = self._deliver(event, now)
        if not result.ok:
            logger.error(
                "Pulse send failed, will retry kind=%s at=%s index=%d reason=%s",
                event.kind,
                to_iso(event.at),
                index,
                result.reason,
            )
            return TickOutcome(FAILED, AFTER_ATTEMPT_DELAY_SECONDS, skipped, index, result.reason)

        state.cursor += 1
        if event.kind == "buy":
            state.accumulated_value += self.cfg.amount_per_message_usd
        write_error = self._persist(event, index)
        if write_error:
            return TickOutcome(FAILED, AFTER_ATTEMPT_DELAY_SECONDS, skipped, index, write_error)
        late_ms = round(-until * 1000)
        if event.kind == "buy":
            logger.info(
                "Pulse buy sent progress=%d/%d raised=%.2f late_ms=%d",
                state.cursor,
                len(state.schedule),
                state.accumulated_value,
                late_ms,
            )
        else:
            logger.info(
                "Pulse event sent kind=%s progress=%d/%d late_ms=%d",
                event.kind,
                state.cursor,
                len(state.schedule),
                late_ms,
            )
        return TickOutcome(DELIVERED, AFTER_ATTEMPT_DELAY_SECONDS, skipped, index)

    def _persist(self, event: ScheduleEvent | None, index: int) -> str | None:
        """Save the state; a failed write is logged and returned as a reason."""
        try:
            self.store.save(self.state)
        except (OSError, sqlite3.Error) as exc:
            self._unsaved = True
            logger.error(
                "Pulse state write failed, will retry kind=%s index=%d error=%s",
                event.kind if event else "complete",
                index,
                exc,
            )
            return f"state_write_error:{str(exc)[:200]}"
        self._unsaved = False
        return None

    def _deliver(self, event: ScheduleEvent, now: datetime) -> SendResult:
        message = self._build_message(event, now)
        try:
            return self.notifier.send(
                self.cfg.target_channel_id or "",
                message.text,
                embeds=message.embeds or None,
                files=message.files or None,
            )
        except Exception as exc:
            return SendResult(False, f"notifier_error:{str(exc)[:200]}")

    def _build_message(self, event: ScheduleEvent, now: datetime) -> OutboundMessage:
        if event.kind == "buy":
            return build_buy_message(now, self.state.accumulated_value + self.cfg.amount_per_message_usd, self.cfg)
        return build_announcement(event, self.cfg)

    def _complete(self, skipped: int) -> TickOutcome:
        state = self.state
        if state.completed:
            return TickOutcome(COMPLETED, None, skipped)
        state.completed = True
        write_error = self._persist(None, state.cursor)
        if write_error:
            state.completed = False
            return TickOutcome(FAILED, AFTER_ATTEMPT_DELAY_SECONDS, skipped, state.cursor, write_error)
        logger.info(
            "Pulse all events processed total=%d raised=%.2f",
            len(state.schedule),
            state.accumulated_value,
        )
        return TickOutcome(COMPLETED, None, skipped)
