"""Pulse runner: config -> clock -> state (resume or plan) -> delivery loop."""

from __future__ import annotations

import logging
import threading
from typing import Any

from numpy.random import Generator

from .clock import Clock, TimeSource
from .config import PulseConfig
from .delivery.loop import DeliveryLoop
from .delivery.notifier import DiscordNotifier, Notifier
from .delivery.state import DeliveryState, StateStore, build_state_store, prune_after, resume_or_plan
from .schedule.contracts import to_iso

logger = logging.getLogger(__name__)


class PulseRunner:
    """
    Wires the collaborators for one run.

    `prepare()` must run before `start()`/`status()`: it measures the clock
    offset, resumes or regenerates state, and applies the hard stop.
    """

    def __init__(
        self,
        cfg: PulseConfig,
        *,
        notifier: Notifier | None = None,
        clock: TimeSource | Clock | None = None,
        store: StateStore | None = None,
        rng: Generator | None = None,
    ) -> None:
        if notifier is None:
            cfg.require_transport()
            notifier = DiscordNotifier(cfg.bot_token or "", api_base=cfg.discord_api_base)
        self.cfg = cfg
        self.notifier = notifier
        self.clock = clock if clock is not None else TimeSource(cfg.time_reference_url)
        self.store = store if store is not None else build_state_store(cfg)
        self._rng = rng
        self._loop: DeliveryLoop | None = None
        self._thread: threading.Thread | None = None

    @property
    def state(self) -> DeliveryState | None:
        return self._loop.state if self._loop else None

    def prepare(self) -> DeliveryLoop:
        if isinstance(self.clock, TimeSource):
            self.clock.initialize()
        state = resume_or_plan(self.cfg, self.store, self._rng)
        if self.cfg.enforce_hard_stop_at_end:
            prune_after(state, self.cfg.end_time_utc, self.store)
        self._loop = DeliveryLoop(self.cfg, state, self.store, self.notifier, self.clock)
        return self._loop

    def start(self) -> threading.Thread:
        """Run the delivery loop on a daemon thread."""
        loop = self._loop or self.prepare()
        thread = threading.Thread(target=loop.run, name="pulse-delivery", daemon=True)
        thread.start()
        self._thread = thread
        logger.info("Pulse delivery started cursor=%d/%d", loop.state.cursor, len(loop.state.schedule))
        return thread

    def status(self) -> dict[str, Any]:
        return status_payload(self.state, self.cfg)


def status_payload(state: DeliveryState | None, cfg: PulseConfig) -> dict[str, Any]:
    phase = cfg.special_phase
    next_event = state.next_event if state else None
    return {
        "totalRaised": state.accumulated_value if state else 0,
        "sentCount": state.cursor if state else 0,
        "remaining": state.remaining if state else 0,
        "completed": bool(state and state.completed),
        "effectiveEnd": to_iso(state.effective_end) if state else None,
        "nextAt": to_iso(next_event.at) if next_event else None,
        "countdownStartUtc": to_iso(phase.countdown_start_utc) if phase and phase.countdown_start_utc else None,
        "presaleStartUtc": to_iso(phase.presale_start_utc) if phase and phase.presale_start_utc else None,
    }
