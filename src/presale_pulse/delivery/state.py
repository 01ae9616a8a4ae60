"""Delivery state and its persistence backends."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import json
import logging
import sqlite3
from pathlib import Path
from typing import Any, Protocol

from numpy.random import Generator

from ..config import PulseConfig, config_signature
from ..schedule.contracts import ScheduleEvent, parse_utc, to_iso
from ..schedule.generator import generate_schedule

logger = logging.getLogger(__name__)


@dataclass
class DeliveryState:
    config_signature: str
    schedule: list[ScheduleEvent]
    effective_end: datetime
    cursor: int = 0
    accumulated_value: float = 0.0
    completed: bool = False

    @property
    def remaining(self) -> int:
        return max(0, len(self.schedule) - self.cursor)

    @property
    def next_event(self) -> ScheduleEvent | None:
        if self.cursor < len(self.schedule):
            return self.schedule[self.cursor]
        return None

    def as_dict(self) -> dict[str, Any]:
        return {
            "config_signature": self.config_signature,
            "schedule": [event.as_dict() for event in self.schedule],
            "effective_end": to_iso(self.effective_end),
            "cursor": self.cursor,
            "accumulated_value": self.accumulated_value,
            "completed": self.completed,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "DeliveryState":
        schedule = [ScheduleEvent.from_payload(item) for item in payload["schedule"]]
        # "sentCount"/"totalUsdRaised" are the keys used by early state files.
        cursor = int(payload.get("cursor", payload.get("sentCount", 0)))
        if cursor < 0 or cursor > len(schedule):
            raise ValueError(f"cursor {cursor} outside [0, {len(schedule)}]")
        accumulated = payload.get("accumulated_value", payload.get("totalUsdRaised", 0.0))
        return cls(
            config_signature=str(payload.get("config_signature", payload.get("configSignature", ""))),
            schedule=schedule,
            effective_end=parse_utc(payload.get("effective_end", payload.get("effectiveEnd"))),
            cursor=cursor,
            accumulated_value=float(accumulated),
            completed=bool(payload.get("completed", False)),
        )


class StateStore(Protocol):
    def load(self) -> DeliveryState | None:
        ...

    def save(self, state: DeliveryState) -> None:
        ...


class FileStateStore:
    """JSON file store; writes go to a temp file that is renamed over the target."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> DeliveryState | None:
        if not self.path.exists():
            return None
        try:
            text = self.path.read_text(encoding="utf-8").lstrip("\ufeff")
            return DeliveryState.from_payload(json.loads(text))
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.warning("Pulse state unreadable path=%s error=%s; treating as absent", self.path, exc)
            return None

    def save(self, state: DeliveryState) -> None:
        payload = state.as_dict()
        payload["updated_at_utc"] = datetime.now(tz=timezone.utc).isoformat()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
        tmp_path.replace(self.path)


class SqliteStateStore:
    """Single-row SQLite store for deployments that prefer an embedded database."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._init_schema()
        except sqlite3.DatabaseError as exc:
            corrupt_path = self.db_path.with_suffix(self.db_path.suffix + ".corrupt")
            logger.warning(
                "Pulse state db unreadable db=%s error=%s; moved to %s and starting fresh",
                self.db_path,
                exc,
                corrupt_path,
            )
            self.db_path.replace(corrupt_path)
            self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path)

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS pulse_state (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    payload TEXT NOT NULL,
                    updated_at_utc TEXT NOT NULL
                )
                """
            )

    def load(self) -> DeliveryState | None:
        try:
            with self._connect() as conn:
                row = conn.execute("SELECT payload FROM pulse_state WHERE id = 1").fetchone()
            if not row:
                return None
            return DeliveryState.from_payload(json.loads(row[0]))
        except (sqlite3.Error, ValueError, KeyError, TypeError) as exc:
            logger.warning("Pulse state unreadable db=%s error=%s; treating as absent", self.db_path, exc)
            return None

    def save(self, state: DeliveryState) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO pulse_state (id, payload, updated_at_utc)
                VALUES (1, ?, ?)
                ON CONFLICT (id)
                DO UPDATE SET payload = excluded.payload,
                              updated_at_utc = excluded.updated_at_utc
                """,
                (json.dumps(state.as_dict(), sort_keys=True), datetime.now(tz=timezone.utc).isoformat()),
            )


def build_state_store(cfg: PulseConfig) -> StateStore:
    if cfg.state_backend == "sqlite":
        return SqliteStateStore(cfg.state_path)
    return FileStateStore(cfg.state_path)


def resume_or_plan(cfg: PulseConfig, store: StateStore, rng: Generator | None = None) -> DeliveryState:
    """
    Load persisted state, or generate a fresh schedule when none exists or the
    configuration signature changed.
    """
    signature = config_signature(cfg)
    state = store.load()
    if state is not None and state.config_signature == signature:
        logger.info(
            "Pulse state resumed cursor=%d/%d accumulated=%.2f completed=%s",
            state.cursor,
            len(state.schedule),
            state.accumulated_value,
            state.completed,
        )
        return state
    if state is not None:
        logger.info("Pulse config signature changed; regenerating schedule")

    generated = generate_schedule(cfg, rng)
    state = DeliveryState(
        config_signature=signature,
        schedule=generated.events,
        effective_end=generated.effective_end,
        cursor=0,
        accumulated_value=cfg.start_raised_usd,
        completed=False,
    )
    store.save(state)
    summary = generated.summary()
    logger.info(
        "Pulse planned schedule total=%s counts=%s first_at=%s last_at=%s effective_end=%s",
        summary["total"],
        summary["counts"],
        summary["first_at"],
        summary["last_at"],
        summary["effective_end"],
    )
    return state


def prune_after(state: DeliveryState, end: datetime, store: StateStore) -> int:
    """Drop schedule entries later than `end`; returns how many were removed."""
    kept = [event for event in state.schedule if event.at <= end]
    removed = len(state.schedule) - len(kept)
    state.schedule = kept
    state.cursor = min(state.cursor, len(kept))
    state.completed = state.completed and state.cursor == len(kept)
    store.save(state)
    if removed:
        logger.info("Pulse hard stop pruned=%d end=%s remaining=%d", removed, to_iso(end), state.remaining)
    return removed
