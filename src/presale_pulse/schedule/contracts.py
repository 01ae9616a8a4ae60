"""Schedule event contract and UTC timestamp helpers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal

EventKind = Literal["countdown", "start", "buy"]
EVENT_KINDS: tuple[str, ...] = ("countdown", "start", "buy")


def to_iso(value: datetime) -> str:
    """Render an aware datetime as `YYYY-MM-DDTHH:MM:SS[.ffffff]Z`."""
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_utc(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    raise ValueError(f"Unsupported timestamp value {value!r}")


def from_epoch(seconds: float) -> datetime:
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


@dataclass(frozen=True)
class ScheduleEvent:
    at: datetime
    kind: EventKind = "buy"
    text: str | None = None
    image: str | None = None

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"at": to_iso(self.at), "kind": self.kind}
        if self.text is not None:
            payload["text"] = self.text
        if self.image is not None:
            payload["image"] = self.image
        return payload

    @classmethod
    def from_payload(cls, payload: Any) -> "ScheduleEvent":
        # Early state files stored bare ISO strings for buy events.
        if isinstance(payload, str):
            return cls(at=parse_utc(payload))
        if not isinstance(payload, dict):
            raise ValueError(f"Unsupported schedule entry {payload!r}")
        kind = payload.get("kind") or "buy"
        if kind not in EVENT_KINDS:
            raise ValueError(f"Unknown event kind {kind!r}")
        return cls(
            at=parse_utc(payload["at"]),
            kind=kind,
            text=payload.get("text"),
            image=payload.get("image"),
        )


def sort_events(events: list[ScheduleEvent]) -> list[ScheduleEvent]:
    """Order by `at`; `sorted` is stable so ties keep insertion order."""
    return sorted(events, key=lambda event: event.at)
