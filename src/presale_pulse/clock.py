"""Reference-corrected clock, measured once per run."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Callable, Protocol

import requests

from .config import DEFAULT_TIME_REFERENCE_URL
from .errors import ClockNotInitialized
from .schedule.contracts import from_epoch, parse_utc, to_iso

logger = logging.getLogger(__name__)

REFERENCE_TIMEOUT_SECONDS = 8.0


class Clock(Protocol):
    def now(self) -> datetime:
        ...


class TimeSource:
    """
    Local clock shifted by a fixed offset against a remote reference.

    `initialize()` makes one attempt to read the reference; on any failure the
    offset stays 0 and the local clock is trusted. The offset is never
    re-measured during the run.
    """

    def __init__(
        self,
        reference_url: str = DEFAULT_TIME_REFERENCE_URL,
        *,
        timeout_seconds: float = REFERENCE_TIMEOUT_SECONDS,
        local_clock: Callable[[], float] = time.time,
    ) -> None:
        self.reference_url = reference_url
        self.timeout_seconds = timeout_seconds
        self._local_clock = local_clock
        self._offset_seconds: float | None = None

    @property
    def initialized(self) -> bool:
        return self._offset_seconds is not None

    @property
    def offset_seconds(self) -> float:
        if self._offset_seconds is None:
            raise ClockNotInitialized()
        return self._offset_seconds

    def initialize(self) -> float:
        if self._offset_seconds is not None:
            return self._offset_seconds
        local_at_fetch = self._local_clock()
        try:
            response = requests.get(self.reference_url, timeout=self.timeout_seconds)
            response.raise_for_status()
            reference = parse_utc(response.json()["utc_datetime"])
        except (requests.RequestException, ValueError, KeyError, TypeError) as exc:
            logger.warning(
                "Pulse time reference unavailable url=%s error=%s; trusting local clock at %s",
                self.reference_url,
                str(exc)[:256],
                to_iso(from_epoch(local_at_fetch)),
            )
            self._offset_seconds = 0.0
            return self._offset_seconds
        self._offset_seconds = reference.timestamp() - local_at_fetch
        logger.info(
            "Pulse time synchronized url=%s local=%s reference=%s offset_ms=%d",
            self.reference_url,
            to_iso(from_epoch(local_at_fetch)),
            to_iso(reference),
            round(self._offset_seconds * 1000),
        )
        return self._offset_seconds

    def now(self) -> datetime:
        return datetime.fromtimestamp(self._local_clock() + self.offset_seconds, tz=timezone.utc)
