"""Pulse error taxonomy and helpers."""

from __future__ import annotations


class PulseError(RuntimeError):
    """Stable error surfaced as an upper-case reason code."""

    def __init__(self, code: str, detail: str | None = None) -> None:
        self.code = code
        self.detail = detail
        message = f"{code}:{detail}" if detail else code
        super().__init__(message)


class ConfigError(PulseError):
    """Raised when the merged configuration cannot drive a run."""


class ClockNotInitialized(PulseError):
    def __init__(self) -> None:
        super().__init__("CLOCK_NOT_INITIALIZED", "call initialize() before now()")

