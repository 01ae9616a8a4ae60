"""
Configuration loader & schema for the pulse service.

A run is driven by one `PulseConfig`, merged from a YAML/JSON base file and
environment overrides. Keys may be written in snake_case or in the camelCase
form used by older `config.json` files (`startTimeUtc`, `maxPerHour`, ...).
"""

from __future__ import annotations

import hashlib
import json
import logging
import math
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Literal, Mapping, Optional

import yaml  # type: ignore
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_TIME_REFERENCE_URL = "https://worldtimeapi.org/api/timezone/Etc/UTC"
DEFAULT_DISCORD_API_BASE = "https://discord.com/api/v10"

# env var -> config field
_ENV_OVERRIDES: dict[str, str] = {
    "BOT_TOKEN": "bot_token",
    "TARGET_CHANNEL_ID": "target_channel_id",
    "START_TIME_UTC": "start_time_utc",
    "END_TIME_UTC": "end_time_utc",
    "TARGET_TOTAL_USD": "target_total_usd",
    "AMOUNT_PER_MESSAGE_USD": "amount_per_message_usd",
    "TOKENS_PER_HUNDRED": "tokens_per_hundred",
    "START_RAISED_USD": "start_raised_usd",
    "MIN_PER_HOUR": "min_per_hour",
    "MAX_PER_HOUR": "max_per_hour",
    "ENFORCE_HARD_STOP": "enforce_hard_stop_at_end",
    "SCHEDULE_SEED": "seed",
    "STATE_FILE": "state_path",
    "PUBLIC_PORT": "public_port",
}
_BOOL_FIELDS = {"enforce_hard_stop_at_end"}


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SpecialPhaseConfig(BaseModel):
    """Countdown, launch announcement and initial burst ahead of the regular feed."""

    enabled: bool = Field(False, description="Whether countdown/start events are planned")
    countdown_start_utc: Optional[datetime] = Field(
        None, description="Instant the countdown is advertised from (status only)"
    )
    presale_start_utc: Optional[datetime] = Field(
        None, description="Launch instant; countdown events are relative to it"
    )
    initial_burst_minutes: int = Field(10, ge=1, description="Length of the post-launch burst window")
    initial_burst_count: int = Field(0, ge=0, description="Buy events packed into the burst window")

    model_config = ConfigDict(extra="forbid", alias_generator=to_camel, populate_by_name=True)

    @field_validator("countdown_start_utc", "presale_start_utc")
    @classmethod
    def _normalize_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value) if value is not None else None

    @model_validator(mode="after")
    def check_launch_present(self):
        if self.enabled and self.presale_start_utc is None:
            raise ValueError("special_phase.presale_start_utc is required when the phase is enabled")
        return self


class PulseConfig(BaseModel):
    """
    Configuration for one pulse run.

    Schedule-shaping fields feed `config_signature()`; the remaining fields are
    transport credentials and runtime wiring.
    """

    # schedule shape
    start_time_utc: datetime = Field(
        datetime(2025, 8, 8, 17, 45, tzinfo=timezone.utc), description="Start of the normal window"
    )
    end_time_utc: datetime = Field(
        datetime(2025, 8, 16, 12, 0, tzinfo=timezone.utc), description="Desired end of the normal window"
    )
    target_total_usd: float = Field(1_400_000, ge=0, description="Total value the feed should reach")
    amount_per_message_usd: float = Field(100, gt=0, description="Value added by each buy event")
    min_per_hour: int = Field(30, ge=0, description="Used only for sizing; not enforced as a floor")
    max_per_hour: int = Field(60, ge=1, description="Hard cap on buy events per hour")
    tokens_per_hundred: float = Field(714.28, ge=0, description="Tokens bought per 100 USD")
    start_raised_usd: float = Field(0, ge=0, description="Accumulated value before the first event")
    enforce_hard_stop_at_end: bool = Field(False, description="Prune events after end_time_utc at startup")
    special_phase: Optional[SpecialPhaseConfig] = None
    seed: Optional[int] = Field(None, description="RNG seed for reproducible schedules")

    # transport credentials
    bot_token: Optional[str] = Field(None, alias="BOT_TOKEN")
    target_channel_id: Optional[str] = Field(None, alias="TARGET_CHANNEL_ID")

    # runtime wiring
    state_path: Path = Field(Path("data/state.json"), description="State file (or SQLite db) location")
    state_backend: Literal["file", "sqlite"] = "file"
    public_port: int = Field(8788, ge=1, le=65535)
    asset_dir: Path = Field(Path("."), description="Directory holding countdown/feed images")
    time_reference_url: str = DEFAULT_TIME_REFERENCE_URL
    discord_api_base: str = DEFAULT_DISCORD_API_BASE
    token_symbol: str = "TOKENS"
    feed_title: str = "PRESALE"
    token_supply: float = Field(10_000_000, gt=0, description="Token supply shown next to tokens sold")
    footer_text: Optional[str] = Field(None, description="Embed footer on buy messages")

    model_config = ConfigDict(extra="forbid", alias_generator=to_camel, populate_by_name=True)

    @field_validator("start_time_utc", "end_time_utc")
    @classmethod
    def _normalize_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @field_validator("target_channel_id", mode="before")
    @classmethod
    def _channel_as_text(cls, value: Any) -> Any:
        # Discord snowflakes overflow float precision when written unquoted in YAML/JSON
        return str(value) if isinstance(value, int) else value

    @model_validator(mode="after")
    def check_hour_bounds(self):
        if self.min_per_hour > self.max_per_hour:
            raise ValueError("min_per_hour must be <= max_per_hour")
        return self

    @property
    def total_messages(self) -> int:
        return math.ceil(self.target_total_usd / self.amount_per_message_usd)

    @property
    def special_phase_enabled(self) -> bool:
        return bool(self.special_phase and self.special_phase.enabled)

    def require_transport(self) -> None:
        """Raise ConfigError unless the Discord credentials are present."""
        missing = [
            name
            for name, value in (("BOT_TOKEN", self.bot_token), ("TARGET_CHANNEL_ID", self.target_channel_id))
            if not (value or "").strip()
        ]
        if missing:
            raise ConfigError("TRANSPORT_CREDENTIALS_MISSING", ",".join(missing))


def config_signature(cfg: PulseConfig) -> str:
    """Fingerprint of the fields that shape the schedule."""
    phase = cfg.special_phase
    shallow = {
        "start_time_utc": cfg.start_time_utc.isoformat(),
        "end_time_utc": cfg.end_time_utc.isoformat(),
        "target_total_usd": cfg.target_total_usd,
        "min_per_hour": cfg.min_per_hour,
        "max_per_hour": cfg.max_per_hour,
        "amount_per_message_usd": cfg.amount_per_message_usd,
        "tokens_per_hundred": cfg.tokens_per_hundred,
        "enforce_hard_stop_at_end": cfg.enforce_hard_stop_at_end,
        "seed": cfg.seed,
        "special_phase": (
            {
                "enabled": phase.enabled,
                "countdown_start_utc": phase.countdown_start_utc.isoformat() if phase.countdown_start_utc else None,
                "presale_start_utc": phase.presale_start_utc.isoformat() if phase.presale_start_utc else None,
                "initial_burst_minutes": phase.initial_burst_minutes,
                "initial_burst_count": phase.initial_burst_count,
            }
            if phase
            else None
        ),
    }
    payload = json.dumps(shallow, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def read_config_file(path: Path | None) -> dict[str, Any]:
    """Read the base config; a missing, unreadable or non-mapping file counts as empty."""
    if path is None or not path.exists():
        return {}
    try:
        text = path.read_text(encoding="utf-8").lstrip("\ufeff")
        data = yaml.safe_load(text)
    except (OSError, UnicodeDecodeError, yaml.YAMLError) as exc:
        logger.warning("Pulse config unreadable path=%s error=%s; using defaults", path, exc)
        return {}
    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.warning("Pulse config is not a mapping path=%s; using defaults", path)
        return {}
    return data


def env_overrides(env: Mapping[str, str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for env_key, field_name in _ENV_OVERRIDES.items():
        raw = env.get(env_key)
        if raw is None or raw == "":
            continue
        if field_name in _BOOL_FIELDS:
            overrides[field_name] = raw.strip().lower() in {"1", "true", "yes"}
        else:
            overrides[field_name] = raw
    return overrides


def _canonical_keys(data: dict[str, Any]) -> dict[str, Any]:
    """Map camelCase/alias keys to field names so env overrides replace them cleanly."""
    lookup: dict[str, str] = {}
    for name, field in PulseConfig.model_fields.items():
        lookup[name] = name
        if field.alias:
            lookup[field.alias] = name
        lookup[to_camel(name)] = name
    return {lookup.get(key, key): value for key, value in data.items()}


def load_config(path: Path | None = None, env: Mapping[str, str] | None = None) -> PulseConfig:
    """
    Merge the base file with environment overrides and validate.

    Raises
    ------
    ConfigError
        If the merged values fail validation.
    """
    env = os.environ if env is None else env
    merged = _canonical_keys(read_config_file(path))
    merged.update(env_overrides(env))
    try:
        return PulseConfig.model_validate(merged)
    except ValidationError as exc:
        raise ConfigError("CONFIG_INVALID", str(exc)) from exc
