"""Message payloads for each schedule event kind."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import math
from pathlib import Path
from typing import Any

from ..config import PulseConfig
from ..schedule.contracts import ScheduleEvent, to_iso
from ..schedule.special_phase import launch_text

FEED_IMAGE = "feed.png"
EMBED_COLOR = 0x00FF00
_BLANK = "\u200b"


@dataclass(frozen=True)
class OutboundMessage:
    text: str
    embeds: list[dict[str, Any]] = field(default_factory=list)
    files: list[Path] = field(default_factory=list)


def format_money(amount: float) -> str:
    return f"{amount:,.2f}"


def format_display_time(moment: datetime) -> str:
    return moment.strftime("%Y-%m-%d %H:%M:%S")


def _blank_field() -> dict[str, Any]:
    return {"name": _BLANK, "value": _BLANK, "inline": True}


def build_buy_message(now: datetime, raised_after: float, cfg: PulseConfig) -> OutboundMessage:
    """Embed announcing one purchase; `raised_after` already includes it."""
    amount = cfg.amount_per_message_usd
    tokens = amount / 100 * cfg.tokens_per_hundred
    buyers = math.floor(raised_after / amount)
    tokens_sold = buyers * tokens
    spots = cfg.total_messages
    embed: dict[str, Any] = {
        "color": EMBED_COLOR,
        "title": cfg.feed_title,
        "description": "🚀 **NEW PURCHASE!**",
        "fields": [
            {"name": "💰 Amount", "value": f"${format_money(amount)} ({tokens:.2f} {cfg.token_symbol})", "inline": True},
            {"name": "📅 Time", "value": f"{format_display_time(now)} UTC", "inline": True},
            _blank_field(),
            {
                "name": "📊 Raised",
                "value": f"${format_money(raised_after)} / ${format_money(cfg.target_total_usd + cfg.start_raised_usd)}",
                "inline": True,
            },
            {
                "name": "💎 Sold",
                "value": f"{format_money(tokens_sold)} / {format_money(cfg.token_supply)} {cfg.token_symbol}",
                "inline": True,
            },
            _blank_field(),
            {"name": "👥 Spots Filled", "value": f"{buyers:,} / {spots:,}", "inline": True},
            {"name": "⚡ Remaining", "value": f"{max(0, spots - buyers):,}", "inline": True},
            _blank_field(),
        ],
        "timestamp": to_iso(now),
    }
    if cfg.footer_text:
        embed["footer"] = {"text": cfg.footer_text}
    files: list[Path] = []
    image_path = cfg.asset_dir / FEED_IMAGE
    if image_path.is_file():
        files.append(image_path)
        embed["image"] = {"url": f"attachment://{FEED_IMAGE}"}
    return OutboundMessage(text="", embeds=[embed], files=files)


def build_announcement(event: ScheduleEvent, cfg: PulseConfig) -> OutboundMessage:
    """Countdown/start text with its image, when the image exists."""
    files: list[Path] = []
    if event.image:
        image_path = cfg.asset_dir / event.image
        if image_path.is_file():
            files.append(image_path)
    text = event.text or ""
    if not text and event.kind == "start":
        text = launch_text(cfg.feed_title)
    return OutboundMessage(text=text, files=files)
