"""Outbound notifier: Discord channel messages over the REST API."""

from __future__ import annotations

from contextlib import ExitStack
from dataclasses import dataclass
import json
import logging
from pathlib import Path
from typing import Any, Protocol

import requests

logger = logging.getLogger(__name__)

SEND_TIMEOUT_SECONDS = 15.0


@dataclass(frozen=True)
class SendResult:
    ok: bool
    reason: str | None = None
    status_code: int | None = None


class Notifier(Protocol):
    def send(
        self,
        channel_id: str,
        text: str,
        embeds: list[dict[str, Any]] | None = None,
        files: list[Path] | None = None,
    ) -> SendResult:
        ...


class DiscordNotifier:
    """
    Posts to `/channels/{id}/messages` with a bot token.

    Never raises for transport problems: timeouts, connection errors and HTTP
    error statuses come back as `SendResult(ok=False, reason=...)`.
    """

    def __init__(
        self,
        bot_token: str,
        *,
        api_base: str = "https://discord.com/api/v10",
        timeout_seconds: float = SEND_TIMEOUT_SECONDS,
    ) -> None:
        self.bot_token = bot_token
        self.api_base = api_base.rstrip("/")
        self.timeout_seconds = timeout_seconds

    def send(
        self,
        channel_id: str,
        text: str,
        embeds: list[dict[str, Any]] | None = None,
        files: list[Path] | None = None,
    ) -> SendResult:
        url = f"{self.api_base}/channels/{channel_id}/messages"
        headers = {"Authorization": f"Bot {self.bot_token}"}
        body: dict[str, Any] = {"content": text or ""}
        if embeds:
            body["embeds"] = embeds
        attachments = [path for path in (files or []) if path.is_file()]
        for path in files or []:
            if path not in attachments:
                logger.warning("Pulse attachment missing path=%s; sending without it", path)

        try:
            with ExitStack() as stack:
                if attachments:
                    body["attachments"] = [
                        {"id": idx, "filename": path.name} for idx, path in enumerate(attachments)
                    ]
                    multipart = {
                        f"files[{idx}]": (path.name, stack.enter_context(path.open("rb")), "application/octet-stream")
                        for idx, path in enumerate(attachments)
                    }
                    response = requests.post(
                        url,
                        headers=headers,
                        data={"payload_json": json.dumps(body)},
                        files=multipart,
                        timeout=self.timeout_seconds,
                    )
                else:
                    response = requests.post(url, headers=headers, json=body, timeout=self.timeout_seconds)
        except requests.Timeout:
            return SendResult(False, "timeout")
        except requests.RequestException as exc:
            return SendResult(False, f"request_error:{str(exc)[:200]}")
        except OSError as exc:
            return SendResult(False, f"attachment_error:{str(exc)[:200]}")

        if response.status_code < 400:
            return SendResult(True, status_code=response.status_code)
        detail = (response.text or "")[:256]
        logger.warning(
            "Pulse discord rejected status=%s channel_id=%s detail=%s",
            response.status_code,
            channel_id,
            detail,
        )
        return SendResult(False, f"http_{response.status_code}", status_code=response.status_code)
