"""Telegram Bot API transport for alert delivery."""

from __future__ import annotations

import json
import logging
from typing import Any

import aiohttp

from pygeotrack._constants import TELEGRAM_API_BASE
from pygeotrack.exceptions import NotificationError, NotificationNotConfiguredError

_logger = logging.getLogger(__name__)


class TelegramClient:
    """Minimal ``sendMessage`` client.

    The bot token is part of the request URL, so URLs are never logged.
    """

    def __init__(
        self,
        http_session: aiohttp.ClientSession,
        bot_token: str | None,
        *,
        timeout: float = 10.0,
        base_url: str = TELEGRAM_API_BASE,
    ) -> None:
        self._http = http_session
        self._bot_token = bot_token
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._base_url = base_url

    @property
    def configured(self) -> bool:
        return bool(self._bot_token)

    async def send_message(self, chat_id: str, text: str, *, parse_mode: str = "HTML") -> dict[str, Any]:
        """Send *text* to *chat_id* and return Telegram's ``result`` object.

        Raises
        ------
        NotificationNotConfiguredError
            No bot token configured.
        NotificationError
            Network failure, timeout, or a non-ok API response.
        """
        if not self._bot_token:
            raise NotificationNotConfiguredError("Telegram bot token is not set")

        url = f"{self._base_url}/bot{self._bot_token}/sendMessage"
        payload = {
            "chat_id": chat_id,
            "text": text,
            "parse_mode": parse_mode,
            "disable_web_page_preview": True,
        }

        _logger.debug("Telegram sendMessage chat_id=%s chars=%d", chat_id, len(text))
        try:
            async with self._http.post(url, json=payload, timeout=self._timeout) as resp:
                status = resp.status
                text_body = await resp.text()
        except TimeoutError as exc:
            raise NotificationError("Telegram sendMessage failed: timeout") from exc
        except aiohttp.ClientError as exc:
            raise NotificationError(f"Telegram sendMessage failed: {exc}") from exc

        try:
            data: Any = json.loads(text_body)
        except json.JSONDecodeError:
            data = None

        if status != 200 or not isinstance(data, dict) or not data.get("ok"):
            description = data.get("description") if isinstance(data, dict) else None
            raise NotificationError(
                f"Telegram sendMessage failed: {description or f'HTTP {status}'}",
                status_code=status,
            )
        result = data.get("result")
        return result if isinstance(result, dict) else {}
