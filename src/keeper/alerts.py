"""
Telegram Alerts
===============
Fire-and-forget operator notifications.

``notify()`` schedules the Bot API call as a background task and returns
immediately. A failed delivery is logged, never raised, so alerting can not
stall or break a reconciliation cycle.
"""

from __future__ import annotations

import asyncio
from typing import Optional, Set

import httpx

from src.shared.system.logging import Logger

PRIORITY_EMOJI = {
    "INFO": "ℹ️",
    "WARNING": "⚠️",
    "CRITICAL": "🛑",
}


class TelegramAlerter:
    """Async Telegram notifier. Disabled when token or chat id is missing."""

    API_URL = "https://api.telegram.org/bot{token}/sendMessage"
    REQUEST_TIMEOUT = 5.0

    def __init__(self, token: str = "", chat_id: str = "", client: Optional[httpx.AsyncClient] = None):
        self.token = token
        self.chat_id = chat_id
        self.enabled = bool(token and chat_id)
        self._client = client
        self._pending: Set[asyncio.Task] = set()
        self.sent = 0
        self.failed = 0

        if not self.enabled:
            Logger.debug("[ALERT] Telegram not configured, alerts are log-only")

    def notify(self, message: str, priority: str = "WARNING") -> None:
        """Schedule delivery; safe to call from inside the event loop only."""
        if not self.enabled:
            return

        task = asyncio.get_running_loop().create_task(self._send(message, priority))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _send(self, message: str, priority: str) -> None:
        emoji = PRIORITY_EMOJI.get(priority, "📝")
        payload = {
            "chat_id": self.chat_id,
            "text": f"{emoji} <b>{priority}</b>\n{message}",
            "parse_mode": "HTML",
        }
        url = self.API_URL.format(token=self.token)

        try:
            if self._client is not None:
                response = await self._client.post(url, json=payload)
            else:
                async with httpx.AsyncClient(timeout=self.REQUEST_TIMEOUT) as client:
                    response = await client.post(url, json=payload)
        except httpx.HTTPError as e:
            self.failed += 1
            Logger.debug(f"[ALERT] Telegram delivery failed: {e!r}")
            return

        if response.is_success:
            self.sent += 1
        else:
            self.failed += 1
            Logger.debug(f"[ALERT] Telegram returned HTTP {response.status_code}")

    async def drain(self) -> None:
        """Wait for in-flight deliveries (used on shutdown and in tests)."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
