"""
TelegramChannel — pushes abandoned-occurrence alerts to an operations chat.

    [telegram]
    token   = "${CADENCE_BOT_TOKEN}"
    chat_id = "-1001234567890"

The channel is external, so when it delivers the console stays quiet.
"""

from __future__ import annotations

import html
import logging

import httpx

from cadence.notifications.base import Notification, NotificationChannel

logger = logging.getLogger(__name__)

SEND_MESSAGE_URL = "https://api.telegram.org/bot{token}/sendMessage"


class TelegramChannel(NotificationChannel):
    """Bot API sender. Active only with both token and chat_id."""

    def __init__(
        self,
        token: str = "",
        chat_id: str = "",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._token = token.strip()
        self._chat_id = str(chat_id).strip()
        self._client = client

    @property
    def name(self) -> str:
        return "telegram"

    @property
    def is_external(self) -> bool:
        return True

    @property
    def is_active(self) -> bool:
        return bool(self._token) and bool(self._chat_id)

    def _payload(self, notification: Notification) -> dict:
        header = f"<b>{html.escape(notification.title)}</b>"
        if notification.occurrence_date:
            header += f" ({notification.occurrence_date})"
        return {
            "chat_id": self._chat_id,
            "text": f"{header}\n{html.escape(notification.content)}",
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }

    async def deliver(self, notification: Notification) -> bool:
        if not self.is_active:
            return False
        url = SEND_MESSAGE_URL.format(token=self._token)
        client = self._client or httpx.AsyncClient(timeout=10)
        try:
            resp = await client.post(url, json=self._payload(notification))
            resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Telegram alert for schedule {notification.schedule_id} not sent: {e}")
            return False
        finally:
            if self._client is None:
                await client.aclose()
        return True
