"""
NotificationRouter — picks the channels an operator alert goes to.

Tiers, in order:

    external  Telegram and other remote channels. Every active one is tried.
    local     The console of a foreground `cadence run`. Used only when no
              external channel took the alert.
    record    The notifications file. Always written.
"""

from __future__ import annotations

import logging

from cadence.notifications.base import Notification, NotificationChannel

logger = logging.getLogger(__name__)

RECORD_CHANNEL = "file"


class NotificationRouter:
    """
    Usage:
        router = NotificationRouter()
        router.register(ConsoleChannel(console))
        router.register(FileChannel())
        router.register(TelegramChannel(token, chat_id))

        delivered = await router.route(notification)   # e.g. ["telegram", "file"]
    """

    def __init__(self) -> None:
        self._channels: dict[str, NotificationChannel] = {}

    def register(self, channel: NotificationChannel) -> None:
        """Add a channel. A channel with the same name is replaced."""
        self._channels[channel.name] = channel
        logger.debug(f"Notification channel registered: {channel.name}")

    def unregister(self, name: str) -> None:
        self._channels.pop(name, None)

    @property
    def channel_names(self) -> list[str]:
        return list(self._channels)

    async def route(self, notification: Notification) -> list[str]:
        """
        Deliver through the tiers above and return the names of the
        channels that accepted the alert. Channel errors are logged only.
        """
        external = [c for c in self._channels.values() if c.is_external]
        local = [
            c for c in self._channels.values()
            if not c.is_external and c.name != RECORD_CHANNEL
        ]

        delivered = [c.name for c in external if c.is_active and await _try(c, notification)]
        if not delivered:
            delivered = [c.name for c in local if c.is_active and await _try(c, notification)]

        record = self._channels.get(RECORD_CHANNEL)
        if record is not None and await _try(record, notification):
            delivered.append(record.name)

        if delivered:
            logger.debug(f"Notification for schedule {notification.schedule_id} -> {', '.join(delivered)}")
        else:
            logger.warning(f"Notification for schedule {notification.schedule_id} reached no channel")
        return delivered


async def _try(channel: NotificationChannel, notification: Notification) -> bool:
    try:
        return bool(await channel.deliver(notification))
    except Exception as e:
        logger.warning(f"Channel {channel.name} delivery failed: {e}")
        return False
