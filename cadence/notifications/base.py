"""
Operator alerts — the Notification payload and the NotificationChannel port.

The executor raises an alert when an occurrence is abandoned after its
last attempt. Channels (console, Telegram, notifications file) decide how
it reaches a person; the NotificationRouter decides which of them run.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass
class Notification:
    """One alert about one occurrence of one schedule."""

    schedule_id: int
    title: str
    content: str
    occurrence_date: str = ""  # 'YYYY-MM-DD', empty for schedule-level alerts
    fired_at: int = field(default_factory=lambda: int(time.time()))


class NotificationChannel(ABC):
    """
    A way of reaching an operator.

    Inactive channels are skipped by the router without calling deliver().
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique channel name: 'console', 'telegram', 'file'."""
        ...

    @property
    @abstractmethod
    def is_active(self) -> bool:
        ...

    @property
    def is_external(self) -> bool:
        """Remote channels are preferred over the local console."""
        return False

    @abstractmethod
    async def deliver(self, notification: Notification) -> bool:
        """Send the alert. Returns True only if it was actually delivered."""
        ...
