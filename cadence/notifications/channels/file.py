"""
FileChannel — the permanent alert record, one block per notification.
"""

from __future__ import annotations

import datetime
import logging
from pathlib import Path

from cadence.notifications.base import Notification, NotificationChannel

logger = logging.getLogger(__name__)

SEPARATOR = "-" * 60


class FileChannel(NotificationChannel):
    """Appends to ~/.cadence/notifications.log unless told otherwise."""

    def __init__(self, log_path: Path | None = None) -> None:
        self._log_path = log_path or (Path.home() / ".cadence" / "notifications.log")

    @property
    def name(self) -> str:
        return "file"

    @property
    def is_active(self) -> bool:
        return True

    @staticmethod
    def format(notification: Notification) -> str:
        stamp = datetime.datetime.fromtimestamp(notification.fired_at)
        where = f"schedule {notification.schedule_id}"
        if notification.occurrence_date:
            where += f" @ {notification.occurrence_date}"
        return (
            f"[{stamp:%Y-%m-%d %H:%M:%S}] [{where}] {notification.title}\n"
            f"{notification.content}\n{SEPARATOR}\n"
        )

    async def deliver(self, notification: Notification) -> bool:
        try:
            self._log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._log_path, "a", encoding="utf-8") as f:
                f.write(self.format(notification))
        except OSError as e:
            logger.warning(f"Could not append alert to {self._log_path}: {e}")
            return False
        return True
