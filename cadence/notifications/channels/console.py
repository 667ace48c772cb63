"""
ConsoleChannel — prints alerts to the terminal running `cadence run`.
"""

from __future__ import annotations

from rich.console import Console
from rich.panel import Panel

from cadence.notifications.base import Notification, NotificationChannel


class ConsoleChannel(NotificationChannel):
    """
    Renders notifications as a red panel on a rich Console.

    Usage:
        channel = ConsoleChannel(console)
        channel.set_active(True)   # while the executor is in the foreground
    """

    def __init__(self, console: Console | None = None) -> None:
        self._console = console or Console()
        self._active = False

    @property
    def name(self) -> str:
        return "console"

    @property
    def is_active(self) -> bool:
        return self._active

    def set_active(self, active: bool) -> None:
        self._active = active

    async def deliver(self, notification: Notification) -> bool:
        if not self._active:
            return False
        self._console.print(
            Panel(
                notification.content,
                title=f"[bold]{notification.title}[/bold]",
                border_style="red",
            )
        )
        return True
