"""Tests for cadence/notifications/router.py and the built-in channels."""
from __future__ import annotations

import io
import json

import httpx
import pytest
from rich.console import Console

from cadence.notifications.base import Notification, NotificationChannel
from cadence.notifications.channels.console import ConsoleChannel
from cadence.notifications.channels.file import FileChannel
from cadence.notifications.channels.telegram import TelegramChannel
from cadence.notifications.router import NotificationRouter


# ── Helpers ──────────────────────────────────────────────────────────────────

def _make_notification(**kwargs) -> Notification:
    defaults = dict(
        schedule_id=3,
        title="Scheduled activate failed",
        content="Could not activate campaign Sales",
        occurrence_date="2024-03-01",
    )
    defaults.update(kwargs)
    return Notification(**defaults)


class FakeChannel(NotificationChannel):
    """Controllable test channel."""

    def __init__(
        self,
        name: str,
        *,
        active: bool = True,
        external: bool = False,
        should_succeed: bool = True,
    ) -> None:
        self._name = name
        self._active = active
        self._external = external
        self._should_succeed = should_succeed
        self.delivered: list[Notification] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def is_external(self) -> bool:
        return self._external

    async def deliver(self, notification: Notification) -> bool:
        if self._should_succeed:
            self.delivered.append(notification)
        return self._should_succeed


def _router(*channels: NotificationChannel) -> NotificationRouter:
    router = NotificationRouter()
    for channel in channels:
        router.register(channel)
    return router


# ── NotificationRouter ───────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestNotificationRouter:
    async def test_register_and_unregister(self):
        router = _router(FakeChannel("console"), FakeChannel("file"))
        assert set(router.channel_names) == {"console", "file"}
        router.unregister("console")
        assert router.channel_names == ["file"]

    async def test_external_channel_used_first(self):
        ext = FakeChannel("telegram", external=True)
        console = FakeChannel("console")
        file_ch = FakeChannel("file")

        await _router(ext, console, file_ch).route(_make_notification())

        assert len(ext.delivered) == 1
        assert console.delivered == []
        assert len(file_ch.delivered) == 1

    async def test_console_fallback_when_no_external(self):
        console = FakeChannel("console")
        await _router(console, FakeChannel("file")).route(_make_notification())
        assert len(console.delivered) == 1

    async def test_inactive_external_falls_back(self):
        ext = FakeChannel("telegram", active=False, external=True)
        console = FakeChannel("console")
        await _router(ext, console).route(_make_notification())
        assert ext.delivered == []
        assert len(console.delivered) == 1

    async def test_failing_external_falls_back(self):
        ext = FakeChannel("telegram", external=True, should_succeed=False)
        console = FakeChannel("console")
        await _router(ext, console).route(_make_notification())
        assert len(console.delivered) == 1

    async def test_inactive_console_skipped_file_still_written(self):
        console = FakeChannel("console", active=False)
        file_ch = FakeChannel("file")
        await _router(console, file_ch).route(_make_notification())
        assert console.delivered == []
        assert len(file_ch.delivered) == 1

    async def test_route_reports_delivering_channels(self):
        router = _router(
            FakeChannel("telegram", external=True),
            FakeChannel("console"),
            FakeChannel("file"),
        )
        assert await router.route(_make_notification()) == ["telegram", "file"]

    async def test_same_name_replaces_channel(self):
        first, second = FakeChannel("console"), FakeChannel("console")
        router = _router(first, second)
        await router.route(_make_notification())
        assert first.delivered == []
        assert len(second.delivered) == 1

    async def test_no_channels_no_error(self):
        assert await NotificationRouter().route(_make_notification()) == []

    async def test_channel_exception_does_not_crash_router(self):
        class BrokenChannel(FakeChannel):
            async def deliver(self, notification: Notification) -> bool:
                raise RuntimeError("boom")

        console = FakeChannel("console")
        await _router(BrokenChannel("broken", external=True), console).route(_make_notification())
        assert len(console.delivered) == 1


# ── Channels ─────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestChannels:
    async def test_file_channel_appends(self, tmp_path):
        log = tmp_path / "notes" / "notifications.log"
        channel = FileChannel(log_path=log)
        assert channel.is_active

        assert await channel.deliver(_make_notification())
        assert await channel.deliver(_make_notification(schedule_id=4))

        text = log.read_text(encoding="utf-8")
        assert "[schedule 3 @ 2024-03-01]" in text
        assert "[schedule 4 @ 2024-03-01]" in text
        assert "Could not activate campaign Sales" in text

    async def test_console_channel_prints_when_active(self):
        buf = io.StringIO()
        channel = ConsoleChannel(Console(file=buf, width=80))
        assert not await channel.deliver(_make_notification())

        channel.set_active(True)
        assert await channel.deliver(_make_notification())
        assert "Scheduled activate failed" in buf.getvalue()

    async def test_telegram_inactive_without_credentials(self):
        channel = TelegramChannel()
        assert channel.is_external
        assert not channel.is_active
        assert not await channel.deliver(_make_notification())
        assert TelegramChannel("tok", "42").is_active


class TestNotification:
    def test_fields(self):
        n = _make_notification(content="hello")
        assert n.schedule_id == 3
        assert n.content == "hello"
        assert n.fired_at > 0


@pytest.mark.asyncio
class TestTelegramChannel:
    async def test_posts_html_message(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"ok": True})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        channel = TelegramChannel("tok", "42", client=client)

        assert await channel.deliver(_make_notification(content="a < b"))
        body = json.loads(seen[0].content)
        assert seen[0].url.path == "/bottok/sendMessage"
        assert body["chat_id"] == "42"
        assert body["parse_mode"] == "HTML"
        assert "(2024-03-01)" in body["text"]
        assert "a &lt; b" in body["text"]
        await client.aclose()

    async def test_api_error_is_not_delivered(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(401)))
        channel = TelegramChannel("tok", "42", client=client)
        assert not await channel.deliver(_make_notification())
        await client.aclose()
