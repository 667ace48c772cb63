"""Tests for cadence/targets/memory.py"""
from __future__ import annotations

import pytest

from cadence.scheduler.schedule import Action, ScheduleType
from cadence.targets.base import ActivationResult


@pytest.mark.asyncio
class TestInMemoryTargetPort:
    async def test_activate_then_deactivate(self, port):
        assert (await port.activate(ScheduleType.CAMPAIGN, "C01")).success
        assert port.is_active(ScheduleType.CAMPAIGN, "C01")
        assert (await port.deactivate(ScheduleType.CAMPAIGN, "C01")).success
        assert not port.is_active(ScheduleType.CAMPAIGN, "C01")

    async def test_activation_is_idempotent(self, port):
        await port.activate(ScheduleType.LIST, "L1")
        result = await port.activate(ScheduleType.LIST, "L1")
        assert result.success
        assert port.is_active(ScheduleType.LIST, "L1")

    async def test_campaign_and_list_ids_are_separate(self, port):
        await port.activate(ScheduleType.CAMPAIGN, "7")
        assert not port.is_active(ScheduleType.LIST, "7")

    async def test_scripted_failures(self, port):
        port.fail_next("C01", times=2)
        results = [await port.apply(Action.ACTIVATE, ScheduleType.CAMPAIGN, "C01") for _ in range(3)]
        assert [r.success for r in results] == [False, False, True]
        assert "unavailable" in results[0].reason
        assert len(port.calls) == 3

    async def test_apply_dispatches_on_action(self, port):
        await port.apply(Action.DEACTIVATE, ScheduleType.CAMPAIGN, "C01")
        assert port.calls[-1].action == "deactivate"


class TestActivationResult:
    def test_constructors(self):
        assert ActivationResult.ok() == ActivationResult(success=True)
        failed = ActivationResult.failed("nope")
        assert failed.success is False
        assert failed.reason == "nope"
