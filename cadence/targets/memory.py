"""
In-memory target port — for tests and the `memory` provider.

Keeps an on/off flag per target and a log of every call. Failures and
slow answers can be scripted per target.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from cadence.scheduler.schedule import ScheduleType
from cadence.targets.base import ActivationResult, TargetActivationPort


@dataclass
class PortCall:
    """One recorded call."""

    action: str
    schedule_type: ScheduleType
    target_id: str


class InMemoryTargetPort(TargetActivationPort):
    """
    Dict-backed target states.

    Usage:
        port = InMemoryTargetPort()
        port.fail_next("C01", times=2)          # first two calls fail
        port.delay("L7", seconds=5.0)           # every call sleeps 5 s
        await port.activate(ScheduleType.CAMPAIGN, "C01")
        port.is_active(ScheduleType.CAMPAIGN, "C01")
    """

    def __init__(self) -> None:
        self._states: dict[tuple[ScheduleType, str], bool] = {}
        self._failures: dict[str, int] = {}
        self._delays: dict[str, float] = {}
        self.calls: list[PortCall] = []

    @property
    def name(self) -> str:
        return "memory"

    def fail_next(self, target_id: str, times: int = 1) -> None:
        self._failures[target_id] = times

    def delay(self, target_id: str, seconds: float) -> None:
        self._delays[target_id] = seconds

    def is_active(self, schedule_type: ScheduleType, target_id: str) -> bool:
        return self._states.get((schedule_type, target_id), False)

    async def activate(self, schedule_type: ScheduleType, target_id: str) -> ActivationResult:
        return await self._set(schedule_type, target_id, True)

    async def deactivate(self, schedule_type: ScheduleType, target_id: str) -> ActivationResult:
        return await self._set(schedule_type, target_id, False)

    async def _set(
        self, schedule_type: ScheduleType, target_id: str, active: bool
    ) -> ActivationResult:
        self.calls.append(
            PortCall("activate" if active else "deactivate", schedule_type, target_id)
        )
        if target_id in self._delays:
            await asyncio.sleep(self._delays[target_id])
        remaining = self._failures.get(target_id, 0)
        if remaining > 0:
            self._failures[target_id] = remaining - 1
            return ActivationResult.failed(f"{schedule_type.value} {target_id} unavailable")
        self._states[(schedule_type, target_id)] = active
        return ActivationResult.ok()
