"""
Target activation primitives — ActivationResult and TargetActivationPort ABC.

The campaign/list subsystem owns its targets. Cadence only asks it to
switch a target on or off. Implementations must be idempotent: activating
an already active target is a success.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from cadence.scheduler.schedule import Action, ScheduleType


@dataclass(frozen=True)
class ActivationResult:
    """Outcome of one activate/deactivate call."""

    success: bool
    reason: str = ""

    @classmethod
    def ok(cls) -> "ActivationResult":
        return cls(success=True)

    @classmethod
    def failed(cls, reason: str) -> "ActivationResult":
        return cls(success=False, reason=reason)


class TargetActivationPort(ABC):
    """
    Abstract capability exposed by the campaign/list subsystem.

    Implementations:
        HttpTargetPort — the dialer REST API, default
        InMemoryTargetPort — tests and `target.provider = "memory"`
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Short identifier, e.g. 'http', 'memory'."""
        ...

    @abstractmethod
    async def activate(self, schedule_type: ScheduleType, target_id: str) -> ActivationResult:
        """Switch the target on."""
        ...

    @abstractmethod
    async def deactivate(self, schedule_type: ScheduleType, target_id: str) -> ActivationResult:
        """Switch the target off."""
        ...

    async def apply(
        self, action: Action, schedule_type: ScheduleType, target_id: str
    ) -> ActivationResult:
        """Dispatch to activate() or deactivate()."""
        if action == Action.ACTIVATE:
            return await self.activate(schedule_type, target_id)
        return await self.deactivate(schedule_type, target_id)

    async def close(self) -> None:
        """Release any held connections."""
        return None
