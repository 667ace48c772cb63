"""
Schedule data model — ScheduleRecord and ExecutionFact.

A ScheduleRecord is operator-authored: which target, which action, when,
and how it repeats. An ExecutionFact is engine-authored: what happened to
one occurrence of one schedule.

Datetimes are naive and interpreted on the engine's single clock. They
serialize as "YYYY-MM-DD HH:MM:SS"; occurrence dates as "YYYY-MM-DD".
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from enum import Enum

DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Enums
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class ScheduleType(str, Enum):
    """Kind of target a schedule acts on."""

    LIST = "list"
    CAMPAIGN = "campaign"


class Action(str, Enum):
    """Capability invoked on the target."""

    ACTIVATE = "activate"
    DEACTIVATE = "deactivate"


class Recurrence(str, Enum):
    """Repetition rule."""

    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class Outcome(str, Enum):
    """State of one occurrence in the ledger."""

    FIRING = "firing"
    COMMITTED = "committed"
    FAILED = "failed"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Records
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@dataclass
class ScheduleRecord:
    """A scheduled activation or deactivation of a campaign or list."""

    schedule_type: ScheduleType
    target_id: str
    action: Action
    scheduled_at: datetime.datetime
    target_name: str = ""  # display cache only
    end_at: datetime.datetime | None = None
    recurring: Recurrence = Recurrence.NONE
    executed: bool = False  # one-shot schedules only

    id: int = 0  # 0 = not yet stored
    created_at: datetime.datetime = field(
        default_factory=lambda: datetime.datetime.now().replace(microsecond=0)
    )
    updated_at: datetime.datetime | None = None

    @property
    def is_recurring(self) -> bool:
        return self.recurring != Recurrence.NONE

    @property
    def label(self) -> str:
        """Short human-readable description, e.g. 'activate campaign Sales'."""
        name = self.target_name or self.target_id
        return f"{self.action.value} {self.schedule_type.value} {name}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "schedule_type": self.schedule_type.value,
            "target_id": self.target_id,
            "target_name": self.target_name,
            "action": self.action.value,
            "scheduled_at": format_datetime(self.scheduled_at),
            "end_at": format_datetime(self.end_at) if self.end_at else None,
            "recurring": self.recurring.value,
            "executed": self.executed,
            "created_at": format_datetime(self.created_at),
            "updated_at": format_datetime(self.updated_at) if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "ScheduleRecord":
        """
        Build a record from its serialised form.

        Raises ValueError for unknown enum values or unparseable dates.
        """
        end_at = d.get("end_at")
        updated_at = d.get("updated_at")
        created_at = d.get("created_at")
        return cls(
            id=int(d.get("id") or 0),
            schedule_type=ScheduleType(d["schedule_type"]),
            target_id=str(d["target_id"]),
            target_name=d.get("target_name") or "",
            action=Action(d["action"]),
            scheduled_at=parse_datetime(d["scheduled_at"]),
            end_at=parse_datetime(end_at) if end_at else None,
            recurring=Recurrence(d.get("recurring") or "none"),
            executed=bool(d.get("executed", False)),
            created_at=parse_datetime(created_at) if created_at else datetime.datetime.now(),
            updated_at=parse_datetime(updated_at) if updated_at else None,
        )


@dataclass
class ExecutionFact:
    """What happened to the occurrence of *schedule_id* on *occurrence_date*."""

    schedule_id: int
    occurrence_date: datetime.date
    status: Outcome
    claimed_by: str
    claimed_at: datetime.datetime
    attempts: int = 0
    executed_at: datetime.datetime | None = None
    error: str | None = None

    @property
    def committed(self) -> bool:
        return self.status == Outcome.COMMITTED

    def is_terminal(self, max_attempts: int) -> bool:
        """Committed, or failed with no attempts left."""
        if self.status == Outcome.COMMITTED:
            return True
        return self.status == Outcome.FAILED and self.attempts >= max_attempts

    def is_reclaimable(self, stale_before: datetime.datetime, max_attempts: int) -> bool:
        """
        True when the owner stopped heartbeating before finishing.

        Every attempt refreshes claimed_at, so a claim older than the TTL
        belongs to an executor that died mid-firing. A 'firing' fact with
        no attempts left is still reclaimable so its new owner can close it
        out as failed.
        """
        return not self.is_terminal(max_attempts) and self.claimed_at < stale_before

    def to_dict(self) -> dict:
        return {
            "schedule_id": self.schedule_id,
            "occurrence_date": self.occurrence_date.isoformat(),
            "status": self.status.value,
            "claimed_by": self.claimed_by,
            "claimed_at": format_datetime(self.claimed_at),
            "attempts": self.attempts,
            "executed_at": format_datetime(self.executed_at) if self.executed_at else None,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "ExecutionFact":
        executed_at = d.get("executed_at")
        return cls(
            schedule_id=int(d["schedule_id"]),
            occurrence_date=datetime.date.fromisoformat(d["occurrence_date"]),
            status=Outcome(d["status"]),
            claimed_by=d["claimed_by"],
            claimed_at=parse_datetime(d["claimed_at"]),
            attempts=int(d.get("attempts") or 0),
            executed_at=parse_datetime(executed_at) if executed_at else None,
            error=d.get("error"),
        )


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Helpers
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def parse_datetime(value: str | datetime.date | datetime.datetime) -> datetime.datetime:
    """
    Accept a datetime, a date (midnight) or an ISO string
    ("2024-03-01", "2024-03-01 08:00", "2024-03-01T08:00:00").

    Raises ValueError / TypeError on anything else.
    """
    if isinstance(value, datetime.datetime):
        return value.replace(tzinfo=None)
    if isinstance(value, datetime.date):
        return datetime.datetime.combine(value, datetime.time.min)
    if isinstance(value, str):
        return datetime.datetime.fromisoformat(value.strip()).replace(tzinfo=None)
    raise TypeError(f"Cannot interpret {value!r} as a datetime")


def format_datetime(value: datetime.datetime) -> str:
    return value.strftime(DATETIME_FORMAT)
