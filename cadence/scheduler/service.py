"""
ScheduleService — the surface the API/presentation layer talks to.

CRUD is validated here and delegated to the ScheduleStore. The read
queries are projections over the occurrence rules and the ledger; none
of them write anything.

Usage:
    service = ScheduleService(store, ledger)
    record = await service.create_schedule(
        schedule_type="campaign", target_id="C01", action="activate",
        scheduled_at="2024-03-01 08:00", recurring="weekly",
    )
    month = await service.list_occurrences(date(2024, 3, 1), date(2024, 3, 31))
    soon = await service.list_upcoming(limit=10)
"""

from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass
from typing import Any

from cadence.core.errors import ValidationError
from cadence.scheduler.ledger import ExecutionLedger
from cadence.scheduler.occurrence import as_day, matching_dates
from cadence.scheduler.resolver import last_due_occurrence, next_occurrence
from cadence.scheduler.schedule import (
    Action,
    ExecutionFact,
    Recurrence,
    ScheduleRecord,
    ScheduleType,
    parse_datetime,
)
from cadence.scheduler.store import ScheduleStore

logger = logging.getLogger(__name__)

# Fields an operator may set. Everything else belongs to the store or engine.
EDITABLE_FIELDS = (
    "schedule_type",
    "target_id",
    "target_name",
    "action",
    "scheduled_at",
    "end_at",
    "recurring",
)


@dataclass
class Upcoming:
    """
    A schedule with its next expected run and its latest ledger entry.

    executed: the most recent due occurrence is committed or failed for good.
    overdue:  next_run had passed at query time and that occurrence has no
              ledger entry yet.
    """

    schedule: ScheduleRecord
    next_run: datetime.datetime
    last_execution: ExecutionFact | None = None
    executed: bool = False
    overdue: bool = False


class ScheduleService:
    """Validated CRUD plus calendar and upcoming queries."""

    def __init__(
        self, store: ScheduleStore, ledger: ExecutionLedger, max_attempts: int = 3
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._max_attempts = max_attempts

    # ── CRUD ─────────────────────────────────────────────────────────────────

    async def create_schedule(self, **fields: Any) -> ScheduleRecord:
        """Validate and store a new schedule. Raises ValidationError."""
        record = build_schedule(fields)
        record = await self._store.create(record)
        logger.info(f"Schedule {record.id} created: {record.label} at {record.scheduled_at}")
        return record

    async def update_schedule(self, schedule_id: int, **changes: Any) -> ScheduleRecord:
        """
        Apply operator edits. Raises ValidationError.

        Changing the timing or the rule of a one-shot schedule re-arms it.
        """
        current = await self._store.get(schedule_id)
        if current is None:
            raise ValidationError(f"Schedule {schedule_id} not found", field="id")

        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(
                f"Fields not editable: {', '.join(sorted(unknown))}", field=sorted(unknown)[0]
            )

        merged = current.to_dict()
        merged.update(changes)
        record = build_schedule(merged)
        record.id = current.id
        record.created_at = current.created_at

        rearmed = (
            record.scheduled_at != current.scheduled_at
            or record.recurring != current.recurring
        )
        record.executed = current.executed and not rearmed

        if not await self._store.update(record):
            raise ValidationError(f"Schedule {schedule_id} not found", field="id")
        logger.info(f"Schedule {record.id} updated")
        return record

    async def delete_schedule(self, schedule_id: int) -> bool:
        """Delete a schedule. In-flight firings of it still complete."""
        deleted = await self._store.delete(schedule_id)
        if deleted:
            logger.info(f"Schedule {schedule_id} deleted")
        return deleted

    async def get_schedule(self, schedule_id: int) -> ScheduleRecord | None:
        return await self._store.get(schedule_id)

    async def list_schedules(self) -> list[ScheduleRecord]:
        return await self._store.get_all()

    # ── Queries ──────────────────────────────────────────────────────────────

    async def list_occurrences(
        self, start_date: Any, end_date: Any
    ) -> list[tuple[ScheduleRecord, list[datetime.date]]]:
        """
        Every schedule with at least one occurrence in [start_date, end_date],
        paired with its matching days.
        """
        try:
            start = as_day(start_date)
            end = as_day(end_date)
        except (TypeError, ValueError):
            raise ValidationError(
                f"Invalid date window: {start_date!r} .. {end_date!r}", field="start_date"
            ) from None
        if end < start:
            raise ValidationError("end_date is before start_date", field="end_date")

        result = []
        for schedule in await self._store.list_window(start, end):
            dates = matching_dates(schedule, start, end)
            if dates:
                result.append((schedule, dates))
        return result

    async def list_upcoming(
        self, limit: int = 20, now: datetime.datetime | None = None
    ) -> list[Upcoming]:
        """
        Schedules ordered by next expected run, soonest first.

        Executed one-shot schedules and exhausted rules are left out. A
        one-shot whose occurrence was abandoned stays listed with its
        failed ledger entry so operators can see it.
        """
        now = now or datetime.datetime.now()
        today_facts = await self._ledger.facts_for_date(now.date())
        latest = await self._ledger.latest_per_schedule()

        entries: list[Upcoming] = []
        for schedule in await self._store.get_all():
            next_run = next_occurrence(schedule, now, fact_today=today_facts.get(schedule.id))
            if next_run is None:
                continue
            entries.append(self._upcoming(schedule, next_run, latest.get(schedule.id), now))

        entries.sort(key=lambda u: (u.next_run, u.schedule.id))
        return entries[:limit]

    def _upcoming(
        self,
        schedule: ScheduleRecord,
        next_run: datetime.datetime,
        latest: ExecutionFact | None,
        now: datetime.datetime,
    ) -> Upcoming:
        due_day = last_due_occurrence(schedule, now)
        # Facts only exist for due days, so the latest one is either the
        # most recent due occurrence or an older day
        due_fact = latest if latest is not None and latest.occurrence_date == due_day else None
        executed = due_fact is not None and due_fact.is_terminal(self._max_attempts)
        if not schedule.is_recurring:
            executed = executed or schedule.executed
        return Upcoming(
            schedule,
            next_run,
            last_execution=latest,
            executed=executed,
            overdue=due_fact is None and next_run < now,
        )

    async def history(
        self, schedule_id: int | None = None, limit: int = 50
    ) -> list[ExecutionFact]:
        return await self._ledger.history(schedule_id=schedule_id, limit=limit)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Validation
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def build_schedule(fields: dict[str, Any]) -> ScheduleRecord:
    """
    Turn raw operator input into a ScheduleRecord.

    Raises ValidationError naming the first offending field.
    """
    target_id = str(fields.get("target_id") or "").strip()
    if not target_id:
        raise ValidationError("target_id is required", field="target_id")

    if not fields.get("scheduled_at"):
        raise ValidationError("scheduled_at is required", field="scheduled_at")

    schedule_type = _enum(ScheduleType, fields.get("schedule_type"), "schedule_type")
    action = _enum(Action, fields.get("action"), "action")
    recurring = _enum(Recurrence, fields.get("recurring") or Recurrence.NONE, "recurring")
    scheduled_at = _datetime(fields["scheduled_at"], "scheduled_at")

    end_at = None
    if fields.get("end_at"):
        end_at = _datetime(fields["end_at"], "end_at")
        if end_at.date() < scheduled_at.date():
            raise ValidationError("end_at is before scheduled_at", field="end_at")

    return ScheduleRecord(
        schedule_type=schedule_type,
        target_id=target_id,
        target_name=str(fields.get("target_name") or "").strip() or target_id,
        action=action,
        scheduled_at=scheduled_at.replace(microsecond=0),
        end_at=end_at.replace(microsecond=0) if end_at else None,
        recurring=recurring,
        executed=bool(fields.get("executed", False)),
    )


def _enum(enum_cls: Any, value: Any, field: str) -> Any:
    if value is None or value == "":
        raise ValidationError(f"{field} is required", field=field)
    try:
        return enum_cls(value.lower() if isinstance(value, str) else value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(f"{field} must be one of: {allowed}", field=field) from None


def _datetime(value: Any, field: str) -> datetime.datetime:
    try:
        return parse_datetime(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} is not a valid date/time: {value!r}", field=field) from None
