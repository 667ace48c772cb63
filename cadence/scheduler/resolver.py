"""
Due-occurrence resolution — is something to be fired right now?

Being on the calendar is not the same as being due. An occurrence is due
when its day is today, the wall clock has reached the schedule's
time-of-day, and nothing has been recorded for it in the ledger yet.

The occurrence key is (schedule_id, occurrence_date), so a resolver that
runs every 30 seconds cannot fire the same day twice.

Usage:
    day = resolve_due(schedule, now, fact=ledger_facts.get(schedule.id))
    if day is not None:
        ...  # claim (schedule.id, day) and fire
"""

from __future__ import annotations

import datetime

from cadence.scheduler.occurrence import as_day, occurs_on
from cadence.scheduler.schedule import ExecutionFact, Recurrence, ScheduleRecord

# How far next_occurrence() and last_due_occurrence() search. The longest
# gap between two occurrences is a monthly rule on day 31 (two months).
SEARCH_HORIZON_DAYS = 400


def resolve_due(
    schedule: ScheduleRecord,
    now: datetime.datetime,
    fact: ExecutionFact | None = None,
    stale_before: datetime.datetime | None = None,
    max_attempts: int = 3,
) -> datetime.date | None:
    """
    Return today's occurrence date if it is due to fire at *now*, else None.

    Args:
        schedule:     The schedule to check.
        now:          Current instant on the engine clock.
        fact:         Ledger entry for (schedule.id, today), if any.
        stale_before: Claims older than this may be taken over.
        max_attempts: Retry ceiling, used to tell terminal failures apart.
    """
    if schedule.recurring == Recurrence.NONE and schedule.executed:
        return None

    today = now.date()
    if not occurs_on(schedule, today):
        return None

    # A one-shot range is visible every day but fires only on its first day
    if schedule.recurring == Recurrence.NONE and today != as_day(schedule.scheduled_at):
        return None

    if now.time() < fire_time(schedule):
        return None

    if fact is not None:
        if stale_before is not None and fact.is_reclaimable(stale_before, max_attempts):
            return today
        return None

    return today


def next_occurrence(
    schedule: ScheduleRecord,
    now: datetime.datetime,
    fact_today: ExecutionFact | None = None,
) -> datetime.datetime | None:
    """
    The next instant at which *schedule* is expected to fire.

    Today's occurrence counts until the ledger has a fact for it, so an
    overdue occurrence is reported with a past instant. Returns None when
    the rule is exhausted (executed one-shot, or past end_at).
    """
    at = fire_time(schedule)
    start = as_day(schedule.scheduled_at)

    if schedule.recurring == Recurrence.NONE:
        if schedule.executed:
            return None
        return datetime.datetime.combine(start, at)

    today = now.date()
    end = as_day(schedule.end_at) if schedule.end_at else None
    day = max(today, start)
    for _ in range(SEARCH_HORIZON_DAYS):
        if end is not None and day > end:
            return None
        if occurs_on(schedule, day) and not (day == today and fact_today is not None):
            return datetime.datetime.combine(day, at)
        day += datetime.timedelta(days=1)
    return None


def last_due_occurrence(
    schedule: ScheduleRecord, now: datetime.datetime
) -> datetime.date | None:
    """
    The latest occurrence date whose fire time is at or before *now*.

    For a one-shot this is its start day once that has come. None when
    nothing has been due yet.
    """
    start = as_day(schedule.scheduled_at)
    day = now.date()
    if now.time() < fire_time(schedule):
        day -= datetime.timedelta(days=1)

    if schedule.recurring == Recurrence.NONE:
        return start if start <= day else None

    if schedule.end_at is not None:
        day = min(day, as_day(schedule.end_at))
    for _ in range(SEARCH_HORIZON_DAYS):
        if day < start:
            return None
        if occurs_on(schedule, day):
            return day
        day -= datetime.timedelta(days=1)
    return None


def fire_time(schedule: ScheduleRecord) -> datetime.time:
    """Time of day at which every occurrence fires."""
    return schedule.scheduled_at.time().replace(microsecond=0)
