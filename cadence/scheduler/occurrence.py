"""
Occurrence evaluation — does a schedule apply on a given calendar day?

Pure functions, no I/O and no state between calls. Safe to call from any
number of readers. Every comparison is done on calendar days: inputs are
truncated to their date, and end_at counts through the end of its day.

Usage:
    occurs_on(schedule, date(2024, 3, 31))        # -> True / False
    matching_dates(schedule, first_of_month, last_of_month)
"""

from __future__ import annotations

import datetime
import logging
from typing import Any

from cadence.scheduler.schedule import Recurrence, ScheduleRecord, parse_datetime

logger = logging.getLogger(__name__)


def as_day(value: Any) -> datetime.date:
    """
    Truncate a date, datetime or ISO string to its calendar day.

    Raises ValueError / TypeError if *value* is not a date.
    """
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    return parse_datetime(value).date()


def occurs_on(schedule: ScheduleRecord, check: Any) -> bool:
    """
    True if *schedule* has an occurrence on the day of *check*.

    Malformed dates fail closed (False) so one bad record cannot break
    a calendar render.
    """
    try:
        check_date = as_day(check)
        start_date = as_day(schedule.scheduled_at)
        end_date = as_day(schedule.end_at) if schedule.end_at else None
        recurring = Recurrence(schedule.recurring)
    except (TypeError, ValueError, AttributeError) as e:
        logger.debug(f"occurs_on: schedule {getattr(schedule, 'id', '?')} unreadable: {e}")
        return False

    if check_date < start_date:
        return False

    if recurring == Recurrence.NONE:
        if end_date is not None:
            return start_date <= check_date <= end_date
        return check_date == start_date

    if end_date is not None and check_date > end_date:
        return False

    days_diff = (check_date - start_date).days

    if recurring == Recurrence.DAILY:
        return days_diff >= 0
    if recurring == Recurrence.WEEKLY:
        return days_diff % 7 == 0
    if recurring == Recurrence.MONTHLY:
        # Months without the start's day-of-month are skipped, not rolled over
        return check_date.day == start_date.day
    return False


def is_within_window(schedule: ScheduleRecord, check: Any) -> bool:
    """
    True if *check* falls inside the schedule's [start, end] window,
    regardless of the repetition rule.

    Without end_at the window is unbounded for recurring schedules and
    the start day alone for one-shot schedules.
    """
    try:
        check_date = as_day(check)
        start_date = as_day(schedule.scheduled_at)
        end_date = as_day(schedule.end_at) if schedule.end_at else None
    except (TypeError, ValueError, AttributeError) as e:
        logger.debug(f"is_within_window: schedule {getattr(schedule, 'id', '?')} unreadable: {e}")
        return False

    if check_date < start_date:
        return False
    if end_date is not None:
        return check_date <= end_date
    if schedule.recurring == Recurrence.NONE:
        return check_date == start_date
    return True


def matching_dates(
    schedule: ScheduleRecord,
    start: Any,
    end: Any,
) -> list[datetime.date]:
    """All days in [start, end] on which *schedule* occurs, ascending."""
    try:
        day = as_day(start)
        last = as_day(end)
    except (TypeError, ValueError) as e:
        logger.debug(f"matching_dates: bad range {start!r}..{end!r}: {e}")
        return []

    dates: list[datetime.date] = []
    while day <= last:
        if occurs_on(schedule, day):
            dates.append(day)
        day += datetime.timedelta(days=1)
    return dates
