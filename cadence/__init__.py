"""
Cadence — scheduled activation of dialer campaigns and lists.

Public API:
    from cadence import ScheduleService, ExecutorEngine, occurs_on
"""

__version__ = "0.1.0"

# Core
from cadence.core.config import CadenceConfig
from cadence.core.errors import (
    ActivationFailure,
    CadenceError,
    ClaimConflict,
    ValidationError,
)

# Scheduler
from cadence.scheduler.schedule import (
    Action,
    ExecutionFact,
    Outcome,
    Recurrence,
    ScheduleRecord,
    ScheduleType,
)
from cadence.scheduler.occurrence import is_within_window, matching_dates, occurs_on
from cadence.scheduler.resolver import next_occurrence, resolve_due
from cadence.scheduler.store import ScheduleStore
from cadence.scheduler.ledger import ExecutionLedger
from cadence.scheduler.engine import ExecutorEngine
from cadence.scheduler.service import ScheduleService, Upcoming

# Targets
from cadence.targets.base import ActivationResult, TargetActivationPort

__all__ = [
    # Core
    "CadenceConfig",
    "CadenceError",
    "ValidationError",
    "ClaimConflict",
    "ActivationFailure",
    # Scheduler
    "Action",
    "ExecutionFact",
    "Outcome",
    "Recurrence",
    "ScheduleRecord",
    "ScheduleType",
    "occurs_on",
    "is_within_window",
    "matching_dates",
    "resolve_due",
    "next_occurrence",
    "ScheduleStore",
    "ExecutionLedger",
    "ExecutorEngine",
    "ScheduleService",
    "Upcoming",
    # Targets
    "ActivationResult",
    "TargetActivationPort",
]
