"""Shared test fixtures for Cadence."""

import datetime

import pytest
import pytest_asyncio

from cadence.core.config import CadenceConfig, ExecutorConfig
from cadence.scheduler.ledger import ExecutionLedger
from cadence.scheduler.schedule import Action, Recurrence, ScheduleRecord, ScheduleType
from cadence.scheduler.service import ScheduleService
from cadence.scheduler.store import ScheduleStore
from cadence.targets.memory import InMemoryTargetPort


def _make_schedule(
    scheduled_at="2024-03-01 08:00:00",
    recurring=Recurrence.NONE,
    end_at=None,
    **kwargs,
) -> ScheduleRecord:
    """Build an in-memory ScheduleRecord with sensible defaults."""
    defaults = dict(
        schedule_type=ScheduleType.CAMPAIGN,
        target_id="C01",
        target_name="Sales",
        action=Action.ACTIVATE,
    )
    defaults.update(kwargs)
    return ScheduleRecord(
        scheduled_at=datetime.datetime.fromisoformat(scheduled_at),
        end_at=datetime.datetime.fromisoformat(end_at) if end_at else None,
        recurring=recurring,
        **defaults,
    )


@pytest.fixture
def make_schedule():
    """Factory for in-memory ScheduleRecords."""
    return _make_schedule


@pytest.fixture
def config():
    """Create a default config without loading from disk."""
    return CadenceConfig()


@pytest.fixture
def executor_config():
    """Fast retries for engine tests."""
    return ExecutorConfig(
        activation_timeout=0.5,
        max_attempts=3,
        backoff_base=0.0,
        backoff_max=0.0,
        claim_ttl=600,
    )


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "cadence.db"


@pytest_asyncio.fixture
async def store(db_path):
    s = ScheduleStore(db_path=db_path)
    await s.initialize()
    yield s
    await s.close()


@pytest_asyncio.fixture
async def ledger(db_path):
    lg = ExecutionLedger(db_path, instance_id="exec-a")
    await lg.initialize()
    yield lg
    await lg.close()


@pytest.fixture
def service(store, ledger):
    return ScheduleService(store, ledger)


@pytest.fixture
def port():
    return InMemoryTargetPort()
