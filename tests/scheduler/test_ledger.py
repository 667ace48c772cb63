"""Tests for cadence/scheduler/ledger.py"""
from __future__ import annotations

import asyncio
from datetime import date, datetime, timedelta

import pytest
import pytest_asyncio

from cadence.core.errors import ClaimConflict
from cadence.scheduler.ledger import ExecutionLedger
from cadence.scheduler.schedule import Outcome

DAY = date(2024, 3, 1)
NOW = datetime(2024, 3, 1, 8, 0, 0)


@pytest_asyncio.fixture
async def other_ledger(db_path, ledger):
    """A second executor instance on the same database."""
    lg = ExecutionLedger(db_path, instance_id="exec-b")
    await lg.initialize()
    yield lg
    await lg.close()


@pytest.mark.asyncio
class TestClaims:
    async def test_first_claim_wins(self, ledger):
        fact = await ledger.claim(1, DAY, now=NOW)
        assert fact.status == Outcome.FIRING
        assert fact.claimed_by == "exec-a"
        assert fact.attempts == 0

    async def test_second_claim_conflicts(self, ledger, other_ledger):
        await ledger.claim(1, DAY, now=NOW)
        with pytest.raises(ClaimConflict) as exc:
            await other_ledger.claim(1, DAY, now=NOW)
        assert exc.value.schedule_id == 1
        assert exc.value.occurrence_date == "2024-03-01"

    async def test_same_instance_cannot_claim_twice(self, ledger):
        await ledger.claim(1, DAY, now=NOW)
        with pytest.raises(ClaimConflict):
            await ledger.claim(1, DAY, now=NOW)

    async def test_different_days_are_independent(self, ledger):
        await ledger.claim(1, DAY, now=NOW)
        await ledger.claim(1, DAY + timedelta(days=1), now=NOW)
        await ledger.claim(2, DAY, now=NOW)
        assert set((await ledger.facts_for_date(DAY)).keys()) == {1, 2}

    async def test_concurrent_claims_have_one_winner(self, ledger, other_ledger):
        results = await asyncio.gather(
            ledger.claim(7, DAY, now=NOW),
            other_ledger.claim(7, DAY, now=NOW),
            return_exceptions=True,
        )
        conflicts = [r for r in results if isinstance(r, ClaimConflict)]
        assert len(conflicts) == 1
        fact = await ledger.get(7, DAY)
        assert fact.claimed_by in {"exec-a", "exec-b"}

    async def test_stale_claim_can_be_taken_over(self, ledger, other_ledger):
        await ledger.claim(1, DAY, now=NOW)
        await ledger.begin_attempt(1, DAY, now=NOW)
        later = NOW + timedelta(minutes=30)

        fact = await other_ledger.claim(
            1, DAY, now=later, stale_before=later - timedelta(minutes=10), max_attempts=3
        )
        assert fact.claimed_by == "exec-b"
        assert fact.attempts == 1

        # The original owner can no longer write outcomes
        assert await ledger.begin_attempt(1, DAY, now=later) is False

    async def test_fresh_claim_is_not_taken_over(self, ledger, other_ledger):
        await ledger.claim(1, DAY, now=NOW)
        with pytest.raises(ClaimConflict):
            await other_ledger.claim(
                1, DAY, now=NOW + timedelta(minutes=1),
                stale_before=NOW - timedelta(minutes=10),
            )

    async def test_committed_claim_is_never_taken_over(self, ledger, other_ledger):
        await ledger.claim(1, DAY, now=NOW)
        await ledger.begin_attempt(1, DAY, now=NOW)
        await ledger.record_success(1, DAY, now=NOW)
        later = NOW + timedelta(days=1)
        with pytest.raises(ClaimConflict):
            await other_ledger.claim(1, DAY, now=later, stale_before=later)

    async def test_claim_stranded_on_last_attempt_is_taken_over(self, ledger, other_ledger):
        await ledger.claim(1, DAY, now=NOW)
        for _ in range(3):
            await ledger.begin_attempt(1, DAY, now=NOW)
        later = NOW + timedelta(minutes=30)

        fact = await other_ledger.claim(
            1, DAY, now=later, stale_before=later - timedelta(minutes=10), max_attempts=3
        )
        assert fact.claimed_by == "exec-b"
        assert fact.status == Outcome.FIRING
        assert fact.attempts == 3
        assert fact.is_reclaimable(later, max_attempts=3) is False

    async def test_exhausted_failure_is_never_taken_over(self, ledger, other_ledger):
        await ledger.claim(1, DAY, now=NOW)
        for _ in range(3):
            await ledger.begin_attempt(1, DAY, now=NOW)
            await ledger.record_failure(1, DAY, "down", now=NOW)
        later = NOW + timedelta(days=1)
        with pytest.raises(ClaimConflict):
            await other_ledger.claim(1, DAY, now=later, stale_before=later, max_attempts=3)


@pytest.mark.asyncio
class TestOutcomes:
    async def test_success_is_committed(self, ledger):
        await ledger.claim(1, DAY, now=NOW)
        await ledger.begin_attempt(1, DAY, now=NOW)
        await ledger.record_success(1, DAY, now=NOW + timedelta(seconds=2))
        fact = await ledger.get(1, DAY)
        assert fact.status == Outcome.COMMITTED
        assert fact.executed_at == NOW + timedelta(seconds=2)
        assert fact.attempts == 1
        assert fact.error is None

    async def test_failure_keeps_error_and_attempts(self, ledger):
        await ledger.claim(1, DAY, now=NOW)
        await ledger.begin_attempt(1, DAY, now=NOW)
        await ledger.record_failure(1, DAY, "HTTP 503: busy", now=NOW)
        await ledger.begin_attempt(1, DAY, now=NOW)
        fact = await ledger.get(1, DAY)
        assert fact.status == Outcome.FIRING
        assert fact.attempts == 2
        assert fact.error == "HTTP 503: busy"

    async def test_outcome_from_non_owner_is_ignored(self, ledger, other_ledger):
        await ledger.claim(1, DAY, now=NOW)
        await other_ledger.record_success(1, DAY, now=NOW)
        fact = await ledger.get(1, DAY)
        assert fact.status == Outcome.FIRING

    async def test_history_newest_first(self, ledger):
        for offset in range(3):
            await ledger.claim(1, DAY + timedelta(days=offset), now=NOW)
        await ledger.claim(2, DAY, now=NOW)

        everything = await ledger.history()
        assert [f.occurrence_date for f in everything][:2] == [DAY + timedelta(days=2), DAY + timedelta(days=1)]

        only_one = await ledger.history(schedule_id=2)
        assert [f.schedule_id for f in only_one] == [2]

    async def test_latest_per_schedule(self, ledger):
        await ledger.claim(1, DAY, now=NOW)
        await ledger.claim(1, DAY + timedelta(days=7), now=NOW)
        await ledger.claim(2, DAY, now=NOW)
        latest = await ledger.latest_per_schedule()
        assert latest[1].occurrence_date == DAY + timedelta(days=7)
        assert latest[2].occurrence_date == DAY

    async def test_fact_serializes_for_reporting(self, ledger):
        await ledger.claim(1, DAY, now=NOW)
        data = (await ledger.get(1, DAY)).to_dict()
        assert data["occurrence_date"] == "2024-03-01"
        assert data["status"] == "firing"
        assert data["claimed_at"] == "2024-03-01 08:00:00"
        assert data["executed_at"] is None
