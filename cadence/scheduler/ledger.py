"""
ExecutionLedger — one row per (schedule, occurrence date) that was ever fired.

Uses aiosqlite against the same database file as the ScheduleStore.
The primary key on (schedule_id, occurrence_date) is the only
serialization point between executor processes: whoever inserts the row
owns the occurrence, everyone else gets ClaimConflict.

Table: executions
    schedule_id     INT   ┐ PK
    occurrence_date TEXT  ┘ ('YYYY-MM-DD')
    status          TEXT  ('firing' | 'committed' | 'failed')
    claimed_by      TEXT  (executor instance id)
    claimed_at      TEXT  (refreshed on every attempt)
    attempts        INT
    executed_at     TEXT  NULL (time of the last outcome)
    error           TEXT  NULL
"""

from __future__ import annotations

import datetime
import logging
import sqlite3
import uuid
from pathlib import Path

import aiosqlite

from cadence.core.errors import ClaimConflict, StorageError, StoreUnavailable
from cadence.scheduler.schedule import ExecutionFact, Outcome, format_datetime

logger = logging.getLogger(__name__)


class ExecutionLedger:
    """
    Claims and outcomes for individual occurrences.

    Usage:
        ledger = ExecutionLedger("~/.cadence/cadence.db", instance_id="exec-1")
        await ledger.initialize()

        try:
            await ledger.claim(schedule.id, day)
        except ClaimConflict:
            return  # someone else has it
        await ledger.begin_attempt(schedule.id, day)
        await ledger.record_success(schedule.id, day)
    """

    def __init__(self, db_path: str | Path, instance_id: str | None = None) -> None:
        self._db_path = Path(db_path).expanduser()
        self._db: aiosqlite.Connection | None = None
        self.instance_id = instance_id or f"cadence-{uuid.uuid4().hex[:8]}"

    async def initialize(self) -> None:
        """Open the database and create the executions table."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            self._db = await aiosqlite.connect(str(self._db_path), timeout=10)
            self._db.row_factory = aiosqlite.Row

            await self._db.execute("PRAGMA journal_mode=WAL")
            await self._db.execute("PRAGMA synchronous=NORMAL")

            await self._db.execute(
                """
                CREATE TABLE IF NOT EXISTS executions (
                    schedule_id     INTEGER NOT NULL,
                    occurrence_date TEXT NOT NULL,
                    status          TEXT NOT NULL,
                    claimed_by      TEXT NOT NULL,
                    claimed_at      TEXT NOT NULL,
                    attempts        INTEGER NOT NULL DEFAULT 0,
                    executed_at     TEXT,
                    error           TEXT,
                    PRIMARY KEY (schedule_id, occurrence_date)
                )
                """
            )
            await self._db.execute(
                "CREATE INDEX IF NOT EXISTS idx_executions_date ON executions(occurrence_date)"
            )
            await self._db.commit()
            logger.debug(f"ExecutionLedger initialized at {self._db_path} as {self.instance_id}")

        except sqlite3.Error as e:
            raise StoreUnavailable(f"Failed to initialize ledger at {self._db_path}: {e}") from e

    async def _ensure_db(self) -> aiosqlite.Connection:
        if self._db is None:
            await self.initialize()
        return self._db  # type: ignore[return-value]

    async def _write(self, sql: str, params: tuple) -> int:
        """Execute one statement, commit, return the affected row count."""
        db = await self._ensure_db()
        try:
            cursor = await db.execute(sql, params)
            await db.commit()
            return cursor.rowcount
        except sqlite3.OperationalError as e:
            raise StoreUnavailable(f"Ledger unavailable: {e}") from e
        except sqlite3.Error as e:
            raise StorageError(f"Ledger write failed: {e}") from e

    async def _read(self, sql: str, params: tuple = ()) -> list[ExecutionFact]:
        db = await self._ensure_db()
        try:
            async with db.execute(sql, params) as cursor:
                rows = await cursor.fetchall()
        except sqlite3.OperationalError as e:
            raise StoreUnavailable(f"Ledger unavailable: {e}") from e
        except sqlite3.Error as e:
            raise StorageError(f"Ledger read failed: {e}") from e
        return [ExecutionFact.from_dict(dict(row)) for row in rows]

    # ── Claims ───────────────────────────────────────────────────────────────

    async def claim(
        self,
        schedule_id: int,
        occurrence_date: datetime.date,
        now: datetime.datetime | None = None,
        stale_before: datetime.datetime | None = None,
        max_attempts: int = 3,
    ) -> ExecutionFact:
        """
        Take exclusive ownership of one occurrence.

        Inserts a 'firing' row. If the row already exists and stale_before
        is given, an abandoned non-terminal claim is taken over with a
        single conditional UPDATE so only one contender wins. The returned
        fact keeps the attempts already spent; a claim whose owner died
        during the last attempt comes back with no attempts left.

        Raises ClaimConflict if the occurrence belongs to someone else.
        """
        now = now or datetime.datetime.now()
        day = occurrence_date.isoformat()
        stamp = format_datetime(now)

        inserted = await self._write(
            """
            INSERT OR IGNORE INTO executions
                (schedule_id, occurrence_date, status, claimed_by, claimed_at, attempts)
            VALUES (?, ?, ?, ?, ?, 0)
            """,
            (schedule_id, day, Outcome.FIRING.value, self.instance_id, stamp),
        )
        if inserted:
            return ExecutionFact(
                schedule_id=schedule_id,
                occurrence_date=occurrence_date,
                status=Outcome.FIRING,
                claimed_by=self.instance_id,
                claimed_at=now.replace(microsecond=0),
            )

        if stale_before is not None:
            taken = await self._write(
                """
                UPDATE executions
                SET status = ?, claimed_by = ?, claimed_at = ?
                WHERE schedule_id = ? AND occurrence_date = ?
                  AND (status = ? OR (status = ? AND attempts < ?))
                  AND claimed_at < ?
                """,
                (
                    Outcome.FIRING.value, self.instance_id, stamp,
                    schedule_id, day,
                    Outcome.FIRING.value, Outcome.FAILED.value, max_attempts,
                    format_datetime(stale_before),
                ),
            )
            if taken:
                logger.info(f"Reclaimed stale occurrence {schedule_id}@{day}")
                fact = await self.get(schedule_id, occurrence_date)
                if fact is not None:
                    return fact

        raise ClaimConflict(
            f"Occurrence {schedule_id}@{day} already claimed",
            schedule_id=schedule_id,
            occurrence_date=day,
        )

    async def begin_attempt(
        self,
        schedule_id: int,
        occurrence_date: datetime.date,
        now: datetime.datetime | None = None,
    ) -> bool:
        """
        Move an owned occurrence to 'firing' and count the attempt.

        Returns False if this instance no longer owns the claim.
        """
        rows = await self._write(
            """
            UPDATE executions
            SET status = ?, attempts = attempts + 1, claimed_at = ?
            WHERE schedule_id = ? AND occurrence_date = ? AND claimed_by = ?
              AND status != ?
            """,
            (
                Outcome.FIRING.value, format_datetime(now or datetime.datetime.now()),
                schedule_id, occurrence_date.isoformat(), self.instance_id,
                Outcome.COMMITTED.value,
            ),
        )
        return rows > 0

    # ── Outcomes ─────────────────────────────────────────────────────────────

    async def record_success(
        self,
        schedule_id: int,
        occurrence_date: datetime.date,
        now: datetime.datetime | None = None,
    ) -> None:
        await self._record(schedule_id, occurrence_date, Outcome.COMMITTED, None, now)

    async def record_failure(
        self,
        schedule_id: int,
        occurrence_date: datetime.date,
        error: str,
        now: datetime.datetime | None = None,
    ) -> None:
        await self._record(schedule_id, occurrence_date, Outcome.FAILED, error, now)

    async def _record(
        self,
        schedule_id: int,
        occurrence_date: datetime.date,
        status: Outcome,
        error: str | None,
        now: datetime.datetime | None,
    ) -> None:
        stamp = format_datetime(now or datetime.datetime.now())
        rows = await self._write(
            """
            UPDATE executions
            SET status = ?, error = ?, executed_at = ?, claimed_at = ?
            WHERE schedule_id = ? AND occurrence_date = ? AND claimed_by = ?
            """,
            (
                status.value, error, stamp, stamp,
                schedule_id, occurrence_date.isoformat(), self.instance_id,
            ),
        )
        if not rows:
            logger.warning(
                f"Outcome {status.value} for {schedule_id}@{occurrence_date} not recorded: "
                f"claim no longer held by {self.instance_id}"
            )

    # ── Queries ──────────────────────────────────────────────────────────────

    async def get(
        self, schedule_id: int, occurrence_date: datetime.date
    ) -> ExecutionFact | None:
        facts = await self._read(
            "SELECT * FROM executions WHERE schedule_id = ? AND occurrence_date = ?",
            (schedule_id, occurrence_date.isoformat()),
        )
        return facts[0] if facts else None

    async def facts_for_date(self, occurrence_date: datetime.date) -> dict[int, ExecutionFact]:
        """All facts for one day, keyed by schedule id."""
        facts = await self._read(
            "SELECT * FROM executions WHERE occurrence_date = ?",
            (occurrence_date.isoformat(),),
        )
        return {f.schedule_id: f for f in facts}

    async def latest_per_schedule(self) -> dict[int, ExecutionFact]:
        """The most recent occurrence fact of every schedule that has one."""
        facts = await self._read(
            """
            SELECT e.* FROM executions e
            WHERE e.occurrence_date = (
                SELECT MAX(occurrence_date) FROM executions
                WHERE schedule_id = e.schedule_id
            )
            """
        )
        return {f.schedule_id: f for f in facts}

    async def history(
        self, schedule_id: int | None = None, limit: int = 50
    ) -> list[ExecutionFact]:
        """Recent facts, newest occurrence first."""
        if schedule_id is None:
            return await self._read(
                "SELECT * FROM executions ORDER BY occurrence_date DESC, claimed_at DESC LIMIT ?",
                (limit,),
            )
        return await self._read(
            """
            SELECT * FROM executions WHERE schedule_id = ?
            ORDER BY occurrence_date DESC LIMIT ?
            """,
            (schedule_id, limit),
        )

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None
