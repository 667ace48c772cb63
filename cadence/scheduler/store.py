"""
ScheduleStore — SQLite persistence for schedule definitions.

DB: ~/.cadence/cadence.db  (shared with the execution ledger)

Table: schedules
    id            INTEGER PK AUTOINCREMENT
    schedule_type TEXT  ('list' | 'campaign')
    target_id     TEXT
    target_name   TEXT
    action        TEXT  ('activate' | 'deactivate')
    scheduled_at  TEXT  ('YYYY-MM-DD HH:MM:SS')
    end_at        TEXT  NULL
    recurring     TEXT  ('none' | 'daily' | 'weekly' | 'monthly')
    executed      INT   (0/1)
    created_at    TEXT
    updated_at    TEXT  NULL
"""

from __future__ import annotations

import asyncio
import datetime
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any, Callable

from cadence.core.errors import StorageError, StoreUnavailable
from cadence.scheduler.schedule import ScheduleRecord

logger = logging.getLogger(__name__)


class ScheduleStore:
    """
    Thread-safe SQLite store for schedules.  All blocking ops run in executor.

    Every read goes to the database, so a deleted schedule is invisible to
    the executor from its next tick on.

    Usage:
        store = ScheduleStore()
        await store.initialize()

        record = await store.create(record)
        visible = await store.list_window(date(2024, 3, 1), date(2024, 3, 31))
        await store.mark_executed(record.id)
    """

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = Path(db_path or (Path.home() / ".cadence" / "cadence.db")).expanduser()
        self._db: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    async def initialize(self) -> None:
        await self._run(self._init_sync)

    def _init_sync(self) -> None:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        db = self._get_db()
        db.execute("PRAGMA journal_mode=WAL")
        db.execute("""
            CREATE TABLE IF NOT EXISTS schedules (
                id            INTEGER PRIMARY KEY AUTOINCREMENT,
                schedule_type TEXT NOT NULL,
                target_id     TEXT NOT NULL,
                target_name   TEXT NOT NULL DEFAULT '',
                action        TEXT NOT NULL,
                scheduled_at  TEXT NOT NULL,
                end_at        TEXT,
                recurring     TEXT NOT NULL DEFAULT 'none',
                executed      INTEGER NOT NULL DEFAULT 0,
                created_at    TEXT NOT NULL,
                updated_at    TEXT
            )
        """)
        db.execute(
            "CREATE INDEX IF NOT EXISTS idx_schedules_start ON schedules(scheduled_at)"
        )
        db.commit()
        logger.debug(f"ScheduleStore initialised at {self._db_path}")

    def _get_db(self) -> sqlite3.Connection:
        if self._db is None:
            db = sqlite3.connect(str(self._db_path), check_same_thread=False, timeout=10)
            db.row_factory = sqlite3.Row
            self._db = db
        return self._db

    async def _run(self, fn: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._locked, fn, *args)

    def _locked(self, fn: Callable[..., Any], *args: Any) -> Any:
        with self._lock:
            try:
                return fn(*args)
            except sqlite3.OperationalError as e:
                raise StoreUnavailable(f"Schedule store unavailable at {self._db_path}: {e}") from e
            except sqlite3.Error as e:
                raise StorageError(f"Schedule store error: {e}") from e

    # ── CRUD ─────────────────────────────────────────────────────────────────

    async def create(self, record: ScheduleRecord) -> ScheduleRecord:
        """Insert a new schedule and return it with its assigned id."""
        return await self._run(self._create_sync, record)

    def _create_sync(self, record: ScheduleRecord) -> ScheduleRecord:
        db = self._get_db()
        params = record.to_dict()
        params.pop("id")
        params["executed"] = int(record.executed)
        cur = db.execute(
            """
            INSERT INTO schedules (schedule_type, target_id, target_name, action,
                                   scheduled_at, end_at, recurring, executed,
                                   created_at, updated_at)
            VALUES (:schedule_type, :target_id, :target_name, :action,
                    :scheduled_at, :end_at, :recurring, :executed,
                    :created_at, :updated_at)
            """,
            params,
        )
        db.commit()
        record.id = int(cur.lastrowid)
        return record

    async def update(self, record: ScheduleRecord) -> bool:
        """Overwrite a stored schedule. Returns False if it no longer exists."""
        return await self._run(self._update_sync, record)

    def _update_sync(self, record: ScheduleRecord) -> bool:
        db = self._get_db()
        record.updated_at = datetime.datetime.now().replace(microsecond=0)
        params = record.to_dict()
        params["executed"] = int(record.executed)
        cur = db.execute(
            """
            UPDATE schedules SET
                schedule_type=:schedule_type, target_id=:target_id,
                target_name=:target_name, action=:action,
                scheduled_at=:scheduled_at, end_at=:end_at,
                recurring=:recurring, executed=:executed,
                updated_at=:updated_at
            WHERE id=:id
            """,
            params,
        )
        db.commit()
        return cur.rowcount > 0

    async def delete(self, schedule_id: int) -> bool:
        return await self._run(self._delete_sync, schedule_id)

    def _delete_sync(self, schedule_id: int) -> bool:
        db = self._get_db()
        cur = db.execute("DELETE FROM schedules WHERE id=?", (schedule_id,))
        db.commit()
        return cur.rowcount > 0

    async def get(self, schedule_id: int) -> ScheduleRecord | None:
        return await self._run(self._get_sync, schedule_id)

    def _get_sync(self, schedule_id: int) -> ScheduleRecord | None:
        db = self._get_db()
        row = db.execute("SELECT * FROM schedules WHERE id=?", (schedule_id,)).fetchone()
        return self._row_to_schedule(row) if row else None

    async def get_all(self) -> list[ScheduleRecord]:
        return await self._run(self._get_all_sync)

    def _get_all_sync(self) -> list[ScheduleRecord]:
        db = self._get_db()
        rows = db.execute("SELECT * FROM schedules ORDER BY scheduled_at ASC, id ASC").fetchall()
        return self._rows_to_schedules(rows)

    async def list_window(
        self, start: datetime.date, end: datetime.date
    ) -> list[ScheduleRecord]:
        """
        Schedules whose [start, end] window can intersect the given days.

        A coarse pre-filter; the occurrence rules decide the actual days.
        """
        return await self._run(self._list_window_sync, start, end)

    def _list_window_sync(
        self, start: datetime.date, end: datetime.date
    ) -> list[ScheduleRecord]:
        db = self._get_db()
        rows = db.execute(
            """
            SELECT * FROM schedules
            WHERE date(scheduled_at) <= :end
              AND (
                    (end_at IS NOT NULL AND date(end_at) >= :start)
                 OR (end_at IS NULL AND recurring != 'none')
                 OR (end_at IS NULL AND date(scheduled_at) >= :start)
              )
            ORDER BY scheduled_at ASC, id ASC
            """,
            {"start": start.isoformat(), "end": end.isoformat()},
        ).fetchall()
        return self._rows_to_schedules(rows)

    async def mark_executed(self, schedule_id: int) -> bool:
        """Set the one-shot executed flag. No-op if the schedule was deleted."""
        return await self._run(self._mark_executed_sync, schedule_id)

    def _mark_executed_sync(self, schedule_id: int) -> bool:
        db = self._get_db()
        cur = db.execute("UPDATE schedules SET executed=1 WHERE id=?", (schedule_id,))
        db.commit()
        return cur.rowcount > 0

    async def close(self) -> None:
        if self._db:
            await self._run(self._db.close)
            self._db = None

    # ── Helpers ───────────────────────────────────────────────────────────────

    def _rows_to_schedules(self, rows: list[sqlite3.Row]) -> list[ScheduleRecord]:
        records = []
        for row in rows:
            record = self._row_to_schedule(row)
            if record is not None:
                records.append(record)
        return records

    def _row_to_schedule(self, row: sqlite3.Row) -> ScheduleRecord | None:
        d = dict(row)
        try:
            return ScheduleRecord.from_dict(d)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping unreadable schedule row id={d.get('id')}: {e}")
            return None
