"""
ExecutorEngine — the background asyncio task that fires due occurrences.

Design:
- Polls every poll_interval seconds; each tick reads the schedule store
  fresh, so edits and deletions take effect on the next tick
- For each due occurrence: claims (schedule_id, occurrence_date) in the
  ledger, then fires it in its own task so a slow target never blocks
  the tick
- Each firing calls the target port under a timeout and retries failures
  with exponential backoff up to max_attempts. An occurrence that runs out
  of attempts stays FAILED in the ledger and an operator notification is
  routed; it is never retried silently or dropped
- One-shot schedules get executed=True once their occurrence commits
- No replay of missed days: if the engine was down for a whole day, that
  day's occurrence is skipped. Coming back later the same day still fires
- A claim left behind by a crashed executor is taken over once it is
  older than claim_ttl. Attempts the dead owner already spent count against
  max_attempts; if none are left the occurrence is closed out as FAILED
"""

from __future__ import annotations

import asyncio
import datetime
import logging
from typing import Awaitable, Callable

from cadence.core.config import ExecutorConfig
from cadence.core.errors import ActivationFailure, ClaimConflict, StorageError
from cadence.notifications.base import Notification
from cadence.notifications.router import NotificationRouter
from cadence.scheduler.ledger import ExecutionLedger
from cadence.scheduler.resolver import resolve_due
from cadence.scheduler.schedule import Outcome, ScheduleRecord
from cadence.scheduler.store import ScheduleStore
from cadence.targets.base import TargetActivationPort

logger = logging.getLogger(__name__)

POLL_INTERVAL = 30  # seconds between due-occurrence checks

OccurrenceKey = tuple[int, datetime.date]


class ExecutorEngine:
    """
    Background executor.

    Several engines may run against the same database; the ledger claim
    guarantees each occurrence fires at most once across all of them.

    Usage:
        engine = ExecutorEngine(store, ledger, port, router)
        await engine.start()
        ...
        await engine.stop()
    """

    def __init__(
        self,
        store: ScheduleStore,
        ledger: ExecutionLedger,
        port: TargetActivationPort,
        router: NotificationRouter | None = None,
        config: ExecutorConfig | None = None,
        poll_interval: float = POLL_INTERVAL,
        clock: Callable[[], datetime.datetime] = datetime.datetime.now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._port = port
        self._router = router
        self._config = config or ExecutorConfig()
        self._poll_interval = poll_interval
        self._clock = clock
        self._sleep = sleep
        self._task: asyncio.Task | None = None
        self._running = False
        self._in_flight: set[OccurrenceKey] = set()
        self._firing: set[asyncio.Task] = set()

    @property
    def instance_id(self) -> str:
        return self._ledger.instance_id

    @property
    def in_flight(self) -> frozenset[OccurrenceKey]:
        return frozenset(self._in_flight)

    async def start(self) -> None:
        """Start the background polling loop."""
        self._running = True
        self._task = asyncio.create_task(self._loop(), name="executor")
        logger.info(f"ExecutorEngine started as {self.instance_id}")

    async def stop(self, drain: bool = True) -> None:
        """Stop polling. With drain=True, wait for in-flight firings to finish."""
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        if drain:
            await self.drain()
        logger.info("ExecutorEngine stopped")

    async def drain(self) -> None:
        """Wait until every dispatched firing has finished."""
        if self._firing:
            await asyncio.gather(*list(self._firing), return_exceptions=True)

    # ── Internal loop ─────────────────────────────────────────────────────────

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.tick()
            except StorageError as e:
                logger.warning(f"Tick aborted, store unavailable: {e}")
            except Exception as e:
                logger.warning(f"Executor tick error (non-fatal): {e}")
            await asyncio.sleep(self._poll_interval)

    async def tick(self, now: datetime.datetime | None = None) -> list[asyncio.Task]:
        """
        Claim and dispatch every occurrence due at *now*.

        Returns the firing tasks started by this tick without awaiting them.
        Raises StorageError if the store or ledger cannot be read; nothing is
        dispatched for the schedules after the failure point.
        """
        now = now or self._clock()
        today = now.date()
        stale_before = now - datetime.timedelta(seconds=self._config.claim_ttl)

        schedules = await self._store.get_all()
        facts = await self._ledger.facts_for_date(today)

        dispatched: list[asyncio.Task] = []
        for schedule in schedules:
            day = resolve_due(
                schedule,
                now,
                fact=facts.get(schedule.id),
                stale_before=stale_before,
                max_attempts=self._config.max_attempts,
            )
            if day is None:
                continue

            key = (schedule.id, day)
            if key in self._in_flight:
                logger.debug(f"Occurrence {schedule.id}@{day} still firing, skipping tick")
                continue

            try:
                fact = await self._ledger.claim(
                    schedule.id,
                    day,
                    now=now,
                    stale_before=stale_before,
                    max_attempts=self._config.max_attempts,
                )
            except ClaimConflict:
                logger.debug(f"Occurrence {schedule.id}@{day} claimed elsewhere, skipping")
                continue

            self._in_flight.add(key)
            task = asyncio.create_task(
                self._fire(schedule, day, fact.attempts, fact.error or ""),
                name=f"fire:{schedule.id}@{day}",
            )
            self._firing.add(task)
            task.add_done_callback(self._firing.discard)
            dispatched.append(task)

        if dispatched:
            logger.info(f"Tick {now:%Y-%m-%d %H:%M:%S}: dispatched {len(dispatched)} occurrence(s)")
        return dispatched

    async def _fire(
        self,
        schedule: ScheduleRecord,
        day: datetime.date,
        spent: int = 0,
        error: str = "",
    ) -> Outcome:
        """
        Run the claimed occurrence to a final outcome.

        FIRING → COMMITTED, or FIRING → FAILED → (backoff) → FIRING … until
        max_attempts is reached. *spent* attempts were already used by an
        executor that stopped; they count against the same ceiling.
        """
        key = (schedule.id, day)
        try:
            return await self._attempt_until_done(schedule, day, spent, error)
        except StorageError as e:
            # The claim stays FIRING and is reclaimed after claim_ttl
            logger.warning(f"Occurrence {schedule.id}@{day} interrupted, store unavailable: {e}")
            return Outcome.FIRING
        finally:
            self._in_flight.discard(key)

    async def _attempt_until_done(
        self,
        schedule: ScheduleRecord,
        day: datetime.date,
        spent: int = 0,
        error: str = "",
    ) -> Outcome:
        max_attempts = self._config.max_attempts
        attempts = spent
        if spent:
            logger.info(
                f"Resuming {schedule.id}@{day} after {spent} attempt(s) by a stopped executor"
            )
        if spent >= max_attempts:
            # The previous owner died during its last attempt
            error = f"executor stopped during attempt {spent}/{max_attempts}"
            await self._ledger.record_failure(schedule.id, day, error, now=self._clock())

        for attempt in range(spent + 1, max_attempts + 1):
            attempts = attempt
            if not await self._ledger.begin_attempt(schedule.id, day, now=self._clock()):
                logger.warning(f"Occurrence {schedule.id}@{day} lost its claim, giving up")
                return Outcome.FIRING

            logger.info(
                f"Firing {schedule.label} (schedule={schedule.id}, day={day}, "
                f"attempt {attempt}/{max_attempts})"
            )
            try:
                await self._call_port(schedule)
            except ActivationFailure as e:
                error = e.message
            else:
                await self._ledger.record_success(schedule.id, day, now=self._clock())
                if not schedule.is_recurring and not await self._store.mark_executed(schedule.id):
                    logger.info(
                        f"Schedule {schedule.id} was deleted while firing, outcome kept in the ledger"
                    )
                logger.info(f"Committed {schedule.label} (schedule={schedule.id}, day={day})")
                return Outcome.COMMITTED

            await self._ledger.record_failure(schedule.id, day, error, now=self._clock())
            logger.warning(
                f"Attempt {attempt}/{max_attempts} for schedule {schedule.id}@{day} failed: {error}"
            )
            if attempt < max_attempts:
                await self._sleep(self.backoff(attempt))

        logger.error(
            f"Abandoned {schedule.label} (schedule={schedule.id}, day={day}) "
            f"after {attempts} attempts: {error}"
        )
        await self._notify_abandoned(schedule, day, error, attempts)
        return Outcome.FAILED

    async def _call_port(self, schedule: ScheduleRecord) -> None:
        """Invoke the target under the activation timeout. Raises ActivationFailure."""
        timeout = self._config.activation_timeout
        try:
            result = await asyncio.wait_for(
                self._port.apply(schedule.action, schedule.schedule_type, schedule.target_id),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            raise ActivationFailure(
                f"{schedule.action.value} timed out after {timeout:g}s",
                target_id=schedule.target_id,
            )
        except Exception as e:
            raise ActivationFailure(
                f"{schedule.action.value} raised {type(e).__name__}: {e}",
                target_id=schedule.target_id,
            ) from e
        if not result.success:
            raise ActivationFailure(
                result.reason or f"{schedule.action.value} rejected",
                target_id=schedule.target_id,
            )

    def backoff(self, attempt: int) -> float:
        """Delay before retry number *attempt* + 1."""
        delay = self._config.backoff_base * (2 ** (attempt - 1))
        return min(delay, self._config.backoff_max)

    async def _notify_abandoned(
        self, schedule: ScheduleRecord, day: datetime.date, error: str, attempts: int
    ) -> None:
        if self._router is None:
            return
        delivered = await self._router.route(
            Notification(
                schedule_id=schedule.id,
                title=f"Scheduled {schedule.action.value} failed",
                content=(
                    f"Could not {schedule.label} for {day.isoformat()} after "
                    f"{attempts} attempts.\nLast error: {error}"
                ),
                occurrence_date=day.isoformat(),
            )
        )
        logger.info(f"Abandonment of {schedule.id}@{day} reported via {', '.join(delivered) or 'no channel'}")
