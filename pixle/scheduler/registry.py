"""Schedule registry and dispatcher.

Persisted schedules are the source of truth for configuration; the registry
owns only the live timer side table (schedule id -> asyncio task). Every
mutation for one id runs under that id's lock, so timer replacement never
interleaves with another mutation of the same schedule or with a run
recording itself against that schedule.

Other processes (the CLI) may edit the store while a dispatcher is running.
``reconcile`` brings the dispatcher's timers back in line with the store, and
every scheduled trigger re-reads its record before running, so a pause or a
cron change takes effect even before the next reconcile.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, Optional

from croniter import CroniterBadCronError, CroniterBadDateError, croniter

from pixle.errors import InvalidExpressionError, ScheduleNotFoundError
from pixle.models.schedule import Schedule
from pixle.models.test_result import TestResult
from pixle.storage.base import ScheduleStore

from .cron import validate_cron

logger = logging.getLogger(__name__)

RunSchedule = Callable[[Schedule], Awaitable[list[TestResult]]]

# A fire time further in the past than this is a misfire (e.g. host suspended)
_MISFIRE_GRACE_SECONDS = 1.0


def _local_now() -> datetime:
    return datetime.now().astimezone()


class ScheduleRegistry:
    """Registers schedules, arms their cron timers and dispatches runs."""

    def __init__(
        self,
        store: ScheduleStore,
        run_schedule: RunSchedule,
        run_timeout_seconds: float = 1800,
        clock: Callable[[], datetime] = _local_now,
    ):
        self.store = store
        self.run_schedule = run_schedule
        self.run_timeout_seconds = run_timeout_seconds
        self.clock = clock
        self._timers: dict[str, asyncio.Task] = {}
        self._armed: dict[str, str] = {}  # schedule id -> expression its timer runs on
        self._rejected: dict[str, str] = {}  # malformed expressions already reported
        self._locks: dict[str, asyncio.Lock] = {}
        self._running: set[str] = set()
        self._run_tasks: set[asyncio.Task] = set()
        self._started = False

    # --- lifecycle ---------------------------------------------------------

    async def start(self) -> int:
        """Re-arm every persisted schedule; returns the number of live timers."""
        self._started = True
        schedules = await self.store.list_schedules()
        logger.info("Loading %d schedule(s) from store", len(schedules))
        for schedule in schedules:
            logger.debug("Loading schedule: id=%s url=%s cron=%s paused=%s",
                         schedule.id, schedule.url_template, schedule.cron_expression, schedule.is_paused)
            async with self._lock_for(schedule.id):
                await self._sync_timer(schedule)
        logger.info("Schedules loaded, %d active", len(self._timers))
        return len(self._timers)

    async def stop(self, wait: bool = True) -> None:
        """Cancel every timer; optionally wait for in-flight runs to finish."""
        self._started = False
        for schedule_id in list(self._timers):
            await self._disarm(schedule_id)
        if wait and self._run_tasks:
            logger.info("Waiting for %d in-flight run(s)", len(self._run_tasks))
            await asyncio.gather(*self._run_tasks, return_exceptions=True)

    async def reconcile(self) -> None:
        """Arm, re-arm or disarm timers to match what the store holds now."""
        if not self._started:
            return
        schedules = {s.id: s for s in await self.store.list_schedules()}
        for schedule_id in list(self._timers):
            if schedule_id not in schedules:
                async with self._lock_for(schedule_id):
                    await self._disarm(schedule_id)
                self._locks.pop(schedule_id, None)
                logger.info("Schedule %s no longer in store, timer cancelled", schedule_id)
        for schedule in schedules.values():
            async with self._lock_for(schedule.id):
                await self._sync_timer(schedule)

    # --- operations --------------------------------------------------------

    async def register(self, url_template: str, locales: list[str], cron_expression: str) -> Schedule:
        expression = validate_cron(cron_expression)
        schedule = await self.store.create(url_template, list(locales), expression)
        async with self._lock_for(schedule.id):
            self._arm(schedule.id, expression)
        logger.info("Schedule %s set for %s with cron: %s",
                    schedule.id, url_template, expression)
        return schedule

    async def update(
        self, schedule_id: str, url_template: str, locales: list[str], cron_expression: str,
    ) -> Schedule:
        expression = validate_cron(cron_expression)
        async with self._lock_for(schedule_id):
            schedule = await self._require(schedule_id)
            updated = schedule.model_copy(update={
                "url_template": url_template,
                "locales": list(locales),
                "cron_expression": expression,
            })
            await self.store.save(updated)
            await self._disarm(schedule_id)
            if not updated.is_paused:
                self._arm(schedule_id, expression)
        logger.info("Schedule %s updated", schedule_id)
        return updated

    async def pause(self, schedule_id: str) -> Schedule:
        async with self._lock_for(schedule_id):
            schedule = await self._require(schedule_id)
            if not schedule.is_paused:
                schedule = schedule.model_copy(update={"is_paused": True})
                await self.store.save(schedule)
            await self._disarm(schedule_id)
        logger.info("Schedule %s paused", schedule_id)
        return schedule

    async def resume(self, schedule_id: str) -> Schedule:
        async with self._lock_for(schedule_id):
            schedule = await self._require(schedule_id)
            if schedule.is_paused:
                schedule = schedule.model_copy(update={"is_paused": False})
                await self.store.save(schedule)
            await self._sync_timer(schedule)
        logger.info("Schedule %s resumed", schedule_id)
        return schedule

    async def delete(self, schedule_id: str) -> None:
        async with self._lock_for(schedule_id):
            if not await self.store.delete(schedule_id):
                raise ScheduleNotFoundError(schedule_id)
            await self._disarm(schedule_id)
        self._locks.pop(schedule_id, None)
        self._rejected.pop(schedule_id, None)
        logger.info("Schedule %s deleted", schedule_id)

    async def run_now(self, schedule_id: str) -> Optional[asyncio.Task]:
        """Start a run outside the timer. Returns None if one is already in progress."""
        await self._require(schedule_id)
        return self._dispatch(schedule_id, "manual")

    async def get(self, schedule_id: str) -> Schedule:
        return await self._require(schedule_id)

    async def list_schedules(self) -> list[Schedule]:
        return await self.store.list_schedules()

    def is_armed(self, schedule_id: str) -> bool:
        return schedule_id in self._timers

    def armed_expression(self, schedule_id: str) -> Optional[str]:
        return self._armed.get(schedule_id)

    def is_running(self, schedule_id: str) -> bool:
        return schedule_id in self._running

    # --- internals ---------------------------------------------------------

    def _lock_for(self, schedule_id: str) -> asyncio.Lock:
        return self._locks.setdefault(schedule_id, asyncio.Lock())

    async def _require(self, schedule_id: str) -> Schedule:
        schedule = await self.store.get(schedule_id)
        if schedule is None:
            raise ScheduleNotFoundError(schedule_id)
        return schedule

    async def _sync_timer(self, schedule: Schedule) -> None:
        """Make the live timer for ``schedule`` match its record. Caller holds the lock."""
        if schedule.is_paused:
            await self._disarm(schedule.id)
            return
        try:
            expression = validate_cron(schedule.cron_expression)
        except InvalidExpressionError as e:
            await self._disarm(schedule.id)
            if self._rejected.get(schedule.id) != schedule.cron_expression:
                logger.error("Skipping schedule %s: %s", schedule.id, e)
                self._rejected[schedule.id] = schedule.cron_expression
            return
        self._rejected.pop(schedule.id, None)
        if self._armed.get(schedule.id) != expression:
            await self._disarm(schedule.id)
        self._arm(schedule.id, expression)

    def _arm(self, schedule_id: str, expression: str) -> None:
        # Timers only run while the registry is started
        if not self._started or schedule_id in self._timers:
            return
        self._timers[schedule_id] = asyncio.create_task(
            self._timer_loop(schedule_id, expression), name=f"pixle-timer-{schedule_id}",
        )
        self._armed[schedule_id] = expression
        logger.debug("Armed timer for schedule %s (%s)", schedule_id, expression)

    async def _disarm(self, schedule_id: str) -> None:
        task = self._timers.pop(schedule_id, None)
        self._armed.pop(schedule_id, None)
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("Timer for schedule %s had failed", schedule_id)
        logger.debug("Disarmed timer for schedule %s", schedule_id)

    async def _timer_loop(self, schedule_id: str, expression: str) -> None:
        try:
            fire_times = croniter(expression, self.clock())
            while True:
                fire_at = fire_times.get_next(datetime)
                delay = (fire_at - self.clock()).total_seconds()
                if delay < -_MISFIRE_GRACE_SECONDS:
                    logger.warning("Schedule %s missed its %s trigger, skipping ahead",
                                   schedule_id, fire_at.isoformat())
                    fire_times = croniter(expression, self.clock())
                    continue
                await asyncio.sleep(max(0.0, delay))
                logger.info("Cron job triggered for schedule %s at %s",
                            schedule_id, self.clock().isoformat())
                self._dispatch(schedule_id, "scheduled", expression)
        except (CroniterBadCronError, CroniterBadDateError) as e:
            logger.error("Timer for schedule %s stopped, no next trigger for %r: %s",
                         schedule_id, expression, e)
            if self._timers.get(schedule_id) is asyncio.current_task():
                del self._timers[schedule_id]
                self._armed.pop(schedule_id, None)

    def _dispatch(
        self, schedule_id: str, reason: str, expression: Optional[str] = None,
    ) -> Optional[asyncio.Task]:
        if schedule_id in self._running:
            logger.warning("Skipping %s trigger for schedule %s: a run is already in progress",
                           reason, schedule_id)
            return None
        self._running.add(schedule_id)
        task = asyncio.create_task(
            self._execute(schedule_id, reason, expression), name=f"pixle-run-{schedule_id}",
        )
        self._run_tasks.add(task)
        task.add_done_callback(self._run_tasks.discard)
        return task

    async def _execute(
        self, schedule_id: str, reason: str, expression: Optional[str] = None,
    ) -> list[TestResult]:
        """Record and run one trigger.

        ``expression`` is the cron expression of the timer that fired; manual
        runs pass None. A timer trigger is dropped when the stored record is
        paused or now carries a different expression.
        """
        try:
            async with self._lock_for(schedule_id):
                current = await self.store.get(schedule_id)
                if current is not None and expression is not None:
                    if current.is_paused:
                        logger.info("Schedule %s is paused, %s run skipped", schedule_id, reason)
                        return []
                    if " ".join(current.cron_expression.split()) != expression:
                        logger.info("Schedule %s now runs on %r, dropping trigger armed for %r",
                                    schedule_id, current.cron_expression, expression)
                        return []
                schedule = None
                if current is not None:
                    schedule = await self.store.record_run(schedule_id, self.clock())
            if schedule is None:
                logger.warning("Schedule %s no longer exists, %s run dropped", schedule_id, reason)
                return []
            logger.info("Starting %s run %d for schedule %s", reason, schedule.run_count, schedule_id)
            results = await asyncio.wait_for(
                self.run_schedule(schedule), timeout=self.run_timeout_seconds,
            )
            logger.info("Scheduled test completed for %s", schedule.url_template)
            return results
        except asyncio.TimeoutError:
            logger.error("Run for schedule %s exceeded %ss and was abandoned",
                         schedule_id, self.run_timeout_seconds)
            return []
        except Exception:
            logger.exception("Error in %s run for schedule %s", reason, schedule_id)
            return []
        finally:
            self._running.discard(schedule_id)
