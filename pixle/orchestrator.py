"""Application orchestrator: wires config, stores, executor and schedule registry."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from pixle.errors import StorageError
from pixle.executor.executor import Executor
from pixle.executor.image_diff import DiffResult, compare_images
from pixle.models.config import PixleConfig
from pixle.models.schedule import Schedule
from pixle.models.test_result import TestResult, TrendSeries
from pixle.reporter.trends import build_trends
from pixle.scheduler.registry import ScheduleRegistry
from pixle.storage.image_store import LocalImageStore
from pixle.storage.result_sink import JsonlResultSink
from pixle.storage.schedule_store import JsonScheduleStore

logger = logging.getLogger(__name__)


class Orchestrator:
    """Entry point for the CLI; every public method is synchronous."""

    def __init__(self, config: PixleConfig):
        self.config = config
        self.data_dir = config.data_path
        self.data_dir.mkdir(parents=True, exist_ok=True)

        self.schedule_store = JsonScheduleStore(self.data_dir / "schedules.json")
        self.image_store = LocalImageStore(self.data_dir / "images")
        self.result_sink = JsonlResultSink(self.data_dir / "results.jsonl")

        self.executor = Executor(config, self.image_store, self.result_sink)
        self.registry = ScheduleRegistry(
            self.schedule_store,
            self.executor.run_schedule,
            run_timeout_seconds=config.run_timeout_seconds,
        )

    # --- dispatcher --------------------------------------------------------

    def serve(self) -> None:
        """Run the dispatcher until interrupted."""
        asyncio.run(self._serve())

    async def _serve(self, stop_event: Optional[asyncio.Event] = None) -> None:
        stop_event = stop_event or asyncio.Event()
        armed = await self.registry.start()
        logger.info("=== Dispatcher running with %d active schedule(s) ===", armed)
        interval = self.config.reconcile_interval_seconds
        try:
            while not stop_event.is_set():
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=interval)
                except asyncio.TimeoutError:
                    await self._reconcile()
        finally:
            await self.registry.stop(wait=False)
            logger.info("=== Dispatcher stopped ===")

    async def _reconcile(self) -> None:
        # Picks up pause/resume/update/delete made by other processes
        try:
            await self.registry.reconcile()
        except StorageError as e:
            logger.warning("Could not reload schedules, keeping current timers: %s", e)

    # --- schedule management ----------------------------------------------

    def add_schedule(self, url_template: str, locales: list[str], cron_expression: str) -> Schedule:
        return asyncio.run(self.registry.register(url_template, locales, cron_expression))

    def update_schedule(
        self, schedule_id: str, url_template: str, locales: list[str], cron_expression: str,
    ) -> Schedule:
        return asyncio.run(self.registry.update(schedule_id, url_template, locales, cron_expression))

    def pause_schedule(self, schedule_id: str) -> Schedule:
        return asyncio.run(self.registry.pause(schedule_id))

    def resume_schedule(self, schedule_id: str) -> Schedule:
        return asyncio.run(self.registry.resume(schedule_id))

    def delete_schedule(self, schedule_id: str) -> None:
        asyncio.run(self.registry.delete(schedule_id))

    def get_schedule(self, schedule_id: str) -> Schedule:
        return asyncio.run(self.registry.get(schedule_id))

    def list_schedules(self) -> list[Schedule]:
        return asyncio.run(self.registry.list_schedules())

    def run_now(self, schedule_id: str) -> Optional[list[TestResult]]:
        """Run a schedule immediately and wait for its results."""
        return asyncio.run(self._run_now(schedule_id))

    async def _run_now(self, schedule_id: str) -> Optional[list[TestResult]]:
        task = await self.registry.run_now(schedule_id)
        if task is None:
            return None
        return await task

    # --- results -----------------------------------------------------------

    def list_results(self, limit: Optional[int] = None) -> list[TestResult]:
        return asyncio.run(self.result_sink.list_results(limit))

    def get_trends(self, days: Optional[int] = None, now: Optional[datetime] = None) -> dict[str, TrendSeries]:
        return asyncio.run(self._trends(days or self.config.trend_days, now))

    async def _trends(self, days: int, now: Optional[datetime]) -> dict[str, TrendSeries]:
        results = await self.result_sink.list_results()
        schedules = await self.schedule_store.list_schedules()
        return build_trends(results, schedules, days, now or datetime.now().astimezone())

    def read_image(self, name: str) -> bytes:
        return asyncio.run(self.image_store.get(name))

    def diff_files(self, baseline_path: Path, current_path: Path) -> DiffResult:
        """Compare two local image files with the configured diff settings."""
        return compare_images(
            baseline_path.read_bytes(),
            current_path.read_bytes(),
            self.config.diff.threshold,
            self.config.diff.highlight_alpha,
        )
