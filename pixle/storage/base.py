"""Storage contracts consumed by the registry and the executor.

Every method is a coroutine: storage I/O is a suspension point, so a slow
disk or remote store never blocks the dispatcher's event loop.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pixle.models.schedule import Schedule
from pixle.models.test_result import TestResult


class ScheduleStore:
    async def list_schedules(self) -> list[Schedule]:
        raise NotImplementedError

    async def get(self, schedule_id: str) -> Optional[Schedule]:
        raise NotImplementedError

    async def create(self, url_template: str, locales: list[str], cron_expression: str) -> Schedule:
        raise NotImplementedError

    async def save(self, schedule: Schedule) -> None:
        raise NotImplementedError

    async def delete(self, schedule_id: str) -> bool:
        raise NotImplementedError

    async def record_run(self, schedule_id: str, when: datetime) -> Optional[Schedule]:
        """Atomically increment the run counter and set the last-run time."""
        raise NotImplementedError


class ImageStore:
    async def put(self, name: str, data: bytes) -> str:
        """Store an image under ``name`` and return its reference path."""
        raise NotImplementedError

    async def get(self, name: str) -> bytes:
        """Return image bytes, raising ImageNotFoundError when absent."""
        raise NotImplementedError

    async def exists(self, name: str) -> bool:
        raise NotImplementedError

    async def last_modified(self, name: str) -> datetime:
        raise NotImplementedError


class ResultSink:
    async def append(self, result: TestResult) -> None:
        raise NotImplementedError

    async def list_results(self, limit: Optional[int] = None) -> list[TestResult]:
        """Return results newest first."""
        raise NotImplementedError
