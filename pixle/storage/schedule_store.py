"""JSON-file schedule store."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import threading
import uuid
from datetime import datetime
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from pixle.errors import StorageError
from pixle.models.schedule import Schedule

from .base import ScheduleStore

logger = logging.getLogger(__name__)


class JsonScheduleStore(ScheduleStore):
    """Keeps every schedule in one JSON document keyed by id."""

    def __init__(self, path: Path):
        self.path = path
        self._lock = threading.Lock()

    async def list_schedules(self) -> list[Schedule]:
        data = await asyncio.to_thread(self._locked_read)
        return sorted(data.values(), key=lambda s: s.created_at)

    async def get(self, schedule_id: str) -> Optional[Schedule]:
        data = await asyncio.to_thread(self._locked_read)
        return data.get(schedule_id)

    async def create(self, url_template: str, locales: list[str], cron_expression: str) -> Schedule:
        def _create() -> Schedule:
            with self._lock:
                data = self._read()
                schedule_id = uuid.uuid4().hex[:8]
                while schedule_id in data:
                    schedule_id = uuid.uuid4().hex[:8]
                schedule = Schedule(
                    id=schedule_id,
                    url_template=url_template,
                    locales=list(locales),
                    cron_expression=cron_expression,
                )
                data[schedule_id] = schedule
                self._write(data)
                return schedule

        schedule = await asyncio.to_thread(_create)
        logger.debug("Created schedule %s in %s", schedule.id, self.path)
        return schedule

    async def save(self, schedule: Schedule) -> None:
        def _save() -> None:
            with self._lock:
                data = self._read()
                data[schedule.id] = schedule
                self._write(data)

        await asyncio.to_thread(_save)

    async def delete(self, schedule_id: str) -> bool:
        def _delete() -> bool:
            with self._lock:
                data = self._read()
                if data.pop(schedule_id, None) is None:
                    return False
                self._write(data)
                return True

        return await asyncio.to_thread(_delete)

    async def record_run(self, schedule_id: str, when: datetime) -> Optional[Schedule]:
        def _record() -> Optional[Schedule]:
            with self._lock:
                data = self._read()
                schedule = data.get(schedule_id)
                if schedule is None:
                    return None
                updated = schedule.model_copy(
                    update={"run_count": schedule.run_count + 1, "last_run": when}
                )
                data[schedule_id] = updated
                self._write(data)
                return updated

        return await asyncio.to_thread(_record)

    def _locked_read(self) -> dict[str, Schedule]:
        with self._lock:
            return self._read()

    def _read(self) -> dict[str, Schedule]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path) as f:
                raw = json.load(f)
            return {sid: Schedule(**entry) for sid, entry in raw.get("schedules", {}).items()}
        except (OSError, ValueError, ValidationError) as e:
            raise StorageError(f"Failed to read schedules from {self.path}: {e}") from e

    def _write(self, data: dict[str, Schedule]) -> None:
        payload = {"schedules": {sid: s.model_dump(mode="json") for sid, s in data.items()}}
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w") as f:
                json.dump(payload, f, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise StorageError(f"Failed to write schedules to {self.path}: {e}") from e
