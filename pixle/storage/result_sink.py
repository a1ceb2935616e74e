"""Append-only JSON-lines result sink."""

from __future__ import annotations

import asyncio
import logging
import threading
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from pixle.errors import StorageError
from pixle.models.test_result import TestResult

from .base import ResultSink

logger = logging.getLogger(__name__)


class JsonlResultSink(ResultSink):
    """Writes one JSON object per test result, never rewriting earlier lines."""

    def __init__(self, path: Path):
        self.path = path
        self._lock = threading.Lock()

    async def append(self, result: TestResult) -> None:
        line = result.model_dump_json() + "\n"

        def _append() -> None:
            with self._lock:
                try:
                    self.path.parent.mkdir(parents=True, exist_ok=True)
                    with open(self.path, "a", encoding="utf-8") as f:
                        f.write(line)
                except OSError as e:
                    raise StorageError(f"Failed to write result to {self.path}: {e}") from e

        await asyncio.to_thread(_append)
        logger.debug("Test result saved: %s %s %s", result.url, result.result, result.status)

    async def list_results(self, limit: Optional[int] = None) -> list[TestResult]:
        results = await asyncio.to_thread(self._read_all)
        results.sort(key=lambda r: r.test_date, reverse=True)
        return results[:limit] if limit is not None else results

    def _read_all(self) -> list[TestResult]:
        if not self.path.exists():
            return []
        results = []
        with self._lock:
            try:
                with open(self.path, encoding="utf-8") as f:
                    lines = f.readlines()
            except OSError as e:
                raise StorageError(f"Failed to read results from {self.path}: {e}") from e
        for lineno, line in enumerate(lines, 1):
            if not line.strip():
                continue
            try:
                results.append(TestResult.model_validate_json(line))
            except ValidationError as e:
                logger.warning("Skipping corrupt result on line %d of %s: %s", lineno, self.path, e)
        return results
