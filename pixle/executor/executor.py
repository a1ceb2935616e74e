"""Test executor: runs one schedule's locales through capture, diff and baseline upkeep."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime
from typing import Callable, Optional

from pixle.errors import CaptureError, PixleError, StorageError
from pixle.models.config import PixleConfig
from pixle.models.schedule import Schedule
from pixle.models.test_result import (
    VERDICT_ERROR,
    VERDICT_FAIL,
    VERDICT_NULL,
    VERDICT_PASS,
    TestResult,
)
from pixle.storage.base import ImageStore, ResultSink
from pixle.storage.baselines import (
    KIND_CURRENT,
    KIND_DIFF,
    BaselineStore,
    image_name,
    timestamp_stamp,
)
from pixle.url_utils import slug_from_url

from .capture import CapturePipeline
from .image_diff import compare_images

logger = logging.getLogger(__name__)


def _local_now() -> datetime:
    return datetime.now().astimezone()


class Executor:
    """Executes visual tests for a schedule, one locale at a time.

    A failure in one locale becomes an ``Error`` result for that locale and
    never stops the remaining locales.
    """

    def __init__(
        self,
        config: PixleConfig,
        images: ImageStore,
        results: ResultSink,
        pipeline_factory: Optional[Callable[[], CapturePipeline]] = None,
        clock: Callable[[], datetime] = _local_now,
    ):
        self.config = config
        self.images = images
        self.results = results
        self.baselines = BaselineStore(images)
        self.pipeline_factory = pipeline_factory or (lambda: CapturePipeline(config.capture))
        self.clock = clock

    async def run_schedule(self, schedule: Schedule) -> list[TestResult]:
        """Capture and compare every locale of ``schedule``; one result per locale."""
        targets = schedule.resolved_urls()
        if not targets:
            logger.info("Schedule %s has no locales, nothing to run", schedule.id)
            return []

        start_time = time.time()
        logger.info("Running visual test for %s with locales: %s",
                    schedule.url_template, ", ".join(schedule.locales))

        results: list[TestResult] = []
        try:
            async with self.pipeline_factory() as pipeline:
                for index, (locale, url) in enumerate(targets):
                    logger.info("Testing [%d/%d] %s (%s)", index + 1, len(targets), url, locale)
                    result = await self._run_locale(pipeline, schedule, url)
                    await self._emit(result)
                    results.append(result)
        except CaptureError as e:
            # Browser never came up; every locale not yet tested is an error
            logger.error("Capture pipeline unavailable for schedule %s: %s", schedule.id, e)
            for _, url in targets[len(results):]:
                result = self._error_result(schedule, url, self.clock(), str(e))
                await self._emit(result)
                results.append(result)

        counts = {v: sum(1 for r in results if r.result == v)
                  for v in (VERDICT_PASS, VERDICT_FAIL, VERDICT_NULL, VERDICT_ERROR)}
        logger.info(
            "Run complete for %s: %d passed, %d failed, %d new baselines, %d errors (%.1fs)",
            schedule.id, counts[VERDICT_PASS], counts[VERDICT_FAIL],
            counts[VERDICT_NULL], counts[VERDICT_ERROR], time.time() - start_time,
        )
        return results

    async def _run_locale(self, pipeline: CapturePipeline, schedule: Schedule, url: str) -> TestResult:
        now = self.clock()
        slug = slug_from_url(url)
        stamp = timestamp_stamp(now)

        try:
            screenshot = await pipeline.capture(url)

            if not await self.baselines.exists(slug):
                baseline_ref = await self.baselines.put(slug, screenshot)
                current_ref = await self.images.put(image_name(KIND_CURRENT, slug, stamp), screenshot)
                logger.info("Baseline image created for: %s", url)
                return TestResult(
                    test_date=now,
                    url=url,
                    schedule_id=schedule.id,
                    result=VERDICT_NULL,
                    status="Baseline image created.",
                    baseline_image_path=baseline_ref,
                    current_image_path=current_ref,
                )

            baseline = await self.baselines.get(slug)
            diff = await asyncio.to_thread(
                compare_images,
                baseline,
                screenshot,
                self.config.diff.threshold,
                self.config.diff.highlight_alpha,
            )
            logger.info("Difference for %s: %.2f%%", url, diff.diff_percentage)

            current_ref = await self.images.put(image_name(KIND_CURRENT, slug, stamp), screenshot)
            diff_ref = await self.images.put(image_name(KIND_DIFF, slug, stamp), diff.diff_image)

            if diff.diff_percentage > self.config.diff.fail_percentage:
                verdict = VERDICT_FAIL
                status = (f"Detected {diff.diff_pixels} pixel differences "
                          f"({diff.diff_percentage:.2f}%).")
                logger.warning("Detected significant differences for %s: %.2f%% different",
                               url, diff.diff_percentage)
            else:
                verdict = VERDICT_PASS
                status = f"Acceptable differences: {diff.diff_percentage:.2f}% different."

            await self._rotate_baseline(slug, url, screenshot, now)

            return TestResult(
                test_date=now,
                url=url,
                schedule_id=schedule.id,
                result=verdict,
                status=status,
                baseline_image_path=self.baselines.name_for(slug),
                current_image_path=current_ref,
                diff_image_path=diff_ref,
                diff_pixels=diff.diff_pixels,
                diff_percentage=diff.diff_percentage,
            )

        except PixleError as e:
            logger.error("Error processing %s: %s", url, e)
            return self._error_result(schedule, url, now, str(e))
        except Exception as e:
            logger.exception("Unexpected error processing %s", url)
            return self._error_result(schedule, url, now, str(e) or type(e).__name__)

    async def _rotate_baseline(self, slug: str, url: str, screenshot: bytes, now: datetime) -> None:
        """Replace the baseline when it was last written on an earlier calendar day."""
        try:
            modified = await self.baselines.last_modified(slug)
            if modified.astimezone(now.tzinfo).date() != now.date():
                await self.baselines.put(slug, screenshot)
                logger.info("Updated baseline image for %s", url)
        except StorageError as e:
            logger.warning("Baseline rotation failed for %s: %s", url, e)

    async def _emit(self, result: TestResult) -> None:
        try:
            await self.results.append(result)
        except StorageError as e:
            logger.error("Error saving test result for %s: %s", result.url, e)

    def _error_result(self, schedule: Schedule, url: str, when: datetime, message: str) -> TestResult:
        return TestResult(
            test_date=when,
            url=url,
            schedule_id=schedule.id,
            result=VERDICT_ERROR,
            status=message,
            baseline_image_path=self.baselines.name_for(slug_from_url(url)),
        )
