"""Daily pass-rate and diff-percentage series over a trailing window."""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, datetime, timedelta

from pixle.models.schedule import Schedule
from pixle.models.test_result import VERDICT_PASS, TestResult, TrendSeries

logger = logging.getLogger(__name__)


def build_trends(
    results: list[TestResult],
    schedules: list[Schedule],
    days: int,
    now: datetime,
) -> dict[str, TrendSeries]:
    """Bucket results by schedule and calendar day for the last ``days`` days.

    Pass rate is the share of ``Pass`` verdicts among all of a day's results.
    The average diff only covers results that carry a diff percentage; a day
    without any is reported as None.
    """
    since = now - timedelta(days=days)
    templates = {s.id: s.url_template for s in schedules}

    buckets: dict[str, dict[date, list[TestResult]]] = defaultdict(lambda: defaultdict(list))
    for result in results:
        if result.schedule_id not in templates:
            continue
        if result.test_date < since:
            continue
        day = result.test_date.astimezone(now.tzinfo).date()
        buckets[result.schedule_id][day].append(result)

    series: dict[str, TrendSeries] = {}
    for schedule_id in sorted(buckets):
        trend = TrendSeries(schedule_id=schedule_id, url_template=templates[schedule_id])
        for day in sorted(buckets[schedule_id]):
            day_results = buckets[schedule_id][day]
            passed = sum(1 for r in day_results if r.result == VERDICT_PASS)
            diffs = [r.diff_percentage for r in day_results if r.diff_percentage is not None]
            trend.dates.append(day.isoformat())
            trend.pass_rates.append(round(passed / len(day_results) * 100, 2))
            trend.avg_diff_percentages.append(round(sum(diffs) / len(diffs), 2) if diffs else None)
        series[schedule_id] = trend

    logger.debug("Built trends for %d schedule(s) over %d days", len(series), days)
    return series
