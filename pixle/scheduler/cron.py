"""Cron expression validation."""

from __future__ import annotations

from datetime import datetime

from croniter import CroniterBadCronError, CroniterBadDateError, croniter

from pixle.errors import InvalidExpressionError


def validate_cron(expression: object) -> str:
    """Return the whitespace-normalized expression, or raise InvalidExpressionError.

    Expressions that parse but can never fire (``0 0 30 2 *``) are rejected
    as well, since a timer armed with one would have no next trigger.
    """
    if not isinstance(expression, str) or not expression.strip():
        raise InvalidExpressionError(expression)
    normalized = " ".join(expression.split())
    if not croniter.is_valid(normalized):
        raise InvalidExpressionError(expression)
    try:
        croniter(normalized, datetime.now()).get_next(datetime)
    except (CroniterBadCronError, CroniterBadDateError) as e:
        raise InvalidExpressionError(expression) from e
    return normalized
