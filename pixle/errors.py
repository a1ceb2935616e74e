"""Exception hierarchy for the visual-diff engine."""

from __future__ import annotations


class PixleError(Exception):
    """Base class for every error raised by pixle."""


class InvalidExpressionError(PixleError):
    """A recurrence expression failed cron syntax validation."""

    def __init__(self, expression: object):
        self.expression = expression
        super().__init__(f"Invalid cron expression: {expression!r}")


class ScheduleNotFoundError(PixleError):
    """An operation referenced a schedule id that does not exist."""

    def __init__(self, schedule_id: str):
        self.schedule_id = schedule_id
        super().__init__(f"Schedule not found: {schedule_id}")


class CaptureError(PixleError):
    """The browser could not produce a screenshot for a URL."""


class DiffError(PixleError):
    """An image could not be decoded or encoded during comparison."""


class StorageError(PixleError):
    """A config, image or result store was unavailable or rejected an operation."""


class ImageNotFoundError(StorageError):
    """A named image does not exist in the image store."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Image not found: {name}")
