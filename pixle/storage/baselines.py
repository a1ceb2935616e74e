"""Baseline store: one reference screenshot per resolved URL, plus capture naming."""

from __future__ import annotations

import logging
from datetime import datetime

from .base import ImageStore

logger = logging.getLogger(__name__)

KIND_BASELINE = "baseline"
KIND_CURRENT = "current"
KIND_DIFF = "diff"


def image_name(kind: str, slug: str, stamp: str = "") -> str:
    """Build an object name of the form ``{kind}/{slug}_{stamp}_{kind}.png``."""
    if stamp:
        return f"{kind}/{slug}_{stamp}_{kind}.png"
    return f"{kind}/{slug}_{kind}.png"


def timestamp_stamp(when: datetime) -> str:
    """Filesystem-safe timestamp used to name current and diff captures."""
    return when.strftime("%Y-%m-%dT%H-%M-%S-%f")


class BaselineStore:
    """Manages baseline images keyed by URL slug on top of an image store."""

    def __init__(self, images: ImageStore):
        self.images = images

    def name_for(self, slug: str) -> str:
        # No date segment: the baseline's age lives in its last-modified time
        return image_name(KIND_BASELINE, slug)

    async def exists(self, slug: str) -> bool:
        return await self.images.exists(self.name_for(slug))

    async def get(self, slug: str) -> bytes:
        return await self.images.get(self.name_for(slug))

    async def put(self, slug: str, data: bytes) -> str:
        ref = await self.images.put(self.name_for(slug), data)
        logger.info("Stored baseline for %s", slug)
        return ref

    async def last_modified(self, slug: str) -> datetime:
        return await self.images.last_modified(self.name_for(slug))
