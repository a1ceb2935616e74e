"""Pytest configuration and shared fixtures."""

from datetime import datetime, timezone
from io import BytesIO

import pytest
from PIL import Image

from pixle.errors import CaptureError
from pixle.models.config import CaptureConfig, DiffConfig, PixleConfig
from pixle.models.schedule import Schedule
from pixle.storage.image_store import LocalImageStore
from pixle.storage.result_sink import JsonlResultSink
from pixle.storage.schedule_store import JsonScheduleStore


# ============================================================================
# Image helpers
# ============================================================================


def make_png(width: int = 20, height: int = 10, color=(255, 255, 255, 255), mode: str = "RGBA") -> bytes:
    """Encode a solid-color PNG."""
    if mode == "RGB" and len(color) == 4:
        color = color[:3]
    buf = BytesIO()
    Image.new(mode, (width, height), color).save(buf, format="PNG")
    return buf.getvalue()


def decode_png(data: bytes) -> Image.Image:
    image = Image.open(BytesIO(data))
    image.load()
    return image


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def pixle_config(tmp_path) -> PixleConfig:
    """Config with zero settle delays and an isolated data directory."""
    return PixleConfig(
        data_dir=str(tmp_path / "data"),
        capture=CaptureConfig(settle_before_ms=0, settle_after_ms=0, navigation_timeout_ms=5000),
        diff=DiffConfig(threshold=0.1, fail_percentage=15.0),
        run_timeout_seconds=30,
    )


@pytest.fixture
def schedule() -> Schedule:
    return Schedule(
        id="sched001",
        url_template="https://example.com/{locale}",
        locales=["en"],
        cron_expression="0 6 * * *",
        created_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
    )


# ============================================================================
# Storage Fixtures
# ============================================================================


@pytest.fixture
def image_store(tmp_path) -> LocalImageStore:
    return LocalImageStore(tmp_path / "images")


@pytest.fixture
def result_sink(tmp_path) -> JsonlResultSink:
    return JsonlResultSink(tmp_path / "results.jsonl")


@pytest.fixture
def schedule_store(tmp_path) -> JsonScheduleStore:
    return JsonScheduleStore(tmp_path / "schedules.json")


# ============================================================================
# Capture Fixtures
# ============================================================================


class FakePipeline:
    """Stands in for CapturePipeline: returns canned screenshots per URL."""

    def __init__(self, screenshots: dict[str, bytes], failures: dict[str, str] | None = None,
                 launch_error: str | None = None):
        self.screenshots = screenshots
        self.failures = failures or {}
        self.launch_error = launch_error
        self.captured: list[str] = []
        self.entered = 0
        self.exited = 0

    async def __aenter__(self):
        if self.launch_error:
            raise CaptureError(self.launch_error)
        self.entered += 1
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.exited += 1

    async def capture(self, url: str) -> bytes:
        self.captured.append(url)
        if url in self.failures:
            raise CaptureError(self.failures[url])
        return self.screenshots[url]


@pytest.fixture
def fake_pipeline():
    """Factory producing a FakePipeline; the created pipeline is reused across runs."""
    def _make(screenshots: dict[str, bytes], **kwargs) -> FakePipeline:
        return FakePipeline(screenshots, **kwargs)
    return _make
