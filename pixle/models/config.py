"""Configuration models for pixle."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class ViewportConfig(BaseModel):
    width: int = 1920
    height: int = 1080


class CaptureConfig(BaseModel):
    viewport: ViewportConfig = Field(default_factory=ViewportConfig)
    headless: bool = True
    slow_mo_ms: int = 50
    user_agent: Optional[str] = None

    # Stabilization
    settle_before_ms: int = 6000
    navigation_timeout_ms: int = 30000
    carousel_selector: str = "button.carousel-control-autoplay"
    scroll_step_px: int = 100
    scroll_interval_ms: int = 100
    settle_after_ms: int = 2000

    @field_validator("scroll_step_px", "scroll_interval_ms")
    @classmethod
    def positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be greater than zero")
        return v


class DiffConfig(BaseModel):
    threshold: float = 0.1  # YIQ color distance, 0 (strict) to 1 (lenient)
    fail_percentage: float = 15.0
    highlight_alpha: int = 128

    @field_validator("threshold")
    @classmethod
    def threshold_in_range(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("threshold must be between 0 and 1")
        return v

    @field_validator("highlight_alpha")
    @classmethod
    def alpha_in_range(cls, v: int) -> int:
        if not 0 <= v <= 255:
            raise ValueError("highlight_alpha must be between 0 and 255")
        return v


class PixleConfig(BaseModel):
    # Storage root for schedules, images and results
    data_dir: str = ".pixle"

    capture: CaptureConfig = Field(default_factory=CaptureConfig)
    diff: DiffConfig = Field(default_factory=DiffConfig)

    # Scheduling
    run_timeout_seconds: int = 1800
    # How often a running dispatcher re-reads the schedule store for CLI edits
    reconcile_interval_seconds: float = 5.0

    # Reporting
    trend_days: int = 7

    # Logging
    log_file: Optional[str] = None

    @field_validator("reconcile_interval_seconds")
    @classmethod
    def interval_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("reconcile_interval_seconds must be greater than zero")
        return v

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir)

    @classmethod
    def load(cls, path: str | Path) -> "PixleConfig":
        """Load config from a JSON file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path) as f:
            data = json.load(f)
        return cls(**data)

    def save(self, path: str | Path) -> None:
        """Save config to a JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.model_dump(), f, indent=2)
