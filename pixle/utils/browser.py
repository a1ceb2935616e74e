"""Browser launch helpers for screenshot capture."""

from __future__ import annotations

from typing import Optional

from playwright.async_api import Browser, BrowserContext, Playwright

from pixle.models.config import CaptureConfig


async def launch_browser(playwright: Playwright, config: CaptureConfig) -> Browser:
    """Launch Chromium sized to the capture viewport."""
    return await playwright.chromium.launch(
        headless=config.headless,
        slow_mo=config.slow_mo_ms,
        args=[
            f"--window-size={config.viewport.width},{config.viewport.height}",
        ],
    )


async def create_capture_context(
    browser: Browser,
    config: CaptureConfig,
    user_agent: Optional[str] = None,
) -> BrowserContext:
    """Create an isolated browser context with the fixed capture viewport."""
    context_kwargs: dict = {
        "viewport": {"width": config.viewport.width, "height": config.viewport.height},
    }
    if user_agent or config.user_agent:
        context_kwargs["user_agent"] = user_agent or config.user_agent
    return await browser.new_context(**context_kwargs)
