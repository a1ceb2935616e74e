"""Capture pipeline: stabilize a page and take a full-page screenshot."""

from __future__ import annotations

import logging
from typing import Optional

from playwright.async_api import (
    Browser,
    BrowserContext,
    Error as PlaywrightError,
    Page,
    Playwright,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from pixle.errors import CaptureError
from pixle.models.config import CaptureConfig
from pixle.utils.browser import create_capture_context, launch_browser

logger = logging.getLogger(__name__)

_FONTS_READY_SCRIPT = "async () => { await document.fonts.ready; }"

_AUTO_SCROLL_SCRIPT = """async ([distance, interval]) => {
    await new Promise((resolve) => {
        let totalHeight = 0;
        const timer = setInterval(() => {
            const scrollHeight = document.body ? document.body.scrollHeight : 0;
            window.scrollBy(0, distance);
            totalHeight += distance;
            if (totalHeight >= scrollHeight) {
                clearInterval(timer);
                resolve();
            }
        }, interval);
    });
}"""


class CapturePipeline:
    """Owns one browser for a run and captures one URL per isolated context.

    Use as an async context manager; the browser is launched on enter and
    closed on exit.
    """

    def __init__(self, config: CaptureConfig):
        self.config = config
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None

    async def __aenter__(self) -> "CapturePipeline":
        try:
            self._playwright = await async_playwright().start()
            logger.debug("Launching Chromium for capture (headless=%s)", self.config.headless)
            self._browser = await launch_browser(self._playwright, self.config)
        except PlaywrightError as e:
            await self.close()
            raise CaptureError(f"Could not launch browser: {e}") from e
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._browser is not None:
            try:
                await self._browser.close()
            except PlaywrightError as e:
                logger.warning("Browser close failed: %s", e)
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None

    async def capture(self, url: str) -> bytes:
        """Return PNG bytes of the fully rendered page at ``url``."""
        if self._browser is None:
            raise CaptureError("Capture pipeline is not started")

        try:
            context = await create_capture_context(self._browser, self.config)
        except PlaywrightError as e:
            raise CaptureError(f"Could not open browser context: {e}") from e

        try:
            page = await context.new_page()
            return await capture_page(page, url, self.config)
        except PlaywrightTimeoutError as e:
            raise CaptureError(f"Timed out loading {url}: {e}") from e
        except PlaywrightError as e:
            raise CaptureError(f"Capture failed for {url}: {e}") from e
        finally:
            await _close_context(context)


async def capture_page(page: Page, url: str, config: CaptureConfig) -> bytes:
    """Run the stabilization sequence on ``page`` and screenshot the whole page."""
    await page.wait_for_timeout(config.settle_before_ms)
    logger.debug("Navigating to %s", url)
    await page.goto(url, wait_until="networkidle", timeout=config.navigation_timeout_ms)
    await page.evaluate(_FONTS_READY_SCRIPT)

    paused = await pause_carousels(page, config.carousel_selector)
    if paused:
        logger.debug("Paused %d carousel(s) on %s", paused, url)

    await auto_scroll(page, config.scroll_step_px, config.scroll_interval_ms)
    await page.wait_for_timeout(config.settle_after_ms)

    return await page.screenshot(full_page=True)


async def pause_carousels(page: Page, selector: str) -> int:
    """Click every autoplay toggle that reports it is playing. Best-effort."""
    try:
        buttons = await page.query_selector_all(selector)
    except PlaywrightError as e:
        logger.debug("Carousel lookup failed: %s", e)
        return 0

    paused = 0
    for button in buttons:
        try:
            if await button.get_attribute("aria-pressed") == "false":
                await button.click()
                paused += 1
        except PlaywrightError as e:
            logger.debug("Could not pause carousel: %s", e)
    return paused


async def auto_scroll(page: Page, step_px: int, interval_ms: int) -> None:
    """Scroll the full page height in fixed steps so lazy content renders."""
    await page.evaluate(_AUTO_SCROLL_SCRIPT, [step_px, interval_ms])


async def _close_context(context: BrowserContext) -> None:
    try:
        await context.close()
    except PlaywrightError as e:
        logger.warning("Browser context close failed: %s", e)
