"""Tests for the capture pipeline."""

from unittest.mock import AsyncMock, Mock, patch

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from pixle.errors import CaptureError
from pixle.executor.capture import CapturePipeline, auto_scroll, capture_page, pause_carousels
from pixle.models.config import CaptureConfig


def _make_mock_page(buttons=None):
    page = AsyncMock()
    page.query_selector_all = AsyncMock(return_value=buttons or [])
    page.screenshot = AsyncMock(return_value=b"PNGDATA")
    return page


def _make_button(pressed: str | None):
    button = AsyncMock()
    button.get_attribute = AsyncMock(return_value=pressed)
    return button


def _config(**overrides) -> CaptureConfig:
    values = dict(settle_before_ms=6000, settle_after_ms=2000, navigation_timeout_ms=30000)
    values.update(overrides)
    return CaptureConfig(**values)


class TestCapturePage:
    @pytest.mark.asyncio
    async def test_returns_full_page_screenshot(self):
        page = _make_mock_page()
        data = await capture_page(page, "https://example.com/en", _config())
        assert data == b"PNGDATA"
        page.screenshot.assert_awaited_once_with(full_page=True)

    @pytest.mark.asyncio
    async def test_stabilization_order(self):
        page = _make_mock_page()
        await capture_page(page, "https://example.com/en", _config())

        names = [c[0] for c in page.mock_calls]
        assert names == [
            "wait_for_timeout",
            "goto",
            "evaluate",  # fonts ready
            "query_selector_all",
            "evaluate",  # auto scroll
            "wait_for_timeout",
            "screenshot",
        ]
        assert page.wait_for_timeout.await_args_list[0].args == (6000,)
        assert page.wait_for_timeout.await_args_list[1].args == (2000,)

    @pytest.mark.asyncio
    async def test_navigates_with_network_idle_and_timeout(self):
        page = _make_mock_page()
        await capture_page(page, "https://example.com/fr", _config(navigation_timeout_ms=1234))
        page.goto.assert_awaited_once_with("https://example.com/fr", wait_until="networkidle", timeout=1234)

    @pytest.mark.asyncio
    async def test_navigation_timeout_propagates(self):
        page = _make_mock_page()
        page.goto = AsyncMock(side_effect=PlaywrightTimeoutError("Timeout 30000ms exceeded"))
        with pytest.raises(PlaywrightTimeoutError):
            await capture_page(page, "https://slow.test/", _config())
        page.screenshot.assert_not_awaited()


class TestPauseCarousels:
    @pytest.mark.asyncio
    async def test_clicks_only_playing_carousels(self):
        playing = _make_button("false")
        stopped = _make_button("true")
        page = _make_mock_page([playing, stopped])

        paused = await pause_carousels(page, "button.carousel-control-autoplay")

        assert paused == 1
        playing.click.assert_awaited_once()
        stopped.click.assert_not_awaited()
        page.query_selector_all.assert_awaited_once_with("button.carousel-control-autoplay")

    @pytest.mark.asyncio
    async def test_no_carousels_is_fine(self):
        assert await pause_carousels(_make_mock_page([]), "button.x") == 0

    @pytest.mark.asyncio
    async def test_click_failure_is_ignored(self):
        broken = _make_button("false")
        broken.click = AsyncMock(side_effect=PlaywrightError("detached"))
        working = _make_button("false")
        page = _make_mock_page([broken, working])
        assert await pause_carousels(page, "button.x") == 1

    @pytest.mark.asyncio
    async def test_lookup_failure_is_ignored(self):
        page = _make_mock_page()
        page.query_selector_all = AsyncMock(side_effect=PlaywrightError("bad selector"))
        assert await pause_carousels(page, "button[") == 0


class TestAutoScroll:
    @pytest.mark.asyncio
    async def test_passes_step_and_interval(self):
        page = _make_mock_page()
        await auto_scroll(page, 100, 50)
        script, args = page.evaluate.await_args.args
        assert "scrollBy" in script
        assert args == [100, 50]


class TestCapturePipeline:
    def _started_pipeline(self, page):
        context = AsyncMock()
        context.new_page = AsyncMock(return_value=page)
        pipeline = CapturePipeline(_config(settle_before_ms=0, settle_after_ms=0))
        pipeline._browser = AsyncMock()
        return pipeline, context

    @pytest.mark.asyncio
    async def test_capture_closes_context_on_success(self):
        page = _make_mock_page()
        pipeline, context = self._started_pipeline(page)
        with patch("pixle.executor.capture.create_capture_context", AsyncMock(return_value=context)):
            data = await pipeline.capture("https://example.com/en")
        assert data == b"PNGDATA"
        context.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_timeout_becomes_capture_error_and_closes_context(self):
        page = _make_mock_page()
        page.goto = AsyncMock(side_effect=PlaywrightTimeoutError("Timeout 30000ms exceeded"))
        pipeline, context = self._started_pipeline(page)
        with patch("pixle.executor.capture.create_capture_context", AsyncMock(return_value=context)):
            with pytest.raises(CaptureError, match="Timed out"):
                await pipeline.capture("https://slow.test/")
        context.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_script_error_becomes_capture_error(self):
        page = _make_mock_page()
        page.evaluate = AsyncMock(side_effect=PlaywrightError("ReferenceError"))
        pipeline, context = self._started_pipeline(page)
        with patch("pixle.executor.capture.create_capture_context", AsyncMock(return_value=context)):
            with pytest.raises(CaptureError, match="ReferenceError"):
                await pipeline.capture("https://broken.test/")
        context.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_context_close_failure_does_not_mask_result(self):
        page = _make_mock_page()
        pipeline, context = self._started_pipeline(page)
        context.close = AsyncMock(side_effect=PlaywrightError("browser gone"))
        with patch("pixle.executor.capture.create_capture_context", AsyncMock(return_value=context)):
            assert await pipeline.capture("https://example.com/en") == b"PNGDATA"

    @pytest.mark.asyncio
    async def test_capture_before_start_raises(self):
        pipeline = CapturePipeline(_config())
        with pytest.raises(CaptureError, match="not started"):
            await pipeline.capture("https://example.com/")

    @pytest.mark.asyncio
    async def test_launch_failure_becomes_capture_error(self):
        pw = AsyncMock()
        starter = Mock()
        starter.start = AsyncMock(return_value=pw)
        with patch("pixle.executor.capture.async_playwright", return_value=starter), \
             patch("pixle.executor.capture.launch_browser",
                   AsyncMock(side_effect=PlaywrightError("Executable doesn't exist"))):
            with pytest.raises(CaptureError, match="launch"):
                async with CapturePipeline(_config()):
                    pass
        pw.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_context_manager_closes_browser(self):
        pw = AsyncMock()
        browser = AsyncMock()
        starter = Mock()
        starter.start = AsyncMock(return_value=pw)
        with patch("pixle.executor.capture.async_playwright", return_value=starter), \
             patch("pixle.executor.capture.launch_browser", AsyncMock(return_value=browser)):
            async with CapturePipeline(_config()) as pipeline:
                assert pipeline._browser is browser
        browser.close.assert_awaited_once()
        pw.stop.assert_awaited_once()
