"""Tests for the application orchestrator and its dispatcher loop."""

import asyncio

import pytest

from conftest import make_png
from pixle.errors import ScheduleNotFoundError
from pixle.orchestrator import Orchestrator
from pixle.storage.schedule_store import JsonScheduleStore


async def _wait_until(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            return False
        await asyncio.sleep(0.02)
    return True


class TestServe:
    @pytest.mark.asyncio
    async def test_dispatcher_picks_up_edits_from_another_process(self, pixle_config):
        pixle_config.reconcile_interval_seconds = 0.05
        orchestrator = Orchestrator(pixle_config)
        stop = asyncio.Event()
        serving = asyncio.create_task(orchestrator._serve(stop))

        # A second store on the same file stands in for a CLI invocation
        other = JsonScheduleStore(pixle_config.data_path / "schedules.json")
        created = await other.create("https://a.test/{locale}", ["en"], "0 6 * * *")
        assert await _wait_until(lambda: orchestrator.registry.is_armed(created.id))

        await other.save(created.model_copy(update={"is_paused": True}))
        assert await _wait_until(lambda: not orchestrator.registry.is_armed(created.id))

        await other.save(created.model_copy(update={"cron_expression": "30 7 * * *"}))
        assert await _wait_until(
            lambda: orchestrator.registry.armed_expression(created.id) == "30 7 * * *"
        )

        await other.delete(created.id)
        assert await _wait_until(lambda: not orchestrator.registry.is_armed(created.id))

        stop.set()
        await asyncio.wait_for(serving, timeout=2)

    @pytest.mark.asyncio
    async def test_unreadable_store_keeps_dispatcher_alive(self, pixle_config):
        pixle_config.reconcile_interval_seconds = 0.05
        orchestrator = Orchestrator(pixle_config)
        stop = asyncio.Event()
        serving = asyncio.create_task(orchestrator._serve(stop))
        await asyncio.sleep(0.05)

        (pixle_config.data_path / "schedules.json").write_text("{corrupt")
        await asyncio.sleep(0.2)
        assert not serving.done()

        stop.set()
        await asyncio.wait_for(serving, timeout=2)


class TestScheduleManagement:
    def test_add_list_pause(self, pixle_config):
        orchestrator = Orchestrator(pixle_config)
        created = orchestrator.add_schedule("https://a.test/{locale}", ["en"], "0 6 * * *")
        assert [s.id for s in orchestrator.list_schedules()] == [created.id]
        assert orchestrator.pause_schedule(created.id).is_paused
        assert orchestrator.get_schedule(created.id).is_paused

    def test_delete_unknown(self, pixle_config):
        with pytest.raises(ScheduleNotFoundError):
            Orchestrator(pixle_config).delete_schedule("missing")

    def test_diff_files(self, pixle_config, tmp_path):
        a = tmp_path / "a.png"
        a.write_bytes(make_png(10, 10))
        result = Orchestrator(pixle_config).diff_files(a, a)
        assert result.diff_percentage == 0.0
