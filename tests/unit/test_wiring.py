"""Tests for service wiring and the background scheduler loop."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.api.dependencies import build_services
from src.config import Settings
from src.db.store import InMemoryOrderStore
from src.integrations.bureau import HttpBureauClient
from src.integrations.disputes import HttpDisputeFeed
from src.main import run_scheduler_loop


class TestBuildServices:
    @pytest.mark.asyncio
    async def test_defaults_use_memory_store_and_no_collaborators(self):
        services = build_services(Settings(store_backend="memory"))
        assert isinstance(services.store, InMemoryOrderStore)
        assert services.closeables == []
        await services.close()

    @pytest.mark.asyncio
    async def test_configured_collaborators_are_created(self):
        settings = Settings(
            bureau_api_url="http://bureau.test",
            dispute_feed_url="http://disputes.test",
        )
        services = build_services(settings, store=InMemoryOrderStore())
        kinds = {type(c) for c in services.closeables}
        assert kinds == {HttpBureauClient, HttpDisputeFeed}
        assert len(services.gate._runner.configured_detectors) == 17
        await services.close()


class TestSchedulerLoop:
    @pytest.mark.asyncio
    async def test_ticks_until_cancelled(self):
        services = MagicMock()
        services.scheduler.scheduled_tick = AsyncMock(return_value=[])
        services.gate.expire_stale = AsyncMock(return_value=[])

        task = asyncio.create_task(run_scheduler_loop(services, interval_seconds=0.01))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert services.scheduler.scheduled_tick.await_count >= 2
        assert services.gate.expire_stale.await_count >= 2

    @pytest.mark.asyncio
    async def test_tick_failure_does_not_stop_loop(self):
        services = MagicMock()
        services.scheduler.scheduled_tick = AsyncMock(side_effect=RuntimeError("db down"))
        services.gate.expire_stale = AsyncMock(return_value=[])

        task = asyncio.create_task(run_scheduler_loop(services, interval_seconds=0.01))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert services.scheduler.scheduled_tick.await_count >= 2
