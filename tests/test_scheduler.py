# Tests for accountsync.accounts.scheduler
# Created: 2026-10-19

import asyncio
from unittest.mock import AsyncMock

import pytest

from accountsync.accounts.scheduler import QuotaScheduler


def _scheduler(ids=("a1", "a2"), refresh=None):
    refresh = refresh or AsyncMock()
    return QuotaScheduler(account_ids=lambda: list(ids), refresh=refresh), refresh


class TestArming:
    async def test_start_and_stop(self):
        scheduler, _ = _scheduler()
        scheduler.start(60)
        assert scheduler.is_running
        assert scheduler.interval == 60

        scheduler.stop()
        assert not scheduler.is_running

    async def test_restart_replaces_previous_timer(self):
        scheduler, _ = _scheduler()
        scheduler.start(60)
        first = scheduler._task

        scheduler.start(30)
        second = scheduler._task
        assert first is not second
        await asyncio.sleep(0)

        assert first.cancelled()
        assert not second.done()
        assert scheduler.interval == 30
        await scheduler.aclose()

    async def test_stop_when_not_running_is_harmless(self):
        scheduler, _ = _scheduler()
        scheduler.stop()
        await scheduler.aclose()
        assert not scheduler.is_running

    @pytest.mark.parametrize("interval", [0, -5])
    async def test_rejects_non_positive_interval(self, interval):
        scheduler, _ = _scheduler()
        with pytest.raises(ValueError):
            scheduler.start(interval)
        assert not scheduler.is_running


class TestTick:
    async def test_refreshes_every_account(self):
        scheduler, refresh = _scheduler(ids=("a1", "a2", "a3"))
        assert await scheduler.tick() == 0
        assert sorted(c.args[0] for c in refresh.await_args_list) == ["a1", "a2", "a3"]

    async def test_failures_are_isolated(self):
        async def refresh(account_id):
            if account_id == "a2":
                raise RuntimeError("quota service unavailable")

        mock = AsyncMock(side_effect=refresh)
        scheduler, _ = _scheduler(ids=("a1", "a2", "a3"), refresh=mock)

        assert await scheduler.tick() == 1
        assert mock.await_count == 3

    async def test_no_accounts_no_calls(self):
        scheduler, refresh = _scheduler(ids=())
        assert await scheduler.tick() == 0
        refresh.assert_not_awaited()


class TestLoop:
    async def test_ticks_on_interval(self):
        scheduler, refresh = _scheduler(ids=("a1",))
        scheduler.start(0.01)
        await asyncio.sleep(0.05)
        await scheduler.aclose()

        assert scheduler.ticks >= 1
        assert refresh.await_count >= 1

    async def test_loop_survives_failing_tick(self):
        def broken_ids():
            raise RuntimeError("collection unavailable")

        scheduler = QuotaScheduler(account_ids=broken_ids, refresh=AsyncMock())
        scheduler.start(0.01)
        await asyncio.sleep(0.06)

        assert scheduler.is_running
        assert scheduler.ticks >= 2
        await scheduler.aclose()
