"""Quota scheduler — periodic background quota refresh.

Created: 2026-10-19

One asyncio task per scheduler. ``start()`` always cancels the previous
task first, so there is never more than one timer armed. Failures of
individual refreshes are logged and otherwise ignored; the loop keeps
running until ``stop()``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from accountsync.errors import SchedulerError

logger = logging.getLogger(__name__)


class QuotaScheduler:
    """Refreshes quota for every account on a fixed interval.

    Args:
        account_ids: Returns the ids to refresh on each tick.
        refresh: Coroutine function refreshing one account's quota.
    """

    def __init__(
        self,
        account_ids: Callable[[], list[str]],
        refresh: Callable[[str], Awaitable[Any]],
    ):
        self._account_ids = account_ids
        self._refresh = refresh
        self._task: asyncio.Task | None = None
        self.interval: float | None = None
        self.ticks = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, interval: float) -> None:
        """Arm the timer with *interval* seconds, replacing any armed timer.

        Must be called from a running event loop.
        """
        if interval <= 0:
            raise ValueError(f"Refresh interval must be positive, got {interval}")
        self.stop()
        self.interval = interval
        self._task = asyncio.get_running_loop().create_task(self._loop(interval))
        logger.debug("Quota scheduler armed (every %.1fs)", interval)

    def stop(self) -> None:
        """Disarm the timer. A tick already in progress is cancelled."""
        if self._task is not None:
            if not self._task.done():
                self._task.cancel()
                logger.debug("Quota scheduler disarmed")
            self._task = None

    async def aclose(self) -> None:
        """Disarm and wait for the cancelled task to finish."""
        task = self._task
        self.stop()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def tick(self) -> int:
        """Refresh every account once, concurrently.

        Returns the number of failed refreshes.
        """
        ids = self._account_ids()
        if not ids:
            return 0

        results = await asyncio.gather(
            *(self._refresh(account_id) for account_id in ids),
            return_exceptions=True,
        )
        failed = 0
        for account_id, result in zip(ids, results, strict=True):
            if isinstance(result, Exception):
                failed += 1
                logger.warning(
                    "Failed to refresh quota for account %s: %s", account_id, result
                )
        logger.info("Auto quota refresh completed (%d/%d ok)", len(ids) - failed, len(ids))
        return failed

    async def _loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self.ticks += 1
            try:
                await self.tick()
            except Exception as e:
                err = SchedulerError(f"Auto quota refresh failed: {e}")
                logger.error("%s", err, exc_info=True)
