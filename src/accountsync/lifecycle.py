"""Coordinated teardown for the components a SyncContext owns.

Components register their cleanup callbacks via ``register()``, and the
owner's teardown path calls ``shutdown_all()``. Callbacks run in reverse
registration order so later components (which may depend on earlier
ones) go first.

Created: 2026-10-19
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)


class Lifecycle:
    """Registry of shutdown callbacks owned by one context."""

    def __init__(self) -> None:
        # name -> shutdown callback (sync or async)
        self._registry: dict[str, Callable[[], Any]] = {}

    def register(self, name: str, shutdown: Callable[[], Any]) -> None:
        """Register a component's shutdown callback.

        Args:
            name: Unique identifier (e.g. ``"accounts"``, ``"event_stream"``).
            shutdown: Async or sync callable for graceful teardown.
        """
        self._registry.pop(name, None)
        self._registry[name] = shutdown

    def unregister(self, name: str) -> None:
        self._registry.pop(name, None)

    @property
    def names(self) -> list[str]:
        return list(self._registry)

    async def shutdown_all(self) -> None:
        """Run every shutdown callback, awaiting async ones.

        Errors are logged but don't prevent other shutdowns from running.
        """
        for name, shutdown_cb in reversed(list(self._registry.items())):
            try:
                result = shutdown_cb()
                if asyncio.iscoroutine(result):
                    await result
                logger.debug("Shut down %s", name)
            except Exception:
                logger.warning("Error shutting down %s", name, exc_info=True)
        self._registry.clear()
