"""Event bus for backend push events.

Created: 2026-10-19

Handlers subscribe to an event *class*, not a channel string:

    sub = bus.subscribe(AccountAdded, on_added)
    ...
    bus.unsubscribe(sub)

Transports feed raw channel names in through ``publish_raw()``. Events
are dispatched in the order they are published; each handler finishes
before the next event is delivered.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from accountsync.bus.events import (
    CHANNELS,
    AccountAdded,
    AccountRemoved,
    AccountSwitched,
    AccountUpdated,
    PushEvent,
    QuotaUpdated,
    TokenRefreshed,
    decode_event,
)

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=PushEvent)

Handler = Callable[[Any], Awaitable[None] | None]

__all__ = [
    "CHANNELS",
    "AccountAdded",
    "AccountRemoved",
    "AccountSwitched",
    "AccountUpdated",
    "EventBus",
    "PushEvent",
    "QuotaUpdated",
    "Subscription",
    "TokenRefreshed",
    "decode_event",
]


@dataclass(frozen=True, eq=False)
class Subscription:
    """Handle returned by ``EventBus.subscribe()``."""

    event_type: type[PushEvent]
    handler: Handler


class EventBus:
    """Typed publish/subscribe with ordered, sequential delivery."""

    def __init__(self) -> None:
        self._subscriptions: dict[type[PushEvent], list[Subscription]] = {}
        self._lock = asyncio.Lock()

    def subscribe(self, event_type: type[E], handler: Callable[[E], Any]) -> Subscription:
        sub = Subscription(event_type=event_type, handler=handler)
        self._subscriptions.setdefault(event_type, []).append(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        subs = self._subscriptions.get(sub.event_type, [])
        if sub in subs:
            subs.remove(sub)

    def subscriber_count(self, event_type: type[PushEvent] | None = None) -> int:
        if event_type is not None:
            return len(self._subscriptions.get(event_type, []))
        return sum(len(subs) for subs in self._subscriptions.values())

    async def publish(self, event: PushEvent) -> None:
        """Deliver *event* to its subscribers, one at a time.

        The lock keeps concurrent publishers from interleaving, so events
        reach handlers in publish order. Handlers must not publish
        themselves. A failing handler is logged and does not stop delivery
        to the others.
        """
        async with self._lock:
            for sub in list(self._subscriptions.get(type(event), [])):
                try:
                    result = sub.handler(event)
                    if inspect.isawaitable(result):
                        await result
                except Exception:
                    logger.error(
                        "Handler for %s failed", event.channel, exc_info=True
                    )

    async def publish_raw(self, channel: str, *args: Any) -> bool:
        """Decode a wire channel + arguments and publish it.

        Returns False (and logs) for unknown channels or malformed payloads.
        """
        try:
            event = decode_event(channel, *args)
        except KeyError:
            logger.warning("Ignoring unknown push channel: %s", channel)
            return False
        except ValueError as e:
            logger.warning("Ignoring %s", e)
            return False
        logger.debug("Push event %s", channel)
        await self.publish(event)
        return True
