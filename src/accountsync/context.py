"""SyncContext wires accountsync together.

Created: 2026-10-19

Build it once at startup and pass it to whatever needs account state:

    async with SyncContext(settings) as ctx:
        await ctx.accounts.load_accounts()
        flow = ctx.device_flow()
        session = await flow.run()
        await ctx.accounts.add_account("oauth", session.raise_for_status().to_account_data())

Leaving the context (or calling ``aclose()``) cancels every timer and
subscription the context created.
"""

from __future__ import annotations

import logging
from typing import Any

from accountsync.accounts.protocol import AccountBackendProtocol
from accountsync.accounts.store import AccountStore
from accountsync.auth.device_flow import DeviceAuthorizationClient
from accountsync.auth.verification_server import VerificationServer
from accountsync.backend.http import EventStreamListener, HttpAccountBackend
from accountsync.bus import EventBus
from accountsync.config import Settings, get_settings
from accountsync.lifecycle import Lifecycle

logger = logging.getLogger(__name__)


class SyncContext:
    """Owns the event bus, backend, account store and their teardown."""

    def __init__(
        self,
        settings: Settings | None = None,
        backend: AccountBackendProtocol | None = None,
        bus: EventBus | None = None,
    ):
        self.settings = settings or get_settings()
        self.bus = bus or EventBus()
        self.lifecycle = Lifecycle()

        if backend is None:
            http_backend = HttpAccountBackend(
                base_url=self.settings.rpc_base_url, timeout=self.settings.rpc_timeout
            )
            self.lifecycle.register("backend", http_backend.aclose)
            backend = http_backend
        self.backend = backend

        self.accounts = AccountStore(self.backend, self.bus, settings=self.settings)
        self.lifecycle.register("accounts", self.accounts.aclose)

        self.event_stream: EventStreamListener | None = None
        self._flows: list[DeviceAuthorizationClient] = []
        self._started = False

    async def start(self, listen: bool = False) -> None:
        """Subscribe the store to push events.

        Args:
            listen: Also open the SSE event stream of the HTTP backend.
        """
        if self._started:
            return
        self.accounts.start()
        if listen:
            self.event_stream = EventStreamListener(
                self.bus,
                base_url=self.settings.rpc_base_url,
                reconnect_delay=self.settings.event_reconnect_delay,
            )
            self.event_stream.start()
            self.lifecycle.register("event_stream", self.event_stream.stop)
        self._started = True
        logger.info("Sync context started")

    def device_flow(self, *, serve_page: bool = False, **kwargs: Any) -> DeviceAuthorizationClient:
        """Create a device authorization client cancelled on teardown.

        Args:
            serve_page: Serve the local verification page during the flow.
            **kwargs: Passed through to ``DeviceAuthorizationClient``.
        """
        if serve_page and "verification_server" not in kwargs:
            kwargs["verification_server"] = VerificationServer(
                host=self.settings.verification_host,
                port=self.settings.verification_port,
            )
        flow = DeviceAuthorizationClient(self.settings, **kwargs)
        self._prune_flows()
        self._flows.append(flow)
        return flow

    @property
    def flows(self) -> list[DeviceAuthorizationClient]:
        """Device flows created here that have not finished yet."""
        self._prune_flows()
        return list(self._flows)

    def _prune_flows(self) -> None:
        self._flows = [f for f in self._flows if not f.finished]

    async def aclose(self) -> None:
        for flow in self._flows:
            await flow.aclose()
        self._flows.clear()
        await self.lifecycle.shutdown_all()
        self._started = False
        logger.info("Sync context closed")

    async def __aenter__(self) -> SyncContext:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
