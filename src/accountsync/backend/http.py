"""HTTP transport for the account backend.

Created: 2026-10-19

RPC:    POST {base}/rpc/{Method}   body {"args": [...]}  ->  {"result": ...}
                                                          or {"error": "..."}
Events: GET  {base}/events/stream  (server-sent events)

    event: account-switched
    data: ["acc-2", "acc-1"]

Each SSE ``data`` line is a JSON array of channel arguments (a single
non-array value is treated as one argument). Events are forwarded to the
EventBus in the order they arrive.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import httpx

from accountsync.accounts.models import patch_to_wire
from accountsync.bus import EventBus
from accountsync.errors import RPCError

logger = logging.getLogger(__name__)


class HttpAccountBackend:
    """Implements AccountBackendProtocol over HTTP JSON RPC."""

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:34115",
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def call(self, method: str, *args: Any) -> Any:
        """Invoke one RPC and return its ``result``."""
        try:
            resp = await self._client.post(f"/rpc/{method}", json={"args": list(args)})
        except httpx.HTTPError as e:
            raise RPCError(method, f"transport error: {e}") from e

        try:
            data = resp.json()
        except ValueError:
            data = {}

        if resp.status_code >= 400:
            message = data.get("error") if isinstance(data, dict) else None
            raise RPCError(method, message or resp.reason_phrase, resp.status_code)
        if isinstance(data, dict) and data.get("error"):
            raise RPCError(method, str(data["error"]), resp.status_code)
        return data.get("result") if isinstance(data, dict) else None

    # =========================================================================
    # AccountBackendProtocol
    # =========================================================================

    async def list_accounts(self) -> list[dict[str, Any]]:
        return await self.call("ListAccounts") or []

    async def add_account(self, method: str, data: dict[str, Any]) -> Any:
        return await self.call("AddAccount", method, data)

    async def remove_account(self, account_id: str) -> Any:
        return await self.call("RemoveAccount", account_id)

    async def update_account(self, account_id: str, patch: dict[str, Any]) -> Any:
        return await self.call("UpdateAccount", account_id, patch_to_wire(patch))

    async def switch_account(self, account_id: str) -> Any:
        return await self.call("SwitchAccount", account_id)

    async def refresh_token(self, account_id: str) -> Any:
        return await self.call("RefreshToken", account_id)

    async def get_quota(self, account_id: str) -> dict[str, Any]:
        return await self.call("GetQuota", account_id) or {}

    async def refresh_quota(self, account_id: str) -> Any:
        return await self.call("RefreshQuota", account_id)

    async def batch_refresh_tokens(self, account_ids: list[str]) -> Any:
        return await self.call("BatchRefreshTokens", account_ids)

    async def batch_delete_accounts(self, account_ids: list[str]) -> Any:
        return await self.call("BatchDeleteAccounts", account_ids)

    async def batch_add_tags(self, account_ids: list[str], tags: list[str]) -> Any:
        return await self.call("BatchAddTags", account_ids, tags)

    async def export_accounts(self, password: str) -> Any:
        return await self.call("ExportAccounts", password)

    async def import_accounts(self, path: str, password: str) -> Any:
        return await self.call("ImportAccounts", path, password)


class EventStreamListener:
    """Reads backend push events from SSE and publishes them on the bus.

    Reconnects after ``reconnect_delay`` seconds when the stream drops.
    """

    def __init__(
        self,
        bus: EventBus,
        base_url: str = "http://127.0.0.1:34115",
        reconnect_delay: float = 3.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.bus = bus
        self.base_url = base_url.rstrip("/")
        self.reconnect_delay = reconnect_delay
        self._client = client
        self._owns_client = client is None
        self._task: asyncio.Task | None = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self.base_url, timeout=None)
        self._running = True
        self._task = asyncio.get_running_loop().create_task(self._listen_loop())
        logger.info("Listening for account events at %s/events/stream", self.base_url)

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _listen_loop(self) -> None:
        while self._running:
            try:
                await self._consume()
            except httpx.HTTPError as e:
                logger.debug("Event stream error: %s", e)
            except Exception as e:
                logger.error("Event stream error: %s", e)
            if self._running:
                await asyncio.sleep(self.reconnect_delay)

    async def _consume(self) -> None:
        async with self._client.stream("GET", "/events/stream") as resp:
            resp.raise_for_status()
            channel = ""
            data_lines: list[str] = []
            async for line in resp.aiter_lines():
                if not line:
                    if channel and data_lines:
                        await self.dispatch(channel, "\n".join(data_lines))
                    channel, data_lines = "", []
                elif line.startswith(":"):
                    continue  # keepalive comment
                elif line.startswith("event:"):
                    channel = line[len("event:") :].strip()
                elif line.startswith("data:"):
                    data_lines.append(line[len("data:") :].strip())

    async def dispatch(self, channel: str, data: str) -> bool:
        """Decode one SSE message body and publish it."""
        try:
            payload = json.loads(data)
        except json.JSONDecodeError:
            logger.warning("Dropping %s event with invalid JSON", channel)
            return False
        args = payload if isinstance(payload, list) else [payload]
        return await self.bus.publish_raw(channel, *args)
