# Tests for accountsync.backend.http
# Created: 2026-10-19

import json
from unittest.mock import MagicMock

import httpx
import pytest

from accountsync.accounts.protocol import AccountBackendProtocol
from accountsync.backend import EventStreamListener, HttpAccountBackend
from accountsync.bus import AccountRemoved, AccountSwitched, EventBus
from accountsync.errors import RPCError


class RecordingHandler:
    def __init__(self, response=None):
        self.response = response or httpx.Response(200, json={"result": True})
        self.calls = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append((request.url.path, json.loads(request.content)))
        return self.response


def _backend(handler):
    client = httpx.AsyncClient(base_url="http://backend.test", transport=httpx.MockTransport(handler))
    return HttpAccountBackend(base_url="http://backend.test", client=client)


# ---------------------------------------------------------------------------
# RPC
# ---------------------------------------------------------------------------


class TestHttpAccountBackend:
    def test_satisfies_protocol(self):
        assert isinstance(_backend(RecordingHandler()), AccountBackendProtocol)

    async def test_switch_account(self):
        handler = RecordingHandler()
        backend = _backend(handler)

        assert await backend.switch_account("a1") is True
        assert handler.calls == [("/rpc/SwitchAccount", {"args": ["a1"]})]

    async def test_list_accounts(self):
        handler = RecordingHandler(httpx.Response(200, json={"result": [{"id": "a1"}]}))
        assert await _backend(handler).list_accounts() == [{"id": "a1"}]

    async def test_list_accounts_null_result(self):
        handler = RecordingHandler(httpx.Response(200, json={"result": None}))
        assert await _backend(handler).list_accounts() == []

    async def test_update_account_sends_wire_keys(self):
        handler = RecordingHandler()
        await _backend(handler).update_account("a1", {"display_name": "Work", "is_active": False})
        assert handler.calls == [
            ("/rpc/UpdateAccount", {"args": ["a1", {"displayName": "Work", "isActive": False}]})
        ]

    async def test_batch_add_tags(self):
        handler = RecordingHandler()
        await _backend(handler).batch_add_tags(["a1", "a2"], ["vip"])
        assert handler.calls == [("/rpc/BatchAddTags", {"args": [["a1", "a2"], ["vip"]]})]

    async def test_error_field_raises(self):
        handler = RecordingHandler(httpx.Response(200, json={"error": "account not found"}))
        with pytest.raises(RPCError, match="RemoveAccount: account not found"):
            await _backend(handler).remove_account("ghost")

    async def test_http_error_status_raises(self):
        handler = RecordingHandler(httpx.Response(500, text="boom"))
        with pytest.raises(RPCError) as exc_info:
            await _backend(handler).refresh_quota("a1")
        assert exc_info.value.status_code == 500
        assert exc_info.value.method == "RefreshQuota"

    async def test_transport_error_raises(self):
        def handler(request):
            raise httpx.ConnectError("refused")

        with pytest.raises(RPCError, match="transport error"):
            await _backend(handler).list_accounts()


# ---------------------------------------------------------------------------
# Event stream
# ---------------------------------------------------------------------------

SSE_BODY = (
    ": keepalive\n"
    "\n"
    "event: account-switched\n"
    'data: ["a2", "a1"]\n'
    "\n"
    "event: account-removed\n"
    'data: "a3"\n'
    "\n"
    "event: mystery-channel\n"
    "data: []\n"
    "\n"
)


class TestEventStreamListener:
    async def test_consume_publishes_events_in_order(self):
        def handler(request):
            assert request.url.path == "/events/stream"
            return httpx.Response(
                200, text=SSE_BODY, headers={"content-type": "text/event-stream"}
            )

        bus = EventBus()
        seen = []
        bus.subscribe(AccountSwitched, seen.append)
        bus.subscribe(AccountRemoved, seen.append)

        client = httpx.AsyncClient(base_url="http://backend.test", transport=httpx.MockTransport(handler))
        listener = EventStreamListener(bus, base_url="http://backend.test", client=client)
        await listener._consume()

        assert seen == [AccountSwitched(new_id="a2", old_id="a1"), AccountRemoved(account_id="a3")]

    async def test_dispatch_rejects_invalid_json(self):
        bus = EventBus()
        handler = MagicMock()
        bus.subscribe(AccountRemoved, handler)
        listener = EventStreamListener(bus)

        assert await listener.dispatch("account-removed", "{not json") is False
        handler.assert_not_called()

    async def test_dispatch_single_value(self):
        bus = EventBus()
        handler = MagicMock()
        bus.subscribe(AccountRemoved, handler)
        listener = EventStreamListener(bus)

        assert await listener.dispatch("account-removed", '"a1"') is True
        handler.assert_called_once_with(AccountRemoved(account_id="a1"))

    async def test_start_and_stop(self):
        def handler(request):
            return httpx.Response(200, text="", headers={"content-type": "text/event-stream"})

        client = httpx.AsyncClient(base_url="http://backend.test", transport=httpx.MockTransport(handler))
        listener = EventStreamListener(EventBus(), reconnect_delay=0.01, client=client)
        listener.start()
        assert listener.running
        await listener.stop()
        assert not listener.running
