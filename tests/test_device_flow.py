# Tests for accountsync.auth.device_flow
# Created: 2026-10-19

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from accountsync.auth import DeviceAuthorizationClient, DeviceFlowStatus, DeviceTokenResult
from accountsync.auth.schemas import DEVICE_CODE_GRANT
from accountsync.config import Settings
from accountsync.errors import (
    AuthDeniedError,
    AuthExpiredError,
    DeviceFlowCancelled,
    ProtocolError,
)

REGISTER_OK = {"clientId": "client-123", "clientSecret": "secret-456"}
AUTHORIZE_OK = {
    "verificationUri": "https://device.sso.example/",
    "verificationUriComplete": "https://device.sso.example/?user_code=ABCD-EFGH",
    "userCode": "ABCD-EFGH",
    "deviceCode": "device-789",
    "interval": 5,
    "expiresIn": 600,
}
TOKEN_OK = {
    "accessToken": "access-abc",
    "refreshToken": "refresh-def",
    "expiresIn": 3600,
    "tokenType": "Bearer",
}


def _pending():
    return httpx.Response(400, json={"error": "authorization_pending"})


class FakeServer:
    """Scripted OIDC endpoint: fixed register/authorize, queued token replies."""

    def __init__(self, token_responses=(), register=None, authorize=None):
        self.register = register or httpx.Response(200, json=REGISTER_OK)
        self.authorize = authorize or httpx.Response(200, json=AUTHORIZE_OK)
        self.token_responses = list(token_responses)
        self.requests = []
        self.statuses_at_token = []
        self.flow = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else {}
        self.requests.append((request.url.path, body))
        if request.url.path == "/client/register":
            return self.register
        if request.url.path == "/device_authorization":
            return self.authorize
        if request.url.path == "/token":
            if self.flow is not None:
                self.statuses_at_token.append(self.flow.status)
            return self.token_responses.pop(0) if self.token_responses else _pending()
        return httpx.Response(404)

    @property
    def paths(self):
        return [path for path, _ in self.requests]


class FakeSleep:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


@pytest.fixture
def settings():
    return Settings(device_poll_max_attempts=20)


@pytest.fixture
def sleep():
    return FakeSleep()


def _flow(server, settings, sleep, **kwargs):
    http = httpx.AsyncClient(
        base_url="https://oidc.test", transport=httpx.MockTransport(server)
    )
    flow = DeviceAuthorizationClient(settings, http_client=http, sleep=sleep, **kwargs)
    server.flow = flow
    return flow


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------


class TestSuccess:
    async def test_pending_then_success(self, settings, sleep):
        server = FakeServer([_pending(), httpx.Response(200, json=TOKEN_OK)])
        flow = _flow(server, settings, sleep)

        session = await flow.run()

        assert session.status == DeviceFlowStatus.SUCCEEDED
        assert session.attempt == 2
        assert sleep.calls == [5, 5]
        assert server.statuses_at_token == [DeviceFlowStatus.POLLING] * 2
        assert server.paths == ["/client/register", "/device_authorization", "/token", "/token"]

        result = session.raise_for_status()
        assert isinstance(result, DeviceTokenResult)
        assert result.access_token == "access-abc"
        assert result.refresh_token == "refresh-def"
        assert result.expires_in == 3600

    async def test_request_bodies(self, settings, sleep):
        server = FakeServer([httpx.Response(200, json=TOKEN_OK)])
        await _flow(server, settings, sleep).run()

        register = server.requests[0][1]
        assert register["clientName"] == "Kiro IDE"
        assert register["clientType"] == "public"
        assert register["scopes"] == ["sso:account:access"]
        assert DEVICE_CODE_GRANT in register["grantTypes"]

        authorize = server.requests[1][1]
        assert authorize == {
            "clientId": "client-123",
            "clientSecret": "secret-456",
            "startUrl": "https://view.awsapps.com/start",
        }

        token = server.requests[2][1]
        assert token["grantType"] == DEVICE_CODE_GRANT
        assert token["deviceCode"] == "device-789"
        assert token["clientId"] == "client-123"

    async def test_session_carries_user_code(self, settings, sleep):
        server = FakeServer([httpx.Response(200, json=TOKEN_OK)])
        session = await _flow(server, settings, sleep).run()

        assert session.user_code == "ABCD-EFGH"
        assert session.verification_uri == "https://device.sso.example/"
        assert session.expires_at is not None

    async def test_default_interval_when_server_omits_it(self, settings, sleep):
        authorize = {k: v for k, v in AUTHORIZE_OK.items() if k != "interval"}
        server = FakeServer(
            [httpx.Response(200, json=TOKEN_OK)],
            authorize=httpx.Response(200, json=authorize),
        )
        await _flow(server, Settings(device_default_interval=7), sleep).run()
        assert sleep.calls == [7]

    async def test_user_action_callback(self, settings, sleep):
        seen = []

        async def on_user_action(session):
            seen.append((session.user_code, session.status))

        server = FakeServer([httpx.Response(200, json=TOKEN_OK)])
        await _flow(server, settings, sleep, on_user_action=on_user_action).run()

        assert seen == [("ABCD-EFGH", DeviceFlowStatus.AWAITING_USER_ACTION)]

    async def test_failing_callback_does_not_abort_flow(self, settings, sleep):
        callback = MagicMock(side_effect=RuntimeError("no browser"))
        server = FakeServer([httpx.Response(200, json=TOKEN_OK)])
        session = await _flow(server, settings, sleep, on_user_action=callback).run()

        callback.assert_called_once()
        assert session.status == DeviceFlowStatus.SUCCEEDED

    async def test_verification_server_started_and_stopped(self, settings, sleep):
        page = MagicMock()
        page.start = AsyncMock(return_value="http://127.0.0.1:19847")
        page.stop = AsyncMock()
        server = FakeServer([httpx.Response(200, json=TOKEN_OK)])

        await _flow(server, settings, sleep, verification_server=page).run()

        page.start.assert_awaited_once()
        get_session = page.start.await_args.args[0]
        assert get_session().user_code == "ABCD-EFGH"
        page.stop.assert_awaited_once()

    async def test_to_account_data(self):
        result = DeviceTokenResult(access_token="a", refresh_token="r", expires_in=60)
        data = result.to_account_data()
        assert data["access_token"] == "a"
        assert data["refresh_token"] == "r"
        assert data["provider"] == "builderid"
        assert "expires_at" in data


# ---------------------------------------------------------------------------
# Polling errors
# ---------------------------------------------------------------------------


class TestPolling:
    async def test_slow_down_increases_interval(self, settings, sleep):
        server = FakeServer(
            [
                httpx.Response(400, json={"error": "slow_down"}),
                httpx.Response(200, json=TOKEN_OK),
            ]
        )
        session = await _flow(server, settings, sleep).run()

        assert session.status == DeviceFlowStatus.SUCCEEDED
        assert sleep.calls == [5, 10]
        assert session.interval == 10

    async def test_access_denied(self, settings, sleep):
        server = FakeServer(
            [httpx.Response(400, json={"error": "access_denied", "error_description": "nope"})]
        )
        session = await _flow(server, settings, sleep).run()

        assert session.status == DeviceFlowStatus.DENIED
        with pytest.raises(AuthDeniedError, match="nope"):
            session.raise_for_status()

    async def test_expired_token(self, settings, sleep):
        server = FakeServer([httpx.Response(400, json={"error": "expired_token"})])
        session = await _flow(server, settings, sleep).run()

        assert session.status == DeviceFlowStatus.EXPIRED
        with pytest.raises(AuthExpiredError):
            session.raise_for_status()

    async def test_gives_up_after_max_attempts(self, sleep):
        server = FakeServer()  # always pending
        flow = _flow(server, Settings(device_poll_max_attempts=3), sleep)

        session = await flow.run()

        assert session.status == DeviceFlowStatus.EXPIRED
        assert session.attempt == 3
        assert server.paths.count("/token") == 3

    async def test_unknown_error_fails(self, settings, sleep):
        server = FakeServer([httpx.Response(400, json={"error": "invalid_client"})])
        session = await _flow(server, settings, sleep).run()

        assert session.status == DeviceFlowStatus.FAILED
        assert "invalid_client" in session.error
        with pytest.raises(ProtocolError):
            session.raise_for_status()

    async def test_unparseable_token_body_fails(self, settings, sleep):
        server = FakeServer([httpx.Response(500, text="<html>oops</html>")])
        session = await _flow(server, settings, sleep).run()
        assert session.status == DeviceFlowStatus.FAILED

    async def test_transport_error_fails(self, settings, sleep):
        def handler(request):
            if request.url.path == "/token":
                raise httpx.ConnectError("connection refused")
            return FakeServer()(request)

        http = httpx.AsyncClient(base_url="https://oidc.test", transport=httpx.MockTransport(handler))
        flow = DeviceAuthorizationClient(settings, http_client=http, sleep=sleep)
        session = await flow.run()

        assert session.status == DeviceFlowStatus.FAILED
        assert "Transport error" in session.error


# ---------------------------------------------------------------------------
# Setup failures
# ---------------------------------------------------------------------------


class TestSetupFailures:
    async def test_register_rejected(self, settings, sleep):
        server = FakeServer(register=httpx.Response(403, json={"error": "forbidden"}))
        session = await _flow(server, settings, sleep).run()

        assert session.status == DeviceFlowStatus.FAILED
        assert server.paths == ["/client/register"]

    async def test_register_missing_fields(self, settings, sleep):
        server = FakeServer(register=httpx.Response(200, json={"clientId": "only-id"}))
        session = await _flow(server, settings, sleep).run()

        assert session.status == DeviceFlowStatus.FAILED
        assert server.paths == ["/client/register"]

    async def test_authorization_rejected(self, settings, sleep):
        server = FakeServer(authorize=httpx.Response(400, json={"error": "invalid_request"}))
        session = await _flow(server, settings, sleep).run()

        assert session.status == DeviceFlowStatus.FAILED
        assert "/token" not in server.paths

    async def test_run_only_once(self, settings, sleep):
        server = FakeServer([httpx.Response(200, json=TOKEN_OK)])
        flow = _flow(server, settings, sleep)
        await flow.run()
        with pytest.raises(RuntimeError):
            await flow.run()


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


class TestCancel:
    async def test_cancel_while_waiting_sends_no_more_polls(self, settings):
        sleeping = asyncio.Event()

        async def blocking_sleep(seconds):
            sleeping.set()
            await asyncio.Event().wait()

        server = FakeServer()
        flow = _flow(server, settings, blocking_sleep)
        task = flow.start()

        await sleeping.wait()
        assert flow.status == DeviceFlowStatus.POLLING
        flow.cancel()
        session = await task

        assert session.status == DeviceFlowStatus.CANCELLED
        assert "/token" not in server.paths
        with pytest.raises(DeviceFlowCancelled):
            session.raise_for_status()

    async def test_cancel_after_terminal_is_ignored(self, settings, sleep):
        server = FakeServer([httpx.Response(200, json=TOKEN_OK)])
        flow = _flow(server, settings, sleep)
        await flow.run()

        flow.cancel()
        assert flow.status == DeviceFlowStatus.SUCCEEDED

    async def test_aclose_cancels_owned_task(self, settings):
        sleeping = asyncio.Event()

        async def blocking_sleep(seconds):
            sleeping.set()
            await asyncio.Event().wait()

        flow = _flow(FakeServer(), settings, blocking_sleep)
        flow.start()
        await sleeping.wait()

        await flow.aclose()
        assert flow.status == DeviceFlowStatus.CANCELLED

    async def test_cancel_before_run(self, settings, sleep):
        server = FakeServer()
        flow = _flow(server, settings, sleep)
        flow.cancel()
        assert flow.status == DeviceFlowStatus.CANCELLED

        session = await flow.run()
        assert session.status == DeviceFlowStatus.CANCELLED
        assert server.requests == []

        with pytest.raises(RuntimeError):
            await flow.run()
