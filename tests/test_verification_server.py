# Tests for accountsync.auth.verification_server
# Created: 2026-10-19

import socket

import pytest
from fastapi.testclient import TestClient

from accountsync.auth.device_flow import DeviceAuthorizationSession, DeviceFlowStatus
from accountsync.auth.verification_server import (
    VerificationServer,
    create_verification_app,
    find_available_port,
)


@pytest.fixture
def session():
    return DeviceAuthorizationSession(
        user_code="WXYZ-1234",
        verification_uri="https://device.sso.example/",
        verification_uri_complete="https://device.sso.example/?user_code=WXYZ-1234",
        status=DeviceFlowStatus.POLLING,
        attempt=2,
    )


@pytest.fixture
def client(session):
    return TestClient(create_verification_app(lambda: session))


class TestVerificationApp:
    def test_index_shows_code_and_link(self, client):
        resp = client.get("/")
        assert resp.status_code == 200
        assert "text/html" in resp.headers["content-type"]
        assert "WXYZ-1234" in resp.text
        assert "https://device.sso.example/?user_code=WXYZ-1234" in resp.text
        assert "polling" in resp.text

    def test_index_escapes_values(self, session, client):
        session.user_code = "<script>alert(1)</script>"
        resp = client.get("/")
        assert "<script>" not in resp.text
        assert "&lt;script&gt;" in resp.text

    def test_status_reflects_live_session(self, session, client):
        data = client.get("/status").json()
        assert data == {
            "status": "polling",
            "verificationUri": "https://device.sso.example/",
            "verificationUriComplete": "https://device.sso.example/?user_code=WXYZ-1234",
            "userCode": "WXYZ-1234",
            "attempt": 2,
        }

        session.status = DeviceFlowStatus.SUCCEEDED
        assert client.get("/status").json()["status"] == "succeeded"

    def test_docs_disabled(self, client):
        assert client.get("/docs").status_code == 404
        assert client.get("/openapi.json").status_code == 404


class TestFindAvailablePort:
    def test_skips_busy_port(self):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as busy:
            busy.bind(("127.0.0.1", 0))
            busy.listen(1)
            port = busy.getsockname()[1]
            found = find_available_port(port, max_attempts=10)
            assert found != port
            assert port < found <= port + 10

    def test_raises_when_exhausted(self):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as busy:
            busy.bind(("127.0.0.1", 0))
            busy.listen(1)
            port = busy.getsockname()[1]
            with pytest.raises(OSError):
                find_available_port(port, max_attempts=1)


class TestVerificationServer:
    def test_url(self):
        server = VerificationServer(host="127.0.0.1", port=19999)
        assert server.url == "http://127.0.0.1:19999"
        assert not server.running

    async def test_stop_without_start_is_harmless(self):
        server = VerificationServer()
        await server.stop()
        assert not server.running
