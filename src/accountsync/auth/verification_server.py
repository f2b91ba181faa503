"""Local verification page for the device authorization flow.

Created: 2026-10-19

While the user approves the device in their browser, a small page on
127.0.0.1 shows the verification URL and user code. It is a display
surface only: the flow never reads anything back from it.

Routes:
    GET /        HTML page with the link and code
    GET /status  JSON snapshot of the flow status
"""

from __future__ import annotations

import asyncio
import html
import logging
import socket
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import uvicorn
from fastapi import FastAPI
from fastapi.responses import HTMLResponse

if TYPE_CHECKING:
    from accountsync.auth.device_flow import DeviceAuthorizationSession

logger = logging.getLogger(__name__)

_PAGE = """<!doctype html>
<html>
  <head><title>Device Authorization</title></head>
  <body style="font-family: sans-serif; text-align: center; padding: 50px;">
    <h1>Authorize this device</h1>
    <p>Open <a href="{link}" target="_blank">{uri}</a> in your browser.</p>
    <p>Enter the code: <strong>{code}</strong></p>
    <p>Status: <span id="status">{status}</span></p>
  </body>
</html>
"""


def find_available_port(start_port: int, host: str = "127.0.0.1", max_attempts: int = 10) -> int:
    """Find an available port starting from start_port.

    Tries start_port first, then increments until finding an available one.
    """
    for offset in range(max_attempts):
        port = start_port + offset
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
                s.bind((host, port))
                return port
        except OSError:
            continue
    raise OSError(
        f"Could not find available port in range {start_port}-{start_port + max_attempts}"
    )


def create_verification_app(
    get_session: Callable[[], DeviceAuthorizationSession],
) -> FastAPI:
    """Build the FastAPI app rendering the current session."""
    app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)

    @app.get("/", response_class=HTMLResponse)
    async def index() -> str:
        session = get_session()
        uri = session.verification_uri or ""
        return _PAGE.format(
            link=html.escape(session.verification_uri_complete or uri, quote=True),
            uri=html.escape(uri),
            code=html.escape(session.user_code or ""),
            status=html.escape(session.status.value),
        )

    @app.get("/status")
    async def status() -> dict[str, Any]:
        session = get_session()
        return {
            "status": session.status.value,
            "verificationUri": session.verification_uri,
            "verificationUriComplete": session.verification_uri_complete,
            "userCode": session.user_code,
            "attempt": session.attempt,
        }

    return app


class VerificationServer:
    """Serves the verification page with uvicorn in a background task."""

    def __init__(self, host: str = "127.0.0.1", port: int = 19847):
        self.host = host
        self.port = port
        self._server: uvicorn.Server | None = None
        self._task: asyncio.Task | None = None

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self, get_session: Callable[[], DeviceAuthorizationSession]) -> str:
        """Start serving; returns the page URL.

        Raises:
            OSError: no free port near the configured one.
        """
        if self.running:
            return self.url

        port = find_available_port(self.port, host=self.host)
        if port != self.port:
            logger.info("Port %d busy, using port %d instead", self.port, port)
            self.port = port

        config = uvicorn.Config(
            create_verification_app(get_session),
            host=self.host,
            port=self.port,
            log_level="warning",
        )
        self._server = uvicorn.Server(config)
        self._task = asyncio.create_task(self._server.serve())
        logger.info("Verification page available at %s", self.url)
        return self.url

    async def stop(self) -> None:
        if self._server is None or self._task is None:
            return
        self._server.should_exit = True
        try:
            await asyncio.wait_for(self._task, timeout=5)
        except TimeoutError:
            self._task.cancel()
        finally:
            self._server = None
            self._task = None
        logger.debug("Verification page stopped")
