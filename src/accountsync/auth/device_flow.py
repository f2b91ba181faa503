"""OAuth 2.0 device authorization grant (RFC 8628) against an SSO/OIDC endpoint.

Created: 2026-10-19

State machine:

    IDLE -> REGISTERING -> AWAITING_USER_ACTION -> POLLING
         -> SUCCEEDED | DENIED | EXPIRED | FAILED

plus CANCELLED, reachable from any non-terminal state through ``cancel()``.

Polling rules for the token endpoint:
- accessToken present     -> SUCCEEDED
- authorization_pending   -> keep polling; EXPIRED after max attempts
- slow_down               -> interval += increment, keep polling
- access_denied           -> DENIED
- expired_token           -> EXPIRED
- anything else / network -> FAILED
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx
import pydantic

from accountsync.auth.schemas import (
    DeviceAuthorizationRequest,
    DeviceAuthorizationResponse,
    RegisterClientRequest,
    RegisterClientResponse,
    TokenErrorResponse,
    TokenRequest,
    TokenResponse,
)
from accountsync.auth.verification_server import VerificationServer
from accountsync.config import Settings
from accountsync.errors import (
    AuthDeniedError,
    AuthExpiredError,
    DeviceFlowCancelled,
    ProtocolError,
)

logger = logging.getLogger(__name__)


class DeviceFlowStatus(str, Enum):
    IDLE = "idle"
    REGISTERING = "registering"
    AWAITING_USER_ACTION = "awaiting_user_action"
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    DENIED = "denied"
    EXPIRED = "expired"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset(
    {
        DeviceFlowStatus.SUCCEEDED,
        DeviceFlowStatus.DENIED,
        DeviceFlowStatus.EXPIRED,
        DeviceFlowStatus.FAILED,
        DeviceFlowStatus.CANCELLED,
    }
)


@dataclass
class DeviceTokenResult:
    """Tokens issued at the end of a successful flow."""

    access_token: str = field(repr=False)
    refresh_token: str | None = field(default=None, repr=False)
    expires_in: int | None = None
    token_type: str = "Bearer"
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    def to_account_data(self, provider: str = "builderid") -> dict[str, Any]:
        """Payload for ``AccountStore.add_account("oauth", data)``."""
        data: dict[str, Any] = {
            "access_token": self.access_token,
            "token_type": self.token_type,
            "provider": provider,
        }
        if self.refresh_token:
            data["refresh_token"] = self.refresh_token
        if self.expires_in is not None:
            data["expires_at"] = time.time() + self.expires_in
        return data


@dataclass
class DeviceAuthorizationSession:
    """Everything one device flow knows. Discarded once terminal."""

    client_id: str = ""
    client_secret: str = field(default="", repr=False)
    device_code: str = field(default="", repr=False)
    user_code: str = ""
    verification_uri: str = ""
    verification_uri_complete: str | None = None
    interval: int = 5  # seconds, may grow on slow_down
    attempt: int = 0
    expires_at: float | None = None  # Unix timestamp
    status: DeviceFlowStatus = DeviceFlowStatus.IDLE
    error: str | None = None
    result: DeviceTokenResult | None = None

    @property
    def done(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def raise_for_status(self) -> DeviceTokenResult:
        """Return the tokens, or raise the error matching the terminal status."""
        if self.status == DeviceFlowStatus.SUCCEEDED and self.result is not None:
            return self.result
        if self.status == DeviceFlowStatus.DENIED:
            raise AuthDeniedError(self.error or "Authorization was denied")
        if self.status == DeviceFlowStatus.EXPIRED:
            raise AuthExpiredError(self.error or "Device code expired")
        if self.status == DeviceFlowStatus.CANCELLED:
            raise DeviceFlowCancelled(self.error or "Device flow cancelled")
        raise ProtocolError(self.error or f"Device flow not finished ({self.status.value})")


UserActionCallback = Callable[[DeviceAuthorizationSession], Awaitable[None] | None]


class DeviceAuthorizationClient:
    """Runs one device authorization flow.

    Args:
        settings: Endpoint, client name, scopes and polling limits.
        http_client: Client to use instead of creating one. Its base URL
            must point at the authorization server.
        sleep: Replacement for ``asyncio.sleep`` between polls.
        on_user_action: Called once with the session when the user code
            is known, before polling starts.
        verification_server: Serves the local verification page while
            the user acts; stopped when the flow ends.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
        on_user_action: UserActionCallback | None = None,
        verification_server: VerificationServer | None = None,
    ):
        self.settings = settings or Settings()
        self.max_attempts = self.settings.device_poll_max_attempts
        self.slow_down_increment = self.settings.device_slow_down_increment

        self._http = http_client
        self._sleep = sleep or asyncio.sleep
        self._on_user_action = on_user_action
        self._verification_server = verification_server

        self._session = DeviceAuthorizationSession(interval=self.settings.device_default_interval)
        self._cancelled = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._ran = False

    @property
    def session(self) -> DeviceAuthorizationSession:
        return self._session

    @property
    def status(self) -> DeviceFlowStatus:
        return self._session.status

    @property
    def finished(self) -> bool:
        """Terminal, with no owned task still winding down."""
        return self._session.done and (self._task is None or self._task.done())

    # =========================================================================
    # Public API
    # =========================================================================

    async def run(self) -> DeviceAuthorizationSession:
        """Run the flow to a terminal state and return the session.

        The outcome is ``session.status``; use ``session.raise_for_status()``
        to turn a non-success into an exception. A flow cancelled before
        it started returns its CANCELLED session without any request.
        """
        if self._ran:
            raise RuntimeError("A device flow can only be run once")
        self._ran = True
        if self._session.done:
            return self._session

        owns_client = self._http is None
        client = self._http or httpx.AsyncClient(
            base_url=self.settings.oidc_endpoint,
            timeout=30.0,
            headers={"User-Agent": self.settings.user_agent},
        )
        try:
            await self._register(client)
            if not self._halted:
                await self._authorize(client)
            if not self._halted:
                await self._notify_user()
            if not self._halted:
                await self._poll(client)
        except ProtocolError as e:
            self._finish(DeviceFlowStatus.FAILED, str(e))
        except httpx.HTTPError as e:
            self._finish(DeviceFlowStatus.FAILED, f"Transport error: {e}")
        finally:
            if owns_client:
                await client.aclose()
            if self._verification_server is not None:
                await self._verification_server.stop()
        return self._session

    def start(self) -> asyncio.Task:
        """Run the flow in a task owned by this client."""
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self.run())
        return self._task

    def cancel(self) -> None:
        """Stop the flow now; no further poll is sent."""
        if self._session.done:
            return
        self._cancelled.set()
        self._finish(DeviceFlowStatus.CANCELLED, "Authentication cancelled")

    async def aclose(self) -> None:
        """Cancel and wait for the owned task, if any."""
        self.cancel()
        if self._task is not None:
            await self._task
            self._task = None

    # =========================================================================
    # Steps
    # =========================================================================

    async def _register(self, client: httpx.AsyncClient) -> None:
        self._transition(DeviceFlowStatus.REGISTERING)
        body = RegisterClientRequest(
            client_name=self.settings.device_client_name,
            scopes=list(self.settings.device_scopes),
        )
        status_code, data = await self._post(client, "/client/register", body)
        if self._halted:
            return
        if status_code != 200:
            raise ProtocolError(f"Client registration failed (status {status_code})")
        registered = _parse(RegisterClientResponse, data, "client registration")
        self._session.client_id = registered.client_id
        self._session.client_secret = registered.client_secret

    async def _authorize(self, client: httpx.AsyncClient) -> None:
        self._transition(DeviceFlowStatus.AWAITING_USER_ACTION)
        body = DeviceAuthorizationRequest(
            client_id=self._session.client_id,
            client_secret=self._session.client_secret,
            start_url=self.settings.device_start_url,
        )
        status_code, data = await self._post(client, "/device_authorization", body)
        if self._halted:
            return
        if status_code != 200:
            raise ProtocolError(f"Device authorization failed (status {status_code})")
        auth = _parse(DeviceAuthorizationResponse, data, "device authorization")

        session = self._session
        session.device_code = auth.device_code
        session.user_code = auth.user_code
        session.verification_uri = auth.verification_uri
        session.verification_uri_complete = auth.verification_uri_complete
        if auth.interval:
            session.interval = auth.interval
        if auth.expires_in:
            session.expires_at = time.time() + auth.expires_in

    async def _notify_user(self) -> None:
        session = self._session
        logger.info(
            "Open %s and enter code %s",
            session.verification_uri_complete or session.verification_uri,
            session.user_code,
        )
        if self._verification_server is not None:
            try:
                await self._verification_server.start(lambda: self._session)
            except OSError as e:
                logger.warning("Verification page unavailable: %s", e)
        if self._on_user_action is not None:
            try:
                result = self._on_user_action(session)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.warning("User action callback failed", exc_info=True)

    async def _poll(self, client: httpx.AsyncClient) -> None:
        self._transition(DeviceFlowStatus.POLLING)
        session = self._session

        while True:
            if not await self._wait(session.interval):
                return

            session.attempt += 1
            body = TokenRequest(
                client_id=session.client_id,
                client_secret=session.client_secret,
                device_code=session.device_code,
            )
            status_code, data = await self._post(client, "/token", body)
            if self._halted:
                return

            if status_code == 200 and isinstance(data, dict) and data.get("accessToken"):
                token = _parse(TokenResponse, data, "token")
                session.result = DeviceTokenResult(
                    access_token=token.access_token,
                    refresh_token=token.refresh_token,
                    expires_in=token.expires_in,
                    token_type=token.token_type,
                    raw=data,
                )
                self._finish(DeviceFlowStatus.SUCCEEDED)
                return

            error = _parse(TokenErrorResponse, data, "token")
            if error.error == "authorization_pending":
                if session.attempt >= self.max_attempts:
                    self._finish(
                        DeviceFlowStatus.EXPIRED,
                        f"No authorization after {session.attempt} attempts",
                    )
                    return
                logger.debug("Waiting for user authorization (attempt %d)", session.attempt)
                continue
            if error.error == "slow_down":
                session.interval += self.slow_down_increment
                logger.info("Server asked to slow down, polling every %ds", session.interval)
                continue
            if error.error == "access_denied":
                self._finish(DeviceFlowStatus.DENIED, error.error_description)
                return
            if error.error == "expired_token":
                self._finish(DeviceFlowStatus.EXPIRED, error.error_description)
                return
            raise ProtocolError(
                f"Token request failed: {error.error}"
                + (f" ({error.error_description})" if error.error_description else "")
            )

    # =========================================================================
    # Helpers
    # =========================================================================

    @property
    def _halted(self) -> bool:
        return self._cancelled.is_set() or self._session.done

    async def _post(
        self, client: httpx.AsyncClient, path: str, body: pydantic.BaseModel
    ) -> tuple[int, Any]:
        resp = await client.post(
            path,
            json=body.model_dump(by_alias=True),
            headers={"Content-Type": "application/json", "Accept": "application/json"},
        )
        try:
            return resp.status_code, resp.json()
        except ValueError:
            raise ProtocolError(
                f"{path} returned a non-JSON response (status {resp.status_code})"
            ) from None

    async def _wait(self, seconds: float) -> bool:
        """Sleep *seconds* unless cancelled first. Returns False if cancelled."""
        if self._cancelled.is_set():
            return False
        sleeper = asyncio.ensure_future(self._sleep(seconds))
        canceller = asyncio.ensure_future(self._cancelled.wait())
        try:
            await asyncio.wait({sleeper, canceller}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleeper, canceller):
                if not task.done():
                    task.cancel()
        return not self._cancelled.is_set()

    def _transition(self, status: DeviceFlowStatus) -> None:
        if self._session.done:
            return
        logger.info("Device flow: %s -> %s", self._session.status.value, status.value)
        self._session.status = status

    def _finish(self, status: DeviceFlowStatus, error: str | None = None) -> None:
        if self._session.done:
            return
        if error and status != DeviceFlowStatus.SUCCEEDED:
            self._session.error = error
            logger.warning("Device flow ended as %s: %s", status.value, error)
        self._transition(status)


def _parse(model: type[pydantic.BaseModel], data: Any, what: str) -> Any:
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as e:
        raise ProtocolError(
            f"Unrecognized {what} response: {e.error_count()} invalid field(s)"
        ) from None
