"""Exception taxonomy for account synchronization and the device flow.

Created: 2026-10-19

- ValidationError: rejected on the caller side, before any RPC is issued
- OperationError: an RPC wrapped by the OperationLedger failed
- RPCError: the HTTP transport could not complete an RPC
- SchedulerError: label for background refresh failures (logged, never raised)
- ProtocolError: a device-flow response had an unrecognized shape
- AuthDeniedError / AuthExpiredError: terminal user-facing device-flow outcomes
- DeviceFlowCancelled: the device flow was cancelled by its owner

Partial batch failures are never raised; see ``accountsync.ledger.BatchReport``.
"""

from __future__ import annotations


class AccountSyncError(Exception):
    """Base class for all accountsync errors."""


class ValidationError(AccountSyncError, ValueError):
    """Caller-side input was rejected before any RPC was made."""


class OperationError(AccountSyncError):
    """An operation run through the ledger failed.

    The original exception is chained as ``__cause__``.
    """

    def __init__(self, operation_id: str, message: str):
        super().__init__(message)
        self.operation_id = operation_id


class RPCError(AccountSyncError):
    """The backend rejected an RPC or could not be reached."""

    def __init__(self, method: str, message: str, status_code: int | None = None):
        super().__init__(f"{method}: {message}")
        self.method = method
        self.status_code = status_code


class SchedulerError(AccountSyncError):
    """A background quota refresh failed."""


class ProtocolError(AccountSyncError):
    """The authorization server answered with something we do not understand."""


class AuthDeniedError(AccountSyncError):
    """The user (or provider) denied the device authorization request."""


class AuthExpiredError(AccountSyncError):
    """The device code expired before the user completed authorization."""


class DeviceFlowCancelled(AccountSyncError):
    """The device flow was cancelled before reaching a terminal state."""
