"""OAuth device authorization flow."""

from accountsync.auth.device_flow import (
    TERMINAL_STATUSES,
    DeviceAuthorizationClient,
    DeviceAuthorizationSession,
    DeviceFlowStatus,
    DeviceTokenResult,
)
from accountsync.auth.verification_server import VerificationServer

__all__ = [
    "TERMINAL_STATUSES",
    "DeviceAuthorizationClient",
    "DeviceAuthorizationSession",
    "DeviceFlowStatus",
    "DeviceTokenResult",
    "VerificationServer",
]
