"""Account backend RPC protocol.

Created: 2026-10-19
Defines the request/response surface the account store talks to.

The backend process owns persistence, token storage and encryption; the
client only sees these calls plus the push channels in
``accountsync.bus.events``. Any method may raise; the store wraps every
call in the operation ledger.

Patches and account data use Account attribute names (snake_case);
transports translate to wire keys themselves.
"""

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class AccountBackendProtocol(Protocol):
    """Protocol defining the account backend RPC surface."""

    # =========================================================================
    # Single-account operations
    # =========================================================================

    async def list_accounts(self) -> list[dict[str, Any]]:
        """Return every account as a wire payload."""
        ...

    async def add_account(self, method: str, data: dict[str, Any]) -> Any:
        """Add an account. The backend emits ``account-added`` on success."""
        ...

    async def remove_account(self, account_id: str) -> Any:
        """Remove an account. The backend emits ``account-removed``."""
        ...

    async def update_account(self, account_id: str, patch: dict[str, Any]) -> Any:
        """Patch an account. The backend emits ``account-updated``."""
        ...

    async def switch_account(self, account_id: str) -> Any:
        """Make an account active. The backend emits ``account-switched``."""
        ...

    async def refresh_token(self, account_id: str) -> Any:
        """Refresh an account's access token."""
        ...

    async def get_quota(self, account_id: str) -> dict[str, Any]:
        """Return the cached quota for an account."""
        ...

    async def refresh_quota(self, account_id: str) -> Any:
        """Refetch quota. The backend emits ``quota-updated``."""
        ...

    # =========================================================================
    # Batch operations
    # =========================================================================

    async def batch_refresh_tokens(self, account_ids: list[str]) -> Any:
        ...

    async def batch_delete_accounts(self, account_ids: list[str]) -> Any:
        ...

    async def batch_add_tags(self, account_ids: list[str], tags: list[str]) -> Any:
        ...

    # =========================================================================
    # Import / export
    # =========================================================================

    async def export_accounts(self, password: str) -> Any:
        """Return an opaque export blob, encrypted when *password* is set."""
        ...

    async def import_accounts(self, path: str, password: str) -> Any:
        ...
