"""Account store — keeps the local account collection in sync with the backend.

Created: 2026-10-19

Two paths converge on the same collection:

- Local intents (add/remove/switch/...) fire an RPC through the operation
  ledger and let the backend's push event perform the state change.
  ``update_account`` additionally applies its patch locally once the RPC
  returns, so the UI does not wait for the round trip; a later push event
  wins over that local value.
- Push events arrive through the event bus and are reconciled into the
  collection by the ``_on_*`` handlers, in delivery order.

Invariant: at most one account has ``is_active = True``.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable
from dataclasses import fields
from typing import Any

from accountsync.accounts.models import (
    WIRE_FIELDS,
    Account,
    LoginMethod,
    QuotaAlert,
    SubscriptionType,
    dedupe_tags,
    now_iso,
    patch_from_wire,
)
from accountsync.accounts.protocol import AccountBackendProtocol
from accountsync.accounts.scheduler import QuotaScheduler
from accountsync.bus import (
    AccountAdded,
    AccountRemoved,
    AccountSwitched,
    AccountUpdated,
    EventBus,
    QuotaUpdated,
    Subscription,
    TokenRefreshed,
)
from accountsync.collection import ReactiveCollection
from accountsync.config import Settings
from accountsync.errors import ValidationError
from accountsync.ledger import BatchReport, OperationLedger

logger = logging.getLogger(__name__)

_WIRE_KEYS = frozenset(WIRE_FIELDS.values())


class AccountStore:
    """Client-side account state plus the intents that change it.

    Construct one per ``SyncContext``; call ``start()`` to subscribe to
    push events and ``aclose()`` to tear everything down.
    """

    def __init__(
        self,
        backend: AccountBackendProtocol,
        bus: EventBus,
        settings: Settings | None = None,
        ledger: OperationLedger | None = None,
    ):
        self.backend = backend
        self.bus = bus
        settings = settings or Settings()

        self.collection: ReactiveCollection[Account] = ReactiveCollection(
            key_field="id", sort_by=None, ledger=ledger
        )
        self.active_account_id: str | None = None
        self.auto_refresh_enabled = settings.auto_refresh_enabled
        self.quota_refresh_interval = settings.quota_refresh_interval
        self.quota_alert_threshold = settings.quota_alert_threshold
        self.last_quota_refresh: float | None = None

        self.scheduler = QuotaScheduler(
            account_ids=lambda: [a.id for a in self.collection],
            refresh=self.refresh_account_quota,
        )
        self.collection.add_listener(self._on_size_change)
        self._subscriptions: list[Subscription] = []

    @property
    def ledger(self) -> OperationLedger:
        return self.collection.ledger

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        """Subscribe to all account push channels (replacing old subscriptions)."""
        self._unsubscribe_all()
        handlers = (
            (AccountAdded, self._on_account_added),
            (AccountRemoved, self._on_account_removed),
            (AccountUpdated, self._on_account_updated),
            (AccountSwitched, self._on_account_switched),
            (QuotaUpdated, self._on_quota_updated),
            (TokenRefreshed, self._on_token_refreshed),
        )
        for event_type, handler in handlers:
            self._subscriptions.append(self.bus.subscribe(event_type, handler))

    async def aclose(self) -> None:
        """Stop the quota scheduler and drop all event subscriptions."""
        await self.scheduler.aclose()
        self._unsubscribe_all()
        self.collection.remove_listener(self._on_size_change)

    def _unsubscribe_all(self) -> None:
        for sub in self._subscriptions:
            self.bus.unsubscribe(sub)
        self._subscriptions.clear()

    # =========================================================================
    # Push event reconciliation
    # =========================================================================

    def _on_account_added(self, event: AccountAdded) -> None:
        account = event.account
        logger.debug("Account added: %s", account.id)
        if account.id in self.collection:
            # Already known: merge only what the payload carried
            patch = dict(event.patch or _fields_of(account))
            patch.pop("id", None)
            is_active = patch.pop("is_active", None)
            if patch:
                self.collection.update(account.id, patch)
            self._apply_active_flag(account.id, is_active)
            return

        self.collection.upsert(account)
        if len(self.collection) == 1 or account.is_active:
            # First account becomes the active one
            self._activate(account.id, old_id=self.active_account_id, touch=False)

    def _on_account_removed(self, event: AccountRemoved) -> None:
        logger.debug("Account removed: %s", event.account_id)
        self.collection.remove(event.account_id)
        if self.active_account_id == event.account_id:
            self.active_account_id = None

    def _on_account_updated(self, event: AccountUpdated) -> None:
        logger.debug("Account updated: %s", event.account_id)
        patch = dict(event.patch)
        is_active = patch.pop("is_active", None)
        if patch:
            self.collection.update(event.account_id, patch)
        self._apply_active_flag(event.account_id, is_active)

    def _apply_active_flag(self, account_id: str, is_active: bool | None) -> None:
        if is_active is True:
            self._activate(account_id, old_id=self.active_account_id, touch=False)
        elif is_active is False:
            self.collection.update(account_id, {"is_active": False})
            if self.active_account_id == account_id:
                self.active_account_id = None

    def _on_account_switched(self, event: AccountSwitched) -> None:
        logger.debug("Account switched: %s -> %s", event.old_id, event.new_id)
        self._activate(event.new_id, old_id=event.old_id, touch=True)

    def _on_quota_updated(self, event: QuotaUpdated) -> None:
        logger.debug("Quota updated: %s", event.account_id)
        self.collection.update(
            event.account_id,
            {"quota": dict(event.quota), "last_quota_update": now_iso()},
        )
        self.last_quota_refresh = time.time()

    def _on_token_refreshed(self, event: TokenRefreshed) -> None:
        logger.debug("Token refreshed: %s", event.account_id)
        self.collection.update(
            event.account_id,
            {"token_expiry": event.info.expires_at, "last_token_refresh": now_iso()},
        )

    def _activate(self, new_id: str, old_id: str | None, touch: bool) -> None:
        """Mark *new_id* active and everyone else inactive in one transition."""
        patches: dict[str, dict[str, Any]] = {}
        for account in self.collection:
            if account.id != new_id and (account.is_active or account.id == old_id):
                patches[account.id] = {"is_active": False}
        new_patch: dict[str, Any] = {"is_active": True}
        if touch:
            new_patch["last_used"] = now_iso()
        patches[new_id] = new_patch
        self.collection.update_many(patches)
        self.active_account_id = new_id if new_id in self.collection else None

    # =========================================================================
    # Intents
    # =========================================================================

    async def load_accounts(self) -> list[Account]:
        """Replace the collection with the backend's account list."""

        async def _load() -> list[Account]:
            payloads = await self.backend.list_accounts()
            accounts = [Account.from_dict(p) for p in payloads or []]
            self.collection.replace_all(accounts)
            active = next((a for a in accounts if a.is_active), None)
            self.active_account_id = active.id if active else None
            logger.info("Loaded %d accounts", len(accounts))
            return accounts

        return await self.ledger.run("load-accounts", _load)

    async def add_account(self, method: str | LoginMethod, data: dict[str, Any]) -> bool:
        try:
            login_method = LoginMethod(method)
        except ValueError:
            raise ValidationError(f"Unsupported login method: {method}") from None
        if not isinstance(data, dict):
            raise ValidationError("Account data must be a mapping")

        async def _add() -> bool:
            await self.backend.add_account(login_method.value, data)
            return True

        return await self.ledger.run("add-account", _add)

    async def remove_account(self, account_id: str) -> bool:
        _require_id(account_id)

        async def _remove() -> bool:
            await self.backend.remove_account(account_id)
            return True

        return await self.ledger.run(f"remove-account-{account_id}", _remove)

    async def update_account(self, account_id: str, patch: dict[str, Any]) -> bool:
        _require_id(account_id)
        if not patch:
            raise ValidationError("Update patch must not be empty")
        unknown = sorted(k for k in patch if k not in WIRE_FIELDS and k not in _WIRE_KEYS)
        if unknown:
            raise ValidationError(f"Unknown account field(s): {', '.join(unknown)}")
        # camelCase keys are accepted and stored under attribute names
        patch = patch_from_wire(patch)
        if "id" in patch and patch["id"] != account_id:
            raise ValidationError("Account id cannot be changed")

        async def _update() -> bool:
            await self.backend.update_account(account_id, patch)
            # Applied now rather than waiting for account-updated
            local = {k: v for k, v in patch.items() if k != "is_active"}
            if local:
                self.collection.update(account_id, local)
            return True

        return await self.ledger.run(f"update-account-{account_id}", _update)

    async def switch_account(self, account_id: str) -> bool:
        """Ask the backend to switch accounts. False if already active."""
        _require_id(account_id)
        if self.active_account_id == account_id:
            return False

        async def _switch() -> bool:
            await self.backend.switch_account(account_id)
            return True

        return await self.ledger.run(f"switch-account-{account_id}", _switch)

    async def refresh_account_token(self, account_id: str) -> bool:
        _require_id(account_id)

        async def _refresh() -> bool:
            await self.backend.refresh_token(account_id)
            self.collection.update(account_id, {"last_token_refresh": now_iso()})
            return True

        return await self.ledger.run(f"refresh-token-{account_id}", _refresh)

    async def refresh_account_quota(self, account_id: str) -> bool:
        _require_id(account_id)

        async def _refresh() -> bool:
            await self.backend.refresh_quota(account_id)
            return True

        return await self.ledger.run(
            f"refresh-quota-{account_id}", _refresh, track_loading=False
        )

    async def get_account_quota(self, account_id: str) -> dict[str, Any]:
        _require_id(account_id)
        return await self.ledger.run(
            f"get-quota-{account_id}", lambda: self.backend.get_quota(account_id)
        )

    async def batch_refresh_tokens(self, account_ids: Iterable[str]) -> bool:
        ids = _require_ids(account_ids)

        async def _refresh() -> bool:
            await self.backend.batch_refresh_tokens(ids)
            now = now_iso()
            self.collection.update_many({i: {"last_token_refresh": now} for i in ids})
            return True

        return await self.ledger.run("batch-refresh-tokens", _refresh)

    async def batch_delete_accounts(self, account_ids: Iterable[str]) -> bool:
        ids = _require_ids(account_ids)

        async def _delete() -> bool:
            await self.backend.batch_delete_accounts(ids)
            return True

        return await self.ledger.run("batch-delete-accounts", _delete)

    async def batch_add_tags(self, account_ids: Iterable[str], tags: Iterable[str]) -> bool:
        ids = _require_ids(account_ids)
        new_tags = dedupe_tags(t.strip() for t in tags if t and t.strip())
        if not new_tags:
            raise ValidationError("At least one tag is required")

        async def _tag() -> bool:
            await self.backend.batch_add_tags(ids, new_tags)
            patches = {}
            for account_id in ids:
                account = self.collection.get(account_id)
                if account is not None:
                    patches[account_id] = {"tags": [*account.tags, *new_tags]}
            self.collection.update_many(patches)
            return True

        return await self.ledger.run("batch-add-tags", _tag)

    async def batch_refresh_quotas(self, account_ids: Iterable[str]) -> BatchReport:
        """Refresh several quotas, reporting (not raising) partial failures."""
        ids = _require_ids(account_ids)
        return await self.ledger.run_batch(
            [
                (f"refresh-quota-{i}", lambda i=i: self.backend.refresh_quota(i))
                for i in ids
            ]
        )

    async def export_accounts(self, password: str = "") -> Any:
        return await self.ledger.run(
            "export-accounts", lambda: self.backend.export_accounts(password)
        )

    async def import_accounts(self, path: str, password: str = "") -> bool:
        if not path:
            raise ValidationError("Import path is required")

        async def _import() -> bool:
            await self.backend.import_accounts(path, password)
            await self.load_accounts()
            return True

        return await self.ledger.run("import-accounts", _import)

    # =========================================================================
    # Quota auto-refresh
    # =========================================================================

    def start_quota_auto_refresh(self) -> None:
        if not self.auto_refresh_enabled:
            return
        self.scheduler.start(self.quota_refresh_interval)

    def stop_quota_auto_refresh(self) -> None:
        self.scheduler.stop()

    def set_auto_refresh(self, enabled: bool, interval: float | None = None) -> None:
        """Explicit configuration toggle: arms or disarms the scheduler."""
        if interval is not None:
            if interval <= 0:
                raise ValidationError("Refresh interval must be positive")
            self.quota_refresh_interval = interval
        self.auto_refresh_enabled = enabled
        if enabled:
            self.start_quota_auto_refresh()
        else:
            self.stop_quota_auto_refresh()

    def _on_size_change(self, old_size: int, new_size: int) -> None:
        if old_size == 0 and new_size > 0:
            self.start_quota_auto_refresh()
        elif old_size > 0 and new_size == 0:
            self.stop_quota_auto_refresh()

    # =========================================================================
    # Derived views
    # =========================================================================

    @property
    def accounts(self) -> list[Account]:
        return self.collection.items

    @property
    def active_account(self) -> Account | None:
        if self.active_account_id is None:
            return None
        return self.collection.get(self.active_account_id)

    @property
    def valid_account_count(self) -> int:
        return sum(1 for a in self.collection if a.token_valid())

    @property
    def all_tags(self) -> list[str]:
        return sorted({tag for a in self.collection for tag in a.tags})

    @property
    def subscription_stats(self) -> dict[str, int]:
        stats = {t.value: 0 for t in SubscriptionType}
        for account in self.collection:
            stats[account.subscription_type.value] += 1
        return stats

    def quota_alerts(self, threshold: float | None = None) -> list[QuotaAlert]:
        """Quota buckets whose usage is at or above *threshold*."""
        threshold = self.quota_alert_threshold if threshold is None else threshold
        alerts = []
        for account in self.collection:
            for quota_type, bucket in account.quota.items():
                if not bucket.is_low(threshold):
                    continue
                alerts.append(
                    QuotaAlert(
                        account_id=account.id,
                        account_name=account.name,
                        quota_type=quota_type,
                        usage=round(bucket.usage * 100),
                        message=(
                            f"{account.name} has used {bucket.used} / {bucket.total} "
                            f"of its {quota_type} quota"
                        ),
                    )
                )
        return alerts


def _require_id(account_id: str) -> None:
    if not account_id or not str(account_id).strip():
        raise ValidationError("Account id is required")


def _require_ids(account_ids: Iterable[str]) -> list[str]:
    ids = list(dict.fromkeys(account_ids or ()))
    if not ids:
        raise ValidationError("At least one account id is required")
    for account_id in ids:
        _require_id(account_id)
    return ids


def _fields_of(account: Account) -> dict[str, Any]:
    return {f.name: getattr(account, f.name) for f in fields(account)}
