"""accountsync: client-side account synchronization and OAuth device login.

Created: 2026-10-19

- OperationLedger: at-most-one in-flight call per operation key
- ReactiveCollection: keyed, searchable, filterable, sortable, selectable items
- AccountStore: reconciles backend push events with local intents
- QuotaScheduler: periodic quota refresh
- DeviceAuthorizationClient: OAuth device authorization grant
- SyncContext: wires the above together and tears it down
"""

from accountsync.accounts import Account, AccountStore, QuotaScheduler
from accountsync.auth import DeviceAuthorizationClient, DeviceFlowStatus
from accountsync.bus import EventBus
from accountsync.collection import ReactiveCollection
from accountsync.config import Settings, get_settings
from accountsync.context import SyncContext
from accountsync.ledger import BatchReport, OperationLedger

__all__ = [
    "Account",
    "AccountStore",
    "BatchReport",
    "DeviceAuthorizationClient",
    "DeviceFlowStatus",
    "EventBus",
    "OperationLedger",
    "QuotaScheduler",
    "ReactiveCollection",
    "Settings",
    "SyncContext",
    "get_settings",
]
