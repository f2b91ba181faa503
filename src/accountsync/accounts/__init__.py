"""Account synchronization: models, backend protocol, store and scheduler.

Usage:
    store = AccountStore(backend, bus, settings)
    store.start()
    await store.load_accounts()
    await store.switch_account("acc-2")   # state changes on account-switched
    ...
    await store.aclose()
"""

from accountsync.accounts.models import (
    Account,
    LoginMethod,
    QuotaAlert,
    QuotaDetail,
    SubscriptionType,
    TokenInfo,
)
from accountsync.accounts.protocol import AccountBackendProtocol
from accountsync.accounts.scheduler import QuotaScheduler
from accountsync.accounts.store import AccountStore

__all__ = [
    "Account",
    "AccountBackendProtocol",
    "AccountStore",
    "LoginMethod",
    "QuotaAlert",
    "QuotaDetail",
    "QuotaScheduler",
    "SubscriptionType",
    "TokenInfo",
]
