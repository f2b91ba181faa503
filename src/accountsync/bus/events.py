"""Push events delivered by the account backend.

Created: 2026-10-19

Each backend channel maps to exactly one event class. Channel names are
part of the wire contract; the rest of the code only sees the classes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar

from accountsync.accounts.models import (
    Account,
    QuotaDetail,
    TokenInfo,
    parse_quota,
    patch_from_wire,
)


@dataclass(frozen=True)
class PushEvent:
    """Base class for backend push events."""

    channel: ClassVar[str] = ""

    @classmethod
    def from_wire(cls, *args: Any) -> PushEvent:
        raise NotImplementedError


@dataclass(frozen=True)
class AccountAdded(PushEvent):
    account: Account
    # Only the attributes the payload carried, for merging into a known account
    patch: dict[str, Any] = field(default_factory=dict)

    channel: ClassVar[str] = "account-added"

    @classmethod
    def from_wire(cls, *args: Any) -> AccountAdded:
        (payload,) = args
        patch = patch_from_wire(payload)
        return cls(account=Account(**patch), patch=patch)


@dataclass(frozen=True)
class AccountRemoved(PushEvent):
    account_id: str

    channel: ClassVar[str] = "account-removed"

    @classmethod
    def from_wire(cls, *args: Any) -> AccountRemoved:
        (account_id,) = args
        return cls(account_id=str(account_id))


@dataclass(frozen=True)
class AccountUpdated(PushEvent):
    account_id: str
    patch: dict[str, Any] = field(default_factory=dict)

    channel: ClassVar[str] = "account-updated"

    @classmethod
    def from_wire(cls, *args: Any) -> AccountUpdated:
        account_id, updates = args
        return cls(account_id=str(account_id), patch=patch_from_wire(updates))


@dataclass(frozen=True)
class AccountSwitched(PushEvent):
    new_id: str
    old_id: str | None = None

    channel: ClassVar[str] = "account-switched"

    @classmethod
    def from_wire(cls, *args: Any) -> AccountSwitched:
        new_id = args[0]
        old_id = args[1] if len(args) > 1 else None
        return cls(new_id=str(new_id), old_id=str(old_id) if old_id else None)


@dataclass(frozen=True)
class QuotaUpdated(PushEvent):
    account_id: str
    quota: dict[str, QuotaDetail] = field(default_factory=dict)

    channel: ClassVar[str] = "quota-updated"

    @classmethod
    def from_wire(cls, *args: Any) -> QuotaUpdated:
        account_id, quota = args
        return cls(account_id=str(account_id), quota=parse_quota(quota))


@dataclass(frozen=True)
class TokenRefreshed(PushEvent):
    account_id: str
    info: TokenInfo = field(default_factory=TokenInfo)

    channel: ClassVar[str] = "token-refreshed"

    @classmethod
    def from_wire(cls, *args: Any) -> TokenRefreshed:
        account_id, info = args
        return cls(account_id=str(account_id), info=TokenInfo.from_dict(info))


# Channel name → event class
CHANNELS: dict[str, type[PushEvent]] = {
    cls.channel: cls
    for cls in (
        AccountAdded,
        AccountRemoved,
        AccountUpdated,
        AccountSwitched,
        QuotaUpdated,
        TokenRefreshed,
    )
}


def decode_event(channel: str, *args: Any) -> PushEvent:
    """Build the typed event for a wire channel name and its arguments.

    Raises:
        KeyError: unknown channel.
        ValueError: wrong number of arguments for the channel.
    """
    event_cls = CHANNELS[channel]
    try:
        return event_cls.from_wire(*args)
    except (AttributeError, TypeError, ValueError) as e:
        raise ValueError(f"Malformed {channel} event: {e}") from e
