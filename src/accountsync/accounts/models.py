"""Account data models.

Created: 2026-10-19

Design notes:
- Dataclasses, treated as immutable values (the collection replaces them)
- Timestamps are ISO 8601 strings, like the backend sends them
- Wire keys are camelCase; attributes are snake_case. ``WIRE_FIELDS``
  maps between the two for whole accounts and for partial patches
- Tags are deduplicated on every write; their order carries no meaning
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import UTC, datetime
from enum import Enum
from typing import Any

# ============================================================================
# Enums
# ============================================================================


class SubscriptionType(str, Enum):
    """Account subscription tier."""

    FREE = "free"
    PRO = "pro"
    PRO_PLUS = "pro_plus"


class LoginMethod(str, Enum):
    """How an account was (or will be) added."""

    OAUTH = "oauth"
    TOKEN = "token"
    PASSWORD = "password"


# ============================================================================
# Helper Functions
# ============================================================================


def now_iso() -> str:
    """Get current UTC time as ISO 8601 string."""
    return datetime.now(UTC).isoformat()


def parse_iso(value: str | None) -> datetime | None:
    """Parse an ISO 8601 timestamp, returning None for empty/invalid input."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def dedupe_tags(tags: Any) -> list[str]:
    """Deduplicate tags, keeping first occurrence order."""
    return list(dict.fromkeys(str(t) for t in tags or ()))


# ============================================================================
# Data Models
# ============================================================================


@dataclass(frozen=True)
class QuotaDetail:
    """One quota bucket. ``used`` may exceed ``total``; it is never clamped."""

    used: int = 0
    total: int = 0

    @property
    def usage(self) -> float:
        if self.total <= 0:
            return 0.0
        return self.used / self.total

    def is_low(self, threshold: float) -> bool:
        return self.total > 0 and self.usage >= threshold

    def to_dict(self) -> dict[str, int]:
        return {"used": self.used, "total": self.total}

    @classmethod
    def from_dict(cls, data: Any) -> QuotaDetail:
        if isinstance(data, QuotaDetail):
            return data
        data = data or {}
        return cls(used=int(data.get("used", 0)), total=int(data.get("total", 0)))


def parse_quota(data: Any) -> dict[str, QuotaDetail]:
    """Parse a ``{bucket: {used, total}}`` mapping."""
    return {str(name): QuotaDetail.from_dict(bucket) for name, bucket in (data or {}).items()}


@dataclass(frozen=True)
class Account:
    """A managed credential identity.

    Attributes:
        id: Stable unique identifier
        email: Account e-mail
        display_name: Human-friendly name
        is_active: Whether this is the account currently in use
        subscription_type: Subscription tier
        quota: Bucket name (``main``, ``trial``, ``reward``...) to usage
        tags: Short labels, deduplicated
        token_expiry: When the access token expires (ISO 8601) if known
        last_used: Last time the account was switched to
        created_at: When the account was added
        login_method: How the account was added
        provider: OAuth provider, for OAuth accounts
        notes: Free-form notes
        last_quota_update: Stamped locally when a quota push arrives
        last_token_refresh: Stamped locally when a token is refreshed
    """

    id: str
    email: str = ""
    display_name: str = ""
    is_active: bool = False
    subscription_type: SubscriptionType = SubscriptionType.FREE
    quota: dict[str, QuotaDetail] = field(default_factory=dict)
    tags: list[str] = field(default_factory=list)
    token_expiry: str | None = None
    last_used: str | None = None
    created_at: str = field(default_factory=now_iso)
    login_method: LoginMethod | None = None
    provider: str = ""
    notes: str = ""
    last_quota_update: str | None = None
    last_token_refresh: str | None = None

    def __post_init__(self) -> None:
        # frozen: normalize through object.__setattr__
        object.__setattr__(self, "tags", dedupe_tags(self.tags))
        object.__setattr__(self, "quota", parse_quota(self.quota))
        if not isinstance(self.subscription_type, SubscriptionType):
            object.__setattr__(
                self, "subscription_type", _subscription(self.subscription_type)
            )
        if self.login_method is not None and not isinstance(self.login_method, LoginMethod):
            try:
                method = LoginMethod(self.login_method)
            except ValueError:
                method = None
            object.__setattr__(self, "login_method", method)

    @property
    def name(self) -> str:
        return self.display_name or self.email

    def token_valid(self, now: datetime | None = None) -> bool:
        """True when there is no known expiry or it lies in the future."""
        expiry = parse_iso(self.token_expiry)
        if expiry is None:
            return True
        return expiry > (now or datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        """Serialize with camelCase wire keys."""
        data: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, Enum):
                value = value.value
            elif f.name == "quota":
                value = {name: bucket.to_dict() for name, bucket in value.items()}
            elif f.name == "tags":
                value = list(value)
            data[WIRE_FIELDS[f.name]] = value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Account:
        """Build an Account from a wire payload, ignoring unknown keys."""
        return cls(**patch_from_wire(data))


@dataclass(frozen=True)
class TokenInfo:
    """Token details carried by a ``token-refreshed`` push."""

    expires_at: str | None = None
    token_type: str = "Bearer"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> TokenInfo:
        data = data or {}
        return cls(
            expires_at=data.get("expiresAt") or data.get("expires_at"),
            token_type=data.get("tokenType") or data.get("token_type") or "Bearer",
        )


@dataclass(frozen=True)
class QuotaAlert:
    """A quota bucket at or above the alert threshold."""

    account_id: str
    account_name: str
    quota_type: str
    usage: int  # percent
    message: str


# ============================================================================
# Wire mapping
# ============================================================================

WIRE_FIELDS: dict[str, str] = {
    "id": "id",
    "email": "email",
    "display_name": "displayName",
    "is_active": "isActive",
    "subscription_type": "subscriptionType",
    "quota": "quota",
    "tags": "tags",
    "token_expiry": "tokenExpiry",
    "last_used": "lastUsed",
    "created_at": "createdAt",
    "login_method": "loginMethod",
    "provider": "provider",
    "notes": "notes",
    "last_quota_update": "lastQuotaUpdate",
    "last_token_refresh": "lastTokenRefresh",
}

_FROM_WIRE = {wire: attr for attr, wire in WIRE_FIELDS.items()}


def patch_from_wire(data: dict[str, Any]) -> dict[str, Any]:
    """Convert a camelCase payload to Account attribute names.

    Snake_case keys are accepted as-is; unknown keys are dropped.
    """
    patch: dict[str, Any] = {}
    for key, value in (data or {}).items():
        attr = _FROM_WIRE.get(key) or (key if key in WIRE_FIELDS else None)
        if attr is None:
            continue
        if attr == "login_method" and not value:
            value = None
        patch[attr] = value
    return patch


def patch_to_wire(patch: dict[str, Any]) -> dict[str, Any]:
    """Convert an attribute-name patch to camelCase wire keys."""
    wire: dict[str, Any] = {}
    for attr, value in patch.items():
        if isinstance(value, Enum):
            value = value.value
        elif attr == "quota":
            value = {name: QuotaDetail.from_dict(b).to_dict() for name, b in value.items()}
        wire[WIRE_FIELDS.get(attr, attr)] = value
    return wire


def _subscription(value: Any) -> SubscriptionType:
    try:
        return SubscriptionType(value)
    except ValueError:
        return SubscriptionType.FREE
