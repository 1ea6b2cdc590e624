"""
auth/models.py -- Domain dataclasses and enums for the session/authorization core.

Pattern: Data class (pure data container, zero logic). Stores, the token
service and routes do the work; capability math lives in auth/capabilities.py.

Enums subclass str so their values serialize directly into SQL columns
without custom encoders. Tier, status and admin role have a second,
capitalized spelling (the *_WIRE_NAMES tables) that is used in JWT payloads
and API responses: "Premium", "Active", "SuperAdmin".

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class AccountTier(str, Enum):
    FREE = "free"
    PREMIUM = "premium"
    ENTERPRISE = "enterprise"


class AccountStatus(str, Enum):
    """Account lifecycle status.

    Transitions are governed outside this package. The only rule enforced
    here is that anything other than ACTIVE blocks token issuance.
    """

    ACTIVE = "active"
    PENDING = "pending"
    SUSPENDED = "suspended"
    BANNED = "banned"
    DEACTIVATED = "deactivated"


class AdminRole(str, Enum):
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    MODERATOR = "moderator"


class UserRole(str, Enum):
    """Coarse role carried in access tokens."""

    USER = "User"
    ADMIN = "Admin"


class TokenType(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"
    ADMIN_ACCESS = "admin_access"
    ADMIN_REFRESH = "admin_refresh"


class ValidationType(str, Enum):
    EMAIL_VERIFICATION = "email_verification"
    PASSWORD_RESET = "password_reset"
    TWO_FACTOR_AUTH = "two_factor_auth"
    ADMIN_INVITE = "admin_invite"
    ACCOUNT_ACTIVATION = "account_activation"


# Token/API spelling. Stored values stay lowercase.
TIER_WIRE_NAMES: dict[AccountTier, str] = {
    AccountTier.FREE: "Free",
    AccountTier.PREMIUM: "Premium",
    AccountTier.ENTERPRISE: "Enterprise",
}

STATUS_WIRE_NAMES: dict[AccountStatus, str] = {
    AccountStatus.ACTIVE: "Active",
    AccountStatus.PENDING: "Pending",
    AccountStatus.SUSPENDED: "Suspended",
    AccountStatus.BANNED: "Banned",
    AccountStatus.DEACTIVATED: "Deactivated",
}

ADMIN_ROLE_WIRE_NAMES: dict[AdminRole, str] = {
    AdminRole.SUPER_ADMIN: "SuperAdmin",
    AdminRole.ADMIN: "Admin",
    AdminRole.MODERATOR: "Moderator",
}


def from_wire_name(names: dict, wire: str):
    """Reverse lookup in one of the *_WIRE_NAMES tables. Raises ValueError if unknown."""
    for member, name in names.items():
        if name == wire:
            return member
    raise ValueError(f"Unknown wire name: {wire!r}")


# ---------------------------------------------------------------------------
# Identity records (owned by the store)
# ---------------------------------------------------------------------------


@dataclass
class User:
    """A login identity. email is the credential lookup key; username is unique too.

    hashed_password is a bcrypt hash and is never serialized into tokens.
    """

    email: str
    username: str
    hashed_password: str
    first_name: str = ""
    last_name: str = ""
    id: str | None = None
    is_active: bool = True
    created_at: str | None = None
    updated_at: str | None = None
    last_login: str | None = None


@dataclass
class Account:
    """Subscription state for a user (exactly one per user).

    capabilities holds only the custom grants made outside the tier defaults.
    Use auth.capabilities.effective_capabilities() for the full set.
    """

    user_id: str
    tier: AccountTier = AccountTier.FREE
    status: AccountStatus = AccountStatus.PENDING
    capabilities: list[str] = field(default_factory=list)
    id: str | None = None
    status_reason: str | None = None
    status_changed_at: str | None = None
    status_changed_by: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class Admin:
    """Admin record. Its presence, not its role, makes a user admin-eligible."""

    user_id: str
    role: AdminRole
    permissions: list[str] = field(default_factory=list)
    id: str | None = None
    created_by: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


# ---------------------------------------------------------------------------
# Token payloads
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Claims:
    """Decoded access-token payload.

    A point-in-time snapshot of the account taken at issuance. Tier, status
    and capability changes made afterwards are not visible until the token
    expires and a new one is issued, so staleness is bounded by the access TTL.
    """

    sub: str
    jti: str
    email: str
    account_tier: AccountTier
    account_status: AccountStatus
    capabilities: frozenset[str]
    role: UserRole
    is_admin: bool
    iat: int
    exp: int
    admin_role: AdminRole | None = None


@dataclass(frozen=True)
class RefreshClaims:
    """Decoded refresh-token payload. A renewal credential, not an authorization bearer."""

    sub: str
    jti: str
    is_admin: bool
    iat: int
    exp: int


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    access_jti: str
    refresh_jti: str
    access_expires_in: int  # seconds
    refresh_expires_in: int  # seconds


# ---------------------------------------------------------------------------
# Persisted / process-lifetime records
# ---------------------------------------------------------------------------


@dataclass
class TokenRecord:
    """Persisted trace of an issued token.

    token_hash is HMAC-SHA256(SECRET_KEY, raw_token). The raw token is never
    stored, so a record can recognize and revoke a token but never replay it.
    Records are only mutated by setting revoked_at and only removed by the
    expiry sweep.
    """

    id: str
    user_id: str
    token_hash: str
    token_type: TokenType
    expires_at: datetime
    created_at: datetime
    revoked_at: datetime | None = None
    device_info: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.token_type in (TokenType.ADMIN_ACCESS, TokenType.ADMIN_REFRESH)


@dataclass(frozen=True)
class TokenValidation:
    user_id: str
    token_type: TokenType
    is_valid: bool
    expires_at: datetime


@dataclass
class ValidationKey:
    """One-time secret for out-of-band flows (password reset, invites, ...).

    Redeemable at most once and only before expires_at.
    """

    id: str
    key_type: ValidationType
    key_value: str
    expires_at: datetime
    user_id: str | None = None
    used: bool = False
    metadata: dict | None = None
    created_at: datetime | None = None
