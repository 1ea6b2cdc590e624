"""
auth/capabilities.py -- Capability resolution for subscription tiers.

A capability is a named permission string. Each tier maps to an explicit,
hand-maintained default set; Enterprise happens to contain Premium today but
nothing here relies on that. An account's effective set is its custom grants
unioned with its tier defaults.

Everything in this module is pure: no I/O, no shared state.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from auth.models import Account, AccountStatus, AccountTier

# ---------------------------------------------------------------------------
# Capability names
# ---------------------------------------------------------------------------

CREATE_WEBSITE = "create_website"
MANAGE_COMPONENTS = "manage_components"
SEND_EMAILS = "send_emails"
ACCESS_ANALYTICS = "access_analytics"
API_ACCESS = "api_access"
PRIORITY_SUPPORT = "priority_support"

# ---------------------------------------------------------------------------
# Tier tables
# ---------------------------------------------------------------------------

TIER_CAPABILITIES: dict[AccountTier, frozenset[str]] = {
    AccountTier.FREE: frozenset({CREATE_WEBSITE}),
    AccountTier.PREMIUM: frozenset(
        {
            CREATE_WEBSITE,
            MANAGE_COMPONENTS,
            SEND_EMAILS,
            ACCESS_ANALYTICS,
        }
    ),
    AccountTier.ENTERPRISE: frozenset(
        {
            CREATE_WEBSITE,
            MANAGE_COMPONENTS,
            SEND_EMAILS,
            ACCESS_ANALYTICS,
            API_ACCESS,
            PRIORITY_SUPPORT,
        }
    ),
}

# None = unlimited
_MAX_SITES: dict[AccountTier, int | None] = {
    AccountTier.FREE: 1,
    AccountTier.PREMIUM: 5,
    AccountTier.ENTERPRISE: None,
}

_MAX_STORAGE_MB: dict[AccountTier, int] = {
    AccountTier.FREE: 100,
    AccountTier.PREMIUM: 1000,
    AccountTier.ENTERPRISE: 10000,
}


def default_capabilities(tier: AccountTier) -> frozenset[str]:
    """Return the default capability set for a tier."""
    return TIER_CAPABILITIES[AccountTier(tier)]


def effective_capabilities(account: Account) -> frozenset[str]:
    """Return custom capabilities unioned with the tier defaults."""
    return frozenset(account.capabilities) | default_capabilities(account.tier)


def has_capability(account: Account, name: str) -> bool:
    """Live membership check against the account's effective set.

    Token issuance snapshots effective_capabilities(); this function is for
    callers that want to check current account state instead of a snapshot.
    """
    return name in account.capabilities or name in default_capabilities(account.tier)


def is_account_active(account: Account) -> bool:
    return account.status == AccountStatus.ACTIVE


def max_sites(tier: AccountTier) -> int | None:
    return _MAX_SITES[AccountTier(tier)]


def max_storage_mb(tier: AccountTier) -> int:
    return _MAX_STORAGE_MB[AccountTier(tier)]


def display_name(tier: AccountTier) -> str:
    return AccountTier(tier).value.capitalize()
