"""
auth/validation.py -- Process-lifetime revocation and one-time key registry.

ValidationStore owns three independent maps, each behind its own lock:

  blacklist  jti -> natural expiry of the revoked token (or None if unknown)
  keys       key id -> ValidationKey
  tokens     token hash -> TokenRecord

No invariant spans two maps, so no operation takes more than one lock.
redeem_key() is the only check-and-set: it finds an unused, unexpired key and
marks it used while holding the keys lock, so two concurrent redemptions of
the same value cannot both succeed.

Two revocation mechanisms, deliberately kept apart:
  - The jti blacklist revokes access tokens immediately. It is in memory and
    consulted on every request by the authorization gate.
  - TokenRecord.revoked_at revokes persisted refresh tokens durably.
  Revoking records does NOT blacklist access tokens already issued from them.
  Those stay valid until their own jti is blacklisted or they expire.

Sweep policy: sweep_expired() drops expired keys and token records, and drops
blacklist entries whose token has naturally expired (an expired token is
rejected on expiry alone). Entries recorded without an expiry are kept.

The store is created by the application lifespan and injected wherever it is
needed. There is no module-level instance.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone

from auth.models import TokenRecord, TokenValidation, ValidationKey, ValidationType
from auth.tokens import generate_key_value

logger = logging.getLogger("siteauth.auth")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SweepResult:
    keys: int = 0
    tokens: int = 0
    blacklist: int = 0

    @property
    def total(self) -> int:
        return self.keys + self.tokens + self.blacklist


class ValidationStore:
    """Thread-safe registry of blacklisted jtis, validation keys and token records.

    Usage:
        store = ValidationStore()
        store.blacklist_jti(claims.jti, expires_at=claims.exp)
        assert store.is_blacklisted(claims.jti)
    """

    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock
        self._blacklist: dict[str, datetime | None] = {}
        self._blacklist_lock = threading.Lock()
        self._keys: dict[str, ValidationKey] = {}
        self._keys_lock = threading.Lock()
        self._tokens: dict[str, TokenRecord] = {}
        self._tokens_lock = threading.Lock()

    # ------------------------------------------------------------------
    # jti blacklist
    # ------------------------------------------------------------------

    def blacklist_jti(self, jti: str, expires_at: datetime | int | None = None) -> None:
        """Revoke a token by jti. Idempotent.

        expires_at is the revoked token's own exp (datetime or Unix seconds)
        and only drives eviction. Re-blacklisting keeps the later expiry, and
        an unknown expiry (None) always wins since it is never evicted.
        """
        if isinstance(expires_at, int):
            expires_at = datetime.fromtimestamp(expires_at, tz=timezone.utc)
        with self._blacklist_lock:
            if jti in self._blacklist:
                current = self._blacklist[jti]
                if current is None or (expires_at is not None and expires_at <= current):
                    return
            self._blacklist[jti] = expires_at
        logger.info("Blacklisted jti %s", jti)

    def is_blacklisted(self, jti: str) -> bool:
        with self._blacklist_lock:
            return jti in self._blacklist

    def blacklist_size(self) -> int:
        with self._blacklist_lock:
            return len(self._blacklist)

    # ------------------------------------------------------------------
    # Validation keys
    # ------------------------------------------------------------------

    def create_key(
        self,
        key_type: ValidationType,
        ttl: timedelta,
        user_id: str | None = None,
        metadata: dict | None = None,
    ) -> ValidationKey:
        """Generate a random key value, store it, and return the key."""
        now = self._clock()
        key = ValidationKey(
            id=str(uuid.uuid4()),
            key_type=key_type,
            key_value=generate_key_value(),
            expires_at=now + ttl,
            user_id=user_id,
            metadata=metadata,
            created_at=now,
        )
        self.store_key(key)
        return key

    def store_key(self, key: ValidationKey) -> None:
        with self._keys_lock:
            self._keys[key.id] = key

    def _find_redeemable(self, key_value: str, now: datetime) -> ValidationKey | None:
        for key in self._keys.values():
            if key.key_value == key_value and not key.used and key.expires_at > now:
                return key
        return None

    def get_key(self, key_value: str) -> ValidationKey | None:
        """Peek at a redeemable key without consuming it. Returns a copy."""
        with self._keys_lock:
            key = self._find_redeemable(key_value, self._clock())
            return replace(key) if key is not None else None

    def redeem_key(self, key_value: str) -> ValidationKey | None:
        """Consume a key: mark it used and return it, or None if not redeemable.

        The lookup and the mark happen under one lock hold.
        """
        with self._keys_lock:
            key = self._find_redeemable(key_value, self._clock())
            if key is None:
                return None
            key.used = True
            return replace(key)

    # ------------------------------------------------------------------
    # Token records
    # ------------------------------------------------------------------

    def store_token(self, record: TokenRecord) -> None:
        with self._tokens_lock:
            self._tokens[record.token_hash] = record

    def validate_token(self, token_hash: str) -> TokenValidation | None:
        """Return the validity of a recorded token, or None if the hash is unknown."""
        now = self._clock()
        with self._tokens_lock:
            record = self._tokens.get(token_hash)
            if record is None:
                return None
            return TokenValidation(
                user_id=record.user_id,
                token_type=record.token_type,
                is_valid=record.revoked_at is None and record.expires_at > now,
                expires_at=record.expires_at,
            )

    def is_admin_token(self, token_hash: str) -> bool:
        with self._tokens_lock:
            record = self._tokens.get(token_hash)
            return record is not None and record.is_admin

    def revoke_token(self, token_hash: str) -> bool:
        """Set revoked_at on a record. Returns False if the hash is unknown.

        An already revoked record keeps its original revocation time.
        """
        with self._tokens_lock:
            record = self._tokens.get(token_hash)
            if record is None:
                return False
            if record.revoked_at is None:
                record.revoked_at = self._clock()
            return True

    def revoke_all_for_user(self, user_id: str) -> int:
        """Revoke every unrevoked record owned by user_id. Returns the count."""
        now = self._clock()
        count = 0
        with self._tokens_lock:
            for record in self._tokens.values():
                if record.user_id == user_id and record.revoked_at is None:
                    record.revoked_at = now
                    count += 1
        return count

    # ------------------------------------------------------------------
    # Sweep
    # ------------------------------------------------------------------

    def sweep_expired(self, now: datetime | None = None) -> SweepResult:
        """Drop expired keys, token records and blacklist entries."""
        now = now or self._clock()

        with self._keys_lock:
            expired_keys = [k for k, v in self._keys.items() if v.expires_at <= now]
            for k in expired_keys:
                del self._keys[k]

        with self._tokens_lock:
            expired_tokens = [h for h, r in self._tokens.items() if r.expires_at <= now]
            for h in expired_tokens:
                del self._tokens[h]

        with self._blacklist_lock:
            expired_jtis = [j for j, exp in self._blacklist.items() if exp is not None and exp <= now]
            for j in expired_jtis:
                del self._blacklist[j]

        result = SweepResult(keys=len(expired_keys), tokens=len(expired_tokens), blacklist=len(expired_jtis))
        if result.total:
            logger.info(
                "Swept %d validation keys, %d token records, %d blacklist entries",
                result.keys,
                result.tokens,
                result.blacklist,
            )
        return result
