"""
auth/tokens.py -- JWT issuance/verification, token hashing, and password utilities.

Security design decisions:
  JWT: python-jose with HS256 and a shared secret. Every token carries its
       own uuid4 jti so it can be revoked individually through the blacklist
       in auth/validation.py. Access tokens carry a full Claims snapshot;
       refresh tokens carry only sub/jti/is_admin/iat/exp.

  Verification order: python-jose checks the signature before any claim, so
       an expired token is only reported as TokenExpired when its signature
       is valid. Anything malformed or mis-signed is DecodingFailed. Callers
       must deny access for both; the split exists for diagnostics only.

  Persisted tokens: only HMAC-SHA256(SECRET_KEY, raw_token) is stored. The
       hash is deterministic so revocation can look records up by hash, and
       it cannot be turned back into a bearer token.

  Passwords: bcrypt, used directly. The _DUMMY_HASH constant enables timing
       equalization in authenticate_user() so response time does not reveal
       whether an email is registered.

Layer rule: no runtime imports from api/ or core/. Settings are passed in via
TokenService.from_settings() by the application layer.
"""

from __future__ import annotations

import binascii
import hashlib
import hmac
import secrets
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt
from jose.exceptions import ExpiredSignatureError, JOSEError, JWTClaimsError
from jose.utils import base64url_decode, base64url_encode

from auth.capabilities import effective_capabilities
from auth.errors import DecodingFailed, EncodingFailed, TokenExpired, TokenInvalid
from auth.models import (
    ADMIN_ROLE_WIRE_NAMES,
    STATUS_WIRE_NAMES,
    TIER_WIRE_NAMES,
    Account,
    AccountStatus,
    AccountTier,
    Admin,
    AdminRole,
    Claims,
    RefreshClaims,
    TokenPair,
    TokenRecord,
    TokenType,
    User,
    UserRole,
    from_wire_name,
)

if TYPE_CHECKING:
    from auth.store import UserStore
    from core.config import Settings

ALGORITHM = "HS256"
BEARER_PREFIX = "Bearer "

DEFAULT_ACCESS_TTL_MINUTES = 15
DEFAULT_REFRESH_TTL_DAYS = 7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("siteauth_timing_dummy")


def authenticate_user(store: UserStore, email: str, password: str) -> User | None:
    """Look up a user by email and check the password with timing equalization.

    bcrypt runs whether or not the email exists. Returns the User when the
    password matches, None otherwise. Callers check is_active and account
    status themselves so they can report those cases distinctly.
    """
    user = store.get_by_email(email)
    if user is None:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user


# ---------------------------------------------------------------------------
# Hashing and bearer extraction
# ---------------------------------------------------------------------------


def hash_token(raw_token: str, secret_key: str) -> str:
    """Return HMAC-SHA256(secret_key, raw_token) as a hex string."""
    return hmac.new(secret_key.encode(), raw_token.encode(), hashlib.sha256).hexdigest()


def generate_key_value() -> str:
    """Random value for a one-time validation key (256 bits, URL safe)."""
    return secrets.token_urlsafe(32)


def extract_bearer(header: str | None) -> str | None:
    """Return the token from an Authorization header value.

    Only the exact, case-sensitive "Bearer " prefix is recognized. A missing
    prefix means no token was presented and returns None; "Bearer " alone
    returns the empty string, which then fails verification.
    """
    if header is None or not header.startswith(BEARER_PREFIX):
        return None
    return header[len(BEARER_PREFIX) :]


def _has_canonical_signature(token: str) -> bool:
    """True if the signature segment is the exact unpadded base64url of its bytes.

    A decoder ignores the spare low bits of the final character, so several
    spellings of one signature would otherwise all verify.
    """
    parts = token.split(".")
    if len(parts) != 3:
        # Structural problems are reported by jwt.decode
        return True
    signature = parts[2]
    try:
        raw = base64url_decode(signature.encode("ascii"))
        return base64url_encode(raw).decode("ascii") == signature
    except (binascii.Error, TypeError, ValueError):
        return False


# ---------------------------------------------------------------------------
# Token service
# ---------------------------------------------------------------------------


class TokenService:
    """Turns (user, account, admin) into a signed token pair and back into Claims.

    Stateless apart from its configuration, so one instance is safe to share
    across threads and requests. clock is injectable for tests; it must return
    an aware UTC datetime.

    Usage:
        service = TokenService.from_settings(get_settings())
        pair = service.issue(user, account)
        claims = service.verify_access(pair.access_token)
    """

    def __init__(
        self,
        secret_key: str,
        access_ttl_minutes: int = DEFAULT_ACCESS_TTL_MINUTES,
        refresh_ttl_days: int = DEFAULT_REFRESH_TTL_DAYS,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._secret_key = secret_key
        self.access_ttl = timedelta(minutes=access_ttl_minutes)
        self.refresh_ttl = timedelta(days=refresh_ttl_days)
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> TokenService:
        return cls(
            secret_key=settings.secret_key,
            access_ttl_minutes=settings.access_token_ttl_minutes,
            refresh_ttl_days=settings.refresh_token_ttl_days,
        )

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    def issue(self, user: User, account: Account, admin: Admin | None = None) -> TokenPair:
        """Mint an independent access/refresh pair with fresh jtis.

        Passing an admin record produces admin tokens (is_admin=True, role
        Admin, admin_role set). Account status is not checked here; the
        session layer refuses inactive accounts before calling issue().

        Raises EncodingFailed if signing fails.
        """
        now = int(self._clock().timestamp())
        access_ttl = int(self.access_ttl.total_seconds())
        refresh_ttl = int(self.refresh_ttl.total_seconds())
        is_admin = admin is not None

        access_jti = str(uuid.uuid4())
        access_payload = {
            "sub": str(user.id),
            "jti": access_jti,
            "email": user.email,
            "account_tier": TIER_WIRE_NAMES[AccountTier(account.tier)],
            "account_status": STATUS_WIRE_NAMES[AccountStatus(account.status)],
            "capabilities": sorted(effective_capabilities(account)),
            "role": (UserRole.ADMIN if is_admin else UserRole.USER).value,
            "is_admin": is_admin,
            "admin_role": ADMIN_ROLE_WIRE_NAMES[AdminRole(admin.role)] if is_admin else None,
            "iat": now,
            "exp": now + access_ttl,
            "type": "access",
        }

        refresh_jti = str(uuid.uuid4())
        refresh_payload = {
            "sub": str(user.id),
            "jti": refresh_jti,
            "is_admin": is_admin,
            "iat": now,
            "exp": now + refresh_ttl,
            "type": "refresh",
        }

        return TokenPair(
            access_token=self._encode(access_payload),
            refresh_token=self._encode(refresh_payload),
            access_jti=access_jti,
            refresh_jti=refresh_jti,
            access_expires_in=access_ttl,
            refresh_expires_in=refresh_ttl,
        )

    def _encode(self, payload: dict) -> str:
        try:
            return jwt.encode(payload, self._secret_key, algorithm=ALGORITHM)
        except (JOSEError, TypeError, ValueError) as exc:
            raise EncodingFailed(str(exc)) from exc

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def _decode(self, token: str, expected_type: str) -> dict:
        if not _has_canonical_signature(token):
            raise DecodingFailed("Non-canonical signature encoding")
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[ALGORITHM])
        except ExpiredSignatureError as exc:
            raise TokenExpired() from exc
        except JWTClaimsError as exc:
            # Signature was fine but a registered claim is malformed
            raise TokenInvalid(str(exc)) from exc
        except JWTError as exc:
            raise DecodingFailed(str(exc)) from exc
        if payload.get("type") != expected_type:
            raise TokenInvalid(f"Expected a {expected_type} token")
        return payload

    def verify_access(self, token: str) -> Claims:
        """Verify an access token and return its Claims.

        Raises TokenExpired, DecodingFailed or TokenInvalid.
        """
        payload = self._decode(token, "access")
        try:
            admin_role = payload.get("admin_role")
            return Claims(
                sub=payload["sub"],
                jti=payload["jti"],
                email=payload["email"],
                account_tier=from_wire_name(TIER_WIRE_NAMES, payload["account_tier"]),
                account_status=from_wire_name(STATUS_WIRE_NAMES, payload["account_status"]),
                capabilities=frozenset(payload["capabilities"]),
                role=UserRole(payload["role"]),
                is_admin=bool(payload["is_admin"]),
                admin_role=(
                    from_wire_name(ADMIN_ROLE_WIRE_NAMES, admin_role)
                    if admin_role is not None
                    else None
                ),
                iat=int(payload["iat"]),
                exp=int(payload["exp"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise TokenInvalid(f"Malformed access claims: {exc}") from exc

    def verify_refresh(self, token: str) -> RefreshClaims:
        """Verify a refresh token and return its minimal claims."""
        payload = self._decode(token, "refresh")
        try:
            return RefreshClaims(
                sub=payload["sub"],
                jti=payload["jti"],
                is_admin=bool(payload["is_admin"]),
                iat=int(payload["iat"]),
                exp=int(payload["exp"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise TokenInvalid(f"Malformed refresh claims: {exc}") from exc

    # ------------------------------------------------------------------
    # Persistence records
    # ------------------------------------------------------------------

    def hash_token(self, raw_token: str) -> str:
        return hash_token(raw_token, self._secret_key)

    def build_persist_record(
        self,
        user_id: str,
        raw_token: str,
        is_admin: bool,
        is_refresh: bool,
        device_info: str | None = None,
    ) -> TokenRecord:
        """Build the storable record for an issued token. The raw token is not kept."""
        now = self._clock()
        if is_refresh:
            token_type = TokenType.ADMIN_REFRESH if is_admin else TokenType.REFRESH
            ttl = self.refresh_ttl
        else:
            token_type = TokenType.ADMIN_ACCESS if is_admin else TokenType.ACCESS
            ttl = self.access_ttl
        return TokenRecord(
            id=str(uuid.uuid4()),
            user_id=str(user_id),
            token_hash=self.hash_token(raw_token),
            token_type=token_type,
            expires_at=now + ttl,
            created_at=now,
            device_info=device_info,
        )
