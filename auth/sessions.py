"""
auth/sessions.py -- Login, registration, refresh and logout flows.

SessionManager ties the three collaborators together:
  UserStore        -- identity lookups and persisted refresh-token records
  TokenService     -- minting and verifying token pairs
  ValidationStore  -- the in-memory jti blacklist

Persistence policy: writing the refresh-token record and stamping last_login
are best effort. A StoreError there is logged and the login still succeeds,
so a record is persisted at most once and possibly not at all. Failures of
the lookups that decide whether to issue tokens propagate to the caller.

Revocation on logout:
  - the presented access token's jti is blacklisted (takes effect immediately)
  - the user's persisted refresh records are revoked in the store
  Access tokens from other sessions are not blacklisted by either step; they
  remain usable until they expire (at most one access TTL).

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from auth.capabilities import effective_capabilities, is_account_active
from auth.errors import AuthError, Duplicate, StoreError, TokenError
from auth.models import Account, Admin, Claims, TokenPair, User
from auth.store import UserStore
from auth.tokens import TokenService, authenticate_user, hash_password
from auth.validation import ValidationStore

logger = logging.getLogger("siteauth.auth")

MIN_PASSWORD_LENGTH = 8


@dataclass(frozen=True)
class LoginResult:
    """Everything the API layer needs to build a login response."""

    tokens: TokenPair
    user: User
    account: Account
    capabilities: frozenset[str]
    admin: Admin | None = None


class SessionManager:
    def __init__(self, store: UserStore, tokens: TokenService, validation: ValidationStore) -> None:
        self.store = store
        self.tokens = tokens
        self.validation = validation

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(
        self,
        email: str,
        password: str,
        username: str,
        first_name: str = "",
        last_name: str = "",
    ) -> User:
        """Create a user plus a free/pending account.

        Raises AuthError("invalid_email" | "weak_password" | "email_exists" |
        "username_exists"). The account row is created best effort after the
        user row, matching how the rest of the flows treat secondary writes.
        """
        if "@" not in email or "." not in email:
            raise AuthError("invalid_email")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise AuthError("weak_password")
        if self.store.get_by_email(email) is not None:
            raise AuthError("email_exists")
        if self.store.get_by_username(username) is not None:
            raise AuthError("username_exists")

        try:
            user = self.store.create_user(
                User(
                    email=email,
                    username=username,
                    hashed_password=hash_password(password),
                    first_name=first_name,
                    last_name=last_name,
                )
            )
        except Duplicate as exc:
            # Lost a race with a concurrent registration
            raise AuthError("email_exists" if exc.field == "email" else "username_exists") from exc

        try:
            self.store.create_account(user.id)
        except StoreError:
            logger.warning("Account creation failed for new user %s", user.id, exc_info=True)
        return user

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(self, email: str, password: str, device_info: str | None = None, admin: bool = False) -> LoginResult:
        """Authenticate credentials and issue a token pair.

        admin=True requires an admin record and issues admin tokens.

        Raises AuthError("invalid_credentials" | "account_inactive" | "not_admin").
        EncodingFailed and StoreError from the lookups propagate.
        """
        user = authenticate_user(self.store, email, password)
        if user is None:
            raise AuthError("invalid_credentials")
        if not user.is_active:
            raise AuthError("account_inactive")

        admin_record = None
        if admin:
            admin_record = self.store.get_admin_by_user_id(user.id)
            if admin_record is None:
                raise AuthError("not_admin")

        account = self.store.get_account_by_user_id(user.id)
        if account is None:
            raise StoreError(f"User {user.id} has no account")
        if not is_account_active(account):
            raise AuthError("account_inactive")

        pair = self.tokens.issue(user, account, admin_record)
        self._persist_refresh(user.id, pair.refresh_token, admin_record is not None, device_info)
        self._touch_last_login(user.id)
        logger.info("Issued %s tokens for user %s", "admin" if admin_record else "user", user.id)

        return LoginResult(
            tokens=pair,
            user=user,
            account=account,
            capabilities=effective_capabilities(account),
            admin=admin_record,
        )

    def _persist_refresh(self, user_id: str, refresh_token: str, is_admin: bool, device_info: str | None) -> None:
        record = self.tokens.build_persist_record(user_id, refresh_token, is_admin, True, device_info)
        try:
            self.store.store_token(record)
        except StoreError:
            logger.warning("Could not persist refresh token record for user %s", user_id, exc_info=True)

    def _touch_last_login(self, user_id: str) -> None:
        try:
            self.store.update_last_login(user_id)
        except StoreError:
            logger.warning("Could not update last_login for user %s", user_id, exc_info=True)

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    def refresh(self, refresh_token: str, device_info: str | None = None) -> LoginResult:
        """Exchange a refresh token for a new pair, rotating the refresh token.

        The presented refresh token must verify, must not be blacklisted, and
        must have an unrevoked persisted record. Its record is revoked and its
        jti blacklisted before the new pair is issued, so each refresh token
        works once. Account state is re-read, so the new access token carries
        a fresh capability snapshot.

        Raises AuthError("invalid_token" | "token_revoked" | "account_inactive" | "not_admin").
        """
        try:
            claims = self.tokens.verify_refresh(refresh_token)
        except TokenError as exc:
            raise AuthError("invalid_token") from exc
        if self.validation.is_blacklisted(claims.jti):
            raise AuthError("token_revoked")

        token_hash = self.tokens.hash_token(refresh_token)
        record = self.store.get_token_by_hash(token_hash)
        if record is None or record.revoked_at is not None:
            raise AuthError("token_revoked")

        user = self.store.get_by_id(claims.sub)
        if user is None or not user.is_active:
            raise AuthError("account_inactive")
        account = self.store.get_account_by_user_id(user.id)
        if account is None or not is_account_active(account):
            raise AuthError("account_inactive")

        admin_record = None
        if claims.is_admin:
            admin_record = self.store.get_admin_by_user_id(user.id)
            if admin_record is None:
                raise AuthError("not_admin")

        # Conditional UPDATE; only one of several concurrent refreshes wins it
        if not self.store.revoke_token(token_hash):
            raise AuthError("token_revoked")
        self.validation.blacklist_jti(claims.jti, expires_at=claims.exp)

        pair = self.tokens.issue(user, account, admin_record)
        self._persist_refresh(user.id, pair.refresh_token, admin_record is not None, device_info)
        return LoginResult(
            tokens=pair,
            user=user,
            account=account,
            capabilities=effective_capabilities(account),
            admin=admin_record,
        )

    # ------------------------------------------------------------------
    # Logout
    # ------------------------------------------------------------------

    def logout(self, claims: Claims) -> None:
        """Blacklist the presented access token and revoke the user's refresh records."""
        self.validation.blacklist_jti(claims.jti, expires_at=claims.exp)
        self._revoke_records(claims.sub)

    def logout_all(self, claims: Claims) -> None:
        """Logout from every device.

        Same two steps as logout(). Other devices lose their refresh
        capability at once and their access tokens lapse within one TTL.
        """
        self._revoke_records(claims.sub)
        self.validation.blacklist_jti(claims.jti, expires_at=claims.exp)

    def _revoke_records(self, user_id: str) -> None:
        try:
            revoked = self.store.revoke_all_user_tokens(user_id)
            logger.info("Revoked %d persisted token records for user %s", revoked, user_id)
        except StoreError:
            logger.warning("Could not revoke persisted tokens for user %s", user_id, exc_info=True)
