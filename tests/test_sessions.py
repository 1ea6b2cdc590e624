"""Tests for auth/sessions.py -- registration, login, refresh rotation and logout.

Covers:
- Registration validation and duplicate detection
- Login outcomes: bad credentials, inactive accounts, admin login
- Best-effort persistence: store failures after issuance do not fail login
- Refresh rotation: old refresh token works once, even under concurrent refreshes
- Logout blacklists the access jti and revokes persisted refresh records
"""

import threading

import pytest

from auth.errors import AuthError, ConnectionFailed, StoreError
from auth.gate import AccessDenied, AuthorizationGate, GateFailure
from auth.models import AccountStatus, AccountTier, AdminRole, User
from auth.sessions import SessionManager
from auth.store import UserStore
from auth.tokens import TokenService, hash_password
from auth.validation import ValidationStore
from conftest import seed_user

PASSWORD = "correct-horse-battery"


def _fail(*args, **kwargs):
    raise ConnectionFailed("database is locked")


class TestRegister:
    def test_creates_user_and_pending_account(self, sessions: SessionManager, user_store: UserStore) -> None:
        user = sessions.register("new@example.com", PASSWORD, "newbie", "New", "User")
        assert user.id is not None
        assert user.first_name == "New"

        account = user_store.get_account_by_user_id(user.id)
        assert account.tier is AccountTier.FREE
        assert account.status is AccountStatus.PENDING

    @pytest.mark.parametrize(
        ("email", "password", "code"),
        [
            ("not-an-email", PASSWORD, "invalid_email"),
            ("new@example.com", "short", "weak_password"),
        ],
    )
    def test_rejects_bad_input(self, sessions: SessionManager, email: str, password: str, code: str) -> None:
        with pytest.raises(AuthError) as exc_info:
            sessions.register(email, password, "newbie")
        assert exc_info.value.code == code

    def test_duplicates(self, sessions: SessionManager) -> None:
        sessions.register("new@example.com", PASSWORD, "newbie")
        with pytest.raises(AuthError) as exc_info:
            sessions.register("new@example.com", PASSWORD, "other")
        assert exc_info.value.code == "email_exists"
        with pytest.raises(AuthError) as exc_info:
            sessions.register("other@example.com", PASSWORD, "newbie")
        assert exc_info.value.code == "username_exists"

    def test_account_creation_is_best_effort(
        self,
        sessions: SessionManager,
        user_store: UserStore,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setattr(user_store, "create_account", _fail)
        user = sessions.register("new@example.com", PASSWORD, "newbie")
        assert user_store.get_by_id(user.id) is not None
        assert user_store.get_account_by_user_id(user.id) is None


class TestLogin:
    def test_premium_login(self, sessions: SessionManager, user_store: UserStore, token_service: TokenService) -> None:
        user = seed_user(user_store, "p@example.com", PASSWORD, tier=AccountTier.PREMIUM)

        result = sessions.login("p@example.com", PASSWORD, device_info="pytest")

        claims = token_service.verify_access(result.tokens.access_token)
        assert claims.sub == user.id
        assert claims.capabilities == result.capabilities
        assert "send_emails" in result.capabilities
        assert result.admin is None

        record = user_store.get_token_by_hash(token_service.hash_token(result.tokens.refresh_token))
        assert record is not None
        assert record.device_info == "pytest"
        assert user_store.get_by_id(user.id).last_login is not None

    def test_wrong_password(self, sessions: SessionManager, user_store: UserStore) -> None:
        seed_user(user_store, "p@example.com", PASSWORD)
        with pytest.raises(AuthError) as exc_info:
            sessions.login("p@example.com", "wrong-password")
        assert exc_info.value.code == "invalid_credentials"

    def test_unknown_email(self, sessions: SessionManager) -> None:
        with pytest.raises(AuthError) as exc_info:
            sessions.login("ghost@example.com", PASSWORD)
        assert exc_info.value.code == "invalid_credentials"

    @pytest.mark.parametrize(
        "status",
        [AccountStatus.PENDING, AccountStatus.SUSPENDED, AccountStatus.BANNED, AccountStatus.DEACTIVATED],
    )
    def test_inactive_account(self, sessions: SessionManager, user_store: UserStore, status: AccountStatus) -> None:
        seed_user(user_store, "p@example.com", PASSWORD, status=status)
        with pytest.raises(AuthError) as exc_info:
            sessions.login("p@example.com", PASSWORD)
        assert exc_info.value.code == "account_inactive"

    def test_inactive_user(self, sessions: SessionManager, user_store: UserStore) -> None:
        user = user_store.create_user(
            User(email="off@example.com", username="off", hashed_password=hash_password(PASSWORD), is_active=False)
        )
        user_store.create_account(user.id, status=AccountStatus.ACTIVE)
        with pytest.raises(AuthError) as exc_info:
            sessions.login("off@example.com", PASSWORD)
        assert exc_info.value.code == "account_inactive"

    def test_missing_account_propagates(self, sessions: SessionManager, user_store: UserStore) -> None:
        user_store.create_user(User(email="x@example.com", username="x", hashed_password=hash_password(PASSWORD)))
        with pytest.raises(StoreError):
            sessions.login("x@example.com", PASSWORD)

    def test_admin_login(self, sessions: SessionManager, user_store: UserStore, token_service: TokenService) -> None:
        seed_user(user_store, "root@example.com", PASSWORD, tier=AccountTier.ENTERPRISE, admin_role=AdminRole.SUPER_ADMIN)

        result = sessions.login("root@example.com", PASSWORD, admin=True)

        claims = token_service.verify_access(result.tokens.access_token)
        assert claims.is_admin
        assert claims.admin_role is AdminRole.SUPER_ADMIN
        record = user_store.get_token_by_hash(token_service.hash_token(result.tokens.refresh_token))
        assert record.is_admin

    def test_admin_login_requires_admin_record(self, sessions: SessionManager, user_store: UserStore) -> None:
        seed_user(user_store, "p@example.com", PASSWORD)
        with pytest.raises(AuthError) as exc_info:
            sessions.login("p@example.com", PASSWORD, admin=True)
        assert exc_info.value.code == "not_admin"

    def test_persistence_failures_do_not_fail_login(
        self,
        sessions: SessionManager,
        user_store: UserStore,
        token_service: TokenService,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        seed_user(user_store, "p@example.com", PASSWORD)
        monkeypatch.setattr(user_store, "store_token", _fail)
        monkeypatch.setattr(user_store, "update_last_login", _fail)

        result = sessions.login("p@example.com", PASSWORD)

        assert token_service.verify_access(result.tokens.access_token).email == "p@example.com"
        monkeypatch.undo()
        assert user_store.get_token_by_hash(token_service.hash_token(result.tokens.refresh_token)) is None


class TestRefresh:
    def test_rotation(self, sessions: SessionManager, user_store: UserStore, token_service: TokenService) -> None:
        seed_user(user_store, "p@example.com", PASSWORD)
        first = sessions.login("p@example.com", PASSWORD)

        second = sessions.refresh(first.tokens.refresh_token)

        assert second.tokens.refresh_jti != first.tokens.refresh_jti
        assert token_service.verify_access(second.tokens.access_token).email == "p@example.com"
        with pytest.raises(AuthError) as exc_info:
            sessions.refresh(first.tokens.refresh_token)
        assert exc_info.value.code == "token_revoked"
        sessions.refresh(second.tokens.refresh_token)

    def test_refresh_picks_up_account_changes(
        self,
        sessions: SessionManager,
        user_store: UserStore,
        token_service: TokenService,
    ) -> None:
        user = seed_user(user_store, "p@example.com", PASSWORD)
        first = sessions.login("p@example.com", PASSWORD)
        user_store.update_account(user.id, tier=AccountTier.ENTERPRISE)

        second = sessions.refresh(first.tokens.refresh_token)

        assert "api_access" in token_service.verify_access(second.tokens.access_token).capabilities

    def test_refresh_rejects_suspended_account(self, sessions: SessionManager, user_store: UserStore) -> None:
        user = seed_user(user_store, "p@example.com", PASSWORD)
        first = sessions.login("p@example.com", PASSWORD)
        user_store.update_account(user.id, status=AccountStatus.SUSPENDED)
        with pytest.raises(AuthError) as exc_info:
            sessions.refresh(first.tokens.refresh_token)
        assert exc_info.value.code == "account_inactive"

    def test_access_token_cannot_refresh(self, sessions: SessionManager, user_store: UserStore) -> None:
        seed_user(user_store, "p@example.com", PASSWORD)
        first = sessions.login("p@example.com", PASSWORD)
        with pytest.raises(AuthError) as exc_info:
            sessions.refresh(first.tokens.access_token)
        assert exc_info.value.code == "invalid_token"

    def test_unpersisted_refresh_token_is_rejected(
        self,
        sessions: SessionManager,
        user_store: UserStore,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        seed_user(user_store, "p@example.com", PASSWORD)
        monkeypatch.setattr(user_store, "store_token", _fail)
        first = sessions.login("p@example.com", PASSWORD)
        monkeypatch.undo()
        with pytest.raises(AuthError) as exc_info:
            sessions.refresh(first.tokens.refresh_token)
        assert exc_info.value.code == "token_revoked"

    def test_refresh_loses_when_record_revoked_mid_flight(
        self,
        sessions: SessionManager,
        user_store: UserStore,
        token_service: TokenService,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        seed_user(user_store, "p@example.com", PASSWORD)
        first = sessions.login("p@example.com", PASSWORD)
        token_hash = token_service.hash_token(first.tokens.refresh_token)
        get_by_id = user_store.get_by_id

        def rival_refresh_wins(user_id: str) -> User | None:
            # Another request revokes the record after this one passed the unrevoked check
            assert user_store.revoke_token(token_hash) is True
            return get_by_id(user_id)

        monkeypatch.setattr(user_store, "get_by_id", rival_refresh_wins)
        issued = []
        monkeypatch.setattr(sessions.tokens, "issue", lambda *a, **kw: issued.append(a))

        with pytest.raises(AuthError) as exc_info:
            sessions.refresh(first.tokens.refresh_token)
        assert exc_info.value.code == "token_revoked"
        assert issued == []

    def test_concurrent_refreshes_yield_one_pair(self, tmp_path, token_service: TokenService) -> None:
        store = UserStore(f"sqlite:///{tmp_path / 'auth.db'}")
        manager = SessionManager(store, token_service, ValidationStore())
        seed_user(store, "p@example.com", PASSWORD)
        try:
            for _ in range(5):
                token = manager.login("p@example.com", PASSWORD).tokens.refresh_token
                barrier = threading.Barrier(2)
                outcomes: list[str] = []
                lock = threading.Lock()

                def worker() -> None:
                    barrier.wait()
                    try:
                        manager.refresh(token)
                        outcome = "ok"
                    except AuthError as exc:
                        outcome = exc.code
                    with lock:
                        outcomes.append(outcome)

                threads = [threading.Thread(target=worker) for _ in range(2)]
                for t in threads:
                    t.start()
                for t in threads:
                    t.join(timeout=30)

                assert sorted(outcomes) == ["ok", "token_revoked"]
        finally:
            store.close()


class TestLogout:
    def test_admin_session_logout(
        self,
        sessions: SessionManager,
        user_store: UserStore,
        token_service: TokenService,
        validation: ValidationStore,
    ) -> None:
        seed_user(user_store, "root@example.com", PASSWORD, tier=AccountTier.ENTERPRISE, admin_role=AdminRole.ADMIN)
        gate = AuthorizationGate(token_service, validation)
        result = sessions.login("root@example.com", PASSWORD, admin=True)
        claims = gate.check(f"Bearer {result.tokens.access_token}", require_admin=True)

        sessions.logout(claims)

        assert validation.is_blacklisted(claims.jti)
        with pytest.raises(AccessDenied) as exc_info:
            gate.check(f"Bearer {result.tokens.access_token}", require_admin=True)
        assert exc_info.value.reason is GateFailure.TOKEN_REVOKED
        record = user_store.get_token_by_hash(token_service.hash_token(result.tokens.refresh_token))
        assert record.revoked_at is not None

    def test_logout_all_revokes_every_device(
        self,
        sessions: SessionManager,
        user_store: UserStore,
        token_service: TokenService,
        validation: ValidationStore,
    ) -> None:
        seed_user(user_store, "p@example.com", PASSWORD)
        laptop = sessions.login("p@example.com", PASSWORD, device_info="laptop")
        phone = sessions.login("p@example.com", PASSWORD, device_info="phone")

        sessions.logout_all(token_service.verify_access(laptop.tokens.access_token))

        for result in (laptop, phone):
            with pytest.raises(AuthError):
                sessions.refresh(result.tokens.refresh_token)
        # Other devices keep their access token until it expires
        assert not validation.is_blacklisted(phone.tokens.access_jti)

    def test_logout_tolerates_store_failure(
        self,
        sessions: SessionManager,
        user_store: UserStore,
        token_service: TokenService,
        validation: ValidationStore,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        seed_user(user_store, "p@example.com", PASSWORD)
        result = sessions.login("p@example.com", PASSWORD)
        claims = token_service.verify_access(result.tokens.access_token)
        monkeypatch.setattr(user_store, "revoke_all_user_tokens", _fail)

        sessions.logout(claims)

        assert validation.is_blacklisted(claims.jti)
