"""
tests/conftest.py -- Shared test fixtures for SiteAuth.

This module provides:
  - SECRET and make_* factories for domain objects
  - token_service / validation / user_store: isolated core collaborators
  - api_client: TestClient over the real FastAPI app with a patched lifespan
    and a seeded store (premium user, admin user, pending user)

Design: Named shared-memory SQLite URIs (not plain :memory:) are used for the
API store because TestClient runs sync route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread.

Environment variables must be set before any api/ import because api.main
reads settings at import time (TrustedHost list, rate limit).
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

# Set before any core/api import so get_settings() picks them up.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SECRET_KEY", "test-secret-key-that-is-long-enough-for-hs256")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.gate import AuthorizationGate
from auth.models import Account, AccountStatus, AccountTier, Admin, AdminRole, User
from auth.sessions import SessionManager
from auth.store import UserStore
from auth.tokens import TokenService, hash_password
from auth.validation import ValidationStore

SECRET = "unit-test-secret-key-0123456789abcdef"

# ---------------------------------------------------------------------------
# Domain factories
# ---------------------------------------------------------------------------


def make_user(user_id: str = "3f1c9a0e-0000-4000-8000-000000000001", email: str = "user@example.com") -> User:
    return User(
        id=user_id,
        email=email,
        username=email.split("@")[0],
        hashed_password="not-a-real-hash",
    )


def make_account(
    user_id: str = "3f1c9a0e-0000-4000-8000-000000000001",
    tier: AccountTier = AccountTier.FREE,
    status: AccountStatus = AccountStatus.ACTIVE,
    capabilities: list[str] | None = None,
) -> Account:
    return Account(user_id=user_id, tier=tier, status=status, capabilities=list(capabilities or []))


def make_admin(user_id: str = "3f1c9a0e-0000-4000-8000-000000000001", role: AdminRole = AdminRole.ADMIN) -> Admin:
    return Admin(user_id=user_id, role=role, permissions=["manage_users"])


# ---------------------------------------------------------------------------
# Core collaborators
# ---------------------------------------------------------------------------


@pytest.fixture
def token_service() -> TokenService:
    return TokenService(SECRET)


@pytest.fixture
def validation() -> ValidationStore:
    return ValidationStore()


@pytest.fixture
def user_store() -> Generator[UserStore, None, None]:
    store = UserStore("sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def sessions(user_store: UserStore, token_service: TokenService, validation: ValidationStore) -> SessionManager:
    return SessionManager(user_store, token_service, validation)


def seed_user(
    store: UserStore,
    email: str,
    password: str,
    tier: AccountTier = AccountTier.FREE,
    status: AccountStatus = AccountStatus.ACTIVE,
    capabilities: list[str] | None = None,
    admin_role: AdminRole | None = None,
) -> User:
    """Create a user, its account and optionally an admin record."""
    user = store.create_user(
        User(email=email, username=email.split("@")[0], hashed_password=hash_password(password))
    )
    store.create_account(user.id, tier=tier, status=status, capabilities=capabilities)
    if admin_role is not None:
        store.create_admin(Admin(user_id=user.id, role=admin_role))
    return user


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Seeded:
    premium_email: str = "premium@example.com"
    admin_email: str = "admin@example.com"
    pending_email: str = "pending@example.com"
    password: str = "correct-horse-battery"


def _patch_lifespan(user_store: UserStore, tokens: TokenService, validation: ValidationStore):
    """Return a lifespan that wires pre-built collaborators into app.state.

    sweep_task is a long-sleeping coroutine so shutdown can cancel a real task.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.tokens = tokens
        app.state.validation = validation
        app.state.gate = AuthorizationGate(tokens, validation)
        app.state.sessions = SessionManager(user_store, tokens, validation)
        app.state.sweep_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.sweep_task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, Seeded], None, None]:
    """Yield (client, seeded) for API integration tests.

    Seeded users (all share seeded.password):
      premium_email  premium/active, custom capability manage_components
      admin_email    enterprise/active with an Admin-role admin record
      pending_email  free/pending (cannot log in)
    """
    seeded = Seeded()
    store = UserStore(f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")
    seed_user(
        store,
        seeded.premium_email,
        seeded.password,
        tier=AccountTier.PREMIUM,
        capabilities=["manage_components"],
    )
    seed_user(store, seeded.admin_email, seeded.password, tier=AccountTier.ENTERPRISE, admin_role=AdminRole.ADMIN)
    seed_user(store, seeded.pending_email, seeded.password, status=AccountStatus.PENDING)

    tokens = TokenService(os.environ["SECRET_KEY"])
    app.router.lifespan_context = _patch_lifespan(store, tokens, ValidationStore())

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, seeded

    store.close()


def login(client: TestClient, email: str, password: str, admin: bool = False) -> dict:
    path = "/api/v1/auth/admin/login" if admin else "/api/v1/auth/login"
    resp = client.post(path, json={"email": email, "password": password})
    assert resp.status_code == 200, resp.text
    return resp.json()
