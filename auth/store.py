"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper. UserStore is the repository; the _row_to_*
functions are the mappers. Session flows and routes never touch SQL directly.

Tables:
  users        login identities (email and username are UNIQUE)
  accounts     one row per user: tier, status, custom capabilities
  admins       optional, one row per user: role and permission list
  auth_tokens  persisted refresh-token records, keyed by token hash

Errors: every public method translates SQLAlchemy exceptions into the
auth.errors store taxonomy (Duplicate, ConnectionFailed, QueryFailed,
StoreError) so callers never depend on the driver. Lookups return None for a
missing row rather than raising NotFound; NotFound is reserved for updates
that must hit an existing row.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Raw tokens never reach this module, only their HMAC hashes.

Timestamps are stored as ISO 8601 UTC strings with fixed microsecond
precision so string comparison orders them correctly.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import json
import re
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, SQLAlchemyError

from auth.errors import ConnectionFailed, Duplicate, NotFound, QueryFailed, StoreError
from auth.models import (
    Account,
    AccountStatus,
    AccountTier,
    Admin,
    AdminRole,
    TokenRecord,
    TokenType,
    User,
)

_DEFAULT_DB_URL = "sqlite:///siteauth.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("first_name", String(255), nullable=False, server_default=""),
    Column("last_name", String(255), nullable=False, server_default=""),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("last_login", String(32)),
)

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), nullable=False, unique=True),
    Column("tier", String(20), nullable=False, server_default="free"),
    Column("status", String(20), nullable=False, server_default="pending"),
    Column("capabilities", Text, nullable=False, server_default="[]"),  # JSON list
    Column("status_reason", Text),
    Column("status_changed_at", String(32)),
    Column("status_changed_by", String(36)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_admins = Table(
    "admins",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), nullable=False, unique=True),
    Column("role", String(20), nullable=False),
    Column("permissions", Text, nullable=False, server_default="[]"),  # JSON list
    Column("created_by", String(36)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_auth_tokens = Table(
    "auth_tokens",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("token_hash", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("token_type", String(20), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("revoked_at", String(32)),
    Column("device_info", Text),
)

# Mutable account columns accepted by update_account()
_ACCOUNT_FIELDS = {"tier", "status", "capabilities", "status_reason", "status_changed_by"}


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers proceed during writes."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _now_iso() -> str:
    return _iso(datetime.now(timezone.utc))


def _parse_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


# "UNIQUE constraint failed: users.email" (SQLite) / "Key (email)=(...)" (PostgreSQL)
_UNIQUE_FIELD_RE = re.compile(r"UNIQUE constraint failed: \w+\.(\w+)|Key \((\w+)\)")


def _duplicate_field(exc: IntegrityError) -> str:
    match = _UNIQUE_FIELD_RE.search(str(exc.orig))
    if match is None:
        return "unknown"
    return match.group(1) or match.group(2)


@contextmanager
def _translate_errors() -> Iterator[None]:
    """Map SQLAlchemy exceptions onto the store error taxonomy."""
    try:
        yield
    except IntegrityError as exc:
        raise Duplicate(_duplicate_field(exc)) from exc
    except OperationalError as exc:
        raise ConnectionFailed(str(exc.orig)) from exc
    except DBAPIError as exc:
        raise QueryFailed(str(exc.orig)) from exc
    except SQLAlchemyError as exc:
        raise StoreError(str(exc)) from exc


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for users, accounts, admins and persisted token records.

    Usage:
        store = UserStore("sqlite:///:memory:")
        user = store.create_user(User(email="a@example.com", username="a", hashed_password=hash_password("pw")))
        store.create_account(user.id)
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def health_check(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError:
            return False

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> User:
        """Insert a new user and return it with id and timestamps filled in.

        Raises Duplicate("email") or Duplicate("username") on a clash.
        """
        created = _new_user(user, _now_iso())
        with _translate_errors(), self.engine.connect() as conn:
            conn.execute(_users.insert().values(**_user_values(created)))
            conn.commit()
        return created

    def provision_user(
        self,
        user: User,
        tier: AccountTier,
        status: AccountStatus,
        capabilities: list[str] | None = None,
        admin_role: AdminRole | None = None,
        admin_permissions: list[str] | None = None,
    ) -> tuple[User, Account, Admin | None]:
        """Insert a user, its account and optionally an admin record in one transaction.

        Either every row is written or none is, so a failure never leaves a
        user without an account. Raises Duplicate like create_user().
        """
        now = _now_iso()
        created = _new_user(user, now)
        account = _new_account(created.id, tier, status, capabilities, now)
        admin = None
        if admin_role is not None:
            admin = _new_admin(
                Admin(user_id=created.id, role=admin_role, permissions=list(admin_permissions or [])),
                now,
            )
        with _translate_errors(), self.engine.begin() as conn:
            conn.execute(_users.insert().values(**_user_values(created)))
            conn.execute(_accounts.insert().values(**_account_values(account)))
            if admin is not None:
                conn.execute(_admins.insert().values(**_admin_values(admin)))
        return created, account, admin

    def get_by_email(self, email: str) -> User | None:
        with _translate_errors(), self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_username(self, username: str) -> User | None:
        with _translate_errors(), self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: str) -> User | None:
        with _translate_errors(), self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_last_login(self, user_id: str) -> None:
        """Stamp the current UTC time as last_login. Callers treat failure as non-fatal."""
        now = _now_iso()
        with _translate_errors(), self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=now, updated_at=now))
            conn.commit()

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def create_account(
        self,
        user_id: str,
        tier: AccountTier = AccountTier.FREE,
        status: AccountStatus = AccountStatus.PENDING,
        capabilities: list[str] | None = None,
    ) -> Account:
        """Create the user's account. New accounts default to free/pending."""
        account = _new_account(user_id, tier, status, capabilities, _now_iso())
        with _translate_errors(), self.engine.connect() as conn:
            conn.execute(_accounts.insert().values(**_account_values(account)))
            conn.commit()
        return account

    def get_account_by_user_id(self, user_id: str) -> Account | None:
        with _translate_errors(), self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.user_id == user_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def update_account(self, user_id: str, **fields) -> None:
        """Update mutable account fields.

        Accepted fields: tier, status, capabilities, status_reason,
        status_changed_by. Changing status stamps status_changed_at. Status
        values are not checked against any transition table.

        Raises ValueError for unknown fields and NotFound if the user has no account.
        """
        unknown = set(fields) - _ACCOUNT_FIELDS
        if unknown:
            raise ValueError(f"Unknown account fields: {unknown!r}")
        now = _now_iso()
        values: dict = {"updated_at": now}
        for key, value in fields.items():
            if key == "tier":
                value = AccountTier(value).value
            elif key == "status":
                value = AccountStatus(value).value
                values["status_changed_at"] = now
            elif key == "capabilities":
                value = json.dumps(list(value))
            values[key] = value
        with _translate_errors(), self.engine.connect() as conn:
            result = conn.execute(_accounts.update().where(_accounts.c.user_id == user_id).values(**values))
            conn.commit()
        if result.rowcount == 0:
            raise NotFound(f"No account for user {user_id}")

    # ------------------------------------------------------------------
    # Admins
    # ------------------------------------------------------------------

    def create_admin(self, admin: Admin) -> Admin:
        created = _new_admin(admin, _now_iso())
        with _translate_errors(), self.engine.connect() as conn:
            conn.execute(_admins.insert().values(**_admin_values(created)))
            conn.commit()
        return created

    def get_admin_by_user_id(self, user_id: str) -> Admin | None:
        with _translate_errors(), self.engine.connect() as conn:
            row = conn.execute(_admins.select().where(_admins.c.user_id == user_id)).fetchone()
        return _row_to_admin(row) if row is not None else None

    def is_admin(self, user_id: str) -> bool:
        return self.get_admin_by_user_id(user_id) is not None

    # ------------------------------------------------------------------
    # Token records
    # ------------------------------------------------------------------

    def store_token(self, record: TokenRecord) -> None:
        with _translate_errors(), self.engine.connect() as conn:
            conn.execute(
                _auth_tokens.insert().values(
                    id=record.id,
                    user_id=record.user_id,
                    token_hash=record.token_hash,
                    token_type=TokenType(record.token_type).value,
                    expires_at=_iso(record.expires_at),
                    created_at=_iso(record.created_at),
                    revoked_at=_iso(record.revoked_at) if record.revoked_at else None,
                    device_info=record.device_info,
                )
            )
            conn.commit()

    def get_token_by_hash(self, token_hash: str) -> TokenRecord | None:
        with _translate_errors(), self.engine.connect() as conn:
            row = conn.execute(_auth_tokens.select().where(_auth_tokens.c.token_hash == token_hash)).fetchone()
        return _row_to_token(row) if row is not None else None

    def revoke_token(self, token_hash: str) -> bool:
        """Set revoked_at on an unrevoked record. Returns False if none matched."""
        with _translate_errors(), self.engine.connect() as conn:
            result = conn.execute(
                _auth_tokens.update()
                .where((_auth_tokens.c.token_hash == token_hash) & (_auth_tokens.c.revoked_at.is_(None)))
                .values(revoked_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def revoke_all_user_tokens(self, user_id: str) -> int:
        """Revoke every unrevoked record for a user. Returns the number revoked."""
        with _translate_errors(), self.engine.connect() as conn:
            result = conn.execute(
                _auth_tokens.update()
                .where((_auth_tokens.c.user_id == user_id) & (_auth_tokens.c.revoked_at.is_(None)))
                .values(revoked_at=_now_iso())
            )
            conn.commit()
        return result.rowcount

    def purge_expired_tokens(self, now: datetime | None = None) -> int:
        """Delete records past their expiry. The only path that removes records."""
        cutoff = _iso(now or datetime.now(timezone.utc))
        with _translate_errors(), self.engine.connect() as conn:
            result = conn.execute(_auth_tokens.delete().where(_auth_tokens.c.expires_at <= cutoff))
            conn.commit()
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _new_user(user: User, now: str) -> User:
    return User(
        id=str(uuid.uuid4()),
        email=user.email,
        username=user.username,
        hashed_password=user.hashed_password,
        first_name=user.first_name,
        last_name=user.last_name,
        is_active=user.is_active,
        created_at=now,
        updated_at=now,
    )


def _user_values(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "username": user.username,
        "hashed_password": user.hashed_password,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "is_active": 1 if user.is_active else 0,
        "created_at": user.created_at,
        "updated_at": user.updated_at,
    }


def _new_account(
    user_id: str,
    tier: AccountTier,
    status: AccountStatus,
    capabilities: list[str] | None,
    now: str,
) -> Account:
    return Account(
        id=str(uuid.uuid4()),
        user_id=user_id,
        tier=AccountTier(tier),
        status=AccountStatus(status),
        capabilities=list(capabilities or []),
        created_at=now,
        updated_at=now,
    )


def _account_values(account: Account) -> dict:
    return {
        "id": account.id,
        "user_id": account.user_id,
        "tier": account.tier.value,
        "status": account.status.value,
        "capabilities": json.dumps(account.capabilities),
        "created_at": account.created_at,
        "updated_at": account.updated_at,
    }


def _new_admin(admin: Admin, now: str) -> Admin:
    return Admin(
        id=str(uuid.uuid4()),
        user_id=admin.user_id,
        role=AdminRole(admin.role),
        permissions=list(admin.permissions),
        created_by=admin.created_by,
        created_at=now,
        updated_at=now,
    )


def _admin_values(admin: Admin) -> dict:
    return {
        "id": admin.id,
        "user_id": admin.user_id,
        "role": admin.role.value,
        "permissions": json.dumps(admin.permissions),
        "created_by": admin.created_by,
        "created_at": admin.created_at,
        "updated_at": admin.updated_at,
    }


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        username=row.username,
        hashed_password=row.hashed_password,
        first_name=row.first_name,
        last_name=row.last_name,
        is_active=bool(row.is_active),
        created_at=row.created_at,
        updated_at=row.updated_at,
        last_login=row.last_login,
    )


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        user_id=row.user_id,
        tier=AccountTier(row.tier),
        status=AccountStatus(row.status),
        capabilities=json.loads(row.capabilities or "[]"),
        status_reason=row.status_reason,
        status_changed_at=row.status_changed_at,
        status_changed_by=row.status_changed_by,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_admin(row) -> Admin:
    return Admin(
        id=row.id,
        user_id=row.user_id,
        role=AdminRole(row.role),
        permissions=json.loads(row.permissions or "[]"),
        created_by=row.created_by,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_token(row) -> TokenRecord:
    return TokenRecord(
        id=row.id,
        user_id=row.user_id,
        token_hash=row.token_hash,
        token_type=TokenType(row.token_type),
        expires_at=_parse_iso(row.expires_at),
        created_at=_parse_iso(row.created_at),
        revoked_at=_parse_iso(row.revoked_at),
        device_info=row.device_info,
    )
