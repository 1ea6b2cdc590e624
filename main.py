#!/usr/bin/env python3
"""
SiteAuth -- operator CLI for the session/authorization store.

Usage:
  python main.py create-admin --email admin@example.com --password 'S3cure-pass' [--username admin]
  python main.py issue --email someone@example.com [--admin]
  python main.py sweep

Environment variables (see core/config.py):
  SECRET_KEY    Signing key, at least 32 characters. Required unless DEBUG=true.
  DATABASE_URL  SQLAlchemy URL of the auth database (default sqlite:///siteauth.db).

create-admin seeds a user with an active Enterprise account, every tier
capability, and a super_admin record with the "*" permission. The three rows
are written in one transaction. It is the bootstrap path for a fresh database.
"""

import argparse
import sys

from auth.capabilities import default_capabilities
from auth.errors import Duplicate, StoreError, TokenError
from auth.models import AccountStatus, AccountTier, AdminRole, User
from auth.store import UserStore
from auth.tokens import TokenService, hash_password
from core.config import get_settings


def _create_admin(store: UserStore, args: argparse.Namespace) -> int:
    if len(args.password) < 8:
        print("  [!] Password must be at least 8 characters.")
        return 1
    try:
        user, _, _ = store.provision_user(
            User(
                email=args.email,
                username=args.username or args.email.split("@")[0],
                hashed_password=hash_password(args.password),
                first_name="Admin",
                last_name="User",
            ),
            tier=AccountTier.ENTERPRISE,
            status=AccountStatus.ACTIVE,
            capabilities=sorted(default_capabilities(AccountTier.ENTERPRISE)),
            admin_role=AdminRole.SUPER_ADMIN,
            admin_permissions=["*"],
        )
    except Duplicate as exc:
        print(f"  [!] A user with that {exc.field} already exists.")
        return 1
    print(f"  Created super admin {args.email} (id: {user.id})")
    return 0


def _issue(store: UserStore, args: argparse.Namespace) -> int:
    user = store.get_by_email(args.email)
    if user is None:
        print(f"  [!] No user with email {args.email}.")
        return 1
    account = store.get_account_by_user_id(user.id)
    if account is None or account.status != AccountStatus.ACTIVE:
        print("  [!] Account missing or not active.")
        return 1
    admin = store.get_admin_by_user_id(user.id) if args.admin else None
    if args.admin and admin is None:
        print("  [!] User is not an admin.")
        return 1

    service = TokenService.from_settings(get_settings())
    try:
        pair = service.issue(user, account, admin)
    except TokenError as exc:
        print(f"  [!] Could not sign tokens: {exc}")
        return 1
    try:
        store.store_token(service.build_persist_record(user.id, pair.refresh_token, admin is not None, True, "cli"))
    except StoreError as exc:
        # The pair is still valid; only refresh will be refused
        print(f"  [!] Could not record the refresh token ({exc}); it will be rejected on refresh.")
    print(f"access_token:  {pair.access_token}")
    print(f"refresh_token: {pair.refresh_token}")
    print(f"expires_in:    {pair.access_expires_in}s")
    return 0


def _sweep(store: UserStore, args: argparse.Namespace) -> int:
    purged = store.purge_expired_tokens()
    print(f"  Purged {purged} expired token record(s).")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="siteauth", description="SiteAuth operator CLI")
    sub = parser.add_subparsers(dest="command", required=True)

    p_admin = sub.add_parser("create-admin", help="Seed a super admin account")
    p_admin.add_argument("--email", required=True)
    p_admin.add_argument("--password", required=True)
    p_admin.add_argument("--username", default=None)
    p_admin.set_defaults(func=_create_admin)

    p_issue = sub.add_parser("issue", help="Print a token pair for an existing user")
    p_issue.add_argument("--email", required=True)
    p_issue.add_argument("--admin", action="store_true", help="Issue admin tokens")
    p_issue.set_defaults(func=_issue)

    p_sweep = sub.add_parser("sweep", help="Delete expired persisted token records")
    p_sweep.set_defaults(func=_sweep)

    args = parser.parse_args(argv)
    store = UserStore(get_settings().database_url)
    try:
        return args.func(store, args)
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
