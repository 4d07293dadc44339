#!/usr/bin/env python3
"""
teamauth admin CLI -- maintenance tasks that run outside the HTTP server.

Usage:
  python main.py create-team --team-name "Acme" --name "Alice" --email alice@example.com
  python main.py migrate-roles
  python main.py purge-resets
  python main.py purge-tokens --older-than-days 90

Every command opens the database named by DATABASE_URL (see core/config.py),
seeds the permission catalog, does its work and exits. create-team prompts
for the first user's password unless it is piped on stdin.
"""

from __future__ import annotations

import argparse
import getpass
import logging
import sys
from datetime import timedelta
from typing import Optional

from auth.errors import IdentityError
from auth.mailer import LogNotifier
from auth.passwords import PasswordResetManager
from auth.permissions import ALL_PERMISSIONS
from auth.roles import RoleService
from auth.store import IdentityStore
from auth.token_store import TokenStore
from auth.tokens import MAX_PASSWORD_BYTES, password_fits
from auth.users import UserService
from core.config import get_settings


def _read_password() -> str:
    if not sys.stdin.isatty():
        return sys.stdin.readline().rstrip("\n")
    first = getpass.getpass("Password: ")
    if first != getpass.getpass("Repeat password: "):
        raise SystemExit("  [!] Passwords do not match.")
    return first


def _cmd_create_team(store: IdentityStore, args: argparse.Namespace) -> int:
    password = _read_password()
    if not password:
        print("  [!] Password is required.")
        return 1
    if not password_fits(password):
        print(f"  [!] Password must be at most {MAX_PASSWORD_BYTES} bytes.")
        return 1
    user = UserService(store).sign_up(args.team_name, args.name, args.email, password)
    print(f"Team {user.organization_id} created; user {user.id} ({user.email}) holds its Admin role.")
    return 0


def _cmd_migrate_roles(store: IdentityStore, args: argparse.Namespace) -> int:
    migrated = RoleService(store).migrate_all()
    print(f"{migrated} user(s) assigned their team's Admin role.")
    return 0


def _cmd_purge_resets(store: IdentityStore, args: argparse.Namespace) -> int:
    settings = get_settings()
    manager = PasswordResetManager(store, LogNotifier(settings), ttl_seconds=settings.password_reset_ttl_seconds)
    removed = manager.purge_expired()
    print(f"{removed} expired password reset record(s) removed.")
    return 0


def _cmd_purge_tokens(store: IdentityStore, args: argparse.Namespace) -> int:
    settings = get_settings()
    # Anything younger than the longest refresh lifetime may still be usable.
    min_days = settings.refresh_token_ttl_seconds // (24 * 60 * 60)
    if args.older_than_days < min_days:
        print(f"  [!] --older-than-days must be at least {min_days} (the refresh token lifetime).")
        return 1
    cutoff = store.now() - timedelta(days=args.older_than_days)
    removed = TokenStore(store).purge(cutoff)
    print(f"{removed} refresh token record(s) older than {args.older_than_days} days removed.")
    return 0


_COMMANDS = {
    "create-team": _cmd_create_team,
    "migrate-roles": _cmd_migrate_roles,
    "purge-resets": _cmd_purge_resets,
    "purge-tokens": _cmd_purge_tokens,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="teamauth",
        description="Administrative tasks for the teamauth identity service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-team --team-name Acme --name Alice --email alice@example.com
  echo 's3cret' | python main.py create-team --team-name Acme --name Alice --email alice@example.com
  python main.py migrate-roles
  python main.py purge-tokens --older-than-days 90
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    create = sub.add_parser("create-team", help="Create a team, its Admin role and its first user")
    create.add_argument("--team-name", required=True, help="Display name of the new team")
    create.add_argument("--name", required=True, help="Name of the first user")
    create.add_argument("--email", required=True, help="Email of the first user")

    sub.add_parser("migrate-roles", help="Give every role-less user their team's Admin role (run once after upgrading)")
    sub.add_parser("purge-resets", help="Delete expired password reset records")

    purge = sub.add_parser("purge-tokens", help="Delete refresh token records older than a cut-off")
    purge.add_argument(
        "--older-than-days",
        type=int,
        required=True,
        metavar="N",
        help="Remove records created more than N days ago (revoked or not)",
    )
    return parser


def main(argv: Optional[list[str]] = None, store: Optional[IdentityStore] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 0

    logging.basicConfig(level=logging.INFO, format="%(levelname)-5s %(name)s %(message)s")
    owns_store = store is None
    store = store or IdentityStore(get_settings().database_url)
    try:
        store.seed_permissions(ALL_PERMISSIONS)
        return _COMMANDS[args.command](store, args)
    except IdentityError as exc:
        print(f"  [!] {exc.message}")
        return 1
    finally:
        if owns_store:
            store.close()


if __name__ == "__main__":
    sys.exit(main())
