#!/usr/bin/env python3
"""
Agora -- operator commands for the identity and access core.

Usage:
  python main.py create-admin admin@example.com
  python main.py revoke-sessions alice@example.com
  python main.py sessions alice@example.com

create-admin is the first-run path: self-registration only ever creates
member accounts, so the first admin has to come from here. The password is
read interactively (twice) and never accepted on the command line, where it
would end up in shell history.

Configuration comes from the same environment variables / .env file as the
API (see core/config.py), so the commands act on the databases the API uses.
"""

import argparse
import getpass
import sys
from typing import Optional

from auth.errors import AuthError
from auth.gateway import AuthGateway, build_gateway
from auth.store import AuthStore
from community.store import CommunityStore
from core.config import Settings, get_settings


def _open(settings: Settings) -> tuple[AuthGateway, AuthStore, CommunityStore]:
    auth_store = AuthStore(settings.auth_database_url, timeout=settings.db_timeout_seconds)
    community_store = CommunityStore(settings.community_database_url, timeout=settings.db_timeout_seconds)
    return build_gateway(auth_store, community_store, settings), auth_store, community_store


def _read_new_password() -> Optional[str]:
    first = getpass.getpass("  Password: ")
    second = getpass.getpass("  Repeat password: ")
    if first != second:
        print("  [!] Passwords do not match.")
        return None
    return first


def create_admin(gateway: AuthGateway, identity: str) -> int:
    password = _read_new_password()
    if password is None:
        return 1
    try:
        account = gateway.bootstrap_admin(identity, password)
    except AuthError as e:
        print(f"  [!] {e}")
        return 1
    print(f"  Admin account created: {account.identity} (id={account.id})")
    return 0


def revoke_sessions(gateway: AuthGateway, identity: str) -> int:
    account = gateway.credentials.get_by_identity(identity)
    if account is None:
        print(f"  [!] No account found for '{identity}'.")
        return 1
    count = gateway.logout_all(account)
    print(f"  Revoked {count} session(s) for {account.identity}.")
    return 0


def list_sessions(gateway: AuthGateway, identity: str) -> int:
    account = gateway.credentials.get_by_identity(identity)
    if account is None:
        print(f"  [!] No account found for '{identity}'.")
        return 1
    sessions = gateway.sessions.list_active(account.id)
    if not sessions:
        print(f"  No active sessions for {account.identity}.")
        return 0
    print(f"  {len(sessions)} active session(s) for {account.identity}:")
    for s in sessions:
        # Only a prefix of the token digest; enough to correlate with logs.
        print(f"    {s.id[:12]}  issued {s.issued_at}  expires {s.expires_at}")
    return 0


def main(argv: Optional[list[str]] = None, settings: Optional[Settings] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="agora",
        description="Operator commands for Agora accounts and sessions.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-admin admin@example.com
  python main.py revoke-sessions alice@example.com
  python main.py sessions alice@example.com
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p_admin = sub.add_parser("create-admin", help="Create an admin account (password is prompted)")
    p_admin.add_argument("identity", metavar="IDENTITY", help="Handle or email of the new admin")

    p_revoke = sub.add_parser("revoke-sessions", help="Revoke every refresh session of an account")
    p_revoke.add_argument("identity", metavar="IDENTITY")

    p_list = sub.add_parser("sessions", help="List the active refresh sessions of an account")
    p_list.add_argument("identity", metavar="IDENTITY")

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 2

    gateway, auth_store, community_store = _open(settings or get_settings())
    try:
        if args.command == "create-admin":
            return create_admin(gateway, args.identity)
        if args.command == "revoke-sessions":
            return revoke_sessions(gateway, args.identity)
        return list_sessions(gateway, args.identity)
    finally:
        community_store.close()
        auth_store.close()


if __name__ == "__main__":
    sys.exit(main())
