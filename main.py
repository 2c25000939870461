#!/usr/bin/env python3
"""
mediashare identity -- maintenance commands for users and the session store.

Usage:
  python main.py purge-sessions
  python main.py verify-email alice
  python main.py verify-email alice@example.com
  python main.py revoke-sessions alice
  python main.py list-sessions alice
  python main.py deactivate-user alice
  python main.py activate-user alice

purge-sessions is the expired-session sweep. The API never runs it on its
own; schedule it externally (cron, systemd timer, k8s CronJob). It is
idempotent and safe to run while the API is serving traffic.

list-sessions never prints token strings -- only record ids and timestamps.

Configuration comes from the environment / .env, exactly as for the API
(SECRET_KEY, DATABASE_URL, ...).
"""

import argparse
import sys
from datetime import datetime, timezone
from typing import Optional

from api.main import build_session_service
from auth.errors import UserNotFound
from auth.models import RefreshToken
from auth.service import SessionService
from core.config import get_settings


def _resolve_user_id(service: SessionService, identifier: str) -> Optional[int]:
    """Map a username or email to a user id. Prints a message and returns None if unknown."""
    user = service.users.get_by_identifier(identifier)
    if user is None:
        print(f"  [!] No user matches '{identifier}'.")
        return None
    return user.id


def _session_state(record: RefreshToken, now: datetime) -> str:
    if record.revoked_at is not None:
        return "revoked"
    if record.expires_at <= now:
        return "expired"
    return "live"


def cmd_purge_sessions(service: SessionService, args: argparse.Namespace) -> int:
    deleted = service.purge_expired_sessions()
    print(f"Deleted {deleted} expired or revoked session(s).")
    return 0


def cmd_verify_email(service: SessionService, args: argparse.Namespace) -> int:
    user_id = _resolve_user_id(service, args.identifier)
    if user_id is None:
        return 1
    try:
        user = service.verify_email(user_id)
    except UserNotFound:
        print(f"  [!] User {user_id} disappeared before it could be verified.")
        return 1
    print(f"Verified email for {user.username} <{user.email}>.")
    return 0


def cmd_revoke_sessions(service: SessionService, args: argparse.Namespace) -> int:
    user_id = _resolve_user_id(service, args.identifier)
    if user_id is None:
        return 1
    revoked = service.logout_all(user_id)
    print(f"Revoked {revoked} session(s) for '{args.identifier}'.")
    return 0


def cmd_list_sessions(service: SessionService, args: argparse.Namespace) -> int:
    user_id = _resolve_user_id(service, args.identifier)
    if user_id is None:
        return 1
    records = service.list_sessions(user_id)
    if not records:
        print(f"No sessions for '{args.identifier}'.")
        return 0
    now = datetime.now(timezone.utc)
    print(f"{'ID':>6}  {'STATE':<8} {'CREATED':<26} EXPIRES")
    for record in records:
        created = record.created_at.isoformat(timespec="seconds") if record.created_at else "-"
        expires = record.expires_at.isoformat(timespec="seconds")
        print(f"{record.id:>6}  {_session_state(record, now):<8} {created:<26} {expires}")
    return 0


def cmd_deactivate_user(service: SessionService, args: argparse.Namespace) -> int:
    user_id = _resolve_user_id(service, args.identifier)
    if user_id is None:
        return 1
    revoked = service.deactivate_user(user_id)
    print(f"Deactivated '{args.identifier}' and revoked {revoked} session(s).")
    return 0


def cmd_activate_user(service: SessionService, args: argparse.Namespace) -> int:
    user_id = _resolve_user_id(service, args.identifier)
    if user_id is None:
        return 1
    service.activate_user(user_id)
    print(f"Activated '{args.identifier}'.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mediashare-identity",
        description="Maintenance commands for the mediashare identity service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py purge-sessions
  python main.py verify-email alice@example.com
  python main.py list-sessions alice
  python main.py deactivate-user alice
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    purge = sub.add_parser("purge-sessions", help="Delete expired and revoked refresh-token records")
    purge.set_defaults(func=cmd_purge_sessions)

    per_user = [
        ("verify-email", "Mark a user's email address as verified", cmd_verify_email),
        ("revoke-sessions", "Revoke every live session of a user", cmd_revoke_sessions),
        ("list-sessions", "Show a user's session records (no token values)", cmd_list_sessions),
        ("deactivate-user", "Block a user's logins and revoke their sessions", cmd_deactivate_user),
        ("activate-user", "Allow a deactivated user to log in again", cmd_activate_user),
    ]
    for name, help_text, func in per_user:
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("identifier", help="Username or email of the user")
        cmd.set_defaults(func=func)

    return parser


def main(argv: Optional[list[str]] = None, service: Optional[SessionService] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 2

    if service is None:
        service = build_session_service(get_settings())
    return args.func(service, args)


if __name__ == "__main__":
    sys.exit(main())
