#!/usr/bin/env python3
"""
authcore -- account administration from the command line.

Works directly against DATABASE_URL; the API server does not need to be
running. Reads the same environment (.env supported) as the server, so the
signing secrets must be set even though only hashing is used here.

Usage:
  python main.py create-user --email admin@example.com --name "Admin" --role ADMIN
  python main.py create-user --email bob@example.com --name Bob --password 'Secret123!'
  python main.py deactivate --email bob@example.com
  python main.py activate --email bob@example.com
  python main.py revoke-sessions --email bob@example.com
  python main.py purge-expired

Environment variables:
  DATABASE_URL         SQLAlchemy URL (default: sqlite:///authcore.db)
  PASSWORD_HASH_COST   bcrypt rounds used for create-user (default: 12)
"""

import argparse
import getpass
import logging
import sys
from typing import Optional

from auth.audit import LoggingAuditSink
from auth.errors import ConflictError
from auth.flows import NAME_MAX_LENGTH, NAME_MIN_LENGTH
from auth.models import Principal, Role
from auth.passwords import CredentialService, password_policy_violation, validate_email
from auth.store import RefreshTokenStore, UserStore
from core.config import get_settings

logger = logging.getLogger("authcore.cli")


def _prompt_password() -> Optional[str]:
    """Ask for a password twice without echo. Returns None if the entries differ."""
    first = getpass.getpass("  Password: ")
    second = getpass.getpass("  Confirm password: ")
    if first != second:
        print("  [!] Passwords do not match.")
        return None
    return first


def _find_or_report(store: UserStore, email: str) -> Optional[Principal]:
    principal = store.find_by_email(email)
    if principal is None:
        print(f"  [!] No user with email '{email}'.")
    return principal


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_create_user(args: argparse.Namespace, users: UserStore, audit: LoggingAuditSink) -> int:
    email = args.email.strip().lower()
    name = args.name.strip()
    if not validate_email(email):
        print(f"  [!] '{args.email}' is not a valid email address.")
        return 1
    if not NAME_MIN_LENGTH <= len(name) <= NAME_MAX_LENGTH:
        print(f"  [!] Name must be between {NAME_MIN_LENGTH} and {NAME_MAX_LENGTH} characters.")
        return 1

    password = args.password if args.password is not None else _prompt_password()
    if password is None:
        return 1
    violation = password_policy_violation(password)
    if violation is not None:
        print(f"  [!] {violation}")
        return 1

    credentials = CredentialService(cost=get_settings().password_hash_cost)
    principal = Principal(
        email=email,
        name=name,
        password_hash=credentials.hash(password),
        role=Role(args.role),
    )
    try:
        user_id = users.create(principal)
    except ConflictError:
        print(f"  [!] A user with email '{email}' already exists.")
        return 1
    audit.record("user.created", user_id, {"email": email, "role": principal.role.value, "via": "cli"})
    print(f"  Created {principal.role.value} user {email} (id={user_id}).")
    return 0


def cmd_set_active(args: argparse.Namespace, users: UserStore, audit: LoggingAuditSink, active: bool) -> int:
    principal = _find_or_report(users, args.email)
    if principal is None:
        return 1
    users.set_active(principal.id, active)
    event = "user.activated" if active else "user.deactivated"
    audit.record(event, principal.id, {"via": "cli"})
    print(f"  {principal.email} is now {'active' if active else 'inactive'}.")
    return 0


def cmd_revoke_sessions(
    args: argparse.Namespace, users: UserStore, tokens: RefreshTokenStore, audit: LoggingAuditSink
) -> int:
    principal = _find_or_report(users, args.email)
    if principal is None:
        return 1
    revoked = tokens.revoke_all(principal.id)
    audit.record("user.sessions_revoked", principal.id, {"revoked": revoked, "via": "cli"})
    print(f"  Revoked {revoked} refresh token(s) for {principal.email}.")
    return 0


def cmd_purge_expired(tokens: RefreshTokenStore) -> int:
    purged = tokens.purge_expired()
    print(f"  Purged {purged} expired refresh token(s).")
    return 0


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="authcore",
        description="Account administration for the authcore credential service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-user --email admin@example.com --name Admin --role ADMIN
  python main.py deactivate --email bob@example.com
  python main.py revoke-sessions --email bob@example.com
  python main.py purge-expired
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    create = sub.add_parser("create-user", help="Create a user account")
    create.add_argument("--email", required=True, help="Login email (stored lower-case)")
    create.add_argument("--name", required=True, help="Display name, 2-100 characters")
    create.add_argument(
        "--role",
        choices=[r.value for r in Role],
        default=Role.USER.value,
        help="Account role (default: USER)",
    )
    create.add_argument(
        "--password",
        default=None,
        help="Initial password. Prompted without echo when omitted.",
    )

    for command, help_text in (
        ("deactivate", "Block logins and token refresh for an account"),
        ("activate", "Re-enable a deactivated account"),
        ("revoke-sessions", "Delete every refresh token for an account"),
    ):
        cmd = sub.add_parser(command, help=help_text)
        cmd.add_argument("--email", required=True, help="Account email")

    sub.add_parser("purge-expired", help="Delete expired refresh token records")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 2

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)-5s %(name)s %(message)s")
    settings = get_settings()
    users = UserStore(db_url=settings.database_url)
    tokens = RefreshTokenStore(db_url=settings.database_url)
    audit = LoggingAuditSink()
    logger.info("Running %s against %s", args.command, settings.database_url.split("://", 1)[0])
    try:
        if args.command == "create-user":
            return cmd_create_user(args, users, audit)
        if args.command == "deactivate":
            return cmd_set_active(args, users, audit, active=False)
        if args.command == "activate":
            return cmd_set_active(args, users, audit, active=True)
        if args.command == "revoke-sessions":
            return cmd_revoke_sessions(args, users, tokens, audit)
        return cmd_purge_expired(tokens)
    finally:
        tokens.close()
        users.close()


if __name__ == "__main__":
    sys.exit(main())
