#!/usr/bin/env python3
"""
TinyTasks -- operator command line.

Account maintenance that has no HTTP endpoint: lifecycle changes, forced
logouts and data cleanup. Works directly against the database the API uses.

Usage:
  python main.py deactivate-user <principal-id>
  python main.py reactivate-user <principal-id>
  python main.py revoke-tokens   <principal-id>
  python main.py list-tokens     <principal-id>
  python main.py cleanup-tasks   <principal-id>
  python main.py list-tokens <principal-id> --database-url sqlite:///other.db

Environment variables:
  DATABASE_URL  Database to operate on when --database-url is not given.

Exit codes: 0 success, 1 principal not found, 2 configuration error.
"""

import argparse
import sys
from typing import Optional

from pydantic import ValidationError

from auth.store import CredentialStore, PrincipalStore
from auth.tokens import TokenService
from core.config import get_settings
from core.database import create_db_engine
from tasks.store import TaskStore

_COMMANDS = {
    "deactivate-user": "Deactivate a principal. Its tokens stop validating until reactivated.",
    "reactivate-user": "Reactivate a deactivated principal.",
    "revoke-tokens": "Revoke every active token of a principal (forced logout).",
    "list-tokens": "List a principal's active tokens. Token values are never shown.",
    "cleanup-tasks": "Permanently delete every task of a principal.",
}


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="main.py",
        description="TinyTasks operator tools.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True, metavar="COMMAND")
    for name, help_text in _COMMANDS.items():
        cmd = sub.add_parser(name, help=help_text, description=help_text)
        cmd.add_argument("principal_id", metavar="PRINCIPAL_ID", help="Principal UUID")
        cmd.add_argument(
            "--database-url",
            default=None,
            help="SQLAlchemy URL of the database (default: DATABASE_URL / settings)",
        )
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = _build_parser().parse_args(argv)

    db_url = args.database_url
    if db_url is None:
        try:
            db_url = get_settings().database_url
        except ValidationError as e:
            print(f"  [!] Configuration error: {e}")
            return 2

    engine = create_db_engine(db_url)
    try:
        principals = PrincipalStore(engine)
        service = TokenService(principals, CredentialStore(engine))

        principal = principals.get_by_id(args.principal_id)
        if principal is None:
            print(f"  [!] No principal with ID {args.principal_id}")
            return 1
        label = f"{principal.email} ({principal.id})"

        if args.command == "deactivate-user":
            if service.deactivate_principal(principal.id):
                print(f"Deactivated {label}.")
            else:
                print(f"{label} is already inactive.")
        elif args.command == "reactivate-user":
            if service.reactivate_principal(principal.id):
                print(f"Reactivated {label}.")
            else:
                print(f"{label} is already active.")
        elif args.command == "revoke-tokens":
            count = service.revoke_all(principal.id)
            print(f"Revoked {count} token(s) for {label}.")
        elif args.command == "list-tokens":
            summaries = service.list_active(principal.id)
            print(f"{len(summaries)} active token(s) for {label}")
            for s in summaries:
                print(f"  {s.id}  {s.name:<18}  created {s.created_at}  last used {s.last_used_at or '-'}")
        elif args.command == "cleanup-tasks":
            count = TaskStore(engine).delete_all(principal.id)
            print(f"Deleted {count} task(s) for {label}.")
    finally:
        engine.dispose()
    return 0


if __name__ == "__main__":
    sys.exit(main())
