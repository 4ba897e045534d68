#!/usr/bin/env python3
"""
Newsdesk -- content management backend for news.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8000 --workers 4
  python main.py create-admin --email admin@example.com --phone 5551234567 \
      --first-name Ada --last-name Admin

Environment variables (or .env):
  DATABASE_URL           SQLAlchemy URL (default sqlite:///newsdesk.db)
  ACCESS_TOKEN_SECRET    Required unless DEBUG=true
  REFRESH_TOKEN_SECRET   Required unless DEBUG=true
  CLOUDINARY_*           Media host credentials; uploads are disabled without them
"""

import argparse
import getpass
import sys

_MIN_PASSWORD = 8
_MAX_PASSWORD = 72


def _read_password(given: str | None) -> str:
    """Use --password if given, otherwise prompt twice without echo."""
    if given:
        return given
    first = getpass.getpass("Password: ")
    second = getpass.getpass("Repeat password: ")
    if first != second:
        print("  [!] Passwords do not match.")
        sys.exit(1)
    return first


def create_admin(args: argparse.Namespace) -> int:
    """Create an active, verified admin account. Returns a process exit code."""
    # Imported here so `serve --help` does not need valid settings.
    from auth.models import Account, AccountKind
    from auth.store import AccountStore
    from auth.tokens import hash_password
    from core.config import get_settings

    password = _read_password(args.password)
    if not _MIN_PASSWORD <= len(password) <= _MAX_PASSWORD:
        print(f"  [!] Password must be {_MIN_PASSWORD}-{_MAX_PASSWORD} characters.")
        return 1

    store = AccountStore(get_settings().database_url)
    try:
        taken = store.email_or_phone_taken(AccountKind.admin, args.email, args.phone)
        if taken:
            print(f"  [!] An admin with that {taken} already exists.")
            return 1
        account_id = store.create(
            Account(
                kind=AccountKind.admin,
                email=args.email,
                phone=args.phone,
                first_name=args.first_name,
                last_name=args.last_name,
                hashed_password=hash_password(password),
                role="admin",
                is_active=True,
                is_verified=True,
            )
        )
    finally:
        store.close()
    print(f"  Admin {args.email} created (id {account_id}).")
    return 0


def serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run(
        "asgi:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        workers=None if args.reload else args.workers,
        proxy_headers=True,
    )
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="newsdesk",
        description="Newsdesk content management API.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py serve --reload
  python main.py serve --workers 4
  python main.py create-admin --email admin@example.com --phone 5551234567 --first-name Ada --last-name Admin
        """,
    )
    sub = parser.add_subparsers(dest="command")

    serve_p = sub.add_parser("serve", help="Run the API server with uvicorn")
    serve_p.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve_p.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    serve_p.add_argument("--workers", type=int, default=1, help="Worker processes (default: 1)")
    serve_p.add_argument("--reload", action="store_true", help="Reload on code changes (development)")
    serve_p.set_defaults(func=serve)

    admin_p = sub.add_parser("create-admin", help="Bootstrap an admin account")
    admin_p.add_argument("--email", required=True)
    admin_p.add_argument("--phone", required=True)
    admin_p.add_argument("--first-name", required=True)
    admin_p.add_argument("--last-name", required=True)
    admin_p.add_argument(
        "--password",
        help="Password (prompted for when omitted; avoid passing it on shared machines)",
    )
    admin_p.set_defaults(func=create_admin)

    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        return
    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
