#!/usr/bin/env python3
"""
CredGate -- operator command line.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8080
  python main.py create-user alice@example.com
  python main.py generate-key

Environment variables (see core/config.py for the full list):
  SECRET_KEY      Token signing key, at least 32 characters. Required unless DEBUG=true.
  DATABASE_URL    SQLAlchemy URL for the credential store.
  BCRYPT_ROUNDS   bcrypt cost factor (default 12).
"""

import argparse
import getpass
import sys

from auth.credentials import CredentialManager
from auth.errors import AuthError
from auth.hashing import SecretHasher
from auth.policy import SecretPolicy
from auth.store import CredentialStore
from auth.tokens import generate_signing_key
from core.config import get_settings


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("api.main:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def _create_user(args: argparse.Namespace) -> int:
    """Register an account from the terminal. The password is read with getpass, never argv."""
    password = getpass.getpass("Password: ")
    if password != getpass.getpass("Repeat password: "):
        print("  [!] Passwords do not match.", file=sys.stderr)
        return 1

    settings = get_settings()
    store = CredentialStore(settings.database_url, timeout=settings.storage_timeout_seconds)
    manager = CredentialManager(store, SecretHasher.from_settings(settings), SecretPolicy.from_settings(settings))
    try:
        credential = manager.register(args.identity, password)
    except AuthError as exc:
        detail = f" ({', '.join(exc.detail)})" if isinstance(exc.detail, list) else ""
        print(f"  [!] {exc.message}{detail}", file=sys.stderr)
        return 1
    finally:
        store.close()
    print(f"Created {credential.identity} (id={credential.id}).")
    return 0


def _generate_key(args: argparse.Namespace) -> int:
    print(generate_signing_key())
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="CredGate -- credential registration, login, and token gate.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Run the API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true", help="Reload on code changes (development only)")
    serve.set_defaults(func=_serve)

    create = sub.add_parser("create-user", help="Register an account (password prompted)")
    create.add_argument("identity", help="Email address or username")
    create.set_defaults(func=_create_user)

    keygen = sub.add_parser("generate-key", help="Print a fresh value for SECRET_KEY")
    keygen.set_defaults(func=_generate_key)

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 0
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
