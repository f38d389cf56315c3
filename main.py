#!/usr/bin/env python3
"""
BiloGames account service -- command line entry point.

Usage:
  python main.py serve                       # run the API with uvicorn
  python main.py serve --host 0.0.0.0 --port 5000 --reload
  python main.py reap                        # one reaper pass, then exit
  python main.py reap --retention-days 7

Environment variables are read through core.config (SECRET_KEY, DATABASE_URL,
SENDGRID_API_KEY, MAIL_FROM_EMAIL, GOOGLE_CLIENT_ID, ...). See .env.example.
"""

import argparse
import logging
import sys

from core.config import get_settings


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def _reap(args: argparse.Namespace) -> int:
    from accounts.reaper import run_reaper_pass
    from auth.codes import CodeService, CodeStore
    from auth.store import UserStore
    from core.mailer import Mailer

    settings = get_settings()
    retention = args.retention_days or settings.unverified_retention_days
    store = UserStore(db_url=settings.database_url)
    try:
        mailer = Mailer(settings.sendgrid_api_key, settings.mail_from_email, settings.app_name, echo=settings.debug)
        codes = CodeService(CodeStore(store.engine), ttl_minutes=settings.verification_code_ttl_minutes)
        deleted = run_reaper_pass(store, mailer, codes, retention)
    finally:
        store.close()
    print(f"Deleted {deleted} unverified account(s) older than {retention} days.")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="BiloGames account service")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=5000)
    serve.add_argument("--reload", action="store_true", help="Reload on code changes (development)")
    serve.set_defaults(func=_serve)

    reap = sub.add_parser("reap", help="Delete unverified accounts past the retention window")
    reap.add_argument("--retention-days", type=int, default=None)
    reap.set_defaults(func=_reap)

    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)-5s %(name)s %(message)s")
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
