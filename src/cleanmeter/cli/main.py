#!/usr/bin/env python3
"""Main CLI entry point for cleanmeter."""

import argparse
import asyncio
import json
import sys
from typing import Optional

from ..api.auth import TokenAuth
from ..api.server import build_store
from ..billing.metering import UsageMeter
from ..billing.plans import PlanDuration, PlanType
from ..billing.upgrade import PlanUpgradeWorkflow
from ..clock import SystemClock
from ..config.settings import Settings, get_settings
from ..errors import CleanmeterError
from ..logging import configure_logging, get_logger
from ..models.user import User
from ..storage.base import EntitlementStore
from ..storage.postgres import PostgresEntitlementStore

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Entitlement and usage metering for the cleanup app")
    parser.add_argument("--version", action="version", version="cleanmeter 0.1.0")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Override the configured logging level",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Server command
    server_parser = subparsers.add_parser("serve", help="Start API server")
    server_parser.add_argument("--host", default=None, help="Host to bind server to")
    server_parser.add_argument("--port", type=int, default=None, help="Port to bind server to")

    # Schema command
    subparsers.add_parser("init-db", help="Create PostgreSQL tables")

    # User command
    user_parser = subparsers.add_parser("create-user", help="Create a free-plan user record")
    user_parser.add_argument("user_id", help="Opaque user id")
    user_parser.add_argument("email", help="User email")
    user_parser.add_argument("--name", default=None, help="Display name")

    # Upgrade command
    upgrade_parser = subparsers.add_parser("upgrade", help="Manually upgrade a user's plan")
    upgrade_parser.add_argument("identifier", help="User email or id")
    upgrade_parser.add_argument(
        "--plan", choices=[PlanType.PRO.value, PlanType.TRIAL.value], default=PlanType.PRO.value
    )
    upgrade_parser.add_argument(
        "--duration", choices=[d.value for d in PlanDuration], default=PlanDuration.MONTHLY.value
    )
    upgrade_parser.add_argument("--notes", default=None, help="Free-text audit note")
    upgrade_parser.add_argument("--actor", required=True, help="Admin id recorded in the audit log")

    # Usage command
    usage_parser = subparsers.add_parser("usage", help="Show a user's effective usage")
    usage_parser.add_argument("user_id", help="Opaque user id")

    # Token command
    token_parser = subparsers.add_parser("token", help="Issue an API bearer token")
    token_parser.add_argument("user_id", help="Subject of the token")
    token_parser.add_argument("--email", default=None)
    token_parser.add_argument("--admin", action="store_true", help="Grant the admin claim")
    token_parser.add_argument("--expires-in", type=int, default=3600, help="Lifetime in seconds")

    return parser


async def _with_store(settings: Settings, action, store: Optional[EntitlementStore] = None):
    store = store or build_store(settings)
    await store.connect()
    try:
        return await action(store)
    finally:
        await store.close()


async def _init_db(store: EntitlementStore) -> dict:
    if not isinstance(store, PostgresEntitlementStore):
        return {"status": "skipped", "reason": "store backend has no schema"}
    await store.create_tables()
    return {"status": "ok"}


def run_command(args: argparse.Namespace, settings: Settings, store: Optional[EntitlementStore] = None) -> dict:
    """Execute a store-backed command and return its JSON-able result."""
    clock = SystemClock()

    if args.command == "init-db":
        return asyncio.run(_with_store(settings, _init_db, store))

    if args.command == "create-user":
        async def create(store: EntitlementStore):
            now = clock.now()
            user = User(
                id=args.user_id,
                email=args.email,
                display_name=args.name,
                created_at=now,
                last_active_at=now,
            )
            return (await store.create_user(user)).to_wire()
        return asyncio.run(_with_store(settings, create, store))

    if args.command == "upgrade":
        async def upgrade(store: EntitlementStore):
            workflow = PlanUpgradeWorkflow(store, clock)
            result = await workflow.upgrade(
                actor_id=args.actor,
                identifier=args.identifier,
                plan=args.plan,
                duration=args.duration,
                notes=args.notes,
                is_admin=True,
            )
            return result.to_dict()
        return asyncio.run(_with_store(settings, upgrade, store))

    if args.command == "usage":
        async def usage(store: EntitlementStore):
            snapshot = await UsageMeter(store, clock).get_usage(args.user_id)
            return snapshot.to_dict()
        return asyncio.run(_with_store(settings, usage, store))

    if args.command == "token":
        auth = TokenAuth(settings.jwt_secret, settings.jwt_algorithm)
        token = auth.issue_token(
            args.user_id, email=args.email, admin=args.admin, expires_in=args.expires_in
        )
        return {"token": token}

    raise ValueError(f"Unknown command: {args.command}")


def main(argv=None) -> int:
    """Main CLI function."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    settings = get_settings()
    configure_logging(args.log_level or settings.log_level, json_output=settings.log_json)

    if args.command == "serve":
        import uvicorn

        from ..api.server import create_app

        uvicorn.run(
            create_app(settings),
            host=args.host or settings.host,
            port=args.port or settings.port,
        )
        return 0

    try:
        result = run_command(args, settings)
    except CleanmeterError as e:
        logger.error("command_failed", command=args.command, error=e.code, message=e.message)
        print(json.dumps(e.to_dict(), indent=2), file=sys.stderr)
        return 2

    print(json.dumps(result, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
