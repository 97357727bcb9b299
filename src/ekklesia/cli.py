"""Command line utilities for Ekklesia."""

from __future__ import annotations

import argparse
import asyncio
import logging
from typing import Sequence

from .api import create_app
from .bootstrap import BootstrapService
from .config import AppConfig, load_config_from_env
from .database import Database
from .migrations import MigrationRunner
from .orm import ORM
from .server import ServerConfig, run

PROJECT_NAME = "ekklesia"


class _NoHashing:
    async def hash(self, password: str) -> str:  # pragma: no cover - status never hashes
        raise RuntimeError("status does not hash passwords")


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(levelname)s %(name)s %(message)s")
    return args.func(args)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=PROJECT_NAME, description="Ekklesia management commands")
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"], default="INFO")
    sub = parser.add_subparsers(dest="command", required=True)

    migrate = sub.add_parser("migrate", help="Create tables and indexes")
    migrate.set_defaults(func=_cmd_migrate)

    status = sub.add_parser("status", help="Show pending migrations and setup state")
    status.set_defaults(func=_cmd_status)

    serve = sub.add_parser("serve", help="Run the HTTP API with Granian")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--workers", type=int, default=1)
    serve.add_argument("--profile", default="production")
    serve.add_argument("--certificate", default=None, help="TLS certificate path")
    serve.add_argument("--private-key", default=None, help="TLS private key path")
    serve.set_defaults(func=_cmd_serve)

    return parser


def _cmd_migrate(args: argparse.Namespace) -> int:
    config = load_config_from_env()
    executed = asyncio.run(_migrate(config))
    if executed:
        for name in executed:
            print(f"applied {name}")
    else:
        print("no migrations to apply")
    return 0


async def _migrate(config: AppConfig) -> list[str]:
    database = Database(config.database)
    await database.startup()
    try:
        return await MigrationRunner(database).run_all()
    finally:
        await database.shutdown()


def _cmd_status(args: argparse.Namespace) -> int:
    config = load_config_from_env()
    pending, initialized = asyncio.run(_status(config))
    print(f"pending migrations: {', '.join(pending) if pending else 'none'}")
    if initialized is None:
        print("initialized: unknown until migrations are applied")
    else:
        print(f"initialized: {'yes' if initialized else 'no'}")
    return 0


async def _status(config: AppConfig) -> tuple[list[str], bool | None]:
    database = Database(config.database)
    await database.startup()
    try:
        pending = await MigrationRunner(database).pending()
        if pending:
            return pending, None
        service = BootstrapService(ORM(database), _NoHashing(), config.bootstrap)
        return pending, (await service.status()).is_initialized
    finally:
        await database.shutdown()


def _cmd_serve(args: argparse.Namespace) -> int:
    config = load_config_from_env()
    server_config = ServerConfig(
        host=args.host,
        port=args.port,
        workers=args.workers,
        profile=args.profile,
        certificate_path=args.certificate,
        private_key_path=args.private_key,
    )
    run(create_app(config), server_config)
    return 0


if __name__ == "__main__":  # pragma: no cover - manual entry point
    raise SystemExit(main())
