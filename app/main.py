from __future__ import annotations

import argparse
import logging
import os
import sys
import uuid

import uvicorn
from fastapi import FastAPI

from app.api.http_app import build_app
from app.logging_setup import configure_logging
from app.roles import SUPPORTED_ROLES, RuntimeRole, validate_role
from app.services.bootstrap import build_runtime_container

logger = logging.getLogger("runtime")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="directory-key-lifecycle", description="Directory key lifecycle runtime")
    parser.add_argument("--role", required=True, help=f"one of: {', '.join(SUPPORTED_ROLES)}")
    parser.add_argument("--host", default=os.getenv("APP_HOST", "0.0.0.0"))
    parser.add_argument("--port", type=int, default=None, help="defaults to the role's port")
    parser.add_argument("--log-level", default=os.getenv("LOG_LEVEL", "INFO"))
    parser.add_argument(
        "--dry-run-startup",
        action="store_true",
        help="validate role and configuration, then exit",
    )
    parser.add_argument("--reload", action="store_true", help="restart on code changes (development only)")
    return parser


def assemble_app(role: RuntimeRole, run_id: str) -> FastAPI:
    container = build_runtime_container(role)
    return build_app(
        role=role.name,
        run_id=run_id,
        worker_loop=container.worker_loop,
        worker_runtime_settings=container.settings,
        api_deps=container.api_deps,
        on_startup=container.on_startup,
        on_shutdown=container.on_shutdown,
    )


def create_runtime_app() -> FastAPI:
    """uvicorn factory used by ``--reload``; the role comes from APP_ROLE."""
    role = validate_role(os.getenv("APP_ROLE", "api"))
    configure_logging(os.getenv("LOG_LEVEL", "INFO"))
    return assemble_app(role, str(uuid.uuid4()))


def run(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        role = validate_role(args.role)
    except ValueError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 2

    configure_logging(args.log_level)
    run_id = str(uuid.uuid4())
    context = {"role": role.name, "service": role.name, "run_id": run_id}
    logger.info("runtime initialized", extra=context)
    if args.dry_run_startup:
        logger.info("dry-run startup complete", extra=context)
        return 0

    port = args.port if args.port is not None else role.default_port
    if args.reload:
        # The reloader re-imports the app in a child process.
        os.environ["APP_ROLE"] = role.name
        uvicorn.run(
            "app.main:create_runtime_app",
            factory=True,
            reload=True,
            host=args.host,
            port=port,
            log_level="warning",
        )
        return 0

    uvicorn.run(assemble_app(role, run_id), host=args.host, port=port, log_level="warning")
    return 0


if __name__ == "__main__":
    raise SystemExit(run())
