"""Command entry point: read settings, connect to the database and serve."""

from __future__ import annotations

import argparse
import logging
from typing import Sequence

from flask import Flask
from sqlalchemy.engine import Engine

from userdemo.config import AppConfig, ConfigError
from userdemo.controller import UserController
from userdemo.db import ConnectionError as DatabaseConnectionError
from userdemo.db import connect
from userdemo.repository import UserRepository
from userdemo.server import CorsConfig, create_app, start
from userdemo.web import Router


def build_app(config: AppConfig, engine: Engine) -> Flask:
    """Wire repository, controller and routes into a ready application."""
    controller = UserController(UserRepository(engine))
    router = Router(controller, cors_origins=("*",))
    app = create_app(CorsConfig(router.cors_origins), router.register)
    app.config["SERVER_ADDR"] = config.server.server_addr
    return app


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="userdemo",
        description="Serve the user API. Settings come from PG_URL and SERVER_ADDR.",
    )
    parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")

    config = AppConfig.from_env()
    try:
        config.validate()
    except ConfigError as exc:
        raise SystemExit(str(exc)) from exc

    try:
        engine = connect(config.database.pg_url)
    except DatabaseConnectionError as exc:
        raise SystemExit(f"[PG connection error] {exc}") from exc

    try:
        start(build_app(config, engine), config.server)
    finally:
        engine.dispose()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())