"""Opening and checking the database connection."""

from __future__ import annotations

import builtins

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import ArgumentError, SQLAlchemyError

DATABASE_NAME = "postgres"


class ConnectionError(builtins.ConnectionError):
    """The database could not be opened or did not answer."""


def _normalize_url(url: str) -> str:
    prefix = DATABASE_NAME + "://"
    if url.startswith(prefix):
        return "postgresql://" + url[len(prefix):]
    return url


def connect(url: str) -> Engine:
    """Open an engine for ``url`` and check that the database answers."""
    try:
        engine = create_engine(_normalize_url(url))
    except (ArgumentError, ImportError) as exc:
        raise ConnectionError(f"unable to connect to database: {exc}") from exc
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, ImportError) as exc:
        engine.dispose()
        raise ConnectionError(f"database did not answer: {exc}") from exc
    return engine