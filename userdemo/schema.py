"""Table layout of the application's database and the user record type."""

from __future__ import annotations

import functools
from dataclasses import dataclass
from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.engine import Engine

from userdemo.queries import Table
from userdemo.records import Store, TableSpec


@dataclass(frozen=True)
class TableNames:
    """Names of the tables in the database."""

    schema_migrations: str = "schema_migrations"
    users: str = "users"


TABLE_NAMES = TableNames()
VIEW_NAMES: tuple[str, ...] = ()


@dataclass
class UserRecord:
    """One row of the users table."""

    id: int | None = None
    name: str = ""
    email: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None


USERS_SPEC = TableSpec(
    name=TABLE_NAMES.users,
    all_columns=("id", "name", "email", "created_at", "updated_at"),
    with_default=("id", "created_at", "updated_at"),
    without_default=("name", "email"),
    primary_key=("id",),
    record_type=UserRecord,
    created_at="created_at",
    updated_at="updated_at",
)

METADATA = sa.MetaData()

_NOW = sa.text("CURRENT_TIMESTAMP")

sa.Table(
    TABLE_NAMES.users,
    METADATA,
    sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
    sa.Column("name", sa.String, nullable=False),
    sa.Column("email", sa.String, nullable=False),
    sa.Column(
        "created_at", sa.DateTime(timezone=True), nullable=False, server_default=_NOW
    ),
    sa.Column(
        "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=_NOW
    ),
)

sa.Table(
    TABLE_NAMES.schema_migrations,
    METADATA,
    sa.Column("version", sa.BigInteger, primary_key=True, autoincrement=False),
    sa.Column("dirty", sa.Boolean, nullable=False),
)


@functools.lru_cache(maxsize=None)
def user_table() -> Table:
    """The shared query object for the users table; its hooks apply everywhere."""
    return Table(USERS_SPEC, Store(USERS_SPEC))


def create_tables(engine: Engine) -> None:
    """Create every application table that does not exist yet."""
    METADATA.create_all(engine)