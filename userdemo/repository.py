"""Storage of users."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.engine import Engine

from userdemo.queries import Table
from userdemo.schema import UserRecord, user_table
from userdemo.sqlgen import infer


@dataclass(frozen=True)
class User:
    """A user as the rest of the application sees it."""

    id: int
    name: str
    email: str


def _to_user(record: UserRecord) -> User:
    return User(id=record.id, name=record.name, email=record.email)


class UserRepository:
    """Reads and creates users in the database."""

    def __init__(self, engine: Engine, table: Table | None = None) -> None:
        self.engine = engine
        self.table = table if table is not None else user_table()

    def get_all(self) -> list[User]:
        """Every stored user."""
        with self.engine.connect() as conn:
            records = self.table.all(conn)
        return [_to_user(record) for record in records]

    def create(self, name: str, email: str) -> User:
        """Store a new user and return it with its assigned id."""
        record = UserRecord(name=name, email=email)
        with self.engine.begin() as conn:
            self.table.store.insert(conn, record, infer())
        return _to_user(record)