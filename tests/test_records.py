import io
from dataclasses import dataclass
from typing import Optional

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError

from userdemo.records import HookPoint, RecordError, Store, TableSpec
from userdemo.sqlgen import UpsertOptions, infer, whitelist

FIXED = "2024-01-02 03:04:05"

DDL = (
    "CREATE TABLE people ("
    "id INTEGER PRIMARY KEY, "
    "name TEXT NOT NULL, "
    "email TEXT NOT NULL UNIQUE, "
    "created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP, "
    "updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP)"
)


@dataclass
class Person:
    id: Optional[int] = None
    name: str = ""
    email: str = ""
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


SPEC = TableSpec(
    name="people",
    all_columns=("id", "name", "email", "created_at", "updated_at"),
    with_default=("id", "created_at", "updated_at"),
    without_default=("name", "email"),
    primary_key=("id",),
    record_type=Person,
    created_at="created_at",
    updated_at="updated_at",
)


@pytest.fixture
def conn():
    engine = create_engine("sqlite://")
    with engine.connect() as connection:
        connection.execute(text(DDL))
        yield connection
    engine.dispose()


@pytest.fixture
def store():
    return Store(SPEC, clock=lambda: FIXED)


def _rows(conn):
    return conn.execute(
        text("SELECT id, name, email FROM people ORDER BY id")
    ).all()


def test_insert_reads_back_id_and_sets_timestamps(conn, store):
    person = Person(name="Ann", email="ann@example.com")
    store.insert(conn, person, infer())
    assert person.created_at == FIXED
    assert person.updated_at == FIXED
    assert _rows(conn) == [(person.id, "Ann", "ann@example.com")]


def test_inserts_get_distinct_ids(conn, store):
    first = Person(name="Ann", email="ann@example.com")
    second = Person(name="Bob", email="bob@example.com")
    store.insert(conn, first, infer())
    store.insert(conn, second, infer())
    assert first.id != second.id
    assert [row[0] for row in _rows(conn)] == sorted([first.id, second.id])


def test_insert_none_raises(conn, store):
    with pytest.raises(RecordError):
        store.insert(conn, None, infer())


def test_insert_unknown_column_raises(conn, store):
    person = Person(name="Ann", email="ann@example.com")
    with pytest.raises(RecordError):
        store.insert(conn, person, whitelist("name", "nickname"))
    assert _rows(conn) == []


def test_insert_database_error_is_wrapped(conn, store):
    store.insert(conn, Person(name="Ann", email="ann@example.com"), infer())
    with pytest.raises(RecordError) as info:
        store.insert(conn, Person(name="Other", email="ann@example.com"), infer())
    assert isinstance(info.value.__cause__, SQLAlchemyError)


def test_skip_timestamps_reads_database_defaults(conn):
    store = Store(SPEC, skip_timestamps=True)
    person = Person(name="Ann", email="ann@example.com")
    store.insert(conn, person, infer())
    stored = conn.execute(
        text("SELECT created_at, updated_at FROM people WHERE id = :id"),
        {"id": person.id},
    ).one()
    assert (person.created_at, person.updated_at) == tuple(stored)


def test_insert_hooks_run_in_order(conn, store):
    events = []
    store.add_hook(HookPoint.BEFORE_INSERT, lambda c, r: events.append(("before", r.id)))
    store.add_hook(HookPoint.AFTER_INSERT, lambda c, r: events.append(("after", r.id)))
    person = Person(name="Ann", email="ann@example.com")
    store.insert(conn, person, infer())
    assert events == [("before", None), ("after", person.id)]


def test_failing_before_hook_stops_insert(conn, store):
    def refuse(connection, record):
        raise ValueError("refused")

    store.add_hook(HookPoint.BEFORE_INSERT, refuse)
    with pytest.raises(ValueError):
        store.insert(conn, Person(name="Ann", email="ann@example.com"), infer())
    assert _rows(conn) == []


def test_skip_hooks_does_not_run_hooks(conn):
    store = Store(SPEC, skip_hooks=True, clock=lambda: FIXED)
    calls = []
    store.add_hook(HookPoint.BEFORE_INSERT, lambda c, r: calls.append(r))
    store.insert(conn, Person(name="Ann", email="ann@example.com"), infer())
    assert calls == []
    assert len(_rows(conn)) == 1


def test_run_hooks_passes_connection_and_record(conn, store):
    seen = []
    store.add_hook(HookPoint.AFTER_SELECT, lambda c, r: seen.append((c, r)))
    person = Person(name="Ann")
    store.run_hooks(HookPoint.AFTER_SELECT, conn, person)
    assert seen == [(conn, person)]
    assert store.has_hooks(HookPoint.AFTER_SELECT)
    assert not store.has_hooks(HookPoint.AFTER_DELETE)


def test_update_changes_row_and_timestamp(conn):
    inserting = Store(SPEC, clock=lambda: "earlier")
    person = Person(name="Ann", email="ann@example.com")
    inserting.insert(conn, person, infer())
    updating = Store(SPEC, clock=lambda: FIXED)
    person.name = "Anna"
    assert updating.update(conn, person, infer()) == 1
    assert person.updated_at == FIXED
    assert _rows(conn) == [(person.id, "Anna", "ann@example.com")]
    created = conn.execute(text("SELECT created_at FROM people")).scalar_one()
    assert created == "earlier"


def test_update_whitelist_only_touches_listed_columns(conn, store):
    person = Person(name="Ann", email="ann@example.com")
    store.insert(conn, person, infer())
    person.name = "Anna"
    person.email = "anna@example.com"
    store.update(conn, person, whitelist("name"))
    assert _rows(conn) == [(person.id, "Anna", "ann@example.com")]


def test_update_empty_whitelist_raises(conn, store):
    person = Person(id=1, name="Ann", email="ann@example.com")
    with pytest.raises(RecordError, match="could not build whitelist"):
        store.update(conn, person, whitelist())


def test_update_missing_row_affects_nothing(conn, store):
    person = Person(id=42, name="Ghost", email="ghost@example.com")
    assert store.update(conn, person, infer()) == 0


def test_update_hooks_run(conn, store):
    person = Person(name="Ann", email="ann@example.com")
    store.insert(conn, person, infer())
    events = []
    store.add_hook(HookPoint.BEFORE_UPDATE, lambda c, r: events.append("before"))
    store.add_hook(HookPoint.AFTER_UPDATE, lambda c, r: events.append("after"))
    store.update(conn, person, infer())
    assert events == ["before", "after"]


def test_upsert_inserts_new_row(conn, store):
    person = Person(name="Ann", email="ann@example.com")
    store.upsert(conn, person, True, ["email"], whitelist("name"), infer())
    assert _rows(conn) == [(person.id, "Ann", "ann@example.com")]


def test_upsert_updates_on_conflict(conn, store):
    original = Person(name="Ann", email="ann@example.com")
    store.insert(conn, original, infer())
    replacement = Person(name="Anna", email="ann@example.com")
    store.upsert(conn, replacement, True, ["email"], whitelist("name"), infer())
    assert replacement.id == original.id
    assert _rows(conn) == [(original.id, "Anna", "ann@example.com")]


def test_upsert_do_nothing_leaves_row(conn, store):
    original = Person(name="Ann", email="ann@example.com")
    store.insert(conn, original, infer())
    duplicate = Person(name="Other", email="ann@example.com")
    store.upsert(conn, duplicate, False, ["email"], infer(), infer())
    assert duplicate.id is None
    assert _rows(conn) == [(original.id, "Ann", "ann@example.com")]


def test_upsert_without_update_columns_raises(conn, store):
    person = Person(name="Ann", email="ann@example.com")
    with pytest.raises(RecordError, match="could not build update column list"):
        store.upsert(conn, person, True, [], whitelist(), infer())


def test_upsert_none_raises(conn, store):
    with pytest.raises(RecordError):
        store.upsert(conn, None, True, [], infer(), infer())


def test_upsert_conflict_target_option(conn, store):
    original = Person(name="Ann", email="ann@example.com")
    store.insert(conn, original, infer())
    replacement = Person(name="Anna", email="ann@example.com")
    store.upsert(
        conn,
        replacement,
        True,
        [],
        whitelist("name"),
        infer(),
        UpsertOptions(conflict_target='("email")'),
    )
    assert _rows(conn) == [(original.id, "Anna", "ann@example.com")]


def test_upsert_hooks_run(conn, store):
    events = []
    store.add_hook(HookPoint.BEFORE_UPSERT, lambda c, r: events.append("before"))
    store.add_hook(HookPoint.AFTER_UPSERT, lambda c, r: events.append("after"))
    store.upsert(conn, Person(name="Ann", email="ann@example.com"), True, ["email"],
                 whitelist("name"), infer())
    assert events == ["before", "after"]


def test_debug_writer_receives_statement(conn):
    out = io.StringIO()
    store = Store(SPEC, debug=out, clock=lambda: FIXED)
    store.insert(conn, Person(name="Ann", email="ann@example.com"), infer())
    lines = out.getvalue().splitlines()
    assert lines[0].startswith('INSERT INTO "people"')
    assert lines[0].endswith('RETURNING "id"')
    assert "ann@example.com" in lines[1]


def test_cached_statement_is_reused(conn):
    out = io.StringIO()
    store = Store(SPEC, debug=out, clock=lambda: FIXED)
    store.insert(conn, Person(name="Ann", email="ann@example.com"), infer())
    store.insert(conn, Person(name="Bob", email="bob@example.com"), infer())
    lines = out.getvalue().splitlines()
    assert lines[0] == lines[2]
    assert len(_rows(conn)) == 2


def test_check_columns_rejects_unknown():
    with pytest.raises(RecordError, match="nickname"):
        SPEC.check_columns(["name", "nickname"])
    assert SPEC.quoted_name == '"people"'