"""Writing table rows: hooks, inserts, updates and upserts with statement caches."""

from __future__ import annotations

import enum
import re
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Sequence, TextIO

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from userdemo.sqlgen import (
    Columns,
    UpsertOptions,
    build_upsert_query_postgres,
    ident_quote,
    make_cache_key,
    placeholders,
    set_complement,
    set_intersect,
)

Hook = Callable[[Any, Any], None]

_PLACEHOLDER = re.compile(r"\$(\d+)")
_CREATED_AT = "created_at"


class HookPoint(enum.Enum):
    """Moments in a record's life at which hooks run."""

    AFTER_SELECT = "after_select"
    BEFORE_INSERT = "before_insert"
    AFTER_INSERT = "after_insert"
    BEFORE_UPDATE = "before_update"
    AFTER_UPDATE = "after_update"
    BEFORE_DELETE = "before_delete"
    AFTER_DELETE = "after_delete"
    BEFORE_UPSERT = "before_upsert"
    AFTER_UPSERT = "after_upsert"


class RecordError(Exception):
    """A record could not be read or written."""


class RecordNotFound(RecordError, LookupError):
    """No row matched the query."""


@dataclass(frozen=True)
class TableSpec:
    """The shape of a table: its columns, defaults, key and timestamp columns."""

    name: str
    all_columns: tuple[str, ...]
    with_default: tuple[str, ...] = ()
    without_default: tuple[str, ...] = ()
    primary_key: tuple[str, ...] = ()
    record_type: type | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def quoted_name(self) -> str:
        return ident_quote(self.name)

    def check_columns(self, columns: Iterable[str]) -> None:
        """Raise RecordError if any column does not belong to the table."""
        known = set(self.all_columns)
        for column in columns:
            if column not in known:
                raise RecordError(f"unknown column {column!r} for table {self.name}")


@dataclass(frozen=True)
class _InsertCache:
    query: str
    value_columns: tuple[str, ...]
    return_columns: tuple[str, ...]


@dataclass(frozen=True)
class _UpdateCache:
    query: str
    value_columns: tuple[str, ...]


def _is_zero(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (bool, int, float, complex, str, bytes)):
        return not value
    return False


def _statement(sql: str, values: Sequence[Any]) -> tuple[Any, dict[str, Any]]:
    params = {f"p{position}": value for position, value in enumerate(values, start=1)}
    return text(_PLACEHOLDER.sub(r":p\1", sql)), params


def _set_param_names(columns: Sequence[str], start: int) -> str:
    return ",".join(
        f"{ident_quote(column)}=${position}"
        for position, column in enumerate(columns, start=start)
    )


def _where_clause(columns: Sequence[str], start: int) -> str:
    return " AND ".join(
        f"{ident_quote(column)}=${position}"
        for position, column in enumerate(columns, start=start)
    )


class Store:
    """Writes records of one table and runs the hooks registered for it."""

    def __init__(
        self,
        spec: TableSpec,
        *,
        skip_hooks: bool = False,
        skip_timestamps: bool = False,
        debug: TextIO | None = None,
        clock: Callable[[], Any] | None = None,
    ) -> None:
        self.spec = spec
        self.skip_hooks = skip_hooks
        self.skip_timestamps = skip_timestamps
        self.debug = debug
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._hooks: dict[HookPoint, list[Hook]] = {point: [] for point in HookPoint}
        self._hook_lock = threading.Lock()
        self._cache_lock = threading.RLock()
        self._insert_cache: dict[str, _InsertCache] = {}
        self._update_cache: dict[str, _UpdateCache] = {}
        self._upsert_cache: dict[str, _InsertCache] = {}

    # hooks

    def add_hook(self, point: HookPoint, hook: Hook) -> None:
        """Register ``hook(conn, record)`` to run at ``point``."""
        with self._hook_lock:
            self._hooks[HookPoint(point)].append(hook)

    def has_hooks(self, point: HookPoint) -> bool:
        return bool(self._hooks[point])

    def run_hooks(self, point: HookPoint, conn: Any, record: Any) -> None:
        """Run the hooks for ``point`` in order; the first failure propagates."""
        if self.skip_hooks:
            return
        with self._hook_lock:
            hooks = list(self._hooks[point])
        for hook in hooks:
            hook(conn, record)

    # helpers

    def _log(self, sql: str, values: Sequence[Any]) -> None:
        if self.debug is not None:
            print(sql, file=self.debug)
            print(list(values), file=self.debug)

    def _values(self, record: Any, columns: Iterable[str]) -> list[Any]:
        return [getattr(record, column) for column in columns]

    def _non_zero_defaults(self, record: Any) -> list[str]:
        return [
            column
            for column in self.spec.with_default
            if not _is_zero(getattr(record, column, None))
        ]

    def _fetch_one(self, conn: Any, sql: str, values: Sequence[Any], failure: str):
        statement, params = _statement(sql, values)
        try:
            return conn.execute(statement, params).first()
        except SQLAlchemyError as exc:
            raise RecordError(failure) from exc

    def _execute(self, conn: Any, sql: str, values: Sequence[Any], failure: str) -> int:
        statement, params = _statement(sql, values)
        try:
            return conn.execute(statement, params).rowcount
        except SQLAlchemyError as exc:
            raise RecordError(failure) from exc

    @staticmethod
    def _assign(record: Any, columns: Sequence[str], row: Sequence[Any]) -> None:
        for column, value in zip(columns, row):
            setattr(record, column, value)

    # writes

    def insert(self, conn: Any, record: Any, columns: Columns) -> None:
        """Insert ``record`` and read back the columns the database filled in."""
        spec = self.spec
        if record is None:
            raise RecordError(f"no {spec.name} provided for insertion")

        if not self.skip_timestamps:
            now = self._clock()
            if spec.created_at and _is_zero(getattr(record, spec.created_at)):
                setattr(record, spec.created_at, now)
            if spec.updated_at and _is_zero(getattr(record, spec.updated_at)):
                setattr(record, spec.updated_at, now)

        self.run_hooks(HookPoint.BEFORE_INSERT, conn, record)

        non_zero = self._non_zero_defaults(record)
        key = make_cache_key(columns, non_zero)
        with self._cache_lock:
            cache = self._insert_cache.get(key)
        cached = cache is not None

        if cache is None:
            insert_cols, return_cols = columns.insert_column_set(
                spec.all_columns, spec.with_default, spec.without_default, non_zero
            )
            spec.check_columns(insert_cols)
            spec.check_columns(return_cols)
            if insert_cols:
                names = '","'.join(insert_cols)
                query = (
                    f'INSERT INTO {spec.quoted_name} ("{names}") '
                    f"VALUES ({placeholders(len(insert_cols), 1)})"
                )
            else:
                query = f"INSERT INTO {spec.quoted_name} DEFAULT VALUES"
            if return_cols:
                query += ' RETURNING "' + '","'.join(return_cols) + '"'
            cache = _InsertCache(query, tuple(insert_cols), tuple(return_cols))

        values = self._values(record, cache.value_columns)
        self._log(cache.query, values)
        failure = f"unable to insert into {spec.name}"
        if cache.return_columns:
            row = self._fetch_one(conn, cache.query, values, failure)
            if row is None:
                raise RecordError(failure)
            self._assign(record, cache.return_columns, row)
        else:
            self._execute(conn, cache.query, values, failure)

        if not cached:
            with self._cache_lock:
                self._insert_cache[key] = cache

        self.run_hooks(HookPoint.AFTER_INSERT, conn, record)

    def update(self, conn: Any, record: Any, columns: Columns) -> int:
        """Update the row of ``record`` by primary key; return rows affected."""
        spec = self.spec
        if not self.skip_timestamps and spec.updated_at:
            setattr(record, spec.updated_at, self._clock())

        self.run_hooks(HookPoint.BEFORE_UPDATE, conn, record)

        key = make_cache_key(columns, None)
        with self._cache_lock:
            cache = self._update_cache.get(key)
        cached = cache is not None

        if cache is None:
            set_cols = columns.update_column_set(spec.all_columns, spec.primary_key)
            if not columns.is_whitelist():
                set_cols = set_complement(set_cols, [_CREATED_AT])
            if not set_cols:
                raise RecordError(
                    f"unable to update {spec.name}, could not build whitelist"
                )
            spec.check_columns(set_cols)
            query = (
                f"UPDATE {spec.quoted_name} SET {_set_param_names(set_cols, 1)} "
                f"WHERE {_where_clause(spec.primary_key, len(set_cols) + 1)}"
            )
            cache = _UpdateCache(query, (*set_cols, *spec.primary_key))

        values = self._values(record, cache.value_columns)
        self._log(cache.query, values)
        affected = self._execute(
            conn, cache.query, values, f"unable to update {spec.name} row"
        )

        if not cached:
            with self._cache_lock:
                self._update_cache[key] = cache

        self.run_hooks(HookPoint.AFTER_UPDATE, conn, record)
        return affected

    def upsert(
        self,
        conn: Any,
        record: Any,
        update_on_conflict: bool,
        conflict_columns: Sequence[str],
        update_columns: Columns,
        insert_columns: Columns,
        options: UpsertOptions | None = None,
    ) -> None:
        """Insert ``record``, updating or ignoring the existing row on conflict."""
        spec = self.spec
        if record is None:
            raise RecordError(f"no {spec.name} provided for upsert")

        if not self.skip_timestamps:
            now = self._clock()
            if spec.created_at and _is_zero(getattr(record, spec.created_at)):
                setattr(record, spec.created_at, now)
            if spec.updated_at:
                setattr(record, spec.updated_at, now)

        self.run_hooks(HookPoint.BEFORE_UPSERT, conn, record)

        non_zero = self._non_zero_defaults(record)
        key = ".".join(
            [
                "t" if update_on_conflict else "f",
                "".join(conflict_columns),
                str(int(update_columns.kind)) + "".join(update_columns.cols),
                str(int(insert_columns.kind)) + "".join(insert_columns.cols),
                "".join(non_zero),
            ]
        )
        with self._cache_lock:
            cache = self._upsert_cache.get(key)
        cached = cache is not None

        if cache is None:
            insert, _ = insert_columns.insert_column_set(
                spec.all_columns, spec.with_default, spec.without_default, non_zero
            )
            update = update_columns.update_column_set(spec.all_columns, spec.primary_key)
            if update_on_conflict and not update:
                raise RecordError(
                    f"unable to upsert {spec.name}, could not build update column list"
                )
            ret = set_complement(spec.all_columns, set_intersect(insert, update))

            conflict = list(conflict_columns)
            if not conflict and update_on_conflict and update:
                if not spec.primary_key:
                    raise RecordError(
                        f"unable to upsert {spec.name}, "
                        "could not build conflict column list"
                    )
                conflict = list(spec.primary_key)

            query = build_upsert_query_postgres(
                spec.quoted_name,
                update_on_conflict,
                ret,
                update,
                conflict,
                insert,
                options,
            )
            spec.check_columns(insert)
            spec.check_columns(ret)
            cache = _InsertCache(query, tuple(insert), tuple(ret))

        values = self._values(record, cache.value_columns)
        self._log(cache.query, values)
        failure = f"unable to upsert {spec.name}"
        if cache.return_columns:
            row = self._fetch_one(conn, cache.query, values, failure)
            # Nothing comes back when the conflicting row was left alone.
            if row is not None:
                self._assign(record, cache.return_columns, row)
        else:
            self._execute(conn, cache.query, values, failure)

        if not cached:
            with self._cache_lock:
                self._upsert_cache[key] = cache

        self.run_hooks(HookPoint.AFTER_UPSERT, conn, record)