"""Reading and removing table rows: lookups, counts, deletes and reloads."""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any, Mapping, MutableSequence, Sequence

from sqlalchemy.exc import SQLAlchemyError

from userdemo.records import (
    HookPoint,
    RecordError,
    RecordNotFound,
    Store,
    TableSpec,
    _set_param_names,
    _statement,
    _where_clause,
)
from userdemo.sqlgen import ident_quote_all


def _where_repeated(columns: Sequence[str], start: int, count: int) -> str:
    width = len(columns)
    clauses = [_where_clause(columns, start + offset * width) for offset in range(count)]
    return "(" + ") OR (".join(clauses) + ")"


class Table:
    """Queries over one table, sharing hooks and debug output with its Store."""

    def __init__(self, spec: TableSpec, store: Store | None = None) -> None:
        self.spec = spec
        self.store = store if store is not None else Store(spec)

    # helpers

    def _log(self, sql: str, values: Sequence[Any]) -> None:
        debug = self.store.debug
        if debug is not None:
            print(sql, file=debug)
            print(list(values), file=debug)

    def _run(self, conn: Any, sql: str, values: Sequence[Any], failure: str) -> Any:
        self._log(sql, values)
        statement, params = _statement(sql, values)
        try:
            return conn.execute(statement, params)
        except SQLAlchemyError as exc:
            raise RecordError(f"{failure}: {exc}") from exc

    def _primary_key(self) -> tuple[str, ...]:
        if not self.spec.primary_key:
            raise RecordError(f"table {self.spec.name} has no primary key")
        return self.spec.primary_key

    def _key_values(self, key: Any) -> list[Any]:
        primary_key = self._primary_key()
        if len(primary_key) == 1:
            return [key]
        values = list(key)
        if len(values) != len(primary_key):
            raise RecordError(
                f"table {self.spec.name} needs {len(primary_key)} key values"
            )
        return values

    def _record_key(self, record: Any) -> list[Any]:
        return [getattr(record, column) for column in self._primary_key()]

    def _build(self, row: Any) -> Any:
        mapping = dict(row._mapping)
        record_type = self.spec.record_type
        if record_type is None:
            return SimpleNamespace(**mapping)
        try:
            record = record_type()
        except TypeError:
            return record_type(**mapping)
        for column, value in mapping.items():
            setattr(record, column, value)
        return record

    # reads

    def find(self, conn: Any, key: Any, *args: str) -> Any:
        """Fetch one record by primary key; ``args`` narrows the selected columns."""
        spec = self.spec
        self.spec.check_columns(args)
        selected = ",".join(ident_quote_all(args)) if args else "*"
        sql = (
            f"select {selected} from {spec.quoted_name} "
            f"where {_where_clause(self._primary_key(), 1)}"
        )
        result = self._run(
            conn, sql, self._key_values(key), f"unable to select from {spec.name}"
        )
        row = result.first()
        if row is None:
            raise RecordNotFound(f"no {spec.name} row matches {key!r}")
        record = self._build(row)
        self.store.run_hooks(HookPoint.AFTER_SELECT, conn, record)
        return record

    def exists(self, conn: Any, key: Any) -> bool:
        """Whether a row with this primary key exists."""
        spec = self.spec
        sql = (
            f"select exists(select 1 from {spec.quoted_name} "
            f"where {_where_clause(self._primary_key(), 1)} limit 1)"
        )
        result = self._run(
            conn, sql, self._key_values(key), f"unable to check if {spec.name} exists"
        )
        return bool(result.scalar())

    def all(self, conn: Any) -> list[Any]:
        """Every record in the table."""
        spec = self.spec
        sql = f"SELECT {spec.quoted_name}.* FROM {spec.quoted_name}"
        result = self._run(
            conn, sql, (), f"failed to assign all query results to {spec.name} list"
        )
        records = [self._build(row) for row in result]
        if self.store.has_hooks(HookPoint.AFTER_SELECT):
            for record in records:
                self.store.run_hooks(HookPoint.AFTER_SELECT, conn, record)
        return records

    def count(self, conn: Any) -> int:
        """Number of rows in the table."""
        spec = self.spec
        sql = f"SELECT COUNT(*) FROM {spec.quoted_name}"
        result = self._run(conn, sql, (), f"failed to count {spec.name} rows")
        return int(result.scalar())

    # deletes

    def delete(self, conn: Any, record: Any) -> int:
        """Delete the row of ``record`` by primary key; return rows affected."""
        spec = self.spec
        if record is None:
            raise RecordError(f"no {spec.name} provided for delete")
        self.store.run_hooks(HookPoint.BEFORE_DELETE, conn, record)
        sql = (
            f"DELETE FROM {spec.quoted_name} "
            f"WHERE {_where_clause(self._primary_key(), 1)}"
        )
        affected = self._run(
            conn, sql, self._record_key(record), f"unable to delete from {spec.name}"
        ).rowcount
        self.store.run_hooks(HookPoint.AFTER_DELETE, conn, record)
        return affected

    def delete_all(self, conn: Any, records: Sequence[Any] | None) -> int:
        """Delete the rows of ``records``, or every row when ``records`` is None."""
        spec = self.spec
        failure = f"unable to delete all from {spec.name}"
        if records is None:
            return self._run(conn, f"DELETE FROM {spec.quoted_name}", (), failure).rowcount
        if not records:
            return 0
        if self.store.has_hooks(HookPoint.BEFORE_DELETE):
            for record in records:
                self.store.run_hooks(HookPoint.BEFORE_DELETE, conn, record)
        values = [value for record in records for value in self._record_key(record)]
        sql = f"DELETE FROM {spec.quoted_name} WHERE " + _where_repeated(
            self._primary_key(), 1, len(records)
        )
        affected = self._run(conn, sql, values, failure).rowcount
        if self.store.has_hooks(HookPoint.AFTER_DELETE):
            for record in records:
                self.store.run_hooks(HookPoint.AFTER_DELETE, conn, record)
        return affected

    # updates

    def update_all(
        self, conn: Any, records: Sequence[Any] | None, values: Mapping[str, Any]
    ) -> int:
        """Set ``values`` on the rows of ``records``, or on every row when None."""
        spec = self.spec
        if records is not None and not records:
            return 0
        if not values:
            raise RecordError("update all requires at least one column argument")
        names = list(values)
        spec.check_columns(names)
        args = [values[name] for name in names]
        sql = f"UPDATE {spec.quoted_name} SET {_set_param_names(names, 1)}"
        if records is not None:
            for record in records:
                args.extend(self._record_key(record))
            sql += " WHERE " + _where_repeated(
                self._primary_key(), len(names) + 1, len(records)
            )
        return self._run(conn, sql, args, f"unable to update all in {spec.name}").rowcount

    # reloads

    def reload(self, conn: Any, record: Any) -> Any:
        """Refresh ``record`` in place from the database and return it."""
        primary_key = self._primary_key()
        key_values = self._record_key(record)
        key = key_values[0] if len(primary_key) == 1 else tuple(key_values)
        fresh = self.find(conn, key)
        for column in self.spec.all_columns:
            if hasattr(fresh, column):
                setattr(record, column, getattr(fresh, column))
        return record

    def reload_all(self, conn: Any, records: MutableSequence[Any]) -> list[Any]:
        """Refetch the rows of ``records`` and replace the list's contents."""
        if not records:
            return list(records or [])
        spec = self.spec
        values = [value for record in records for value in self._record_key(record)]
        sql = (
            f"SELECT {spec.quoted_name}.* FROM {spec.quoted_name} WHERE "
            + _where_repeated(self._primary_key(), 1, len(records))
        )
        result = self._run(conn, sql, values, f"unable to reload all in {spec.name}")
        fresh = [self._build(row) for row in result]
        records[:] = fresh
        return fresh