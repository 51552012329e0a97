"""SQL text generation for PostgreSQL: column sets, quoting and upserts."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Iterable, Sequence

QUOTE = '"'
USE_INDEX_PLACEHOLDERS = True


class ColumnsKind(enum.IntEnum):
    """How a column list is interpreted for inserts and updates."""

    NONE = 0
    INFER = 1
    WHITELIST = 2
    GREYLIST = 3
    BLACKLIST = 4


def set_complement(items: Iterable[str], exclude: Iterable[str]) -> list[str]:
    """Items that are not in ``exclude``, in their original order."""
    excluded = set(exclude)
    return [item for item in items if item not in excluded]


def set_intersect(first: Iterable[str], second: Iterable[str]) -> list[str]:
    """Items of ``first`` that also appear in ``second``, in ``first``'s order."""
    wanted = set(second)
    return [item for item in first if item in wanted]


def _set_merge(first: Iterable[str], second: Iterable[str]) -> list[str]:
    merged: list[str] = []
    for item in (*first, *second):
        if item not in merged:
            merged.append(item)
    return merged


@dataclass(frozen=True)
class Columns:
    """A column list together with the rule for applying it."""

    kind: ColumnsKind
    cols: tuple[str, ...] = field(default=())

    def is_whitelist(self) -> bool:
        return self.kind is ColumnsKind.WHITELIST

    def insert_column_set(
        self,
        all_columns: Sequence[str],
        with_default: Sequence[str],
        without_default: Sequence[str],
        non_zero_defaults: Sequence[str],
    ) -> tuple[list[str], list[str]]:
        """Return the columns to insert and the columns to read back."""
        cols = list(self.cols)
        if self.kind is ColumnsKind.INFER:
            insert = sorted([*without_default, *non_zero_defaults])
            return insert, set_complement(with_default, non_zero_defaults)
        if self.kind is ColumnsKind.WHITELIST:
            return cols, set_complement(with_default, cols)
        if self.kind is ColumnsKind.BLACKLIST:
            insert = set_complement(without_default, cols)
            insert = sorted([*insert, *non_zero_defaults])
            insert = set_complement(insert, cols)
            return insert, set_complement(with_default, insert)
        if self.kind is ColumnsKind.GREYLIST:
            insert = sorted(_set_merge(cols, [*without_default, *non_zero_defaults]))
            return insert, set_complement(with_default, insert)
        raise ValueError(f"not a real column list kind: {self.kind!r}")

    def update_column_set(
        self, all_columns: Sequence[str], primary_keys: Sequence[str]
    ) -> list[str]:
        """Return the columns an update should set."""
        cols = list(self.cols)
        if self.kind is ColumnsKind.INFER:
            return set_complement(all_columns, primary_keys)
        if self.kind is ColumnsKind.WHITELIST:
            return cols
        if self.kind is ColumnsKind.BLACKLIST:
            return set_complement(set_complement(all_columns, primary_keys), cols)
        if self.kind is ColumnsKind.GREYLIST:
            return sorted(_set_merge(cols, set_complement(all_columns, primary_keys)))
        raise ValueError(f"not a real column list kind: {self.kind!r}")


def infer() -> Columns:
    """Let the columns be worked out from the table's defaults."""
    return Columns(ColumnsKind.INFER)


def whitelist(*args: str) -> Columns:
    """Use exactly these columns."""
    return Columns(ColumnsKind.WHITELIST, tuple(args))


def blacklist(*args: str) -> Columns:
    """Infer the columns, then drop these."""
    return Columns(ColumnsKind.BLACKLIST, tuple(args))


def greylist(*args: str) -> Columns:
    """Infer the columns, then add these."""
    return Columns(ColumnsKind.GREYLIST, tuple(args))


def ident_quote(name: str) -> str:
    """Quote each dotted part of an identifier unless it is already quoted."""
    if name.lower() == "null" or name == "?":
        return name
    parts = []
    for part in name.split("."):
        if part == "*" or part.startswith(QUOTE) or part.endswith(QUOTE):
            parts.append(part)
        else:
            parts.append(f"{QUOTE}{part}{QUOTE}")
    return ".".join(parts)


def ident_quote_all(names: Iterable[str]) -> list[str]:
    return [ident_quote(name) for name in names]


def placeholders(count: int, start: int = 1) -> str:
    """Comma separated positional placeholders beginning at ``start``."""
    if start == 0:
        raise ValueError("placeholders must start at 1 or later")
    if USE_INDEX_PLACEHOLDERS:
        return ",".join(f"${start + offset}" for offset in range(count))
    return ",".join("?" for _ in range(count))


def make_cache_key(columns: Columns, non_zero_defaults: Sequence[str] | None) -> str:
    """Key under which a statement built for these columns is cached."""
    key = str(int(columns.kind)) + "".join(columns.cols)
    if non_zero_defaults:
        key += "." + "".join(non_zero_defaults)
    return key


@dataclass(frozen=True)
class UpsertOptions:
    """Overrides for the conflict target and the update clause of an upsert."""

    conflict_target: str = ""
    update_set: str = ""


def build_upsert_query_postgres(
    table_name: str,
    update_on_conflict: bool,
    ret: Sequence[str],
    update: Sequence[str],
    conflict: Sequence[str],
    whitelist: Sequence[str],
    options: UpsertOptions | None = None,
) -> str:
    """Build an ``INSERT ... ON CONFLICT`` statement."""
    options = options or UpsertOptions()
    conflict = ident_quote_all(conflict)
    insert_cols = ident_quote_all(whitelist)
    returning = ident_quote_all(ret)

    if insert_cols:
        columns = (
            f"({', '.join(insert_cols)}) VALUES "
            f"({placeholders(len(insert_cols), 1)})"
        )
    else:
        columns = "DEFAULT VALUES"

    query = f"INSERT INTO {table_name} {columns} ON CONFLICT "
    if options.conflict_target:
        query += options.conflict_target
    elif conflict:
        query += f"({', '.join(conflict)})"
    query += " "

    if not update_on_conflict or not update:
        query += "DO NOTHING"
    else:
        query += "DO UPDATE SET "
        if options.update_set:
            query += options.update_set
        else:
            for position, column in enumerate(update):
                if not column:
                    continue
                if position != 0:
                    query += ","
                quoted = ident_quote(column)
                query += f"{quoted} = EXCLUDED.{quoted}"

    if returning:
        query += " RETURNING " + ", ".join(returning)
    return query