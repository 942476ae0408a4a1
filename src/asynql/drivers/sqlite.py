"""
SQLite connection adapter over the stdlib sqlite3 module.

The connection runs in autocommit mode and binds `:name` parameters natively.
It is opened, used and closed on its worker thread only, so sqlite3's
same-thread check stays on.
sqlite3 has no separate prepare step, so syntax errors surface at execute.
"""

from __future__ import annotations

import sqlite3
from functools import partial
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..errors import ConnectionLostError
from ..result import ColumnInfo, ColumnType
from ..types import Dialect
from .base import ConnectionFactory
from .registry import register

_BINDABLE = (type(None), bool, int, float, str, bytes)


def column_type_of(value: Any) -> ColumnType:
    if value is None:
        return ColumnType.NULL
    if isinstance(value, bool):
        return ColumnType.BOOL
    if isinstance(value, int):
        return ColumnType.INT
    if isinstance(value, float):
        return ColumnType.FLOAT
    return ColumnType.STRING


class SqliteStatement:
    __slots__ = ("text", "params", "cursor")

    def __init__(self, text: str) -> None:
        self.text = text
        self.params: Dict[str, Any] = {}
        self.cursor: Optional[sqlite3.Cursor] = None


class SqliteResult:
    """Cursor wrapper that can look at the first row without consuming it."""

    def __init__(self, cursor: sqlite3.Cursor) -> None:
        self.cursor = cursor
        self.names = [d[0] for d in (cursor.description or ())]
        self._peeked: Optional[tuple] = None
        self._has_peeked = False

    def peek(self) -> Optional[tuple]:
        if not self._has_peeked:
            self._peeked = self.cursor.fetchone()
            self._has_peeked = True
        return self._peeked

    def next(self) -> Optional[tuple]:
        if self._has_peeked:
            self._has_peeked = False
            return self._peeked
        return self.cursor.fetchone()


class SqliteConnection:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._changes = 0
        self._last_insert_id = 0

    @classmethod
    def open(cls, path: Union[str, Path]) -> "SqliteConnection":
        if str(path) != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(path), isolation_level=None)
        return cls(conn)

    def prepare(self, text: str) -> SqliteStatement:
        if not text.strip():
            raise ValueError("empty query")
        return SqliteStatement(text)

    def bind(self, stmt: SqliteStatement, name: str, value: Any) -> None:
        if not isinstance(value, _BINDABLE):
            raise TypeError(f"cannot bind value of type {type(value).__name__}")
        stmt.params[name] = value

    def execute(self, stmt: SqliteStatement) -> SqliteResult:
        try:
            cursor = self._conn.cursor()
            stmt.cursor = cursor
            cursor.execute(stmt.text, stmt.params)
        except sqlite3.ProgrammingError as e:
            if "closed" in str(e).lower():
                raise ConnectionLostError(str(e)) from e
            raise
        self._changes = max(cursor.rowcount, 0)
        self._last_insert_id = cursor.lastrowid or 0
        return SqliteResult(cursor)

    def column_info(self, result: SqliteResult) -> List[ColumnInfo]:
        # sqlite3 reports value types, not declared types: use the first row
        first = result.peek()
        if first is None:
            return [ColumnInfo(name, ColumnType.NULL) for name in result.names]
        return [ColumnInfo(name, column_type_of(v)) for name, v in zip(result.names, first)]

    def fetch_row(self, result: SqliteResult) -> Optional[Dict[str, Any]]:
        row = result.next()
        if row is None:
            return None
        return dict(zip(result.names, row))

    def changes(self) -> int:
        return self._changes

    def last_insert_id(self) -> int:
        return self._last_insert_id

    def finalize(self, stmt: SqliteStatement) -> None:
        if stmt.cursor is not None:
            stmt.cursor.close()
            stmt.cursor = None

    def close(self) -> None:
        self._conn.close()


def build_factory(config: Any) -> ConnectionFactory:
    return partial(SqliteConnection.open, config.sqlite.file)


register(Dialect.SQLITE, build_factory)
