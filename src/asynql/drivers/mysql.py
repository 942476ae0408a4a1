"""
MySQL connection adapter over PyMySQL.

PyMySQL speaks `%(name)s` placeholders, so `:name` tokens that are actually
bound are rewritten at execute time and literal `%` signs are doubled.
"""

from __future__ import annotations

import re
from contextlib import contextmanager
from typing import Any, Collection, Dict, Iterator, List, Optional

import pymysql
from pymysql.constants import FIELD_TYPE
from pymysql.cursors import DictCursor

from ..errors import ConnectionLostError
from ..result import ColumnInfo, ColumnType
from ..types import PLACEHOLDER_RE, Dialect
from .base import ConnectionFactory
from .registry import register

# CR_SERVER_GONE_ERROR, CR_SERVER_LOST, CR_SERVER_LOST_EXTENDED
LOST_CONNECTION_CODES = frozenset({2006, 2013, 2055})

_INT_TYPES = frozenset({
    FIELD_TYPE.TINY, FIELD_TYPE.SHORT, FIELD_TYPE.LONG, FIELD_TYPE.LONGLONG,
    FIELD_TYPE.INT24, FIELD_TYPE.YEAR,
})
_FLOAT_TYPES = frozenset({FIELD_TYPE.FLOAT, FIELD_TYPE.DOUBLE, FIELD_TYPE.DECIMAL, FIELD_TYPE.NEWDECIMAL})
_TIME_TYPES = frozenset({
    FIELD_TYPE.TIMESTAMP, FIELD_TYPE.DATETIME, FIELD_TYPE.DATE,
    FIELD_TYPE.TIME, FIELD_TYPE.NEWDATE,
})


def column_type_for(type_code: int) -> ColumnType:
    if type_code == FIELD_TYPE.NULL:
        return ColumnType.NULL
    if type_code in _INT_TYPES:
        return ColumnType.INT
    if type_code in _FLOAT_TYPES:
        return ColumnType.FLOAT
    if type_code in _TIME_TYPES:
        return ColumnType.TIMESTAMP
    return ColumnType.STRING


def to_pyformat(text: str, names: Collection[str]) -> str:
    """
    Rewrite `:name` placeholders for the given names into `%(name)s`.

    Without params PyMySQL does no %-interpolation, so the text is returned
    untouched in that case.
    """
    if not names:
        return text
    escaped = text.replace("%", "%%")

    def _sub(m: "re.Match[str]") -> str:
        name = m.group(1)
        return f"%({name})s" if name in names else m.group(0)

    return PLACEHOLDER_RE.sub(_sub, escaped)


@contextmanager
def _translate_errors() -> Iterator[None]:
    try:
        yield
    except (pymysql.err.OperationalError, pymysql.err.InterfaceError) as e:
        code = e.args[0] if e.args else None
        if isinstance(e, pymysql.err.InterfaceError) or code in LOST_CONNECTION_CODES:
            raise ConnectionLostError(str(e)) from e
        raise


class MysqlStatement:
    __slots__ = ("text", "params", "cursor")

    def __init__(self, text: str, cursor: DictCursor) -> None:
        self.text = text
        self.params: Dict[str, Any] = {}
        self.cursor = cursor


class MysqlConnection:
    def __init__(self, conn: "pymysql.connections.Connection") -> None:
        self._conn = conn

    @classmethod
    def open(cls, host: str, port: int, username: str, password: str, schema: str,
             socket: Optional[str] = None) -> "MysqlConnection":
        conn = pymysql.connect(
            host=host,
            port=port,
            user=username,
            password=password,
            database=schema,
            unix_socket=socket or None,
            charset="utf8mb4",
            autocommit=True,
            cursorclass=DictCursor,
        )
        return cls(conn)

    def prepare(self, text: str) -> MysqlStatement:
        if not text.strip():
            raise ValueError("empty query")
        with _translate_errors():
            return MysqlStatement(text, self._conn.cursor())

    def bind(self, stmt: MysqlStatement, name: str, value: Any) -> None:
        stmt.params[name] = value

    def execute(self, stmt: MysqlStatement) -> DictCursor:
        sql = to_pyformat(stmt.text, stmt.params.keys())
        with _translate_errors():
            stmt.cursor.execute(sql, stmt.params or None)
        return stmt.cursor

    def column_info(self, cursor: DictCursor) -> List[ColumnInfo]:
        return [ColumnInfo(d[0], column_type_for(d[1])) for d in (cursor.description or ())]

    def fetch_row(self, cursor: DictCursor) -> Optional[Dict[str, Any]]:
        with _translate_errors():
            return cursor.fetchone()

    def changes(self) -> int:
        return max(self._conn.affected_rows(), 0)

    def last_insert_id(self) -> int:
        return self._conn.insert_id()

    def finalize(self, stmt: MysqlStatement) -> None:
        stmt.cursor.close()

    def close(self) -> None:
        self._conn.close()


def build_factory(config: Any) -> ConnectionFactory:
    m = config.mysql

    def factory() -> MysqlConnection:
        return MysqlConnection.open(m.host, m.port, m.username, m.password, m.schema, m.socket)

    return factory


register(Dialect.MYSQL, build_factory)
