"""
Result shapes delivered to success callbacks.

One class per query mode. Instances are plain frozen dataclasses so they can
cross the worker/host thread boundary without referencing the connection.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Tuple


class ColumnType(str, Enum):
    BOOL = "bool"
    INT = "int"
    FLOAT = "float"
    STRING = "string"
    NULL = "null"
    TIMESTAMP = "timestamp"


@dataclass(frozen=True)
class ColumnInfo:
    name: str
    type: ColumnType


@dataclass(frozen=True)
class SqlResult:
    """Result of a GENERIC query: the statement ran, nothing else is reported."""


@dataclass(frozen=True)
class SqlChangeResult(SqlResult):
    affected_rows: int = 0


@dataclass(frozen=True)
class SqlInsertResult(SqlChangeResult):
    insert_id: int = 0


@dataclass(frozen=True)
class SqlSelectResult(SqlResult):
    columns: Tuple[ColumnInfo, ...] = ()
    rows: List[Dict[str, Any]] = field(default_factory=list)
