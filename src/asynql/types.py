from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

Scalar = Union[None, bool, int, float, str, bytes]

# `:name` tokens; a preceding ':' (as in `::` casts) disqualifies the match
PLACEHOLDER_RE = re.compile(r"(?<!:):([A-Za-z0-9_]+)")
VARIABLE_NAME_RE = re.compile(r"^[A-Za-z0-9_]+$")


class Dialect(str, Enum):
    SQLITE = "sqlite"
    MYSQL = "mysql"


class VariableType(str, Enum):
    STRING = "string"
    INT = "int"
    FLOAT = "float"
    BOOL = "bool"


class QueryMode(str, Enum):
    GENERIC = "generic"
    CHANGE = "change"
    INSERT = "insert"
    SELECT = "select"


@dataclass(frozen=True)
class VariableSpec:
    name: str
    type: VariableType
    optional: bool = False
    default: Any = None  # only meaningful when optional


@dataclass(frozen=True)
class StatementTemplate:
    identifier: str  # dot-joined scope path, e.g. "player.stats.load"
    dialect: Dialect
    raw_text: str
    variables: Tuple[VariableSpec, ...] = ()

    @property
    def placeholders(self) -> Tuple[str, ...]:
        seen: Dict[str, None] = {}
        for m in PLACEHOLDER_RE.finditer(self.raw_text):
            seen.setdefault(m.group(1), None)
        return tuple(seen)

    def variable(self, name: str) -> Optional[VariableSpec]:
        for v in self.variables:
            if v.name == name:
                return v
        return None


@dataclass(frozen=True)
class Job:
    correlation_id: int
    mode: QueryMode
    query: str
    params: Dict[str, Scalar] = field(default_factory=dict)
    statement_id: Optional[str] = None
