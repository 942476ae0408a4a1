from __future__ import annotations

import json
from dataclasses import dataclass, asdict, field
from enum import Enum
from typing import Any, Dict, Optional


class ExitCode(int, Enum):
    OK = 0
    CONFIG_INVALID = 10
    PARSE_ERROR = 20
    VALIDATION_ERROR = 30
    SQL_ERROR = 40
    RUNTIME_ERROR = 50
    INTERNAL_ERROR = 60


@dataclass(frozen=True)
class Problem:
    code: str                 # stable machine code, e.g. "ASYNQL_PARSE_ERROR"
    category: str             # "config" | "parse" | "validation" | "sql" | "runtime"
    message: str              # short human message
    details: Dict[str, Any] = field(default_factory=dict)
    remediation: Optional[str] = None


def problem_to_dict(p: Problem) -> Dict[str, Any]:
    d = asdict(p)
    if d.get("remediation") is None:
        d.pop("remediation", None)
    return d


class AsynqlError(Exception):
    """Base exception for asynql. Every subclass carries a structured Problem."""

    code = "ASYNQL_ERROR"
    category = "internal"
    exit_code = ExitCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        *,
        details: Optional[Dict[str, Any]] = None,
        remediation: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.problem = Problem(
            code=self.code,
            category=self.category,
            message=message,
            details=dict(details or {}),
            remediation=remediation,
        )


class ConfigError(AsynqlError):
    code = "ASYNQL_CONFIG_INVALID"
    category = "config"
    exit_code = ExitCode.CONFIG_INVALID


class ParseError(AsynqlError):
    code = "ASYNQL_PARSE_ERROR"
    category = "parse"
    exit_code = ExitCode.PARSE_ERROR

    def __init__(self, message: str, *, line: Optional[int] = None, source: Optional[str] = None) -> None:
        where = ""
        if source is not None:
            where = f" in {source}"
        if line is not None:
            where += f" on line {line}"
        super().__init__(
            message + where,
            details={"line": line, "source": source},
            remediation="Fix the statement file and reload it.",
        )
        self.line = line
        self.source = source


class ValidationError(AsynqlError):
    code = "ASYNQL_VALIDATION_ERROR"
    category = "validation"
    exit_code = ExitCode.VALIDATION_ERROR


class SqlStage(str, Enum):
    PREPARE = "PREPARE"
    BIND = "BIND"
    EXECUTE = "EXECUTE"


class SqlError(AsynqlError):
    """
    A driver-side failure while running a job.

    Holds the query text and the bound params so the failing call can be
    reproduced without the live connection.
    """

    code = "ASYNQL_SQL_ERROR"
    category = "sql"
    exit_code = ExitCode.SQL_ERROR

    def __init__(self, stage: SqlStage, message: str, query: str, params: Optional[Dict[str, Any]] = None) -> None:
        self.stage = SqlStage(stage)
        self.error_message = message
        self.query = query
        self.params = dict(params or {})
        params_json = json.dumps(self.params, sort_keys=True, ensure_ascii=False, default=str)
        super().__init__(
            f"SQL {self.stage.value} error: {message}, for query {query} | {params_json}",
            details={"stage": self.stage.value, "query": query, "params": self.params},
        )


class ConnectorClosedError(AsynqlError):
    code = "ASYNQL_CONNECTOR_CLOSED"
    category = "runtime"
    exit_code = ExitCode.RUNTIME_ERROR


class WorkerStartupError(AsynqlError):
    code = "ASYNQL_WORKER_STARTUP"
    category = "runtime"
    exit_code = ExitCode.RUNTIME_ERROR


class ConnectionLostError(AsynqlError):
    """Raised by driver adapters when the connection can no longer be used."""

    code = "ASYNQL_CONNECTION_LOST"
    category = "runtime"
    exit_code = ExitCode.RUNTIME_ERROR
