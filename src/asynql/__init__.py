"""Non-blocking SQL for single-threaded hosts: worker-thread execution plus a statement file compiler."""

from .compiler import StatementFile, compile_statements, load_statement_file, render_statements
from .config import DatabaseConfig, load_database_config
from .connector import Connector, create_connector
from .errors import (
    AsynqlError,
    ConfigError,
    ConnectionLostError,
    ConnectorClosedError,
    ParseError,
    SqlError,
    SqlStage,
    ValidationError,
    WorkerStartupError,
)
from .result import ColumnInfo, ColumnType, SqlChangeResult, SqlInsertResult, SqlResult, SqlSelectResult
from .types import Dialect, Job, QueryMode, StatementTemplate, VariableSpec, VariableType

__all__ = [
    "AsynqlError",
    "ColumnInfo",
    "ColumnType",
    "ConfigError",
    "ConnectionLostError",
    "Connector",
    "ConnectorClosedError",
    "DatabaseConfig",
    "Dialect",
    "Job",
    "ParseError",
    "QueryMode",
    "SqlChangeResult",
    "SqlError",
    "SqlInsertResult",
    "SqlResult",
    "SqlSelectResult",
    "SqlStage",
    "StatementFile",
    "StatementTemplate",
    "ValidationError",
    "VariableSpec",
    "VariableType",
    "WorkerStartupError",
    "compile_statements",
    "create_connector",
    "load_database_config",
    "load_statement_file",
    "render_statements",
]
