# src/asynql/connector.py
"""
Connector: the host-facing surface.

The host thread calls execute_*() to submit work and poll() once per tick to
receive results. Neither call blocks. Callbacks are only ever invoked from
poll(), wait_all() or close(), i.e. on the host thread.

Usage:
    connector = create_connector(load_database_config("config.yml"),
                                 {"sqlite": "sqlite.sql", "mysql": "mysql.sql"})
    connector.execute_generic("init.players")
    connector.execute_select("players.load", {"name": "Steve"},
                             lambda rows, columns: print(rows))
    ...
    connector.poll()      # every tick
    ...
    connector.close()
"""

from __future__ import annotations

import itertools
import time
from collections import deque
from pathlib import Path
from typing import Any, Callable, Deque, Dict, Iterable, Mapping, NamedTuple, Optional, Sequence, Union

from . import drivers
from .compiler import StatementFile, compile_statements, load_statement_file
from .config import DatabaseConfig
from .drivers.base import ConnectionFactory
from .errors import ConfigError, ConnectorClosedError, ValidationError
from .log import get_logger
from .pool import Dispatcher
from .result import SqlResult
from .statements import StatementRegistry, resolve_params
from .types import Dialect, Job, QueryMode
from .worker import Completion

log = get_logger("connector")

StatementSource = Union[StatementFile, Path, str]
ErrorCallback = Callable[[Exception], Any]

_POLL_INTERVAL = 0.05


class _Pending(NamedTuple):
    on_success: Optional[Callable[..., Any]]
    on_error: Optional[ErrorCallback]
    statement_id: str
    mode: QueryMode


class Connector:
    def __init__(
        self,
        dialect: Union[Dialect, str],
        connection_factory: ConnectionFactory,
        *,
        worker_limit: int = 1,
        statements: Iterable[StatementSource] = (),
        logging_queries: bool = False,
        name: str = "asynql",
    ) -> None:
        self._dialect = Dialect(dialect)
        self._registry = StatementRegistry()
        # statements first: a bad file must fail before any thread exists
        for source in statements:
            self.load_statements(source)

        self._dispatcher = Dispatcher(connection_factory, worker_limit, name=name)
        self._dispatcher.start()

        self._ids = itertools.count(1)
        self._pending: Dict[int, _Pending] = {}
        self._ready: Deque[Completion] = deque()
        self._closed = False
        self.logging_queries = logging_queries

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def dialect(self) -> Dialect:
        return self._dialect

    @property
    def worker_limit(self) -> int:
        return self._dispatcher.worker_limit

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def dispatcher(self) -> Dispatcher:
        return self._dispatcher

    @property
    def statements(self) -> StatementRegistry:
        return self._registry

    # -------------------------------------------------------------------------
    # Statement loading
    # -------------------------------------------------------------------------

    def load_statements(self, source: StatementSource) -> StatementFile:
        """
        Compile and register a statement file.

        `source` is a compiled StatementFile, a Path to a file, or source
        text. Statements for other dialects are registered but never used by
        this connector.
        """
        if isinstance(source, StatementFile):
            statement_file = source
        elif isinstance(source, Path):
            statement_file = load_statement_file(source)
        else:
            statement_file = compile_statements(source)
        self._registry.add_file(statement_file)
        log.info("loaded %d %s statement(s) from %s", len(statement_file.statements),
                 statement_file.dialect.value, statement_file.source_name or "<string>")
        if statement_file.dialect is not self._dialect:
            log.warning("%s declares dialect %s; this connector uses %s",
                        statement_file.source_name or "<string>", statement_file.dialect.value, self._dialect.value)
        return statement_file

    # -------------------------------------------------------------------------
    # Submission
    # -------------------------------------------------------------------------

    def execute(
        self,
        statement_id: str,
        mode: Union[QueryMode, str],
        params: Optional[Mapping[str, Any]] = None,
        on_success: Optional[Callable[[SqlResult], Any]] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> int:
        """
        Validate and submit one query. Returns its correlation id.

        Unknown statements and bad params raise ValidationError right here;
        nothing is queued in that case. Driver failures arrive later through
        on_error. Without on_error such failures are only logged.
        """
        if self._closed:
            raise ConnectorClosedError("connector is closed")
        if self._dispatcher.alive_workers == 0:
            raise ConnectorClosedError("connector has no live workers")
        try:
            mode = QueryMode(mode)
        except ValueError:
            raise ValidationError(
                f"unknown query mode {mode!r}",
                details={"statement": statement_id, "mode": str(mode)},
                remediation="Use one of: " + ", ".join(m.value for m in QueryMode) + ".",
            ) from None

        template = self._registry.get(self._dialect, statement_id)
        resolved = resolve_params(template, params)

        correlation_id = next(self._ids)
        job = Job(correlation_id, mode, template.raw_text, resolved, statement_id)
        self._pending[correlation_id] = _Pending(on_success, on_error, statement_id, mode)
        try:
            self._dispatcher.submit(job)
        except Exception:
            del self._pending[correlation_id]
            raise

        if self.logging_queries:
            log.info("query #%d %s (%s) params=%s", correlation_id, statement_id, mode.value, resolved)
        return correlation_id

    def execute_generic(self, statement_id: str, params: Optional[Mapping[str, Any]] = None,
                        on_success: Optional[Callable[[], Any]] = None,
                        on_error: Optional[ErrorCallback] = None) -> int:
        callback = None if on_success is None else (lambda result: on_success())
        return self.execute(statement_id, QueryMode.GENERIC, params, callback, on_error)

    def execute_change(self, statement_id: str, params: Optional[Mapping[str, Any]] = None,
                       on_success: Optional[Callable[[int], Any]] = None,
                       on_error: Optional[ErrorCallback] = None) -> int:
        callback = None if on_success is None else (lambda result: on_success(result.affected_rows))
        return self.execute(statement_id, QueryMode.CHANGE, params, callback, on_error)

    def execute_insert(self, statement_id: str, params: Optional[Mapping[str, Any]] = None,
                       on_success: Optional[Callable[[int, int], Any]] = None,
                       on_error: Optional[ErrorCallback] = None) -> int:
        callback = None if on_success is None else (
            lambda result: on_success(result.insert_id, result.affected_rows))
        return self.execute(statement_id, QueryMode.INSERT, params, callback, on_error)

    def execute_select(self, statement_id: str, params: Optional[Mapping[str, Any]] = None,
                       on_success: Optional[Callable[[list, tuple], Any]] = None,
                       on_error: Optional[ErrorCallback] = None) -> int:
        callback = None if on_success is None else (lambda result: on_success(result.rows, result.columns))
        return self.execute(statement_id, QueryMode.SELECT, params, callback, on_error)

    # -------------------------------------------------------------------------
    # Delivery
    # -------------------------------------------------------------------------

    def poll(self) -> int:
        """
        Deliver every result that is already available. Never waits.

        Returns the number of callbacks resolved. If a callback raises, the
        exception propagates and the remaining results stay buffered for the
        next poll().
        """
        self._ready.extend(self._dispatcher.drain())
        return self._resolve_ready()

    def _resolve_ready(self) -> int:
        resolved = 0
        while self._ready:
            completion = self._ready.popleft()
            entry = self._pending.pop(completion.correlation_id, None)
            if entry is None:
                log.debug("dropping result for unknown query #%d", completion.correlation_id)
                continue
            resolved += 1
            if completion.error is not None:
                self._dispatch_error(completion.correlation_id, entry, completion.error)
            elif entry.on_success is not None:
                entry.on_success(completion.result)
        return resolved

    def _dispatch_error(self, correlation_id: int, entry: _Pending, error: Exception) -> None:
        if entry.on_error is not None:
            entry.on_error(error)
            return
        log.warning("unhandled error in query #%d (%s): %s", correlation_id, entry.statement_id, error)

    def wait_all(self, timeout: Optional[float] = None) -> bool:
        """
        Block until every pending callback has been resolved.

        This is the one blocking call, meant for shutdown paths and tests.
        Returns False on timeout, or when every worker has died with
        callbacks still pending.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        self.poll()
        while self._pending:
            if self._dispatcher.alive_workers == 0:
                self.poll()
                return not self._pending
            wait = _POLL_INTERVAL
            if deadline is not None:
                wait = min(wait, deadline - time.monotonic())
                if wait <= 0:
                    return False
            self._ready.extend(self._dispatcher.drain(timeout=wait))
            self._resolve_ready()
        return True

    # -------------------------------------------------------------------------
    # Shutdown
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """
        Stop accepting queries, let the workers finish what was queued and
        join them, then deliver what came back. Callbacks still unresolved
        after that receive ConnectorClosedError.

        Every callback runs even if an earlier one raises; the first such
        exception is re-raised once all of them have been called.
        """
        if self._closed:
            return
        self._closed = True
        self._dispatcher.shutdown()
        self._ready.extend(self._dispatcher.drain())

        first_error: Optional[BaseException] = None
        while self._ready:
            try:
                self._resolve_ready()
            except Exception as e:
                if first_error is None:
                    first_error = e

        for correlation_id in sorted(self._pending):
            entry = self._pending.pop(correlation_id)
            error = ConnectorClosedError(
                f"connector closed before query #{correlation_id} ({entry.statement_id}) completed",
                details={"correlation_id": correlation_id, "statement": entry.statement_id},
            )
            try:
                self._dispatch_error(correlation_id, entry, error)
            except Exception as e:
                if first_error is None:
                    first_error = e

        if first_error is not None:
            raise first_error

    def __enter__(self) -> "Connector":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


def create_connector(
    config: DatabaseConfig,
    statement_files: Mapping[str, Union[str, Path, Sequence[Union[str, Path]]]],
    *,
    logging_queries: bool = False,
) -> Connector:
    """
    Build a started Connector from a DatabaseConfig.

    `statement_files` maps dialect names to one path or a list of paths;
    only the entry for the configured dialect is loaded.
    """
    dialect = config.type
    files = {getattr(k, "value", k): v for k, v in statement_files.items()}
    if dialect.value not in files:
        raise ConfigError(
            f"no statement file configured for dialect {dialect.value}",
            details={"dialect": dialect.value, "available": sorted(files)},
            remediation="Add an entry for the configured database type.",
        )
    entry = files[dialect.value]
    paths = [entry] if isinstance(entry, (str, Path)) else list(entry)

    factory = drivers.get(dialect.value)(config)
    return Connector(
        dialect,
        factory,
        worker_limit=config.worker_limit,
        statements=[load_statement_file(p) for p in paths],
        logging_queries=logging_queries,
    )
