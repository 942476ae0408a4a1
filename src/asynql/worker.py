# src/asynql/worker.py
"""
Worker threads: one per pooled connection.

A worker opens its connection on its own thread, reports the outcome on the
startup channel, then loops on the shared job queue. Every job taken off the
queue produces exactly one Completion on the shared outbox.

State machine:
    STARTING -> IDLE <-> BUSY -> STOPPING -> STOPPED
    STARTING -> STOPPED            (connection could not be opened)

A stop request is a sentinel on the job queue, so a worker only sees it
between jobs; in-flight jobs are never interrupted.
"""

from __future__ import annotations

import queue
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Tuple

from .drivers.base import Connection, ConnectionFactory
from .errors import ConnectionLostError, SqlError, SqlStage
from .log import get_logger
from .result import SqlChangeResult, SqlInsertResult, SqlResult, SqlSelectResult
from .types import Job, QueryMode

log = get_logger("worker")

STOP = object()


class WorkerState(str, Enum):
    STARTING = "STARTING"
    IDLE = "IDLE"
    BUSY = "BUSY"
    STOPPING = "STOPPING"
    STOPPED = "STOPPED"


@dataclass(frozen=True)
class Completion:
    correlation_id: int
    result: Optional[SqlResult] = None
    error: Optional[SqlError] = None
    completed_at: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class WorkerExit:
    """Outbox notice: a worker stopped on a fatal connection error."""

    worker_id: int
    reason: str


# =============================================================================
# Job execution
# =============================================================================

def _build_result(connection: Connection, mode: QueryMode, cursor: Any) -> SqlResult:
    if mode is QueryMode.GENERIC:
        return SqlResult()
    if mode is QueryMode.CHANGE:
        return SqlChangeResult(affected_rows=connection.changes())
    if mode is QueryMode.INSERT:
        affected = connection.changes()
        insert_id = connection.last_insert_id()
        return SqlInsertResult(affected_rows=affected, insert_id=insert_id)
    if mode is QueryMode.SELECT:
        columns = tuple(connection.column_info(cursor))
        rows = []
        while True:
            row = connection.fetch_row(cursor)
            if row is None:
                break
            rows.append(row)
        return SqlSelectResult(columns=columns, rows=rows)
    raise ValueError(f"Unknown mode {mode!r}")


def run_job(connection: Connection, job: Job) -> SqlResult:
    """
    Run one job: prepare, bind each param, execute, then build the result
    for the job's mode. Any failure raises SqlError tagged with its stage;
    the driver exception is kept as __cause__.
    """
    try:
        stmt = connection.prepare(job.query)
    except Exception as e:
        raise SqlError(SqlStage.PREPARE, str(e), job.query, job.params) from e

    stage = SqlStage.BIND
    try:
        for name, value in job.params.items():
            try:
                connection.bind(stmt, name, value)
            except Exception as e:
                raise SqlError(stage, f"when binding {name}: {e}", job.query, job.params) from e
        stage = SqlStage.EXECUTE
        cursor = connection.execute(stmt)
        return _build_result(connection, job.mode, cursor)
    except SqlError:
        raise
    except Exception as e:
        raise SqlError(stage, str(e), job.query, job.params) from e
    finally:
        try:
            connection.finalize(stmt)
        except Exception:
            log.warning("failed to finalize statement for query #%d", job.correlation_id, exc_info=True)


def _is_fatal(error: SqlError) -> bool:
    return isinstance(error.__cause__, ConnectionLostError)


# =============================================================================
# Worker thread
# =============================================================================

class Worker(threading.Thread):
    def __init__(
        self,
        worker_id: int,
        connection_factory: ConnectionFactory,
        jobs: "queue.Queue[Any]",
        outbox: "queue.Queue[Any]",
        startup: "queue.Queue[Tuple[int, Optional[BaseException]]]",
        *,
        name_prefix: str = "asynql",
    ) -> None:
        super().__init__(name=f"{name_prefix}-worker-{worker_id}", daemon=True)
        self.worker_id = worker_id
        self._factory = connection_factory
        self._jobs = jobs
        self._outbox = outbox
        self._startup = startup
        self._state = WorkerState.STARTING
        self._state_lock = threading.Lock()
        self.jobs_handled = 0
        self.startup_error: Optional[BaseException] = None

    @property
    def state(self) -> WorkerState:
        with self._state_lock:
            return self._state

    def _set_state(self, state: WorkerState) -> None:
        with self._state_lock:
            self._state = state

    def run(self) -> None:
        try:
            connection = self._factory()
        except Exception as e:
            self.startup_error = e
            log.error("%s failed to open its connection: %s", self.name, e)
            self._set_state(WorkerState.STOPPED)
            self._startup.put((self.worker_id, e))
            return

        self._set_state(WorkerState.IDLE)
        self._startup.put((self.worker_id, None))
        self._loop(connection)

    def _loop(self, connection: Connection) -> None:
        while True:
            item = self._jobs.get()
            if item is STOP:
                self._close_connection(connection)
                return

            self._set_state(WorkerState.BUSY)
            self.jobs_handled += 1
            completion = self._run_one(connection, item)
            self._outbox.put(completion)

            if completion.error is not None and _is_fatal(completion.error):
                log.error("%s lost its connection during query #%d; stopping",
                          self.name, completion.correlation_id)
                self._close_connection(connection)
                self._outbox.put(WorkerExit(self.worker_id, completion.error.error_message))
                return
            self._set_state(WorkerState.IDLE)

    def _run_one(self, connection: Connection, job: Job) -> Completion:
        try:
            result = run_job(connection, job)
        except SqlError as e:
            return Completion(job.correlation_id, error=e, completed_at=time.monotonic())
        except Exception as e:
            # the job must still be answered exactly once
            log.exception("%s crashed while running query #%d", self.name, job.correlation_id)
            error = SqlError(SqlStage.EXECUTE, str(e), job.query, job.params)
            return Completion(job.correlation_id, error=error, completed_at=time.monotonic())
        return Completion(job.correlation_id, result=result, completed_at=time.monotonic())

    def _close_connection(self, connection: Connection) -> None:
        self._set_state(WorkerState.STOPPING)
        try:
            connection.close()
        except Exception:
            log.warning("%s failed to close its connection", self.name, exc_info=True)
        self._set_state(WorkerState.STOPPED)
