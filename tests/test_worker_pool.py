import itertools
import queue
import threading

import pytest

from asynql.errors import ConnectionLostError, ConnectorClosedError, SqlError, SqlStage, WorkerStartupError
from asynql.pool import Dispatcher
from asynql.result import ColumnInfo, ColumnType, SqlChangeResult, SqlInsertResult, SqlResult, SqlSelectResult
from asynql.types import Job, QueryMode
from asynql.worker import STOP, Worker, WorkerState, run_job


class FakeConnection:
    """In-memory connection whose behaviour is driven by the query text."""

    def __init__(self):
        self.executed = []
        self.finalized = 0
        self.closed = False

    def prepare(self, text):
        if "BAD SYNTAX" in text:
            raise RuntimeError("near BAD: syntax error")
        return {"text": text, "params": {}}

    def bind(self, stmt, name, value):
        if isinstance(value, list):
            raise TypeError("lists are not bindable")
        stmt["params"][name] = value

    def execute(self, stmt):
        if "LOSE" in stmt["text"]:
            raise ConnectionLostError("server has gone away")
        if "FAIL" in stmt["text"]:
            raise RuntimeError("constraint failed")
        self.executed.append((stmt["text"], dict(stmt["params"])))
        return iter([{"v": 1}, {"v": 2}])

    def column_info(self, cursor):
        return [ColumnInfo("v", ColumnType.INT)]

    def fetch_row(self, cursor):
        return next(cursor, None)

    def changes(self):
        return 2

    def last_insert_id(self):
        return 7

    def finalize(self, stmt):
        self.finalized += 1

    def close(self):
        self.closed = True


def _job(cid, query="SELECT v", mode=QueryMode.SELECT, **params):
    return Job(cid, mode, query, params)


# =============================================================================
# run_job
# =============================================================================

def test_run_job_builds_result_per_mode():
    conn = FakeConnection()
    assert run_job(conn, _job(1, mode=QueryMode.GENERIC)) == SqlResult()
    assert run_job(conn, _job(2, mode=QueryMode.CHANGE)) == SqlChangeResult(affected_rows=2)
    assert run_job(conn, _job(3, mode=QueryMode.INSERT)) == SqlInsertResult(affected_rows=2, insert_id=7)

    result = run_job(conn, _job(4, x=1))
    assert isinstance(result, SqlSelectResult)
    assert result.columns == (ColumnInfo("v", ColumnType.INT),)
    assert result.rows == [{"v": 1}, {"v": 2}]
    assert conn.executed[-1] == ("SELECT v", {"x": 1})
    assert conn.finalized == 4


@pytest.mark.parametrize(
    "query, params, stage, text",
    [
        ("BAD SYNTAX", {}, SqlStage.PREPARE, "near BAD: syntax error"),
        ("SELECT :xs", {"xs": [1, 2]}, SqlStage.BIND, "when binding xs: lists are not bindable"),
        ("FAIL", {"a": 1}, SqlStage.EXECUTE, "constraint failed"),
    ],
)
def test_run_job_tags_the_failing_stage(query, params, stage, text):
    conn = FakeConnection()
    with pytest.raises(SqlError) as excinfo:
        run_job(conn, Job(1, QueryMode.GENERIC, query, params))
    err = excinfo.value
    assert err.stage is stage
    assert err.error_message == text
    assert err.query == query
    assert err.params == params
    assert str(err).startswith(f"SQL {stage.value} error: {text}, for query {query}")
    assert err.__cause__ is not None


# =============================================================================
# Dispatcher
# =============================================================================

def test_dispatcher_rejects_bad_worker_limit():
    for limit in (0, -1, True, 1.5):
        with pytest.raises(ValueError):
            Dispatcher(FakeConnection, limit)


def test_single_worker_runs_jobs_in_submission_order():
    connections = []

    def factory():
        conn = FakeConnection()
        connections.append(conn)
        return conn

    d = Dispatcher(factory, 1)
    d.start()
    assert d.drain() == []

    for cid in range(1, 6):
        d.submit(_job(cid, f"SELECT {cid}", QueryMode.GENERIC))
    d.shutdown()

    completions = d.drain()
    assert [c.correlation_id for c in completions] == [1, 2, 3, 4, 5]
    assert all(c.ok for c in completions)
    times = [c.completed_at for c in completions]
    assert times == sorted(times)
    assert [q for q, _ in connections[0].executed] == [f"SELECT {i}" for i in range(1, 6)]
    assert connections[0].closed
    assert d.jobs_submitted == 5


def test_every_job_is_answered_once_with_many_workers():
    d = Dispatcher(FakeConnection, 4)
    d.start()
    assert d.alive_workers == 4
    for cid in range(1, 41):
        d.submit(_job(cid, "FAIL" if cid % 3 == 0 else "SELECT v"))
    d.shutdown()

    completions = d.drain()
    assert sorted(c.correlation_id for c in completions) == list(range(1, 41))
    failed = {c.correlation_id for c in completions if not c.ok}
    assert failed == set(range(3, 41, 3))
    assert all(w.state is WorkerState.STOPPED for w in d.workers)


def test_connection_loss_stops_the_worker():
    d = Dispatcher(FakeConnection, 1)
    d.start()
    d.submit(_job(1, "LOSE IT"))
    (worker,) = d.workers
    worker.join(timeout=5)
    assert not worker.is_alive()
    assert d.alive_workers == 0

    (completion,) = d.drain()
    assert completion.correlation_id == 1
    assert completion.error.stage is SqlStage.EXECUTE
    assert isinstance(completion.error.__cause__, ConnectionLostError)
    d.shutdown()


def test_startup_failure_tears_the_pool_down():
    calls = itertools.count()
    lock = threading.Lock()

    def factory():
        with lock:
            n = next(calls)
        if n == 1:
            raise RuntimeError("connection refused")
        return FakeConnection()

    d = Dispatcher(factory, 3)
    with pytest.raises(WorkerStartupError, match="1 of 3 worker") as excinfo:
        d.start()
    assert excinfo.value.problem.details["failures"][0].endswith("connection refused")
    assert not any(w.is_alive() for w in d.workers)
    assert d.closed


def test_submit_after_shutdown_is_refused():
    d = Dispatcher(FakeConnection, 2)
    d.start()
    d.shutdown()
    d.shutdown()
    with pytest.raises(ConnectorClosedError):
        d.submit(_job(1))


def test_worker_can_be_joined_after_stop():
    conn = FakeConnection()
    jobs, outbox, startup = queue.Queue(), queue.Queue(), queue.Queue()
    worker = Worker(1, lambda: conn, jobs, outbox, startup)
    worker.start()
    assert startup.get(timeout=5) == (1, None)

    jobs.put(_job(1, "SELECT v", QueryMode.CHANGE))
    jobs.put(STOP)
    worker.join(timeout=5)

    assert not worker.is_alive()
    assert worker.state is WorkerState.STOPPED
    assert worker.jobs_handled == 1
    assert conn.closed
    completion = outbox.get_nowait()
    assert completion.correlation_id == 1
    assert completion.result == SqlChangeResult(affected_rows=2)
    assert outbox.empty()
