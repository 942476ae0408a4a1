"""
Dispatcher: the worker pool plus the two queues it shares with the host.

The job queue and the outbox are the only structures touched by more than one
thread; both are queue.Queue instances. With a single worker, jobs execute in
submission order. With more, order holds only per worker.
"""

from __future__ import annotations

import queue
from typing import Any, List, Optional, Tuple

from .drivers.base import ConnectionFactory
from .errors import ConnectorClosedError, WorkerStartupError
from .log import get_logger
from .types import Job
from .worker import STOP, Completion, Worker, WorkerExit, WorkerState

log = get_logger("pool")


class Dispatcher:
    def __init__(self, connection_factory: ConnectionFactory, worker_limit: int, *, name: str = "asynql") -> None:
        if isinstance(worker_limit, bool) or not isinstance(worker_limit, int) or worker_limit < 1:
            raise ValueError(f"worker_limit must be a positive integer, got {worker_limit!r}")
        self._factory = connection_factory
        self._worker_limit = worker_limit
        self._name = name
        self._jobs: "queue.Queue[Any]" = queue.Queue()
        self._outbox: "queue.Queue[Any]" = queue.Queue()
        self._startup: "queue.Queue[Tuple[int, Optional[BaseException]]]" = queue.Queue()
        self._workers: List[Worker] = []
        self._closed = False
        self.jobs_submitted = 0

    @property
    def worker_limit(self) -> int:
        return self._worker_limit

    @property
    def workers(self) -> List[Worker]:
        return list(self._workers)

    @property
    def alive_workers(self) -> int:
        return sum(1 for w in self._workers if w.state is not WorkerState.STOPPED)

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        """
        Spawn every worker and wait until each has opened its connection.

        If any worker fails, the pool is torn down and WorkerStartupError is
        raised: running with fewer workers than configured would silently
        change the ordering guarantees.
        """
        if self._workers:
            raise RuntimeError("dispatcher already started")
        for worker_id in range(1, self._worker_limit + 1):
            w = Worker(worker_id, self._factory, self._jobs, self._outbox, self._startup, name_prefix=self._name)
            self._workers.append(w)
            w.start()

        failures: List[str] = []
        for _ in self._workers:
            worker_id, error = self._startup.get()
            if error is not None:
                failures.append(f"worker {worker_id}: {error}")

        if failures:
            self.shutdown()
            raise WorkerStartupError(
                f"{len(failures)} of {self._worker_limit} worker(s) failed to connect",
                details={"failures": sorted(failures)},
                remediation="Check the database connection settings.",
            )
        log.info("%s: started %d worker(s)", self._name, self._worker_limit)

    def submit(self, job: Job) -> None:
        if self._closed:
            raise ConnectorClosedError("dispatcher is shut down; no new jobs are accepted")
        self._jobs.put(job)
        self.jobs_submitted += 1

    def drain(self, timeout: Optional[float] = None) -> List[Completion]:
        """
        Take every completion currently in the outbox.

        Never blocks unless `timeout` is given, in which case it waits up to
        that long for the first item only.
        """
        completions: List[Completion] = []
        block = timeout is not None and timeout > 0
        while True:
            try:
                item = self._outbox.get(block=block, timeout=timeout if block else None)
            except queue.Empty:
                break
            block = False
            if isinstance(item, WorkerExit):
                log.error("%s: worker %d stopped (%s); %d worker(s) left",
                          self._name, item.worker_id, item.reason, self.alive_workers)
                continue
            completions.append(item)
        return completions

    def shutdown(self) -> None:
        """Stop intake, let queued jobs finish, then join every worker."""
        if self._closed and not any(w.is_alive() for w in self._workers):
            return
        self._closed = True
        for w in self._workers:
            if w.is_alive():
                self._jobs.put(STOP)
        for w in self._workers:
            w.join()
        log.info("%s: all workers stopped", self._name)
