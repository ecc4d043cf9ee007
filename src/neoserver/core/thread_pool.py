"""
=============================================================================
SHARED WORKER POOL
=============================================================================

Every piece of per-connection work runs on one pool of worker threads:

    ┌──────────────────────┬─────────────┬────────────────────────────────┐
    │ Job                  │ Label       │ Submitted by                   │
    ├──────────────────────┼─────────────┼────────────────────────────────┤
    │ TLS handshake        │ "handshake" │ accept stream, per socket      │
    │ HTTP/1.1 session     │ "session"   │ server loop, per connection    │
    │ HTTP/2 session       │ "session"   │ server loop, per connection    │
    └──────────────────────┴─────────────┴────────────────────────────────┘

Socket I/O and OpenSSL both release the GIL, so handshakes and sessions on
different workers really do overlap. Labels only feed the counters in
`stats`; every job is treated the same.

A session keeps its worker for as long as the client stays connected, so a
fixed number of workers would be a fixed number of clients. The pool
therefore grows whenever a job finds no idle worker, and by default has no
ceiling: min_workers are kept warm, the rest come and go with the load.

=============================================================================
SHAPE
=============================================================================

    submit(func, args, label)
        │
        ▼
    [ queue.Queue of Job | None ]
        │
        ├──► Worker-0 ─┐
        ├──► Worker-1  ├─ job.func(*job.args, **job.kwargs)
        └──► Worker-N ─┘

    grow:    a submit() that leaves more jobs waiting than there are idle
             workers adds one worker (never past max_workers, if set)
    retire:  a worker that sat idle for idle_timeout exits, as long as
             more than min_workers remain and no queued job needs it
    block:   a full queue makes submit() wait (or return False)
    stop:    shutdown() queues one None per worker; a worker that dequeues
             None exits

=============================================================================
"""

import itertools
import threading
import queue
import time
import logging
from collections import Counter
from typing import Callable, Optional, Any
from dataclasses import dataclass, field
from enum import Enum


logger = logging.getLogger(__name__)


class WorkerState(Enum):
    IDLE = "idle"
    BUSY = "busy"
    STOPPED = "stopped"


@dataclass
class Job:
    """One queued call, tagged with what kind of work it is."""
    func: Callable[..., Any]
    args: tuple = ()
    kwargs: dict = field(default_factory=dict)
    label: str = "job"
    queued_at: float = field(default_factory=time.monotonic)


class Worker(threading.Thread):

    def __init__(self, pool: "ThreadPool", worker_id: int):
        super().__init__(name=f"neoserver-worker-{worker_id}", daemon=True)
        self.pool = pool
        self.worker_id = worker_id
        self.state = WorkerState.IDLE

    def run(self):
        pool = self.pool
        jobs = pool._jobs
        logger.debug(f"{self.name} started")

        while True:
            try:
                job = jobs.get(timeout=pool.idle_timeout)
            except queue.Empty:
                if pool._retire(self):
                    logger.debug(f"{self.name} retired after {pool.idle_timeout}s idle")
                    break
                continue

            pool._picked_up(job)
            if job is None:
                jobs.task_done()
                break

            self.state = WorkerState.BUSY
            try:
                self._run_job(job)
            finally:
                self.state = WorkerState.IDLE
                jobs.task_done()
                pool._went_idle()

        self.state = WorkerState.STOPPED
        logger.debug(f"{self.name} stopped")

    def _run_job(self, job: Job):
        """
        Jobs handle their own per-connection failures. Anything that
        escapes is a bug: log it with a traceback and keep the worker.
        """
        waited = time.monotonic() - job.queued_at
        if waited > 1.0:
            logger.debug(f"{self.name}: {job.label} job waited {waited:.2f}s for a worker")

        try:
            job.func(*job.args, **job.kwargs)
        except Exception as e:
            self.pool._count(job.label, "failed")
            logger.exception(f"{self.name}: {job.label} job crashed: {e}")
        else:
            self.pool._count(job.label, "completed")


class ThreadPool:
    """
    Growing pool of worker threads.

        pool = ThreadPool(min_workers=4)
        pool.start()
        pool.submit(filter_handshake, args=(sock, addr), label="handshake")
        ...
        pool.shutdown(timeout=5.0)

    Args:
        min_workers: Workers started by start() and never retired.
        max_workers: Ceiling for growth; None grows as far as the load asks.
        queue_size: Jobs allowed to wait for a worker.
        idle_timeout: Seconds a worker above min_workers may sit idle
                      before it exits.
    """

    def __init__(
        self,
        min_workers: int = 4,
        max_workers: Optional[int] = None,
        queue_size: int = 100,
        idle_timeout: float = 60.0
    ):
        if min_workers < 1 or (max_workers is not None and max_workers < min_workers):
            raise ValueError("Need 1 <= min_workers <= max_workers")

        self.min_workers = min_workers
        self.max_workers = max_workers
        self.queue_size = queue_size
        self.idle_timeout = idle_timeout

        self._jobs: queue.Queue[Optional[Job]] = queue.Queue(maxsize=queue_size)
        self._workers: list[Worker] = []
        self._worker_ids = itertools.count()
        self._lock = threading.Lock()
        self._counters: Counter = Counter()
        self._state = "new"  # new -> running -> stopping -> new

        # Guarded by _lock. A worker that has dequeued a job but not yet
        # reported it still counts in both, so waiting - idle stays exact.
        self._idle = 0
        self._waiting = 0

    @property
    def is_running(self) -> bool:
        return self._state == "running"

    def start(self):
        """Start min_workers threads. No-op when already running."""
        if self._state == "running":
            return

        ceiling = "unbounded" if self.max_workers is None else f"max {self.max_workers}"
        logger.info(f"Starting thread pool with {self.min_workers} workers ({ceiling})")
        self._state = "running"
        for _ in range(self.min_workers):
            self._spawn()

    def _spawn(self) -> bool:
        with self._lock:
            if self.max_workers is not None and len(self._workers) >= self.max_workers:
                return False
            worker = Worker(self, worker_id=next(self._worker_ids))
            self._workers.append(worker)
            self._idle += 1
        worker.start()
        return True

    # =========================================================================
    # WORKER BOOKKEEPING
    # =========================================================================

    def _picked_up(self, job: Optional[Job]):
        with self._lock:
            self._idle -= 1
            if job is not None:
                self._waiting -= 1

    def _went_idle(self):
        with self._lock:
            self._idle += 1

    def _retire(self, worker: Worker) -> bool:
        """Let an idle worker go if the pool can spare it."""
        with self._lock:
            spare = (
                self._state == "running"
                and len(self._workers) > self.min_workers
                and self._waiting < self._idle
            )
            if spare:
                self._workers.remove(worker)
                self._idle -= 1
            return spare

    def _count(self, label: str, outcome: str):
        with self._lock:
            self._counters[(label, outcome)] += 1

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    def submit(
        self,
        func: Callable[..., Any],
        args: tuple = (),
        kwargs: Optional[dict] = None,
        block: bool = True,
        queue_timeout: Optional[float] = None,
        label: str = "job",
    ) -> bool:
        """
        Queue `func(*args, **kwargs)`.

        Returns:
            True once queued; False when the queue stayed full for
            `queue_timeout` (or at once with block=False).

        Raises:
            RuntimeError: If the pool is not running.
        """
        if self._state == "new":
            raise RuntimeError("Thread pool not started")
        if self._state == "stopping":
            raise RuntimeError("Thread pool is shutting down")

        with self._lock:
            self._waiting += 1
            grow = self._waiting > self._idle

        job = Job(func=func, args=args, kwargs=kwargs or {}, label=label)
        try:
            self._jobs.put(job, block=block, timeout=queue_timeout)
        except queue.Full:
            with self._lock:
                self._waiting -= 1
            self._count(label, "rejected")
            return False

        self._count(label, "submitted")
        if grow and self._spawn():
            logger.debug(f"No idle worker for a {label} job, grew pool to {len(self._workers)}")
        return True

    def shutdown(self, wait: bool = True, timeout: Optional[float] = None):
        """
        Stop every worker.

        Args:
            wait: Let already queued jobs be picked up first.
            timeout: Bound on that wait; None waits until the queue drains.
        """
        if self._state != "running":
            return

        logger.info("Shutting down thread pool...")
        self._state = "stopping"

        if wait:
            deadline = None if timeout is None else time.monotonic() + timeout
            while not self._jobs.empty():
                if deadline is not None and time.monotonic() > deadline:
                    logger.warning("Shutdown timeout, abandoning queued jobs")
                    break
                time.sleep(0.1)

        with self._lock:
            workers = list(self._workers)

        for _ in workers:
            try:
                self._jobs.put(None, block=False)
            except queue.Full:
                break

        # Workers still inside a long session are daemons; do not wait them out
        join_deadline = time.monotonic() + 2.0
        for worker in workers:
            worker.join(timeout=max(0.0, join_deadline - time.monotonic()))

        with self._lock:
            self._workers.clear()
        self._state = "new"
        logger.info("Thread pool shutdown complete")

    # =========================================================================
    # MONITORING
    # =========================================================================

    @property
    def busy_workers(self) -> int:
        return sum(1 for w in list(self._workers) if w.state == WorkerState.BUSY)

    @property
    def stats(self) -> dict:
        """
        Snapshot for debug logging and tests.

            {"workers": {"total": 4, "busy": 1},
             "queued": 0,
             "jobs": {"handshake": {"submitted": 10, "completed": 9, ...}, ...}}
        """
        with self._lock:
            counters = dict(self._counters)
            total = len(self._workers)

        jobs: dict = {}
        for (label, outcome), count in counters.items():
            jobs.setdefault(label, {})[outcome] = count

        return {
            "workers": {"total": total, "busy": self.busy_workers},
            "queued": self._jobs.qsize(),
            "jobs": jobs,
        }
