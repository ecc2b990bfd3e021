"""Bounded worker pool for CPU/IO-heavy handler work.

Handlers such as the image scanner must not run their work inline on the
notification path. They package it as a :class:`Task` (an ordered list of
callables) and submit it here. The pool is an execution accelerator, not
persistence: queued tasks are lost on restart, and the owning Job stays
Running in the store so the next reconciliation resubmits it.

┌──────────────────────────────────────────────────────────────────────────┐
│  BOUNDED WORKER POOL                                                      │
│                                                                           │
│   submit(task) ──► [ bounded intake queue (queue_size) ] ──► worker 1..n  │
│        │                                                        │         │
│        └─ blocks while full (back-pressure)                     ▼         │
│                                                       run_task(task)      │
│                                                         job 1 ─► job 2 ─► │
│                                                         stop at 1st error │
│                                                                 │         │
│                                                   TaskResult ───┤         │
│                                              ok ─► on_success(task)       │
│                                           error ─► on_fail(error)         │
│                                                                           │
│   stop(): close intake, let queued + in-flight tasks drain, join workers  │
└──────────────────────────────────────────────────────────────────────────┘

Exactly one continuation runs per task. A continuation that raises is
logged; it never kills the worker.
"""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from regops.core.errors import PoolClosedError

logger = logging.getLogger(__name__)

_STOP = object()


@dataclass
class Task:
    """An ordered list of units of work, run sequentially by one worker."""

    name: str
    jobs: list[Callable[[], Any]] = field(default_factory=list)


@dataclass(frozen=True)
class TaskResult:
    task: Task
    error: BaseException | None = None
    completed_jobs: int = 0
    values: tuple[Any, ...] = ()

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class _Entry:
    task: Task
    on_success: Callable[[Task], None] | None
    on_fail: Callable[[BaseException], None] | None


@dataclass
class PoolStats:
    submitted: int = 0
    succeeded: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"submitted": self.submitted, "succeeded": self.succeeded, "failed": self.failed}


def run_task(task: Task) -> TaskResult:
    """Run *task*'s jobs in order, aborting at the first error."""
    values = []
    for index, job in enumerate(task.jobs):
        try:
            values.append(job())
        except Exception as exc:
            return TaskResult(task, error=exc, completed_jobs=index, values=tuple(values))
    return TaskResult(task, completed_jobs=len(task.jobs), values=tuple(values))


class BoundedWorkerPool:
    """Fixed number of workers draining a capacity-bounded queue.

    Example:
        >>> pool = BoundedWorkerPool(queue_size=8, name="scan")
        >>> pool.start(4)
        >>> pool.submit(Task("scan-repo", [lambda: scan("library/nginx")]),
        ...             on_success=done, on_fail=failed)
        >>> pool.stop()
    """

    def __init__(self, queue_size: int = 16, name: str = "worker-pool") -> None:
        if queue_size < 1:
            raise ValueError("queue_size must be >= 1")
        self.name = name
        self._queue: queue.Queue[Any] = queue.Queue(maxsize=queue_size)
        self._threads: list[threading.Thread] = []
        self._lock = threading.Lock()
        self._handoff = threading.Condition(self._lock)
        self._submitting = 0
        self._closed = False
        self._started = False
        self.stats = PoolStats()

    # === Lifecycle ===

    def start(self, n: int) -> None:
        """Launch exactly *n* long-lived workers."""
        if n < 1:
            raise ValueError("worker count must be >= 1")
        with self._lock:
            if self._started:
                logger.warning(f"{self.name}: already started")
                return
            if self._closed:
                raise PoolClosedError(f"{self.name}: pool was stopped")
            self._started = True
        for i in range(n):
            t = threading.Thread(target=self._worker, name=f"{self.name}-{i}", daemon=True)
            t.start()
            self._threads.append(t)
        logger.info(f"{self.name}: started {n} workers (queue_size={self._queue.maxsize})")

    def stop(self, timeout: float | None = None) -> None:
        """Close intake and let queued and in-flight tasks drain."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        for _ in self._threads:
            self._queue.put(_STOP)
        for t in self._threads:
            t.join(timeout=timeout)
            if t.is_alive():
                logger.warning(f"{self.name}: worker {t.name} did not stop cleanly")
        self._drain_after_stop()
        logger.info(f"{self.name}: stopped")

    @property
    def is_running(self) -> bool:
        return self._started and not self._closed

    @property
    def worker_count(self) -> int:
        return sum(1 for t in self._threads if t.is_alive())

    def qsize(self) -> int:
        return self._queue.qsize()

    # === Intake ===

    def submit(
        self,
        task: Task,
        on_success: Callable[[Task], None] | None = None,
        on_fail: Callable[[BaseException], None] | None = None,
        timeout: float | None = None,
    ) -> None:
        """Queue *task*, blocking while the queue is full.

        Raises:
            PoolClosedError: after ``stop()``.
            queue.Full: *timeout* elapsed while the queue stayed full.
        """
        with self._lock:
            if self._closed:
                raise PoolClosedError(f"{self.name}: pool is closed")
            self.stats.submitted += 1
            self._submitting += 1
        try:
            self._queue.put(_Entry(task, on_success, on_fail), timeout=timeout)
        finally:
            with self._handoff:
                self._submitting -= 1
                self._handoff.notify_all()

    # === Workers ===

    def _worker(self) -> None:
        while True:
            entry = self._queue.get()
            try:
                if entry is _STOP:
                    return
                result = run_task(entry.task)
                self._route(entry, result)
            finally:
                self._queue.task_done()

    def _route(self, entry: _Entry, result: TaskResult) -> None:
        with self._lock:
            if result.ok:
                self.stats.succeeded += 1
            else:
                self.stats.failed += 1
        try:
            if result.ok:
                if entry.on_success is not None:
                    entry.on_success(result.task)
            else:
                logger.warning(
                    f"{self.name}: task {result.task.name} failed at job "
                    f"{result.completed_jobs + 1}/{len(result.task.jobs)}: {result.error}"
                )
                if entry.on_fail is not None:
                    entry.on_fail(result.error)
        except Exception as exc:
            logger.exception(f"{self.name}: continuation for {result.task.name} raised: {exc}")

    def _drain_after_stop(self) -> None:
        # a submit that passed the closed check may still be blocked in put()
        while True:
            with self._handoff:
                settled = self._submitting == 0
            self._fail_leftovers()
            if settled:
                return
            with self._handoff:
                self._handoff.wait_for(lambda: self._submitting == 0, timeout=0.05)

    def _fail_leftovers(self) -> None:
        # entries that slipped in behind the stop sentinels
        while True:
            try:
                entry = self._queue.get_nowait()
            except queue.Empty:
                return
            self._queue.task_done()
            if entry is _STOP or entry.on_fail is None:
                continue
            try:
                entry.on_fail(PoolClosedError(f"{self.name}: pool stopped before {entry.task.name} ran"))
            except Exception as exc:
                logger.exception(f"{self.name}: on_fail for {entry.task.name} raised: {exc}")


__all__ = ["BoundedWorkerPool", "PoolStats", "Task", "TaskResult", "run_task"]
