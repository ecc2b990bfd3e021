"""Dispatch Core - routes job notifications to their job-type handler.

Every reconciliation of a Job ends with ``notify(job)``. The dispatcher
looks up the handler registered for the job's claim and decides what the
notification means:

::

    notify(job)
      ├── no handler for job type   → configuration error, logged, dropped
      ├── deletion requested        → handler.cleanup(job), synchronous
      ├── terminal                  → forget it (Completed: handler.release)
      └── Pending / Running         → JobPool (priority ordered)
                                         │
                                         ▼  up to max_concurrent_jobs slots,
                                            one in-flight call per claim target
                                      _execute(job)
                                         ├── Pending → Running   (state machine)
                                         ├── outcome = handler.handle(job)
                                         └── outcome → state machine
                                               Terminal(ok)    → Completed
                                               Terminal(fail)  → Failed
                                               Progressed /
                                               WaitingOn...    → message, requeue
                                               retryable error → message, requeue
                                               other error     → Failed

Handlers never write job state themselves; the dispatcher maps their
outcome through :class:`~regops.execution.state.JobStateMachine` so every
transition shares the same conflict-retrying write path.

Pending jobs are ordered by priority (higher first), then creation time
(older first), then namespace/name. With no executor the handler runs on
the notifying thread; with an executor (the manager passes a
``ThreadPoolExecutor``) it runs on the pool and ``notify`` returns
immediately.

Tags:
    regops-core, execution, dispatcher, scheduler, priority-queue

Doc-Types:
    api-reference
"""

from __future__ import annotations

import bisect
import threading
from collections.abc import Callable, Mapping
from concurrent.futures import Executor
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from regops.core.errors import NotFoundError, is_retryable
from regops.core.logging import LogContext, get_logger
from regops.core.models import Job, JobState, JobType
from regops.core.store.protocol import ObjectStore
from regops.execution.registry import JobHandler, Releasable
from regops.execution.results import Outcome, Progressed, Terminal, WaitingOnDependency
from regops.execution.state import JobStateMachine

logger = get_logger(__name__)

JobKey = tuple[str, str]
TargetKey = tuple[str, str, str]

_FAR_FUTURE = datetime.max.replace(tzinfo=UTC)


def _order_key(job: Job) -> tuple[int, datetime, str, str]:
    created = job.metadata.creation_timestamp or _FAR_FUTURE
    return (-job.spec.priority, created, job.namespace, job.name)


def target_key(job: Job) -> TargetKey:
    """Identity of the object a job acts on, for the in-flight guard."""
    claim = job.spec.claim
    assert claim is not None
    return (
        claim.job_type.value,
        claim.handle_object.namespace or job.namespace,
        claim.handle_object.name,
    )


class JobPool:
    """Pending jobs, ordered by priority, then age, then name."""

    def __init__(self) -> None:
        self._order: list[tuple[tuple[int, datetime, str, str], JobKey]] = []
        self._jobs: dict[JobKey, Job] = {}

    def __len__(self) -> int:
        return len(self._jobs)

    def __contains__(self, key: object) -> bool:
        return key in self._jobs

    def upsert(self, job: Job) -> None:
        self.remove(job.metadata.key)
        bisect.insort(self._order, (_order_key(job), job.metadata.key))
        self._jobs[job.metadata.key] = job

    def remove(self, key: JobKey) -> bool:
        job = self._jobs.pop(key, None)
        if job is None:
            return False
        self._order.remove((_order_key(job), key))
        return True

    def pop_next(self, eligible: Callable[[Job], bool]) -> Job | None:
        """Remove and return the first job in order that *eligible* accepts."""
        for _, key in self._order:
            job = self._jobs[key]
            if eligible(job):
                self.remove(key)
                return job
        return None

    def names(self) -> list[str]:
        return [f"{ns}/{name}" for _, (ns, name) in self._order]


@dataclass
class DispatcherStats:
    """Counters for inspection and health output."""

    notified: int = 0
    dispatched: int = 0
    completed: int = 0
    failed: int = 0
    retried: int = 0
    unroutable: int = 0
    cleanups: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "notified": self.notified,
            "dispatched": self.dispatched,
            "completed": self.completed,
            "failed": self.failed,
            "retried": self.retried,
            "unroutable": self.unroutable,
            "cleanups": self.cleanups,
        }


class JobDispatcher:
    """The "Scheduler": handler lookup plus a bounded, priority-ordered run queue."""

    def __init__(
        self,
        store: ObjectStore,
        handlers: Mapping[JobType, JobHandler],
        state_machine: JobStateMachine,
        *,
        max_concurrent_jobs: int = 1,
        executor: Executor | None = None,
        requeue: Callable[[Job, float | None], None] | None = None,
        requeue_after: float | None = None,
    ) -> None:
        if max_concurrent_jobs < 1:
            raise ValueError("max_concurrent_jobs must be >= 1")
        self._store = store
        self._handlers = handlers
        self._states = state_machine
        self._max = max_concurrent_jobs
        self._executor = executor
        self._requeue = requeue
        self._requeue_after = requeue_after

        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._pool = JobPool()
        self._running: dict[JobKey, TargetKey] = {}
        self._stopped = False
        self.stats = DispatcherStats()

    # === Notification ===

    def notify(self, job: Job) -> None:
        """Forward a job snapshot to its handler. Safe to call concurrently."""
        job_type = job.job_type
        handler = self._handlers.get(job_type) if job_type is not None else None
        with self._lock:
            self.stats.notified += 1
        if handler is None:
            with self._lock:
                self.stats.unroutable += 1
            logger.error(
                "handler_not_registered",
                namespace=job.namespace,
                name=job.name,
                job_type=job_type.value if job_type else None,
                available=[t.value for t in self._handlers],
            )
            return

        key = job.metadata.key
        if job.metadata.is_deleting:
            with self._idle:
                self._pool.remove(key)
                # cleanup must not race a handle() call for the same job
                self._idle.wait_for(lambda: key not in self._running)
                self.stats.cleanups += 1
            logger.info("job_cleanup", namespace=job.namespace, name=job.name, job_type=job_type.value)
            handler.cleanup(job)
            return

        state = job.status.state
        if state is None:
            return
        if state.is_terminal:
            with self._lock:
                self._pool.remove(key)
            if state is JobState.COMPLETED:
                self._release(handler, job)
            return

        with self._lock:
            if self._stopped:
                logger.warning("dispatcher_stopped", namespace=job.namespace, name=job.name)
                return
            if key not in self._running:
                self._pool.upsert(job)
        self._drain()

    # === Run queue ===

    def _drain(self) -> None:
        while True:
            with self._lock:
                if self._stopped or len(self._running) >= self._max:
                    return
                busy = set(self._running.values())
                job = self._pool.pop_next(lambda j: target_key(j) not in busy)
                if job is None:
                    return
                key, target = job.metadata.key, target_key(job)
                self._running[key] = target
                self.stats.dispatched += 1
            if self._executor is None:
                self._run(job, key)
                continue
            try:
                self._executor.submit(self._run, job, key)
            except RuntimeError:
                # executor shut down between the check and the submit
                with self._idle:
                    self._running.pop(key, None)
                    self._idle.notify_all()
                return

    def _run(self, job: Job, key: JobKey) -> None:
        try:
            with LogContext(job_namespace=job.namespace, job_name=job.name):
                self._execute(job)
        except Exception as exc:
            logger.exception("job_dispatch_failed", namespace=job.namespace, name=job.name, error=str(exc))
        finally:
            with self._idle:
                self._running.pop(key, None)
                self._idle.notify_all()
            if self._executor is not None:
                self._drain()

    def _execute(self, job: Job) -> None:
        try:
            fresh = self._store.get(Job, job.namespace, job.name)
        except NotFoundError:
            return
        if fresh.metadata.is_deleting or fresh.is_terminal or fresh.status.state is None:
            return

        if fresh.status.state is JobState.PENDING:
            fresh = self._states.transition(fresh, JobState.RUNNING)
            if fresh is None:
                return

        handler = self._handlers[fresh.job_type]
        try:
            outcome = handler.handle(fresh)
        except Exception as exc:
            if is_retryable(exc):
                logger.warning(
                    "job_handler_transient_error",
                    namespace=fresh.namespace,
                    name=fresh.name,
                    error=str(exc),
                )
                self._states.set_message(fresh, str(exc))
                self._retry_later(fresh)
            else:
                logger.error(
                    "job_handler_failed",
                    namespace=fresh.namespace,
                    name=fresh.name,
                    error=str(exc),
                )
                self._states.mark_completed(fresh, False, str(exc))
                with self._lock:
                    self.stats.failed += 1
            return

        self._apply(fresh, outcome)

    def _apply(self, job: Job, outcome: Outcome) -> None:
        if isinstance(outcome, Terminal):
            finished = self._states.mark_completed(job, outcome.success, outcome.message)
            if finished is not None and finished.status.state is JobState.COMPLETED:
                self._release(self._handlers[job.job_type], finished)
            with self._lock:
                if outcome.success:
                    self.stats.completed += 1
                else:
                    self.stats.failed += 1
            logger.info(
                "job_finished",
                namespace=job.namespace,
                name=job.name,
                success=outcome.success,
                message=outcome.message,
            )
            return
        if isinstance(outcome, (Progressed, WaitingOnDependency)):
            if outcome.message:
                self._states.set_message(job, outcome.message)
            self._retry_later(job)
            return
        raise TypeError(f"handler returned {outcome!r}, expected an Outcome")

    def _release(self, handler: JobHandler, job: Job) -> None:
        if isinstance(handler, Releasable):
            handler.release(job)

    def _retry_later(self, job: Job) -> None:
        with self._lock:
            self.stats.retried += 1
        if self._requeue is not None:
            self._requeue(job, self._requeue_after)

    # === Lifecycle / inspection ===

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until no handler call is in flight."""
        with self._idle:
            return self._idle.wait_for(lambda: not self._running, timeout=timeout)

    def stop(self) -> None:
        with self._lock:
            self._stopped = True
        if self._executor is not None:
            self._executor.shutdown(wait=True, cancel_futures=False)

    def pending(self) -> list[str]:
        with self._lock:
            return self._pool.names()

    def running(self) -> list[str]:
        with self._lock:
            return [f"{ns}/{name}" for ns, name in self._running]


__all__ = ["DispatcherStats", "JobDispatcher", "JobPool", "target_key"]
