"""Job reconciler - one pass over one Job record.

::

    reconcile(namespace, name)
      ├── record gone                  → no-op
      ├── deletion requested           → finalizer: notify, then release token
      ├── no finalizer token           → add token, stop (watch event re-queues)
      ├── completed with ttl == 0      → delete
      ├── state unset                  → Pending
      └── (always, deferred)           → dispatcher.notify(latest snapshot)

The deferred notify runs on every non-deleting path, including the early
exits, because a skipped notify leaves a pipeline stuck. On the deletion
path the finalizer guard performs the final notify itself and no further
notification fires once the token is released.
"""

from __future__ import annotations

from regops.core.errors import NotFoundError, ValidationError, is_retryable
from regops.core.logging import get_logger
from regops.core.models import Job, JobState
from regops.core.store.protocol import ObjectStore
from regops.execution.dispatcher import JobDispatcher
from regops.execution.finalizer import FinalizerGuard
from regops.execution.results import ReconcileResult
from regops.execution.state import JobStateMachine

logger = get_logger(__name__)


class JobReconciler:
    def __init__(
        self,
        store: ObjectStore,
        guard: FinalizerGuard,
        dispatcher: JobDispatcher,
        state_machine: JobStateMachine,
        *,
        requeue_after: float | None = None,
    ) -> None:
        self._store = store
        self._guard = guard
        self._dispatcher = dispatcher
        self._states = state_machine
        self._requeue_after = requeue_after

    def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        try:
            job = self._store.get(Job, namespace, name)
        except NotFoundError:
            return ReconcileResult.done()

        if job.metadata.is_deleting:
            return self._finalize(job)

        latest: Job | None = job
        try:
            if self._guard.ensure(job):
                return ReconcileResult.done()

            if job.status.completion_time is not None and job.spec.ttl == 0:
                logger.info("job_ttl_zero_delete", namespace=namespace, name=name)
                self._store.delete(job)
                latest = None
                return ReconcileResult.done()

            if job.status.state is None:
                latest = self._initialize(job)
            return ReconcileResult.done()
        finally:
            if latest is not None:
                self._notify_latest(latest)

    def _initialize(self, job: Job) -> Job | None:
        try:
            job.spec.validate()
        except ValidationError as exc:
            logger.warning("job_invalid", namespace=job.namespace, name=job.name, error=str(exc))
            return self._states.transition(job, JobState.FAILED, str(exc))
        return self._states.transition(job, JobState.PENDING)

    def _finalize(self, job: Job) -> ReconcileResult:
        try:
            self._guard.finalize(job, self._dispatcher.notify)
        except Exception as exc:
            # token stays; deletion is retried on the next pass
            logger.warning(
                "job_cleanup_failed",
                namespace=job.namespace,
                name=job.name,
                error=str(exc),
                retryable=is_retryable(exc),
            )
            self._states.set_message(job, f"cleanup failed: {exc}")
            return ReconcileResult.again(self._requeue_after)
        return ReconcileResult.done()

    def _notify_latest(self, job: Job) -> None:
        try:
            current = self._store.get(Job, job.namespace, job.name)
        except NotFoundError:
            return
        self._dispatcher.notify(current)


__all__ = ["JobReconciler"]
