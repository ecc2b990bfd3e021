"""Job state machine - the single write path for job lifecycle changes.

Handlers, the dispatcher and the reconciler never assign ``status.state``
directly. They ask :class:`JobStateMachine` for a transition, which
validates it against ``JOB_VALID_TRANSITIONS``, stamps the timestamps the
invariants require, and writes it back through ``store.patch_status`` with
optimistic concurrency.

Valid transition graph::

    (unset)    → PENDING | FAILED
    PENDING    → RUNNING | FAILED
    RUNNING    → COMPLETED | FAILED
    COMPLETED  → (terminal)
    FAILED     → (terminal)

    same state → no-op, nothing written

Write semantics:
    - ``RUNNING`` sets ``start_time`` (once).
    - ``COMPLETED`` / ``FAILED`` set ``completion_time``; no other state does.
    - A ``ConflictError`` re-reads the record and re-applies the transition
      against the fresh copy, up to ``conflict_retries`` attempts.
    - A record that vanished (``NotFoundError``) ends the call quietly and
      returns ``None``.

Tags:
    regops-core, execution, state-machine, optimistic-concurrency

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from regops.core.errors import AlreadyExistsError, ConflictError, NotFoundError
from regops.core.logging import get_logger
from regops.core.models import Job, JobClaim, JobSpec, JobState, JobStatus, ObjectMeta, OwnerReference
from regops.core.store.protocol import ObjectStore
from regops.core.timestamps import utc_now

logger = get_logger(__name__)


class InvalidTransitionError(ValueError):
    """Raised when an illegal job state transition is attempted."""

    def __init__(self, current: JobState | None, target: JobState) -> None:
        self.current = current
        self.target = target
        current_label = current.value if current else "(unset)"
        super().__init__(f"Invalid job state transition: {current_label} → {target.value}")


JOB_VALID_TRANSITIONS: dict[JobState | None, frozenset[JobState]] = {
    None: frozenset({JobState.PENDING, JobState.FAILED}),
    JobState.PENDING: frozenset({JobState.RUNNING, JobState.FAILED}),
    JobState.RUNNING: frozenset({JobState.COMPLETED, JobState.FAILED}),
    JobState.COMPLETED: frozenset(),  # terminal
    JobState.FAILED: frozenset(),  # terminal
}


def validate_job_transition(current: JobState | None, target: JobState) -> None:
    """Raise :class:`InvalidTransitionError` if *current → target* is illegal."""
    if target not in JOB_VALID_TRANSITIONS[current]:
        raise InvalidTransitionError(current, target)


class JobStateMachine:
    """Creates jobs and moves them through their lifecycle."""

    def __init__(
        self,
        store: ObjectStore,
        *,
        clock: Callable[[], datetime] = utc_now,
        conflict_retries: int = 5,
    ) -> None:
        self._store = store
        self._clock = clock
        self._conflict_retries = conflict_retries

    # === Creation ===

    def create(
        self,
        name: str,
        claim: JobClaim,
        *,
        namespace: str = "default",
        priority: int = 0,
        ttl: int = -1,
        owner: OwnerReference | None = None,
        labels: dict[str, str] | None = None,
    ) -> Job:
        """Persist a new Pending job, or return the existing one of that name.

        Raises:
            ValidationError: negative priority.
        """
        job = Job(
            metadata=ObjectMeta(
                name=name,
                namespace=namespace,
                owner_references=[owner] if owner else [],
                labels=dict(labels or {}),
            ),
            spec=JobSpec(claim=claim, priority=priority, ttl=ttl),
        )
        return self.create_from(job)

    def create_from(self, manifest: Job) -> Job:
        """Persist a prebuilt job manifest as Pending (get-or-create).

        Raises:
            ValidationError: the manifest's spec is invalid.
        """
        manifest.spec.validate()
        job = manifest.copy()
        job.status = JobStatus(state=JobState.PENDING)
        try:
            created = self._store.create(job)
        except AlreadyExistsError:
            return self._store.get(Job, job.namespace, job.name)
        logger.info(
            "job_created",
            namespace=job.namespace,
            name=job.name,
            job_type=job.job_type.value if job.job_type else None,
            priority=job.spec.priority,
            ttl=job.spec.ttl,
        )
        return created

    # === Transitions ===

    def transition(self, job: Job, new_state: JobState, message: str = "") -> Job | None:
        """Move *job* to *new_state*. Same-state requests write nothing.

        Returns:
            The stored job after the write (or the unchanged job for a
            no-op), or ``None`` if the record no longer exists.

        Raises:
            InvalidTransitionError: the move is not in ``JOB_VALID_TRANSITIONS``.
        """

        def apply(current: Job) -> bool:
            state = current.status.state
            if state == new_state:
                return False
            validate_job_transition(state, new_state)
            now = self._clock()
            current.status.state = new_state
            current.status.message = message
            if new_state is JobState.RUNNING and current.status.start_time is None:
                current.status.start_time = now
            if new_state.is_terminal:
                current.status.completion_time = now
            return True

        result = self._write_status(job, apply)
        if result is not None and result.status.state is new_state:
            logger.debug(
                "job_transitioned",
                namespace=result.namespace,
                name=result.name,
                state=new_state.value,
            )
        return result

    def mark_completed(self, job: Job, success: bool, message: str = "") -> Job | None:
        """Terminal transition: Completed on success, Failed otherwise."""
        target = JobState.COMPLETED if success else JobState.FAILED
        if job.status.state is JobState.PENDING and success:
            # Handlers may finish before the Running write lands
            job = self.transition(job, JobState.RUNNING)
            if job is None:
                return None
        return self.transition(job, target, message)

    def set_message(self, job: Job, message: str) -> Job | None:
        """Record a progress or error message without changing state."""

        def apply(current: Job) -> bool:
            if current.status.message == message or current.is_terminal:
                return False
            current.status.message = message
            return True

        return self._write_status(job, apply)

    # === Internals ===

    def _write_status(self, job: Job, apply: Callable[[Job], bool]) -> Job | None:
        current = job.copy()
        attempt = 0
        while True:
            if not apply(current):
                return current
            try:
                return self._store.patch_status(current)
            except NotFoundError:
                return None
            except ConflictError:
                attempt += 1
                if attempt >= self._conflict_retries:
                    raise
                logger.debug(
                    "job_status_conflict",
                    namespace=job.namespace,
                    name=job.name,
                    attempt=attempt,
                )
                try:
                    current = self._store.get(Job, job.namespace, job.name)
                except NotFoundError:
                    return None


__all__ = [
    "InvalidTransitionError",
    "JOB_VALID_TRANSITIONS",
    "JobStateMachine",
    "validate_job_transition",
]
