"""Handler Registry - job type → handler lookup, frozen at startup.

Manifesto:
The dispatcher resolves every notification through this mapping, from
many reconciliation threads at once. Registration happens once while the
process boots; ``freeze()`` then hands out a read-only view, so lookups
need no lock and nothing can rebind a job type mid-flight.

ARCHITECTURE
────────────
::

    HandlerRegistry
      ├── .register(job_type, handler)  ─ startup only
      ├── .get(job_type)                ─ MissingHandlerError if absent
      ├── .has(job_type)
      ├── .list_handlers()              ─ registered job types
      ├── .require(job_types)           ─ startup validation
      └── .freeze()                     ─ MappingProxyType view

    JobHandler (protocol)
      ├── .handle(job)  → Outcome       ─ idempotent, called repeatedly
      ├── .cleanup(job) → None          ─ on finalizer-guarded deletion
      └── .release(job) → None          ─ optional (Releasable), once Completed

BEST PRACTICES
──────────────
- Build one registry per process (or per test) and pass the frozen view
  to :class:`~regops.execution.dispatcher.JobDispatcher`.
- Handlers must tolerate concurrent calls for distinct jobs.

Tags:
    regops-core, execution, registry, handler-registry, lookup

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from types import MappingProxyType
from typing import Protocol, runtime_checkable

from regops.core.errors import MissingHandlerError, RegistryFrozenError
from regops.core.models import Job, JobType
from regops.execution.results import Outcome


@runtime_checkable
class JobHandler(Protocol):
    def handle(self, job: Job) -> Outcome: ...

    def cleanup(self, job: Job) -> None: ...


@runtime_checkable
class Releasable(Protocol):
    """Handlers that keep per-job undo state drop it once the job completed."""

    def release(self, job: Job) -> None: ...


@runtime_checkable
class Lifecycle(Protocol):
    """Handlers that own threads (worker pools) expose start/stop."""

    def start(self) -> None: ...

    def stop(self) -> None: ...


class HandlerRegistry:
    """Injectable job-type registry.

    Example:
        >>> registry = HandlerRegistry()
        >>> registry.register(JobType.IMAGE_SCAN, ScanHandler(...))
        >>> handlers = registry.freeze()
        >>> handlers[JobType.IMAGE_SCAN]
        <ScanHandler ...>
    """

    def __init__(self) -> None:
        self._handlers: dict[JobType, JobHandler] = {}
        self._frozen: Mapping[JobType, JobHandler] | None = None

    def register(self, job_type: JobType, handler: JobHandler) -> None:
        """Register *handler* for *job_type*.

        Raises:
            RegistryFrozenError: called after ``freeze()``.
            ValueError: the job type already has a handler.
        """
        if self._frozen is not None:
            raise RegistryFrozenError(
                f"cannot register {job_type.value}: handler registry is frozen"
            )
        if job_type in self._handlers:
            raise ValueError(f"Handler already registered for {job_type.value}")
        self._handlers[job_type] = handler

    def get(self, job_type: JobType) -> JobHandler:
        if job_type not in self._handlers:
            raise MissingHandlerError(job_type.value, [t.value for t in self.list_handlers()])
        return self._handlers[job_type]

    def has(self, job_type: JobType) -> bool:
        return job_type in self._handlers

    def list_handlers(self) -> list[JobType]:
        return sorted(self._handlers, key=lambda t: t.value)

    def require(self, job_types: Iterable[JobType]) -> None:
        """Fail fast if any statically known job type lacks a handler."""
        for job_type in job_types:
            if job_type not in self._handlers:
                raise MissingHandlerError(
                    job_type.value, [t.value for t in self.list_handlers()]
                )

    def freeze(self) -> Mapping[JobType, JobHandler]:
        if self._frozen is None:
            self._frozen = MappingProxyType(dict(self._handlers))
        return self._frozen

    @property
    def frozen(self) -> bool:
        return self._frozen is not None


__all__ = ["HandlerRegistry", "JobHandler", "Lifecycle", "Releasable"]
