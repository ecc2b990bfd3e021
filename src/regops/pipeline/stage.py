"""Condition-gated pipeline stages.

A pipeline is a convention, not an engine. Each stage declares the
conditions it needs from earlier stages with a fluent ``require()`` and,
on every reconciliation of the parent resource, either refuses to run
(``WaitingOnDependency``, no side effect) or performs its step
idempotently and records its own conditions for the stages after it.

::

    replicate = JobStage(...).require("ImageReplicateSynchronized")
    outcome = replicate.reconcile_by_condition_status(parent)

      requirement not True  → WaitingOnDependency("replicate needs ...")
      step still running   → Progressed(...)
      step settled         → Terminal(success, message)
      retryable error      → Progressed(error), message on own condition
      permanent error      → Terminal.failed(error), own condition False

:class:`JobStage` is the stage shape the registry pipelines use: its step
is a subordinate Job built by a manifest function and persisted with
get-or-create semantics under its deterministic name, and its
conditions mirror that Job's state.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from regops.core.conditions import ConditionStatus
from regops.core.errors import RegopsError, is_retryable
from regops.core.logging import get_logger
from regops.core.models import Job, JobState
from regops.execution.results import Outcome, Progressed, Terminal, WaitingOnDependency
from regops.execution.state import JobStateMachine

logger = get_logger(__name__)


class Stage(ABC):
    """One step of a condition-gated pipeline."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._requirements: list[str] = []

    def require(self, condition_type: str) -> Stage:
        """Declare a condition that must be True before this stage runs."""
        if condition_type not in self._requirements:
            self._requirements.append(condition_type)
        return self

    @property
    def requirements(self) -> tuple[str, ...]:
        return tuple(self._requirements)

    @property
    @abstractmethod
    def primary_condition(self) -> str:
        """Condition that carries this stage's error messages."""

    @abstractmethod
    def run(self, parent: Any) -> Outcome:
        """Perform the step and record this stage's conditions on *parent*."""

    def unmet(self, parent: Any) -> list[str]:
        conditions = parent.status.conditions
        return [t for t in self._requirements if not conditions.is_true(t)]

    def reconcile_by_condition_status(self, parent: Any) -> Outcome:
        missing = self.unmet(parent)
        if missing:
            logger.debug(
                "stage_waiting",
                stage=self.name,
                parent=parent.name,
                needs=missing,
            )
            return WaitingOnDependency(f"{self.name} needs {', '.join(missing)}")

        conditions = parent.status.conditions
        try:
            return self.run(parent)
        except (RegopsError, OSError) as exc:
            message = str(exc)
            if is_retryable(exc):
                logger.warning("stage_retryable_error", stage=self.name, parent=parent.name, error=message)
                conditions.set(
                    self.primary_condition,
                    conditions.status_of(self.primary_condition),
                    message,
                )
                return Progressed(message)
            logger.error("stage_failed", stage=self.name, parent=parent.name, error=message)
            conditions.set(self.primary_condition, ConditionStatus.FALSE, message)
            return Terminal.failed(message)


class JobStage(Stage):
    """A stage whose step is one subordinate Job.

    Conditions written (each optional except *success_type*)::

        exist_type       True once the job exists
        processing_type  True once the job left Pending
        success_type     True / False when the job completes / fails

    Once *success_type* has settled the stage no longer looks at the job,
    so a job removed by its TTL is not recreated.
    """

    def __init__(
        self,
        name: str,
        state_machine: JobStateMachine,
        *,
        manifest: Callable[[Any], Job],
        success_type: str,
        exist_type: str | None = None,
        processing_type: str | None = None,
    ) -> None:
        super().__init__(name)
        self._states = state_machine
        self._manifest = manifest
        self.success_type = success_type
        self.exist_type = exist_type
        self.processing_type = processing_type

    @property
    def primary_condition(self) -> str:
        return self.exist_type or self.success_type

    def run(self, parent: Any) -> Outcome:
        conditions = parent.status.conditions
        settled = conditions.get(self.success_type)
        if settled is not None and settled.is_true:
            return Terminal.succeeded(settled.message)
        if settled is not None and settled.is_false:
            return Terminal.failed(settled.message)

        job = self._states.create_from(self._manifest(parent))
        return self._mirror(conditions, job)

    def _mirror(self, conditions: Any, job: Job) -> Outcome:
        state = job.status.state
        message = job.status.message
        if self.exist_type:
            conditions.set(self.exist_type, ConditionStatus.TRUE)
        if self.processing_type and state not in (None, JobState.PENDING):
            conditions.set(self.processing_type, ConditionStatus.TRUE)

        if state is JobState.COMPLETED:
            conditions.set(self.success_type, ConditionStatus.TRUE, message)
            return Terminal.succeeded(message)
        if state is JobState.FAILED:
            conditions.set(self.success_type, ConditionStatus.FALSE, message)
            return Terminal.failed(message)
        conditions.set(self.success_type, ConditionStatus.UNKNOWN, message)
        return Progressed(f"job {job.name} is {state.value if state else 'new'}")


__all__ = ["JobStage", "Stage"]
