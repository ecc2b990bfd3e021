"""ImageReplicate pipeline: synchronize → replicate → sign.

::

    ImageReplicate
      │
      ├── SyncStage       (only for an external source registry)
      │     job  <name>-sync       SynchronizeExtReg  priority 100, ttl 60
      │     sets ImageReplicateSynchronized
      │
      ├── ReplicateStage  requires ImageReplicateSynchronized (when expected)
      │     job  <name>-replicate  ImageReplicate
      │     sets ImageReplicate, ImageReplicateProcessing, ImageReplicateSuccess
      │
      └── SignStage       (only when spec.signer is set)
            requires ImageReplicateSuccess
            job  <name>-sign       ImageSign
            sets ImageSignRequestExist, ImageSigning, ImageSigningSuccess

Every stage runs on every pass; an unmet requirement is a no-op. The
phase is derived from the ledger afterwards and the status is written
only if the ledger or the phase changed. A write conflict re-runs the
whole pass from a fresh read, up to ``conflict_retries`` times.
Subordinate jobs are owned by the ImageReplicate, so deleting it cascades.
"""

from __future__ import annotations

import copy
from collections.abc import Callable
from datetime import datetime

from regops.core.errors import ConflictError, NotFoundError
from regops.core.logging import get_logger
from regops.core.models import (
    ImageReplicate,
    ImageReplicateSpec,
    Job,
    ReplicatePhase,
)
from regops.core.store.protocol import ObjectStore
from regops.core.timestamps import utc_now
from regops.execution.finalizer import FinalizerGuard
from regops.execution.results import ReconcileResult
from regops.execution.state import JobStateMachine
from regops.pipeline.phase import derive_phase
from regops.pipeline.schemes import image_replicate_job, image_replicate_sync_job, image_sign_job
from regops.pipeline.stage import JobStage, Stage

logger = get_logger(__name__)


class ConditionTypes:
    SYNCHRONIZED = "ImageReplicateSynchronized"
    REPLICATE = "ImageReplicate"
    REPLICATE_PROCESSING = "ImageReplicateProcessing"
    REPLICATE_SUCCESS = "ImageReplicateSuccess"
    SIGN_REQUEST_EXIST = "ImageSignRequestExist"
    SIGNING = "ImageSigning"
    SIGNING_SUCCESS = "ImageSigningSuccess"


# A False value on any of these fails the whole ImageReplicate
TERMINAL_CONDITION_TYPES = (
    ConditionTypes.SYNCHRONIZED,
    ConditionTypes.REPLICATE_SUCCESS,
    ConditionTypes.SIGNING_SUCCESS,
)


def needs_sync(spec: ImageReplicateSpec) -> bool:
    return spec.from_image.registry_kind.is_external


def needs_signing(spec: ImageReplicateSpec) -> bool:
    return bool(spec.signer)


def expected_condition_types(spec: ImageReplicateSpec) -> list[str]:
    """Condition types this spec should carry, in pipeline order."""
    expected = []
    if needs_sync(spec):
        expected.append(ConditionTypes.SYNCHRONIZED)
    expected += [
        ConditionTypes.REPLICATE,
        ConditionTypes.REPLICATE_PROCESSING,
        ConditionTypes.REPLICATE_SUCCESS,
    ]
    if needs_signing(spec):
        expected += [
            ConditionTypes.SIGN_REQUEST_EXIST,
            ConditionTypes.SIGNING,
            ConditionTypes.SIGNING_SUCCESS,
        ]
    return expected


class ImageReplicatePipeline:
    """Builds the stage list for one ImageReplicate spec."""

    def __init__(self, state_machine: JobStateMachine) -> None:
        self._states = state_machine

    def sync_stage(self) -> JobStage:
        return JobStage(
            "synchronize",
            self._states,
            manifest=image_replicate_sync_job,
            success_type=ConditionTypes.SYNCHRONIZED,
        )

    def replicate_stage(self, spec: ImageReplicateSpec) -> JobStage:
        stage = JobStage(
            "replicate",
            self._states,
            manifest=image_replicate_job,
            exist_type=ConditionTypes.REPLICATE,
            processing_type=ConditionTypes.REPLICATE_PROCESSING,
            success_type=ConditionTypes.REPLICATE_SUCCESS,
        )
        if needs_sync(spec):
            stage.require(ConditionTypes.SYNCHRONIZED)
        return stage

    def sign_stage(self) -> JobStage:
        stage = JobStage(
            "sign",
            self._states,
            manifest=image_sign_job,
            exist_type=ConditionTypes.SIGN_REQUEST_EXIST,
            processing_type=ConditionTypes.SIGNING,
            success_type=ConditionTypes.SIGNING_SUCCESS,
        )
        return stage.require(ConditionTypes.REPLICATE_SUCCESS)

    def stages(self, spec: ImageReplicateSpec) -> list[Stage]:
        stages: list[Stage] = []
        if needs_sync(spec):
            stages.append(self.sync_stage())
        stages.append(self.replicate_stage(spec))
        if needs_signing(spec):
            stages.append(self.sign_stage())
        return stages


class ImageReplicateReconciler:
    """One pass over one ImageReplicate record."""

    def __init__(
        self,
        store: ObjectStore,
        guard: FinalizerGuard,
        state_machine: JobStateMachine,
        *,
        clock: Callable[[], datetime] = utc_now,
        requeue_after: float | None = None,
        conflict_retries: int = 5,
    ) -> None:
        self._store = store
        self._guard = guard
        self._conflict_retries = conflict_retries
        self._pipeline = ImageReplicatePipeline(state_machine)
        self._clock = clock
        self._requeue_after = requeue_after

    def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        for attempt in range(1, self._conflict_retries + 1):
            try:
                repl = self._store.get(ImageReplicate, namespace, name)
            except NotFoundError:
                return ReconcileResult.done()
            try:
                return self._reconcile_pass(repl)
            except ConflictError:
                logger.debug(
                    "image_replicate_status_conflict",
                    namespace=namespace,
                    name=name,
                    attempt=attempt,
                )
        logger.warning(
            "image_replicate_conflict_retries_exhausted",
            namespace=namespace,
            name=name,
            attempts=self._conflict_retries,
        )
        return ReconcileResult.again(self._requeue_after)

    def _reconcile_pass(self, repl: ImageReplicate) -> ReconcileResult:
        namespace, name = repl.namespace, repl.name
        if repl.metadata.is_deleting:
            self._guard.finalize(repl, self._delete_owned_jobs)
            return ReconcileResult.done()
        if self._guard.ensure(repl):
            return ReconcileResult.done()

        before = copy.deepcopy(repl.status)
        now = self._clock()
        expected = expected_condition_types(repl.spec)
        repl.status.conditions.reconcile_expected(expected, now=now)

        outcomes = [
            stage.reconcile_by_condition_status(repl)
            for stage in self._pipeline.stages(repl.spec)
        ]

        phase = derive_phase(repl.status.conditions, expected, TERMINAL_CONDITION_TYPES)
        if phase is not repl.status.phase:
            logger.info(
                "image_replicate_phase_changed",
                namespace=namespace,
                name=name,
                old=repl.status.phase.value if repl.status.phase else None,
                new=phase.value,
            )
            repl.status.phase = phase
            repl.status.phase_changed_at = now

        if repl.status != before:
            try:
                self._store.patch_status(repl)
            except NotFoundError:
                return ReconcileResult.done()

        if phase in (ReplicatePhase.SUCCESS, ReplicatePhase.FAIL):
            return ReconcileResult.done()
        if any(o.needs_retry for o in outcomes):
            return ReconcileResult.again(self._requeue_after)
        return ReconcileResult.done()

    def _delete_owned_jobs(self, repl: ImageReplicate) -> None:
        for job in self._store.list(Job, namespace=repl.namespace):
            if job.metadata.is_owned_by(repl.metadata.uid) and not job.metadata.is_deleting:
                logger.info(
                    "owned_job_deleted",
                    namespace=job.namespace,
                    name=job.name,
                    owner=repl.name,
                )
                try:
                    self._store.delete(job)
                except NotFoundError:
                    continue


__all__ = [
    "ConditionTypes",
    "ImageReplicatePipeline",
    "ImageReplicateReconciler",
    "TERMINAL_CONDITION_TYPES",
    "expected_condition_types",
    "needs_signing",
    "needs_sync",
]
