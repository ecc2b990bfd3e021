"""Tests for regops.pipeline.replicate — synchronize → replicate → sign."""

from __future__ import annotations

import pytest

from regops.core.errors import ConflictError, NotFoundError
from regops.core.models import ImageReplicate, Job, JobState, RegistryKind, ReplicatePhase
from regops.execution.results import ReconcileResult
from regops.pipeline.replicate import (
    ConditionTypes,
    ImageReplicatePipeline,
    ImageReplicateReconciler,
    expected_condition_types,
    needs_signing,
    needs_sync,
)

C = ConditionTypes


@pytest.fixture
def reconciler(store, guard, state_machine, clock):
    return ImageReplicateReconciler(store, guard, state_machine, clock=clock, requeue_after=2.0)


def finish(store, state_machine, name, success=True, message="ok"):
    state_machine.mark_completed(store.get(Job, "default", name), success, message)


def current(store, name="copy-nginx"):
    return store.get(ImageReplicate, "default", name)


class TestExpectedConditionTypes:
    """Tests for the expected condition set per spec."""

    def test_external_source_with_signer(self, make_replicate):
        spec = make_replicate(signer="ops").spec
        assert needs_sync(spec)
        assert needs_signing(spec)
        assert expected_condition_types(spec) == [
            C.SYNCHRONIZED,
            C.REPLICATE,
            C.REPLICATE_PROCESSING,
            C.REPLICATE_SUCCESS,
            C.SIGN_REQUEST_EXIST,
            C.SIGNING,
            C.SIGNING_SUCCESS,
        ]

    def test_internal_source_without_signer(self, make_replicate):
        spec = make_replicate(source_kind=RegistryKind.HPCD).spec
        assert expected_condition_types(spec) == [
            C.REPLICATE,
            C.REPLICATE_PROCESSING,
            C.REPLICATE_SUCCESS,
        ]


class TestPipelineStages:
    """Tests for ImageReplicatePipeline stage wiring."""

    def test_stage_order_and_requirements(self, state_machine, make_replicate):
        stages = ImageReplicatePipeline(state_machine).stages(make_replicate(signer="ops").spec)
        assert [s.name for s in stages] == ["synchronize", "replicate", "sign"]
        assert stages[0].requirements == ()
        assert stages[1].requirements == (C.SYNCHRONIZED,)
        assert stages[2].requirements == (C.REPLICATE_SUCCESS,)

    def test_internal_source_replicate_has_no_requirement(self, state_machine, make_replicate):
        spec = make_replicate(source_kind=RegistryKind.HPCD).spec
        stages = ImageReplicatePipeline(state_machine).stages(spec)
        assert [s.name for s in stages] == ["replicate"]
        assert stages[0].requirements == ()


class TestReconcileWalkthrough:
    """A full external-source, signed replicate driven pass by pass."""

    def test_happy_path(self, store, state_machine, reconciler, make_replicate):
        store.create(make_replicate(signer="ops"))

        # pass 1: finalizer only
        assert reconciler.reconcile("default", "copy-nginx") == ReconcileResult.done()
        assert current(store).metadata.has_finalizer("regops.io/finalizer")
        assert store.list(Job) == []

        # pass 2: sync job created, later stages wait
        assert reconciler.reconcile("default", "copy-nginx") == ReconcileResult.again(2.0)
        repl = current(store)
        assert [j.name for j in store.list(Job)] == ["copy-nginx-sync"]
        assert repl.status.phase is ReplicatePhase.PENDING
        assert len(repl.status.conditions) == 7
        sync_job = store.get(Job, "default", "copy-nginx-sync")
        assert sync_job.spec.priority == 100
        assert sync_job.metadata.is_owned_by(repl.metadata.uid)

        # pass 3: sync done, replicate job created
        finish(store, state_machine, "copy-nginx-sync", message="synchronized 3 repositories")
        reconciler.reconcile("default", "copy-nginx")
        repl = current(store)
        assert repl.status.conditions.is_true(C.SYNCHRONIZED)
        assert repl.status.conditions.is_true(C.REPLICATE)
        assert repl.status.phase is ReplicatePhase.PROCESSING
        assert {j.name for j in store.list(Job)} == {"copy-nginx-sync", "copy-nginx-replicate"}

        # pass 4: replicate done, sign job created
        finish(store, state_machine, "copy-nginx-replicate")
        reconciler.reconcile("default", "copy-nginx")
        repl = current(store)
        assert repl.status.conditions.is_true(C.REPLICATE_PROCESSING)
        assert repl.status.conditions.is_true(C.REPLICATE_SUCCESS)
        assert repl.status.conditions.is_true(C.SIGN_REQUEST_EXIST)
        assert repl.status.phase is ReplicatePhase.PROCESSING

        # pass 5: everything settled
        finish(store, state_machine, "copy-nginx-sign")
        assert reconciler.reconcile("default", "copy-nginx") == ReconcileResult.done()
        repl = current(store)
        assert repl.status.phase is ReplicatePhase.SUCCESS
        assert all(c.is_true for c in repl.status.conditions)

    def test_replicate_failure_fails_resource(self, store, state_machine, reconciler, make_replicate):
        store.create(make_replicate(source_kind=RegistryKind.HPCD, signer="ops"))
        reconciler.reconcile("default", "copy-nginx")
        reconciler.reconcile("default", "copy-nginx")
        assert [j.name for j in store.list(Job)] == ["copy-nginx-replicate"]

        finish(store, state_machine, "copy-nginx-replicate", success=False, message="manifest not found")
        assert reconciler.reconcile("default", "copy-nginx") == ReconcileResult.done()

        repl = current(store)
        assert repl.status.phase is ReplicatePhase.FAIL
        assert repl.status.conditions.get(C.REPLICATE_SUCCESS).message == "manifest not found"
        assert "copy-nginx-sign" not in {j.name for j in store.list(Job)}

    def test_unchanged_pass_writes_nothing(self, store, reconciler, make_replicate):
        store.create(make_replicate(source_kind=RegistryKind.HPCD))
        reconciler.reconcile("default", "copy-nginx")
        reconciler.reconcile("default", "copy-nginx")
        version = current(store).metadata.resource_version
        reconciler.reconcile("default", "copy-nginx")
        assert current(store).metadata.resource_version == version

    def test_phase_change_stamps_time(self, store, clock, reconciler, make_replicate):
        store.create(make_replicate(source_kind=RegistryKind.HPCD))
        reconciler.reconcile("default", "copy-nginx")
        clock.advance(30)
        reconciler.reconcile("default", "copy-nginx")
        assert current(store).status.phase_changed_at == clock.now

    def test_signer_removed_prunes_sign_conditions(self, store, reconciler, make_replicate):
        store.create(make_replicate(source_kind=RegistryKind.HPCD, signer="ops"))
        reconciler.reconcile("default", "copy-nginx")
        reconciler.reconcile("default", "copy-nginx")
        repl = current(store)
        assert C.SIGNING_SUCCESS in repl.status.conditions

        repl.spec.signer = None
        store.patch(repl)
        reconciler.reconcile("default", "copy-nginx")
        assert C.SIGNING_SUCCESS not in current(store).status.conditions


class TestReconcileConflicts:
    """A concurrent write during a pass re-runs it from a fresh read."""

    def test_concurrent_edit_retried_in_same_call(self, store, reconciler, make_replicate, monkeypatch):
        store.create(make_replicate(source_kind=RegistryKind.HPCD))
        reconciler.reconcile("default", "copy-nginx")

        real_patch_status = store.patch_status
        edits = []

        def patch_status(obj):
            if isinstance(obj, ImageReplicate) and not edits:
                other = current(store)
                other.metadata.labels = {"edited": "yes"}
                edits.append(store.patch(other))
            return real_patch_status(obj)

        monkeypatch.setattr(store, "patch_status", patch_status)

        assert reconciler.reconcile("default", "copy-nginx") == ReconcileResult.again(2.0)

        repl = current(store)
        assert len(edits) == 1
        assert repl.metadata.labels == {"edited": "yes"}
        assert repl.status.conditions.is_true(C.REPLICATE)
        assert repl.status.phase is ReplicatePhase.PROCESSING
        assert [j.name for j in store.list(Job)] == ["copy-nginx-replicate"]

    def test_retries_exhausted_requeues(self, store, guard, state_machine, clock, make_replicate, monkeypatch):
        reconciler = ImageReplicateReconciler(
            store, guard, state_machine, clock=clock, requeue_after=2.0, conflict_retries=2
        )
        store.create(make_replicate(source_kind=RegistryKind.HPCD))
        reconciler.reconcile("default", "copy-nginx")

        real_patch_status = store.patch_status
        attempts = []

        def patch_status(obj):
            if isinstance(obj, ImageReplicate):
                attempts.append(obj.metadata.resource_version)
                raise ConflictError("stale")
            return real_patch_status(obj)

        monkeypatch.setattr(store, "patch_status", patch_status)

        assert reconciler.reconcile("default", "copy-nginx") == ReconcileResult.again(2.0)
        assert len(attempts) == 2
        assert current(store).status.phase is None


class TestReconcileDeletion:
    """Deleting an ImageReplicate removes its subordinate jobs."""

    def test_missing(self, reconciler):
        assert reconciler.reconcile("default", "ghost") == ReconcileResult.done()

    def test_owned_jobs_removed_with_parent(self, store, reconciler, make_replicate, make_job):
        store.create(make_replicate())
        reconciler.reconcile("default", "copy-nginx")
        reconciler.reconcile("default", "copy-nginx")
        store.create(make_job("unrelated"))
        assert len(store.list(Job)) == 2

        store.delete(current(store))
        assert reconciler.reconcile("default", "copy-nginx") == ReconcileResult.done()

        with pytest.raises(NotFoundError):
            current(store)
        assert [j.name for j in store.list(Job)] == ["unrelated"]
