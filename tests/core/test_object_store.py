"""Tests for regops.core.store.memory — versioned in-memory store."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from regops.core.errors import AlreadyExistsError, ConflictError, NotFoundError
from regops.core.models import Job, ObjectMeta, OwnerReference
from regops.core.store import WatchEventType

T0 = datetime(2025, 1, 1, 12, 0, 0, tzinfo=UTC)


class TestCreateGet:
    """Tests for create() and get()."""

    def test_create_assigns_identity(self, store, make_job):
        created = store.create(make_job("j1"))
        assert created.metadata.uid
        assert created.metadata.resource_version
        assert created.metadata.creation_timestamp == T0

    def test_get_returns_copy(self, store, make_job):
        store.create(make_job("j1"))
        a = store.get(Job, "default", "j1")
        a.status.message = "mutated"
        assert store.get(Job, "default", "j1").status.message == ""

    def test_duplicate_create(self, store, make_job):
        store.create(make_job("j1"))
        with pytest.raises(AlreadyExistsError):
            store.create(make_job("j1"))

    def test_get_missing(self, store):
        with pytest.raises(NotFoundError):
            store.get(Job, "default", "nope")


class TestList:
    """Tests for list()."""

    def test_sorted_and_filtered(self, store, make_job):
        store.create(make_job("b"))
        store.create(make_job("a"))
        store.create(make_job("c", namespace="other"))
        assert [j.name for j in store.list(Job)] == ["a", "b", "c"]
        assert [j.name for j in store.list(Job, namespace="default")] == ["a", "b"]

    def test_label_selector(self, store, make_job):
        labelled = make_job("x")
        labelled.metadata.labels = {"app": "sync"}
        store.create(labelled)
        store.create(make_job("y"))
        assert [j.name for j in store.list(Job, labels={"app": "sync"})] == ["x"]


class TestOptimisticConcurrency:
    """Tests for resource_version checks on writes."""

    def test_stale_status_write_conflicts(self, store, make_job):
        job = store.create(make_job("j1"))
        fresh = store.get(Job, "default", "j1")
        fresh.status.message = "first"
        store.patch_status(fresh)
        job.status.message = "second"
        with pytest.raises(ConflictError):
            store.patch_status(job)

    def test_patch_status_leaves_spec(self, store, make_job):
        job = store.create(make_job("j1", priority=3))
        job.spec.priority = 9
        job.status.message = "hello"
        updated = store.patch_status(job)
        assert updated.spec.priority == 3
        assert updated.status.message == "hello"

    def test_versions_increase(self, store, make_job):
        job = store.create(make_job("j1"))
        job.status.message = "x"
        updated = store.patch_status(job)
        assert int(updated.metadata.resource_version) > int(job.metadata.resource_version)


class TestDelete:
    """Tests for delete() with finalizers and owners."""

    def test_plain_delete_removes(self, store, make_job):
        job = store.create(make_job("j1"))
        store.delete(job)
        with pytest.raises(NotFoundError):
            store.get(Job, "default", "j1")

    def test_finalizer_blocks_removal(self, store, make_job, clock):
        manifest = make_job("j1")
        manifest.metadata.finalizers = ["regops.io/finalizer"]
        job = store.create(manifest)
        clock.advance(5)
        store.delete(job)
        stored = store.get(Job, "default", "j1")
        assert stored.metadata.is_deleting
        assert stored.metadata.deletion_timestamp == clock.now

    def test_removing_last_finalizer_completes_delete(self, store, make_job):
        manifest = make_job("j1")
        manifest.metadata.finalizers = ["regops.io/finalizer"]
        store.delete(store.create(manifest))
        stored = store.get(Job, "default", "j1")
        stored.metadata.finalizers = []
        store.patch(stored)
        with pytest.raises(NotFoundError):
            store.get(Job, "default", "j1")

    def test_owner_cascade(self, store, make_job):
        owner = store.create(make_job("owner"))
        dependent = make_job("child")
        dependent.metadata.owner_references = [
            OwnerReference(Job.kind, "owner", owner.metadata.uid)
        ]
        store.create(dependent)
        store.delete(owner)
        assert store.list(Job) == []

    def test_delete_missing(self, store):
        with pytest.raises(NotFoundError):
            store.delete(Job(metadata=ObjectMeta(name="ghost")))


class TestWatch:
    """Tests for watch streams."""

    def test_events_in_order(self, store, make_job):
        watch = store.watch(Job)
        job = store.create(make_job("j1"))
        job.status.message = "x"
        store.patch_status(job)
        store.delete(store.get(Job, "default", "j1"))
        types = [watch.next(timeout=1).type for _ in range(3)]
        assert types == [WatchEventType.ADDED, WatchEventType.MODIFIED, WatchEventType.DELETED]

    def test_stop_ends_iteration(self, store, make_job):
        watch = store.watch(Job)
        store.create(make_job("j1"))
        watch.stop()
        events = list(watch)
        assert len(events) == 1
        assert watch.next(timeout=0.01) is None

    def test_next_times_out(self, store):
        assert store.watch(Job).next(timeout=0.01) is None
