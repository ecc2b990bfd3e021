"""Tests for regops.execution.dispatcher — handler routing and run queue."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from regops.core.errors import TransientError, ValidationError
from regops.core.models import Job, JobState, JobType
from regops.execution.dispatcher import JobDispatcher, JobPool, target_key
from regops.execution.results import Progressed, Terminal, WaitingOnDependency

T0 = datetime(2025, 1, 1, 12, 0, 0, tzinfo=UTC)


class RecordingHandler:
    """Handler double returning a fixed outcome (or raising it)."""

    def __init__(self, outcome=None):
        self.outcome = outcome if outcome is not None else Terminal.succeeded("ok")
        self.handled: list[Job] = []
        self.cleaned: list[Job] = []
        self.during_handle = None

    def handle(self, job):
        self.handled.append(job)
        if self.during_handle is not None:
            self.during_handle(job)
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome

    def cleanup(self, job):
        self.cleaned.append(job)



class ReleasingHandler(RecordingHandler):
    def __init__(self, outcome=None):
        super().__init__(outcome)
        self.released: list[str] = []

    def release(self, job):
        self.released.append(job.name)

@pytest.fixture
def requeued():
    return []


def make_dispatcher(store, state_machine, handler, requeued, **kwargs):
    return JobDispatcher(
        store,
        {JobType.IMAGE_REPLICATE: handler},
        state_machine,
        requeue=lambda job, after: requeued.append((job.name, after)),
        requeue_after=5.0,
        **kwargs,
    )


class TestJobPool:
    """Tests for JobPool ordering."""

    def _job(self, make_job, name, priority=0, age=0):
        job = make_job(name, priority=priority)
        job.metadata.creation_timestamp = T0 + timedelta(seconds=age)
        return job

    def test_priority_then_age_then_name(self, make_job):
        pool = JobPool()
        pool.upsert(self._job(make_job, "late", age=10))
        pool.upsert(self._job(make_job, "urgent", priority=100, age=20))
        pool.upsert(self._job(make_job, "b", age=0))
        pool.upsert(self._job(make_job, "a", age=0))
        assert pool.names() == ["default/urgent", "default/a", "default/b", "default/late"]

    def test_upsert_replaces(self, make_job):
        pool = JobPool()
        pool.upsert(self._job(make_job, "j1", priority=1))
        pool.upsert(self._job(make_job, "j1", priority=5))
        assert len(pool) == 1
        assert ("default", "j1") in pool

    def test_pop_next_skips_ineligible(self, make_job):
        pool = JobPool()
        pool.upsert(self._job(make_job, "first", priority=10))
        pool.upsert(self._job(make_job, "second"))
        job = pool.pop_next(lambda j: j.name != "first")
        assert job.name == "second"
        assert pool.names() == ["default/first"]

    def test_remove_missing(self):
        assert JobPool().remove(("default", "nope")) is False


class TestTargetKey:
    """Tests for target_key()."""

    def test_defaults_to_job_namespace(self, make_job):
        job = make_job("j1", target="hub", namespace="ops")
        assert target_key(job) == ("ImageReplicate", "ops", "hub")


class TestOutcomeMapping:
    """Handler outcomes become state machine writes."""

    def test_success_completes(self, store, state_machine, make_job, requeued):
        handler = RecordingHandler(Terminal.succeeded("copied"))
        dispatcher = make_dispatcher(store, state_machine, handler, requeued)
        dispatcher.notify(store.create(make_job("j1")))

        stored = store.get(Job, "default", "j1")
        assert stored.status.state is JobState.COMPLETED
        assert stored.status.message == "copied"
        assert handler.handled[0].status.state is JobState.RUNNING
        assert dispatcher.stats.completed == 1
        assert requeued == []

    def test_failure_fails(self, store, state_machine, make_job, requeued):
        handler = RecordingHandler(Terminal.failed("manifest not found"))
        dispatcher = make_dispatcher(store, state_machine, handler, requeued)
        dispatcher.notify(store.create(make_job("j1")))
        stored = store.get(Job, "default", "j1")
        assert stored.status.state is JobState.FAILED
        assert stored.status.message == "manifest not found"
        assert dispatcher.stats.failed == 1

    @pytest.mark.parametrize(
        "outcome", [Progressed("half way"), WaitingOnDependency("half way")]
    )
    def test_non_terminal_requeues(self, store, state_machine, make_job, requeued, outcome):
        dispatcher = make_dispatcher(store, state_machine, RecordingHandler(outcome), requeued)
        dispatcher.notify(store.create(make_job("j1")))
        stored = store.get(Job, "default", "j1")
        assert stored.status.state is JobState.RUNNING
        assert stored.status.message == "half way"
        assert requeued == [("j1", 5.0)]
        assert dispatcher.stats.retried == 1

    def test_retryable_error_keeps_running(self, store, state_machine, make_job, requeued):
        handler = RecordingHandler(TransientError("registry timeout"))
        dispatcher = make_dispatcher(store, state_machine, handler, requeued)
        dispatcher.notify(store.create(make_job("j1")))
        stored = store.get(Job, "default", "j1")
        assert stored.status.state is JobState.RUNNING
        assert stored.status.message == "registry timeout"
        assert requeued == [("j1", 5.0)]

    def test_permanent_error_fails(self, store, state_machine, make_job, requeued):
        handler = RecordingHandler(ValidationError("bad image reference"))
        dispatcher = make_dispatcher(store, state_machine, handler, requeued)
        dispatcher.notify(store.create(make_job("j1")))
        stored = store.get(Job, "default", "j1")
        assert stored.status.state is JobState.FAILED
        assert stored.status.message == "bad image reference"
        assert requeued == []


    def test_local_io_error_fails(self, store, state_machine, make_job, requeued):
        handler = RecordingHandler(FileNotFoundError(2, "No such file or directory"))
        dispatcher = make_dispatcher(store, state_machine, handler, requeued)
        dispatcher.notify(store.create(make_job("j1")))
        assert store.get(Job, "default", "j1").status.state is JobState.FAILED
        assert requeued == []

    def test_completed_job_released(self, store, state_machine, make_job, requeued):
        handler = ReleasingHandler(Terminal.succeeded("copied"))
        dispatcher = make_dispatcher(store, state_machine, handler, requeued)
        dispatcher.notify(store.create(make_job("j1")))
        assert handler.released == ["j1"]

    def test_failed_job_not_released(self, store, state_machine, make_job, requeued):
        handler = ReleasingHandler(Terminal.failed("manifest not found"))
        dispatcher = make_dispatcher(store, state_machine, handler, requeued)
        dispatcher.notify(store.create(make_job("j1")))
        assert handler.released == []

class TestNotifyRouting:
    """Tests for what notify() does with each kind of snapshot."""

    def test_unroutable_job_type(self, store, state_machine, make_job, requeued):
        handler = RecordingHandler()
        dispatcher = make_dispatcher(store, state_machine, handler, requeued)
        dispatcher.notify(store.create(make_job("j1", job_type=JobType.IMAGE_SCAN)))
        assert dispatcher.stats.unroutable == 1
        assert handler.handled == []
        assert store.get(Job, "default", "j1").status.state is JobState.PENDING

    def test_terminal_job_ignored(self, store, state_machine, make_job, requeued):
        handler = RecordingHandler()
        dispatcher = make_dispatcher(store, state_machine, handler, requeued)
        dispatcher.notify(store.create(make_job("j1", state=JobState.COMPLETED)))
        assert handler.handled == []
        assert dispatcher.stats.dispatched == 0

    def test_completed_snapshot_released(self, store, state_machine, make_job, requeued):
        handler = ReleasingHandler()
        dispatcher = make_dispatcher(store, state_machine, handler, requeued)
        dispatcher.notify(store.create(make_job("j1", state=JobState.COMPLETED)))
        dispatcher.notify(store.create(make_job("j2", state=JobState.FAILED)))
        assert handler.released == ["j1"]
        assert handler.handled == []

    def test_unset_state_ignored(self, store, state_machine, make_job, requeued):
        handler = RecordingHandler()
        dispatcher = make_dispatcher(store, state_machine, handler, requeued)
        dispatcher.notify(store.create(make_job("j1", state=None)))
        assert handler.handled == []

    def test_deleting_job_gets_cleanup(self, store, state_machine, make_job, requeued):
        handler = RecordingHandler()
        dispatcher = make_dispatcher(store, state_machine, handler, requeued)
        manifest = make_job("j1", state=JobState.COMPLETED)
        manifest.metadata.finalizers = ["regops.io/finalizer"]
        store.delete(store.create(manifest))
        dispatcher.notify(store.get(Job, "default", "j1"))
        assert [j.name for j in handler.cleaned] == ["j1"]
        assert handler.handled == []
        assert dispatcher.stats.cleanups == 1

    def test_stopped_dispatcher_drops(self, store, state_machine, make_job, requeued):
        handler = RecordingHandler()
        dispatcher = make_dispatcher(store, state_machine, handler, requeued)
        dispatcher.stop()
        dispatcher.notify(store.create(make_job("j1")))
        assert handler.handled == []
        assert dispatcher.pending() == []


class TestRunQueue:
    """Tests for the bounded, target-exclusive run queue."""

    def test_rejects_zero_slots(self, store, state_machine):
        with pytest.raises(ValueError):
            JobDispatcher(store, {}, state_machine, max_concurrent_jobs=0)

    def test_same_target_waits_for_in_flight_call(self, store, state_machine, make_job, requeued):
        handler = RecordingHandler()
        dispatcher = make_dispatcher(store, state_machine, handler, requeued, max_concurrent_jobs=2)
        second = store.create(make_job("b", target="hub"))
        observed = {}

        def notify_second(job):
            if job.name == "a":
                dispatcher.notify(second)
                observed["pending"] = dispatcher.pending()
                observed["running"] = dispatcher.running()

        handler.during_handle = notify_second
        dispatcher.notify(store.create(make_job("a", target="hub")))

        assert observed["pending"] == ["default/b"]
        assert observed["running"] == ["default/a"]
        assert [j.name for j in handler.handled] == ["a", "b"]
        assert store.get(Job, "default", "b").status.state is JobState.COMPLETED

    def test_other_target_runs_alongside(self, store, state_machine, make_job, requeued):
        handler = RecordingHandler()
        dispatcher = make_dispatcher(store, state_machine, handler, requeued, max_concurrent_jobs=2)
        second = store.create(make_job("b", target="other"))
        observed = {}

        def notify_second(job):
            if job.name == "a":
                dispatcher.notify(second)
                observed["pending"] = dispatcher.pending()

        handler.during_handle = notify_second
        dispatcher.notify(store.create(make_job("a", target="hub")))

        # b ran inline inside a's handle() call
        assert observed["pending"] == []
        assert [j.name for j in handler.handled] == ["a", "b"]

    def test_single_slot_queues(self, store, state_machine, make_job, requeued):
        handler = RecordingHandler()
        dispatcher = make_dispatcher(store, state_machine, handler, requeued)
        second = store.create(make_job("b", target="other"))
        observed = {}

        def notify_second(job):
            if job.name == "a":
                dispatcher.notify(second)
                observed["pending"] = dispatcher.pending()

        handler.during_handle = notify_second
        dispatcher.notify(store.create(make_job("a", target="hub")))
        assert observed["pending"] == ["default/b"]
        assert [j.name for j in handler.handled] == ["a", "b"]

    def test_wait_idle(self, store, state_machine, requeued):
        dispatcher = make_dispatcher(store, state_machine, RecordingHandler(), requeued)
        assert dispatcher.wait_idle(timeout=0.1) is True

    def test_stats_dict(self, store, state_machine, make_job, requeued):
        dispatcher = make_dispatcher(store, state_machine, RecordingHandler(), requeued)
        dispatcher.notify(store.create(make_job("j1")))
        stats = dispatcher.stats.to_dict()
        assert stats["notified"] == 1
        assert stats["dispatched"] == 1
        assert stats["completed"] == 1
