"""
Shared pytest fixtures and configuration for regops tests.

This module provides:
- A controllable clock and an in-memory store that uses it
- Wired state machine / finalizer guard / registry fixtures
- Factories for Job, CronJob and ImageReplicate manifests
- Settings cache isolation

Usage:
    Fixtures are auto-discovered by pytest. Simply use them as function
    arguments (pytest injects them automatically).

    def test_something(store, make_job):
        job = store.create(make_job("j1"))
"""

from __future__ import annotations

import sys
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

# Ensure regops package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from regops.core.models import (  # noqa: E402
    CronJob,
    CronJobSpec,
    ImageRef,
    ImageReplicate,
    ImageReplicateSpec,
    Job,
    JobClaim,
    JobSpec,
    JobState,
    JobStatus,
    JobType,
    ObjectMeta,
    ObjectRef,
    RegistryKind,
)
from regops.core.settings import clear_settings_cache  # noqa: E402
from regops.core.store import InMemoryObjectStore  # noqa: E402
from regops.execution.finalizer import FinalizerGuard  # noqa: E402
from regops.execution.registry import HandlerRegistry  # noqa: E402
from regops.execution.state import JobStateMachine  # noqa: E402

T0 = datetime(2025, 1, 1, 12, 0, 0, tzinfo=UTC)


# =============================================================================
# Clock
# =============================================================================


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now

    def set(self, when: datetime) -> datetime:
        self.now = when
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# =============================================================================
# Wiring
# =============================================================================


@pytest.fixture
def store(clock: FakeClock) -> InMemoryObjectStore:
    return InMemoryObjectStore(clock=clock)


@pytest.fixture
def state_machine(store: InMemoryObjectStore, clock: FakeClock) -> JobStateMachine:
    return JobStateMachine(store, clock=clock)


@pytest.fixture
def guard(store: InMemoryObjectStore) -> FinalizerGuard:
    return FinalizerGuard(store)


@pytest.fixture
def registry() -> HandlerRegistry:
    return HandlerRegistry()


@pytest.fixture(autouse=True)
def _isolate_settings(monkeypatch: pytest.MonkeyPatch):
    """Every test starts from default settings."""
    monkeypatch.chdir(Path(__file__).parent)
    clear_settings_cache()
    yield
    clear_settings_cache()


# =============================================================================
# Manifest factories
# =============================================================================


@pytest.fixture
def make_job() -> Callable[..., Job]:
    def _make(
        name: str,
        *,
        job_type: JobType = JobType.IMAGE_REPLICATE,
        target: str = "target",
        namespace: str = "default",
        priority: int = 0,
        ttl: int = -1,
        state: JobState | None = JobState.PENDING,
    ) -> Job:
        return Job(
            metadata=ObjectMeta(name=name, namespace=namespace),
            spec=JobSpec(
                claim=JobClaim(job_type, ObjectRef(target)),
                priority=priority,
                ttl=ttl,
            ),
            status=JobStatus(state=state),
        )

    return _make


@pytest.fixture
def make_cronjob() -> Callable[..., CronJob]:
    def _make(
        name: str = "nightly",
        *,
        schedule: str = "*/1 * * * *",
        namespace: str = "default",
        job_type: JobType = JobType.SYNCHRONIZE_EXT_REG,
        ttl: int = 180,
    ) -> CronJob:
        return CronJob(
            metadata=ObjectMeta(name=name, namespace=namespace),
            spec=CronJobSpec(
                schedule=schedule,
                job_spec=JobSpec(claim=JobClaim(job_type, ObjectRef("registry")), ttl=ttl),
            ),
        )

    return _make


@pytest.fixture
def make_replicate() -> Callable[..., ImageReplicate]:
    def _make(
        name: str = "copy-nginx",
        *,
        source_kind: RegistryKind = RegistryKind.DOCKER_HUB,
        signer: str | None = None,
        namespace: str = "default",
    ) -> ImageReplicate:
        return ImageReplicate(
            metadata=ObjectMeta(name=name, namespace=namespace),
            spec=ImageReplicateSpec(
                from_image=ImageRef("hub", source_kind, "library/nginx:1.25"),
                to_image=ImageRef("internal", RegistryKind.HPCD, "mirror/nginx:1.25"),
                signer=signer,
            ),
        )

    return _make
