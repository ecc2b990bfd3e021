"""TTL Collector - periodic deletion of finished jobs past their retention.

TTL expiry is a time predicate with no natural watch trigger, so the
collector polls: every ``ttl_sweep_interval`` seconds it lists all jobs and
deletes the finished ones whose window has elapsed.

Retention rules (``spec.ttl`` in seconds)::

    ttl == 0   delete as soon as the job is observed finished
    ttl <  0   never delete
    ttl >  0   delete iff now > completion_time + ttl

Deletion goes through ``store.delete``, which only sets the deletion
timestamp while the finalizer token is present; the Finalizer Guard then
notifies the handler before the record disappears. A failing item (already
gone, write error) is logged and recorded in the report, and the sweep
moves on.

Tags:
    regops-core, execution, ttl, retention, garbage-collection
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from regops.core.errors import NotFoundError
from regops.core.logging import get_logger
from regops.core.models import Job
from regops.core.store.protocol import ObjectStore
from regops.core.timestamps import utc_now

logger = get_logger(__name__)


def is_expired(job: Job, now: datetime) -> bool:
    """Whether *job* is finished and past its retention window."""
    completed = job.status.completion_time
    if completed is None:
        return False
    ttl = job.spec.ttl
    if ttl < 0:
        return False
    if ttl == 0:
        return True
    return now > completed + timedelta(seconds=ttl)


@dataclass
class SweepReport:
    """Outcome of one sweep."""

    examined: int = 0
    deleted: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "examined": self.examined,
            "deleted": list(self.deleted),
            "errors": dict(self.errors),
        }


class TTLCollector:
    def __init__(
        self,
        store: ObjectStore,
        *,
        clock: Callable[[], datetime] = utc_now,
        namespace: str | None = None,
    ) -> None:
        self._store = store
        self._clock = clock
        self._namespace = namespace

    def sweep(self, now: datetime | None = None) -> SweepReport:
        now = now or self._clock()
        report = SweepReport()
        for job in self._store.list(Job, namespace=self._namespace):
            report.examined += 1
            if job.metadata.is_deleting or not is_expired(job, now):
                continue
            key = f"{job.namespace}/{job.name}"
            try:
                self._store.delete(job)
            except NotFoundError:
                logger.debug("ttl_job_already_gone", job=key)
                continue
            except Exception as exc:
                logger.warning("ttl_delete_failed", job=key, error=str(exc))
                report.errors[key] = str(exc)
                continue
            report.deleted.append(key)
            logger.info("ttl_job_deleted", job=key, ttl=job.spec.ttl)
        return report


__all__ = ["SweepReport", "TTLCollector", "is_expired"]
