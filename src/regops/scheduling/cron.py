"""CronJob catch-up scheduler.

Materializes at most one Job per ``sync`` call for a CronJob whose schedule
has come due, however long the controller was down.

Algorithm (``get_recent_schedule_time``)::

    last     = status.last_scheduled_time ?? metadata.creation_timestamp
               (neither → ScheduleError)
    earliest = next firing strictly after `last`
    earliest > now                    → nothing due, return None
    walk t = earliest, next(t), ...   while t <= now, counting candidates
    count > max_missed (default 100)  → TooManyMissedSchedulesError, no job
    return the last t walked          (most recent due firing)

``sync`` then creates the job named ``<cronjob>-<epoch seconds of t>``,
owned by the CronJob, and patches ``last_scheduled_time = now``. A crash
between those two writes replays the same firing on restart; the
deterministic name turns the replay's create into ``AlreadyExistsError``,
which is treated as success.

Cron parsing uses ``croniter`` the same way schedule repositories compute
``next_run_at``: ``croniter(expr, after).get_next(datetime)``.

Tags:
    regops-core, scheduling, cron, croniter, catch-up

Doc-Types:
    api-reference
"""

from __future__ import annotations

import copy
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from croniter import croniter

from regops.core.errors import (
    AlreadyExistsError,
    ConflictError,
    InvalidScheduleError,
    NotFoundError,
    ScheduleError,
    TooManyMissedSchedulesError,
)
from regops.core.logging import get_logger
from regops.core.models import CronJob, Job, JobStatus, ObjectMeta, OwnerReference
from regops.core.store.protocol import ObjectStore
from regops.core.timestamps import ensure_utc, epoch_seconds, utc_now

logger = get_logger(__name__)

DEFAULT_MAX_MISSED_SCHEDULES = 100
CRONJOB_LABEL = "regops.io/cronjob"


def parse_schedule(schedule: str, start: datetime) -> croniter:
    """Build a croniter for a standard 5-field expression (or @descriptor).

    Raises:
        InvalidScheduleError: malformed or non-standard expression.
    """
    expr = schedule.strip()
    if not expr:
        raise InvalidScheduleError(schedule, "empty expression")
    if not expr.startswith("@") and len(expr.split()) != 5:
        raise InvalidScheduleError(schedule, "expected 5 fields")
    try:
        return croniter(expr, ensure_utc(start))
    except (ValueError, KeyError) as exc:
        raise InvalidScheduleError(schedule, str(exc), cause=exc) from exc


def next_fire_times(schedule: str, after: datetime, count: int) -> list[datetime]:
    """The next *count* firings strictly after *after*."""
    it = parse_schedule(schedule, after)
    return [it.get_next(datetime) for _ in range(count)]


def get_recent_schedule_time(
    cronjob: CronJob,
    now: datetime,
    max_missed: int = DEFAULT_MAX_MISSED_SCHEDULES,
) -> datetime | None:
    """Most recent firing due at *now*, or None if nothing is due."""
    last = cronjob.status.last_scheduled_time or cronjob.metadata.creation_timestamp
    if last is None:
        raise ScheduleError(
            f"no last scheduled time for {cronjob.namespace}/{cronjob.name}"
        ).with_context(kind=cronjob.kind, namespace=cronjob.namespace, name=cronjob.name)

    now = ensure_utc(now)
    it = parse_schedule(cronjob.spec.schedule, last)
    candidate = it.get_next(datetime)
    if candidate > now:
        return None

    recent = candidate
    missed = 0
    while candidate <= now:
        missed += 1
        if missed > max_missed:
            raise TooManyMissedSchedulesError(max_missed).with_context(
                kind=cronjob.kind, namespace=cronjob.namespace, name=cronjob.name
            )
        recent = candidate
        candidate = it.get_next(datetime)
    return recent


def job_name_for(cronjob: CronJob, scheduled_time: datetime) -> str:
    return f"{cronjob.name}-{epoch_seconds(scheduled_time)}"


def job_from_cronjob(cronjob: CronJob, scheduled_time: datetime) -> Job:
    """Build (not persist) the Job for one firing.

    State is left unset so the job reconciler validates the copied template
    and moves it to Pending or Failed.
    """
    return Job(
        metadata=ObjectMeta(
            name=job_name_for(cronjob, scheduled_time),
            namespace=cronjob.namespace,
            owner_references=[
                OwnerReference(kind=cronjob.kind, name=cronjob.name, uid=cronjob.metadata.uid)
            ],
            labels={**cronjob.metadata.labels, CRONJOB_LABEL: cronjob.name},
        ),
        spec=copy.deepcopy(cronjob.spec.job_spec),
        status=JobStatus(),
    )


@dataclass(frozen=True)
class CronSyncResult:
    scheduled_time: datetime | None = None
    job_name: str | None = None
    created: bool = False

    @property
    def fired(self) -> bool:
        return self.scheduled_time is not None


@dataclass
class CronSyncReport:
    synced: int = 0
    created: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"synced": self.synced, "created": list(self.created), "errors": dict(self.errors)}


class CronJobScheduler:
    def __init__(
        self,
        store: ObjectStore,
        *,
        clock: Callable[[], datetime] = utc_now,
        max_missed: int = DEFAULT_MAX_MISSED_SCHEDULES,
        conflict_retries: int = 5,
    ) -> None:
        self._store = store
        self._clock = clock
        self._max_missed = max_missed
        self._conflict_retries = conflict_retries

    def sync(self, cronjob: CronJob, now: datetime | None = None) -> CronSyncResult:
        """Materialize at most one Job for *cronjob*.

        Raises:
            TooManyMissedSchedulesError: catch-up cap exceeded; nothing written.
            InvalidScheduleError: the schedule does not parse.
            ScheduleError: no reference time to compute firings from.
        """
        now = ensure_utc(now or self._clock())
        scheduled = get_recent_schedule_time(cronjob, now, self._max_missed)
        if scheduled is None:
            return CronSyncResult()

        job = job_from_cronjob(cronjob, scheduled)
        created = True
        try:
            self._store.create(job)
        except AlreadyExistsError:
            created = False
            logger.info("cron_job_replayed", cronjob=cronjob.name, job=job.name)
        else:
            logger.info(
                "cron_job_created",
                namespace=cronjob.namespace,
                cronjob=cronjob.name,
                job=job.name,
                scheduled_time=scheduled.isoformat(),
            )

        self._advance_last_scheduled(cronjob, now)
        return CronSyncResult(scheduled_time=scheduled, job_name=job.name, created=created)

    def sync_all(self, now: datetime | None = None, namespace: str | None = None) -> CronSyncReport:
        """Sync every CronJob; per-item failures are logged and reported."""
        now = ensure_utc(now or self._clock())
        report = CronSyncReport()
        for cronjob in self._store.list(CronJob, namespace=namespace):
            key = f"{cronjob.namespace}/{cronjob.name}"
            try:
                result = self.sync(cronjob, now)
            except TooManyMissedSchedulesError as exc:
                logger.error("cron_catch_up_refused", cronjob=key, error=str(exc))
                report.errors[key] = str(exc)
                continue
            except Exception as exc:
                logger.warning("cron_sync_failed", cronjob=key, error=str(exc))
                report.errors[key] = str(exc)
                continue
            report.synced += 1
            if result.created and result.job_name:
                report.created.append(f"{cronjob.namespace}/{result.job_name}")
        return report

    def _advance_last_scheduled(self, cronjob: CronJob, now: datetime) -> None:
        current = cronjob.copy()
        for attempt in range(1, self._conflict_retries + 1):
            last = current.status.last_scheduled_time
            if last is not None and last >= now:
                return
            current.status.last_scheduled_time = now
            try:
                self._store.patch_status(current)
                return
            except NotFoundError:
                return
            except ConflictError:
                if attempt == self._conflict_retries:
                    raise
                try:
                    current = self._store.get(CronJob, cronjob.namespace, cronjob.name)
                except NotFoundError:
                    return


__all__ = [
    "CRONJOB_LABEL",
    "CronJobScheduler",
    "CronSyncReport",
    "CronSyncResult",
    "DEFAULT_MAX_MISSED_SCHEDULES",
    "get_recent_schedule_time",
    "job_from_cronjob",
    "job_name_for",
    "next_fire_times",
    "parse_schedule",
]
