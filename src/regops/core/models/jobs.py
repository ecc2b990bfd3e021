"""Job and CronJob records.

A Job is the unit of asynchronous work: a typed claim (job type plus the
object it acts on), a priority, a retention TTL and a
Pending → Running → Completed | Failed lifecycle. A CronJob materializes
Jobs from a template on a cron schedule.

Manifesto:
    Records are plain dataclasses. They carry no behavior beyond derived
    properties and their wire encoding; every mutation goes through the
    state machine or the store so concurrency rules live in one place.

Wire shape (stable across restarts)::

    RegistryJob
      spec.priority                  int ≥ 0
      spec.ttl                       int seconds (-1 keep, 0 delete on completion)
      spec.claim.jobType             JobType value
      spec.claim.handleObject        {name, namespace?}
      status.state                   Pending | Running | Completed | Failed
      status.message                 str
      status.startTime               ISO-8601 | null
      status.completionTime          ISO-8601 | null

    RegistryCronJob
      spec.schedule                  5-field cron expression
      spec.jobSpec                   RegistryJob spec
      status.lastScheduledTime       ISO-8601 | null

Tags:
    regops-core, models, jobs, cronjobs, wire-format

Doc-Types:
    api-reference
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar

from regops.core.errors import ValidationError
from regops.core.models.meta import ObjectMeta
from regops.core.timestamps import from_iso8601, to_iso8601


class JobState(str, Enum):
    """Job lifecycle state."""

    PENDING = "Pending"
    RUNNING = "Running"
    COMPLETED = "Completed"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED)


class JobType(str, Enum):
    """Closed set of job types; each resolves to exactly one handler."""

    SYNCHRONIZE_EXT_REG = "SynchronizeExtReg"
    IMAGE_REPLICATE = "ImageReplicate"
    IMAGE_SIGN = "ImageSign"
    IMAGE_SCAN = "ImageScan"


@dataclass(frozen=True)
class ObjectRef:
    """Name reference to the object a job acts on."""

    name: str
    namespace: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"name": self.name}
        if self.namespace:
            d["namespace"] = self.namespace
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ObjectRef:
        return cls(name=data["name"], namespace=data.get("namespace"))


@dataclass(frozen=True)
class JobClaim:
    """What a job should do (job type) and against what (target)."""

    job_type: JobType
    handle_object: ObjectRef

    def to_dict(self) -> dict[str, Any]:
        return {"jobType": self.job_type.value, "handleObject": self.handle_object.to_dict()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> JobClaim:
        return cls(
            job_type=JobType(data["jobType"]),
            handle_object=ObjectRef.from_dict(data["handleObject"]),
        )


@dataclass
class JobSpec:
    """Desired work: claim, priority and retention."""

    claim: JobClaim | None = None
    priority: int = 0
    ttl: int = -1

    def validate(self) -> None:
        """Raise ``ValidationError`` for a spec that can never run."""
        if self.claim is None:
            raise ValidationError("job spec has no claim", field="claim")
        if self.priority < 0:
            raise ValidationError(
                f"priority must be >= 0, got {self.priority}",
                field="priority",
                value=self.priority,
                constraint=">= 0",
            )

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"priority": self.priority, "ttl": self.ttl}
        if self.claim is not None:
            d["claim"] = self.claim.to_dict()
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> JobSpec:
        claim = data.get("claim")
        return cls(
            claim=JobClaim.from_dict(claim) if claim else None,
            priority=int(data.get("priority", 0)),
            ttl=int(data.get("ttl", -1)),
        )


@dataclass
class JobStatus:
    """Observed lifecycle. ``state`` is None until first reconciled."""

    state: JobState | None = None
    message: str = ""
    start_time: datetime | None = None
    completion_time: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value if self.state else "",
            "message": self.message,
            "startTime": to_iso8601(self.start_time),
            "completionTime": to_iso8601(self.completion_time),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> JobStatus:
        state = data.get("state")
        return cls(
            state=JobState(state) if state else None,
            message=data.get("message", ""),
            start_time=from_iso8601(data.get("startTime")),
            completion_time=from_iso8601(data.get("completionTime")),
        )


@dataclass
class Job:
    """A persisted unit of asynchronous work."""

    kind: ClassVar[str] = "RegistryJob"

    metadata: ObjectMeta
    spec: JobSpec = field(default_factory=JobSpec)
    status: JobStatus = field(default_factory=JobStatus)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def job_type(self) -> JobType | None:
        return self.spec.claim.job_type if self.spec.claim else None

    @property
    def is_terminal(self) -> bool:
        return self.status.state is not None and self.status.state.is_terminal

    def copy(self) -> Job:
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "metadata": self.metadata.to_dict(),
            "spec": self.spec.to_dict(),
            "status": self.status.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Job:
        return cls(
            metadata=ObjectMeta.from_dict(data["metadata"]),
            spec=JobSpec.from_dict(data.get("spec", {})),
            status=JobStatus.from_dict(data.get("status", {})),
        )


@dataclass
class CronJobSpec:
    schedule: str
    job_spec: JobSpec = field(default_factory=JobSpec)

    def to_dict(self) -> dict[str, Any]:
        return {"schedule": self.schedule, "jobSpec": self.job_spec.to_dict()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CronJobSpec:
        return cls(
            schedule=data["schedule"],
            job_spec=JobSpec.from_dict(data.get("jobSpec", {})),
        )


@dataclass
class CronJobStatus:
    last_scheduled_time: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"lastScheduledTime": to_iso8601(self.last_scheduled_time)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CronJobStatus:
        return cls(last_scheduled_time=from_iso8601(data.get("lastScheduledTime")))


@dataclass
class CronJob:
    """A job template materialized on a cron schedule."""

    kind: ClassVar[str] = "RegistryCronJob"

    metadata: ObjectMeta
    spec: CronJobSpec
    status: CronJobStatus = field(default_factory=CronJobStatus)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    def copy(self) -> CronJob:
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "metadata": self.metadata.to_dict(),
            "spec": self.spec.to_dict(),
            "status": self.status.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CronJob:
        return cls(
            metadata=ObjectMeta.from_dict(data["metadata"]),
            spec=CronJobSpec.from_dict(data["spec"]),
            status=CronJobStatus.from_dict(data.get("status", {})),
        )
