"""Record types persisted in the object store."""

from regops.core.models.jobs import (
    CronJob,
    CronJobSpec,
    CronJobStatus,
    Job,
    JobClaim,
    JobSpec,
    JobState,
    JobStatus,
    JobType,
    ObjectRef,
)
from regops.core.models.meta import ObjectMeta, OwnerReference
from regops.core.models.replicate import (
    ImageRef,
    ImageReplicate,
    ImageReplicateSpec,
    ImageReplicateStatus,
    RegistryKind,
    ReplicatePhase,
)

__all__ = [
    "CronJob",
    "CronJobSpec",
    "CronJobStatus",
    "ImageRef",
    "ImageReplicate",
    "ImageReplicateSpec",
    "ImageReplicateStatus",
    "Job",
    "JobClaim",
    "JobSpec",
    "JobState",
    "JobStatus",
    "JobType",
    "ObjectMeta",
    "ObjectRef",
    "OwnerReference",
    "RegistryKind",
    "ReplicatePhase",
]
