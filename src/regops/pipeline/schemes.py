"""Manifest builders for the records the operator creates on its own.

Each function returns an unsaved record; callers persist it through the
state machine (jobs) or the store (cron jobs). Names are deterministic so a
replayed create is an "already exists", never a duplicate.
"""

from __future__ import annotations

from regops.core.models import (
    CronJob,
    CronJobSpec,
    ImageReplicate,
    Job,
    JobClaim,
    JobSpec,
    JobType,
    ObjectMeta,
    ObjectRef,
    OwnerReference,
)
from regops.core.settings import get_settings

EXTERNAL_REGISTRY_SYNC_TTL = 180
IMAGE_REPLICATE_SYNC_PRIORITY = 100
IMAGE_REPLICATE_SYNC_TTL = 60

OWNER_LABEL = "regops.io/owner"
APP_LABEL = "app"


def external_registry_sync_cronjob(
    registry_name: str,
    namespace: str = "default",
    schedule: str | None = None,
) -> CronJob:
    """Periodic catalog sync for one external registry."""
    name = f"{registry_name}-sync-cronjob"
    return CronJob(
        metadata=ObjectMeta(
            name=name,
            namespace=namespace,
            labels={APP_LABEL: "external-registry-cron-job", OWNER_LABEL: registry_name},
        ),
        spec=CronJobSpec(
            schedule=schedule or get_settings().external_registry_sync_schedule,
            job_spec=JobSpec(
                claim=JobClaim(JobType.SYNCHRONIZE_EXT_REG, ObjectRef(registry_name, namespace)),
                priority=0,
                ttl=EXTERNAL_REGISTRY_SYNC_TTL,
            ),
        ),
    )


def _owned_job(
    repl: ImageReplicate,
    suffix: str,
    app: str,
    claim: JobClaim,
    *,
    priority: int = 0,
    ttl: int = -1,
) -> Job:
    return Job(
        metadata=ObjectMeta(
            name=f"{repl.name}-{suffix}",
            namespace=repl.namespace,
            owner_references=[
                OwnerReference(kind=repl.kind, name=repl.name, uid=repl.metadata.uid)
            ],
            labels={APP_LABEL: app, OWNER_LABEL: repl.name},
        ),
        spec=JobSpec(claim=claim, priority=priority, ttl=ttl),
    )


def image_replicate_sync_job(repl: ImageReplicate) -> Job:
    """Catalog sync of the source registry, run before the copy."""
    source = repl.spec.from_image
    target = ObjectRef(source.registry_name, source.registry_namespace or repl.namespace)
    return _owned_job(
        repl,
        "sync",
        "image-replicate-sync-job",
        JobClaim(JobType.SYNCHRONIZE_EXT_REG, target),
        priority=IMAGE_REPLICATE_SYNC_PRIORITY,
        ttl=IMAGE_REPLICATE_SYNC_TTL,
    )


def image_replicate_job(repl: ImageReplicate) -> Job:
    return _owned_job(
        repl,
        "replicate",
        "image-replicate-job",
        JobClaim(JobType.IMAGE_REPLICATE, ObjectRef(repl.name, repl.namespace)),
    )


def image_sign_job(repl: ImageReplicate) -> Job:
    return _owned_job(
        repl,
        "sign",
        "image-sign-job",
        JobClaim(JobType.IMAGE_SIGN, ObjectRef(repl.name, repl.namespace)),
    )


__all__ = [
    "EXTERNAL_REGISTRY_SYNC_TTL",
    "IMAGE_REPLICATE_SYNC_PRIORITY",
    "IMAGE_REPLICATE_SYNC_TTL",
    "OWNER_LABEL",
    "external_registry_sync_cronjob",
    "image_replicate_job",
    "image_replicate_sync_job",
    "image_sign_job",
]
