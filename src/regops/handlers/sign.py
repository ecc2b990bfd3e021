"""Signing of replicated images (``ImageSign`` jobs)."""

from __future__ import annotations

import threading

from regops.core.errors import NotFoundError, ValidationError
from regops.core.logging import get_logger
from regops.core.models import ImageReplicate, Job, JobState
from regops.core.store.protocol import ObjectStore
from regops.execution.results import Outcome, Terminal
from regops.handlers.clients import ImageSigner
from regops.handlers.sync import claim_target

logger = get_logger(__name__)


class ImageSignHandler:
    """Signs the destination image of an ImageReplicate.

    The key id returned by the signer is kept per job uid until the job
    completes. Deleting a job that never completed revokes it.
    """

    def __init__(self, store: ObjectStore, signer: ImageSigner) -> None:
        self._store = store
        self._signer = signer
        self._lock = threading.Lock()
        self._keys: dict[str, str] = {}

    def handle(self, job: Job) -> Outcome:
        target = claim_target(job)
        try:
            repl = self._store.get(ImageReplicate, target.namespace, target.name)
        except NotFoundError:
            raise ValidationError(
                f"image replicate {target.namespace}/{target.name} not found",
                field="claim.handleObject",
                value=target.name,
            ) from None
        if not repl.spec.signer:
            raise ValidationError("image replicate has no signer", field="signer")

        to_image = repl.spec.to_image
        image = f"{to_image.registry_name}/{to_image.image}"
        key_id = self._signer.sign(image, repl.spec.signer)
        with self._lock:
            self._keys[job.metadata.uid] = key_id
        logger.info("image_signed", job=job.name, image=image, signer=repl.spec.signer, key_id=key_id)
        return Terminal.succeeded(f"signed {image} with {repl.spec.signer}")

    def cleanup(self, job: Job) -> None:
        with self._lock:
            key_id = self._keys.get(job.metadata.uid)
        if key_id is None:
            return
        if job.status.state is not JobState.COMPLETED:
            self._signer.revoke(key_id)
            logger.info("signing_key_revoked", job=job.name, key_id=key_id)
        with self._lock:
            self._keys.pop(job.metadata.uid, None)

    def release(self, job: Job) -> None:
        with self._lock:
            self._keys.pop(job.metadata.uid, None)

    def key_for(self, job: Job) -> str | None:
        with self._lock:
            return self._keys.get(job.metadata.uid)


__all__ = ["ImageSignHandler"]
