"""Image copy between registries (``ImageReplicate`` jobs).

::

    copy_image(source, dest, from_image, to_image)
      manifest = source.get_manifest(from_image)
      for each reference:
        nested manifest  → copy_image(..., repo@digest, repo@digest)
        blob             → missing at source  → ValidationError (permanent)
                           present at dest    → skip
                           otherwise          → pull to a temp file
      push pulled blobs, then put the manifest
      temp files are removed on every path

Blobs pushed for a job are remembered per job uid. If the job is deleted
before it completed, ``cleanup`` removes them from the destination so an
abandoned copy leaves no partial layers behind.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from pathlib import Path

from regops.core.errors import NotFoundError, ValidationError
from regops.core.logging import get_logger
from regops.core.models import ImageReplicate, Job, JobState
from regops.core.store.protocol import ObjectStore
from regops.execution.results import Outcome, Terminal
from regops.handlers.clients import (
    BLOB_MEDIA_TYPES,
    MANIFEST_MEDIA_TYPES,
    RegistryClientFactory,
    Replicatable,
    repository_of,
    with_digest,
)
from regops.handlers.sync import claim_target

logger = get_logger(__name__)


def copy_image(
    source: Replicatable,
    dest: Replicatable,
    from_image: str,
    to_image: str,
    on_push: Callable[[str, str], None] | None = None,
) -> int:
    """Copy one image (and any nested manifests). Returns blobs pushed."""
    manifest = source.get_manifest(from_image)
    from_repo = repository_of(from_image)
    to_repo = repository_of(to_image)

    pulled: dict[str, tuple[Path, int]] = {}
    pushed = 0
    try:
        for ref in manifest.references:
            if ref.media_type in MANIFEST_MEDIA_TYPES:
                pushed += copy_image(
                    source,
                    dest,
                    with_digest(from_image, ref.digest),
                    with_digest(to_image, ref.digest),
                    on_push,
                )
            elif ref.media_type in BLOB_MEDIA_TYPES:
                if not source.blob_exists(from_repo, ref.digest):
                    raise ValidationError(
                        f"{from_repo}@{ref.digest} blob not found",
                        field="blob",
                        value=ref.digest,
                    )
                if ref.digest in pulled or dest.blob_exists(to_repo, ref.digest):
                    continue
                pulled[ref.digest] = source.pull_blob(from_repo, ref.digest)
            else:
                logger.debug("replicate_unknown_media_type", image=from_image, media_type=ref.media_type)

        for digest, (path, size) in pulled.items():
            dest.push_blob(to_repo, digest, path, size)
            pushed += 1
            if on_push is not None:
                on_push(to_repo, digest)

        dest.put_manifest(to_image, manifest)
    finally:
        for path, _ in pulled.values():
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                logger.warning("replicate_temp_cleanup_failed", file=str(path), error=str(exc))
    return pushed


class ImageReplicateHandler:
    def __init__(self, store: ObjectStore, clients: RegistryClientFactory) -> None:
        self._store = store
        self._clients = clients
        self._lock = threading.Lock()
        self._pushed: dict[str, list[tuple[Replicatable, str, str]]] = {}

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

        spec = repl.spec
        source = self._clients.replicatable(spec.from_image)
        dest = self._clients.replicatable(spec.to_image)
        uid = job.metadata.uid

        def remember(repository: str, digest: str) -> None:
            with self._lock:
                self._pushed.setdefault(uid, []).append((dest, repository, digest))

        pushed = copy_image(source, dest, spec.from_image.image, spec.to_image.image, remember)
        logger.info(
            "image_replicated",
            job=job.name,
            source=f"{spec.from_image.registry_name}/{spec.from_image.image}",
            destination=f"{spec.to_image.registry_name}/{spec.to_image.image}",
            blobs_pushed=pushed,
        )
        return Terminal.succeeded(f"replicated {spec.from_image.image} to {spec.to_image.image}")

    def cleanup(self, job: Job) -> None:
        with self._lock:
            pushed = self._pushed.pop(job.metadata.uid, [])
        if job.status.state is JobState.COMPLETED or not pushed:
            return

        for index, (dest, repository, digest) in enumerate(pushed):
            try:
                dest.delete_blob(repository, digest)
            except Exception:
                # keep what is left for the next cleanup attempt
                with self._lock:
                    self._pushed[job.metadata.uid] = pushed[index:]
                raise
        logger.info("replicate_blobs_removed", job=job.name, count=len(pushed))

    def release(self, job: Job) -> None:
        with self._lock:
            self._pushed.pop(job.metadata.uid, None)

    def pushed_blobs(self, job: Job) -> list[tuple[str, str]]:
        with self._lock:
            return [(repo, digest) for _, repo, digest in self._pushed.get(job.metadata.uid, [])]


__all__ = ["ImageReplicateHandler", "copy_image"]
