"""Collaborator protocols the job handlers talk to.

The operator never speaks HTTP to a registry, signer or scanner itself;
handlers receive these interfaces from a factory so production clients and
test fakes are interchangeable.

    RegistryClientFactory
        ├── replicatable(ImageRef)          → Replicatable   (manifest / blob copy)
        └── synchronizable(ObjectRef)       → Synchronizable (catalog sync)
    ImageSigner                             → sign / revoke
    VulnerabilityScanner                    → catalog / tags / scan
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol, runtime_checkable

from regops.core.models import ImageRef, ObjectRef

# ── Media types ──────────────────────────────────────────────────────────

MEDIA_TYPE_OCI_INDEX = "application/vnd.oci.image.index.v1+json"
MEDIA_TYPE_OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
MEDIA_TYPE_OCI_CONFIG = "application/vnd.oci.image.config.v1+json"
MEDIA_TYPE_OCI_LAYER = "application/vnd.oci.image.layer.v1.tar"
MEDIA_TYPE_OCI_LAYER_GZIP = "application/vnd.oci.image.layer.v1.tar+gzip"
MEDIA_TYPE_DOCKER_MANIFEST_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"
MEDIA_TYPE_DOCKER_MANIFEST = "application/vnd.docker.distribution.manifest.v2+json"
MEDIA_TYPE_DOCKER_SCHEMA1 = "application/vnd.docker.distribution.manifest.v1+json"
MEDIA_TYPE_DOCKER_SCHEMA1_SIGNED = "application/vnd.docker.distribution.manifest.v1+prettyjws"
MEDIA_TYPE_DOCKER_CONFIG = "application/vnd.docker.container.image.v1+json"
MEDIA_TYPE_DOCKER_LAYER = "application/vnd.docker.image.rootfs.diff.tar.gzip"
MEDIA_TYPE_DOCKER_LAYER_UNCOMPRESSED = "application/vnd.docker.image.rootfs.diff.tar"
MEDIA_TYPE_DOCKER_SCHEMA1_LAYER = "application/vnd.docker.container.image.rootfs.diff+x-gtar"

MANIFEST_MEDIA_TYPES = frozenset({
    MEDIA_TYPE_OCI_INDEX,
    MEDIA_TYPE_OCI_MANIFEST,
    MEDIA_TYPE_DOCKER_MANIFEST_LIST,
    MEDIA_TYPE_DOCKER_MANIFEST,
    MEDIA_TYPE_DOCKER_SCHEMA1,
    MEDIA_TYPE_DOCKER_SCHEMA1_SIGNED,
})

BLOB_MEDIA_TYPES = frozenset({
    MEDIA_TYPE_OCI_CONFIG,
    MEDIA_TYPE_OCI_LAYER,
    MEDIA_TYPE_OCI_LAYER_GZIP,
    MEDIA_TYPE_DOCKER_CONFIG,
    MEDIA_TYPE_DOCKER_LAYER,
    MEDIA_TYPE_DOCKER_LAYER_UNCOMPRESSED,
    MEDIA_TYPE_DOCKER_SCHEMA1_LAYER,
})


# ── Data ─────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Descriptor:
    digest: str
    media_type: str
    size: int = 0


@dataclass
class ImageManifest:
    media_type: str
    references: list[Descriptor] = field(default_factory=list)
    raw: bytes = b""


@dataclass
class VulnerabilityReport:
    """Findings for one image, grouped by severity (plus ``Fixable``)."""

    image: str
    by_severity: dict[str, list[str]] = field(default_factory=dict)


# ── Protocols ────────────────────────────────────────────────────────────


@runtime_checkable
class Replicatable(Protocol):
    """Image-level access to one registry."""

    def get_manifest(self, image: str) -> ImageManifest: ...

    def put_manifest(self, image: str, manifest: ImageManifest) -> None: ...

    def blob_exists(self, repository: str, digest: str) -> bool: ...

    def pull_blob(self, repository: str, digest: str) -> tuple[Path, int]:
        """Download a blob to a temporary file; the caller removes it."""
        ...

    def push_blob(self, repository: str, digest: str, path: Path, size: int) -> None: ...

    def delete_blob(self, repository: str, digest: str) -> None: ...


@runtime_checkable
class Synchronizable(Protocol):
    """Catalog-level access to one external registry."""

    def list_repositories(self) -> list[str]: ...

    def synchronize(self) -> int:
        """Mirror the remote catalog into repository records; returns the count."""
        ...


class RegistryClientFactory(Protocol):
    def replicatable(self, image: ImageRef) -> Replicatable: ...

    def synchronizable(self, registry: ObjectRef) -> Synchronizable: ...


class ImageSigner(Protocol):
    def sign(self, image: str, signer: str) -> str:
        """Sign *image* with *signer*'s key; returns the key id used."""
        ...

    def revoke(self, key_id: str) -> None: ...


class VulnerabilityScanner(Protocol):
    def catalog(self, registry: ObjectRef) -> list[str]: ...

    def tags(self, registry: ObjectRef, repository: str) -> list[str]: ...

    def scan(self, registry: ObjectRef, image: str) -> VulnerabilityReport: ...


def repository_of(image: str) -> str:
    """``library/nginx:1.25`` / ``library/nginx@sha256:..`` → ``library/nginx``."""
    name = image.split("@", 1)[0]
    slash = name.rfind("/")
    colon = name.rfind(":")
    if colon > slash:
        name = name[:colon]
    return name


def with_digest(image: str, digest: str) -> str:
    return f"{repository_of(image)}@{digest}"


__all__ = [
    "BLOB_MEDIA_TYPES",
    "Descriptor",
    "ImageManifest",
    "ImageSigner",
    "MANIFEST_MEDIA_TYPES",
    "RegistryClientFactory",
    "Replicatable",
    "Synchronizable",
    "VulnerabilityReport",
    "VulnerabilityScanner",
    "repository_of",
    "with_digest",
]
