"""ImageReplicate - the pipeline parent resource.

An ImageReplicate copies one image between registries, optionally
synchronizing the source registry's catalog first and signing the copy
afterwards. Its progress lives entirely in ``status.conditions``; the phase
is derived from them.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar

from regops.core.conditions import ConditionSet
from regops.core.models.meta import ObjectMeta
from regops.core.timestamps import from_iso8601, to_iso8601


class RegistryKind(str, Enum):
    """Registry flavors an image can live in."""

    HPCD = "HpcdRegistry"
    DOCKER_HUB = "DockerHub"
    DOCKER = "Docker"
    HARBOR_V2 = "HarborV2"

    @property
    def is_external(self) -> bool:
        return self is not RegistryKind.HPCD


class ReplicatePhase(str, Enum):
    PENDING = "Pending"
    PROCESSING = "Processing"
    SUCCESS = "Success"
    FAIL = "Fail"


@dataclass(frozen=True)
class ImageRef:
    """An image inside a named registry."""

    registry_name: str
    registry_kind: RegistryKind
    image: str
    registry_namespace: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "registryName": self.registry_name,
            "registryType": self.registry_kind.value,
            "image": self.image,
        }
        if self.registry_namespace:
            d["registryNamespace"] = self.registry_namespace
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ImageRef:
        return cls(
            registry_name=data["registryName"],
            registry_kind=RegistryKind(data["registryType"]),
            image=data["image"],
            registry_namespace=data.get("registryNamespace"),
        )


@dataclass
class ImageReplicateSpec:
    from_image: ImageRef
    to_image: ImageRef
    signer: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "fromImage": self.from_image.to_dict(),
            "toImage": self.to_image.to_dict(),
        }
        if self.signer:
            d["signer"] = self.signer
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ImageReplicateSpec:
        return cls(
            from_image=ImageRef.from_dict(data["fromImage"]),
            to_image=ImageRef.from_dict(data["toImage"]),
            signer=data.get("signer") or None,
        )


@dataclass
class ImageReplicateStatus:
    conditions: ConditionSet = field(default_factory=ConditionSet)
    phase: ReplicatePhase | None = None
    phase_changed_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "conditions": self.conditions.to_list(),
            "state": self.phase.value if self.phase else "",
            "stateChangedAt": to_iso8601(self.phase_changed_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ImageReplicateStatus:
        phase = data.get("state")
        return cls(
            conditions=ConditionSet.from_list(data.get("conditions")),
            phase=ReplicatePhase(phase) if phase else None,
            phase_changed_at=from_iso8601(data.get("stateChangedAt")),
        )


@dataclass
class ImageReplicate:
    kind: ClassVar[str] = "ImageReplicate"

    metadata: ObjectMeta
    spec: ImageReplicateSpec
    status: ImageReplicateStatus = field(default_factory=ImageReplicateStatus)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    def copy(self) -> ImageReplicate:
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "metadata": self.metadata.to_dict(),
            "spec": self.spec.to_dict(),
            "status": self.status.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ImageReplicate:
        return cls(
            metadata=ObjectMeta.from_dict(data["metadata"]),
            spec=ImageReplicateSpec.from_dict(data["spec"]),
            status=ImageReplicateStatus.from_dict(data.get("status", {})),
        )
