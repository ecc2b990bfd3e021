"""Object metadata shared by every stored record."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from regops.core.timestamps import from_iso8601, to_iso8601


@dataclass(frozen=True)
class OwnerReference:
    """Back-pointer from a dependent record to the record that owns it."""

    kind: str
    name: str
    uid: str

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "name": self.name, "uid": self.uid}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OwnerReference:
        return cls(kind=data["kind"], name=data["name"], uid=data["uid"])


@dataclass
class ObjectMeta:
    """Identity, version token and lifecycle markers of a record.

    ``resource_version`` is the optimistic-concurrency token: the store bumps
    it on every write and rejects writes carrying a stale value.
    ``deletion_timestamp`` is set when deletion was requested while
    finalizers were still present.
    """

    name: str
    namespace: str = "default"
    uid: str = ""
    resource_version: str = ""
    creation_timestamp: datetime | None = None
    deletion_timestamp: datetime | None = None
    finalizers: list[str] = field(default_factory=list)
    owner_references: list[OwnerReference] = field(default_factory=list)
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)

    @property
    def key(self) -> tuple[str, str]:
        return (self.namespace, self.name)

    @property
    def is_deleting(self) -> bool:
        return self.deletion_timestamp is not None

    def has_finalizer(self, token: str) -> bool:
        return token in self.finalizers

    def is_owned_by(self, uid: str) -> bool:
        return any(ref.uid == uid for ref in self.owner_references)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"name": self.name, "namespace": self.namespace}
        if self.uid:
            d["uid"] = self.uid
        if self.resource_version:
            d["resourceVersion"] = self.resource_version
        if self.creation_timestamp is not None:
            d["creationTimestamp"] = to_iso8601(self.creation_timestamp)
        if self.deletion_timestamp is not None:
            d["deletionTimestamp"] = to_iso8601(self.deletion_timestamp)
        if self.finalizers:
            d["finalizers"] = list(self.finalizers)
        if self.owner_references:
            d["ownerReferences"] = [ref.to_dict() for ref in self.owner_references]
        if self.labels:
            d["labels"] = dict(self.labels)
        if self.annotations:
            d["annotations"] = dict(self.annotations)
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ObjectMeta:
        return cls(
            name=data["name"],
            namespace=data.get("namespace", "default"),
            uid=data.get("uid", ""),
            resource_version=data.get("resourceVersion", ""),
            creation_timestamp=from_iso8601(data.get("creationTimestamp")),
            deletion_timestamp=from_iso8601(data.get("deletionTimestamp")),
            finalizers=list(data.get("finalizers", [])),
            owner_references=[
                OwnerReference.from_dict(ref) for ref in data.get("ownerReferences", [])
            ],
            labels=dict(data.get("labels", {})),
            annotations=dict(data.get("annotations", {})),
        )
