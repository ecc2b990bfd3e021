"""Object store contract.

The job subsystem never owns persistence. It consumes a versioned resource
store (a cluster API in production) through this protocol: CRUD, a watch
stream, and optimistic-concurrency writes where ``spec``/``metadata`` and
``status`` are written through separate calls so spec-watchers and
status-watchers do not loop on each other's writes.

Contract::

    get(kind, ns, name)        → record            NotFoundError
    list(kind, ns?, labels?)   → [record]
    watch(kind)                → Watch of WatchEvent(ADDED|MODIFIED|DELETED)
    create(record)             → stored record     AlreadyExistsError
    patch(record)              → stored record     ConflictError, NotFoundError
    patch_status(record)       → stored record     ConflictError, NotFoundError
    delete(record)             → None              NotFoundError

    Writes are conditional on record.metadata.resource_version.
    delete() on a record with finalizers only sets deletion_timestamp;
    the record disappears once a patch() leaves its finalizer list empty.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Protocol, TypeVar, runtime_checkable

from regops.core.models.meta import ObjectMeta


class Record(Protocol):
    kind: ClassVar[str]
    metadata: ObjectMeta

    def copy(self) -> Any: ...


R = TypeVar("R", bound=Record)


class WatchEventType(str, Enum):
    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


@dataclass(frozen=True)
class WatchEvent:
    type: WatchEventType
    obj: Any


@runtime_checkable
class Watch(Protocol):
    """Live stream of events for one kind. Iteration ends after ``stop()``."""

    def __iter__(self) -> Iterator[WatchEvent]: ...

    def stop(self) -> None: ...


@runtime_checkable
class ObjectStore(Protocol):
    def get(self, kind: type[R], namespace: str, name: str) -> R: ...

    def list(
        self,
        kind: type[R],
        namespace: str | None = None,
        labels: dict[str, str] | None = None,
    ) -> list[R]: ...

    def watch(self, kind: type[Record]) -> Watch: ...

    def create(self, obj: R) -> R: ...

    def patch(self, obj: R) -> R: ...

    def patch_status(self, obj: R) -> R: ...

    def delete(self, obj: Record) -> None: ...
