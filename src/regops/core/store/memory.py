"""In-memory object store with cluster-API semantics.

Reference implementation of :class:`~regops.core.store.protocol.ObjectStore`
used by tests, the CLI and local development. It reproduces the parts of a
versioned resource store the job subsystem depends on:

- monotonically increasing ``resource_version`` and conflict detection
- status written separately from spec/metadata
- finalizer-blocked deletion (``deletion_timestamp`` first, removal later)
- owner-reference cascade when an owner is physically removed
- per-kind watch streams

All records are deep-copied on the way in and out; callers never share
mutable state with the store.
"""

from __future__ import annotations

import copy
import itertools
import logging
import queue
import threading
from collections.abc import Callable, Iterator
from datetime import datetime
from typing import Any

from regops.core.errors import AlreadyExistsError, ConflictError, NotFoundError
from regops.core.store.protocol import R, Record, WatchEvent, WatchEventType
from regops.core.timestamps import generate_ulid, utc_now

logger = logging.getLogger(__name__)

_STOP = object()


class QueueWatch:
    """Watch stream backed by an unbounded queue."""

    def __init__(self, kind: str, on_stop: Callable[[QueueWatch], None]) -> None:
        self.kind = kind
        self._queue: queue.Queue[Any] = queue.Queue()
        self._on_stop = on_stop
        self._stopped = threading.Event()

    def _push(self, event: WatchEvent) -> None:
        if not self._stopped.is_set():
            self._queue.put(event)

    def next(self, timeout: float | None = None) -> WatchEvent | None:
        """Next event, or None on timeout or after ``stop()``."""
        if self._stopped.is_set() and self._queue.empty():
            return None
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        if item is _STOP:
            return None
        return item

    def __iter__(self) -> Iterator[WatchEvent]:
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            yield item

    def stop(self) -> None:
        if self._stopped.is_set():
            return
        self._stopped.set()
        self._on_stop(self)
        self._queue.put(_STOP)


class InMemoryObjectStore:
    """Thread-safe, versioned, watchable record store."""

    def __init__(self, clock: Callable[[], datetime] = utc_now) -> None:
        self._clock = clock
        self._lock = threading.RLock()
        self._objects: dict[tuple[str, str, str], Any] = {}
        self._versions = itertools.count(1)
        self._watches: dict[str, list[QueueWatch]] = {}

    # === Reads ===

    def get(self, kind: type[R], namespace: str, name: str) -> R:
        with self._lock:
            return copy.deepcopy(self._get_locked(kind.kind, namespace, name))

    def list(
        self,
        kind: type[R],
        namespace: str | None = None,
        labels: dict[str, str] | None = None,
    ) -> list[R]:
        with self._lock:
            items = [
                obj
                for (k, ns, _), obj in self._objects.items()
                if k == kind.kind and (namespace is None or ns == namespace)
            ]
            if labels:
                items = [
                    obj for obj in items
                    if all(obj.metadata.labels.get(lk) == lv for lk, lv in labels.items())
                ]
            items.sort(key=lambda o: (o.metadata.namespace, o.metadata.name))
            return [copy.deepcopy(obj) for obj in items]

    def watch(self, kind: type[Record]) -> QueueWatch:
        with self._lock:
            w = QueueWatch(kind.kind, self._remove_watch)
            self._watches.setdefault(kind.kind, []).append(w)
            return w

    # === Writes ===

    def create(self, obj: R) -> R:
        meta = obj.metadata
        key = (obj.kind, meta.namespace, meta.name)
        with self._lock:
            if key in self._objects:
                raise AlreadyExistsError.for_object(obj.kind, meta.namespace, meta.name)
            stored = copy.deepcopy(obj)
            stored.metadata.uid = stored.metadata.uid or generate_ulid()
            stored.metadata.creation_timestamp = self._clock()
            stored.metadata.deletion_timestamp = None
            stored.metadata.resource_version = self._next_version()
            self._objects[key] = stored
            self._emit(WatchEventType.ADDED, stored)
            return copy.deepcopy(stored)

    def patch(self, obj: R) -> R:
        """Write metadata (finalizers, labels, owners) and spec."""
        with self._lock:
            stored = self._checked(obj)
            updated = copy.deepcopy(stored)
            updated.metadata.finalizers = list(obj.metadata.finalizers)
            updated.metadata.labels = dict(obj.metadata.labels)
            updated.metadata.annotations = dict(obj.metadata.annotations)
            updated.metadata.owner_references = list(obj.metadata.owner_references)
            updated.spec = copy.deepcopy(obj.spec)
            updated.metadata.resource_version = self._next_version()
            key = (obj.kind, stored.metadata.namespace, stored.metadata.name)
            if updated.metadata.is_deleting and not updated.metadata.finalizers:
                self._objects[key] = updated
                self._remove_locked(key)
                return copy.deepcopy(updated)
            self._objects[key] = updated
            self._emit(WatchEventType.MODIFIED, updated)
            return copy.deepcopy(updated)

    def patch_status(self, obj: R) -> R:
        """Write the status sub-resource only."""
        with self._lock:
            stored = self._checked(obj)
            updated = copy.deepcopy(stored)
            updated.status = copy.deepcopy(obj.status)
            updated.metadata.resource_version = self._next_version()
            self._objects[(obj.kind, stored.metadata.namespace, stored.metadata.name)] = updated
            self._emit(WatchEventType.MODIFIED, updated)
            return copy.deepcopy(updated)

    def delete(self, obj: Record) -> None:
        meta = obj.metadata
        with self._lock:
            self._delete_locked((obj.kind, meta.namespace, meta.name))

    # === Internals ===

    def _get_locked(self, kind: str, namespace: str, name: str) -> Any:
        try:
            return self._objects[(kind, namespace, name)]
        except KeyError:
            raise NotFoundError.for_object(kind, namespace, name) from None

    def _checked(self, obj: Record) -> Any:
        meta = obj.metadata
        stored = self._get_locked(obj.kind, meta.namespace, meta.name)
        if stored.metadata.resource_version != meta.resource_version:
            raise ConflictError.for_object(obj.kind, meta.namespace, meta.name)
        return stored

    def _delete_locked(self, key: tuple[str, str, str]) -> None:
        stored = self._get_locked(*key)
        if stored.metadata.finalizers:
            if stored.metadata.is_deleting:
                return
            updated = copy.deepcopy(stored)
            updated.metadata.deletion_timestamp = self._clock()
            updated.metadata.resource_version = self._next_version()
            self._objects[key] = updated
            self._emit(WatchEventType.MODIFIED, updated)
            return
        self._remove_locked(key)

    def _remove_locked(self, key: tuple[str, str, str]) -> None:
        removed = self._objects.pop(key)
        self._emit(WatchEventType.DELETED, removed)
        uid = removed.metadata.uid
        dependents = [k for k, o in self._objects.items() if o.metadata.is_owned_by(uid)]
        for dep in dependents:
            if dep in self._objects:
                logger.debug(f"Cascading delete {dep} (owner {key} removed)")
                self._delete_locked(dep)

    def _emit(self, event_type: WatchEventType, obj: Any) -> None:
        for w in self._watches.get(obj.kind, ()):
            w._push(WatchEvent(event_type, copy.deepcopy(obj)))

    def _remove_watch(self, w: QueueWatch) -> None:
        with self._lock:
            watches = self._watches.get(w.kind, [])
            if w in watches:
                watches.remove(w)

    def _next_version(self) -> str:
        return str(next(self._versions))
