"""Watch-driven reconcile loop, one per record kind.

::

    store.list(kind) ─┐
    store.watch(kind) ─┼─► key mapper ─► WorkQueue (de-duplicated) ─► worker thread
    extra sources     ─┘                      ▲                           │
                                              │                reconcile(namespace, name)
                                              │                           │
                                  Timer(requeue_after) ◄── requeue / exception

A key is never reconciled by two threads at once: a key re-added while it
is being processed is parked and queued again once the current pass is
done. Exceptions from ``reconcile`` are logged and the key is retried
after ``requeue_after``.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Callable, Iterable
from typing import Any

from regops.core.store.protocol import ObjectStore, WatchEvent, WatchEventType
from regops.execution.results import ReconcileResult

logger = logging.getLogger(__name__)

Key = tuple[str, str]
KeyMapper = Callable[[WatchEvent], Iterable[Key]]
ReconcileFn = Callable[[str, str], "ReconcileResult | None"]


def own_key(event: WatchEvent) -> list[Key]:
    meta = event.obj.metadata
    return [(meta.namespace, meta.name)]


def owner_keys(owner_kind: str) -> KeyMapper:
    """Map an event to the keys of its owners of *owner_kind*."""

    def mapper(event: WatchEvent) -> list[Key]:
        meta = event.obj.metadata
        return [
            (meta.namespace, ref.name)
            for ref in meta.owner_references
            if ref.kind == owner_kind
        ]

    return mapper


class WorkQueue:
    """FIFO of keys with de-duplication and per-key exclusivity."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._queue: deque[Key] = deque()
        self._queued: set[Key] = set()
        self._processing: set[Key] = set()
        self._dirty: set[Key] = set()
        self._shutdown = False

    def add(self, key: Key) -> None:
        with self._cond:
            if self._shutdown or key in self._queued:
                return
            if key in self._processing:
                self._dirty.add(key)
                return
            self._queued.add(key)
            self._queue.append(key)
            self._cond.notify()

    def get(self, timeout: float | None = None) -> Key | None:
        with self._cond:
            if not self._cond.wait_for(lambda: self._queue or self._shutdown, timeout=timeout):
                return None
            if not self._queue:
                return None
            key = self._queue.popleft()
            self._queued.discard(key)
            self._processing.add(key)
            return key

    def done(self, key: Key) -> None:
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty and not self._shutdown:
                self._dirty.discard(key)
                self._queued.add(key)
                self._queue.append(key)
                self._cond.notify()

    def shutdown(self) -> None:
        with self._cond:
            self._shutdown = True
            self._cond.notify_all()

    def idle(self) -> bool:
        with self._cond:
            return not self._queue and not self._processing

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)


class Controller:
    """Feeds ``reconcile(namespace, name)`` from a store watch.

    Example:
        >>> ctl = Controller(store, Job, job_reconciler.reconcile, name="jobs")
        >>> ctl.start()
        >>> # ... later ...
        >>> ctl.stop()
    """

    def __init__(
        self,
        store: ObjectStore,
        kind: type[Any],
        reconcile: ReconcileFn,
        *,
        name: str | None = None,
        requeue_after: float = 5.0,
    ) -> None:
        self._store = store
        self.kind = kind
        self._reconcile = reconcile
        self.name = name or kind.kind
        self._requeue_after = requeue_after
        self._sources: list[tuple[type[Any], KeyMapper]] = [(kind, own_key)]

        self.queue = WorkQueue()
        self._watches: list[Any] = []
        self._threads: list[threading.Thread] = []
        self._timers: set[threading.Timer] = set()
        self._timers_lock = threading.Lock()
        self._stopped = threading.Event()
        self._started = False
        self.reconciles = 0
        self.errors = 0

    def watches(self, kind: type[Any], mapper: KeyMapper) -> Controller:
        """Also reconcile keys derived from events of another kind."""
        self._sources.append((kind, mapper))
        return self

    # === Lifecycle ===

    def start(self) -> None:
        if self._started:
            logger.warning("Controller %s already started", self.name)
            return
        self._started = True

        for kind, mapper in self._sources:
            # subscribe before listing so no write falls between the two
            watch = self._store.watch(kind)
            self._watches.append(watch)
            for obj in self._store.list(kind):
                for key in mapper(WatchEvent(WatchEventType.ADDED, obj)):
                    self.queue.add(key)
            t = threading.Thread(
                target=self._pump, args=(watch, mapper), daemon=True,
                name=f"{self.name}-watch-{kind.kind}",
            )
            t.start()
            self._threads.append(t)

        worker = threading.Thread(target=self._work, daemon=True, name=f"{self.name}-worker")
        worker.start()
        self._threads.append(worker)
        logger.info("Controller %s started (%d sources)", self.name, len(self._sources))

    def stop(self, timeout: float = 5.0) -> None:
        if not self._started or self._stopped.is_set():
            return
        self._stopped.set()
        for watch in self._watches:
            watch.stop()
        with self._timers_lock:
            for timer in self._timers:
                timer.cancel()
            self._timers.clear()
        self.queue.shutdown()
        for t in self._threads:
            t.join(timeout=timeout)
            if t.is_alive():
                logger.warning("Controller %s thread %s did not stop cleanly", self.name, t.name)
        logger.info("Controller %s stopped (reconciles=%d, errors=%d)", self.name, self.reconciles, self.errors)

    # === Queueing ===

    def enqueue(self, key: Key, delay: float | None = None) -> None:
        if self._stopped.is_set():
            return
        if not delay:
            self.queue.add(key)
            return

        def fire() -> None:
            with self._timers_lock:
                self._timers.discard(timer)
            self.queue.add(key)

        timer = threading.Timer(delay, fire)
        timer.daemon = True
        with self._timers_lock:
            self._timers.add(timer)
        timer.start()

    def idle(self) -> bool:
        with self._timers_lock:
            pending_timers = bool(self._timers)
        return self.queue.idle() and not pending_timers

    # === Threads ===

    def _pump(self, watch: Any, mapper: KeyMapper) -> None:
        for event in watch:
            try:
                keys = list(mapper(event))
            except Exception:
                logger.exception("Controller %s could not map %s event", self.name, event.type)
                continue
            for key in keys:
                self.queue.add(key)

    def _work(self) -> None:
        while not self._stopped.is_set():
            key = self.queue.get(timeout=0.5)
            if key is None:
                continue
            try:
                self._process(key)
            finally:
                self.queue.done(key)

    def _process(self, key: Key) -> None:
        namespace, name = key
        self.reconciles += 1
        try:
            result = self._reconcile(namespace, name)
        except Exception:
            self.errors += 1
            logger.exception("Controller %s reconcile %s/%s failed", self.name, namespace, name)
            self.enqueue(key, self._requeue_after)
            return
        if result is not None and result.requeue:
            after = result.requeue_after if result.requeue_after is not None else self._requeue_after
            self.enqueue(key, after)


__all__ = ["Controller", "WorkQueue", "own_key", "owner_keys"]
