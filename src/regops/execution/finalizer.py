"""Finalizer Guard - no record leaves the store before its cleanup ran.

On first reconciliation the guard puts a finalizer token on the record, so
a later delete only sets ``deletion_timestamp``. When the reconciler sees a
deletion-requested record it calls :meth:`FinalizerGuard.finalize`, which
runs the cleanup notification synchronously and only then removes the
token, letting the store drop the record.

::

    reconcile(record)
      ├── not deleting, no token → ensure(): add token, persist, re-queue
      └── deleting, has token    → finalize(): cleanup(record)
                                                 ├── ok    → remove token → record gone
                                                 └── raise → token kept, retried next pass

Tags:
    regops-core, execution, finalizer, deletion, cleanup
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from regops.core.errors import ConflictError, NotFoundError
from regops.core.logging import get_logger
from regops.core.store.protocol import ObjectStore

logger = get_logger(__name__)

DEFAULT_FINALIZER = "regops.io/finalizer"


class FinalizerGuard:
    """Adds and clears one finalizer token on behalf of a reconciler."""

    def __init__(
        self,
        store: ObjectStore,
        token: str = DEFAULT_FINALIZER,
        *,
        conflict_retries: int = 5,
    ) -> None:
        self._store = store
        self.token = token
        self._conflict_retries = conflict_retries

    def ensure(self, obj: Any) -> bool:
        """Add the token if missing.

        Returns True when the record was written, meaning the caller should
        stop this pass and wait for the resulting watch event.
        """
        meta = obj.metadata
        if meta.is_deleting or meta.has_finalizer(self.token):
            return False
        updated = obj.copy()
        updated.metadata.finalizers.append(self.token)
        try:
            self._store.patch(updated)
        except NotFoundError:
            return False
        logger.debug("finalizer_added", kind=obj.kind, namespace=meta.namespace, name=meta.name)
        return True

    def finalize(self, obj: Any, cleanup: Callable[[Any], None]) -> bool:
        """Run *cleanup* for a deletion-requested record, then release it.

        Returns False when the record is not being deleted. Exceptions from
        *cleanup* propagate and leave the token in place.
        """
        meta = obj.metadata
        if not meta.is_deleting:
            return False
        if not meta.has_finalizer(self.token):
            return True

        cleanup(obj)

        current = obj.copy()
        for attempt in range(1, self._conflict_retries + 1):
            if not current.metadata.has_finalizer(self.token):
                break
            current.metadata.finalizers = [
                f for f in current.metadata.finalizers if f != self.token
            ]
            try:
                self._store.patch(current)
                break
            except NotFoundError:
                break
            except ConflictError:
                if attempt == self._conflict_retries:
                    raise
                try:
                    current = self._store.get(type(obj), meta.namespace, meta.name)
                except NotFoundError:
                    break
        logger.info("finalizer_released", kind=obj.kind, namespace=meta.namespace, name=meta.name)
        return True


__all__ = ["DEFAULT_FINALIZER", "FinalizerGuard"]
