"""Object store protocol and the in-memory reference store."""

from regops.core.store.memory import InMemoryObjectStore, QueueWatch
from regops.core.store.protocol import (
    ObjectStore,
    Record,
    Watch,
    WatchEvent,
    WatchEventType,
)

__all__ = [
    "InMemoryObjectStore",
    "ObjectStore",
    "QueueWatch",
    "Record",
    "Watch",
    "WatchEvent",
    "WatchEventType",
]
