"""Fixed-interval timer threads for the TTL sweep and cron catch-up.

┌──────────────────────────────────────────────────────────────────────────────┐
│  INTERVAL TIMER                                                               │
│                                                                               │
│   start(callback, interval_seconds)                                           │
│      │                                                                        │
│      ▼                                                                        │
│   ┌─────────────────────────────────────────────────────────┐                │
│   │              Daemon Thread (loop)                       │                │
│   │                                                         │                │
│   │   while not stop_event.wait(interval):                  │                │
│   │       tick_count += 1                                   │                │
│   │       last_tick = now()                                 │                │
│   │       callback()            ◄──── exceptions logged     │                │
│   └─────────────────────────────────────────────────────────┘                │
│                                                                               │
│   stop(): stop_event.set(); thread.join(timeout=5.0)                          │
│                                                                               │
│  Timers are independent: the TTL collector and the cron scheduler each own   │
│  one, and neither coordinates with the other. All their writes go through    │
│  optimistic concurrency on the store.                                        │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)


class IntervalTimer:
    """Calls a sync callback every ``interval_seconds`` on a daemon thread.

    Example:
        >>> timer = IntervalTimer("ttl-sweep")
        >>> timer.start(collector.sweep, interval_seconds=10.0)
        >>> # ... later ...
        >>> timer.stop()
    """

    def __init__(self, name: str = "regops-timer") -> None:
        self.name = name
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._tick_count = 0
        self._error_count = 0
        self._last_tick: datetime | None = None
        self._interval: float = 10.0
        self._started = False
        self._lock = threading.Lock()

    def start(
        self,
        callback: Callable[[], Any],
        interval_seconds: float = 10.0,
        *,
        run_immediately: bool = False,
    ) -> None:
        """Start the loop. A second call while running only warns."""
        if self._started:
            logger.warning(f"{self.name} already started")
            return

        self._interval = interval_seconds
        self._stop_event.clear()

        def _tick() -> None:
            with self._lock:
                self._tick_count += 1
                self._last_tick = datetime.now(UTC)
            try:
                callback()
            except Exception as e:
                with self._lock:
                    self._error_count += 1
                logger.exception(f"{self.name} tick failed: {e}")

        def _loop() -> None:
            logger.info(f"{self.name} started (interval={interval_seconds}s)")
            if run_immediately:
                _tick()
            while not self._stop_event.wait(interval_seconds):
                _tick()
            logger.info(f"{self.name} stopped")

        self._thread = threading.Thread(target=_loop, daemon=True, name=self.name)
        self._thread.start()
        self._started = True

    def stop(self) -> None:
        """Stop the loop, waiting up to 5 seconds for the current tick."""
        if not self._started:
            return
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=5.0)
            if self._thread.is_alive():
                logger.warning(f"{self.name} thread did not stop cleanly")
        self._started = False

    def health(self) -> dict[str, Any]:
        return {
            "healthy": self.is_running,
            "timer": self.name,
            "tick_count": self._tick_count,
            "error_count": self._error_count,
            "last_tick": self._last_tick.isoformat() if self._last_tick else None,
            "interval_seconds": self._interval,
        }

    @property
    def is_running(self) -> bool:
        return self._started and self._thread is not None and self._thread.is_alive()

    @property
    def tick_count(self) -> int:
        return self._tick_count

    @property
    def last_tick(self) -> datetime | None:
        return self._last_tick
