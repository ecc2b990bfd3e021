"""Outcome types returned by handlers, pipeline stages and reconcilers.

Every handler invocation and every stage reconciliation answers one
question: is this work settled, or should the caller come back later? The
answer is an explicit three-way variant so the requeue decision is a pure
function of the value, never inferred from diffing state.

::

    Progressed(message)            work moved forward; call again
    WaitingOnDependency(reason)    prerequisites unmet; call again, no side effect
    Terminal(success, message)     settled; do not call again

Example:
    >>> outcome = Terminal.failed("manifest not found")
    >>> outcome.needs_retry
    False
    >>> WaitingOnDependency("replicate needs ImageReplicateSynchronized").needs_retry
    True
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Progressed:
    message: str = ""

    @property
    def needs_retry(self) -> bool:
        return True


@dataclass(frozen=True)
class WaitingOnDependency:
    reason: str = ""

    @property
    def needs_retry(self) -> bool:
        return True

    @property
    def message(self) -> str:
        return self.reason


@dataclass(frozen=True)
class Terminal:
    success: bool
    message: str = ""

    @property
    def needs_retry(self) -> bool:
        return False

    @classmethod
    def succeeded(cls, message: str = "") -> Terminal:
        return cls(True, message)

    @classmethod
    def failed(cls, message: str) -> Terminal:
        return cls(False, message)


Outcome = Progressed | WaitingOnDependency | Terminal


@dataclass(frozen=True)
class ReconcileResult:
    """What a reconciler asks of its controller loop."""

    requeue: bool = False
    requeue_after: float | None = None

    @classmethod
    def done(cls) -> ReconcileResult:
        return cls()

    @classmethod
    def again(cls, after: float | None = None) -> ReconcileResult:
        return cls(requeue=True, requeue_after=after)


__all__ = ["Outcome", "Progressed", "ReconcileResult", "Terminal", "WaitingOnDependency"]
