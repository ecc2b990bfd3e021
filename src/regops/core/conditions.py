"""Condition Ledger - typed, ordered set of tri-state conditions.

A workflow resource (an ImageReplicate, say) records its progress as a set
of named conditions: ``True`` / ``False`` / ``Unknown`` facts with a message
and a transition timestamp. Pipeline stages read the ledger to decide
whether they may run and write back the conditions they own.

Manifesto:
    Conditions are the only workflow state. No in-memory engine remembers
    where a pipeline is; the ledger on the resource does. That only works
    if writing the ledger is cheap and quiet:

    - **Keyed:** one entry per condition type, insertion order kept for display
    - **Write-avoiding:** ``set`` reports whether anything changed so callers
      skip the status write (no reconcile storms)
    - **Expected-set aware:** ``reconcile_expected`` initializes missing types
      to ``Unknown`` and prunes stale ones as an explicit, testable step

ARCHITECTURE
────────────
::

    ConditionSet
      ├── .get(type)                  ─ Condition | None
      ├── .set(type, status, msg)     ─ bool (changed?)
      ├── .remove(type)               ─ bool
      ├── .is_true / is_false / is_unknown
      └── .reconcile_expected(types)  ─ ConditionDiff(added, removed)

Tags:
    regops-core, conditions, ledger, pipeline, status

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any

from regops.core.timestamps import from_iso8601, to_iso8601, utc_now


class ConditionStatus(str, Enum):
    """Tri-state condition value."""

    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


@dataclass(frozen=True)
class Condition:
    """One named fact about a resource's progress."""

    type: str
    status: ConditionStatus = ConditionStatus.UNKNOWN
    message: str = ""
    last_transition_time: datetime | None = None

    @property
    def is_true(self) -> bool:
        return self.status is ConditionStatus.TRUE

    @property
    def is_false(self) -> bool:
        return self.status is ConditionStatus.FALSE

    @property
    def is_unknown(self) -> bool:
        return self.status is ConditionStatus.UNKNOWN

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"type": self.type, "status": self.status.value}
        if self.message:
            d["message"] = self.message
        if self.last_transition_time is not None:
            d["lastTransitionTime"] = to_iso8601(self.last_transition_time)
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Condition:
        return cls(
            type=data["type"],
            status=ConditionStatus(data.get("status", "Unknown")),
            message=data.get("message", ""),
            last_transition_time=from_iso8601(data.get("lastTransitionTime")),
        )


@dataclass(frozen=True)
class ConditionDiff:
    """Result of reconciling the stored set against the expected types."""

    added: tuple[str, ...] = ()
    removed: tuple[str, ...] = ()

    @property
    def changed(self) -> bool:
        return bool(self.added or self.removed)


@dataclass
class ConditionSet:
    """Ordered-but-keyed set of conditions, one per type."""

    _items: dict[str, Condition] = field(default_factory=dict)

    def __iter__(self) -> Iterator[Condition]:
        return iter(list(self._items.values()))

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, condition_type: object) -> bool:
        return condition_type in self._items

    def types(self) -> list[str]:
        return list(self._items)

    def get(self, condition_type: str) -> Condition | None:
        return self._items.get(condition_type)

    def status_of(self, condition_type: str) -> ConditionStatus:
        """Stored status, ``Unknown`` when the type is absent."""
        cond = self._items.get(condition_type)
        return cond.status if cond else ConditionStatus.UNKNOWN

    def is_true(self, condition_type: str) -> bool:
        return self.status_of(condition_type) is ConditionStatus.TRUE

    def is_false(self, condition_type: str) -> bool:
        return self.status_of(condition_type) is ConditionStatus.FALSE

    def is_unknown(self, condition_type: str) -> bool:
        return self.status_of(condition_type) is ConditionStatus.UNKNOWN

    def set(
        self,
        condition_type: str,
        status: ConditionStatus,
        message: str = "",
        *,
        now: datetime | None = None,
    ) -> bool:
        """Record a condition. Returns False when nothing changed.

        ``last_transition_time`` moves only when the status flips; a message
        change alone updates the message and keeps the timestamp.
        """
        current = self._items.get(condition_type)
        if current is None:
            self._items[condition_type] = Condition(
                condition_type, status, message, now or utc_now()
            )
            return True
        if current.status is status and current.message == message:
            return False
        if current.status is status:
            self._items[condition_type] = replace(current, message=message)
        else:
            self._items[condition_type] = Condition(
                condition_type, status, message, now or utc_now()
            )
        return True

    def remove(self, condition_type: str) -> bool:
        return self._items.pop(condition_type, None) is not None

    def reconcile_expected(
        self, expected: Iterable[str], *, now: datetime | None = None
    ) -> ConditionDiff:
        """Make the stored types equal the expected set.

        Missing types are added as ``Unknown``; types no longer expected are
        removed so they cannot influence phase computation.
        """
        expected = list(dict.fromkeys(expected))
        stamp = now or utc_now()
        added = []
        for condition_type in expected:
            if condition_type not in self._items:
                self._items[condition_type] = Condition(
                    condition_type, ConditionStatus.UNKNOWN, "", stamp
                )
                added.append(condition_type)
        removed = [t for t in self._items if t not in expected]
        for condition_type in removed:
            del self._items[condition_type]
        return ConditionDiff(tuple(added), tuple(removed))

    def to_list(self) -> list[dict[str, Any]]:
        return [c.to_dict() for c in self._items.values()]

    @classmethod
    def from_list(cls, items: Iterable[dict[str, Any]] | None) -> ConditionSet:
        cs = cls()
        for raw in items or ():
            cond = Condition.from_dict(raw)
            cs._items[cond.type] = cond
        return cs


__all__ = ["Condition", "ConditionDiff", "ConditionSet", "ConditionStatus"]
