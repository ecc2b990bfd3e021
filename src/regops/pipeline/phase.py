"""Derived phase of a condition-gated resource.

The phase is never stored as independent state; it is a pure function of
the condition ledger and the expected condition types. Reconcilers compute
it and write it next to the conditions only when it changed.

Rules, in order::

    any terminal type is False             → Fail
    every expected type is True            → Success
    any expected type has left Unknown     → Processing
    otherwise                              → Pending

Types stored in the ledger but absent from *expected* are ignored.
"""

from __future__ import annotations

from collections.abc import Iterable

from regops.core.conditions import ConditionSet, ConditionStatus
from regops.core.models import ReplicatePhase


def derive_phase(
    conditions: ConditionSet,
    expected: Iterable[str],
    terminal: Iterable[str] = (),
) -> ReplicatePhase:
    expected = list(expected)
    statuses = {t: conditions.status_of(t) for t in expected}

    for condition_type in terminal:
        if condition_type in statuses and statuses[condition_type] is ConditionStatus.FALSE:
            return ReplicatePhase.FAIL
    if expected and all(s is ConditionStatus.TRUE for s in statuses.values()):
        return ReplicatePhase.SUCCESS
    if any(s is not ConditionStatus.UNKNOWN for s in statuses.values()):
        return ReplicatePhase.PROCESSING
    return ReplicatePhase.PENDING


__all__ = ["derive_phase"]
