"""Tests for regops.core.conditions — the condition ledger."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from regops.core.conditions import Condition, ConditionSet, ConditionStatus

T0 = datetime(2025, 1, 1, 12, 0, 0, tzinfo=UTC)
T1 = T0 + timedelta(minutes=1)


class TestConditionSetSet:
    """Tests for ConditionSet.set()."""

    def test_new_condition_reports_change(self):
        cs = ConditionSet()
        assert cs.set("Ready", ConditionStatus.TRUE, "ok", now=T0) is True
        cond = cs.get("Ready")
        assert cond == Condition("Ready", ConditionStatus.TRUE, "ok", T0)

    def test_identical_write_is_noop(self):
        cs = ConditionSet()
        cs.set("Ready", ConditionStatus.TRUE, "ok", now=T0)
        assert cs.set("Ready", ConditionStatus.TRUE, "ok", now=T1) is False
        assert cs.get("Ready").last_transition_time == T0

    def test_message_change_keeps_transition_time(self):
        cs = ConditionSet()
        cs.set("Ready", ConditionStatus.UNKNOWN, "waiting", now=T0)
        assert cs.set("Ready", ConditionStatus.UNKNOWN, "still waiting", now=T1) is True
        cond = cs.get("Ready")
        assert cond.message == "still waiting"
        assert cond.last_transition_time == T0

    def test_status_flip_moves_transition_time(self):
        cs = ConditionSet()
        cs.set("Ready", ConditionStatus.UNKNOWN, now=T0)
        cs.set("Ready", ConditionStatus.FALSE, "broke", now=T1)
        cond = cs.get("Ready")
        assert cond.is_false
        assert cond.last_transition_time == T1


class TestConditionSetQueries:
    """Tests for status lookups."""

    def test_absent_type_is_unknown(self):
        cs = ConditionSet()
        assert cs.status_of("Missing") is ConditionStatus.UNKNOWN
        assert cs.is_unknown("Missing")
        assert not cs.is_true("Missing")
        assert not cs.is_false("Missing")

    def test_contains_len_iter_order(self):
        cs = ConditionSet()
        cs.set("B", ConditionStatus.TRUE, now=T0)
        cs.set("A", ConditionStatus.FALSE, now=T0)
        assert "A" in cs
        assert len(cs) == 2
        assert [c.type for c in cs] == ["B", "A"]
        assert cs.types() == ["B", "A"]

    def test_remove(self):
        cs = ConditionSet()
        cs.set("A", ConditionStatus.TRUE, now=T0)
        assert cs.remove("A") is True
        assert cs.remove("A") is False


class TestReconcileExpected:
    """Tests for ConditionSet.reconcile_expected()."""

    def test_adds_missing_as_unknown_and_prunes_stale(self):
        cs = ConditionSet()
        cs.set("Keep", ConditionStatus.TRUE, now=T0)
        cs.set("Stale", ConditionStatus.FALSE, now=T0)
        diff = cs.reconcile_expected(["Keep", "New"], now=T1)
        assert diff.added == ("New",)
        assert diff.removed == ("Stale",)
        assert diff.changed
        assert cs.is_true("Keep")
        assert cs.get("New").status is ConditionStatus.UNKNOWN
        assert cs.get("New").last_transition_time == T1
        assert "Stale" not in cs

    def test_already_matching_is_unchanged(self):
        cs = ConditionSet()
        cs.reconcile_expected(["A", "B"], now=T0)
        diff = cs.reconcile_expected(["A", "B", "A"], now=T1)
        assert not diff.changed


class TestConditionWire:
    """Tests for to_list / from_list."""

    def test_round_trip(self):
        cs = ConditionSet()
        cs.set("Ready", ConditionStatus.TRUE, "done", now=T0)
        cs.set("Synced", ConditionStatus.UNKNOWN, now=T0)
        raw = cs.to_list()
        assert raw[0] == {
            "type": "Ready",
            "status": "True",
            "message": "done",
            "lastTransitionTime": "2025-01-01T12:00:00Z",
        }
        assert ConditionSet.from_list(raw) == cs

    def test_from_none(self):
        assert len(ConditionSet.from_list(None)) == 0
