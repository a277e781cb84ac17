"""Tests for AuditLogService."""

from uuid import uuid4

from workflow_kernel.domain.audit import ActivityType, HistoryNote
from workflow_kernel.domain.subject import Actor
from workflow_kernel.services.audit_log import AuditLogService


class TestAuditLog:

    def test_record_stamps_actor_clock_and_sequence(self, store, clock):
        audit = AuditLogService(store, clock)
        subject_id = uuid4()
        entry = audit.record(
            subject_id, "ticket",
            HistoryNote(ActivityType.APPROVED, "primary:0", "primary:1"),
            Actor("a1", "Alex"),
        )
        assert entry.entry_id is not None
        assert entry.sequence == 1
        assert entry.timestamp == clock.now()
        assert entry.actor_id == "a1"
        assert entry.actor_name == "Alex"

    def test_history_in_order(self, store, clock):
        audit = AuditLogService(store, clock)
        subject_id = uuid4()
        audit.record(subject_id, "ticket", HistoryNote(ActivityType.OPENED, None, "primary:0"))
        audit.record_all(
            subject_id,
            "ticket",
            (
                HistoryNote(ActivityType.COST_CENTER_ASSIGNED, "secondary:0", "secondary:0", "CC"),
                HistoryNote(ActivityType.APPROVED_FINAL, "secondary:0", "completed"),
            ),
            Actor("p1"),
        )
        history = audit.history(subject_id)
        assert [e.activity_type for e in history] == [
            ActivityType.OPENED,
            ActivityType.COST_CENTER_ASSIGNED,
            ActivityType.APPROVED_FINAL,
        ]
        assert [e.sequence for e in history] == [1, 2, 3]
        assert history[0].actor_id is None

    def test_time_orders_before_sequence(self, store, clock):
        audit = AuditLogService(store, clock)
        subject_id = uuid4()
        audit.record(subject_id, "ticket", HistoryNote(ActivityType.OPENED))
        clock.advance(60)
        audit.record(subject_id, "ticket", HistoryNote(ActivityType.REJECTED))
        first, second = audit.history(subject_id)
        assert first.timestamp < second.timestamp

    def test_history_is_per_subject(self, store, clock):
        audit = AuditLogService(store, clock)
        a, b = uuid4(), uuid4()
        audit.record(a, "ticket", HistoryNote(ActivityType.OPENED))
        audit.record(b, "purchase_order", HistoryNote(ActivityType.OPENED))
        assert len(audit.history(a)) == 1
        assert audit.history(b)[0].subject_type == "purchase_order"
        assert audit.record(b, "purchase_order", HistoryNote(ActivityType.CLOSED)).sequence == 2
