"""
Coins purchase order service tests.

Phase order: creation -> sending -> receiving -> coins_entry -> completed.
Entering coins_entry creates one receiving header and line per brand;
leaving it requires every brand to be fully delivered.
"""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from workflow_kernel.domain.audit import ActivityType
from workflow_kernel.domain.delivery import DeliveryStatus
from workflow_kernel.domain.results import WorkflowOutcome
from workflow_kernel.domain.subject import Actor, StageKind
from workflow_modules.coins_purchase.models import OrderLine
from workflow_modules.coins_purchase.service import PurchaseOrderService
from workflow_modules.coins_purchase.workflows import (
    ATTACHMENT_TABLE,
    HEADER_TABLE,
    ORDER_TABLE,
    RECEIVING_LINE_TABLE,
)

LINES = (
    OrderLine("A", Decimal("60")),
    OrderLine("B", Decimal("50")),
    OrderLine("A", Decimal("40")),
)

VAULT = Actor("vault", "Vault Clerk")


@pytest.fixture
def new_order(orders, actor):
    def _create(lines=LINES, number="PO-1"):
        result = orders.create_order(actor, lines, order_number=number)
        assert result.status == WorkflowOutcome.OPENED
        return result.subject.subject_id

    return _create


@pytest.fixture
def order_in_entry(orders, new_order, actor):
    """An order advanced into coins_entry."""
    order_id = new_order()
    for _ in range(3):
        assert orders.advance_phase(order_id, actor).is_success
    return order_id


def _line_for(orders, order_id, brand):
    return next(line for line in orders.receipt_lines(order_id) if line.group_key == brand)


def _confirm_all(orders, order_id):
    for line in orders.receipt_lines(order_id):
        result = orders.confirm_line(order_id, line.line_id, VAULT, line.target_amount)
        assert result.status == WorkflowOutcome.LINE_UPDATED


class TestCreateOrder:

    def test_created_in_first_phase(self, orders, new_order, notifier):
        order_id = new_order()
        order = orders.get(order_id)
        assert order.current_phase == "creation"
        assert order.stage_kind == StageKind.NOT_STARTED
        assert order.delivery_status == DeliveryStatus.DRAFT
        assert order.version == 1
        assert notifier.events() == ["phase_entered"]

    def test_lines_kept_in_order(self, orders, new_order):
        order_id = new_order()
        assert orders.order_lines(order_id) == list(LINES)

    def test_non_positive_amount_refused(self, orders, actor, store):
        result = orders.create_order(actor, [OrderLine("A", Decimal("0"))], order_number="PO-0")
        assert result.status == WorkflowOutcome.INVALID_AMOUNT
        assert not result.is_success
        assert result.subject is None
        assert result.error.amount == Decimal("0")
        assert store.query(ORDER_TABLE, {"order_number": "PO-0"}) == []

    def test_history_opened(self, orders, new_order, actor):
        history = orders.history(new_order())
        assert [e.activity_type for e in history] == [ActivityType.OPENED]
        assert history[0].actor_id == actor.actor_id


class TestAdvancePhase:

    def test_walks_phases_in_order(self, orders, new_order, actor):
        order_id = new_order()
        phases = []
        for _ in range(3):
            result = orders.advance_phase(order_id, actor)
            assert result.status == WorkflowOutcome.ADVANCED
            phases.append(result.subject.current_phase)
        assert phases == ["sending", "receiving", "coins_entry"]
        assert orders.get(order_id).stage_kind == StageKind.IN_PROGRESS

    def test_entering_coins_entry_creates_receiving_per_brand(self, orders, order_in_entry):
        lines = orders.receipt_lines(order_in_entry)
        assert {(l.group_key, l.target_amount) for l in lines} == {
            ("A", Decimal("100")),
            ("B", Decimal("50")),
        }
        assert all(not l.is_confirmed for l in lines)
        assert orders.delivery_targets(order_in_entry) == {
            "A": Decimal("100"),
            "B": Decimal("50"),
        }
        assert orders.get(order_in_entry).delivery_status == DeliveryStatus.DRAFT

    def test_guard_blocks_until_fully_delivered(self, orders, order_in_entry, actor):
        refused = orders.advance_phase(order_in_entry, actor)
        assert refused.status == WorkflowOutcome.GUARD_FAILED
        assert refused.error.guard_name == "all_lines_confirmed"
        assert refused.subject.current_phase == "coins_entry"

        line_a = _line_for(orders, order_in_entry, "A")
        orders.confirm_line(order_in_entry, line_a.line_id, VAULT, Decimal("100"))
        assert orders.get(order_in_entry).delivery_status == DeliveryStatus.PARTIAL_DELIVERY
        assert orders.advance_phase(order_in_entry, actor).status == WorkflowOutcome.GUARD_FAILED

    def test_full_delivery_completes(self, orders, order_in_entry, actor, notifier):
        _confirm_all(orders, order_in_entry)
        assert orders.get(order_in_entry).delivery_status == DeliveryStatus.FULL_DELIVERY

        result = orders.advance_phase(order_in_entry, actor)
        assert result.status == WorkflowOutcome.COMPLETED
        assert result.subject.stage_kind == StageKind.COMPLETED
        assert result.subject.current_phase == "completed"
        assert result.subject.completed_by == actor.actor_id
        assert notifier.recipients_of("order_completed") == [frozenset({actor.actor_id})]

    def test_completed_order_cannot_advance(self, orders, order_in_entry, actor):
        _confirm_all(orders, order_in_entry)
        orders.advance_phase(order_in_entry, actor)
        assert orders.advance_phase(order_in_entry, actor).status == WorkflowOutcome.ALREADY_CLOSED

    def test_phase_owners_notified(self, orders, new_order, actor, notifier, phase_owners):
        order_id = new_order()
        orders.advance_phase(order_id, actor)
        assert notifier.recipients_of("phase_entered")[-1] == frozenset({"logistics"})

    def test_unknown_order(self, orders, actor):
        result = orders.advance_phase(uuid4(), actor)
        assert result.status == WorkflowOutcome.RECORD_NOT_FOUND
        assert result.subject is None


class TestRollback:

    def test_rollback_from_coins_entry_deletes_receiving(self, orders, order_in_entry, actor, store):
        header_id = store.query(HEADER_TABLE, {"purchase_order_id": order_in_entry})[0]["id"]
        orders.add_attachment(order_in_entry, header_id, "count.pdf", "https://files/count.pdf", actor)
        _confirm_all(orders, order_in_entry)

        result = orders.rollback(order_in_entry, actor, note="recount")
        assert result.status == WorkflowOutcome.ROLLED_BACK
        assert result.subject.current_phase == "receiving"
        assert result.subject.delivery_status == DeliveryStatus.DRAFT
        for table in (RECEIVING_LINE_TABLE, ATTACHMENT_TABLE, HEADER_TABLE):
            assert store.query(table, {"purchase_order_id": order_in_entry}) == []

    def test_rollback_one_phase_at_a_time(self, orders, order_in_entry, actor):
        assert orders.rollback(order_in_entry, actor).subject.current_phase == "receiving"
        assert orders.rollback(order_in_entry, actor).subject.current_phase == "sending"
        back = orders.rollback(order_in_entry, actor)
        assert back.subject.current_phase == "creation"
        assert back.subject.stage_kind == StageKind.NOT_STARTED

    def test_rollback_at_first_phase(self, orders, new_order, actor):
        result = orders.rollback(new_order(), actor)
        assert result.status == WorkflowOutcome.AT_EARLIEST_PHASE

    def test_re_entering_recreates_fresh_lines(self, orders, order_in_entry, actor):
        _confirm_all(orders, order_in_entry)
        orders.rollback(order_in_entry, actor)
        orders.advance_phase(order_in_entry, actor)
        lines = orders.receipt_lines(order_in_entry)
        assert len(lines) == 2
        assert all(not l.is_confirmed for l in lines)

    def test_history_records_phase_moves(self, orders, order_in_entry, actor):
        orders.rollback(order_in_entry, actor, note="recount")
        last = orders.history(order_in_entry)[-1]
        assert last.activity_type == ActivityType.PHASE_ROLLED_BACK
        assert (last.from_phase, last.to_phase, last.note) == ("coins_entry", "receiving", "recount")


class TestReceivingLines:

    def test_confirm_freezes_line(self, orders, order_in_entry):
        line = _line_for(orders, order_in_entry, "B")
        orders.confirm_line(order_in_entry, line.line_id, VAULT, Decimal("50"))

        refreshed = _line_for(orders, order_in_entry, "B")
        assert refreshed.is_confirmed
        assert refreshed.confirmed_by == "vault"
        assert refreshed.delivered_amount == Decimal("50")

        edit = orders.update_delivered_amount(order_in_entry, line.line_id, Decimal("49"), VAULT)
        assert edit.status == WorkflowOutcome.LINE_FROZEN
        again = orders.confirm_line(order_in_entry, line.line_id, VAULT)
        assert again.status == WorkflowOutcome.LINE_FROZEN

    def test_unconfirm_then_edit(self, orders, order_in_entry):
        line = _line_for(orders, order_in_entry, "B")
        orders.confirm_line(order_in_entry, line.line_id, VAULT, Decimal("50"))
        assert orders.unconfirm_line(order_in_entry, line.line_id, VAULT).is_success

        edit = orders.update_delivered_amount(order_in_entry, line.line_id, Decimal("45"), VAULT)
        assert edit.status == WorkflowOutcome.LINE_UPDATED
        assert _line_for(orders, order_in_entry, "B").delivered_amount == Decimal("45")

    def test_negative_delivered_amount_refused(self, orders, order_in_entry):
        line = _line_for(orders, order_in_entry, "B")
        version = orders.get(order_in_entry).version

        result = orders.update_delivered_amount(order_in_entry, line.line_id, Decimal("-3"), VAULT)
        assert result.status == WorkflowOutcome.INVALID_AMOUNT
        assert result.subject.version == version
        assert _line_for(orders, order_in_entry, "B").delivered_amount == Decimal("0")

    def test_unconfirmed_amount_does_not_count(self, orders, order_in_entry):
        line = _line_for(orders, order_in_entry, "B")
        orders.update_delivered_amount(order_in_entry, line.line_id, Decimal("50"), VAULT)
        assert orders.get(order_in_entry).delivery_status == DeliveryStatus.DRAFT
        assert orders.delivery_summary(order_in_entry).confirmed_total == Decimal("0")

    def test_each_mutation_bumps_version(self, orders, order_in_entry):
        before = orders.get(order_in_entry).version
        line = _line_for(orders, order_in_entry, "A")
        result = orders.confirm_line(order_in_entry, line.line_id, VAULT, Decimal("100"))
        assert result.subject.version == before + 1

    def test_line_of_another_order(self, orders, order_in_entry, new_order, actor):
        other = new_order(number="PO-2")
        for _ in range(3):
            orders.advance_phase(other, actor)
        foreign = _line_for(orders, other, "A")
        result = orders.confirm_line(order_in_entry, foreign.line_id, VAULT)
        assert result.status == WorkflowOutcome.LINE_NOT_FOUND

    def test_summary(self, orders, order_in_entry):
        line = _line_for(orders, order_in_entry, "A")
        orders.confirm_line(order_in_entry, line.line_id, VAULT, Decimal("70"))
        summary = orders.delivery_summary(order_in_entry)
        assert summary.confirmed == {"A": Decimal("70")}
        assert summary.remaining == {"A": Decimal("30"), "B": Decimal("50")}
        assert summary.confirmed_total == Decimal("70")

    def test_lines_read_only_after_close(self, orders, order_in_entry, actor):
        _confirm_all(orders, order_in_entry)
        orders.close(order_in_entry, actor, Decimal("150"))
        line = _line_for(orders, order_in_entry, "A")
        assert orders.unconfirm_line(order_in_entry, line.line_id, VAULT).status == (
            WorkflowOutcome.ALREADY_CLOSED
        )


class TestClose:

    def test_below_then_closed_then_already_closed(self, orders, order_in_entry, actor):
        line = _line_for(orders, order_in_entry, "A")
        orders.confirm_line(order_in_entry, line.line_id, VAULT, Decimal("100"))

        below = orders.close(order_in_entry, actor, Decimal("150"))
        assert below.status == WorkflowOutcome.BELOW_THRESHOLD
        assert below.error.confirmed_total == Decimal("100")

        closed = orders.close(order_in_entry, actor, Decimal("100"))
        assert closed.status == WorkflowOutcome.CLOSED
        assert closed.subject.stage_kind == StageKind.CLOSED
        assert closed.subject.delivery_status == DeliveryStatus.CLOSED
        assert closed.subject.closed_by == actor.actor_id

        assert orders.close(order_in_entry, actor, Decimal("0")).status == (
            WorkflowOutcome.ALREADY_CLOSED
        )

    def test_completed_order_can_close(self, orders, order_in_entry, actor):
        _confirm_all(orders, order_in_entry)
        orders.advance_phase(order_in_entry, actor)
        assert orders.close(order_in_entry, actor, Decimal("150")).status == WorkflowOutcome.CLOSED


class TestAttachments:

    def test_attachment_recorded(self, orders, order_in_entry, actor, store):
        header_id = store.query(HEADER_TABLE, {"purchase_order_id": order_in_entry})[0]["id"]
        version = orders.get(order_in_entry).version
        result = orders.add_attachment(
            order_in_entry, header_id, "count.pdf", "https://files/count.pdf", actor
        )
        assert result.status == WorkflowOutcome.ATTACHMENT_ADDED
        assert result.subject.version == version + 1
        assert orders.get(order_in_entry).version == version + 1
        rows = store.query(ATTACHMENT_TABLE, {"header_id": header_id})
        assert [r["file_name"] for r in rows] == ["count.pdf"]
        assert orders.history(order_in_entry)[-1].activity_type == ActivityType.ATTACHMENT_ADDED

    def test_unknown_header(self, orders, order_in_entry, actor):
        result = orders.add_attachment(order_in_entry, uuid4(), "x.pdf", "https://files/x", actor)
        assert result.status == WorkflowOutcome.RECORD_NOT_FOUND


class TestDelaySweep:

    def test_delayed_orders_sorted_longest_first(self, orders, new_order, actor, clock, phase_owners):
        older = new_order(number="PO-OLD")
        orders.advance_phase(older, actor)
        clock.advance(int(timedelta(days=1).total_seconds()))
        newer = new_order(number="PO-NEW")
        orders.advance_phase(newer, actor)
        new_order(number="PO-IDLE")

        as_of = clock.now() + timedelta(days=2)
        delayed = orders.find_delayed(as_of=as_of)
        assert [d.order_number for d in delayed] == ["PO-OLD", "PO-NEW"]
        assert [d.days_delayed for d in delayed] == [3, 2]
        assert delayed[0].phase == "sending"
        assert delayed[0].responsible == frozenset({"logistics"})

    def test_within_threshold_not_reported(self, orders, new_order, actor, clock):
        order_id = new_order()
        orders.advance_phase(order_id, actor)
        assert orders.find_delayed(as_of=clock.now() + timedelta(hours=23)) == []

    def test_creator_is_fallback_owner(self, orders, new_order, actor, clock, notifier):
        order_id = new_order()
        orders.advance_phase(order_id, actor)
        delayed = orders.notify_delayed(as_of=clock.now() + timedelta(days=2))
        assert delayed[0].responsible == frozenset({actor.actor_id})
        assert notifier.recipients_of("phase_delayed") == [frozenset({actor.actor_id})]
        assert notifier.sent[-1][3] == {"phase": "sending", "days_delayed": 2}
        assert notifier.sent[-1][1].subject_id == order_id

    def test_completed_orders_ignored(self, orders, order_in_entry, actor, clock):
        _confirm_all(orders, order_in_entry)
        orders.advance_phase(order_in_entry, actor)
        assert orders.find_delayed(as_of=clock.now() + timedelta(days=5)) == []


class TestCompletionHook:

    def test_hook_runs_once(self, store, clock, actor):
        completed = []
        service = PurchaseOrderService(store, clock=clock, on_completed=completed.append)
        order_id = service.create_order(actor, [OrderLine("A", Decimal("10"))]).subject.subject_id
        for _ in range(3):
            service.advance_phase(order_id, actor)
        line = service.receipt_lines(order_id)[0]
        service.confirm_line(order_id, line.line_id, VAULT, Decimal("10"))
        service.advance_phase(order_id, actor)
        service.advance_phase(order_id, actor)
        assert [s.subject_id for s in completed] == [order_id]

    def test_hook_failure_propagates(self, store, clock, actor):
        def explode(subject):
            raise RuntimeError("downstream unavailable")

        service = PurchaseOrderService(store, clock=clock, on_completed=explode)
        order_id = service.create_order(actor, [OrderLine("A", Decimal("10"))]).subject.subject_id
        for _ in range(3):
            service.advance_phase(order_id, actor)
        line = service.receipt_lines(order_id)[0]
        service.confirm_line(order_id, line.line_id, VAULT, Decimal("10"))
        with pytest.raises(RuntimeError):
            service.advance_phase(order_id, actor)
