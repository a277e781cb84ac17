"""
Tests for the pure workflow transitions.

Covers approval-chain advance / reject / side channel / recheck and the
phased advance / rollback / close transitions.  No database.
"""

from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from workflow_engines.side_channel import open_request
from workflow_engines.state_machine import (
    advance_chain,
    advance_phase,
    close_subject,
    recheck_chain,
    reject_chain,
    request_side_channel,
    respond_side_channel,
    rollback_phase,
)
from workflow_kernel.domain.audit import ActivityType
from workflow_kernel.domain.delivery import DeliveryStatus
from workflow_kernel.domain.subject import (
    STAGE_TRANSITIONS,
    ApproverGroup,
    ChainPosition,
    GroupKind,
    StageKind,
    WorkflowSubject,
)
from workflow_kernel.domain.workflow import ArtifactRef, Guard, Phase, PhasedWorkflow
from workflow_kernel.exceptions import (
    AlreadyClosedError,
    AtEarliestPhaseError,
    BelowThresholdError,
    CostCenterRequiredError,
    GuardFailedError,
    NotEligibleError,
    SideChannelBlockingError,
)

NOW = datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc)
P = GroupKind.PRIMARY
S = GroupKind.SECONDARY

GROUPS = (
    ApproverGroup(P, 0, frozenset({"a1"})),
    ApproverGroup(P, 1, frozenset({"a2"})),
    ApproverGroup(S, 0, frozenset({"p1"}), requires_cost_center=True),
)


def _ticket(position=ChainPosition(P, 0), purchase=False, **changes):
    subject = WorkflowSubject(subject_id=uuid4(), requires_secondary_chain=purchase, **changes)
    return subject.at_position(position)


def _walk(subject, *actors, **kwargs):
    step = None
    for actor in actors:
        step = advance_chain(subject, GROUPS, actor, NOW, **kwargs)
        subject = step.subject
    return step


# =============================================================================
# Approval chains
# =============================================================================


class TestAdvanceChain:

    def test_first_approval_moves_to_next_rank(self):
        step = advance_chain(_ticket(), GROUPS, "a1", NOW)
        assert step.subject.stage_kind == StageKind.IN_PROGRESS
        assert step.subject.position == ChainPosition(P, 1)
        assert step.next_hop.members == frozenset({"a2"})
        assert [n.activity_type for n in step.notes] == [ActivityType.APPROVED]
        assert step.notes[0].from_phase == "primary:0"
        assert step.notes[0].to_phase == "primary:1"

    def test_last_rank_completes(self):
        step = _walk(_ticket(), "a1", "a2")
        assert step.completed
        assert step.subject.stage_kind == StageKind.COMPLETED
        assert step.subject.completed_by == "a2"
        assert step.subject.completed_at == NOW
        assert step.notes[-1].activity_type == ActivityType.APPROVED_FINAL

    def test_unrouted_subject_is_routed_first(self):
        step = advance_chain(_ticket(position=None), GROUPS, "a1", NOW)
        assert step.subject.position == ChainPosition(P, 1)

    def test_non_member_is_not_eligible(self):
        with pytest.raises(NotEligibleError):
            advance_chain(_ticket(), GROUPS, "a2", NOW)

    def test_wrong_acting_order_is_not_eligible(self):
        with pytest.raises(NotEligibleError) as exc_info:
            advance_chain(_ticket(), GROUPS, "a1", NOW, acting_order=1)
        assert exc_info.value.expected_order == 0

    def test_zero_approvers_any_actor_completes(self):
        step = advance_chain(_ticket(position=None), (), "anyone", NOW)
        assert step.completed
        assert step.subject.completed_by == "anyone"

    @pytest.mark.parametrize("stage", [StageKind.COMPLETED, StageKind.REJECTED, StageKind.CLOSED])
    def test_terminal_subject(self, stage):
        with pytest.raises(AlreadyClosedError):
            advance_chain(_ticket(stage_kind=stage), GROUPS, "a1", NOW)


class TestCostCenterGate:

    def test_flagged_purchase_rank_requires_cost_center(self):
        subject = _ticket(ChainPosition(S, 0), purchase=True, stage_kind=StageKind.IN_PROGRESS)
        with pytest.raises(CostCenterRequiredError):
            advance_chain(subject, GROUPS, "p1", NOW)

    def test_supplied_cost_center_is_stored_and_noted(self):
        subject = _ticket(ChainPosition(S, 0), purchase=True, stage_kind=StageKind.IN_PROGRESS)
        step = advance_chain(subject, GROUPS, "p1", NOW, cost_center_id="CC-9")
        assert step.completed
        assert step.subject.cost_center_id == "CC-9"
        assert step.notes[0].activity_type == ActivityType.COST_CENTER_ASSIGNED
        assert step.notes[0].note == "CC-9"

    def test_existing_cost_center_satisfies_gate(self):
        subject = _ticket(
            ChainPosition(S, 0), purchase=True,
            stage_kind=StageKind.IN_PROGRESS, cost_center_id="CC-1",
        )
        step = advance_chain(subject, GROUPS, "p1", NOW)
        assert step.completed
        assert [n.activity_type for n in step.notes] == [ActivityType.APPROVED_FINAL]

    def test_flagged_primary_rank_requires_cost_center(self):
        groups = (ApproverGroup(P, 0, frozenset({"a1"}), requires_cost_center=True),)
        subject = _ticket(ChainPosition(P, 0), purchase=True, stage_kind=StageKind.IN_PROGRESS)
        with pytest.raises(CostCenterRequiredError):
            advance_chain(subject, groups, "a1", NOW)

    def test_flagged_primary_rank_ignored_on_regular_ticket(self):
        groups = (ApproverGroup(P, 0, frozenset({"a1"}), requires_cost_center=True),)
        subject = _ticket(ChainPosition(P, 0), stage_kind=StageKind.IN_PROGRESS)
        assert advance_chain(subject, groups, "a1", NOW).completed


class TestSideChannelBlocking:

    def _with_pending(self, subject, recipient="x"):
        request = open_request(subject.subject_id, None, "a1", recipient, NOW)
        return replace(subject, side_channel=request)

    def test_last_rank_parks_while_pending(self):
        subject = self._with_pending(_ticket(ChainPosition(P, 1), stage_kind=StageKind.IN_PROGRESS))
        step = advance_chain(subject, GROUPS, "a2", NOW)
        assert not step.completed
        assert step.blocked_by == "x"
        assert step.subject.stage_kind == StageKind.SIDE_CHANNEL_PENDING
        assert step.subject.position == ChainPosition(P, 1)
        assert step.subject.completed_at is None
        assert step.notes[-1].activity_type == ActivityType.AWAITING_EXTRA_APPROVAL

    def test_advance_again_while_pending_raises(self):
        subject = self._with_pending(_ticket(ChainPosition(P, 1), stage_kind=StageKind.IN_PROGRESS))
        parked = advance_chain(subject, GROUPS, "a2", NOW).subject
        with pytest.raises(SideChannelBlockingError):
            advance_chain(parked, GROUPS, "a2", NOW)

    def test_resolution_then_recheck_completes(self):
        subject = self._with_pending(_ticket(ChainPosition(P, 1), stage_kind=StageKind.IN_PROGRESS))
        parked = advance_chain(subject, GROUPS, "a2", NOW).subject
        resolved = respond_side_channel(parked, "x", True, NOW).subject
        assert resolved.stage_kind == StageKind.SIDE_CHANNEL_RESOLVED

        step = recheck_chain(resolved, "system", NOW)
        assert step.completed
        assert step.subject.stage_kind == StageKind.COMPLETED

    def test_rejected_side_channel_also_unblocks(self):
        subject = self._with_pending(_ticket(ChainPosition(P, 1), stage_kind=StageKind.IN_PROGRESS))
        parked = advance_chain(subject, GROUPS, "a2", NOW).subject
        resolved = respond_side_channel(parked, "x", False, NOW).subject
        step = advance_chain(resolved, GROUPS, "a2", NOW)
        assert step.completed

    def test_recheck_while_pending(self):
        subject = self._with_pending(_ticket(ChainPosition(P, 1), stage_kind=StageKind.IN_PROGRESS))
        parked = advance_chain(subject, GROUPS, "a2", NOW).subject
        with pytest.raises(SideChannelBlockingError):
            recheck_chain(parked, "system", NOW)

    def test_recheck_before_chain_exhausted(self):
        with pytest.raises(NotEligibleError):
            recheck_chain(_ticket(), "system", NOW)

    def test_pending_request_mid_chain_does_not_block_hops(self):
        subject = self._with_pending(_ticket())
        step = advance_chain(subject, GROUPS, "a1", NOW)
        assert step.subject.position == ChainPosition(P, 1)
        assert step.blocked_by is None


class TestRequestSideChannel:

    def test_requester_must_be_configured_approver(self):
        with pytest.raises(NotEligibleError):
            request_side_channel(_ticket(), GROUPS, "stranger", "x", NOW)

    def test_recipient_may_be_anyone(self):
        step = request_side_channel(_ticket(), GROUPS, "a2", "outsider", NOW, note="please check")
        assert step.subject.side_channel.recipient_id == "outsider"
        assert step.subject.stage_kind == StageKind.NOT_STARTED
        assert step.notes[0].activity_type == ActivityType.EXTRA_APPROVAL_REQUESTED
        assert step.notes[0].recipient_id == "outsider"

    def test_new_request_after_resolution_parks_again(self):
        subject = _ticket(ChainPosition(P, 1), stage_kind=StageKind.IN_PROGRESS)
        subject = request_side_channel(subject, GROUPS, "a1", "x", NOW).subject
        parked = advance_chain(subject, GROUPS, "a2", NOW).subject
        resolved = respond_side_channel(parked, "x", True, NOW).subject
        again = request_side_channel(resolved, GROUPS, "a2", "y", NOW).subject
        assert again.stage_kind == StageKind.SIDE_CHANNEL_PENDING


class TestRejectChain:

    def test_current_rank_rejects(self):
        step = reject_chain(_ticket(), GROUPS, "a1", NOW, "no budget")
        assert step.subject.stage_kind == StageKind.REJECTED
        assert step.subject.rejected_by == "a1"
        assert step.notes[0].note == "no budget"

    def test_other_rank_cannot_reject(self):
        with pytest.raises(NotEligibleError):
            reject_chain(_ticket(), GROUPS, "a2", NOW)

    def test_rejected_is_read_only(self):
        rejected = reject_chain(_ticket(), GROUPS, "a1", NOW).subject
        with pytest.raises(AlreadyClosedError):
            advance_chain(rejected, GROUPS, "a1", NOW)


# =============================================================================
# Phased workflows
# =============================================================================

CHILD = ArtifactRef(table="child_lines", subject_key="order_id")
GUARD = Guard(name="all_done", description="everything done")

WORKFLOW = PhasedWorkflow(
    name="three_step",
    description="test workflow",
    phases=(
        Phase("draft", StageKind.NOT_STARTED),
        Phase("work", StageKind.IN_PROGRESS, artifacts=(CHILD,), exit_guard=GUARD),
        Phase("done", StageKind.COMPLETED),
    ),
)


def _order(phase="draft", stage=StageKind.NOT_STARTED, **changes):
    return WorkflowSubject(
        subject_id=uuid4(), stage_kind=stage, current_phase=phase,
        delivery_status=DeliveryStatus.DRAFT, **changes,
    )


class TestAdvancePhase:

    def test_moves_to_next_phase(self):
        step = advance_phase(_order(), WORKFLOW, "u", NOW)
        assert step.subject.current_phase == "work"
        assert step.subject.stage_kind == StageKind.IN_PROGRESS
        assert step.subject.phase_updated_at == NOW
        assert step.entered_phase.artifacts == (CHILD,)
        assert not step.completed

    def test_guard_without_check_fails_closed(self):
        with pytest.raises(GuardFailedError) as exc_info:
            advance_phase(_order("work", StageKind.IN_PROGRESS), WORKFLOW, "u", NOW)
        assert exc_info.value.guard_name == "all_done"

    def test_guard_check_false(self):
        with pytest.raises(GuardFailedError):
            advance_phase(
                _order("work", StageKind.IN_PROGRESS), WORKFLOW, "u", NOW,
                guard_checks={"all_done": lambda s: False},
            )

    def test_entering_final_phase_completes(self):
        step = advance_phase(
            _order("work", StageKind.IN_PROGRESS), WORKFLOW, "u", NOW,
            guard_checks={"all_done": lambda s: True},
        )
        assert step.completed
        assert step.subject.stage_kind == StageKind.COMPLETED
        assert step.subject.completed_by == "u"

    def test_completed_cannot_advance(self):
        with pytest.raises(AlreadyClosedError):
            advance_phase(_order("done", StageKind.COMPLETED), WORKFLOW, "u", NOW)


class TestRollbackPhase:

    def test_rollback_one_phase_with_cascade(self):
        step = rollback_phase(_order("work", StageKind.IN_PROGRESS), WORKFLOW, "u", NOW)
        assert step.subject.current_phase == "draft"
        assert step.subject.stage_kind == StageKind.NOT_STARTED
        assert step.cascade == (CHILD,)
        assert step.notes[0].activity_type == ActivityType.PHASE_ROLLED_BACK

    def test_rollback_from_first_phase(self):
        with pytest.raises(AtEarliestPhaseError):
            rollback_phase(_order(), WORKFLOW, "u", NOW)

    def test_rollback_from_completed(self):
        with pytest.raises(AlreadyClosedError):
            rollback_phase(_order("done", StageKind.COMPLETED), WORKFLOW, "u", NOW)


class TestCloseSubject:

    def test_close_at_threshold(self):
        step = close_subject(_order(), Decimal("100"), Decimal("100"), "u", NOW)
        assert step.subject.stage_kind == StageKind.CLOSED
        assert step.subject.delivery_status == DeliveryStatus.CLOSED
        assert step.subject.closed_by == "u"

    def test_below_threshold(self):
        with pytest.raises(BelowThresholdError) as exc_info:
            close_subject(_order(), Decimal("99.5"), Decimal("100"), "u", NOW)
        assert exc_info.value.remaining == Decimal("0.5")

    def test_close_completed_subject(self):
        step = close_subject(_order("done", StageKind.COMPLETED), Decimal("1"), Decimal("0"), "u", NOW)
        assert step.subject.stage_kind == StageKind.CLOSED

    def test_close_twice(self):
        closed = close_subject(_order(), Decimal("1"), Decimal("0"), "u", NOW).subject
        with pytest.raises(AlreadyClosedError):
            close_subject(closed, Decimal("1"), Decimal("0"), "u", NOW)


class TestStageTransitions:

    @pytest.mark.parametrize("stage", [StageKind.CLOSED, StageKind.REJECTED])
    def test_terminal_stages_have_no_exits(self, stage):
        assert STAGE_TRANSITIONS[stage] == frozenset()

    def test_completed_only_closes(self):
        assert STAGE_TRANSITIONS[StageKind.COMPLETED] == frozenset({StageKind.CLOSED})

    def test_pending_side_channel_cannot_complete_directly(self):
        assert StageKind.COMPLETED not in STAGE_TRANSITIONS[StageKind.SIDE_CHANNEL_PENDING]
