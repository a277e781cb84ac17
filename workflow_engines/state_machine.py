"""
workflow_engines.state_machine -- Pure workflow transitions.

Responsibility:
    Validate that an action is legal for a subject's current stage and
    actor, and compute the subject's next state plus the history notes
    describing the change.  Two shapes of workflow are supported:

    * approval chains (tickets): advance, reject, side-channel request
      and response, and the explicit re-check after the side channel
      resolves;
    * phased workflows (purchase orders): advance one phase, roll back one
      phase with a cascade list, close against a control amount.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Times and actor ids are
    passed in; persistence, compare-and-set and notifications belong to
    the module services.

Invariants enforced:
    - Every stage change is an edge of ``STAGE_TRANSITIONS``.
    - ``completed`` is reachable only through the resolver returning
      ``Completed`` (chains) or entering the final phase (phased), and
      never while the side channel is pending.
    - Terminal subjects accept no transition (``AlreadyClosedError``).
    - Rollback never skips a phase and never moves past the first one.

Failure modes:
    - NotEligibleError, CostCenterRequiredError, SideChannelBlockingError,
      GuardFailedError, AtEarliestPhaseError, AlreadyClosedError,
      BelowThresholdError, AlreadyPendingError, NoPendingRequestError.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal

from workflow_engines import side_channel as gate
from workflow_engines.approval_chain import (
    is_configured_approver,
    members_at,
    requires_cost_center,
    resolve_next,
)
from workflow_engines.tracer import traced_engine
from workflow_kernel.domain.audit import ActivityType, HistoryNote
from workflow_kernel.domain.delivery import DeliveryStatus
from workflow_kernel.domain.subject import (
    STAGE_TRANSITIONS,
    ApproverGroup,
    ChainPosition,
    Completed,
    NextHop,
    StageKind,
    WorkflowSubject,
)
from workflow_kernel.domain.workflow import ArtifactRef, Phase, PhasedWorkflow
from workflow_kernel.exceptions import (
    AlreadyClosedError,
    AtEarliestPhaseError,
    BelowThresholdError,
    CostCenterRequiredError,
    GuardFailedError,
    NotEligibleError,
    SideChannelBlockingError,
)

GuardCheck = Callable[[WorkflowSubject], bool]


@dataclass(frozen=True)
class Step:
    """Outcome of one pure transition."""

    subject: WorkflowSubject
    notes: tuple[HistoryNote, ...] = ()
    next_hop: NextHop | None = None
    completed: bool = False
    blocked_by: str | None = None
    left_phase: Phase | None = None
    entered_phase: Phase | None = None
    cascade: tuple[ArtifactRef, ...] = ()


# =========================================================================
# Shared checks
# =========================================================================


def _ensure_open(subject: WorkflowSubject) -> None:
    if subject.is_terminal:
        raise AlreadyClosedError(str(subject.subject_id), subject.stage_kind.value)


def _move(subject: WorkflowSubject, stage: StageKind, **changes) -> WorkflowSubject:
    if stage != subject.stage_kind and stage not in STAGE_TRANSITIONS[subject.stage_kind]:
        raise ValueError(
            f"Illegal stage change {subject.stage_kind.value} -> {stage.value} "
            f"for {subject.subject_id}"
        )
    return replace(subject, stage_kind=stage, **changes)


def _check_eligible(
    subject: WorkflowSubject,
    groups: tuple[ApproverGroup, ...],
    position: ChainPosition,
    actor_id: str,
    acting_order: int | None,
) -> None:
    sid = str(subject.subject_id)
    if acting_order is not None and acting_order != position.order:
        raise NotEligibleError(
            sid, actor_id, position.order, acting_order,
            reason="acting rank is not the rank the subject is waiting on",
        )
    if actor_id not in members_at(groups, position):
        raise NotEligibleError(
            sid, actor_id, position.order, acting_order,
            reason=f"actor is not a member of {position.label}",
        )


def _label(position: ChainPosition | None) -> str:
    return position.label if position is not None else StageKind.NOT_STARTED.value


def _complete(
    subject: WorkflowSubject,
    actor_id: str,
    now: datetime,
    from_label: str,
    notes: list[HistoryNote],
) -> Step:
    done = _move(subject, StageKind.COMPLETED, completed_at=now, completed_by=actor_id)
    notes.append(
        HistoryNote(ActivityType.APPROVED_FINAL, from_label, StageKind.COMPLETED.value)
    )
    return Step(subject=done, notes=tuple(notes), completed=True)


# =========================================================================
# Approval chain transitions
# =========================================================================


@traced_engine(
    "state_machine", "1.0",
    fingerprint_fields=("subject", "actor_id", "acting_order", "cost_center_id"),
)
def advance_chain(
    subject: WorkflowSubject,
    groups: Iterable[ApproverGroup],
    actor_id: str,
    now: datetime,
    acting_order: int | None = None,
    cost_center_id: str | None = None,
) -> Step:
    """Approve at the current rank and move to the next one.

    When the resolver reports the chain exhausted while the side channel
    is pending, the returned step parks the subject in
    ``side_channel_pending`` (position unchanged) and sets ``blocked_by``;
    the caller persists it and reports ``SideChannelBlocking``.
    """
    _ensure_open(subject)
    groups = tuple(groups)
    sid = str(subject.subject_id)
    notes: list[HistoryNote] = []

    if subject.chain_exhausted:
        if subject.position is not None:
            _check_eligible(subject, groups, subject.position, actor_id, acting_order)
        if gate.blocks_completion(subject.side_channel):
            raise SideChannelBlockingError(sid, subject.side_channel.recipient_id)
        return _complete(subject, actor_id, now, _label(subject.position), notes)

    expected = subject.position
    routed = subject
    if expected is None:
        first = resolve_next(subject, groups)
        if isinstance(first, NextHop):
            expected = first.position
            routed = subject.at_position(expected)

    if expected is not None:
        _check_eligible(subject, groups, expected, actor_id, acting_order)
        effective_cost_center = cost_center_id or subject.cost_center_id
        if (
            subject.requires_secondary_chain
            and requires_cost_center(groups, expected)
            and not effective_cost_center
        ):
            raise CostCenterRequiredError(sid, expected.order)
        if cost_center_id and cost_center_id != subject.cost_center_id:
            routed = replace(routed, cost_center_id=cost_center_id)
            notes.append(
                HistoryNote(
                    ActivityType.COST_CENTER_ASSIGNED,
                    expected.label,
                    expected.label,
                    note=cost_center_id,
                )
            )
        resolution = resolve_next(routed, groups)
    else:
        resolution = Completed(reason="no approvers configured")

    from_label = _label(expected)

    if isinstance(resolution, NextHop):
        moved = _move(routed.at_position(resolution.position), StageKind.IN_PROGRESS)
        notes.append(
            HistoryNote(ActivityType.APPROVED, from_label, resolution.position.label)
        )
        return Step(subject=moved, notes=tuple(notes), next_hop=resolution)

    if gate.blocks_completion(subject.side_channel):
        recipient = subject.side_channel.recipient_id
        parked = _move(routed, StageKind.SIDE_CHANNEL_PENDING)
        notes.append(
            HistoryNote(
                ActivityType.AWAITING_EXTRA_APPROVAL,
                from_label,
                StageKind.SIDE_CHANNEL_PENDING.value,
                recipient_id=recipient,
            )
        )
        return Step(subject=parked, notes=tuple(notes), blocked_by=recipient)

    return _complete(routed, actor_id, now, from_label, notes)


def reject_chain(
    subject: WorkflowSubject,
    groups: Iterable[ApproverGroup],
    actor_id: str,
    now: datetime,
    note: str = "",
) -> Step:
    """An eligible approver of the current rank rejects the subject."""
    _ensure_open(subject)
    groups = tuple(groups)

    position = subject.position
    if position is None:
        first = resolve_next(subject, groups)
        if isinstance(first, NextHop):
            position = first.position
    if position is not None:
        _check_eligible(subject, groups, position, actor_id, None)

    rejected = _move(subject, StageKind.REJECTED, rejected_at=now, rejected_by=actor_id)
    return Step(
        subject=rejected,
        notes=(
            HistoryNote(
                ActivityType.REJECTED, _label(position), StageKind.REJECTED.value, note=note
            ),
        ),
    )


def request_side_channel(
    subject: WorkflowSubject,
    groups: Iterable[ApproverGroup],
    requester_id: str,
    recipient_id: str,
    now: datetime,
    note: str = "",
) -> Step:
    """Open an extra-approval request addressed to any user.

    Only configured approvers may ask.  If the chain is already exhausted
    and a previous request was resolved, the subject is parked again.
    """
    _ensure_open(subject)
    groups = tuple(groups)
    if not is_configured_approver(groups, requester_id):
        raise NotEligibleError(
            str(subject.subject_id), requester_id, subject.current_approval_order,
            reason="only configured approvers may request extra approval",
        )

    request = gate.open_request(
        subject.subject_id, subject.side_channel, requester_id, recipient_id, now
    )
    stage = (
        StageKind.SIDE_CHANNEL_PENDING
        if subject.stage_kind == StageKind.SIDE_CHANNEL_RESOLVED
        else subject.stage_kind
    )
    updated = _move(subject, stage, side_channel=request)
    return Step(
        subject=updated,
        notes=(
            HistoryNote(
                ActivityType.EXTRA_APPROVAL_REQUESTED,
                _label(subject.position),
                _label(subject.position),
                note=note,
                recipient_id=recipient_id,
            ),
        ),
    )


def respond_side_channel(
    subject: WorkflowSubject,
    responder_id: str,
    approved: bool,
    now: datetime,
    note: str = "",
) -> Step:
    """Record the recipient's answer.  Never advances the main chain."""
    _ensure_open(subject)
    answered = gate.respond(
        subject.subject_id, subject.side_channel, responder_id, approved, now
    )
    stage = (
        StageKind.SIDE_CHANNEL_RESOLVED
        if subject.stage_kind == StageKind.SIDE_CHANNEL_PENDING
        else subject.stage_kind
    )
    updated = _move(subject, stage, side_channel=answered)
    activity = (
        ActivityType.EXTRA_APPROVAL_APPROVED if approved
        else ActivityType.EXTRA_APPROVAL_REJECTED
    )
    return Step(
        subject=updated,
        notes=(
            HistoryNote(
                activity,
                _label(subject.position),
                _label(subject.position),
                note=note,
                recipient_id=responder_id,
            ),
        ),
    )


def recheck_chain(subject: WorkflowSubject, actor_id: str, now: datetime) -> Step:
    """Complete a subject whose chain is exhausted and side channel resolved."""
    _ensure_open(subject)
    sid = str(subject.subject_id)
    if subject.stage_kind == StageKind.SIDE_CHANNEL_PENDING:
        raise SideChannelBlockingError(sid, subject.side_channel.recipient_id)
    if subject.stage_kind != StageKind.SIDE_CHANNEL_RESOLVED:
        raise NotEligibleError(
            sid, actor_id, subject.current_approval_order,
            reason="approval chain is not exhausted",
        )
    return _complete(subject, actor_id, now, _label(subject.position), [])


# =========================================================================
# Phased transitions
# =========================================================================


@traced_engine("state_machine", "1.0", fingerprint_fields=("subject", "actor_id"))
def advance_phase(
    subject: WorkflowSubject,
    workflow: PhasedWorkflow,
    actor_id: str,
    now: datetime,
    guard_checks: Mapping[str, GuardCheck] | None = None,
    note: str = "",
) -> Step:
    """Move to the next phase after the current phase's exit guard passes.

    A guard with no registered check fails closed.
    """
    _ensure_open(subject)
    current = workflow.phase(subject.current_phase)
    nxt = workflow.next_phase(current.name)
    if nxt is None:
        raise AlreadyClosedError(str(subject.subject_id), current.name)

    guard = current.exit_guard
    if guard is not None:
        check = (guard_checks or {}).get(guard.name)
        if check is None or not check(subject):
            raise GuardFailedError(
                str(subject.subject_id), guard.name, current.name, guard.description
            )

    changes: dict = {"current_phase": nxt.name, "phase_updated_at": now}
    completed = nxt is workflow.final
    if completed:
        changes.update(completed_at=now, completed_by=actor_id)
    moved = _move(subject, nxt.stage, **changes)
    return Step(
        subject=moved,
        notes=(HistoryNote(ActivityType.PHASE_ADVANCED, current.name, nxt.name, note=note),),
        completed=completed,
        left_phase=current,
        entered_phase=nxt,
    )


@traced_engine("state_machine", "1.0", fingerprint_fields=("subject", "actor_id"))
def rollback_phase(
    subject: WorkflowSubject,
    workflow: PhasedWorkflow,
    actor_id: str,
    now: datetime,
    note: str = "",
) -> Step:
    """Return to the immediately preceding phase.

    ``cascade`` lists the artifacts of the phase being left, children
    first; the caller deletes them before writing the new phase.
    """
    _ensure_open(subject)
    current = workflow.phase(subject.current_phase)
    previous = workflow.previous_phase(current.name)
    if previous is None:
        raise AtEarliestPhaseError(str(subject.subject_id), current.name)

    moved = _move(
        subject, previous.stage, current_phase=previous.name, phase_updated_at=now
    )
    return Step(
        subject=moved,
        notes=(
            HistoryNote(ActivityType.PHASE_ROLLED_BACK, current.name, previous.name, note=note),
        ),
        left_phase=current,
        entered_phase=previous,
        cascade=current.artifacts,
    )


def close_subject(
    subject: WorkflowSubject,
    confirmed_total: Decimal,
    required_minimum: Decimal,
    actor_id: str,
    now: datetime,
) -> Step:
    """Close against a caller-supplied control amount. Terminal."""
    if subject.stage_kind in (StageKind.CLOSED, StageKind.REJECTED):
        raise AlreadyClosedError(str(subject.subject_id), subject.stage_kind.value)
    if confirmed_total < required_minimum:
        raise BelowThresholdError(str(subject.subject_id), confirmed_total, required_minimum)

    closed = _move(
        subject,
        StageKind.CLOSED,
        delivery_status=DeliveryStatus.CLOSED,
        closed_at=now,
        closed_by=actor_id,
    )
    return Step(
        subject=closed,
        notes=(
            HistoryNote(
                ActivityType.CLOSED,
                subject.current_phase or subject.stage_kind.value,
                StageKind.CLOSED.value,
                note=f"confirmed {confirmed_total} / required {required_minimum}",
            ),
        ),
    )
