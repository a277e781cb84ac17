"""
Ticket Approval Service (``workflow_modules.tickets.service``).

Responsibility
--------------
Orchestrates the multi-rank ticket approval workflow -- opening tickets,
approvals rank by rank, rejection, the extra-approval side channel, and
the explicit re-check once that side channel resolves -- by delegating
every decision to ``workflow_engines`` and persistence to the kernel
record store and audit log.

Architecture position
---------------------
**Modules layer** -- thin glue.  ``TicketApprovalService`` is the sole
public entry point for ticket transitions.

Invariants enforced
-------------------
* Every state write is a compare-and-set on ``tickets.version``; of two
  approvers acting on the same rank concurrently exactly one succeeds.
* Every successful state change appends at least one history entry.
* The completion hook runs at most once per ticket, after the write that
  moved it to ``completed``.
* Flushes, never commits: the caller owns the transaction boundary.

Failure modes
-------------
* Expected refusals (not eligible, side channel blocking, cost center
  required, already closed, stale version...) -> ``WorkflowResult`` with
  ``is_success == False`` and the typed error attached.
* Unexpected exceptions propagate.

Usage::

    with session_scope() as session:
        tickets = TicketApprovalService(SqlAlchemyRecordStore(session), clock=clock)
        result = tickets.advance(ticket_id, Actor("u-17", "Dana"))
        if not result.is_success:
            show(result.status, result.message)
"""

from __future__ import annotations

from collections.abc import Callable
from uuid import UUID, uuid4

from workflow_engines.approval_chain import build_groups, resolve_next
from workflow_engines.state_machine import (
    Step,
    advance_chain,
    recheck_chain,
    reject_chain,
    request_side_channel,
    respond_side_channel,
)
from workflow_kernel.domain.audit import ActivityType, AuditEntry, HistoryNote
from workflow_kernel.domain.clock import Clock, SystemClock
from workflow_kernel.domain.results import EXPECTED_ERRORS, WorkflowOutcome, WorkflowResult
from workflow_kernel.domain.store import RecordStore
from workflow_kernel.domain.subject import (
    Actor,
    ApproverGroup,
    NextHop,
    StageKind,
    WorkflowSubject,
)
from workflow_kernel.exceptions import (
    ConflictOrNotFoundError,
    CostCenterRequiredError,
    NotEligibleError,
    RecordNotFoundError,
    SideChannelBlockingError,
    WorkflowKernelError,
)
from workflow_kernel.logging_config import LogContext, get_logger
from workflow_kernel.services.audit_log import AuditLogService
from workflow_kernel.services.notifications import NullNotifier, WorkflowNotifier
from workflow_kernel.services.subject_codec import (
    chain_patch,
    save_subject,
    subject_from_record,
)
from workflow_modules.tickets.workflows import (
    ADMIN_TABLE,
    COMPLETED,
    COST_CENTER_ASSIGNED,
    ELIGIBLE_APPROVER,
    NEXT_HOP,
    REJECTED,
    SIDE_CHANNEL_ANSWERED,
    SIDE_CHANNEL_REQUESTED,
    SIDE_CHANNEL_RESOLVED,
    SUBJECT_TYPE,
    TICKET_TABLE,
    group_kind_for,
)

logger = get_logger("modules.tickets.service")

_GUARD_FOR_ERROR = {
    NotEligibleError: ELIGIBLE_APPROVER.name,
    CostCenterRequiredError: COST_CENTER_ASSIGNED.name,
    SideChannelBlockingError: SIDE_CHANNEL_RESOLVED.name,
}

_OPEN_STAGES = [
    StageKind.NOT_STARTED.value,
    StageKind.IN_PROGRESS.value,
    StageKind.SIDE_CHANNEL_PENDING.value,
    StageKind.SIDE_CHANNEL_RESOLVED.value,
]


class TicketApprovalService:
    """
    Ticket approval workflow over a record store.

    Contract
    --------
    * Every transition returns ``WorkflowResult``; callers inspect
      ``result.is_success`` and ``result.status``.
    * ``expected_version`` (optional on every transition) turns a stale
      screen into ``CONFLICT_OR_NOT_FOUND`` before any engine runs.

    Non-goals
    ---------
    * Does NOT deliver notifications; it tells the notifier who to tell.
    * Does NOT commit.
    """

    def __init__(
        self,
        store: RecordStore,
        clock: Clock | None = None,
        notifier: WorkflowNotifier | None = None,
        on_completed: Callable[[WorkflowSubject], None] | None = None,
    ):
        self._store = store
        self._clock = clock or SystemClock()
        self._audit = AuditLogService(store, self._clock)
        self._notifier = notifier or NullNotifier()
        self._on_completed = on_completed

    # =========================================================================
    # Reads
    # =========================================================================

    def get(self, ticket_id: UUID) -> WorkflowSubject:
        return subject_from_record(self._store.get(TICKET_TABLE, ticket_id))

    def approver_groups(self, department_id: str | None) -> tuple[ApproverGroup, ...]:
        rows = self._store.query(ADMIN_TABLE, {"department_id": department_id})
        return build_groups(
            (
                group_kind_for(row["is_purchase_admin"]),
                row["admin_order"],
                row["user_id"],
                row["requires_cost_center"],
            )
            for row in rows
        )

    def history(self, ticket_id: UUID) -> list[AuditEntry]:
        return self._audit.history(ticket_id)

    def pending_for(self, user_id: str) -> list[WorkflowSubject]:
        """Open tickets currently waiting on a rank ``user_id`` belongs to."""
        ranks = {
            (row["department_id"], group_kind_for(row["is_purchase_admin"]), row["admin_order"])
            for row in self._store.query(ADMIN_TABLE, {"user_id": user_id})
        }
        if not ranks:
            return []
        departments = sorted({dept for dept, _, _ in ranks})
        rows = self._store.query(
            TICKET_TABLE,
            {"department_id": departments, "stage_kind": _OPEN_STAGES},
            order_by=("created_at",),
        )
        pending = []
        for row in rows:
            subject = subject_from_record(row)
            position = subject.position
            if position is None:
                continue
            if (subject.scope_id, position.group_kind, position.order) in ranks:
                pending.append(subject)
        return pending

    # =========================================================================
    # Opening
    # =========================================================================

    def open_ticket(
        self,
        department_id: str,
        requester: Actor,
        title: str,
        is_purchase_ticket: bool = False,
        description: str = "",
        ticket_number: str | None = None,
    ) -> WorkflowResult:
        """Create a ticket in ``not_started`` routed to its first rank."""
        ticket_id = uuid4()
        with LogContext.bind(
            subject_id=str(ticket_id), actor_id=requester.actor_id, workflow=SUBJECT_TYPE,
        ):
            groups = self.approver_groups(department_id)
            draft = WorkflowSubject(
                subject_id=ticket_id,
                requires_secondary_chain=is_purchase_ticket,
                scope_id=department_id,
            )
            first = resolve_next(draft, groups)
            routed = draft.at_position(first.position if isinstance(first, NextHop) else None)

            self._store.insert(
                TICKET_TABLE,
                {
                    "id": ticket_id,
                    "ticket_number": ticket_number,
                    "title": title,
                    "description": description,
                    "department_id": department_id,
                    "requester_id": requester.actor_id,
                    "is_purchase_ticket": is_purchase_ticket,
                    "created_at": self._clock.now(),
                    "version": 1,
                    **chain_patch(routed),
                },
            )
            self._audit.record(
                ticket_id,
                SUBJECT_TYPE,
                HistoryNote(
                    ActivityType.OPENED,
                    None,
                    routed.position.label if routed.position else StageKind.NOT_STARTED.value,
                    note=title,
                ),
                requester,
            )
            subject = self.get(ticket_id)

            logger.info(
                "ticket_opened",
                extra={
                    "department_id": department_id,
                    "is_purchase_ticket": is_purchase_ticket,
                    "first_rank": routed.position.label if routed.position else None,
                },
            )
            if isinstance(first, NextHop):
                self._notifier.notify(
                    NEXT_HOP, subject, first.members, {"rank": first.position.label}
                )
                return WorkflowResult.ok(WorkflowOutcome.OPENED, subject, next_hop=first)
            return WorkflowResult.ok(
                WorkflowOutcome.OPENED, subject, message="no approvers configured"
            )

    # =========================================================================
    # Transitions
    # =========================================================================

    def advance(
        self,
        ticket_id: UUID,
        actor: Actor,
        acting_order: int | None = None,
        cost_center_id: str | None = None,
        expected_version: int | None = None,
    ) -> WorkflowResult:
        """Approve at the rank the ticket is waiting on."""
        with self._bound(ticket_id, actor):
            try:
                step, saved = self._execute(
                    ticket_id,
                    actor,
                    expected_version,
                    lambda s: advance_chain(
                        s,
                        self.approver_groups(s.scope_id),
                        actor.actor_id,
                        self._clock.now(),
                        acting_order=acting_order,
                        cost_center_id=cost_center_id,
                    ),
                )
            except EXPECTED_ERRORS as exc:
                return self._refused("ticket_advance_refused", ticket_id, exc)

            if step.blocked_by is not None:
                logger.info(
                    "ticket_awaiting_side_channel",
                    extra={"recipient_id": step.blocked_by, "guard": SIDE_CHANNEL_RESOLVED.name},
                )
                return WorkflowResult.failed(
                    SideChannelBlockingError(str(ticket_id), step.blocked_by), saved
                )

            if step.next_hop is not None:
                logger.info(
                    "ticket_advanced",
                    extra={
                        "next_rank": step.next_hop.position.label,
                        "next_members": sorted(step.next_hop.members),
                    },
                )
                self._notifier.notify(
                    NEXT_HOP, saved, step.next_hop.members,
                    {"rank": step.next_hop.position.label},
                )
                return WorkflowResult.ok(WorkflowOutcome.ADVANCED, saved, next_hop=step.next_hop)

            self._finish(saved)
            return WorkflowResult.ok(WorkflowOutcome.COMPLETED, saved)

    def reject(
        self,
        ticket_id: UUID,
        actor: Actor,
        note: str = "",
        expected_version: int | None = None,
    ) -> WorkflowResult:
        """An eligible approver of the current rank rejects the ticket."""
        with self._bound(ticket_id, actor):
            try:
                _, saved = self._execute(
                    ticket_id,
                    actor,
                    expected_version,
                    lambda s: reject_chain(
                        s, self.approver_groups(s.scope_id), actor.actor_id,
                        self._clock.now(), note,
                    ),
                )
            except EXPECTED_ERRORS as exc:
                return self._refused("ticket_reject_refused", ticket_id, exc)

            logger.info("ticket_rejected", extra={"note": note})
            self._notifier.notify(
                REJECTED, saved, self._requester(ticket_id), {"note": note}
            )
            return WorkflowResult.ok(WorkflowOutcome.REJECTED, saved)

    def request_side_channel(
        self,
        ticket_id: UUID,
        requester: Actor,
        recipient_id: str,
        note: str = "",
        expected_version: int | None = None,
    ) -> WorkflowResult:
        """Ask any user for an extra approval that must resolve before completion."""
        with self._bound(ticket_id, requester):
            try:
                _, saved = self._execute(
                    ticket_id,
                    requester,
                    expected_version,
                    lambda s: request_side_channel(
                        s, self.approver_groups(s.scope_id), requester.actor_id,
                        recipient_id, self._clock.now(), note,
                    ),
                )
            except EXPECTED_ERRORS as exc:
                return self._refused("ticket_side_channel_request_refused", ticket_id, exc)

            logger.info("ticket_side_channel_requested", extra={"recipient_id": recipient_id})
            self._notifier.notify(
                SIDE_CHANNEL_REQUESTED, saved, frozenset({recipient_id}), {"note": note}
            )
            return WorkflowResult.ok(WorkflowOutcome.SIDE_CHANNEL_REQUESTED, saved)

    def respond_side_channel(
        self,
        ticket_id: UUID,
        responder: Actor,
        approved: bool,
        note: str = "",
        expected_version: int | None = None,
    ) -> WorkflowResult:
        """The recipient approves or rejects the extra-approval request.

        Never completes the ticket by itself; see ``recheck``.
        """
        with self._bound(ticket_id, responder):
            try:
                _, saved = self._execute(
                    ticket_id,
                    responder,
                    expected_version,
                    lambda s: respond_side_channel(
                        s, responder.actor_id, approved, self._clock.now(), note
                    ),
                )
            except EXPECTED_ERRORS as exc:
                return self._refused("ticket_side_channel_response_refused", ticket_id, exc)

            logger.info(
                "ticket_side_channel_answered",
                extra={"approved": approved, "stage_kind": saved.stage_kind.value},
            )
            self._notifier.notify(
                SIDE_CHANNEL_ANSWERED,
                saved,
                frozenset({saved.side_channel.requested_by}),
                {"approved": approved, "note": note},
            )
            return WorkflowResult.ok(WorkflowOutcome.SIDE_CHANNEL_RESPONDED, saved)

    def recheck(
        self,
        ticket_id: UUID,
        actor: Actor,
        expected_version: int | None = None,
    ) -> WorkflowResult:
        """Complete a ticket whose chain ran out while the side channel was pending."""
        with self._bound(ticket_id, actor):
            try:
                _, saved = self._execute(
                    ticket_id,
                    actor,
                    expected_version,
                    lambda s: recheck_chain(s, actor.actor_id, self._clock.now()),
                )
            except EXPECTED_ERRORS as exc:
                return self._refused("ticket_recheck_refused", ticket_id, exc)

            self._finish(saved)
            return WorkflowResult.ok(WorkflowOutcome.COMPLETED, saved)

    # =========================================================================
    # Internals
    # =========================================================================

    def _bound(self, ticket_id: UUID, actor: Actor):
        return LogContext.bind(
            subject_id=str(ticket_id), actor_id=actor.actor_id, workflow=SUBJECT_TYPE,
        )

    def _execute(
        self,
        ticket_id: UUID,
        actor: Actor,
        expected_version: int | None,
        transition: Callable[[WorkflowSubject], Step],
    ) -> tuple[Step, WorkflowSubject]:
        subject = self.get(ticket_id)
        if expected_version is not None and subject.version != expected_version:
            raise ConflictOrNotFoundError(
                TICKET_TABLE, str(ticket_id), {"version": expected_version}
            )
        step = transition(subject)
        saved = save_subject(
            self._store, TICKET_TABLE, subject.version, step.subject, chain_patch(step.subject)
        )
        self._audit.record_all(ticket_id, SUBJECT_TYPE, step.notes, actor)
        return step, saved

    def _finish(self, saved: WorkflowSubject) -> None:
        logger.info(
            "ticket_completed",
            extra={"completed_by": saved.completed_by, "completed_at": saved.completed_at},
        )
        self._notifier.notify(
            COMPLETED, saved, self._requester(saved.subject_id), {}
        )
        if self._on_completed is not None:
            try:
                self._on_completed(saved)
            except Exception:
                logger.error("ticket_completion_hook_failed", exc_info=True)
                raise

    def _requester(self, ticket_id: UUID) -> frozenset[str]:
        return frozenset({self._store.get(TICKET_TABLE, ticket_id)["requester_id"]})

    def _refused(
        self, event: str, ticket_id: UUID, exc: WorkflowKernelError
    ) -> WorkflowResult:
        logger.info(
            event,
            extra={
                "code": exc.code,
                "reason": str(exc),
                "guard": _GUARD_FOR_ERROR.get(type(exc)),
            },
        )
        return WorkflowResult.failed(exc, self._current(ticket_id))

    def _current(self, ticket_id: UUID) -> WorkflowSubject | None:
        try:
            return self.get(ticket_id)
        except RecordNotFoundError:
            return None
