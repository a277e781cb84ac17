"""
Workflow operation results (``workflow_kernel.domain.results``).

Module services return a ``WorkflowResult`` for every state-changing
operation: either a success status, or exactly one named failure whose
``status`` mirrors the ``code`` of the exception that caused it.
Unexpected errors (storage outages, programming errors) propagate.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from workflow_kernel.domain.subject import NextHop, WorkflowSubject
from workflow_kernel.exceptions import (
    ConflictOrNotFoundError,
    DeliveryError,
    PhaseError,
    RecordNotFoundError,
    SideChannelError,
    SubjectStateError,
    TransitionError,
    WorkflowKernelError,
)


class WorkflowOutcome(str, Enum):
    """Status of a workflow operation."""

    # Success
    OPENED = "opened"
    ADVANCED = "advanced"
    COMPLETED = "completed"
    REJECTED = "rejected"
    SIDE_CHANNEL_REQUESTED = "side_channel_requested"
    SIDE_CHANNEL_RESPONDED = "side_channel_responded"
    ROLLED_BACK = "rolled_back"
    LINE_UPDATED = "line_updated"
    ATTACHMENT_ADDED = "attachment_added"
    CLOSED = "closed"

    # Failure (values match exception codes, lowercased)
    NOT_ELIGIBLE = "not_eligible"
    SIDE_CHANNEL_BLOCKING = "side_channel_blocking"
    COST_CENTER_REQUIRED = "cost_center_required"
    GUARD_FAILED = "guard_failed"
    ALREADY_PENDING = "already_pending"
    NO_PENDING_REQUEST = "no_pending_request"
    AT_EARLIEST_PHASE = "at_earliest_phase"
    ALREADY_CLOSED = "already_closed"
    LINE_FROZEN = "line_frozen"
    LINE_NOT_FOUND = "line_not_found"
    BELOW_THRESHOLD = "below_threshold"
    INVALID_AMOUNT = "invalid_amount"
    RECORD_NOT_FOUND = "record_not_found"
    CONFLICT_OR_NOT_FOUND = "conflict_or_not_found"


_SUCCESS_OUTCOMES = frozenset({
    WorkflowOutcome.OPENED,
    WorkflowOutcome.ADVANCED,
    WorkflowOutcome.COMPLETED,
    WorkflowOutcome.REJECTED,
    WorkflowOutcome.SIDE_CHANNEL_REQUESTED,
    WorkflowOutcome.SIDE_CHANNEL_RESPONDED,
    WorkflowOutcome.ROLLED_BACK,
    WorkflowOutcome.LINE_UPDATED,
    WorkflowOutcome.ATTACHMENT_ADDED,
    WorkflowOutcome.CLOSED,
})

# Failures a caller is expected to branch on.
EXPECTED_ERRORS: tuple[type[WorkflowKernelError], ...] = (
    TransitionError,
    SideChannelError,
    PhaseError,
    SubjectStateError,
    DeliveryError,
    RecordNotFoundError,
    ConflictOrNotFoundError,
)


@dataclass(frozen=True)
class WorkflowResult:
    """Result of a workflow operation."""

    status: WorkflowOutcome
    subject: WorkflowSubject | None = None
    error: WorkflowKernelError | None = None
    next_hop: NextHop | None = None
    message: str | None = None

    @property
    def is_success(self) -> bool:
        return self.status in _SUCCESS_OUTCOMES

    @classmethod
    def ok(
        cls,
        status: WorkflowOutcome,
        subject: WorkflowSubject | None,
        next_hop: NextHop | None = None,
        message: str | None = None,
    ) -> WorkflowResult:
        return cls(status=status, subject=subject, next_hop=next_hop, message=message)

    @classmethod
    def failed(
        cls,
        error: WorkflowKernelError,
        subject: WorkflowSubject | None = None,
    ) -> WorkflowResult:
        return cls(
            status=WorkflowOutcome(error.code.lower()),
            subject=subject,
            error=error,
            message=str(error),
        )
