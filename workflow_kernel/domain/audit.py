"""
Audit entry value objects (``workflow_kernel.domain.audit``).

An ``AuditEntry`` is written for every successful state change.  The
history table is append-only; entries are read back ordered by
``timestamp`` then ``sequence``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID


class ActivityType(str, Enum):
    """What happened to the subject."""

    OPENED = "opened"
    APPROVED = "approved"
    APPROVED_FINAL = "approved_final"
    COST_CENTER_ASSIGNED = "cost_center_assigned"
    REJECTED = "rejected"
    AWAITING_EXTRA_APPROVAL = "awaiting_extra_approval"
    EXTRA_APPROVAL_REQUESTED = "extra_approval_requested"
    EXTRA_APPROVAL_APPROVED = "extra_approval_approved"
    EXTRA_APPROVAL_REJECTED = "extra_approval_rejected"
    PHASE_ADVANCED = "phase_advanced"
    PHASE_ROLLED_BACK = "phase_rolled_back"
    LINE_CONFIRMED = "line_confirmed"
    LINE_UNCONFIRMED = "line_unconfirmed"
    LINE_AMOUNT_UPDATED = "line_amount_updated"
    ATTACHMENT_ADDED = "attachment_added"
    CLOSED = "closed"


@dataclass(frozen=True)
class HistoryNote:
    """An audit entry before it is stamped with subject, actor and time.

    Produced by the pure engines; the owning service stamps and appends.
    """

    activity_type: ActivityType
    from_phase: str | None = None
    to_phase: str | None = None
    note: str = ""
    recipient_id: str | None = None


@dataclass(frozen=True)
class AuditEntry:
    subject_id: UUID
    subject_type: str
    activity_type: ActivityType
    timestamp: datetime
    actor_id: str | None = None
    actor_name: str | None = None
    from_phase: str | None = None
    to_phase: str | None = None
    note: str = ""
    recipient_id: str | None = None
    sequence: int | None = None
    entry_id: UUID | None = None
