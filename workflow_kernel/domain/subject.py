"""
Workflow subject domain types (``workflow_kernel.domain.subject``).

Responsibility
--------------
Pure value objects for a unit undergoing staged approval or phased
delivery: the stage enum and its legal transitions, approver groups,
chain positions, the side-channel overlay, and the subject snapshot
itself.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``models/``, ``services/`` or outer layers.

Invariants enforced
-------------------
* ``STAGE_TRANSITIONS`` defines the only valid stage changes.  Terminal
  stages have no outgoing edges except ``completed -> closed``.
* ``completed_at`` is set iff ``stage_kind == COMPLETED`` (or the subject
  was completed and later closed).
* Ranks within a group kind are ordered by ``order`` ascending.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from uuid import UUID

from workflow_kernel.domain.delivery import DeliveryStatus


# =========================================================================
# Stage lifecycle
# =========================================================================


class StageKind(str, Enum):
    """Lifecycle stage of a workflow subject."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    SIDE_CHANNEL_PENDING = "side_channel_pending"
    SIDE_CHANNEL_RESOLVED = "side_channel_resolved"
    COMPLETED = "completed"
    CLOSED = "closed"
    REJECTED = "rejected"


STAGE_TRANSITIONS: dict[StageKind, frozenset[StageKind]] = {
    StageKind.NOT_STARTED: frozenset({
        StageKind.IN_PROGRESS,
        StageKind.SIDE_CHANNEL_PENDING,
        StageKind.COMPLETED,
        StageKind.CLOSED,
        StageKind.REJECTED,
    }),
    StageKind.IN_PROGRESS: frozenset({
        StageKind.NOT_STARTED,
        StageKind.IN_PROGRESS,
        StageKind.SIDE_CHANNEL_PENDING,
        StageKind.COMPLETED,
        StageKind.CLOSED,
        StageKind.REJECTED,
    }),
    StageKind.SIDE_CHANNEL_PENDING: frozenset({
        StageKind.SIDE_CHANNEL_RESOLVED,
        StageKind.REJECTED,
    }),
    StageKind.SIDE_CHANNEL_RESOLVED: frozenset({
        StageKind.SIDE_CHANNEL_PENDING,
        StageKind.COMPLETED,
        StageKind.REJECTED,
    }),
    StageKind.COMPLETED: frozenset({StageKind.CLOSED}),
    StageKind.CLOSED: frozenset(),
    StageKind.REJECTED: frozenset(),
}

# Stages in which no approval, side-channel or line mutation is accepted.
TERMINAL_STAGES: frozenset[StageKind] = frozenset({
    StageKind.COMPLETED,
    StageKind.CLOSED,
    StageKind.REJECTED,
})

# Main chain exhausted; completion waits on the side channel.
CHAIN_EXHAUSTED_STAGES: frozenset[StageKind] = frozenset({
    StageKind.SIDE_CHANNEL_PENDING,
    StageKind.SIDE_CHANNEL_RESOLVED,
})


# =========================================================================
# Approver chain
# =========================================================================


class GroupKind(str, Enum):
    """Which chain a rank belongs to (regular admins vs purchase admins)."""

    PRIMARY = "primary"
    SECONDARY = "secondary"


@dataclass(frozen=True)
class ApproverGroup:
    """One rank in a chain.

    Any member may act for the rank; the first to act advances the
    subject.  ``requires_cost_center`` gates secondary ranks on purchase
    subjects.
    """

    group_kind: GroupKind
    order: int
    members: frozenset[str]
    requires_cost_center: bool = False


@dataclass(frozen=True, order=True)
class ChainPosition:
    """The rank a subject is waiting on."""

    group_kind: GroupKind
    order: int

    @property
    def label(self) -> str:
        return f"{self.group_kind.value}:{self.order}"


@dataclass(frozen=True)
class NextHop:
    """Resolver result: the chain continues at ``position``."""

    position: ChainPosition
    members: frozenset[str]


@dataclass(frozen=True)
class Completed:
    """Resolver result: the chain is exhausted."""

    reason: str = ""


ChainResolution = NextHop | Completed


@dataclass(frozen=True)
class Actor:
    """Identity of whoever performs an operation. Passed explicitly."""

    actor_id: str
    actor_name: str = ""


# =========================================================================
# Side channel
# =========================================================================


class SideChannelStatus(str, Enum):
    """Side-channel request lifecycle: pending -> {approved, rejected}."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass(frozen=True)
class SideChannel:
    """Out-of-band approval request addressed to an arbitrary user."""

    recipient_id: str
    status: SideChannelStatus
    requested_by: str
    requested_at: datetime | None = None
    responded_at: datetime | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == SideChannelStatus.PENDING


# =========================================================================
# Subject snapshot
# =========================================================================


@dataclass(frozen=True)
class WorkflowSubject:
    """Immutable snapshot of a ticket or purchase order header.

    Chain-style subjects use ``current_group_kind`` /
    ``current_approval_order``; phase-style subjects use
    ``current_phase`` and ``delivery_status``.  ``version`` is the
    compare-and-set token read from the store.
    """

    subject_id: UUID
    stage_kind: StageKind = StageKind.NOT_STARTED
    current_group_kind: GroupKind | None = None
    current_approval_order: int | None = None
    requires_secondary_chain: bool = False
    scope_id: str | None = None
    cost_center_id: str | None = None
    completed_at: datetime | None = None
    completed_by: str | None = None
    rejected_at: datetime | None = None
    rejected_by: str | None = None
    side_channel: SideChannel | None = None
    current_phase: str | None = None
    phase_updated_at: datetime | None = None
    delivery_status: DeliveryStatus | None = None
    closed_at: datetime | None = None
    closed_by: str | None = None
    version: int = 1

    @property
    def position(self) -> ChainPosition | None:
        if self.current_group_kind is None or self.current_approval_order is None:
            return None
        return ChainPosition(self.current_group_kind, self.current_approval_order)

    @property
    def is_terminal(self) -> bool:
        return self.stage_kind in TERMINAL_STAGES

    @property
    def chain_exhausted(self) -> bool:
        return self.stage_kind in CHAIN_EXHAUSTED_STAGES

    def at_position(self, position: ChainPosition | None) -> WorkflowSubject:
        """Return a copy waiting on ``position``."""
        if position is None:
            return replace(self, current_group_kind=None, current_approval_order=None)
        return replace(
            self,
            current_group_kind=position.group_kind,
            current_approval_order=position.order,
        )
