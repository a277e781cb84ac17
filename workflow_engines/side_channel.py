"""
workflow_engines.side_channel -- Side-channel approval gate.

Responsibility:
    Track a single out-of-band approval request per subject and decide
    whether it blocks completion of the main chain.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Times are passed in.

Invariants enforced:
    - At most one pending request per subject.
    - Only the recipient may respond.
    - A pending request blocks completion; an approved or rejected one
      does not.  Resolution never advances the main chain by itself.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from uuid import UUID

from workflow_kernel.domain.subject import SideChannel, SideChannelStatus
from workflow_kernel.exceptions import (
    AlreadyPendingError,
    NoPendingRequestError,
    NotEligibleError,
)


def blocks_completion(side_channel: SideChannel | None) -> bool:
    return side_channel is not None and side_channel.is_pending


def open_request(
    subject_id: UUID,
    current: SideChannel | None,
    requester_id: str,
    recipient_id: str,
    now: datetime,
) -> SideChannel:
    """Return a new pending request, replacing any resolved one."""
    if current is not None and current.is_pending:
        raise AlreadyPendingError(str(subject_id), current.recipient_id)
    return SideChannel(
        recipient_id=recipient_id,
        status=SideChannelStatus.PENDING,
        requested_by=requester_id,
        requested_at=now,
    )


def respond(
    subject_id: UUID,
    current: SideChannel | None,
    responder_id: str,
    approved: bool,
    now: datetime,
) -> SideChannel:
    """Resolve the pending request as approved or rejected."""
    if current is None or not current.is_pending:
        raise NoPendingRequestError(str(subject_id))
    if responder_id != current.recipient_id:
        raise NotEligibleError(
            str(subject_id),
            responder_id,
            expected_order=None,
            reason=f"side-channel request is addressed to {current.recipient_id}",
        )
    status = SideChannelStatus.APPROVED if approved else SideChannelStatus.REJECTED
    return replace(current, status=status, responded_at=now)
