"""
Subject <-> record mapping and the versioned subject write.

Tickets and purchase orders share column names for every field the
engines read (``stage_kind``, ``version``, ``completed_at``...);
chain-only and phase-only columns are written by ``chain_patch`` and
``phase_patch`` respectively.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any
from uuid import UUID

from workflow_kernel.domain.delivery import DeliveryStatus
from workflow_kernel.domain.store import Record, RecordStore
from workflow_kernel.domain.subject import (
    GroupKind,
    SideChannel,
    SideChannelStatus,
    StageKind,
    WorkflowSubject,
)


def subject_from_record(record: Record) -> WorkflowSubject:
    side_channel = None
    if record.get("side_channel_recipient_id"):
        side_channel = SideChannel(
            recipient_id=record["side_channel_recipient_id"],
            status=SideChannelStatus(record["side_channel_status"]),
            requested_by=record["side_channel_requested_by"],
            requested_at=record.get("side_channel_requested_at"),
            responded_at=record.get("side_channel_responded_at"),
        )
    group_kind = record.get("current_group_kind")
    delivery_status = record.get("delivery_status")
    return WorkflowSubject(
        subject_id=record["id"],
        stage_kind=StageKind(record["stage_kind"]),
        current_group_kind=GroupKind(group_kind) if group_kind else None,
        current_approval_order=record.get("current_approval_order"),
        requires_secondary_chain=bool(record.get("is_purchase_ticket", False)),
        scope_id=record.get("department_id"),
        cost_center_id=record.get("cost_center_id"),
        completed_at=record.get("completed_at"),
        completed_by=record.get("completed_by"),
        rejected_at=record.get("rejected_at"),
        rejected_by=record.get("rejected_by"),
        side_channel=side_channel,
        current_phase=record.get("current_phase"),
        phase_updated_at=record.get("phase_updated_at"),
        delivery_status=DeliveryStatus(delivery_status) if delivery_status else None,
        closed_at=record.get("closed_at"),
        closed_by=record.get("closed_by"),
        version=record["version"],
    )


def chain_patch(subject: WorkflowSubject) -> dict[str, Any]:
    """Columns written for approval-chain subjects (tickets)."""
    side_channel = subject.side_channel
    return {
        "stage_kind": subject.stage_kind.value,
        "current_group_kind": (
            subject.current_group_kind.value if subject.current_group_kind else None
        ),
        "current_approval_order": subject.current_approval_order,
        "cost_center_id": subject.cost_center_id,
        "completed_at": subject.completed_at,
        "completed_by": subject.completed_by,
        "rejected_at": subject.rejected_at,
        "rejected_by": subject.rejected_by,
        "side_channel_recipient_id": side_channel.recipient_id if side_channel else None,
        "side_channel_status": side_channel.status.value if side_channel else None,
        "side_channel_requested_by": side_channel.requested_by if side_channel else None,
        "side_channel_requested_at": side_channel.requested_at if side_channel else None,
        "side_channel_responded_at": side_channel.responded_at if side_channel else None,
    }


def phase_patch(subject: WorkflowSubject) -> dict[str, Any]:
    """Columns written for phased subjects (purchase orders)."""
    return {
        "stage_kind": subject.stage_kind.value,
        "current_phase": subject.current_phase,
        "phase_updated_at": subject.phase_updated_at,
        "delivery_status": (
            subject.delivery_status.value if subject.delivery_status else None
        ),
        "completed_at": subject.completed_at,
        "completed_by": subject.completed_by,
        "closed_at": subject.closed_at,
        "closed_by": subject.closed_by,
    }


def save_subject(
    store: RecordStore,
    table: str,
    read_version: int,
    updated: WorkflowSubject,
    patch: dict[str, Any],
) -> WorkflowSubject:
    """Compare-and-set write on ``version``.

    Raises ``ConflictOrNotFoundError`` if another writer bumped the
    version since ``read_version`` was read.  Returns ``updated`` carrying
    the new version.
    """
    new_version = read_version + 1
    store.update(
        table,
        updated.subject_id,
        {**patch, "version": new_version},
        expected={"version": read_version},
    )
    return replace(updated, version=new_version)


def claim_subject(store: RecordStore, table: str, subject_id: UUID, read_version: int) -> int:
    """Bump ``version`` alone, before any dependent rows are written.

    A losing writer fails here with ``ConflictOrNotFoundError`` having
    written nothing. The winner finishes with ``write_claimed``.
    """
    claimed = read_version + 1
    store.update(table, subject_id, {"version": claimed}, expected={"version": read_version})
    return claimed


def write_claimed(
    store: RecordStore,
    table: str,
    claimed_version: int,
    updated: WorkflowSubject,
    patch: dict[str, Any],
) -> WorkflowSubject:
    """Write the subject's columns under a version taken by ``claim_subject``."""
    store.update(table, updated.subject_id, patch, expected={"version": claimed_version})
    return replace(updated, version=claimed_version)
