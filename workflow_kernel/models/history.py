"""
Module: workflow_kernel.models.history
Responsibility: ORM persistence for the append-only workflow history.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Append-only: ORM listeners (db/immutability.py) and database
      triggers (db/triggers.py) refuse UPDATE and DELETE.
    - Per-subject ordering: UNIQUE(subject_id, sequence).

Failure modes:
    - ImmutabilityViolationError on UPDATE/DELETE through the ORM.
    - IntegrityError on a duplicate (subject_id, sequence).
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from workflow_kernel.db.base import Base


class WorkflowHistoryEntry(Base):
    """One audit entry for a ticket or purchase order."""

    __tablename__ = "workflow_history"
    __append_only__ = True

    __table_args__ = (
        UniqueConstraint("subject_id", "sequence", name="uq_workflow_history_seq"),
        Index("ix_workflow_history_subject_ts", "subject_id", "timestamp"),
    )

    subject_id: Mapped[UUID] = mapped_column(nullable=False)
    subject_type: Mapped[str] = mapped_column(String(50), nullable=False)
    sequence: Mapped[int] = mapped_column(nullable=False)
    activity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    from_phase: Mapped[str | None] = mapped_column(String(100), nullable=True)
    to_phase: Mapped[str | None] = mapped_column(String(100), nullable=True)
    actor_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    actor_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    recipient_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    note: Mapped[str] = mapped_column(Text, nullable=False, default="")
    timestamp: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return (
            f"<WorkflowHistoryEntry {self.subject_type}:{self.subject_id} "
            f"#{self.sequence} {self.activity_type}>"
        )
