"""
SQLAlchemy ORM persistence models for the Tickets module.

Responsibility
--------------
Tickets (the approval subject) and the per-department approver chain
(``department_admins``) that the resolver reads.

Architecture position
---------------------
**Modules layer** -- ORM models reached through the kernel record store
by table name.  Inherits from ``Base`` (kernel db layer).

Invariants enforced
-------------------
* ``stage_kind`` is constrained to the ``StageKind`` values.
* ``version`` starts at 1 and is bumped by every compare-and-set write.
* A user appears at most once per (department, chain, rank).
"""

from datetime import datetime

from sqlalchemy import CheckConstraint, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from workflow_kernel.db.base import Base


class TicketModel(Base):
    """A request routed through its department's approver chain."""

    __tablename__ = "tickets"

    __table_args__ = (
        CheckConstraint(
            "stage_kind IN ('not_started', 'in_progress', 'side_channel_pending', "
            "'side_channel_resolved', 'completed', 'closed', 'rejected')",
            name="ck_tickets_stage_kind",
        ),
        CheckConstraint(
            "current_group_kind IS NULL OR current_group_kind IN ('primary', 'secondary')",
            name="ck_tickets_group_kind",
        ),
        Index("ix_tickets_department_stage", "department_id", "stage_kind"),
    )

    ticket_number: Mapped[str | None] = mapped_column(String(50), nullable=True, unique=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    department_id: Mapped[str] = mapped_column(String(100), nullable=False)
    requester_id: Mapped[str] = mapped_column(String(255), nullable=False)
    is_purchase_ticket: Mapped[bool] = mapped_column(nullable=False, default=False)

    stage_kind: Mapped[str] = mapped_column(String(30), nullable=False, default="not_started")
    current_group_kind: Mapped[str | None] = mapped_column(String(20), nullable=True)
    current_approval_order: Mapped[int | None] = mapped_column(nullable=True)
    cost_center_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(nullable=True)
    rejected_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    side_channel_recipient_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    side_channel_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    side_channel_requested_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    side_channel_requested_at: Mapped[datetime | None] = mapped_column(nullable=True)
    side_channel_responded_at: Mapped[datetime | None] = mapped_column(nullable=True)

    version: Mapped[int] = mapped_column(nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<Ticket {self.ticket_number or self.id} {self.stage_kind}>"


class DepartmentAdminModel(Base):
    """One approver at one rank of a department's chain.

    ``is_purchase_admin`` selects the secondary (purchase) chain.
    """

    __tablename__ = "department_admins"

    __table_args__ = (
        UniqueConstraint(
            "department_id", "user_id", "admin_order", "is_purchase_admin",
            name="uq_department_admins_rank_user",
        ),
        CheckConstraint("admin_order >= 0", name="ck_department_admins_order"),
        Index("ix_department_admins_user", "user_id"),
    )

    department_id: Mapped[str] = mapped_column(String(100), nullable=False)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    user_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    admin_order: Mapped[int] = mapped_column(nullable=False)
    is_purchase_admin: Mapped[bool] = mapped_column(nullable=False, default=False)
    requires_cost_center: Mapped[bool] = mapped_column(nullable=False, default=False)
