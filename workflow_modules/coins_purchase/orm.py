"""
SQLAlchemy ORM persistence models for the Coins Purchase module.

Responsibility
--------------
Purchase orders for coins, their per-brand order lines, and the
receiving artifacts created when an order enters ``coins_entry``:
receiving headers (one per brand), receiving lines, and attachments.
Phase owners (``coins_workflow_assignments``) are used for notifications
and the delay sweep.

Architecture position
---------------------
**Modules layer** -- ORM models reached through the kernel record store
by table name.  Inherits from ``Base`` (kernel db layer).

Invariants enforced
-------------------
* All amounts use ``Decimal`` (Numeric(38,9)) -- NEVER float.
* Receiving lines and attachments reference their header; rollback
  deletes lines, then attachments, then headers.
* ``version`` on the order is bumped by every compare-and-set write.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from workflow_kernel.db.base import Base

# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


class CoinsPurchaseOrderModel(Base):
    """Header of a coins purchase order walking the phase workflow."""

    __tablename__ = "coins_purchase_orders"

    __table_args__ = (
        CheckConstraint(
            "current_phase IN ('creation', 'sending', 'receiving', 'coins_entry', 'completed')",
            name="ck_coins_purchase_orders_phase",
        ),
        CheckConstraint(
            "delivery_status IN ('draft', 'partial_delivery', 'full_delivery', 'closed')",
            name="ck_coins_purchase_orders_delivery_status",
        ),
        Index("ix_coins_purchase_orders_phase", "current_phase", "phase_updated_at"),
    )

    order_number: Mapped[str | None] = mapped_column(String(50), nullable=True, unique=True)
    supplier_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    current_phase: Mapped[str] = mapped_column(String(30), nullable=False, default="creation")
    phase_updated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    stage_kind: Mapped[str] = mapped_column(String(30), nullable=False, default="not_started")
    delivery_status: Mapped[str] = mapped_column(String(30), nullable=False, default="draft")

    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    closed_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    version: Mapped[int] = mapped_column(nullable=False, default=1)

    def __repr__(self) -> str:
        return f"<CoinsPurchaseOrder {self.order_number or self.id} {self.current_phase}>"


class CoinsPurchaseOrderLineModel(Base):
    """Amount ordered for one brand."""

    __tablename__ = "coins_purchase_order_lines"

    __table_args__ = (
        UniqueConstraint("purchase_order_id", "line_number", name="uq_coins_po_line_number"),
    )

    purchase_order_id: Mapped[UUID] = mapped_column(
        ForeignKey("coins_purchase_orders.id"), nullable=False,
    )
    line_number: Mapped[int] = mapped_column(nullable=False)
    brand_id: Mapped[str] = mapped_column(String(100), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)


# ---------------------------------------------------------------------------
# Receiving artifacts (created on entering coins_entry)
# ---------------------------------------------------------------------------


class ReceivingCoinsHeaderModel(Base):
    """Receiving document for one brand; ``control_amount`` is the target."""

    __tablename__ = "receiving_coins_header"

    __table_args__ = (
        UniqueConstraint("purchase_order_id", "brand_id", name="uq_receiving_header_brand"),
    )

    purchase_order_id: Mapped[UUID] = mapped_column(
        ForeignKey("coins_purchase_orders.id"), nullable=False,
    )
    brand_id: Mapped[str] = mapped_column(String(100), nullable=False)
    control_amount: Mapped[Decimal] = mapped_column(nullable=False)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)


class ReceivingCoinsLineModel(Base):
    """Coins actually delivered for one brand; frozen once confirmed."""

    __tablename__ = "receiving_coins_line"

    __table_args__ = (
        Index("ix_receiving_coins_line_order", "purchase_order_id"),
    )

    header_id: Mapped[UUID] = mapped_column(
        ForeignKey("receiving_coins_header.id"), nullable=False,
    )
    purchase_order_id: Mapped[UUID] = mapped_column(
        ForeignKey("coins_purchase_orders.id"), nullable=False,
    )
    brand_id: Mapped[str] = mapped_column(String(100), nullable=False)
    target_amount: Mapped[Decimal] = mapped_column(nullable=False)
    delivered_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    is_confirmed: Mapped[bool] = mapped_column(nullable=False, default=False)
    confirmed_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    confirmed_at: Mapped[datetime | None] = mapped_column(nullable=True)


class ReceivingCoinsAttachmentModel(Base):
    """A file already uploaded to the blob store, linked to a receiving header."""

    __tablename__ = "receiving_coins_attachments"

    header_id: Mapped[UUID] = mapped_column(
        ForeignKey("receiving_coins_header.id"), nullable=False,
    )
    purchase_order_id: Mapped[UUID] = mapped_column(
        ForeignKey("coins_purchase_orders.id"), nullable=False,
    )
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_url: Mapped[str] = mapped_column(String(1000), nullable=False)
    uploaded_by: Mapped[str] = mapped_column(String(255), nullable=False)
    uploaded_at: Mapped[datetime] = mapped_column(nullable=False)


# ---------------------------------------------------------------------------
# Phase owners
# ---------------------------------------------------------------------------


class PhaseAssignmentModel(Base):
    """User responsible for orders sitting in a phase."""

    __tablename__ = "coins_workflow_assignments"

    __table_args__ = (
        UniqueConstraint("phase", "user_id", name="uq_coins_workflow_assignment"),
    )

    phase: Mapped[str] = mapped_column(String(30), nullable=False)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    user_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
