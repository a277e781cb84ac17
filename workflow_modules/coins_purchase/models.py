"""
Coins Purchase Domain Models.

Frozen DTOs returned by ``PurchaseOrderService`` read operations.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID


@dataclass(frozen=True)
class OrderLine:
    """Requested brand allocation on a purchase order."""
    brand_id: str
    amount: Decimal


@dataclass(frozen=True)
class DelayedOrder:
    """An order that has sat in one phase longer than the threshold."""
    order_id: UUID
    order_number: str | None
    phase: str
    phase_updated_at: datetime
    days_delayed: int
    responsible: frozenset[str]


@dataclass(frozen=True)
class DeliverySummary:
    """Per-brand targets and confirmed totals for a receiving document."""
    order_id: UUID
    targets: dict[str, Decimal]
    confirmed: dict[str, Decimal]
    remaining: dict[str, Decimal]
    confirmed_total: Decimal
