"""
Delivery domain types (``workflow_kernel.domain.delivery``).

Receiving lines and the derived delivery status of a phased subject.
Pure value objects; the aggregation itself lives in
``workflow_engines.delivery``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class DeliveryStatus(str, Enum):
    """Derived from confirmed lines; ``closed`` only by explicit action."""

    DRAFT = "draft"
    PARTIAL_DELIVERY = "partial_delivery"
    FULL_DELIVERY = "full_delivery"
    CLOSED = "closed"


@dataclass(frozen=True)
class ReceiptLine:
    """One brand allocation on a receiving document.

    Contract: once ``is_confirmed`` is True the ``delivered_amount`` is
    frozen until the line is explicitly unconfirmed.
    """

    line_id: UUID
    parent_id: UUID
    group_key: str
    target_amount: Decimal
    delivered_amount: Decimal = Decimal("0")
    is_confirmed: bool = False
    confirmed_by: str | None = None
    confirmed_at: datetime | None = None
