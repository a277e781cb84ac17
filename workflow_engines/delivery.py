"""
workflow_engines.delivery -- Line confirmation aggregator.

Responsibility:
    Derive a receiving document's delivery status from its lines and the
    per-group control amounts, and apply confirm / unconfirm / amount
    edits to individual lines.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Decimal-only arithmetic; floats are never accepted for amounts.

Invariants enforced:
    - Only confirmed lines count toward a group's total.
    - Full delivery requires every group with a positive target to reach
      it; groups with a zero or negative target are ignored.
    - A confirmed line's delivered amount is frozen until unconfirmed.
    - ``closed`` is never derived here; only an explicit close sets it.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import replace
from datetime import datetime
from decimal import Decimal

from workflow_engines.tracer import traced_engine
from workflow_kernel.domain.delivery import DeliveryStatus, ReceiptLine
from workflow_kernel.exceptions import InvalidAmountError, LineFrozenError

_ZERO = Decimal("0")


def confirmed_totals(lines: Iterable[ReceiptLine]) -> dict[str, Decimal]:
    """Sum of delivered amounts of confirmed lines, per group key."""
    totals: dict[str, Decimal] = {}
    for line in lines:
        if line.is_confirmed:
            totals[line.group_key] = totals.get(line.group_key, _ZERO) + line.delivered_amount
    return totals


def confirmed_total(lines: Iterable[ReceiptLine]) -> Decimal:
    return sum(confirmed_totals(lines).values(), _ZERO)


def remaining_by_group(
    lines: Iterable[ReceiptLine],
    targets: Mapping[str, Decimal],
) -> dict[str, Decimal]:
    """Amount still missing per group with a positive target (never negative)."""
    totals = confirmed_totals(lines)
    return {
        key: max(target - totals.get(key, _ZERO), _ZERO)
        for key, target in targets.items()
        if target > _ZERO
    }


@traced_engine("delivery", "1.0", fingerprint_fields=("lines", "targets"))
def compute_status(
    lines: Iterable[ReceiptLine],
    targets: Mapping[str, Decimal],
) -> DeliveryStatus:
    """Derive draft / partial_delivery / full_delivery.

    - no lines, or no line confirmed -> draft
    - some group with a positive target below it -> partial_delivery
    - otherwise -> full_delivery
    """
    lines = tuple(lines)
    if not lines or not any(line.is_confirmed for line in lines):
        return DeliveryStatus.DRAFT

    totals = confirmed_totals(lines)
    for key, target in targets.items():
        if target > _ZERO and totals.get(key, _ZERO) < target:
            return DeliveryStatus.PARTIAL_DELIVERY
    return DeliveryStatus.FULL_DELIVERY


def confirm_line(
    line: ReceiptLine,
    actor_id: str,
    now: datetime,
    delivered_amount: Decimal | None = None,
) -> ReceiptLine:
    """Freeze a line, optionally recording its final delivered amount."""
    if line.is_confirmed:
        raise LineFrozenError(str(line.line_id), "line is already confirmed")
    if delivered_amount is not None and delivered_amount < _ZERO:
        raise InvalidAmountError("delivered_amount", delivered_amount, "must not be negative")
    return replace(
        line,
        delivered_amount=line.delivered_amount if delivered_amount is None else delivered_amount,
        is_confirmed=True,
        confirmed_by=actor_id,
        confirmed_at=now,
    )


def unconfirm_line(line: ReceiptLine) -> ReceiptLine:
    if not line.is_confirmed:
        raise LineFrozenError(str(line.line_id), "line is not confirmed")
    return replace(line, is_confirmed=False, confirmed_by=None, confirmed_at=None)


def set_delivered_amount(line: ReceiptLine, amount: Decimal) -> ReceiptLine:
    if line.is_confirmed:
        raise LineFrozenError(str(line.line_id))
    if amount < _ZERO:
        raise InvalidAmountError("delivered_amount", amount, "must not be negative")
    return replace(line, delivered_amount=amount)
