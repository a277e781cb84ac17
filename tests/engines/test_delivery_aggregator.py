"""
Tests for the line confirmation aggregator.

Delivery status is derived only from confirmed lines and the per-brand
control amounts; confirmed lines are frozen until unconfirmed.
"""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from workflow_engines.delivery import (
    compute_status,
    confirm_line,
    confirmed_total,
    confirmed_totals,
    remaining_by_group,
    set_delivered_amount,
    unconfirm_line,
)
from workflow_kernel.domain.delivery import DeliveryStatus, ReceiptLine
from workflow_kernel.exceptions import InvalidAmountError, LineFrozenError

NOW = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)
HEADER = uuid4()


def _line(brand, delivered, confirmed=False, target="0"):
    return ReceiptLine(
        line_id=uuid4(),
        parent_id=HEADER,
        group_key=brand,
        target_amount=Decimal(target),
        delivered_amount=Decimal(delivered),
        is_confirmed=confirmed,
    )


class TestComputeStatus:

    def test_no_lines_is_draft(self):
        assert compute_status([], {"A": Decimal("100")}) == DeliveryStatus.DRAFT

    def test_nothing_confirmed_is_draft(self):
        lines = [_line("A", "100"), _line("B", "50")]
        assert compute_status(lines, {"A": Decimal("100")}) == DeliveryStatus.DRAFT

    def test_partial_then_full(self):
        """Brand A target 100, brand B target 50."""
        targets = {"A": Decimal("100"), "B": Decimal("50")}
        lines = [_line("A", "60", confirmed=True), _line("B", "50", confirmed=True)]
        assert compute_status(lines, targets) == DeliveryStatus.PARTIAL_DELIVERY

        lines.append(_line("A", "40", confirmed=True))
        assert compute_status(lines, targets) == DeliveryStatus.FULL_DELIVERY

    def test_unconfirmed_lines_do_not_count(self):
        targets = {"A": Decimal("100")}
        lines = [_line("A", "60", confirmed=True), _line("A", "40")]
        assert compute_status(lines, targets) == DeliveryStatus.PARTIAL_DELIVERY

    def test_exact_target_is_full(self):
        targets = {"A": Decimal("100.000000001")}
        lines = [_line("A", "100.000000001", confirmed=True)]
        assert compute_status(lines, targets) == DeliveryStatus.FULL_DELIVERY

    def test_just_below_target_is_partial(self):
        targets = {"A": Decimal("100")}
        lines = [_line("A", "99.999999999", confirmed=True)]
        assert compute_status(lines, targets) == DeliveryStatus.PARTIAL_DELIVERY

    def test_zero_target_groups_are_ignored(self):
        targets = {"A": Decimal("10"), "B": Decimal("0")}
        lines = [_line("A", "10", confirmed=True)]
        assert compute_status(lines, targets) == DeliveryStatus.FULL_DELIVERY

    def test_over_delivery_is_full(self):
        targets = {"A": Decimal("10")}
        lines = [_line("A", "12", confirmed=True)]
        assert compute_status(lines, targets) == DeliveryStatus.FULL_DELIVERY

    def test_closed_is_never_derived(self):
        targets = {"A": Decimal("10")}
        lines = [_line("A", "10", confirmed=True)]
        assert compute_status(lines, targets) != DeliveryStatus.CLOSED


class TestTotals:

    def test_confirmed_totals_per_brand(self):
        lines = [
            _line("A", "60", confirmed=True),
            _line("A", "40", confirmed=True),
            _line("B", "5"),
        ]
        assert confirmed_totals(lines) == {"A": Decimal("100")}
        assert confirmed_total(lines) == Decimal("100")

    def test_remaining_never_negative(self):
        lines = [_line("A", "120", confirmed=True)]
        remaining = remaining_by_group(lines, {"A": Decimal("100"), "B": Decimal("30")})
        assert remaining == {"A": Decimal("0"), "B": Decimal("30")}


class TestLineMutations:

    def test_confirm_stamps_actor_and_time(self):
        confirmed = confirm_line(_line("A", "10"), "vault", NOW)
        assert confirmed.is_confirmed
        assert confirmed.confirmed_by == "vault"
        assert confirmed.confirmed_at == NOW
        assert confirmed.delivered_amount == Decimal("10")

    def test_confirm_with_amount(self):
        confirmed = confirm_line(_line("A", "10"), "vault", NOW, Decimal("15"))
        assert confirmed.delivered_amount == Decimal("15")

    def test_confirm_twice_is_frozen(self):
        with pytest.raises(LineFrozenError):
            confirm_line(_line("A", "10", confirmed=True), "vault", NOW)

    def test_edit_confirmed_line_is_frozen(self):
        with pytest.raises(LineFrozenError):
            set_delivered_amount(_line("A", "10", confirmed=True), Decimal("11"))

    def test_unconfirm_then_edit(self):
        line = unconfirm_line(confirm_line(_line("A", "10"), "vault", NOW))
        assert not line.is_confirmed
        assert line.confirmed_by is None
        assert set_delivered_amount(line, Decimal("11")).delivered_amount == Decimal("11")

    def test_unconfirm_unconfirmed_line(self):
        with pytest.raises(LineFrozenError):
            unconfirm_line(_line("A", "10"))

    def test_negative_amount_rejected(self):
        with pytest.raises(InvalidAmountError) as exc_info:
            set_delivered_amount(_line("A", "10"), Decimal("-1"))
        assert exc_info.value.code == "INVALID_AMOUNT"
        assert exc_info.value.amount == Decimal("-1")

    def test_negative_confirmed_amount_rejected(self):
        with pytest.raises(InvalidAmountError):
            confirm_line(_line("A", "10"), "vault", NOW, Decimal("-5"))


_amounts = st.decimals(min_value=0, max_value=1000, places=2, allow_nan=False, allow_infinity=False)


class TestAggregatorProperties:

    @settings(max_examples=100, deadline=None)
    @given(
        lines=st.lists(
            st.tuples(st.sampled_from(["A", "B", "C"]), _amounts, st.booleans()),
            max_size=10,
        ),
        targets=st.dictionaries(st.sampled_from(["A", "B", "C"]), _amounts, max_size=3),
    )
    def test_status_ignores_line_order(self, lines, targets):
        built = [_line(brand, str(amount), confirmed) for brand, amount, confirmed in lines]
        assert compute_status(built, targets) == compute_status(list(reversed(built)), targets)
