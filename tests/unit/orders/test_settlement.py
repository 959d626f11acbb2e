"""Unit tests for settlement figures and money-operation validation."""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from modules.orders.constants import OrderCategory, OrderStatus, ReturnStatus
from modules.orders.domain.settlement import (
    deposit_status,
    refund_blocker,
    settle,
    validate_collection,
    validate_late_fee,
    validate_refund,
)
from modules.orders.dtos import OrderItemSnapshot, OrderSnapshot
from modules.orders.exceptions import (
    CollectionAmountExceeded,
    CollectionNotAllowed,
    InvalidAmount,
    LateFeeNotEditable,
    RefundAmountExceeded,
    RefundNotAllowed,
)

pytestmark = pytest.mark.unit

NOW = datetime(2026, 5, 20, 12, 0, tzinfo=timezone.utc)


def _item(quantity=1, **fields) -> OrderItemSnapshot:
    return OrderItemSnapshot(id=uuid4(), quantity=quantity, **fields)


def _order(items=None, **fields) -> OrderSnapshot:
    fields.setdefault("status", OrderStatus.ACTIVE)
    fields.setdefault("start_date", date(2026, 5, 18))
    fields.setdefault("end_date", date(2026, 5, 25))
    return OrderSnapshot(id=uuid4(), items=items or [_item()], **fields)


def _returned_order(**fields) -> OrderSnapshot:
    return _order(
        items=[_item(1, return_status=ReturnStatus.RETURNED)],
        security_deposit_collected=True,
        **fields,
    )


class TestSettle:
    def test_damage_does_not_reduce_refundable_amount(self):
        order = _order(
            items=[_item(1, damage_cost=Decimal("300"))],
            security_deposit_amount=Decimal("1000"),
            security_deposit_refunded_amount=Decimal("400"),
            damage_fee_total=Decimal("300"),
        )

        result = settle(order, now=NOW)

        assert result.deposit_balance == Decimal("600")
        assert result.refundable_amount == Decimal("600")

    def test_totals_and_outstanding(self):
        order = _order(
            items=[_item(1, damage_cost=Decimal("200"))],
            subtotal=Decimal("1000"),
            gst_amount=Decimal("50"),
            damage_fee_total=Decimal("200"),
            late_fee=Decimal("100"),
            security_deposit_amount=Decimal("500"),
            additional_amount_collected=Decimal("0"),
        )

        result = settle(order, now=NOW)

        assert result.total_charges == Decimal("1350")
        assert result.outstanding_amount == Decimal("850")
        assert result.can_collect_outstanding is True

    def test_outstanding_never_negative(self):
        order = _order(
            subtotal=Decimal("100"),
            security_deposit_amount=Decimal("1000"),
        )
        result = settle(order, now=NOW)
        assert result.outstanding_amount == Decimal("0")
        assert result.refundable_amount <= result.deposit_balance

    def test_damage_total_is_recomputed_from_items(self):
        order = _order(
            items=[
                _item(1, damage_cost=Decimal("20")),
                _item(1, damage_cost=Decimal("5.50")),
            ],
            damage_fee_total=Decimal("99"),
        )

        result = settle(order, now=NOW)

        assert result.damage_fee_total == Decimal("25.50")
        assert result.recorded_damage_fee_total == Decimal("99")
        assert result.damage_total_mismatch is True

    def test_late_fee_editable_only_while_late(self):
        late = _order(end_date=date(2026, 5, 19))
        ongoing = _order()

        assert settle(late, now=NOW).category == OrderCategory.LATE
        assert settle(late, now=NOW).late_fee_editable is True
        assert settle(ongoing, now=NOW).late_fee_editable is False

    def test_missing_money_fields_count_as_zero(self):
        result = settle(_order(), now=NOW)
        assert result.total_charges == Decimal("0")
        assert result.deposit_status == "pending_collection"


class TestDepositStatus:
    @pytest.mark.parametrize(
        "fields,expected",
        [
            ({}, "pending_collection"),
            ({"security_deposit_collected": True}, "collected"),
            (
                {
                    "security_deposit_collected": True,
                    "security_deposit_amount": Decimal("500"),
                    "security_deposit_refunded_amount": Decimal("100"),
                },
                "partially_refunded",
            ),
            (
                {
                    "security_deposit_collected": True,
                    "security_deposit_amount": Decimal("500"),
                    "security_deposit_refunded_amount": Decimal("500"),
                },
                "fully_refunded",
            ),
            ({"security_deposit_refunded": True}, "fully_refunded"),
        ],
    )
    def test_status_mapping(self, fields, expected):
        assert deposit_status(_order(**fields)) == expected


class TestRefund:
    def test_not_collected_blocks_refund(self):
        order = _order(security_deposit_amount=Decimal("500"))
        assert refund_blocker(order) is not None
        with pytest.raises(RefundNotAllowed):
            validate_refund(order)

    def test_requires_returns_or_closed_status(self):
        order = _order(
            security_deposit_amount=Decimal("500"), security_deposit_collected=True
        )
        with pytest.raises(RefundNotAllowed, match="returned"):
            validate_refund(order)

    def test_cancelled_order_can_be_refunded(self):
        order = _order(
            status=OrderStatus.CANCELLED,
            security_deposit_amount=Decimal("500"),
            security_deposit_collected=True,
        )
        assert validate_refund(order) == Decimal("500.00")

    def test_defaults_to_full_balance(self):
        order = _returned_order(
            security_deposit_amount=Decimal("1000"),
            security_deposit_refunded_amount=Decimal("400"),
        )
        assert validate_refund(order) == Decimal("600.00")

    def test_amount_above_balance_is_rejected(self):
        order = _returned_order(security_deposit_amount=Decimal("100"))
        with pytest.raises(RefundAmountExceeded):
            validate_refund(order, Decimal("100.02"))

    def test_amount_within_tolerance_is_clamped(self):
        order = _returned_order(security_deposit_amount=Decimal("100"))
        assert validate_refund(order, Decimal("100.01")) == Decimal("100.00")

    def test_zero_amount_is_rejected(self):
        order = _returned_order(security_deposit_amount=Decimal("100"))
        with pytest.raises(InvalidAmount):
            validate_refund(order, Decimal("0"))

    def test_tiny_balance_is_not_refundable(self):
        order = _returned_order(
            security_deposit_amount=Decimal("100"),
            security_deposit_refunded_amount=Decimal("99.995"),
        )
        with pytest.raises(RefundNotAllowed, match="no deposit balance"):
            validate_refund(order)


class TestCollection:
    def _order_owing(self, outstanding: str) -> OrderSnapshot:
        return _order(subtotal=Decimal(outstanding))

    def test_amount_within_tolerance_is_clamped(self):
        order = self._order_owing("100.00")
        assert validate_collection(order, Decimal("100.005")) == Decimal("100.00")

    def test_amount_beyond_tolerance_is_rejected(self):
        order = self._order_owing("100.00")
        with pytest.raises(CollectionAmountExceeded):
            validate_collection(order, Decimal("100.02"))

    def test_nothing_outstanding(self):
        order = _order(
            subtotal=Decimal("100"), security_deposit_amount=Decimal("100")
        )
        with pytest.raises(CollectionNotAllowed):
            validate_collection(order, Decimal("1"))

    @pytest.mark.parametrize("amount", [None, Decimal("0"), Decimal("-5")])
    def test_invalid_amounts(self, amount):
        with pytest.raises(InvalidAmount):
            validate_collection(self._order_owing("100.00"), amount)

    def test_amount_is_rounded_before_validation(self):
        order = self._order_owing("50.00")
        assert validate_collection(order, Decimal("10.456")) == Decimal("10.46")


class TestLateFee:
    def test_rejected_when_not_late(self):
        with pytest.raises(LateFeeNotEditable):
            validate_late_fee(_order(), Decimal("50"), now=NOW)

    def test_accepted_when_late(self):
        order = _order(end_date=date(2026, 5, 19))
        assert validate_late_fee(order, Decimal("49.999"), now=NOW) == Decimal(
            "50.00"
        )

    def test_negative_fee_is_rejected(self):
        order = _order(end_date=date(2026, 5, 19))
        with pytest.raises(InvalidAmount):
            validate_late_fee(order, Decimal("-1"), now=NOW)
