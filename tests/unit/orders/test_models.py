"""Unit tests for Order, OrderItem and OrderAuditEvent models.

Covers:
- Auto-generated invoice number and its format.
- Supplied invoice numbers are kept.
- ``recalculate_total`` over its components.
- ``VALID_TRANSITIONS`` via ``can_transition_to``.
- OrderItem ``line_total`` calculation and quantity validation.
- Audit rows from the status signals.
"""

from __future__ import annotations

import re
from datetime import date
from decimal import Decimal

import pytest
from django.core.exceptions import ValidationError
from django.db import IntegrityError

from modules.orders.constants import AuditAction, OrderStatus
from modules.orders.models import Order, OrderAuditEvent, OrderItem

pytestmark = pytest.mark.unit


def _make_order(**overrides) -> Order:
    defaults = {
        "status": OrderStatus.ACTIVE,
        "start_date": date(2026, 5, 1),
        "end_date": date(2026, 5, 3),
    }
    defaults.update(overrides)
    return Order.objects.create(**defaults)


class TestOrder:
    def test_invoice_number_generated(self):
        order = _make_order()
        assert re.fullmatch(r"GLAORD-\d{8}-\d{4}", order.invoice_number)

    def test_supplied_invoice_number_kept(self):
        order = _make_order(invoice_number="SHOP-42")
        assert order.invoice_number == "SHOP-42"

    def test_idempotency_key_unique(self):
        _make_order(idempotency_key="same-key")
        with pytest.raises(IntegrityError):
            _make_order(idempotency_key="same-key")

    def test_recalculate_total(self):
        order = Order(
            subtotal=Decimal("1000"),
            gst_amount=Decimal("50"),
            late_fee=Decimal("100"),
            damage_fee_total=None,
        )
        assert order.recalculate_total() == Decimal("1150")

    @pytest.mark.parametrize(
        "current,target,allowed",
        [
            (OrderStatus.SCHEDULED, OrderStatus.ACTIVE, True),
            (OrderStatus.ACTIVE, OrderStatus.SCHEDULED, False),
            (OrderStatus.COMPLETED, OrderStatus.FLAGGED, True),
            (OrderStatus.COMPLETED, OrderStatus.CANCELLED, False),
            (OrderStatus.CANCELLED, OrderStatus.ACTIVE, False),
        ],
    )
    def test_transitions(self, current, target, allowed):
        assert Order(status=current).can_transition_to(target) is allowed

    def test_is_closed(self):
        assert Order(status=OrderStatus.CANCELLED).is_closed is True
        assert Order(status=OrderStatus.FLAGGED).is_closed is False


class TestOrderItem:
    def test_line_total_calculated_on_save(self):
        order = _make_order()
        item = OrderItem.objects.create(
            order=order,
            product_name="Sherwani",
            quantity=2,
            price_per_day=Decimal("150.00"),
            days=3,
        )
        assert item.line_total == Decimal("900.00")

    def test_returned_quantity_cannot_exceed_quantity(self):
        item = OrderItem(
            order=_make_order(),
            product_name="Safa",
            quantity=1,
            price_per_day=Decimal("10"),
            returned_quantity=2,
        )
        with pytest.raises(ValidationError):
            item.clean()

    def test_items_reverse_relation(self):
        order = _make_order()
        OrderItem.objects.create(
            order=order, product_name="Saree", price_per_day=Decimal("80")
        )
        assert order.items.count() == 1


class TestAuditSignals:
    def test_creation_writes_order_created_row(self):
        order = _make_order()
        events = list(OrderAuditEvent.objects.filter(order=order))
        assert [e.action for e in events] == [AuditAction.ORDER_CREATED]
        assert events[0].user is None

    def test_status_change_writes_row(self):
        order = _make_order()
        order.status = OrderStatus.FLAGGED
        order._status_change_notes = "Needs follow-up"
        order.save()

        event = OrderAuditEvent.objects.get(
            order=order, action=AuditAction.STATUS_CHANGED
        )
        assert event.previous_status == OrderStatus.ACTIVE
        assert event.new_status == OrderStatus.FLAGGED
        assert event.notes == "Needs follow-up"

    def test_save_without_status_change_writes_nothing(self):
        order = _make_order()
        order.notes = "Updated"
        order.save()
        assert OrderAuditEvent.objects.filter(order=order).count() == 1
