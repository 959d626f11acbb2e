"""Unit tests for order category derivation."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from uuid import uuid4

import pytest

from modules.orders.constants import OrderCategory, OrderStatus, ReturnStatus
from modules.orders.domain.classification import (
    classify,
    days_overdue,
    is_late,
    rental_days,
    resolve_end,
)
from modules.orders.dtos import OrderItemSnapshot, OrderSnapshot

pytestmark = pytest.mark.unit

NOW = datetime(2026, 5, 20, 12, 0, tzinfo=timezone.utc)


def _item(quantity=1, **fields) -> OrderItemSnapshot:
    return OrderItemSnapshot(id=uuid4(), quantity=quantity, **fields)


def _order(status=OrderStatus.ACTIVE, items=None, **fields) -> OrderSnapshot:
    fields.setdefault("start_date", date(2026, 5, 18))
    fields.setdefault("end_date", date(2026, 5, 25))
    return OrderSnapshot(
        id=uuid4(), status=status, items=items or [_item()], **fields
    )


class TestStatusRules:
    @pytest.mark.parametrize(
        "status,expected",
        [
            (OrderStatus.CANCELLED, OrderCategory.CANCELLED),
            (OrderStatus.FLAGGED, OrderCategory.FLAGGED),
            (OrderStatus.PARTIALLY_RETURNED, OrderCategory.PARTIALLY_RETURNED),
            (OrderStatus.COMPLETED, OrderCategory.RETURNED),
            (OrderStatus.COMPLETED_WITH_ISSUES, OrderCategory.RETURNED),
            (OrderStatus.SCHEDULED, OrderCategory.SCHEDULED),
            (OrderStatus.ACTIVE, OrderCategory.ONGOING),
        ],
    )
    def test_status_maps_to_category(self, status, expected):
        assert classify(_order(status), NOW) == expected

    def test_scheduled_stays_scheduled_when_end_long_past(self):
        order = _order(
            OrderStatus.SCHEDULED,
            start_date=date(2025, 1, 1),
            end_date=date(2025, 1, 2),
        )
        assert classify(order, NOW) == OrderCategory.SCHEDULED

    def test_scheduled_with_end_yesterday_is_not_late(self):
        yesterday = (NOW - timedelta(days=1)).date()
        order = _order(
            OrderStatus.SCHEDULED, start_date=yesterday, end_date=yesterday
        )
        assert classify(order, NOW) == OrderCategory.SCHEDULED

    def test_cancelled_wins_over_overdue_end(self):
        order = _order(OrderStatus.CANCELLED, end_date=date(2026, 5, 1))
        assert classify(order, NOW) == OrderCategory.CANCELLED


class TestDerivedRules:
    def test_active_past_end_is_late(self):
        order = _order(end_date=date(2026, 5, 19))
        assert classify(order, NOW) == OrderCategory.LATE

    def test_end_datetime_takes_precedence_over_end_date(self):
        order = _order(
            end_date=date(2026, 5, 19),
            end_datetime=datetime(2026, 5, 20, 18, 0, tzinfo=timezone.utc),
        )
        assert classify(order, NOW) == OrderCategory.ONGOING

    def test_mixed_returns_are_partially_returned_even_when_late(self):
        items = [
            _item(1, return_status=ReturnStatus.RETURNED),
            _item(1),
        ]
        order = _order(items=items, end_date=date(2026, 5, 1))
        assert classify(order, NOW) == OrderCategory.PARTIALLY_RETURNED

    @pytest.mark.parametrize(
        "return_status", [ReturnStatus.RETURNED, ReturnStatus.NOT_YET_RETURNED]
    )
    def test_single_partly_returned_item_past_end_is_late(self, return_status):
        item = _item(2, return_status=return_status, returned_quantity=1)
        order = _order(items=[item], end_date=date(2026, 5, 10))
        assert classify(order, NOW) == OrderCategory.LATE

    def test_shorthand_returned_item_counts_as_returned(self):
        items = [
            _item(5, return_status=ReturnStatus.RETURNED),
            _item(1),
        ]
        assert classify(_order(items=items), NOW) == (
            OrderCategory.PARTIALLY_RETURNED
        )

    def test_unparsable_end_is_never_late(self):
        order = OrderSnapshot(
            id=uuid4(),
            status=OrderStatus.ACTIVE,
            end_date="not-a-date",
            items=[_item()],
        )
        assert resolve_end(order) is None
        assert is_late(order, NOW) is False
        assert classify(order, NOW) == OrderCategory.ONGOING

    def test_classify_is_deterministic(self):
        order = _order(end_date=date(2026, 5, 19))
        results = {classify(order, NOW) for _ in range(5)}
        assert results == {OrderCategory.LATE}


class TestPeriodHelpers:
    def test_days_overdue_counts_whole_days(self):
        order = _order(end_date=date(2026, 5, 17))
        assert days_overdue(order, NOW) == 3

    def test_days_overdue_zero_before_end(self):
        assert days_overdue(_order(), NOW) == 0

    def test_rental_days_at_least_one(self):
        order = _order(start_date=date(2026, 5, 20), end_date=date(2026, 5, 20))
        assert rental_days(order) == 1

    def test_rental_days_from_dates(self):
        assert rental_days(_order()) == 7
