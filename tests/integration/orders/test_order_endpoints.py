"""Integration tests for the order API.

Covers:
- Booking 201: scheduled vs active, idempotency, validation 400, auth 401.
- List: pagination, derived category filter, category summary.
- Detail: overview, timeline, 404 / invalid id.
- Lifecycle: start, cancel, flag.
- Returns and damage: cumulative quantities, resulting status, 400 rules.
- Money: late fee, deposit refund, outstanding collection tolerance.
- In-flight guard: 409 while another operation holds the order.
"""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from django.utils import timezone
from rest_framework.test import APIClient

from modules.orders.concurrency import in_flight
from modules.orders.constants import OrderStatus
from modules.orders.models import Order

pytestmark = pytest.mark.integration

ORDERS_URL = "/api/v1/orders/"


def _url(order, action: str = "") -> str:
    base = f"{ORDERS_URL}{order.id}/"
    return f"{base}{action}/" if action else base


def _booking(start_offset: int = 0, end_offset: int = 3, **overrides) -> dict:
    today = timezone.localdate()
    payload = {
        "start_date": str(today + timedelta(days=start_offset)),
        "end_date": str(today + timedelta(days=end_offset)),
        "items": [
            {"product_name": "Sherwani", "quantity": 2, "price_per_day": "150.00"},
        ],
        "security_deposit_amount": "500.00",
        "security_deposit_collected": True,
    }
    payload.update(overrides)
    return payload


def _two_piece(make_order, **fields):
    return make_order(
        items=[
            {
                "product_name": "Kurta",
                "quantity": 2,
                "price_per_day": Decimal("100.00"),
                "days": 4,
            }
        ],
        **fields,
    )


# ---------------------------------------------------------------------------
# Booking
# ---------------------------------------------------------------------------


class TestCreateOrder:
    def test_booking_starting_today_is_active(self, auth_client):
        response = auth_client.post(ORDERS_URL, _booking(), format="json")

        assert response.status_code == 201
        data = response.json()
        assert data["order"]["status"] == OrderStatus.ACTIVE
        assert data["category"] == "ongoing"
        assert data["rental_days"] == 3
        assert data["order"]["items"][0]["days"] == 3
        assert Decimal(str(data["order"]["subtotal"])) == Decimal("900.00")
        assert data["order"]["staff_name"] == "Asha"

    def test_future_booking_is_scheduled(self, auth_client):
        response = auth_client.post(
            ORDERS_URL, _booking(start_offset=5, end_offset=8), format="json"
        )

        assert response.status_code == 201
        assert response.json()["order"]["status"] == OrderStatus.SCHEDULED
        assert response.json()["category_label"] == "Scheduled"

    def test_idempotency_key_returns_same_order(self, auth_client):
        first = auth_client.post(
            ORDERS_URL, _booking(), format="json", HTTP_IDEMPOTENCY_KEY="key-1"
        )
        second = auth_client.post(
            ORDERS_URL, _booking(), format="json", HTTP_IDEMPOTENCY_KEY="key-1"
        )

        assert first.json()["order"]["id"] == second.json()["order"]["id"]
        assert Order.objects.count() == 1

    def test_empty_items_rejected(self, auth_client):
        response = auth_client.post(ORDERS_URL, _booking(items=[]), format="json")
        assert response.status_code == 400

    def test_end_before_start_rejected(self, auth_client):
        response = auth_client.post(
            ORDERS_URL, _booking(start_offset=3, end_offset=1), format="json"
        )
        assert response.status_code == 400
        assert Order.objects.count() == 0

    def test_unauthenticated_rejected(self):
        response = APIClient().post(ORDERS_URL, _booking(), format="json")
        assert response.status_code == 401


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


class TestReadOrders:
    def test_list_is_paginated(self, auth_client, make_order):
        for _ in range(3):
            make_order()

        response = auth_client.get(ORDERS_URL, {"page_size": 2})

        data = response.json()
        assert response.status_code == 200
        assert data["count"] == 3
        assert len(data["results"]) == 2
        assert data["results"][0]["category"] == "ongoing"

    def test_list_filters_by_derived_category(self, auth_client, make_order):
        late = make_order(start_offset=-6, end_offset=-1)
        make_order()
        make_order(status=OrderStatus.SCHEDULED, start_offset=2, end_offset=4)

        response = auth_client.get(ORDERS_URL, {"category": "late"})

        results = response.json()["results"]
        assert [row["id"] for row in results] == [str(late.id)]
        assert results[0]["category_label"] == "Late"

    def test_summary_counts_every_category(self, auth_client, make_order):
        make_order(start_offset=-6, end_offset=-1)
        make_order(status=OrderStatus.CANCELLED)

        response = auth_client.get(f"{ORDERS_URL}summary/")

        data = response.json()
        assert data["late"] == 1
        assert data["cancelled"] == 1
        assert data["ongoing"] == 0
        assert set(data) >= {"scheduled", "returned", "flagged"}

    def test_summary_reports_today_collection(self, auth_client, make_order):
        completed = make_order(status=OrderStatus.COMPLETED)
        earlier = make_order(status=OrderStatus.COMPLETED)
        Order.objects.filter(pk=earlier.pk).update(
            created_at=timezone.now() - timedelta(days=2)
        )
        make_order()

        response = auth_client.get(f"{ORDERS_URL}summary/")

        completed.refresh_from_db()
        collected = Decimal(str(response.json()["today_collection"]))
        assert collected == completed.total_amount
        assert collected > Decimal("0")

    def test_retrieve_returns_overview(self, auth_client, make_order):
        order = make_order(start_offset=-6, end_offset=-2)

        response = auth_client.get(_url(order))

        data = response.json()
        assert data["category"] == "late"
        assert data["days_overdue"] >= 1
        assert data["return_statistics"]["state"] == "pending"
        assert data["settlement"]["late_fee_editable"] is True

    def test_retrieve_unknown_order(self, auth_client):
        response = auth_client.get(f"{ORDERS_URL}{uuid4()}/")
        assert response.status_code == 404

    def test_timeline_lists_milestones(self, auth_client, make_order):
        order = make_order()

        response = auth_client.get(_url(order, "timeline"))

        data = response.json()
        assert response.status_code == 200
        assert data["audit_available"] is True
        entries = {entry["kind"]: entry for entry in data["entries"]}
        assert set(entries) >= {"created", "started"}
        assert entries["created"]["synthesized"] is False
        assert entries["started"]["synthesized"] is True
        timestamps = [entry["timestamp"] for entry in data["entries"]]
        assert timestamps == sorted(timestamps)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:
    def test_start_scheduled_order(self, auth_client, make_order):
        order = make_order(status=OrderStatus.SCHEDULED, start_offset=1)

        response = auth_client.post(_url(order, "start"))

        assert response.status_code == 200
        assert response.json()["order"]["status"] == OrderStatus.ACTIVE
        assert response.json()["order"]["start_datetime"] is not None

    def test_start_active_order_rejected(self, auth_client, make_order):
        response = auth_client.post(_url(make_order(), "start"))
        assert response.status_code == 400

    def test_cancel_keeps_items(self, auth_client, make_order):
        order = make_order()

        response = auth_client.post(
            _url(order, "cancel"), {"notes": "Wedding postponed"}, format="json"
        )

        data = response.json()
        assert data["order"]["status"] == OrderStatus.CANCELLED
        assert data["category"] == "cancelled"
        assert len(data["order"]["items"]) == 1

    def test_cancel_twice_rejected(self, auth_client, make_order):
        order = make_order(status=OrderStatus.CANCELLED)
        response = auth_client.post(_url(order, "cancel"))
        assert response.status_code == 400

    def test_flag_completed_order(self, auth_client, make_order):
        order = make_order(status=OrderStatus.COMPLETED)

        response = auth_client.post(_url(order, "flag"), {"notes": "Stain"})

        assert response.json()["category"] == "flagged"

    def test_invalid_order_id(self, auth_client):
        response = auth_client.post(f"{ORDERS_URL}not-a-uuid/start/")
        assert response.status_code == 400

    def test_unknown_order_id(self, auth_client):
        response = auth_client.post(f"{ORDERS_URL}{uuid4()}/cancel/")
        assert response.status_code == 404

    def test_busy_order_conflict(self, auth_client, make_order):
        order = make_order()

        with in_flight.hold(order.id, "process_return"):
            response = auth_client.post(_url(order, "cancel"))

        assert response.status_code == 409
        order.refresh_from_db()
        assert order.status == OrderStatus.ACTIVE


# ---------------------------------------------------------------------------
# Returns and damage
# ---------------------------------------------------------------------------


class TestReturns:
    def test_partial_then_full_return(self, auth_client, make_order):
        order = _two_piece(make_order)
        item_id = str(order.items.get().id)
        body = {"returns": [{"item_id": item_id, "quantity": 1}]}

        first = auth_client.post(_url(order, "returns"), body, format="json")
        assert first.json()["order"]["status"] == OrderStatus.PARTIALLY_RETURNED
        assert first.json()["return_statistics"]["pending_quantity"] == 1

        second = auth_client.post(_url(order, "returns"), body, format="json")
        data = second.json()
        assert data["order"]["status"] == OrderStatus.COMPLETED
        assert data["order"]["items"][0]["returned_quantity"] == 2
        assert data["category"] == "returned"

    def test_return_above_pending_rejected(self, auth_client, make_order):
        order = _two_piece(make_order)
        item_id = str(order.items.get().id)

        response = auth_client.post(
            _url(order, "returns"),
            {"returns": [{"item_id": item_id, "quantity": 3}]},
            format="json",
        )

        assert response.status_code == 400
        order.refresh_from_db()
        assert order.status == OrderStatus.ACTIVE

    def test_damaged_return_completes_with_issues(self, auth_client, make_order):
        order = make_order()
        item_id = str(order.items.get().id)

        response = auth_client.post(
            _url(order, "returns"),
            {
                "returns": [
                    {
                        "item_id": item_id,
                        "quantity": 1,
                        "damage_cost": "120.00",
                        "damage_description": "Torn dupatta",
                    }
                ]
            },
            format="json",
        )

        data = response.json()
        assert data["order"]["status"] == OrderStatus.COMPLETED_WITH_ISSUES
        assert Decimal(str(data["settlement"]["damage_fee_total"])) == Decimal("120")

    def test_revert_reopens_order(self, auth_client, make_order):
        order = _two_piece(make_order)
        item_id = str(order.items.get().id)
        auth_client.post(
            _url(order, "returns"),
            {"returns": [{"item_id": item_id, "quantity": 1}]},
            format="json",
        )

        response = auth_client.post(
            _url(order, "returns"), {"reverts": [{"item_id": item_id}]}, format="json"
        )

        data = response.json()
        assert data["order"]["status"] == OrderStatus.ACTIVE
        assert data["order"]["items"][0]["return_status"] == "not_yet_returned"

    def test_returns_on_cancelled_order_rejected(self, auth_client, make_order):
        order = make_order(status=OrderStatus.CANCELLED)
        item_id = str(order.items.get().id)

        response = auth_client.post(
            _url(order, "returns"),
            {"returns": [{"item_id": item_id, "quantity": 1}]},
            format="json",
        )

        assert response.status_code == 400

    def test_empty_return_request_rejected(self, auth_client, make_order):
        response = auth_client.post(_url(make_order(), "returns"), {}, format="json")
        assert response.status_code == 400

    def test_unknown_item(self, auth_client, make_order):
        response = auth_client.post(
            _url(make_order(), "returns"),
            {"returns": [{"item_id": str(uuid4()), "quantity": 1}]},
            format="json",
        )
        assert response.status_code == 404

    def test_damage_on_pending_item(self, auth_client, make_order):
        order = make_order()
        item_id = str(order.items.get().id)

        response = auth_client.post(
            _url(order, "damage"),
            {"item_id": item_id, "damage_cost": "50.00", "damage_description": "Zip"},
            format="json",
        )

        data = response.json()
        assert response.status_code == 200
        assert data["order"]["status"] == OrderStatus.ACTIVE
        assert Decimal(str(data["order"]["total_amount"])) == Decimal("2050.00")


# ---------------------------------------------------------------------------
# Money
# ---------------------------------------------------------------------------


class TestSettlement:
    def test_late_fee_on_late_order(self, auth_client, make_order):
        order = make_order(start_offset=-6, end_offset=-1)

        response = auth_client.post(
            _url(order, "late-fee"), {"amount": "200.00"}, format="json"
        )

        data = response.json()
        assert response.status_code == 200
        assert Decimal(str(data["settlement"]["late_fee"])) == Decimal("200")
        assert Decimal(str(data["settlement"]["total_charges"])) == Decimal("2200")

    def test_late_fee_rejected_when_not_late(self, auth_client, make_order):
        response = auth_client.post(
            _url(make_order(), "late-fee"), {"amount": "200.00"}, format="json"
        )
        assert response.status_code == 400

    def test_refund_blocked_before_returns(self, auth_client, make_order):
        order = make_order(
            security_deposit_amount=Decimal("500.00"),
            security_deposit_collected=True,
        )
        response = auth_client.post(_url(order, "refund"), {}, format="json")
        assert response.status_code == 400

    def test_refund_full_balance_after_return(self, auth_client, make_order):
        order = make_order(
            status=OrderStatus.COMPLETED,
            security_deposit_amount=Decimal("500.00"),
            security_deposit_collected=True,
        )

        response = auth_client.post(_url(order, "refund"), {}, format="json")

        settlement = response.json()["settlement"]
        assert response.status_code == 200
        assert settlement["deposit_status"] == "fully_refunded"
        assert settlement["can_refund"] is False

    def test_refund_above_balance_rejected(self, auth_client, make_order):
        order = make_order(
            status=OrderStatus.COMPLETED,
            security_deposit_amount=Decimal("500.00"),
            security_deposit_collected=True,
        )
        response = auth_client.post(
            _url(order, "refund"), {"amount": "600.00"}, format="json"
        )
        assert response.status_code == 400

    def test_collect_within_tolerance(self, auth_client, make_order):
        order = make_order(
            security_deposit_amount=Decimal("500.00"),
            security_deposit_collected=True,
        )

        response = auth_client.post(
            _url(order, "collect"), {"amount": "1500.005"}, format="json"
        )

        settlement = response.json()["settlement"]
        assert response.status_code == 200
        assert Decimal(str(settlement["additional_amount_collected"])) == Decimal(
            "1500"
        )
        assert settlement["can_collect_outstanding"] is False

    def test_collect_above_outstanding_rejected(self, auth_client, make_order):
        order = make_order(
            security_deposit_amount=Decimal("500.00"),
            security_deposit_collected=True,
        )
        response = auth_client.post(
            _url(order, "collect"), {"amount": "1600.00"}, format="json"
        )
        assert response.status_code == 400
