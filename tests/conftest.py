from datetime import timedelta
from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from django.utils import timezone
from rest_framework.test import APIClient

from modules.orders.repositories import AuditLogDjangoRepository, OrderDjangoRepository


@pytest.fixture(autouse=True)
def _use_db(db):
    """Automatically use the test database for all tests."""


@pytest.fixture()
def api_client():
    """DRF APIClient for testing API endpoints."""
    return APIClient()


@pytest.fixture()
def api_client_with_correlation(api_client):
    """APIClient pre-configured with a known correlation ID header."""
    cid = "test-correlation-id-fixture"
    api_client.defaults["HTTP_X_REQUEST_ID"] = cid
    return api_client, cid


@pytest.fixture()
def staff_user():
    return get_user_model().objects.create_user(
        username="counter", password="testpass123", first_name="Asha"
    )


@pytest.fixture()
def auth_client(staff_user):
    client = APIClient()
    client.force_authenticate(user=staff_user)
    return client


@pytest.fixture()
def order_repository():
    return OrderDjangoRepository(AuditLogDjangoRepository())


@pytest.fixture()
def make_order(order_repository):
    """Persist an order through the repository; days are relative to today."""

    def _make(
        start_offset=-2,
        end_offset=2,
        items=None,
        status="active",
        **fields,
    ):
        today = timezone.localdate()
        data = {
            "status": status,
            "start_date": today + timedelta(days=start_offset),
            "end_date": today + timedelta(days=end_offset),
            "items": items
            or [
                {
                    "product_name": "Bridal Lehenga",
                    "quantity": 1,
                    "price_per_day": Decimal("500.00"),
                    "days": 4,
                }
            ],
        }
        data.update(fields)
        return order_repository.create(data)

    return _make
