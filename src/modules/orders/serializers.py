"""Order DRF serializers for API input/output.

The serializer operates at the Interface layer (API Views).
Business logic lives in the Service Layer, which receives
Pydantic DTOs from ``dtos.py``.  Detail responses are rendered from the
engine's output DTOs; only the list endpoint uses a model serializer.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from rest_framework import serializers

from modules.orders.domain.classification import CATEGORY_LABELS, classify
from modules.orders.dtos import OrderSnapshot
from modules.orders.models import Order

_MONEY = {"max_digits": 12, "decimal_places": 2}

# ---------------------------------------------------------------------------
# Input Serializers
# ---------------------------------------------------------------------------


class CreateOrderItemSerializer(serializers.Serializer):
    """Validates a single rented line in an order creation request."""

    product_name = serializers.CharField(max_length=200)
    quantity = serializers.IntegerField(min_value=1)
    price_per_day = serializers.DecimalField(min_value=0, **_MONEY)
    days = serializers.IntegerField(min_value=1, required=False)


class CreateOrderSerializer(serializers.Serializer):
    """Validates the order creation request payload."""

    start_date = serializers.DateField()
    end_date = serializers.DateField()
    start_datetime = serializers.DateTimeField(required=False, allow_null=True)
    end_datetime = serializers.DateTimeField(required=False, allow_null=True)
    items = CreateOrderItemSerializer(many=True, allow_empty=False)
    gst_amount = serializers.DecimalField(
        min_value=0, required=False, default=0, **_MONEY
    )
    security_deposit_amount = serializers.DecimalField(
        min_value=0, required=False, allow_null=True, **_MONEY
    )
    security_deposit_collected = serializers.BooleanField(required=False, default=False)
    invoice_number = serializers.CharField(
        max_length=40, required=False, allow_blank=True
    )
    notes = serializers.CharField(required=False, default="", allow_blank=True)


class ItemReturnSerializer(serializers.Serializer):
    item_id = serializers.UUIDField()
    quantity = serializers.IntegerField()
    damage_cost = serializers.DecimalField(required=False, allow_null=True, **_MONEY)
    damage_description = serializers.CharField(
        required=False, allow_null=True, allow_blank=True
    )
    missing_note = serializers.CharField(
        required=False, allow_null=True, allow_blank=True
    )


class ItemRevertSerializer(serializers.Serializer):
    item_id = serializers.UUIDField()
    clear_damage = serializers.BooleanField(required=False, default=False)


class ProcessReturnSerializer(serializers.Serializer):
    """Return edits: ``returns`` apply quantities, ``reverts`` undo them."""

    returns = ItemReturnSerializer(many=True, required=False, default=list)
    reverts = ItemRevertSerializer(many=True, required=False, default=list)


class UpdateItemDamageSerializer(serializers.Serializer):
    item_id = serializers.UUIDField()
    damage_cost = serializers.DecimalField(required=False, allow_null=True, **_MONEY)
    damage_description = serializers.CharField(
        required=False, allow_null=True, allow_blank=True
    )


class AmountSerializer(serializers.Serializer):
    """Money amount; range checks are the settlement engine's job."""

    amount = serializers.DecimalField(
        required=False, allow_null=True, max_digits=14, decimal_places=4
    )


class StatusNoteSerializer(serializers.Serializer):
    notes = serializers.CharField(required=False, default="", allow_blank=True)


# ---------------------------------------------------------------------------
# Output Serializers (Read)
# ---------------------------------------------------------------------------


class OrderListSerializer(serializers.ModelSerializer):
    """Lightweight serializer for the order list (no nested items)."""

    category = serializers.SerializerMethodField()
    category_label = serializers.SerializerMethodField()
    staff_name = serializers.SerializerMethodField()

    class Meta:
        model = Order
        fields = [
            "id",
            "invoice_number",
            "status",
            "category",
            "category_label",
            "start_date",
            "end_date",
            "start_datetime",
            "end_datetime",
            "total_amount",
            "staff_name",
            "created_at",
        ]
        read_only_fields = fields

    def _category(self, obj: Order) -> str:
        now: Optional[datetime] = self.context.get("now")
        cache = self.context.setdefault("_categories", {})
        if obj.pk not in cache:
            cache[obj.pk] = classify(OrderSnapshot.from_entity(obj), now)
        return cache[obj.pk]

    def get_category(self, obj: Order) -> str:
        return self._category(obj)

    def get_category_label(self, obj: Order) -> str:
        return CATEGORY_LABELS[self._category(obj)]

    def get_staff_name(self, obj: Order) -> Optional[str]:
        if obj.staff is None:
            return None
        return obj.staff.get_full_name() or obj.staff.get_username()
