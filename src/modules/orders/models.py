"""Order, OrderItem, and OrderAuditEvent models.

Business rules implemented:
- Status transitions validated against ``VALID_TRANSITIONS`` (service layer).
- Each status change generates an audit record (signals).
- ``invoice_number`` auto-generated as human-readable identifier.
- Idempotency via ``idempotency_key`` unique constraint.
- OrderItem ``line_total`` is ``quantity * price_per_day * days`` (calculated on
  first save).
- ``total_amount`` always equals subtotal + GST + late fee + damage total
  (``recalculate_total``).
- Item return fields are written only from ledger-validated changes.
"""

from __future__ import annotations

import secrets
from decimal import Decimal
from typing import Any

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models
from django.utils import timezone

from modules.core.models import BaseModel
from modules.orders.constants import (
    CLOSED_STATES,
    INVOICE_NUMBER_MAX_RETRIES,
    VALID_TRANSITIONS,
    AuditAction,
    OrderStatus,
    ReturnStatus,
)
from shared.domain.events import DomainEventMixin


def _money_field(**kwargs: Any) -> models.DecimalField:
    return models.DecimalField(max_digits=12, decimal_places=2, **kwargs)


class Order(DomainEventMixin, BaseModel):
    """Rental order aggregate root.

    ``invoice_number`` is a human-readable identifier auto-generated on first
    save (format: ``GLAORD-YYYYMMDD-XXXX``) unless the booking supplied one.
    The UUIDv7 ``id`` is used for all internal references and API lookups.

    ``start_datetime`` / ``end_datetime`` take precedence over the legacy
    date-only fields whenever present.
    """

    invoice_number: models.CharField = models.CharField(max_length=40, unique=True)
    status: models.CharField = models.CharField(
        max_length=30,
        choices=OrderStatus.choices,
        default=OrderStatus.ACTIVE,
    )
    staff: models.ForeignKey = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="booked_orders",
    )

    booking_date: models.DateTimeField = models.DateTimeField(null=True, blank=True)
    start_date: models.DateField = models.DateField()
    end_date: models.DateField = models.DateField()
    start_datetime: models.DateTimeField = models.DateTimeField(null=True, blank=True)
    end_datetime: models.DateTimeField = models.DateTimeField(null=True, blank=True)

    subtotal: models.DecimalField = _money_field(null=True, blank=True)
    gst_amount: models.DecimalField = _money_field(null=True, blank=True)
    late_fee: models.DecimalField = _money_field(null=True, blank=True)
    damage_fee_total: models.DecimalField = _money_field(null=True, blank=True)
    total_amount: models.DecimalField = _money_field(default=Decimal("0.00"))

    security_deposit_amount: models.DecimalField = _money_field(null=True, blank=True)
    security_deposit_collected: models.BooleanField = models.BooleanField(
        default=False
    )
    security_deposit_refunded: models.BooleanField = models.BooleanField(
        default=False
    )
    security_deposit_refunded_amount: models.DecimalField = _money_field(
        null=True, blank=True
    )
    security_deposit_refund_date: models.DateTimeField = models.DateTimeField(
        null=True, blank=True
    )
    additional_amount_collected: models.DecimalField = _money_field(
        null=True, blank=True
    )

    notes: models.TextField = models.TextField(blank=True, default="")
    idempotency_key: models.CharField = models.CharField(
        max_length=255,
        unique=True,
        null=True,
        blank=True,
    )

    class Meta:
        db_table = "orders"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status"], name="orders_status_idx"),
            models.Index(fields=["-created_at"], name="orders_created_idx"),
        ]

    # ------------------------------------------------------------------
    # State Machine helpers
    # ------------------------------------------------------------------

    @property
    def is_closed(self) -> bool:
        """Return ``True`` once the rental is completed or cancelled."""
        return self.status in CLOSED_STATES

    def can_transition_to(self, new_status: str) -> bool:
        """Check whether transitioning to *new_status* is valid."""
        allowed = VALID_TRANSITIONS.get(self.status, set())
        return new_status in allowed

    # ------------------------------------------------------------------
    # Totals
    # ------------------------------------------------------------------

    def recalculate_total(self) -> Decimal:
        """Refresh ``total_amount`` from its components and return it."""
        self.total_amount = (
            (self.subtotal or Decimal("0"))
            + (self.gst_amount or Decimal("0"))
            + (self.late_fee or Decimal("0"))
            + (self.damage_fee_total or Decimal("0"))
        )
        return self.total_amount

    # ------------------------------------------------------------------
    # Invoice number generation
    # ------------------------------------------------------------------

    @staticmethod
    def generate_invoice_number() -> str:
        """Generate a human-readable invoice number: ``GLAORD-YYYYMMDD-XXXX``."""
        now = timezone.now()
        suffix = f"{secrets.randbelow(10000):04d}"
        return f"{settings.ORDER_INVOICE_PREFIX}-{now:%Y%m%d}-{suffix}"

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, *args: Any, **kwargs: Any) -> None:
        if not self.invoice_number:
            for attempt in range(INVOICE_NUMBER_MAX_RETRIES):
                candidate = self.generate_invoice_number()
                if not Order.objects.filter(invoice_number=candidate).exists():
                    self.invoice_number = candidate
                    break
            else:
                raise RuntimeError(
                    f"Failed to generate unique invoice_number after "
                    f"{INVOICE_NUMBER_MAX_RETRIES} attempts"
                )
        super().save(*args, **kwargs)

    # ------------------------------------------------------------------
    # Display
    # ------------------------------------------------------------------

    def __str__(self) -> str:
        return f"{self.invoice_number} ({self.status})"


class OrderItem(BaseModel):
    """A rented line on an order.

    ``price_per_day`` is a snapshot taken at booking time.  ``line_total``
    is computed once on creation and kept as booked.

    Return tracking fields (``return_status``, ``returned_quantity``,
    ``actual_return_date``, ``missing_note``) and damage fields are only
    written from changes validated by the return ledger.  ``late_return``
    is maintained by an external process.
    """

    order: models.ForeignKey = models.ForeignKey(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="items",
    )
    product_name: models.CharField = models.CharField(max_length=200)
    quantity: models.PositiveIntegerField = models.PositiveIntegerField(
        default=1,
        validators=[MinValueValidator(1)],
    )
    price_per_day: models.DecimalField = _money_field()
    days: models.PositiveIntegerField = models.PositiveIntegerField(
        default=1,
        validators=[MinValueValidator(1)],
    )
    line_total: models.DecimalField = _money_field(blank=True)

    return_status: models.CharField = models.CharField(
        max_length=20,
        choices=ReturnStatus.choices,
        default=ReturnStatus.NOT_YET_RETURNED,
    )
    returned_quantity: models.PositiveIntegerField = models.PositiveIntegerField(
        null=True, blank=True
    )
    actual_return_date: models.DateTimeField = models.DateTimeField(
        null=True, blank=True
    )
    late_return: models.BooleanField = models.BooleanField(default=False)
    missing_note: models.TextField = models.TextField(  # noqa: DJ01
        null=True, blank=True
    )
    damage_cost: models.DecimalField = _money_field(null=True, blank=True)
    damage_description: models.TextField = models.TextField(  # noqa: DJ01
        null=True, blank=True
    )

    class Meta:
        db_table = "order_items"
        ordering = ["created_at"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(quantity__gte=1),
                name="order_items_quantity_positive",
            ),
            models.CheckConstraint(
                condition=models.Q(returned_quantity__isnull=True)
                | models.Q(returned_quantity__lte=models.F("quantity")),
                name="order_items_returned_within_quantity",
            ),
        ]

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def clean(self) -> None:
        super().clean()
        if self.quantity is not None and self.quantity < 1:
            raise ValidationError({"quantity": "Quantity must be at least 1."})
        if self.returned_quantity is not None and self.returned_quantity > (
            self.quantity or 0
        ):
            raise ValidationError(
                {"returned_quantity": "Returned quantity cannot exceed quantity."}
            )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, *args: Any, **kwargs: Any) -> None:
        if self.line_total is None:
            self.line_total = self.quantity * self.price_per_day * self.days
        super().save(*args, **kwargs)

    # ------------------------------------------------------------------
    # Display
    # ------------------------------------------------------------------

    def __str__(self) -> str:
        return f"{self.product_name} x{self.quantity} ({self.return_status})"


class OrderAuditEvent(BaseModel):
    """Append-only audit trail for an order.

    Captures status transitions (``old``/``new`` status), returns, damage,
    fee and deposit operations together with the responsible user.
    ``user`` is nullable: ``None`` means the action was performed by the
    system.  Audit records are immutable: they must never be edited.
    """

    order: models.ForeignKey = models.ForeignKey(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="audit_events",
    )
    order_item: models.ForeignKey = models.ForeignKey(
        "orders.OrderItem",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="audit_events",
    )
    action: models.CharField = models.CharField(
        max_length=40,
        choices=AuditAction.choices,
    )
    previous_status: models.CharField = models.CharField(  # noqa: DJ01
        max_length=30,
        choices=OrderStatus.choices,
        null=True,
        blank=True,
    )
    new_status: models.CharField = models.CharField(  # noqa: DJ01
        max_length=30,
        choices=OrderStatus.choices,
        null=True,
        blank=True,
    )
    user: models.ForeignKey = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
    )
    notes: models.TextField = models.TextField(blank=True, default="")

    class Meta:
        db_table = "order_audit_events"
        ordering = ["created_at"]
        indexes = [
            models.Index(
                fields=["order", "created_at"],
                name="oae_order_created_idx",
            ),
        ]

    @property
    def user_name(self) -> str | None:
        """Display name of the acting user, if any."""
        if self.user is None:
            return None
        return self.user.get_full_name() or self.user.get_username()

    # ------------------------------------------------------------------
    # Display
    # ------------------------------------------------------------------

    def __str__(self) -> str:
        return f"{self.order} : {self.action}"
