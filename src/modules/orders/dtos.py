"""Order DTOs for the Service Layer and the lifecycle engine.

Framework-agnostic data transfer objects using Pydantic v2.
These are the contracts between the API layer (DRF Serializers),
the Service layer and the engine in ``modules.orders.domain``.
DTOs are immutable (``frozen=True``).

- ``CreateOrderItemDTO`` / ``CreateOrderDTO``: booking input.
- ``ItemReturnDTO`` / ``ItemRevertDTO`` / ``ProcessReturnDTO``: return edits.
- ``UpdateItemDamageDTO``, ``AmountDTO``, ``StatusNoteDTO``: small commands.
- ``OrderItemSnapshot`` / ``OrderSnapshot``: the immutable order view every
  engine component reads.
- ``AuditEventDTO``: one audit-log row as handed to the timeline.
- ``OrderOverviewDTO`` / ``TimelineDTO``: output for the detail endpoints.

Snapshot date fields are kept as ISO strings: the engine parses them at
the point of use so that a malformed value degrades instead of failing
the whole snapshot.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from modules.orders.constants import OrderStatus, ReturnStatus
from modules.orders.domain.return_ledger import ReturnStatistics
from modules.orders.domain.settlement import Settlement
from modules.orders.domain.timeline import TimelineEntry

if TYPE_CHECKING:
    from modules.orders.models import Order, OrderAuditEvent, OrderItem


def _iso(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


# ---------------------------------------------------------------------------
# Input DTOs
# ---------------------------------------------------------------------------


class CreateOrderItemDTO(BaseModel):
    """Immutable DTO for a single rented line in a booking request.

    ``days`` defaults to the order's rental days when omitted.
    """

    model_config = ConfigDict(frozen=True)

    product_name: str
    quantity: int
    price_per_day: Decimal
    days: Optional[int] = None

    @field_validator("product_name")
    @classmethod
    def product_name_must_not_be_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Product name is required.")
        return v.strip()

    @field_validator("quantity")
    @classmethod
    def quantity_must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Quantity must be at least 1.")
        return v

    @field_validator("price_per_day")
    @classmethod
    def price_must_not_be_negative(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("Price per day cannot be negative.")
        return v

    @field_validator("days")
    @classmethod
    def days_must_be_positive(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 1:
            raise ValueError("Days must be at least 1.")
        return v


class CreateOrderDTO(BaseModel):
    """Immutable DTO for order creation requests.

    Validates:
    - ``items`` must contain at least one item.
    - the rental period must not end before it starts.
    - money amounts must not be negative.
    """

    model_config = ConfigDict(frozen=True)

    start_date: date
    end_date: date
    start_datetime: Optional[datetime] = None
    end_datetime: Optional[datetime] = None
    items: List[CreateOrderItemDTO]
    gst_amount: Decimal = Decimal("0")
    security_deposit_amount: Optional[Decimal] = None
    security_deposit_collected: bool = False
    invoice_number: Optional[str] = None
    notes: Optional[str] = ""
    idempotency_key: Optional[str] = None

    @field_validator("items")
    @classmethod
    def items_must_not_be_empty(
        cls, v: List[CreateOrderItemDTO]
    ) -> List[CreateOrderItemDTO]:
        if not v:
            raise ValueError("Order must have at least one item.")
        return v

    @field_validator("gst_amount", "security_deposit_amount")
    @classmethod
    def amounts_must_not_be_negative(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        if v is not None and v < 0:
            raise ValueError("Amounts cannot be negative.")
        return v

    @model_validator(mode="after")
    def period_must_be_ordered(self):
        if self.end_date < self.start_date:
            raise ValueError("End date cannot be before start date.")
        if (
            self.start_datetime is not None
            and self.end_datetime is not None
            and self.end_datetime < self.start_datetime
        ):
            raise ValueError("End datetime cannot be before start datetime.")
        return self


class ItemReturnDTO(BaseModel):
    """One apply-return line. The quantity is checked by the return ledger."""

    model_config = ConfigDict(frozen=True)

    item_id: UUID
    quantity: int
    damage_cost: Optional[Decimal] = None
    damage_description: Optional[str] = None
    missing_note: Optional[str] = None


class ItemRevertDTO(BaseModel):
    """One revert line; damage is kept unless ``clear_damage`` is set."""

    model_config = ConfigDict(frozen=True)

    item_id: UUID
    clear_damage: bool = False


class ProcessReturnDTO(BaseModel):
    """A batch of return edits processed as one unit of work."""

    model_config = ConfigDict(frozen=True)

    returns: List[ItemReturnDTO] = []
    reverts: List[ItemRevertDTO] = []

    @model_validator(mode="after")
    def must_have_lines(self):
        if not self.returns and not self.reverts:
            raise ValueError("At least one return or revert line is required.")
        item_ids = [line.item_id for line in self.returns] + [
            line.item_id for line in self.reverts
        ]
        if len(item_ids) != len(set(item_ids)):
            raise ValueError("Each item may appear only once per request.")
        return self


class UpdateItemDamageDTO(BaseModel):
    """Damage-only update; a missing or zero cost clears the recorded cost."""

    model_config = ConfigDict(frozen=True)

    item_id: UUID
    damage_cost: Optional[Decimal] = None
    damage_description: Optional[str] = None


class AmountDTO(BaseModel):
    """Money amount for late fee, refund and collection requests.

    ``amount`` may be omitted only for refunds (full remaining balance).
    """

    model_config = ConfigDict(frozen=True)

    amount: Optional[Decimal] = None


class StatusNoteDTO(BaseModel):
    model_config = ConfigDict(frozen=True)

    notes: str = ""


# ---------------------------------------------------------------------------
# Engine snapshots
# ---------------------------------------------------------------------------


class OrderItemSnapshot(BaseModel):
    """Immutable view of one order item as read by the engine."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    product_name: str = ""
    quantity: int
    price_per_day: Decimal = Decimal("0")
    days: int = 1
    line_total: Optional[Decimal] = None
    return_status: str = ReturnStatus.NOT_YET_RETURNED
    returned_quantity: Optional[int] = None
    damage_cost: Optional[Decimal] = None
    damage_description: Optional[str] = None
    missing_note: Optional[str] = None
    actual_return_date: Optional[str] = None
    late_return: bool = False

    @field_validator("actual_return_date", mode="before")
    @classmethod
    def _dates_as_iso(cls, v: Any) -> Any:
        return _iso(v)

    @field_validator("quantity")
    @classmethod
    def quantity_must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Quantity must be at least 1.")
        return v

    @model_validator(mode="after")
    def returned_quantity_within_bounds(self):
        if self.returned_quantity is not None and not (
            0 <= self.returned_quantity <= self.quantity
        ):
            raise ValueError("Returned quantity must be between 0 and quantity.")
        return self

    @property
    def is_returned(self) -> bool:
        return self.return_status == ReturnStatus.RETURNED

    @classmethod
    def from_entity(cls, item: OrderItem) -> OrderItemSnapshot:
        return cls(
            id=item.id,
            product_name=item.product_name,
            quantity=item.quantity,
            price_per_day=item.price_per_day,
            days=item.days,
            line_total=item.line_total,
            return_status=item.return_status,
            returned_quantity=item.returned_quantity,
            damage_cost=item.damage_cost,
            damage_description=item.damage_description,
            missing_note=item.missing_note,
            actual_return_date=item.actual_return_date,
            late_return=item.late_return,
        )


class OrderSnapshot(BaseModel):
    """Immutable view of an order and its items as read by the engine."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    invoice_number: str = ""
    status: str = OrderStatus.ACTIVE
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    start_datetime: Optional[str] = None
    end_datetime: Optional[str] = None
    booking_date: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    subtotal: Optional[Decimal] = None
    gst_amount: Optional[Decimal] = None
    late_fee: Optional[Decimal] = None
    damage_fee_total: Optional[Decimal] = None
    total_amount: Optional[Decimal] = None
    security_deposit_amount: Optional[Decimal] = None
    security_deposit_refunded_amount: Optional[Decimal] = None
    additional_amount_collected: Optional[Decimal] = None
    security_deposit_collected: bool = False
    security_deposit_refunded: bool = False
    security_deposit_refund_date: Optional[str] = None
    notes: str = ""
    staff_name: Optional[str] = None
    items: List[OrderItemSnapshot] = []

    @field_validator(
        "start_date",
        "end_date",
        "start_datetime",
        "end_datetime",
        "booking_date",
        "created_at",
        "updated_at",
        "security_deposit_refund_date",
        mode="before",
    )
    @classmethod
    def _dates_as_iso(cls, v: Any) -> Any:
        return _iso(v)

    @classmethod
    def from_entity(cls, order: Order) -> OrderSnapshot:
        """Build a snapshot from an Order model instance.

        Assumes ``items`` is prefetched.
        """
        staff = order.staff
        return cls(
            id=order.id,
            invoice_number=order.invoice_number,
            status=order.status,
            start_date=order.start_date,
            end_date=order.end_date,
            start_datetime=order.start_datetime,
            end_datetime=order.end_datetime,
            booking_date=order.booking_date,
            created_at=order.created_at,
            updated_at=order.updated_at,
            subtotal=order.subtotal,
            gst_amount=order.gst_amount,
            late_fee=order.late_fee,
            damage_fee_total=order.damage_fee_total,
            total_amount=order.total_amount,
            security_deposit_amount=order.security_deposit_amount,
            security_deposit_refunded_amount=order.security_deposit_refunded_amount,
            additional_amount_collected=order.additional_amount_collected,
            security_deposit_collected=order.security_deposit_collected,
            security_deposit_refunded=order.security_deposit_refunded,
            security_deposit_refund_date=order.security_deposit_refund_date,
            notes=order.notes,
            staff_name=(
                (staff.get_full_name() or staff.get_username()) if staff else None
            ),
            items=[OrderItemSnapshot.from_entity(item) for item in order.items.all()],
        )


class AuditEventDTO(BaseModel):
    """One audit-log row; ``created_at`` stays an ISO string until resolved."""

    model_config = ConfigDict(frozen=True)

    action: str
    created_at: Optional[str] = None
    user_name: Optional[str] = None
    new_status: Optional[str] = None
    previous_status: Optional[str] = None
    notes: Optional[str] = None
    order_item_id: Optional[UUID] = None

    @field_validator("created_at", mode="before")
    @classmethod
    def _dates_as_iso(cls, v: Any) -> Any:
        return _iso(v)

    @classmethod
    def from_entity(cls, event: OrderAuditEvent) -> AuditEventDTO:
        return cls(
            action=event.action,
            created_at=event.created_at,
            user_name=event.user_name,
            new_status=event.new_status,
            previous_status=event.previous_status,
            notes=event.notes,
            order_item_id=event.order_item_id,
        )


# ---------------------------------------------------------------------------
# Output DTOs
# ---------------------------------------------------------------------------


class OrderOverviewDTO(BaseModel):
    """Order detail: snapshot plus every derived engine figure."""

    model_config = ConfigDict(frozen=True)

    order: OrderSnapshot
    category: str
    category_label: str
    days_overdue: int
    rental_days: int
    return_statistics: ReturnStatistics
    settlement: Settlement


class TimelineDTO(BaseModel):
    """Reconstructed timeline; ``audit_available`` is False when degraded."""

    model_config = ConfigDict(frozen=True)

    order_id: UUID
    audit_available: bool
    entries: List[TimelineEntry]
