"""Django ORM implementation of the Order and audit-log repositories.

Satisfies ``IOrderRepository`` / ``IAuditLogRepository`` using Django's
QuerySet API.  All write operations are wrapped in ``transaction.atomic()``
and lock the order row with ``select_for_update()`` so that the Order
aggregate (Order + OrderItems + audit rows) is persisted atomically.

Status audit rows are written by the ``post_save`` signal; every other
audit row is written here, in the same transaction as the change.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID

import structlog
from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import QuerySet
from django.utils import timezone

from modules.orders.constants import MONEY_TOLERANCE, AuditAction, OrderStatus
from modules.orders.domain.return_ledger import ItemReturnChange
from modules.orders.dtos import AuditEventDTO
from modules.orders.exceptions import OrderItemNotFound, OrderNotFound
from modules.orders.models import Order, OrderAuditEvent, OrderItem
from modules.orders.repositories.interfaces import (
    IAuditLogRepository,
    IOrderRepository,
)

logger = structlog.get_logger(__name__)

_ORDER_TOTAL_FIELDS = ["damage_fee_total", "total_amount"]


def _base_queryset() -> QuerySet:
    return Order.objects.select_related("staff").prefetch_related("items")


class OrderDjangoRepository(IOrderRepository):
    """Concrete Order repository backed by Django ORM."""

    def __init__(
        self, audit_repository: Optional[IAuditLogRepository] = None
    ) -> None:
        self._audit = audit_repository or AuditLogDjangoRepository()

    # ------------------------------------------------------------------
    # Create (aggregate root + children)
    # ------------------------------------------------------------------

    @transaction.atomic
    def create(self, data: Dict[str, Any]) -> Order:
        """Create an order with its items atomically.

        ``subtotal`` defaults to the sum of the item line totals and
        ``total_amount`` is always derived from the components.
        """
        items = data.get("items", [])
        order = Order(
            invoice_number=data.get("invoice_number") or "",
            status=data.get("status", OrderStatus.ACTIVE),
            staff=data.get("staff"),
            booking_date=data.get("booking_date") or timezone.now(),
            start_date=data["start_date"],
            end_date=data["end_date"],
            start_datetime=data.get("start_datetime"),
            end_datetime=data.get("end_datetime"),
            gst_amount=data.get("gst_amount") or Decimal("0.00"),
            security_deposit_amount=data.get("security_deposit_amount"),
            security_deposit_collected=data.get("security_deposit_collected", False),
            notes=data.get("notes") or "",
            idempotency_key=data.get("idempotency_key"),
        )
        order._status_change_user = data.get("staff")  # type: ignore[attr-defined]
        order.save()

        subtotal = Decimal("0.00")
        for item_data in items:
            item = OrderItem(
                order=order,
                product_name=item_data["product_name"],
                quantity=item_data["quantity"],
                price_per_day=item_data["price_per_day"],
                days=item_data.get("days") or 1,
            )
            item.save()
            subtotal += item.line_total

        order.subtotal = data.get("subtotal") or subtotal
        order.recalculate_total()
        order.save(update_fields=["subtotal", "total_amount"])

        log = logger.bind(order_id=str(order.id), item_count=len(items))
        log.info("order.persisted", invoice_number=order.invoice_number)
        return order

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get_by_id(self, id: str) -> Optional[Order]:
        """Retrieve an order with eager-loaded items and staff.

        Returns ``None`` for non-existent or invalid IDs.
        """
        try:
            return _base_queryset().filter(id=id).first()
        except (ValueError, ValidationError):
            return None

    def get_for_update(self, id: str) -> Optional[Order]:
        """Retrieve an order with a row-level lock (SELECT FOR UPDATE).

        Must be called inside a transaction.  Returns ``None`` for
        non-existent or invalid IDs.
        """
        try:
            return (
                Order.objects.select_for_update()
                .prefetch_related("items")
                .filter(id=id)
                .first()
            )
        except (ValueError, ValidationError):
            return None

    def list(self, filters: Optional[Dict[str, Any]] = None) -> QuerySet:
        """Lazy queryset of orders with optional ORM filters applied."""
        queryset = _base_queryset()
        if filters:
            queryset = queryset.filter(**filters)
        return queryset

    def get_by_idempotency_key(self, key: str) -> Optional[Order]:
        return _base_queryset().filter(idempotency_key=key).first()

    # ------------------------------------------------------------------
    # Save (IRepository contract)
    # ------------------------------------------------------------------

    @transaction.atomic
    def save(self, entity: Order) -> Order:
        """Persist (create or update) an order."""
        entity.save()
        logger.info("order.saved", order_id=str(entity.id))
        return entity

    # ------------------------------------------------------------------
    # Lifecycle mutations
    # ------------------------------------------------------------------

    @transaction.atomic
    def update_status(
        self,
        order_id: UUID,
        new_status: str,
        late_fee: Optional[Decimal] = None,
        notes: str = "",
        user: Any = None,
    ) -> Order:
        order = self._lock(order_id)
        order.status = new_status
        fields = ["status"]
        if late_fee is not None:
            order.late_fee = late_fee
            order.recalculate_total()
            fields += ["late_fee", "total_amount"]
        self._save_with_audit(order, fields, notes=notes, user=user)
        logger.info(
            "order.status_persisted", order_id=str(order_id), new_status=new_status
        )
        return order

    @transaction.atomic
    def start_rental(
        self, order_id: UUID, started_at: datetime, user: Any = None
    ) -> Order:
        order = self._lock(order_id)
        order.status = OrderStatus.ACTIVE
        order.start_datetime = started_at
        self._save_with_audit(
            order, ["status", "start_datetime"], notes="Rental started", user=user
        )
        self._audit.record(
            order.id,
            AuditAction.RENTAL_STARTED,
            notes="Rental started",
            user=user,
            new_status=OrderStatus.ACTIVE,
        )
        return order

    @transaction.atomic
    def update_late_fee(
        self, order_id: UUID, amount: Decimal, user: Any = None
    ) -> Order:
        order = self._lock(order_id)
        previous = order.late_fee
        order.late_fee = amount
        order.recalculate_total()
        order.save(update_fields=["late_fee", "total_amount"])
        self._audit.record(
            order.id,
            AuditAction.LATE_FEE_UPDATED,
            notes=f"Late fee changed from {previous or Decimal('0.00')} to {amount}",
            user=user,
        )
        return order

    @transaction.atomic
    def update_item_damage(
        self,
        item_id: UUID,
        cost: Optional[Decimal],
        description: Optional[str],
        user: Any = None,
    ) -> Order:
        item = OrderItem.objects.filter(id=item_id).only("id", "order_id").first()
        if item is None:
            raise OrderItemNotFound(f"Order item {item_id} not found.")
        order = self._lock(item.order_id)
        item = order.items.get(id=item_id)
        item.damage_cost = cost if cost else None
        item.damage_description = description
        item.save(update_fields=["damage_cost", "damage_description"])
        self._audit.record(
            order.id,
            AuditAction.DAMAGE_RECORDED,
            notes=_damage_note(item.product_name, item.damage_cost, description),
            user=user,
            order_item_id=item.id,
        )
        self._refresh_totals(order)
        return order

    @transaction.atomic
    def process_return(
        self,
        order_id: UUID,
        changes: Sequence[ItemReturnChange],
        new_status: Optional[str] = None,
        user: Any = None,
    ) -> Order:
        """Persist ledger-validated item changes and the resulting status.

        Each change writes only the field groups it carries and one audit
        row per item.  Totals are refreshed when damage changed.
        """
        order = self._lock(order_id)
        items = {item.id: item for item in order.items.all()}
        damage_changed = False

        for change in changes:
            item = items.get(change.item_id)
            if item is None:
                raise OrderItemNotFound(
                    f"Item {change.item_id} is not part of order {order_id}."
                )
            fields: list[str] = []
            if change.update_return:
                item.return_status = change.return_status
                item.returned_quantity = change.returned_quantity
                item.actual_return_date = change.actual_return_date
                item.missing_note = change.missing_note
                fields += [
                    "return_status",
                    "returned_quantity",
                    "actual_return_date",
                    "missing_note",
                ]
            if change.update_damage:
                item.damage_cost = change.damage_cost
                item.damage_description = change.damage_description
                fields += ["damage_cost", "damage_description"]
                damage_changed = True
            if not fields:
                continue
            item.clean()
            item.save(update_fields=fields)
            self._record_item_change(order, item, change, user)

        if damage_changed:
            self._refresh_totals(order, save=False)
        order_fields = list(_ORDER_TOTAL_FIELDS) if damage_changed else []
        if new_status and new_status != order.status:
            order.status = new_status
            order_fields.append("status")
        if order_fields:
            self._save_with_audit(
                order, order_fields, notes="Return processed", user=user
            )

        logger.info(
            "order.return_persisted",
            order_id=str(order_id),
            change_count=len(changes),
            status=order.status,
        )
        return order

    @transaction.atomic
    def refund_security_deposit(
        self, order_id: UUID, amount: Decimal, user: Any = None
    ) -> Order:
        order = self._lock(order_id)
        refunded = (order.security_deposit_refunded_amount or Decimal("0")) + amount
        deposit = order.security_deposit_amount or Decimal("0")
        order.security_deposit_refunded_amount = refunded
        order.security_deposit_refunded = deposit - refunded <= MONEY_TOLERANCE
        order.security_deposit_refund_date = timezone.now()
        order.save(
            update_fields=[
                "security_deposit_refunded_amount",
                "security_deposit_refunded",
                "security_deposit_refund_date",
            ]
        )
        self._audit.record(
            order.id,
            AuditAction.DEPOSIT_REFUNDED,
            notes=f"Refunded {amount} of security deposit",
            user=user,
        )
        return order

    @transaction.atomic
    def collect_outstanding_amount(
        self, order_id: UUID, amount: Decimal, user: Any = None
    ) -> Order:
        order = self._lock(order_id)
        order.additional_amount_collected = (
            order.additional_amount_collected or Decimal("0")
        ) + amount
        order.save(update_fields=["additional_amount_collected"])
        self._audit.record(
            order.id,
            AuditAction.OUTSTANDING_COLLECTED,
            notes=f"Collected {amount} outstanding",
            user=user,
        )
        return order

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _lock(self, order_id: Any) -> Order:
        order = self.get_for_update(str(order_id))
        if order is None:
            raise OrderNotFound(f"Order {order_id} not found.")
        return order

    @staticmethod
    def _save_with_audit(
        order: Order, fields: List[str], notes: str = "", user: Any = None
    ) -> None:
        """Save *fields*; the status signal picks up *notes* and *user*."""
        order._status_change_notes = notes  # type: ignore[attr-defined]
        order._status_change_user = user  # type: ignore[attr-defined]
        order.save(update_fields=fields)

    @staticmethod
    def _refresh_totals(order: Order, save: bool = True) -> None:
        """Recompute ``damage_fee_total`` from items, then ``total_amount``."""
        total = sum(
            (
                item.damage_cost
                for item in OrderItem.objects.filter(order_id=order.id)
                if item.damage_cost and item.damage_cost > 0
            ),
            Decimal("0.00"),
        )
        order.damage_fee_total = total if total > 0 else None
        order.recalculate_total()
        if save:
            order.save(update_fields=_ORDER_TOTAL_FIELDS)

    def _record_item_change(
        self, order: Order, item: OrderItem, change: ItemReturnChange, user: Any
    ) -> None:
        if change.action == "apply":
            action = AuditAction.ITEM_RETURNED
            notes = (
                f"Returned {change.returned_delta} x {item.product_name} "
                f"({item.returned_quantity}/{item.quantity})"
            )
        elif change.action == "revert":
            action = AuditAction.RETURN_REVERTED
            notes = f"Return of {item.product_name} reverted"
        else:
            action = AuditAction.DAMAGE_RECORDED
            notes = _damage_note(
                item.product_name, item.damage_cost, item.damage_description
            )
        self._audit.record(
            order.id, action, notes=notes, user=user, order_item_id=item.id
        )


class AuditLogDjangoRepository(IAuditLogRepository):
    """Audit trail backed by the ``order_audit_events`` table."""

    def fetch_timeline(self, order_id: UUID) -> List[AuditEventDTO]:
        events = (
            OrderAuditEvent.objects.select_related("user")
            .filter(order_id=order_id)
            .order_by("created_at")
        )
        return [AuditEventDTO.from_entity(event) for event in events]

    def record(
        self,
        order_id: UUID,
        action: str,
        notes: str = "",
        user: Any = None,
        order_item_id: Optional[UUID] = None,
        previous_status: Optional[str] = None,
        new_status: Optional[str] = None,
    ) -> OrderAuditEvent:
        event = OrderAuditEvent.objects.create(
            order_id=order_id,
            order_item_id=order_item_id,
            action=action,
            notes=notes,
            user=user if getattr(user, "is_authenticated", False) else None,
            previous_status=previous_status,
            new_status=new_status,
        )
        logger.debug("audit.recorded", order_id=str(order_id), action=action)
        return event


def _damage_note(
    product_name: str, cost: Optional[Decimal], description: Optional[str]
) -> str:
    if not cost:
        return f"Damage cleared on {product_name}"
    note = f"Damage {cost} recorded on {product_name}"
    if description:
        note += f": {description}"
    return note
