"""Order service layer (Use Cases).

Orchestrates the rental lifecycle: booking, start, cancellation,
flagging, returns, damage, late fee and deposit settlement.  All write
operations are atomic; the service defines the unit-of-work boundary.

Business rules enforced:
- Status transitions validated against ``VALID_TRANSITIONS``.
- Every mutation is validated by the engine (``modules.orders.domain``)
  on the locked snapshot *before* the repository is called.
- At most one mutation per order is in flight (``OperationInProgress``).
- After a mutation the order is re-fetched; callers never patch snapshots.
- Domain events are published on the in-process bus after commit.
- The audit-log read only degrades the timeline when it fails.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from functools import partial
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, Iterator, Optional
from uuid import UUID

import structlog
from django.db import transaction
from django.utils import timezone

from modules.orders.concurrency import InFlightGuard, in_flight
from modules.orders.constants import (
    COMPLETED_STATES,
    RETURNABLE_STATES,
    ZERO,
    OrderCategory,
    OrderStatus,
)
from modules.orders.domain.classification import (
    CATEGORY_LABELS,
    classify,
    days_overdue,
    rental_days,
    resolve_start,
)
from modules.orders.domain.return_ledger import ReturnLedger, ReturnStatistics
from modules.orders.domain.settlement import (
    settle,
    validate_collection,
    validate_late_fee,
    validate_refund,
)
from modules.orders.domain.timeline import reconstruct
from modules.orders.domain.values import money, quantize
from modules.orders.dtos import OrderOverviewDTO, OrderSnapshot, TimelineDTO
from modules.orders.events import (
    DepositRefunded,
    OrderCancelled,
    OrderCreated,
    OrderStatusChanged,
    OutstandingCollected,
    RentalStarted,
    ReturnProcessed,
)
from modules.orders.exceptions import InvalidOrderStatus, OrderNotFound
from shared.infrastructure.bus import event_bus as default_event_bus

if TYPE_CHECKING:
    from modules.orders.dtos import (
        CreateOrderDTO,
        ProcessReturnDTO,
        UpdateItemDamageDTO,
    )
    from modules.orders.models import Order
    from modules.orders.repositories.interfaces import (
        IAuditLogRepository,
        IOrderRepository,
    )
    from shared.domain.bus import IEventBus

logger = structlog.get_logger(__name__)


class OrderService:
    """Application service for rental order use-cases.

    Receives repositories via constructor injection (DIP).
    """

    def __init__(
        self,
        order_repository: IOrderRepository,
        audit_repository: Optional[IAuditLogRepository] = None,
        guard: Optional[InFlightGuard] = None,
        event_bus: Optional[IEventBus] = None,
        clock: Callable[[], datetime] = timezone.now,
    ) -> None:
        self._order_repo = order_repository
        self._audit_repo = audit_repository
        self._guard = guard or in_flight
        self._bus = event_bus or default_event_bus
        self._clock = clock

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    @transaction.atomic
    def create_order(self, dto: CreateOrderDTO, staff: Any = None) -> Order:
        """Book a new order with its items.

        The order starts ``scheduled`` when the rental begins in the
        future, otherwise ``active``.  A repeated ``idempotency_key``
        returns the order created the first time.
        """
        log = logger.bind(item_count=len(dto.items))
        log.info("order.creation_started")

        if dto.idempotency_key:
            existing = self._order_repo.get_by_idempotency_key(dto.idempotency_key)
            if existing:
                log.info(
                    "order.idempotency_hit",
                    order_id=str(existing.id),
                    key=dto.idempotency_key,
                )
                return existing

        now = self._clock()
        starts_at = resolve_start(dto) or now
        status = OrderStatus.SCHEDULED if starts_at > now else OrderStatus.ACTIVE
        default_days = rental_days(dto)

        order = self._order_repo.create(
            {
                "invoice_number": dto.invoice_number,
                "status": status,
                "staff": staff if getattr(staff, "is_authenticated", False) else None,
                "booking_date": now,
                "start_date": dto.start_date,
                "end_date": dto.end_date,
                "start_datetime": dto.start_datetime,
                "end_datetime": dto.end_datetime,
                "gst_amount": dto.gst_amount,
                "security_deposit_amount": dto.security_deposit_amount,
                "security_deposit_collected": dto.security_deposit_collected,
                "notes": dto.notes or "",
                "idempotency_key": dto.idempotency_key,
                "items": [
                    {
                        "product_name": item.product_name,
                        "quantity": item.quantity,
                        "price_per_day": item.price_per_day,
                        "days": item.days or default_days,
                    }
                    for item in dto.items
                ],
            }
        )

        order.add_domain_event(
            OrderCreated(aggregate_id=order.id, invoice_number=order.invoice_number)
        )
        self._publish(order)
        log.info("order.created", order_id=str(order.id), status=status)
        return self._refetch(order.id)

    def start_rental(self, order_id: UUID, user: Any = None) -> Order:
        """Activate a scheduled order (scheduled -> active)."""
        with self._exclusive(order_id, "start_rental") as order:
            if order.status != OrderStatus.SCHEDULED:
                raise InvalidOrderStatus(
                    f"Only scheduled orders can be started (status: {order.status})."
                )
            self._order_repo.start_rental(order.id, self._clock(), user=user)
            order.add_domain_event(RentalStarted(aggregate_id=order.id))
            self._status_event(order, OrderStatus.SCHEDULED, OrderStatus.ACTIVE)
            self._publish(order)
        return self._refetch(order_id)

    def cancel_order(self, order_id: UUID, notes: str = "", user: Any = None) -> Order:
        """Cancel an order from any non-closed state."""
        with self._exclusive(order_id, "cancel_order") as order:
            log = logger.bind(order_id=str(order_id), current_status=order.status)
            if not order.can_transition_to(OrderStatus.CANCELLED):
                log.warning("order.cancel_not_allowed")
                raise InvalidOrderStatus(
                    f"Cannot cancel order in status {order.status}."
                )
            previous = order.status
            self._order_repo.update_status(
                order.id,
                OrderStatus.CANCELLED,
                notes=notes or "Order cancelled",
                user=user,
            )
            order.add_domain_event(OrderCancelled(aggregate_id=order.id))
            self._status_event(order, previous, OrderStatus.CANCELLED)
            self._publish(order)
            log.info("order.cancel_requested")
        return self._refetch(order_id)

    def flag_order(self, order_id: UUID, notes: str = "", user: Any = None) -> Order:
        """External override: flag an order for follow-up."""
        with self._exclusive(order_id, "flag_order") as order:
            if not order.can_transition_to(OrderStatus.FLAGGED):
                raise InvalidOrderStatus(
                    f"Cannot flag order in status {order.status}."
                )
            previous = order.status
            self._order_repo.update_status(
                order.id, OrderStatus.FLAGGED, notes=notes or "Order flagged", user=user
            )
            self._status_event(order, previous, OrderStatus.FLAGGED)
            self._publish(order)
        return self._refetch(order_id)

    def update_late_fee(
        self, order_id: UUID, amount: Optional[Decimal], user: Any = None
    ) -> Order:
        """Set the late fee while the order is late (or already charged)."""
        with self._exclusive(order_id, "update_late_fee") as order:
            fee = validate_late_fee(self._snapshot(order), amount, now=self._clock())
            self._order_repo.update_late_fee(order.id, fee, user=user)
            logger.info(
                "order.late_fee_updated", order_id=str(order_id), amount=str(fee)
            )
        return self._refetch(order_id)

    def update_item_damage(
        self, order_id: UUID, dto: UpdateItemDamageDTO, user: Any = None
    ) -> Order:
        """Record or clear damage on one item, whatever its return state."""
        with self._exclusive(order_id, "update_item_damage") as order:
            ledger = ReturnLedger.from_order(self._snapshot(order), now=self._clock())
            change = ledger.record_damage(
                dto.item_id, dto.damage_cost, dto.damage_description
            )
            self._order_repo.update_item_damage(
                change.item_id,
                change.damage_cost,
                change.damage_description,
                user=user,
            )
            logger.info(
                "order.damage_recorded",
                order_id=str(order_id),
                item_id=str(dto.item_id),
                damage_cost=str(change.damage_cost),
            )
        return self._refetch(order_id)

    def process_return(
        self, order_id: UUID, dto: ProcessReturnDTO, user: Any = None
    ) -> Order:
        """Apply and revert item returns, then move the order status.

        All lines are validated by the return ledger before anything is
        written.  The resulting status follows the return aggregates:
        everything back completes the order (with issues when damage was
        recorded), a mix makes it partially returned, nothing back makes
        it active again.
        """
        with self._exclusive(order_id, "process_return") as order:
            log = logger.bind(order_id=str(order_id), current_status=order.status)
            if order.status not in RETURNABLE_STATES:
                log.warning("order.return_not_allowed")
                raise InvalidOrderStatus(
                    f"Returns cannot be processed for an order in status "
                    f"{order.status}."
                )

            ledger = ReturnLedger.from_order(self._snapshot(order), now=self._clock())
            for line in dto.reverts:
                ledger.revert(line.item_id, clear_damage=line.clear_damage)
            for line in dto.returns:
                ledger.apply_return(
                    line.item_id,
                    line.quantity,
                    damage_cost=line.damage_cost,
                    damage_description=line.damage_description,
                    missing_note=line.missing_note,
                )

            changes = ledger.changes()
            if not changes:
                log.info("order.return_noop")
                return self._refetch(order_id)

            statistics = ledger.statistics()
            new_status = self._status_after_return(statistics, ledger)
            previous = order.status
            self._order_repo.process_return(
                order.id, changes, new_status=new_status, user=user
            )

            order.add_domain_event(
                ReturnProcessed(
                    aggregate_id=order.id,
                    returned_quantity=statistics.returned_quantity,
                    pending_quantity=statistics.pending_quantity,
                )
            )
            if new_status != previous:
                self._status_event(order, previous, new_status)
            self._publish(order)
            log.info(
                "order.return_processed",
                change_count=len(changes),
                new_status=new_status,
                return_state=statistics.state,
            )
        return self._refetch(order_id)

    def refund_security_deposit(
        self, order_id: UUID, amount: Optional[Decimal] = None, user: Any = None
    ) -> Order:
        """Refund the deposit; the full remaining balance by default."""
        with self._exclusive(order_id, "refund_security_deposit") as order:
            refund = validate_refund(self._snapshot(order), amount)
            self._order_repo.refund_security_deposit(order.id, refund, user=user)
            order.add_domain_event(
                DepositRefunded(aggregate_id=order.id, amount=refund)
            )
            self._publish(order)
            logger.info(
                "order.deposit_refund_requested",
                order_id=str(order_id),
                amount=str(refund),
            )
        return self._refetch(order_id)

    def collect_outstanding_amount(
        self, order_id: UUID, amount: Optional[Decimal], user: Any = None
    ) -> Order:
        with self._exclusive(order_id, "collect_outstanding_amount") as order:
            collected = validate_collection(self._snapshot(order), amount)
            self._order_repo.collect_outstanding_amount(order.id, collected, user=user)
            order.add_domain_event(
                OutstandingCollected(aggregate_id=order.id, amount=collected)
            )
            self._publish(order)
            logger.info(
                "order.outstanding_collection_requested",
                order_id=str(order_id),
                amount=str(collected),
            )
        return self._refetch(order_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_order(self, order_id: str) -> Order:
        """Retrieve a single order by ID.

        Raises:
            OrderNotFound: if the order does not exist.
        """
        order = self._order_repo.get_by_id(str(order_id))
        if not order:
            raise OrderNotFound(f"Order {order_id} not found.")
        return order

    def list_orders(self, filters: Optional[Dict[str, Any]] = None):
        """Return orders, optionally filtered by ORM lookups."""
        return self._order_repo.list(filters)

    def filter_by_category(
        self, orders: Iterable[Order], category: str, now: Optional[datetime] = None
    ) -> list[Order]:
        """Keep only the orders whose derived category is *category*."""
        now = now or self._clock()
        return [
            order
            for order in orders
            if classify(OrderSnapshot.from_entity(order), now) == category
        ]

    def category_summary(
        self, orders: Optional[Iterable[Order]] = None, now: Optional[datetime] = None
    ) -> Dict[str, int]:
        """Count orders per derived category (every category is present)."""
        now = now or self._clock()
        counts = {category.value: 0 for category in OrderCategory}
        for order in orders if orders is not None else self.list_orders():
            counts[classify(OrderSnapshot.from_entity(order), now)] += 1
        return counts

    def today_collection(
        self, orders: Optional[Iterable[Order]] = None, now: Optional[datetime] = None
    ) -> Decimal:
        """Total amount of completed orders created on the current local day."""
        today = timezone.localdate(now or self._clock())
        total = ZERO
        for order in orders if orders is not None else self.list_orders():
            if order.status not in COMPLETED_STATES or order.created_at is None:
                continue
            if timezone.localdate(order.created_at) == today:
                total += money(order.total_amount)
        return quantize(total)

    def build_overview(
        self, order: Order, now: Optional[datetime] = None
    ) -> OrderOverviewDTO:
        """Run the engine over a fresh snapshot of *order*."""
        now = now or self._clock()
        snapshot = OrderSnapshot.from_entity(order)
        category = classify(snapshot, now)
        ledger = ReturnLedger.from_order(snapshot, now=now)
        statistics = ledger.statistics()
        return OrderOverviewDTO(
            order=snapshot,
            category=category,
            category_label=CATEGORY_LABELS[category],
            days_overdue=days_overdue(snapshot, now),
            rental_days=rental_days(snapshot),
            return_statistics=statistics,
            settlement=settle(snapshot, statistics, category, now),
        )

    def get_overview(self, order_id: str) -> OrderOverviewDTO:
        return self.build_overview(self.get_order(order_id))

    def get_timeline(self, order_id: str) -> TimelineDTO:
        """Reconstruct the timeline; a failed audit read degrades it."""
        order = self.get_order(order_id)
        snapshot = OrderSnapshot.from_entity(order)
        events = None
        if self._audit_repo is not None:
            try:
                events = self._audit_repo.fetch_timeline(order.id)
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "timeline.audit_fetch_failed",
                    order_id=str(order.id),
                    error=str(exc),
                )
        return TimelineDTO(
            order_id=order.id,
            audit_available=events is not None,
            entries=reconstruct(snapshot, events),
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @contextmanager
    def _exclusive(self, order_id: Any, operation: str) -> Iterator[Order]:
        """Hold the in-flight guard and a row lock for one unit of work."""
        with self._guard.hold(order_id, operation), transaction.atomic():
            order = self._order_repo.get_for_update(str(order_id))
            if not order:
                raise OrderNotFound(f"Order {order_id} not found.")
            yield order

    @staticmethod
    def _snapshot(order: Order) -> OrderSnapshot:
        return OrderSnapshot.from_entity(order)

    @staticmethod
    def _status_after_return(statistics: ReturnStatistics, ledger: ReturnLedger) -> str:
        if statistics.state == "returned":
            damaged = any((item.damage_cost or 0) > 0 for item in ledger.items)
            return (
                OrderStatus.COMPLETED_WITH_ISSUES if damaged else OrderStatus.COMPLETED
            )
        if statistics.state == "partial":
            return OrderStatus.PARTIALLY_RETURNED
        return OrderStatus.ACTIVE

    @staticmethod
    def _status_event(order: Order, previous: str, new_status: str) -> None:
        order.add_domain_event(
            OrderStatusChanged(
                aggregate_id=order.id,
                previous_status=previous,
                new_status=new_status,
            )
        )

    def _publish(self, order: Order) -> None:
        """Hand the collected events to the bus once the transaction commits."""
        events = order.pull_domain_events()
        if events:
            transaction.on_commit(partial(self._bus.publish_all, events))

    def _refetch(self, order_id: Any) -> Order:
        order = self._order_repo.get_by_id(str(order_id))
        if order is None:
            raise OrderNotFound(f"Order {order_id} not found.")
        return order
