"""Event handlers for rental order domain events."""

from __future__ import annotations

import structlog

from modules.orders.events import (
    DepositRefunded,
    OrderCancelled,
    OrderCreated,
    OrderStatusChanged,
    OutstandingCollected,
    RentalStarted,
    ReturnProcessed,
)
from shared.domain.bus import IEventHandler

logger = structlog.get_logger(__name__)


class OrderCreatedHandler(IEventHandler[OrderCreated]):
    def handle(self, event: OrderCreated) -> None:
        logger.info(
            "order.created",
            order_id=str(event.aggregate_id),
            invoice_number=event.invoice_number,
        )


class RentalStartedHandler(IEventHandler[RentalStarted]):
    def handle(self, event: RentalStarted) -> None:
        logger.info("order.rental_started", order_id=str(event.aggregate_id))


class OrderCancelledHandler(IEventHandler[OrderCancelled]):
    def handle(self, event: OrderCancelled) -> None:
        logger.info("order.cancelled", order_id=str(event.aggregate_id))


class OrderStatusChangedHandler(IEventHandler[OrderStatusChanged]):
    def handle(self, event: OrderStatusChanged) -> None:
        logger.info(
            "order.status_changed",
            order_id=str(event.aggregate_id),
            previous_status=event.previous_status,
            new_status=event.new_status,
        )


class ReturnProcessedHandler(IEventHandler[ReturnProcessed]):
    def handle(self, event: ReturnProcessed) -> None:
        logger.info(
            "order.return_processed",
            order_id=str(event.aggregate_id),
            returned_quantity=event.returned_quantity,
            pending_quantity=event.pending_quantity,
        )


class DepositRefundedHandler(IEventHandler[DepositRefunded]):
    def handle(self, event: DepositRefunded) -> None:
        logger.info(
            "order.deposit_refunded",
            order_id=str(event.aggregate_id),
            amount=str(event.amount),
        )


class OutstandingCollectedHandler(IEventHandler[OutstandingCollected]):
    def handle(self, event: OutstandingCollected) -> None:
        logger.info(
            "order.outstanding_collected",
            order_id=str(event.aggregate_id),
            amount=str(event.amount),
        )


order_created_handler = OrderCreatedHandler()
rental_started_handler = RentalStartedHandler()
order_cancelled_handler = OrderCancelledHandler()
order_status_changed_handler = OrderStatusChangedHandler()
return_processed_handler = ReturnProcessedHandler()
deposit_refunded_handler = DepositRefundedHandler()
outstanding_collected_handler = OutstandingCollectedHandler()
