from django.apps import AppConfig


class OrdersConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "modules.orders"
    label = "orders"

    def ready(self) -> None:
        from modules.orders import signals  # noqa: F401
        from modules.orders.events import (
            DepositRefunded,
            OrderCancelled,
            OrderCreated,
            OrderStatusChanged,
            OutstandingCollected,
            RentalStarted,
            ReturnProcessed,
        )
        from modules.orders.handlers import (
            deposit_refunded_handler,
            order_cancelled_handler,
            order_created_handler,
            order_status_changed_handler,
            outstanding_collected_handler,
            rental_started_handler,
            return_processed_handler,
        )
        from shared.infrastructure.bus import event_bus

        event_bus.subscribe(OrderCreated, order_created_handler)
        event_bus.subscribe(RentalStarted, rental_started_handler)
        event_bus.subscribe(OrderCancelled, order_cancelled_handler)
        event_bus.subscribe(OrderStatusChanged, order_status_changed_handler)
        event_bus.subscribe(ReturnProcessed, return_processed_handler)
        event_bus.subscribe(DepositRefunded, deposit_refunded_handler)
        event_bus.subscribe(OutstandingCollected, outstanding_collected_handler)
