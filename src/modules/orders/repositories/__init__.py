"""Order repositories package."""

from modules.orders.repositories.django_repository import (
    AuditLogDjangoRepository,
    OrderDjangoRepository,
)
from modules.orders.repositories.interfaces import (
    IAuditLogRepository,
    IOrderRepository,
)

__all__ = [
    "AuditLogDjangoRepository",
    "IAuditLogRepository",
    "IOrderRepository",
    "OrderDjangoRepository",
]
