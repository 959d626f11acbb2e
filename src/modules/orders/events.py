"""Domain events for the rental orders module."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from shared.domain.events import DomainEvent


@dataclass(frozen=True)
class OrderCreated(DomainEvent):
    """Raised when an order is booked."""

    invoice_number: str = ""


@dataclass(frozen=True)
class RentalStarted(DomainEvent):
    """Raised when a scheduled order becomes active."""


@dataclass(frozen=True)
class OrderStatusChanged(DomainEvent):
    """Raised when an order status changes."""

    previous_status: Optional[str] = None
    new_status: Optional[str] = None


@dataclass(frozen=True)
class OrderCancelled(DomainEvent):
    """Raised when an order is cancelled."""


@dataclass(frozen=True)
class ReturnProcessed(DomainEvent):
    """Raised after a batch of item return changes is persisted."""

    returned_quantity: int = 0
    pending_quantity: int = 0


@dataclass(frozen=True)
class DepositRefunded(DomainEvent):
    """Raised when (part of) the security deposit is refunded."""

    amount: Decimal = Decimal("0")


@dataclass(frozen=True)
class OutstandingCollected(DomainEvent):
    """Raised when an outstanding amount is collected from the customer."""

    amount: Decimal = Decimal("0")
