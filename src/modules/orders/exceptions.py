"""Rental order domain exceptions.

Raised by the engine and the Service Layer when business rules are
violated.  The API layer (Views) catches these and translates them into
appropriate HTTP responses.  Validation errors carry a user-facing
message and are always raised before any repository write.
"""

from __future__ import annotations


class OrderNotFound(Exception):
    """The requested order does not exist."""


class OrderItemNotFound(Exception):
    """The requested order item does not exist on the order."""


class InvalidOrderStatus(Exception):
    """An invalid status transition was attempted."""


class OperationInProgress(Exception):
    """Another mutation for the same order is still running."""


# ---------------------------------------------------------------------------
# Return ledger
# ---------------------------------------------------------------------------


class ReturnValidationError(Exception):
    """Base class for rejected return edits."""


class InvalidReturnQuantity(ReturnValidationError):
    """The returned quantity is negative."""


class ReturnQuantityExceeded(ReturnValidationError):
    """The returned quantity is above the item's pending quantity."""


class InvalidDamageCost(ReturnValidationError):
    """A damage cost below zero was supplied."""


# ---------------------------------------------------------------------------
# Settlement
# ---------------------------------------------------------------------------


class SettlementValidationError(Exception):
    """Base class for rejected money operations."""


class InvalidAmount(SettlementValidationError):
    """The amount is missing, zero or negative."""


class RefundNotAllowed(SettlementValidationError):
    """The order is not eligible for a deposit refund."""


class RefundAmountExceeded(SettlementValidationError):
    """The refund is larger than the remaining deposit balance."""


class CollectionNotAllowed(SettlementValidationError):
    """Nothing is outstanding on the order."""


class CollectionAmountExceeded(SettlementValidationError):
    """The collection is larger than the outstanding amount."""


class LateFeeNotEditable(SettlementValidationError):
    """The late fee can only be edited while the order is late."""
