"""Rental order domain constants.

Defines status choices, the status state machine, derived order
categories, audit actions and the money rules shared by the engine.
"""

from decimal import Decimal

from django.db import models


class OrderStatus(models.TextChoices):
    SCHEDULED = "scheduled", "Scheduled"
    ACTIVE = "active", "Active"
    PARTIALLY_RETURNED = "partially_returned", "Partially Returned"
    COMPLETED = "completed", "Completed"
    COMPLETED_WITH_ISSUES = "completed_with_issues", "Completed With Issues"
    CANCELLED = "cancelled", "Cancelled"
    FLAGGED = "flagged", "Flagged"


class ReturnStatus(models.TextChoices):
    NOT_YET_RETURNED = "not_yet_returned", "Not Yet Returned"
    RETURNED = "returned", "Returned"


class OrderCategory(models.TextChoices):
    """Single derived category shown for an order (see ``classify``)."""

    SCHEDULED = "scheduled", "Scheduled"
    ONGOING = "ongoing", "Ongoing"
    LATE = "late", "Late"
    RETURNED = "returned", "Returned"
    PARTIALLY_RETURNED = "partially_returned", "Partially Returned"
    CANCELLED = "cancelled", "Cancelled"
    FLAGGED = "flagged", "Flagged"


class AuditAction(models.TextChoices):
    ORDER_CREATED = "order_created", "Order created"
    STATUS_CHANGED = "status_changed", "Status changed"
    RENTAL_STARTED = "rental_started", "Rental started"
    ITEM_RETURNED = "item_returned", "Item returned"
    RETURN_REVERTED = "return_reverted", "Return reverted"
    DAMAGE_RECORDED = "damage_recorded", "Damage recorded"
    LATE_FEE_UPDATED = "late_fee_updated", "Late fee updated"
    DEPOSIT_REFUNDED = "deposit_refunded", "Deposit refunded"
    OUTSTANDING_COLLECTED = "outstanding_collected", "Outstanding collected"


VALID_TRANSITIONS: dict[str, set[str]] = {
    OrderStatus.SCHEDULED: {
        OrderStatus.ACTIVE,
        OrderStatus.CANCELLED,
        OrderStatus.FLAGGED,
    },
    OrderStatus.ACTIVE: {
        OrderStatus.PARTIALLY_RETURNED,
        OrderStatus.COMPLETED,
        OrderStatus.COMPLETED_WITH_ISSUES,
        OrderStatus.CANCELLED,
        OrderStatus.FLAGGED,
    },
    OrderStatus.PARTIALLY_RETURNED: {
        OrderStatus.ACTIVE,
        OrderStatus.COMPLETED,
        OrderStatus.COMPLETED_WITH_ISSUES,
        OrderStatus.CANCELLED,
        OrderStatus.FLAGGED,
    },
    OrderStatus.COMPLETED: {OrderStatus.FLAGGED},
    OrderStatus.COMPLETED_WITH_ISSUES: {OrderStatus.FLAGGED},
    OrderStatus.FLAGGED: {OrderStatus.CANCELLED},
    OrderStatus.CANCELLED: set(),
}

# The rental is over; only the external flagging override may follow.
CLOSED_STATES: set[str] = {
    OrderStatus.COMPLETED,
    OrderStatus.COMPLETED_WITH_ISSUES,
    OrderStatus.CANCELLED,
}

COMPLETED_STATES: set[str] = {
    OrderStatus.COMPLETED,
    OrderStatus.COMPLETED_WITH_ISSUES,
}

# Statuses from which a return may be processed.
RETURNABLE_STATES: set[str] = {
    OrderStatus.ACTIVE,
    OrderStatus.PARTIALLY_RETURNED,
}

MONEY_QUANTUM = Decimal("0.01")
MONEY_TOLERANCE = Decimal("0.01")
ZERO = Decimal("0")

UNKNOWN_ACTOR = "Unknown"

INVOICE_NUMBER_MAX_RETRIES = 5
