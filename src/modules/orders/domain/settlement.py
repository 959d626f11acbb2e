"""Money figures derived for an order.

``settle`` computes everything the deposit and charges views need:

- ``total_charges = subtotal + gst + damage_fee_total + late_fee``
- ``deposit_balance = max(deposit - refunded, 0)``
- ``refundable_amount = deposit_balance``; damage never reduces the refund,
  it is charged through the outstanding amount instead.
- ``outstanding_amount = max(total_charges - deposit - additional_collected, 0)``

The ``validate_*`` helpers check a requested money operation against the
same figures and raise a ``SettlementValidationError`` with a user-facing
message before any write is attempted.  Amounts are compared with a
0.01 tolerance.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Literal, Optional

import structlog
from pydantic import BaseModel, ConfigDict

from modules.orders.constants import (
    MONEY_TOLERANCE,
    ZERO,
    OrderCategory,
    OrderStatus,
    ReturnStatus,
)
from modules.orders.domain.classification import classify
from modules.orders.domain.return_ledger import ReturnStatistics, summarize
from modules.orders.domain.values import differs, exceeds, money, quantize
from modules.orders.exceptions import (
    CollectionAmountExceeded,
    CollectionNotAllowed,
    InvalidAmount,
    LateFeeNotEditable,
    RefundAmountExceeded,
    RefundNotAllowed,
)

if TYPE_CHECKING:
    from modules.orders.dtos import OrderSnapshot

logger = structlog.get_logger(__name__)

DepositStatus = Literal[
    "fully_refunded", "partially_refunded", "collected", "pending_collection"
]

_REFUNDABLE_STATUSES: frozenset[str] = frozenset(
    {
        OrderStatus.COMPLETED,
        OrderStatus.COMPLETED_WITH_ISSUES,
        OrderStatus.CANCELLED,
    }
)


class Settlement(BaseModel):
    """Settlement figures for one order snapshot (full precision)."""

    model_config = ConfigDict(frozen=True)

    category: str
    return_state: str
    subtotal: Decimal
    gst_amount: Decimal
    late_fee: Decimal
    late_fee_editable: bool
    damage_fee_total: Decimal
    recorded_damage_fee_total: Optional[Decimal]
    damage_total_mismatch: bool
    total_charges: Decimal
    security_deposit_amount: Decimal
    security_deposit_refunded_amount: Decimal
    additional_amount_collected: Decimal
    deposit_balance: Decimal
    refundable_amount: Decimal
    outstanding_amount: Decimal
    can_refund: bool
    can_collect_outstanding: bool
    deposit_status: DepositStatus


# ---------------------------------------------------------------------------
# Components
# ---------------------------------------------------------------------------


def damage_fee_total(order: OrderSnapshot) -> Decimal:
    """Sum of positive item damage costs."""
    total = ZERO
    for item in order.items:
        cost = money(item.damage_cost)
        if cost > ZERO:
            total += cost
    return total


def deposit_balance(order: OrderSnapshot) -> Decimal:
    balance = money(order.security_deposit_amount) - money(
        order.security_deposit_refunded_amount
    )
    return max(balance, ZERO)


def deposit_status(order: OrderSnapshot) -> DepositStatus:
    deposit = money(order.security_deposit_amount)
    refunded = money(order.security_deposit_refunded_amount)
    if order.security_deposit_refunded or (deposit > ZERO and refunded >= deposit):
        return "fully_refunded"
    if refunded > ZERO:
        return "partially_refunded"
    if order.security_deposit_collected:
        return "collected"
    return "pending_collection"


def _has_returns(order: OrderSnapshot) -> bool:
    return any(
        item.return_status == ReturnStatus.RETURNED
        or (item.returned_quantity or 0) > 0
        for item in order.items
    )


def refund_blocker(order: OrderSnapshot) -> Optional[str]:
    """Reason the deposit cannot be refunded, or ``None`` when it can."""
    if not order.security_deposit_collected:
        return "The security deposit has not been collected."
    if order.security_deposit_refunded:
        return "The security deposit has already been refunded."
    if deposit_balance(order) <= MONEY_TOLERANCE:
        return "There is no deposit balance left to refund."
    if not _has_returns(order) and order.status not in _REFUNDABLE_STATUSES:
        return "The deposit can be refunded once items are returned."
    return None


# ---------------------------------------------------------------------------
# Settlement
# ---------------------------------------------------------------------------


def settle(
    order: OrderSnapshot,
    statistics: Optional[ReturnStatistics] = None,
    category: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Settlement:
    """Compute the settlement for *order*.

    ``statistics`` and ``category`` are recomputed from the snapshot when
    not supplied.  A recorded ``damage_fee_total`` that disagrees with the
    items is logged and flagged, never raised.
    """
    if statistics is None:
        statistics = summarize(order.items)
    if category is None:
        category = classify(order, now)

    subtotal = money(order.subtotal)
    gst = money(order.gst_amount)
    late_fee = money(order.late_fee)
    deposit = money(order.security_deposit_amount)
    refunded = money(order.security_deposit_refunded_amount)
    collected = money(order.additional_amount_collected)

    damage = damage_fee_total(order)
    recorded = (
        money(order.damage_fee_total) if order.damage_fee_total is not None else None
    )
    mismatch = recorded is not None and differs(recorded, damage)
    if mismatch:
        logger.warning(
            "settlement.damage_total_mismatch",
            order_id=str(order.id),
            recorded=str(recorded),
            computed=str(damage),
        )

    total_charges = subtotal + gst + damage + late_fee
    balance = deposit_balance(order)
    outstanding = max(total_charges - deposit - collected, ZERO)

    return Settlement(
        category=category,
        return_state=statistics.state,
        subtotal=subtotal,
        gst_amount=gst,
        late_fee=late_fee,
        late_fee_editable=category == OrderCategory.LATE or late_fee > ZERO,
        damage_fee_total=damage,
        recorded_damage_fee_total=recorded,
        damage_total_mismatch=mismatch,
        total_charges=total_charges,
        security_deposit_amount=deposit,
        security_deposit_refunded_amount=refunded,
        additional_amount_collected=collected,
        deposit_balance=balance,
        refundable_amount=balance,
        outstanding_amount=outstanding,
        can_refund=refund_blocker(order) is None,
        can_collect_outstanding=outstanding > ZERO,
        deposit_status=deposit_status(order),
    )


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate_refund(order: OrderSnapshot, amount: Optional[Decimal] = None) -> Decimal:
    """Return the amount to refund; defaults to the full remaining balance."""
    reason = refund_blocker(order)
    if reason is not None:
        raise RefundNotAllowed(reason)
    balance = quantize(deposit_balance(order))
    if amount is None:
        return balance
    requested = quantize(amount)
    if requested <= ZERO:
        raise InvalidAmount("Refund amount must be greater than zero.")
    if exceeds(requested, balance):
        raise RefundAmountExceeded(
            f"Refund amount {requested} exceeds the deposit balance {balance}."
        )
    return min(requested, balance)


def validate_collection(order: OrderSnapshot, amount: Optional[Decimal]) -> Decimal:
    """Return the amount to collect, clamped to the outstanding amount."""
    requested = quantize(amount)
    if amount is None or requested <= ZERO:
        raise InvalidAmount("Collection amount must be greater than zero.")
    outstanding = quantize(settle(order).outstanding_amount)
    if outstanding <= ZERO:
        raise CollectionNotAllowed("There is no outstanding amount to collect.")
    if exceeds(requested, outstanding):
        raise CollectionAmountExceeded(
            f"Collection amount {requested} exceeds the outstanding amount "
            f"{outstanding}."
        )
    return min(requested, outstanding)


def validate_late_fee(
    order: OrderSnapshot,
    amount: Optional[Decimal],
    now: Optional[datetime] = None,
) -> Decimal:
    if amount is None:
        raise InvalidAmount("Late fee amount is required.")
    fee = quantize(amount)
    if fee < ZERO:
        raise InvalidAmount("Late fee cannot be negative.")
    if not settle(order, now=now).late_fee_editable:
        raise LateFeeNotEditable(
            "The late fee can only be changed while the order is late."
        )
    return fee
