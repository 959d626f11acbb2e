"""Order category derivation.

``classify`` reduces status, item return state and the rental end to the
single category shown for an order.  The rules form an ordered guard
chain; the first matching rule wins:

1. ``cancelled`` when the status is cancelled.
2. ``flagged`` when the status is flagged.
3. ``partially_returned`` when the status is partially_returned.
4. ``returned`` when the status is completed or completed_with_issues.
5. ``scheduled`` when the status is scheduled, however overdue the end is.
6. ``partially_returned`` when some items are marked returned and some are
   not.
7. ``late`` when the end has passed.
8. ``ongoing`` otherwise.

An unparsable end never makes an order late.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Callable, Optional

from modules.orders.constants import OrderCategory, OrderStatus
from modules.orders.domain.values import parse_instant, utcnow

if TYPE_CHECKING:
    from modules.orders.dtos import OrderSnapshot

CATEGORY_LABELS: dict[str, str] = {
    OrderCategory.SCHEDULED: "Scheduled",
    OrderCategory.ONGOING: "Ongoing",
    OrderCategory.LATE: "Late",
    OrderCategory.RETURNED: "Returned",
    OrderCategory.PARTIALLY_RETURNED: "Partially Returned",
    OrderCategory.CANCELLED: "Cancelled",
    OrderCategory.FLAGGED: "Flagged",
}

# Statuses that can never be reported as late.
_NEVER_LATE: frozenset[str] = frozenset(
    {
        OrderStatus.COMPLETED,
        OrderStatus.COMPLETED_WITH_ISSUES,
        OrderStatus.FLAGGED,
        OrderStatus.CANCELLED,
        OrderStatus.PARTIALLY_RETURNED,
    }
)


# ---------------------------------------------------------------------------
# Period helpers
# ---------------------------------------------------------------------------


def resolve_end(order: OrderSnapshot) -> Optional[datetime]:
    """End of the rental: ``end_datetime`` falling back to ``end_date``."""
    return parse_instant(order.end_datetime or order.end_date)


def resolve_start(order: OrderSnapshot) -> Optional[datetime]:
    """Start of the rental: ``start_datetime`` falling back to ``start_date``."""
    return parse_instant(order.start_datetime or order.start_date)


def is_late(order: OrderSnapshot, now: Optional[datetime] = None) -> bool:
    if order.status in _NEVER_LATE:
        return False
    end = resolve_end(order)
    if end is None:
        return False
    return _now(now) > end


def days_overdue(order: OrderSnapshot, now: Optional[datetime] = None) -> int:
    """Whole days past the rental end; 0 when not overdue or unparsable."""
    end = resolve_end(order)
    current = _now(now)
    if end is None or current <= end:
        return 0
    return (current - end).days


def rental_days(order: OrderSnapshot) -> int:
    """Calendar days between start and end, counted at least as one."""
    start, end = resolve_start(order), resolve_end(order)
    if start is None or end is None:
        return 1
    return max((end.date() - start.date()).days, 1)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def _has_mixed_returns(order: OrderSnapshot) -> bool:
    # Judged by item return status, not by returned quantities.
    any_returned = any(item.is_returned for item in order.items)
    any_pending = any(not item.is_returned for item in order.items)
    return any_returned and any_pending


_Rule = Callable[["OrderSnapshot", datetime], bool]

_RULES: tuple[tuple[_Rule, OrderCategory], ...] = (
    (lambda o, _: o.status == OrderStatus.CANCELLED, OrderCategory.CANCELLED),
    (lambda o, _: o.status == OrderStatus.FLAGGED, OrderCategory.FLAGGED),
    (
        lambda o, _: o.status == OrderStatus.PARTIALLY_RETURNED,
        OrderCategory.PARTIALLY_RETURNED,
    ),
    (
        lambda o, _: o.status
        in (OrderStatus.COMPLETED, OrderStatus.COMPLETED_WITH_ISSUES),
        OrderCategory.RETURNED,
    ),
    (lambda o, _: o.status == OrderStatus.SCHEDULED, OrderCategory.SCHEDULED),
    (lambda o, _: _has_mixed_returns(o), OrderCategory.PARTIALLY_RETURNED),
    (lambda o, now: is_late(o, now), OrderCategory.LATE),
    (lambda o, _: o.status == OrderStatus.ACTIVE, OrderCategory.ONGOING),
)


def classify(order: OrderSnapshot, now: Optional[datetime] = None) -> OrderCategory:
    """Return the single category for *order* at *now* (default: current UTC)."""
    current = _now(now)
    for matches, category in _RULES:
        if matches(order, current):
            return category
    return OrderCategory.ONGOING


def _now(now: Optional[datetime]) -> datetime:
    if now is None:
        return utcnow()
    return parse_instant(now) or utcnow()
