"""Order timeline reconstruction.

The timeline is assembled by two composed functions:

- ``required_milestones(order, events)`` lists the milestones the order
  has reached, in declared precedence order.
- ``resolve(kind, events, order)`` turns one milestone into an entry,
  preferring the first matching audit row and otherwise synthesizing the
  timestamp from order fields with the actor ``"Unknown"``.

``reconstruct`` sorts the entries by timestamp, breaking ties by
precedence.  When the audit log could not be read (``events is None``)
every entry is synthesized; reconstruction itself never raises.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, Iterable, Optional, Sequence

import structlog
from pydantic import BaseModel, ConfigDict

from modules.orders.constants import (
    COMPLETED_STATES,
    UNKNOWN_ACTOR,
    ZERO,
    AuditAction,
    OrderStatus,
)
from modules.orders.domain.classification import resolve_start
from modules.orders.domain.return_ledger import effective
from modules.orders.domain.settlement import damage_fee_total
from modules.orders.domain.values import money, parse_instant

if TYPE_CHECKING:
    from modules.orders.dtos import AuditEventDTO, OrderSnapshot

logger = structlog.get_logger(__name__)


class MilestoneKind(str, enum.Enum):
    """Milestones in declared precedence order."""

    CREATED = "created"
    SCHEDULED = "scheduled"
    STARTED = "started"
    RETURNED = "returned"
    PARTIALLY_RETURNED = "partially_returned"
    FLAGGED = "flagged"
    REFUNDED = "refunded"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


PRECEDENCE: dict[MilestoneKind, int] = {
    kind: index for index, kind in enumerate(MilestoneKind)
}

_LABELS: dict[MilestoneKind, str] = {
    MilestoneKind.CREATED: "Order Created",
    MilestoneKind.SCHEDULED: "Scheduled",
    MilestoneKind.STARTED: "Ongoing",
    MilestoneKind.RETURNED: "Returned",
    MilestoneKind.PARTIALLY_RETURNED: "Partially Returned",
    MilestoneKind.FLAGGED: "Flagged",
    MilestoneKind.REFUNDED: "Refunded",
    MilestoneKind.COMPLETED: "Completed",
    MilestoneKind.CANCELLED: "Cancelled",
}

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_STARTED_STATES = frozenset(
    {
        OrderStatus.ACTIVE,
        OrderStatus.PARTIALLY_RETURNED,
        OrderStatus.COMPLETED,
        OrderStatus.COMPLETED_WITH_ISSUES,
    }
)


class TimelineEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: MilestoneKind
    label: str
    timestamp: datetime
    actor: str
    synthesized: bool


# ---------------------------------------------------------------------------
# Audit matching
# ---------------------------------------------------------------------------


_Matcher = Callable[["AuditEventDTO"], bool]


def _status_change_to(*statuses: str) -> _Matcher:
    def matches(event: AuditEventDTO) -> bool:
        return (
            event.action == AuditAction.STATUS_CHANGED
            and event.new_status in statuses
        )

    return matches


def _action_in(*actions: str) -> _Matcher:
    def matches(event: AuditEventDTO) -> bool:
        return event.action in actions

    return matches


def _any_of(*predicates: _Matcher) -> _Matcher:
    def matches(event: AuditEventDTO) -> bool:
        return any(predicate(event) for predicate in predicates)

    return matches


_MATCHERS: dict[MilestoneKind, _Matcher] = {
    MilestoneKind.CREATED: _action_in(AuditAction.ORDER_CREATED),
    MilestoneKind.SCHEDULED: _any_of(
        _action_in("order_scheduled"),
        _status_change_to(OrderStatus.SCHEDULED),
    ),
    MilestoneKind.STARTED: _any_of(
        _action_in(AuditAction.RENTAL_STARTED),
        _status_change_to(OrderStatus.ACTIVE),
    ),
    MilestoneKind.RETURNED: _any_of(
        _action_in(
            "marked_returned", AuditAction.ITEM_RETURNED, "all_items_returned"
        ),
        _status_change_to(
            OrderStatus.COMPLETED,
            OrderStatus.COMPLETED_WITH_ISSUES,
            OrderStatus.PARTIALLY_RETURNED,
        ),
    ),
    MilestoneKind.PARTIALLY_RETURNED: _any_of(
        _action_in("partial_return"),
        _status_change_to(OrderStatus.PARTIALLY_RETURNED),
    ),
    MilestoneKind.FLAGGED: _any_of(
        _action_in("order_flagged", AuditAction.DAMAGE_RECORDED),
        _status_change_to(OrderStatus.FLAGGED),
    ),
    MilestoneKind.REFUNDED: lambda event: "refund" in (event.action or ""),
    MilestoneKind.COMPLETED: _any_of(
        _action_in("order_completed"),
        _status_change_to(OrderStatus.COMPLETED, OrderStatus.COMPLETED_WITH_ISSUES),
    ),
    MilestoneKind.CANCELLED: _any_of(
        _action_in("order_cancelled"),
        _status_change_to(OrderStatus.CANCELLED),
    ),
}


def _recorded(events: Iterable[AuditEventDTO], kind: MilestoneKind) -> bool:
    return any(_MATCHERS[kind](event) for event in events)


# ---------------------------------------------------------------------------
# Milestones
# ---------------------------------------------------------------------------


def _has_returns(order: OrderSnapshot) -> bool:
    return any(effective(item) > 0 for item in order.items)


def _has_damage(order: OrderSnapshot) -> bool:
    # Item costs count even before the order total is refreshed.
    recorded = money(order.damage_fee_total)
    return max(recorded, damage_fee_total(order)) > ZERO


def required_milestones(
    order: OrderSnapshot, events: Optional[Sequence[AuditEventDTO]] = ()
) -> list[MilestoneKind]:
    """Milestones *order* has reached, in precedence order."""
    events = events or ()
    status = order.status
    reached = {
        MilestoneKind.CREATED: True,
        MilestoneKind.SCHEDULED: status == OrderStatus.SCHEDULED
        or _recorded(events, MilestoneKind.SCHEDULED),
        MilestoneKind.STARTED: status in _STARTED_STATES
        or _has_returns(order)
        or _recorded(events, MilestoneKind.STARTED),
        MilestoneKind.RETURNED: _has_returns(order),
        MilestoneKind.PARTIALLY_RETURNED: status == OrderStatus.PARTIALLY_RETURNED
        or _recorded(events, MilestoneKind.PARTIALLY_RETURNED),
        MilestoneKind.FLAGGED: status == OrderStatus.FLAGGED or _has_damage(order),
        MilestoneKind.REFUNDED: order.security_deposit_refunded
        or money(order.security_deposit_refunded_amount) > ZERO,
        MilestoneKind.COMPLETED: status in COMPLETED_STATES,
        MilestoneKind.CANCELLED: status == OrderStatus.CANCELLED,
    }
    return [kind for kind in MilestoneKind if reached[kind]]


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


def _return_dates(order: OrderSnapshot) -> list[datetime]:
    dates = (parse_instant(item.actual_return_date) for item in order.items)
    return sorted(d for d in dates if d is not None)


def synthesize_timestamp(kind: MilestoneKind, order: OrderSnapshot) -> datetime:
    """Fallback timestamp for *kind* derived from order fields."""
    created = (
        parse_instant(order.created_at)
        or parse_instant(order.booking_date)
        or _EPOCH
    )

    candidate: Optional[datetime] = None
    if kind is MilestoneKind.SCHEDULED:
        candidate = parse_instant(order.booking_date)
    elif kind is MilestoneKind.STARTED:
        candidate = resolve_start(order)
    elif kind is MilestoneKind.RETURNED:
        dates = _return_dates(order)
        candidate = dates[0] if dates else None
    elif kind is MilestoneKind.PARTIALLY_RETURNED:
        dates = _return_dates(order)
        candidate = dates[-1] if dates else None
    elif kind is MilestoneKind.REFUNDED:
        candidate = parse_instant(order.security_deposit_refund_date)
    elif kind in (
        MilestoneKind.FLAGGED,
        MilestoneKind.COMPLETED,
        MilestoneKind.CANCELLED,
    ):
        candidate = parse_instant(order.updated_at)
    return candidate or created


def _label(kind: MilestoneKind, order: OrderSnapshot) -> str:
    if kind is MilestoneKind.FLAGGED and _has_damage(order):
        return "Damaged"
    return _LABELS[kind]


def resolve(
    kind: MilestoneKind,
    events: Optional[Sequence[AuditEventDTO]],
    order: OrderSnapshot,
) -> TimelineEntry:
    """Entry for *kind*: the first matching audit row, else synthesized."""
    matcher = _MATCHERS[kind]
    for event in events or ():
        if not matcher(event):
            continue
        timestamp = parse_instant(event.created_at)
        if timestamp is None:
            continue
        return TimelineEntry(
            kind=kind,
            label=_label(kind, order),
            timestamp=timestamp,
            actor=event.user_name or UNKNOWN_ACTOR,
            synthesized=False,
        )
    return TimelineEntry(
        kind=kind,
        label=_label(kind, order),
        timestamp=synthesize_timestamp(kind, order),
        actor=UNKNOWN_ACTOR,
        synthesized=True,
    )


def reconstruct(
    order: OrderSnapshot, events: Optional[Sequence[AuditEventDTO]]
) -> list[TimelineEntry]:
    """Ordered timeline for *order*; ``events=None`` means the audit read failed."""
    if events is None:
        logger.warning("timeline.audit_unavailable", order_id=str(order.id))
    entries = [
        resolve(kind, events, order) for kind in required_milestones(order, events)
    ]
    return sorted(entries, key=lambda e: (e.timestamp, PRECEDENCE[e.kind]))
