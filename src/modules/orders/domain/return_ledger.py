"""Per-item return state and its order-level aggregation.

An item marked ``returned`` without an explicit ``returned_quantity`` is
fully returned; that shorthand is resolved here and nowhere else:

    effective(item) = quantity                 if returned and no returned_quantity
                    = returned_quantity or 0   otherwise
    pending(item)   = quantity - effective(item)

``ReturnLedger`` stages validated return edits against one snapshot.  It
owns the per-item tagged state (``NotReturned``, ``PendingEdit``,
``Committed``) and hands the repository a list of ``ItemReturnChange``
objects; it never performs I/O.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from types import MappingProxyType
from typing import TYPE_CHECKING, Iterable, Literal, Mapping, Optional, Union
from uuid import UUID

import structlog
from pydantic import BaseModel, ConfigDict

from modules.orders.constants import ZERO, ReturnStatus
from modules.orders.domain.values import money, parse_instant, utcnow
from modules.orders.exceptions import (
    InvalidDamageCost,
    InvalidReturnQuantity,
    OrderItemNotFound,
    ReturnQuantityExceeded,
)

if TYPE_CHECKING:
    from modules.orders.dtos import OrderItemSnapshot, OrderSnapshot

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Quantities
# ---------------------------------------------------------------------------


def _returned_without_quantity(item: OrderItemSnapshot) -> bool:
    return (
        item.return_status == ReturnStatus.RETURNED and item.returned_quantity is None
    )


def effective(item: OrderItemSnapshot) -> int:
    """Units of *item* that are back."""
    if _returned_without_quantity(item):
        return item.quantity
    return item.returned_quantity or 0


def pending(item: OrderItemSnapshot) -> int:
    """Units of *item* still out."""
    if _returned_without_quantity(item):
        return 0
    return max(item.quantity - (item.returned_quantity or 0), 0)


class ReturnStatistics(BaseModel):
    """Order-level return aggregates."""

    model_config = ConfigDict(frozen=True)

    total_items: int
    total_quantity: int
    returned_quantity: int
    pending_quantity: int
    full_returns_count: int
    partial_returns_count: int
    pending_count: int
    state: Literal["returned", "partial", "pending"]


def summarize(items: Iterable[OrderItemSnapshot]) -> ReturnStatistics:
    items = list(items)
    returned_quantity = sum(effective(item) for item in items)
    pending_quantity = sum(pending(item) for item in items)

    if (
        returned_quantity > 0
        and pending_quantity == 0
        and all(effective(item) >= item.quantity for item in items)
    ):
        state = "returned"
    elif returned_quantity > 0 and pending_quantity > 0:
        state = "partial"
    else:
        state = "pending"

    return ReturnStatistics(
        total_items=len(items),
        total_quantity=sum(item.quantity for item in items),
        returned_quantity=returned_quantity,
        pending_quantity=pending_quantity,
        full_returns_count=sum(
            1
            for item in items
            if item.return_status == ReturnStatus.RETURNED
            and effective(item) >= item.quantity
        ),
        partial_returns_count=sum(
            1
            for item in items
            if item.return_status == ReturnStatus.RETURNED
            and item.returned_quantity is not None
            and 0 < item.returned_quantity < item.quantity
        ),
        pending_count=sum(
            1 for item in items if item.return_status != ReturnStatus.RETURNED
        ),
        state=state,
    )


# ---------------------------------------------------------------------------
# Tagged per-item state
# ---------------------------------------------------------------------------


class NotReturned(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["not_returned"] = "not_returned"


class PendingEdit(BaseModel):
    """A staged, validated return that has not been persisted yet."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["pending_edit"] = "pending_edit"
    quantity: int
    damage_cost: Optional[Decimal] = None
    damage_description: Optional[str] = None


class Committed(BaseModel):
    """A return already recorded in the snapshot."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["committed"] = "committed"
    quantity: int
    returned_at: Optional[datetime] = None
    damage_cost: Optional[Decimal] = None
    damage_description: Optional[str] = None


ReturnState = Union[NotReturned, PendingEdit, Committed]


class ItemReturnChange(BaseModel):
    """Validated field values the repository writes for one item.

    ``update_return`` / ``update_damage`` tell the repository which group
    of fields the change carries.
    """

    model_config = ConfigDict(frozen=True)

    item_id: UUID
    action: Literal["apply", "revert", "damage"]
    update_return: bool = False
    return_status: str = ReturnStatus.NOT_YET_RETURNED
    returned_quantity: Optional[int] = None
    returned_delta: int = 0
    actual_return_date: Optional[datetime] = None
    missing_note: Optional[str] = None
    update_damage: bool = False
    damage_cost: Optional[Decimal] = None
    damage_description: Optional[str] = None


def state_of(item: OrderItemSnapshot) -> ReturnState:
    """Tagged state of a persisted item."""
    returned = effective(item)
    if item.return_status != ReturnStatus.RETURNED and returned == 0:
        return NotReturned()
    return Committed(
        quantity=returned,
        returned_at=parse_instant(item.actual_return_date),
        damage_cost=item.damage_cost,
        damage_description=item.damage_description,
    )


def _damage_cost(value: Optional[Decimal]) -> Optional[Decimal]:
    """Validate a damage cost; absent or zero clears it."""
    if value is None:
        return None
    cost = money(value)
    if cost < ZERO:
        raise InvalidDamageCost("Damage cost cannot be negative.")
    if cost == ZERO:
        return None
    return cost


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


class ReturnLedger:
    """Stages return edits for the items of one order snapshot.

    Every check runs against the working copy of the snapshot the ledger
    was built from, so two edits of the same item within one ledger see
    each other.
    """

    def __init__(
        self,
        items: Iterable[OrderItemSnapshot],
        now: Optional[datetime] = None,
    ) -> None:
        self._items: dict[UUID, OrderItemSnapshot] = {item.id: item for item in items}
        self._states: dict[UUID, ReturnState] = {
            item_id: state_of(item) for item_id, item in self._items.items()
        }
        self._changes: dict[UUID, ItemReturnChange] = {}
        self._now = now or utcnow()

    @classmethod
    def from_order(
        cls, order: OrderSnapshot, now: Optional[datetime] = None
    ) -> ReturnLedger:
        return cls(order.items, now=now)

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def states(self) -> Mapping[UUID, ReturnState]:
        return MappingProxyType(self._states)

    @property
    def items(self) -> list[OrderItemSnapshot]:
        return list(self._items.values())

    def statistics(self) -> ReturnStatistics:
        """Aggregates as they will be once the staged changes are persisted."""
        return summarize(self._items.values())

    def pending_for(self, item_id: UUID) -> int:
        return pending(self._get(item_id))

    def changes(self) -> list[ItemReturnChange]:
        return [self._changes[key] for key in self._items if key in self._changes]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def apply_return(
        self,
        item_id: UUID,
        quantity: int,
        damage_cost: Optional[Decimal] = None,
        damage_description: Optional[str] = None,
        missing_note: Optional[str] = None,
    ) -> Optional[ItemReturnChange]:
        """Stage *quantity* more units of the item as returned.

        A zero quantity stages nothing but still records supplied damage.
        """
        item = self._get(item_id)
        if quantity < 0:
            raise InvalidReturnQuantity("Returned quantity cannot be negative.")
        available = pending(item)
        if quantity > available:
            raise ReturnQuantityExceeded(
                f"Cannot return {quantity} of '{item.product_name}': "
                f"only {available} pending."
            )
        # An omitted field keeps what the item already records.
        if damage_cost is None:
            cost = item.damage_cost
        else:
            cost = _damage_cost(damage_cost)
        if damage_description is None:
            description = item.damage_description
        else:
            description = damage_description

        if quantity == 0:
            if damage_cost is None and damage_description is None:
                return None
            return self.record_damage(item_id, cost, description)

        new_quantity = effective(item) + quantity
        update_damage = damage_cost is not None or damage_description is not None
        change = self._merge(
            item_id,
            action="apply",
            update_return=True,
            return_status=ReturnStatus.RETURNED,
            returned_quantity=new_quantity,
            returned_delta=quantity,
            actual_return_date=self._now,
            missing_note=missing_note,
            **self._damage_fields(item, update_damage, cost, description),
        )
        self._items[item_id] = item.model_copy(
            update={
                "return_status": ReturnStatus.RETURNED,
                "returned_quantity": new_quantity,
                "actual_return_date": self._now.isoformat(),
                "missing_note": missing_note,
                "damage_cost": change.damage_cost,
                "damage_description": change.damage_description,
            }
        )
        self._states[item_id] = PendingEdit(
            quantity=quantity,
            damage_cost=change.damage_cost,
            damage_description=change.damage_description,
        )
        logger.debug(
            "return_ledger.apply",
            item_id=str(item_id),
            quantity=quantity,
            returned_quantity=new_quantity,
        )
        return change

    def revert(
        self, item_id: UUID, clear_damage: bool = False
    ) -> Optional[ItemReturnChange]:
        """Stage the item back to not returned.

        Recorded damage survives unless *clear_damage* is set.
        """
        item = self._get(item_id)
        has_return = (
            item.return_status == ReturnStatus.RETURNED
            or item.returned_quantity is not None
            or item.actual_return_date is not None
            or item.missing_note is not None
        )
        has_damage = item.damage_cost is not None or item.damage_description is not None
        if not has_return and not (clear_damage and has_damage):
            return None

        change = self._merge(
            item_id,
            action="revert",
            update_return=True,
            return_status=ReturnStatus.NOT_YET_RETURNED,
            returned_quantity=None,
            returned_delta=-effective(item),
            actual_return_date=None,
            missing_note=None,
            **self._damage_fields(item, clear_damage, None, None),
        )
        self._items[item_id] = item.model_copy(
            update={
                "return_status": ReturnStatus.NOT_YET_RETURNED,
                "returned_quantity": None,
                "actual_return_date": None,
                "missing_note": None,
                "damage_cost": change.damage_cost,
                "damage_description": change.damage_description,
            }
        )
        self._states[item_id] = NotReturned()
        logger.debug(
            "return_ledger.revert", item_id=str(item_id), clear_damage=clear_damage
        )
        return change

    def record_damage(
        self,
        item_id: UUID,
        damage_cost: Optional[Decimal] = None,
        damage_description: Optional[str] = None,
    ) -> ItemReturnChange:
        """Stage a damage-only update, allowed whatever the return state."""
        item = self._get(item_id)
        cost = _damage_cost(damage_cost)
        change = self._merge(
            item_id,
            action="damage",
            **self._damage_fields(item, True, cost, damage_description),
        )
        self._items[item_id] = item.model_copy(
            update={"damage_cost": cost, "damage_description": damage_description}
        )
        state = self._states[item_id]
        if not isinstance(state, NotReturned):
            self._states[item_id] = state.model_copy(
                update={"damage_cost": cost, "damage_description": damage_description}
            )
        return change

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _get(self, item_id: UUID) -> OrderItemSnapshot:
        try:
            return self._items[item_id]
        except KeyError:
            raise OrderItemNotFound(
                f"Item {item_id} is not part of this order."
            ) from None

    @staticmethod
    def _damage_fields(
        item: OrderItemSnapshot,
        update: bool,
        cost: Optional[Decimal],
        description: Optional[str],
    ) -> dict:
        if not update:
            return {
                "damage_cost": item.damage_cost,
                "damage_description": item.damage_description,
            }
        return {
            "update_damage": True,
            "damage_cost": cost,
            "damage_description": description,
        }

    def _merge(self, item_id: UUID, **fields) -> ItemReturnChange:
        """Fold *fields* into the change already staged for the item."""
        previous = self._changes.get(item_id)
        if previous is None:
            change = ItemReturnChange(item_id=item_id, **fields)
        else:
            merged = dict(fields)
            merged["update_return"] = previous.update_return or fields.get(
                "update_return", False
            )
            merged["update_damage"] = previous.update_damage or fields.get(
                "update_damage", False
            )
            if not fields.get("update_return"):
                for key in (
                    "action",
                    "return_status",
                    "returned_quantity",
                    "actual_return_date",
                    "missing_note",
                ):
                    merged[key] = getattr(previous, key)
                merged["returned_delta"] = previous.returned_delta
            else:
                merged["returned_delta"] = previous.returned_delta + fields.get(
                    "returned_delta", 0
                )
            change = previous.model_copy(update=merged)
        self._changes[item_id] = change
        return change


__all__ = [
    "Committed",
    "ItemReturnChange",
    "NotReturned",
    "PendingEdit",
    "ReturnLedger",
    "ReturnState",
    "ReturnStatistics",
    "effective",
    "pending",
    "state_of",
    "summarize",
]
