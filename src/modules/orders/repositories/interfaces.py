"""Order and audit-log repository interfaces.

``IOrderRepository`` extends ``IRepository[Order]`` with the mutations of
the rental lifecycle.  Each mutation locks the order row, writes its
audit rows in the same transaction and returns the updated order, or
raises.  Validation is the caller's job: the repository writes exactly
what it is given.

``IAuditLogRepository`` is the read side of the audit trail used by the
timeline.  Its failure must never fail the rest of an order view.

The Service Layer depends exclusively on these contracts (DIP).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence
from uuid import UUID

from modules.core.repositories.interfaces import IRepository, Queryable

if TYPE_CHECKING:
    from modules.orders.domain.return_ledger import ItemReturnChange
    from modules.orders.dtos import AuditEventDTO
    from modules.orders.models import Order, OrderAuditEvent


class IOrderRepository(IRepository["Order"]):
    """Repository contract for the Order aggregate root.

    The Order aggregate includes its OrderItem children.  Mutations must
    be atomic and recompute ``damage_fee_total`` / ``total_amount``
    whenever item damage or the late fee changes.
    """

    @abstractmethod
    def create(self, data: Dict[str, Any]) -> Order:
        """Create an order with its items atomically.

        ``data`` holds the order fields plus ``items`` (list of dicts with
        ``product_name``, ``quantity``, ``price_per_day``, ``days``).
        """

    @abstractmethod
    def get_by_id(self, id: str) -> Optional[Order]:
        """Retrieve an order with prefetched items."""

    @abstractmethod
    def get_for_update(self, id: str) -> Optional[Order]:
        """Retrieve an order holding a row-level lock."""

    @abstractmethod
    def list(self, filters: Optional[Dict[str, Any]] = None) -> Queryable[Order]:
        """List orders (lazily) with optional filters."""

    @abstractmethod
    def get_by_idempotency_key(self, key: str) -> Optional[Order]:
        """Retrieve an order by its idempotency key."""

    @abstractmethod
    def update_status(
        self,
        order_id: UUID,
        new_status: str,
        late_fee: Optional[Decimal] = None,
        notes: str = "",
        user: Any = None,
    ) -> Order:
        """Move the order to *new_status*, optionally setting the late fee."""

    @abstractmethod
    def start_rental(
        self, order_id: UUID, started_at: datetime, user: Any = None
    ) -> Order:
        """Activate a scheduled order."""

    @abstractmethod
    def update_late_fee(
        self, order_id: UUID, amount: Decimal, user: Any = None
    ) -> Order:
        """Set the late fee and refresh ``total_amount``."""

    @abstractmethod
    def update_item_damage(
        self,
        item_id: UUID,
        cost: Optional[Decimal],
        description: Optional[str],
        user: Any = None,
    ) -> Order:
        """Write damage fields of one item and refresh the order totals."""

    @abstractmethod
    def process_return(
        self,
        order_id: UUID,
        changes: Sequence[ItemReturnChange],
        new_status: Optional[str] = None,
        user: Any = None,
    ) -> Order:
        """Persist ledger-validated item changes and the resulting status."""

    @abstractmethod
    def refund_security_deposit(
        self, order_id: UUID, amount: Decimal, user: Any = None
    ) -> Order:
        """Record a deposit refund of *amount*."""

    @abstractmethod
    def collect_outstanding_amount(
        self, order_id: UUID, amount: Decimal, user: Any = None
    ) -> Order:
        """Record an additional payment of *amount*."""


class IAuditLogRepository(ABC):
    """Audit trail contract."""

    @abstractmethod
    def fetch_timeline(self, order_id: UUID) -> List[AuditEventDTO]:
        """Audit rows of the order, oldest first.  May raise."""

    @abstractmethod
    def record(
        self,
        order_id: UUID,
        action: str,
        notes: str = "",
        user: Any = None,
        order_item_id: Optional[UUID] = None,
        previous_status: Optional[str] = None,
        new_status: Optional[str] = None,
    ) -> OrderAuditEvent:
        """Append one audit row."""
