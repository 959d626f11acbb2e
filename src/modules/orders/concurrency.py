"""Per-order in-flight guard.

At most one mutating operation may run for an order at a time within a
process.  A second call for the same order fails immediately with
``OperationInProgress``; nothing is queued or retried.  Across processes
the row lock taken by the repository serialises writers.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator

import structlog

from modules.orders.exceptions import OperationInProgress

logger = structlog.get_logger(__name__)


class InFlightGuard:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._busy: set[str] = set()

    def is_busy(self, order_id: object) -> bool:
        with self._lock:
            return str(order_id) in self._busy

    @contextmanager
    def hold(self, order_id: object, operation: str = "") -> Iterator[None]:
        key = str(order_id)
        with self._lock:
            if key in self._busy:
                logger.warning(
                    "order.operation_in_progress", order_id=key, operation=operation
                )
                raise OperationInProgress(
                    "Another operation is already running for this order."
                )
            self._busy.add(key)
        try:
            yield
        finally:
            with self._lock:
                self._busy.discard(key)


in_flight = InFlightGuard()
