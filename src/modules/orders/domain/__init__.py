"""Order lifecycle & settlement engine.

Pure functions over immutable ``OrderSnapshot`` instances.  Nothing in
this package performs I/O or mutates its input, so every call can be
repeated on the same snapshot with identical results.
"""

from modules.orders.domain.classification import CATEGORY_LABELS, classify
from modules.orders.domain.return_ledger import (
    ReturnLedger,
    ReturnStatistics,
    summarize,
)
from modules.orders.domain.settlement import Settlement, settle
from modules.orders.domain.timeline import TimelineEntry, reconstruct

__all__ = [
    "CATEGORY_LABELS",
    "ReturnLedger",
    "ReturnStatistics",
    "Settlement",
    "TimelineEntry",
    "classify",
    "reconstruct",
    "settle",
    "summarize",
]
