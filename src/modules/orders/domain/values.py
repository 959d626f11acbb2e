"""Money and instant helpers shared by the engine modules."""

from __future__ import annotations

from datetime import date, datetime, time
from datetime import timezone as dt_timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime

from modules.orders.constants import MONEY_QUANTUM, MONEY_TOLERANCE, ZERO

# ---------------------------------------------------------------------------
# Money
# ---------------------------------------------------------------------------


def money(value: Any) -> Decimal:
    """Coerce an optional monetary value to ``Decimal`` (absent means 0)."""
    if value is None or value == "":
        return ZERO
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return ZERO


def quantize(value: Any) -> Decimal:
    """Round to two decimal places, half up."""
    return money(value).quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def exceeds(amount: Decimal, limit: Decimal) -> bool:
    """``amount > limit`` beyond the rounding tolerance."""
    return amount > limit + MONEY_TOLERANCE


def differs(a: Decimal, b: Decimal) -> bool:
    return abs(a - b) > MONEY_TOLERANCE


# ---------------------------------------------------------------------------
# Instants
# ---------------------------------------------------------------------------


def utcnow() -> datetime:
    return timezone.now().astimezone(dt_timezone.utc)


def as_aware(value: datetime) -> datetime:
    """Interpret naive datetimes as UTC."""
    if timezone.is_naive(value):
        return value.replace(tzinfo=dt_timezone.utc)
    return value


def parse_instant(value: Any) -> Optional[datetime]:
    """Parse an ISO date or datetime into an aware datetime.

    Date-only values resolve to midnight UTC.  Anything unparsable
    returns ``None``; this function never raises.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_aware(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=dt_timezone.utc)
    if not isinstance(value, str):
        return None
    try:
        parsed = parse_datetime(value)
        if parsed is not None:
            return as_aware(parsed)
        parsed_date = parse_date(value)
    except ValueError:
        return None
    if parsed_date is None:
        return None
    return datetime.combine(parsed_date, time.min, tzinfo=dt_timezone.utc)
