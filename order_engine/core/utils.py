"""
Utility functions for the application.
"""
import math
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Optional

SECONDS_PER_DAY = 24 * 60 * 60
CENT = Decimal("0.01")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalise a datetime to aware UTC.

    Naive values are treated as UTC; SQLite hands timestamps back without tzinfo.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def days_between_ceil(earlier: datetime, later: datetime) -> int:
    """Whole days from ``earlier`` to ``later``, rounded up."""
    seconds = (as_utc(later) - as_utc(earlier)).total_seconds()
    return max(0, math.ceil(seconds / SECONDS_PER_DAY))


def to_decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    # str() avoids binary float artefacts (0.1 -> 0.1000000000000000055...)
    return Decimal(str(value))


def money(value: Any) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)
