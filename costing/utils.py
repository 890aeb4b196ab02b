from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional, Union

ZERO = Decimal("0")

Number = Union[Decimal, int, float, str]


def to_decimal(value: Optional[Number]) -> Decimal:
    """Coerce a numeric value to Decimal; floats go through str to avoid binary noise."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def normalize_datetime(value: Optional[Union[datetime, date]]) -> datetime:
    """Return a naive UTC datetime. Dates become midnight; None becomes now."""
    if value is None:
        return datetime.now(timezone.utc).replace(tzinfo=None)
    if not isinstance(value, datetime):
        return datetime(value.year, value.month, value.day)
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def format_quantity(value: Decimal) -> str:
    return f"{value:.2f}"
