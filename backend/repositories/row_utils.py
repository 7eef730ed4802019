"""Helpers converting PostgREST row values into model fields."""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any


def parse_timestamp(value: Any) -> datetime | None:
    """Return an aware datetime from a PostgREST timestamp value."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and value.strip():
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_decimal(value: Any) -> Decimal:
    return Decimal(str(value))


def isoformat_or_none(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
