"""Dashboard transaction filters: type and creation-date predicates.

Evaluation never raises. A bound or creation timestamp that cannot be parsed
excludes the record instead.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Any, Callable, Iterable

from shared.models import DatePreset, FilterValue, Transaction, TypeFilter


TransactionPredicate = Callable[[Transaction], bool]

_FIELD_ALIASES = {
    "type": "type",
    "date_preset": "date_preset",
    "datePreset": "date_preset",
    "from": "from_",
    "from_": "from_",
    "to": "to",
}


def update_filter(value: FilterValue, field: str, new_value: Any) -> FilterValue:
    """Return the next filter state after changing one field.

    Leaving the `range` preset clears both bounds.
    """

    name = _FIELD_ALIASES.get(field)
    if name is None:
        raise ValueError(f"Unknown filter field: {field}")

    data = value.model_dump()
    data[name] = new_value
    if name == "date_preset" and DatePreset(new_value) != DatePreset.RANGE:
        data["from_"] = None
        data["to"] = None
    return FilterValue.model_validate(data)


def _coerce_date(value: Any, tz: tzinfo | None = None) -> date | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        if tz is not None and value.tzinfo is not None:
            value = value.astimezone(tz)
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return _coerce_date(datetime.fromisoformat(text.replace("Z", "+00:00")), tz)
        except ValueError:
            return None
    return None


def week_bounds(today: date) -> tuple[date, date]:
    """Return the Sunday-to-Saturday calendar week containing `today`."""
    start = today - timedelta(days=(today.weekday() + 1) % 7)
    return start, start + timedelta(days=6)


def _type_predicate(type_filter: TypeFilter) -> TransactionPredicate:
    if type_filter == TypeFilter.ALL:
        return lambda _transaction: True
    return lambda transaction: transaction.direction.value == type_filter.value


def _date_predicate(value: FilterValue, today: date, tz: tzinfo | None) -> Callable[[date], bool]:
    preset = value.date_preset
    if preset == DatePreset.TODAY:
        return lambda created: created == today
    if preset == DatePreset.THIS_WEEK:
        start, end = week_bounds(today)
        return lambda created: start <= created <= end
    if preset == DatePreset.THIS_MONTH:
        return lambda created: (created.year, created.month) == (today.year, today.month)

    lower_text, upper_text = value.from_, value.to
    lower = _coerce_date(lower_text, tz)
    upper = _coerce_date(upper_text, tz)
    if (lower_text and lower is None) or (upper_text and upper is None):
        return lambda _created: False
    return lambda created: (lower is None or created >= lower) and (upper is None or created <= upper)


def build_predicate(
    value: FilterValue,
    today: date | None = None,
    *,
    tz: tzinfo | None = None,
) -> TransactionPredicate:
    """Combine the type and date predicates of one filter state."""

    current_day = today or datetime.now(tz or timezone.utc).date()
    matches_type = _type_predicate(value.type)
    matches_date = _date_predicate(value, current_day, tz)

    def _predicate(transaction: Transaction) -> bool:
        if not matches_type(transaction):
            return False
        created = _coerce_date(getattr(transaction, "created_at", None), tz)
        if created is None:
            return False
        return matches_date(created)

    return _predicate


def apply_filter(
    value: FilterValue,
    transactions: Iterable[Transaction],
    today: date | None = None,
    *,
    tz: tzinfo | None = None,
) -> list[Transaction]:
    """Return the transactions matching `value`, preserving input order."""

    predicate = build_predicate(value, today, tz=tz)
    return [transaction for transaction in transactions if predicate(transaction)]
