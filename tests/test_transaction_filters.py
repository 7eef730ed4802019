"""Tests for dashboard transaction filters."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from backend.services.transaction_filters import apply_filter, build_predicate, update_filter, week_bounds
from shared.models import DatePreset, FilterValue, TransactionDirection, TypeFilter
from tests.fakes import make_transaction


SATURDAY = date(2025, 1, 18)


def _at(day: date) -> datetime:
    return datetime(day.year, day.month, day.day, 10, 30, tzinfo=timezone.utc)


def test_default_filter_is_all_types_today() -> None:
    value = FilterValue()

    assert value.type == TypeFilter.ALL
    assert value.date_preset == DatePreset.TODAY
    assert value.from_ is None
    assert value.to is None


def test_filter_value_accepts_ui_aliases() -> None:
    value = FilterValue.model_validate({"type": "crypto_to_fiat", "datePreset": "range", "from": "2025-01-01"})

    assert value.type == TypeFilter.CRYPTO_TO_FIAT
    assert value.date_preset == DatePreset.RANGE
    assert value.from_ == "2025-01-01"


def test_bounds_are_dropped_outside_range_preset() -> None:
    value = FilterValue.model_validate({"datePreset": "this_month", "from": "2025-01-01", "to": "2025-01-31"})

    assert value.from_ is None
    assert value.to is None


def test_leaving_range_preset_clears_both_bounds() -> None:
    value = FilterValue(date_preset=DatePreset.RANGE, from_="2025-01-01", to="2025-01-31")

    updated = update_filter(value, "datePreset", "this_week")

    assert updated.date_preset == DatePreset.THIS_WEEK
    assert updated.from_ is None
    assert updated.to is None
    assert value.from_ == "2025-01-01"


def test_update_filter_keeps_bounds_while_in_range() -> None:
    value = FilterValue(date_preset=DatePreset.RANGE, from_="2025-01-01")

    updated = update_filter(value, "to", "2025-01-31")

    assert updated.from_ == "2025-01-01"
    assert updated.to == "2025-01-31"


def test_update_filter_rejects_unknown_field() -> None:
    with pytest.raises(ValueError, match="Unknown filter field"):
        update_filter(FilterValue(), "status", "pending")


def test_week_bounds_run_sunday_to_saturday() -> None:
    assert week_bounds(SATURDAY) == (date(2025, 1, 12), date(2025, 1, 18))
    assert week_bounds(date(2025, 1, 12)) == (date(2025, 1, 12), date(2025, 1, 18))


def test_this_week_excludes_eight_days_ago_and_includes_two_days_ago() -> None:
    old = make_transaction(created_at=_at(SATURDAY - timedelta(days=8)))
    recent = make_transaction(created_at=_at(SATURDAY - timedelta(days=2)))

    result = apply_filter(FilterValue(date_preset=DatePreset.THIS_WEEK), [old, recent], SATURDAY)

    assert result == [recent]


def test_today_and_this_month_presets() -> None:
    today = make_transaction(created_at=_at(SATURDAY))
    earlier_this_month = make_transaction(created_at=_at(date(2025, 1, 2)))
    last_month = make_transaction(created_at=_at(date(2024, 12, 31)))
    transactions = [today, earlier_this_month, last_month]

    assert apply_filter(FilterValue(), transactions, SATURDAY) == [today]
    assert apply_filter(FilterValue(date_preset=DatePreset.THIS_MONTH), transactions, SATURDAY) == [
        today,
        earlier_this_month,
    ]


def test_type_filter_matches_direction() -> None:
    buy = make_transaction(direction=TransactionDirection.FIAT_TO_CRYPTO, created_at=_at(SATURDAY))
    sell = make_transaction(direction=TransactionDirection.CRYPTO_TO_FIAT, created_at=_at(SATURDAY))

    value = FilterValue(type=TypeFilter.CRYPTO_TO_FIAT)

    assert apply_filter(value, [buy, sell], SATURDAY) == [sell]


def test_range_is_inclusive_and_open_ended_bounds_are_unbounded() -> None:
    first = make_transaction(created_at=_at(date(2025, 1, 1)))
    middle = make_transaction(created_at=_at(date(2025, 1, 10)))
    last = make_transaction(created_at=_at(date(2025, 1, 15)))
    transactions = [first, middle, last]

    closed = FilterValue(date_preset=DatePreset.RANGE, from_="2025-01-01", to="2025-01-10")
    open_start = FilterValue(date_preset=DatePreset.RANGE, to="2025-01-10")

    assert apply_filter(closed, transactions, SATURDAY) == [first, middle]
    assert apply_filter(open_start, transactions, SATURDAY) == [first, middle]


def test_presets_other_than_range_never_read_bounds() -> None:
    today = make_transaction(created_at=_at(SATURDAY))
    last_month = make_transaction(created_at=_at(date(2024, 12, 31)))
    for preset in (DatePreset.TODAY, DatePreset.THIS_WEEK, DatePreset.THIS_MONTH):
        value = FilterValue.model_construct(type=TypeFilter.ALL, date_preset=preset, from_="garbage", to="garbage")

        assert apply_filter(value, [today, last_month], SATURDAY) == [today]


def test_invalid_range_bound_excludes_records_without_raising() -> None:
    transaction = make_transaction(created_at=_at(SATURDAY))
    value = FilterValue(date_preset=DatePreset.RANGE, from_="not-a-date")

    assert apply_filter(value, [transaction], SATURDAY) == []


def test_record_without_parsable_creation_date_is_excluded() -> None:
    class _Broken:
        direction = TransactionDirection.FIAT_TO_CRYPTO
        created_at = "garbage"

    predicate = build_predicate(FilterValue(), SATURDAY)

    assert predicate(_Broken()) is False
