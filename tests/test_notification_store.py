"""Tests for the in-process notification store."""

from __future__ import annotations

from datetime import date, timedelta
from uuid import uuid4

import pytest

from backend.repositories.notifications_repository import InMemoryNotificationsRepository
from backend.services.notification_store import NotificationStore, format_badge, group_by_day
from shared.errors import NotFoundError, TransportError
from tests.fakes import FIXED_NOW, OWNER_ID, TRADER_A_ID, make_notification


def test_add_inserts_unread_and_returns_id() -> None:
    store = NotificationStore()
    notification = make_notification().model_copy(update={"read": True})

    notification_id = store.add(notification)

    assert notification_id == notification.id
    assert store.get(notification_id).read is False
    assert store.unread_count(OWNER_ID) == 1


def test_mark_read_twice_keeps_unread_count_after_first_call() -> None:
    store = NotificationStore()
    first = store.add(make_notification())
    store.add(make_notification())

    store.mark_read(first)
    after_first = store.unread_count(OWNER_ID)
    store.mark_read(first)

    assert after_first == 1
    assert store.unread_count(OWNER_ID) == 1


def test_mark_read_unknown_id_raises_not_found() -> None:
    with pytest.raises(NotFoundError):
        NotificationStore().mark_read(uuid4())


def test_duplicate_event_key_does_not_double_count() -> None:
    store = NotificationStore()
    first_id = store.add(make_notification(event_key="tx-1:completed"))

    second_id = store.add(make_notification(event_key="tx-1:completed"))

    assert second_id == first_id
    assert store.unread_count(OWNER_ID) == 1
    assert len(store.list_notifications(OWNER_ID)) == 1


def test_redelivery_after_read_keeps_notification_read() -> None:
    store = NotificationStore()
    notification_id = store.add(make_notification(event_key="tx-1:completed"))
    store.mark_read(notification_id)

    store.add(make_notification(event_key="tx-1:completed"))

    assert store.unread_count(OWNER_ID) == 0


def test_unread_count_matches_records_after_interleaving() -> None:
    store = NotificationStore()
    ids = [store.add(make_notification()) for _ in range(5)]
    store.add(make_notification(user_id=TRADER_A_ID))
    store.mark_read(ids[1])
    ids.append(store.add(make_notification()))
    store.mark_read(ids[3])
    store.mark_read(ids[1])

    expected = sum(1 for item in store.list_notifications(OWNER_ID) if not item.read)
    assert store.unread_count(OWNER_ID) == expected == 4
    assert store.unread_count(TRADER_A_ID) == 1


def test_mark_all_read_only_touches_recipient() -> None:
    store = NotificationStore()
    store.add(make_notification())
    store.add(make_notification())
    store.add(make_notification(user_id=TRADER_A_ID))

    assert store.mark_all_read(OWNER_ID) == 2
    assert store.mark_all_read(OWNER_ID) == 0
    assert store.unread_count(OWNER_ID) == 0
    assert store.unread_count(TRADER_A_ID) == 1


def test_list_notifications_newest_first_with_limit() -> None:
    store = NotificationStore()
    older = store.add(make_notification(created_at=FIXED_NOW - timedelta(hours=2)))
    newer = store.add(make_notification(created_at=FIXED_NOW))

    assert [item.id for item in store.list_notifications(OWNER_ID)] == [newer, older]
    assert [item.id for item in store.list_notifications(OWNER_ID, limit=1)] == [newer]


def test_listeners_run_in_registration_order() -> None:
    store = NotificationStore()
    calls: list[str] = []
    store.subscribe(lambda event: calls.append(f"first:{event.kind}"))
    store.subscribe(lambda event: calls.append(f"second:{event.kind}"))

    notification_id = store.add(make_notification())
    store.mark_read(notification_id)
    store.mark_read(notification_id)

    assert calls == ["first:added", "second:added", "first:read", "second:read"]


def test_unsubscribe_during_dispatch_keeps_in_flight_delivery() -> None:
    store = NotificationStore()
    calls: list[str] = []
    unsubscribers = {}

    def _first(event) -> None:
        calls.append("first")
        unsubscribers["second"]()

    unsubscribers["first"] = store.subscribe(_first)
    unsubscribers["second"] = store.subscribe(lambda event: calls.append("second"))

    store.add(make_notification())
    store.add(make_notification())

    assert calls == ["first", "second", "first"]


def test_failing_listener_does_not_block_others() -> None:
    store = NotificationStore()
    calls: list[str] = []

    def _broken(event) -> None:
        raise RuntimeError("listener failure")

    store.subscribe(_broken)
    store.subscribe(lambda event: calls.append(event.kind))

    store.add(make_notification())

    assert calls == ["added"]


def test_history_write_failure_is_logged_not_raised(caplog) -> None:
    class _FailingRepository(InMemoryNotificationsRepository):
        def add_notification(self, notification):
            raise TransportError("store down")

    store = NotificationStore(repository=_FailingRepository())

    store.add(make_notification())

    assert store.unread_count(OWNER_ID) == 1
    assert "notification_history_write_failed" in caplog.text


def test_hydrate_loads_history_once_without_dispatch() -> None:
    repository = InMemoryNotificationsRepository()
    stored = repository.add_notification(make_notification(event_key="tx-9:completed"))
    store = NotificationStore(repository=repository)
    events: list[str] = []
    store.subscribe(lambda event: events.append(event.kind))

    assert store.hydrate(OWNER_ID) == 1
    assert store.hydrate(OWNER_ID) == 0
    assert store.get(stored.id) is not None
    assert store.add(make_notification(event_key="tx-9:completed")) == stored.id
    assert events == []


@pytest.mark.parametrize(
    ("count", "label"),
    [(0, ""), (1, "1"), (99, "99"), (100, "99+"), (250, "99+")],
)
def test_format_badge_caps_display_only(count: int, label: str) -> None:
    assert format_badge(count) == label


def test_group_by_day_splits_today_yesterday_earlier() -> None:
    today = date(2025, 1, 18)
    items = [
        make_notification(created_at=FIXED_NOW),
        make_notification(created_at=FIXED_NOW - timedelta(days=1)),
        make_notification(created_at=FIXED_NOW - timedelta(days=5)),
    ]

    groups = group_by_day(items, today)

    assert [len(groups[key]) for key in ("today", "yesterday", "earlier")] == [1, 1, 1]
