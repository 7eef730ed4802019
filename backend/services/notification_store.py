"""In-process notification store with read state, de-duplication and listeners."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Literal
from uuid import UUID

from backend.repositories.notifications_repository import NotificationsRepository
from shared.errors import NotFoundError, OtcError
from shared.models import Notification
from shared.observers import ObserverList


logger = logging.getLogger(__name__)

BADGE_CAP = 99


@dataclass(frozen=True, slots=True)
class NotificationStoreEvent:
    """Change pushed to store listeners."""

    kind: Literal["added", "read", "all_read"]
    user_id: UUID
    notification: Notification | None = None


def format_badge(count: int) -> str:
    """Return the badge label; the underlying count stays exact."""
    if count <= 0:
        return ""
    if count > BADGE_CAP:
        return f"{BADGE_CAP}+"
    return str(count)


def group_by_day(notifications: list[Notification], today: date) -> dict[str, list[Notification]]:
    """Group notifications into today / yesterday / earlier for the drawer."""

    groups: dict[str, list[Notification]] = {"today": [], "yesterday": [], "earlier": []}
    yesterday = today - timedelta(days=1)
    for notification in notifications:
        created = notification.created_at.date()
        if created == today:
            groups["today"].append(notification)
        elif created == yesterday:
            groups["yesterday"].append(notification)
        else:
            groups["earlier"].append(notification)
    return groups


class NotificationStore:
    """Append-only notification log keyed by recipient.

    `add` is idempotent on `event_key`, `mark_read` on the notification id.
    When a history repository is configured, writes are mirrored to it; the
    in-process log stays authoritative for unread counts.
    """

    def __init__(self, repository: NotificationsRepository | None = None) -> None:
        self._repository = repository
        self._items: dict[UUID, Notification] = {}
        self._by_event_key: dict[str, UUID] = {}
        self._lock = threading.RLock()
        self._observers: ObserverList[NotificationStoreEvent] = ObserverList("notification_store")

    def subscribe(self, listener: Callable[[NotificationStoreEvent], None]) -> Callable[[], None]:
        return self._observers.subscribe(listener)

    def add(self, notification: Notification) -> UUID:
        with self._lock:
            if notification.event_key is not None:
                existing_id = self._by_event_key.get(notification.event_key)
                if existing_id is not None:
                    logger.info(
                        "notification_duplicate_ignored event_key=%s notification_id=%s",
                        notification.event_key,
                        existing_id,
                    )
                    return existing_id
                self._by_event_key[notification.event_key] = notification.id
            stored = notification.model_copy(update={"read": False})
            self._items[stored.id] = stored

        logger.info(
            "notification_added notification_id=%s user_id=%s type=%s",
            stored.id,
            stored.user_id,
            stored.type.value,
        )
        self._mirror("add", lambda repository: repository.add_notification(stored))
        self._observers.dispatch(NotificationStoreEvent(kind="added", user_id=stored.user_id, notification=stored))
        return stored.id

    def get(self, notification_id: UUID) -> Notification | None:
        return self._items.get(notification_id)

    def mark_read(self, notification_id: UUID) -> Notification:
        with self._lock:
            current = self._items.get(notification_id)
            if current is None:
                raise NotFoundError("Notification not found", details={"notification_id": str(notification_id)})
            if current.read:
                return current
            updated = current.model_copy(update={"read": True})
            self._items[notification_id] = updated

        self._mirror("mark_read", lambda repository: repository.mark_read(updated.user_id, notification_id))
        self._observers.dispatch(NotificationStoreEvent(kind="read", user_id=updated.user_id, notification=updated))
        return updated

    def mark_all_read(self, user_id: UUID) -> int:
        changed = 0
        with self._lock:
            for notification_id, item in list(self._items.items()):
                if item.user_id == user_id and not item.read:
                    self._items[notification_id] = item.model_copy(update={"read": True})
                    changed += 1
        if changed:
            self._mirror("mark_all_read", lambda repository: repository.mark_all_read(user_id))
            self._observers.dispatch(NotificationStoreEvent(kind="all_read", user_id=user_id))
        return changed

    def unread_count(self, user_id: UUID) -> int:
        return sum(1 for item in self._items.values() if item.user_id == user_id and not item.read)

    def list_notifications(self, user_id: UUID, *, limit: int | None = None) -> list[Notification]:
        """Return the recipient's notifications newest first."""
        items = [item for item in self._items.values() if item.user_id == user_id]
        items.sort(key=lambda item: item.created_at, reverse=True)
        return items[:limit] if limit is not None else items

    def hydrate(self, user_id: UUID, *, limit: int = 100) -> int:
        """Load a recipient's stored history without notifying listeners.

        Returns how many records were new to this store. Store failures
        propagate to the caller.
        """

        if self._repository is None:
            return 0
        loaded = 0
        history = self._repository.list_notifications(user_id, limit=limit)
        with self._lock:
            for item in history:
                if item.id in self._items:
                    continue
                if item.event_key is not None:
                    if item.event_key in self._by_event_key:
                        continue
                    self._by_event_key[item.event_key] = item.id
                self._items[item.id] = item
                loaded += 1
        return loaded

    def _mirror(self, operation: str, write: Callable[[NotificationsRepository], object]) -> None:
        if self._repository is None:
            return
        try:
            write(self._repository)
        except (OtcError, RuntimeError):
            logger.warning("notification_history_write_failed operation=%s", operation, exc_info=True)


def today_utc() -> date:
    return datetime.now(timezone.utc).date()
