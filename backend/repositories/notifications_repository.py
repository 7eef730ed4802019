"""Notification history persistence.

Inserts are idempotent on `event_key`: storing a notification whose key is
already present returns the stored record untouched.
"""

from __future__ import annotations

import threading
from typing import Any, Protocol
from uuid import UUID

from backend.db.supabase_client import SupabaseClient
from backend.repositories.row_utils import parse_timestamp
from shared.models import Notification, NotificationPayload


_NOTIFICATION_COLUMNS = "id,user_id,type,title,message,severity,source,payload,read,event_key,created_at"


class NotificationsRepository(Protocol):
    def add_notification(self, notification: Notification) -> Notification:
        """Store one notification, returning the existing one for a known event key."""

    def list_notifications(self, user_id: UUID, *, limit: int = 100) -> list[Notification]:
        """Return a recipient's notifications newest first."""

    def mark_read(self, user_id: UUID, notification_id: UUID) -> bool:
        """Flag one notification read; False when it does not belong to the user."""

    def mark_all_read(self, user_id: UUID) -> int:
        """Flag every unread notification of the user read and return how many changed."""


class InMemoryNotificationsRepository:
    """In-memory notification history used by tests/dev."""

    def __init__(self) -> None:
        self._items: dict[UUID, Notification] = {}
        self._by_event_key: dict[str, UUID] = {}
        self._lock = threading.Lock()

    def add_notification(self, notification: Notification) -> Notification:
        with self._lock:
            if notification.event_key is not None:
                existing_id = self._by_event_key.get(notification.event_key)
                if existing_id is not None:
                    return self._items[existing_id]
                self._by_event_key[notification.event_key] = notification.id
            self._items[notification.id] = notification
        return notification

    def list_notifications(self, user_id: UUID, *, limit: int = 100) -> list[Notification]:
        items = [item for item in self._items.values() if item.user_id == user_id]
        items.sort(key=lambda item: item.created_at, reverse=True)
        return items[:limit]

    def mark_read(self, user_id: UUID, notification_id: UUID) -> bool:
        with self._lock:
            item = self._items.get(notification_id)
            if item is None or item.user_id != user_id:
                return False
            if not item.read:
                self._items[notification_id] = item.model_copy(update={"read": True})
            return True

    def mark_all_read(self, user_id: UUID) -> int:
        changed = 0
        with self._lock:
            for notification_id, item in list(self._items.items()):
                if item.user_id == user_id and not item.read:
                    self._items[notification_id] = item.model_copy(update={"read": True})
                    changed += 1
        return changed


class SupabaseNotificationsRepository:
    """Supabase-backed repository over the `notifications` table."""

    def __init__(self, client: SupabaseClient) -> None:
        self._client = client

    @staticmethod
    def _parse_row(row: dict[str, Any]) -> Notification:
        raw_payload = row.get("payload")
        return Notification(
            id=row.get("id"),
            user_id=row.get("user_id"),
            type=row.get("type"),
            title=str(row.get("title") or ""),
            message=str(row.get("message") or ""),
            severity=row.get("severity") or "info",
            source=str(row.get("source") or "otc-desk"),
            payload=NotificationPayload.model_validate(raw_payload) if isinstance(raw_payload, dict) else None,
            read=bool(row.get("read")),
            event_key=row.get("event_key"),
            created_at=parse_timestamp(row.get("created_at")),
        )

    def add_notification(self, notification: Notification) -> Notification:
        payload = notification.model_dump(mode="json")
        if notification.event_key is None:
            rows = self._client.post_rows(
                table="notifications",
                payload=payload,
                query={"select": _NOTIFICATION_COLUMNS},
            )
        else:
            rows = self._client.upsert_row(
                table="notifications",
                payload=payload,
                on_conflict="event_key",
                ignore_duplicates=True,
            )
            if not rows:
                # Duplicate event: PostgREST returns nothing for ignored rows.
                existing, _ = self._client.get_rows(
                    table="notifications",
                    query={
                        "select": _NOTIFICATION_COLUMNS,
                        "event_key": f"eq.{notification.event_key}",
                        "limit": 1,
                    },
                    with_count=False,
                )
                rows = existing
        if not rows:
            raise RuntimeError("Supabase did not return stored notification")
        return self._parse_row(rows[0])

    def list_notifications(self, user_id: UUID, *, limit: int = 100) -> list[Notification]:
        rows, _ = self._client.get_rows(
            table="notifications",
            query=[
                ("select", _NOTIFICATION_COLUMNS),
                ("user_id", f"eq.{user_id}"),
                ("order", "created_at.desc"),
                ("limit", limit),
            ],
            with_count=False,
        )
        return [self._parse_row(row) for row in rows]

    def mark_read(self, user_id: UUID, notification_id: UUID) -> bool:
        rows = self._client.patch_rows(
            table="notifications",
            query={"id": f"eq.{notification_id}", "user_id": f"eq.{user_id}", "select": "id"},
            payload={"read": True},
        )
        return bool(rows)

    def mark_all_read(self, user_id: UUID) -> int:
        rows = self._client.patch_rows(
            table="notifications",
            query={"user_id": f"eq.{user_id}", "read": "eq.false", "select": "id"},
            payload={"read": True},
        )
        return len(rows)
