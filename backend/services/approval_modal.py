"""Approval interrupt: view model for the modal shown when a transaction is approved."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable
from uuid import UUID

from backend.services.notification_store import NotificationStore, NotificationStoreEvent
from shared.models import Money, Notification, NotificationType


logger = logging.getLogger(__name__)

CLOSE_LABEL = "Cerrar"
DETAIL_LABEL = "Ver detalle"
DEFAULT_TITLE = "Transacción aprobada"


@dataclass(frozen=True, slots=True)
class ModalRow:
    label: str
    value: str


@dataclass(frozen=True, slots=True)
class ModalAction:
    kind: str
    label: str
    href: str | None = None


@dataclass(frozen=True, slots=True)
class ApprovalModalView:
    notification_id: str
    title: str
    message: str
    rows: tuple[ModalRow, ...]
    actions: tuple[ModalAction, ...]


def format_money(amount: Money | None) -> str:
    """Render `USD 1,000.00`; unknown amounts render as a dash."""
    if amount is None:
        return "-"
    return f"{amount.currency} {Decimal(amount.value):,.2f}"


def render_approval_modal(notification: Notification | None) -> ApprovalModalView | None:
    """Return the modal view for one notification, or None to render nothing."""

    if notification is None:
        return None

    payload = notification.payload
    transaction_id = str(payload.transaction_id) if payload and payload.transaction_id else "-"
    customer = payload.customer.name if payload and payload.customer else "-"
    rows = (
        ModalRow(label="ID", value=transaction_id),
        ModalRow(label="Monto", value=format_money(payload.amount if payload else None)),
        ModalRow(label="Cliente", value=customer),
    )

    actions = [ModalAction(kind="close", label=CLOSE_LABEL)]
    if payload and payload.link:
        actions.append(ModalAction(kind="navigate", label=DETAIL_LABEL, href=payload.link))

    return ApprovalModalView(
        notification_id=str(notification.id),
        title=notification.title or DEFAULT_TITLE,
        message=notification.message,
        rows=rows,
        actions=tuple(actions),
    )


class ApprovalModal:
    """Binds a rendered notification to the caller's close and navigate callbacks.

    The modal does not touch read state; `on_close` decides what closing means.
    """

    def __init__(
        self,
        notification: Notification | None,
        *,
        on_close: Callable[[], None],
        on_navigate: Callable[[str], None] | None = None,
    ) -> None:
        self.notification = notification
        self.view = render_approval_modal(notification)
        self._on_close = on_close
        self._on_navigate = on_navigate

    def close(self) -> None:
        self._on_close()

    def open_detail(self) -> None:
        link = self.notification.payload.link if self.notification and self.notification.payload else None
        if link is None:
            raise ValueError("Notification has no detail link")
        if self._on_navigate is not None:
            self._on_navigate(link)
        self.close()


class ApprovalInterrupts:
    """Store listener queuing approved-transaction notifications for one recipient.

    `current` is the notification the modal presents; `dismiss` moves to the next.
    """

    def __init__(self, store: NotificationStore, user_id: UUID) -> None:
        self._store = store
        self._user_id = user_id
        self._queue: list[Notification] = []
        self._lock = threading.Lock()
        self._unsubscribe = store.subscribe(self._on_event)

    def _on_event(self, event: NotificationStoreEvent) -> None:
        notification = event.notification
        if event.kind != "added" or notification is None or event.user_id != self._user_id:
            return
        if notification.type != NotificationType.TRANSACTION_APPROVED:
            return
        with self._lock:
            self._queue.append(notification)
        logger.info("approval_interrupt_queued notification_id=%s", notification.id)

    @property
    def current(self) -> Notification | None:
        with self._lock:
            return self._queue[0] if self._queue else None

    def modal(self, *, on_navigate: Callable[[str], None] | None = None, mark_read: bool = True) -> ApprovalModal:
        """Build the modal for the current notification.

        Closing dismisses it and, with `mark_read`, flags it read in the store.
        """

        notification = self.current

        def _close() -> None:
            if notification is not None and mark_read:
                self._store.mark_read(notification.id)
            self.dismiss()

        return ApprovalModal(notification, on_close=_close, on_navigate=on_navigate)

    def dismiss(self) -> None:
        with self._lock:
            if self._queue:
                self._queue.pop(0)

    def close(self) -> None:
        self._unsubscribe()
