"""Deterministic builders shared by desk tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import UUID, uuid4

from backend.repositories.notifications_repository import InMemoryNotificationsRepository
from backend.repositories.offers_repository import InMemoryOffersRepository
from backend.repositories.transactions_repository import InMemoryTransactionsRepository
from backend.services.lifecycle import TransactionLifecycleController
from backend.services.notification_store import NotificationStore
from shared.models import (
    Money,
    Notification,
    NotificationCustomer,
    NotificationPayload,
    NotificationSeverity,
    NotificationType,
    Transaction,
    TransactionDirection,
    TransactionStatus,
    TransactionType,
)


OWNER_ID = UUID("aaaaaaaa-aaaa-aaaa-aaaa-aaaaaaaaaaaa")
TRADER_A_ID = UUID("bbbbbbbb-bbbb-bbbb-bbbb-bbbbbbbbbbbb")
TRADER_B_ID = UUID("cccccccc-cccc-cccc-cccc-cccccccccccc")
FIXED_NOW = datetime(2025, 1, 18, 12, 0, tzinfo=timezone.utc)


class FixedClock:
    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


def make_transaction(
    *,
    created_at: datetime = FIXED_NOW,
    direction: TransactionDirection = TransactionDirection.FIAT_TO_CRYPTO,
    status: TransactionStatus = TransactionStatus.PENDING,
    user_id: UUID = OWNER_ID,
) -> Transaction:
    transaction_type = (
        TransactionType.BUY if direction == TransactionDirection.FIAT_TO_CRYPTO else TransactionType.SELL
    )
    return Transaction(
        id=uuid4(),
        code=f"TX-{int(created_at.timestamp() * 1000)}-{uuid4().hex[:6].upper()}",
        user_id=user_id,
        type=transaction_type,
        direction=direction,
        chain="ETH",
        token="USDT",
        amount=Money(value=Decimal("1000"), currency="USD"),
        status=status,
        created_at=created_at,
    )


def make_notification(
    *,
    user_id: UUID = OWNER_ID,
    event_key: str | None = None,
    created_at: datetime = FIXED_NOW,
    notification_type: NotificationType = NotificationType.TRANSACTION_APPROVED,
    link: str | None = None,
) -> Notification:
    return Notification(
        user_id=user_id,
        type=notification_type,
        title="Transacción aprobada",
        message="La transacción fue completada.",
        severity=NotificationSeverity.SUCCESS,
        payload=NotificationPayload(
            transaction_id=UUID("dddddddd-dddd-dddd-dddd-dddddddddddd"),
            amount=Money(value=Decimal("1000"), currency="USD"),
            customer=NotificationCustomer(name="Cliente Uno"),
            status="completed",
            link=link,
        ),
        event_key=event_key,
        created_at=created_at,
    )


def build_controller(
    *,
    clock: FixedClock | None = None,
    app_base_url: str | None = None,
    offers_class: type[InMemoryOffersRepository] = InMemoryOffersRepository,
) -> tuple[TransactionLifecycleController, dict[str, object]]:
    """Return a controller over in-memory stores plus the stores themselves."""

    transactions = InMemoryTransactionsRepository()
    offers = offers_class(transactions)
    history = InMemoryNotificationsRepository()
    store = NotificationStore(repository=history)
    controller = TransactionLifecycleController(
        transactions_repository=transactions,
        offers_repository=offers,
        notification_store=store,
        app_base_url=app_base_url,
        clock=clock or FixedClock(),
    )
    return controller, {"transactions": transactions, "offers": offers, "history": history, "store": store}
