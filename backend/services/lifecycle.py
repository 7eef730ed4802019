"""Transaction lifecycle: creation, offers, resolution and settlement.

States move strictly forward: pending -> escrow -> completed, with failed
reachable from pending or escrow. Every operation either applies fully or
raises a typed error leaving transactions, offers and notifications untouched.
"""

from __future__ import annotations

import logging
import secrets
import string
import threading
from contextlib import contextmanager
from datetime import date, datetime, timedelta
from typing import Any, Callable, Iterator
from uuid import UUID, uuid4

from pydantic import ValidationError as PydanticValidationError

from backend.repositories.offers_repository import OffersRepository
from backend.repositories.transactions_repository import TransactionsRepository
from backend.services.notification_store import NotificationStore
from backend.services.transaction_filters import apply_filter
from shared.errors import ConflictError, NotFoundError, ValidationError
from shared.models import (
    DIRECTION_BY_TYPE,
    TERMINAL_STATUSES,
    FilterValue,
    Notification,
    NotificationCustomer,
    NotificationPayload,
    NotificationSeverity,
    NotificationType,
    OfferCreateRequest,
    OfferResolution,
    OfferStatus,
    OtcOffer,
    Transaction,
    TransactionCreateRequest,
    TransactionStatus,
    can_transition,
    utc_now,
)


logger = logging.getLogger(__name__)

NOTIFICATION_SOURCE = "otc-lifecycle"
_CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_transaction_code(now: datetime) -> str:
    """Return a `TX-<epoch ms>-<RAND>` code."""
    suffix = "".join(secrets.choice(_CODE_ALPHABET) for _ in range(6))
    return f"TX-{int(now.timestamp() * 1000)}-{suffix}"


def settlement_event_key(transaction_id: UUID, status: TransactionStatus) -> str:
    """De-duplication key of the notification emitted when a transaction reaches `status`."""
    return f"{transaction_id}:{status.value}"


def validation_error_from_pydantic(exc: PydanticValidationError) -> ValidationError:
    fields: dict[str, str] = {}
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())) or "__root__"
        fields.setdefault(location, str(error.get("msg", "invalid")))
    return ValidationError.from_fields(fields)


def _format_amount(transaction: Transaction) -> str:
    return f"{transaction.amount.currency} {transaction.amount.value:,.2f}"


class TransactionLifecycleController:
    """Drives transactions through their states and emits settlement notifications."""

    def __init__(
        self,
        *,
        transactions_repository: TransactionsRepository,
        offers_repository: OffersRepository,
        notification_store: NotificationStore,
        app_base_url: str | None = None,
        clock: Callable[[], datetime] = utc_now,
        code_factory: Callable[[datetime], str] = generate_transaction_code,
    ) -> None:
        self._transactions = transactions_repository
        self._offers = offers_repository
        self._notifications = notification_store
        self._app_base_url = app_base_url.rstrip("/") if app_base_url else None
        self._clock = clock
        self._code_factory = code_factory
        # transaction id -> (lock, callers holding or waiting on it)
        self._locks: dict[UUID, tuple[threading.Lock, int]] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def _transaction_lock(self, transaction_id: UUID) -> Iterator[None]:
        """Serialize in-process mutations of one transaction.

        The entry is dropped once its last caller releases it.
        """
        with self._locks_guard:
            lock, holders = self._locks.get(transaction_id, (None, 0))
            if lock is None:
                lock = threading.Lock()
            self._locks[transaction_id] = (lock, holders + 1)
        try:
            with lock:
                yield
        finally:
            with self._locks_guard:
                _, holders = self._locks[transaction_id]
                if holders == 1:
                    del self._locks[transaction_id]
                else:
                    self._locks[transaction_id] = (lock, holders - 1)

    def _require_transaction(self, transaction_id: UUID, actor_id: UUID | None = None) -> Transaction:
        transaction = self._transactions.get_transaction(transaction_id)
        if transaction is None or (actor_id is not None and transaction.user_id != actor_id):
            raise NotFoundError("Transaction not found", details={"transaction_id": str(transaction_id)})
        return transaction

    def create_transaction(
        self,
        owner_id: UUID,
        payload: TransactionCreateRequest | dict[str, Any],
    ) -> Transaction:
        if isinstance(payload, TransactionCreateRequest):
            request = payload
        else:
            try:
                request = TransactionCreateRequest.model_validate(payload)
            except PydanticValidationError as exc:
                raise validation_error_from_pydantic(exc) from exc

        now = self._clock()
        transaction = Transaction(
            id=uuid4(),
            code=self._code_factory(now),
            user_id=owner_id,
            type=request.type,
            direction=request.direction or DIRECTION_BY_TYPE[request.type],
            chain=request.chain,
            token=request.token,
            amount=request.amount,
            status=TransactionStatus.PENDING,
            client=request.client,
            request_origin=request.request_origin,
            sla_minutes=request.sla_minutes,
            wallet_address=request.wallet_address,
            bank_account_id=request.bank_account_id,
            internal_notes=request.internal_notes,
            created_at=now,
            updated_at=now,
        )
        stored = self._transactions.create_transaction(transaction)
        logger.info(
            "transaction_created transaction_id=%s code=%s user_id=%s origin=%s",
            stored.id,
            stored.code,
            owner_id,
            stored.request_origin.value,
        )
        return stored

    def get_transaction(self, transaction_id: UUID) -> Transaction:
        return self._require_transaction(transaction_id)

    def list_transactions(
        self,
        *,
        user_id: UUID | None = None,
        status: TransactionStatus | None = None,
        filters: FilterValue | None = None,
        today: date | None = None,
    ) -> list[Transaction]:
        """List transactions for the board.

        With `user_id` the owner's transactions are returned; without it, the
        open (`pending`) transactions other traders can bid on.
        """

        if user_id is None and status is None:
            status = TransactionStatus.PENDING
        transactions = self._transactions.list_transactions(user_id=user_id, status=status)
        if filters is None:
            return transactions
        return apply_filter(filters, transactions, today)

    def list_offers(self, transaction_id: UUID) -> list[OtcOffer]:
        self._require_transaction(transaction_id)
        return self._offers.list_offers(transaction_id)

    def create_offer(
        self,
        transaction_id: UUID,
        user_id: UUID,
        payload: OfferCreateRequest | dict[str, Any],
    ) -> OtcOffer:
        if isinstance(payload, OfferCreateRequest):
            request = payload
        else:
            try:
                request = OfferCreateRequest.model_validate(payload)
            except PydanticValidationError as exc:
                raise validation_error_from_pydantic(exc) from exc

        with self._transaction_lock(transaction_id):
            transaction = self._require_transaction(transaction_id)
            if transaction.status != TransactionStatus.PENDING:
                raise NotFoundError(
                    "Transaction is not open for offers",
                    details={"transaction_id": str(transaction_id), "status": transaction.status.value},
                )
            if any(offer.user_id == user_id for offer in self._offers.list_offers(transaction_id)):
                raise ConflictError(
                    "An offer from this trader already exists for the transaction",
                    details={"transaction_id": str(transaction_id)},
                )

            now = self._clock()
            offer = self._offers.create_offer(
                OtcOffer(
                    id=uuid4(),
                    transaction_id=transaction_id,
                    user_id=user_id,
                    amount=request.amount,
                    eta_minutes=request.eta_minutes,
                    notes=request.notes,
                    bank_account_id=request.bank_account_id,
                    wallet_id=request.wallet_id,
                    status=OfferStatus.OPEN,
                    created_at=now,
                    updated_at=now,
                )
            )
        logger.info("offer_created offer_id=%s transaction_id=%s user_id=%s", offer.id, transaction_id, user_id)
        return offer

    def resolve_offer(
        self,
        offer_id: UUID,
        outcome: OfferStatus | str = OfferStatus.WON,
        *,
        actor_id: UUID | None = None,
    ) -> OfferResolution:
        """Resolve one open offer.

        With `actor_id`, only the transaction owner may resolve; anyone else
        gets `NotFoundError`.
        """

        try:
            resolved_outcome = OfferStatus(outcome)
        except ValueError as exc:
            raise ValidationError.from_fields({"outcome": "must be won or lost"}) from exc
        if resolved_outcome == OfferStatus.OPEN:
            raise ValidationError.from_fields({"outcome": "must be won or lost"})

        offer = self._offers.get_offer(offer_id)
        if offer is None:
            raise NotFoundError("Offer not found", details={"offer_id": str(offer_id)})

        with self._transaction_lock(offer.transaction_id):
            transaction = self._require_transaction(offer.transaction_id, actor_id)
            if transaction.status != TransactionStatus.PENDING:
                raise ConflictError(
                    "Transaction already left pending",
                    details={"transaction_id": str(transaction.id), "status": transaction.status.value},
                )
            current = self._offers.get_offer(offer_id)
            if current is None or current.status != OfferStatus.OPEN:
                raise ConflictError("Offer already resolved", details={"offer_id": str(offer_id)})

            if resolved_outcome == OfferStatus.LOST:
                if self._offers.set_offer_status(offer_id, new=OfferStatus.LOST) is None:
                    raise ConflictError("Offer already resolved", details={"offer_id": str(offer_id)})
                logger.info("offer_rejected offer_id=%s transaction_id=%s", offer_id, transaction.id)
                return OfferResolution(transaction=transaction, offers=self._offers.list_offers(transaction.id))

            escrowed = self._offers.accept_offer(
                transaction.id,
                offer_id=offer_id,
                approved_at=self._clock(),
            )
            if escrowed is None:
                raise ConflictError(
                    "Offer or transaction already resolved",
                    details={"offer_id": str(offer_id), "transaction_id": str(transaction.id)},
                )

        offers = self._offers.list_offers(transaction.id)
        logger.info(
            "offer_won offer_id=%s transaction_id=%s offers_lost=%s",
            offer_id,
            transaction.id,
            sum(1 for item in offers if item.status == OfferStatus.LOST),
        )
        return OfferResolution(transaction=escrowed, offers=offers)

    def settle_transaction(
        self,
        transaction_id: UUID,
        outcome: TransactionStatus | str,
        *,
        actor_id: UUID | None = None,
    ) -> Transaction:
        try:
            target = TransactionStatus(outcome)
        except ValueError as exc:
            raise ValidationError.from_fields({"outcome": "must be completed or failed"}) from exc
        if target not in TERMINAL_STATUSES:
            raise ValidationError.from_fields({"outcome": "must be completed or failed"})

        with self._transaction_lock(transaction_id):
            transaction = self._require_transaction(transaction_id, actor_id)
            if transaction.status != TransactionStatus.ESCROW:
                raise ConflictError(
                    "Transaction is not in escrow",
                    details={"transaction_id": str(transaction_id), "status": transaction.status.value},
                )
            return self._finish(transaction, target)

    def fail_transaction(self, transaction_id: UUID, *, actor_id: UUID | None = None) -> Transaction:
        """Move a pending or escrowed transaction to failed."""

        with self._transaction_lock(transaction_id):
            transaction = self._require_transaction(transaction_id, actor_id)
            if not can_transition(transaction.status, TransactionStatus.FAILED):
                raise ConflictError(
                    "Transaction already reached a terminal status",
                    details={"transaction_id": str(transaction_id), "status": transaction.status.value},
                )
            return self._finish(transaction, TransactionStatus.FAILED)

    def expire_overdue(self, now: datetime | None = None) -> list[Transaction]:
        """Fail pending transactions whose SLA elapsed and return them."""

        current_time = now or self._clock()
        expired: list[Transaction] = []
        for transaction in self._transactions.list_transactions(status=TransactionStatus.PENDING):
            if not transaction.sla_minutes:
                continue
            if transaction.created_at + timedelta(minutes=transaction.sla_minutes) > current_time:
                continue
            try:
                expired.append(self.fail_transaction(transaction.id))
            except ConflictError:
                logger.info("transaction_expiry_skipped transaction_id=%s", transaction.id)
        if expired:
            logger.info("transactions_expired count=%s", len(expired))
        return expired

    def _finish(self, transaction: Transaction, target: TransactionStatus) -> Transaction:
        notification = self._build_notification(transaction, target)
        finished = self._transactions.update_status(
            transaction.id,
            expected=transaction.status,
            new=target,
            changes={"completed_at": self._clock()},
        )
        if finished is None:
            raise ConflictError(
                "Transaction status changed concurrently",
                details={"transaction_id": str(transaction.id)},
            )
        self._notifications.add(notification)
        logger.info(
            "transaction_finished transaction_id=%s from_status=%s to_status=%s",
            transaction.id,
            transaction.status.value,
            target.value,
        )
        return finished

    def _deep_link(self, transaction_id: UUID) -> str | None:
        if self._app_base_url is None:
            return None
        return f"{self._app_base_url}/transactions/{transaction_id}"

    def _build_notification(self, transaction: Transaction, target: TransactionStatus) -> Notification:
        customer_name = transaction.client.alias or transaction.code
        if target == TransactionStatus.COMPLETED:
            notification_type = NotificationType.TRANSACTION_APPROVED
            severity = NotificationSeverity.SUCCESS
            title = "Transacción aprobada"
            message = f"La transacción {transaction.code} por {_format_amount(transaction)} fue completada."
        else:
            notification_type = NotificationType.TRANSACTION_FAILED
            severity = NotificationSeverity.ERROR
            title = "Transacción fallida"
            message = f"La transacción {transaction.code} por {_format_amount(transaction)} no pudo completarse."

        return Notification(
            user_id=transaction.user_id,
            type=notification_type,
            title=title,
            message=message,
            severity=severity,
            source=NOTIFICATION_SOURCE,
            payload=NotificationPayload(
                transaction_id=transaction.id,
                amount=transaction.amount,
                customer=NotificationCustomer(name=customer_name),
                status=target.value,
                link=self._deep_link(transaction.id),
            ),
            event_key=settlement_event_key(transaction.id, target),
            created_at=self._clock(),
        )
