"""Repository interfaces and adapters for OTC offers."""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Any, Protocol
from uuid import UUID

from backend.db.supabase_client import SupabaseClient
from backend.repositories.row_utils import isoformat_or_none, parse_decimal, parse_timestamp
from backend.repositories.transactions_repository import (
    InMemoryTransactionsRepository,
    SupabaseTransactionsRepository,
)
from shared.models import Money, OfferStatus, OtcOffer, Transaction, TransactionStatus, utc_now


_OFFER_COLUMNS = (
    "id,transaction_id,user_id,amount_value,amount_currency,eta_minutes,notes,"
    "bank_account_id,wallet_id,status,created_at,updated_at"
)
_OPEN_STATUS_FILTER = "in.(open,pending)"
ACCEPT_OFFER_FUNCTION = "accept_otc_offer"


def _parse_offer_status(value: object) -> OfferStatus:
    # Rows written by the first dashboard release used "pending" for open offers.
    if value in (None, "", "pending"):
        return OfferStatus.OPEN
    return OfferStatus(str(value))


class OffersRepository(Protocol):
    def create_offer(self, offer: OtcOffer) -> OtcOffer:
        """Store one open offer."""

    def get_offer(self, offer_id: UUID) -> OtcOffer | None:
        """Return one offer or None."""

    def list_offers(self, transaction_id: UUID) -> list[OtcOffer]:
        """Return offers of one transaction, oldest first."""

    def set_offer_status(self, offer_id: UUID, *, new: OfferStatus) -> OtcOffer | None:
        """Resolve one open offer; None when it is missing or already resolved."""

    def accept_offer(
        self,
        transaction_id: UUID,
        *,
        offer_id: UUID,
        approved_at: datetime,
    ) -> Transaction | None:
        """Escrow the transaction, mark the offer won and its open siblings lost, in one write.

        Returns the escrowed transaction, or None without writing anything when
        the transaction is no longer pending or the offer is no longer open.
        """


class InMemoryOffersRepository:
    """In-memory offers repository used by tests/dev.

    Shares the transactions repository so offer acceptance commits both under
    one lock.
    """

    def __init__(self, transactions: InMemoryTransactionsRepository) -> None:
        self._transactions = transactions
        self._offers: dict[UUID, OtcOffer] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _resolved(offer: OtcOffer, status: OfferStatus, now: datetime) -> OtcOffer:
        return offer.model_copy(update={"status": status, "updated_at": now})

    def create_offer(self, offer: OtcOffer) -> OtcOffer:
        with self._lock:
            self._offers[offer.id] = offer
        return offer

    def get_offer(self, offer_id: UUID) -> OtcOffer | None:
        return self._offers.get(offer_id)

    def list_offers(self, transaction_id: UUID) -> list[OtcOffer]:
        offers = [offer for offer in self._offers.values() if offer.transaction_id == transaction_id]
        return sorted(offers, key=lambda offer: offer.created_at)

    def set_offer_status(self, offer_id: UUID, *, new: OfferStatus) -> OtcOffer | None:
        with self._lock:
            current = self._offers.get(offer_id)
            if current is None or current.status != OfferStatus.OPEN:
                return None
            updated = self._resolved(current, new, utc_now())
            self._offers[offer_id] = updated
            return updated

    def accept_offer(
        self,
        transaction_id: UUID,
        *,
        offer_id: UUID,
        approved_at: datetime,
    ) -> Transaction | None:
        with self._transactions.locked(), self._lock:
            transaction = self._transactions.get_transaction(transaction_id)
            winner = self._offers.get(offer_id)
            if transaction is None or transaction.status != TransactionStatus.PENDING:
                return None
            if winner is None or winner.transaction_id != transaction_id or winner.status != OfferStatus.OPEN:
                return None

            # Stage every record first so a failure leaves the stores untouched.
            now = utc_now()
            staged = {offer_id: self._resolved(winner, OfferStatus.WON, now)}
            for sibling in self._offers.values():
                if sibling.transaction_id == transaction_id and sibling.id != offer_id:
                    if sibling.status == OfferStatus.OPEN:
                        staged[sibling.id] = self._resolved(sibling, OfferStatus.LOST, now)
            escrowed = transaction.model_copy(
                update={
                    "status": TransactionStatus.ESCROW,
                    "accepted_by_user_id": winner.user_id,
                    "approved_at": approved_at,
                    "updated_at": now,
                }
            )

            self._offers.update(staged)
            self._transactions.replace_transaction(escrowed)
            return escrowed


class SupabaseOffersRepository:
    """Supabase-backed repository over the `otc_offers` table."""

    def __init__(self, client: SupabaseClient) -> None:
        self._client = client

    @staticmethod
    def _parse_row(row: dict[str, Any]) -> OtcOffer:
        return OtcOffer(
            id=row.get("id"),
            transaction_id=row.get("transaction_id"),
            user_id=row.get("user_id"),
            amount=Money(
                value=parse_decimal(row.get("amount_value")),
                currency=str(row.get("amount_currency") or "USD"),
            ),
            eta_minutes=int(row.get("eta_minutes") or 0),
            notes=row.get("notes"),
            bank_account_id=row.get("bank_account_id"),
            wallet_id=row.get("wallet_id"),
            status=_parse_offer_status(row.get("status")),
            created_at=parse_timestamp(row.get("created_at")),
            updated_at=parse_timestamp(row.get("updated_at")),
        )

    def create_offer(self, offer: OtcOffer) -> OtcOffer:
        payload: dict[str, object] = {
            "id": str(offer.id),
            "transaction_id": str(offer.transaction_id),
            "user_id": str(offer.user_id),
            "amount_value": str(offer.amount.value),
            "amount_currency": offer.amount.currency,
            "eta_minutes": offer.eta_minutes,
            "status": offer.status.value,
            "created_at": isoformat_or_none(offer.created_at),
        }
        if offer.notes is not None:
            payload["notes"] = offer.notes
        if offer.bank_account_id is not None:
            payload["bank_account_id"] = str(offer.bank_account_id)
        if offer.wallet_id is not None:
            payload["wallet_id"] = str(offer.wallet_id)

        rows = self._client.post_rows(table="otc_offers", payload=payload, query={"select": _OFFER_COLUMNS})
        if not rows:
            raise RuntimeError("Supabase did not return created offer")
        return self._parse_row(rows[0])

    def get_offer(self, offer_id: UUID) -> OtcOffer | None:
        rows, _ = self._client.get_rows(
            table="otc_offers",
            query={"select": _OFFER_COLUMNS, "id": f"eq.{offer_id}", "limit": 1},
            with_count=False,
        )
        return self._parse_row(rows[0]) if rows else None

    def list_offers(self, transaction_id: UUID) -> list[OtcOffer]:
        rows, _ = self._client.get_rows(
            table="otc_offers",
            query=[
                ("select", _OFFER_COLUMNS),
                ("transaction_id", f"eq.{transaction_id}"),
                ("order", "created_at.asc"),
            ],
            with_count=False,
        )
        return [self._parse_row(row) for row in rows]

    def set_offer_status(self, offer_id: UUID, *, new: OfferStatus) -> OtcOffer | None:
        rows = self._client.patch_rows(
            table="otc_offers",
            query={
                "id": f"eq.{offer_id}",
                "status": _OPEN_STATUS_FILTER,
                "select": _OFFER_COLUMNS,
            },
            payload={"status": new.value, "updated_at": utc_now().isoformat()},
        )
        return self._parse_row(rows[0]) if rows else None

    def accept_offer(
        self,
        transaction_id: UUID,
        *,
        offer_id: UUID,
        approved_at: datetime,
    ) -> Transaction | None:
        """Run `accept_otc_offer` (supabase/migrations) which commits all rows in one transaction."""

        rows = self._client.call_rpc(
            function=ACCEPT_OFFER_FUNCTION,
            payload={
                "p_transaction_id": str(transaction_id),
                "p_offer_id": str(offer_id),
                "p_approved_at": approved_at.isoformat(),
            },
        )
        return SupabaseTransactionsRepository._parse_row(rows[0]) if rows else None
