"""Transactions repository adapters.

The store is the source of truth for status transitions: `update_status` is
a compare-and-set that only applies when the stored status still equals the
status the caller observed, and only when the move is forward.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator, Protocol
from uuid import UUID

from backend.db.supabase_client import SupabaseClient
from backend.repositories.row_utils import isoformat_or_none, parse_decimal, parse_timestamp
from shared.models import ClientInfo, Money, Transaction, TransactionStatus, can_transition, utc_now


logger = logging.getLogger(__name__)


_TRANSACTION_COLUMNS = (
    "id,code,user_id,type,direction,chain,token,amount_value,amount_currency,status,"
    "client_alias,client_kyc_url,client_notes,request_origin,sla_minutes,wallet_address,"
    "bank_account_id,internal_notes,accepted_by_user_id,created_at,approved_at,completed_at,updated_at"
)


class TransactionsRepository(Protocol):
    def create_transaction(self, transaction: Transaction) -> Transaction:
        """Store a new transaction and return the stored record."""

    def get_transaction(self, transaction_id: UUID) -> Transaction | None:
        """Return one transaction or None."""

    def list_transactions(
        self,
        *,
        user_id: UUID | None = None,
        status: TransactionStatus | None = None,
    ) -> list[Transaction]:
        """Return transactions newest first, optionally scoped to an owner and status."""

    def update_status(
        self,
        transaction_id: UUID,
        *,
        expected: TransactionStatus,
        new: TransactionStatus,
        changes: dict[str, Any] | None = None,
    ) -> Transaction | None:
        """Move `expected -> new` and return the updated record.

        Returns None when the status moved on or when `expected -> new` is not
        a forward transition.
        """


def _refuse_backward(transaction_id: UUID, expected: TransactionStatus, new: TransactionStatus) -> bool:
    if can_transition(expected, new):
        return False
    logger.warning(
        "transaction_status_update_refused transaction_id=%s from_status=%s to_status=%s",
        transaction_id,
        expected.value,
        new.value,
    )
    return True


class InMemoryTransactionsRepository:
    """In-memory transactions repository used by tests/dev."""

    def __init__(self) -> None:
        self._transactions: dict[UUID, Transaction] = {}
        self._lock = threading.RLock()

    @contextmanager
    def locked(self) -> Iterator[None]:
        """Hold the repository lock while another in-memory store writes alongside."""
        with self._lock:
            yield

    def replace_transaction(self, transaction: Transaction) -> None:
        with self._lock:
            self._transactions[transaction.id] = transaction

    def create_transaction(self, transaction: Transaction) -> Transaction:
        with self._lock:
            if transaction.id in self._transactions:
                raise ValueError("transaction already exists")
            if any(item.code == transaction.code for item in self._transactions.values()):
                raise ValueError("transaction code already exists")
            self._transactions[transaction.id] = transaction
        return transaction

    def get_transaction(self, transaction_id: UUID) -> Transaction | None:
        return self._transactions.get(transaction_id)

    def list_transactions(
        self,
        *,
        user_id: UUID | None = None,
        status: TransactionStatus | None = None,
    ) -> list[Transaction]:
        rows = list(self._transactions.values())
        if user_id is not None:
            rows = [row for row in rows if row.user_id == user_id]
        if status is not None:
            rows = [row for row in rows if row.status == status]
        return sorted(rows, key=lambda row: row.created_at, reverse=True)

    def update_status(
        self,
        transaction_id: UUID,
        *,
        expected: TransactionStatus,
        new: TransactionStatus,
        changes: dict[str, Any] | None = None,
    ) -> Transaction | None:
        if _refuse_backward(transaction_id, expected, new):
            return None
        with self._lock:
            current = self._transactions.get(transaction_id)
            if current is None or current.status != expected:
                return None
            updated = current.model_copy(update={**(changes or {}), "status": new, "updated_at": utc_now()})
            self._transactions[transaction_id] = updated
            return updated


class SupabaseTransactionsRepository:
    """Supabase repository over the `transactions` table."""

    def __init__(self, client: SupabaseClient) -> None:
        self._client = client

    @staticmethod
    def _to_row(transaction: Transaction) -> dict[str, object]:
        return {
            "id": str(transaction.id),
            "code": transaction.code,
            "user_id": str(transaction.user_id),
            "type": transaction.type.value,
            "direction": transaction.direction.value,
            "chain": transaction.chain,
            "token": transaction.token,
            "amount_value": str(transaction.amount.value),
            "amount_currency": transaction.amount.currency,
            "status": transaction.status.value,
            "client_alias": transaction.client.alias,
            "client_kyc_url": transaction.client.kyc_url,
            "client_notes": transaction.client.notes,
            "request_origin": transaction.request_origin.value,
            "sla_minutes": transaction.sla_minutes,
            "wallet_address": transaction.wallet_address,
            "bank_account_id": transaction.bank_account_id,
            "internal_notes": transaction.internal_notes,
            "created_at": isoformat_or_none(transaction.created_at),
        }

    @staticmethod
    def _parse_row(row: dict[str, Any]) -> Transaction:
        return Transaction(
            id=row.get("id"),
            code=str(row.get("code")),
            user_id=row.get("user_id"),
            type=str(row.get("type")).lower(),
            direction=row.get("direction"),
            chain=row.get("chain"),
            token=row.get("token"),
            amount=Money(
                value=parse_decimal(row.get("amount_value")),
                currency=str(row.get("amount_currency") or "USD"),
            ),
            status=row.get("status"),
            client=ClientInfo(
                alias=row.get("client_alias"),
                kyc_url=row.get("client_kyc_url"),
                notes=row.get("client_notes"),
            ),
            request_origin=row.get("request_origin") or "manual",
            sla_minutes=row.get("sla_minutes"),
            wallet_address=row.get("wallet_address"),
            bank_account_id=row.get("bank_account_id"),
            internal_notes=row.get("internal_notes"),
            accepted_by_user_id=row.get("accepted_by_user_id"),
            created_at=parse_timestamp(row.get("created_at")),
            approved_at=parse_timestamp(row.get("approved_at")),
            completed_at=parse_timestamp(row.get("completed_at")),
            updated_at=parse_timestamp(row.get("updated_at")),
        )

    def create_transaction(self, transaction: Transaction) -> Transaction:
        rows = self._client.post_rows(
            table="transactions",
            payload=self._to_row(transaction),
            query={"select": _TRANSACTION_COLUMNS},
        )
        if not rows:
            raise RuntimeError("Supabase did not return created transaction")
        return self._parse_row(rows[0])

    def get_transaction(self, transaction_id: UUID) -> Transaction | None:
        rows, _ = self._client.get_rows(
            table="transactions",
            query={"select": _TRANSACTION_COLUMNS, "id": f"eq.{transaction_id}", "limit": 1},
            with_count=False,
        )
        return self._parse_row(rows[0]) if rows else None

    def list_transactions(
        self,
        *,
        user_id: UUID | None = None,
        status: TransactionStatus | None = None,
    ) -> list[Transaction]:
        query: list[tuple[str, str | int]] = [("select", _TRANSACTION_COLUMNS)]
        if user_id is not None:
            query.append(("user_id", f"eq.{user_id}"))
        if status is not None:
            query.append(("status", f"eq.{status.value}"))
        query.append(("order", "created_at.desc"))
        rows, _ = self._client.get_rows(table="transactions", query=query, with_count=False)
        return [self._parse_row(row) for row in rows]

    def update_status(
        self,
        transaction_id: UUID,
        *,
        expected: TransactionStatus,
        new: TransactionStatus,
        changes: dict[str, Any] | None = None,
    ) -> Transaction | None:
        if _refuse_backward(transaction_id, expected, new):
            return None
        payload: dict[str, Any] = {"status": new.value, "updated_at": utc_now().isoformat()}
        for field_name, value in (changes or {}).items():
            if isinstance(value, UUID):
                value = str(value)
            elif isinstance(value, datetime):
                value = value.isoformat()
            payload[field_name] = value
        rows = self._client.patch_rows(
            table="transactions",
            query={
                "id": f"eq.{transaction_id}",
                "status": f"eq.{expected.value}",
                "select": _TRANSACTION_COLUMNS,
            },
            payload=payload,
        )
        return self._parse_row(rows[0]) if rows else None
