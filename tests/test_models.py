"""Tests for shared pydantic contracts."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from shared.models import (
    ExternalTransactionRequest,
    Money,
    TransactionCreateRequest,
    TransactionDirection,
    TransactionStatus,
    TransactionType,
    can_transition,
)


def test_money_normalizes_currency_and_requires_positive_value() -> None:
    assert Money(value="12.50", currency=" usdt ").currency == "USDT"

    with pytest.raises(ValidationError):
        Money(value=0, currency="USD")


def test_status_transitions_only_move_forward() -> None:
    assert can_transition(TransactionStatus.PENDING, TransactionStatus.ESCROW) is True
    assert can_transition(TransactionStatus.PENDING, TransactionStatus.FAILED) is True
    assert can_transition(TransactionStatus.ESCROW, TransactionStatus.COMPLETED) is True
    assert can_transition(TransactionStatus.ESCROW, TransactionStatus.PENDING) is False
    assert can_transition(TransactionStatus.PENDING, TransactionStatus.COMPLETED) is False
    assert can_transition(TransactionStatus.COMPLETED, TransactionStatus.FAILED) is False


def test_external_ftc_request_maps_to_buy() -> None:
    request = ExternalTransactionRequest.model_validate(
        {
            "type": "FTC",
            "client_alias": "Cliente Uno",
            "request_origin": "api",
            "sla_minutes": 30,
            "ftc": {
                "fiat_amount": 1500,
                "fiat_currency": "GTQ",
                "destination_chain": "TRON",
                "destination_token": "USDT",
                "client_wallet": "TXYZ",
            },
        }
    )

    create = request.to_create_request()

    assert create.type == TransactionType.BUY
    assert create.direction == TransactionDirection.FIAT_TO_CRYPTO
    assert create.amount.currency == "GTQ"
    assert create.wallet_address == "TXYZ"
    assert create.client.alias == "Cliente Uno"


def test_external_ctf_request_maps_to_sell() -> None:
    request = ExternalTransactionRequest.model_validate(
        {
            "type": "CTF",
            "client_alias": "Cliente Dos",
            "request_origin": "whatsapp",
            "ctf": {
                "source_chain": "ETH",
                "source_token": "USDC",
                "crypto_amount": "250.5",
                "client_bank_account": {
                    "bank": "Banco Uno",
                    "account_number": "0001",
                    "holder": "Cliente Dos",
                    "currency": "USD",
                },
            },
        }
    )

    create = request.to_create_request()

    assert create.type == TransactionType.SELL
    assert create.direction == TransactionDirection.CRYPTO_TO_FIAT
    assert create.chain == "ETH"
    assert create.token == "USDC"


def test_external_request_requires_details_matching_type() -> None:
    with pytest.raises(ValidationError, match="ftc details are required"):
        ExternalTransactionRequest.model_validate(
            {"type": "FTC", "client_alias": "Cliente", "request_origin": "api"}
        )


def test_transaction_request_rejects_direction_contradicting_type() -> None:
    base = {"chain": "ETH", "token": "USDT", "amount": {"value": 10, "currency": "USD"}}

    with pytest.raises(ValidationError, match="direction must be fiat_to_crypto"):
        TransactionCreateRequest.model_validate({**base, "type": "buy", "direction": "crypto_to_fiat"})

    matching = TransactionCreateRequest.model_validate({**base, "type": "sell", "direction": "crypto_to_fiat"})
    assert matching.direction == TransactionDirection.CRYPTO_TO_FIAT
    assert TransactionCreateRequest.model_validate({**base, "type": "buy"}).direction is None
