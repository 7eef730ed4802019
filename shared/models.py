"""Pydantic contracts shared across backend services and the HTTP API."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal, Union
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TransactionType(str, Enum):
    BUY = "buy"
    SELL = "sell"


class TransactionDirection(str, Enum):
    FIAT_TO_CRYPTO = "fiat_to_crypto"
    CRYPTO_TO_FIAT = "crypto_to_fiat"


DIRECTION_BY_TYPE = {
    TransactionType.BUY: TransactionDirection.FIAT_TO_CRYPTO,
    TransactionType.SELL: TransactionDirection.CRYPTO_TO_FIAT,
}


class TransactionStatus(str, Enum):
    PENDING = "pending"
    ESCROW = "escrow"
    COMPLETED = "completed"
    FAILED = "failed"


ALLOWED_STATUS_TRANSITIONS: dict[TransactionStatus, frozenset[TransactionStatus]] = {
    TransactionStatus.PENDING: frozenset({TransactionStatus.ESCROW, TransactionStatus.FAILED}),
    TransactionStatus.ESCROW: frozenset({TransactionStatus.COMPLETED, TransactionStatus.FAILED}),
    TransactionStatus.COMPLETED: frozenset(),
    TransactionStatus.FAILED: frozenset(),
}

TERMINAL_STATUSES = frozenset({TransactionStatus.COMPLETED, TransactionStatus.FAILED})


def can_transition(current: TransactionStatus, new: TransactionStatus) -> bool:
    """Return whether `current -> new` moves the lifecycle strictly forward."""
    return new in ALLOWED_STATUS_TRANSITIONS[current]


class RequestOrigin(str, Enum):
    WHATSAPP = "whatsapp"
    API = "api"
    FORM = "form"
    MANUAL = "manual"


class OfferStatus(str, Enum):
    OPEN = "open"
    WON = "won"
    LOST = "lost"


class Money(BaseModel):
    """Positive amount with explicit currency code."""

    model_config = ConfigDict(extra="forbid")

    value: Decimal = Field(gt=0)
    currency: str = Field(min_length=3, max_length=5)

    @field_validator("currency", mode="before")
    @classmethod
    def normalize_currency(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper()
        return value


class ClientInfo(BaseModel):
    model_config = ConfigDict(extra="forbid")

    alias: str | None = None
    kyc_url: str | None = None
    notes: str | None = None


def _required_text(value: str) -> str:
    stripped = value.strip()
    if not stripped:
        raise ValueError("must not be blank")
    return stripped


class TransactionCreateRequest(BaseModel):
    """Input accepted when a trader opens a new transaction."""

    model_config = ConfigDict(extra="forbid")

    type: TransactionType
    direction: TransactionDirection | None = None
    chain: str
    token: str
    amount: Money
    client: ClientInfo = Field(default_factory=ClientInfo)
    request_origin: RequestOrigin = RequestOrigin.MANUAL
    sla_minutes: int | None = Field(default=None, gt=0)
    wallet_address: str | None = None
    bank_account_id: str | None = None
    internal_notes: str | None = None

    @field_validator("chain", "token")
    @classmethod
    def validate_required_text(cls, value: str) -> str:
        return _required_text(value)

    @model_validator(mode="after")
    def direction_matches_type(self) -> "TransactionCreateRequest":
        expected = DIRECTION_BY_TYPE[self.type]
        if self.direction is not None and self.direction != expected:
            raise ValueError(f"direction must be {expected.value} for {self.type.value} transactions")
        return self


class Transaction(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: UUID
    code: str
    user_id: UUID
    type: TransactionType
    direction: TransactionDirection
    chain: str
    token: str
    amount: Money
    status: TransactionStatus = TransactionStatus.PENDING
    client: ClientInfo = Field(default_factory=ClientInfo)
    request_origin: RequestOrigin = RequestOrigin.MANUAL
    sla_minutes: int | None = None
    wallet_address: str | None = None
    bank_account_id: str | None = None
    internal_notes: str | None = None
    accepted_by_user_id: UUID | None = None
    created_at: datetime
    approved_at: datetime | None = None
    completed_at: datetime | None = None
    updated_at: datetime | None = None


class OfferCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount: Money
    eta_minutes: int = Field(gt=0)
    notes: str | None = None
    bank_account_id: UUID | None = None
    wallet_id: UUID | None = None


class OtcOffer(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: UUID
    transaction_id: UUID
    user_id: UUID
    amount: Money
    eta_minutes: int
    notes: str | None = None
    bank_account_id: UUID | None = None
    wallet_id: UUID | None = None
    status: OfferStatus = OfferStatus.OPEN
    created_at: datetime
    updated_at: datetime | None = None


class OfferResolution(BaseModel):
    """Result of a resolve call: the transaction after resolution and all its offers."""

    model_config = ConfigDict(extra="forbid")

    transaction: Transaction
    offers: list[OtcOffer]


class NotificationType(str, Enum):
    TRANSACTION_PENDING = "transaction.pending"
    TRANSACTION_APPROVED = "transaction.approved"
    TRANSACTION_FAILED = "transaction.failed"
    SYSTEM_INFO = "system.info"
    SYSTEM_WARNING = "system.warning"


class NotificationSeverity(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class NotificationCustomer(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    email: str | None = None


class NotificationPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    transaction_id: UUID | None = None
    amount: Money | None = None
    customer: NotificationCustomer | None = None
    status: str | None = None
    link: str | None = None


class Notification(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    type: NotificationType
    title: str
    message: str
    severity: NotificationSeverity = NotificationSeverity.INFO
    source: str = "otc-desk"
    payload: NotificationPayload | None = None
    read: bool = False
    event_key: str | None = None
    created_at: datetime = Field(default_factory=utc_now)


class TypeFilter(str, Enum):
    ALL = "all"
    FIAT_TO_CRYPTO = "fiat_to_crypto"
    CRYPTO_TO_FIAT = "crypto_to_fiat"


class DatePreset(str, Enum):
    TODAY = "today"
    THIS_WEEK = "this_week"
    THIS_MONTH = "this_month"
    RANGE = "range"


class FilterValue(BaseModel):
    """Dashboard filter state; `from`/`to` only survive while the preset is `range`."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    type: TypeFilter = TypeFilter.ALL
    date_preset: DatePreset = Field(default=DatePreset.TODAY, alias="datePreset")
    from_: str | None = Field(default=None, alias="from")
    to: str | None = None

    @model_validator(mode="after")
    def clear_bounds_outside_range(self) -> "FilterValue":
        if self.date_preset != DatePreset.RANGE:
            self.from_ = None
            self.to = None
        return self


class OperatorPresence(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    initials: str = "??"
    color: str
    online_at: datetime = Field(default_factory=utc_now)


class PresenceSync(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: Literal["sync"] = "sync"
    operators: list[OperatorPresence] = Field(default_factory=list)


class PresenceJoin(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: Literal["join"] = "join"
    operator: OperatorPresence


class PresenceLeave(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: Literal["leave"] = "leave"
    operator_id: str


PresenceEvent = Annotated[Union[PresenceSync, PresenceJoin, PresenceLeave], Field(discriminator="kind")]


class ApiKey(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: UUID
    user_id: UUID
    name: str | None = None
    key_hash: str
    last_used_at: datetime | None = None


FiatCurrency = Literal["USD", "GTQ", "MXN", "EUR", "VES", "COP", "ARS"]


class FiatToCryptoDetails(BaseModel):
    model_config = ConfigDict(extra="forbid")

    fiat_amount: Decimal = Field(gt=0)
    fiat_currency: FiatCurrency
    destination_chain: str
    destination_token: str
    client_wallet: str


class ClientBankAccount(BaseModel):
    model_config = ConfigDict(extra="forbid")

    bank: str
    account_number: str
    holder: str
    currency: FiatCurrency


class CryptoToFiatDetails(BaseModel):
    model_config = ConfigDict(extra="forbid")

    source_chain: str
    source_token: str
    crypto_amount: Decimal = Field(gt=0)
    client_bank_account: ClientBankAccount


class ExternalTransactionRequest(BaseModel):
    """Transaction intake payload posted by partner systems with an API key."""

    model_config = ConfigDict(extra="forbid")

    type: Literal["FTC", "CTF"]
    client_alias: str
    client_kyc_url: str | None = None
    client_notes: str | None = None
    request_origin: RequestOrigin
    sla_minutes: int | None = Field(default=None, gt=0)
    internal_notes: str | None = None
    ftc: FiatToCryptoDetails | None = None
    ctf: CryptoToFiatDetails | None = None

    @model_validator(mode="after")
    def require_details_for_type(self) -> "ExternalTransactionRequest":
        if self.type == "FTC" and self.ftc is None:
            raise ValueError("ftc details are required when type is FTC")
        if self.type == "CTF" and self.ctf is None:
            raise ValueError("ctf details are required when type is CTF")
        return self

    def to_create_request(self) -> TransactionCreateRequest:
        client = ClientInfo(alias=self.client_alias, kyc_url=self.client_kyc_url, notes=self.client_notes)
        if self.type == "FTC" and self.ftc is not None:
            return TransactionCreateRequest(
                type=TransactionType.BUY,
                direction=TransactionDirection.FIAT_TO_CRYPTO,
                chain=self.ftc.destination_chain,
                token=self.ftc.destination_token,
                amount=Money(value=self.ftc.fiat_amount, currency=self.ftc.fiat_currency),
                client=client,
                request_origin=self.request_origin,
                sla_minutes=self.sla_minutes,
                wallet_address=self.ftc.client_wallet,
                bank_account_id="external",
                internal_notes=self.internal_notes,
            )
        assert self.ctf is not None
        return TransactionCreateRequest(
            type=TransactionType.SELL,
            direction=TransactionDirection.CRYPTO_TO_FIAT,
            chain=self.ctf.source_chain,
            token=self.ctf.source_token,
            amount=Money(value=self.ctf.crypto_amount, currency=self.ctf.client_bank_account.currency),
            client=client,
            request_origin=self.request_origin,
            sla_minutes=self.sla_minutes,
            wallet_address="client-wallet",
            bank_account_id="external",
            internal_notes=self.internal_notes,
        )
