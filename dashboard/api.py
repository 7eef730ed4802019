"""FastAPI entrypoint for the OTC desk dashboard endpoints."""

from __future__ import annotations

import logging
from dataclasses import asdict
from functools import lru_cache
from typing import Any, Literal
from uuid import UUID

from fastapi import Body, FastAPI, Header, Query
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from shared import config as _config
from backend.auth.api_keys import validate_api_key
from backend.auth.session import AuthenticatedUser, SessionContext
from backend.auth.supabase_auth import extract_bearer_token, get_user_from_bearer_token
from backend.factory import DeskServices, build_desk_services
from backend.services.approval_modal import render_approval_modal
from backend.services.lifecycle import validation_error_from_pydantic
from backend.services.notification_store import format_badge, group_by_day, today_utc
from backend.services.presence import OnlineOperators, anonymous_presence
from shared.errors import NotFoundError, OtcError
from shared.models import ExternalTransactionRequest, FilterValue, TransactionStatus


logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_desk_services() -> DeskServices:
    """Create and cache desk services once per process."""

    return build_desk_services()


@lru_cache(maxsize=1)
def get_online_operators() -> OnlineOperators:
    """Create and cache the presence consumer once per process."""

    operators = OnlineOperators(get_desk_services().presence_channel)
    operators.connect()
    return operators


def _resolve_session(authorization: str | None) -> SessionContext:
    """Resolve the authenticated user from the authorization header."""

    token = extract_bearer_token(authorization)
    user_payload = get_user_from_bearer_token(token)
    return SessionContext(AuthenticatedUser.from_auth_payload(user_payload))


def _build_filter_value(
    *,
    type_: str | None,
    date_preset: str | None,
    from_: str | None,
    to: str | None,
) -> FilterValue | None:
    if type_ is None and date_preset is None and from_ is None and to is None:
        return None
    raw: dict[str, Any] = {"from": from_, "to": to}
    if type_ is not None:
        raw["type"] = type_
    if date_preset is not None:
        raw["datePreset"] = date_preset
    elif from_ is not None or to is not None:
        raw["datePreset"] = "range"
    try:
        return FilterValue.model_validate(raw)
    except PydanticValidationError as exc:
        raise validation_error_from_pydantic(exc) from exc


app = FastAPI(title="OTC Desk Dashboard API")

ALLOW_ORIGINS = _config.cors_allow_origins()


@app.middleware("http")
async def log_http_requests(request: Request, call_next):
    """Log incoming requests, HTTP status codes and unexpected errors."""

    logger.info("http_request_received method=%s path=%s", request.method, request.url.path)
    try:
        response = await call_next(request)
    except Exception:
        logger.exception(
            "http_request_failed method=%s path=%s",
            request.method,
            request.url.path,
        )
        raise

    logger.info(
        "http_response_sent method=%s path=%s status_code=%s",
        request.method,
        request.url.path,
        response.status_code,
    )
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

logger.info("cors_allow_origins=%s", ALLOW_ORIGINS)


@app.exception_handler(OtcError)
async def handle_otc_error(request: Request, exc: OtcError) -> JSONResponse:
    """Map typed desk errors to their HTTP status and JSON body."""

    logger.warning(
        "otc_error method=%s path=%s code=%s message=%s",
        request.method,
        request.url.path,
        exc.code,
        exc.message,
    )
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_payload()))


@app.exception_handler(Exception)
async def handle_unexpected_exception(request: Request, exc: Exception) -> JSONResponse:
    """Return a JSON 500 response for unhandled exceptions."""

    logger.exception(
        "unhandled_exception method=%s path=%s exception_type=%s message=%s",
        request.method,
        request.url.path,
        type(exc).__name__,
        str(exc),
        exc_info=exc,
    )
    return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})


@app.get("/health")
def health() -> dict[str, str]:
    """Healthcheck endpoint."""

    return {"status": "ok"}


@app.get("/transactions")
def list_transactions(
    scope: Literal["mine", "open"] = Query(default="mine"),
    type_: str | None = Query(default=None, alias="type"),
    date_preset: str | None = Query(default=None, alias="datePreset"),
    from_: str | None = Query(default=None, alias="from"),
    to: str | None = Query(default=None),
    status: TransactionStatus | None = Query(default=None),
    authorization: str | None = Header(default=None),
) -> Any:
    """List the caller's transactions, or the open ones other traders can bid on.

    Pending transactions past their SLA are failed first so the board never
    shows them as open.
    """

    user = _resolve_session(authorization).require_user()
    filters = _build_filter_value(type_=type_, date_preset=date_preset, from_=from_, to=to)
    lifecycle = get_desk_services().lifecycle
    lifecycle.expire_overdue()
    transactions = lifecycle.list_transactions(
        user_id=user.id if scope == "mine" else None,
        status=status,
        filters=filters,
    )
    return {"items": jsonable_encoder(transactions)}


@app.post("/transactions", status_code=201)
def create_transaction(
    payload: dict[str, Any] = Body(...),
    authorization: str | None = Header(default=None),
) -> Any:
    user = _resolve_session(authorization).require_user()
    transaction = get_desk_services().lifecycle.create_transaction(user.id, payload)
    return jsonable_encoder(transaction)


@app.get("/transactions/{transaction_id}")
def get_transaction(transaction_id: UUID, authorization: str | None = Header(default=None)) -> Any:
    _resolve_session(authorization).require_user()
    return jsonable_encoder(get_desk_services().lifecycle.get_transaction(transaction_id))


@app.get("/transactions/{transaction_id}/offers")
def list_offers(transaction_id: UUID, authorization: str | None = Header(default=None)) -> Any:
    _resolve_session(authorization).require_user()
    return {"items": jsonable_encoder(get_desk_services().lifecycle.list_offers(transaction_id))}


@app.post("/transactions/{transaction_id}/offers", status_code=201)
def create_offer(
    transaction_id: UUID,
    payload: dict[str, Any] = Body(...),
    authorization: str | None = Header(default=None),
) -> Any:
    user = _resolve_session(authorization).require_user()
    offer = get_desk_services().lifecycle.create_offer(transaction_id, user.id, payload)
    return jsonable_encoder(offer)


@app.post("/offers/{offer_id}/resolve")
def resolve_offer(
    offer_id: UUID,
    payload: dict[str, Any] | None = Body(default=None),
    authorization: str | None = Header(default=None),
) -> Any:
    """Accept (`won`, default) or reject (`lost`) one offer as the transaction owner."""

    user = _resolve_session(authorization).require_user()
    outcome = (payload or {}).get("outcome", "won")
    resolution = get_desk_services().lifecycle.resolve_offer(offer_id, outcome, actor_id=user.id)
    return jsonable_encoder(resolution)


@app.post("/transactions/{transaction_id}/settle")
def settle_transaction(
    transaction_id: UUID,
    payload: dict[str, Any] = Body(...),
    authorization: str | None = Header(default=None),
) -> Any:
    user = _resolve_session(authorization).require_user()
    transaction = get_desk_services().lifecycle.settle_transaction(
        transaction_id,
        str(payload.get("outcome") or ""),
        actor_id=user.id,
    )
    return jsonable_encoder(transaction)


@app.post("/transactions/{transaction_id}/fail")
def fail_transaction(transaction_id: UUID, authorization: str | None = Header(default=None)) -> Any:
    user = _resolve_session(authorization).require_user()
    transaction = get_desk_services().lifecycle.fail_transaction(transaction_id, actor_id=user.id)
    return jsonable_encoder(transaction)


@app.get("/notifications")
def list_notifications(
    limit: int | None = Query(default=None, ge=1),
    authorization: str | None = Header(default=None),
) -> Any:
    """Return the caller's notifications newest first with unread count and day groups."""

    user = _resolve_session(authorization).require_user()
    store = get_desk_services().notification_store
    max_items = limit or _config.notifications_list_limit()
    store.hydrate(user.id, limit=max_items)

    items = store.list_notifications(user.id, limit=max_items)
    unread_count = store.unread_count(user.id)
    groups = group_by_day(items, today_utc())
    return {
        "items": jsonable_encoder(items),
        "unread_count": unread_count,
        "badge": format_badge(unread_count),
        "groups": {name: [str(item.id) for item in grouped] for name, grouped in groups.items()},
    }


def _require_own_notification(notification_id: UUID, user_id: UUID):
    notification = get_desk_services().notification_store.get(notification_id)
    if notification is None or notification.user_id != user_id:
        raise NotFoundError("Notification not found", details={"notification_id": str(notification_id)})
    return notification


@app.patch("/notifications/{notification_id}/read")
def mark_notification_read(notification_id: UUID, authorization: str | None = Header(default=None)) -> Any:
    user = _resolve_session(authorization).require_user()
    _require_own_notification(notification_id, user.id)
    store = get_desk_services().notification_store
    notification = store.mark_read(notification_id)
    return {"notification": jsonable_encoder(notification), "unread_count": store.unread_count(user.id)}


@app.post("/notifications/mark-all-read")
def mark_all_notifications_read(authorization: str | None = Header(default=None)) -> dict[str, int]:
    user = _resolve_session(authorization).require_user()
    store = get_desk_services().notification_store
    updated = store.mark_all_read(user.id)
    return {"updated": updated, "unread_count": store.unread_count(user.id)}


@app.get("/notifications/{notification_id}/approval")
def get_approval_modal(notification_id: UUID, authorization: str | None = Header(default=None)) -> Any:
    """Return the approval modal view for one notification."""

    user = _resolve_session(authorization).require_user()
    view = render_approval_modal(_require_own_notification(notification_id, user.id))
    return {"modal": asdict(view) if view is not None else None}


@app.get("/operators/online")
def list_online_operators() -> Any:
    operators = get_online_operators()
    operators.refresh()
    return {
        "online_count": operators.online_count,
        "operators": jsonable_encoder(operators.visible()),
    }


@app.post("/operators/presence", status_code=201)
def track_presence(authorization: str | None = Header(default=None)) -> Any:
    """Announce the caller as an anonymous operator and return the tracked record.

    The record expires unless refreshed through the heartbeat endpoint.
    """

    user = _resolve_session(authorization).require_user()
    presence = anonymous_presence()
    get_online_operators()
    get_desk_services().presence_channel.track(presence, owner_id=str(user.id))
    return {**jsonable_encoder(presence), "ttl_seconds": _config.presence_ttl_seconds()}


def _presence_not_found(operator_id: str) -> NotFoundError:
    return NotFoundError("Operator presence not found", details={"operator_id": operator_id})


@app.put("/operators/presence/{operator_id}/heartbeat")
def heartbeat_presence(operator_id: str, authorization: str | None = Header(default=None)) -> dict[str, bool]:
    user = _resolve_session(authorization).require_user()
    if not get_desk_services().presence_channel.heartbeat(operator_id, owner_id=str(user.id)):
        raise _presence_not_found(operator_id)
    return {"ok": True}


@app.delete("/operators/presence/{operator_id}")
def untrack_presence(operator_id: str, authorization: str | None = Header(default=None)) -> dict[str, bool]:
    user = _resolve_session(authorization).require_user()
    if not get_desk_services().presence_channel.untrack(operator_id, owner_id=str(user.id)):
        raise _presence_not_found(operator_id)
    return {"ok": True}


@app.post("/external/transactions", status_code=201)
def create_external_transaction(
    payload: dict[str, Any] = Body(...),
    x_api_key: str | None = Header(default=None),
) -> Any:
    """Intake of transactions posted by partner systems authenticated with an API key."""

    services = get_desk_services()
    api_key = validate_api_key(x_api_key, services.api_keys_repository, prefix=_config.api_key_prefix())
    try:
        request = ExternalTransactionRequest.model_validate(payload)
    except PydanticValidationError as exc:
        raise validation_error_from_pydantic(exc) from exc

    transaction = services.lifecycle.create_transaction(api_key.user_id, request.to_create_request())
    logger.info(
        "external_transaction_created transaction_id=%s api_key_id=%s",
        transaction.id,
        api_key.id,
    )
    return {
        "success": True,
        "transaction_id": str(transaction.id),
        "code": transaction.code,
        "status": transaction.status.value,
    }
