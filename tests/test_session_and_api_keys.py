"""Tests for the session context and API key validation."""

from __future__ import annotations

from uuid import UUID

import pytest

from backend.auth.api_keys import validate_api_key
from backend.auth.session import AuthenticatedUser, SessionContext
from backend.auth.supabase_auth import extract_bearer_token
from backend.repositories.api_keys_repository import InMemoryApiKeysRepository, hash_api_key
from shared.errors import UnauthorizedError
from tests.fakes import OWNER_ID


def test_authenticated_user_from_auth_payload() -> None:
    user = AuthenticatedUser.from_auth_payload({"id": str(OWNER_ID), "email": "desk@example.com"})

    assert user.id == OWNER_ID
    assert user.email == "desk@example.com"


def test_authenticated_user_rejects_non_uuid_id() -> None:
    with pytest.raises(UnauthorizedError):
        AuthenticatedUser.from_auth_payload({"id": "not-a-uuid"})


def test_session_context_notifies_listeners_on_changes() -> None:
    session = SessionContext()
    seen: list[UUID | None] = []
    unsubscribe = session.subscribe(lambda user: seen.append(user.id if user else None))

    with pytest.raises(UnauthorizedError):
        session.require_user()

    session.set_user(AuthenticatedUser(id=OWNER_ID))
    assert session.require_user().id == OWNER_ID
    session.sign_out()
    session.sign_out()
    unsubscribe()
    session.set_user(AuthenticatedUser(id=OWNER_ID))

    assert seen == [OWNER_ID, None]


def test_sessions_do_not_share_state() -> None:
    first = SessionContext(AuthenticatedUser(id=OWNER_ID))
    second = SessionContext()

    assert first.is_authenticated is True
    assert second.is_authenticated is False


@pytest.mark.parametrize(
    "authorization",
    [None, "", "Token abc", "Bearer   "],
)
def test_extract_bearer_token_rejects_malformed_headers(authorization) -> None:
    with pytest.raises(UnauthorizedError):
        extract_bearer_token(authorization)


def test_extract_bearer_token_returns_token() -> None:
    assert extract_bearer_token("Bearer abc.def") == "abc.def"


def test_validate_api_key_accepts_known_key_and_touches_last_used() -> None:
    repository = InMemoryApiKeysRepository()
    stored = repository.add_key(user_id=OWNER_ID, raw_key="vdy_secret", name="partner")

    api_key = validate_api_key("vdy_secret", repository, prefix="vdy_")

    assert api_key.id == stored.id
    assert repository.get_by_hash(hash_api_key("vdy_secret")).last_used_at is not None


@pytest.mark.parametrize("raw_key", [None, "", "abc_secret", "vdy_unknown"])
def test_validate_api_key_rejects_missing_malformed_or_unknown(raw_key) -> None:
    repository = InMemoryApiKeysRepository()
    repository.add_key(user_id=OWNER_ID, raw_key="vdy_secret")

    with pytest.raises(UnauthorizedError):
        validate_api_key(raw_key, repository, prefix="vdy_")
