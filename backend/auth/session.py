"""Explicit session context passed to request handlers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Mapping
from uuid import UUID

from shared.errors import UnauthorizedError
from shared.observers import ObserverList


@dataclass(frozen=True, slots=True)
class AuthenticatedUser:
    id: UUID
    email: str | None = None

    @classmethod
    def from_auth_payload(cls, payload: Mapping[str, object]) -> "AuthenticatedUser":
        """Build the user from a Supabase `/auth/v1/user` payload."""
        raw_id = payload.get("id")
        try:
            user_id = UUID(str(raw_id))
        except (TypeError, ValueError) as exc:
            raise UnauthorizedError("Unauthorized") from exc
        email = payload.get("email")
        return cls(id=user_id, email=email if isinstance(email, str) else None)


class SessionContext:
    """Current user of one request or client, with change listeners.

    Listeners receive the new user, or None after sign-out.
    """

    def __init__(self, user: AuthenticatedUser | None = None) -> None:
        self._user = user
        self._observers: ObserverList[AuthenticatedUser | None] = ObserverList("session")

    @property
    def user(self) -> AuthenticatedUser | None:
        return self._user

    @property
    def is_authenticated(self) -> bool:
        return self._user is not None

    def require_user(self) -> AuthenticatedUser:
        if self._user is None:
            raise UnauthorizedError("Unauthorized")
        return self._user

    def subscribe(self, listener: Callable[[AuthenticatedUser | None], None]) -> Callable[[], None]:
        return self._observers.subscribe(listener)

    def set_user(self, user: AuthenticatedUser) -> None:
        self._user = user
        self._observers.dispatch(user)

    def sign_out(self) -> None:
        if self._user is None:
            return
        self._user = None
        self._observers.dispatch(None)
