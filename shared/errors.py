"""Typed errors raised by the OTC desk core and mapped to HTTP by the API."""

from __future__ import annotations

from typing import Any


class OtcError(Exception):
    """Base class for errors surfaced to callers of lifecycle operations."""

    code = "INTERNAL_ERROR"
    status_code = 500
    retryable = False

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_payload(self) -> dict[str, Any]:
        return {
            "detail": self.message,
            "code": self.code,
            "retryable": self.retryable,
            "details": self.details,
        }


class ValidationError(OtcError):
    """Malformed or missing input. No state was mutated."""

    code = "VALIDATION_ERROR"
    status_code = 400

    @classmethod
    def from_fields(cls, fields: dict[str, str]) -> "ValidationError":
        names = ", ".join(sorted(fields))
        return cls(f"Invalid or missing fields: {names}", details={"fields": fields})

    @property
    def fields(self) -> dict[str, str]:
        return dict(self.details.get("fields") or {})


class NotFoundError(OtcError):
    """Referenced entity is absent or in the wrong state for the operation."""

    code = "NOT_FOUND"
    status_code = 404


class ConflictError(OtcError):
    """A concurrent state change won the race; refresh and retry."""

    code = "CONFLICT"
    status_code = 409
    retryable = True


class TransportError(OtcError):
    """Store or channel unreachable, failing or timed out."""

    code = "BACKEND_UNAVAILABLE"
    status_code = 503
    retryable = True


class UnauthorizedError(OtcError):
    """Raised when a bearer token or API key cannot be validated."""

    code = "UNAUTHORIZED"
    status_code = 401
