"""Exception types shared across Ekklesia."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Iterable

from .serialization import json_encode

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .validation import Violation


class EkklesiaError(Exception):
    """Base error type."""


class HTTPError(EkklesiaError):
    """Structured HTTP error that is msgspec serializable."""

    def __init__(self, status: int, detail: Any) -> None:
        super().__init__(status, detail)
        self.status = status
        self.detail = detail

    def to_response_body(self) -> bytes:
        return json_encode({"error": {"status": self.status, "detail": self.detail}})


class ValidationError(EkklesiaError):
    """Raised when an inbound payload violates its schema."""

    def __init__(self, violations: Iterable["Violation"]) -> None:
        self.violations = tuple(violations)
        fields = ", ".join(sorted({violation.field for violation in self.violations}))
        super().__init__(f"invalid fields: {fields}")

    @property
    def fields(self) -> frozenset[str]:
        return frozenset(violation.field for violation in self.violations)


class AlreadyInitializedError(EkklesiaError):
    """Raised when the system already has a super administrator."""

    def __init__(self, message: str = "System is already initialized") -> None:
        super().__init__(message)


class PersistenceFailure(EkklesiaError):
    """Raised when the relational store cannot complete an operation."""


class AuthenticationError(EkklesiaError):
    """Raised when credentials or session tokens are rejected."""


__all__ = [
    "AlreadyInitializedError",
    "AuthenticationError",
    "EkklesiaError",
    "HTTPError",
    "PersistenceFailure",
    "ValidationError",
]
