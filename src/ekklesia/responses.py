"""Immutable HTTP responses and the JSON/error constructors used by handlers."""

from __future__ import annotations

from typing import Any, Iterable

import msgspec
from msgspec import structs

from .exceptions import HTTPError
from .http import Status
from .serialization import json_encode

Headers = tuple[tuple[str, str], ...]

JSON_CONTENT_TYPE: Headers = (("content-type", "application/json"),)

DEFAULT_SECURITY_HEADERS: Headers = (
    ("strict-transport-security", "max-age=63072000; includeSubDomains"),
    ("x-content-type-options", "nosniff"),
    ("referrer-policy", "no-referrer"),
    ("x-frame-options", "DENY"),
    ("cache-control", "no-store"),
)


class Response(msgspec.Struct, frozen=True):
    status: int = int(Status.OK)
    headers: Headers = ()
    body: bytes = b""

    def with_headers(self, headers: Iterable[tuple[str, str]]) -> "Response":
        return structs.replace(self, headers=(*self.headers, *headers))

    def header(self, name: str) -> str | None:
        """First value of ``name``, compared case-insensitively."""

        wanted = name.lower()
        return next((value for key, value in self.headers if key.lower() == wanted), None)


def apply_default_security_headers(response: Response, *, headers: Iterable[tuple[str, str]] | None = None) -> Response:
    """Append each hardening header the response does not already set."""

    present = {key.lower() for key, _ in response.headers}
    missing = [(key, value) for key, value in (headers or DEFAULT_SECURITY_HEADERS) if key.lower() not in present]
    return response.with_headers(missing) if missing else response


def JSONResponse(
    data: Any,
    *,
    status: int = int(Status.OK),
    headers: Iterable[tuple[str, str]] | None = None,
) -> Response:
    response = Response(int(status), (*JSON_CONTENT_TYPE, *(headers or ())), json_encode(data))
    return apply_default_security_headers(response)


def exception_to_response(exc: HTTPError) -> Response:
    """Render ``exc`` as the ``{"error": {"status", "detail"}}`` envelope."""

    return apply_default_security_headers(Response(int(exc.status), JSON_CONTENT_TYPE, exc.to_response_body()))


__all__ = [
    "DEFAULT_SECURITY_HEADERS",
    "JSONResponse",
    "Response",
    "apply_default_security_headers",
    "exception_to_response",
]
