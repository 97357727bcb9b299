"""HTTP status codes."""

from __future__ import annotations

from enum import IntEnum


class Status(IntEnum):
    """HTTP status codes emitted by the API."""

    OK = 200
    CREATED = 201
    BAD_REQUEST = 400
    UNAUTHORIZED = 401
    NOT_FOUND = 404
    METHOD_NOT_ALLOWED = 405
    PAYLOAD_TOO_LARGE = 413
    INTERNAL_SERVER_ERROR = 500


__all__ = ["Status"]
