"""The request object handed to middleware, dependencies and endpoints."""

from __future__ import annotations

from functools import cached_property
from typing import TYPE_CHECKING, Any, Mapping, TypeVar
from urllib.parse import parse_qsl

import msgspec

from .serialization import json_decode

if TYPE_CHECKING:
    from .identity import AssembledIdentity
    from .tenancy import TenantContext

T = TypeVar("T")


class Request:
    """An HTTP request with lower-cased header names.

    ``identity`` and ``tenant`` stay ``None`` until the bearer middleware
    accepts a session token.
    """

    def __init__(
        self,
        *,
        method: str,
        path: str,
        headers: Mapping[str, str] | None = None,
        path_params: Mapping[str, str] | None = None,
        query_string: str | None = None,
        body: bytes | None = None,
    ) -> None:
        self.method = method.upper()
        self.path = path
        self.headers = {name.lower(): value for name, value in (headers or {}).items()}
        self.path_params = dict(path_params or {})
        self.query_string = query_string or ""
        self.identity: "AssembledIdentity | None" = None
        self.tenant: "TenantContext | None" = None
        self._body = body or b""
        self._decoded: Any = msgspec.UNSET

    @cached_property
    def query_params(self) -> dict[str, list[str]]:
        params: dict[str, list[str]] = {}
        for key, value in parse_qsl(self.query_string, keep_blank_values=True):
            params.setdefault(key, []).append(value)
        return params

    def header(self, name: str, default: str | None = None) -> str | None:
        return self.headers.get(name.lower(), default)

    def bearer_token(self) -> str | None:
        scheme, _, credentials = (self.header("authorization") or "").partition(" ")
        if scheme.lower() != "bearer":
            return None
        return credentials.strip() or None

    async def json(self, model: type[T] | None = None) -> T | Any:
        """Decode the body once; an empty body decodes to ``None``.

        With ``model`` the decoded value is converted through
        :func:`msgspec.convert`, so a struct's field renames apply.
        """

        if self._decoded is msgspec.UNSET:
            self._decoded = json_decode(self._body) if self._body else None
        if model is None:
            return self._decoded
        return msgspec.convert(self._decoded, type=model)

    def with_identity(self, identity: "AssembledIdentity | None", tenant: "TenantContext | None") -> "Request":
        self.identity = identity
        self.tenant = tenant
        return self
