"""In-process client for exercising an application without a server."""

from __future__ import annotations

from typing import Any, Mapping
from urllib.parse import urlencode

from .application import EkklesiaApp
from .responses import Response
from .serialization import json_decode, json_encode


class TestClient:
    """Dispatch requests straight into :meth:`EkklesiaApp.dispatch`.

    Used as an async context manager so startup and shutdown hooks run.
    ``token``, when set on the client or per call, is sent as a bearer
    ``Authorization`` header.
    """

    __test__ = False

    def __init__(self, app: EkklesiaApp, *, token: str | None = None) -> None:
        self.app = app
        self.token = token

    async def __aenter__(self) -> "TestClient":
        await self.app.startup()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.app.shutdown()

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any | None = None,
        content: bytes | None = None,
        query: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        token: str | None = None,
    ) -> Response:
        outgoing = {name.lower(): value for name, value in (headers or {}).items()}
        body = content or b""
        if json is not None:
            body = json_encode(json)
            outgoing.setdefault("content-type", "application/json")
        if token or self.token:
            outgoing.setdefault("authorization", f"Bearer {token or self.token}")
        return await self.app.dispatch(
            method,
            path,
            query_string=urlencode(query or {}, doseq=True),
            headers=outgoing,
            body=body,
        )

    async def get(self, path: str, **kwargs: Any) -> Response:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs: Any) -> Response:
        return await self.request("POST", path, **kwargs)


def response_json(response: Response) -> Any:
    return json_decode(response.body)


__all__ = ["TestClient", "response_json"]
