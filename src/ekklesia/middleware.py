"""Middleware chaining primitives."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Awaitable, Callable, Sequence

from .exceptions import AuthenticationError
from .requests import Request
from .responses import Response, apply_default_security_headers
from .tenancy import TenantContext

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .authentication import AuthenticationService

logger = logging.getLogger(__name__)

Handler = Callable[[Request], Awaitable[Response]]
MiddlewareCallable = Callable[[Request, Handler], Awaitable[Response]]


def apply_middleware(middlewares: Sequence[MiddlewareCallable], endpoint: Handler) -> Handler:
    """Wrap ``endpoint`` so ``middlewares[0]`` sees the request first."""

    if not middlewares:
        return endpoint
    outer, rest = middlewares[0], middlewares[1:]
    inner = apply_middleware(rest, endpoint)

    async def handler(request: Request) -> Response:
        return await outer(request, inner)

    return handler


async def security_headers_middleware(request: Request, handler: Handler) -> Response:
    """Outermost layer: add any missing default security header."""

    response = await handler(request)
    return apply_default_security_headers(response)


def bearer_authentication(service: "AuthenticationService") -> MiddlewareCallable:
    """Attach the caller's identity and tenant context from a bearer token.

    A missing or rejected token leaves the request anonymous; routes that
    require a caller reject anonymous requests themselves.
    """

    async def middleware(request: Request, handler: Handler) -> Response:
        token = request.bearer_token()
        if token is not None:
            try:
                identity = await service.identify(token)
            except AuthenticationError:
                logger.info("rejected bearer token for %s %s", request.method, request.path)
            else:
                request.with_identity(identity, TenantContext.from_identity(identity))
        return await handler(request)

    return middleware


__all__ = [
    "Handler",
    "MiddlewareCallable",
    "apply_middleware",
    "bearer_authentication",
    "security_headers_middleware",
]
