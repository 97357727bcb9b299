"""The application object: routing, dependency wiring, error mapping and ASGI."""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Mapping

import msgspec

from .config import AppConfig
from .database import Database
from .dependency import DependencyProvider, DependencyScope
from .exceptions import (
    AlreadyInitializedError,
    AuthenticationError,
    HTTPError,
    PersistenceFailure,
    ValidationError,
)
from .http import Status
from .middleware import MiddlewareCallable, apply_middleware, security_headers_middleware
from .observability import Observability
from .orm import ORM
from .requests import Request
from .responses import JSONResponse, Response, exception_to_response
from .routing import MethodNotAllowed, Route, RouteMatch, Router

logger = logging.getLogger(__name__)

Hook = Callable[[], Awaitable[None] | None]
Receive = Callable[[], Awaitable[Mapping[str, Any]]]
Send = Callable[[Mapping[str, Any]], Awaitable[None]]

INTERNAL_ERROR_DETAIL = {"code": "internal_error", "message": "Internal server error"}


class EkklesiaApp:
    """Holds the router, the services and the lifecycle hooks of one deployment.

    Requests enter through :meth:`dispatch` (in-process) or ``__call__``
    (ASGI). Every response, errors included, carries the security headers
    and the request id.
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        *,
        dependency_provider: DependencyProvider | None = None,
        database: Database | None = None,
        orm: ORM | None = None,
        observability: Observability | None = None,
    ) -> None:
        self.config = config or AppConfig()
        self.router = Router()
        self.dependencies = dependency_provider or DependencyProvider()
        self.database = database or Database(self.config.database)
        self.orm = orm or ORM(self.database)
        self.observability = observability or Observability(self.config.observability)
        self._middlewares: list[MiddlewareCallable] = [security_headers_middleware]
        self._startup: list[Hook] = [self.database.startup]
        self._shutdown: list[Hook] = [self.database.shutdown]

        for dependency_type, instance in (
            (Database, self.database),
            (ORM, self.orm),
            (Observability, self.observability),
        ):
            self.dependencies.provide(dependency_type, _constant(instance))

    def include(self, *handlers: Callable[..., Awaitable[Any] | Any]) -> None:
        self.router.include(handlers)

    def url_path_for(self, name: str, /, **params: Any) -> str:
        for route in self.router.routes():
            if route.spec.name == name:
                path = route.spec.path
                for key, value in params.items():
                    path = path.replace("{" + key + "}", str(value))
                return path
        raise LookupError(f"Route {name!r} not found")

    def add_middleware(self, middleware: MiddlewareCallable) -> None:
        """Append ``middleware``; it runs inside the security header layer."""

        self._middlewares.append(middleware)

    def on_startup(self, func: Hook) -> Hook:
        self._startup.append(func)
        return func

    def on_shutdown(self, func: Hook) -> Hook:
        self._shutdown.append(func)
        return func

    async def startup(self) -> None:
        await _run_hooks(self._startup)

    async def shutdown(self) -> None:
        await _run_hooks(self._shutdown)

    async def dispatch(
        self,
        method: str,
        path: str,
        *,
        query_string: str | None = None,
        headers: Mapping[str, str] | None = None,
        body: bytes | None = None,
    ) -> Response:
        request = Request(method=method, path=path, headers=headers, query_string=query_string, body=body)
        observation = self.observability.on_request_start(request)
        try:
            response = await self._handle(request)
        except Exception as exc:
            error = self._error_for(request, exc)
            self.observability.on_request_error(observation, exc, status_code=int(error.status))
            return self.observability.tag(observation, exception_to_response(error))
        return self.observability.on_request_success(observation, response)

    def _error_for(self, request: Request, exc: Exception) -> HTTPError:
        error = http_error_for(exc)
        if isinstance(exc, PersistenceFailure):
            logger.exception("persistence failure for %s %s", request.method, request.path)
        elif error is None:
            logger.exception("unhandled error for %s %s", request.method, request.path)
        return error or HTTPError(Status.INTERNAL_SERVER_ERROR, INTERNAL_ERROR_DETAIL)

    async def _handle(self, request: Request) -> Response:
        match = self._match(request)
        request.path_params = dict(match.params)
        scope = self.dependencies.scope(request)

        async def endpoint(req: Request) -> Response:
            return await self._call_endpoint(match.route, req, scope)

        return await apply_middleware(self._middlewares, endpoint)(request)

    def _match(self, request: Request) -> RouteMatch:
        try:
            return self.router.find(request.method, request.path)
        except MethodNotAllowed as exc:
            detail = {"code": "method_not_allowed", "message": f"Allowed: {', '.join(exc.allowed)}"}
            raise HTTPError(Status.METHOD_NOT_ALLOWED, detail) from exc
        except LookupError as exc:
            raise HTTPError(Status.NOT_FOUND, {"code": "not_found", "message": "Not found"}) from exc

    async def _call_endpoint(self, route: Route, request: Request, scope: DependencyScope) -> Response:
        if not route.spec.public and request.identity is None:
            raise HTTPError(Status.UNAUTHORIZED, {"code": "unauthorized", "message": "Authentication required"})
        kwargs: dict[str, Any] = {}
        for name, parameter in route.signature.parameters.items():
            if name in route.param_names:
                kwargs[name] = request.path_params[name]
                continue
            annotation = route.type_hints.get(name, parameter.annotation)
            if annotation is inspect.Parameter.empty:
                raise TypeError(f"Endpoint parameter {name!r} requires a type annotation")
            kwargs[name] = await scope.get(annotation)
        result = route.spec.endpoint(**kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result if isinstance(result, Response) else JSONResponse(result)

    async def __call__(self, scope: Mapping[str, Any], receive: Receive, send: Send) -> None:
        kind = scope.get("type")
        if kind == "http":
            await self._serve_http(scope, receive, send)
        elif kind == "lifespan":
            await self._serve_lifespan(receive, send)
        else:
            raise RuntimeError("EkklesiaApp only supports HTTP and lifespan scopes")

    async def _serve_http(self, scope: Mapping[str, Any], receive: Receive, send: Send) -> None:
        try:
            body = await read_body(receive, self.config.max_request_body_bytes)
        except HTTPError as exc:
            response = exception_to_response(exc)
        else:
            response = await self.dispatch(
                scope["method"],
                scope["path"],
                query_string=(scope.get("query_string") or b"").decode(),
                headers={name.decode().lower(): value.decode() for name, value in scope.get("headers", [])},
                body=body,
            )
        raw_headers = [(name.encode("latin-1"), value.encode("latin-1")) for name, value in response.headers]
        await send({"type": "http.response.start", "status": response.status, "headers": raw_headers})
        await send({"type": "http.response.body", "body": response.body})

    async def _serve_lifespan(self, receive: Receive, send: Send) -> None:
        while True:
            message = await receive()
            if message.get("type") == "lifespan.startup":
                try:
                    await self.startup()
                except Exception as exc:
                    logger.exception("startup failed")
                    await send({"type": "lifespan.startup.failed", "message": str(exc)})
                    return
                await send({"type": "lifespan.startup.complete"})
            elif message.get("type") == "lifespan.shutdown":
                await self.shutdown()
                await send({"type": "lifespan.shutdown.complete"})
                return


def http_error_for(exc: BaseException) -> HTTPError | None:
    """Map a domain exception onto its HTTP error, or ``None`` if it is unexpected.

    Persistence failures map to a generic 500 so driver details never
    reach the client.
    """

    if isinstance(exc, HTTPError):
        return exc
    if isinstance(exc, ValidationError):
        violations = [msgspec.to_builtins(violation) for violation in exc.violations]
        return HTTPError(
            Status.BAD_REQUEST,
            {"code": "validation_error", "message": "Invalid request payload", "violations": violations},
        )
    if isinstance(exc, AlreadyInitializedError):
        return HTTPError(Status.BAD_REQUEST, {"code": "already_initialized", "message": str(exc)})
    if isinstance(exc, AuthenticationError):
        return HTTPError(Status.UNAUTHORIZED, {"code": "unauthorized", "message": str(exc)})
    if isinstance(exc, PersistenceFailure):
        return HTTPError(Status.INTERNAL_SERVER_ERROR, INTERNAL_ERROR_DETAIL)
    return None


async def read_body(receive: Receive, limit: int | None) -> bytes:
    """Collect the ASGI request body, failing with 413 once it exceeds ``limit``."""

    body = bytearray()
    while True:
        message = await receive()
        kind = message.get("type")
        if kind == "http.disconnect":
            break
        if kind == "http.request":
            body += message.get("body", b"")
            if limit is not None and len(body) > limit:
                detail = {"code": "payload_too_large", "message": f"Request body exceeds {limit} bytes"}
                raise HTTPError(Status.PAYLOAD_TOO_LARGE, detail)
            if not message.get("more_body", False):
                break
    return bytes(body)


def _constant(value: Any) -> Callable[[], Any]:
    return lambda: value


async def _run_hooks(hooks: list[Hook]) -> None:
    for hook in hooks:
        outcome = hook()
        if inspect.isawaitable(outcome):
            await outcome
