"""Path routing for decorated endpoint functions.

Templates such as ``/users/{key}`` compile to anchored :mod:`rure`
patterns in which each ``{name}`` captures exactly one path segment.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Mapping, Sequence, get_type_hints

import rure
from rure.regex import RegexObject

Endpoint = Callable[..., Awaitable[Any] | Any]

_ROUTE_ATTRIBUTE = "__ekklesia_route__"
_REGEX_META = frozenset(r"\.+*?()|[]{}^$")


@dataclass(slots=True)
class RouteSpec:
    """What ``@route`` records on an endpoint."""

    path: str
    methods: tuple[str, ...]
    endpoint: Endpoint
    name: str | None = None
    public: bool = False


@dataclass(slots=True)
class Route:
    spec: RouteSpec
    pattern: RegexObject
    param_names: tuple[str, ...]
    signature: inspect.Signature = field(init=False)
    type_hints: Mapping[str, Any] = field(init=False)

    def __post_init__(self) -> None:
        self.signature = inspect.signature(self.spec.endpoint)
        self.type_hints = get_type_hints(self.spec.endpoint)

    def match(self, path: str) -> dict[str, str] | None:
        captures = self.pattern.match(path)
        if captures is None:
            return None
        return {name: captures.group(name) for name in self.param_names}


@dataclass(slots=True)
class RouteMatch:
    route: Route
    params: Mapping[str, str]


class MethodNotAllowed(LookupError):
    def __init__(self, method: str, path: str, allowed: Sequence[str]) -> None:
        super().__init__(f"{method} not allowed for {path}")
        self.allowed = tuple(allowed)


class Router:
    def __init__(self) -> None:
        self._routes: list[Route] = []

    def add_route(
        self,
        path: str,
        *,
        methods: Sequence[str],
        endpoint: Endpoint,
        name: str | None = None,
        public: bool = False,
    ) -> Route:
        verbs = tuple(dict.fromkeys(method.upper() for method in methods))
        pattern, param_names = compile_path(path)
        route = Route(RouteSpec(path, verbs, endpoint, name, public), pattern, param_names)
        self._routes.append(route)
        return route

    def include(self, handlers: Iterable[Endpoint]) -> None:
        for handler in handlers:
            spec: RouteSpec | None = getattr(handler, _ROUTE_ATTRIBUTE, None)
            if spec is None:
                raise ValueError(f"Handler {handler!r} missing @route decorator metadata")
            self.add_route(spec.path, methods=spec.methods, endpoint=handler, name=spec.name, public=spec.public)

    def routes(self) -> tuple[Route, ...]:
        return tuple(self._routes)

    def find(self, method: str, path: str) -> RouteMatch:
        """Match ``method`` and ``path`` in registration order.

        Raises :class:`MethodNotAllowed` when only other methods match the
        path, and a plain :class:`LookupError` when nothing does.
        """

        method = method.upper()
        allowed: dict[str, None] = {}
        for route in self._routes:
            params = route.match(path)
            if params is None:
                continue
            if method in route.spec.methods:
                return RouteMatch(route, params)
            allowed.update(dict.fromkeys(route.spec.methods))
        if allowed:
            raise MethodNotAllowed(method, path, tuple(allowed))
        raise LookupError(f"No route matches {method} {path}")


def compile_path(path: str) -> tuple[RegexObject, tuple[str, ...]]:
    names: list[str] = []
    pieces: list[str] = []
    for segment in path.split("/"):
        if segment.startswith("{") and segment.endswith("}"):
            name = segment[1:-1]
            if not name.isidentifier():
                raise ValueError(f"Invalid path parameter {segment!r} in {path!r}")
            names.append(name)
            pieces.append(f"(?P<{name}>[^/]+)")
        else:
            pieces.append(_escape_literal(segment))
    return rure.compile("^" + "/".join(pieces) + "$"), tuple(names)


def _escape_literal(segment: str) -> str:
    return "".join(f"\\{char}" if char in _REGEX_META else char for char in segment)


def route(
    path: str,
    *,
    methods: Sequence[str],
    name: str | None = None,
    public: bool = False,
) -> Callable[[Endpoint], Endpoint]:
    """Record routing metadata on the endpoint for :meth:`Router.include`.

    Routes are private unless ``public`` is set; the application answers
    anonymous calls to private routes with 401.
    """

    def decorator(func: Endpoint) -> Endpoint:
        setattr(func, _ROUTE_ATTRIBUTE, RouteSpec(path, tuple(methods), func, name, public))
        return func

    return decorator


def get(path: str, *, name: str | None = None, public: bool = False) -> Callable[[Endpoint], Endpoint]:
    return route(path, methods=["GET"], name=name, public=public)


def post(path: str, *, name: str | None = None, public: bool = False) -> Callable[[Endpoint], Endpoint]:
    return route(path, methods=["POST"], name=name, public=public)


__all__ = ["MethodNotAllowed", "Route", "RouteMatch", "RouteSpec", "Router", "compile_path", "get", "post", "route"]
