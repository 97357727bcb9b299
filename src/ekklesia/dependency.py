"""Type-keyed dependency injection for endpoints."""

from __future__ import annotations

import inspect
from typing import Any, Awaitable, Callable, TypeVar, get_type_hints

from .identity import AssembledIdentity
from .requests import Request
from .tenancy import TenantContext

T = TypeVar("T")
DependencyCallable = Callable[..., Awaitable[Any] | Any]

# Set on the request by the bearer middleware, after the scope is created.
_REQUEST_ATTRIBUTES: dict[type[Any], str] = {TenantContext: "tenant", AssembledIdentity: "identity"}


class DependencyProvider:
    """Factories keyed by the type an endpoint parameter is annotated with."""

    def __init__(self) -> None:
        self._factories: dict[type[Any], DependencyCallable] = {}

    def provide(self, dependency_type: type[T], factory: DependencyCallable) -> None:
        self._factories[dependency_type] = factory

    def scope(self, request: Request) -> "DependencyScope":
        return DependencyScope(self._factories, request)


class DependencyScope:
    """Per-request resolution.

    ``Request``, ``TenantContext`` and ``AssembledIdentity`` come from the
    request itself. Other types are built by their factory at most once per
    scope; factory parameters are resolved the same way, by annotation.
    """

    def __init__(self, factories: dict[type[Any], DependencyCallable], request: Request) -> None:
        self._factories = factories
        self._request = request
        self._resolved: dict[type[Any], Any] = {Request: request}

    async def get(self, dependency_type: type[T]) -> T:
        attribute = _REQUEST_ATTRIBUTES.get(dependency_type)
        if attribute is not None:
            value = getattr(self._request, attribute)
            if value is None:
                raise LookupError(f"Request carries no {attribute}")
            return value
        if dependency_type in self._resolved:
            return self._resolved[dependency_type]
        factory = self._factories.get(dependency_type)
        if factory is None:
            raise LookupError(f"No dependency registered for {dependency_type!r}")
        value = factory(**await self._arguments_for(factory))
        if inspect.isawaitable(value):
            value = await value
        self._resolved[dependency_type] = value
        return value

    async def _arguments_for(self, factory: DependencyCallable) -> dict[str, Any]:
        hints = get_type_hints(factory)
        hints.pop("return", None)
        arguments = {}
        for name, parameter in inspect.signature(factory).parameters.items():
            annotation = hints.get(name, parameter.annotation)
            if annotation is inspect.Parameter.empty:
                raise TypeError(f"Dependency factory {factory} is missing typing for parameter {name}")
            arguments[name] = await self.get(annotation)
        return arguments
