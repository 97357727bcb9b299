"""Declarative msgspec models and the SQL that persists them.

Models are frozen :class:`msgspec.Struct` subclasses registered with
:func:`model`.  :class:`ORM` renders parameterised statements from the
registered metadata; every operation takes an optional ``connection`` so
several statements can share one :meth:`Database.transaction`.
"""

from __future__ import annotations

import datetime as dt
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Callable, Generic, Mapping, Sequence, TypeVar, get_type_hints

import msgspec
from id57 import generate_id57
from msgspec.inspect import NODEFAULT, StructType, type_info

from .database import Database, DatabaseConnection, DatabaseError, _quote_identifier

M = TypeVar("M", bound="Model")


class Model(msgspec.Struct, frozen=True, omit_defaults=True, kw_only=True):
    """Base class for persisted records."""


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class DatabaseModel(Model, kw_only=True):
    """Record with an ``id57`` key and creation/update timestamps."""

    id: str = msgspec.field(default_factory=generate_id57)
    created_at: dt.datetime = msgspec.field(default_factory=_utcnow)
    updated_at: dt.datetime = msgspec.field(default_factory=_utcnow)


@dataclass(slots=True, frozen=True)
class FieldInfo:
    name: str
    column: str
    python_type: Any
    default: Any = msgspec.UNSET
    default_factory: Callable[[], Any] | None = None

    @property
    def quoted(self) -> str:
        return _quote_identifier(self.column)


@dataclass(slots=True)
class ModelInfo(Generic[M]):
    """Table mapping for one registered model."""

    model: type[M]
    table: str
    identity: tuple[str, ...]
    fields: tuple[FieldInfo, ...]
    redacted_fields: frozenset[str] = frozenset()
    field_map: dict[str, FieldInfo] = field(init=False)

    def __post_init__(self) -> None:
        self.field_map = {info.name: info for info in self.fields}
        unknown = sorted(name for name in self.redacted_fields if name not in self.field_map)
        if unknown:
            raise ValueError(f"Unknown redacted field(s) {', '.join(unknown)} for model {self.model.__name__}")

    def columns(self) -> tuple[str, ...]:
        return tuple(info.column for info in self.fields)

    def resolve(self, name: str) -> FieldInfo:
        try:
            return self.field_map[name]
        except KeyError as exc:
            raise LookupError(f"Unknown field '{name}' for model {self.model.__name__}") from exc

    def projection(self) -> str:
        return ", ".join(
            info.quoted if info.column == info.name else f"{info.quoted} AS {_quote_identifier(info.name)}"
            for info in self.fields
        )

    def load(self, row: Mapping[str, Any]) -> M:
        return msgspec.convert(row, type=self.model)


class ModelRegistry:
    """Lookup of model metadata by class and by table name."""

    def __init__(self) -> None:
        self._by_model: dict[type[Model], ModelInfo[Any]] = {}
        self._by_table: dict[str, ModelInfo[Any]] = {}

    def register(self, info: ModelInfo[Any]) -> None:
        if info.model in self._by_model:
            raise ValueError(f"Model {info.model.__name__} already registered")
        if info.table in self._by_table:
            raise ValueError(f"Table '{info.table}' already registered")
        self._by_model[info.model] = info
        self._by_table[info.table] = info

    def info_for(self, model: type[M]) -> ModelInfo[M]:
        try:
            return self._by_model[model]
        except KeyError as exc:
            raise LookupError(f"Model {model.__name__} is not registered") from exc

    def info_for_table(self, table: str) -> ModelInfo[Any]:
        try:
            return self._by_table[table]
        except KeyError as exc:
            raise LookupError(f"Table '{table}' is not registered") from exc


_default_registry = ModelRegistry()


def default_registry() -> ModelRegistry:
    return _default_registry


def model(
    *,
    table: str,
    identity: Sequence[str] = ("id",),
    registry: ModelRegistry | None = None,
    redacted_fields: Sequence[str] = (),
) -> Callable[[type[M]], type[M]]:
    """Register the decorated struct as the mapping for ``table``.

    ``redacted_fields`` are stored but never serialized by
    :func:`ekklesia.serialization.json_encode`.
    """

    def decorator(cls: type[M]) -> type[M]:
        info = ModelInfo(
            model=cls,
            table=table,
            identity=tuple(identity),
            fields=_inspect_fields(cls),
            redacted_fields=frozenset(redacted_fields),
        )
        (registry or _default_registry).register(info)
        setattr(cls, "__model_info__", info)
        return cls

    return decorator


def _inspect_fields(cls: type[Model]) -> tuple[FieldInfo, ...]:
    metadata = type_info(cls)
    if not isinstance(metadata, StructType):  # pragma: no cover - msgspec ensures this
        raise TypeError(f"Model {cls!r} is not a msgspec.Struct")
    hints = get_type_hints(cls, include_extras=True)
    return tuple(
        FieldInfo(
            name=item.name,
            column=item.encode_name,
            python_type=hints.get(item.name, Any),
            default=msgspec.UNSET if item.default is NODEFAULT else item.default,
            default_factory=None if item.default_factory is NODEFAULT else item.default_factory,
        )
        for item in metadata.fields
    )


class _Statement:
    """SQL text plus the positional parameters its ``$n`` placeholders refer to."""

    def __init__(self, head: str) -> None:
        self.parts = [head]
        self.parameters: list[Any] = []

    def bind(self, value: Any) -> str:
        self.parameters.append(_db_value(value))
        return f"${len(self.parameters)}"

    def add(self, fragment: str) -> "_Statement":
        self.parts.append(fragment)
        return self

    def where(self, info: ModelInfo[Any], filters: Mapping[str, Any] | None) -> "_Statement":
        if not filters:
            return self
        conditions = []
        for name, value in filters.items():
            column = info.resolve(name).quoted
            conditions.append(f"{column} IS NULL" if value is None else f"{column} = {self.bind(value)}")
        return self.add("WHERE " + " AND ".join(conditions))

    @property
    def sql(self) -> str:
        return " ".join(self.parts)


class ORM:
    """Execute model statements against a :class:`~ekklesia.database.Database`."""

    def __init__(self, database: Database, registry: ModelRegistry | None = None) -> None:
        self.database = database
        self.registry = registry or _default_registry

    async def insert(
        self,
        model: type[M],
        data: M | Mapping[str, Any],
        *,
        connection: DatabaseConnection | None = None,
    ) -> M:
        info = self.registry.info_for(model)
        instance = data if isinstance(data, info.model) else msgspec.convert(data, type=info.model)
        statement = _Statement(f"INSERT INTO {self._table(info)}")
        placeholders = [statement.bind(getattr(instance, item.name)) for item in info.fields]
        statement.add(f"({', '.join(item.quoted for item in info.fields)})")
        statement.add(f"VALUES ({', '.join(placeholders)})")
        statement.add(f"RETURNING {info.projection()}")
        rows = await self._fetch(statement, connection)
        if not rows:
            raise DatabaseError(f"Insert into {info.table} did not return any rows")
        return info.load(rows[0])

    async def select(
        self,
        model: type[M],
        *,
        filters: Mapping[str, Any] | None = None,
        order_by: Sequence[str] | None = None,
        limit: int | None = None,
        connection: DatabaseConnection | None = None,
    ) -> list[M]:
        info = self.registry.info_for(model)
        statement = _Statement(f"SELECT {info.projection()} FROM {self._table(info)}").where(info, filters)
        if order_by:
            statement.add("ORDER BY " + ", ".join(_order_term(info, term) for term in order_by))
        if limit is not None:
            statement.add(f"LIMIT {statement.bind(limit)}")
        return [info.load(row) for row in await self._fetch(statement, connection)]

    async def get(
        self,
        model: type[M],
        *,
        filters: Mapping[str, Any],
        connection: DatabaseConnection | None = None,
    ) -> M | None:
        rows = await self.select(model, filters=filters, limit=1, connection=connection)
        return rows[0] if rows else None

    async def count(
        self,
        model: type[M],
        *,
        filters: Mapping[str, Any] | None = None,
        connection: DatabaseConnection | None = None,
    ) -> int:
        info = self.registry.info_for(model)
        statement = _Statement(f"SELECT count(*) AS total FROM {self._table(info)}").where(info, filters)
        rows = await self._fetch(statement, connection)
        return int(rows[0]["total"]) if rows else 0

    async def update(
        self,
        model: type[M],
        values: Mapping[str, Any],
        *,
        filters: Mapping[str, Any] | None = None,
        connection: DatabaseConnection | None = None,
    ) -> list[M]:
        """Apply ``values`` to every matching row and return the updated records."""

        info = self.registry.info_for(model)
        if not values:
            return await self.select(model, filters=filters, connection=connection)
        changes = dict(values)
        if "updated_at" in info.field_map:
            changes["updated_at"] = _utcnow()
        statement = _Statement(f"UPDATE {self._table(info)}")
        assignments = [f"{info.resolve(name).quoted} = {statement.bind(value)}" for name, value in changes.items()]
        statement.add("SET " + ", ".join(assignments))
        statement.where(info, filters).add(f"RETURNING {info.projection()}")
        return [info.load(row) for row in await self._fetch(statement, connection)]

    async def _fetch(self, statement: _Statement, connection: DatabaseConnection | None) -> list[dict[str, Any]]:
        async with self._connect(connection) as conn:
            return await conn.fetch_all(statement.sql, statement.parameters)

    @asynccontextmanager
    async def _connect(self, connection: DatabaseConnection | None) -> AsyncIterator[DatabaseConnection]:
        if connection is not None:
            yield connection
            return
        async with self.database.connection() as conn:
            yield conn

    def _table(self, info: ModelInfo[Any]) -> str:
        return f"{_quote_identifier(self.database.config.schema)}.{_quote_identifier(info.table)}"


def _order_term(info: ModelInfo[Any], term: str) -> str:
    name, _, direction = term.strip().partition(" ")
    direction = direction.strip().upper() or "ASC"
    if direction not in {"ASC", "DESC"}:
        raise ValueError(f"Unsupported sort direction in {term!r}")
    return f"{info.resolve(name).quoted} {direction}"


def _db_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


__all__ = [
    "ORM",
    "DatabaseModel",
    "FieldInfo",
    "Model",
    "ModelInfo",
    "ModelRegistry",
    "default_registry",
    "model",
]
