"""psqlpy connection pool, connection helpers and transactions."""

from __future__ import annotations

import inspect
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Mapping, Sequence

import msgspec
import psqlpy
from msgspec import structs

from .exceptions import PersistenceFailure

logger = logging.getLogger(__name__)

PoolFactory = Callable[[Mapping[str, Any]], Any]


class DatabaseError(PersistenceFailure):
    """A statement or the pool failed; the driver error is kept as ``__cause__``."""


class PoolConfig(msgspec.Struct, frozen=True, omit_defaults=True):
    """Keyword arguments for :class:`psqlpy.ConnectionPool`.

    ``None`` values are left out so the driver applies its own defaults;
    ``options`` is merged in last for settings without a dedicated field.
    """

    dsn: str | None = None
    host: str | None = None
    port: int | None = None
    db_name: str | None = None
    username: str | None = None
    password: str | None = None
    application_name: str | None = "ekklesia"
    max_db_pool_size: int = 10
    connect_timeout_sec: int | None = None
    tcp_user_timeout_sec: int | None = None
    options: dict[str, str] = msgspec.field(default_factory=dict)


class DatabaseConfig(msgspec.Struct, frozen=True):
    pool: PoolConfig = PoolConfig()
    schema: str = "public"
    search_path: tuple[str, ...] = ("public",)
    default_role: str | None = None

    def effective_search_path(self) -> tuple[str, ...]:
        """``schema`` first, then the remaining ``search_path`` entries once each."""

        return tuple(dict.fromkeys((self.schema, *self.search_path)))


@dataclass(slots=True)
class DatabaseResult:
    rows: list[dict[str, Any]]

    def first(self) -> dict[str, Any] | None:
        return next(iter(self.rows), None)

    def scalar(self) -> Any:
        row = self.first()
        return next(iter(row.values()), None) if row else None


class DatabaseConnection:
    """A pooled psqlpy connection with row normalisation and error wrapping."""

    def __init__(self, raw_connection: Any) -> None:
        self._raw = raw_connection
        self.in_transaction = False

    async def execute(
        self,
        query: str,
        parameters: Sequence[Any] | None = None,
        *,
        prepared: bool = False,
    ) -> DatabaseResult:
        args = None if parameters is None else list(parameters)
        try:
            outcome = await self._raw.execute(query, args, prepared=prepared)
        except DatabaseError:
            raise
        except Exception as exc:
            # Driver messages can carry credentials or row data.
            raise DatabaseError(f"query failed: {type(exc).__name__}") from exc
        return DatabaseResult(_coerce_rows(outcome))

    async def fetch_all(
        self, query: str, parameters: Sequence[Any] | None = None, **kwargs: Any
    ) -> list[dict[str, Any]]:
        result = await self.execute(query, parameters, **kwargs)
        return result.rows

    async def fetch_one(
        self, query: str, parameters: Sequence[Any] | None = None, **kwargs: Any
    ) -> dict[str, Any] | None:
        result = await self.execute(query, parameters, **kwargs)
        return result.first()

    async def fetch_value(self, query: str, parameters: Sequence[Any] | None = None, **kwargs: Any) -> Any:
        result = await self.execute(query, parameters, **kwargs)
        return result.scalar()

    async def set_search_path(self, schemas: Sequence[str]) -> None:
        await self.execute("SET search_path TO " + ", ".join(map(_quote_identifier, schemas)))

    async def set_role(self, role: str | None) -> None:
        if role:
            await self.execute(f"SET ROLE {_quote_identifier(role)}")

    async def advisory_lock(self, key: int) -> None:
        """Wait for ``pg_advisory_xact_lock(key)``; it is released when the transaction ends."""

        if not self.in_transaction:
            raise DatabaseError("advisory locks require an open transaction")
        await self.execute("SELECT pg_advisory_xact_lock($1)", [key])


class Database:
    """Owns the pool and hands out configured connections and transactions.

    The pool is created lazily from ``config.pool`` unless one is injected,
    which is how the test suite swaps in in-memory doubles.
    """

    def __init__(
        self,
        config: DatabaseConfig,
        *,
        pool: Any | None = None,
        pool_factory: PoolFactory | None = None,
    ) -> None:
        self.config = config
        self._pool = pool
        self._pool_factory = pool_factory or _default_pool_factory

    async def startup(self) -> None:
        self._get_pool()

    async def shutdown(self) -> None:
        pool, self._pool = self._pool, None
        close = getattr(pool, "close", None)
        if close is None:
            return
        outcome = close()
        if inspect.isawaitable(outcome):
            await outcome

    @asynccontextmanager
    async def connection(self, *, role: str | None = None) -> AsyncIterator[DatabaseConnection]:
        async with self._get_pool().acquire() as raw:
            connection = DatabaseConnection(raw)
            await connection.set_search_path(self.config.effective_search_path())
            await connection.set_role(role or self.config.default_role)
            yield connection

    @asynccontextmanager
    async def transaction(self, *, role: str | None = None) -> AsyncIterator[DatabaseConnection]:
        """Commit when the block finishes; roll back on any exception, cancellation included."""

        async with self.connection(role=role) as connection:
            await connection.execute("BEGIN")
            connection.in_transaction = True
            try:
                yield connection
            except BaseException:
                connection.in_transaction = False
                await _rollback(connection)
                raise
            connection.in_transaction = False
            await connection.execute("COMMIT")

    def _get_pool(self) -> Any:
        if self._pool is None:
            self._pool = self._pool_factory(_pool_kwargs(self.config.pool))
        return self._pool


async def _rollback(connection: DatabaseConnection) -> None:
    try:
        await connection.execute("ROLLBACK")
    except DatabaseError:
        logger.exception("rollback failed")


def _coerce_rows(result: Any) -> list[dict[str, Any]]:
    """Normalise a psqlpy ``QueryResult`` (or a plain row/list) into a list of dicts."""

    data = result.result() if hasattr(result, "result") else result
    if data is None:
        return []
    if isinstance(data, dict):
        return [dict(data)]
    if isinstance(data, list):
        return [dict(row) for row in data]
    raise DatabaseError(f"Unexpected query result type: {type(data)!r}")


def _pool_kwargs(config: PoolConfig) -> dict[str, Any]:
    values = structs.asdict(config)
    extra = values.pop("options") or {}
    kwargs = {name: value for name, value in values.items() if value is not None}
    kwargs.update(extra)
    return kwargs


def _default_pool_factory(options: Mapping[str, Any]) -> Any:  # pragma: no cover - needs a server
    return psqlpy.ConnectionPool(**options)


def _quote_identifier(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


__all__ = [
    "Database",
    "DatabaseConfig",
    "DatabaseConnection",
    "DatabaseError",
    "DatabaseResult",
    "PoolConfig",
    "_quote_identifier",
]
