"""Test support utilities for Ekklesia database, ORM and service tests."""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, List, Sequence

from msgspec import structs

from ekklesia.models import Church, Member, User
from ekklesia.orm import Model, default_registry


def model_row(instance: Model) -> dict[str, Any]:
    """Return the row a driver would hand back for ``instance``."""

    return {
        key: value.value if isinstance(value, Enum) else value for key, value in structs.asdict(instance).items()
    }


@dataclass
class FakeResult:
    rows: List[dict[str, Any]]

    def result(self) -> List[dict[str, Any]]:
        return self.rows


class FakeConnection:
    """Records every statement and replays queued result sets in order."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, list[Any], bool]] = []
        self._queued: list[list[dict[str, Any]]] = []
        self.fail_with: BaseException | None = None

    def queue_result(self, rows: Iterable[dict[str, Any]]) -> None:
        self._queued.append([dict(row) for row in rows])

    def statements(self) -> list[str]:
        return [call[1] for call in self.calls]

    async def execute(
        self,
        query: str,
        parameters: Sequence[Any] | None = None,
        *,
        prepared: bool = False,
    ) -> FakeResult:
        params = list(parameters or [])
        self.calls.append(("execute", query, params, prepared))
        keyword = query.lstrip().split(" ", 1)[0].upper()
        if keyword in {"SET", "BEGIN", "COMMIT", "ROLLBACK"}:
            return FakeResult([])
        if self.fail_with is not None:
            raise self.fail_with
        rows = self._queued.pop(0) if self._queued else []
        return FakeResult(rows)


class _Acquire:
    def __init__(self, connection: Any, on_release: Callable[[], Any] | None = None) -> None:
        self._connection = connection
        self._on_release = on_release

    async def __aenter__(self) -> Any:
        return self._connection

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._on_release is not None:
            await self._on_release()
        return None


class FakePool:
    def __init__(self, connection: FakeConnection | None = None) -> None:
        self.connection = connection or FakeConnection()
        self.closed = False

    def acquire(self) -> _Acquire:
        return _Acquire(self.connection)

    def close(self) -> None:
        self.closed = True


# --------------------------------------------------------------------------- in-memory store

_TABLE = r'"(?P<schema>\w+)"\."(?P<table>\w+)"'
_INSERT = re.compile(rf"^INSERT INTO {_TABLE} \((?P<columns>[^)]*)\) VALUES")
_COUNT = re.compile(rf"^SELECT count\(\*\) AS total FROM {_TABLE}(?: WHERE (?P<where>.*))?$")
_SELECT = re.compile(rf"^SELECT .* FROM {_TABLE}(?: WHERE (?P<where>.*?))?(?: LIMIT \$\d+)?$")
_UPDATE = re.compile(rf"^UPDATE {_TABLE} SET (?P<set>.*?) WHERE (?P<where>.*?) RETURNING")
_JOIN_KEY = re.compile(r'WHERE u\."(?P<column>\w+)" = \$1')
_CONDITION = re.compile(r'^"(?P<column>\w+)" (?:= \$(?P<index>\d+)|IS NULL)$')


def _parse_conditions(clause: str | None, params: Sequence[Any]) -> list[tuple[str, Any]]:
    if not clause:
        return []
    conditions: list[tuple[str, Any]] = []
    for part in clause.split(" AND "):
        match = _CONDITION.match(part.strip())
        if match is None:
            raise AssertionError(f"unsupported condition: {part}")
        index = match.group("index")
        conditions.append((match.group("column"), None if index is None else params[int(index) - 1]))
    return conditions


def _matches(row: dict[str, Any], conditions: list[tuple[str, Any]]) -> bool:
    return all(row.get(column) == value for column, value in conditions)


class MemoryStore:
    """Committed table contents plus the shared advisory lock table."""

    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {"churches": [], "users": [], "members": []}
        self.locks: dict[int, asyncio.Lock] = {}
        self.fail_on_insert: str | None = None
        self.statements: list[str] = []

    def lock(self, key: int) -> asyncio.Lock:
        return self.locks.setdefault(key, asyncio.Lock())

    def add(self, table: str, row: dict[str, Any]) -> None:
        self.tables[table].append(dict(row))

    def count(self, table: str) -> int:
        return len(self.tables[table])


@dataclass
class _Write:
    table: str
    row: dict[str, Any]
    updates: dict[str, Any] | None = None


@dataclass
class MemoryConnection:
    """Raw connection double interpreting the statements Ekklesia issues.

    Writes inside ``BEGIN`` are buffered and only become visible to other
    connections on ``COMMIT``.  Every statement yields to the event loop so
    concurrent tasks interleave.
    """

    store: MemoryStore
    in_transaction: bool = False
    pending: list[_Write] = field(default_factory=list)
    held: list[asyncio.Lock] = field(default_factory=list)

    async def execute(
        self,
        query: str,
        parameters: Sequence[Any] | None = None,
        *,
        prepared: bool = False,
    ) -> FakeResult:
        await asyncio.sleep(0)
        params = list(parameters or [])
        sql = " ".join(query.split())
        self.store.statements.append(sql)
        keyword = sql.split(" ", 1)[0].upper()
        if keyword == "SET":
            return FakeResult([])
        if keyword == "BEGIN":
            self.in_transaction = True
            return FakeResult([])
        if keyword == "COMMIT":
            self._finish(commit=True)
            return FakeResult([])
        if keyword == "ROLLBACK":
            self._finish(commit=False)
            return FakeResult([])
        if sql.startswith("SELECT pg_advisory_xact_lock"):
            lock = self.store.lock(params[0])
            await lock.acquire()
            self.held.append(lock)
            return FakeResult([{"pg_advisory_xact_lock": None}])
        if sql.startswith("INSERT INTO"):
            return FakeResult(self._insert(sql, params))
        if sql.startswith("UPDATE"):
            return FakeResult(self._update(sql, params))
        if "LEFT JOIN" in sql:
            return FakeResult(self._identity(sql, params))
        match = _COUNT.match(sql)
        if match is not None:
            conditions = _parse_conditions(match.group("where"), params)
            total = sum(1 for row in self._visible(match.group("table")) if _matches(row, conditions))
            return FakeResult([{"total": total}])
        match = _SELECT.match(sql)
        if match is not None:
            conditions = _parse_conditions(match.group("where"), params)
            return FakeResult([dict(row) for row in self._visible(match.group("table")) if _matches(row, conditions)])
        raise AssertionError(f"unsupported statement: {sql}")

    async def release(self) -> None:
        if self.in_transaction or self.held:
            self._finish(commit=False)

    def _finish(self, *, commit: bool) -> None:
        if commit:
            for write in self.pending:
                self._apply(write)
        self.pending.clear()
        self.in_transaction = False
        while self.held:
            self.held.pop().release()

    def _apply(self, write: _Write) -> None:
        rows = self.store.tables[write.table]
        if write.updates is None:
            rows.append(write.row)
            return
        for row in rows:
            if row["id"] == write.row["id"]:
                row.update(write.updates)

    def _visible(self, table: str) -> list[dict[str, Any]]:
        rows = [dict(row) for row in self.store.tables[table]]
        for write in self.pending:
            if write.table != table:
                continue
            if write.updates is None:
                rows.append(dict(write.row))
            else:
                for row in rows:
                    if row["id"] == write.row["id"]:
                        row.update(write.updates)
        return rows

    def _write(self, write: _Write) -> None:
        if self.in_transaction:
            self.pending.append(write)
        else:
            self._apply(write)

    def _insert(self, sql: str, params: list[Any]) -> list[dict[str, Any]]:
        match = _INSERT.match(sql)
        if match is None:
            raise AssertionError(f"unsupported insert: {sql}")
        table = match.group("table")
        if self.store.fail_on_insert == table:
            raise ConnectionResetError(f"simulated failure inserting into {table}")
        columns = [column.strip().strip('"') for column in match.group("columns").split(",")]
        row = dict(zip(columns, params))
        if table == "users" and any(existing["email"] == row["email"] for existing in self._visible("users")):
            raise ValueError("duplicate key value violates unique constraint users_email_key")
        self._write(_Write(table, row))
        return [dict(row)]

    def _update(self, sql: str, params: list[Any]) -> list[dict[str, Any]]:
        match = _UPDATE.match(sql)
        if match is None:
            raise AssertionError(f"unsupported update: {sql}")
        table = match.group("table")
        updates = dict(_parse_conditions(match.group("set").replace(", ", " AND "), params))
        conditions = _parse_conditions(match.group("where"), params)
        changed: list[dict[str, Any]] = []
        for row in self._visible(table):
            if _matches(row, conditions):
                self._write(_Write(table, {"id": row["id"]}, updates))
                changed.append({**row, **updates})
        return changed

    def _identity(self, sql: str, params: list[Any]) -> list[dict[str, Any]]:
        match = _JOIN_KEY.search(sql)
        if match is None:
            raise AssertionError(f"unsupported identity lookup: {sql}")
        column = match.group("column")
        users = [row for row in self._visible("users") if row.get(column) == params[0]]
        if not users:
            return []
        user = users[0]
        churches = [row for row in self._visible("churches") if row["id"] == user.get("church_id")]
        members = sorted(
            (row for row in self._visible("members") if row.get("user_id") == user["id"]),
            key=lambda row: row["created_at"],
        )
        registry = default_registry()
        payload: dict[str, Any] = {}
        for info_field in registry.info_for(User).fields:
            payload[info_field.name] = user.get(info_field.column)
        for prefix, model, rows in (("church__", Church, churches), ("member__", Member, members)):
            first = rows[0] if rows else {}
            for info_field in registry.info_for(model).fields:
                payload[f"{prefix}{info_field.name}"] = first.get(info_field.column)
        return [payload]


class MemoryPool:
    """Pool handing out a fresh :class:`MemoryConnection` per acquisition."""

    def __init__(self, store: MemoryStore | None = None) -> None:
        self.store = store or MemoryStore()
        self.closed = False

    def acquire(self) -> _Acquire:
        connection = MemoryConnection(self.store)
        return _Acquire(connection, on_release=connection.release)

    def close(self) -> None:
        self.closed = True


class FakeHasher:
    """Credential hasher that can hold callers until ``release_after`` arrive."""

    def __init__(self, *, release_after: int = 1) -> None:
        self.calls: list[str] = []
        self._release_after = release_after
        self._gate = asyncio.Event()

    async def hash(self, password: str) -> str:
        self.calls.append(password)
        if len(self.calls) >= self._release_after:
            self._gate.set()
        await self._gate.wait()
        return f"hashed::{password}"


__all__ = [
    "FakeConnection",
    "FakeHasher",
    "FakePool",
    "FakeResult",
    "MemoryConnection",
    "MemoryPool",
    "MemoryStore",
    "model_row",
]
