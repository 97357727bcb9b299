from __future__ import annotations

import asyncio
from typing import Any, Mapping

import pytest

from ekklesia.database import (
    Database,
    DatabaseConfig,
    DatabaseError,
    DatabaseResult,
    PoolConfig,
    _coerce_rows,
    _pool_kwargs,
    _quote_identifier,
)
from ekklesia.exceptions import PersistenceFailure
from tests.support import FakeConnection, FakePool, FakeResult


@pytest.mark.asyncio
async def test_database_sets_search_path_and_role() -> None:
    connection = FakeConnection()
    config = DatabaseConfig(
        pool=PoolConfig(dsn="postgres://demo"),
        schema="ekklesia",
        search_path=("public", "extensions"),
        default_role="app_role",
    )
    database = Database(config, pool=FakePool(connection))

    async with database.connection():
        pass

    assert connection.calls[0][1] == 'SET search_path TO "ekklesia", "public", "extensions"'
    assert connection.calls[1][1] == 'SET ROLE "app_role"'


@pytest.mark.asyncio
async def test_transaction_commits_on_success() -> None:
    connection = FakeConnection()
    database = Database(DatabaseConfig(), pool=FakePool(connection))

    async with database.transaction() as conn:
        assert conn.in_transaction
        await conn.execute("SELECT 1")

    assert connection.statements()[1:] == ["BEGIN", "SELECT 1", "COMMIT"]
    assert not conn.in_transaction


@pytest.mark.asyncio
async def test_transaction_rolls_back_and_reraises() -> None:
    connection = FakeConnection()
    database = Database(DatabaseConfig(), pool=FakePool(connection))

    with pytest.raises(RuntimeError, match="boom"):
        async with database.transaction():
            raise RuntimeError("boom")

    assert connection.statements()[-1] == "ROLLBACK"
    assert "COMMIT" not in connection.statements()


@pytest.mark.asyncio
async def test_transaction_rolls_back_on_cancellation() -> None:
    connection = FakeConnection()
    database = Database(DatabaseConfig(), pool=FakePool(connection))

    with pytest.raises(asyncio.CancelledError):
        async with database.transaction():
            raise asyncio.CancelledError()

    assert connection.statements()[-1] == "ROLLBACK"


@pytest.mark.asyncio
async def test_advisory_lock_requires_transaction() -> None:
    connection = FakeConnection()
    database = Database(DatabaseConfig(), pool=FakePool(connection))

    async with database.connection() as conn:
        with pytest.raises(DatabaseError):
            await conn.advisory_lock(42)

    async with database.transaction() as conn:
        await conn.advisory_lock(42)

    assert ("execute", "SELECT pg_advisory_xact_lock($1)", [42], False) in connection.calls


@pytest.mark.asyncio
async def test_driver_errors_become_persistence_failures() -> None:
    connection = FakeConnection()
    connection.fail_with = ConnectionResetError("socket closed")
    database = Database(DatabaseConfig(), pool=FakePool(connection))

    async with database.connection() as conn:
        with pytest.raises(PersistenceFailure) as excinfo:
            await conn.fetch_all("SELECT 1")

    assert isinstance(excinfo.value, DatabaseError)
    assert isinstance(excinfo.value.__cause__, ConnectionResetError)
    assert "socket closed" not in str(excinfo.value)


@pytest.mark.asyncio
async def test_fetch_helpers() -> None:
    connection = FakeConnection()
    database = Database(DatabaseConfig(), pool=FakePool(connection))

    async with database.connection() as conn:
        connection.queue_result([{"total": 3}])
        assert await conn.fetch_value("SELECT count(*) AS total FROM t") == 3
        connection.queue_result([])
        assert await conn.fetch_one("SELECT * FROM t") is None
        assert await conn.fetch_value("SELECT 1") is None


@pytest.mark.asyncio
async def test_pool_factory_receives_flattened_options() -> None:
    captured: list[dict[str, Any]] = []

    def factory(options: Mapping[str, Any]) -> FakePool:
        captured.append(dict(options))
        return FakePool()

    config = DatabaseConfig(pool=PoolConfig(dsn="postgres://demo", options={"ssl_mode": "require"}))
    database = Database(config, pool_factory=factory)

    await database.startup()
    await database.startup()
    assert captured == [
        {
            "dsn": "postgres://demo",
            "application_name": "ekklesia",
            "max_db_pool_size": 10,
            "ssl_mode": "require",
        }
    ]

    await database.shutdown()
    await database.shutdown()


def test_pool_kwargs_skip_unset_values() -> None:
    assert _pool_kwargs(PoolConfig(host="db", port=5432, application_name=None)) == {
        "host": "db",
        "port": 5432,
        "max_db_pool_size": 10,
    }


def test_coerce_rows_variants() -> None:
    assert _coerce_rows(None) == []
    assert _coerce_rows(FakeResult([{"a": 1}])) == [{"a": 1}]
    assert _coerce_rows({"a": 1}) == [{"a": 1}]
    with pytest.raises(DatabaseError):
        _coerce_rows(42)


def test_database_result_helpers() -> None:
    result = DatabaseResult([{"value": 1, "other": 2}])
    assert result.first() == {"value": 1, "other": 2}
    assert result.scalar() == 1
    assert DatabaseResult([]).scalar() is None


def test_quote_identifier_escapes_quotes() -> None:
    assert _quote_identifier('we"ird') == '"we""ird"'
