"""DDL generation from registered models and a tracked migration runner.

Each :class:`Migration` is a named list of operations.  The runner records
applied names in ``schema_migrations`` and applies every pending migration
inside its own transaction, so a failing operation leaves no partial schema
behind.
"""

from __future__ import annotations

import datetime as dt
import enum
import inspect
import logging
import types
from dataclasses import dataclass
from typing import Annotated, Any, Awaitable, Callable, Iterable, Sequence, Union, get_args, get_origin

import msgspec

from .database import Database, DatabaseConnection, _quote_identifier
from .models import Church, Member, User
from .orm import FieldInfo, Model, ModelInfo

logger = logging.getLogger(__name__)


class MigrationError(RuntimeError):
    pass


MigrationCallable = Callable[["MigrationContext"], Awaitable[None] | None]


@dataclass(slots=True)
class MigrationContext:
    database: Database
    connection: DatabaseConnection
    schema: str

    async def execute(self, sql: str, parameters: Sequence[Any] | None = None) -> None:
        await self.connection.execute(sql, list(parameters or []))


@dataclass(slots=True)
class Migration:
    name: str
    operations: tuple[MigrationCallable, ...]

    async def apply(self, context: MigrationContext) -> None:
        for operation in self.operations:
            outcome = operation(context)
            if inspect.isawaitable(outcome):
                await outcome


@dataclass(slots=True, frozen=True)
class Index:
    """Index over ``columns`` named ``<table>_<columns>_key`` when unique, ``..._idx`` otherwise."""

    table: str
    columns: tuple[str, ...]
    unique: bool = False

    @property
    def name(self) -> str:
        return "_".join((self.table, *self.columns, "key" if self.unique else "idx"))


FOREIGN_KEYS: dict[tuple[str, str], tuple[str, str]] = {
    ("users", "church_id"): ("churches", "id"),
    ("members", "church_id"): ("churches", "id"),
    ("members", "user_id"): ("users", "id"),
}

CORE_INDEXES: tuple[Index, ...] = (
    Index("users", ("email",), unique=True),
    Index("users", ("role",)),
    Index("churches", ("slug",)),
    Index("members", ("user_id",)),
)

# Referenced tables come first.
CORE_MODELS: tuple[type[Model], ...] = (Church, User, Member)

_SQL_TYPES: dict[Any, str] = {
    bool: "BOOLEAN",
    int: "BIGINT",
    float: "DOUBLE PRECISION",
    str: "TEXT",
    bytes: "BYTEA",
    dt.datetime: "TIMESTAMPTZ",
    dt.date: "DATE",
}


class MigrationRunner:
    def __init__(
        self,
        database: Database,
        *,
        migrations: Iterable[Migration] | None = None,
        tracking_table: str = "schema_migrations",
    ) -> None:
        self.database = database
        self.tracking_table = tracking_table
        self._migrations: dict[str, Migration] = {}
        for migration in core_migrations() if migrations is None else migrations:
            self.add_migration(migration)

    def add_migration(self, migration: Migration) -> None:
        if migration.name in self._migrations:
            raise MigrationError(f"Migration '{migration.name}' already registered")
        self._migrations[migration.name] = migration

    def migrations(self) -> tuple[Migration, ...]:
        return tuple(self._migrations.values())

    async def pending(self) -> list[str]:
        """Names of registered migrations not yet recorded, in registration order."""

        await self._ensure_tracking_table()
        done = await self.applied()
        return [name for name in self._migrations if name not in done]

    async def run_all(self) -> list[str]:
        executed = []
        for name in await self.pending():
            await self._apply(self._migrations[name])
            logger.info("migration applied: %s", name)
            executed.append(name)
        return executed

    async def applied(self) -> set[str]:
        async with self.database.connection() as connection:
            rows = await connection.fetch_all(f"SELECT migration_name FROM {self._tracking()}")
        return {row["migration_name"] for row in rows}

    async def _apply(self, migration: Migration) -> None:
        schema = self.database.config.schema
        async with self.database.transaction() as connection:
            await migration.apply(MigrationContext(self.database, connection, schema))
            await connection.execute(
                f"INSERT INTO {self._tracking()} (migration_name) VALUES ($1)",
                [migration.name],
            )

    async def _ensure_tracking_table(self) -> None:
        async with self.database.connection() as connection:
            await connection.execute(
                f"CREATE TABLE IF NOT EXISTS {self._tracking()} ("
                "migration_name TEXT PRIMARY KEY, "
                "applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW())"
            )

    def _tracking(self) -> str:
        return _qualified_table(self.database.config.schema, self.tracking_table)


def create_table_for_model(model: type[Model]) -> MigrationCallable:
    info: ModelInfo[Any] | None = getattr(model, "__model_info__", None)
    if info is None:
        raise MigrationError(f"Model {model.__name__} is missing registration metadata")

    async def operation(context: MigrationContext) -> None:
        await context.execute(build_create_table_statement(context.schema, info))

    return operation


def create_index(index: Index) -> MigrationCallable:
    async def operation(context: MigrationContext) -> None:
        await context.execute(build_index_statement(context.schema, index))

    return operation


def run_sql(statement: str) -> MigrationCallable:
    async def operation(context: MigrationContext) -> None:
        await context.execute(statement)

    return operation


def core_migrations() -> list[Migration]:
    """The initial schema: churches, users and members with their indexes."""

    operations = [*map(create_table_for_model, CORE_MODELS), *map(create_index, CORE_INDEXES)]
    return [Migration(name="0001_core_schema", operations=tuple(operations))]


def build_create_table_statement(schema: str, info: ModelInfo[Any]) -> str:
    lines = [build_column_definition(schema, info.table, field) for field in info.fields]
    key = [info.field_map[name].quoted for name in info.identity if name in info.field_map]
    if key:
        lines.append(f"PRIMARY KEY ({', '.join(key)})")
    body = ",\n    ".join(lines)
    return f"CREATE TABLE IF NOT EXISTS {_qualified_table(schema, info.table)} (\n    {body}\n)"


def build_column_definition(schema: str, table: str, field: FieldInfo) -> str:
    base, nullable = _unwrap(field.python_type)
    definition = f"{field.quoted} {_sql_type(base)}"
    if not nullable:
        definition += " NOT NULL"
    default = render_default(field)
    if default:
        definition += f" {default}"
    target = FOREIGN_KEYS.get((table, field.column))
    if target is not None:
        target_table, target_column = target
        definition += f" REFERENCES {_qualified_table(schema, target_table)} ({_quote_identifier(target_column)})"
    return definition


def build_index_statement(schema: str, index: Index) -> str:
    kind = "UNIQUE INDEX" if index.unique else "INDEX"
    columns = ", ".join(map(_quote_identifier, index.columns))
    target = _qualified_table(schema, index.table)
    return f"CREATE {kind} IF NOT EXISTS {_quote_identifier(index.name)} ON {target} ({columns})"


def sql_type_for(python_type: Any) -> str:
    base, _ = _unwrap(python_type)
    return _sql_type(base)


def _sql_type(base: Any) -> str:
    if inspect.isclass(base) and issubclass(base, enum.Enum):
        return "TEXT"
    return _SQL_TYPES.get(base, "JSONB")


def _unwrap(python_type: Any) -> tuple[Any, bool]:
    """Strip ``Annotated`` and ``Optional`` and report whether ``None`` was allowed.

    Unions of several concrete types map to ``object`` and so to ``JSONB``.
    """

    origin = get_origin(python_type)
    if origin is Annotated:
        return _unwrap(get_args(python_type)[0])
    if origin in (Union, types.UnionType):
        args = get_args(python_type)
        members = [arg for arg in args if arg is not type(None)]
        nullable = len(members) < len(args)
        if len(members) == 1:
            base, inner_nullable = _unwrap(members[0])
            return base, nullable or inner_nullable
        return object, nullable
    return (python_type if origin is None else origin), False


def render_default(field: FieldInfo) -> str:
    if field.default_factory is not None or field.default is msgspec.UNSET:
        return ""
    return "DEFAULT " + render_literal(field.default)


def render_literal(value: Any) -> str:
    if isinstance(value, enum.Enum):
        value = value.value
    if value is None:
        return "NULL"
    if value is True or value is False:
        return str(value).upper()
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, dt.datetime):
        return f"'{value.isoformat()}'::timestamptz"
    escaped = str(value).replace("'", "''")
    return f"'{escaped}'"


def _qualified_table(schema: str, table: str) -> str:
    return f"{_quote_identifier(schema)}.{_quote_identifier(table)}"


__all__ = [
    "CORE_INDEXES",
    "CORE_MODELS",
    "Index",
    "Migration",
    "MigrationContext",
    "MigrationError",
    "MigrationRunner",
    "build_column_definition",
    "build_create_table_statement",
    "build_index_statement",
    "core_migrations",
    "create_index",
    "create_table_for_model",
    "render_literal",
    "run_sql",
    "sql_type_for",
]
