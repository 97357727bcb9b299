"""Application configuration objects."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping

import msgspec
from msgspec import Struct, json, structs

from .database import DatabaseConfig, PoolConfig
from .observability import ObservabilityConfig

# ASCII "EKKL"; shared by every process initializing the same database.
DEFAULT_BOOTSTRAP_LOCK_KEY = 0x454B4B4C


class SecurityConfig(Struct, frozen=True):
    """Password hashing costs and session token settings."""

    argon2_time_cost: int = 3
    argon2_memory_cost: int = 65536
    argon2_parallelism: int = 4
    argon2_hash_len: int = 32
    argon2_salt_len: int = 16
    session_secret: str | None = None
    session_ttl_seconds: int = 86_400


class BootstrapConfig(Struct, frozen=True):
    password_min_length: int = 6
    lock_key: int = DEFAULT_BOOTSTRAP_LOCK_KEY


class AppConfig(Struct, frozen=True):
    """Typed configuration for an :class:`~ekklesia.application.EkklesiaApp` instance."""

    max_request_body_bytes: int | None = 1_048_576
    database: DatabaseConfig = DatabaseConfig()
    security: SecurityConfig = SecurityConfig()
    bootstrap: BootstrapConfig = BootstrapConfig()
    observability: ObservabilityConfig = ObservabilityConfig()


def _read_env_blob(name: str, env: Mapping[str, str]) -> str | None:
    file_key = f"{name}_FILE"
    path = env.get(file_key)
    if path:
        try:
            return Path(path).read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise RuntimeError(f"Configuration file at '{path}' not found") from exc
    value = env.get(name)
    if value:
        return value
    return None


def load_config_from_env(*, env: Mapping[str, str] | None = None) -> AppConfig:
    """Build :class:`AppConfig` from ``EKKLESIA_*`` environment variables.

    ``EKKLESIA_CONFIG`` (or a file named by ``EKKLESIA_CONFIG_FILE``) holds the
    JSON document; ``EKKLESIA_DATABASE_DSN`` and ``EKKLESIA_SESSION_SECRET``
    (each also accepting a ``_FILE`` variant) override single values.
    """

    source = env if env is not None else os.environ
    blob = _read_env_blob("EKKLESIA_CONFIG", source)
    if blob is None:
        config = AppConfig()
    else:
        try:
            config = json.decode(blob, type=AppConfig)
        except msgspec.ValidationError as exc:
            raise RuntimeError(f"Invalid EKKLESIA_CONFIG: {exc}") from exc
        except msgspec.DecodeError as exc:
            raise RuntimeError("Failed to decode EKKLESIA_CONFIG as JSON") from exc
    dsn = _read_env_blob("EKKLESIA_DATABASE_DSN", source)
    if dsn is not None:
        pool = structs.replace(config.database.pool, dsn=dsn.strip())
        database = structs.replace(config.database, pool=pool)
        config = structs.replace(config, database=database)
    secret = _read_env_blob("EKKLESIA_SESSION_SECRET", source)
    if secret is not None:
        security = structs.replace(config.security, session_secret=secret.strip())
        config = structs.replace(config, security=security)
    return config


__all__ = [
    "AppConfig",
    "BootstrapConfig",
    "DatabaseConfig",
    "PoolConfig",
    "SecurityConfig",
    "load_config_from_env",
]
