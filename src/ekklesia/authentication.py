"""Authentication primitives for Ekklesia."""

from __future__ import annotations

import asyncio
import base64
import datetime as dt
import hashlib
import logging
import secrets
import time
from typing import Callable

from argon2.exceptions import InvalidHashError, VerificationError
from argon2.low_level import Type as Argon2Type
from argon2.low_level import hash_secret as argon2_hash_secret
from argon2.low_level import verify_secret as argon2_verify_secret
from cryptography.fernet import Fernet, InvalidToken
from msgspec import DecodeError, Struct, json, structs

from .config import SecurityConfig
from .exceptions import AuthenticationError
from .identity import AssembledIdentity, IdentityResolver
from .models import User
from .orm import ORM

logger = logging.getLogger(__name__)

__all__ = [
    "AuthenticationService",
    "LoginResult",
    "PasswordHasher",
    "SessionTokens",
]

INVALID_CREDENTIALS = "invalid credentials"
ACCOUNT_DEACTIVATED = "account is deactivated"
INVALID_SESSION = "invalid session"


class PasswordHasher:
    """Async wrapper around Argon2id hashing and verification.

    Hashing is CPU bound, so both operations run in a worker thread to keep
    the event loop responsive.
    """

    def __init__(
        self,
        *,
        time_cost: int = 3,
        memory_cost: int = 65_536,
        parallelism: int = 4,
        hash_len: int = 32,
        salt_len: int = 16,
    ) -> None:
        self.time_cost = time_cost
        self.memory_cost = memory_cost
        self.parallelism = parallelism
        self.hash_len = hash_len
        self.salt_len = salt_len

    @classmethod
    def from_config(cls, config: SecurityConfig) -> "PasswordHasher":
        return cls(
            time_cost=config.argon2_time_cost,
            memory_cost=config.argon2_memory_cost,
            parallelism=config.argon2_parallelism,
            hash_len=config.argon2_hash_len,
            salt_len=config.argon2_salt_len,
        )

    async def hash(self, password: str) -> str:
        salt = secrets.token_bytes(self.salt_len)
        return await asyncio.to_thread(self._hash, password, salt)

    async def verify(self, password: str, encoded: str) -> bool:
        return await asyncio.to_thread(_argon2_verify, password, encoded)

    def _hash(self, password: str, salt: bytes) -> str:
        hashed = argon2_hash_secret(
            password.encode(),
            salt,
            time_cost=self.time_cost,
            memory_cost=self.memory_cost,
            parallelism=self.parallelism,
            hash_len=self.hash_len,
            type=Argon2Type.ID,
        )
        return hashed.decode()


def _argon2_verify(password: str, encoded: str) -> bool:
    try:
        return argon2_verify_secret(encoded.encode(), password.encode(), Argon2Type.ID)
    except (VerificationError, InvalidHashError):
        return False


class _SessionClaims(Struct, frozen=True):
    sub: str


class SessionTokens:
    """Issue and decode Fernet session tokens carrying a user id."""

    def __init__(
        self,
        secret: str | bytes,
        *,
        ttl_seconds: int = 86_400,
        clock: Callable[[], float] | None = None,
    ) -> None:
        if not secret:
            raise ValueError("Session tokens require a non-empty secret")
        material = secret.encode("utf-8") if isinstance(secret, str) else bytes(secret)
        digest = hashlib.sha256(material).digest()
        self._fernet = Fernet(base64.urlsafe_b64encode(digest))
        self.ttl_seconds = ttl_seconds
        self._clock = clock or time.time

    @classmethod
    def from_config(cls, config: SecurityConfig) -> "SessionTokens":
        secret = config.session_secret
        if not secret:
            logger.warning("no session secret configured; tokens will not survive a restart")
            secret = secrets.token_urlsafe(32)
        return cls(secret, ttl_seconds=config.session_ttl_seconds)

    def issue(self, user_id: str) -> str:
        payload = json.encode(_SessionClaims(sub=user_id))
        return self._fernet.encrypt_at_time(payload, int(self._clock())).decode("utf-8")

    def decode(self, token: str) -> str:
        """Return the user id carried by ``token``.

        Raises :class:`AuthenticationError` when the token is malformed,
        tampered with, or older than the configured TTL.
        """

        try:
            payload = self._fernet.decrypt_at_time(token.encode("utf-8"), self.ttl_seconds, int(self._clock()))
        except InvalidToken as exc:
            raise AuthenticationError(INVALID_SESSION) from exc
        try:
            claims = json.decode(payload, type=_SessionClaims)
        except DecodeError as exc:
            raise AuthenticationError(INVALID_SESSION) from exc
        return claims.sub


class LoginResult(Struct, frozen=True, kw_only=True, rename="camel"):
    access_token: str
    token_type: str = "bearer"
    user: AssembledIdentity


class AuthenticationService:
    """Password login and bearer token identification."""

    def __init__(
        self,
        *,
        orm: ORM,
        resolver: IdentityResolver,
        password_hasher: PasswordHasher,
        tokens: SessionTokens,
    ) -> None:
        self.orm = orm
        self.resolver = resolver
        self.password_hasher = password_hasher
        self.tokens = tokens

    async def login(self, email: str, password: str) -> LoginResult:
        credentials = await self.resolver.credentials_for_email(email)
        if credentials is None:
            raise AuthenticationError(INVALID_CREDENTIALS)
        if not await self.password_hasher.verify(password, credentials.password_hash):
            raise AuthenticationError(INVALID_CREDENTIALS)
        identity = credentials.identity
        if not identity.is_active:
            raise AuthenticationError(ACCOUNT_DEACTIVATED)
        now = dt.datetime.now(dt.timezone.utc)
        await self.orm.update(User, {"last_login": now}, filters={"id": identity.id})
        logger.info("login succeeded for user %s", identity.id)
        return LoginResult(
            access_token=self.tokens.issue(identity.id),
            user=structs.replace(identity, last_login=now),
        )

    async def identify(self, token: str) -> AssembledIdentity:
        user_id = self.tokens.decode(token)
        identity = await self.resolver.resolve_by_id(user_id)
        if identity is None or not identity.is_active:
            raise AuthenticationError(INVALID_SESSION)
        return identity
