"""First-run initialization of an Ekklesia installation.

The system counts as initialized once any user holds the ``SUPER_ADMIN``
role.  :meth:`BootstrapService.initialize` creates the first church and its
super administrator together, exactly once, even when several initializers
race against the same database.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Protocol

import msgspec
from msgspec import Struct

from .config import BootstrapConfig
from .exceptions import AlreadyInitializedError
from .identity import ChurchView, UserView, normalize_email
from .models import Church, User, UserRole
from .orm import ORM
from .tenancy import derive_slug
from .validation import Schema, setup_schema

logger = logging.getLogger(__name__)


class CredentialHasher(Protocol):
    async def hash(self, password: str) -> str:  # pragma: no cover - protocol
        ...


class SetupRequest(Struct, frozen=True, kw_only=True, rename="camel"):
    email: str
    password: str
    first_name: str
    last_name: str
    church_name: str


class BootstrapStatus(Struct, frozen=True):
    is_initialized: bool

    @property
    def needs_setup(self) -> bool:
        return not self.is_initialized

    def to_payload(self) -> dict[str, bool]:
        return {"isInitialized": self.is_initialized, "needsSetup": self.needs_setup}


class BootstrapResult(Struct, frozen=True):
    user: UserView
    church: ChurchView


class BootstrapService:
    """Report and perform first-run initialization."""

    def __init__(
        self,
        orm: ORM,
        hasher: CredentialHasher,
        config: BootstrapConfig | None = None,
    ) -> None:
        self.orm = orm
        self.hasher = hasher
        self.config = config or BootstrapConfig()
        self.schema: Schema = setup_schema(self.config.password_min_length)

    async def status(self) -> BootstrapStatus:
        total = await self.orm.count(User, filters={"role": UserRole.SUPER_ADMIN})
        return BootstrapStatus(is_initialized=total > 0)

    async def initialize(self, payload: SetupRequest | Mapping[str, Any]) -> BootstrapResult:
        """Create the first church and its super administrator.

        Raises :class:`~ekklesia.exceptions.ValidationError` for a malformed
        payload and :class:`~ekklesia.exceptions.AlreadyInitializedError` when
        a super administrator already exists.  Either both records are
        committed or neither is.
        """

        if isinstance(payload, SetupRequest):
            payload = msgspec.to_builtins(payload)
        self.schema.check(payload)
        request = msgspec.convert(payload, type=SetupRequest)

        if (await self.status()).is_initialized:
            logger.warning("bootstrap.rejected: system already initialized")
            raise AlreadyInitializedError()

        # Hash outside the transaction so the advisory lock is held briefly.
        password_hash = await self.hasher.hash(request.password)
        email = normalize_email(request.email)
        church_name = request.church_name.strip()

        async with self.orm.database.transaction() as connection:
            await connection.advisory_lock(self.config.lock_key)
            existing = await self.orm.count(User, filters={"role": UserRole.SUPER_ADMIN}, connection=connection)
            if existing:
                logger.warning("bootstrap.rejected: lost initialization race")
                raise AlreadyInitializedError()
            church = await self.orm.insert(
                Church,
                Church(name=church_name, slug=derive_slug(church_name), email=email, is_active=True),
                connection=connection,
            )
            user = await self.orm.insert(
                User,
                User(
                    email=email,
                    password_hash=password_hash,
                    first_name=request.first_name.strip(),
                    last_name=request.last_name.strip(),
                    role=UserRole.SUPER_ADMIN,
                    church_id=church.id,
                    is_active=True,
                ),
                connection=connection,
            )

        logger.info("bootstrap.initialized church=%s user=%s", church.id, user.id)
        return BootstrapResult(user=UserView.from_model(user), church=ChurchView.from_model(church))


__all__ = [
    "BootstrapResult",
    "BootstrapService",
    "BootstrapStatus",
    "CredentialHasher",
    "SetupRequest",
]
