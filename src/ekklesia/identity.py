"""Tenant-scoped identity resolution.

An identity is a user joined with its church and at most one linked member
profile.  Lookups run one ``LEFT JOIN`` query; relations without a matching
row come back as ``None`` rather than an object full of nulls.
"""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from typing import Any, Mapping

import msgspec

from .database import _quote_identifier
from .models import Church, Member, MemberStatus, User, UserRole
from .orm import ORM, ModelInfo

logger = logging.getLogger(__name__)

_CHURCH_PREFIX = "church__"
_MEMBER_PREFIX = "member__"


class ChurchView(msgspec.Struct, frozen=True, kw_only=True, rename="camel"):
    id: str
    name: str
    slug: str
    email: str
    is_active: bool
    created_at: dt.datetime
    updated_at: dt.datetime

    @classmethod
    def from_model(cls, church: Church) -> "ChurchView":
        return cls(
            id=church.id,
            name=church.name,
            slug=church.slug,
            email=church.email,
            is_active=church.is_active,
            created_at=church.created_at,
            updated_at=church.updated_at,
        )


class MemberView(msgspec.Struct, frozen=True, kw_only=True, rename="camel"):
    id: str
    church_id: str
    first_name: str
    last_name: str
    email: str | None
    status: MemberStatus

    @classmethod
    def from_model(cls, member: Member) -> "MemberView":
        return cls(
            id=member.id,
            church_id=member.church_id,
            first_name=member.first_name,
            last_name=member.last_name,
            email=member.email,
            status=member.status,
        )


class UserView(msgspec.Struct, frozen=True, kw_only=True, rename="camel"):
    """Public projection of :class:`~ekklesia.models.User`.

    The password hash has no field here, so no encoding of a view can leak it.
    """

    id: str
    email: str
    first_name: str
    last_name: str
    role: UserRole
    church_id: str | None
    is_active: bool
    last_login: dt.datetime | None
    created_at: dt.datetime
    updated_at: dt.datetime

    @classmethod
    def from_model(cls, user: User) -> "UserView":
        return cls(**_user_fields(user))


class AssembledIdentity(UserView, frozen=True, kw_only=True, rename="camel"):
    church: ChurchView | None = None
    member: MemberView | None = None

    @classmethod
    def assemble(
        cls,
        user: User,
        church: Church | None = None,
        member: Member | None = None,
    ) -> "AssembledIdentity":
        return cls(
            **_user_fields(user),
            church=ChurchView.from_model(church) if church is not None else None,
            member=MemberView.from_model(member) if member is not None else None,
        )


@dataclass(slots=True, frozen=True)
class IdentityCredentials:
    """Identity plus the stored hash, for the authentication service only."""

    identity: AssembledIdentity
    password_hash: str


def _user_fields(user: User) -> dict[str, Any]:
    return {
        "id": user.id,
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "role": user.role,
        "church_id": user.church_id,
        "is_active": user.is_active,
        "last_login": user.last_login,
        "created_at": user.created_at,
        "updated_at": user.updated_at,
    }


def normalize_email(email: str) -> str:
    return email.strip().lower()


class IdentityResolver:
    """Resolve users into :class:`AssembledIdentity` values."""

    def __init__(self, orm: ORM) -> None:
        self.orm = orm
        self._user_info = orm.registry.info_for(User)
        self._church_info = orm.registry.info_for(Church)
        self._member_info = orm.registry.info_for(Member)

    async def resolve_by_id(self, user_id: str) -> AssembledIdentity | None:
        found = await self._lookup("id", user_id)
        return found[0] if found is not None else None

    async def resolve_by_email(self, email: str) -> AssembledIdentity | None:
        found = await self._lookup("email", normalize_email(email))
        return found[0] if found is not None else None

    async def resolve(self, key: str) -> AssembledIdentity | None:
        """Resolve ``key`` as an email when it contains ``@``, otherwise as an id."""

        if "@" in key:
            return await self.resolve_by_email(key)
        return await self.resolve_by_id(key)

    async def credentials_for_email(self, email: str) -> IdentityCredentials | None:
        found = await self._lookup("email", normalize_email(email))
        if found is None:
            return None
        identity, user = found
        return IdentityCredentials(identity=identity, password_hash=user.password_hash)

    async def _lookup(self, field: str, value: str) -> tuple[AssembledIdentity, User] | None:
        sql = self.build_query(field)
        async with self.orm.database.connection() as connection:
            row = await connection.fetch_one(sql, [value])
        if row is None:
            return None
        user, church, member = self.split_row(row)
        return AssembledIdentity.assemble(user, church, member), user

    def build_query(self, field: str) -> str:
        """Return the lookup statement filtering ``users.<field> = $1``."""

        column = self._user_info.field_map[field].column
        schema = _quote_identifier(self.orm.database.config.schema)
        projection = ", ".join(
            [
                *_columns("u", self._user_info, ""),
                *_columns("c", self._church_info, _CHURCH_PREFIX),
                *_columns("m", self._member_info, _MEMBER_PREFIX),
            ]
        )
        return (
            f"SELECT {projection} "
            f"FROM {schema}.{_quote_identifier(self._user_info.table)} AS u "
            f"LEFT JOIN {schema}.{_quote_identifier(self._church_info.table)} AS c "
            f'ON c."id" = u."church_id" '
            f"LEFT JOIN {schema}.{_quote_identifier(self._member_info.table)} AS m "
            f'ON m."user_id" = u."id" '
            f"WHERE u.{_quote_identifier(column)} = $1 "
            f'ORDER BY m."created_at" ASC NULLS LAST '
            "LIMIT 1"
        )

    def split_row(self, row: Mapping[str, Any]) -> tuple[User, Church | None, Member | None]:
        user_part: dict[str, Any] = {}
        church_part: dict[str, Any] = {}
        member_part: dict[str, Any] = {}
        for key, value in row.items():
            if key.startswith(_CHURCH_PREFIX):
                church_part[key[len(_CHURCH_PREFIX) :]] = value
            elif key.startswith(_MEMBER_PREFIX):
                member_part[key[len(_MEMBER_PREFIX) :]] = value
            else:
                user_part[key] = value
        user = msgspec.convert(user_part, type=User)
        return user, _collapse(church_part, Church), _collapse(member_part, Member)


def _columns(alias: str, info: ModelInfo[Any], prefix: str) -> list[str]:
    parts: list[str] = []
    for field in info.fields:
        label = f"{prefix}{field.name}"
        parts.append(f"{alias}.{_quote_identifier(field.column)} AS {_quote_identifier(label)}")
    return parts


def _collapse(group: dict[str, Any], model: type[Any]) -> Any:
    if all(value is None for value in group.values()):
        return None
    return msgspec.convert(group, type=model)


__all__ = [
    "AssembledIdentity",
    "ChurchView",
    "IdentityCredentials",
    "IdentityResolver",
    "MemberView",
    "UserView",
    "normalize_email",
]
