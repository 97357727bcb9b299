"""Persistent Ekklesia models with ``id57`` identifiers."""

from __future__ import annotations

import datetime as dt
from enum import Enum

from .orm import DatabaseModel, model


class UserRole(str, Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    CHURCH_ADMIN = "CHURCH_ADMIN"
    PASTOR = "PASTOR"
    TREASURER = "TREASURER"
    SECRETARY = "SECRETARY"
    MEMBER = "MEMBER"


class MemberStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    TRANSFERRED = "TRANSFERRED"
    DECEASED = "DECEASED"


@model(table="churches")
class Church(DatabaseModel):
    """A tenant.  Every other record belongs to exactly one church."""

    name: str
    slug: str
    email: str
    is_active: bool = True


@model(table="users", redacted_fields=("password_hash",))
class User(DatabaseModel):
    """An account able to authenticate.

    Users without ``church_id`` exist only as super administrators created
    outside the bootstrap flow.
    """

    email: str
    password_hash: str
    first_name: str
    last_name: str
    role: UserRole = UserRole.MEMBER
    church_id: str | None = None
    is_active: bool = True
    last_login: dt.datetime | None = None


@model(table="members")
class Member(DatabaseModel):
    church_id: str
    first_name: str
    last_name: str
    user_id: str | None = None
    email: str | None = None
    status: MemberStatus = MemberStatus.ACTIVE


__all__ = ["Church", "Member", "MemberStatus", "User", "UserRole"]
