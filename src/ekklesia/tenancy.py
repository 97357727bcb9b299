"""Church tenancy primitives."""

from __future__ import annotations

from typing import TYPE_CHECKING

from msgspec import Struct

from .models import UserRole

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .identity import AssembledIdentity


def derive_slug(name: str) -> str:
    """Return the URL slug for a church name.

    The name is lower-cased and every run of whitespace becomes one hyphen;
    leading and trailing whitespace never produces a hyphen.

    >>> derive_slug("Igreja Batista Central")
    'igreja-batista-central'
    """

    return "-".join(name.lower().split())


class TenantContext(Struct, frozen=True):
    church_id: str | None
    user_id: str
    role: UserRole
    member_id: str | None = None

    @classmethod
    def from_identity(cls, identity: "AssembledIdentity") -> "TenantContext":
        church_id = identity.church.id if identity.church is not None else identity.church_id
        member_id = identity.member.id if identity.member is not None else None
        return cls(church_id=church_id, user_id=identity.id, role=identity.role, member_id=member_id)

    @property
    def is_super_admin(self) -> bool:
        return self.role is UserRole.SUPER_ADMIN

    def can_access(self, church_id: str | None) -> bool:
        """Return whether records belonging to ``church_id`` are visible."""

        if self.is_super_admin:
            return True
        if self.church_id is None or church_id is None:
            return False
        return church_id == self.church_id


__all__ = ["TenantContext", "derive_slug"]
