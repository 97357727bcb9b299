from __future__ import annotations

import datetime as dt

import pytest

from ekklesia.identity import AssembledIdentity
from ekklesia.models import Church, Member, User, UserRole
from ekklesia.tenancy import TenantContext, derive_slug


@pytest.mark.parametrize(
    "name, slug",
    [
        ("Igreja Batista Central", "igreja-batista-central"),
        ("  Multi   Space  ", "multi-space"),
        ("Tab\tand\nNewline", "tab-and-newline"),
        ("single", "single"),
        ("", ""),
    ],
)
def test_derive_slug(name: str, slug: str) -> None:
    assert derive_slug(name) == slug


def _user(role: UserRole, church_id: str | None) -> User:
    return User(
        id="user-1",
        email="pastor@example.org",
        password_hash="hash",
        first_name="Paulo",
        last_name="Lima",
        role=role,
        church_id=church_id,
        created_at=dt.datetime(2024, 1, 1, tzinfo=dt.timezone.utc),
    )


def test_context_from_identity_uses_church_and_member() -> None:
    church = Church(id="church-1", name="Central", slug="central", email="c@example.org")
    member = Member(id="member-1", church_id="church-1", first_name="Paulo", last_name="Lima", user_id="user-1")
    identity = AssembledIdentity.assemble(_user(UserRole.PASTOR, "church-1"), church, member)

    context = TenantContext.from_identity(identity)

    assert context == TenantContext(
        church_id="church-1",
        user_id="user-1",
        role=UserRole.PASTOR,
        member_id="member-1",
    )
    assert not context.is_super_admin
    assert not hasattr(context, "key")


def test_church_scoped_context_only_accesses_own_church() -> None:
    context = TenantContext(church_id="church-1", user_id="user-1", role=UserRole.SECRETARY)
    assert context.can_access("church-1")
    assert not context.can_access("church-2")
    assert not context.can_access(None)


def test_super_admin_accesses_every_church() -> None:
    context = TenantContext(church_id="church-1", user_id="root", role=UserRole.SUPER_ADMIN)
    assert context.is_super_admin
    assert context.can_access("church-2")
    assert context.can_access(None)


def test_context_without_church_sees_nothing() -> None:
    identity = AssembledIdentity.assemble(_user(UserRole.MEMBER, None))
    context = TenantContext.from_identity(identity)
    assert context.church_id is None
    assert context.member_id is None
    assert not context.can_access("church-1")
