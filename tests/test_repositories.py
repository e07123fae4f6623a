import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import build_engine
from app.features.permissions.engine import AuthorizationEngine
from app.features.permissions.exceptions import AuthorizationLookupError
from app.features.permissions.models import Permission, Role, role_permissions
from app.features.permissions.registry import DEFAULT_PERMISSIONS, RoleRegistry
from app.features.permissions.repositories import (
    SqlOrgMembershipRepository,
    SqlRoleRepository,
    SqlSessionRepository,
    SqlUserRepository,
)
from app.features.permissions.seed import load_custom_roles, seed_default_catalog

pytestmark = pytest.mark.asyncio


async def test_resolves_seeded_role_permissions(db_session, seed_identity) -> None:
    repo = SqlRoleRepository(db_session)

    manager = {ref.key for ref in await repo.resolve_role_permissions("manager")}
    assert manager == {
        "user:read", "user:update", "user:ban",
        "session:read", "session:revoke",
        "organization:read", "organization:invite",
        "role:read", "role:assign", "role:update",
    }
    assert await repo.resolve_role_permissions("ghost") == []

    roles = await repo.list_roles()
    assert [r.name for r in roles] == ["admin", "manager", "member"]
    assert all(r.is_system for r in roles)
    assert roles[0].color == "red"
    assert roles[0].description == "Full platform access"

    catalog = await repo.list_permissions()
    assert len(catalog) == len(DEFAULT_PERMISSIONS)
    assert catalog[0].key == "organization:create"


async def test_replace_role_permissions_is_wholesale(db_session, seed_identity) -> None:
    repo = SqlRoleRepository(db_session)
    member = (await db_session.execute(select(Role).where(Role.name == "member"))).scalar_one()
    ban = (await db_session.execute(
        select(Permission).where(Permission.resource == "user", Permission.action == "ban")
    )).scalar_one()

    await repo.replace_role_permissions(member.id, [ban.id, ban.id])
    assert [ref.key for ref in await repo.resolve_role_permissions("member")] == ["user:ban"]

    await repo.replace_role_permissions(member.id, [])
    assert await repo.resolve_role_permissions("member") == []


async def test_membership_user_and_session_lookups(db_session, seed_identity) -> None:
    memberships = SqlOrgMembershipRepository(db_session)
    assert await memberships.find_membership("u-member", "org-acme") is not None
    assert await memberships.find_membership("u-member", "org-globex") is None
    assert await memberships.find_latest_organization("u-outsider") == "org-globex"
    assert await memberships.find_latest_organization("u-admin") is None

    users = SqlUserRepository(db_session)
    assert await users.find_role("u-manager") == "manager"
    assert await users.find_role("ghost") is None

    sessions = SqlSessionRepository(db_session)
    owner = await sessions.find_owner_by_token("member-token")
    assert owner is not None and owner.user_id == "u-member"
    assert await sessions.find_owner_by_token("nope") is None


async def test_engine_over_database(db_session, seed_identity) -> None:
    engine = AuthorizationEngine.from_session(db_session, registry=RoleRegistry())

    caps = await engine.get_user_capabilities("u-manager", "u-member", "manager", "org-acme")
    assert caps.actions["ban"]
    assert not caps.actions["remove"]

    caps = await engine.get_user_capabilities("u-manager", "u-outsider", "manager", "org-acme")
    assert not any(caps.actions.values())


async def test_database_failures_become_lookup_errors(tmp_path) -> None:
    # no tables created
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}")
    try:
        async with AsyncSession(engine) as db:
            with pytest.raises(AuthorizationLookupError):
                await SqlUserRepository(db).find_role("u-member")
            with pytest.raises(AuthorizationLookupError):
                await SqlRoleRepository(db).resolve_role_permissions("manager")
    finally:
        await engine.dispose()


async def test_seeding_is_idempotent(session_factory) -> None:
    async with session_factory() as db:
        await seed_default_catalog(db)
        await seed_default_catalog(db)

        permissions = (await db.execute(select(func.count()).select_from(Permission))).scalar_one()
        roles = (await db.execute(select(func.count()).select_from(Role))).scalar_one()
        admin_grants = (await db.execute(
            select(func.count())
            .select_from(role_permissions)
            .join(Role, Role.id == role_permissions.c.role_id)
            .where(Role.name == "admin")
        )).scalar_one()

    assert permissions == len(DEFAULT_PERMISSIONS)
    assert roles == 3
    assert admin_grants == len(DEFAULT_PERMISSIONS)


async def test_custom_roles_are_loaded_into_registry(session_factory) -> None:
    async with session_factory() as db:
        await seed_default_catalog(db)
        db.add(Role(name="auditor", display_name="Auditor", level=0))
        await db.commit()

        registry = RoleRegistry()
        assert await load_custom_roles(db, registry) == 1

    assert "auditor" in registry
    assert registry.level("auditor") == 0
    assert not registry.is_system("auditor")
