"""Shared pytest fixtures."""

import os
from collections.abc import AsyncIterator, Iterator
from datetime import datetime, timedelta, timezone

os.environ.setdefault("RATE_LIMIT", "100000/minute")
os.environ.setdefault("SEED_DEFAULT_CATALOG", "0")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from app.core.database.engine import build_engine, get_db, init_db
from app.features.organizations.models import Member, Organization
from app.features.permissions.engine import AuthorizationEngine
from app.features.permissions.registry import RoleRegistry, registry
from app.features.permissions.seed import seed_default_catalog
from app.features.users.models import User, UserSession
from app.main import app
from tests.fakes import (
    DEFAULT_GRANTS,
    MEMBERSHIPS,
    SESSION_OWNERS,
    USER_ROLES,
    FakeMembershipRepository,
    FakeRoleRepository,
    FakeSessionRepository,
    FakeUserRepository,
)


@pytest.fixture()
def role_repo() -> FakeRoleRepository:
    return FakeRoleRepository({k: list(v) for k, v in DEFAULT_GRANTS.items()})


@pytest.fixture()
def membership_repo() -> FakeMembershipRepository:
    return FakeMembershipRepository(list(MEMBERSHIPS))


@pytest.fixture()
def user_repo() -> FakeUserRepository:
    return FakeUserRepository(dict(USER_ROLES), failing=frozenset({"broken"}))


@pytest.fixture()
def session_repo() -> FakeSessionRepository:
    return FakeSessionRepository(dict(SESSION_OWNERS))


@pytest.fixture()
def engine(role_repo, membership_repo, user_repo, session_repo) -> AuthorizationEngine:
    """Engine over in-memory repositories with the default grants."""
    return AuthorizationEngine(
        roles=role_repo,
        memberships=membership_repo,
        users=user_repo,
        sessions=session_repo,
        registry=RoleRegistry(),
    )


@pytest.fixture(autouse=True)
def _reset_registry() -> Iterator[None]:
    yield
    registry.reset()


# ============================================================================
# Database
# ============================================================================

@pytest_asyncio.fixture()
async def db_engine(tmp_path) -> AsyncIterator[AsyncEngine]:
    """File-backed SQLite database with every table created."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture()
async def db_session(session_factory) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture()
async def seed_identity(session_factory) -> dict[str, str]:
    """
    Default catalog plus two organizations, users of every role and a
    session per user. Returns ids and bearer tokens by nickname.
    """
    now = datetime.now(timezone.utc)
    later = now + timedelta(days=1)
    
    async with session_factory() as db:
        await seed_default_catalog(db)
        
        db.add_all([
            Organization(id="org-acme", name="Acme", slug="acme"),
            Organization(id="org-globex", name="Globex", slug="globex"),
        ])
        db.add_all([
            User(id="u-admin", email="admin@tenantadmin.dev", name="Ada Admin", role="admin"),
            User(id="u-manager", email="manager@tenantadmin.dev", name="Max Manager", role="manager"),
            User(id="u-manager2", email="manager2@tenantadmin.dev", name="Mia Manager", role="manager"),
            User(id="u-member", email="member@tenantadmin.dev", name="Mo Member", role="member"),
            User(id="u-outsider", email="outsider@tenantadmin.dev", name="Oz Outsider", role="member"),
            User(id="u-banned", email="banned@tenantadmin.dev", name="Bo Banned", role="member",
                 banned=True, ban_reason="spam"),
        ])
        await db.flush()
        db.add_all([
            Member(organization_id="org-acme", user_id="u-manager", role="manager"),
            Member(organization_id="org-acme", user_id="u-manager2", role="manager"),
            Member(organization_id="org-acme", user_id="u-member", role="member"),
            Member(organization_id="org-acme", user_id="u-banned", role="member"),
            Member(organization_id="org-globex", user_id="u-outsider", role="member"),
        ])
        db.add_all([
            UserSession(user_id="u-admin", token="admin-token", expires_at=later),
            UserSession(user_id="u-manager", token="manager-token", expires_at=later,
                        active_organization_id="org-acme"),
            UserSession(user_id="u-manager2", token="manager-noorg-token", expires_at=later),
            UserSession(user_id="u-manager2", token="manager2-token", expires_at=later,
                        active_organization_id="org-acme"),
            UserSession(user_id="u-member", token="member-token", expires_at=later,
                        active_organization_id="org-acme"),
            UserSession(user_id="u-outsider", token="outsider-token", expires_at=later,
                        active_organization_id="org-globex"),
            UserSession(user_id="u-banned", token="banned-token", expires_at=later,
                        active_organization_id="org-acme"),
            UserSession(user_id="u-manager", token="expired-token", expires_at=now - timedelta(hours=1),
                        active_organization_id="org-acme"),
        ])
        await db.commit()
    
    return {
        "admin": "u-admin",
        "manager": "u-manager",
        "manager2": "u-manager2",
        "member": "u-member",
        "outsider": "u-outsider",
        "banned": "u-banned",
        "org": "org-acme",
        "other_org": "org-globex",
    }


@pytest_asyncio.fixture()
async def async_client(session_factory, seed_identity) -> AsyncIterator[AsyncClient]:
    """HTTPX client bound to the app, with get_db pointed at the test database."""
    
    async def override_get_db() -> AsyncIterator[AsyncSession]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
    
    app.dependency_overrides[get_db] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
    app.dependency_overrides.clear()
