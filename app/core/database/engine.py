"""
Async engine, session factory and the per-request session dependency.

The URL comes from DATABASE_URL; sqlite+aiosqlite by default, any async
SQLAlchemy driver (e.g. postgresql+asyncpg) works unchanged.
"""
from collections.abc import AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool

from app.core import config


def build_engine(url: str) -> AsyncEngine:
    """SQLite gets NullPool so connections are never shared between tasks."""
    return create_async_engine(
        url,
        poolclass=NullPool if url.startswith("sqlite") else None,
        echo=False,
        future=True,
    )


engine = build_engine(config.SQLALCHEMY_DATABASE_URL)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    One session per request.

    Commits when the handler returns and rolls back if it raised, so a denied
    authorization check never leaves a half-applied mutation behind.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db(bind: AsyncEngine | None = None):
    """Create any missing tables for the user, organization and RBAC models."""
    from app.core.database.base import Base
    from app.features.users.models import User, UserSession  # noqa: F401
    from app.features.organizations.models import Organization, Member  # noqa: F401
    from app.features.permissions.models import Permission, Role  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
