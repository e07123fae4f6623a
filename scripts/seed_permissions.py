"""
Seed the default permission catalog and system roles.

Creates the user, session, organization and role permissions and the admin,
manager and member roles. Existing rows are kept as they are.

Usage:
    python -m scripts.seed_permissions
"""
import asyncio

from app.core.database.engine import AsyncSessionLocal, init_db
from app.features.permissions.registry import SYSTEM_ROLES
from app.features.permissions.seed import seed_default_catalog
from app.utils import get_logger


log = get_logger(__name__)


async def main():
    log.info("Initializing database tables...")
    await init_db()
    
    async with AsyncSessionLocal() as db:
        try:
            await seed_default_catalog(db)
        except Exception as e:
            log.error(f"Error seeding permissions: {e}", exc_info=True)
            await db.rollback()
            raise
    
    log.info("Permission seeding completed")
    for definition in SYSTEM_ROLES:
        log.info(f"  - {definition.name} (level {definition.level}): {len(definition.default_permissions)} permissions")


if __name__ == "__main__":
    asyncio.run(main())
