"""
Default catalog seeding.

Creates the default permissions and the three system roles with their grants.
Safe to run repeatedly: existing permissions and roles are left untouched.
"""
from typing import Dict

from sqlalchemy import insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.permissions.models import Permission, Role, role_permissions
from app.features.permissions.registry import DEFAULT_PERMISSIONS, SYSTEM_ROLES, RoleRegistry
from app.features.permissions.repositories import SqlRoleRepository
from app.utils import get_logger


log = get_logger(__name__)


async def seed_default_permissions(db: AsyncSession) -> Dict[str, Permission]:
    """
    Create default permissions.
    
    Returns:
        Dictionary mapping "resource:action" keys to Permission objects
    """
    permissions_map: Dict[str, Permission] = {}
    created = 0
    
    for resource, action, description in DEFAULT_PERMISSIONS:
        key = f"{resource}:{action}"
        stmt = select(Permission).where(Permission.resource == resource, Permission.action == action)
        existing = (await db.execute(stmt)).scalars().first()
        
        if existing:
            log.debug(f"Permission '{key}' already exists, skipping")
            permissions_map[key] = existing
            continue
        
        permission = Permission(resource=resource, action=action, description=description)
        db.add(permission)
        permissions_map[key] = permission
        created += 1
    
    await db.flush()
    log.info(f"Seeded {created} new permissions ({len(permissions_map)} in catalog)")
    return permissions_map


async def seed_system_roles(db: AsyncSession, permissions_map: Dict[str, Permission]) -> int:
    """
    Create the system roles that do not exist yet and grant their default
    permissions.
    
    Returns:
        Number of roles created
    """
    created = 0
    for definition in SYSTEM_ROLES:
        existing = (await db.execute(select(Role).where(Role.name == definition.name))).scalars().first()
        if existing:
            log.debug(f"Role '{definition.name}' already exists, skipping")
            continue
        
        role = Role(
            name=definition.name,
            display_name=definition.display_name,
            description=definition.description,
            color=definition.color,
            level=definition.level,
            is_system=True,
        )
        db.add(role)
        await db.flush()
        
        rows = []
        for key in definition.default_permissions:
            permission = permissions_map.get(key)
            if permission is None:
                log.warning(f"Permission '{key}' not found for role '{definition.name}'")
                continue
            rows.append({"role_id": role.id, "permission_id": permission.id})
        if rows:
            await db.execute(insert(role_permissions), rows)
        
        log.info(f"Created role '{definition.name}' with {len(rows)} permissions")
        created += 1
    return created


async def seed_default_catalog(db: AsyncSession) -> None:
    """Seed permissions, then roles, and commit."""
    permissions_map = await seed_default_permissions(db)
    await seed_system_roles(db, permissions_map)
    await db.commit()


async def load_custom_roles(db: AsyncSession, registry: RoleRegistry) -> int:
    """Register every persisted custom role with the in-process registry."""
    roles = await SqlRoleRepository(db).list_roles()
    count = registry.load(role for role in roles if not role.is_system)
    if count:
        log.info(f"Registered {count} custom roles")
    return count
