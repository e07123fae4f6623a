"""
Effective permission resolution.

The admin role short-circuits to ALL_PERMISSIONS without touching the catalog.
Every other role is resolved from role_permissions on each call; nothing is
cached between calls.
"""
from typing import FrozenSet, Iterable, List, Union

from app.features.permissions.registry import ADMIN_ROLE
from app.features.permissions.repositories import RoleRepository
from app.utils import get_logger


log = get_logger(__name__)


class _AllPermissions:
    """Permission set that contains every key."""
    
    def __contains__(self, key: object) -> bool:
        return True
    
    def __repr__(self) -> str:
        return "ALL_PERMISSIONS"


ALL_PERMISSIONS = _AllPermissions()

PermissionSet = Union[FrozenSet[str], _AllPermissions]


def missing_permissions(required: Iterable[str], effective: PermissionSet) -> List[str]:
    """Required keys absent from the effective set, in the order given."""
    return [key for key in required if key not in effective]


class PermissionCatalog:
    """Role name to granted "resource:action" keys, read from a RoleRepository."""
    
    def __init__(self, roles: RoleRepository):
        self.roles = roles
    
    async def permissions_for(self, role_name: str) -> FrozenSet[str]:
        refs = await self.roles.resolve_role_permissions(role_name)
        return frozenset(ref.key for ref in refs)
    
    async def all_keys(self) -> FrozenSet[str]:
        refs = await self.roles.list_permissions()
        return frozenset(ref.key for ref in refs)


class PermissionResolver:
    def __init__(self, catalog: PermissionCatalog):
        self.catalog = catalog
    
    async def resolve(self, role_name: str) -> PermissionSet:
        """
        Resolve the effective permission set of a role.
        
        Unknown roles and roles with no assignments resolve to an empty set.
        """
        if role_name == ADMIN_ROLE:
            return ALL_PERMISSIONS
        
        permissions = await self.catalog.permissions_for(role_name)
        if not permissions:
            log.debug(f"Role {role_name} resolved to no permissions")
        return permissions
    
    async def list_effective(self, role_name: str) -> List[str]:
        """
        Effective permission keys of a role, sorted.
        
        ALL_PERMISSIONS is expanded to every key in the catalog.
        """
        effective = await self.resolve(role_name)
        if effective is ALL_PERMISSIONS:
            effective = await self.catalog.all_keys()
        return sorted(effective)
