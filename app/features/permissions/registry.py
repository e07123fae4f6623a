"""
Role registry.

Platform roles are value objects registered at startup. The three system roles
are always present; custom roles created through the RBAC routes are loaded from
the database and registered next to them.
"""
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from app.utils import get_logger


log = get_logger(__name__)


ADMIN_ROLE = "admin"
MANAGER_ROLE = "manager"
MEMBER_ROLE = "member"

# Rank given to role names the registry has never seen
UNKNOWN_ROLE_LEVEL = 0


# ============================================================================
# Default Catalog
# ============================================================================

DEFAULT_PERMISSIONS: List[Tuple[str, str, str]] = [
    # User management
    ("user", "create", "Create user accounts"),
    ("user", "read", "View user accounts"),
    ("user", "update", "Update user profile fields"),
    ("user", "delete", "Remove user accounts"),
    ("user", "ban", "Ban and unban users"),
    ("user", "impersonate", "Impersonate users"),
    ("user", "set-role", "Change a user's platform role"),
    ("user", "set-password", "Set a user's password"),
    
    # Sessions
    ("session", "read", "View user sessions"),
    ("session", "revoke", "Revoke user sessions"),
    ("session", "delete", "Delete session records"),
    
    # Organizations
    ("organization", "create", "Create organizations"),
    ("organization", "read", "View organizations"),
    ("organization", "update", "Update organizations"),
    ("organization", "delete", "Delete organizations"),
    ("organization", "invite", "Invite users into organizations"),
    
    # Roles
    ("role", "create", "Create custom roles"),
    ("role", "read", "View roles and their permissions"),
    ("role", "update", "Update role metadata"),
    ("role", "delete", "Delete custom roles"),
    ("role", "assign", "Assign permissions to roles"),
]


@dataclass(frozen=True)
class RoleDefinition:
    """A platform role as the authorization engine sees it."""
    name: str
    level: int
    display_name: str
    is_system: bool = False
    description: Optional[str] = None
    color: str = "gray"
    # "resource:action" keys granted when the catalog is seeded
    default_permissions: Tuple[str, ...] = field(default_factory=tuple)


ALL_DEFAULT_PERMISSION_KEYS: Tuple[str, ...] = tuple(
    f"{resource}:{action}" for resource, action, _ in DEFAULT_PERMISSIONS
)

SYSTEM_ROLES: Tuple[RoleDefinition, ...] = (
    RoleDefinition(
        name=ADMIN_ROLE,
        level=2,
        display_name="Admin",
        is_system=True,
        description="Full platform access",
        color="red",
        default_permissions=ALL_DEFAULT_PERMISSION_KEYS,
    ),
    RoleDefinition(
        name=MANAGER_ROLE,
        level=1,
        display_name="Manager",
        is_system=True,
        description="Manages users of the active organization",
        color="blue",
        default_permissions=(
            "user:read", "user:update", "user:ban",
            "session:read", "session:revoke",
            "organization:read", "organization:invite",
            "role:read", "role:assign", "role:update",
        ),
    ),
    RoleDefinition(
        name=MEMBER_ROLE,
        level=0,
        display_name="Member",
        is_system=True,
        description="Regular organization member",
        color="gray",
        default_permissions=("user:read", "organization:read", "role:read"),
    ),
)


# ============================================================================
# Registry
# ============================================================================

class RoleRegistry:
    """
    In-process table of known roles keyed by name.
    
    System roles can be replaced only by another system definition and can
    never be unregistered.
    """
    
    def __init__(self, definitions: Iterable[RoleDefinition] = SYSTEM_ROLES):
        self._roles: Dict[str, RoleDefinition] = {}
        for definition in definitions:
            self.register(definition)
    
    def register(self, definition: RoleDefinition) -> None:
        existing = self._roles.get(definition.name)
        if existing is not None and existing.is_system and not definition.is_system:
            raise ValueError(f"Cannot replace system role {definition.name!r}")
        self._roles[definition.name] = definition
        log.debug(f"Registered role {definition.name} at level {definition.level}")
    
    def unregister(self, name: str) -> None:
        definition = self._roles.get(name)
        if definition is None:
            return
        if definition.is_system:
            raise ValueError(f"Cannot unregister system role {name!r}")
        del self._roles[name]
        log.debug(f"Unregistered role {name}")
    
    def reset(self) -> None:
        """Drop every custom role."""
        self._roles = {name: d for name, d in self._roles.items() if d.is_system}

    def get(self, name: str) -> Optional[RoleDefinition]:
        return self._roles.get(name)
    
    def __contains__(self, name: object) -> bool:
        return name in self._roles
    
    def level(self, name: Optional[str]) -> int:
        definition = self._roles.get(name) if name else None
        return definition.level if definition is not None else UNKNOWN_ROLE_LEVEL
    
    def is_system(self, name: str) -> bool:
        definition = self._roles.get(name)
        return definition is not None and definition.is_system
    
    def names(self) -> List[str]:
        """Registered role names, highest level first, then alphabetical."""
        return [d.name for d in sorted(self._roles.values(), key=lambda d: (-d.level, d.name))]
    
    def load(self, rows: Iterable) -> int:
        """
        Register custom roles from persisted rows.
        
        Args:
            rows: Objects exposing name, level, display_name, is_system,
                description and color (e.g. Role models)
        
        Returns:
            Number of custom roles registered
        """
        count = 0
        for row in rows:
            if self.is_system(row.name):
                continue
            self.register(
                RoleDefinition(
                    name=row.name,
                    level=row.level,
                    display_name=row.display_name,
                    is_system=False,
                    description=row.description,
                    color=row.color,
                )
            )
            count += 1
        return count


registry = RoleRegistry()
