"""
Role hierarchy.

Roles are totally ordered by level. An actor may only act on, or assign, roles
strictly below its own level. Admin is exempt from that rule, and only admin
may hand out admin or act on an admin.
"""
from typing import Iterable, List, Optional

from app.features.permissions.exceptions import RoleEscalationDenied
from app.features.permissions.registry import ADMIN_ROLE, RoleRegistry
from app.utils import get_logger


log = get_logger(__name__)


class RoleHierarchy:
    def __init__(self, registry: RoleRegistry):
        self.registry = registry
    
    def level(self, role: Optional[str]) -> int:
        return self.registry.level(role)
    
    def can_manage(self, actor_role: str, target_role: Optional[str]) -> bool:
        """True when the actor outranks the target role (admin always does)."""
        if actor_role == ADMIN_ROLE:
            return True
        # Only admin acts on admin, whatever level a custom role claims
        if target_role == ADMIN_ROLE:
            return False
        return self.level(target_role) < self.level(actor_role)
    
    def can_assign(self, actor_role: str, new_role: str) -> bool:
        if actor_role == ADMIN_ROLE:
            return True
        if new_role == ADMIN_ROLE:
            return False
        return self.level(new_role) < self.level(actor_role)
    
    def filter_assignable_roles(self, actor_role: str, candidates: Optional[Iterable[str]] = None) -> List[str]:
        """
        Roles the actor may assign, preserving candidate order.
        
        Args:
            actor_role: Platform role of the acting user
            candidates: Role names to filter; defaults to every registered role
        
        Returns:
            Subset of candidates the actor is allowed to hand out
        """
        if candidates is None:
            candidates = self.registry.names()
        return [role for role in candidates if self.can_assign(actor_role, role)]
    
    def assert_can_manage(self, actor_role: str, target_role: Optional[str]) -> None:
        if not self.can_manage(actor_role, target_role):
            log.debug(f"Role {actor_role} cannot manage role {target_role}")
            raise RoleEscalationDenied(f"Role {actor_role} cannot act on role {target_role}")
    
    def assert_can_assign(self, actor_role: str, target_role: Optional[str], new_role: str) -> None:
        """
        Raise RoleEscalationDenied unless the actor may move a target from
        target_role to new_role.
        """
        if not self.can_assign(actor_role, new_role):
            log.debug(f"Role {actor_role} cannot assign role {new_role}")
            raise RoleEscalationDenied(f"Role {actor_role} cannot assign role {new_role}")
        self.assert_can_manage(actor_role, target_role)
    
    def assert_can_create(self, actor_role: str, level: int) -> None:
        """
        A new role must rank below admin, and below the creator's own level
        unless the creator is admin.
        """
        ceiling = self.level(ADMIN_ROLE) if actor_role == ADMIN_ROLE else self.level(actor_role)
        if level >= ceiling:
            log.debug(f"Role {actor_role} cannot create a role at level {level}")
            raise RoleEscalationDenied(f"Role {actor_role} cannot create a role at level {level}")
