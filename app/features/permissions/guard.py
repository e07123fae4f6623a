"""
Authorization guard and the per-action check pipeline.

OPERATIONS is the declarative table every admin route is looked up in. The
ActionPipeline decides a single user-management action against a single target
by running ordered checks; the first check that returns a Decision wins.
"""
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional, Tuple

from app.features.permissions.context import ActorContext
from app.features.permissions.exceptions import (
    AuthenticationRequired,
    AuthorizationError,
    NotInOrganization,
    OrgScopeRequired,
    PermissionDenied,
    RoleEscalationDenied,
    SelfActionDenied,
)
from app.features.permissions.hierarchy import RoleHierarchy
from app.features.permissions.registry import MEMBER_ROLE
from app.features.permissions.resolver import PermissionResolver, PermissionSet, missing_permissions
from app.features.permissions.scope import OrgScopeEnforcer
from app.utils import get_logger


log = get_logger(__name__)


# ============================================================================
# Operation Map
# ============================================================================

# Lowest role level allowed onto the admin surface (manager)
ADMIN_SURFACE_LEVEL = 1


@dataclass(frozen=True)
class OperationPolicy:
    required_permissions: Tuple[str, ...]
    org_scoped: bool = True
    min_level: int = ADMIN_SURFACE_LEVEL


OPERATIONS: Dict[str, OperationPolicy] = {
    # Users
    "users.list": OperationPolicy(("user:read",)),
    "users.read_capabilities": OperationPolicy(("user:read",)),
    "users.create_metadata": OperationPolicy(("user:read",)),
    "users.create": OperationPolicy(("user:create",)),
    "users.update": OperationPolicy(("user:update",)),
    "users.set_role": OperationPolicy(("user:set-role",)),
    "users.ban": OperationPolicy(("user:ban",)),
    "users.unban": OperationPolicy(("user:ban",)),
    "users.remove": OperationPolicy(("user:delete",)),
    "users.bulk_remove": OperationPolicy(("user:delete",)),
    
    # Sessions
    "sessions.list": OperationPolicy(("session:read",)),
    "sessions.revoke": OperationPolicy(("session:revoke",)),
    "sessions.revoke_all": OperationPolicy(("session:revoke",)),
    
    # Roles are platform-wide, not organization-scoped
    "roles.list": OperationPolicy(("role:read",), org_scoped=False),
    "roles.read": OperationPolicy(("role:read",), org_scoped=False),
    "roles.create": OperationPolicy(("role:create",), org_scoped=False),
    "roles.update": OperationPolicy(("role:update",), org_scoped=False),
    "roles.delete": OperationPolicy(("role:delete",), org_scoped=False),
    "roles.assign_permissions": OperationPolicy(("role:assign",), org_scoped=False),
    "roles.read_permissions": OperationPolicy(("role:read",), org_scoped=False),
    "permissions.list": OperationPolicy(("role:read",), org_scoped=False),
    # Own effective permissions; any role on the admin surface
    "permissions.mine": OperationPolicy((), org_scoped=False),
}


def get_operation(name: str) -> OperationPolicy:
    """Look up an operation; unknown names raise KeyError."""
    return OPERATIONS[name]


# ============================================================================
# User Actions
# ============================================================================

UPDATE = "update"
SET_ROLE = "set_role"
BAN = "ban"
UNBAN = "unban"
SET_PASSWORD = "set_password"
REMOVE = "remove"
REVOKE_SESSIONS = "revoke_sessions"
IMPERSONATE = "impersonate"

ACTION_PERMISSIONS: Dict[str, str] = {
    UPDATE: "user:update",
    SET_ROLE: "user:set-role",
    BAN: "user:ban",
    UNBAN: "user:ban",
    SET_PASSWORD: "user:set-password",
    REMOVE: "user:delete",
    REVOKE_SESSIONS: "session:revoke",
    IMPERSONATE: "user:impersonate",
}

ACTIONS: Tuple[str, ...] = tuple(ACTION_PERMISSIONS)

# Allowed on one's own account on permission alone
SELF_SAFE_ACTIONS = frozenset({UPDATE, SET_PASSWORD})
# Never allowed on one's own account
SELF_PROTECTED_ACTIONS = frozenset({SET_ROLE, BAN, UNBAN, REMOVE, REVOKE_SESSIONS, IMPERSONATE})


@dataclass(frozen=True)
class TargetFacts:
    """Freshly loaded state of the user an action is aimed at."""
    user_id: str
    role: str
    is_self: bool
    in_active_org: bool


@dataclass(frozen=True)
class Decision:
    allowed: bool
    error: Optional[AuthorizationError] = None
    
    @classmethod
    def allow(cls) -> "Decision":
        return cls(allowed=True)
    
    @classmethod
    def deny(cls, error: AuthorizationError) -> "Decision":
        return cls(allowed=False, error=error)
    
    def raise_for_denial(self) -> None:
        if not self.allowed and self.error is not None:
            raise self.error


Check = Callable[[ActorContext, TargetFacts, str, PermissionSet], Optional[Decision]]


class ActionPipeline:
    """
    Ordered checks for one action on one target:
    
    1. active organization (non-admin)
    2. base permission, and impersonate is never open to members
    3. self-protection; self-safe actions stop here and are allowed
    4. target membership in the active organization (non-admin)
    5. hierarchy: target level below the actor's (admin exempt)
    """
    
    def __init__(self, hierarchy: RoleHierarchy):
        self.hierarchy = hierarchy
        self.checks: Tuple[Check, ...] = (
            self.check_active_org,
            self.check_permission,
            self.check_self,
            self.check_membership,
            self.check_hierarchy,
        )
    
    def evaluate(
        self,
        actor: ActorContext,
        target: TargetFacts,
        action: str,
        effective: PermissionSet,
    ) -> Decision:
        if action not in ACTION_PERMISSIONS:
            raise KeyError(action)
        for check in self.checks:
            decision = check(actor, target, action, effective)
            if decision is not None:
                return decision
        return Decision.allow()
    
    @staticmethod
    def check_active_org(actor, target, action, effective) -> Optional[Decision]:
        if not actor.is_admin and not actor.active_organization_id:
            return Decision.deny(OrgScopeRequired(target_user_id=target.user_id))
        return None
    
    @staticmethod
    def check_permission(actor, target, action, effective) -> Optional[Decision]:
        permission = ACTION_PERMISSIONS[action]
        if action == IMPERSONATE and actor.role == MEMBER_ROLE:
            return Decision.deny(
                PermissionDenied([permission], "Members cannot impersonate users", target_user_id=target.user_id)
            )
        if permission not in effective:
            return Decision.deny(PermissionDenied([permission], target_user_id=target.user_id))
        return None
    
    @staticmethod
    def check_self(actor, target, action, effective) -> Optional[Decision]:
        if not target.is_self:
            return None
        if action in SELF_SAFE_ACTIONS:
            return Decision.allow()
        if action in SELF_PROTECTED_ACTIONS:
            return Decision.deny(SelfActionDenied(target_user_id=target.user_id))
        return None
    
    @staticmethod
    def check_membership(actor, target, action, effective) -> Optional[Decision]:
        if not actor.is_admin and not target.in_active_org:
            return Decision.deny(NotInOrganization(target_user_id=target.user_id))
        return None
    
    def check_hierarchy(self, actor, target, action, effective) -> Optional[Decision]:
        if not self.hierarchy.can_manage(actor.role, target.role):
            return Decision.deny(
                RoleEscalationDenied(
                    f"Role {actor.role} cannot act on role {target.role}",
                    target_user_id=target.user_id,
                )
            )
        return None


# ============================================================================
# Guard
# ============================================================================

class AuthorizationGuard:
    """Entry point the request layer calls before any read or mutation."""
    
    def __init__(self, resolver: PermissionResolver, scope: OrgScopeEnforcer, hierarchy: RoleHierarchy):
        self.resolver = resolver
        self.scope = scope
        self.hierarchy = hierarchy
    
    async def authorize(self, required_permissions: Iterable[str], actor: Optional[ActorContext]) -> None:
        """
        Require every permission in required_permissions.
        
        Raises:
            AuthenticationRequired: no actor
            PermissionDenied: with the missing keys in the order given
        """
        if actor is None:
            raise AuthenticationRequired()
        
        required = list(required_permissions)
        if not required or actor.is_admin:
            return
        
        effective = await self.resolver.resolve(actor.role)
        missing = missing_permissions(required, effective)
        if missing:
            log.debug(f"Actor {actor.id} ({actor.role}) denied {missing}")
            raise PermissionDenied(missing)
        log.debug(f"Actor {actor.id} ({actor.role}) granted {required}")
    
    async def authorize_operation(self, name: str, actor: Optional[ActorContext]) -> Optional[str]:
        """
        Authorize a named operation from OPERATIONS.
        
        Returns:
            The active organization id for org-scoped operations by non-admin
            actors, otherwise the actor's active organization (possibly None)
        """
        policy = get_operation(name)
        if actor is None:
            raise AuthenticationRequired()
        
        if not actor.is_admin and self.hierarchy.level(actor.role) < policy.min_level:
            log.debug(f"Actor {actor.id} ({actor.role}) below admin surface for {name}")
            raise PermissionDenied(
                list(policy.required_permissions),
                f"Role {actor.role} is below the admin surface and cannot perform {name}",
            )
        
        if policy.org_scoped:
            self.scope.require_active_org(actor)
        await self.authorize(policy.required_permissions, actor)
        return actor.active_organization_id
