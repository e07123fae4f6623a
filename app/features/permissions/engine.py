"""
Authorization engine facade.

Wires the resolver, hierarchy, scope enforcer, guard and capability computer
around one set of repositories. Build one per request with from_session().
"""
from typing import Iterable, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from app.features.permissions.capabilities import CapabilityComputer
from app.features.permissions.context import ActorContext
from app.features.permissions.exceptions import (
    NotInOrganization,
    OrgScopeRequired,
    RoleEscalationDenied,
    TargetNotFound,
)
from app.features.permissions.guard import AuthorizationGuard
from app.features.permissions.hierarchy import RoleHierarchy
from app.features.permissions.registry import ADMIN_ROLE, RoleRegistry, registry as default_registry
from app.features.permissions.repositories import (
    OrgMembershipRepository,
    RoleMeta,
    RoleRepository,
    SessionRepository,
    SqlOrgMembershipRepository,
    SqlRoleRepository,
    SqlSessionRepository,
    SqlUserRepository,
    UserRepository,
)
from app.features.permissions.resolver import PermissionCatalog, PermissionResolver
from app.features.permissions.schemas import CapabilityMap
from app.features.permissions.scope import OrgScopeEnforcer


class AuthorizationEngine:
    def __init__(
        self,
        roles: RoleRepository,
        memberships: OrgMembershipRepository,
        users: UserRepository,
        sessions: SessionRepository,
        registry: Optional[RoleRegistry] = None,
    ):
        self.roles = roles
        self.memberships = memberships
        self.users = users
        self.sessions = sessions
        self.registry = registry if registry is not None else default_registry
        
        self.resolver = PermissionResolver(PermissionCatalog(roles))
        self.hierarchy = RoleHierarchy(self.registry)
        self.scope = OrgScopeEnforcer(memberships)
        self.guard = AuthorizationGuard(self.resolver, self.scope, self.hierarchy)
        self.capabilities = CapabilityComputer(self.resolver, self.hierarchy, self.scope, users, sessions)
    
    @classmethod
    def from_session(cls, db: AsyncSession, registry: Optional[RoleRegistry] = None) -> "AuthorizationEngine":
        return cls(
            roles=SqlRoleRepository(db),
            memberships=SqlOrgMembershipRepository(db),
            users=SqlUserRepository(db),
            sessions=SqlSessionRepository(db),
            registry=registry,
        )
    
    # ========================================================================
    # Guard
    # ========================================================================
    
    async def authorize(self, required_permissions: Iterable[str], actor: Optional[ActorContext]) -> None:
        await self.guard.authorize(required_permissions, actor)
    
    async def authorize_operation(self, name: str, actor: Optional[ActorContext]) -> Optional[str]:
        return await self.guard.authorize_operation(name, actor)
    
    # ========================================================================
    # Capabilities
    # ========================================================================
    
    async def get_user_capabilities(
        self,
        actor_user_id: str,
        target_user_id: str,
        actor_role: str,
        active_organization_id: Optional[str],
    ) -> CapabilityMap:
        return await self.capabilities.get_user_capabilities(
            actor_user_id, target_user_id, actor_role, active_organization_id
        )
    
    async def get_batch_capabilities(
        self,
        actor_user_id: str,
        user_ids: Sequence[str],
        actor_role: str,
        active_organization_id: Optional[str],
    ) -> List[CapabilityMap]:
        return await self.capabilities.get_batch_capabilities(
            actor_user_id, user_ids, actor_role, active_organization_id
        )
    
    async def assert_action_allowed(self, actor: ActorContext, target_user_id: str, action: str) -> None:
        await self.capabilities.assert_action_allowed(actor, target_user_id, action)
    
    async def assert_bulk_allowed(self, actor: ActorContext, user_ids: Sequence[str], action: str) -> None:
        await self.capabilities.assert_bulk_allowed(actor, user_ids, action)
    
    # ========================================================================
    # Organization Scope
    # ========================================================================
    
    async def assert_org_scope(self, actor: ActorContext, target_user_id: str) -> Optional[str]:
        return await self.scope.assert_org_scope(actor, target_user_id)
    
    async def assert_session_revocable(self, actor: ActorContext, token: str) -> Optional[str]:
        return await self.capabilities.assert_session_revocable(actor, token)
    
    async def resolve_assignment_organization(self, actor: ActorContext, target_user_id: str) -> Optional[str]:
        """
        Organization a role change is recorded in: the active organization,
        or for admin without one, the target's most recent membership.
        """
        if actor.active_organization_id:
            return actor.active_organization_id
        if actor.is_admin:
            return await self.memberships.find_latest_organization(target_user_id)
        return None
    
    # ========================================================================
    # Hierarchy
    # ========================================================================
    
    def filter_assignable_roles(self, actor_role: str, candidates: Optional[Iterable[str]] = None) -> List[str]:
        return self.hierarchy.filter_assignable_roles(actor_role, candidates)
    
    async def assert_can_assign_role(self, actor: ActorContext, target_user_id: str, new_role: str) -> None:
        """Check a role change against the target's role as stored right now."""
        target_role = await self.users.find_role(target_user_id)
        if target_role is None:
            raise TargetNotFound(target_user_id=target_user_id)
        self.hierarchy.assert_can_assign(actor.role, target_role, new_role)
    
    def assert_can_manage_role(self, actor: ActorContext, role_name: str) -> None:
        """Editing a role's permissions requires outranking it (admin exempt)."""
        self.hierarchy.assert_can_manage(actor.role, role_name)
    
    def assert_can_create_role(self, actor: ActorContext, level: int) -> None:
        self.hierarchy.assert_can_create(actor.role, level)
    
    def resolve_creation_organization(
        self,
        actor: ActorContext,
        role: str,
        organization_id: Optional[str],
    ) -> Optional[str]:
        """
        Organization a new user is created in. Admin users get none; every
        other user needs one, and a non-admin creator may only use its active
        organization.
        
        Raises:
            RoleEscalationDenied: the actor may not hand out role
            OrgScopeRequired: non-admin user without an organization
            NotInOrganization: non-admin creator naming another organization
        """
        if not self.hierarchy.can_assign(actor.role, role):
            raise RoleEscalationDenied(f"Role {actor.role} cannot create users with role {role}")
        if role == ADMIN_ROLE:
            return None
        if not organization_id:
            raise OrgScopeRequired("Organization is required for non-admin users")
        if not actor.is_admin and organization_id != self.scope.require_active_org(actor):
            raise NotInOrganization("Users can only be created in the active organization")
        return organization_id
    
    # ========================================================================
    # Catalog
    # ========================================================================
    
    async def list_roles(self) -> List[RoleMeta]:
        return await self.roles.list_roles()
    
    async def list_effective_permissions(self, role_name: str) -> List[str]:
        return await self.resolver.list_effective(role_name)
