"""
Organization scope enforcement.

Every role except admin is confined to the organization selected in its
session. Admin bypasses the scope entirely.
"""
from typing import Optional

from app.features.permissions.context import ActorContext
from app.features.permissions.exceptions import NotInOrganization, OrgScopeRequired
from app.features.permissions.repositories import OrgMembershipRepository
from app.utils import get_logger


log = get_logger(__name__)


class OrgScopeEnforcer:
    def __init__(self, memberships: OrgMembershipRepository):
        self.memberships = memberships
    
    def require_active_org(self, actor: ActorContext) -> Optional[str]:
        """
        Return the actor's active organization.
        
        Raises:
            OrgScopeRequired: non-admin actor without an active organization
        """
        if actor.is_admin:
            return actor.active_organization_id
        if not actor.active_organization_id:
            log.debug(f"Actor {actor.id} ({actor.role}) has no active organization")
            raise OrgScopeRequired()
        return actor.active_organization_id
    
    async def is_target_in_org(self, target_user_id: str, organization_id: str) -> bool:
        membership = await self.memberships.find_membership(target_user_id, organization_id)
        return membership is not None
    
    async def assert_target_in_org(self, target_user_id: str, organization_id: str) -> None:
        if not await self.is_target_in_org(target_user_id, organization_id):
            log.debug(f"User {target_user_id} is not a member of organization {organization_id}")
            raise NotInOrganization(target_user_id=target_user_id)
    
    async def assert_org_scope(self, actor: ActorContext, target_user_id: str) -> Optional[str]:
        """
        Check that the target is reachable from the actor's active organization.
        
        Returns:
            The organization id the action is scoped to, or None for admin
        """
        if actor.is_admin:
            return None
        organization_id = self.require_active_org(actor)
        await self.assert_target_in_org(target_user_id, organization_id)
        return organization_id
