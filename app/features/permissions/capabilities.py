"""
Capability computation and mutation-time barriers.

The same ActionPipeline produces the capability map shown in the UI and the
assertion run right before each mutation, so both always agree.
"""
from typing import Dict, List, Optional, Sequence

from app.features.permissions.context import ActorContext
from app.features.permissions.exceptions import (
    AuthorizationError,
    AuthorizationLookupError,
    TargetNotFound,
)
from app.features.permissions.guard import ACTIONS, REVOKE_SESSIONS, ActionPipeline, TargetFacts
from app.features.permissions.hierarchy import RoleHierarchy
from app.features.permissions.repositories import SessionRepository, UserRepository
from app.features.permissions.resolver import PermissionResolver, PermissionSet
from app.features.permissions.schemas import CapabilityMap
from app.features.permissions.scope import OrgScopeEnforcer
from app.utils import get_logger


log = get_logger(__name__)


def empty_capabilities(target_user_id: str, is_self: bool = False) -> CapabilityMap:
    """All-false map for a target that could not be evaluated."""
    return CapabilityMap(
        target_user_id=target_user_id,
        target_role=None,
        is_self=is_self,
        actions={action: False for action in ACTIONS},
    )


class CapabilityComputer:
    def __init__(
        self,
        resolver: PermissionResolver,
        hierarchy: RoleHierarchy,
        scope: OrgScopeEnforcer,
        users: UserRepository,
        sessions: SessionRepository,
    ):
        self.resolver = resolver
        self.scope = scope
        self.users = users
        self.sessions = sessions
        self.pipeline = ActionPipeline(hierarchy)
    
    async def load_target(self, actor: ActorContext, target_user_id: str) -> TargetFacts:
        """
        Load the target's current role and, for non-admin actors, its
        membership in the active organization.
        
        Raises:
            TargetNotFound: no such user
        """
        role = await self.users.find_role(target_user_id)
        if role is None:
            raise TargetNotFound(target_user_id=target_user_id)
        
        in_active_org = False
        if not actor.is_admin and actor.active_organization_id:
            in_active_org = await self.scope.is_target_in_org(target_user_id, actor.active_organization_id)
        
        return TargetFacts(
            user_id=target_user_id,
            role=role,
            is_self=actor.id == target_user_id,
            in_active_org=in_active_org,
        )
    
    def _capabilities(self, actor: ActorContext, target: TargetFacts, effective: PermissionSet) -> CapabilityMap:
        actions: Dict[str, bool] = {
            action: self.pipeline.evaluate(actor, target, action, effective).allowed
            for action in ACTIONS
        }
        return CapabilityMap(
            target_user_id=target.user_id,
            target_role=target.role,
            is_self=target.is_self,
            actions=actions,
        )
    
    async def get_user_capabilities(
        self,
        actor_user_id: str,
        target_user_id: str,
        actor_role: str,
        active_organization_id: Optional[str],
    ) -> CapabilityMap:
        """
        Compute the capability map of one target.
        
        Raises:
            TargetNotFound: no such user
            AuthorizationLookupError: a lookup failed
        """
        actor = ActorContext(actor_user_id, actor_role, active_organization_id)
        target = await self.load_target(actor, target_user_id)
        effective = await self.resolver.resolve(actor_role)
        return self._capabilities(actor, target, effective)
    
    async def get_batch_capabilities(
        self,
        actor_user_id: str,
        user_ids: Sequence[str],
        actor_role: str,
        active_organization_id: Optional[str],
    ) -> List[CapabilityMap]:
        """
        Capability maps for several targets, in the order given.
        
        A target that is missing or whose lookups fail gets an all-false map;
        the rest of the batch is still computed.
        """
        results: List[CapabilityMap] = []
        for user_id in user_ids:
            try:
                results.append(
                    await self.get_user_capabilities(actor_user_id, user_id, actor_role, active_organization_id)
                )
            except (AuthorizationError, AuthorizationLookupError) as e:
                log.warning(f"Capabilities for {user_id} unavailable to {actor_user_id}: {e}")
                results.append(empty_capabilities(user_id, is_self=user_id == actor_user_id))
        return results
    
    async def assert_action_allowed(self, actor: ActorContext, target_user_id: str, action: str) -> None:
        """
        Re-run the action pipeline with fresh lookups and raise its denial.
        
        Raises:
            OrgScopeRequired, PermissionDenied, SelfActionDenied,
            NotInOrganization, RoleEscalationDenied, TargetNotFound
        """
        self.scope.require_active_org(actor)
        target = await self.load_target(actor, target_user_id)
        effective = await self.resolver.resolve(actor.role)
        decision = self.pipeline.evaluate(actor, target, action, effective)
        if not decision.allowed:
            log.debug(f"Actor {actor.id} denied {action} on {target_user_id}: {decision.error}")
        decision.raise_for_denial()
    
    async def assert_bulk_allowed(self, actor: ActorContext, user_ids: Sequence[str], action: str) -> None:
        """
        All-or-nothing check of one action over several targets.
        
        The first target that fails aborts the batch; the raised error names
        it in target_user_id. An empty list is allowed.
        """
        for user_id in user_ids:
            try:
                await self.assert_action_allowed(actor, user_id, action)
            except AuthorizationError as e:
                e.target_user_id = user_id
                log.info(f"Bulk {action} by {actor.id} rejected at {user_id}: {e.code}")
                raise
    
    async def assert_session_revocable(self, actor: ActorContext, token: str) -> Optional[str]:
        """
        Check that the actor may revoke the session identified by token.
        
        A token that resolves to no session is treated as already revoked and
        allowed without further lookups. A live token is decided as
        revoke_sessions on its owner, the same way revoke-all is.
        
        Returns:
            The actor's active organization (None for admin without one)
        """
        organization_id = self.scope.require_active_org(actor)
        owner = await self.sessions.find_owner_by_token(token)
        if owner is None:
            log.debug(f"Session token for revocation by {actor.id} has no owner")
            return organization_id
        await self.assert_action_allowed(actor, owner.user_id, REVOKE_SESSIONS)
        return organization_id
