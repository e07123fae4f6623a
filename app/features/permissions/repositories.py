"""
Lookups the authorization engine depends on.

The engine only talks to the Protocols below. The Sql* classes implement them
on top of an AsyncSession and turn any SQLAlchemyError into
AuthorizationLookupError so callers can tell "could not decide" from "denied".
"""
from contextlib import contextmanager
from typing import Iterator, List, NamedTuple, Optional, Protocol, Sequence

from sqlalchemy import delete, insert, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.organizations.models import Member
from app.features.permissions.exceptions import AuthorizationLookupError
from app.features.permissions.models import Permission, Role, role_permissions
from app.features.users.models import User, UserSession
from app.utils import get_logger


log = get_logger(__name__)


# ============================================================================
# Lookup Results
# ============================================================================

class PermissionRef(NamedTuple):
    resource: str
    action: str
    
    @property
    def key(self) -> str:
        return f"{self.resource}:{self.action}"


class RoleMeta(NamedTuple):
    name: str
    level: int
    is_system: bool
    display_name: str
    color: str = "gray"
    description: Optional[str] = None


class MembershipRef(NamedTuple):
    member_id: str


class SessionOwner(NamedTuple):
    user_id: str


# ============================================================================
# Interfaces
# ============================================================================

class RoleRepository(Protocol):
    async def resolve_role_permissions(self, role_name: str) -> List[PermissionRef]: ...
    
    async def list_roles(self) -> List[RoleMeta]: ...
    
    async def list_permissions(self) -> List[PermissionRef]: ...


class OrgMembershipRepository(Protocol):
    async def find_membership(self, user_id: str, organization_id: str) -> Optional[MembershipRef]: ...
    
    async def find_latest_organization(self, user_id: str) -> Optional[str]: ...


class UserRepository(Protocol):
    async def find_role(self, user_id: str) -> Optional[str]: ...


class SessionRepository(Protocol):
    async def find_owner_by_token(self, token: str) -> Optional[SessionOwner]: ...


@contextmanager
def lookup_errors(what: str) -> Iterator[None]:
    """Re-raise database failures as AuthorizationLookupError."""
    try:
        yield
    except SQLAlchemyError as e:
        log.error(f"Authorization lookup failed ({what}): {e}")
        raise AuthorizationLookupError(f"Could not load {what}") from e


# ============================================================================
# SQLAlchemy Implementations
# ============================================================================

class SqlRoleRepository:
    def __init__(self, db: AsyncSession):
        self.db = db
    
    async def resolve_role_permissions(self, role_name: str) -> List[PermissionRef]:
        stmt = (
            select(Permission.resource, Permission.action)
            .join(role_permissions, role_permissions.c.permission_id == Permission.id)
            .join(Role, Role.id == role_permissions.c.role_id)
            .where(Role.name == role_name)
            .order_by(Permission.resource, Permission.action)
        )
        with lookup_errors(f"permissions for role {role_name}"):
            result = await self.db.execute(stmt)
            return [PermissionRef(resource, action) for resource, action in result.all()]
    
    async def list_roles(self) -> List[RoleMeta]:
        """System roles first, then by name."""
        stmt = select(
            Role.name, Role.level, Role.is_system, Role.display_name, Role.color, Role.description
        ).order_by(Role.is_system.desc(), Role.name)
        with lookup_errors("roles"):
            result = await self.db.execute(stmt)
            return [RoleMeta(*row) for row in result.all()]
    
    async def list_permissions(self) -> List[PermissionRef]:
        stmt = select(Permission.resource, Permission.action).order_by(Permission.resource, Permission.action)
        with lookup_errors("permission catalog"):
            result = await self.db.execute(stmt)
            return [PermissionRef(resource, action) for resource, action in result.all()]
    
    async def replace_role_permissions(self, role_id: str, permission_ids: Sequence[str]) -> None:
        """
        Replace every permission of a role.
        
        Deletes all existing assignments, then inserts the new set. Both
        statements run in the caller's transaction, which get_db commits or
        rolls back as a unit.
        """
        unique_ids = list(dict.fromkeys(permission_ids))
        with lookup_errors(f"permission assignments for role {role_id}"):
            await self.db.execute(delete(role_permissions).where(role_permissions.c.role_id == role_id))
            if unique_ids:
                await self.db.execute(
                    insert(role_permissions),
                    [{"role_id": role_id, "permission_id": pid} for pid in unique_ids],
                )
        log.info(f"Replaced permissions of role {role_id} ({len(unique_ids)} assigned)")


class SqlOrgMembershipRepository:
    def __init__(self, db: AsyncSession):
        self.db = db
    
    async def find_membership(self, user_id: str, organization_id: str) -> Optional[MembershipRef]:
        stmt = select(Member.id).where(
            Member.user_id == user_id,
            Member.organization_id == organization_id,
        )
        with lookup_errors(f"membership of {user_id} in {organization_id}"):
            member_id = (await self.db.execute(stmt)).scalar_one_or_none()
        return MembershipRef(member_id) if member_id is not None else None
    
    async def find_latest_organization(self, user_id: str) -> Optional[str]:
        stmt = (
            select(Member.organization_id)
            .where(Member.user_id == user_id)
            .order_by(Member.created_at.desc(), Member.id.desc())
            .limit(1)
        )
        with lookup_errors(f"memberships of {user_id}"):
            return (await self.db.execute(stmt)).scalar_one_or_none()


class SqlUserRepository:
    def __init__(self, db: AsyncSession):
        self.db = db
    
    async def find_role(self, user_id: str) -> Optional[str]:
        with lookup_errors(f"user {user_id}"):
            result = await self.db.execute(select(User.role).where(User.id == user_id))
            return result.scalar_one_or_none()


class SqlSessionRepository:
    def __init__(self, db: AsyncSession):
        self.db = db
    
    async def find_owner_by_token(self, token: str) -> Optional[SessionOwner]:
        with lookup_errors("session owner"):
            result = await self.db.execute(select(UserSession.user_id).where(UserSession.token == token))
            user_id = result.scalar_one_or_none()
        return SessionOwner(user_id) if user_id is not None else None
