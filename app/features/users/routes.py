"""
Admin user and session routes.

Every route authorizes its operation through require_operation(); mutating
routes additionally re-check the concrete action against the freshly loaded
target with assert_action_allowed() right before writing.
"""
from typing import Annotated
from datetime import datetime, timedelta, timezone
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.organizations.models import Member, Organization
from app.features.permissions.context import ActorContext
from app.features.permissions.dependencies import get_engine, require_operation
from app.features.permissions.engine import AuthorizationEngine
from app.features.permissions.guard import BAN, REMOVE, REVOKE_SESSIONS, SET_ROLE, UNBAN, UPDATE
from app.features.permissions.registry import ADMIN_ROLE
from app.features.permissions.schemas import CapabilityMap
from app.features.users.models import User, UserSession
from app.features.users.schemas import (
    AdminUserList,
    AdminUserResponse,
    BanRequest,
    CreateUserMetadata,
    CreateUserRequest,
    OrganizationOption,
    RevokeSessionRequest,
    RoleOption,
    SessionResponse,
    SetRoleRequest,
    SuccessResponse,
    UserIdsRequest,
    UserUpdate,
)
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter(tags=["admin"])

Engine = Annotated[AuthorizationEngine, Depends(get_engine)]
Db = Annotated[AsyncSession, Depends(get_db)]


async def get_user_or_404(db: AsyncSession, user_id: str) -> User:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )
    
    return user


# ============================================================================
# Users
# ============================================================================

@router.get("/", response_model=AdminUserList)
async def list_users(
    actor: Annotated[ActorContext, Depends(require_operation("users.list"))],
    db: Db,
    limit: Annotated[int, Query(gt=0, le=200)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
    search: str | None = None
):
    """List users; non-admins only see members of their active organization."""
    stmt = select(User)
    if not actor.is_admin:
        stmt = stmt.join(Member, Member.user_id == User.id).where(
            Member.organization_id == actor.active_organization_id
        )
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(or_(User.name.ilike(pattern), User.email.ilike(pattern)))
    
    total = (await db.execute(select(func.count()).select_from(stmt.subquery()))).scalar_one()
    result = await db.execute(stmt.order_by(User.created_at.desc(), User.id).offset(offset).limit(limit))
    return AdminUserList(
        items=[AdminUserResponse.model_validate(u) for u in result.scalars().all()],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/create-metadata", response_model=CreateUserMetadata)
async def get_create_user_metadata(
    actor: Annotated[ActorContext, Depends(require_operation("users.create_metadata"))],
    engine: Engine,
    db: Db
):
    """Roles and organizations the actor can pick from when creating a user."""
    roles = await engine.list_roles()
    
    org_stmt = select(Organization).order_by(Organization.name)
    if not actor.is_admin:
        org_stmt = org_stmt.where(Organization.id == actor.active_organization_id)
    organizations = (await db.execute(org_stmt)).scalars().all()
    
    return CreateUserMetadata(
        roles=[RoleOption(**r._asdict()) for r in roles],
        allowed_role_names=engine.filter_assignable_roles(actor.role, [r.name for r in roles]),
        organizations=[OrganizationOption.model_validate(o) for o in organizations],
    )


@router.post("/", response_model=AdminUserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    body: CreateUserRequest,
    actor: Annotated[ActorContext, Depends(require_operation("users.create"))],
    engine: Engine,
    db: Db
):
    """
    Create a user account.
    
    The role must be one the actor may assign. Non-admin users are added to
    an organization, which for non-admin actors must be the active one.
    """
    if body.role not in {r.name for r in await engine.list_roles()}:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown role {body.role}"
        )
    
    organization_id = engine.resolve_creation_organization(actor, body.role, body.organization_id)
    if organization_id and await db.get(Organization, organization_id) is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown organization {organization_id}"
        )
    
    existing = (await db.execute(select(User.id).where(User.email == body.email))).scalar_one_or_none()
    if existing:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="User with this email already exists"
        )
    
    user = User(email=body.email, name=body.name, role=body.role)
    db.add(user)
    await db.flush()
    if organization_id:
        db.add(Member(organization_id=organization_id, user_id=user.id, role=body.role))
    await db.flush()
    await db.refresh(user)
    log.info(f"User {actor.id} created user {user.id} as {body.role} (org={organization_id})")
    return user


@router.post("/capabilities/batch", response_model=list[CapabilityMap])
async def get_batch_capabilities(
    body: UserIdsRequest,
    actor: Annotated[ActorContext, Depends(require_operation("users.read_capabilities"))],
    engine: Engine
):
    """Capability maps for several users, in request order."""
    return await engine.get_batch_capabilities(
        actor.id, body.user_ids, actor.role, actor.active_organization_id
    )


@router.get("/{user_id}/capabilities", response_model=CapabilityMap)
async def get_user_capabilities(
    user_id: str,
    actor: Annotated[ActorContext, Depends(require_operation("users.read_capabilities"))],
    engine: Engine
):
    return await engine.get_user_capabilities(actor.id, user_id, actor.role, actor.active_organization_id)


@router.put("/{user_id}", response_model=AdminUserResponse)
async def update_user(
    user_id: str,
    body: UserUpdate,
    actor: Annotated[ActorContext, Depends(require_operation("users.update"))],
    engine: Engine,
    db: Db
):
    await engine.assert_action_allowed(actor, user_id, UPDATE)
    user = await get_user_or_404(db, user_id)
    user.name = body.name
    await db.flush()
    await db.refresh(user)
    return user


@router.put("/{user_id}/role", response_model=AdminUserResponse)
async def set_user_role(
    user_id: str,
    body: SetRoleRequest,
    actor: Annotated[ActorContext, Depends(require_operation("users.set_role"))],
    engine: Engine,
    db: Db
):
    """
    Change a user's platform role.
    
    Promoting to admin drops all organization memberships; any other role is
    recorded on the membership of the resolved organization.
    """
    if body.role not in {r.name for r in await engine.list_roles()}:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown role {body.role}"
        )
    
    await engine.assert_action_allowed(actor, user_id, SET_ROLE)
    await engine.assert_can_assign_role(actor, user_id, body.role)
    organization_id = await engine.resolve_assignment_organization(actor, user_id)
    
    user = await get_user_or_404(db, user_id)
    user.role = body.role
    
    if body.role == ADMIN_ROLE:
        await db.execute(delete(Member).where(Member.user_id == user_id))
    elif organization_id:
        member = (await db.execute(
            select(Member).where(Member.user_id == user_id, Member.organization_id == organization_id)
        )).scalar_one_or_none()
        if member is None:
            db.add(Member(organization_id=organization_id, user_id=user_id, role=body.role))
        else:
            member.role = body.role
    
    await db.flush()
    await db.refresh(user)
    log.info(f"User {actor.id} set role of {user_id} to {body.role} (org={organization_id})")
    return user


@router.post("/{user_id}/ban", response_model=AdminUserResponse)
async def ban_user(
    user_id: str,
    body: BanRequest,
    actor: Annotated[ActorContext, Depends(require_operation("users.ban"))],
    engine: Engine,
    db: Db
):
    """Ban a user and revoke all of their sessions."""
    await engine.assert_action_allowed(actor, user_id, BAN)
    user = await get_user_or_404(db, user_id)
    user.banned = True
    user.ban_reason = body.ban_reason
    user.ban_expires = (
        datetime.now(timezone.utc) + timedelta(seconds=body.ban_expires_in)
        if body.ban_expires_in else None
    )
    await db.execute(delete(UserSession).where(UserSession.user_id == user_id))
    await db.flush()
    await db.refresh(user)
    log.info(f"User {actor.id} banned {user_id}")
    return user


@router.post("/{user_id}/unban", response_model=AdminUserResponse)
async def unban_user(
    user_id: str,
    actor: Annotated[ActorContext, Depends(require_operation("users.unban"))],
    engine: Engine,
    db: Db
):
    await engine.assert_action_allowed(actor, user_id, UNBAN)
    user = await get_user_or_404(db, user_id)
    user.banned = False
    user.ban_reason = None
    user.ban_expires = None
    await db.flush()
    await db.refresh(user)
    log.info(f"User {actor.id} unbanned {user_id}")
    return user


async def _remove_users(db: AsyncSession, user_ids: list[str]) -> None:
    await db.execute(delete(Member).where(Member.user_id.in_(user_ids)))
    await db.execute(delete(UserSession).where(UserSession.user_id.in_(user_ids)))
    await db.execute(delete(User).where(User.id.in_(user_ids)))


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_user(
    user_id: str,
    actor: Annotated[ActorContext, Depends(require_operation("users.remove"))],
    engine: Engine,
    db: Db
):
    await engine.assert_action_allowed(actor, user_id, REMOVE)
    await _remove_users(db, [user_id])
    log.info(f"User {actor.id} removed {user_id}")
    return None


@router.post("/bulk-delete", response_model=SuccessResponse)
async def bulk_remove_users(
    body: UserIdsRequest,
    actor: Annotated[ActorContext, Depends(require_operation("users.bulk_remove"))],
    engine: Engine,
    db: Db
):
    """Remove several users. Nothing is removed unless every user may be."""
    user_ids = list(dict.fromkeys(body.user_ids))
    await engine.assert_bulk_allowed(actor, user_ids, REMOVE)
    if user_ids:
        await _remove_users(db, user_ids)
    log.info(f"User {actor.id} removed {len(user_ids)} users")
    return SuccessResponse()


# ============================================================================
# Sessions
# ============================================================================

@router.get("/{user_id}/sessions", response_model=list[SessionResponse])
async def list_user_sessions(
    user_id: str,
    actor: Annotated[ActorContext, Depends(require_operation("sessions.list"))],
    engine: Engine,
    db: Db
):
    await engine.assert_org_scope(actor, user_id)
    result = await db.execute(
        select(UserSession)
        .where(UserSession.user_id == user_id)
        .order_by(UserSession.created_at.desc())
    )
    return result.scalars().all()


@router.post("/sessions/revoke", response_model=SuccessResponse)
async def revoke_session(
    body: RevokeSessionRequest,
    actor: Annotated[ActorContext, Depends(require_operation("sessions.revoke"))],
    engine: Engine,
    db: Db
):
    """Revoke one session by token. Unknown tokens count as already revoked."""
    await engine.assert_session_revocable(actor, body.session_token)
    await db.execute(delete(UserSession).where(UserSession.token == body.session_token))
    return SuccessResponse()


@router.post("/{user_id}/sessions/revoke-all", response_model=SuccessResponse)
async def revoke_all_sessions(
    user_id: str,
    actor: Annotated[ActorContext, Depends(require_operation("sessions.revoke_all"))],
    engine: Engine,
    db: Db
):
    await engine.assert_action_allowed(actor, user_id, REVOKE_SESSIONS)
    await db.execute(delete(UserSession).where(UserSession.user_id == user_id))
    log.info(f"User {actor.id} revoked all sessions of {user_id}")
    return SuccessResponse()
