"""
RBAC management routes.

Roles and permissions are platform-wide. System roles can be edited but not
renamed or deleted; a role's permission set is only ever replaced as a whole.
The in-process role registry is only touched once the change is committed.
"""
from itertools import groupby
from typing import Annotated, List
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.permissions.context import ActorContext
from app.features.permissions.dependencies import get_engine, require_operation
from app.features.permissions.engine import AuthorizationEngine
from app.features.permissions.models import Permission, Role
from app.features.permissions.registry import RoleDefinition
from app.features.permissions.repositories import SqlRoleRepository
from app.features.permissions.schemas import (
    AssignPermissionsToRole,
    EffectivePermissions,
    PermissionGroup,
    PermissionResponse,
    RoleCreate,
    RoleResponse,
    RoleUpdate,
    RoleWithPermissions,
)
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter()


async def get_role_or_404(db: AsyncSession, role_id: str) -> Role:
    stmt = select(Role).where(Role.id == role_id)
    result = await db.execute(stmt)
    role = result.scalars().first()
    
    if not role:
        raise HTTPException(status_code=404, detail="Role not found")
    
    return role


# ============================================================================
# Role Routes
# ============================================================================

@router.get("/roles", response_model=List[RoleResponse])
async def list_roles(
    actor: Annotated[ActorContext, Depends(require_operation("roles.list"))],
    db: AsyncSession = Depends(get_db)
):
    """List roles, system roles first."""
    result = await db.execute(select(Role).order_by(Role.is_system.desc(), Role.level.desc(), Role.name))
    return result.scalars().all()


@router.get("/roles/{role_id}", response_model=RoleWithPermissions)
async def get_role(
    role_id: str,
    actor: Annotated[ActorContext, Depends(require_operation("roles.read"))],
    db: AsyncSession = Depends(get_db)
):
    """Get a specific role with its permissions."""
    return await get_role_or_404(db, role_id)


@router.post("/roles", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
async def create_role(
    role: RoleCreate,
    actor: Annotated[ActorContext, Depends(require_operation("roles.create"))],
    engine: Annotated[AuthorizationEngine, Depends(get_engine)],
    db: AsyncSession = Depends(get_db)
):
    """Create a custom role below admin and below the creator's own level."""
    engine.assert_can_create_role(actor, role.level)
    
    existing = (await db.execute(select(Role.id).where(Role.name == role.name))).scalar_one_or_none()
    if existing or engine.registry.is_system(role.name):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Role with this name already exists"
        )
    
    try:
        db_role = Role(**role.model_dump(), is_system=False)
        db.add(db_role)
        await db.flush()
        await db.refresh(db_role)
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Role with this name already exists"
        )
    
    engine.registry.register(
        RoleDefinition(
            name=db_role.name,
            level=db_role.level,
            display_name=db_role.display_name,
            description=db_role.description,
            color=db_role.color,
        )
    )
    log.info(f"User {actor.id} created role {db_role.name} (level {db_role.level})")
    return db_role


@router.put("/roles/{role_id}", response_model=RoleResponse)
async def update_role(
    role_id: str,
    role_update: RoleUpdate,
    actor: Annotated[ActorContext, Depends(require_operation("roles.update"))],
    engine: Annotated[AuthorizationEngine, Depends(get_engine)],
    db: AsyncSession = Depends(get_db)
):
    """Update a role's display fields."""
    db_role = await get_role_or_404(db, role_id)
    engine.assert_can_manage_role(actor, db_role.name)
    
    update_data = role_update.model_dump(exclude_unset=True, exclude_none=True)
    for key, value in update_data.items():
        setattr(db_role, key, value)
    
    await db.flush()
    await db.refresh(db_role)
    await db.commit()
    
    if not db_role.is_system:
        engine.registry.load([db_role])
    return db_role


@router.delete("/roles/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_role(
    role_id: str,
    actor: Annotated[ActorContext, Depends(require_operation("roles.delete"))],
    engine: Annotated[AuthorizationEngine, Depends(get_engine)],
    db: AsyncSession = Depends(get_db)
):
    """Delete a custom role. System roles cannot be deleted."""
    db_role = await get_role_or_404(db, role_id)
    
    if db_role.is_system:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="System roles cannot be deleted"
        )
    engine.assert_can_manage_role(actor, db_role.name)
    
    role_name = db_role.name
    await db.delete(db_role)
    await db.commit()
    engine.registry.unregister(role_name)
    log.info(f"User {actor.id} deleted role {role_name}")
    return None


@router.put("/roles/{role_id}/permissions", response_model=RoleWithPermissions)
async def assign_role_permissions(
    role_id: str,
    body: AssignPermissionsToRole,
    actor: Annotated[ActorContext, Depends(require_operation("roles.assign_permissions"))],
    engine: Annotated[AuthorizationEngine, Depends(get_engine)],
    db: AsyncSession = Depends(get_db)
):
    """Replace every permission of a role with the given set."""
    db_role = await get_role_or_404(db, role_id)
    engine.assert_can_manage_role(actor, db_role.name)
    
    permission_ids = list(dict.fromkeys(body.permission_ids))
    if permission_ids:
        found = (await db.execute(select(Permission.id).where(Permission.id.in_(permission_ids)))).scalars().all()
        unknown = sorted(set(permission_ids) - set(found))
        if unknown:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Unknown permission ids: {', '.join(unknown)}"
            )
    
    await SqlRoleRepository(db).replace_role_permissions(db_role.id, permission_ids)
    await db.refresh(db_role, attribute_names=["permissions"])
    log.info(f"User {actor.id} replaced permissions of role {db_role.name}")
    return db_role


# ============================================================================
# Permission Routes
# ============================================================================

@router.get("/permissions", response_model=List[PermissionGroup])
async def list_permissions(
    actor: Annotated[ActorContext, Depends(require_operation("permissions.list"))],
    db: AsyncSession = Depends(get_db)
):
    """List all permissions grouped by resource."""
    result = await db.execute(select(Permission).order_by(Permission.resource, Permission.action))
    return [
        PermissionGroup(
            resource=resource,
            permissions=[PermissionResponse.model_validate(p) for p in items],
        )
        for resource, items in groupby(result.scalars().all(), key=lambda p: p.resource)
    ]


@router.get("/my-permissions", response_model=EffectivePermissions)
async def get_my_permissions(
    actor: Annotated[ActorContext, Depends(require_operation("permissions.mine"))],
    engine: Annotated[AuthorizationEngine, Depends(get_engine)]
):
    """Effective permissions of the caller's role; admin gets the whole catalog."""
    return EffectivePermissions(
        role=actor.role,
        permissions=await engine.list_effective_permissions(actor.role),
    )


@router.get("/users/{role_name}/permissions", response_model=EffectivePermissions)
async def get_role_effective_permissions(
    role_name: str,
    actor: Annotated[ActorContext, Depends(require_operation("roles.read_permissions"))],
    engine: Annotated[AuthorizationEngine, Depends(get_engine)]
):
    """Effective permissions a user holding role_name would have. Unknown roles have none."""
    return EffectivePermissions(
        role=role_name,
        permissions=await engine.list_effective_permissions(role_name),
    )
