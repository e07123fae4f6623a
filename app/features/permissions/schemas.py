"""
Pydantic schemas for the RBAC catalog and user capabilities.

Request and response models for permissions, roles, and capability maps.
"""
from datetime import datetime
from typing import Dict, List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator


# ============================================================================
# Permission Schemas
# ============================================================================

class PermissionResponse(BaseModel):
    """Schema for permission response."""
    id: str
    resource: str
    action: str
    description: Optional[str] = None
    
    model_config = ConfigDict(from_attributes=True)


class PermissionGroup(BaseModel):
    """Permissions of one resource."""
    resource: str
    permissions: List[PermissionResponse]


# ============================================================================
# Role Schemas
# ============================================================================

class RoleCreate(BaseModel):
    """Schema for creating a custom role."""
    name: str = Field(..., min_length=1, max_length=50, description="Unique role name")
    display_name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    color: str = Field("gray", min_length=1, max_length=20)
    level: int = Field(0, ge=0, description="Hierarchy level; must be below the creator's unless admin")
    
    @field_validator('name')
    @classmethod
    def name_lowercase_slug(cls, v: str) -> str:
        """Validate role name format."""
        if not v.replace('_', '').replace('-', '').isalnum():
            raise ValueError('Role name must contain only alphanumeric characters, underscores, and hyphens')
        return v.lower()


class RoleUpdate(BaseModel):
    """Schema for updating a role. The name and level are immutable."""
    display_name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    color: Optional[str] = Field(None, min_length=1, max_length=20)


class RoleResponse(BaseModel):
    """Schema for role response."""
    id: str
    name: str
    display_name: str
    description: Optional[str] = None
    color: str
    level: int
    is_system: bool
    created_at: datetime
    updated_at: datetime
    
    model_config = ConfigDict(from_attributes=True)


class RoleWithPermissions(RoleResponse):
    """Schema for role with permissions."""
    permissions: List[PermissionResponse] = []


class AssignPermissionsToRole(BaseModel):
    """Wholesale replacement of a role's permissions."""
    permission_ids: List[str] = Field(..., description="Complete new set of permission IDs")


# ============================================================================
# Capability Schemas
# ============================================================================

class CapabilityMap(BaseModel):
    """Which user-management actions the actor may take on one target."""
    target_user_id: str
    target_role: Optional[str] = None
    is_self: bool
    actions: Dict[str, bool]


class EffectivePermissions(BaseModel):
    """Resolved "resource:action" keys of one role."""
    role: str
    permissions: List[str]
