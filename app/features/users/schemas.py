"""
Pydantic schemas for the admin user and session endpoints.
"""
from datetime import datetime
from pydantic import BaseModel, EmailStr, Field


class AdminUserResponse(BaseModel):
    """User as listed in the admin console."""
    id: str
    email: EmailStr
    name: str
    role: str
    banned: bool
    ban_reason: str | None = None
    ban_expires: datetime | None = None
    created_at: datetime
    updated_at: datetime
    
    model_config = {"from_attributes": True}


class AdminUserList(BaseModel):
    items: list[AdminUserResponse]
    total: int
    limit: int
    offset: int


class CreateUserRequest(BaseModel):
    """
    New user account. Credentials are issued by the auth service, not here.
    """
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    role: str = Field(..., min_length=1, max_length=50)
    organization_id: str | None = Field(None, description="Required unless role is admin")


class UserUpdate(BaseModel):
    """Profile fields an operator may change."""
    name: str = Field(..., min_length=1, max_length=255)


class SetRoleRequest(BaseModel):
    role: str = Field(..., min_length=1, max_length=50)


class BanRequest(BaseModel):
    ban_reason: str | None = Field(None, max_length=1000)
    ban_expires_in: int | None = Field(None, gt=0, description="Ban duration in seconds; permanent if omitted")


class UserIdsRequest(BaseModel):
    user_ids: list[str] = Field(..., max_length=100)


class RoleOption(BaseModel):
    name: str
    display_name: str
    color: str
    level: int
    is_system: bool
    
    model_config = {"from_attributes": True}


class OrganizationOption(BaseModel):
    id: str
    name: str
    slug: str
    
    model_config = {"from_attributes": True}


class CreateUserMetadata(BaseModel):
    """Everything the create-user form needs."""
    roles: list[RoleOption]
    allowed_role_names: list[str]
    organizations: list[OrganizationOption]


class SessionResponse(BaseModel):
    id: str
    user_id: str
    expires_at: datetime
    active_organization_id: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    impersonated_by: str | None = None
    created_at: datetime
    
    model_config = {"from_attributes": True}


class RevokeSessionRequest(BaseModel):
    session_token: str = Field(..., min_length=1)


class SuccessResponse(BaseModel):
    success: bool = True
