"""
Role and Permission models for the platform RBAC catalog.

- Roles carry a hierarchy level; system roles (admin, manager, member) are immutable
- Permissions are identified by their (resource, action) pair
- role_permissions is replaced wholesale, never patched row by row
"""
from sqlalchemy import String, ForeignKey, Table, Column, Text, Integer, Boolean, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database.base import Base, TimestampMixin, generate_ulid


# ============================================================================
# Association Tables
# ============================================================================

role_permissions = Table(
    "role_permissions",
    Base.metadata,
    Column("role_id", String(26), ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    Column("permission_id", String(26), ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
)


# ============================================================================
# Core Models
# ============================================================================

class Permission(Base, TimestampMixin):
    """
    A single grantable action on a resource.
    
    Examples:
    - resource="user", action="ban"      -> "user:ban"
    - resource="session", action="revoke" -> "session:revoke"
    """
    __tablename__ = "permissions"
    __table_args__ = (UniqueConstraint("resource", "action"),)
    
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    resource: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    
    roles: Mapped[list["Role"]] = relationship(
        "Role",
        secondary=role_permissions,
        back_populates="permissions",
        lazy="selectin"
    )
    
    @property
    def key(self) -> str:
        return f"{self.resource}:{self.action}"
    
    def __repr__(self) -> str:
        return f"<Permission(id={self.id}, key={self.key!r})>"


class Role(Base, TimestampMixin):
    """
    Platform role.
    
    `level` orders roles for escalation checks (admin=2, manager=1, member=0).
    System roles cannot be deleted or renamed.
    """
    __tablename__ = "roles"
    
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    color: Mapped[str] = mapped_column(String(20), nullable=False, default="gray")
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_system: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    
    permissions: Mapped[list["Permission"]] = relationship(
        "Permission",
        secondary=role_permissions,
        back_populates="roles",
        lazy="selectin",
        order_by=lambda: [Permission.resource, Permission.action],
    )
    
    def __repr__(self) -> str:
        return f"<Role(id={self.id}, name={self.name!r}, level={self.level})>"
