"""
Organization and membership models.

Memberships are created by the invitation flow; the admin backend only reads
them to scope manager actions, and maintains them when a user's role changes.
"""
from sqlalchemy import String, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database.base import Base, TimestampMixin, generate_ulid


class Organization(Base, TimestampMixin):
    """
    Tenant organization.
    """
    __tablename__ = "organizations"
    
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    slug: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    
    members: Mapped[list["Member"]] = relationship(
        "Member",
        back_populates="organization",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    
    def __repr__(self) -> str:
        return f"<Organization(id={self.id}, slug={self.slug!r})>"


class Member(Base, TimestampMixin):
    """
    Evidence that a user belongs to an organization.
    """
    __tablename__ = "members"
    __table_args__ = (UniqueConstraint("organization_id", "user_id"),)
    
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    organization_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    user_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    role: Mapped[str] = mapped_column(String(50), nullable=False, default="member")
    
    organization: Mapped["Organization"] = relationship("Organization", back_populates="members")
    
    def __repr__(self) -> str:
        return f"<Member(org_id={self.organization_id}, user_id={self.user_id}, role={self.role})>"
