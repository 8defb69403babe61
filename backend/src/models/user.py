"""
User model.

Users are global: one row per email address, joined to tenants through
TenantMembership. Platform super admins are flagged with is_super_admin and
hold no membership rows by virtue of that flag.
"""

from sqlalchemy import Column, String, Boolean
from sqlalchemy.orm import relationship

from src.db_base import Base
from src.models.base import TimestampMixin, generate_uuid


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id = Column(
        String(255),
        primary_key=True,
        default=generate_uuid,
        comment="Internal UUID primary key"
    )

    email = Column(
        String(255),
        nullable=False,
        unique=True,
        index=True,
        comment="Login email, globally unique"
    )

    password_hash = Column(
        String(255),
        nullable=True,
        comment="Password hash; never read by the access engine"
    )

    name = Column(String(255), nullable=True, comment="Display name")

    is_super_admin = Column(
        Boolean,
        nullable=False,
        default=False,
        index=True,
        comment="Platform operator flag. Tenant-scoped only via assume-tenant."
    )

    is_active = Column(
        Boolean,
        nullable=False,
        default=True,
        comment="Deactivated users cannot resolve a tenant"
    )

    memberships = relationship(
        "TenantMembership",
        back_populates="user",
        lazy="dynamic",
        cascade="all, delete-orphan",
        foreign_keys="TenantMembership.user_id",
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, super_admin={self.is_super_admin})>"
