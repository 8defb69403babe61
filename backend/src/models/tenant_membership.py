"""
TenantMembership model.

Links a user to a tenant with a role, optional per-permission overrides,
an optional staff type and a venue scope list.

SECURITY:
- CASCADE delete on user_id and tenant_id
- One row per (user, tenant); role changes update the row in place
- is_active gives soft deactivation so audit history keeps its references
"""

from typing import Dict, List, Optional

from sqlalchemy import Column, String, Boolean, Index, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship

from src.db_base import Base
from src.models.base import TimestampMixin, JSONType, generate_uuid


class TenantMembership(Base, TimestampMixin):
    """
    A user's role inside one tenant.

    Role values come from src.constants.permissions.Role (membership roles
    only: owner, admin, manager, staff, viewer).
    """

    __tablename__ = "tenant_memberships"

    id = Column(String(255), primary_key=True, default=generate_uuid)

    user_id = Column(
        String(255),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="FK to users.id"
    )

    tenant_id = Column(
        String(255),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="FK to tenants.id"
    )

    role = Column(
        String(50),
        nullable=False,
        comment="owner | admin | manager | staff | viewer"
    )

    permission_overrides = Column(
        JSONType,
        nullable=True,
        comment='Explicit grants/denials, e.g. {"events:edit": true}'
    )

    staff_type = Column(
        String(50),
        nullable=True,
        comment="sales | event | operations (staff role only)"
    )

    venue_ids = Column(
        JSONType,
        nullable=True,
        comment="Venue ids a manager is scoped to"
    )

    invited_by = Column(
        String(255),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        comment="User who created the membership"
    )

    is_active = Column(
        Boolean,
        nullable=False,
        default=True,
        index=True,
        comment="Soft deactivation flag"
    )

    user = relationship("User", back_populates="memberships", foreign_keys=[user_id])
    tenant = relationship("Tenant", back_populates="memberships")

    __table_args__ = (
        UniqueConstraint("user_id", "tenant_id", name="uq_tenant_membership_user_tenant"),
        Index("ix_tenant_memberships_tenant_active", "tenant_id", "is_active"),
    )

    def __repr__(self) -> str:
        return (
            f"<TenantMembership(user_id={self.user_id}, tenant_id={self.tenant_id}, "
            f"role={self.role}, is_active={self.is_active})>"
        )

    @property
    def overrides(self) -> Dict[str, bool]:
        return dict(self.permission_overrides or {})

    @property
    def scoped_venue_ids(self) -> List[str]:
        return [str(v) for v in (self.venue_ids or [])]

    def deactivate(self, deactivated_by: Optional[str] = None) -> None:
        """Soft-delete the membership; the row stays for audit references."""
        self.is_active = False
