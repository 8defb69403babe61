"""
Tenant model.

A Tenant is one venue-operating business. Tenant.id is the tenant_id every
tenant-scoped row references, and the resolved TenantContext always carries
exactly one of them (platform requests excepted).

The counters stored here (current_users, current_venues, monthly_bookings)
are display caches only. Usage enforcement always reads live counts.
"""

import enum
from typing import Optional

from sqlalchemy import Column, String, Integer, DateTime, Index
from sqlalchemy.orm import relationship

from src.db_base import Base
from src.models.base import TimestampMixin, generate_uuid


class TenantStatus(str, enum.Enum):
    """Tenant lifecycle / billing status."""
    ACTIVE = "active"
    TRIAL = "trial"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    SUSPENDED = "suspended"


# Legacy spellings seen in older rows
_STATUS_ALIASES = {
    "cancelled": TenantStatus.CANCELED,
    "trialing": TenantStatus.TRIAL,
}


def normalize_tenant_status(value) -> Optional[TenantStatus]:
    """
    Normalize a stored status string to TenantStatus.

    Returns None for unrecognized values so callers can fail closed.
    """
    if isinstance(value, TenantStatus):
        return value
    if not value:
        return None
    key = str(value).strip().lower()
    if key in _STATUS_ALIASES:
        return _STATUS_ALIASES[key]
    try:
        return TenantStatus(key)
    except ValueError:
        return None


class Tenant(Base, TimestampMixin):
    __tablename__ = "tenants"

    id = Column(
        String(255),
        primary_key=True,
        default=generate_uuid,
        comment="Primary key - this IS the tenant_id used across all models"
    )

    name = Column(
        String(255),
        nullable=False,
        comment="Business display name"
    )

    slug = Column(
        String(100),
        nullable=False,
        unique=True,
        index=True,
        comment="URL-safe identifier used in /t/<slug>/ paths and subdomains"
    )

    plan_id = Column(
        String(255),
        nullable=True,
        index=True,
        comment="feature_packages.id of the current plan"
    )

    # Stored as a string so legacy spellings survive until normalized on read
    status = Column(
        String(50),
        nullable=False,
        default=TenantStatus.ACTIVE.value,
        index=True,
        comment="active | trial | past_due | canceled | suspended"
    )

    trial_ends_at = Column(
        DateTime(timezone=True),
        nullable=True,
        comment="End of the trial period when status is trial"
    )

    # Display-only caches
    current_users = Column(Integer, nullable=False, default=0, comment="Cached seat count (display only)")
    current_venues = Column(Integer, nullable=False, default=0, comment="Cached venue count (display only)")
    monthly_bookings = Column(Integer, nullable=False, default=0, comment="Cached monthly booking count (display only)")

    memberships = relationship(
        "TenantMembership",
        back_populates="tenant",
        lazy="dynamic",
        cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_tenants_plan_status", "plan_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<Tenant(id={self.id}, slug={self.slug}, status={self.status})>"

    @property
    def status_enum(self) -> Optional[TenantStatus]:
        return normalize_tenant_status(self.status)
