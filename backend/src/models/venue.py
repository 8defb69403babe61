"""
Governed entities counted by the usage limit enforcer.

Only the columns the access engine reads are modelled here: ownership
(tenant_id, venue_id) and the fields live counts filter on.
"""

from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey

from src.db_base import Base
from src.models.base import TimestampMixin, TenantScopedMixin, generate_uuid


class Venue(Base, TimestampMixin, TenantScopedMixin):
    __tablename__ = "venues"

    id = Column(String(255), primary_key=True, default=generate_uuid)
    name = Column(String(255), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)


class Space(Base, TimestampMixin, TenantScopedMixin):
    __tablename__ = "spaces"

    id = Column(String(255), primary_key=True, default=generate_uuid)
    venue_id = Column(
        String(255),
        ForeignKey("venues.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(String(255), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)


class Booking(Base, TimestampMixin, TenantScopedMixin):
    __tablename__ = "bookings"

    id = Column(String(255), primary_key=True, default=generate_uuid)
    venue_id = Column(
        String(255),
        ForeignKey("venues.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    event_date = Column(DateTime(timezone=True), nullable=True)
    status = Column(String(50), nullable=False, default="confirmed", comment="cancelled bookings do not count")


class Customer(Base, TimestampMixin, TenantScopedMixin):
    __tablename__ = "customers"

    id = Column(String(255), primary_key=True, default=generate_uuid)
    email = Column(String(255), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
