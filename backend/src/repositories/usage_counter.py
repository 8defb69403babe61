"""
Live usage counts and venue ownership lookups.

Counts are always computed from the governed tables at call time and are
always filtered by tenant_id. Cached counters on Tenant are never read here.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, FrozenSet, Optional, Protocol

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from src.constants.features import LimitName
from src.constants.permissions import Resource
from src.models.tenant_membership import TenantMembership
from src.models.venue import Booking, Customer, Space, Venue
from src.platform.errors import AccessEngineUnavailableError

logger = logging.getLogger(__name__)

# Bookings in these states do not consume plan capacity
_INACTIVE_BOOKING_STATUSES = ("cancelled", "canceled")


class UsageCounter(Protocol):
    def count(self, tenant_id: str, limit_name: LimitName, venue_id: Optional[str] = None) -> int:
        ...


class ResourceVenueLookup(Protocol):
    def venue_ids_for(self, tenant_id: str, resource: Resource, resource_id: str) -> Optional[FrozenSet[str]]:
        """Venue ids owning the record, or None when the record carries no venue ownership."""
        ...


def _month_start(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


class SqlAlchemyUsageCounter:
    """UsageCounter over the governed tables."""

    def __init__(self, session_factory: sessionmaker, clock: Optional[Callable[[], datetime]] = None):
        self._session_factory = session_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def count(self, tenant_id: str, limit_name: LimitName, venue_id: Optional[str] = None) -> int:
        if not tenant_id:
            raise ValueError("tenant_id is required and cannot be empty")

        stmt = self._count_statement(tenant_id, limit_name, venue_id)
        try:
            with self._session_factory() as session:
                return int(session.execute(stmt).scalar_one() or 0)
        except SQLAlchemyError as e:
            logger.error(
                "Usage count failed",
                extra={"tenant_id": tenant_id, "limit": limit_name.value, "error": str(e)},
            )
            raise AccessEngineUnavailableError("usage count unavailable", e) from e

    def _count_statement(self, tenant_id: str, limit_name: LimitName, venue_id: Optional[str]):
        if limit_name == LimitName.MAX_USERS:
            return (
                select(func.count(TenantMembership.id))
                .where(TenantMembership.tenant_id == tenant_id)
                .where(TenantMembership.is_active.is_(True))
            )

        if limit_name == LimitName.MAX_VENUES:
            return (
                select(func.count(Venue.id))
                .where(Venue.tenant_id == tenant_id)
                .where(Venue.is_active.is_(True))
            )

        if limit_name == LimitName.MAX_SPACES_PER_VENUE:
            if not venue_id:
                raise ValueError("venue_id is required for maxSpacesPerVenue")
            return (
                select(func.count(Space.id))
                .where(Space.tenant_id == tenant_id)
                .where(Space.venue_id == venue_id)
                .where(Space.is_active.is_(True))
            )

        if limit_name == LimitName.MAX_CUSTOMERS:
            return (
                select(func.count(Customer.id))
                .where(Customer.tenant_id == tenant_id)
                .where(Customer.is_active.is_(True))
            )

        stmt = (
            select(func.count(Booking.id))
            .where(Booking.tenant_id == tenant_id)
            .where(Booking.status.notin_(_INACTIVE_BOOKING_STATUSES))
        )
        if limit_name == LimitName.MAX_MONTHLY_BOOKINGS:
            stmt = stmt.where(Booking.created_at >= _month_start(self._clock()))
        return stmt


class SqlAlchemyVenueLookup:
    """
    Venue ownership for records the manager scope applies to.

    Venues own themselves; spaces and bookings own through venue_id.
    Other resources carry no ownership here and return None.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def venue_ids_for(self, tenant_id: str, resource: Resource, resource_id: str) -> Optional[FrozenSet[str]]:
        if resource == Resource.VENUES:
            return frozenset([resource_id])

        model = {Resource.SPACES: Space, Resource.EVENTS: Booking}.get(resource)
        if model is None:
            return None

        try:
            with self._session_factory() as session:
                venue_id = session.execute(
                    select(model.venue_id)
                    .where(model.tenant_id == tenant_id)
                    .where(model.id == resource_id)
                ).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise AccessEngineUnavailableError("venue lookup unavailable", e) from e

        if venue_id is None:
            return None
        return frozenset([venue_id])
