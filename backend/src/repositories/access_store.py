"""
Read API the access engine uses for users, tenants, plans and memberships.

Records are plain frozen dataclasses rather than ORM objects so they can be
cached (JSON) and passed across threads without a live session.

Implementations:
- SqlAlchemyAccessStore: one short session per call
- CachedAccessStore: wraps another store with RecordCache for tenant and plan

Store failures raise AccessEngineUnavailableError, never a policy error.
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from src.entitlements.cache import RecordCache
from src.models.plan import FeaturePackage
from src.models.tenant import Tenant
from src.models.tenant_membership import TenantMembership
from src.models.user import User
from src.platform.errors import AccessEngineUnavailableError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UserRecord:
    id: str
    email: str
    is_super_admin: bool = False
    is_active: bool = True


@dataclass(frozen=True)
class TenantRecord:
    id: str
    name: str
    slug: str
    status: str
    plan_id: Optional[str] = None
    trial_ends_at: Optional[datetime] = None
    current_users: int = 0
    current_venues: int = 0
    monthly_bookings: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["trial_ends_at"] = self.trial_ends_at.isoformat() if self.trial_ends_at else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TenantRecord":
        data = dict(data)
        if data.get("trial_ends_at"):
            data["trial_ends_at"] = datetime.fromisoformat(data["trial_ends_at"])
        return cls(**data)


@dataclass(frozen=True)
class PlanRecord:
    id: str
    name: str
    display_name: str
    features: Dict[str, Any] = field(default_factory=dict)
    limits: Dict[str, Any] = field(default_factory=dict)
    is_active: bool = True
    version: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PlanRecord":
        return cls(**data)


@dataclass(frozen=True)
class MembershipRecord:
    tenant_id: str
    user_id: str
    role: str
    permission_overrides: Dict[str, bool] = field(default_factory=dict)
    staff_type: Optional[str] = None
    venue_ids: tuple = ()
    is_active: bool = True


class AccessStore(Protocol):
    def get_user(self, user_id: str) -> Optional[UserRecord]:
        ...

    def get_tenant(self, tenant_id: str) -> Optional[TenantRecord]:
        ...

    def get_tenant_by_slug(self, slug: str) -> Optional[TenantRecord]:
        ...

    def get_plan(self, plan_id: str) -> Optional[PlanRecord]:
        ...

    def list_active_memberships(self, user_id: str) -> List[MembershipRecord]:
        ...


def _tenant_record(tenant: Tenant) -> TenantRecord:
    return TenantRecord(
        id=tenant.id,
        name=tenant.name,
        slug=tenant.slug,
        status=tenant.status,
        plan_id=tenant.plan_id,
        trial_ends_at=tenant.trial_ends_at,
        current_users=tenant.current_users or 0,
        current_venues=tenant.current_venues or 0,
        monthly_bookings=tenant.monthly_bookings or 0,
    )


def _plan_record(plan: FeaturePackage) -> PlanRecord:
    return PlanRecord(
        id=plan.id,
        name=plan.name,
        display_name=plan.display_name,
        features=plan.features,
        limits=plan.limits,
        is_active=bool(plan.is_active),
        version=plan.version or 1,
    )


class SqlAlchemyAccessStore:
    """AccessStore over the SQLAlchemy models."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def _run(self, operation: str, fn):
        try:
            with self._session_factory() as session:
                return fn(session)
        except SQLAlchemyError as e:
            logger.error(
                "Access store query failed",
                extra={"operation": operation, "error": str(e)},
            )
            raise AccessEngineUnavailableError(f"access store unavailable during {operation}", e) from e

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        def query(session):
            user = session.get(User, user_id)
            if user is None:
                return None
            return UserRecord(
                id=user.id,
                email=user.email,
                is_super_admin=bool(user.is_super_admin),
                is_active=bool(user.is_active),
            )
        return self._run("get_user", query)

    def get_tenant(self, tenant_id: str) -> Optional[TenantRecord]:
        def query(session):
            tenant = session.get(Tenant, tenant_id)
            return _tenant_record(tenant) if tenant is not None else None
        return self._run("get_tenant", query)

    def get_tenant_by_slug(self, slug: str) -> Optional[TenantRecord]:
        def query(session):
            tenant = session.execute(
                select(Tenant).where(Tenant.slug == slug)
            ).scalar_one_or_none()
            return _tenant_record(tenant) if tenant is not None else None
        return self._run("get_tenant_by_slug", query)

    def get_plan(self, plan_id: str) -> Optional[PlanRecord]:
        def query(session):
            plan = session.get(FeaturePackage, plan_id)
            if plan is None:
                # Older tenants reference packages by machine name
                plan = session.execute(
                    select(FeaturePackage).where(FeaturePackage.name == plan_id)
                ).scalar_one_or_none()
            return _plan_record(plan) if plan is not None else None
        return self._run("get_plan", query)

    def list_active_memberships(self, user_id: str) -> List[MembershipRecord]:
        def query(session):
            rows = session.execute(
                select(TenantMembership)
                .where(TenantMembership.user_id == user_id)
                .where(TenantMembership.is_active.is_(True))
                .order_by(TenantMembership.created_at)
            ).scalars().all()
            return [
                MembershipRecord(
                    tenant_id=row.tenant_id,
                    user_id=row.user_id,
                    role=row.role,
                    permission_overrides=row.overrides,
                    staff_type=row.staff_type,
                    venue_ids=tuple(row.scoped_venue_ids),
                    is_active=True,
                )
                for row in rows
            ]
        return self._run("list_active_memberships", query)


class CachedAccessStore:
    """
    AccessStore decorator caching tenant and plan records.

    Users and memberships pass straight through.
    """

    def __init__(self, inner: AccessStore, cache: RecordCache):
        self._inner = inner
        self.cache = cache

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        return self._inner.get_user(user_id)

    def list_active_memberships(self, user_id: str) -> List[MembershipRecord]:
        return self._inner.list_active_memberships(user_id)

    def get_tenant(self, tenant_id: str) -> Optional[TenantRecord]:
        def load():
            record = self._inner.get_tenant(tenant_id)
            return record.to_dict() if record else None
        data = self.cache.get_or_load("tenant", tenant_id, load)
        return TenantRecord.from_dict(data) if data else None

    def get_tenant_by_slug(self, slug: str) -> Optional[TenantRecord]:
        def load():
            record = self._inner.get_tenant_by_slug(slug)
            return record.to_dict() if record else None
        data = self.cache.get_or_load("tenant_slug", slug, load)
        return TenantRecord.from_dict(data) if data else None

    def get_plan(self, plan_id: str) -> Optional[PlanRecord]:
        def load():
            record = self._inner.get_plan(plan_id)
            return record.to_dict() if record else None
        data = self.cache.get_or_load("plan", plan_id, load)
        return PlanRecord.from_dict(data) if data else None
