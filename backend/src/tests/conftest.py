"""
Root test configuration and fixtures.

Provides:
- db_engine / session_factory / db_session: SQLite in-memory database with
  every model's table created
- seeded: the plan catalog, tenants in each lifecycle status, users for every
  role, memberships and a few venues
- make_token / auth_headers: signed bearer credentials
- access_engine / app / client: a full application wired to the seeded store
- temp_config_dir / make_yaml_config: YAML config files for settings tests
"""

import os
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from types import SimpleNamespace
from typing import Dict, Generator, List, Optional

import pytest
import yaml
from fastapi import APIRouter, Depends, Request
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

# Set test environment
os.environ.setdefault("ENV", "test")
os.environ.pop("REDIS_URL", None)

TEST_JWT_SECRET = "test-secret-for-access-engine-at-least-32-bytes"

TENANT_HARBOR = "tenant-harbor"
TENANT_GRAND = "tenant-grand"
TENANT_LAPSED = "tenant-lapsed"
TENANT_CLOSED = "tenant-closed"
TENANT_FROZEN = "tenant-frozen"
TENANT_TRIAL_OVER = "tenant-trial-over"

VENUE_HARBOR = "venue-harbor"
VENUE_V1 = "venue-v1"
VENUE_V2 = "venue-v2"
BOOKING_V1 = "booking-v1"
BOOKING_V2 = "booking-v2"


# =============================================================================
# Collaborator fakes
# =============================================================================


class RecordingAuditSink:
    """Audit sink keeping every decision in memory."""

    def __init__(self):
        self.decisions = []

    def record(self, decision) -> None:
        self.decisions.append(decision)

    def events(self, event_type) -> List:
        return [d for d in self.decisions if d.event_type == event_type]


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def db_engine():
    """Fresh SQLite in-memory database per test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    from src.db_base import Base
    import src.models  # noqa: F401 - registers every table

    Base.metadata.create_all(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db_session(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(autouse=True)
def _reset_singletons():
    """Settings and the plan catalog are singletons; start each test clean."""
    from src.config.access_settings import reset_access_settings
    from src.entitlements.loader import reset_plan_catalog_loader

    reset_access_settings()
    reset_plan_catalog_loader()
    yield
    reset_access_settings()
    reset_plan_catalog_loader()


# =============================================================================
# Seed data
# =============================================================================


def _seed(session: Session) -> SimpleNamespace:
    from src.entitlements.loader import get_plan_catalog_loader
    from src.models import Booking, FeaturePackage, Space, Tenant, TenantMembership, User, Venue

    plans = {}
    for package in get_plan_catalog_loader().get_all_packages():
        plan = FeaturePackage(
            id=f"plan-{package.name}",
            name=package.name,
            display_name=package.display_name,
            features=dict(package.features),
            limits=dict(package.limits),
            price_monthly_cents=package.price_monthly_cents,
            price_yearly_cents=package.price_yearly_cents,
            is_active=True,
            version=1,
        )
        session.add(plan)
        plans[package.name] = plan.id

    now = datetime.now(timezone.utc)
    tenants = [
        Tenant(
            id=TENANT_HARBOR,
            name="Harbor Hall",
            slug="harbor",
            status="active",
            plan_id=plans["starter"],
            current_users=5,
            current_venues=1,
        ),
        Tenant(id=TENANT_GRAND, name="Grand Ballroom", slug="grand", status="active", plan_id=plans["professional"]),
        Tenant(id=TENANT_LAPSED, name="Lapsed Lodge", slug="lapsed", status="past_due", plan_id=plans["starter"]),
        Tenant(id=TENANT_CLOSED, name="Closed Chapel", slug="closed", status="canceled", plan_id=plans["starter"]),
        Tenant(id=TENANT_FROZEN, name="Frozen Farm", slug="frozen", status="suspended", plan_id=plans["starter"]),
        Tenant(
            id=TENANT_TRIAL_OVER,
            name="Trial Terrace",
            slug="trial-over",
            status="trial",
            plan_id=plans["starter"],
            trial_ends_at=now - timedelta(days=1),
        ),
    ]
    session.add_all(tenants)

    users = {}

    def add_user(key: str, email: str, super_admin: bool = False) -> str:
        user = User(id=f"user-{key}", email=email, name=key, is_super_admin=super_admin)
        session.add(user)
        users[key] = user.id
        return user.id

    memberships = [
        ("owner", TENANT_HARBOR, "owner", None, None),
        ("admin", TENANT_HARBOR, "admin", None, None),
        ("viewer", TENANT_HARBOR, "viewer", None, None),
        ("sales", TENANT_HARBOR, "staff", "sales", None),
        ("grand_owner", TENANT_GRAND, "owner", None, None),
        ("manager", TENANT_GRAND, "manager", None, [VENUE_V1]),
        ("lapsed_owner", TENANT_LAPSED, "owner", None, None),
        ("closed_owner", TENANT_CLOSED, "owner", None, None),
        ("frozen_owner", TENANT_FROZEN, "owner", None, None),
        ("trial_owner", TENANT_TRIAL_OVER, "owner", None, None),
    ]
    for key, tenant_id, role, staff_type, venue_ids in memberships:
        add_user(key, f"{key}@example.com")
    add_user("multi", "multi@example.com")
    add_user("loner", "loner@example.com")
    add_user("root", "root@platform.example.com", super_admin=True)
    session.flush()

    for key, tenant_id, role, staff_type, venue_ids in memberships:
        session.add(TenantMembership(
            user_id=users[key],
            tenant_id=tenant_id,
            role=role,
            staff_type=staff_type,
            venue_ids=venue_ids,
            is_active=True,
        ))
    session.add(TenantMembership(user_id=users["multi"], tenant_id=TENANT_HARBOR, role="viewer", is_active=True))
    session.add(TenantMembership(user_id=users["multi"], tenant_id=TENANT_GRAND, role="admin", is_active=True))

    session.add_all([
        Venue(id=VENUE_HARBOR, tenant_id=TENANT_HARBOR, name="Harbor Main Hall"),
        Venue(id=VENUE_V1, tenant_id=TENANT_GRAND, name="Grand East"),
        Venue(id=VENUE_V2, tenant_id=TENANT_GRAND, name="Grand West"),
    ])
    session.flush()
    session.add_all([
        Space(tenant_id=TENANT_HARBOR, venue_id=VENUE_HARBOR, name="Terrace"),
        Booking(id=BOOKING_V1, tenant_id=TENANT_GRAND, venue_id=VENUE_V1, status="confirmed"),
        Booking(id=BOOKING_V2, tenant_id=TENANT_GRAND, venue_id=VENUE_V2, status="confirmed"),
    ])
    session.commit()

    return SimpleNamespace(plans=plans, users=users)


@pytest.fixture
def seeded(db_session) -> SimpleNamespace:
    """Seed the database; returns plan ids by name and user ids by key."""
    return _seed(db_session)


# =============================================================================
# Credentials
# =============================================================================


@pytest.fixture
def token_codec():
    from src.auth.jwt import JWTTokenCodec

    return JWTTokenCodec(TEST_JWT_SECRET)


@pytest.fixture
def make_token(token_codec):
    """
    Factory for signed credentials.

    Usage:
        token = make_token("user-owner")
        token = make_token("user-root", role="super_admin", minutes=-1)
    """
    def _make(user_id: str, role: Optional[str] = None, minutes: int = 15, **claims) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": user_id,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(minutes=minutes)).timestamp()),
        }
        if role:
            payload["role"] = role
        payload.update(claims)
        return token_codec.encode(payload)
    return _make


@pytest.fixture
def auth_headers():
    """Authorization header for a bearer credential."""
    def _headers(token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {token}"}
    return _headers


# =============================================================================
# Engine and application
# =============================================================================


@pytest.fixture
def audit_sink() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest.fixture
def revocations():
    from src.entitlements.cache import RedisClient
    from src.services.tenant_assumption import AssumptionRevocationList

    return AssumptionRevocationList(redis_client=RedisClient(redis_url=""))


@pytest.fixture
def access_engine(session_factory, token_codec, audit_sink, revocations):
    from src.config.access_settings import get_access_settings
    from src.platform.access_engine import create_access_engine
    from src.repositories.access_store import SqlAlchemyAccessStore
    from src.repositories.usage_counter import SqlAlchemyUsageCounter, SqlAlchemyVenueLookup

    return create_access_engine(
        store=SqlAlchemyAccessStore(session_factory),
        verifier=token_codec,
        usage_counter=SqlAlchemyUsageCounter(session_factory),
        venue_lookup=SqlAlchemyVenueLookup(session_factory),
        audit_sink=audit_sink,
        revocations=revocations,
        settings=get_access_settings(),
        token_codec=token_codec,
    )


def _build_guarded_router() -> APIRouter:
    """Business-style routes guarded the way real handlers are."""
    from src.constants.permissions import Permission, Role
    from src.entitlements.middleware import (
        FeatureDependency,
        LimitDependency,
        require_feature,
        require_within_limit,
    )
    from src.platform.rbac import require_any_permission, require_permission, require_role
    from src.platform.tenant_context import get_tenant_context

    router = APIRouter()

    @router.get("/api/bookings")
    @require_permission(Permission.EVENTS_VIEW)
    async def list_bookings(request: Request):
        return {"tenantId": get_tenant_context(request).tenant_id}

    @router.post("/api/bookings", status_code=201)
    @require_permission(Permission.EVENTS_CREATE)
    async def create_booking(request: Request):
        return {"created": True}

    @router.put("/api/bookings/{booking_id}")
    @require_permission(Permission.EVENTS_EDIT, resource_id_param="booking_id")
    async def edit_booking(request: Request, booking_id: str):
        return {"updated": booking_id}

    @router.get("/t/{slug}/api/bookings")
    @require_permission(Permission.EVENTS_VIEW)
    async def list_bookings_for_slug(request: Request, slug: str):
        return {"tenantId": get_tenant_context(request).tenant_id}

    @router.get("/api/billing/invoices")
    async def list_invoices(request: Request):
        return {"invoices": []}

    @router.post("/api/billing/update-card")
    @require_permission(Permission.BILLING_MANAGE)
    async def update_card(request: Request):
        return {"updated": True}

    @router.get("/api/support/status")
    async def support_status(request: Request):
        return {"tenantId": get_tenant_context(request).tenant_id}

    @router.get("/api/proposals/templates")
    @require_feature("proposal_system")
    async def proposal_templates(request: Request):
        return {"templates": []}

    @router.get("/api/reports/advanced", dependencies=[Depends(FeatureDependency("advanced_reports"))])
    async def advanced_report(request: Request):
        return {"report": "ok"}

    @router.post("/api/venues", status_code=201)
    @require_permission(Permission.VENUES_MANAGE)
    @require_within_limit("maxVenues")
    async def create_venue(request: Request):
        return {"created": True}

    @router.post("/api/venues/{venue_id}/spaces", status_code=201)
    @require_permission(Permission.SPACES_MANAGE)
    @require_within_limit("maxSpacesPerVenue", venue_id_param="venue_id")
    async def create_space(request: Request, venue_id: str):
        return {"created": True, "venueId": venue_id}

    @router.get("/api/settings")
    @require_role(Role.ADMIN)
    async def read_settings(request: Request):
        return {"settings": {}}

    @router.get("/api/admin-panel")
    @require_any_permission(Permission.SETTINGS_MANAGE, Permission.TEAM_MANAGE)
    async def admin_panel(request: Request):
        return {"panel": "ok"}

    @router.post(
        "/api/team/invite",
        status_code=201,
        dependencies=[Depends(LimitDependency("maxUsers"))],
    )
    @require_permission(Permission.TEAM_MANAGE)
    async def invite_member(request: Request):
        return {"invited": True}

    @router.get("/api/whoami")
    async def whoami(request: Request):
        context = get_tenant_context(request)
        return {
            "tenantId": context.tenant_id,
            "userId": context.user_id,
            "role": context.role.value,
            "isAssumed": context.is_assumed,
            "accessLevel": request.state.access_level.value,
            "features": sorted(request.state.features),
            "limits": request.state.limits,
            "permissions": sorted(request.state.permissions),
        }

    return router


@pytest.fixture
def app(access_engine, session_factory, seeded):
    from main import create_app
    from src.database.session import get_db_session

    application = create_app(access_engine)
    application.include_router(_build_guarded_router())

    def _db_session():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    application.dependency_overrides[get_db_session] = _db_session
    return application


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)


# =============================================================================
# Markers
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "security: mark test as security-focused")
    config.addinivalue_line("markers", "slow: mark test as slow-running")


# =============================================================================
# Shared Config Fixtures
# =============================================================================


@pytest.fixture
def temp_config_dir():
    """Create a temporary directory for config files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def make_yaml_config(temp_config_dir):
    """
    Factory fixture that writes a YAML config file and returns its path.

    Usage:
        config_path = make_yaml_config("access_control.yml", {"routes": {...}})
    """
    def _make(filename: str, config: dict) -> Path:
        config_path = temp_config_dir / filename
        with open(config_path, "w") as f:
            yaml.dump(config, f)
        return config_path
    return _make
