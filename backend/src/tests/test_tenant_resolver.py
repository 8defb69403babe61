"""
Tests for tenant resolution.

Test classes:
- TestMemberResolution: membership -> TenantContext
- TestTenantSelection: path slug, subdomain and tenant claim selection
- TestTenantFailures: no tenant, mismatch, missing tenant, suspended
- TestSuperAdminResolution: bare super admin and assumed tenants
- TestAssumptionEventDedupe: one assumption event per admin/tenant/bucket
- TestSlugExtraction: /t/<slug>/ and <slug>.<base_domain>
"""

from dataclasses import FrozenInstanceError
from datetime import datetime, timedelta, timezone

import pytest

from src.auth.identity import ResolvedIdentity
from src.constants.permissions import Role, StaffType
from src.entitlements.audit import AuditEventType
from src.models.tenant import TenantStatus
from src.platform.errors import (
    AccessEngineUnavailableError,
    ExpiredCredentialError,
    InvalidCredentialError,
    NoTenantForUserError,
    TenantMismatchError,
    TenantNotFoundError,
    TenantRequiredError,
    TenantSuspendedError,
)
from src.platform.rbac import DenialReason, PermissionEvaluator
from src.platform.tenant_context import (
    AssumptionEventDeduper,
    TenantContext,
    TenantResolver,
    extract_tenant_slug,
)
from src.repositories.access_store import MembershipRecord, TenantRecord, UserRecord

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class InMemoryAccessStore:
    """AccessStore backed by dicts of records."""

    def __init__(self, users=(), tenants=(), memberships=()):
        self.users = {u.id: u for u in users}
        self.tenants = {t.id: t for t in tenants}
        self.memberships = list(memberships)

    def get_user(self, user_id):
        return self.users.get(user_id)

    def get_tenant(self, tenant_id):
        return self.tenants.get(tenant_id)

    def get_tenant_by_slug(self, slug):
        for tenant in self.tenants.values():
            if tenant.slug == slug:
                return tenant
        return None

    def get_plan(self, plan_id):
        return None

    def list_active_memberships(self, user_id):
        return [m for m in self.memberships if m.user_id == user_id and m.is_active]


class FakeRevocations:
    def __init__(self, revoked=()):
        self.revoked = set(revoked)

    def is_revoked(self, token_id):
        return token_id in self.revoked


class CollectingSink:
    def __init__(self):
        self.decisions = []

    def record(self, decision):
        self.decisions.append(decision)


def _identity(user_id="user-a", role=None, tenant_claim=None, assumed=None, token_id=None, minutes=15):
    return ResolvedIdentity(
        user_id=user_id,
        role=role,
        expires_at=NOW + timedelta(minutes=minutes),
        tenant_claim=tenant_claim,
        assumed_tenant_id=assumed,
        token_id=token_id,
    )


@pytest.fixture
def store():
    return InMemoryAccessStore(
        users=[
            UserRecord(id="user-a", email="a@example.com"),
            UserRecord(id="user-multi", email="m@example.com"),
            UserRecord(id="user-none", email="n@example.com"),
            UserRecord(id="user-inactive", email="i@example.com", is_active=False),
            UserRecord(id="user-frozen", email="f@example.com"),
            UserRecord(id="admin-1", email="root@example.com", is_super_admin=True),
            UserRecord(id="fake-admin", email="fake@example.com"),
        ],
        tenants=[
            TenantRecord(id="tenant-a", name="A", slug="alpha", status="active", plan_id="plan-starter"),
            TenantRecord(id="tenant-b", name="B", slug="bravo", status="past_due"),
            TenantRecord(id="tenant-s", name="S", slug="sierra", status="suspended"),
            TenantRecord(id="tenant-x", name="X", slug="xray", status="mystery"),
        ],
        memberships=[
            MembershipRecord(
                tenant_id="tenant-a",
                user_id="user-a",
                role="manager",
                staff_type=None,
                venue_ids=("venue-1",),
                permission_overrides={"events:cancel": True},
            ),
            MembershipRecord(tenant_id="tenant-a", user_id="user-multi", role="viewer"),
            MembershipRecord(tenant_id="tenant-b", user_id="user-multi", role="staff", staff_type="sales"),
            MembershipRecord(tenant_id="tenant-a", user_id="user-inactive", role="owner"),
            MembershipRecord(tenant_id="tenant-s", user_id="user-frozen", role="owner"),
        ],
    )


@pytest.fixture
def sink():
    return CollectingSink()


@pytest.fixture
def resolver(store, sink):
    return TenantResolver(
        store,
        audit_sink=sink,
        revocations=FakeRevocations(revoked={"revoked-token"}),
        base_domain="venues.example.com",
        clock=lambda: NOW,
    )


class TestMemberResolution:

    def test_single_membership(self, resolver):
        context = resolver.resolve(_identity())

        assert isinstance(context, TenantContext)
        assert context.tenant_id == "tenant-a"
        assert context.user_id == "user-a"
        assert context.role == Role.MANAGER
        assert context.venue_ids == frozenset({"venue-1"})
        assert context.permission_overrides == {"events:cancel": True}
        assert context.tenant_status == TenantStatus.ACTIVE
        assert context.plan_id == "plan-starter"
        assert context.is_assumed is False

    def test_token_role_claim_does_not_override_membership(self, resolver):
        context = resolver.resolve(_identity(role=Role.OWNER))
        assert context.role == Role.MANAGER

    def test_staff_type_parsed(self, resolver):
        context = resolver.resolve(_identity(user_id="user-multi", tenant_claim="tenant-b"))
        assert context.role == Role.STAFF
        assert context.staff_type == StaffType.SALES

    def test_context_is_immutable(self, resolver):
        context = resolver.resolve(_identity())
        with pytest.raises(FrozenInstanceError):
            context.tenant_id = "tenant-b"

    def test_inactive_user_rejected(self, resolver):
        with pytest.raises(InvalidCredentialError):
            resolver.resolve(_identity(user_id="user-inactive"))

    def test_unknown_user_rejected(self, resolver):
        with pytest.raises(InvalidCredentialError):
            resolver.resolve(_identity(user_id="ghost"))

    @pytest.mark.security
    def test_alias_keyed_revoke_normalized(self, store, resolver):
        store.memberships.append(MembershipRecord(
            tenant_id="tenant-a",
            user_id="user-none",
            role="manager",
            permission_overrides={"bookings:edit": False, "Events:Cancel": True},
        ))
        context = resolver.resolve(_identity(user_id="user-none"))
        assert context.permission_overrides == {"events:edit": False, "events:cancel": True}

        decision = PermissionEvaluator().evaluate(Role.MANAGER, "events", "edit", context=context)
        assert not decision.allowed
        assert decision.reason == DenialReason.DENIED_BY_OVERRIDE

    def test_invalid_overrides_dropped(self, store, resolver):
        store.memberships.append(MembershipRecord(
            tenant_id="tenant-a",
            user_id="user-none",
            role="viewer",
            permission_overrides={"events:teleport": True, "payments:record": "yes", "customers:view": False},
        ))
        context = resolver.resolve(_identity(user_id="user-none"))
        assert context.permission_overrides == {"customers:view": False}


class TestTenantSelection:

    def test_path_slug_selects_membership(self, resolver):
        context = resolver.resolve(_identity(user_id="user-multi"), path="/t/bravo/api/bookings")
        assert context.tenant_id == "tenant-b"

    def test_subdomain_selects_membership(self, resolver):
        context = resolver.resolve(_identity(user_id="user-multi"), path="/api/bookings", host="alpha.venues.example.com")
        assert context.tenant_id == "tenant-a"

    def test_tenant_claim_selects_membership(self, resolver):
        context = resolver.resolve(_identity(user_id="user-multi", tenant_claim="tenant-a"))
        assert context.role == Role.VIEWER

    def test_multiple_memberships_without_selection(self, resolver):
        with pytest.raises(TenantRequiredError) as exc_info:
            resolver.resolve(_identity(user_id="user-multi"))
        assert exc_info.value.details["tenantCount"] == 2


class TestTenantFailures:

    def test_no_membership(self, resolver):
        with pytest.raises(NoTenantForUserError) as exc_info:
            resolver.resolve(_identity(user_id="user-none"))
        assert exc_info.value.error_code == "TENANT_REQUIRED"

    @pytest.mark.security
    def test_slug_for_other_tenant_is_mismatch(self, resolver):
        with pytest.raises(TenantMismatchError) as exc_info:
            resolver.resolve(_identity(), path="/t/bravo/api/bookings")
        assert exc_info.value.error_code == "TENANT_NOT_FOUND"

    @pytest.mark.security
    def test_unknown_slug_is_mismatch(self, resolver):
        with pytest.raises(TenantMismatchError):
            resolver.resolve(_identity(), path="/t/nowhere/api/bookings")

    @pytest.mark.security
    def test_tenant_claim_for_other_tenant_is_mismatch(self, resolver):
        with pytest.raises(TenantMismatchError):
            resolver.resolve(_identity(tenant_claim="tenant-b"))

    def test_membership_tenant_missing(self, store, resolver):
        del store.tenants["tenant-a"]
        with pytest.raises(TenantNotFoundError):
            resolver.resolve(_identity())

    def test_suspended_short_circuits(self, resolver):
        with pytest.raises(TenantSuspendedError) as exc_info:
            resolver.resolve(_identity(user_id="user-frozen"))
        assert exc_info.value.http_status == 403

    def test_suspended_allowed_for_support_reads(self, resolver):
        context = resolver.resolve(_identity(user_id="user-frozen"), allow_suspended=True)
        assert context.tenant_status == TenantStatus.SUSPENDED

    def test_unrecognized_status_is_infrastructure_failure(self, store, resolver):
        store.memberships.append(MembershipRecord(tenant_id="tenant-x", user_id="user-none", role="owner"))
        with pytest.raises(AccessEngineUnavailableError):
            resolver.resolve(_identity(user_id="user-none"))

    def test_invalid_membership_role_is_infrastructure_failure(self, store, resolver):
        store.memberships.append(MembershipRecord(tenant_id="tenant-a", user_id="user-none", role="super_admin"))
        with pytest.raises(AccessEngineUnavailableError):
            resolver.resolve(_identity(user_id="user-none"))


class TestSuperAdminResolution:

    def test_bare_super_admin_on_tenant_route(self, resolver):
        with pytest.raises(TenantRequiredError) as exc_info:
            resolver.resolve(_identity(user_id="admin-1", role=Role.SUPER_ADMIN), path="/api/bookings")

        error = exc_info.value
        assert error.error_code == "TENANT_REQUIRED"
        assert error.details["reason"] == "assumption_required"

    def test_bare_super_admin_on_platform_route(self, resolver):
        context = resolver.resolve(
            _identity(user_id="admin-1", role=Role.SUPER_ADMIN),
            path="/api/super-admin/assume-tenant",
            tenant_scoped=False,
        )
        assert context.is_platform
        assert context.is_super_admin

    @pytest.mark.security
    def test_super_admin_claim_needs_super_admin_user(self, resolver):
        with pytest.raises(InvalidCredentialError):
            resolver.resolve(_identity(user_id="fake-admin", role=Role.SUPER_ADMIN), tenant_scoped=False)

    def test_assumed_tenant(self, resolver, sink):
        identity = _identity(user_id="admin-1", role=Role.SUPER_ADMIN, assumed="tenant-b", token_id="tok-1")
        context = resolver.resolve(identity)

        assert context.tenant_id == "tenant-b"
        assert context.role == Role.SUPER_ADMIN
        assert context.is_assumed is True
        assert context.tenant_status == TenantStatus.PAST_DUE

        assert len(sink.decisions) == 1
        event = sink.decisions[0]
        assert event.event_type == AuditEventType.TENANT_ASSUMED
        assert event.user_id == "admin-1"
        assert event.tenant_id == "tenant-b"

    def test_assumption_resolves_at_29_minutes(self, resolver):
        identity = _identity(user_id="admin-1", role=Role.SUPER_ADMIN, assumed="tenant-a", token_id="t", minutes=30)
        context = resolver.resolve(identity, now=NOW + timedelta(minutes=29))
        assert context.tenant_id == "tenant-a"

    def test_assumption_expired_at_31_minutes(self, resolver):
        identity = _identity(user_id="admin-1", role=Role.SUPER_ADMIN, assumed="tenant-a", token_id="t", minutes=30)
        with pytest.raises(ExpiredCredentialError):
            resolver.resolve(identity, now=NOW + timedelta(minutes=31))

    def test_revoked_assumption(self, resolver):
        identity = _identity(user_id="admin-1", role=Role.SUPER_ADMIN, assumed="tenant-a", token_id="revoked-token")
        with pytest.raises(ExpiredCredentialError) as exc_info:
            resolver.resolve(identity)
        assert exc_info.value.details["reason"] == "assumption_revoked"

    def test_assumed_tenant_missing(self, resolver):
        identity = _identity(user_id="admin-1", role=Role.SUPER_ADMIN, assumed="tenant-gone", token_id="t")
        with pytest.raises(TenantNotFoundError):
            resolver.resolve(identity)

    def test_assumed_tenant_suspended(self, resolver):
        identity = _identity(user_id="admin-1", role=Role.SUPER_ADMIN, assumed="tenant-s", token_id="t")
        with pytest.raises(TenantSuspendedError):
            resolver.resolve(identity)

    @pytest.mark.security
    def test_assumption_slug_must_match(self, resolver):
        identity = _identity(user_id="admin-1", role=Role.SUPER_ADMIN, assumed="tenant-a", token_id="t")
        with pytest.raises(TenantMismatchError):
            resolver.resolve(identity, path="/t/bravo/api/bookings")


class TestAssumptionEventDedupe:

    def test_one_event_per_bucket(self, resolver, sink):
        identity = _identity(user_id="admin-1", role=Role.SUPER_ADMIN, assumed="tenant-a", token_id="t")
        for _ in range(5):
            resolver.resolve(identity, now=NOW + timedelta(seconds=1))
        assert len(sink.decisions) == 1

    def test_new_bucket_emits_again(self, resolver, sink):
        identity = _identity(user_id="admin-1", role=Role.SUPER_ADMIN, assumed="tenant-a", token_id="t")
        resolver.resolve(identity, now=NOW)
        resolver.resolve(identity, now=NOW + timedelta(minutes=2))
        assert len(sink.decisions) == 2

    def test_deduper_keys_on_admin_and_tenant(self):
        deduper = AssumptionEventDeduper(bucket_seconds=60)
        assert deduper.should_emit("admin-1", "tenant-a", NOW)
        assert not deduper.should_emit("admin-1", "tenant-a", NOW + timedelta(seconds=10))
        assert deduper.should_emit("admin-1", "tenant-b", NOW)
        assert deduper.should_emit("admin-2", "tenant-a", NOW)

    def test_bucket_must_be_positive(self):
        with pytest.raises(ValueError):
            AssumptionEventDeduper(bucket_seconds=0)


class TestSlugExtraction:

    @pytest.mark.parametrize("path,host,expected", [
        ("/t/alpha/api/bookings", None, "alpha"),
        ("/t/Alpha/", None, "alpha"),
        ("/api/bookings", "bravo.venues.example.com", "bravo"),
        ("/api/bookings", "bravo.venues.example.com:8443", "bravo"),
        ("/t/alpha/api/bookings", "bravo.venues.example.com", "alpha"),
        ("/api/bookings", "www.venues.example.com", None),
        ("/api/bookings", "venues.example.com", None),
        ("/api/bookings", "a.b.venues.example.com", None),
        ("/api/bookings", "bravo.other.com", None),
        ("/api/bookings", None, None),
    ])
    def test_extract(self, path, host, expected):
        assert extract_tenant_slug(path, host, "venues.example.com") == expected

    def test_no_base_domain_ignores_host(self):
        assert extract_tenant_slug("/api/x", "bravo.venues.example.com", None) is None
