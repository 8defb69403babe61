"""
Tenant resolution and the immutable per-request TenantContext.

CRITICAL SECURITY REQUIREMENTS:
- Every non-super-admin request resolves to exactly one tenant
- tenant_id comes from the membership (or a verified assumption claim),
  NEVER from request body or query parameters
- A slug in the path or subdomain may only SELECT among the caller's own
  memberships; a slug that does not match one is a TenantMismatch
- A bare super admin has no implicit tenant on tenant-scoped routes
- Suspended tenants are rejected here, before any finer status rule

The resolved TenantContext is a frozen value attached to request.state;
there is no process-wide "current tenant".
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, FrozenSet, List, Mapping, Optional, Protocol, Tuple

from fastapi import Request

from src.auth.identity import ResolvedIdentity
from src.constants.permissions import (
    MEMBERSHIP_ROLES,
    Role,
    StaffType,
    parse_permission,
    parse_role,
    parse_staff_type,
)
from src.entitlements.audit import AccessDecision, AuditEventType, AuditSink, emit_decision
from src.models.tenant import TenantStatus, normalize_tenant_status
from src.platform.errors import (
    AccessEngineUnavailableError,
    ExpiredCredentialError,
    InvalidCredentialError,
    NoTenantForUserError,
    TenantMismatchError,
    TenantNotFoundError,
    TenantRequiredError,
    TenantResolutionError,
    TenantSuspendedError,
)
from src.repositories.access_store import AccessStore, MembershipRecord, TenantRecord

logger = logging.getLogger(__name__)

DEFAULT_DEDUPE_SECONDS = 60


def normalize_permission_overrides(raw: Optional[Mapping[str, object]]) -> Dict[str, bool]:
    """
    Canonical "resource:action" keys for membership overrides.

    Keys go through the same parser as route permissions, so "bookings:edit"
    and "Events:Edit" both land on "events:edit". Unknown keys and non-bool
    values are dropped. A revoke wins when two spellings of one permission
    disagree.
    """
    normalized: Dict[str, bool] = {}
    for key, value in (raw or {}).items():
        permission = parse_permission(key) if isinstance(key, str) else None
        if permission is None or not isinstance(value, bool):
            logger.warning(
                "Dropping invalid permission override",
                extra={"override_key": str(key), "override_type": type(value).__name__},
            )
            continue
        normalized[permission.value] = normalized.get(permission.value, True) and value
    return normalized


@dataclass(frozen=True)
class TenantContext:
    """
    Resolved access context for one request.

    tenant_id is None only for a super admin on a platform (non tenant-scoped)
    route.
    """

    tenant_id: Optional[str]
    user_id: str
    role: Role
    is_assumed: bool = False
    staff_type: Optional[StaffType] = None
    venue_ids: FrozenSet[str] = frozenset()
    permission_overrides: Dict[str, bool] = field(default_factory=dict, hash=False)
    tenant_status: Optional[TenantStatus] = None
    plan_id: Optional[str] = None
    trial_ends_at: Optional[datetime] = None
    tenant_slug: Optional[str] = None

    @property
    def is_super_admin(self) -> bool:
        return self.role == Role.SUPER_ADMIN

    @property
    def is_platform(self) -> bool:
        return self.tenant_id is None

    def __repr__(self) -> str:
        return (
            f"TenantContext(tenant_id={self.tenant_id}, user_id={self.user_id}, "
            f"role={self.role.value}, is_assumed={self.is_assumed})"
        )


class RevocationChecker(Protocol):
    def is_revoked(self, token_id: str) -> bool:
        ...


class AssumptionEventDeduper:
    """
    Emits at most one assumption event per (admin, tenant) per time bucket.

    Thread-safe; entries older than the current bucket are pruned as new
    events arrive.
    """

    def __init__(self, bucket_seconds: int = DEFAULT_DEDUPE_SECONDS):
        if bucket_seconds <= 0:
            raise ValueError("bucket_seconds must be positive")
        self._bucket_seconds = bucket_seconds
        self._seen: Dict[Tuple[str, str], int] = {}
        self._lock = threading.Lock()

    def _bucket(self, now: datetime) -> int:
        return int(now.timestamp() // self._bucket_seconds)

    def should_emit(self, admin_user_id: str, tenant_id: str, now: Optional[datetime] = None) -> bool:
        bucket = self._bucket(now or datetime.now(timezone.utc))
        key = (admin_user_id, tenant_id)
        with self._lock:
            if self._seen.get(key) == bucket:
                return False
            self._seen[key] = bucket
            if len(self._seen) > 1024:
                self._seen = {k: b for k, b in self._seen.items() if b >= bucket}
            return True


def extract_tenant_slug(
    path: Optional[str],
    host: Optional[str],
    base_domain: Optional[str] = None,
) -> Optional[str]:
    """
    Tenant slug from "/t/<slug>/..." or "<slug>.<base_domain>".

    The path form wins when both are present.
    """
    if path and path.startswith("/t/"):
        slug = path.split("/", 3)[2] if path.count("/") >= 2 else ""
        if slug:
            return slug.lower()

    if host and base_domain:
        hostname = host.split(":", 1)[0].lower().rstrip(".")
        suffix = "." + base_domain.lower().lstrip(".")
        if hostname.endswith(suffix):
            label = hostname[: -len(suffix)]
            if label and "." not in label and label != "www":
                return label
    return None


class TenantResolver:
    """
    Resolves the effective tenant for an identity.

    Usage:
        resolver = TenantResolver(store, audit_sink=sink)
        context = resolver.resolve(identity, path=request.url.path, host=request.headers.get("host"))
    """

    def __init__(
        self,
        store: AccessStore,
        audit_sink: Optional[AuditSink] = None,
        deduper: Optional[AssumptionEventDeduper] = None,
        revocations: Optional[RevocationChecker] = None,
        base_domain: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._store = store
        self._audit_sink = audit_sink
        self._deduper = deduper or AssumptionEventDeduper()
        self._revocations = revocations
        self._base_domain = base_domain
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def resolve(
        self,
        identity: ResolvedIdentity,
        path: Optional[str] = None,
        host: Optional[str] = None,
        tenant_scoped: bool = True,
        allow_suspended: bool = False,
        now: Optional[datetime] = None,
    ) -> TenantContext:
        """
        Raises:
            TenantRequiredError: bare super admin on a tenant-scoped route, or
                several memberships and nothing selecting one
            NoTenantForUserError: caller has no active membership
            TenantMismatchError: slug or tenant claim selects a tenant the
                caller does not belong to
            TenantNotFoundError: resolved tenant does not exist
            TenantSuspendedError: resolved tenant is suspended
            ExpiredCredentialError: assumption expired or revoked
        """
        now = now or self._clock()
        slug = extract_tenant_slug(path, host, self._base_domain)

        if identity.is_super_admin:
            self._require_super_admin_user(identity)
            if identity.assumed_tenant_id:
                return self._resolve_assumption(identity, slug, allow_suspended, now)
            if tenant_scoped:
                logger.warning(
                    "Super admin without assumed tenant on tenant-scoped route",
                    extra={"user_id": identity.user_id, "path": path},
                )
                raise TenantRequiredError(
                    "Super admin must assume a tenant to access tenant data",
                    {"reason": "assumption_required"},
                )
            return TenantContext(tenant_id=None, user_id=identity.user_id, role=Role.SUPER_ADMIN)

        return self._resolve_membership(identity, slug, allow_suspended)

    # -- super admin ----------------------------------------------------------

    def _require_super_admin_user(self, identity: ResolvedIdentity) -> None:
        user = self._store.get_user(identity.user_id)
        if user is None or not user.is_active or not user.is_super_admin:
            logger.warning(
                "Super admin claim not backed by an active super admin user",
                extra={"user_id": identity.user_id},
            )
            raise InvalidCredentialError("Invalid token", {"reason": "invalid_claims"})

    def _resolve_assumption(
        self,
        identity: ResolvedIdentity,
        slug: Optional[str],
        allow_suspended: bool,
        now: datetime,
    ) -> TenantContext:
        if now >= identity.expires_at:
            raise ExpiredCredentialError("Tenant assumption has expired")
        if self._revocations is not None and identity.token_id and self._revocations.is_revoked(identity.token_id):
            logger.info(
                "Revoked tenant assumption presented",
                extra={"user_id": identity.user_id, "token_id": identity.token_id},
            )
            raise ExpiredCredentialError("Tenant assumption has been revoked", {"reason": "assumption_revoked"})

        tenant = self._store.get_tenant(identity.assumed_tenant_id)
        if tenant is None:
            raise TenantNotFoundError()
        if slug and slug != (tenant.slug or "").lower():
            raise TenantMismatchError()
        status = self._check_status(tenant, allow_suspended)

        if self._deduper.should_emit(identity.user_id, tenant.id, now):
            logger.info(
                "Super admin acting in assumed tenant",
                extra={
                    "admin_user_id": identity.user_id,
                    "tenant_id": tenant.id,
                    "token_id": identity.token_id,
                },
            )
            emit_decision(self._audit_sink, AccessDecision(
                event_type=AuditEventType.TENANT_ASSUMED,
                allowed=True,
                user_id=identity.user_id,
                tenant_id=tenant.id,
                role=Role.SUPER_ADMIN.value,
                is_assumed=True,
                reason="tenant_assumption",
                details={"token_id": identity.token_id},
            ))

        return TenantContext(
            tenant_id=tenant.id,
            user_id=identity.user_id,
            role=Role.SUPER_ADMIN,
            is_assumed=True,
            tenant_status=status,
            plan_id=tenant.plan_id,
            trial_ends_at=tenant.trial_ends_at,
            tenant_slug=tenant.slug,
        )

    # -- members --------------------------------------------------------------

    def _resolve_membership(
        self,
        identity: ResolvedIdentity,
        slug: Optional[str],
        allow_suspended: bool,
    ) -> TenantContext:
        user = self._store.get_user(identity.user_id)
        if user is None or not user.is_active:
            raise InvalidCredentialError("User account is not active", {"reason": "user_inactive"})

        memberships = self._store.list_active_memberships(identity.user_id)
        if not memberships:
            raise NoTenantForUserError()

        membership = self._select_membership(identity, memberships, slug)

        tenant = self._store.get_tenant(membership.tenant_id)
        if tenant is None:
            raise TenantNotFoundError()
        status = self._check_status(tenant, allow_suspended)

        role = parse_role(membership.role)
        if role not in MEMBERSHIP_ROLES:
            raise AccessEngineUnavailableError(
                f"membership for user {identity.user_id} has invalid role {membership.role!r}"
            )

        return TenantContext(
            tenant_id=tenant.id,
            user_id=identity.user_id,
            role=role,
            staff_type=parse_staff_type(membership.staff_type),
            venue_ids=frozenset(membership.venue_ids),
            permission_overrides=normalize_permission_overrides(membership.permission_overrides),
            tenant_status=status,
            plan_id=tenant.plan_id,
            trial_ends_at=tenant.trial_ends_at,
            tenant_slug=tenant.slug,
        )

    def _select_membership(
        self,
        identity: ResolvedIdentity,
        memberships: List[MembershipRecord],
        slug: Optional[str],
    ) -> MembershipRecord:
        if slug:
            tenant = self._store.get_tenant_by_slug(slug)
            match = self._find(memberships, tenant.id if tenant else None)
            if match is None:
                logger.warning(
                    "Tenant slug does not match any membership",
                    extra={"user_id": identity.user_id, "slug": slug},
                )
                raise TenantMismatchError()
            return match

        if identity.tenant_claim:
            match = self._find(memberships, identity.tenant_claim)
            if match is None:
                logger.warning(
                    "Token tenant claim does not match any membership",
                    extra={"user_id": identity.user_id, "tenant_claim": identity.tenant_claim},
                )
                raise TenantMismatchError()
            return match

        if len(memberships) == 1:
            return memberships[0]

        raise TenantRequiredError(
            "Select a tenant to continue",
            {"reason": "tenant_selection_required", "tenantCount": len(memberships)},
        )

    @staticmethod
    def _find(memberships: List[MembershipRecord], tenant_id: Optional[str]) -> Optional[MembershipRecord]:
        if tenant_id is None:
            return None
        for membership in memberships:
            if membership.tenant_id == tenant_id:
                return membership
        return None

    @staticmethod
    def _check_status(tenant: TenantRecord, allow_suspended: bool) -> TenantStatus:
        status = normalize_tenant_status(tenant.status)
        if status is None:
            raise AccessEngineUnavailableError(f"tenant {tenant.id} has unrecognized status {tenant.status!r}")
        if status == TenantStatus.SUSPENDED and not allow_suspended:
            logger.warning("Request for suspended tenant", extra={"tenant_id": tenant.id})
            raise TenantSuspendedError()
        return status


def get_tenant_context(request: Request) -> TenantContext:
    """
    Tenant context attached by AccessControlMiddleware.

    Usable directly or as a FastAPI dependency.
    """
    context = getattr(request.state, "tenant_context", None)
    if context is None:
        logger.error("Route handler accessed without tenant context", extra={"path": request.url.path})
        raise TenantResolutionError("Tenant context not available")
    return context
