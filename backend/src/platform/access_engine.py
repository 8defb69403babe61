"""
Wiring for the access engine's collaborators.

AccessEngine bundles the resolvers, gates and injected stores one app uses.
It is stored on app.state.access_engine and read by the middleware and the
route helpers. Tests build one directly with fakes.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from sqlalchemy.orm import sessionmaker

from src.auth.identity import IdentityResolver
from src.auth.jwt import JWTTokenCodec, TokenVerifier
from src.config.access_settings import AccessControlSettings, get_access_settings
from src.entitlements.audit import AuditSink, LoggingAuditSink, build_audit_sink
from src.entitlements.cache import RecordCache
from src.entitlements.features import FeatureGate
from src.entitlements.limits import UsageLimitEnforcer
from src.entitlements.models import PlanEntitlements, parse_plan
from src.entitlements.rules import TenantStatusGate
from src.platform.errors import AccessEngineUnavailableError
from src.platform.rbac import PermissionEvaluator
from src.platform.tenant_context import AssumptionEventDeduper, RevocationChecker, TenantResolver
from src.repositories.access_store import AccessStore, CachedAccessStore, SqlAlchemyAccessStore
from src.repositories.usage_counter import (
    ResourceVenueLookup,
    SqlAlchemyUsageCounter,
    SqlAlchemyVenueLookup,
    UsageCounter,
)

logger = logging.getLogger(__name__)


@dataclass
class AccessEngine:
    store: AccessStore
    identity_resolver: IdentityResolver
    tenant_resolver: TenantResolver
    status_gate: TenantStatusGate
    feature_gate: FeatureGate
    limit_enforcer: UsageLimitEnforcer
    permission_evaluator: PermissionEvaluator
    settings: AccessControlSettings
    audit_sink: Optional[AuditSink] = None
    venue_lookup: Optional[ResourceVenueLookup] = None
    revocations: Optional[RevocationChecker] = None
    token_codec: Optional[JWTTokenCodec] = None

    def plan_for_tenant(self, tenant_id: str) -> Optional[PlanEntitlements]:
        tenant = self.store.get_tenant(tenant_id)
        if tenant is None or not tenant.plan_id:
            return None
        return self.plan_by_id(tenant.plan_id)

    def plan_by_id(self, plan_id: Optional[str]) -> Optional[PlanEntitlements]:
        if not plan_id:
            return None
        record = self.store.get_plan(plan_id)
        return parse_plan(record) if record is not None else None

    def shutdown(self) -> None:
        stop = getattr(self.audit_sink, "stop", None)
        if stop is not None:
            stop()


def create_access_engine(
    store: AccessStore,
    verifier: TokenVerifier,
    usage_counter: UsageCounter,
    venue_lookup: Optional[ResourceVenueLookup] = None,
    audit_sink: Optional[AuditSink] = None,
    revocations: Optional[RevocationChecker] = None,
    settings: Optional[AccessControlSettings] = None,
    token_codec: Optional[JWTTokenCodec] = None,
    clock=None,
) -> AccessEngine:
    """Assemble an engine from injected collaborators."""
    settings = settings or get_access_settings()
    audit_sink = audit_sink or LoggingAuditSink()

    engine = AccessEngine(
        store=store,
        identity_resolver=IdentityResolver(verifier, clock=clock),
        tenant_resolver=TenantResolver(
            store,
            audit_sink=audit_sink,
            deduper=AssumptionEventDeduper(settings.assumption_dedupe_seconds),
            revocations=revocations,
            base_domain=settings.base_domain,
            clock=clock,
        ),
        status_gate=TenantStatusGate.from_settings(settings),
        feature_gate=FeatureGate(settings.default_features),
        limit_enforcer=None,
        permission_evaluator=PermissionEvaluator(),
        settings=settings,
        audit_sink=audit_sink,
        venue_lookup=venue_lookup,
        revocations=revocations,
        token_codec=token_codec,
    )
    engine.limit_enforcer = UsageLimitEnforcer(usage_counter, engine.plan_for_tenant)
    return engine


def build_default_engine(session_factory: sessionmaker, revocations: Optional[RevocationChecker] = None) -> AccessEngine:
    """
    Production wiring: SQLAlchemy stores behind the record cache, HS256
    tokens from JWT_SECRET, and the configured audit sink.
    """
    settings = get_access_settings()
    codec = JWTTokenCodec.from_env()
    cache = RecordCache(ttl_seconds=settings.record_cache_ttl_seconds)
    sink_kind, queue_size = settings.audit_sink

    logger.info(
        "Building access engine",
        extra={"audit_sink": sink_kind, "cache_ttl": settings.record_cache_ttl_seconds},
    )

    return create_access_engine(
        store=CachedAccessStore(SqlAlchemyAccessStore(session_factory), cache),
        verifier=codec,
        usage_counter=SqlAlchemyUsageCounter(session_factory),
        venue_lookup=SqlAlchemyVenueLookup(session_factory),
        audit_sink=build_audit_sink(sink_kind, session_factory, queue_size),
        revocations=revocations,
        settings=settings,
        token_codec=codec,
    )


def get_access_engine(request: Request) -> AccessEngine:
    """Engine attached to the app at startup; usable as a FastAPI dependency."""
    engine = getattr(request.app.state, "access_engine", None)
    if engine is None:
        raise AccessEngineUnavailableError("access engine is not configured")
    return engine
