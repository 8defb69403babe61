"""
Plan entitlement enforcement.

This package provides:
- PlanEntitlements / parse_plan: typed view of a feature package
- FeatureGate: plan feature flags
- UsageLimitEnforcer: numeric plan limits against live counts
- TenantStatusGate: lifecycle / billing status restrictions
- RecordCache: TTL cache for tenant and plan records
- Audit sinks for access decisions

Route-level helpers (require_feature, require_within_limit) live in
src.entitlements.middleware.
"""

from src.entitlements.models import AccessLevel, PlanEntitlements, parse_plan
from src.entitlements.features import FeatureGate
from src.entitlements.limits import LimitCheckResult, UsageLimitEnforcer
from src.entitlements.rules import StatusVerdict, TenantStatusGate
from src.entitlements.cache import RecordCache
from src.entitlements.audit import (
    AccessDecision,
    AuditEventType,
    DatabaseAuditSink,
    LoggingAuditSink,
    QueuedAuditSink,
    emit_decision,
)

__all__ = [
    "AccessLevel",
    "PlanEntitlements",
    "parse_plan",
    "FeatureGate",
    "LimitCheckResult",
    "UsageLimitEnforcer",
    "StatusVerdict",
    "TenantStatusGate",
    "RecordCache",
    "AccessDecision",
    "AuditEventType",
    "DatabaseAuditSink",
    "LoggingAuditSink",
    "QueuedAuditSink",
    "emit_decision",
]
