"""
Database models for tenants, memberships, plans and access audit.

Governed tables (venues, spaces, bookings, customers) inherit TenantScopedMixin.
"""

from src.models.base import TimestampMixin, TenantScopedMixin
from src.models.tenant import Tenant, TenantStatus, normalize_tenant_status
from src.models.user import User
from src.models.tenant_membership import TenantMembership
from src.models.plan import FeaturePackage
from src.models.tenant_assumption_audit import TenantAssumptionAudit
from src.models.access_decision_log import AccessDecisionLog
from src.models.venue import Venue, Space, Booking, Customer

__all__ = [
    "TimestampMixin",
    "TenantScopedMixin",
    "Tenant",
    "TenantStatus",
    "normalize_tenant_status",
    "User",
    "TenantMembership",
    "FeaturePackage",
    "TenantAssumptionAudit",
    "AccessDecisionLog",
    "Venue",
    "Space",
    "Booking",
    "Customer",
]
