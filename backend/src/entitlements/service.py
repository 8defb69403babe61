"""
Entitlement summary for UI display.

Provides:
- EntitlementService.get_feature_summary(context): enabled and disabled
  features with display names, plan limits and current usage

Usage comes from the tenant's cached counters (current_users,
current_venues, monthly_bookings), which are display-only. Enforcement
always goes through require_feature / require_within_limit, which count
live usage.
"""

from typing import Any, Dict, Optional

from src.constants.features import FEATURE_NAMES, FeatureId, LimitName
from src.entitlements.models import PlanEntitlements
from src.platform.access_engine import AccessEngine
from src.platform.tenant_context import TenantContext
from src.repositories.access_store import TenantRecord

# Limit -> TenantRecord counter field; limits without a counter report None
CACHED_COUNTERS: Dict[LimitName, str] = {
    LimitName.MAX_USERS: "current_users",
    LimitName.MAX_VENUES: "current_venues",
    LimitName.MAX_MONTHLY_BOOKINGS: "monthly_bookings",
}


class EntitlementService:
    def __init__(self, engine: AccessEngine):
        self._engine = engine

    def get_feature_summary(self, context: TenantContext, plan: Optional[PlanEntitlements] = None) -> Dict[str, Any]:
        if plan is None:
            plan = self._engine.plan_by_id(context.plan_id)

        enabled = self._engine.feature_gate.enabled_features(plan)
        features = [
            {
                "id": feature.value,
                "name": FEATURE_NAMES.get(feature, feature.value),
                "enabled": feature in enabled or context.is_super_admin,
            }
            for feature in FeatureId
        ]

        tenant = self._engine.store.get_tenant(context.tenant_id) if context.tenant_id else None

        return {
            "tenantId": context.tenant_id,
            "plan": self._plan_summary(plan),
            "features": features,
            "enabledFeatures": [f["id"] for f in features if f["enabled"]],
            "disabledFeatures": [f["id"] for f in features if not f["enabled"]],
            "limits": self._limits_summary(tenant, plan),
        }

    @staticmethod
    def _plan_summary(plan: Optional[PlanEntitlements]) -> Optional[Dict[str, Any]]:
        if plan is None:
            return None
        return {
            "id": plan.plan_id,
            "name": plan.name,
            "displayName": plan.display_name,
            "isActive": plan.is_active,
        }

    @staticmethod
    def _limits_summary(tenant: Optional[TenantRecord], plan: Optional[PlanEntitlements]) -> Dict[str, Any]:
        summary = {}
        for limit in LimitName:
            max_allowed = plan.get_limit(limit) if plan is not None and plan.is_active else None
            counter = CACHED_COUNTERS.get(limit)
            summary[limit.value] = {
                "max": max_allowed,
                "unlimited": max_allowed is None or plan.is_unlimited(limit),
                "current": getattr(tenant, counter) if tenant is not None and counter else None,
                "perVenue": limit.is_per_venue,
            }
        return summary
