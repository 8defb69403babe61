"""
Tenant feature summary for the UI.

GET /api/tenant/features returns the caller's plan, every feature with its
display name and whether the plan enables it, and the plan limits with
best-effort current usage. Display only; endpoints enforce on their own.
"""

import logging

from fastapi import APIRouter, Request

from src.entitlements.service import EntitlementService
from src.platform.access_engine import get_access_engine
from src.platform.tenant_context import get_tenant_context

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tenant", tags=["tenant"])


@router.get("/features")
async def get_tenant_features(request: Request):
    context = get_tenant_context(request)
    service = EntitlementService(get_access_engine(request))
    summary = service.get_feature_summary(context, plan=getattr(request.state, "plan", None))
    summary["role"] = context.role.value
    summary["permissions"] = sorted(getattr(request.state, "permissions", frozenset()))
    return summary
