"""
Route-level plan enforcement.

Provides:
- require_feature: decorator denying endpoints the tenant's plan lacks
- require_within_limit: decorator guarding creations against plan limits
- FeatureDependency / LimitDependency: the same checks as FastAPI dependencies

Both checks run after AccessControlMiddleware has attached
request.state.tenant_context and request.state.plan. Feature denials are
403 FEATURE_NOT_AVAILABLE; limit denials are 402 LIMIT_EXCEEDED.
"""

import logging
from functools import wraps
from typing import Callable, Optional

from fastapi import Request

from src.constants.features import parse_feature_id, parse_limit_name
from src.entitlements.audit import AccessDecision, AuditEventType, emit_decision
from src.entitlements.limits import LimitCheckResult
from src.entitlements.models import PlanEntitlements
from src.platform.access_engine import AccessEngine, get_access_engine
from src.platform.errors import FeatureNotAvailableError, UsageLimitExceededError
from src.platform.tenant_context import TenantContext, get_tenant_context

logger = logging.getLogger(__name__)


def _get_request_from_args(args, kwargs) -> Request:
    for arg in args:
        if isinstance(arg, Request):
            return arg
    if "request" in kwargs:
        return kwargs["request"]
    raise ValueError("Request object not found in function arguments")


def _plan_for_request(engine: AccessEngine, request: Request, context: TenantContext) -> Optional[PlanEntitlements]:
    if hasattr(request.state, "plan"):
        return request.state.plan
    return engine.plan_by_id(context.plan_id)


def check_feature(request: Request, feature_id: str) -> None:
    """
    Raises:
        FeatureNotAvailableError: If the tenant's plan does not include the feature
    """
    engine = get_access_engine(request)
    context = get_tenant_context(request)
    plan = _plan_for_request(engine, request, context)

    try:
        engine.feature_gate.check_or_raise(plan, feature_id, is_super_admin=context.is_super_admin)
    except FeatureNotAvailableError as e:
        logger.warning(
            "Feature not available on plan",
            extra={
                "tenant_id": context.tenant_id,
                "user_id": context.user_id,
                "feature_id": feature_id,
                "plan": plan.name if plan is not None else None,
                "path": request.url.path,
            },
        )
        emit_decision(engine.audit_sink, AccessDecision(
            event_type=AuditEventType.FEATURE_DENIED,
            allowed=False,
            user_id=context.user_id,
            tenant_id=context.tenant_id,
            role=context.role.value,
            is_assumed=context.is_assumed,
            resource=e.details.get("featureId"),
            reason=e.error_code,
            details={"plan": e.details.get("plan"), "path": request.url.path, "method": request.method},
        ))
        raise


def check_within_limit(request: Request, limit_name: str, venue_id: Optional[str] = None) -> LimitCheckResult:
    """
    Raises:
        UsageLimitExceededError: If creating one more would exceed the plan limit
    """
    engine = get_access_engine(request)
    context = get_tenant_context(request)
    plan = _plan_for_request(engine, request, context)

    try:
        return engine.limit_enforcer.check_or_raise(context.tenant_id, limit_name, venue_id=venue_id, plan=plan)
    except UsageLimitExceededError as e:
        emit_decision(engine.audit_sink, AccessDecision(
            event_type=AuditEventType.LIMIT_EXCEEDED,
            allowed=False,
            user_id=context.user_id,
            tenant_id=context.tenant_id,
            role=context.role.value,
            is_assumed=context.is_assumed,
            resource=e.details.get("limitType"),
            reason=e.error_code,
            details={
                "current": e.details.get("current"),
                "max": e.details.get("max"),
                "venue_id": venue_id,
                "path": request.url.path,
            },
        ))
        raise


def require_feature(feature_id: str) -> Callable:
    """
    Decorator requiring a plan feature for an endpoint.

    Usage:
        @router.get("/api/reports/revenue")
        @require_feature("advanced_reports")
        async def revenue_report(request: Request):
            ...
    """
    if parse_feature_id(feature_id) is None:
        raise ValueError(f"Unknown feature id: {feature_id}")

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            request = _get_request_from_args(args, kwargs)
            check_feature(request, feature_id)
            return await func(*args, **kwargs)
        return wrapper
    return decorator


def require_within_limit(limit_name: str, venue_id_param: Optional[str] = None) -> Callable:
    """
    Decorator guarding a creation endpoint with a plan limit.

    venue_id_param names the path parameter carrying the venue for
    per-venue limits such as maxSpacesPerVenue.

    Usage:
        @router.post("/api/venues/{venue_id}/spaces")
        @require_within_limit("maxSpacesPerVenue", venue_id_param="venue_id")
        async def create_space(request: Request, venue_id: str):
            ...
    """
    if parse_limit_name(limit_name) is None:
        raise ValueError(f"Unknown limit name: {limit_name}")

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            request = _get_request_from_args(args, kwargs)
            venue_id = request.path_params.get(venue_id_param) if venue_id_param else None
            check_within_limit(request, limit_name, venue_id=venue_id)
            return await func(*args, **kwargs)
        return wrapper
    return decorator


class FeatureDependency:
    """
    FastAPI dependency form of require_feature.

    Usage:
        @router.get("/api/ai/suggest", dependencies=[Depends(FeatureDependency("ai_analytics"))])
    """

    def __init__(self, feature_id: str):
        if parse_feature_id(feature_id) is None:
            raise ValueError(f"Unknown feature id: {feature_id}")
        self.feature_id = feature_id

    def __call__(self, request: Request) -> None:
        check_feature(request, self.feature_id)


class LimitDependency:
    """FastAPI dependency form of require_within_limit."""

    def __init__(self, limit_name: str, venue_id_param: Optional[str] = None):
        if parse_limit_name(limit_name) is None:
            raise ValueError(f"Unknown limit name: {limit_name}")
        self.limit_name = limit_name
        self.venue_id_param = venue_id_param

    def __call__(self, request: Request) -> LimitCheckResult:
        venue_id = request.path_params.get(self.venue_id_param) if self.venue_id_param else None
        return check_within_limit(request, self.limit_name, venue_id=venue_id)
