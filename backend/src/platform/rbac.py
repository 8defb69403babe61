"""
Role-based permission evaluation and route decorators.

CRITICAL SECURITY REQUIREMENTS:
- Permissions MUST be enforced server-side for every protected endpoint
- UI permission gating is NOT security; treat it as UX only
- All permission decisions go through PermissionEvaluator

Evaluation order:
    1. super_admin, owner                         -> allow
    2. unknown resource:action                    -> deny (unknown_permission)
    3. membership override for the parsed pair    -> explicit grant / revoke
    4. role preset                                -> deny if not in preset
    5. staff: non-read actions on staff-governed
       resources need a compatible staff type     -> deny (staff_type)
    6. manager: records owned by venues need an
       overlap with the membership venue scope    -> deny (OUT_OF_SCOPE)

An override grant skips steps 4 and 5 but never the manager venue scope.

Usage:
    from src.platform.rbac import require_permission, require_role

    @router.post("/api/venues")
    @require_permission(Permission.VENUES_MANAGE)
    async def create_venue(request: Request):
        ...

    @router.post("/api/super-admin/assume-tenant")
    @require_role(Role.SUPER_ADMIN)
    async def assume_tenant(request: Request):
        ...
"""

import logging
from dataclasses import dataclass
from functools import wraps
from typing import Callable, FrozenSet, Mapping, Optional, Union

from fastapi import Request

from src.constants.permissions import (
    READ_ACTIONS,
    STAFF_TYPE_RESOURCES,
    VENUE_SCOPED_RESOURCES,
    Permission,
    Resource,
    Role,
    get_permissions_for_role,
    parse_permission,
    role_rank,
)
from src.entitlements.audit import AccessDecision, AuditEventType, emit_decision
from src.platform.errors import PermissionDeniedError
from src.platform.tenant_context import TenantContext, get_tenant_context, normalize_permission_overrides

logger = logging.getLogger(__name__)

# Resources whose writes are restricted by staff type
STAFF_GOVERNED_RESOURCES: FrozenSet[Resource] = frozenset().union(*STAFF_TYPE_RESOURCES.values())

# Grants of these are audited even when allowed
SENSITIVE_PERMISSIONS: FrozenSet[Permission] = frozenset([
    Permission.PAYMENTS_REFUND,
    Permission.BILLING_MANAGE,
    Permission.TEAM_MANAGE,
    Permission.SETTINGS_MANAGE,
])


class DenialReason:
    UNKNOWN_PERMISSION = "unknown_permission"
    NO_ROLE = "no_role"
    DENIED_BY_ROLE = "denied_by_role"
    DENIED_BY_OVERRIDE = "denied_by_override"
    STAFF_TYPE = "staff_type_incompatible"
    OUT_OF_SCOPE = "OUT_OF_SCOPE"


@dataclass(frozen=True)
class PermissionDecision:
    allowed: bool
    reason: str
    required: str

    def raise_if_denied(self) -> None:
        if not self.allowed:
            raise PermissionDeniedError(required=self.required, reason=self.reason)


PermissionLike = Union[Permission, str]


def _to_permission(permission: PermissionLike) -> Optional[Permission]:
    if isinstance(permission, Permission):
        return permission
    return parse_permission(permission)


class PermissionEvaluator:
    """Stateless; safe to share across requests."""

    def evaluate(
        self,
        role: Optional[Role],
        resource: str,
        action: str,
        context: Optional[TenantContext] = None,
        overrides: Optional[Mapping[str, bool]] = None,
        resource_venue_ids: Optional[FrozenSet[str]] = None,
    ) -> PermissionDecision:
        return self.evaluate_permission(
            role,
            f"{resource}:{action}",
            context=context,
            overrides=overrides,
            resource_venue_ids=resource_venue_ids,
        )

    def evaluate_permission(
        self,
        role: Optional[Role],
        permission: PermissionLike,
        context: Optional[TenantContext] = None,
        overrides: Optional[Mapping[str, bool]] = None,
        resource_venue_ids: Optional[FrozenSet[str]] = None,
    ) -> PermissionDecision:
        parsed = _to_permission(permission)
        required = parsed.value if parsed is not None else str(permission)

        if role in (Role.SUPER_ADMIN, Role.OWNER):
            return PermissionDecision(True, role.value, required)
        if role is None:
            return PermissionDecision(False, DenialReason.NO_ROLE, required)
        if parsed is None:
            return PermissionDecision(False, DenialReason.UNKNOWN_PERMISSION, required)

        if overrides is not None:
            overrides = normalize_permission_overrides(overrides)
        elif context is not None:
            overrides = context.permission_overrides
        override = (overrides or {}).get(parsed.value)

        if override is False:
            return PermissionDecision(False, DenialReason.DENIED_BY_OVERRIDE, required)

        if override is not True:
            if parsed not in get_permissions_for_role(role):
                return PermissionDecision(False, DenialReason.DENIED_BY_ROLE, required)
            if role == Role.STAFF and not self._staff_type_allows(parsed, context):
                return PermissionDecision(False, DenialReason.STAFF_TYPE, required)

        if role == Role.MANAGER and not self._manager_scope_allows(parsed, context, resource_venue_ids):
            return PermissionDecision(False, DenialReason.OUT_OF_SCOPE, required)

        return PermissionDecision(True, "override" if override is True else "preset", required)

    @staticmethod
    def _staff_type_allows(permission: Permission, context: Optional[TenantContext]) -> bool:
        if permission.action in READ_ACTIONS:
            return True
        if permission.resource not in STAFF_GOVERNED_RESOURCES:
            return True
        staff_type = context.staff_type if context is not None else None
        if staff_type is None:
            # Missing or unknown staff type is read-only
            return False
        return permission.resource in STAFF_TYPE_RESOURCES[staff_type]

    @staticmethod
    def _manager_scope_allows(
        permission: Permission,
        context: Optional[TenantContext],
        resource_venue_ids: Optional[FrozenSet[str]],
    ) -> bool:
        if resource_venue_ids is None or permission.resource not in VENUE_SCOPED_RESOURCES:
            return True
        membership_venues = context.venue_ids if context is not None else frozenset()
        return bool(frozenset(resource_venue_ids) & membership_venues)


_default_evaluator = PermissionEvaluator()


def _get_request_from_args(args, kwargs) -> Request:
    """Extract Request object from function arguments."""
    for arg in args:
        if isinstance(arg, Request):
            return arg
    if "request" in kwargs:
        return kwargs["request"]
    raise ValueError("Request object not found in function arguments")


def _engine_parts(request: Request):
    engine = getattr(request.app.state, "access_engine", None)
    if engine is None:
        return _default_evaluator, None, None
    return engine.permission_evaluator, engine.audit_sink, engine.venue_lookup


def _resource_venue_ids(request: Request, venue_lookup, context: TenantContext, permission: Permission,
                        resource_id_param: Optional[str]) -> Optional[FrozenSet[str]]:
    if not resource_id_param or venue_lookup is None or context.tenant_id is None:
        return None
    resource_id = request.path_params.get(resource_id_param)
    if not resource_id:
        return None
    return venue_lookup.venue_ids_for(context.tenant_id, permission.resource, str(resource_id))


def _audit(sink, context: TenantContext, decision: PermissionDecision, request: Optional[Request]) -> None:
    parsed = parse_permission(decision.required)
    if decision.allowed and parsed not in SENSITIVE_PERMISSIONS:
        return
    resource, _, action = decision.required.partition(":")
    emit_decision(sink, AccessDecision(
        event_type=AuditEventType.PERMISSION_GRANTED if decision.allowed else AuditEventType.PERMISSION_DENIED,
        allowed=decision.allowed,
        user_id=context.user_id,
        tenant_id=context.tenant_id,
        role=context.role.value,
        is_assumed=context.is_assumed,
        resource=resource,
        action=action,
        reason=decision.reason,
        details={
            "path": request.url.path if request is not None else None,
            "method": request.method if request is not None else None,
        },
    ))


def _log_denial(context: TenantContext, decision: PermissionDecision, request: Optional[Request]) -> None:
    logger.warning(
        "Permission denied",
        extra={
            "tenant_id": context.tenant_id,
            "user_id": context.user_id,
            "role": context.role.value,
            "required_permission": decision.required,
            "reason": decision.reason,
            "path": request.url.path if request is not None else None,
            "method": request.method if request is not None else None,
        },
    )


def check_permission_or_raise(
    tenant_context: TenantContext,
    permission: PermissionLike,
    request: Optional[Request] = None,
    resource_venue_ids: Optional[FrozenSet[str]] = None,
) -> PermissionDecision:
    """
    Programmatic permission check for use inside a handler body.

    Pass resource_venue_ids once the handler has loaded the record so the
    manager venue scope applies.

    Raises:
        PermissionDeniedError: If the permission is not granted
    """
    if request is not None:
        evaluator, sink, _ = _engine_parts(request)
    else:
        evaluator, sink = _default_evaluator, None

    decision = evaluator.evaluate_permission(
        tenant_context.role,
        permission,
        context=tenant_context,
        resource_venue_ids=resource_venue_ids,
    )
    _audit(sink, tenant_context, decision, request)
    if not decision.allowed:
        _log_denial(tenant_context, decision, request)
        decision.raise_if_denied()
    return decision


def require_permission(permission: PermissionLike, resource_id_param: Optional[str] = None) -> Callable:
    """
    Decorator requiring a permission for an endpoint.

    resource_id_param names the path parameter holding the record id; when
    given, the record's owning venues are looked up so managers are held
    to their venue scope.

    Usage:
        @router.put("/api/bookings/{booking_id}")
        @require_permission(Permission.EVENTS_EDIT, resource_id_param="booking_id")
        async def edit_booking(request: Request, booking_id: str):
            ...
    """
    parsed = _to_permission(permission)
    if parsed is None:
        raise ValueError(f"Unknown permission: {permission}")

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            request = _get_request_from_args(args, kwargs)
            tenant_context = get_tenant_context(request)
            _, _, venue_lookup = _engine_parts(request)
            venue_ids = _resource_venue_ids(request, venue_lookup, tenant_context, parsed, resource_id_param)

            check_permission_or_raise(tenant_context, parsed, request, resource_venue_ids=venue_ids)

            logger.debug(
                "Permission check passed",
                extra={
                    "tenant_id": tenant_context.tenant_id,
                    "user_id": tenant_context.user_id,
                    "permission": parsed.value,
                },
            )
            return await func(*args, **kwargs)
        return wrapper
    return decorator


def require_any_permission(*permissions: PermissionLike) -> Callable:
    """
    Decorator requiring at least one of the given permissions.

    Usage:
        @router.get("/api/reports")
        @require_any_permission(Permission.REPORTS_VIEW, Permission.PAYMENTS_VIEW)
        async def reports(request: Request):
            ...
    """
    parsed = [_to_permission(p) for p in permissions]
    if not parsed or any(p is None for p in parsed):
        raise ValueError(f"Unknown permission in {permissions}")

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            request = _get_request_from_args(args, kwargs)
            tenant_context = get_tenant_context(request)
            evaluator, sink, _ = _engine_parts(request)

            decisions = [
                evaluator.evaluate_permission(tenant_context.role, p, context=tenant_context)
                for p in parsed
            ]
            if not any(d.allowed for d in decisions):
                required = ",".join(p.value for p in parsed)
                denial = PermissionDecision(False, decisions[0].reason, required)
                _log_denial(tenant_context, denial, request)
                _audit(sink, tenant_context, denial, request)
                denial.raise_if_denied()

            return await func(*args, **kwargs)
        return wrapper
    return decorator


def require_role(role: Role) -> Callable:
    """
    Decorator requiring the caller's role to rank at or above role.

    SUPER_ADMIN requires the platform role itself. Prefer require_permission
    where a permission exists.
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            request = _get_request_from_args(args, kwargs)
            tenant_context = get_tenant_context(request)
            _, sink, _ = _engine_parts(request)

            if role == Role.SUPER_ADMIN:
                allowed = tenant_context.is_super_admin
            else:
                allowed = role_rank(tenant_context.role) >= role_rank(role)

            if not allowed:
                denial = PermissionDecision(False, DenialReason.DENIED_BY_ROLE, f"role:{role.value}")
                _log_denial(tenant_context, denial, request)
                _audit(sink, tenant_context, denial, request)
                denial.raise_if_denied()

            return await func(*args, **kwargs)
        return wrapper
    return decorator


def permissions_for_context(context: TenantContext) -> FrozenSet[str]:
    """
    Effective permission strings for display (request.state.permissions).

    Venue scope is not applied here since it depends on the record.
    """
    granted = set()
    for permission in Permission:
        decision = _default_evaluator.evaluate_permission(context.role, permission, context=context)
        if decision.allowed:
            granted.add(permission.value)
    return frozenset(granted)
