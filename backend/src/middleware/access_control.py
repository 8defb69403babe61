"""
Access control middleware.

Runs the request-level pipeline for every protected route:

    bearer token -> IdentityResolver -> TenantResolver -> TenantStatusGate

and attaches the result to request.state:
    tenant_context  immutable TenantContext
    identity        ResolvedIdentity
    plan            PlanEntitlements or None
    features        frozenset of enabled feature id strings
    limits          {limit name: max} for the tenant's plan
    permissions     frozenset of "resource:action" strings
    access_level    AccessLevel granted by the status gate

Per-endpoint checks (permissions, features, limits) run in route
decorators and dependencies once this middleware has passed.

SECURITY: tenant_id comes only from the verified credential and the
caller's memberships, never from request body or query parameters.
"""

import logging
from typing import Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse

from src.auth.jwt import extract_bearer_token
from src.config.access_settings import get_access_settings
from src.constants.features import FeatureId
from src.entitlements.audit import AccessDecision, AuditEventType, emit_decision
from src.entitlements.models import AccessLevel
from src.entitlements.rules import READ_METHODS
from src.platform.access_engine import AccessEngine
from src.platform.errors import (
    AccessControlError,
    AccessEngineUnavailableError,
    AuthenticationError,
    BillingStateError,
    TenantSuspendedError,
)
from src.platform.rbac import permissions_for_context

logger = logging.getLogger(__name__)


def _error_response(error: AccessControlError) -> JSONResponse:
    return JSONResponse(status_code=error.http_status, content=error.to_dict())


def _engine_error_response(error: AccessEngineUnavailableError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=error.to_dict())


def _role_value(context, identity) -> Optional[str]:
    if context is not None:
        return context.role.value
    if identity is not None and identity.role is not None:
        return identity.role.value
    return None


class AccessControlMiddleware:
    """
    FastAPI http middleware enforcing identity, tenancy and tenant status.

    The engine is read from request.app.state.access_engine on each request
    so tests and the app lifespan can swap it without re-registering.

    Usage:
        access_middleware = AccessControlMiddleware()
        app.middleware("http")(access_middleware)
    """

    def __init__(self, engine: Optional[AccessEngine] = None):
        self._engine = engine

    @staticmethod
    def _is_protected(settings, path: str) -> bool:
        if settings.is_public_path(path):
            return False
        return path.startswith("/api/") or path.startswith("/t/")

    async def __call__(self, request: Request, call_next):
        path = request.url.path
        engine = self._engine or getattr(request.app.state, "access_engine", None)
        settings = engine.settings if engine is not None else get_access_settings()

        if not self._is_protected(settings, path):
            return await call_next(request)

        if engine is None:
            logger.error("Access engine not configured", extra={"path": path})
            return _engine_error_response(AccessEngineUnavailableError("access engine is not configured"))

        try:
            self._authorize(engine, request)
        except AccessControlError as e:
            self._record_denial(engine, request, e)
            return _error_response(e)
        except AccessEngineUnavailableError as e:
            logger.error(
                "Access engine failure",
                extra={"path": path, "method": request.method, "detail": e.detail},
            )
            return _engine_error_response(e)
        except Exception as e:
            logger.exception("Unexpected error in access control", extra={"path": path})
            return _engine_error_response(AccessEngineUnavailableError("unexpected access control failure", e))

        return await call_next(request)

    def _authorize(self, engine: AccessEngine, request: Request) -> None:
        path = request.url.path
        method = request.method.upper()

        token = extract_bearer_token(request.headers.get("authorization"))
        identity = engine.identity_resolver.resolve(token)
        request.state.identity = identity

        tenant_scoped = engine.settings.is_tenant_scoped_path(path)
        allow_suspended = method in READ_METHODS and engine.settings.is_support_read_path(path)

        context = engine.tenant_resolver.resolve(
            identity,
            path=path,
            host=request.headers.get("host"),
            tenant_scoped=tenant_scoped,
            allow_suspended=allow_suspended,
        )
        request.state.tenant_context = context

        if context.is_platform:
            request.state.plan = None
            request.state.features = frozenset(f.value for f in FeatureId)
            request.state.limits = {}
            request.state.access_level = AccessLevel.FULL
        else:
            verdict = engine.status_gate.evaluate(
                context.tenant_status,
                method,
                path,
                trial_ends_at=context.trial_ends_at,
            )
            verdict.raise_if_denied()
            request.state.access_level = verdict.access_level

            plan = engine.plan_by_id(context.plan_id)
            request.state.plan = plan
            request.state.features = frozenset(f.value for f in engine.feature_gate.enabled_features(plan))
            request.state.limits = plan.limits_as_dict() if plan is not None and plan.is_active else {}

        request.state.permissions = permissions_for_context(context)

        logger.debug(
            "Access context resolved",
            extra={
                "tenant_id": context.tenant_id,
                "user_id": context.user_id,
                "role": context.role.value,
                "is_assumed": context.is_assumed,
                "path": path,
            },
        )

    @staticmethod
    def _record_denial(engine: AccessEngine, request: Request, error: AccessControlError) -> None:
        identity = getattr(request.state, "identity", None)
        context = getattr(request.state, "tenant_context", None)

        if isinstance(error, AuthenticationError):
            event_type = AuditEventType.IDENTITY_REJECTED
        elif isinstance(error, (BillingStateError, TenantSuspendedError)):
            event_type = AuditEventType.STATUS_DENIED
        else:
            event_type = AuditEventType.TENANT_DENIED

        logger.warning(
            "Access denied",
            extra={
                "path": request.url.path,
                "method": request.method,
                "error_code": error.error_code,
                "user_id": identity.user_id if identity is not None else None,
                "tenant_id": context.tenant_id if context is not None else None,
            },
        )
        emit_decision(engine.audit_sink, AccessDecision(
            event_type=event_type,
            allowed=False,
            user_id=identity.user_id if identity is not None else None,
            tenant_id=context.tenant_id if context is not None else None,
            role=_role_value(context, identity),
            is_assumed=context.is_assumed if context is not None else False,
            reason=error.error_code,
            details={
                "path": request.url.path,
                "method": request.method,
                "error": type(error).__name__,
                **error.details,
            },
        ))
