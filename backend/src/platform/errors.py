"""
Structured error taxonomy for the access control engine.

Every policy denial is an AccessControlError subclass carrying:
- http_status: status code the transport layer should return
- error_code: stable machine-readable code existing clients depend on
- details: structured fields for rendering an actionable prompt

Categories:
- AuthenticationError: missing/invalid/expired credential (401)
- TenantResolutionError: tenant unresolved, mismatched, missing, suspended
- AuthorizationError: permission, feature or usage-limit denial
- BillingStateError: past_due / canceled restrictions

AccessEngineUnavailableError is NOT a policy denial. It signals an
infrastructure failure (store unavailable, malformed plan record) and maps
to a 500-class response so callers never confuse the two.
"""

from typing import Any, Dict, Optional

from fastapi import status


class AccessControlError(Exception):
    """Base class for all access control verdicts surfaced as errors."""

    http_status: int = status.HTTP_403_FORBIDDEN
    error_code: str = "ACCESS_DENIED"
    default_message: str = "Access denied"

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON response."""
        return {
            "code": self.error_code,
            "message": self.message,
            **self.details,
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.error_code}, message={self.message!r})"


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

class AuthenticationError(AccessControlError):
    """Credential problems. Terminal until a fresh credential is presented."""

    http_status = status.HTTP_401_UNAUTHORIZED
    error_code = "INVALID_TOKEN"
    default_message = "Invalid token"


class CredentialRequiredError(AuthenticationError):
    error_code = "AUTH_REQUIRED"
    default_message = "Authentication required"


class InvalidCredentialError(AuthenticationError):
    default_message = "Invalid or malformed token"


class ExpiredCredentialError(AuthenticationError):
    """Raised distinctly for expired credentials so callers can offer refresh."""

    default_message = "Token has expired"

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, {"reason": "token_expired", **(details or {})})


# ---------------------------------------------------------------------------
# Tenant resolution
# ---------------------------------------------------------------------------

class TenantResolutionError(AccessControlError):
    error_code = "TENANT_REQUIRED"
    default_message = "Tenant access required"


class TenantRequiredError(TenantResolutionError):
    http_status = status.HTTP_400_BAD_REQUEST
    default_message = "Tenant context required"


class NoTenantForUserError(TenantResolutionError):
    default_message = "User is not a member of any tenant"


class TenantMismatchError(TenantResolutionError):
    # Reported as not-found so the response does not confirm the other tenant exists
    error_code = "TENANT_NOT_FOUND"
    default_message = "Tenant not found"


class TenantNotFoundError(TenantResolutionError):
    error_code = "TENANT_NOT_FOUND"
    default_message = "Tenant not found"


class TenantSuspendedError(TenantResolutionError):
    error_code = "TENANT_SUSPENDED"
    default_message = "Account suspended. Contact support."


# ---------------------------------------------------------------------------
# Authorization (permission, feature, limit)
# ---------------------------------------------------------------------------

class AuthorizationError(AccessControlError):
    """Terminal for the request, not the session. Retry after upgrade or role change."""


class PermissionDeniedError(AuthorizationError):
    error_code = "INSUFFICIENT_PERMISSIONS"
    default_message = "Insufficient permissions"

    def __init__(self, required: str, reason: str = "denied_by_role", message: Optional[str] = None):
        self.required = required
        self.reason = reason
        super().__init__(message, {"required": required, "reason": reason})


class FeatureNotAvailableError(AuthorizationError):
    error_code = "FEATURE_NOT_AVAILABLE"

    def __init__(self, feature_id: str, feature_name: str, plan_id: Optional[str] = None):
        self.feature_id = feature_id
        self.feature_name = feature_name
        self.plan_id = plan_id
        super().__init__(
            f"Feature '{feature_name}' is not available in your current plan",
            {
                "featureId": feature_id,
                "featureName": feature_name,
                "plan": plan_id,
                "upgradeRequired": True,
            },
        )


class UsageLimitExceededError(AuthorizationError):
    http_status = status.HTTP_402_PAYMENT_REQUIRED
    error_code = "LIMIT_EXCEEDED"

    def __init__(self, limit_type: str, current: int, max_allowed: int, plan_id: Optional[str] = None):
        self.limit_type = limit_type
        self.current = current
        self.max = max_allowed
        super().__init__(
            f"Your plan allows {max_allowed} for {limit_type}. Upgrade to add more.",
            {
                "limitType": limit_type,
                "current": current,
                "max": max_allowed,
                "plan": plan_id,
                "upgradeRequired": True,
            },
        )


# ---------------------------------------------------------------------------
# Billing state
# ---------------------------------------------------------------------------

class BillingStateError(AccessControlError):
    """Lifecycle restriction. Billing routes remain reachable."""


class PaymentRequiredError(BillingStateError):
    http_status = status.HTTP_402_PAYMENT_REQUIRED
    error_code = "PAYMENT_REQUIRED"
    default_message = "Account past due. Please update payment method."

    def __init__(self, message: Optional[str] = None):
        super().__init__(message, {"status": "past_due"})


class TenantCanceledError(BillingStateError):
    error_code = "TENANT_CANCELED"
    default_message = "Account canceled. Only billing access allowed."

    def __init__(self, message: Optional[str] = None):
        super().__init__(message, {"status": "canceled"})


# ---------------------------------------------------------------------------
# Tenant assumption issuance
# ---------------------------------------------------------------------------

class InvalidAssumptionRequestError(AccessControlError):
    http_status = status.HTTP_400_BAD_REQUEST
    error_code = "INVALID_REQUEST"
    default_message = "tenantId and reason are required"


class AssumptionTargetNotFoundError(TenantNotFoundError):
    http_status = status.HTTP_404_NOT_FOUND


# ---------------------------------------------------------------------------
# Infrastructure
# ---------------------------------------------------------------------------

class AccessEngineUnavailableError(Exception):
    """
    Infrastructure failure while evaluating access.

    Deliberately NOT an AccessControlError subclass.
    """

    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code = "ACCESS_ENGINE_ERROR"

    def __init__(self, detail: str, cause: Optional[Exception] = None):
        self.detail = detail
        self.cause = cause
        super().__init__(detail)

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.error_code, "message": "Access check failed"}
