"""
Super Admin API Routes - tenant assumption.

Provides endpoints for:
- Issuing a short-lived assumed-tenant credential
- Revoking an issued assumption before it expires

SECURITY:
- Requires the platform super admin role
- An assumed-tenant credential cannot be used to mint another one
- The audit record is committed before the credential is returned
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from sqlalchemy.orm import Session

from src.constants.permissions import Role
from src.database.session import get_db_session
from src.platform.access_engine import get_access_engine
from src.platform.errors import AccessEngineUnavailableError, CredentialRequiredError
from src.platform.rbac import require_role
from src.services.tenant_assumption import TenantAssumptionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/super-admin", tags=["super-admin"])


# --- Request / Response Models ---


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AssumeTenantRequest(_CamelModel):
    """Request body for assuming a tenant."""
    tenant_id: Optional[str] = Field(None, description="Tenant to act inside")
    reason: Optional[str] = Field(None, description="Justification, at least 10 characters")


class AssumedTenant(_CamelModel):
    id: str
    name: str


class AssumeTenantResponse(_CamelModel):
    message: str = "Tenant assumed successfully"
    assume_token: str
    token_id: str
    tenant: AssumedTenant
    expires_at: datetime
    expires_in_minutes: int


class RevokeAssumptionRequest(_CamelModel):
    token_id: str = Field(..., description="jti of the assumed-tenant credential")


# --- Helpers ---


def _client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def _build_service(request: Request, db: Session) -> TenantAssumptionService:
    engine = get_access_engine(request)
    if engine.token_codec is None:
        raise AccessEngineUnavailableError("token signing is not configured")
    return TenantAssumptionService(
        db,
        engine.token_codec,
        settings=engine.settings,
        audit_sink=engine.audit_sink,
        revocations=engine.revocations,
    )


def _identity(request: Request):
    identity = getattr(request.state, "identity", None)
    if identity is None:
        raise CredentialRequiredError()
    return identity


# --- Endpoints ---


@router.post("/assume-tenant", response_model=AssumeTenantResponse)
@require_role(Role.SUPER_ADMIN)
async def assume_tenant(
    request: Request,
    body: AssumeTenantRequest,
    db: Session = Depends(get_db_session),
):
    """Issue a 30-minute credential scoped to one tenant."""
    service = _build_service(request, db)
    grant = service.assume(
        _identity(request),
        tenant_id=body.tenant_id,
        reason=body.reason,
        ip_address=_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    return AssumeTenantResponse(
        assume_token=grant.token,
        token_id=grant.token_id,
        tenant=AssumedTenant(id=grant.tenant_id, name=grant.tenant_name),
        expires_at=grant.expires_at,
        expires_in_minutes=grant.expires_in_minutes,
    )


@router.post("/revoke-assumption")
@require_role(Role.SUPER_ADMIN)
async def revoke_assumption(
    request: Request,
    body: RevokeAssumptionRequest,
    db: Session = Depends(get_db_session),
):
    service = _build_service(request, db)
    service.revoke(_identity(request), body.token_id)
    return {"revoked": True, "tokenId": body.token_id}
