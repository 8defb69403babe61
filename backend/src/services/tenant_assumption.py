"""
Super-admin tenant assumption.

A super admin acts inside a tenant only through a short-lived assumed-tenant
credential issued here:

- caller must be a super admin holding a plain (non-assumed) credential;
  an assumed credential cannot mint another one
- a justification of at least 10 characters (after trimming) is required
- the tenant must exist
- the TenantAssumptionAudit row is committed BEFORE the credential is
  returned; if the write fails no credential is issued
- the credential expires after at most 30 minutes and is never renewed

Issued credentials can be revoked early through AssumptionRevocationList,
which TenantResolver consults on every assumed request.
"""

import logging
import threading
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.auth.identity import ResolvedIdentity
from src.auth.jwt import JWTTokenCodec
from src.config.access_settings import AccessControlSettings, get_access_settings
from src.constants.permissions import Role
from src.entitlements.audit import AccessDecision, AuditEventType, AuditSink, emit_decision
from src.entitlements.cache import RedisClient
from src.models.tenant import Tenant
from src.models.tenant_assumption_audit import TenantAssumptionAudit
from src.models.user import User
from src.platform.errors import (
    AccessEngineUnavailableError,
    AssumptionTargetNotFoundError,
    InvalidAssumptionRequestError,
    PermissionDeniedError,
)

logger = logging.getLogger(__name__)

REVOCATION_KEY_PREFIX = "access:revoked_assumption:"


@dataclass(frozen=True)
class AssumptionGrant:
    token: str
    token_id: str
    tenant_id: str
    tenant_name: str
    expires_at: datetime
    expires_in_minutes: int


class AssumptionRevocationList:
    """
    Revoked assumption token ids.

    Entries live as long as the longest possible assumption, after which the
    credential has expired anyway. Backed by Redis when REDIS_URL is
    configured so every worker sees a revocation, in-process otherwise.
    """

    def __init__(self, ttl_seconds: int = 30 * 60, redis_client: Optional[RedisClient] = None):
        self._ttl_seconds = ttl_seconds
        self._redis = redis_client or RedisClient()
        self._revoked: Dict[str, float] = {}
        self._lock = threading.Lock()

    def revoke(self, token_id: str) -> None:
        if self._redis.available:
            self._redis.set(REVOCATION_KEY_PREFIX + token_id, "1", self._ttl_seconds)
        with self._lock:
            self._revoked[token_id] = time.monotonic() + self._ttl_seconds
        logger.info("Revoked tenant assumption", extra={"token_id": token_id})

    def is_revoked(self, token_id: str) -> bool:
        if self._redis.available and self._redis.get(REVOCATION_KEY_PREFIX + token_id) is not None:
            return True
        now = time.monotonic()
        with self._lock:
            expires = self._revoked.get(token_id)
            if expires is None:
                return False
            if now >= expires:
                del self._revoked[token_id]
                return False
            return True


class TenantAssumptionService:
    """
    Usage:
        service = TenantAssumptionService(session, codec)
        grant = service.assume(identity, tenant_id, reason, ip_address=ip)
    """

    def __init__(
        self,
        session: Session,
        codec: JWTTokenCodec,
        settings: Optional[AccessControlSettings] = None,
        audit_sink: Optional[AuditSink] = None,
        revocations: Optional[AssumptionRevocationList] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.session = session
        self._codec = codec
        self._settings = settings or get_access_settings()
        self._audit_sink = audit_sink
        self._revocations = revocations
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def assume(
        self,
        identity: ResolvedIdentity,
        tenant_id: Optional[str],
        reason: Optional[str],
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> AssumptionGrant:
        """
        Issue an assumed-tenant credential.

        Raises:
            PermissionDeniedError: caller is not a super admin, or already
                holds an assumed credential
            InvalidAssumptionRequestError: missing tenant id or reason too short
            AssumptionTargetNotFoundError: tenant does not exist
            AccessEngineUnavailableError: the audit record could not be written
        """
        self._require_plain_super_admin(identity)

        reason = (reason or "").strip()
        min_length = self._settings.assumption_min_reason_length
        if not tenant_id or not reason:
            raise InvalidAssumptionRequestError()
        if len(reason) < min_length:
            raise InvalidAssumptionRequestError(
                f"Reason must be at least {min_length} characters",
                {"minLength": min_length},
            )

        tenant = self.session.query(Tenant).filter(Tenant.id == tenant_id).first()
        if tenant is None:
            raise AssumptionTargetNotFoundError("Tenant not found")

        now = self._clock()
        ttl_minutes = self._settings.assumption_ttl_minutes
        expires_at = now + timedelta(minutes=ttl_minutes)
        token_id = uuid.uuid4().hex

        self._write_audit(identity.user_id, tenant.id, reason, ip_address, user_agent, token_id, expires_at)

        token = self._codec.encode({
            "sub": identity.user_id,
            "role": Role.SUPER_ADMIN.value,
            "assumed_tenant_id": tenant.id,
            "assumption": True,
            "jti": token_id,
            "iat": int(now.timestamp()),
            "exp": int(expires_at.timestamp()),
        })

        logger.info(
            "Super admin assumed tenant",
            extra={
                "admin_user_id": identity.user_id,
                "tenant_id": tenant.id,
                "token_id": token_id,
                "expires_at": expires_at.isoformat(),
            },
        )
        emit_decision(self._audit_sink, AccessDecision(
            event_type=AuditEventType.TENANT_ASSUMPTION_ISSUED,
            allowed=True,
            user_id=identity.user_id,
            tenant_id=tenant.id,
            role=Role.SUPER_ADMIN.value,
            is_assumed=True,
            reason=reason,
            details={"token_id": token_id, "expires_at": expires_at.isoformat(), "ip_address": ip_address},
        ))

        return AssumptionGrant(
            token=token,
            token_id=token_id,
            tenant_id=tenant.id,
            tenant_name=tenant.name,
            expires_at=expires_at,
            expires_in_minutes=ttl_minutes,
        )

    def revoke(self, identity: ResolvedIdentity, token_id: str) -> None:
        """
        Revoke an issued assumption before it expires.

        Raises:
            PermissionDeniedError: caller is not a super admin
            InvalidAssumptionRequestError: no revocation list is configured
            AssumptionTargetNotFoundError: no assumption with that token id
        """
        if not identity.is_super_admin:
            raise PermissionDeniedError(required="role:super_admin", reason="super_admin_required")
        if self._revocations is None:
            raise InvalidAssumptionRequestError("Assumption revocation is not enabled")

        record = (
            self.session.query(TenantAssumptionAudit)
            .filter(TenantAssumptionAudit.token_id == token_id)
            .first()
        )
        if record is None:
            raise AssumptionTargetNotFoundError("Assumption not found")

        self._revocations.revoke(token_id)
        emit_decision(self._audit_sink, AccessDecision(
            event_type=AuditEventType.TENANT_ASSUMED,
            allowed=False,
            user_id=identity.user_id,
            tenant_id=record.tenant_id,
            role=Role.SUPER_ADMIN.value,
            reason="assumption_revoked",
            details={"token_id": token_id, "admin_user_id": record.admin_user_id},
        ))

    def _require_plain_super_admin(self, identity: ResolvedIdentity) -> None:
        if not identity.is_super_admin:
            raise PermissionDeniedError(required="role:super_admin", reason="super_admin_required")
        if identity.is_assumption:
            logger.warning(
                "Assumed credential used to request another assumption",
                extra={"admin_user_id": identity.user_id, "token_id": identity.token_id},
            )
            raise PermissionDeniedError(
                required="role:super_admin",
                reason="assumption_not_renewable",
                message="Assumed-tenant credentials cannot be renewed",
            )

        user = self.session.query(User).filter(User.id == identity.user_id).first()
        if user is None or not user.is_active or not user.is_super_admin:
            raise PermissionDeniedError(required="role:super_admin", reason="super_admin_required")

    def _write_audit(
        self,
        admin_user_id: str,
        tenant_id: str,
        reason: str,
        ip_address: Optional[str],
        user_agent: Optional[str],
        token_id: str,
        expires_at: datetime,
    ) -> None:
        try:
            self.session.add(TenantAssumptionAudit(
                admin_user_id=admin_user_id,
                tenant_id=tenant_id,
                reason=reason,
                ip_address=ip_address,
                user_agent=(user_agent or "")[:512],
                token_id=token_id,
                token_expires_at=expires_at,
            ))
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(
                "Failed to write tenant assumption audit record",
                extra={"admin_user_id": admin_user_id, "tenant_id": tenant_id},
            )
            raise AccessEngineUnavailableError("could not record tenant assumption", e) from e
