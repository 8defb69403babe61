"""
Append-only record of super-admin tenant assumptions.

One row per issued assumed-tenant credential, written BEFORE the credential
is returned to the caller. No UPDATE or DELETE.
"""

from datetime import datetime, timezone

from sqlalchemy import Column, String, Text, DateTime, Index

from src.db_base import Base
from src.models.base import generate_uuid


class TenantAssumptionAudit(Base):
    __tablename__ = "tenant_assumption_audit"

    id = Column(String(255), primary_key=True, default=generate_uuid)

    admin_user_id = Column(String(255), nullable=False, index=True, comment="Super admin users.id")
    tenant_id = Column(String(255), nullable=False, index=True, comment="Assumed tenant")
    reason = Column(Text, nullable=False, comment="Justification supplied by the admin")
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)
    token_id = Column(String(255), nullable=False, unique=True, comment="jti of the issued credential")
    token_expires_at = Column(DateTime(timezone=True), nullable=False)

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("ix_tenant_assumption_audit_admin_created", "admin_user_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<TenantAssumptionAudit(admin={self.admin_user_id}, tenant={self.tenant_id})>"
