"""
Persisted access decisions written by DatabaseAuditSink.

Append-only. tenant_id is nullable because platform-level decisions
(bare super admin, unresolved tenant) have no tenant.
"""

from datetime import datetime, timezone

from sqlalchemy import Column, String, Boolean, DateTime, Index

from src.db_base import Base
from src.models.base import JSONType, generate_uuid


class AccessDecisionLog(Base):
    __tablename__ = "access_decision_log"

    id = Column(String(255), primary_key=True, default=generate_uuid)

    event_type = Column(String(100), nullable=False, index=True, comment="e.g. permission.denied")
    tenant_id = Column(String(255), nullable=True, index=True)
    user_id = Column(String(255), nullable=True, index=True)
    role = Column(String(50), nullable=True)
    is_assumed = Column(Boolean, nullable=False, default=False)
    resource = Column(String(100), nullable=True)
    action = Column(String(100), nullable=True)
    allowed = Column(Boolean, nullable=False)
    reason = Column(String(255), nullable=True)
    details = Column(JSONType, nullable=True)

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        index=True,
    )

    __table_args__ = (
        Index("ix_access_decision_log_tenant_created", "tenant_id", "created_at"),
    )
