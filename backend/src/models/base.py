"""
Column mixins shared by the access-control models.

- TimestampMixin: created_at / updated_at
- TenantScopedMixin: tenant_id for governed, tenant-owned rows
- generate_uuid: string UUID primary key default
- JSONType: portable JSON column type
"""

import uuid

from sqlalchemy import Column, String, DateTime, ForeignKey, JSON, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declared_attr


def generate_uuid() -> str:
    return str(uuid.uuid4())


class TimestampMixin:
    """Adds created_at and updated_at columns maintained by the database."""

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        comment="Row creation time"
    )

    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
        comment="Last modification time"
    )


class TenantScopedMixin:
    """
    Adds a tenant_id column referencing tenants.id.

    SECURITY: the value written here always comes from the resolved
    TenantContext, never from request bodies or query strings.
    """

    @declared_attr
    def tenant_id(cls):
        return Column(
            String(255),
            ForeignKey("tenants.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
            comment="Owning tenant. Taken from TenantContext only."
        )


# JSON with a JSONB variant on PostgreSQL; plain JSON keeps SQLite usable in tests
JSONType = JSON().with_variant(JSONB(), "postgresql")
