"""
FeaturePackage model (plans).

Packages are GLOBAL, not tenant-scoped. features maps feature id -> bool,
or holds the sentinel {"everything": true}. limits maps limit name -> int
where -1 means unlimited. Prices are opaque to the access engine.
"""

from sqlalchemy import Column, String, Integer, Boolean

from src.db_base import Base
from src.models.base import TimestampMixin, JSONType, generate_uuid


class FeaturePackage(Base, TimestampMixin):
    __tablename__ = "feature_packages"

    id = Column(String(255), primary_key=True, default=generate_uuid)

    name = Column(
        String(100),
        nullable=False,
        unique=True,
        index=True,
        comment="Machine name (starter, professional, enterprise)"
    )

    display_name = Column(String(200), nullable=False, comment="Name shown in the UI")

    features = Column(
        JSONType,
        nullable=False,
        default=dict,
        comment='Feature id -> bool, or {"everything": true}'
    )

    limits = Column(
        JSONType,
        nullable=False,
        default=dict,
        comment="Limit name -> int (-1 = unlimited)"
    )

    price_monthly_cents = Column(Integer, nullable=True, comment="Monthly price in cents")
    price_yearly_cents = Column(Integer, nullable=True, comment="Yearly price in cents")

    is_active = Column(
        Boolean,
        nullable=False,
        default=True,
        comment="Inactive packages fall back to the default feature set"
    )

    version = Column(Integer, nullable=False, default=1, comment="Bumped on every edit")

    def __repr__(self) -> str:
        return f"<FeaturePackage(name={self.name}, version={self.version}, active={self.is_active})>"
