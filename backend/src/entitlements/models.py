"""
Entitlement models - typed view of a feature package.

Provides:
- AccessLevel: what a tenant's lifecycle status lets it reach
- PlanEntitlements: parsed, immutable snapshot of a FeaturePackage
- parse_plan(): plan record -> PlanEntitlements

Plan records are JSON maps. Parsing maps every known key onto FeatureId /
LimitName and drops the rest, so an unknown or misspelled key in a record
can never grant anything. A record whose shape is wrong (features not a
map, a limit that is not an integer) is an infrastructure fault and raises
AccessEngineUnavailableError rather than silently granting or denying.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from src.constants.features import (
    EVERYTHING,
    UNLIMITED,
    FeatureId,
    LimitName,
    parse_feature_id,
    parse_limit_name,
)
from src.platform.errors import AccessEngineUnavailableError

logger = logging.getLogger(__name__)


class AccessLevel(str, Enum):
    FULL = "full"
    READ_ONLY = "read_only"
    BILLING_ONLY = "billing_only"
    SUPPORT_READ = "support_read"
    NONE = "none"


@dataclass(frozen=True)
class PlanEntitlements:
    """Parsed feature package."""

    plan_id: str
    name: str
    display_name: str
    is_active: bool = True
    grants_everything: bool = False
    features: FrozenSet[FeatureId] = frozenset()
    limits: Dict[LimitName, int] = field(default_factory=dict)
    version: int = 1

    def enabled_features(self) -> FrozenSet[FeatureId]:
        if self.grants_everything:
            return frozenset(FeatureId)
        return self.features

    def get_limit(self, limit_name: LimitName) -> Optional[int]:
        """Configured ceiling, or None when the plan sets none."""
        return self.limits.get(limit_name)

    def is_unlimited(self, limit_name: LimitName) -> bool:
        return self.limits.get(limit_name) == UNLIMITED

    def limits_as_dict(self) -> Dict[str, int]:
        return {name.value: value for name, value in self.limits.items()}


def _parse_features(plan_id: str, raw: Any) -> tuple:
    if raw is None:
        return False, frozenset()
    if not isinstance(raw, dict):
        raise AccessEngineUnavailableError(f"plan {plan_id} has malformed features")

    if raw.get(EVERYTHING) is True:
        return True, frozenset()

    enabled: List[FeatureId] = []
    for key, value in raw.items():
        feature = parse_feature_id(key)
        if feature is None:
            logger.debug("Ignoring unknown feature key in plan", extra={"plan_id": plan_id, "key": key})
            continue
        # Only a literal true grants; "yes", 1 and friends do not
        if value is True:
            enabled.append(feature)
    return False, frozenset(enabled)


def _parse_limits(plan_id: str, raw: Any) -> Dict[LimitName, int]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise AccessEngineUnavailableError(f"plan {plan_id} has malformed limits")

    limits: Dict[LimitName, int] = {}
    for key, value in raw.items():
        limit_name = parse_limit_name(key)
        if limit_name is None:
            logger.debug("Ignoring unknown limit key in plan", extra={"plan_id": plan_id, "key": key})
            continue
        if isinstance(value, bool) or not isinstance(value, int) or value < UNLIMITED:
            raise AccessEngineUnavailableError(f"plan {plan_id} has malformed limit {key}")
        limits[limit_name] = value
    return limits


def parse_plan(record) -> PlanEntitlements:
    """
    Build PlanEntitlements from a plan record (PlanRecord or FeaturePackage).

    Raises:
        AccessEngineUnavailableError: If the record is malformed
    """
    plan_id = str(record.id)
    grants_everything, features = _parse_features(plan_id, record.features)
    return PlanEntitlements(
        plan_id=plan_id,
        name=record.name,
        display_name=getattr(record, "display_name", None) or record.name,
        is_active=bool(record.is_active),
        grants_everything=grants_everything,
        features=features,
        limits=_parse_limits(plan_id, record.limits),
        version=getattr(record, "version", 1) or 1,
    )
