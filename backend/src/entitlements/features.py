"""
Feature gate - decides whether a tenant's plan includes a feature.

Resolution:
    1. super admin                 -> allowed
    2. unknown feature id          -> denied (always)
    3. missing or inactive plan    -> DEFAULT_FEATURES only
    4. plan grants "everything"    -> every recognized feature
    5. otherwise                   -> features[feature_id] is True
"""

import logging
from typing import FrozenSet, Iterable, Optional

from src.constants.features import (
    DEFAULT_FEATURES,
    FeatureId,
    feature_display_name,
    parse_feature_id,
)
from src.entitlements.models import PlanEntitlements
from src.platform.errors import FeatureNotAvailableError

logger = logging.getLogger(__name__)


class FeatureGate:
    def __init__(self, default_features: Optional[Iterable[str]] = None):
        if default_features is None:
            self._defaults: FrozenSet[FeatureId] = DEFAULT_FEATURES
        else:
            parsed = [parse_feature_id(f) for f in default_features]
            self._defaults = frozenset(f for f in parsed if f is not None)

    @property
    def default_features(self) -> FrozenSet[FeatureId]:
        return self._defaults

    def enabled_features(self, plan: Optional[PlanEntitlements]) -> FrozenSet[FeatureId]:
        """Every feature the plan (or the default set) grants."""
        if plan is None or not plan.is_active:
            return self._defaults
        return plan.enabled_features()

    def has_feature(
        self,
        plan: Optional[PlanEntitlements],
        feature_id: str,
        is_super_admin: bool = False,
    ) -> bool:
        if is_super_admin:
            return True

        feature = parse_feature_id(feature_id)
        if feature is None:
            logger.warning("Feature check for unknown feature id", extra={"feature_id": feature_id})
            return False

        return feature in self.enabled_features(plan)

    def check_or_raise(
        self,
        plan: Optional[PlanEntitlements],
        feature_id: str,
        is_super_admin: bool = False,
    ) -> None:
        """
        Raises:
            FeatureNotAvailableError: If the plan does not include the feature
        """
        if self.has_feature(plan, feature_id, is_super_admin):
            return

        parsed = parse_feature_id(feature_id)
        canonical_id = parsed.value if parsed is not None else feature_id
        raise FeatureNotAvailableError(
            feature_id=canonical_id,
            feature_name=feature_display_name(feature_id),
            plan_id=plan.name if plan is not None else None,
        )
