"""
Usage limit enforcer.

Compares a live count of a governed entity against the plan ceiling.

    max == -1              -> unlimited (current still reported)
    limit not configured   -> no ceiling, passes
    otherwise              -> within_limit = current < max

Counts come from the injected UsageCounter and are always live. The check
and the subsequent insert are not atomic: two concurrent creates can both
pass at current == max - 1. This is a soft limit; the overshoot is bounded
by request concurrency and is corrected on the next check.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from src.constants.features import UNLIMITED, LimitName, parse_limit_name
from src.entitlements.models import PlanEntitlements
from src.platform.errors import AccessEngineUnavailableError, UsageLimitExceededError
from src.repositories.usage_counter import UsageCounter

logger = logging.getLogger(__name__)

PlanProvider = Callable[[str], Optional[PlanEntitlements]]


@dataclass(frozen=True)
class LimitCheckResult:
    within_limit: bool
    current: int
    max: Optional[int]
    limit_type: str

    @property
    def unlimited(self) -> bool:
        return self.max is None or self.max == UNLIMITED

    def to_dict(self) -> dict:
        return {
            "withinLimit": self.within_limit,
            "current": self.current,
            "max": self.max,
            "limitType": self.limit_type,
        }


class UsageLimitEnforcer:
    """
    Usage:
        enforcer = UsageLimitEnforcer(counter, plan_for_tenant)
        result = enforcer.check(tenant_id, "maxVenues")
        enforcer.check_or_raise(tenant_id, "maxSpacesPerVenue", venue_id=venue_id)
    """

    def __init__(self, counter: UsageCounter, plan_for_tenant: PlanProvider):
        self._counter = counter
        self._plan_for_tenant = plan_for_tenant

    def check(
        self,
        tenant_id: str,
        limit_name: str,
        venue_id: Optional[str] = None,
        plan: Optional[PlanEntitlements] = None,
    ) -> LimitCheckResult:
        limit = parse_limit_name(limit_name) if not isinstance(limit_name, LimitName) else limit_name
        if limit is None:
            raise ValueError(f"Unknown limit name: {limit_name}")

        if plan is None:
            plan = self._plan_for_tenant(tenant_id)
        max_allowed = plan.get_limit(limit) if plan is not None and plan.is_active else None

        if max_allowed is None or max_allowed == UNLIMITED:
            current = self._best_effort_count(tenant_id, limit, venue_id)
            return LimitCheckResult(True, current, max_allowed, limit.value)

        current = self._counter.count(tenant_id, limit, venue_id)
        result = LimitCheckResult(current < max_allowed, current, max_allowed, limit.value)

        logger.debug(
            "Usage limit checked",
            extra={
                "tenant_id": tenant_id,
                "limit": limit.value,
                "venue_id": venue_id,
                "current": current,
                "max": max_allowed,
                "within_limit": result.within_limit,
            },
        )
        return result

    def check_or_raise(
        self,
        tenant_id: str,
        limit_name: str,
        venue_id: Optional[str] = None,
        plan: Optional[PlanEntitlements] = None,
    ) -> LimitCheckResult:
        """
        Raises:
            UsageLimitExceededError: If creating one more would exceed the plan
        """
        if plan is None:
            plan = self._plan_for_tenant(tenant_id)
        result = self.check(tenant_id, limit_name, venue_id, plan=plan)
        if not result.within_limit:
            logger.warning(
                "Usage limit reached",
                extra={
                    "tenant_id": tenant_id,
                    "limit": result.limit_type,
                    "current": result.current,
                    "max": result.max,
                },
            )
            raise UsageLimitExceededError(
                limit_type=result.limit_type,
                current=result.current,
                max_allowed=result.max,
                plan_id=plan.name if plan is not None else None,
            )
        return result

    def _best_effort_count(self, tenant_id: str, limit: LimitName, venue_id: Optional[str]) -> int:
        # Reporting only; an unlimited plan never fails because counting did
        if limit.is_per_venue and not venue_id:
            return 0
        try:
            return self._counter.count(tenant_id, limit, venue_id)
        except AccessEngineUnavailableError:
            logger.warning("Could not count usage for unlimited plan", extra={"tenant_id": tenant_id})
            return 0
