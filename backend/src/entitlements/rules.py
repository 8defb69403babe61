"""
Tenant status gate - lifecycle / billing status restrictions.

Pure classifier: (status, method, path, trial end, now) -> StatusVerdict.
No I/O, so the same inputs always give the same verdict.

    active                  -> full access
    trial, not yet ended    -> full access
    trial, ended            -> treated as past_due
    past_due                -> reads pass; writes need a billing route,
                               otherwise PAYMENT_REQUIRED (402)
    canceled                -> billing routes only, otherwise TENANT_CANCELED (403)
    suspended               -> TENANT_SUSPENDED (403); optionally a configured
                               support path stays readable

Read methods are GET, HEAD and OPTIONS.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, FrozenSet, Optional

from src.entitlements.models import AccessLevel
from src.models.tenant import TenantStatus, normalize_tenant_status
from src.platform.errors import (
    AccessControlError,
    AccessEngineUnavailableError,
    PaymentRequiredError,
    TenantCanceledError,
    TenantSuspendedError,
)

logger = logging.getLogger(__name__)

READ_METHODS: FrozenSet[str] = frozenset(["GET", "HEAD", "OPTIONS"])

PathClassifier = Callable[[str], bool]


def _never(path: str) -> bool:
    return False


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class StatusVerdict:
    allowed: bool
    access_level: AccessLevel
    status: Optional[TenantStatus] = None
    error: Optional[AccessControlError] = None

    def raise_if_denied(self) -> None:
        if not self.allowed and self.error is not None:
            raise self.error


def effective_status(
    status,
    trial_ends_at: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> TenantStatus:
    """
    Normalize the stored status and apply trial expiry.

    Raises:
        AccessEngineUnavailableError: If the stored status is not recognized
    """
    normalized = normalize_tenant_status(status)
    if normalized is None:
        raise AccessEngineUnavailableError(f"tenant has unrecognized status {status!r}")

    if normalized == TenantStatus.TRIAL and trial_ends_at is not None:
        now = _as_utc(now or datetime.now(timezone.utc))
        if now > _as_utc(trial_ends_at):
            return TenantStatus.PAST_DUE
    return normalized


class TenantStatusGate:
    """
    Usage:
        gate = TenantStatusGate(settings.is_billing_path, settings.is_support_read_path)
        verdict = gate.evaluate(tenant.status, request.method, request.url.path)
        verdict.raise_if_denied()
    """

    def __init__(
        self,
        is_billing_path: Optional[PathClassifier] = None,
        is_support_read_path: Optional[PathClassifier] = None,
    ):
        self._is_billing_path = is_billing_path or _never
        self._is_support_read_path = is_support_read_path or _never

    @classmethod
    def from_settings(cls, settings) -> "TenantStatusGate":
        return cls(settings.is_billing_path, settings.is_support_read_path)

    def evaluate(
        self,
        status,
        method: str,
        path: str,
        trial_ends_at: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> StatusVerdict:
        current = effective_status(status, trial_ends_at, now)
        is_read = (method or "").upper() in READ_METHODS

        if current in (TenantStatus.ACTIVE, TenantStatus.TRIAL):
            return StatusVerdict(True, AccessLevel.FULL, current)

        if current == TenantStatus.PAST_DUE:
            if self._is_billing_path(path):
                return StatusVerdict(True, AccessLevel.BILLING_ONLY, current)
            if is_read:
                return StatusVerdict(True, AccessLevel.READ_ONLY, current)
            return StatusVerdict(False, AccessLevel.READ_ONLY, current, PaymentRequiredError())

        if current == TenantStatus.CANCELED:
            if self._is_billing_path(path):
                return StatusVerdict(True, AccessLevel.BILLING_ONLY, current)
            return StatusVerdict(False, AccessLevel.BILLING_ONLY, current, TenantCanceledError())

        # suspended
        if is_read and self._is_support_read_path(path):
            return StatusVerdict(True, AccessLevel.SUPPORT_READ, current)
        return StatusVerdict(False, AccessLevel.NONE, current, TenantSuspendedError())
