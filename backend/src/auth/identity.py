"""
Identity resolution: credential -> ResolvedIdentity.

The resolver performs no store lookups. Signature checking is delegated to
an injected TokenVerifier (JWTTokenCodec by default) and expiry is checked
against an injectable clock.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

import jwt

from src.auth.jwt import AccessTokenClaims, TokenVerifier, parse_claims
from src.constants.permissions import Role, parse_role
from src.platform.errors import (
    AuthenticationError,
    CredentialRequiredError,
    ExpiredCredentialError,
    InvalidCredentialError,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ResolvedIdentity:
    """Immutable identity extracted from a verified credential."""

    user_id: str
    role: Optional[Role]
    expires_at: datetime
    tenant_claim: Optional[str] = None
    assumed_tenant_id: Optional[str] = None
    token_id: Optional[str] = None

    @property
    def is_super_admin(self) -> bool:
        return self.role == Role.SUPER_ADMIN

    @property
    def is_assumption(self) -> bool:
        return self.is_super_admin and self.assumed_tenant_id is not None


class IdentityResolver:
    """
    Turns a bearer credential into a ResolvedIdentity.

    Raises:
        CredentialRequiredError: no credential presented
        InvalidCredentialError: bad signature, malformed token, missing claims
        ExpiredCredentialError: well-formed but past exp
    """

    def __init__(self, verifier: TokenVerifier, clock: Optional[Clock] = None):
        self._verifier = verifier
        self._clock = clock or utc_now

    def resolve(self, credential: Optional[str]) -> ResolvedIdentity:
        if not credential:
            raise CredentialRequiredError()

        try:
            raw_claims = self._verifier(credential)
        except AuthenticationError:
            raise
        except jwt.ExpiredSignatureError as e:
            raise ExpiredCredentialError() from e
        except jwt.PyJWTError as e:
            raise InvalidCredentialError() from e

        claims = parse_claims(raw_claims)
        expires_at = claims.expiration_datetime
        if self._clock() >= expires_at:
            logger.info(
                "Rejected expired credential",
                extra={"user_id": claims.sub, "assumption": claims.assumption},
            )
            raise ExpiredCredentialError()

        return self._build_identity(claims, expires_at)

    def _build_identity(self, claims: AccessTokenClaims, expires_at: datetime) -> ResolvedIdentity:
        role = parse_role(claims.role)
        if claims.role and role is None:
            logger.warning("Credential carries unknown role", extra={"role": claims.role})
            raise InvalidCredentialError("Token carries an unknown role", {"reason": "invalid_claims"})

        assumed_tenant_id = claims.assumed_tenant_id
        if assumed_tenant_id is not None and role != Role.SUPER_ADMIN:
            # Only super admins can carry an assumption
            raise InvalidCredentialError("Token carries an invalid assumption", {"reason": "invalid_claims"})
        if assumed_tenant_id is not None and not claims.jti:
            raise InvalidCredentialError("Assumption token has no id", {"reason": "invalid_claims"})

        return ResolvedIdentity(
            user_id=claims.sub,
            role=role,
            expires_at=expires_at,
            tenant_claim=claims.tenant_id,
            assumed_tenant_id=assumed_tenant_id,
            token_id=claims.jti,
        )
