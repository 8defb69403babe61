"""
Access token claims and the default HS256 codec.

This module provides:
- AccessTokenClaims: pydantic model of the claims the engine reads
- JWTTokenCodec: PyJWT-backed signer/verifier (HS256 by default)
- extract_bearer_token: Authorization header parsing

Claims used:
- sub: user id (legacy tokens: userId)
- role: role claim, "super_admin" for platform operators
- tenant_id: optional tenant hint for users with several memberships
- assumed_tenant_id: set only on assumed-tenant credentials
- assumption: true on assumed-tenant credentials
- jti: token id, required on assumed-tenant credentials
- exp / iat: unix timestamps

The codec verifies the signature only. Expiry is checked by IdentityResolver
against an injectable clock so it can be tested without sleeping.
"""

import os
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import jwt
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from src.platform.errors import InvalidCredentialError

logger = logging.getLogger(__name__)

DEFAULT_ALGORITHM = "HS256"

# A verifier takes the raw credential and returns its claims, raising an
# AuthenticationError subclass when the signature or format is bad.
TokenVerifier = Callable[[str], Dict[str, Any]]


class AccessTokenClaims(BaseModel):
    sub: str = Field(..., validation_alias=AliasChoices("sub", "userId", "user_id"))
    exp: int = Field(..., description="Expiration timestamp (Unix)")
    iat: Optional[int] = Field(None, description="Issued at timestamp (Unix)")
    jti: Optional[str] = Field(None, description="Token id")

    role: Optional[str] = Field(None, description="Role claim")
    tenant_id: Optional[str] = Field(
        None, validation_alias=AliasChoices("tenant_id", "tenantId")
    )
    assumed_tenant_id: Optional[str] = Field(
        None, validation_alias=AliasChoices("assumed_tenant_id", "assumedTenantId")
    )
    assumption: bool = Field(False, description="True on assumed-tenant credentials")

    model_config = ConfigDict(extra="allow")

    @property
    def expiration_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.exp, tz=timezone.utc)


def parse_claims(raw_claims: Dict[str, Any]) -> AccessTokenClaims:
    """
    Parse verified claims into AccessTokenClaims.

    Raises:
        InvalidCredentialError: If required claims are missing or mistyped
    """
    try:
        return AccessTokenClaims.model_validate(raw_claims)
    except ValidationError as e:
        raise InvalidCredentialError(
            "Token is missing required claims",
            {"reason": "invalid_claims"},
        ) from e


class JWTTokenCodec:
    """
    Signs and verifies access tokens with a shared secret.

    Usage:
        codec = JWTTokenCodec.from_env()
        token = codec.encode({"sub": user_id, "exp": exp})
        claims = codec.verify(token)
    """

    def __init__(self, secret: str, algorithm: str = DEFAULT_ALGORITHM):
        if not secret:
            raise ValueError("JWT secret must be configured")
        self._secret = secret
        self.algorithm = algorithm

    @classmethod
    def from_env(cls) -> "JWTTokenCodec":
        """Build from JWT_SECRET / JWT_ALGORITHM."""
        return cls(
            secret=os.getenv("JWT_SECRET", ""),
            algorithm=os.getenv("JWT_ALGORITHM", DEFAULT_ALGORITHM),
        )

    def encode(self, claims: Dict[str, Any]) -> str:
        return jwt.encode(claims, self._secret, algorithm=self.algorithm)

    def verify(self, token: str) -> Dict[str, Any]:
        try:
            return jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                options={"verify_exp": False, "require": ["exp"]},
            )
        except jwt.PyJWTError as e:
            logger.debug("Token verification failed", extra={"error": type(e).__name__})
            raise InvalidCredentialError() from e

    def __call__(self, token: str) -> Dict[str, Any]:
        return self.verify(token)


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Return the token from an "Authorization: Bearer <token>" header value."""
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = token.strip()
    return token or None
