"""
Tests for identity resolution.

Test classes:
- TestBearerExtraction: Authorization header parsing
- TestJWTTokenCodec: signing and signature verification
- TestIdentityResolver: claims -> ResolvedIdentity and credential failures
- TestAssumedCredentialExpiry: 30-minute assumed credential around its expiry
"""

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from src.auth.identity import IdentityResolver, ResolvedIdentity
from src.auth.jwt import JWTTokenCodec, extract_bearer_token
from src.constants.permissions import Role
from src.platform.errors import (
    AuthenticationError,
    CredentialRequiredError,
    ExpiredCredentialError,
    InvalidCredentialError,
)

ISSUED_AT = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _fixed_clock(moment: datetime):
    return lambda: moment


def _claims(**overrides):
    claims = {
        "sub": "user-1",
        "iat": int(ISSUED_AT.timestamp()),
        "exp": int((ISSUED_AT + timedelta(minutes=15)).timestamp()),
    }
    claims.update(overrides)
    return claims


@pytest.fixture
def codec():
    return JWTTokenCodec("unit-test-secret-with-enough-length-1234")


@pytest.fixture
def resolver(codec):
    return IdentityResolver(codec, clock=_fixed_clock(ISSUED_AT + timedelta(minutes=1)))


class TestBearerExtraction:

    def test_extracts_token(self):
        assert extract_bearer_token("Bearer abc.def.ghi") == "abc.def.ghi"

    def test_scheme_is_case_insensitive(self):
        assert extract_bearer_token("bearer abc") == "abc"

    @pytest.mark.parametrize("header", [None, "", "Basic dXNlcjpwYXNz", "Bearer", "Bearer   "])
    def test_missing_or_other_scheme_returns_none(self, header):
        assert extract_bearer_token(header) is None


class TestJWTTokenCodec:

    def test_round_trip(self, codec):
        token = codec.encode(_claims(role="owner"))
        assert codec.verify(token)["role"] == "owner"

    def test_wrong_secret_is_invalid(self, codec):
        other = JWTTokenCodec("a-completely-different-secret-0000000")
        with pytest.raises(InvalidCredentialError):
            codec.verify(other.encode(_claims()))

    def test_expired_token_still_verifies_signature(self, codec):
        """Expiry is judged by the resolver's clock, not by the codec."""
        token = codec.encode(_claims(exp=int((ISSUED_AT - timedelta(days=1)).timestamp())))
        assert codec.verify(token)["sub"] == "user-1"

    def test_missing_exp_is_invalid(self, codec):
        claims = _claims()
        del claims["exp"]
        with pytest.raises(InvalidCredentialError):
            codec.verify(codec.encode(claims))

    def test_empty_secret_rejected(self):
        with pytest.raises(ValueError):
            JWTTokenCodec("")

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("JWT_SECRET", "env-secret-value-long-enough-for-hs256")
        monkeypatch.delenv("JWT_ALGORITHM", raising=False)
        codec = JWTTokenCodec.from_env()
        assert codec.algorithm == "HS256"
        assert codec.verify(codec.encode(_claims()))["sub"] == "user-1"


class TestIdentityResolver:

    def test_resolves_member_identity(self, codec, resolver):
        identity = resolver.resolve(codec.encode(_claims(role="manager", tenant_id="tenant-a")))

        assert isinstance(identity, ResolvedIdentity)
        assert identity.user_id == "user-1"
        assert identity.role == Role.MANAGER
        assert identity.tenant_claim == "tenant-a"
        assert identity.assumed_tenant_id is None
        assert identity.is_super_admin is False
        assert identity.expires_at == ISSUED_AT + timedelta(minutes=15)

    def test_role_claim_is_optional(self, codec, resolver):
        identity = resolver.resolve(codec.encode(_claims()))
        assert identity.role is None

    def test_legacy_user_id_claim(self, codec, resolver):
        claims = _claims(userId="legacy-user")
        del claims["sub"]
        assert resolver.resolve(codec.encode(claims)).user_id == "legacy-user"

    def test_no_credential(self, resolver):
        with pytest.raises(CredentialRequiredError) as exc_info:
            resolver.resolve(None)
        assert exc_info.value.error_code == "AUTH_REQUIRED"
        assert exc_info.value.http_status == 401

    @pytest.mark.parametrize("credential", ["not-a-jwt", "a.b.c", "Bearer"])
    def test_malformed_credential(self, resolver, credential):
        with pytest.raises(InvalidCredentialError) as exc_info:
            resolver.resolve(credential)
        assert exc_info.value.error_code == "INVALID_TOKEN"

    def test_bad_signature(self, resolver):
        forged = JWTTokenCodec("attacker-secret-attacker-secret-000000").encode(_claims(role="owner"))
        with pytest.raises(InvalidCredentialError):
            resolver.resolve(forged)

    def test_expired_is_distinct_from_invalid(self, codec):
        resolver = IdentityResolver(codec, clock=_fixed_clock(ISSUED_AT + timedelta(minutes=16)))
        with pytest.raises(ExpiredCredentialError) as exc_info:
            resolver.resolve(codec.encode(_claims()))

        error = exc_info.value
        assert error.error_code == "INVALID_TOKEN"
        assert error.details["reason"] == "token_expired"
        assert not isinstance(error, InvalidCredentialError)

    def test_exp_boundary_is_expired(self, codec):
        resolver = IdentityResolver(codec, clock=_fixed_clock(ISSUED_AT + timedelta(minutes=15)))
        with pytest.raises(ExpiredCredentialError):
            resolver.resolve(codec.encode(_claims()))

    def test_unknown_role_rejected(self, codec, resolver):
        with pytest.raises(InvalidCredentialError):
            resolver.resolve(codec.encode(_claims(role="emperor")))

    def test_assumption_on_non_super_admin_rejected(self, codec, resolver):
        token = codec.encode(_claims(role="owner", assumed_tenant_id="tenant-a", jti="abc"))
        with pytest.raises(InvalidCredentialError):
            resolver.resolve(token)

    def test_assumption_without_token_id_rejected(self, codec, resolver):
        token = codec.encode(_claims(role="super_admin", assumed_tenant_id="tenant-a"))
        with pytest.raises(InvalidCredentialError):
            resolver.resolve(token)

    def test_verifier_expired_signature_maps_to_expired(self):
        def verifier(token):
            raise jwt.ExpiredSignatureError("expired")

        with pytest.raises(ExpiredCredentialError):
            IdentityResolver(verifier).resolve("anything")

    def test_verifier_errors_are_authentication_errors(self):
        def verifier(token):
            raise jwt.DecodeError("bad")

        with pytest.raises(AuthenticationError):
            IdentityResolver(verifier).resolve("anything")

    def test_resolver_is_pure(self, codec, resolver):
        token = codec.encode(_claims(role="viewer"))
        assert resolver.resolve(token) == resolver.resolve(token)


class TestAssumedCredentialExpiry:
    """An assumed credential issued for 30 minutes, checked at +29 and +31."""

    @pytest.fixture
    def assumed_token(self, codec):
        return codec.encode(_claims(
            sub="admin-1",
            role="super_admin",
            assumed_tenant_id="tenant-a",
            assumption=True,
            jti="token-1",
            exp=int((ISSUED_AT + timedelta(minutes=30)).timestamp()),
        ))

    def test_valid_at_29_minutes(self, codec, assumed_token):
        resolver = IdentityResolver(codec, clock=_fixed_clock(ISSUED_AT + timedelta(minutes=29)))
        identity = resolver.resolve(assumed_token)

        assert identity.is_assumption
        assert identity.assumed_tenant_id == "tenant-a"
        assert identity.token_id == "token-1"

    def test_expired_at_31_minutes(self, codec, assumed_token):
        resolver = IdentityResolver(codec, clock=_fixed_clock(ISSUED_AT + timedelta(minutes=31)))
        with pytest.raises(ExpiredCredentialError):
            resolver.resolve(assumed_token)
