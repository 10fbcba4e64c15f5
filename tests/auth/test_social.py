"""Tests for external identity verification (social login)."""

from datetime import timedelta
from unittest.mock import Mock

import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from jwt.exceptions import PyJWKClientConnectionError, PyJWKClientError

from auth.exceptions import (
    ExternalIdentityError,
    IdentityProviderUnavailableError,
    InvalidRequestError,
)
from auth.social import (
    APPLE_ISSUERS,
    GOOGLE_ISSUERS,
    IdentityVerifierRegistry,
    JWKSIdentityVerifier,
    build_registry,
)
from utils.timezone import now_utc

WEB_CLIENT_ID = "web-client.apps.googleusercontent.com"
IOS_CLIENT_ID = "ios-client.apps.googleusercontent.com"


@pytest.fixture(scope="module")
def signing_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def jwks_client(signing_key):
    client = Mock(spec=jwt.PyJWKClient)
    client.get_signing_key_from_jwt.return_value = Mock(key=signing_key.public_key())
    return client


def _id_token(signing_key, audience=WEB_CLIENT_ID, issuer=GOOGLE_ISSUERS[0], **overrides):
    now = now_utc()
    claims = {
        "sub": "google-subject-1",
        "email": "Social.User@Example.com",
        "email_verified": True,
        "name": "Social User",
        "aud": audience,
        "iss": issuer,
        "iat": now,
        "exp": now + timedelta(minutes=5),
    }
    claims.update(overrides)
    claims = {k: v for k, v in claims.items() if v is not None}
    return jwt.encode(claims, signing_key, algorithm="RS256")


def _verifier(jwks_client, provider="google", audience=WEB_CLIENT_ID, issuers=GOOGLE_ISSUERS):
    return JWKSIdentityVerifier(provider, "https://keys.invalid", issuers, audience, jwks_client)


class TestJWKSIdentityVerifier:

    def test_valid_token(self, signing_key, jwks_client):
        identity = _verifier(jwks_client).verify(_id_token(signing_key))

        assert identity.provider == "google"
        assert identity.email == "social.user@example.com"
        assert identity.subject_id == "google-subject-1"
        assert identity.name == "Social User"

    def test_wrong_audience(self, signing_key, jwks_client):
        with pytest.raises(ExternalIdentityError):
            _verifier(jwks_client).verify(_id_token(signing_key, audience="someone-else"))

    def test_wrong_issuer(self, signing_key, jwks_client):
        with pytest.raises(ExternalIdentityError):
            _verifier(jwks_client).verify(_id_token(signing_key, issuer="https://evil.example"))

    def test_alternate_issuer_spelling(self, signing_key, jwks_client):
        token = _id_token(signing_key, issuer=GOOGLE_ISSUERS[1])

        assert _verifier(jwks_client).verify(token).subject_id == "google-subject-1"

    def test_issuer_checked_against_whole_list(self, signing_key, jwks_client):
        """Both spellings verify and anything else is rejected, whatever PyJWT version."""
        verifier = _verifier(jwks_client)
        for issuer in GOOGLE_ISSUERS:
            assert verifier.verify(_id_token(signing_key, issuer=issuer)).provider == "google"
        with pytest.raises(ExternalIdentityError):
            verifier.verify(_id_token(signing_key, issuer=APPLE_ISSUERS[0]))

    def test_expired(self, signing_key, jwks_client):
        token = _id_token(signing_key, exp=now_utc() - timedelta(minutes=1))
        with pytest.raises(ExternalIdentityError):
            _verifier(jwks_client).verify(token)

    def test_wrong_key(self, jwks_client):
        other_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        with pytest.raises(ExternalIdentityError):
            _verifier(jwks_client).verify(_id_token(other_key))

    def test_missing_email(self, signing_key, jwks_client):
        with pytest.raises(ExternalIdentityError):
            _verifier(jwks_client).verify(_id_token(signing_key, email=None))

    def test_unverified_email(self, signing_key, jwks_client):
        with pytest.raises(ExternalIdentityError):
            _verifier(jwks_client).verify(_id_token(signing_key, email_verified=False))

    def test_apple_string_flag_and_default_name(self, signing_key, jwks_client):
        token = _id_token(
            signing_key,
            audience="com.fitbizz.app",
            issuer=APPLE_ISSUERS[0],
            name=None,
            email_verified="true",
        )
        identity = _verifier(
            jwks_client, provider="apple", audience="com.fitbizz.app", issuers=APPLE_ISSUERS
        ).verify(token)

        assert identity.name == "Apple User"

    def test_key_set_unreachable(self, signing_key, jwks_client):
        jwks_client.get_signing_key_from_jwt.side_effect = PyJWKClientConnectionError("timeout")
        with pytest.raises(IdentityProviderUnavailableError):
            _verifier(jwks_client).verify(_id_token(signing_key))

    def test_unknown_key_id(self, signing_key, jwks_client):
        jwks_client.get_signing_key_from_jwt.side_effect = PyJWKClientError("no matching kid")
        with pytest.raises(ExternalIdentityError):
            _verifier(jwks_client).verify(_id_token(signing_key))


class TestIdentityVerifierRegistry:

    def test_falls_through_to_matching_audience(self, signing_key, jwks_client):
        registry = IdentityVerifierRegistry([
            _verifier(jwks_client, audience=WEB_CLIENT_ID),
            _verifier(jwks_client, audience=IOS_CLIENT_ID),
        ])

        identity = registry.verify("google", _id_token(signing_key, audience=IOS_CLIENT_ID))

        assert identity.subject_id == "google-subject-1"

    def test_all_reject(self, signing_key, jwks_client):
        registry = IdentityVerifierRegistry([_verifier(jwks_client)])
        with pytest.raises(ExternalIdentityError):
            registry.verify("google", _id_token(signing_key, audience="nobody"))

    def test_unsupported_provider(self):
        with pytest.raises(InvalidRequestError):
            IdentityVerifierRegistry().verify("facebook", "token")

    def test_unavailable_when_nothing_accepted(self, signing_key, jwks_client):
        broken = Mock(spec=jwt.PyJWKClient)
        broken.get_signing_key_from_jwt.side_effect = PyJWKClientConnectionError("down")
        registry = IdentityVerifierRegistry([
            _verifier(broken, audience=WEB_CLIENT_ID),
            _verifier(jwks_client, audience=IOS_CLIENT_ID),
        ])

        with pytest.raises(IdentityProviderUnavailableError):
            registry.verify("google", _id_token(signing_key, audience="nobody"))

    def test_success_after_unavailable(self, signing_key, jwks_client):
        broken = Mock(spec=jwt.PyJWKClient)
        broken.get_signing_key_from_jwt.side_effect = PyJWKClientConnectionError("down")
        registry = IdentityVerifierRegistry([
            _verifier(broken, audience=WEB_CLIENT_ID),
            _verifier(jwks_client, audience=IOS_CLIENT_ID),
        ])

        identity = registry.verify("google", _id_token(signing_key, audience=IOS_CLIENT_ID))

        assert identity.provider == "google"


class TestBuildRegistry:

    def test_one_verifier_per_client_id(self):
        registry = build_registry({"google": [WEB_CLIENT_ID, IOS_CLIENT_ID], "apple": ["com.fitbizz.app"]})
        assert registry.providers == ["google", "apple"]

    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            build_registry({"myspace": ["x"]})
