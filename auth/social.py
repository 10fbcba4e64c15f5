"""External identity verification for social login.

The core never trusts a provider token it has not verified. Verifiers are
stateless: each one checks an RS256 ID token against the provider's JSON
Web Key Set for exactly one audience (OAuth client id). A provider with
several client ids (web, iOS, Android) gets an ordered list of verifiers
that are tried in sequence until one accepts the token.
"""

import logging
from typing import Iterable, Protocol

import jwt
from jwt.exceptions import PyJWKClientConnectionError, PyJWKClientError

from auth.exceptions import (
    ExternalIdentityError,
    IdentityProviderUnavailableError,
    InvalidRequestError,
)
from auth.types import ExternalIdentity

logger = logging.getLogger(__name__)

GOOGLE_JWKS_URL = "https://www.googleapis.com/oauth2/v3/certs"
GOOGLE_ISSUERS = ("https://accounts.google.com", "accounts.google.com")

APPLE_JWKS_URL = "https://appleid.apple.com/auth/keys"
APPLE_ISSUERS = ("https://appleid.apple.com",)

DEFAULT_NAMES = {"apple": "Apple User"}


class IdentityVerifier(Protocol):
    provider: str

    def verify(self, raw_token: str) -> ExternalIdentity:
        """Return the verified identity or raise ExternalIdentityError."""
        ...


class JWKSIdentityVerifier:
    """Verifies provider ID tokens for one audience using PyJWT's JWKS client."""

    def __init__(
        self,
        provider: str,
        jwks_url: str,
        issuers: Iterable[str],
        audience: str,
        jwks_client: jwt.PyJWKClient | None = None,
    ):
        self.provider = provider
        self.audience = audience
        self._issuers = list(issuers)
        self._jwks = jwks_client or jwt.PyJWKClient(jwks_url, cache_keys=True)

    def verify(self, raw_token: str) -> ExternalIdentity:
        try:
            signing_key = self._jwks.get_signing_key_from_jwt(raw_token)
        except PyJWKClientConnectionError as e:
            logger.error(f"{self.provider} key set fetch failed: {e}")
            raise IdentityProviderUnavailableError(f"{self.provider} keys unavailable") from e
        except (PyJWKClientError, jwt.DecodeError) as e:
            raise ExternalIdentityError(f"{self.provider} token rejected") from e

        try:
            payload = jwt.decode(
                raw_token,
                signing_key.key,
                algorithms=["RS256"],
                audience=self.audience,
                options={"require": ["sub", "exp", "iss", "aud"]},
            )
        except jwt.InvalidTokenError as e:
            raise ExternalIdentityError(
                f"{self.provider} token rejected: {type(e).__name__}"
            ) from e

        # Any of the provider's issuer spellings is accepted
        if payload["iss"] not in self._issuers:
            raise ExternalIdentityError(f"{self.provider} token rejected: InvalidIssuerError")

        email = payload.get("email")
        if not email:
            raise ExternalIdentityError(f"{self.provider} token carries no email")
        if payload.get("email_verified") in (False, "false"):
            raise ExternalIdentityError(f"{self.provider} email is not verified")

        return ExternalIdentity(
            provider=self.provider,
            email=email.strip().lower(),
            name=payload.get("name") or DEFAULT_NAMES.get(self.provider),
            subject_id=payload["sub"],
        )


class IdentityVerifierRegistry:
    """Ordered verifier candidates per provider."""

    def __init__(self, verifiers: Iterable[IdentityVerifier] = ()):
        self._verifiers: dict[str, list[IdentityVerifier]] = {}
        for verifier in verifiers:
            self.register(verifier)

    def register(self, verifier: IdentityVerifier) -> None:
        self._verifiers.setdefault(verifier.provider, []).append(verifier)

    @property
    def providers(self) -> list[str]:
        return list(self._verifiers)

    def verify(self, provider: str, raw_token: str) -> ExternalIdentity:
        """Try each candidate for the provider in order; first success wins.

        Raises:
            InvalidRequestError: Provider not configured.
            ExternalIdentityError: Every candidate rejected the token.
            IdentityProviderUnavailableError: A key set could not be fetched
                and no candidate accepted the token.
        """
        candidates = self._verifiers.get(provider)
        if not candidates:
            raise InvalidRequestError(f"Unsupported provider: {provider}")

        unavailable: IdentityProviderUnavailableError | None = None
        for verifier in candidates:
            try:
                return verifier.verify(raw_token)
            except ExternalIdentityError:
                continue
            except IdentityProviderUnavailableError as e:
                unavailable = e

        if unavailable is not None:
            raise unavailable
        raise ExternalIdentityError(f"{provider} token rejected")


def build_registry(client_ids: dict[str, list[str]]) -> IdentityVerifierRegistry:
    """Create Google/Apple verifiers, one per configured client id, in order."""
    registry = IdentityVerifierRegistry()
    endpoints = {
        "google": (GOOGLE_JWKS_URL, GOOGLE_ISSUERS),
        "apple": (APPLE_JWKS_URL, APPLE_ISSUERS),
    }
    for provider, audiences in client_ids.items():
        if provider not in endpoints:
            raise ValueError(f"Unknown social provider: {provider}")
        jwks_url, issuers = endpoints[provider]
        # One key-set client per provider, shared by its audiences
        jwks_client = jwt.PyJWKClient(jwks_url, cache_keys=True)
        for audience in audiences:
            registry.register(
                JWKSIdentityVerifier(provider, jwks_url, issuers, audience, jwks_client)
            )
    return registry
