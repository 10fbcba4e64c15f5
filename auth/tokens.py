"""Signed token minting and verification.

Access tokens are self-contained JWTs: validity is proven entirely by the
signature and the embedded expiry, with no server-side lookup. Refresh
tokens are signed too, but their only server-side meaning is as the lookup
key into the refresh_sessions table.
"""

import logging
import secrets
from datetime import datetime, timedelta
from uuid import UUID

import jwt

from auth.config import AuthConfig
from auth.exceptions import InvalidSignatureError, MalformedTokenError, TokenExpiredError
from auth.types import AccessTokenClaims, User
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


class TokenIssuer:
    """Mints and verifies HMAC-signed JWTs with a process-wide secret."""

    def __init__(self, secret: str, config: AuthConfig):
        if not secret:
            raise ValueError("signing secret is required")
        self._secret = secret
        self._config = config

    def access_token_expiry(self, issued_at: datetime) -> datetime:
        return issued_at + timedelta(minutes=self._config.access_token_expiry_minutes)

    def issue_access_token(self, user: User, issued_at: datetime | None = None) -> str:
        """Sign {sub, role, iat, exp} for the user."""
        iat = issued_at or now_utc()
        payload = {
            "sub": str(user.id),
            "role": user.role,
            "iat": iat,
            "exp": self.access_token_expiry(iat),
            "iss": self._config.jwt_issuer,
            "typ": ACCESS_TOKEN_TYPE,
        }
        return jwt.encode(payload, self._secret, algorithm=self._config.jwt_algorithm)

    def mint_refresh_token(self, user_id: UUID, expires_at: datetime) -> str:
        """Sign an opaque refresh value. The jti makes every value unique."""
        payload = {
            "sub": str(user_id),
            "jti": secrets.token_urlsafe(24),
            "iat": now_utc(),
            "exp": expires_at,
            "iss": self._config.jwt_issuer,
            "typ": REFRESH_TOKEN_TYPE,
        }
        return jwt.encode(payload, self._secret, algorithm=self._config.jwt_algorithm)

    def verify_access_token(self, token: str) -> AccessTokenClaims:
        """Verify signature, expiry, and shape of an access token.

        Raises:
            InvalidSignatureError: Signature does not match.
            TokenExpiredError: exp is in the past.
            MalformedTokenError: Not a JWT, wrong type, or missing claims.
        """
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._config.jwt_algorithm],
                issuer=self._config.jwt_issuer,
                options={"require": ["sub", "role", "iat", "exp", "typ"]},
            )
        except jwt.ExpiredSignatureError as e:
            raise TokenExpiredError("Access token has expired") from e
        except jwt.InvalidSignatureError as e:
            raise InvalidSignatureError("Access token signature is invalid") from e
        except jwt.InvalidTokenError as e:
            # DecodeError, MissingRequiredClaimError, InvalidIssuerError, ...
            raise MalformedTokenError(f"Access token is malformed: {type(e).__name__}") from e

        if payload.get("typ") != ACCESS_TOKEN_TYPE:
            raise MalformedTokenError("Token is not an access token")

        try:
            return AccessTokenClaims(
                sub=UUID(payload["sub"]),
                role=payload["role"],
                iat=payload["iat"],
                exp=payload["exp"],
            )
        except (ValueError, TypeError) as e:
            raise MalformedTokenError("Access token claims are malformed") from e
