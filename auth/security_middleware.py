"""Security middleware for FastAPI - bearer access token validation and user context."""

import logging

from fastapi import HTTPException, Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from auth.exceptions import InvalidTokenError, TokenExpiredError
from auth.tokens import TokenIssuer
from api.base import error_response, ErrorCodes
from utils.user_context import set_current_user_id, clear_current_user_id

logger = logging.getLogger(__name__)


class AuthMiddleware(BaseHTTPMiddleware):
    """Middleware that validates the access token and sets user context.

    For protected routes:
    1. Extracts the JWT from the 'Authorization: Bearer' header
    2. Verifies signature, expiry and claims via TokenIssuer
    3. Sets user_id and role in request.state and the user context
    4. Clears context after request completes

    Access tokens are stateless: no storage lookup happens here. Public
    paths bypass authentication entirely.
    """

    PUBLIC_PATHS = [
        "/auth/signup",
        "/auth/resend-signup-otp",
        "/auth/verify-otp-signup",
        "/auth/create-password",
        "/auth/signin",
        "/auth/forgot-password",
        "/auth/verify-otp-forgot-password",
        "/auth/reset-password",
        "/auth/refresh-token",
        "/auth/logout",
        "/auth/social-login",
        "/invitations/accept",
        "/health",
        "/docs",
        "/openapi.json",
    ]

    def __init__(self, app, token_issuer: TokenIssuer):
        super().__init__(app)
        self._token_issuer = token_issuer

    def _is_public_path(self, path: str) -> bool:
        """Check if path is in public paths list."""
        for public_path in self.PUBLIC_PATHS:
            if path == public_path or path.startswith(public_path + "/"):
                return True
        return False

    @staticmethod
    def _unauthorized(request: Request, code: str, message: str) -> JSONResponse:
        request_id = getattr(request.state, "request_id", None)
        return JSONResponse(
            status_code=401,
            headers={"WWW-Authenticate": "Bearer"},
            content=error_response(code, message, request_id).model_dump(mode="json"),
        )

    async def dispatch(self, request: Request, call_next):
        """Process request through middleware."""
        path = request.url.path

        # Skip auth for public paths
        if self._is_public_path(path):
            return await call_next(request)

        header = request.headers.get("Authorization", "")
        scheme, _, token = header.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            return self._unauthorized(request, ErrorCodes.NOT_AUTHENTICATED, "Authentication required")

        try:
            claims = self._token_issuer.verify_access_token(token.strip())
        except TokenExpiredError:
            return self._unauthorized(request, ErrorCodes.TOKEN_EXPIRED, "Access token has expired")
        except InvalidTokenError as e:
            logger.info(f"Rejected access token on {path}: {type(e).__name__}")
            return self._unauthorized(request, ErrorCodes.INVALID_TOKEN, "Invalid access token")

        set_current_user_id(claims.sub)
        request.state.user_id = claims.sub
        request.state.role = claims.role

        try:
            response = await call_next(request)
            return response
        finally:
            # Always clear context
            clear_current_user_id()


def require_roles(*roles: str):
    """FastAPI dependency restricting a route to the given roles."""

    def dependency(request: Request) -> None:
        role = getattr(request.state, "role", None)
        if role is None:
            raise HTTPException(status_code=401, detail="Authentication required")
        if role not in roles:
            raise HTTPException(status_code=403, detail="Insufficient role")

    return dependency
