"""Global exception handlers for FastAPI."""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError
from starlette.responses import JSONResponse

from api.base import error_response, ErrorCodes
from auth.exceptions import (
    AlreadyRevokedError,
    AuthError,
    ConflictError,
    ExpiredError,
    ForbiddenError,
    InvalidCredentialsError,
    InvalidRequestError,
    InvalidTokenError,
    NotFoundError,
    OtpRejectedError,
    RefreshTokenRejectedError,
    UnavailableError,
)
from clients.postgres_client import PostgresUnavailableError

logger = logging.getLogger(__name__)


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def _describe_validation_errors(errors) -> str:
    """Field location, message and type only. Rejected input values are never echoed."""
    return "; ".join(
        f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg')} ({error.get('type')})"
        for error in errors
    )


# First match along the exception MRO wins. Rejected OTPs, refresh tokens,
# access tokens and credentials each get one uniform response, so the status
# code does not reveal which check failed.
AUTH_ERROR_STATUS: dict[type[AuthError], tuple[int, str]] = {
    OtpRejectedError: (400, ErrorCodes.INVALID_OTP),
    RefreshTokenRejectedError: (401, ErrorCodes.INVALID_TOKEN),
    InvalidTokenError: (401, ErrorCodes.INVALID_TOKEN),
    InvalidCredentialsError: (401, ErrorCodes.INVALID_CREDENTIALS),
    InvalidRequestError: (400, ErrorCodes.INVALID_REQUEST),
    NotFoundError: (404, ErrorCodes.NOT_FOUND),
    ConflictError: (409, ErrorCodes.ALREADY_EXISTS),
    ExpiredError: (401, ErrorCodes.TOKEN_EXPIRED),
    AlreadyRevokedError: (401, ErrorCodes.TOKEN_REVOKED),
    ForbiddenError: (403, ErrorCodes.FORBIDDEN),
    UnavailableError: (503, ErrorCodes.SERVICE_UNAVAILABLE),
}


def status_for(exc: AuthError) -> tuple[int, str]:
    """HTTP status and error code for a domain error."""
    for cls in type(exc).__mro__:
        if cls in AUTH_ERROR_STATUS:
            return AUTH_ERROR_STATUS[cls]
    return 400, ErrorCodes.INVALID_REQUEST


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the app."""

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError):
        status_code, code = status_for(exc)
        if status_code >= 500:
            logger.error(f"Dependency failure on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=status_code,
            content=error_response(code, str(exc), _request_id(request)).model_dump(mode="json"),
        )

    @app.exception_handler(PostgresUnavailableError)
    async def database_unavailable_handler(request: Request, exc: PostgresUnavailableError):
        logger.error(f"Database unavailable on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=503,
            content=error_response(
                ErrorCodes.SERVICE_UNAVAILABLE,
                "Service temporarily unavailable",
                _request_id(request),
            ).model_dump(mode="json"),
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        message = (
            _describe_validation_errors(exc.errors())
            if isinstance(exc, ValidationError)
            else str(exc)
        )
        return JSONResponse(
            status_code=400,
            content=error_response(
                ErrorCodes.INVALID_REQUEST,
                message,
                _request_id(request),
            ).model_dump(mode="json"),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422,
            content=error_response(
                ErrorCodes.VALIDATION_ERROR,
                _describe_validation_errors(exc.errors()),
                _request_id(request),
            ).model_dump(mode="json"),
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception")
        return JSONResponse(
            status_code=500,
            content=error_response(
                ErrorCodes.INTERNAL_ERROR,
                "An internal error occurred",
                _request_id(request),
            ).model_dump(mode="json"),
        )
