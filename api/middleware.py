"""Request-scoped middleware for API requests."""

from uuid import UUID, uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

REQUEST_ID_HEADER = "X-Request-ID"


def _inbound_request_id(request: Request) -> str | None:
    """Caller-supplied request ID, accepted only when it is a UUID."""
    value = request.headers.get(REQUEST_ID_HEADER)
    if not value:
        return None
    try:
        return str(UUID(value))
    except ValueError:
        return None


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Tags every request with an ID, reusing a well-formed one from the caller.

    Mobile clients send their own ID so a failed refresh or signup can be
    matched against server logs.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = _inbound_request_id(request) or str(uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
