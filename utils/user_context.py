"""Propagate the authenticated caller's identity using contextvars."""

from contextvars import ContextVar
from uuid import UUID
from contextlib import contextmanager

_current_user_id: ContextVar[UUID | None] = ContextVar("current_user_id", default=None)


def get_current_user_id() -> UUID:
    """
    Get the authenticated user ID from context.

    Raises RuntimeError if no user context is set. Sensitive operations
    (account deletion) must never run without a verified caller identity.
    """
    user_id = _current_user_id.get()
    if user_id is None:
        raise RuntimeError(
            "No user context set. This usually means you're calling "
            "caller-scoped code outside of an authenticated request."
        )
    return user_id


def peek_current_user_id() -> UUID | None:
    """Return the current user ID, or None when unauthenticated."""
    return _current_user_id.get()


def set_current_user_id(user_id: UUID) -> None:
    """
    Set current user ID in context.

    Called by the bearer token middleware after validating an access token.
    """
    _current_user_id.set(user_id)


def clear_current_user_id() -> None:
    """
    Clear user context.

    Must be called in a finally block to prevent context leakage between requests.
    """
    _current_user_id.set(None)


@contextmanager
def user_context(user_id: UUID):
    """
    Context manager for temporarily setting user context.

    Example:
        with user_context(caller_id):
            service.request_account_deletion(caller_id, email)
    """
    previous = _current_user_id.get()
    set_current_user_id(user_id)
    try:
        yield
    finally:
        if previous is None:
            clear_current_user_id()
        else:
            set_current_user_id(previous)
