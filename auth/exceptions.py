"""Typed exceptions for auth failures.

The taxonomy classes (InvalidRequestError, NotFoundError, ConflictError,
ExpiredError, AlreadyRevokedError, ForbiddenError, UnavailableError) are what
the HTTP layer maps to status codes. Specific failures inherit from one of
them so callers can catch either the precise error or its category.

Messages never include OTP codes, passwords, or token values.
"""

from uuid import UUID


class AuthError(Exception):
    """Base class for authentication/authorization errors."""


# Taxonomy


class InvalidRequestError(AuthError):
    """Input is missing or violates a business rule (4xx)."""


class NotFoundError(AuthError):
    """No matching account, session, challenge, or invitation."""


class ConflictError(AuthError):
    """Duplicate account or already-used invitation."""


class ExpiredError(AuthError):
    """OTP or token is past its TTL."""


class AlreadyRevokedError(AuthError):
    """Refresh token was already used or revoked (possible replay)."""


class ForbiddenError(AuthError):
    """Caller identity does not permit this operation."""


class UnavailableError(AuthError):
    """A dependency (storage, identity provider) failed."""


# Accounts


class AccountExistsError(ConflictError):
    """An account with this email already exists."""


class AccountNotFoundError(NotFoundError):
    """
    Email not associated with any account.

    Note: In user-facing responses, don't reveal whether email exists.
    """


class NotAllowedError(ForbiddenError):
    """State flag required for this transition is not set."""


class InvalidCredentialsError(AuthError):
    """Email/password combination is wrong."""


# OTP


class OtpRejectedError(AuthError):
    """Submitted passcode was not accepted."""


class OtpNotFoundError(OtpRejectedError, NotFoundError):
    """No passcode is pending for this account."""


class OtpMismatchError(OtpRejectedError, InvalidRequestError):
    """Submitted passcode does not match the pending one."""


class OtpExpiredError(OtpRejectedError, ExpiredError):
    """Pending passcode is past its expiry."""


# Access tokens


class InvalidTokenError(AuthError):
    """Access token failed verification."""


class InvalidSignatureError(InvalidTokenError):
    """Token signature does not match the signing key."""


class TokenExpiredError(InvalidTokenError, ExpiredError):
    """Token is past its exp claim."""


class MalformedTokenError(InvalidTokenError, InvalidRequestError):
    """Token cannot be decoded or lacks required claims."""


# Refresh sessions


class RefreshTokenRejectedError(AuthError):
    """
    Refresh token cannot be used.

    Callers should present the same rejection for every subclass; the
    subclass is kept for logging and theft detection only.
    """

    def __init__(self, message: str, user_id: UUID | None = None):
        self.user_id = user_id
        super().__init__(message)


class RefreshTokenNotFoundError(RefreshTokenRejectedError, NotFoundError):
    """No refresh session with this token exists."""


class RefreshTokenRevokedError(RefreshTokenRejectedError, AlreadyRevokedError):
    """Refresh session was already rotated or revoked."""


class RefreshTokenExpiredError(RefreshTokenRejectedError, ExpiredError):
    """Refresh session is past its expiry."""


# Invitations


class InvitationNotFoundError(NotFoundError):
    """No invitation with this token exists."""


class InvitationAlreadyAcceptedError(ConflictError):
    """Invitation token was already accepted."""


# External identity


class ExternalIdentityError(InvalidRequestError):
    """Provider token was rejected by every configured verifier."""


class IdentityProviderUnavailableError(UnavailableError):
    """Provider key set could not be fetched."""
