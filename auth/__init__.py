"""Authentication, credential and session lifecycle modules."""

from auth.exceptions import (
    AuthError,
    InvalidRequestError,
    NotFoundError,
    ConflictError,
    ExpiredError,
    AlreadyRevokedError,
    ForbiddenError,
    UnavailableError,
)
from auth.types import (
    User,
    PublicUser,
    RefreshSession,
    TokenPair,
    AuthenticatedUser,
    Invitation,
    OtpPurpose,
)
from auth.config import AuthConfig
from auth.store import AuthStore
from auth.database import PostgresAuthStore
from auth.memory_store import MemoryAuthStore
from auth.security_logger import SecurityLogger, SecurityEvent
from auth.otp import OtpManager
from auth.tokens import TokenIssuer
from auth.refresh import RefreshSessionManager
from auth.service import AccountService, SignupResult, CascadeResult
from auth.invitations import InvitationService
from auth.sweeper import SessionSweeper
from auth.security_middleware import AuthMiddleware
from auth.api import create_auth_router, create_invitation_router
