"""Account lifecycle service - orchestrates OTP-gated auth flows.

Flows are orthogonal state machines on one account:

- Signup: create (unverified) -> OTP -> verify -> verified + tokens.
  Two variants, chosen by AuthConfig.signup_mode: password at signup, or
  password deferred until after verification (create_password).
- Password reset: OTP -> verify grants can_reset_password -> reset consumes it.
- Account deletion: OTP to the caller's own email -> verify -> cascade delete.
- Social login: verified provider identity -> create, or link on first login.

All flows share the account's single OTP slot.
"""

import logging
from dataclasses import dataclass
from uuid import UUID

from auth.config import AuthConfig
from auth.exceptions import (
    AccountExistsError,
    AccountNotFoundError,
    ForbiddenError,
    InvalidCredentialsError,
    InvalidRequestError,
    NotAllowedError,
    OtpNotFoundError,
    OtpRejectedError,
    RefreshTokenRejectedError,
    RefreshTokenRevokedError,
)
from auth.otp import OtpManager
from auth.passwords import PasswordHasher
from auth.refresh import RefreshSessionManager
from auth.security_logger import SecurityLogger, SecurityEvent
from auth.social import IdentityVerifierRegistry
from auth.store import AuthStore
from auth.types import AuthenticatedUser, OtpPurpose, PublicUser, TokenPair, User
from clients.email_client import EmailGatewayClient, EmailGatewayError

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


@dataclass
class SignupResult:
    """Result of a signup request."""

    user: PublicUser
    otp_sent: bool


@dataclass
class CascadeResult:
    """Outcome of account deletion and its dependent-record cleanup."""

    sessions_deleted: int
    invitations_deleted: int
    account_deleted: bool


class AccountService:
    """Orchestrates OTP-gated account transitions and credential issuance."""

    def __init__(
        self,
        config: AuthConfig,
        store: AuthStore,
        otp_manager: OtpManager,
        refresh_manager: RefreshSessionManager,
        password_hasher: PasswordHasher,
        email_client: EmailGatewayClient,
        security_logger: SecurityLogger,
        identity_verifiers: IdentityVerifierRegistry,
    ):
        self._config = config
        self._store = store
        self._otp = otp_manager
        self._sessions = refresh_manager
        self._passwords = password_hasher
        self._email_client = email_client
        self._security_logger = security_logger
        self._identity_verifiers = identity_verifiers

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _resolve_role(self, role: str | None) -> str:
        if role is None:
            return self._config.default_role
        if role not in self._config.self_service_roles:
            raise InvalidRequestError(f"Role '{role}' cannot be self-assigned")
        return role

    def _issue_and_send_otp(self, user: User, purpose: OtpPurpose) -> bool:
        """Issue a code and email it.

        Delivery failure does not roll back issuance: the code stays valid so
        the user can ask for a resend. Returns whether the email went out.
        """
        code = self._otp.issue(user, purpose)
        self._security_logger.log(
            SecurityEvent.OTP_ISSUED,
            email=user.email,
            user_id=user.id,
            details={"purpose": purpose.value},
        )

        try:
            self._email_client.send_otp(email=user.email, code=code, purpose=purpose.value)
        except EmailGatewayError as e:
            logger.warning(f"OTP delivery failed for user {user.id}: {e}")
            self._security_logger.log(
                SecurityEvent.OTP_DELIVERY_FAILED,
                email=user.email,
                user_id=user.id,
                details={"purpose": purpose.value},
            )
            return False
        return True

    def _require_otp(self, user: User, otp: str, purpose: OtpPurpose) -> None:
        try:
            self._otp.require(user, otp)
        except OtpRejectedError as e:
            self._security_logger.log(
                SecurityEvent.OTP_REJECTED,
                email=user.email,
                user_id=user.id,
                details={"purpose": purpose.value, "reason": type(e).__name__},
            )
            raise

    def _authenticated(self, user: User) -> AuthenticatedUser:
        return AuthenticatedUser(
            user=PublicUser.from_user(user),
            tokens=self._sessions.issue_pair(user),
        )

    def _reload(self, user_id: UUID) -> User:
        user = self._store.get_user_by_id(user_id)
        if user is None:
            raise AccountNotFoundError("Account no longer exists")
        return user

    # ------------------------------------------------------------------
    # Signup
    # ------------------------------------------------------------------

    def signup(
        self,
        email: str,
        password: str | None = None,
        role: str | None = None,
    ) -> SignupResult:
        """Create an unverified account and send the signup OTP.

        Raises:
            InvalidRequestError: Password missing (password_at_signup mode),
                present (deferred_password mode), or role not self-assignable.
            AccountExistsError: Email already registered.
        """
        email = normalize_email(email)
        resolved_role = self._resolve_role(role)

        if self._config.signup_mode == "password_at_signup":
            if not password:
                raise InvalidRequestError("Email and password are required")
            password_hash = self._passwords.hash(password)
        else:
            if password:
                raise InvalidRequestError("Password is set after email verification")
            password_hash = None

        if self._store.get_user_by_email(email) is not None:
            raise AccountExistsError("An account with this email already exists")

        user = self._store.create_user(email, role=resolved_role, password_hash=password_hash)
        self._security_logger.log(
            SecurityEvent.SIGNUP_STARTED,
            email=user.email,
            user_id=user.id,
            details={"mode": self._config.signup_mode},
        )

        sent = self._issue_and_send_otp(user, OtpPurpose.SIGNUP)
        return SignupResult(user=PublicUser.from_user(user), otp_sent=sent)

    def resend_signup_otp(self, email: str) -> bool:
        """Overwrite the pending signup OTP with a new one.

        Raises:
            InvalidRequestError: Account absent or already verified.
        """
        user = self._store.get_user_by_email(normalize_email(email))
        if user is None or user.is_verified:
            raise InvalidRequestError("Invalid request")
        return self._issue_and_send_otp(user, OtpPurpose.SIGNUP)

    def verify_signup_otp(self, email: str, otp: str) -> AuthenticatedUser:
        """Verify the signup OTP, activate the account, and issue tokens.

        Raises:
            InvalidRequestError: Account absent or already verified.
            OtpRejectedError: Code missing, wrong, or expired.
        """
        user = self._store.get_user_by_email(normalize_email(email))
        if user is None or user.is_verified:
            raise InvalidRequestError("Invalid or already verified")

        self._require_otp(user, otp, OtpPurpose.SIGNUP)

        verified = self._store.mark_verified(
            user.id,
            allow_password_creation=self._config.signup_mode == "deferred_password",
        )
        if verified is None:
            raise AccountNotFoundError("Account no longer exists")

        self._security_logger.log(
            SecurityEvent.SIGNUP_VERIFIED, email=verified.email, user_id=verified.id
        )
        return self._authenticated(verified)

    def create_password(self, email: str, new_password: str) -> AuthenticatedUser:
        """Set the first password on a verified, password-less account.

        Raises:
            NotAllowedError: Account absent, unverified, or already has a password.
        """
        user = self._store.get_user_by_email(normalize_email(email))
        if user is None or not user.is_verified or user.has_password:
            raise NotAllowedError(
                "Invalid request. Either user not found, not verified, or password already set"
            )

        if not self._store.create_first_password(user.id, self._passwords.hash(new_password)):
            raise NotAllowedError("Password already set")

        self._security_logger.log(
            SecurityEvent.PASSWORD_CREATED, email=user.email, user_id=user.id
        )
        return self._authenticated(self._reload(user.id))

    # ------------------------------------------------------------------
    # Signin
    # ------------------------------------------------------------------

    def signin(
        self,
        email: str,
        password: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuthenticatedUser:
        """Authenticate with email and password.

        Raises:
            ForbiddenError: Account absent or unverified.
            InvalidCredentialsError: Wrong password, or no password set.
        """
        email = normalize_email(email)
        user = self._store.get_user_by_email(email)
        if user is None or not user.is_verified:
            self._security_logger.log(
                SecurityEvent.SIGNIN_FAILED,
                email=email,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"reason": "unknown_or_unverified"},
            )
            raise ForbiddenError("Invalid or unverified user")

        if not self._passwords.verify(password, user.password_hash):
            self._security_logger.log(
                SecurityEvent.SIGNIN_FAILED,
                email=user.email,
                user_id=user.id,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"reason": "bad_password"},
            )
            raise InvalidCredentialsError("Incorrect password")

        self._security_logger.log(
            SecurityEvent.SIGNIN_SUCCEEDED,
            email=user.email,
            user_id=user.id,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        return self._authenticated(user)

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def forgot_password(self, email: str) -> None:
        """Send a reset OTP if the account exists.

        Returns the same (nothing) whether or not the account exists, so the
        response cannot be used to enumerate accounts.
        """
        user = self._store.get_user_by_email(normalize_email(email))
        if user is None:
            logger.info("Password reset requested for unknown email")
            return
        self._issue_and_send_otp(user, OtpPurpose.FORGOT_PASSWORD)

    def verify_forgot_password_otp(self, email: str, otp: str) -> None:
        """Verify the reset OTP and grant a single password reset.

        Raises:
            OtpRejectedError: Account absent, or code missing, wrong, or expired.
        """
        user = self._store.get_user_by_email(normalize_email(email))
        if user is None:
            raise OtpNotFoundError("Invalid or expired OTP")

        self._require_otp(user, otp, OtpPurpose.FORGOT_PASSWORD)
        self._store.grant_password_reset(user.id)

        self._security_logger.log(
            SecurityEvent.PASSWORD_RESET_GRANTED, email=user.email, user_id=user.id
        )

    def reset_password(self, email: str, new_password: str) -> None:
        """Replace the password, consuming the reset permission.

        Raises:
            NotAllowedError: No prior successful reset OTP verification.
        """
        user = self._store.get_user_by_email(normalize_email(email))
        if user is None or not user.can_reset_password:
            self._security_logger.log(
                SecurityEvent.PASSWORD_RESET_DENIED,
                email=normalize_email(email),
                user_id=user.id if user else None,
            )
            raise NotAllowedError("Reset not allowed")

        if not self._store.reset_password(user.id, self._passwords.hash(new_password)):
            # Permission consumed by a concurrent reset
            raise NotAllowedError("Reset not allowed")

        self._security_logger.log(
            SecurityEvent.PASSWORD_RESET, email=user.email, user_id=user.id
        )

    # ------------------------------------------------------------------
    # Refresh sessions
    # ------------------------------------------------------------------

    def refresh(
        self,
        refresh_token: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> TokenPair:
        """Rotate a refresh token into a new access + refresh pair.

        Raises:
            RefreshTokenRejectedError: Token unknown, already used, or expired.
        """
        try:
            pair = self._sessions.rotate(refresh_token)
        except RefreshTokenRevokedError as e:
            # A revoked token being presented again means it was copied
            self._security_logger.log(
                SecurityEvent.REFRESH_TOKEN_REPLAYED,
                user_id=e.user_id,
                ip_address=ip_address,
                user_agent=user_agent,
            )
            raise
        except RefreshTokenRejectedError as e:
            self._security_logger.log(
                SecurityEvent.REFRESH_TOKEN_REJECTED,
                user_id=e.user_id,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"reason": type(e).__name__},
            )
            raise

        self._security_logger.log(
            SecurityEvent.REFRESH_TOKEN_ROTATED,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        return pair

    def logout(self, refresh_token: str, ip_address: str | None = None) -> None:
        """Revoke a refresh token. Repeating logout for the same token is not an error.

        Raises:
            RefreshTokenNotFoundError: Token never existed.
        """
        if self._sessions.revoke(refresh_token):
            self._security_logger.log(SecurityEvent.SESSION_REVOKED, ip_address=ip_address)

    # ------------------------------------------------------------------
    # Account deletion
    # ------------------------------------------------------------------

    def _require_own_account(self, caller_user_id: UUID, email: str) -> User:
        """The target email must be the authenticated caller's own."""
        caller = self._store.get_user_by_id(caller_user_id)
        if caller is None or caller.email != normalize_email(email):
            self._security_logger.log(
                SecurityEvent.ACCOUNT_DELETION_FORBIDDEN,
                email=normalize_email(email),
                user_id=caller_user_id,
            )
            raise ForbiddenError("You can only delete your own account")
        if not caller.is_verified:
            raise AccountNotFoundError("User not found")
        return caller

    def request_account_deletion(self, caller_user_id: UUID, email: str) -> bool:
        """Send an account-deletion OTP to the caller's own email.

        Raises:
            ForbiddenError: Email is not the caller's.
            AccountNotFoundError: Account is not verified.
        """
        user = self._require_own_account(caller_user_id, email)
        sent = self._issue_and_send_otp(user, OtpPurpose.ACCOUNT_DELETION)
        self._security_logger.log(
            SecurityEvent.ACCOUNT_DELETION_REQUESTED, email=user.email, user_id=user.id
        )
        return sent

    def verify_account_deletion(
        self,
        caller_user_id: UUID,
        email: str,
        otp: str,
        ip_address: str | None = None,
    ) -> CascadeResult:
        """Verify the deletion OTP, then delete the account and everything it owns.

        Sessions and sent invitations are removed before the account row, in
        one storage transaction. A storage failure is logged and re-raised;
        the account is not considered deleted unless the cascade completed.

        Raises:
            ForbiddenError: Email is not the caller's.
            OtpRejectedError: Code missing, wrong, or expired.
        """
        user = self._require_own_account(caller_user_id, email)
        self._require_otp(user, otp, OtpPurpose.ACCOUNT_DELETION)

        try:
            sessions_deleted, invitations_deleted, account_deleted = (
                self._store.delete_user_cascade(user.id)
            )
        except Exception:
            logger.exception(f"Account deletion cascade failed for user {user.id}")
            raise

        if not account_deleted:
            raise AccountNotFoundError("Account no longer exists")

        result = CascadeResult(
            sessions_deleted=sessions_deleted,
            invitations_deleted=invitations_deleted,
            account_deleted=account_deleted,
        )
        self._security_logger.log(
            SecurityEvent.ACCOUNT_DELETED,
            email=user.email,
            user_id=user.id,
            ip_address=ip_address,
            details={
                "sessions_deleted": sessions_deleted,
                "invitations_deleted": invitations_deleted,
            },
        )
        return result

    # ------------------------------------------------------------------
    # Social login
    # ------------------------------------------------------------------

    def social_login(
        self,
        provider: str,
        raw_token: str,
        role: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuthenticatedUser:
        """Sign in with a provider ID token, creating or linking the account.

        Any account reachable by email is linkable by a matching verified
        external identity, without re-authentication. Linking also marks the
        account verified.

        Raises:
            InvalidRequestError: Provider unsupported or role not self-assignable.
            ExternalIdentityError: Token rejected by every verifier.
            IdentityProviderUnavailableError: Provider keys unreachable.
        """
        identity = self._identity_verifiers.verify(provider, raw_token)
        resolved_role = self._resolve_role(role)

        user = self._store.get_user_by_email(identity.email)
        if user is None:
            try:
                user = self._store.create_user(
                    identity.email,
                    role=resolved_role,
                    is_verified=True,
                    name=identity.name,
                    provider=identity.provider,
                    provider_subject_id=identity.subject_id,
                )
            except AccountExistsError:
                # Created concurrently; fall through to the linking path
                user = self._store.get_user_by_email(identity.email)
                if user is None:
                    raise

        if user.provider_subject_id is None:
            if self._store.link_provider(
                user.id, identity.provider, identity.subject_id, identity.name
            ):
                self._security_logger.log(
                    SecurityEvent.SOCIAL_ACCOUNT_LINKED,
                    email=user.email,
                    user_id=user.id,
                    details={"provider": identity.provider},
                )
            user = self._reload(user.id)

        self._security_logger.log(
            SecurityEvent.SOCIAL_LOGIN,
            email=user.email,
            user_id=user.id,
            ip_address=ip_address,
            user_agent=user_agent,
            details={"provider": identity.provider},
        )
        return self._authenticated(user)

    def get_account(self, user_id: UUID) -> PublicUser:
        """Public view of an account."""
        return PublicUser.from_user(self._reload(user_id))
