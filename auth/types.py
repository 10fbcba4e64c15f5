"""Pydantic models for the credential and session domain."""

from datetime import datetime
from enum import Enum
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

Provider = Literal["email", "google", "apple"]


class OtpPurpose(Enum):
    """Why a passcode was issued. Used for email wording only, never stored."""

    SIGNUP = "signup"
    FORGOT_PASSWORD = "forgot_password"
    ACCOUNT_DELETION = "account_deletion"


class OtpChallenge(BaseModel):
    """The single pending passcode slot embedded in an account."""

    code: str | None = Field(default=None, repr=False)
    expires_at: datetime | None = None

    @property
    def is_pending(self) -> bool:
        return self.code is not None and self.expires_at is not None


class User(BaseModel):
    """A registered account, including credential state."""

    id: UUID
    email: EmailStr
    password_hash: str | None = Field(default=None, repr=False)
    is_verified: bool = False
    role: str = "mother"
    name: str | None = None
    provider: Provider = "email"
    provider_subject_id: str | None = None
    otp_code: str | None = Field(default=None, repr=False)
    otp_expires_at: datetime | None = None
    can_reset_password: bool = False
    can_create_password: bool = False
    created_at: datetime
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}

    @property
    def has_password(self) -> bool:
        return self.password_hash is not None

    @property
    def otp_challenge(self) -> OtpChallenge:
        return OtpChallenge(code=self.otp_code, expires_at=self.otp_expires_at)


class PublicUser(BaseModel):
    """Account fields safe to return to clients."""

    id: UUID
    email: EmailStr
    name: str | None = None
    role: str
    provider: Provider
    is_verified: bool

    @classmethod
    def from_user(cls, user: User) -> "PublicUser":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            role=user.role,
            provider=user.provider,
            is_verified=user.is_verified,
        )


class RefreshSession(BaseModel):
    """One outstanding refresh-token grant."""

    id: UUID
    user_id: UUID
    token: str = Field(..., description="Signed opaque token value", repr=False)
    created_at: datetime
    expires_at: datetime
    revoked: bool  # Required - fail closed, no default
    revoked_at: datetime | None = None

    def is_active(self, now: datetime) -> bool:
        return not self.revoked and now < self.expires_at


class AccessTokenClaims(BaseModel):
    """Verified contents of an access token."""

    sub: UUID
    role: str
    iat: datetime
    exp: datetime


class TokenPair(BaseModel):
    """Access + refresh credentials handed to a client."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    access_token_expires_at: datetime
    refresh_token_expires_at: datetime


class AuthenticatedUser(BaseModel):
    """User info and fresh credentials returned after authentication."""

    user: PublicUser
    tokens: TokenPair


class ExternalIdentity(BaseModel):
    """Identity claim produced by a verified provider token."""

    provider: Provider
    email: EmailStr
    name: str | None = None
    subject_id: str = Field(..., min_length=1)


class Invitation(BaseModel):
    """A referral invitation."""

    id: UUID
    token: str
    invited_by: UUID
    email: EmailStr | None = None
    accepted: bool  # Required - fail closed, no default
    accepted_at: datetime | None = None
    accepted_by: UUID | None = None
    created_at: datetime


# Request payloads


class SignupRequest(BaseModel):
    email: EmailStr
    password: str | None = Field(default=None, min_length=1)
    role: str | None = None


class SigninRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class EmailRequest(BaseModel):
    email: EmailStr


class OtpVerifyRequest(BaseModel):
    email: EmailStr
    otp: str = Field(..., min_length=1, max_length=16)


class PasswordRequest(BaseModel):
    email: EmailStr
    new_password: str = Field(..., min_length=1)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)


class SocialLoginRequest(BaseModel):
    provider: str = Field(..., min_length=1)
    token: str = Field(..., min_length=1)
    role: str | None = None


class InvitationRequest(BaseModel):
    email: EmailStr | None = None
