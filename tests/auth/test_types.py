"""Tests for auth/types.py - Pydantic models for the credential domain."""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from pydantic import ValidationError

from auth.types import (
    ExternalIdentity,
    OtpVerifyRequest,
    PublicUser,
    RefreshSession,
    SignupRequest,
    SocialLoginRequest,
    User,
)


def _user(**overrides):
    fields = {
        "id": uuid4(),
        "email": "test@example.com",
        "created_at": datetime.now(timezone.utc),
    }
    fields.update(overrides)
    return User(**fields)


class TestUserValidation:
    """Tests that User model rejects invalid data."""

    def test_rejects_invalid_email(self):
        with pytest.raises(ValidationError):
            _user(email="not-an-email")

    def test_rejects_unknown_provider(self):
        with pytest.raises(ValidationError):
            _user(provider="facebook")

    def test_defaults(self):
        user = _user()
        assert user.is_verified is False
        assert user.provider == "email"
        assert user.has_password is False
        assert user.otp_challenge.is_pending is False

    def test_secrets_hidden_from_repr(self):
        user = _user(password_hash="$2b$hash", otp_code="123456")
        assert "$2b$hash" not in repr(user)
        assert "123456" not in repr(user)

    def test_public_user_drops_credentials(self):
        public = PublicUser.from_user(_user(password_hash="h", otp_code="123456"))
        dumped = public.model_dump()
        assert "password_hash" not in dumped
        assert "otp_code" not in dumped


class TestRefreshSession:

    def test_revoked_is_required(self):
        now = datetime.now(timezone.utc)
        with pytest.raises(ValidationError):
            RefreshSession(id=uuid4(), user_id=uuid4(), token="t", created_at=now, expires_at=now)

    def test_is_active(self):
        now = datetime.now(timezone.utc)
        session = RefreshSession(
            id=uuid4(),
            user_id=uuid4(),
            token="t",
            created_at=now,
            expires_at=now + timedelta(days=1),
            revoked=False,
        )
        assert session.is_active(now) is True
        assert session.is_active(now + timedelta(days=2)) is False
        assert session.model_copy(update={"revoked": True}).is_active(now) is False


class TestRequestValidation:
    """Tests that request payloads reject invalid data."""

    def test_signup_rejects_invalid_email(self):
        with pytest.raises(ValidationError):
            SignupRequest(email="not-an-email", password="x")

    def test_signup_password_optional(self):
        assert SignupRequest(email="a@example.com").password is None

    def test_otp_required(self):
        with pytest.raises(ValidationError):
            OtpVerifyRequest(email="a@example.com", otp="")

    def test_external_identity_requires_subject(self):
        with pytest.raises(ValidationError):
            ExternalIdentity(provider="google", email="a@example.com", subject_id="")

    def test_social_login_fields(self):
        """Older clients still send a platform hint; it is accepted and dropped."""
        request = SocialLoginRequest(provider="apple", token="t", platform="ios")

        assert set(SocialLoginRequest.model_fields) == {"provider", "token", "role"}
        assert not hasattr(request, "platform")
