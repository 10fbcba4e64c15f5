"""Shared test fixtures for the auth test suite."""

import pytest
from uuid import UUID
from pathlib import Path
from unittest.mock import Mock

from dotenv import load_dotenv

# Load .env file BEFORE any other imports that might use env vars
# override=True ensures .env takes precedence over shell env vars
load_dotenv(Path(__file__).parent.parent / ".env", override=True)

# Reset vault client singleton to pick up env vars
import clients.vault_client as vault_module
vault_module._vault_client_instance = None
vault_module._secret_cache.clear()

from auth.config import AuthConfig
from auth.memory_store import MemoryAuthStore
from auth.otp import OtpManager
from auth.passwords import PasswordHasher
from auth.refresh import RefreshSessionManager
from auth.security_logger import SecurityLogger
from auth.service import AccountService
from auth.social import IdentityVerifierRegistry
from auth.tokens import TokenIssuer
from auth.types import ExternalIdentity
from auth.exceptions import ExternalIdentityError
from clients.email_client import EmailGatewayClient
from utils.user_context import user_context, clear_current_user_id


# =============================================================================
# TEST CONSTANTS
# =============================================================================

TEST_USER_ID = UUID("00000000-0000-0000-0000-000000000001")
TEST_USER_EMAIL = "testuser@example.com"
TEST_PASSWORD = "correct horse battery staple"
TEST_SIGNING_SECRET = "test-signing-secret-with-enough-entropy-0123456789"

# Every OTP issued through the fixed_rng fixture
FIXED_OTP = "123456"


# =============================================================================
# USER CONTEXT FIXTURES
# =============================================================================


@pytest.fixture(autouse=True)
def reset_user_context():
    """Ensure clean user context before and after each test."""
    clear_current_user_id()
    yield
    clear_current_user_id()


@pytest.fixture
def test_user_id() -> UUID:
    """The primary test user's ID."""
    return TEST_USER_ID


@pytest.fixture
def authenticated_context(test_user_id):
    """Provide an authenticated user context for the primary test user."""
    with user_context(test_user_id):
        yield test_user_id


# =============================================================================
# DOMAIN FIXTURES
# =============================================================================


class FakeIdentityVerifier:
    """Accepts tokens of the form 'valid:<email>:<subject>' for one provider."""

    def __init__(self, provider: str, name: str | None = "Social User"):
        self.provider = provider
        self.name = name

    def verify(self, raw_token: str) -> ExternalIdentity:
        parts = raw_token.split(":")
        if len(parts) != 3 or parts[0] != "valid":
            raise ExternalIdentityError(f"{self.provider} token rejected")
        return ExternalIdentity(
            provider=self.provider,
            email=parts[1],
            name=self.name,
            subject_id=parts[2],
        )


@pytest.fixture
def config():
    """Test config with the cheapest bcrypt cost."""
    return AuthConfig(bcrypt_rounds=4)


@pytest.fixture
def deferred_config():
    """Config for the deferred-password signup variant."""
    return AuthConfig(bcrypt_rounds=4, signup_mode="deferred_password")


@pytest.fixture
def store():
    return MemoryAuthStore()


@pytest.fixture
def fixed_rng():
    """RNG whose passcodes are always FIXED_OTP."""
    rng = Mock()
    rng.randint.return_value = int(FIXED_OTP)
    return rng


@pytest.fixture
def mock_email_client():
    """Mock email client - no actual emails sent in tests."""
    mock = Mock(spec=EmailGatewayClient)
    mock.send_otp.return_value = None
    mock.send_invitation.return_value = None
    return mock


@pytest.fixture
def mock_security_logger():
    """Mock security logger - events are asserted, not persisted."""
    return Mock(spec=SecurityLogger)


@pytest.fixture
def token_issuer(config):
    return TokenIssuer(TEST_SIGNING_SECRET, config)


@pytest.fixture
def password_hasher(config):
    return PasswordHasher(config.bcrypt_rounds)


@pytest.fixture
def otp_manager(store, config, fixed_rng):
    return OtpManager(store, config, rng=fixed_rng)


@pytest.fixture
def refresh_manager(store, token_issuer, config):
    return RefreshSessionManager(store, token_issuer, config)


@pytest.fixture
def identity_verifiers():
    return IdentityVerifierRegistry([
        FakeIdentityVerifier("google"),
        FakeIdentityVerifier("apple", name=None),
    ])


def build_account_service(
    config,
    store,
    fixed_rng,
    mock_email_client,
    mock_security_logger,
    identity_verifiers,
):
    """AccountService over the in-memory store with mocked side effects."""
    token_issuer = TokenIssuer(TEST_SIGNING_SECRET, config)
    return AccountService(
        config=config,
        store=store,
        otp_manager=OtpManager(store, config, rng=fixed_rng),
        refresh_manager=RefreshSessionManager(store, token_issuer, config),
        password_hasher=PasswordHasher(config.bcrypt_rounds),
        email_client=mock_email_client,
        security_logger=mock_security_logger,
        identity_verifiers=identity_verifiers,
    )


@pytest.fixture
def account_service(
    config, store, fixed_rng, mock_email_client, mock_security_logger, identity_verifiers
):
    return build_account_service(
        config, store, fixed_rng, mock_email_client, mock_security_logger, identity_verifiers
    )


@pytest.fixture
def deferred_account_service(
    deferred_config, store, fixed_rng, mock_email_client, mock_security_logger, identity_verifiers
):
    return build_account_service(
        deferred_config,
        store,
        fixed_rng,
        mock_email_client,
        mock_security_logger,
        identity_verifiers,
    )


@pytest.fixture
def verified_user(store, password_hasher):
    """A verified email/password account."""
    return store.create_user(
        TEST_USER_EMAIL,
        role="mother",
        password_hash=password_hasher.hash(TEST_PASSWORD),
        is_verified=True,
        name="Test User",
    )
