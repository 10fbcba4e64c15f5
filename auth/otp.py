"""One-time passcode issuance and verification.

Each account has a single passcode slot. The purpose passed to `issue` is
not stored: issuing a code for any purpose overwrites a pending code for
any other purpose. Callers must not rely on purpose isolation.
"""

import logging
import random
import secrets
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum

from auth.config import AuthConfig
from auth.exceptions import OtpExpiredError, OtpMismatchError, OtpNotFoundError
from auth.store import AuthStore
from auth.types import OtpPurpose, User
from utils.timezone import is_past, now_utc

logger = logging.getLogger(__name__)

OTP_MIN = 100000
OTP_MAX = 999999


class OtpFailure(Enum):
    NOT_FOUND = "not_found"
    MISMATCH = "mismatch"
    EXPIRED = "expired"


@dataclass
class OtpVerification:
    """Outcome of a passcode check."""

    valid: bool
    reason: OtpFailure | None = None


class OtpManager:
    """Issues, validates, and expires passcodes on the account's single slot."""

    def __init__(
        self,
        store: AuthStore,
        config: AuthConfig,
        rng: random.Random | None = None,
    ):
        self._store = store
        self._config = config
        self._rng = rng or secrets.SystemRandom()

    def issue(self, user: User, purpose: OtpPurpose) -> str:
        """Generate a 6-digit code, persist it with a fresh expiry, return it."""
        code = str(self._rng.randint(OTP_MIN, OTP_MAX))
        expires_at = now_utc() + timedelta(minutes=self._config.otp_expiry_minutes)
        self._store.set_otp(user.id, code, expires_at)
        logger.info(f"OTP issued for user {user.id} ({purpose.value})")
        return code

    def verify(self, user: User, submitted_code: str) -> OtpVerification:
        """Check `submitted_code` against the slot and consume it on success.

        `user` is the snapshot used to classify failures; the consuming write
        is conditional on the stored code so a code can only be used once even
        under concurrent submissions.
        """
        now = now_utc()
        challenge = user.otp_challenge

        if not challenge.is_pending:
            return OtpVerification(valid=False, reason=OtpFailure.NOT_FOUND)
        if not secrets.compare_digest(challenge.code.encode(), submitted_code.encode()):
            return OtpVerification(valid=False, reason=OtpFailure.MISMATCH)
        if is_past(challenge.expires_at, now):
            return OtpVerification(valid=False, reason=OtpFailure.EXPIRED)

        if not self._store.consume_otp(user.id, submitted_code, now):
            # Slot changed since the snapshot: consumed, overwritten, or expired
            return OtpVerification(valid=False, reason=OtpFailure.NOT_FOUND)

        return OtpVerification(valid=True)

    def require(self, user: User, submitted_code: str) -> None:
        """Like verify, but raise the matching OtpRejectedError subclass."""
        result = self.verify(user, submitted_code)
        if result.valid:
            return

        logger.info(f"OTP rejected for user {user.id}: {result.reason.value}")
        if result.reason is OtpFailure.MISMATCH:
            raise OtpMismatchError("Invalid or expired OTP")
        if result.reason is OtpFailure.EXPIRED:
            raise OtpExpiredError("Invalid or expired OTP")
        raise OtpNotFoundError("Invalid or expired OTP")
