"""Refresh session lifecycle: issue, rotate, revoke, sweep.

States per user: no active session -> active session -> revoked.
At most one active session exists per user. Issuing a new session revokes
every prior active one in the same storage transaction, before the new
token is returned to anyone.

Rotation is single-use. The presented session is revoked with a
compare-and-set, so when two requests race on the same token exactly one
wins and the other observes RefreshTokenRevokedError, which doubles as
replay detection.
"""

import logging
from datetime import datetime, timedelta
from uuid import UUID

from auth.config import AuthConfig
from auth.exceptions import (
    AccountNotFoundError,
    RefreshTokenExpiredError,
    RefreshTokenNotFoundError,
    RefreshTokenRevokedError,
)
from auth.store import AuthStore
from auth.tokens import TokenIssuer
from auth.types import RefreshSession, TokenPair, User
from utils.timezone import is_past, now_utc

logger = logging.getLogger(__name__)


class RefreshSessionManager:
    """Issues, rotates, and revokes refresh sessions."""

    def __init__(self, store: AuthStore, token_issuer: TokenIssuer, config: AuthConfig):
        self._store = store
        self._tokens = token_issuer
        self._config = config

    def issue(self, user: User) -> RefreshSession:
        """Revoke the user's active sessions and create a new one."""
        now = now_utc()
        expires_at = now + timedelta(days=self._config.refresh_token_expiry_days)
        token = self._tokens.mint_refresh_token(user.id, expires_at)

        session = self._store.replace_refresh_session(user.id, token, expires_at, now)
        logger.info(f"Refresh session {session.id} issued for user {user.id}")
        return session

    def issue_pair(self, user: User) -> TokenPair:
        """Fresh access token plus a freshly issued refresh session."""
        session = self.issue(user)
        issued_at = now_utc()
        return TokenPair(
            access_token=self._tokens.issue_access_token(user, issued_at),
            refresh_token=session.token,
            access_token_expires_at=self._tokens.access_token_expiry(issued_at),
            refresh_token_expires_at=session.expires_at,
        )

    def _classify_rejection(self, token: str, now: datetime) -> None:
        """Raise the specific rejection for a token the CAS did not revoke."""
        session = self._store.get_refresh_session(token)
        if session is None:
            raise RefreshTokenNotFoundError("Invalid or expired refresh token")
        if session.revoked:
            raise RefreshTokenRevokedError("Invalid or expired refresh token", session.user_id)
        if is_past(session.expires_at, now):
            raise RefreshTokenExpiredError("Invalid or expired refresh token", session.user_id)
        # Row changed between the CAS and the lookup; treat as lost race
        raise RefreshTokenRevokedError("Invalid or expired refresh token", session.user_id)

    def rotate(self, presented_token: str) -> TokenPair:
        """Exchange a refresh token for a new access + refresh pair.

        Raises:
            RefreshTokenNotFoundError: Token never existed.
            RefreshTokenRevokedError: Token already rotated or revoked.
            RefreshTokenExpiredError: Token past expiry.
            AccountNotFoundError: Owning account was deleted.
        """
        now = now_utc()
        consumed = self._store.revoke_refresh_session(presented_token, now, require_unexpired=True)
        if consumed is None:
            self._classify_rejection(presented_token, now)

        user = self._store.get_user_by_id(consumed.user_id)
        if user is None:
            raise AccountNotFoundError("Account no longer exists")

        pair = self.issue_pair(user)
        logger.info(f"Refresh session {consumed.id} rotated for user {user.id}")
        return pair

    def revoke(self, presented_token: str) -> bool:
        """Revoke a refresh token (logout).

        Returns True if this call revoked the session, False if it was
        already revoked. Raises RefreshTokenNotFoundError if it never existed.
        """
        revoked = self._store.revoke_refresh_session(
            presented_token, now_utc(), require_unexpired=False
        )
        if revoked is not None:
            logger.info(f"Refresh session {revoked.id} revoked")
            return True

        if self._store.get_refresh_session(presented_token) is None:
            raise RefreshTokenNotFoundError("Invalid refresh token")
        return False

    def sweep_expired(self, now: datetime | None = None) -> int:
        """Mark expired, still-active sessions revoked. Never un-revokes."""
        count = self._store.revoke_expired_refresh_sessions(now or now_utc())
        if count:
            logger.info(f"Swept {count} expired refresh sessions")
        return count

    def active_sessions(self, user_id: UUID) -> list[RefreshSession]:
        now = now_utc()
        return [s for s in self._store.list_refresh_sessions(user_id) if s.is_active(now)]
