"""Storage contract for the credential store, refresh sessions and invitations.

All state lives in shared storage; there is no in-process cache. Every
method that enforces a lifecycle invariant is a single atomic operation in
the implementation (one conditional UPDATE or one transaction), so callers
never do read-then-write on security-relevant flags.
"""

from datetime import datetime
from typing import Protocol
from uuid import UUID

from auth.types import Invitation, RefreshSession, User


class AuthStore(Protocol):
    # Accounts

    def get_user_by_email(self, email: str) -> User | None: ...

    def get_user_by_id(self, user_id: UUID) -> User | None: ...

    def create_user(
        self,
        email: str,
        *,
        role: str,
        password_hash: str | None = None,
        is_verified: bool = False,
        name: str | None = None,
        provider: str = "email",
        provider_subject_id: str | None = None,
    ) -> User:
        """Insert a new account. Raises AccountExistsError on duplicate email."""
        ...

    def set_otp(self, user_id: UUID, code: str, expires_at: datetime) -> None:
        """Overwrite the account's single pending passcode slot."""
        ...

    def consume_otp(self, user_id: UUID, code: str, now: datetime) -> bool:
        """Clear the slot iff it holds `code` and has not expired."""
        ...

    def mark_verified(self, user_id: UUID, *, allow_password_creation: bool) -> User | None:
        """Set is_verified; grant can_create_password only when no password is set."""
        ...

    def grant_password_reset(self, user_id: UUID) -> None: ...

    def reset_password(self, user_id: UUID, password_hash: str) -> bool:
        """Set the hash iff can_reset_password, clearing the flag in the same write."""
        ...

    def create_first_password(self, user_id: UUID, password_hash: str) -> bool:
        """Set the hash iff verified and no password yet; clears can_create_password."""
        ...

    def link_provider(
        self, user_id: UUID, provider: str, subject_id: str, name: str | None = None
    ) -> bool:
        """Bind a provider identity iff none is bound; marks the account verified."""
        ...

    def delete_user_cascade(self, user_id: UUID) -> tuple[int, int, bool]:
        """
        Delete refresh sessions, invitations sent by the user, then the account.

        Returns (sessions_deleted, invitations_deleted, account_deleted).
        """
        ...

    # Refresh sessions

    def replace_refresh_session(
        self, user_id: UUID, token: str, expires_at: datetime, now: datetime
    ) -> RefreshSession:
        """Revoke every active session of the user and insert the new one atomically."""
        ...

    def revoke_refresh_session(
        self, token: str, now: datetime, *, require_unexpired: bool
    ) -> RefreshSession | None:
        """Compare-and-set revoke. Returns the session only if this call revoked it."""
        ...

    def get_refresh_session(self, token: str) -> RefreshSession | None: ...

    def list_refresh_sessions(self, user_id: UUID) -> list[RefreshSession]: ...

    def revoke_expired_refresh_sessions(self, now: datetime) -> int: ...

    # Invitations

    def create_invitation(self, token: str, invited_by: UUID, email: str | None) -> Invitation: ...

    def get_invitation(self, token: str) -> Invitation | None: ...

    def accept_invitation(
        self, token: str, accepted_by: UUID | None, now: datetime
    ) -> Invitation | None:
        """Compare-and-set accepted false -> true. None if already accepted or absent."""
        ...

    def list_invitations(self, invited_by: UUID) -> list[Invitation]: ...
