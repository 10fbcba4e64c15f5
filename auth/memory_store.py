"""In-process auth store for local development and tests.

Mirrors the atomicity of the PostgreSQL store with a single re-entrant
lock: every method that the PostgreSQL store runs as one conditional
UPDATE or one transaction runs here entirely under the lock.
"""

import threading
from datetime import datetime
from uuid import UUID, uuid4

from auth.exceptions import AccountExistsError, AccountNotFoundError
from auth.types import Invitation, RefreshSession, User
from utils.timezone import now_utc


class MemoryAuthStore:
    """Dict-backed implementation of the AuthStore protocol."""

    def __init__(self) -> None:
        self.users: dict[UUID, User] = {}
        self.sessions: dict[str, RefreshSession] = {}
        self.invitations: dict[str, Invitation] = {}
        self._lock = threading.RLock()

    def _update_user(self, user_id: UUID, **fields) -> User:
        user = self.users[user_id]
        updated = user.model_copy(update={**fields, "updated_at": now_utc()})
        self.users[user_id] = updated
        return updated

    # Accounts

    def get_user_by_email(self, email: str) -> User | None:
        normalized = email.strip().lower()
        with self._lock:
            for user in self.users.values():
                if user.email == normalized:
                    return user
        return None

    def get_user_by_id(self, user_id: UUID) -> User | None:
        with self._lock:
            return self.users.get(user_id)

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
        with self._lock:
            if self.get_user_by_email(email) is not None:
                raise AccountExistsError("An account with this email already exists")
            now = now_utc()
            user = User(
                id=uuid4(),
                email=email.strip().lower(),
                password_hash=password_hash,
                is_verified=is_verified,
                role=role,
                name=name,
                provider=provider,
                provider_subject_id=provider_subject_id,
                created_at=now,
                updated_at=now,
            )
            self.users[user.id] = user
            return user

    def set_otp(self, user_id: UUID, code: str, expires_at: datetime) -> None:
        with self._lock:
            if user_id in self.users:
                self._update_user(user_id, otp_code=code, otp_expires_at=expires_at)

    def consume_otp(self, user_id: UUID, code: str, now: datetime) -> bool:
        with self._lock:
            user = self.users.get(user_id)
            if user is None or user.otp_code != code or user.otp_expires_at is None:
                return False
            if now >= user.otp_expires_at:
                return False
            self._update_user(user_id, otp_code=None, otp_expires_at=None)
            return True

    def mark_verified(self, user_id: UUID, *, allow_password_creation: bool) -> User | None:
        with self._lock:
            user = self.users.get(user_id)
            if user is None:
                return None
            can_create = user.can_create_password or (
                allow_password_creation and not user.has_password
            )
            return self._update_user(user_id, is_verified=True, can_create_password=can_create)

    def grant_password_reset(self, user_id: UUID) -> None:
        with self._lock:
            if user_id in self.users:
                self._update_user(user_id, can_reset_password=True)

    def reset_password(self, user_id: UUID, password_hash: str) -> bool:
        with self._lock:
            user = self.users.get(user_id)
            if user is None or not user.can_reset_password:
                return False
            self._update_user(
                user_id,
                password_hash=password_hash,
                can_reset_password=False,
                can_create_password=False,
            )
            return True

    def create_first_password(self, user_id: UUID, password_hash: str) -> bool:
        with self._lock:
            user = self.users.get(user_id)
            if user is None or not user.is_verified or user.has_password:
                return False
            self._update_user(user_id, password_hash=password_hash, can_create_password=False)
            return True

    def link_provider(
        self, user_id: UUID, provider: str, subject_id: str, name: str | None = None
    ) -> bool:
        with self._lock:
            user = self.users.get(user_id)
            if user is None or user.provider_subject_id is not None:
                return False
            self._update_user(
                user_id,
                provider=provider,
                provider_subject_id=subject_id,
                is_verified=True,
                name=user.name or name,
            )
            return True

    def delete_user_cascade(self, user_id: UUID) -> tuple[int, int, bool]:
        with self._lock:
            owned_sessions = [t for t, s in self.sessions.items() if s.user_id == user_id]
            for token in owned_sessions:
                del self.sessions[token]

            sent = [t for t, inv in self.invitations.items() if inv.invited_by == user_id]
            for token in sent:
                del self.invitations[token]

            for token, inv in list(self.invitations.items()):
                if inv.accepted_by == user_id:
                    self.invitations[token] = inv.model_copy(update={"accepted_by": None})

            account_deleted = self.users.pop(user_id, None) is not None
            return len(owned_sessions), len(sent), account_deleted

    # Refresh sessions

    def replace_refresh_session(
        self, user_id: UUID, token: str, expires_at: datetime, now: datetime
    ) -> RefreshSession:
        with self._lock:
            if user_id not in self.users:
                raise AccountNotFoundError("Account no longer exists")
            for key, existing in list(self.sessions.items()):
                if existing.user_id == user_id and not existing.revoked:
                    self.sessions[key] = existing.model_copy(
                        update={"revoked": True, "revoked_at": now}
                    )
            session = RefreshSession(
                id=uuid4(),
                user_id=user_id,
                token=token,
                created_at=now,
                expires_at=expires_at,
                revoked=False,
            )
            self.sessions[token] = session
            return session

    def revoke_refresh_session(
        self, token: str, now: datetime, *, require_unexpired: bool
    ) -> RefreshSession | None:
        with self._lock:
            session = self.sessions.get(token)
            if session is None or session.revoked:
                return None
            if require_unexpired and now >= session.expires_at:
                return None
            revoked = session.model_copy(update={"revoked": True, "revoked_at": now})
            self.sessions[token] = revoked
            return revoked

    def get_refresh_session(self, token: str) -> RefreshSession | None:
        with self._lock:
            return self.sessions.get(token)

    def list_refresh_sessions(self, user_id: UUID) -> list[RefreshSession]:
        with self._lock:
            owned = [s for s in self.sessions.values() if s.user_id == user_id]
        return sorted(owned, key=lambda s: s.created_at, reverse=True)

    def revoke_expired_refresh_sessions(self, now: datetime) -> int:
        with self._lock:
            count = 0
            for token, session in list(self.sessions.items()):
                if not session.revoked and session.expires_at <= now:
                    self.sessions[token] = session.model_copy(
                        update={"revoked": True, "revoked_at": now}
                    )
                    count += 1
            return count

    # Invitations

    def create_invitation(self, token: str, invited_by: UUID, email: str | None) -> Invitation:
        with self._lock:
            invitation = Invitation(
                id=uuid4(),
                token=token,
                invited_by=invited_by,
                email=email.lower() if email else None,
                accepted=False,
                created_at=now_utc(),
            )
            self.invitations[token] = invitation
            return invitation

    def get_invitation(self, token: str) -> Invitation | None:
        with self._lock:
            return self.invitations.get(token)

    def accept_invitation(
        self, token: str, accepted_by: UUID | None, now: datetime
    ) -> Invitation | None:
        with self._lock:
            invitation = self.invitations.get(token)
            if invitation is None or invitation.accepted:
                return None
            accepted = invitation.model_copy(
                update={"accepted": True, "accepted_at": now, "accepted_by": accepted_by}
            )
            self.invitations[token] = accepted
            return accepted

    def list_invitations(self, invited_by: UUID) -> list[Invitation]:
        with self._lock:
            sent = [inv for inv in self.invitations.values() if inv.invited_by == invited_by]
        return sorted(sent, key=lambda inv: inv.created_at, reverse=True)
