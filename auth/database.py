"""PostgreSQL implementation of the auth store.

Uses non-RLS tables: users, refresh_sessions, invitations.
These tables are accessed during auth before user context is established.
Schema lives in schema.sql at the repository root.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

import psycopg2.errors

from clients.postgres_client import PostgresClient
from auth.exceptions import AccountExistsError, AccountNotFoundError
from auth.types import Invitation, RefreshSession, User
from utils.timezone import now_utc

_USER_COLUMNS = """id, email, password_hash, is_verified, role, name, provider,
       provider_subject_id, otp_code, otp_expires_at, can_reset_password,
       can_create_password, created_at, updated_at"""

_SESSION_COLUMNS = "id, user_id, token, created_at, expires_at, revoked, revoked_at"

_INVITATION_COLUMNS = "id, token, invited_by, email, accepted, accepted_at, accepted_by, created_at"


def _uuid(value: Any) -> UUID | None:
    if value is None:
        return None
    return UUID(value) if isinstance(value, str) else value


def _row_to_user(row: dict) -> User:
    return User(
        id=_uuid(row["id"]),
        email=row["email"],
        password_hash=row["password_hash"],
        is_verified=row["is_verified"],
        role=row["role"],
        name=row["name"],
        provider=row["provider"],
        provider_subject_id=row["provider_subject_id"],
        otp_code=row["otp_code"],
        otp_expires_at=row["otp_expires_at"],
        can_reset_password=row["can_reset_password"],
        can_create_password=row["can_create_password"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_session(row: dict) -> RefreshSession:
    return RefreshSession(
        id=_uuid(row["id"]),
        user_id=_uuid(row["user_id"]),
        token=row["token"],
        created_at=row["created_at"],
        expires_at=row["expires_at"],
        revoked=row["revoked"],
        revoked_at=row["revoked_at"],
    )


def _row_to_invitation(row: dict) -> Invitation:
    return Invitation(
        id=_uuid(row["id"]),
        token=row["token"],
        invited_by=_uuid(row["invited_by"]),
        email=row["email"],
        accepted=row["accepted"],
        accepted_at=row["accepted_at"],
        accepted_by=_uuid(row["accepted_by"]),
        created_at=row["created_at"],
    )


class PostgresAuthStore:
    """Database operations for authentication."""

    def __init__(self, postgres: PostgresClient):
        self._db = postgres

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def get_user_by_email(self, email: str) -> User | None:
        """Find user by email (case-insensitive)."""
        row = self._db.execute_single(
            f"SELECT {_USER_COLUMNS} FROM users WHERE email = lower(%s)",
            (email.strip(),),
        )
        return _row_to_user(row) if row else None

    def get_user_by_id(self, user_id: UUID) -> User | None:
        """Find user by ID."""
        row = self._db.execute_single(
            f"SELECT {_USER_COLUMNS} FROM users WHERE id = %s",
            (user_id,),
        )
        return _row_to_user(row) if row else None

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
        """Create new user with email (lowercased)."""
        now = now_utc()
        try:
            rows = self._db.execute_returning(
                f"""INSERT INTO users (email, password_hash, is_verified, role, name,
                                       provider, provider_subject_id, created_at, updated_at)
                    VALUES (lower(%s), %s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING {_USER_COLUMNS}""",
                (email.strip(), password_hash, is_verified, role, name,
                 provider, provider_subject_id, now, now),
            )
        except psycopg2.errors.UniqueViolation as e:
            raise AccountExistsError("An account with this email already exists") from e
        return _row_to_user(rows[0])

    def set_otp(self, user_id: UUID, code: str, expires_at: datetime) -> None:
        """Overwrite the pending passcode slot."""
        self._db.execute_returning(
            """UPDATE users SET otp_code = %s, otp_expires_at = %s, updated_at = %s
               WHERE id = %s RETURNING id""",
            (code, expires_at, now_utc(), user_id),
        )

    def consume_otp(self, user_id: UUID, code: str, now: datetime) -> bool:
        """Clear the passcode slot iff it still holds `code` and is unexpired."""
        rows = self._db.execute_returning(
            """UPDATE users SET otp_code = NULL, otp_expires_at = NULL, updated_at = %s
               WHERE id = %s AND otp_code = %s AND otp_expires_at > %s
               RETURNING id""",
            (now, user_id, code, now),
        )
        return len(rows) > 0

    def mark_verified(self, user_id: UUID, *, allow_password_creation: bool) -> User | None:
        """Set is_verified, granting first-password creation only to password-less accounts."""
        rows = self._db.execute_returning(
            f"""UPDATE users
                SET is_verified = true,
                    can_create_password = CASE
                        WHEN %s AND password_hash IS NULL THEN true
                        ELSE can_create_password
                    END,
                    updated_at = %s
                WHERE id = %s
                RETURNING {_USER_COLUMNS}""",
            (allow_password_creation, now_utc(), user_id),
        )
        return _row_to_user(rows[0]) if rows else None

    def grant_password_reset(self, user_id: UUID) -> None:
        self._db.execute_returning(
            """UPDATE users SET can_reset_password = true, updated_at = %s
               WHERE id = %s RETURNING id""",
            (now_utc(), user_id),
        )

    def reset_password(self, user_id: UUID, password_hash: str) -> bool:
        """Consume the reset permission and store the new hash in one write."""
        rows = self._db.execute_returning(
            """UPDATE users
               SET password_hash = %s, can_reset_password = false,
                   can_create_password = false, updated_at = %s
               WHERE id = %s AND can_reset_password = true
               RETURNING id""",
            (password_hash, now_utc(), user_id),
        )
        return len(rows) > 0

    def create_first_password(self, user_id: UUID, password_hash: str) -> bool:
        """Set the first password; only verified, password-less accounts qualify."""
        rows = self._db.execute_returning(
            """UPDATE users
               SET password_hash = %s, can_create_password = false, updated_at = %s
               WHERE id = %s AND is_verified = true AND password_hash IS NULL
               RETURNING id""",
            (password_hash, now_utc(), user_id),
        )
        return len(rows) > 0

    def link_provider(
        self, user_id: UUID, provider: str, subject_id: str, name: str | None = None
    ) -> bool:
        """Bind a provider identity to an account that has none yet."""
        rows = self._db.execute_returning(
            """UPDATE users
               SET provider = %s, provider_subject_id = %s, is_verified = true,
                   name = COALESCE(name, %s), updated_at = %s
               WHERE id = %s AND provider_subject_id IS NULL
               RETURNING id""",
            (provider, subject_id, name, now_utc(), user_id),
        )
        return len(rows) > 0

    def delete_user_cascade(self, user_id: UUID) -> tuple[int, int, bool]:
        """Permanently delete the user and every row it owns, in one transaction.

        The user row is locked first, the same lock replace_refresh_session
        takes, so no session can be inserted while the cascade runs.
        """
        params = self._db.convert_params((user_id,))
        with self._db.transaction() as cur:
            cur.execute("SELECT id FROM users WHERE id = %s FOR UPDATE", params)
            if cur.fetchone() is None:
                return 0, 0, False

            cur.execute(
                "DELETE FROM refresh_sessions WHERE user_id = %s RETURNING id",
                params,
            )
            sessions_deleted = len(cur.fetchall())

            cur.execute(
                "DELETE FROM invitations WHERE invited_by = %s RETURNING id",
                params,
            )
            invitations_deleted = len(cur.fetchall())

            cur.execute(
                "UPDATE invitations SET accepted_by = NULL WHERE accepted_by = %s",
                params,
            )

            cur.execute("DELETE FROM users WHERE id = %s RETURNING id", params)
            account_deleted = cur.fetchone() is not None

        return sessions_deleted, invitations_deleted, account_deleted

    # ------------------------------------------------------------------
    # Refresh sessions
    # ------------------------------------------------------------------

    def replace_refresh_session(
        self, user_id: UUID, token: str, expires_at: datetime, now: datetime
    ) -> RefreshSession:
        """Revoke all active sessions for the user, then insert the new one.

        The user row lock serializes concurrent issuance for one user, so two
        requests can never both leave an active session behind.
        """
        with self._db.transaction() as cur:
            cur.execute(
                "SELECT id FROM users WHERE id = %s FOR UPDATE",
                self._db.convert_params((user_id,)),
            )
            if cur.fetchone() is None:
                raise AccountNotFoundError("Account no longer exists")

            cur.execute(
                """UPDATE refresh_sessions SET revoked = true, revoked_at = %s
                   WHERE user_id = %s AND revoked = false""",
                self._db.convert_params((now, user_id)),
            )

            cur.execute(
                f"""INSERT INTO refresh_sessions (user_id, token, created_at, expires_at, revoked)
                    VALUES (%s, %s, %s, %s, false)
                    RETURNING {_SESSION_COLUMNS}""",
                self._db.convert_params((user_id, token, now, expires_at)),
            )
            row = cur.fetchone()

        return _row_to_session(dict(row))

    def revoke_refresh_session(
        self, token: str, now: datetime, *, require_unexpired: bool
    ) -> RefreshSession | None:
        """Conditional revoke - the WHERE clause is the compare-and-set."""
        query = """UPDATE refresh_sessions SET revoked = true, revoked_at = %s
                   WHERE token = %s AND revoked = false"""
        params: tuple = (now, token)
        if require_unexpired:
            query += " AND expires_at > %s"
            params = (now, token, now)
        query += f" RETURNING {_SESSION_COLUMNS}"

        rows = self._db.execute_returning(query, params)
        return _row_to_session(rows[0]) if rows else None

    def get_refresh_session(self, token: str) -> RefreshSession | None:
        row = self._db.execute_single(
            f"SELECT {_SESSION_COLUMNS} FROM refresh_sessions WHERE token = %s",
            (token,),
        )
        return _row_to_session(row) if row else None

    def list_refresh_sessions(self, user_id: UUID) -> list[RefreshSession]:
        rows = self._db.execute(
            f"""SELECT {_SESSION_COLUMNS} FROM refresh_sessions
                WHERE user_id = %s ORDER BY created_at DESC""",
            (user_id,),
        )
        return [_row_to_session(row) for row in rows]

    def revoke_expired_refresh_sessions(self, now: datetime) -> int:
        """Revoke non-revoked sessions past expiry. Returns count revoked."""
        rows = self._db.execute_returning(
            """UPDATE refresh_sessions SET revoked = true, revoked_at = %s
               WHERE revoked = false AND expires_at <= %s
               RETURNING id""",
            (now, now),
        )
        return len(rows)

    # ------------------------------------------------------------------
    # Invitations
    # ------------------------------------------------------------------

    def create_invitation(self, token: str, invited_by: UUID, email: str | None) -> Invitation:
        rows = self._db.execute_returning(
            f"""INSERT INTO invitations (token, invited_by, email, accepted, created_at)
                VALUES (%s, %s, lower(%s), false, %s)
                RETURNING {_INVITATION_COLUMNS}""",
            (token, invited_by, email, now_utc()),
        )
        return _row_to_invitation(rows[0])

    def get_invitation(self, token: str) -> Invitation | None:
        row = self._db.execute_single(
            f"SELECT {_INVITATION_COLUMNS} FROM invitations WHERE token = %s",
            (token,),
        )
        return _row_to_invitation(row) if row else None

    def accept_invitation(
        self, token: str, accepted_by: UUID | None, now: datetime
    ) -> Invitation | None:
        rows = self._db.execute_returning(
            f"""UPDATE invitations
                SET accepted = true, accepted_at = %s, accepted_by = %s
                WHERE token = %s AND accepted = false
                RETURNING {_INVITATION_COLUMNS}""",
            (now, accepted_by, token),
        )
        return _row_to_invitation(rows[0]) if rows else None

    def list_invitations(self, invited_by: UUID) -> list[Invitation]:
        rows = self._db.execute(
            f"""SELECT {_INVITATION_COLUMNS} FROM invitations
                WHERE invited_by = %s ORDER BY created_at DESC""",
            (invited_by,),
        )
        return [_row_to_invitation(row) for row in rows]
