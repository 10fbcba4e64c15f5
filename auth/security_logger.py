"""Security event logging for auth audit trail.

Append-only log to the security_events table, with rotation of old events
to a JSON lines archive. Alert-worthy events are also written to the
application log.
Events never carry OTP codes, passwords, or token values.
"""

import json
import logging
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any
from uuid import UUID

from psycopg2.extras import Json

from clients.postgres_client import PostgresClient
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


class SecurityEvent(Enum):
    """Auth security event types."""

    SIGNUP_STARTED = "signup_started"
    SIGNUP_VERIFIED = "signup_verified"
    OTP_ISSUED = "otp_issued"
    OTP_REJECTED = "otp_rejected"
    OTP_DELIVERY_FAILED = "otp_delivery_failed"
    SIGNIN_SUCCEEDED = "signin_succeeded"
    SIGNIN_FAILED = "signin_failed"
    PASSWORD_RESET_GRANTED = "password_reset_granted"
    PASSWORD_RESET = "password_reset"
    PASSWORD_RESET_DENIED = "password_reset_denied"
    PASSWORD_CREATED = "password_created"
    REFRESH_TOKEN_ROTATED = "refresh_token_rotated"
    REFRESH_TOKEN_REJECTED = "refresh_token_rejected"
    REFRESH_TOKEN_REPLAYED = "refresh_token_replayed"
    SESSION_REVOKED = "session_revoked"
    SOCIAL_LOGIN = "social_login"
    SOCIAL_ACCOUNT_LINKED = "social_account_linked"
    ACCOUNT_DELETION_REQUESTED = "account_deletion_requested"
    ACCOUNT_DELETION_FORBIDDEN = "account_deletion_forbidden"
    ACCOUNT_DELETED = "account_deleted"
    INVITATION_SENT = "invitation_sent"
    INVITATION_ACCEPTED = "invitation_accepted"


# Events that warrant an operator's attention in the application log too
ALERT_EVENTS = frozenset({
    SecurityEvent.REFRESH_TOKEN_REPLAYED,
    SecurityEvent.ACCOUNT_DELETION_FORBIDDEN,
    SecurityEvent.OTP_DELIVERY_FAILED,
})

_EVENT_COLUMNS = "id, event_type, email, user_id, ip_address, user_agent, details, created_at"


class SecurityLogger:
    """Append-only security event logger with rotation."""

    def __init__(self, postgres: PostgresClient):
        self._db = postgres

    def log(
        self,
        event: SecurityEvent,
        email: str | None = None,
        user_id: UUID | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Record an event. Storage failures propagate to the calling flow."""
        if event in ALERT_EVENTS:
            logger.warning(f"Security event {event.value}: user={user_id} ip={ip_address}")

        self._db.execute_returning(
            """INSERT INTO security_events
               (event_type, email, user_id, ip_address, user_agent, details, created_at)
               VALUES (%s, %s, %s, %s, %s, %s, %s)
               RETURNING id""",
            (
                event.value,
                email,
                str(user_id) if user_id else None,
                ip_address,
                user_agent,
                Json(details) if details else None,
                now_utc(),
            ),
        )

    def get_recent_events(
        self,
        email: str | None = None,
        user_id: UUID | None = None,
        event_type: SecurityEvent | None = None,
        since: datetime | None = None,
        limit: int = 100,
    ) -> list[dict]:
        """Newest events first, filtered by any combination of fields."""
        filters = [
            ("email = %s", email),
            ("user_id = %s", str(user_id) if user_id else None),
            ("event_type = %s", event_type.value if event_type else None),
            ("created_at >= %s", since),
        ]
        conditions = [clause for clause, value in filters if value is not None]
        params = [value for _, value in filters if value is not None]

        where_clause = " AND ".join(conditions) if conditions else "1=1"
        params.append(limit)

        return self._db.execute(
            f"""SELECT {_EVENT_COLUMNS}
                FROM security_events
                WHERE {where_clause}
                ORDER BY created_at DESC
                LIMIT %s""",
            tuple(params),
        )

    @staticmethod
    def _archive_record(event: dict) -> dict:
        return {
            "id": str(event["id"]),
            "event_type": event["event_type"],
            "email": event["email"],
            "user_id": str(event["user_id"]) if event["user_id"] else None,
            "ip_address": str(event["ip_address"]) if event["ip_address"] else None,
            "user_agent": event["user_agent"],
            "details": event["details"],
            "created_at": event["created_at"].isoformat(),
        }

    def rotate_logs(self, older_than_days: int, output_path: Path) -> int:
        """Archive old events to a JSON lines file, then delete exactly those rows.

        Rows are deleted by id, so nothing is removed that was not written
        to the archive first.

        Returns:
            Number of events archived and deleted
        """
        cutoff = now_utc() - timedelta(days=older_than_days)

        events = self._db.execute(
            f"""SELECT {_EVENT_COLUMNS}
                FROM security_events
                WHERE created_at < %s
                ORDER BY created_at ASC""",
            (cutoff,),
        )
        if not events:
            return 0

        with open(output_path, "a") as f:
            for event in events:
                f.write(json.dumps(self._archive_record(event)) + "\n")

        deleted = self._db.execute_returning(
            "DELETE FROM security_events WHERE id = ANY(%s) RETURNING id",
            ([event["id"] for event in events],),
        )

        logger.info(f"Archived {len(events)} security events to {output_path}")
        return len(deleted)
