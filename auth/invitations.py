"""Referral invitations.

An invitation is a one-time token created by an existing user. With a
target email the token is mailed; without one it is handed back to the
inviter to share as a referral link. Acceptance flips accepted false -> true
exactly once.
"""

import logging
from uuid import UUID, uuid4

from auth.exceptions import InvitationAlreadyAcceptedError, InvitationNotFoundError
from auth.security_logger import SecurityLogger, SecurityEvent
from auth.store import AuthStore
from auth.types import Invitation
from clients.email_client import EmailGatewayClient, EmailGatewayError
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


class InvitationService:
    """Creates, accepts, and lists referral invitations."""

    def __init__(
        self,
        store: AuthStore,
        email_client: EmailGatewayClient,
        security_logger: SecurityLogger,
    ):
        self._store = store
        self._email_client = email_client
        self._security_logger = security_logger

    def send_invitation(
        self,
        inviter_id: UUID,
        email: str | None = None,
        inviter_name: str | None = None,
    ) -> Invitation:
        """Create an invitation, emailing it when a target email is given.

        Email delivery failure is logged; the invitation still exists and its
        token is returned to the inviter.
        """
        invitation = self._store.create_invitation(str(uuid4()), inviter_id, email)

        if invitation.email:
            try:
                self._email_client.send_invitation(
                    email=invitation.email,
                    token=invitation.token,
                    inviter_name=inviter_name,
                )
            except EmailGatewayError as e:
                logger.warning(f"Invitation {invitation.id} email delivery failed: {e}")

        self._security_logger.log(
            SecurityEvent.INVITATION_SENT,
            user_id=inviter_id,
            details={"invitation_id": str(invitation.id), "emailed": bool(invitation.email)},
        )
        logger.info(f"Invitation {invitation.id} created by user {inviter_id}")
        return invitation

    def accept_invitation(self, token: str, accepted_by: UUID | None = None) -> Invitation:
        """Mark an invitation accepted.

        Raises:
            InvitationNotFoundError: No invitation with this token.
            InvitationAlreadyAcceptedError: Token was already used.
        """
        accepted = self._store.accept_invitation(token, accepted_by, now_utc())
        if accepted is None:
            if self._store.get_invitation(token) is None:
                raise InvitationNotFoundError("Invalid or expired link")
            raise InvitationAlreadyAcceptedError("Invitation already used")

        self._security_logger.log(
            SecurityEvent.INVITATION_ACCEPTED,
            user_id=accepted_by,
            details={"invitation_id": str(accepted.id)},
        )
        return accepted

    def list_invitations(self, inviter_id: UUID) -> list[Invitation]:
        """Invitations sent by a user, newest first."""
        return self._store.list_invitations(inviter_id)
