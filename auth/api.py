"""HTTP routes for authentication and invitations.

Domain errors propagate to the handlers in api.errors, which map them to
status codes with the unified error envelope.
"""

import ipaddress
from dataclasses import asdict
from uuid import UUID

from fastapi import APIRouter, Query, Request

from auth.invitations import InvitationService
from auth.service import AccountService
from auth.types import (
    EmailRequest,
    InvitationRequest,
    OtpVerifyRequest,
    PasswordRequest,
    RefreshRequest,
    SigninRequest,
    SignupRequest,
    SocialLoginRequest,
)
from api.base import success_response
from utils.user_context import get_current_user_id


def _get_client_ip(request: Request) -> str | None:
    """Extract valid IP address from request, or None if invalid."""
    if not request.client:
        return None
    host = request.client.host
    try:
        ipaddress.ip_address(host)
        return host
    except ValueError:
        return None


def _caller_id(request: Request) -> UUID:
    """User id set by AuthMiddleware on protected routes. Fails closed without one."""
    return get_current_user_id()


def _ok(request: Request, data):
    """Success envelope tagged with the request ID from RequestIDMiddleware."""
    return success_response(data, getattr(request.state, "request_id", None))


def create_auth_router(account_service: AccountService) -> APIRouter:
    """Create auth router with injected service."""
    router = APIRouter(tags=["auth"])

    @router.post("/signup", status_code=201)
    async def signup(request: Request, body: SignupRequest):
        """Create an unverified account and email a signup OTP."""
        result = account_service.signup(
            email=body.email,
            password=body.password,
            role=body.role,
        )
        return _ok(request, {
            "message": "Signup successful, OTP sent to email.",
            "user": result.user.model_dump(mode="json"),
            "otp_sent": result.otp_sent,
        })

    @router.post("/resend-signup-otp")
    async def resend_signup_otp(request: Request, body: EmailRequest):
        sent = account_service.resend_signup_otp(body.email)
        return _ok(request, {"message": "OTP resent to email.", "otp_sent": sent})

    @router.post("/verify-otp-signup")
    async def verify_otp_signup(request: Request, body: OtpVerifyRequest):
        """Verify signup OTP. Returns the account and a token pair."""
        result = account_service.verify_signup_otp(email=body.email, otp=body.otp)
        return _ok(request, result.model_dump(mode="json"))

    @router.post("/create-password")
    async def create_password(request: Request, body: PasswordRequest):
        """Set the first password after verification (deferred-password signup)."""
        result = account_service.create_password(
            email=body.email,
            new_password=body.new_password,
        )
        return _ok(request, result.model_dump(mode="json"))

    @router.post("/signin")
    async def signin(request: Request, body: SigninRequest):
        result = account_service.signin(
            email=body.email,
            password=body.password,
            ip_address=_get_client_ip(request),
            user_agent=request.headers.get("User-Agent"),
        )
        return _ok(request, result.model_dump(mode="json"))

    @router.post("/forgot-password")
    async def forgot_password(request: Request, body: EmailRequest):
        """Send a reset OTP. The response is identical whether or not the account exists."""
        account_service.forgot_password(body.email)
        return _ok(request, {"message": "If the account exists, an OTP has been sent."})

    @router.post("/verify-otp-forgot-password")
    async def verify_otp_forgot_password(request: Request, body: OtpVerifyRequest):
        account_service.verify_forgot_password_otp(email=body.email, otp=body.otp)
        return _ok(request, {"message": "OTP verified. You may reset password."})

    @router.post("/reset-password")
    async def reset_password(request: Request, body: PasswordRequest):
        account_service.reset_password(email=body.email, new_password=body.new_password)
        return _ok(request, {"message": "Password reset successfully."})

    @router.post("/refresh-token")
    async def refresh_token(request: Request, body: RefreshRequest):
        """Rotate a refresh token. The presented token cannot be used again."""
        tokens = account_service.refresh(
            body.refresh_token,
            ip_address=_get_client_ip(request),
            user_agent=request.headers.get("User-Agent"),
        )
        return _ok(request, tokens.model_dump(mode="json"))

    @router.post("/logout")
    async def logout(request: Request, body: RefreshRequest):
        account_service.logout(body.refresh_token, ip_address=_get_client_ip(request))
        return _ok(request, {"message": "Logged out successfully."})

    @router.post("/social-login")
    async def social_login(request: Request, body: SocialLoginRequest):
        result = account_service.social_login(
            provider=body.provider,
            raw_token=body.token,
            role=body.role,
            ip_address=_get_client_ip(request),
            user_agent=request.headers.get("User-Agent"),
        )
        return _ok(request, result.model_dump(mode="json"))

    @router.post("/delete-account")
    async def request_delete_account(request: Request, body: EmailRequest):
        """Email an account-deletion OTP. Only for the caller's own account."""
        sent = account_service.request_account_deletion(_caller_id(request), body.email)
        return _ok(request, {"message": "OTP sent for account deletion.", "otp_sent": sent})

    @router.post("/verify-delete-account")
    async def verify_delete_account(request: Request, body: OtpVerifyRequest):
        result = account_service.verify_account_deletion(
            _caller_id(request),
            email=body.email,
            otp=body.otp,
            ip_address=_get_client_ip(request),
        )
        return _ok(request, {"message": "Account deleted successfully.", **asdict(result)})

    @router.get("/me")
    async def get_current_user(request: Request):
        """Get current authenticated user.

        Requires authentication (middleware sets user context).
        """
        user = account_service.get_account(_caller_id(request))
        return _ok(request, user.model_dump(mode="json"))

    return router


def create_invitation_router(
    invitation_service: InvitationService,
    account_service: AccountService,
) -> APIRouter:
    """Create invitation router with injected services."""
    router = APIRouter(tags=["invitations"])

    @router.post("/send")
    async def send_invitation(request: Request, body: InvitationRequest):
        """Invite by email, or generate a shareable referral token when no email is given."""
        inviter = account_service.get_account(_caller_id(request))
        invitation = invitation_service.send_invitation(
            inviter.id,
            email=body.email,
            inviter_name=inviter.name,
        )
        if invitation.email:
            return _ok(request, {"message": "Invitation sent to email."})
        return _ok(request, {"message": "Referral link generated.", "token": invitation.token})

    @router.get("/accept")
    async def accept_invitation(request: Request, token: str = Query(..., min_length=1)):
        invitation = invitation_service.accept_invitation(token)
        return _ok(request, {
            "message": "Invitation accepted. You may proceed to sign up.",
            "invited_email": invitation.email,
        })

    @router.get("/mine")
    async def list_my_invitations(request: Request):
        """Invitations the caller has sent, newest first."""
        invitations = invitation_service.list_invitations(_caller_id(request))
        return _ok(request, {
            "invitations": [inv.model_dump(mode="json") for inv in invitations]
        })

    return router
