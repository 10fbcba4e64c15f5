"""
Email gateway client for sending auth emails via HTTP gateway.

Uses HMAC-SHA256 signature for request authentication. The gateway owns
templates; this client only sends the template type and its variables.
"""

import hashlib
import hmac
import json
import logging

import requests

logger = logging.getLogger(__name__)


class EmailGatewayError(Exception):
    """Raised when email gateway request fails."""


class EmailGatewayClient:
    """Send emails via HTTP gateway with HMAC signature verification."""

    OTP_PURPOSES = ("signup", "forgot_password", "account_deletion")

    def __init__(self, gateway_url: str, api_key: str, hmac_secret: str, app_name: str = "FitBizZ"):
        """
        Initialize with gateway credentials.

        Args:
            gateway_url: Full URL to the email gateway endpoint
            api_key: API key for X-API-Key header
            hmac_secret: Secret for HMAC-SHA256 signature
            app_name: Product name shown in email subjects

        Raises:
            ValueError: If any credential is empty
        """
        if not gateway_url:
            raise ValueError("gateway_url is required")
        if not api_key:
            raise ValueError("api_key is required")
        if not hmac_secret:
            raise ValueError("hmac_secret is required")

        self.gateway_url = gateway_url
        self.api_key = api_key
        self.hmac_secret = hmac_secret
        self.app_name = app_name

    def _sign_and_send(self, payload: dict) -> None:
        """
        Sign payload with HMAC and send to gateway.

        Args:
            payload: Dict to send as JSON

        Raises:
            EmailGatewayError: On any failure
        """
        payload_json = json.dumps(payload, separators=(",", ":"))

        signature = hmac.new(
            self.hmac_secret.encode("utf-8"),
            payload_json.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

        headers = {
            "Content-Type": "application/json",
            "X-API-Key": self.api_key,
            "X-Signature": signature,
        }

        try:
            response = requests.post(
                self.gateway_url,
                data=payload_json,
                headers=headers,
                timeout=10,
            )
        except (requests.exceptions.RequestException, ConnectionError) as e:
            logger.error(f"Email gateway connection failed: {e}")
            raise EmailGatewayError(f"Connection failed: {e}")

        try:
            response_data = response.json()
        except ValueError:
            logger.error(f"Email gateway returned invalid JSON (status {response.status_code})")
            raise EmailGatewayError("Invalid response from gateway")

        if response.status_code != 200 or not response_data.get("success"):
            error_msg = response_data.get("message", "Unknown error")
            logger.error(f"Email gateway error: {error_msg}")
            raise EmailGatewayError(f"Gateway error: {error_msg}")

    def send_otp(self, email: str, code: str, purpose: str) -> None:
        """
        Send a one-time passcode email.

        Args:
            email: Recipient email address
            code: Six-digit passcode
            purpose: One of signup, forgot_password, account_deletion

        Raises:
            ValueError: If purpose is unknown
            EmailGatewayError: On any failure
        """
        if purpose not in self.OTP_PURPOSES:
            raise ValueError(f"Unknown OTP purpose: {purpose}")

        payload = {
            "type": "otp",
            "email": email,
            "code": code,
            "purpose": purpose,
            "app_name": self.app_name,
        }
        self._sign_and_send(payload)
        # Never log the code itself
        logger.info(f"OTP email ({purpose}) sent to {email}")

    def send_invitation(self, email: str, token: str, inviter_name: str | None = None) -> None:
        """
        Send a referral invitation email.

        Raises:
            EmailGatewayError: On any failure
        """
        payload = {
            "type": "invitation",
            "email": email,
            "token": token,
            "inviter_name": inviter_name or "",
            "app_name": self.app_name,
        }
        self._sign_and_send(payload)
        logger.info(f"Invitation email sent to {email}")
