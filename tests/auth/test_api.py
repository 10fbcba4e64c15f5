"""Tests for auth and invitation API routes through the full app."""

import threading
from unittest.mock import Mock
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from api.app import Services, create_app, sweeper_lifespan
from auth.refresh import RefreshSessionManager
from auth.invitations import InvitationService
from auth.security_logger import SecurityEvent
from auth.sweeper import SessionSweeper
from clients.postgres_client import PostgresClient
from clients.valkey_client import ValkeyClient

EMAIL = "apiuser@example.com"
PASSWORD = "a sufficiently long password"
OTP = "123456"  # fixed_rng passcode


@pytest.fixture
def services(token_issuer, account_service, store, mock_email_client, mock_security_logger, refresh_manager):
    return Services(
        token_issuer=token_issuer,
        accounts=account_service,
        invitations=InvitationService(store, mock_email_client, mock_security_logger),
        sweeper=SessionSweeper(refresh_manager),
    )


@pytest.fixture
def client(services):
    """Full app over the in-memory store, mocked email and security log."""
    return TestClient(create_app(services), raise_server_exceptions=False)


def _signup_and_verify(client, email=EMAIL):
    assert client.post("/auth/signup", json={"email": email, "password": PASSWORD}).status_code == 201
    response = client.post("/auth/verify-otp-signup", json={"email": email, "otp": OTP})
    assert response.status_code == 200
    return response.json()["data"]


def _bearer(data) -> dict:
    return {"Authorization": f"Bearer {data['tokens']['access_token']}"}


class TestSignupFlow:

    def test_signup_verify_then_me(self, client):
        signup = client.post("/auth/signup", json={"email": EMAIL, "password": PASSWORD})

        assert signup.status_code == 201
        body = signup.json()
        assert body["success"] is True
        assert body["data"]["otp_sent"] is True
        assert body["data"]["user"]["is_verified"] is False
        assert "password_hash" not in body["data"]["user"]

        verified = client.post("/auth/verify-otp-signup", json={"email": EMAIL, "otp": OTP})
        assert verified.status_code == 200
        me = client.get("/auth/me", headers=_bearer(verified.json()["data"]))

        assert me.status_code == 200
        assert me.json()["data"]["email"] == EMAIL
        assert me.json()["data"]["is_verified"] is True

    def test_duplicate_signup_conflict(self, client):
        _signup_and_verify(client)

        response = client.post("/auth/signup", json={"email": EMAIL, "password": PASSWORD})

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "ALREADY_EXISTS"

    def test_wrong_otp_is_invalid_otp(self, client):
        client.post("/auth/signup", json={"email": EMAIL, "password": PASSWORD})

        response = client.post("/auth/verify-otp-signup", json={"email": EMAIL, "otp": "000000"})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_OTP"

    def test_admin_role_rejected(self, client):
        response = client.post(
            "/auth/signup", json={"email": EMAIL, "password": PASSWORD, "role": "admin"}
        )

        assert response.status_code == 400

    def test_invalid_email_is_validation_error(self, client):
        response = client.post("/auth/signup", json={"email": "nope", "password": PASSWORD})

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_validation_error_does_not_echo_input(self, client):
        oversized = "98765432109876543"

        response = client.post("/auth/verify-otp-signup", json={"email": EMAIL, "otp": oversized})

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"
        assert "otp" in response.json()["error"]["message"]
        assert oversized not in response.text


class TestSignin:

    def test_signin_returns_tokens(self, client):
        _signup_and_verify(client)

        response = client.post("/auth/signin", json={"email": EMAIL, "password": PASSWORD})

        assert response.status_code == 200
        assert response.json()["data"]["tokens"]["token_type"] == "bearer"

    def test_wrong_password(self, client):
        _signup_and_verify(client)

        response = client.post("/auth/signin", json={"email": EMAIL, "password": "wrong"})

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "INVALID_CREDENTIALS"

    def test_unknown_account_forbidden(self, client):
        response = client.post("/auth/signin", json={"email": EMAIL, "password": PASSWORD})

        assert response.status_code == 403


class TestPasswordReset:

    def test_forgot_password_same_response_for_unknown_email(self, client):
        _signup_and_verify(client)

        known = client.post("/auth/forgot-password", json={"email": EMAIL})
        unknown = client.post("/auth/forgot-password", json={"email": "ghost@example.com"})

        assert known.status_code == unknown.status_code == 200
        assert known.json()["data"] == unknown.json()["data"]

    def test_reset_flow(self, client):
        _signup_and_verify(client)
        client.post("/auth/forgot-password", json={"email": EMAIL})

        assert client.post(
            "/auth/verify-otp-forgot-password", json={"email": EMAIL, "otp": OTP}
        ).status_code == 200
        assert client.post(
            "/auth/reset-password", json={"email": EMAIL, "new_password": "brand new secret"}
        ).status_code == 200

        # Permission is single use
        again = client.post(
            "/auth/reset-password", json={"email": EMAIL, "new_password": "another secret"}
        )
        assert again.status_code == 403
        assert client.post(
            "/auth/signin", json={"email": EMAIL, "password": "brand new secret"}
        ).status_code == 200


class TestRefreshAndLogout:

    def test_rotation_and_replay(self, client, mock_security_logger):
        data = _signup_and_verify(client)
        first = data["tokens"]["refresh_token"]

        rotated = client.post("/auth/refresh-token", json={"refresh_token": first})
        assert rotated.status_code == 200
        assert rotated.json()["data"]["refresh_token"] != first

        replay = client.post("/auth/refresh-token", json={"refresh_token": first})
        assert replay.status_code == 401
        assert replay.json()["error"]["code"] == "INVALID_TOKEN"
        logged = [c.args[0] for c in mock_security_logger.log.call_args_list]
        assert SecurityEvent.REFRESH_TOKEN_REPLAYED in logged

    def test_unknown_refresh_token_same_response_as_replay(self, client):
        response = client.post("/auth/refresh-token", json={"refresh_token": "unknown"})

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "INVALID_TOKEN"

    def test_logout_is_idempotent(self, client):
        refresh_token = _signup_and_verify(client)["tokens"]["refresh_token"]

        assert client.post("/auth/logout", json={"refresh_token": refresh_token}).status_code == 200
        assert client.post("/auth/logout", json={"refresh_token": refresh_token}).status_code == 200
        assert client.post(
            "/auth/refresh-token", json={"refresh_token": refresh_token}
        ).status_code == 401


class TestSocialLogin:

    def test_social_login_creates_verified_account(self, client):
        response = client.post(
            "/auth/social-login",
            json={"provider": "google", "token": "valid:social@example.com:g-1"},
        )

        assert response.status_code == 200
        assert response.json()["data"]["user"]["provider"] == "google"
        assert response.json()["data"]["user"]["is_verified"] is True

    def test_rejected_provider_token(self, client):
        response = client.post("/auth/social-login", json={"provider": "google", "token": "forged"})

        assert response.status_code == 400

    def test_unsupported_provider(self, client):
        response = client.post("/auth/social-login", json={"provider": "myspace", "token": "x"})

        assert response.status_code == 400


class TestAccountDeletion:

    def test_requires_authentication(self, client):
        response = client.post("/auth/delete-account", json={"email": EMAIL})

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "NOT_AUTHENTICATED"

    def test_delete_own_account(self, client):
        data = _signup_and_verify(client)
        headers = _bearer(data)

        assert client.post(
            "/auth/delete-account", json={"email": EMAIL}, headers=headers
        ).status_code == 200
        response = client.post(
            "/auth/verify-delete-account", json={"email": EMAIL, "otp": OTP}, headers=headers
        )

        assert response.status_code == 200
        assert response.json()["data"]["account_deleted"] is True
        assert response.json()["data"]["sessions_deleted"] == 1
        # Access token is still well-formed but the account is gone
        assert client.get("/auth/me", headers=headers).status_code == 404
        assert client.post(
            "/auth/refresh-token", json={"refresh_token": data["tokens"]["refresh_token"]}
        ).status_code == 401

    def test_cannot_delete_someone_else(self, client):
        _signup_and_verify(client, email="victim@example.com")
        attacker = _signup_and_verify(client)

        response = client.post(
            "/auth/delete-account", json={"email": "victim@example.com"}, headers=_bearer(attacker)
        )

        assert response.status_code == 403


class TestInvitations:

    def test_referral_link_then_accept(self, client):
        headers = _bearer(_signup_and_verify(client))

        sent = client.post("/invitations/send", json={}, headers=headers)
        assert sent.status_code == 200
        token = sent.json()["data"]["token"]

        accepted = client.get(f"/invitations/accept?token={token}")
        assert accepted.status_code == 200
        assert accepted.json()["data"]["invited_email"] is None

        again = client.get(f"/invitations/accept?token={token}")
        assert again.status_code == 409

    def test_email_invitation_hides_token(self, client, mock_email_client):
        headers = _bearer(_signup_and_verify(client))

        sent = client.post("/invitations/send", json={"email": "friend@example.com"}, headers=headers)

        assert sent.status_code == 200
        assert "token" not in sent.json()["data"]
        mock_email_client.send_invitation.assert_called_once()

    def test_unknown_invitation(self, client):
        assert client.get("/invitations/accept?token=missing").status_code == 404

    def test_list_mine(self, client):
        headers = _bearer(_signup_and_verify(client))
        client.post("/invitations/send", json={}, headers=headers)
        client.post("/invitations/send", json={"email": "friend@example.com"}, headers=headers)

        response = client.get("/invitations/mine", headers=headers)

        assert len(response.json()["data"]["invitations"]) == 2


class TestHealth:

    def test_health_is_public(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["data"]["status"] == "ok"
        assert "X-Request-ID" in response.headers

    def test_error_envelope_carries_request_id(self, client):
        response = client.post("/auth/signin", json={"email": EMAIL, "password": PASSWORD})

        assert response.json()["meta"]["request_id"] == response.headers["X-Request-ID"]

    def test_success_envelope_carries_request_id(self, client):
        response = client.post("/auth/signup", json={"email": EMAIL, "password": PASSWORD})

        assert response.status_code == 201
        assert response.json()["meta"]["request_id"] == response.headers["X-Request-ID"]

    def test_caller_request_id_reaches_envelope(self, client):
        inbound = str(uuid4())

        response = client.get("/health", headers={"X-Request-ID": inbound})

        assert response.json()["meta"]["request_id"] == inbound

    def test_unauthenticated_response_carries_request_id(self, client):
        response = client.get("/auth/me")

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"
        assert response.json()["meta"]["request_id"] == response.headers["X-Request-ID"]


class TestSweeperLifespan:

    def test_shutdown_stops_sweeper_then_closes_connections(self, services, monkeypatch):
        refresh_manager = Mock(spec=RefreshSessionManager)
        refresh_manager.sweep_expired.return_value = 0
        valkey = Mock(spec=ValkeyClient)
        valkey.set_if_absent.return_value = True
        services.sweeper = SessionSweeper(refresh_manager, valkey)
        close_pools = Mock()
        monkeypatch.setattr(PostgresClient, "close_all_pools", close_pools)
        app = create_app(services, lifespan=sweeper_lifespan(services.sweeper, 3600))

        with TestClient(app) as client:
            assert any(t.name == "session-sweeper" for t in threading.enumerate())
            assert client.get("/health").status_code == 200

        assert not any(t.name == "session-sweeper" for t in threading.enumerate())
        valkey.close.assert_called_once()
        close_pools.assert_called_once()
