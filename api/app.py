"""Application factory.

`create_app` takes fully built services so tests can inject in-memory
collaborators. `create_app_from_vault` wires production dependencies from
Vault-held secrets.
"""

import logging
import threading
from contextlib import asynccontextmanager
from dataclasses import dataclass

from fastapi import FastAPI, Request

from api.base import success_response
from api.errors import register_error_handlers
from api.middleware import RequestIDMiddleware
from auth.api import create_auth_router, create_invitation_router
from auth.config import AuthConfig
from auth.database import PostgresAuthStore
from auth.invitations import InvitationService
from auth.otp import OtpManager
from auth.passwords import PasswordHasher
from auth.refresh import RefreshSessionManager
from auth.security_logger import SecurityLogger
from auth.security_middleware import AuthMiddleware
from auth.service import AccountService
from auth.social import build_registry
from auth.sweeper import SessionSweeper
from auth.tokens import TokenIssuer
from clients.email_client import EmailGatewayClient
from clients.postgres_client import PostgresClient
from clients.valkey_client import ValkeyClient
from clients.vault_client import (
    get_database_url,
    get_email_config,
    get_jwt_secret,
    get_social_client_ids,
    get_valkey_url,
)

logger = logging.getLogger(__name__)

SOCIAL_PROVIDERS = ("google", "apple")


@dataclass
class Services:
    """Everything the HTTP layer and background sweep need."""

    token_issuer: TokenIssuer
    accounts: AccountService
    invitations: InvitationService
    sweeper: SessionSweeper


def create_app(services: Services, lifespan=None) -> FastAPI:
    """FastAPI app with auth middleware, error handlers, and auth/invitation routes."""
    app = FastAPI(title="FitBizZ Auth", lifespan=lifespan)
    app.add_middleware(AuthMiddleware, token_issuer=services.token_issuer)
    # Added last so it is outermost and tags 401s from AuthMiddleware too
    app.add_middleware(RequestIDMiddleware)
    register_error_handlers(app)

    app.include_router(create_auth_router(services.accounts), prefix="/auth")
    app.include_router(
        create_invitation_router(services.invitations, services.accounts),
        prefix="/invitations",
    )

    @app.get("/health")
    async def health(request: Request):
        return success_response({"status": "ok"}, request.state.request_id)

    return app


def build_services(config: AuthConfig | None = None) -> Services:
    """Build production services from Vault secrets.

    Social providers without configured client ids are skipped; login with
    them fails as an unsupported provider.
    """
    config = config or AuthConfig()

    postgres = PostgresClient(get_database_url())
    store = PostgresAuthStore(postgres)
    security_logger = SecurityLogger(postgres)

    email = get_email_config()
    email_client = EmailGatewayClient(
        gateway_url=email["gateway_url"],
        api_key=email["api_key"],
        hmac_secret=email["hmac_secret"],
        app_name=config.app_name,
    )

    client_ids: dict[str, list[str]] = {}
    for provider in SOCIAL_PROVIDERS:
        try:
            ids = get_social_client_ids(provider)
        except (PermissionError, KeyError) as e:
            logger.warning(f"Social login disabled for {provider}: {e}")
            continue
        if ids:
            client_ids[provider] = ids

    token_issuer = TokenIssuer(get_jwt_secret(), config)
    refresh_manager = RefreshSessionManager(store, token_issuer, config)

    accounts = AccountService(
        config=config,
        store=store,
        otp_manager=OtpManager(store, config),
        refresh_manager=refresh_manager,
        password_hasher=PasswordHasher(config.bcrypt_rounds),
        email_client=email_client,
        security_logger=security_logger,
        identity_verifiers=build_registry(client_ids),
    )

    return Services(
        token_issuer=token_issuer,
        accounts=accounts,
        invitations=InvitationService(store, email_client, security_logger),
        sweeper=SessionSweeper(refresh_manager, ValkeyClient(get_valkey_url())),
    )


SWEEPER_JOIN_TIMEOUT_SECONDS = 10.0


def sweeper_lifespan(sweeper: SessionSweeper, interval_seconds: float):
    """Lifespan that runs the expired-session sweep in a daemon thread.

    On shutdown the thread is signalled and joined before the Valkey lease
    connection and the database pools are closed.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        stop_event = threading.Event()
        sweeper_thread = threading.Thread(
            target=sweeper.run_forever,
            args=(interval_seconds, stop_event),
            name="session-sweeper",
            daemon=True,
        )
        sweeper_thread.start()
        try:
            yield
        finally:
            stop_event.set()
            sweeper_thread.join(timeout=SWEEPER_JOIN_TIMEOUT_SECONDS)
            if sweeper_thread.is_alive():
                logger.warning("Session sweeper still running at shutdown")
            sweeper.close()
            PostgresClient.close_all_pools()

    return lifespan


def create_app_from_vault(config: AuthConfig | None = None) -> FastAPI:
    """Production app. The expired-session sweep runs in a daemon thread."""
    config = config or AuthConfig()
    services = build_services(config)
    lifespan = sweeper_lifespan(services.sweeper, config.sweep_interval_minutes * 60)
    return create_app(services, lifespan=lifespan)
