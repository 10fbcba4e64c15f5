# Infrastructure clients
from clients.vault_client import (
    VaultClient,
    get_database_url,
    get_valkey_url,
    get_jwt_secret,
    get_email_config,
    get_social_client_ids,
)
from clients.postgres_client import PostgresClient, PostgresUnavailableError
from clients.valkey_client import ValkeyClient
from clients.email_client import EmailGatewayClient, EmailGatewayError
