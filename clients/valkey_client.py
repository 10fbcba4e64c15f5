"""
Valkey (Redis-compatible) client for short-lived coordination keys.

Used for the maintenance sweep lease so that only one node runs the
expired-session sweep per interval. Nothing auth-critical lives here:
sessions and passcodes are in Postgres.
Fail-fast: raises on connection failure, never returns fallback values.
"""

import logging

import redis

logger = logging.getLogger(__name__)


class ValkeyClient:
    """
    Redis-compatible client for Valkey.

    Usage:
        client = ValkeyClient("redis://localhost:6379/0")
        if client.set_if_absent("lease:sweep", "node-a", expire_seconds=300):
            ...  # this node holds the lease
    """

    def __init__(self, url: str):
        """
        Initialize Valkey connection.

        Raises:
            redis.ConnectionError: If connection fails
        """
        self._client = redis.from_url(url, decode_responses=True)
        # Verify connectivity immediately (fail-fast)
        self._client.ping()
        logger.info("ValkeyClient connected")

    def ping(self) -> bool:
        """Health check. Raises redis.ConnectionError if unreachable."""
        self._client.ping()
        return True

    def set_if_absent(self, key: str, value: str, expire_seconds: int) -> bool:
        """
        Atomically set key only if it does not exist (SET NX EX).

        Returns True if this call created the key, False if it already existed.
        """
        return bool(self._client.set(key, value, nx=True, ex=expire_seconds))

    def close(self) -> None:
        self._client.close()
        logger.info("ValkeyClient closed")
