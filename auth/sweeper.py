"""Periodic revocation of expired refresh sessions.

Every node may run a sweeper. A short Valkey lease (SET NX EX) keeps the
sweep to one node per interval; the sweep itself is idempotent, so a node
without Valkey simply sweeps every time.
"""

import logging
import socket
import threading

from auth.refresh import RefreshSessionManager
from clients.valkey_client import ValkeyClient

logger = logging.getLogger(__name__)


class SessionSweeper:
    """Runs RefreshSessionManager.sweep_expired under a cluster-wide lease."""

    LEASE_KEY = "lease:refresh_session_sweep"

    def __init__(
        self,
        refresh_manager: RefreshSessionManager,
        valkey: ValkeyClient | None = None,
        lease_seconds: int = 300,
        node_id: str | None = None,
    ):
        self._sessions = refresh_manager
        self._valkey = valkey
        self._lease_seconds = lease_seconds
        self._node_id = node_id or socket.gethostname()

    def run_once(self) -> int:
        """Sweep once if this node wins the lease. Returns sessions revoked."""
        if self._valkey is not None:
            if not self._valkey.set_if_absent(self.LEASE_KEY, self._node_id, self._lease_seconds):
                logger.debug("Sweep lease held by another node, skipping")
                return 0
        return self._sessions.sweep_expired()

    def run_forever(self, interval_seconds: float, stop_event: threading.Event) -> None:
        """Sweep every interval until stop_event is set.

        A failed sweep is logged and retried on the next interval.
        """
        logger.info(f"Session sweeper started on {self._node_id} (every {interval_seconds}s)")
        while not stop_event.is_set():
            try:
                self.run_once()
            except Exception:
                logger.exception("Expired session sweep failed")
            stop_event.wait(interval_seconds)
        logger.info("Session sweeper stopped")

    def close(self) -> None:
        """Release the lease connection. Call after the sweep thread has stopped."""
        if self._valkey is not None:
            self._valkey.close()
