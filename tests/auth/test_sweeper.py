"""Tests for SessionSweeper - leased expired-session sweep."""

import threading
from datetime import timedelta
from unittest.mock import Mock

import pytest

from auth.refresh import RefreshSessionManager
from auth.sweeper import SessionSweeper
from clients.valkey_client import ValkeyClient
from utils.timezone import now_utc


@pytest.fixture
def mock_refresh_manager():
    mock = Mock(spec=RefreshSessionManager)
    mock.sweep_expired.return_value = 3
    return mock


@pytest.fixture
def mock_valkey():
    return Mock(spec=ValkeyClient)


class TestRunOnce:

    def test_sweeps_when_lease_acquired(self, mock_refresh_manager, mock_valkey):
        mock_valkey.set_if_absent.return_value = True
        sweeper = SessionSweeper(mock_refresh_manager, mock_valkey, lease_seconds=60, node_id="node-a")

        assert sweeper.run_once() == 3
        mock_valkey.set_if_absent.assert_called_once_with(SessionSweeper.LEASE_KEY, "node-a", 60)

    def test_skips_when_lease_held(self, mock_refresh_manager, mock_valkey):
        mock_valkey.set_if_absent.return_value = False
        sweeper = SessionSweeper(mock_refresh_manager, mock_valkey)

        assert sweeper.run_once() == 0
        mock_refresh_manager.sweep_expired.assert_not_called()

    def test_sweeps_without_valkey(self, mock_refresh_manager):
        assert SessionSweeper(mock_refresh_manager).run_once() == 3


class TestRunForever:

    def test_stops_on_event(self, mock_refresh_manager):
        stop = threading.Event()
        sweeper = SessionSweeper(mock_refresh_manager)

        def sweep_then_stop():
            stop.set()
            return 1

        mock_refresh_manager.sweep_expired.side_effect = sweep_then_stop

        sweeper.run_forever(interval_seconds=60, stop_event=stop)

        mock_refresh_manager.sweep_expired.assert_called_once()

    def test_failure_does_not_stop_loop(self, mock_refresh_manager):
        stop = threading.Event()
        calls = []

        def fail_then_stop():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("database down")
            stop.set()
            return 0

        mock_refresh_manager.sweep_expired.side_effect = fail_then_stop

        SessionSweeper(mock_refresh_manager).run_forever(interval_seconds=0, stop_event=stop)

        assert len(calls) == 2

    def test_sweeps_real_store(self, refresh_manager, store):
        user = store.create_user("sweep@example.com", role="mother")
        past = now_utc() - timedelta(days=8)
        store.replace_refresh_session(user.id, "expired", past + timedelta(days=7), past)

        assert SessionSweeper(refresh_manager).run_once() == 1


class TestClose:

    def test_closes_valkey(self, mock_refresh_manager, mock_valkey):
        SessionSweeper(mock_refresh_manager, mock_valkey).close()

        mock_valkey.close.assert_called_once()

    def test_close_without_valkey(self, mock_refresh_manager):
        SessionSweeper(mock_refresh_manager).close()
