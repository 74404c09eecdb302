"""Tests for daemon service."""

import asyncio
import logging
from unittest.mock import AsyncMock, Mock, mock_open, patch

import pytest

from cadence_cli.config import CadenceConfig
from cadence_cli.daemon.service import (
    CadenceDaemon,
    create_transport,
    daemonize,
    resolve_bot_token,
    run_daemon,
)
from cadence_cli.scheduler.dispatch_scheduler import DispatchScheduler
from cadence_cli.storage.base import BOT_TOKEN, LogKind
from cadence_cli.transport.telegram import TelegramTransport


@pytest.fixture
def config(tmp_path):
    return CadenceConfig(config_dir=tmp_path / "config", data_dir=tmp_path / "data")


class TestBotToken:
    """Tests for bot token resolution."""

    def test_setting_wins(self, store, config):
        """Test the bot_token setting takes precedence over config."""
        config.telegram.bot_token = "from-config"
        store.set_setting(BOT_TOKEN, "  from-setting  ")
        assert resolve_bot_token(store, config) == "from-setting"

    def test_falls_back_to_config(self, store, config):
        """Test an empty setting falls back to config."""
        config.telegram.bot_token = "from-config"
        assert resolve_bot_token(store, config) == "from-config"

    def test_none_when_unset(self, store, config):
        """Test no token anywhere resolves to None."""
        assert resolve_bot_token(store, config) is None

    def test_create_transport(self, store, config):
        """Test the transport follows the telegram config section."""
        config.telegram.parse_mode = ""
        config.telegram.timeout = 5.0
        transport = create_transport(store, config)

        assert isinstance(transport, TelegramTransport)
        assert transport.parse_mode is None
        assert transport.timeout == 5.0


class TestCadenceDaemon:
    """Tests for CadenceDaemon class."""

    @pytest.mark.asyncio
    async def test_daemon_initialization(self, config):
        """Test daemon initialization."""
        daemon = CadenceDaemon(config)

        assert daemon._config is config
        assert daemon.scheduler is None
        assert daemon.store is None
        assert daemon.is_running is False

    @pytest.mark.asyncio
    async def test_start_and_stop(self, config, store, transport):
        """Test start wires the scheduler and stop tears everything down."""
        daemon = CadenceDaemon(config, store=store, transport=transport)

        await daemon.start()
        try:
            assert daemon.is_running is True
            assert isinstance(daemon.scheduler, DispatchScheduler)
            assert daemon.scheduler.is_running
            assert daemon.store is store
        finally:
            await daemon.stop()

        assert daemon.is_running is False
        assert not daemon.scheduler.is_running
        assert transport.closed is True

    @pytest.mark.asyncio
    async def test_start_survives_unready_transport(
        self, config, store, transport, not_configured_error
    ):
        """Test a transport that cannot initialize does not stop the daemon."""
        transport.ready = False
        transport.init_error = not_configured_error
        daemon = CadenceDaemon(config, store=store, transport=transport)

        await daemon.start()
        try:
            assert daemon.is_running is True
        finally:
            await daemon.stop()

        errors = [e.text for e in store.list_logs() if e.kind == LogKind.ERROR]
        assert errors == ["Failed to initialize delivery transport: Bot token not found"]

    @pytest.mark.asyncio
    async def test_start_builds_store_from_config(self, config, transport):
        """Test the store comes from config when not injected."""
        config.storage.backend = "memory"
        daemon = CadenceDaemon(config, transport=transport)

        await daemon.start()
        try:
            assert daemon.store is not None
            assert daemon.store.get_setting(BOT_TOKEN) is not None
        finally:
            await daemon.stop()

    @pytest.mark.asyncio
    async def test_stop_without_start(self, config):
        """Test stop on a daemon that never started does not raise."""
        daemon = CadenceDaemon(config)
        await daemon.stop()
        assert daemon.is_running is False

    @pytest.mark.asyncio
    async def test_stop_tolerates_errors(self, config, store, transport):
        """Test a failing collaborator does not abort shutdown."""
        daemon = CadenceDaemon(config, store=store, transport=transport)
        daemon._scheduler = Mock()
        daemon._scheduler.stop = AsyncMock(side_effect=RuntimeError("boom"))

        await daemon.stop()

        assert transport.closed is True

    @pytest.mark.asyncio
    async def test_run_until_shutdown(self, config):
        """Test run_until_shutdown waits for request_shutdown."""
        daemon = CadenceDaemon(config)

        async def delayed_shutdown():
            await asyncio.sleep(0.01)
            daemon.request_shutdown()

        await asyncio.wait_for(
            asyncio.gather(daemon.run_until_shutdown(), delayed_shutdown()),
            timeout=1.0,
        )


class TestRunDaemon:
    """Tests for run_daemon function."""

    @pytest.mark.asyncio
    async def test_run_daemon_starts_and_stops(self, config):
        """Test run_daemon starts the daemon and stops it after shutdown."""
        mock_daemon = AsyncMock()
        mock_daemon.request_shutdown = Mock()

        with patch("cadence_cli.daemon.service.CadenceDaemon", return_value=mock_daemon):
            await run_daemon(config)

        mock_daemon.start.assert_called_once()
        mock_daemon.run_until_shutdown.assert_called_once()
        mock_daemon.stop.assert_called_once()

    @pytest.mark.asyncio
    async def test_run_daemon_stops_on_start_failure(self, config):
        """Test a failed start still stops the daemon."""
        mock_daemon = AsyncMock()
        mock_daemon.start.side_effect = RuntimeError("no database")

        with patch("cadence_cli.daemon.service.CadenceDaemon", return_value=mock_daemon):
            with pytest.raises(RuntimeError):
                await run_daemon(config)

        mock_daemon.stop.assert_called_once()


class TestDaemonize:
    """Tests for daemonize function."""

    @patch("sys.platform", "win32")
    def test_daemonize_on_windows(self, caplog):
        """Test daemonize does nothing on Windows."""
        with caplog.at_level(logging.WARNING):
            daemonize()

        assert "not supported on Windows" in caplog.text

    @patch("sys.platform", "linux")
    @patch("os.fork")
    @patch("os.setsid")
    @patch("os.dup2")
    @patch("sys.stdout")
    @patch("sys.stderr")
    @patch("sys.stdin")
    def test_daemonize_on_linux(self, mock_stdin, mock_stderr, mock_stdout,
                                mock_dup2, mock_setsid, mock_fork, tmp_path):
        """Test daemonize forks twice and starts a new session."""
        mock_fork.side_effect = [0, 0]

        with patch("builtins.open", mock_open()):
            daemonize(tmp_path / "daemon.log")

        assert mock_fork.call_count == 2
        mock_setsid.assert_called_once()

    @patch("sys.platform", "linux")
    @patch("os.fork", return_value=1234)
    def test_parent_exits(self, mock_fork):
        """Test the parent process exits after the first fork."""
        with pytest.raises(SystemExit):
            daemonize()
