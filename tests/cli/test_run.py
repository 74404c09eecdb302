"""Tests for run CLI command."""

import logging
import os
from unittest.mock import AsyncMock, patch

import pytest
from typer.testing import CliRunner

from cadence_cli.cli.exit_codes import ExitCode
from cadence_cli.cli.run import _setup_daemon_logging, app
from cadence_cli.config import load_config
from cadence_cli.main import app as main_app


runner = CliRunner()


@pytest.fixture
def pid_path():
    path = load_config().pid_file
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    level = root.level
    yield
    for handler in root.handlers[:]:
        if type(handler) in (logging.FileHandler, logging.StreamHandler):
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


class TestSetupDaemonLogging:
    """Tests for _setup_daemon_logging function."""

    def test_logs_to_file(self, tmp_path, restore_logging):
        log_file = tmp_path / "logs" / "daemon.log"

        _setup_daemon_logging("debug", "%(levelname)s %(message)s", log_file)
        logging.getLogger("cadence_cli.test").debug("hello daemon")

        assert log_file.parent.exists()
        assert logging.getLogger().level == logging.DEBUG
        for handler in logging.getLogger().handlers:
            handler.flush()
        assert "DEBUG hello daemon" in log_file.read_text()

    def test_logs_to_stderr(self, restore_logging):
        _setup_daemon_logging("warning", "%(message)s")

        handlers = logging.getLogger().handlers
        assert len(handlers) == 1
        assert isinstance(handlers[0], logging.StreamHandler)
        assert logging.getLogger().level == logging.WARNING

    def test_unknown_level_falls_back_to_info(self, restore_logging):
        _setup_daemon_logging("chatty", "%(message)s")
        assert logging.getLogger().level == logging.INFO

    def test_library_loggers_quietened(self, restore_logging):
        """Test request logging cannot leak the bot token at DEBUG."""
        _setup_daemon_logging("debug", "%(message)s")

        assert logging.getLogger("apscheduler").level == logging.WARNING
        assert not logging.getLogger("httpx").isEnabledFor(logging.INFO)


class TestRunCommand:
    """Tests for the run command."""

    def test_run_help(self):
        result = runner.invoke(app, ["--help"])

        assert result.exit_code == 0
        assert "dispatch daemon" in result.output
        assert "--daemon" in result.output
        assert "status" in result.output
        assert "stop" in result.output

    def test_run_foreground(self, pid_path):
        """Test a foreground run writes the PID file and runs the daemon."""
        with patch("cadence_cli.daemon.service.run_daemon", new=AsyncMock()) as mock_run, \
                patch("cadence_cli.cli.run._setup_daemon_logging") as mock_logging, \
                patch("cadence_cli.cli.run.atexit") as mock_atexit:
            result = runner.invoke(app, [])

        assert result.exit_code == 0, result.output
        assert "Starting Cadence daemon" in result.output
        mock_run.assert_awaited_once()
        mock_logging.assert_called_once()
        assert pid_path.read_text() == str(os.getpid())
        mock_atexit.register.assert_called_once()

    def test_refuses_when_running(self, pid_path):
        """Test a second daemon is refused while the first is alive."""
        pid_path.write_text(str(os.getpid()))

        with patch("cadence_cli.daemon.service.run_daemon", new=AsyncMock()) as mock_run:
            result = runner.invoke(app, [])

        assert result.exit_code == ExitCode.DAEMON_ERROR
        assert "already running" in result.output
        mock_run.assert_not_called()

    def test_invalid_config(self, monkeypatch):
        monkeypatch.setenv("CADENCE_TICK_INTERVAL", "0")

        with patch("cadence_cli.daemon.service.run_daemon", new=AsyncMock()) as mock_run:
            result = runner.invoke(app, [])

        assert result.exit_code == ExitCode.CONFIGURATION_ERROR
        assert "scheduler.tick_interval" in result.output
        mock_run.assert_not_called()

    def test_daemon_failure(self, pid_path):
        with patch("cadence_cli.daemon.service.run_daemon",
                   new=AsyncMock(side_effect=RuntimeError("database is locked"))), \
                patch("cadence_cli.cli.run._setup_daemon_logging"), \
                patch("cadence_cli.cli.run.atexit"):
            result = runner.invoke(app, [])

        assert result.exit_code == ExitCode.GENERAL_ERROR
        assert "database is locked" in result.output


class TestStatusCommand:
    """Tests for run status."""

    def test_not_running(self):
        result = runner.invoke(app, ["status"])
        assert result.exit_code == 0
        assert "Daemon is not running" in result.output

    def test_running(self, pid_path):
        pid_path.write_text(str(os.getpid()))

        result = runner.invoke(app, ["status"])

        assert result.exit_code == 0
        assert "Daemon is running" in result.output
        assert str(os.getpid()) in result.output

    def test_running_shows_database_file(self, pid_path):
        """Test status reports the SQLite file once it exists."""
        pid_path.write_text(str(os.getpid()))

        result = runner.invoke(app, ["status"])
        assert "not created yet" in " ".join(result.output.split())

        runner.invoke(main_app, ["messages", "list"])
        result = runner.invoke(app, ["status"])
        output = " ".join(result.output.split())
        assert "Database file:" in output
        assert "KiB" in output

    def test_stale_pid_file_removed(self, pid_path):
        pid_path.write_text("4242")

        with patch("cadence_cli.daemon.pid._process_alive", return_value=False):
            result = runner.invoke(app, ["status"])

        assert "removed stale PID file" in result.output
        assert not pid_path.exists()


class TestStopCommand:
    """Tests for run stop."""

    def test_no_pid_file(self):
        result = runner.invoke(app, ["stop"])
        assert result.exit_code == 0
        assert "no PID file found" in result.output

    def test_stale_pid_file(self, pid_path):
        pid_path.write_text("4242")

        with patch("cadence_cli.daemon.pid._process_alive", return_value=False):
            result = runner.invoke(app, ["stop"])

        assert result.exit_code == 0
        assert "stale PID file" in result.output
        assert not pid_path.exists()

    def test_stop_running(self, pid_path):
        pid_path.write_text("4242")

        with patch("cadence_cli.daemon.pid._process_alive", return_value=True), \
                patch("cadence_cli.daemon.pid.PIDFile.terminate", return_value=True) as mock_terminate:
            result = runner.invoke(app, ["stop", "--force"])

        assert result.exit_code == 0
        assert "Daemon stopped (PID: 4242)" in result.output
        mock_terminate.assert_called_once_with(timeout=10.0, force=True)

    def test_stop_still_shutting_down(self, pid_path):
        pid_path.write_text("4242")

        with patch("cadence_cli.daemon.pid._process_alive", return_value=True), \
                patch("cadence_cli.daemon.pid.PIDFile.terminate", return_value=False):
            result = runner.invoke(app, ["stop"])

        assert result.exit_code == 0
        assert "still shutting down" in result.output

    def test_stop_permission_denied(self, pid_path):
        pid_path.write_text("4242")

        with patch("cadence_cli.daemon.pid._process_alive", return_value=True), \
                patch("cadence_cli.daemon.pid.PIDFile.terminate", side_effect=PermissionError):
            result = runner.invoke(app, ["stop"])

        assert result.exit_code == ExitCode.DAEMON_ERROR
        assert "Permission denied" in result.output
