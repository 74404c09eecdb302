"""PID file tracking the running Cadence daemon."""

import os
import signal
import time
from pathlib import Path
from typing import Optional


class DaemonAlreadyRunningError(RuntimeError):
    """Raised when a live daemon already owns the PID file."""

    def __init__(self, pid: int):
        super().__init__(f"Daemon is already running (PID: {pid})")
        self.pid = pid


def _process_alive(pid: int) -> bool:
    try:
        # Signal 0 only checks that the process exists
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by someone else
        return True
    except OSError:
        return False
    return True


class PIDFile:
    """Daemon PID file.

    Example:
        pid_file = PIDFile(config.pid_file)
        pid_file.acquire()
        try:
            ...
        finally:
            pid_file.remove()
    """

    def __init__(self, path: Path):
        self.path = path

    def read(self) -> Optional[int]:
        """Read the PID, or None if the file is missing or garbled."""
        try:
            return int(self.path.read_text().strip())
        except (FileNotFoundError, ValueError, OSError):
            return None

    def create(self) -> None:
        """Write the current process ID, creating parent directories."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(str(os.getpid()))

    def remove(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass

    def is_running(self) -> bool:
        pid = self.read()
        return pid is not None and _process_alive(pid)

    def get_pid(self) -> Optional[int]:
        """PID of the running daemon, or None if it is not running."""
        pid = self.read()
        if pid is not None and _process_alive(pid):
            return pid
        return None

    def clear_if_stale(self) -> bool:
        """Remove the file if its process is gone.

        Returns:
            True if a stale file was removed
        """
        pid = self.read()
        if pid is None or _process_alive(pid):
            return False
        self.remove()
        return True

    def acquire(self) -> None:
        """Claim the PID file for this process.

        Raises:
            DaemonAlreadyRunningError: If another live process holds it
        """
        pid = self.get_pid()
        if pid is not None and pid != os.getpid():
            raise DaemonAlreadyRunningError(pid)
        self.clear_if_stale()
        self.create()

    def terminate(self, timeout: float = 5.0, force: bool = False) -> bool:
        """Signal the daemon and wait for it to exit.

        Sends SIGTERM (SIGKILL with ``force``), polls until the process is
        gone or ``timeout`` elapses, and removes the file once it is.

        Returns:
            True if the process is no longer running

        Raises:
            PermissionError: If the process cannot be signalled
        """
        pid = self.get_pid()
        if pid is None:
            self.remove()
            return True

        try:
            os.kill(pid, signal.SIGKILL if force else signal.SIGTERM)
        except ProcessLookupError:
            self.remove()
            return True

        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if not _process_alive(pid):
                self.remove()
                return True
            time.sleep(0.1)
        return False
