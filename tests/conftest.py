"""Shared fixtures for Cadence tests."""

import random
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

import pytest

from cadence_cli.activity import ActivityLog
from cadence_cli.config import clear_config_cache
from cadence_cli.scheduler.dispatch import DispatchInvoker
from cadence_cli.scheduler.dispatch_scheduler import DispatchScheduler
from cadence_cli.storage.memory import MemoryRecordStore
from cadence_cli.transport.base import DeliveryTransport
from cadence_cli.transport.exceptions import TransportError, TransportNotConfiguredError


START = datetime(2024, 1, 1, 12, 0, 0)


class FakeClock:
    """Manually advanced naive-UTC clock."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: float = 0, seconds: float = 0) -> datetime:
        self.now += timedelta(minutes=minutes, seconds=seconds)
        return self.now


class FakeTransport(DeliveryTransport):
    """In-memory transport recording every send.

    ``fail_with`` makes sends raise; ``succeed=False`` makes them return False.
    """

    def __init__(self, ready: bool = True, init_error: Optional[Exception] = None):
        self.ready = ready
        self.init_error = init_error
        self.succeed = True
        self.fail_with: Optional[Exception] = None
        self.sent: List[Tuple[str, str]] = []
        self.init_calls = 0
        self.valid_destinations = set()
        self.closed = False

    async def initialize(self) -> None:
        self.init_calls += 1
        if self.init_error is not None:
            raise self.init_error
        self.ready = True

    def is_ready(self) -> bool:
        return self.ready

    async def send(self, destination: str, payload: str) -> bool:
        self.sent.append((destination, payload))
        if self.fail_with is not None:
            raise self.fail_with
        return self.succeed

    async def validate_destination(self, destination: str) -> bool:
        if self.fail_with is not None:
            raise self.fail_with
        return destination in self.valid_destinations

    async def close(self) -> None:
        self.closed = True


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch, tmp_path):
    """Keep every test away from the real ~/.config and ~/.local."""
    for var in ("CADENCE_BOT_TOKEN", "TELEGRAM_BOT_TOKEN", "CADENCE_STORAGE_BACKEND",
                "CADENCE_DATABASE_URL", "CADENCE_TICK_INTERVAL"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("CADENCE_CONFIG_DIR", str(tmp_path / "config"))
    monkeypatch.setenv("CADENCE_DATA_DIR", str(tmp_path / "data"))
    clear_config_cache()
    yield
    clear_config_cache()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return MemoryRecordStore(clock=clock)


@pytest.fixture
def activity(store):
    return ActivityLog(store)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def invoker(transport, activity):
    return DispatchInvoker(transport, activity)


@pytest.fixture
def engine(store, invoker, activity, clock):
    return DispatchScheduler(
        store,
        invoker,
        activity,
        tick_interval=60,
        clock=clock,
        rng=random.Random(1234),
    )


@pytest.fixture
def not_configured_error():
    return TransportNotConfiguredError("Bot token not found")


@pytest.fixture
def send_error():
    return TransportError("Forbidden: bot was kicked from the group chat", "-100123")
