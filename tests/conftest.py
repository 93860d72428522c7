"""Shared pytest fixtures for quote-sync tests."""

import pytest
from dotenv import load_dotenv

from quote_sync.config import Config
from quote_sync.sync.context import SyncContext
from quote_sync.sync.gateway import InMemoryGateway
from quote_sync.sync.models import ConflictStrategy
from quote_sync.sync.persistence import MemoryKeyValueStore

load_dotenv()


def pytest_addoption(parser):
    """Add custom CLI options for test filtering."""
    parser.addoption(
        "--run-live",
        action="store_true",
        default=False,
        help="Run tests that require a live remote endpoint",
    )


def pytest_collection_modifyitems(config, items):
    """Skip live tests unless --run-live is passed."""
    if config.getoption("--run-live"):
        return
    skip_live = pytest.mark.skip(reason="need --run-live option to run")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Keep developer QUOTE_SYNC_* settings out of the tests."""
    for key in (
        "QUOTE_SYNC_REMOTE_URL",
        "QUOTE_SYNC_REMOTE_FORMAT",
        "QUOTE_SYNC_DATA_DIR",
        "QUOTE_SYNC_INTERVAL_MS",
        "QUOTE_SYNC_AUTO",
        "QUOTE_SYNC_STRATEGY",
        "QUOTE_SYNC_SIMULATE_SERVER",
        "QUOTE_SYNC_DEBUG",
        "QUOTE_SYNC_CONFIG",
    ):
        monkeypatch.delenv(key, raising=False)


class ManualClock:
    """Deterministic clock; advances only when told to."""

    def __init__(self, start: int = 1_000_000) -> None:
        self.now = start

    def now_ms(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def kv():
    return MemoryKeyValueStore()


@pytest.fixture
def context(kv, clock):
    """A fresh SyncContext over in-memory storage."""
    return SyncContext(persistence=kv, clock=clock)


@pytest.fixture
def gateway(clock):
    return InMemoryGateway(clock)


@pytest.fixture
def config(tmp_path):
    """A valid Config with the periodic timer disabled."""
    return Config(
        data_dir=str(tmp_path / "data"),
        sync_interval_ms=1000,
        auto_sync_enabled=False,
        conflict_strategy=ConflictStrategy.REMOTE_WINS.value,
        max_backoff_ms=8000,
    )
