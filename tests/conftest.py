"""Pytest configuration and fixtures for Snapward tests."""

from pathlib import Path
from unittest.mock import patch

import pytest


class FakeClock:
    """Epoch-millisecond clock that only moves when told to."""

    def __init__(self, now_ms: int = 1_700_000_000_000):
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, ms: int) -> None:
        self.now_ms += ms

    def set(self, now_ms: int) -> None:
        self.now_ms = now_ms


@pytest.fixture(autouse=True)
def _isolate_user_config(tmp_path):
    """Keep tests away from the real ~/.snapward/config.yaml and singletons."""
    from snapward.config import reset_config
    from snapward.timing import reset_recorder

    reset_config()
    reset_recorder()
    with patch("snapward.config.USER_CONFIG_PATH", tmp_path / "user-config.yaml"):
        yield
    reset_config()
    reset_recorder()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def workspace(tmp_path) -> Path:
    """An empty workspace root."""
    root = tmp_path / "workspace"
    root.mkdir()
    return root


@pytest.fixture
def cooldown_store(tmp_path, clock):
    from snapward.storage.cooldown_store import CooldownStore

    store = CooldownStore(tmp_path / "data" / "cooldowns.db", clock=clock)
    yield store
    store.close()


@pytest.fixture
def snapshot_store(tmp_path):
    from snapward.storage.snapshot_store import SnapshotStore

    return SnapshotStore.at(tmp_path / "data")
