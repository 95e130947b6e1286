"""Root pytest configuration for all tests."""

from __future__ import annotations

import pytest

from claimboard.config import reset_config
from claimboard.config.schema import DEFAULT_TASKS_FILE
from claimboard.coordination import BoardStorage, ClaimCoordinator, MemoryDocumentStore
from tests.utils import SAMPLE_TASKS, ManualClock


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def memory_store() -> MemoryDocumentStore:
    return MemoryDocumentStore({DEFAULT_TASKS_FILE: SAMPLE_TASKS})


@pytest.fixture
def coordinator(memory_store: MemoryDocumentStore, clock: ManualClock) -> ClaimCoordinator:
    """Coordinator over the sample task list, kept in memory."""
    storage = BoardStorage(memory_store, clock=clock)
    return ClaimCoordinator(storage, clock=clock)


@pytest.fixture(autouse=True)
def isolated_config(tmp_path_factory: pytest.TempPathFactory, monkeypatch: pytest.MonkeyPatch):
    """Keep the user's own config and env out of the tests."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path_factory.mktemp("xdg")))
    monkeypatch.delenv("CLAIMBOARD_LOG", raising=False)
    monkeypatch.delenv("CLAIMBOARD_STALE_AFTER", raising=False)
    reset_config()
    yield
    reset_config()
