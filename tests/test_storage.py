"""Tests for document stores and board transactions."""

from __future__ import annotations

from pathlib import Path

import pytest
from filelock import FileLock

from claimboard.coordination import BoardStorage, FileDocumentStore, MemoryDocumentStore
from claimboard.coordination.storage import LOCK_FILENAME
from claimboard.errors import StoreUnavailable
from claimboard.tasks import TaskStatus
from tests.utils import SAMPLE_TASKS, ManualClock


class TestFileDocumentStore:
    """Tests for the file-backed store."""

    def test_read_missing_returns_none(self, tmp_path: Path) -> None:
        assert FileDocumentStore(tmp_path).read("TASKS.md") is None

    def test_write_then_read(self, tmp_path: Path) -> None:
        store = FileDocumentStore(tmp_path)
        store.write("TASKS.md", "- [ ] One\r\n- [ ] Two\n")
        assert store.read("TASKS.md") == "- [ ] One\r\n- [ ] Two\n"
        assert (tmp_path / "TASKS.md").exists()

    def test_write_leaves_no_temp_files(self, tmp_path: Path) -> None:
        store = FileDocumentStore(tmp_path)
        store.write("TASKS.md", "a")
        store.write("TASKS.md", "b")
        assert sorted(p.name for p in tmp_path.iterdir()) == ["TASKS.md"]

    def test_write_into_subdirectory(self, tmp_path: Path) -> None:
        store = FileDocumentStore(tmp_path)
        store.write("docs/SESSIONS.md", "x")
        assert (tmp_path / "docs" / "SESSIONS.md").read_text() == "x"

    def test_lock_timeout_raises_store_unavailable(self, tmp_path: Path) -> None:
        store = FileDocumentStore(tmp_path, lock_timeout=0.05)
        holder = FileLock(tmp_path / LOCK_FILENAME)
        with holder, pytest.raises(StoreUnavailable):
            with store.lock():
                pass

    def test_read_directory_raises_store_unavailable(self, tmp_path: Path) -> None:
        (tmp_path / "TASKS.md").mkdir()
        with pytest.raises(StoreUnavailable):
            FileDocumentStore(tmp_path).read("TASKS.md")


class TestBoardStorage:
    """Tests for transactions over both documents."""

    def test_transaction_writes_changed_documents(self, clock: ManualClock) -> None:
        store = MemoryDocumentStore({"TASKS.md": SAMPLE_TASKS})
        storage = BoardStorage(store, clock=clock)

        with storage.transaction() as state:
            session = state.sessions.register_session("x")
            state.tasks.set_status("7", TaskStatus.CLAIMED, session.id, agent="x")
            state.sessions.set_claim(session.id, "7")

        assert store.writes == 2
        assert "@x #20241229-143022-x" in store.documents["TASKS.md"]
        assert "| x | 20241229-143022-x | 7 |" in store.documents["SESSIONS.md"]

    def test_unchanged_documents_not_written(self, clock: ManualClock) -> None:
        store = MemoryDocumentStore({"TASKS.md": SAMPLE_TASKS})
        storage = BoardStorage(store, clock=clock)

        with storage.transaction() as state:
            list(state.tasks.list_tasks())

        assert store.writes == 0
        assert "SESSIONS.md" not in store.documents

    def test_failed_transaction_writes_nothing(self, clock: ManualClock) -> None:
        store = MemoryDocumentStore({"TASKS.md": SAMPLE_TASKS})
        storage = BoardStorage(store, clock=clock)

        with pytest.raises(RuntimeError), storage.transaction() as state:
            state.sessions.register_session("x")
            raise RuntimeError("boom")

        assert store.writes == 0
        assert store.documents == {"TASKS.md": SAMPLE_TASKS}

    def test_snapshot_sees_committed_state(self, clock: ManualClock) -> None:
        storage = BoardStorage(MemoryDocumentStore({"TASKS.md": SAMPLE_TASKS}), clock=clock)
        with storage.transaction() as state:
            state.sessions.register_session("x")
        snapshot = storage.snapshot()
        assert [s.agent_name for s in snapshot.sessions.list_active()] == ["x"]

    def test_custom_document_names(self, tmp_path: Path, clock: ManualClock) -> None:
        (tmp_path / "docs").mkdir()
        (tmp_path / "docs" / "PLAN.md").write_text(SAMPLE_TASKS)
        storage = BoardStorage(
            FileDocumentStore(tmp_path),
            tasks_name="docs/PLAN.md",
            sessions_name="docs/AGENTS.md",
            clock=clock,
        )
        with storage.transaction() as state:
            state.sessions.register_session("x")
        assert (tmp_path / "docs" / "AGENTS.md").exists()
        assert storage.snapshot().tasks.get_task("7").description == "Add health endpoint"
