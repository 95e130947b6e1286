"""Document stores and the board transaction.

The board is two whole-text documents (task list and session registry).
Every compound change runs as lock -> read both -> mutate -> write both,
so two writers never interleave and readers never see one document
updated without the other.
"""

from __future__ import annotations

import os
import tempfile
import threading
from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from filelock import FileLock, Timeout

from claimboard.clock import Clock, utc_now
from claimboard.config.schema import DEFAULT_SESSIONS_FILE, DEFAULT_TASKS_FILE
from claimboard.errors import StoreUnavailable
from claimboard.logging import TRACE, get_logger
from claimboard.sessions.registry import SessionRegistry
from claimboard.tasks.store import TaskStore

log = get_logger("storage")

LOCK_FILENAME = ".claimboard.lock"


class DocumentStore(Protocol):
    """Whole-document text storage with an exclusive lock."""

    def read(self, name: str) -> str | None:
        """Return the document text, or None if it does not exist."""
        ...

    def write(self, name: str, text: str) -> None: ...

    def lock(self) -> AbstractContextManager[None]: ...


class FileDocumentStore:
    """Documents as files under a root directory, guarded by a lock file.

    Writes go to a temporary file in the same directory and are moved into
    place with ``os.replace`` so a crash never leaves a half-written file.
    """

    def __init__(self, root: str | Path, lock_timeout: float = 10.0) -> None:
        self._root = Path(root)
        self._lock_path = self._root / LOCK_FILENAME
        self._lock_timeout = lock_timeout

    @property
    def root(self) -> Path:
        return self._root

    def path(self, name: str) -> Path:
        return self._root / name

    def read(self, name: str) -> str | None:
        path = self.path(name)
        try:
            with open(path, encoding="utf-8", newline="") as f:
                return f.read()
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            raise StoreUnavailable(str(path), str(e)) from e

    def write(self, name: str, text: str) -> None:
        path = self.path(name)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
        except OSError as e:
            raise StoreUnavailable(str(path), str(e)) from e
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
                f.write(text)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except OSError as e:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass  # Already moved or never created
            raise StoreUnavailable(str(path), str(e)) from e

    @contextmanager
    def lock(self) -> Iterator[None]:
        try:
            self._root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreUnavailable(str(self._root), str(e)) from e
        lock = FileLock(self._lock_path, timeout=self._lock_timeout)
        try:
            lock.acquire()
        except Timeout as e:
            raise StoreUnavailable(
                str(self._lock_path), f"lock not acquired within {self._lock_timeout}s"
            ) from e
        try:
            yield
        finally:
            lock.release()


class MemoryDocumentStore:
    """In-process document store, for tests and embedding."""

    def __init__(self, documents: dict[str, str] | None = None) -> None:
        self.documents: dict[str, str] = dict(documents or {})
        self.writes = 0
        self._lock = threading.RLock()

    def read(self, name: str) -> str | None:
        return self.documents.get(name)

    def write(self, name: str, text: str) -> None:
        self.documents[name] = text
        self.writes += 1

    @contextmanager
    def lock(self) -> Iterator[None]:
        with self._lock:
            yield


@dataclass
class BoardState:
    """Both stores loaded from one consistent read."""

    tasks: TaskStore
    sessions: SessionRegistry


class BoardStorage:
    """Loads and saves the task list and session registry together."""

    def __init__(
        self,
        store: DocumentStore,
        tasks_name: str = DEFAULT_TASKS_FILE,
        sessions_name: str = DEFAULT_SESSIONS_FILE,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._tasks_name = tasks_name
        self._sessions_name = sessions_name
        self._clock = clock

    @property
    def store(self) -> DocumentStore:
        return self._store

    def _load(self) -> tuple[BoardState, str, str]:
        tasks_text = self._store.read(self._tasks_name) or ""
        sessions_text = self._store.read(self._sessions_name) or ""
        state = BoardState(
            tasks=TaskStore.from_text(tasks_text),
            sessions=SessionRegistry.from_text(sessions_text, clock=self._clock),
        )
        return state, tasks_text, sessions_text

    @contextmanager
    def transaction(self) -> Iterator[BoardState]:
        """Exclusive read-modify-write of both documents.

        Changes are written only if the body finishes without raising, and
        only for documents whose text actually changed.
        """
        with self._store.lock():
            state, tasks_text, sessions_text = self._load()
            yield state
            # Render both before writing either
            new_tasks = state.tasks.to_text()
            new_sessions = state.sessions.to_text()
            if new_tasks != tasks_text:
                self._store.write(self._tasks_name, new_tasks)
                log.log(TRACE, "Wrote %s", self._tasks_name)
            if new_sessions != sessions_text:
                self._store.write(self._sessions_name, new_sessions)
                log.log(TRACE, "Wrote %s", self._sessions_name)

    def snapshot(self) -> BoardState:
        """Consistent read-only copy of the board."""
        with self._store.lock():
            state, _, _ = self._load()
        return state
