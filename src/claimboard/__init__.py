"""claimboard: task claims and session coordination for agents sharing a repo.

Agents share two Markdown documents: a checkbox task list and a table of
active sessions. ``ClaimCoordinator`` changes both under one lock so that
each task has at most one holder.

Example usage:
    from claimboard import ClaimCoordinator, TaskAlreadyClaimed

    coordinator = ClaimCoordinator.open(".")
    session = coordinator.register_session("codex")
    task = coordinator.list_claimable()[0]
    coordinator.claim(session.id, task.id)
"""

from claimboard.coordination import (
    BoardStorage,
    ClaimCoordinator,
    Conflict,
    FileConflictGuard,
    FileDocumentStore,
    MemoryDocumentStore,
)
from claimboard.errors import (
    AlreadyClaimed,
    ClaimLimitExceeded,
    CoordinationError,
    DuplicateId,
    DuplicateSessionId,
    InvalidTransition,
    NoActiveClaim,
    NotFound,
    SessionNotActive,
    SessionNotFound,
    StoreUnavailable,
    TaskAlreadyClaimed,
    TaskNotFound,
)
from claimboard.sessions import ReconcileReport, Session, SessionRegistry, SessionStatus
from claimboard.tasks import Task, TaskStatus, TaskStore

__version__ = "0.1.0"

__all__ = [
    "AlreadyClaimed",
    "BoardStorage",
    "ClaimCoordinator",
    "ClaimLimitExceeded",
    "Conflict",
    "CoordinationError",
    "DuplicateId",
    "DuplicateSessionId",
    "FileConflictGuard",
    "FileDocumentStore",
    "InvalidTransition",
    "MemoryDocumentStore",
    "NoActiveClaim",
    "NotFound",
    "ReconcileReport",
    "Session",
    "SessionNotActive",
    "SessionNotFound",
    "SessionRegistry",
    "SessionStatus",
    "StoreUnavailable",
    "Task",
    "TaskAlreadyClaimed",
    "TaskNotFound",
    "TaskStatus",
    "TaskStore",
    "__version__",
]
