"""Typed failures raised by the task store, session registry and coordinator.

Claim races are expected outcomes: callers catch ``TaskAlreadyClaimed`` and
pick another task.
"""

from __future__ import annotations


class CoordinationError(Exception):
    """Base class for all claimboard errors."""


class NotFound(CoordinationError):
    """A task or session id is unknown."""


class TaskNotFound(NotFound):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


class SessionNotFound(NotFound):
    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session not found or already ended: {session_id}")
        self.session_id = session_id


UnknownSession = SessionNotFound


class InvalidTransition(CoordinationError):
    """A requested state change is not allowed by the state machine."""

    def __init__(self, subject: str, current: str, requested: str) -> None:
        super().__init__(f"Invalid transition for {subject}: {current} -> {requested}")
        self.subject = subject
        self.current = current
        self.requested = requested


class AlreadyClaimed(CoordinationError):
    """The task is held by a different session."""

    def __init__(self, task_id: str, holder: str | None) -> None:
        super().__init__(f"Task {task_id} is already claimed by {holder}")
        self.task_id = task_id
        self.holder = holder


TaskAlreadyClaimed = AlreadyClaimed


class DuplicateId(CoordinationError):
    """An id collides with an existing record."""

    def __init__(self, record_id: str, kind: str = "task") -> None:
        super().__init__(f"Duplicate {kind} id: {record_id}")
        self.record_id = record_id
        self.kind = kind


class DuplicateSessionId(DuplicateId):
    def __init__(self, session_id: str) -> None:
        super().__init__(session_id, kind="session")


class NoActiveClaim(CoordinationError):
    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session {session_id} holds no claim")
        self.session_id = session_id


class SessionNotActive(CoordinationError):
    def __init__(self, session_id: str, status: str) -> None:
        super().__init__(f"Session {session_id} is {status}, not active")
        self.session_id = session_id
        self.status = status


class ClaimLimitExceeded(CoordinationError):
    """The session already holds as many claims as it may."""

    def __init__(self, session_id: str, held_task_id: str) -> None:
        super().__init__(f"Session {session_id} already holds task {held_task_id}")
        self.session_id = session_id
        self.held_task_id = held_task_id


class StoreUnavailable(CoordinationError):
    """The underlying document could not be read, written or locked."""

    def __init__(self, name: str, reason: str) -> None:
        super().__init__(f"Store unavailable ({name}): {reason}")
        self.name = name
        self.reason = reason
