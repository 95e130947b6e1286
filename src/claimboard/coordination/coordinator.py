"""Claim coordinator: the single entry point for compound board changes.

Every operation that touches both the task list and the session registry
runs inside one ``BoardStorage.transaction()``, so a task's claim tag and
the owning session's Task column always change together. The coordinator
itself keeps no state between calls.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from pathlib import Path

from claimboard.clock import Clock, ensure_utc, utc_now
from claimboard.config import Config, load_config
from claimboard.coordination.guard import FileConflictGuard
from claimboard.coordination.schema import Conflict
from claimboard.coordination.storage import BoardState, BoardStorage, FileDocumentStore
from claimboard.errors import (
    ClaimLimitExceeded,
    InvalidTransition,
    NoActiveClaim,
    SessionNotActive,
    TaskAlreadyClaimed,
)
from claimboard.logging import get_logger, setup_logging
from claimboard.sessions.schema import ReconcileReport, Session, SessionStatus
from claimboard.tasks.schema import Task, TaskStatus

log = get_logger("coordinator")

DEFAULT_STALE_AFTER = timedelta(minutes=30)


class ClaimCoordinator:
    """Grants, releases and completes claims atomically across both stores.

    Example:
        coordinator = ClaimCoordinator.open("/path/to/project")
        session = coordinator.register_session("codex")
        for task in coordinator.list_claimable(phase="Phase 1"):
            try:
                coordinator.claim(session.id, task.id)
                break
            except TaskAlreadyClaimed:
                continue
    """

    def __init__(
        self,
        storage: BoardStorage,
        *,
        clock: Clock = utc_now,
        stale_after: timedelta = DEFAULT_STALE_AFTER,
    ) -> None:
        self._storage = storage
        self._clock = clock
        self._stale_after = stale_after

    @classmethod
    def open(
        cls,
        root: str | Path,
        config: Config | None = None,
        clock: Clock = utc_now,
    ) -> ClaimCoordinator:
        """Coordinator over the board files in ``root``.

        Args:
            root: Project directory holding the task list and registry.
            config: Explicit config; loaded from the cascade for ``root`` if None.
            clock: Time source for heartbeats and session ids.
        """
        config = config or load_config(root=root)
        setup_logging(config.logging)
        store = FileDocumentStore(root, lock_timeout=config.board.lock_timeout)
        storage = BoardStorage(
            store,
            tasks_name=config.board.tasks_file,
            sessions_name=config.board.sessions_file,
            clock=clock,
        )
        return cls(storage, clock=clock, stale_after=config.board.stale_after_delta)

    @property
    def storage(self) -> BoardStorage:
        return self._storage

    @property
    def stale_after(self) -> timedelta:
        return self._stale_after

    def _now(self) -> datetime:
        return ensure_utc(self._clock())

    # =========================================================================
    # Sessions
    # =========================================================================

    def register_session(
        self,
        agent_name: str,
        task_id: str | None = None,
        resources: list[str] | None = None,
        *,
        session_id: str | None = None,
    ) -> Session:
        """Start a session, optionally claiming a task and declaring files.

        The claim and declarations happen in the same transaction as the
        registration, so a failed claim registers nothing.
        """
        now = self._now()
        with self._storage.transaction() as state:
            session = state.sessions.register_session(agent_name, now=now, session_id=session_id)
            if task_id is not None:
                self._claim(state, session, task_id, now)
            if resources:
                FileConflictGuard(state.sessions).declare_resources(session.id, resources)
            return session

    def heartbeat(self, session_id: str) -> Session:
        with self._storage.transaction() as state:
            return state.sessions.heartbeat(session_id, now=self._now())

    def pause(self, session_id: str) -> Session:
        return self._set_status(session_id, SessionStatus.PAUSED)

    def resume(self, session_id: str) -> Session:
        return self._set_status(session_id, SessionStatus.ACTIVE)

    def _set_status(self, session_id: str, status: SessionStatus) -> Session:
        now = self._now()
        with self._storage.transaction() as state:
            session = state.sessions.update_status(session_id, status)
            session.last_heartbeat = now
            log.info("Session %s is now %s", session_id, status.value)
            return session

    def end_session(self, session_id: str) -> Session:
        """Clean shutdown: release any claim, drop declarations, remove the row."""
        now = self._now()
        with self._storage.transaction() as state:
            session = state.sessions.get_live_session(session_id)
            self._release(state, session, now, reason="ended")
            FileConflictGuard(state.sessions).clear_resources(session_id)
            return state.sessions.update_status(session_id, SessionStatus.ENDED)

    def get_session(self, session_id: str) -> Session:
        return self._storage.snapshot().sessions.get_live_session(session_id)

    def list_active(self) -> list[Session]:
        return list(self._storage.snapshot().sessions.list_active())

    # =========================================================================
    # Claims
    # =========================================================================

    def claim(self, session_id: str, task_id: str) -> Task:
        """Claim a task for a session.

        Raises:
            SessionNotFound: Unknown or ended session.
            SessionNotActive: Session is paused.
            TaskNotFound: Unknown task.
            TaskAlreadyClaimed: Another session holds the task.
            ClaimLimitExceeded: The session already holds a different task.
            InvalidTransition: The task is completed.
        """
        now = self._now()
        with self._storage.transaction() as state:
            session = state.sessions.get_live_session(session_id)
            return self._claim(state, session, task_id, now)

    def _claim(self, state: BoardState, session: Session, task_id: str, now: datetime) -> Task:
        if session.status is not SessionStatus.ACTIVE:
            raise SessionNotActive(session.id, session.status.value)

        task = state.tasks.get_task(task_id)
        if session.claimed_task_id is not None and session.claimed_task_id != task_id:
            raise ClaimLimitExceeded(session.id, session.claimed_task_id)
        if task.status is TaskStatus.CLAIMED and task.claimed_by != session.id:
            log.info("Claim on %s by %s lost to %s", task_id, session.id, task.claimed_by)
            raise TaskAlreadyClaimed(task_id, task.claimed_by)

        task = state.tasks.set_status(
            task_id, TaskStatus.CLAIMED, session.id, agent=session.agent_name, now=now
        )
        state.sessions.set_claim(session.id, task_id)
        session.last_heartbeat = now
        log.info("Task %s claimed by %s", task_id, session.id)
        return task

    def release(self, session_id: str) -> Task | None:
        """Give up the session's claim, if any.

        Idempotent: a session with nothing claimed is left as it is.

        Returns:
            The reopened task, or None if nothing was held.
        """
        now = self._now()
        with self._storage.transaction() as state:
            session = state.sessions.get_live_session(session_id)
            task = self._release(state, session, now, reason=None)
            if task is not None:
                FileConflictGuard(state.sessions).clear_resources(session_id)
            session.last_heartbeat = now
            return task

    def _release(
        self, state: BoardState, session: Session, now: datetime, reason: str | None
    ) -> Task | None:
        task_id = session.claimed_task_id
        if task_id is None:
            return None

        state.sessions.set_claim(session.id, None)
        task = state.tasks.get_task(task_id)
        if task.status is not TaskStatus.CLAIMED or task.claimed_by != session.id:
            log.warning("Session %s pointed at %s without holding it", session.id, task_id)
            return None

        task = state.tasks.set_status(
            task_id, TaskStatus.OPEN, session.id, reason=reason, now=now
        )
        log.info("Task %s released by %s", task_id, session.id)
        return task

    def complete(self, session_id: str) -> Task:
        """Mark the session's claimed task as completed.

        Raises:
            NoActiveClaim: The session holds no claim.
        """
        now = self._now()
        with self._storage.transaction() as state:
            session = state.sessions.get_live_session(session_id)
            task_id = session.claimed_task_id
            if task_id is None:
                raise NoActiveClaim(session_id)

            task = state.tasks.set_status(task_id, TaskStatus.COMPLETED, session.id, now=now)
            state.sessions.set_claim(session_id, None)
            FileConflictGuard(state.sessions).clear_resources(session_id)
            session.last_heartbeat = now
            log.info("Task %s completed by %s", task_id, session_id)
            return task

    def force_release(self, task_id: str, requested_by: str) -> Task:
        """Take a claim away from a session that is stale or gone.

        Raises:
            TaskAlreadyClaimed: The holder is live and heartbeating.
            InvalidTransition: The task is not claimed.
        """
        now = self._now()
        with self._storage.transaction() as state:
            requester = state.sessions.get_live_session(requested_by)
            task = state.tasks.get_task(task_id)
            if task.status is not TaskStatus.CLAIMED:
                raise InvalidTransition(f"task {task_id}", task.status.value, "released")

            holder_id = task.claimed_by or ""
            holder = next((s for s in state.sessions.list_active() if s.id == holder_id), None)
            if holder is not None:
                if not holder.is_stale(now, self._stale_after):
                    raise TaskAlreadyClaimed(task_id, holder_id)
                holder.resources = []
                state.sessions.update_status(holder_id, SessionStatus.ENDED)
                log.info("Session %s ended by force release from %s", holder_id, requested_by)

            task = state.tasks.set_status(
                task_id, TaskStatus.OPEN, reason=f"forced by {requested_by}", now=now
            )
            requester.last_heartbeat = now
            log.info("Task %s force-released by %s", task_id, requested_by)
            return task

    # =========================================================================
    # Reconciliation and listing
    # =========================================================================

    def reconcile(
        self, now: datetime | None = None, stale_after: timedelta | None = None
    ) -> ReconcileReport:
        """End stale sessions and reopen their tasks."""
        now = ensure_utc(now) if now is not None else self._now()
        stale_after = stale_after if stale_after is not None else self._stale_after
        with self._storage.transaction() as state:
            report = state.sessions.reconcile(now, stale_after, state.tasks)
        if report.changed:
            log.info(
                "Reconciled: %d session(s) ended, %d task(s) reopened",
                len(report.ended),
                len(report.reopened) + len(report.orphaned),
            )
        return report

    def list_claimable(self, phase: str | None = None) -> list[Task]:
        """Reconcile, then list the OPEN tasks in document order."""
        now = self._now()
        with self._storage.transaction() as state:
            state.sessions.reconcile(now, self._stale_after, state.tasks)
            return list(state.tasks.list_tasks(phase=phase, status=TaskStatus.OPEN))

    def list_tasks(
        self,
        phase: str | None = None,
        status: TaskStatus | None = None,
        section: str | None = None,
    ) -> list[Task]:
        snapshot = self._storage.snapshot()
        return list(snapshot.tasks.list_tasks(phase=phase, status=status, section=section))

    def get_task(self, task_id: str) -> Task:
        return self._storage.snapshot().tasks.get_task(task_id)

    def append_task(
        self,
        description: str,
        phase: str,
        section: str | None = None,
        task_id: str | None = None,
    ) -> Task:
        with self._storage.transaction() as state:
            return state.tasks.append_task(description, phase, section=section, task_id=task_id)

    def progress(self, phase: str | None = None) -> dict[TaskStatus, int]:
        return self._storage.snapshot().tasks.progress(phase=phase)

    # =========================================================================
    # File conflicts
    # =========================================================================

    def declare_resources(self, session_id: str, patterns: list[str]) -> list[Conflict]:
        """Declare files the session is editing.

        Returns:
            Advisory conflicts with other live sessions at declaration time.
        """
        now = self._now()
        with self._storage.transaction() as state:
            guard = FileConflictGuard(state.sessions)
            guard.declare_resources(session_id, patterns)
            state.sessions.heartbeat(session_id, now=now)
            return guard.check_conflict(patterns, session_id=session_id)

    def check_conflict(self, patterns: list[str], session_id: str | None = None) -> list[Conflict]:
        snapshot = self._storage.snapshot()
        return FileConflictGuard(snapshot.sessions).check_conflict(patterns, session_id=session_id)

    def clear_resources(self, session_id: str) -> None:
        with self._storage.transaction() as state:
            FileConflictGuard(state.sessions).clear_resources(session_id)
            state.sessions.heartbeat(session_id, now=self._now())
