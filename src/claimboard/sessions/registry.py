"""Session registry: live sessions, heartbeats and staleness reconciliation."""

from __future__ import annotations

from collections.abc import Iterator
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from claimboard.clock import Clock, ensure_utc, utc_now
from claimboard.errors import (
    CoordinationError,
    DuplicateSessionId,
    SessionNotFound,
)
from claimboard.logging import VERBOSE, get_logger
from claimboard.sessions.markdown import SessionDocument, SessionTableParser
from claimboard.sessions.schema import (
    ReconcileReport,
    Session,
    SessionStatus,
    make_session_id,
    validate_agent_name,
    validate_session_id,
)
from claimboard.tasks.schema import TaskStatus

if TYPE_CHECKING:
    from claimboard.tasks.store import TaskStore

log = get_logger("sessions")


class SessionQuery:
    """Lazy, restartable view over the live sessions of a registry."""

    def __init__(self, registry: SessionRegistry, status: SessionStatus | None = None) -> None:
        self._registry = registry
        self._status = status

    def __iter__(self) -> Iterator[Session]:
        for session in self._registry.document.sessions():
            if not session.is_live:
                continue
            if self._status is not None and session.status is not self._status:
                continue
            yield session


class SessionRegistry:
    """Owns the Session records of one registry document.

    Like ``TaskStore`` this is an in-memory model; the coordinator loads and
    saves it inside a board transaction.
    """

    def __init__(self, document: SessionDocument | None = None, clock: Clock = utc_now) -> None:
        self._document = document or SessionDocument()
        self._clock = clock
        self._ended: dict[str, Session] = {}

    @classmethod
    def from_text(cls, text: str, clock: Clock = utc_now) -> SessionRegistry:
        return cls(SessionTableParser().parse(text), clock=clock)

    def to_text(self) -> str:
        return self._document.render()

    @property
    def document(self) -> SessionDocument:
        return self._document

    def live_ids(self) -> set[str]:
        return {s.id for s in self._document.sessions() if s.is_live}

    def get_session(self, session_id: str) -> Session:
        for session in self._document.sessions():
            if session.id == session_id:
                return session
        if session_id in self._ended:
            return self._ended[session_id]
        raise SessionNotFound(session_id)

    def get_live_session(self, session_id: str) -> Session:
        session = self.get_session(session_id)
        if not session.is_live:
            raise SessionNotFound(session_id)
        return session

    def list_active(self, status: SessionStatus | None = None) -> SessionQuery:
        """ACTIVE and PAUSED sessions in table order."""
        return SessionQuery(self, status=status)

    def register_session(
        self,
        agent_name: str,
        task_id: str | None = None,
        resources: list[str] | None = None,
        *,
        now: datetime | None = None,
        session_id: str | None = None,
    ) -> Session:
        """Create a new ACTIVE session.

        Generated ids that collide with a live session get a ``-2``, ``-3``...
        suffix. An explicit ``session_id`` that collides is rejected.

        Raises:
            DuplicateSessionId: Explicit id already live.
            ValueError: Agent name is not a single token, or the explicit id
                is not in session id form.
        """
        validate_agent_name(agent_name)
        now = ensure_utc(now or self._clock())
        live = self.live_ids()

        if session_id is not None:
            validate_session_id(session_id)
            if session_id in live:
                raise DuplicateSessionId(session_id)
        else:
            base = make_session_id(agent_name, now)
            session_id = base
            suffix = 2
            while session_id in live:
                session_id = f"{base}-{suffix}"
                suffix += 1
            if session_id != base:
                log.debug("Session id %s taken, using %s", base, session_id)

        session = Session(
            id=session_id,
            agent_name=agent_name,
            claimed_task_id=task_id,
            resources=list(dict.fromkeys(resources or [])),
            started_at=now,
            last_heartbeat=now,
        )
        self._document.rows.append(session)
        log.info("Registered session %s", session_id)
        return session

    def heartbeat(self, session_id: str, now: datetime | None = None) -> Session:
        session = self.get_live_session(session_id)
        session.last_heartbeat = ensure_utc(now or self._clock())
        log.log(VERBOSE, "Heartbeat from %s", session_id)
        return session

    def update_status(self, session_id: str, status: SessionStatus) -> Session:
        """Move a session between ACTIVE and PAUSED, or end it.

        Ending removes the row from the registry. The returned session still
        carries ``claimed_task_id`` so the caller can reopen the task.

        Raises:
            SessionNotFound: Unknown session.
            InvalidTransition: Session already ENDED.
        """
        session = self.get_session(session_id)
        session.transition(status)
        if status is SessionStatus.ENDED:
            self._document.rows = [
                row
                for row in self._document.rows
                if not (isinstance(row, Session) and row.id == session_id)
            ]
            self._ended[session_id] = session
            log.info("Session %s ended", session_id)
        return session

    def set_claim(self, session_id: str, task_id: str | None) -> Session:
        session = self.get_live_session(session_id)
        session.claimed_task_id = task_id
        return session

    def set_resources(self, session_id: str, resources: list[str]) -> Session:
        session = self.get_live_session(session_id)
        session.resources = list(dict.fromkeys(resources))
        return session

    def reconcile(
        self,
        now: datetime,
        stale_after: timedelta,
        tasks: TaskStore | None = None,
    ) -> ReconcileReport:
        """End stale sessions and free their claims.

        A live session is stale when ``now - last_heartbeat > stale_after``.
        Its claimed task (if ``tasks`` is given) goes back to OPEN in the same
        pass. Tasks claimed by sessions that are no longer live are reopened
        too, and session claim pointers that disagree with the task list are
        repaired. Malformed rows and per-session failures are logged and
        skipped.
        """
        now = ensure_utc(now)
        report = ReconcileReport(skipped=len(self._document.malformed_rows))
        for row in self._document.malformed_rows:
            log.warning("Reconcile skipped malformed session row: %s", row.strip())

        for session in list(self._document.sessions()):
            if not (session.is_live and session.is_stale(now, stale_after)):
                continue
            try:
                task_id = session.claimed_task_id
                self.update_status(session.id, SessionStatus.ENDED)
                session.resources = []
                report.ended.append(session)
                log.info(
                    "Session %s is stale (last heartbeat %s), ended",
                    session.id,
                    session.last_heartbeat.isoformat(),
                )
                if tasks is not None and task_id is not None:
                    task = tasks.get_task(task_id)
                    if task.status is TaskStatus.CLAIMED and task.claimed_by == session.id:
                        tasks.set_status(task_id, TaskStatus.OPEN, reason="stale", now=now)
                        report.reopened.append(task_id)
                        log.info("Task %s reopened after stale session %s", task_id, session.id)
            except CoordinationError as e:
                log.warning("Reconcile skipped session %s: %s", session.id, e)

        if tasks is not None:
            self._repair_claims(now, tasks, report)

        return report

    def _repair_claims(self, now: datetime, tasks: TaskStore, report: ReconcileReport) -> None:
        live = {s.id: s for s in self._document.sessions() if s.is_live}
        holders = {t.id: t.claimed_by for t in tasks.list_tasks(status=TaskStatus.CLAIMED)}

        for session in live.values():
            task_id = session.claimed_task_id
            if task_id is not None and holders.get(task_id) != session.id:
                log.warning(
                    "Session %s pointed at task %s it does not hold, cleared", session.id, task_id
                )
                session.claimed_task_id = None

        # Holders whose rows failed to parse are unknown, not gone
        unreadable = self._document.malformed_session_ids

        for task_id, holder_id in holders.items():
            holder = live.get(holder_id or "")
            if holder is None and holder_id in unreadable:
                log.warning(
                    "Task %s held by %s whose session row is malformed, left claimed",
                    task_id,
                    holder_id,
                )
            elif holder is None:
                try:
                    tasks.set_status(task_id, TaskStatus.OPEN, reason="orphaned", now=now)
                except CoordinationError as e:
                    log.warning("Reconcile could not reopen task %s: %s", task_id, e)
                    continue
                report.orphaned.append(task_id)
                log.info("Task %s had no live holder, reopened", task_id)
            elif holder.claimed_task_id is None:
                holder.claimed_task_id = task_id
