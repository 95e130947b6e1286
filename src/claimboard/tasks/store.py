"""Task store: claim state machine over a parsed task list."""

from __future__ import annotations

import re
from collections.abc import Iterator
from datetime import datetime

from claimboard.clock import format_timestamp, utc_now
from claimboard.errors import (
    DuplicateId,
    InvalidTransition,
    TaskAlreadyClaimed,
    TaskNotFound,
)
from claimboard.logging import get_logger
from claimboard.tasks.markdown import TaskDocument, TaskListParser, render_task
from claimboard.tasks.schema import Heading, Task, TaskStatus, derive_task_id

log = get_logger("tasks")

_EXPLICIT_ID = re.compile(r"^[\w.:-]+$")


class TaskQuery:
    """Lazy, restartable view over the tasks of a store.

    Each iteration walks the current document again in document order.
    """

    def __init__(
        self,
        store: TaskStore,
        phase: str | None = None,
        status: TaskStatus | None = None,
        section: str | None = None,
    ) -> None:
        self._store = store
        self._phase = phase
        self._status = status
        self._section = section

    def __iter__(self) -> Iterator[Task]:
        for task in self._store.document.tasks():
            if self._phase is not None and task.phase != self._phase:
                continue
            if self._section is not None and task.section != self._section:
                continue
            if self._status is not None and task.status is not self._status:
                continue
            yield task


class TaskStore:
    """Owns the Task records of one task list document.

    The store is an in-memory model; persistence and locking are handled by
    ``claimboard.coordination.storage``. Transitions:

        OPEN -> CLAIMED -> COMPLETED (terminal)
        CLAIMED -> OPEN (release, with an audit note)
    """

    def __init__(self, document: TaskDocument | None = None) -> None:
        self._document = document or TaskDocument()

    @classmethod
    def from_text(cls, text: str) -> TaskStore:
        return cls(TaskListParser().parse(text))

    def to_text(self) -> str:
        return self._document.render()

    @property
    def document(self) -> TaskDocument:
        return self._document

    def list_tasks(
        self,
        phase: str | None = None,
        status: TaskStatus | None = None,
        section: str | None = None,
    ) -> TaskQuery:
        """Tasks matching the optional filters, in document order."""
        return TaskQuery(self, phase=phase, status=status, section=section)

    def get_task(self, task_id: str) -> Task:
        for task in self._document.tasks():
            if task.id == task_id:
                return task
        raise TaskNotFound(task_id)

    def progress(self, phase: str | None = None) -> dict[TaskStatus, int]:
        """Count tasks per stored status (RELEASED never appears)."""
        counts = {TaskStatus.OPEN: 0, TaskStatus.CLAIMED: 0, TaskStatus.COMPLETED: 0}
        for task in self.list_tasks(phase=phase):
            counts[task.status] += 1
        return counts

    def set_status(
        self,
        task_id: str,
        status: TaskStatus,
        session_ref: str | None = None,
        *,
        agent: str | None = None,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> Task:
        """Apply one state machine transition to a task.

        Args:
            task_id: Task to change.
            status: Requested status. RELEASED is stored as OPEN.
            session_ref: Session requesting the change. Required to claim;
                when given on release/complete it must be the holder.
            agent: Agent name for the claim tag.
            reason: Short reason recorded in the release audit note.
            now: Timestamp for the audit note.

        Raises:
            TaskNotFound: Unknown id.
            TaskAlreadyClaimed: Held by a different session.
            InvalidTransition: Any transition the state machine forbids.
        """
        task = self.get_task(task_id)
        current = task.status

        if current is TaskStatus.COMPLETED:
            raise InvalidTransition(f"task {task_id}", current.value, status.value)

        if status is TaskStatus.CLAIMED:
            if session_ref is None:
                raise ValueError("Claiming a task requires a session reference")
            if current is TaskStatus.CLAIMED:
                if task.claimed_by != session_ref:
                    raise TaskAlreadyClaimed(task_id, task.claimed_by)
                return task
            task.status = TaskStatus.CLAIMED
            task.claimed_by = session_ref
            task.agent = agent
            log.debug("Task %s claimed by %s", task_id, session_ref)
            return task

        if current is not TaskStatus.CLAIMED:
            raise InvalidTransition(f"task {task_id}", current.value, status.value)

        if session_ref is not None and task.claimed_by != session_ref:
            raise TaskAlreadyClaimed(task_id, task.claimed_by)

        if status in (TaskStatus.OPEN, TaskStatus.RELEASED):
            holder = task.claimed_by
            note = f"released {holder}"
            if reason:
                note += f" ({reason})"
            note += f" {format_timestamp(now or utc_now())}"
            task.history.append(note)
            task.status = TaskStatus.OPEN
            task.claimed_by = None
            task.agent = None
            log.debug("Task %s released by %s", task_id, holder)
            return task

        if status is TaskStatus.COMPLETED:
            task.completed_by = task.claimed_by
            task.claimed_by = None
            task.status = TaskStatus.COMPLETED
            log.debug("Task %s completed by %s", task_id, task.completed_by)
            return task

        raise InvalidTransition(f"task {task_id}", current.value, status.value)

    def append_task(
        self,
        description: str,
        phase: str,
        section: str | None = None,
        task_id: str | None = None,
    ) -> Task:
        """Insert a new OPEN task at the end of its phase (or section).

        Missing phase/section headings are created at the end of the
        document (or of the phase).

        Raises:
            DuplicateId: The explicit or derived id already exists.
            ValueError: Empty or multi-line description, malformed id.
        """
        description = description.strip()
        if not description or "\n" in description:
            raise ValueError("Task description must be a single non-empty line")
        if not phase.strip():
            raise ValueError("Task phase must not be empty")
        if task_id is not None and not _EXPLICIT_ID.match(task_id):
            raise ValueError(f"Invalid task id: {task_id!r}")

        path = (phase,) if section is None else (phase, section)
        new_id = task_id if task_id is not None else derive_task_id(path, description)
        if any(t.id == new_id for t in self._document.tasks()):
            raise DuplicateId(new_id)

        task = Task(
            id=new_id,
            description=description,
            section_path=path,
            explicit_id=task_id is not None,
        )
        line = render_task(task)[0]
        self._insert(line, phase, section)

        # Re-parse so ids and line numbers stay consistent. A new heading must
        # not turn a phase H1 into a document title.
        self._document = TaskListParser().parse(
            self._document.render(), has_title=self._document.has_title
        )
        created = self.get_task(new_id)
        log.info("Added task %s to %s", new_id, "/".join(path))
        return created

    def _phase_level(self) -> int:
        for _, heading in self._document.headings():
            if len(heading.path) == 1:
                return heading.level
        return 2

    def _find_heading(self, path: tuple[str, ...]) -> int | None:
        for index, heading in self._document.headings():
            if heading.path == path:
                return index
        return None

    def _block_end(self, start: int, depth: int | None) -> int:
        """Index of the next heading after ``start`` at ``depth`` or shallower.

        ``depth=None`` stops at the next heading of any level.
        """
        blocks = self._document.blocks
        for index in range(start + 1, len(blocks)):
            block = blocks[index]
            if isinstance(block, Heading) and (depth is None or len(block.path) <= depth):
                return index
        return len(blocks)

    def _last_content(self, start: int, end: int) -> int | None:
        for index in range(end - 1, start, -1):
            block = self._document.blocks[index]
            if not isinstance(block, str) or block.strip():
                return index
        return None

    def _last_task(self, start: int, end: int) -> int | None:
        for index in range(end - 1, start, -1):
            if isinstance(self._document.blocks[index], Task):
                return index
        return None

    def _insert(self, line: str, phase: str, section: str | None) -> None:
        blocks = self._document.blocks
        level = self._phase_level()
        phase_index = self._find_heading((phase,))

        if phase_index is None:
            new_lines = ["#" * level + " " + phase, ""]
            if section is not None:
                new_lines += ["#" * (level + 1) + " " + section, ""]
            new_lines.append(line)
            last = self._last_content(-1, len(blocks))
            at = 0 if last is None else last + 1
            if last is not None:
                new_lines.insert(0, "")
            blocks[at:at] = new_lines
            return

        if section is None:
            target = phase_index
        else:
            section_index = self._find_heading((phase, section))
            if section_index is None:
                end = self._block_end(phase_index, depth=1)
                last = self._last_content(phase_index, end)
                at = (last if last is not None else phase_index) + 1
                heading = "#" * (level + 1) + " " + section
                blocks[at:at] = ["", heading, "", line]
                return
            target = section_index

        end = self._block_end(target, depth=None)
        # After the last task, so trailing prose and code stay below the list
        last = self._last_task(target, end)
        if last is None:
            last = self._last_content(target, end)
        if last is None:
            blocks[target + 1 : target + 1] = ["", line]
        else:
            blocks[last + 1 : last + 1] = [line]
