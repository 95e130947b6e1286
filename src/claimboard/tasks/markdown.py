"""Markdown task list parser and renderer.

A task list is an ordinary Markdown document. ATX headings group tasks
into phases and sections; checkbox items are tasks:

    ## Phase 1: API
    - [ ] Add health endpoint <!-- id:7 -->
    - [ ] Add metrics endpoint @codex #20241229-143022-codex
    - [x] Set up routing ~~@claude~~ ~~#20241229-120000-claude~~
      <!-- released 20241229-101500-gemini (stale) 2024-12-29T11:00:00+00:00 -->

Checkboxes inside fenced code blocks are ignored. A single leading level-1
heading followed by other headings is the document title and is left out of
task section paths. Every line that is not a heading or a task is kept
verbatim so a parse/render cycle only rewrites task lines.
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass, field

from claimboard.clock import SESSION_ID_PATTERN
from claimboard.errors import DuplicateId
from claimboard.tasks.schema import Heading, Task, TaskStatus, derive_task_id

Block = str | Heading | Task

_AGENT = r"[\w.-]+"
_SESSION = SESSION_ID_PATTERN


def detect_newline(content: str) -> str:
    """Line ending to write back: CRLF if the text uses it, else LF."""
    return "\r\n" if "\r\n" in content else "\n"


def agent_from_session_id(session_id: str) -> str:
    """Recover the agent part of a ``YYYYMMDD-HHMMSS-agent`` session id."""
    agent = session_id[16:]
    return agent or "agent"


@dataclass
class TaskDocument:
    """A parsed task list: raw lines, headings and tasks in document order."""

    blocks: list[Block] = field(default_factory=list)
    has_title: bool = False
    newline: str = "\n"

    def tasks(self) -> Iterator[Task]:
        for block in self.blocks:
            if isinstance(block, Task):
                yield block

    def headings(self) -> Iterator[tuple[int, Heading]]:
        for index, block in enumerate(self.blocks):
            if isinstance(block, Heading):
                yield index, block

    def render(self) -> str:
        lines: list[str] = []
        for block in self.blocks:
            if isinstance(block, Task):
                lines.extend(render_task(block))
            elif isinstance(block, Heading):
                lines.append(block.line)
            else:
                lines.append(block)
        return self.newline.join(lines)


def render_task(task: Task) -> list[str]:
    """Render a task line plus its indented audit notes."""
    check = "x" if task.status is TaskStatus.COMPLETED else " "
    line = f"{task.indent}{task.bullet} [{check}] {task.description}"

    if task.status is TaskStatus.CLAIMED and task.claimed_by:
        agent = task.agent or agent_from_session_id(task.claimed_by)
        line += f" @{agent} #{task.claimed_by}"
    elif task.status is TaskStatus.COMPLETED and task.completed_by:
        agent = task.agent or agent_from_session_id(task.completed_by)
        # Struck through rather than dropped so attribution survives
        line += f" ~~@{agent}~~ ~~#{task.completed_by}~~"

    if task.explicit_id:
        line += f" <!-- id:{task.id} -->"

    return [line] + [f"{task.indent}  <!-- {note} -->" for note in task.history]


class TaskListParser:
    """Parser for Markdown task lists.

    Handles:
    - Fenced code blocks (``` or ~~~): nothing inside is a heading or task
    - ATX headings, used to build each task's section path
    - Claim tags, struck-through completion tags and explicit id markers
    - Indented audit-note comments directly below a task
    """

    HEADING_PATTERN = re.compile(r"^(#{1,6})\s+(.+?)(?:\s+#+)?\s*$")
    FENCE_PATTERN = re.compile(r"^\s{0,3}(`{3,}|~{3,})")
    TASK_PATTERN = re.compile(
        r"^(?P<indent>[ \t]*)(?P<bullet>[-*+])\s+\[(?P<check>[ xX])\]\s+(?P<body>.*?)\s*$"
    )
    NOTE_PATTERN = re.compile(r"^[ \t]+<!--\s*(?P<note>.*?)\s*-->\s*$")
    ID_MARKER_PATTERN = re.compile(r"\s*<!--\s*id:\s*(?P<id>[\w.:-]+)\s*-->\s*$")
    CLAIM_TAGS_PATTERN = re.compile(
        rf"\s+@(?P<agent>{_AGENT})\s+#(?P<session>{_SESSION})\s*$"
    )
    STRUCK_TAGS_PATTERN = re.compile(
        rf"\s+~~@(?P<agent>{_AGENT})~~\s+~~#(?P<session>{_SESSION})~~\s*$"
    )

    def __init__(self) -> None:
        self._fence_marker: str | None = None
        self._fence_length = 0

    def parse(self, content: str, has_title: bool | None = None) -> TaskDocument:
        """Parse task list text.

        Args:
            content: Task list text.
            has_title: Force the document-title decision instead of detecting
                it, so a re-parse after an edit keeps the same section paths.

        Raises:
            DuplicateId: Two tasks carry the same explicit id marker.
        """
        newline = detect_newline(content)
        lines = content.split(newline)
        self._fence_marker = None
        self._fence_length = 0

        in_code = [self._in_code(line) for line in lines]
        headings: dict[int, tuple[int, str]] = {}
        for index, line in enumerate(lines):
            if in_code[index]:
                continue
            match = self.HEADING_PATTERN.match(line)
            if match:
                headings[index] = (len(match.group(1)), match.group(2).strip())

        if has_title is None:
            has_title = self._detect_title(lines, in_code, headings)

        document = TaskDocument(has_title=has_title, newline=newline)
        stack: list[tuple[int, str]] = []

        for index, line in enumerate(lines):
            if in_code[index]:
                document.blocks.append(line)
                continue

            if index in headings:
                level, title = headings[index]
                if has_title and level == 1:
                    stack = []
                    document.blocks.append(Heading(level=level, title=title, line=line))
                    continue
                while stack and stack[-1][0] >= level:
                    stack.pop()
                stack.append((level, title))
                path = tuple(t for _, t in stack)
                document.blocks.append(Heading(level=level, title=title, line=line, path=path))
                continue

            path = tuple(t for _, t in stack)
            task = self._parse_task(line, path, index + 1)
            if task is not None:
                document.blocks.append(task)
                continue

            note = self.NOTE_PATTERN.match(line)
            if note and document.blocks and isinstance(document.blocks[-1], Task):
                document.blocks[-1].history.append(note.group("note"))
                continue

            document.blocks.append(line)

        self._assign_ids(document)
        return document

    def _detect_title(
        self, lines: list[str], in_code: list[bool], headings: dict[int, tuple[int, str]]
    ) -> bool:
        """A leading, lone H1 followed by other headings is the document title.

        An H1 with tasks directly under it is always a phase.
        """
        order = list(headings)
        levels = [headings[index][0] for index in order]
        if len(levels) < 2 or levels[0] != 1 or levels.count(1) != 1:
            return False
        return not any(
            not in_code[index] and self.TASK_PATTERN.match(lines[index])
            for index in range(order[0] + 1, order[1])
        )

    def _in_code(self, line: str) -> bool:
        """Track fenced block state; True for fence lines and their contents."""
        fence_match = self.FENCE_PATTERN.match(line)
        if fence_match:
            fence = fence_match.group(1)
            if self._fence_marker is None:
                self._fence_marker = fence[0]
                self._fence_length = len(fence)
            elif fence[0] == self._fence_marker and len(fence) >= self._fence_length:
                self._fence_marker = None
                self._fence_length = 0
            return True
        return self._fence_marker is not None

    def _parse_task(self, line: str, path: tuple[str, ...], line_number: int) -> Task | None:
        match = self.TASK_PATTERN.match(line)
        if not match:
            return None

        body = match.group("body")
        explicit_id: str | None = None
        marker = self.ID_MARKER_PATTERN.search(body)
        if marker:
            explicit_id = marker.group("id")
            body = body[: marker.start()]

        status = TaskStatus.OPEN
        claimed_by: str | None = None
        completed_by: str | None = None
        agent: str | None = None

        if match.group("check") in "xX":
            status = TaskStatus.COMPLETED
            tags = self.STRUCK_TAGS_PATTERN.search(body) or self.CLAIM_TAGS_PATTERN.search(body)
            if tags:
                completed_by = tags.group("session")
                agent = tags.group("agent")
                body = body[: tags.start()]
        else:
            tags = self.CLAIM_TAGS_PATTERN.search(body)
            if tags:
                status = TaskStatus.CLAIMED
                claimed_by = tags.group("session")
                agent = tags.group("agent")
                body = body[: tags.start()]

        description = body.strip()
        if not description:
            return None

        return Task(
            id=explicit_id or "",
            description=description,
            status=status,
            section_path=path,
            claimed_by=claimed_by,
            completed_by=completed_by,
            agent=agent,
            explicit_id=explicit_id is not None,
            indent=match.group("indent"),
            bullet=match.group("bullet"),
            line_number=line_number,
        )

    def _assign_ids(self, document: TaskDocument) -> None:
        taken: set[str] = set()
        for task in document.tasks():
            if task.explicit_id:
                if task.id in taken:
                    raise DuplicateId(task.id)
                taken.add(task.id)

        occurrences: dict[str, int] = {}
        for task in document.tasks():
            if task.explicit_id:
                continue
            base = derive_task_id(task.section_path, task.description)
            count = occurrences.get(base, 0)
            candidate = base
            while candidate in taken:
                count += 1
                candidate = base if count == 1 else f"{base}-{count}"
            occurrences[base] = count
            task.id = candidate
            taken.add(candidate)


def parse_task_list(content: str) -> TaskDocument:
    """Convenience function to parse task list text."""
    return TaskListParser().parse(content)
