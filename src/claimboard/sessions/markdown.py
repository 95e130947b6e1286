"""Markdown table format of the session registry.

    # Active Sessions

    | Agent | Session | Task | Status | Resources | Started | Heartbeat |
    |-------|---------|------|--------|-----------|---------|-----------|
    | codex | 20241229-143022-codex | 7 | active | `src/api/*` | 2024-12-29T14:30:22+00:00 | 2024-12-29T14:41:02+00:00 |

One row per live session; a missing row means the session has ended. Prose
around the table is preserved. Rows that cannot be parsed are kept verbatim
so hand edits are never lost.
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass, field

from claimboard.clock import format_timestamp, parse_timestamp
from claimboard.logging import get_logger
from claimboard.tasks.markdown import detect_newline
from claimboard.sessions.schema import (
    SESSION_ID_RE,
    Session,
    SessionStatus,
    validate_agent_name,
    validate_session_id,
)

log = get_logger("sessions")

COLUMNS = ("Agent", "Session", "Task", "Status", "Resources", "Started", "Heartbeat")

DEFAULT_PREAMBLE = ["# Active Sessions"]

_COLUMN_ALIASES = {
    "agent": "agent",
    "session": "session",
    "session id": "session",
    "sessionid": "session",
    "task": "task",
    "status": "status",
    "resources": "resources",
    "touched resources": "resources",
    "files": "resources",
    "started": "started",
    "started at": "started",
    "heartbeat": "heartbeat",
    "last heartbeat": "heartbeat",
}

_EMPTY_CELLS = {"", "-", "—"}


def _split_cells(line: str) -> list[str]:
    inner = line.strip()
    if inner.startswith("|"):
        inner = inner[1:]
    if inner.endswith("|"):
        inner = inner[:-1]
    return [cell.strip() for cell in inner.split("|")]


def parse_resources(cell: str) -> list[str]:
    if cell in _EMPTY_CELLS:
        return []
    resources = []
    for item in cell.split(","):
        pattern = item.strip().strip("`").strip()
        if pattern and pattern not in resources:
            resources.append(pattern)
    return resources


def format_resources(resources: list[str]) -> str:
    if not resources:
        return "-"
    return ", ".join(f"`{pattern}`" for pattern in resources)


@dataclass
class SessionDocument:
    """A parsed registry document: prose, table rows and trailing prose."""

    before: list[str] = field(default_factory=list)
    rows: list[Session | str] = field(default_factory=list)
    after: list[str] = field(default_factory=list)
    has_table: bool = False
    newline: str = "\n"

    def sessions(self) -> Iterator[Session]:
        for row in self.rows:
            if isinstance(row, Session):
                yield row

    @property
    def malformed_rows(self) -> list[str]:
        return [row for row in self.rows if isinstance(row, str)]

    @property
    def malformed_session_ids(self) -> set[str]:
        """Session ids still readable in rows that failed to parse."""
        ids: set[str] = set()
        for row in self.malformed_rows:
            ids.update(cell for cell in _split_cells(row) if SESSION_ID_RE.fullmatch(cell))
        return ids

    def render(self) -> str:
        if not self.has_table and not self.rows:
            return self.newline.join(self.before)

        table = [
            "| " + " | ".join(COLUMNS) + " |",
            "|" + "|".join("-" * (len(name) + 2) for name in COLUMNS) + "|",
        ]
        for row in self.rows:
            table.append(row if isinstance(row, str) else render_row(row))

        if self.has_table:
            return self.newline.join(self.before + table + self.after)

        head = list(self.before)
        while head and not head[-1].strip():
            head.pop()
        return self.newline.join((head or DEFAULT_PREAMBLE) + [""] + table + [""])


def render_row(session: Session) -> str:
    cells = [
        session.agent_name,
        session.id,
        session.claimed_task_id or "-",
        session.status.value,
        format_resources(session.resources),
        format_timestamp(session.started_at),
        format_timestamp(session.last_heartbeat),
    ]
    return "| " + " | ".join(cells) + " |"


class SessionTableParser:
    """Locates the session table in a Markdown document and parses its rows."""

    ROW_PATTERN = re.compile(r"^\s*\|")
    SEPARATOR_PATTERN = re.compile(r"^\s*\|?(\s*:?-{3,}:?\s*\|)*\s*:?-{3,}:?\s*\|?\s*$")

    def parse(self, content: str) -> SessionDocument:
        newline = detect_newline(content)
        lines = content.split(newline)

        for index, line in enumerate(lines[:-1]):
            if not self.ROW_PATTERN.match(line):
                continue
            if not self.SEPARATOR_PATTERN.match(lines[index + 1]):
                continue
            columns = [
                _COLUMN_ALIASES.get(name.lower(), name.lower()) for name in _split_cells(line)
            ]
            if "session" not in columns:
                continue

            end = index + 2
            rows: list[Session | str] = []
            while end < len(lines) and self.ROW_PATTERN.match(lines[end]):
                rows.append(self._parse_row(lines[end], columns, end + 1))
                end += 1
            return SessionDocument(
                before=lines[:index],
                rows=rows,
                after=lines[end:],
                has_table=True,
                newline=newline,
            )

        return SessionDocument(before=lines, newline=newline)

    def _parse_row(self, line: str, columns: list[str], line_number: int) -> Session | str:
        cells = _split_cells(line)
        if len(cells) != len(columns):
            log.warning(
                "Skipping session row at line %d: expected %d cells, found %d",
                line_number,
                len(columns),
                len(cells),
            )
            return line

        values = dict(zip(columns, cells))
        try:
            session_id = validate_session_id(values.get("session", ""))
            agent_name = validate_agent_name(values.get("agent", ""))
            status = SessionStatus(values.get("status", "active").lower() or "active")
            if status is SessionStatus.ENDED:
                raise ValueError("ended sessions do not belong in the registry")
            started_at = parse_timestamp(values["started"])
            heartbeat_cell = values.get("heartbeat", "")
            last_heartbeat = (
                started_at
                if heartbeat_cell in _EMPTY_CELLS
                else parse_timestamp(heartbeat_cell)
            )
        except (KeyError, ValueError) as e:
            log.warning("Skipping malformed session row at line %d: %s", line_number, e)
            return line

        task_cell = values.get("task", "")
        return Session(
            id=session_id,
            agent_name=agent_name,
            status=status,
            claimed_task_id=None if task_cell in _EMPTY_CELLS else task_cell,
            resources=parse_resources(values.get("resources", "")),
            started_at=started_at,
            last_heartbeat=last_heartbeat,
        )


def parse_session_table(content: str) -> SessionDocument:
    """Convenience function to parse registry text."""
    return SessionTableParser().parse(content)
