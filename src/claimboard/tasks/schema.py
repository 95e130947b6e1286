"""Data schemas for the shared task list."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class TaskStatus(Enum):
    """Claim state of a task line."""

    OPEN = "open"
    CLAIMED = "claimed"
    COMPLETED = "completed"
    RELEASED = "released"  # Requested transition only; stored as OPEN


def derive_task_id(section_path: tuple[str, ...], description: str) -> str:
    """Stable id for a task without an explicit ``<!-- id:... -->`` marker."""
    key = "/".join((*section_path, description.strip()))
    return "t-" + hashlib.sha1(key.encode("utf-8")).hexdigest()[:8]


@dataclass
class Heading:
    """An ATX heading line, with the heading path it opens."""

    level: int
    title: str
    line: str
    path: tuple[str, ...] = ()


@dataclass
class Task:
    """A single checkbox line of the task list."""

    id: str
    description: str
    status: TaskStatus = TaskStatus.OPEN
    section_path: tuple[str, ...] = ()
    claimed_by: str | None = None  # Session id, set iff CLAIMED
    completed_by: str | None = None
    agent: str | None = None  # Agent name shown in the @tag
    history: list[str] = field(default_factory=list)
    explicit_id: bool = False
    indent: str = ""
    bullet: str = "-"
    line_number: int = 0

    @property
    def phase(self) -> str | None:
        return self.section_path[0] if self.section_path else None

    @property
    def section(self) -> str | None:
        return self.section_path[-1] if len(self.section_path) > 1 else None

    @property
    def is_claimable(self) -> bool:
        return self.status is TaskStatus.OPEN

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "status": self.status.value,
            "phase": self.phase,
            "section": self.section,
            "claimed_by": self.claimed_by,
            "completed_by": self.completed_by,
            "agent": self.agent,
            "history": list(self.history),
        }
