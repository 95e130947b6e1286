"""Data schemas for file-conflict advisories."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class Conflict:
    """A potential overlap with another session's declared resources."""

    session_id: str
    agent_name: str
    pattern: str  # The pattern we asked about
    their_pattern: str  # The pattern the other session declared
    task_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "agent_name": self.agent_name,
            "pattern": self.pattern,
            "their_pattern": self.their_pattern,
            "task_id": self.task_id,
        }
