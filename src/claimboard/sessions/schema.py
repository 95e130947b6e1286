"""Data schemas for the session registry."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from claimboard.clock import (
    SESSION_ID_PATTERN,
    ensure_utc,
    format_timestamp,
    session_stamp,
    utc_now,
)
from claimboard.errors import InvalidTransition

AGENT_NAME_PATTERN = re.compile(r"^[\w.-]+$")
SESSION_ID_RE = re.compile(SESSION_ID_PATTERN)


class SessionStatus(Enum):
    """Lifecycle state of a session."""

    ACTIVE = "active"
    PAUSED = "paused"
    ENDED = "ended"  # Terminal; ended sessions leave the registry


def validate_agent_name(agent_name: str) -> str:
    """Agent names appear in ``@agent`` tags, so they must be a single token."""
    if not AGENT_NAME_PATTERN.match(agent_name):
        raise ValueError(
            f"Invalid agent name {agent_name!r}: use letters, digits, '_', '-' or '.'"
        )
    return agent_name


def validate_session_id(session_id: str) -> str:
    """Session ids must round-trip through the `#<session>` claim tag."""
    if not SESSION_ID_RE.fullmatch(session_id):
        raise ValueError(
            f"Invalid session id {session_id!r}: expected YYYYMMDD-HHMMSS[-agent]"
        )
    return session_id


def make_session_id(agent_name: str, now: datetime) -> str:
    """``YYYYMMDD-HHMMSS-<agent>`` at second resolution."""
    return f"{session_stamp(now)}-{agent_name}"


@dataclass
class Session:
    """A bounded period of work by one agent."""

    id: str
    agent_name: str
    status: SessionStatus = SessionStatus.ACTIVE
    claimed_task_id: str | None = None
    resources: list[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=utc_now)
    last_heartbeat: datetime = field(default_factory=utc_now)

    @property
    def is_live(self) -> bool:
        return self.status in (SessionStatus.ACTIVE, SessionStatus.PAUSED)

    def is_stale(self, now: datetime, stale_after: timedelta) -> bool:
        return ensure_utc(now) - ensure_utc(self.last_heartbeat) > stale_after

    def transition(self, status: SessionStatus) -> None:
        """ACTIVE <-> PAUSED freely, anything -> ENDED, nothing out of ENDED."""
        if self.status is SessionStatus.ENDED:
            raise InvalidTransition(f"session {self.id}", self.status.value, status.value)
        self.status = status

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "agent_name": self.agent_name,
            "status": self.status.value,
            "claimed_task_id": self.claimed_task_id,
            "resources": list(self.resources),
            "started_at": format_timestamp(self.started_at),
            "last_heartbeat": format_timestamp(self.last_heartbeat),
        }


@dataclass
class ReconcileReport:
    """Outcome of one reconciliation pass."""

    ended: list[Session] = field(default_factory=list)
    reopened: list[str] = field(default_factory=list)  # Task ids returned to OPEN
    orphaned: list[str] = field(default_factory=list)  # Reopened with no live holder
    skipped: int = 0  # Malformed rows left untouched

    @property
    def changed(self) -> bool:
        return bool(self.ended or self.reopened or self.orphaned)
