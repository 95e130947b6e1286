"""Configuration schema dataclasses for claimboard.

All fields have defaults so partial configs merge together cleanly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

DEFAULT_TASKS_FILE = "TASKS.md"
DEFAULT_SESSIONS_FILE = "SESSIONS.md"


@dataclass
class BoardConfig:
    """Where the shared documents live and how claims age.

    Example config.yaml:
        board:
          tasks_file: docs/TASKS.md
          sessions_file: docs/SESSIONS.md
          stale_after: 900
          lock_timeout: 5
    """

    tasks_file: str = DEFAULT_TASKS_FILE
    sessions_file: str = DEFAULT_SESSIONS_FILE
    stale_after: float = 1800.0  # Seconds without heartbeat before a session is stale
    lock_timeout: float = 10.0  # Seconds to wait for the board lock

    @property
    def stale_after_delta(self) -> timedelta:
        return timedelta(seconds=self.stale_after)


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str | None = None  # DEBUG, INFO, WARNING, ERROR
    verbose: int | None = None  # 0-4, overrides level
    file: str | None = None  # Log file path


@dataclass
class Config:
    """Root configuration object."""

    board: BoardConfig = field(default_factory=BoardConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Unknown top-level sections, kept for forward compatibility
    extra: dict[str, Any] = field(default_factory=dict)
