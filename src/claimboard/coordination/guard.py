"""Advisory file-conflict guard.

Sessions declare the path patterns they are editing. Other sessions can ask
whether a set of patterns overlaps anyone else's declarations. Nothing is
ever blocked: the answer is information for a cooperating agent.
"""

from __future__ import annotations

import fnmatch
from pathlib import PurePath

from claimboard.coordination.schema import Conflict
from claimboard.logging import get_logger
from claimboard.sessions.registry import SessionRegistry

log = get_logger("guard")

_FORBIDDEN = set("|,`\n")


def normalize_pattern(pattern: str) -> str:
    """Posix-style pattern; a trailing slash marks a directory prefix."""
    stripped = pattern.strip()
    if not stripped:
        raise ValueError("Resource pattern must not be empty")
    if _FORBIDDEN & set(stripped):
        raise ValueError(f"Resource pattern {pattern!r} contains one of | , ` or newline")
    normalized = PurePath(stripped.replace("\\", "/")).as_posix()
    if stripped.endswith(("/", "\\")) and normalized != "/":
        normalized += "/"
    return normalized


def _is_glob(pattern: str) -> bool:
    return any(ch in pattern for ch in "*?[")


def _glob_root(pattern: str) -> str:
    """Literal prefix of a glob, up to the first wildcard."""
    cut = min((i for i in (pattern.find(ch) for ch in "*?[") if i >= 0), default=len(pattern))
    return pattern[:cut]


def _is_under(path: str, directory: str) -> bool:
    prefix = directory.rstrip("/") + "/"
    return path.startswith(prefix)


def patterns_overlap(first: str, second: str) -> bool:
    """Check if two patterns can name the same file.

    Matches on exact path, directory prefix (either side contains the other)
    or glob (either side matches the other).
    """
    a = normalize_pattern(first)
    b = normalize_pattern(second)

    if a.rstrip("/") == b.rstrip("/"):
        return True
    if _is_under(a, b) or _is_under(b, a):
        return True
    if _is_glob(b) and fnmatch.fnmatchcase(a, b):
        return True
    if _is_glob(a) and fnmatch.fnmatchcase(b, a):
        return True
    # A glob inside a directory the other side owns, e.g. src/ vs src/*.py
    if _is_glob(a) and b.endswith("/") and _glob_root(a).startswith(b):
        return True
    if _is_glob(b) and a.endswith("/") and _glob_root(b).startswith(a):
        return True
    return False


class FileConflictGuard:
    """Tracks which session declared which path patterns.

    Declarations live on the sessions themselves (the Resources column of
    the registry), so they disappear with the session.
    """

    def __init__(self, registry: SessionRegistry) -> None:
        self._registry = registry

    def declare_resources(self, session_id: str, patterns: list[str]) -> list[str]:
        """Add patterns to a session's declarations.

        Returns:
            The session's full, de-duplicated pattern list.
        """
        session = self._registry.get_live_session(session_id)
        normalized = [normalize_pattern(p) for p in patterns]
        resources = list(dict.fromkeys([*session.resources, *normalized]))
        self._registry.set_resources(session_id, resources)
        log.debug("Session %s declared %s", session_id, ", ".join(normalized))
        return resources

    def clear_resources(self, session_id: str) -> None:
        session = self._registry.get_live_session(session_id)
        if session.resources:
            log.debug("Session %s cleared %d resource(s)", session_id, len(session.resources))
        self._registry.set_resources(session_id, [])

    def check_conflict(self, patterns: list[str], session_id: str | None = None) -> list[Conflict]:
        """Find other live sessions whose declarations overlap ``patterns``.

        Args:
            patterns: Paths or glob patterns about to be edited.
            session_id: The asking session, excluded from the result.

        Returns:
            One Conflict per (session, our pattern, their pattern) overlap.
        """
        queries = [normalize_pattern(p) for p in patterns]
        conflicts: list[Conflict] = []

        for session in self._registry.list_active():
            if session.id == session_id:
                continue
            for query in queries:
                for theirs in session.resources:
                    if patterns_overlap(query, theirs):
                        conflicts.append(
                            Conflict(
                                session_id=session.id,
                                agent_name=session.agent_name,
                                pattern=query,
                                their_pattern=theirs,
                                task_id=session.claimed_task_id,
                            )
                        )

        if conflicts:
            log.info(
                "%d conflict(s) for %s with %s",
                len(conflicts),
                ", ".join(queries),
                ", ".join(sorted({c.session_id for c in conflicts})),
            )
        return conflicts
