"""Session registry: who is working, on what, and whether they are still alive."""

from claimboard.sessions.markdown import SessionDocument, SessionTableParser, parse_session_table
from claimboard.sessions.registry import SessionQuery, SessionRegistry
from claimboard.sessions.schema import (
    ReconcileReport,
    Session,
    SessionStatus,
    make_session_id,
    validate_agent_name,
)

__all__ = [
    "ReconcileReport",
    "Session",
    "SessionDocument",
    "SessionQuery",
    "SessionRegistry",
    "SessionStatus",
    "SessionTableParser",
    "make_session_id",
    "parse_session_table",
    "validate_agent_name",
]
