"""Clock provider and timestamp formatting shared by both documents."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

Clock = Callable[[], datetime]

SESSION_STAMP_FORMAT = "%Y%m%d-%H%M%S"

# Session ids as written in claim tags and the registry: stamp, then optional agent suffix
SESSION_ID_PATTERN = r"\d{8}-\d{6}(?:-[\w.-]+)?"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    return ensure_utc(value).isoformat(timespec="seconds")


def parse_timestamp(text: str) -> datetime:
    """Parse an ISO 8601 timestamp (raises ValueError on bad input)."""
    return ensure_utc(datetime.fromisoformat(text.strip()))


def session_stamp(value: datetime) -> str:
    return ensure_utc(value).strftime(SESSION_STAMP_FORMAT)
