"""Claim coordination: atomic claims, board storage and file-conflict advisories."""

from claimboard.coordination.coordinator import ClaimCoordinator
from claimboard.coordination.guard import FileConflictGuard, normalize_pattern, patterns_overlap
from claimboard.coordination.schema import Conflict
from claimboard.coordination.storage import (
    BoardState,
    BoardStorage,
    DocumentStore,
    FileDocumentStore,
    MemoryDocumentStore,
)

__all__ = [
    "BoardState",
    "BoardStorage",
    "ClaimCoordinator",
    "Conflict",
    "DocumentStore",
    "FileConflictGuard",
    "FileDocumentStore",
    "MemoryDocumentStore",
    "normalize_pattern",
    "patterns_overlap",
]
