"""Core modules for Agent Fleet."""

from fleet.core.models import (
    ChangedFile,
    FileStatus,
    FocusState,
    HookEvent,
    RuntimeStatus,
    Session,
    SessionState,
)
from fleet.core.state import Database

__all__ = [
    "ChangedFile",
    "Database",
    "FileStatus",
    "FocusState",
    "HookEvent",
    "RuntimeStatus",
    "Session",
    "SessionState",
]
