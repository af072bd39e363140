"""Data models for Agent Fleet.

Uses Pydantic for the records that cross a trust boundary (hook notification
files written by another process) and for everything that is persisted.
"""

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator


def _utc_now() -> datetime:
    """Get current UTC time (timezone-aware)."""
    return datetime.now(UTC)


class RuntimeStatus(str, Enum):
    """Coarse operational status of a session, inferred from hook events."""

    IDLE = "idle"
    RUNNING = "running"
    STUCK = "stuck"
    COMPLETE = "complete"


class HookEventName(str, Enum):
    """Hook event names emitted by the Claude Code CLI."""

    PRE_TOOL_USE = "PreToolUse"
    POST_TOOL_USE = "PostToolUse"
    PRE_COMPACT = "PreCompact"
    NOTIFICATION = "Notification"
    STOP = "Stop"
    SESSION_START = "SessionStart"
    SESSION_END = "SessionEnd"


class NotificationType(str, Enum):
    """Subtypes carried by Notification hook events."""

    PERMISSION_PROMPT = "permission_prompt"
    IDLE_PROMPT = "idle_prompt"
    USER_CANCELLED_TOOL_USE = "user_cancelled_tool_use"
    MESSAGE = "message"


class FileStatus(str, Enum):
    """Single-character change codes reported for a changed file."""

    MODIFIED = "M"
    ADDED = "A"
    DELETED = "D"
    UNTRACKED = "?"
    RENAMED = "R"
    CONFLICTED = "U"


# --- Session Models ---


class Session(BaseModel):
    """A tracked working directory with an external long-running CLI process.

    Immutable once created: the core never edits a session in place.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    directory: str
    created_at: datetime = Field(default_factory=_utc_now)


class SessionState(BaseModel):
    """Read-only snapshot pairing a session with its current status."""

    model_config = ConfigDict(frozen=True)

    session: Session
    status: RuntimeStatus = RuntimeStatus.IDLE


# --- Hook Event Models ---


class HookEvent(BaseModel):
    """A single hook notification as written by the producer.

    Field aliases follow the snake_case JSON written by the CLI
    (``hook_event_name``). Event and notification names are kept as plain
    strings so unknown values still parse; the state machine decides what
    they mean.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    session_id: str = ""
    cwd: str
    event_name: str = Field(alias="hook_event_name")
    notification_type: str | None = None
    tool_name: str | None = None
    message: str | None = None
    reason: str | None = None
    action: str | None = None  # Only set on fleet control events


# --- Change-Set Models ---


class ChangedFile(BaseModel):
    """One changed path in a session's change set."""

    model_config = ConfigDict(frozen=True)

    path: str  # Relative to the session directory
    status: FileStatus
    absolute_path: str
    git_root: str


# --- Focus Models ---


class FocusState(BaseModel):
    """Which session (if any) is currently focused in the workspace.

    Both fields are set together or both are None.
    """

    focused_session_id: str | None = None
    focused_directory: str | None = None

    @model_validator(mode="after")
    def _check_pairing(self) -> "FocusState":
        if (self.focused_session_id is None) != (self.focused_directory is None):
            raise ValueError("focused_session_id and focused_directory must be set together")
        return self

    @property
    def is_focused(self) -> bool:
        return self.focused_session_id is not None
