"""Tests for data models.

Tests cover:
- HookEvent parsing from the producer's JSON (aliases, extra keys, unknown names)
- FocusState pairing rule
- Session immutability
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from fleet.core.models import (
    ChangedFile,
    FileStatus,
    FocusState,
    HookEvent,
    RuntimeStatus,
    Session,
    SessionState,
)


# =============================================================================
# HookEvent Tests
# =============================================================================


class TestHookEvent:
    """Tests for HookEvent validation."""

    def test_parses_producer_json(self):
        """Field names follow the CLI's snake_case JSON."""
        event = HookEvent.model_validate(
            {
                "session_id": "abc",
                "cwd": "/work/app",
                "hook_event_name": "Notification",
                "notification_type": "permission_prompt",
                "message": "Claude needs your permission",
            }
        )

        assert event.event_name == "Notification"
        assert event.notification_type == "permission_prompt"
        assert event.cwd == "/work/app"

    def test_extra_keys_ignored(self):
        """Unknown keys written by newer CLIs do not break parsing."""
        event = HookEvent.model_validate(
            {"cwd": "/w", "hook_event_name": "Stop", "transcript_path": "/tmp/t.jsonl"}
        )
        assert event.event_name == "Stop"
        assert event.session_id == ""

    def test_unknown_event_name_accepted(self):
        """Event names are not restricted to the known set."""
        event = HookEvent.model_validate({"cwd": "/w", "hook_event_name": "SubagentStop"})
        assert event.event_name == "SubagentStop"

    def test_cwd_required(self):
        with pytest.raises(ValidationError):
            HookEvent.model_validate({"hook_event_name": "Stop"})

    def test_event_name_required(self):
        with pytest.raises(ValidationError):
            HookEvent.model_validate({"cwd": "/w"})

    def test_populate_by_field_name(self):
        event = HookEvent(cwd="/w", event_name="PreToolUse", tool_name="Bash")
        assert event.event_name == "PreToolUse"
        assert event.tool_name == "Bash"


# =============================================================================
# FocusState Tests
# =============================================================================


class TestFocusState:
    """Tests for the FocusState pairing invariant."""

    def test_empty_is_unfocused(self):
        state = FocusState()
        assert not state.is_focused

    def test_both_set(self):
        state = FocusState(focused_session_id="session-1", focused_directory="/w")
        assert state.is_focused

    def test_id_without_directory_rejected(self):
        with pytest.raises(ValidationError):
            FocusState(focused_session_id="session-1")

    def test_directory_without_id_rejected(self):
        with pytest.raises(ValidationError):
            FocusState(focused_directory="/w")

    def test_json_round_trip(self):
        state = FocusState(focused_session_id="session-1", focused_directory="/w")
        assert FocusState.model_validate(state.model_dump(mode="json")) == state


# =============================================================================
# Session Tests
# =============================================================================


class TestSession:
    def test_session_is_frozen(self):
        session = Session(id="session-1", name="app", directory="/w/app")
        with pytest.raises(ValidationError):
            session.name = "other"

    def test_created_at_is_timezone_aware(self):
        session = Session(id="session-1", name="app", directory="/w/app")
        assert session.created_at.tzinfo is not None

    def test_session_state_defaults_idle(self):
        session = Session(id="session-1", name="app", directory="/w/app")
        assert SessionState(session=session).status == RuntimeStatus.IDLE

    def test_changed_file_status_codes(self):
        changed = ChangedFile(
            path="src/a.py", status=FileStatus("?"), absolute_path="/w/src/a.py", git_root="/w"
        )
        assert changed.status == FileStatus.UNTRACKED
        assert FileStatus.CONFLICTED.value == "U"
