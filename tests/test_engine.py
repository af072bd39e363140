"""Tests for the FleetEngine wiring.

Tests cover:
- Session registry operations and bus notifications
- Event delivery -> status -> prompt -> action flow
- Terminal signals and manual overrides
- Status snapshot persistence across engine instances
- Control events queued through the events directory
- Change sets and diffs through the engine
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from fleet.core.bus import SessionsChanged, StatusChanged
from fleet.core.engine import CONTROL_EVENT_NAME, ControlAction, FleetEngine
from fleet.core.errors import FleetError, HookEventParseError, SessionExistsError, SessionNotFoundError
from fleet.core.interaction import PromptChoice
from fleet.core.models import FileStatus, HookEvent, RuntimeStatus
from fleet.core.utils import normalize_directory


def _event(cwd: str, name: str, **fields) -> HookEvent:
    return HookEvent(cwd=cwd, event_name=name, **fields)


def _stuck(cwd: str) -> HookEvent:
    return _event(cwd, "Notification", notification_type="permission_prompt")


@pytest.fixture
def session(engine, project_dirs):
    return engine.add_session(project_dirs[0])


# =============================================================================
# Session Tests
# =============================================================================


class TestSessions:
    """Tests for add/remove/list."""

    def test_add_session_defaults(self, engine, project_dirs):
        messages = []
        engine.bus.subscribe(SessionsChanged, messages.append)

        session = engine.add_session(f"{project_dirs[0]}/")

        assert session.id.startswith("session-")
        assert len(session.id) == len("session-") + 8
        assert session.name == "app-a"
        assert session.directory == normalize_directory(project_dirs[0])
        assert messages == [SessionsChanged(session_id=session.id)]

    def test_add_session_custom_name(self, engine, project_dirs):
        assert engine.add_session(project_dirs[1], name="backend").name == "backend"

    def test_duplicate_directory(self, engine, session, project_dirs):
        with pytest.raises(SessionExistsError):
            engine.add_session(project_dirs[0])

    def test_missing_directory(self, engine, tmp_path):
        with pytest.raises(FleetError, match="Not a directory"):
            engine.add_session(tmp_path / "nope")

    def test_unknown_session(self, engine):
        with pytest.raises(SessionNotFoundError):
            engine.reset_status("session-missing")

    def test_session_states(self, engine, session):
        engine.deliver(_event(session.directory, "PreToolUse"))
        (state,) = engine.session_states()
        assert state.session == session
        assert state.status == RuntimeStatus.RUNNING

    def test_remove_session(self, engine, session, folder_list):
        engine.focus_workspace(session.id)
        engine.deliver(_event(session.directory, "Stop"))

        engine.remove_session(session.id)

        assert engine.list_sessions() == []
        assert folder_list.paths == []
        assert session.directory not in engine.tracker.snapshot()
        assert engine.prompts.bridge.outstanding(session.id) is None
        assert engine.db.load_status_snapshot() == {}

    def test_summary_follows_sessions(self, engine, session, project_dirs):
        assert engine.summary.text == "idle 1"
        engine.deliver(_stuck(session.directory))
        assert engine.summary.text == "stuck 1"


# =============================================================================
# Event -> Prompt -> Action Tests
# =============================================================================


class TestPromptFlow:
    """Tests for prompts raised by status transitions."""

    def test_stuck_raises_prompt(self, engine, session):
        engine.deliver(_stuck(session.directory))

        (request,) = engine.prompts.bridge.get_pending_requests()
        assert request.message == 'Agent "app-a" is waiting for input'

    def test_untracked_directory_updates_map_only(self, engine, tmp_path):
        engine.deliver(_event(str(tmp_path), "Stop"))

        assert engine.tracker.get(str(tmp_path)) == RuntimeStatus.COMPLETE
        assert engine.prompts.bridge.get_pending_requests() == []

    def test_focus_workspace_choice(self, engine, session, folder_list):
        engine.deliver(_event(session.directory, "Stop"))
        (request,) = engine.prompts.bridge.get_pending_requests()

        engine.prompts.resolve_prompt(request.token, PromptChoice.FOCUS_WORKSPACE)

        assert engine.focused_session_id == session.id
        assert folder_list.paths == [session.directory]
        assert engine.status_of(session) == RuntimeStatus.IDLE

    def test_open_terminal_choice(self, engine, session, terminal_requests):
        engine.deliver(_event(session.directory, "Stop"))
        (request,) = engine.prompts.bridge.get_pending_requests()

        engine.prompts.resolve_prompt(request.token, PromptChoice.OPEN_TERMINAL)

        assert terminal_requests == [session]
        assert engine.status_of(session) == RuntimeStatus.IDLE

    def test_open_terminal_keeps_stuck(self, engine, session, terminal_requests):
        engine.deliver(_stuck(session.directory))
        (request,) = engine.prompts.bridge.get_pending_requests()

        engine.prompts.resolve_prompt(request.token, PromptChoice.OPEN_TERMINAL)

        assert terminal_requests == [session]
        assert engine.status_of(session) == RuntimeStatus.STUCK

    def test_dismiss_complete_resets(self, engine, session):
        engine.deliver(_event(session.directory, "Stop"))
        (request,) = engine.prompts.bridge.get_pending_requests()

        engine.prompts.resolve_prompt(request.token, None)

        assert engine.status_of(session) == RuntimeStatus.IDLE

    def test_answer_after_session_moved_on(self, engine, session, folder_list):
        engine.deliver(_event(session.directory, "Stop"))
        (request,) = engine.prompts.bridge.get_pending_requests()
        engine.deliver(_event(session.directory, "PreToolUse"))

        assert engine.prompts.resolve_prompt(request.token, PromptChoice.FOCUS_WORKSPACE) is None
        assert folder_list.paths == []
        assert engine.status_of(session) == RuntimeStatus.RUNNING


class TestStatusCommands:
    """Tests for resets, overrides and terminal signals."""

    def test_reset_only_from_complete(self, engine, session):
        engine.deliver(_event(session.directory, "PreToolUse"))
        assert engine.reset_status(session.id) is False

        engine.deliver(_event(session.directory, "Stop"))
        assert engine.reset_status(session.id) is True
        assert engine.status_of(session) == RuntimeStatus.IDLE

    def test_set_status_idle(self, engine, session):
        engine.deliver(_stuck(session.directory))
        assert engine.set_status_idle(session.id) is True
        assert engine.status_of(session) == RuntimeStatus.IDLE

    def test_terminal_focused_dismisses_and_resets(self, engine, session):
        engine.deliver(_event(session.directory, "Stop"))
        (request,) = engine.prompts.bridge.get_pending_requests()

        engine.terminal_focused(session.id)

        assert request.token.is_cancelled
        assert engine.status_of(session) == RuntimeStatus.IDLE

    def test_terminal_focused_on_stuck_only_dismisses(self, engine, session):
        engine.deliver(_stuck(session.directory))
        (request,) = engine.prompts.bridge.get_pending_requests()

        engine.terminal_focused(session.id)

        assert request.token.is_cancelled
        assert engine.status_of(session) == RuntimeStatus.STUCK

    def test_terminal_closed(self, engine, session):
        engine.deliver(_event(session.directory, "PreToolUse"))
        engine.terminal_closed(session.id)
        assert engine.status_of(session) == RuntimeStatus.IDLE

    def test_focus_rejected(self, engine, session, folder_list):
        engine.deliver(_event(session.directory, "Stop"))
        folder_list.reject = True

        assert engine.focus_workspace(session.id) is False
        assert engine.status_of(session) == RuntimeStatus.COMPLETE

    def test_unfocus(self, engine, session, folder_list):
        engine.focus_workspace(session.id)
        assert engine.unfocus_workspace() is True
        assert engine.focused_session_id is None


# =============================================================================
# Persistence and Control Events
# =============================================================================


class TestSnapshotAndControl:
    """Tests for cross-process status handling."""

    def test_snapshot_restored_by_new_engine(self, engine, session, fleet_config, fake_git, folder_list):
        engine.deliver(_stuck(session.directory))

        other = FleetEngine(fleet_config, git=fake_git, folder_list=folder_list)

        assert other.status_of(session) == RuntimeStatus.STUCK
        assert other.summary.text == "stuck 1"
        other.close()

    def test_watch_process_rebuilds_from_events(self, engine, session, fleet_config, fake_git, folder_list):
        """The owner discards the saved snapshot and replays events instead."""
        engine.deliver(_stuck(session.directory))
        owner = FleetEngine(fleet_config, git=fake_git, folder_list=folder_list)

        owner.take_status_ownership()

        assert owner.status_of(session) == RuntimeStatus.IDLE
        assert owner.summary.text == "idle 1"
        assert owner.db.load_status_snapshot() == {}
        owner.close()

    def test_control_event_applied_by_watcher(self, engine, session, scheduler, fleet_config):
        engine.deliver(_event(session.directory, "Stop"))

        path = engine.send_control(session.id, ControlAction.RESET)
        data = json.loads(path.read_text())
        assert data["hook_event_name"] == CONTROL_EVENT_NAME
        assert path.parent == fleet_config.events_dir

        watcher = engine.make_watcher(scheduler)
        watcher.start()

        assert engine.status_of(session) == RuntimeStatus.IDLE

    @pytest.mark.parametrize(
        "action,expected",
        [
            (ControlAction.IDLE, RuntimeStatus.IDLE),
            (ControlAction.TERMINAL_CLOSED, RuntimeStatus.IDLE),
            (ControlAction.TERMINAL_FOCUSED, RuntimeStatus.STUCK),
            (ControlAction.RESET, RuntimeStatus.STUCK),
        ],
    )
    def test_control_actions_on_stuck(self, engine, session, action, expected):
        engine.deliver(_stuck(session.directory))
        engine.deliver(
            _event(session.directory, CONTROL_EVENT_NAME, action=action)
        )
        assert engine.status_of(session) == expected

    def test_unknown_control_action(self, engine, session):
        with pytest.raises(ValueError):
            engine.send_control(session.id, "explode")
        engine.deliver(_event(session.directory, CONTROL_EVENT_NAME, action="explode"))
        assert engine.status_of(session) == RuntimeStatus.IDLE

    def test_control_event_never_reaches_state_machine(self, engine, tmp_path):
        """Control events for untracked directories are dropped."""
        engine.deliver(_event(str(tmp_path), CONTROL_EVENT_NAME, action=ControlAction.IDLE))
        assert normalize_directory(tmp_path) not in engine.tracker.snapshot()

    def test_ingest_file(self, engine, session, tmp_path, write_event, make_payload):
        path = write_event(tmp_path, "1_1.json", make_payload(session.directory, "PreToolUse"))

        event = engine.ingest_file(path)

        assert event.event_name == "PreToolUse"
        assert engine.status_of(session) == RuntimeStatus.RUNNING

    def test_ingest_malformed_file(self, engine, tmp_path, write_event):
        path = write_event(tmp_path, "1_1.json", "nope")
        with pytest.raises(HookEventParseError):
            engine.ingest_file(path)

    def test_duplicate_notifications_yield_one_transition(
        self, engine, session, scheduler, fleet_config, write_event, make_payload
    ):
        """One file announced repeatedly changes status and notifies the bus once."""
        changes = []
        engine.bus.subscribe(StatusChanged, changes.append)
        watcher = engine.make_watcher(scheduler)
        watcher.start()
        path = write_event(fleet_config.events_dir, "1_1.json", make_payload(session.directory, "Stop"))

        watcher.on_file_ready(path)
        watcher.on_file_ready(path)
        scheduler.advance(fleet_config.read_delay)
        watcher.on_file_ready(path)
        watcher.replay_backlog()
        scheduler.advance(1.0)

        assert len(changes) == 1
        assert changes[0].new_status == RuntimeStatus.COMPLETE
        assert changes[0].session_id == session.id
        assert len(engine.prompts.bridge.get_pending_requests()) == 1

    def test_watcher_uses_config_timings(self, engine, scheduler, fleet_config):
        watcher = engine.make_watcher(scheduler)
        assert watcher.events_dir == fleet_config.events_dir
        assert watcher.read_delay == fleet_config.read_delay
        assert watcher.backlog_limit == fleet_config.backlog_limit
        assert watcher.source is None


# =============================================================================
# Change Set Tests
# =============================================================================


class TestChanges:
    """Tests for changed_files() and diff()."""

    def test_changed_files_cached_until_refresh(self, engine, session, fake_git):
        fake_git.add_repo(session.directory, [(FileStatus.MODIFIED, "a.py")])

        engine.changed_files(session.id)
        engine.changed_files(session.id)
        files = engine.changed_files(session.id, refresh=True)

        assert [f.path for f in files] == ["a.py"]
        assert len(fake_git.status_calls) == 2

    def test_diff_tracked_file(self, engine, session, fake_git):
        fake_git.add_repo(session.directory, [(FileStatus.MODIFIED, "a.py")])
        fake_git.diffs[(session.directory, "a.py")] = "-old\n+new\n"

        assert engine.diff(session.id, "a.py") == "-old\n+new\n"

    def test_diff_untracked_file_shows_content(self, engine, session, fake_git):
        Path(session.directory, "new.txt").write_text("hello\n")
        fake_git.add_repo(session.directory, [(FileStatus.UNTRACKED, "new.txt")])

        assert engine.diff(session.id, "new.txt") == "hello\n"

    def test_diff_unknown_path(self, engine, session, fake_git):
        fake_git.add_repo(session.directory, [])
        assert engine.diff(session.id, "nope.py") == ""

    def test_diff_in_child_repository(self, engine, session, fake_git):
        child = Path(session.directory) / "svc"
        child.mkdir()
        fake_git.add_repo(child, [(FileStatus.MODIFIED, "main.py")])
        fake_git.diffs[(normalize_directory(child), "main.py")] = "+x\n"

        assert engine.diff(session.id, "svc/main.py") == "+x\n"


class TestHooks:
    def test_install_and_uninstall(self, engine, fleet_config):
        assert not engine.hooks_installed()
        assert engine.install_hooks().success
        assert engine.hooks_installed()
        assert fleet_config.settings_path.exists()
        assert engine.uninstall_hooks().success
        assert not engine.hooks_installed()
