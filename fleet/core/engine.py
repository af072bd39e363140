"""Fleet engine: wires the core components together.

Coordinates:
- Session registry (Database)
- Hook event ingestion (HookWatcher) and the status state machine
- Change sets (ChangeSetAggregator over GitClient)
- Workspace focus (FocusArbiter over a WorkspaceFile)
- Prompts and the status summary (PromptCenter, StatusSummary)
- Hook installation (HookInstaller)

Runtime statuses belong to whichever process runs the watch loop. Other
processes (one-shot CLI commands) see the last saved snapshot and change
statuses by dropping a control event into the events directory, which the
watch loop applies like any other notification.
"""

import asyncio
import json
import logging
import os
import time
import uuid
from collections.abc import Callable
from pathlib import Path

from fleet.core.bus import MessageBus, SessionsChanged, StatusChanged
from fleet.core.changes import ChangeSetAggregator, GitClient
from fleet.core.config import FleetConfig
from fleet.core.errors import FleetError, SessionNotFoundError
from fleet.core.focus import FocusArbiter, FolderList, WorkspaceFile
from fleet.core.hooks import HookInstaller, HookInstallResult
from fleet.core.interaction import PromptChoice
from fleet.core.models import ChangedFile, FileStatus, HookEvent, RuntimeStatus, Session, SessionState
from fleet.core.notifications import PromptCenter, StatusSummary
from fleet.core.state import Database
from fleet.core.status import StatusTracker
from fleet.core.utils import normalize_directory
from fleet.core.watcher import EventSource, HookWatcher, Scheduler, WatchdogEventSource, parse_event_file

logger = logging.getLogger(__name__)

CONTROL_EVENT_NAME = "FleetControl"


class ControlAction:
    """Status commands that can be sent to the watch process."""

    RESET = "reset"
    IDLE = "idle"
    TERMINAL_FOCUSED = "terminal_focused"
    TERMINAL_CLOSED = "terminal_closed"

    ALL = (RESET, IDLE, TERMINAL_FOCUSED, TERMINAL_CLOSED)


def new_session_id() -> str:
    return f"session-{uuid.uuid4().hex[:8]}"


class FleetEngine:
    """Owns every core component for one fleet home.

    USAGE:
        engine = FleetEngine(load_config())
        session = engine.add_session("~/work/app")
        watcher = engine.make_watcher(loop)      # inside the watch loop
        watcher.start()
    """

    def __init__(
        self,
        config: FleetConfig,
        db: Database | None = None,
        git: GitClient | None = None,
        folder_list: FolderList | None = None,
        terminal_host: Callable[[Session], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.db = db if db is not None else Database(config.db_path)
        self.bus = MessageBus()
        self.git = git if git is not None else GitClient(git_timeout=config.git_timeout)
        self.terminal_host = terminal_host

        self.tracker = StatusTracker(self.bus, session_lookup=self.db.get_session_by_directory)
        self.tracker.restore(self.db.load_status_snapshot())

        self.changes = ChangeSetAggregator(self.git, ttl=config.changes_ttl, clock=clock)
        self.arbiter = FocusArbiter(
            folder_list if folder_list is not None else WorkspaceFile(config.workspace_file),
            store=self.db,
            close_repository=self.git.close,
        )
        self.prompts = PromptCenter(self.bus, self.db.get_session, self._execute_prompt_action)
        self.summary = StatusSummary(self.bus, self.session_states)
        self.installer = HookInstaller(config.settings_path, config.events_dir)

        self.bus.subscribe(StatusChanged, self._save_snapshot)

    # --- Sessions ---

    def add_session(self, directory: str | Path, name: str | None = None) -> Session:
        """Register a directory as a session.

        Raises:
            FleetError: If the directory does not exist
            SessionExistsError: If the directory is already tracked
        """
        normalized = normalize_directory(directory)
        if not os.path.isdir(normalized):
            raise FleetError(f"Not a directory: {directory}")

        session = Session(
            id=new_session_id(),
            name=name or os.path.basename(normalized) or normalized,
            directory=normalized,
        )
        self.db.add_session(session)
        logger.info(f"Added session {session.id} for {normalized}")
        self.bus.publish(SessionsChanged(session_id=session.id))
        return session

    def remove_session(self, session_id: str) -> Session:
        session = self.get_session_or_raise(session_id)
        self.arbiter.on_session_removed(session.id)
        self.prompts.bridge.dismiss(session.id, reason="session removed")
        self.changes.invalidate(session.id)
        self.db.remove_session(session.id)
        self.tracker.forget(session.directory)
        self.db.save_status_snapshot(self.tracker.snapshot())
        logger.info(f"Removed session {session.id}")
        self.bus.publish(SessionsChanged(session_id=session.id, removed=True))
        return session

    def get_session_or_raise(self, session_id: str) -> Session:
        session = self.db.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def list_sessions(self) -> list[Session]:
        return self.db.list_sessions()

    def session_states(self) -> list[SessionState]:
        return [
            SessionState(session=session, status=self.tracker.get(session.directory))
            for session in self.db.list_sessions()
        ]

    def status_of(self, session: Session) -> RuntimeStatus:
        return self.tracker.get(session.directory)

    # --- Status commands (in-process) ---

    def reset_status(self, session_id: str) -> bool:
        """complete -> idle for a session; no-op for any other status."""
        session = self.get_session_or_raise(session_id)
        return self.tracker.reset(session.directory)

    def set_status_idle(self, session_id: str) -> bool:
        session = self.get_session_or_raise(session_id)
        return self.tracker.override_idle(session.directory)

    def terminal_focused(self, session_id: str) -> bool:
        """User brought the session's terminal to front: drop its prompt and reset."""
        session = self.get_session_or_raise(session_id)
        self.prompts.dismiss(session.id)
        return self.tracker.reset(session.directory)

    def terminal_closed(self, session_id: str) -> bool:
        session = self.get_session_or_raise(session_id)
        return self.tracker.terminal_closed(session.directory)

    def open_terminal(self, session_id: str) -> bool:
        """Ask the terminal host to show the session, then reset a complete status."""
        session = self.get_session_or_raise(session_id)
        if self.terminal_host is not None:
            self.terminal_host(session)
        else:
            logger.info(f"No terminal host to show {session.name}")
        return self.tracker.reset(session.directory)

    # --- Focus ---

    def focus_workspace(self, session_id: str) -> bool:
        """Make the session the single focused workspace folder.

        A complete session counts as acknowledged once focused.
        """
        session = self.get_session_or_raise(session_id)
        if not self.arbiter.focus(session):
            return False
        self.tracker.reset(session.directory)
        return True

    def unfocus_workspace(self) -> bool:
        return self.arbiter.unfocus()

    @property
    def focused_session_id(self) -> str | None:
        return self.arbiter.focused_session_id

    # --- Change sets ---

    def changed_files(self, session_id: str, refresh: bool = False) -> list[ChangedFile]:
        session = self.get_session_or_raise(session_id)
        if refresh:
            self.changes.invalidate(session.id)
        return self.changes.get_changed_files(session)

    def diff(self, session_id: str, path: str) -> str:
        """Diff of one changed file against HEAD, or "" if unavailable.

        Untracked files have no HEAD version; their whole content is returned.
        """
        entry = next((f for f in self.changed_files(session_id) if f.path == path), None)
        if entry is None:
            return ""
        if entry.status == FileStatus.UNTRACKED:
            try:
                return Path(entry.absolute_path).read_text(encoding="utf-8", errors="replace")
            except OSError as e:
                logger.warning(f"Cannot read {entry.absolute_path}: {e}")
                return ""
        rel_path = os.path.relpath(entry.absolute_path, entry.git_root)
        return self.git.diff_head(entry.git_root, Path(rel_path).as_posix())

    # --- Events ---

    def deliver(self, event: HookEvent) -> None:
        """Entry point for every parsed notification."""
        if event.event_name == CONTROL_EVENT_NAME:
            self._apply_control(event)
            return
        self.tracker.apply_event(event)

    def _apply_control(self, event: HookEvent) -> None:
        session = self.db.get_session_by_directory(normalize_directory(event.cwd))
        if session is None:
            logger.warning(f"Control event for untracked directory {event.cwd}")
            return
        if event.action == ControlAction.RESET:
            self.reset_status(session.id)
        elif event.action == ControlAction.IDLE:
            self.set_status_idle(session.id)
        elif event.action == ControlAction.TERMINAL_FOCUSED:
            self.terminal_focused(session.id)
        elif event.action == ControlAction.TERMINAL_CLOSED:
            self.terminal_closed(session.id)
        else:
            logger.warning(f"Unknown control action '{event.action}'")

    def send_control(self, session_id: str, action: str) -> Path:
        """Queue a status command for the watch process. Returns the file written."""
        if action not in ControlAction.ALL:
            raise ValueError(f"Unknown control action '{action}'")
        session = self.get_session_or_raise(session_id)

        events_dir = self.config.events_dir
        events_dir.mkdir(parents=True, exist_ok=True)
        path = events_dir / f"{time.time_ns()}_{os.getpid()}.json"
        payload = {
            "session_id": "",
            "cwd": session.directory,
            "hook_event_name": CONTROL_EVENT_NAME,
            "action": action,
        }
        # Written under a non-matching name first so it is never read half-written
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(payload), encoding="utf-8")
        os.replace(tmp_path, path)
        return path

    def ingest_file(self, path: str | Path) -> HookEvent:
        """Parse and apply one notification file (debugging aid).

        Raises:
            HookEventParseError: If the file is malformed
        """
        event = parse_event_file(Path(path))
        self.deliver(event)
        return event

    def take_status_ownership(self) -> None:
        """Start the status map over for the watch process.

        The saved snapshot is only a view for other processes; the owner
        rebuilds statuses from events (starting with the backlog replay).
        """
        self.tracker.clear()
        self.db.save_status_snapshot({})
        self.summary.refresh()

    def make_watcher(
        self,
        scheduler: Scheduler,
        source: EventSource | None = None,
    ) -> HookWatcher:
        """Build the ingestion watcher for this fleet.

        When scheduler is an asyncio loop and no source is given, a
        watchdog-backed source on the events directory is used.
        """
        if source is None and isinstance(scheduler, asyncio.AbstractEventLoop):
            source = WatchdogEventSource(self.config.events_dir, scheduler)
        return HookWatcher(
            self.config.events_dir,
            scheduler,
            deliver=self.deliver,
            source=source,
            read_delay=self.config.read_delay,
            cleanup_delay=self.config.cleanup_delay,
            backlog_limit=self.config.backlog_limit,
        )

    # --- Prompts ---

    def _execute_prompt_action(
        self, choice: PromptChoice, session_id: str, status: RuntimeStatus
    ) -> None:
        if choice == PromptChoice.OPEN_TERMINAL:
            self.open_terminal(session_id)
        elif choice == PromptChoice.FOCUS_WORKSPACE:
            self.focus_workspace(session_id)
        elif choice == PromptChoice.DISMISS and status == RuntimeStatus.COMPLETE:
            self.reset_status(session_id)

    # --- Hooks ---

    def install_hooks(self) -> HookInstallResult:
        return self.installer.install()

    def uninstall_hooks(self) -> HookInstallResult:
        return self.installer.uninstall()

    def hooks_installed(self) -> bool:
        return self.installer.hooks_installed()

    # --- Lifecycle ---

    def _save_snapshot(self, _message: StatusChanged) -> None:
        self.db.save_status_snapshot(self.tracker.snapshot())

    def close(self) -> None:
        self.prompts.close()
        self.summary.close()
        self.git.close_all()
