# conftest.py - Shared pytest fixtures for all tests
"""Shared pytest fixtures for the Agent Fleet test suite.

This module provides foundational fixtures used across all test modules:
- Temporary databases and fleet configuration
- A fake scheduler driving watcher timers by hand
- A fake git client and a real-git repository fixture
- An in-memory workspace folder list and focus store
- Helpers for writing hook notification files

Usage:
    Import fixtures implicitly via pytest's fixture discovery.
    All fixtures in this file are automatically available in test modules.
"""

from __future__ import annotations

import json
import shutil
import subprocess
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest

from fleet.core.config import FleetConfig
from fleet.core.engine import FleetEngine
from fleet.core.errors import GitCommandError
from fleet.core.focus import WorkspaceFolder
from fleet.core.models import FileStatus, FocusState, Session
from fleet.core.state import Database
from fleet.core.utils import normalize_directory


# =============================================================================
# Scheduler Fakes
# =============================================================================


class FakeTimer:
    """Timer handle returned by FakeScheduler.call_later."""

    def __init__(self, when: float, callback: Callable[..., Any], args: tuple):
        self.when = when
        self.callback = callback
        self.args = args
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """Scheduler whose clock only moves when a test calls advance()."""

    def __init__(self):
        self.now = 0.0
        self.timers: list[FakeTimer] = []

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> FakeTimer:
        timer = FakeTimer(self.now + delay, callback, args)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> list[FakeTimer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def advance(self, seconds: float) -> None:
        """Move the clock forward, firing due timers in deadline order."""
        deadline = self.now + seconds
        while True:
            due = [t for t in self.pending if t.when <= deadline]
            if not due:
                break
            timer = min(due, key=lambda t: t.when)
            self.now = max(self.now, timer.when)
            timer.fired = True
            timer.callback(*timer.args)
        self.now = deadline


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


# =============================================================================
# Git Fakes
# =============================================================================


class FakeGitClient:
    """Stands in for GitClient.

    ``repos`` maps a repository root to its status entries, or to an
    exception that status() raises for that root.
    """

    def __init__(self, repos: dict[str, list[tuple[FileStatus, str]] | Exception] | None = None):
        self.repos: dict[str, list[tuple[FileStatus, str]] | Exception] = {}
        for root, entries in (repos or {}).items():
            self.add_repo(root, entries)
        self.status_calls: list[str] = []
        self.closed: list[str] = []
        self.diffs: dict[tuple[str, str], str] = {}

    def add_repo(self, root: str | Path, entries: list[tuple[FileStatus, str]] | Exception) -> None:
        self.repos[normalize_directory(root)] = entries

    def is_repo_root(self, directory: str) -> bool:
        return normalize_directory(directory) in self.repos

    def status(self, root: str) -> list[tuple[FileStatus, str]]:
        self.status_calls.append(root)
        entries = self.repos[normalize_directory(root)]
        if isinstance(entries, Exception):
            raise entries
        return list(entries)

    def diff_head(self, root: str, rel_path: str) -> str:
        return self.diffs.get((normalize_directory(root), rel_path), "")

    def file_at_head(self, root: str, rel_path: str) -> str:
        return ""

    def close(self, directory: str) -> None:
        self.closed.append(directory)

    def close_all(self) -> None:
        self.closed.append("*")


@pytest.fixture
def fake_git() -> FakeGitClient:
    return FakeGitClient()


@pytest.fixture
def failing_git_error() -> GitCommandError:
    return GitCommandError("git status failed: fatal: not a git repository")


def _git(cwd: Path, *args: str) -> None:
    subprocess.run(["git", *args], cwd=cwd, check=True, capture_output=True)


def init_git_repo(path: Path) -> Path:
    """Initialize a git repository with one committed file (README.md)."""
    path.mkdir(parents=True, exist_ok=True)
    _git(path, "init")
    _git(path, "config", "user.email", "test@example.com")
    _git(path, "config", "user.name", "Test User")
    (path / "README.md").write_text("# Test Project\n")
    _git(path, "add", ".")
    _git(path, "commit", "-m", "Initial commit")
    return path


@pytest.fixture
def repo_with_git(tmp_path: Path) -> Path:
    """A real git repository with one commit.

    WARNING: Runs actual git commands. Slower than the fakes.
    """
    if shutil.which("git") is None:
        pytest.skip("Git not available")
    try:
        return init_git_repo(tmp_path / "repo")
    except subprocess.CalledProcessError:
        pytest.skip("Git not available")


@pytest.fixture
def multi_repo_dir(tmp_path: Path) -> Path:
    """A plain directory holding two real repositories (alpha, beta)."""
    if shutil.which("git") is None:
        pytest.skip("Git not available")
    parent = tmp_path / "worktrees"
    try:
        init_git_repo(parent / "alpha")
        init_git_repo(parent / "beta")
    except subprocess.CalledProcessError:
        pytest.skip("Git not available")
    return parent


# =============================================================================
# Workspace Fakes
# =============================================================================


class InMemoryFolderList:
    """FolderList kept in a Python list; set ``reject`` to refuse splices."""

    def __init__(self, folders: list[WorkspaceFolder] | None = None):
        self.entries: list[WorkspaceFolder] = list(folders or [])
        self.reject = False
        self.splices: list[tuple[int, int, tuple[WorkspaceFolder, ...]]] = []

    def folders(self) -> list[WorkspaceFolder]:
        return list(self.entries)

    def splice(self, start: int, delete_count: int, *add: WorkspaceFolder) -> bool:
        if self.reject:
            return False
        self.splices.append((start, delete_count, add))
        self.entries[start : start + delete_count] = list(add)
        return True

    @property
    def paths(self) -> list[str]:
        return [f.path for f in self.entries]


class InMemoryFocusStore:
    def __init__(self, state: FocusState | None = None):
        self.state = state or FocusState()
        self.saves = 0

    def load_focus_state(self) -> FocusState:
        return self.state

    def save_focus_state(self, state: FocusState) -> None:
        self.state = state
        self.saves += 1


@pytest.fixture
def folder_list() -> InMemoryFolderList:
    return InMemoryFolderList()


@pytest.fixture
def focus_store() -> InMemoryFocusStore:
    return InMemoryFocusStore()


# =============================================================================
# Database, Config and Engine Fixtures
# =============================================================================


@pytest.fixture
def test_db(tmp_path: Path) -> Database:
    """Create a temporary test database.

    Creates a fresh SQLite database in a temporary directory.
    Database is automatically cleaned up after the test.
    """
    db_path = tmp_path / "test.db"
    return Database(db_path)


@pytest.fixture
def fleet_home(tmp_path: Path) -> Path:
    home = tmp_path / "fleet-home"
    home.mkdir()
    return home


@pytest.fixture
def fleet_config(fleet_home: Path, tmp_path: Path) -> FleetConfig:
    """Config confined to tmp_path (never touches the real ~/.claude)."""
    return FleetConfig(home=fleet_home, settings_path=tmp_path / "claude" / "settings.json")


@pytest.fixture
def project_dirs(tmp_path: Path) -> tuple[Path, Path]:
    """Two empty session directories."""
    a = tmp_path / "projects" / "app-a"
    b = tmp_path / "projects" / "app-b"
    a.mkdir(parents=True)
    b.mkdir(parents=True)
    return a, b


@pytest.fixture
def terminal_requests() -> list[Session]:
    return []


@pytest.fixture
def engine(
    fleet_config: FleetConfig,
    fake_git: FakeGitClient,
    folder_list: InMemoryFolderList,
    terminal_requests: list[Session],
) -> Iterator[FleetEngine]:
    """FleetEngine with fake git and an in-memory workspace."""
    engine = FleetEngine(
        fleet_config,
        git=fake_git,
        folder_list=folder_list,
        terminal_host=terminal_requests.append,
    )
    yield engine
    engine.close()


# =============================================================================
# Hook Event Helpers
# =============================================================================


def hook_payload(cwd: str | Path, event_name: str, **fields: Any) -> dict[str, Any]:
    payload = {"session_id": "abc123", "cwd": str(cwd), "hook_event_name": event_name}
    payload.update(fields)
    return payload


def write_event_file(directory: Path, name: str, payload: dict[str, Any] | str) -> Path:
    """Write one notification file; a str payload is written verbatim."""
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_text(payload if isinstance(payload, str) else json.dumps(payload))
    return path


# =============================================================================
# Pytest Configuration
# =============================================================================


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "git: marks tests requiring git")


@pytest.fixture
def make_payload() -> Callable[..., dict[str, Any]]:
    return hook_payload


@pytest.fixture
def write_event() -> Callable[[Path, str, dict[str, Any] | str], Path]:
    return write_event_file
