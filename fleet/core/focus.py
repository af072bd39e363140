"""Single-focus arbitration over the workspace folder list.

Only one session directory may be "focused" (present in the editor's
workspace folder list on the fleet's behalf) at a time. Focusing another
session swaps the folder entry in a single splice, so the list never passes
through an empty state.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from filelock import FileLock
from filelock import Timeout as FileLockTimeout

from fleet.core.models import FocusState, Session
from fleet.core.utils import normalize_directory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorkspaceFolder:
    """One entry of the workspace folder list."""

    path: str
    name: str | None = None


class FolderList(Protocol):
    """Ordered, mutable workspace folder list owned by the environment."""

    def folders(self) -> list[WorkspaceFolder]: ...

    def splice(self, start: int, delete_count: int, *add: WorkspaceFolder) -> bool:
        """Replace delete_count entries at start with add. False if rejected."""
        ...


class FocusStore(Protocol):
    def load_focus_state(self) -> FocusState: ...

    def save_focus_state(self, state: FocusState) -> None: ...


class WorkspaceFile:
    """FolderList backed by a VS Code style ``.code-workspace`` JSON file.

    Writes take an inter-process FileLock and replace the file atomically.
    Any other top-level keys in the file ("settings", ...) are preserved.
    """

    LOCK_TIMEOUT = 10

    def __init__(self, path: str | Path):
        self.path = Path(path).expanduser()
        self._lock_path = self.path.with_name(self.path.name + ".lock")

    def _read(self) -> dict:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {"folders": []}
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Unreadable workspace file {self.path}: {e}")
            return {"folders": []}
        if not isinstance(data, dict) or not isinstance(data.get("folders"), list):
            return {"folders": []}
        return data

    @staticmethod
    def _to_folder(entry: object) -> WorkspaceFolder | None:
        if not isinstance(entry, dict) or not entry.get("path"):
            return None
        return WorkspaceFolder(path=str(entry["path"]), name=entry.get("name"))

    def folders(self) -> list[WorkspaceFolder]:
        folders = [self._to_folder(entry) for entry in self._read()["folders"]]
        return [f for f in folders if f is not None]

    def splice(self, start: int, delete_count: int, *add: WorkspaceFolder) -> bool:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with FileLock(str(self._lock_path), timeout=self.LOCK_TIMEOUT):
                data = self._read()
                entries = data["folders"]
                if start < 0 or start > len(entries) or delete_count < 0:
                    logger.warning(f"Rejected folder splice at {start} (+{delete_count})")
                    return False
                new_entries = [
                    {"path": f.path, "name": f.name} if f.name else {"path": f.path} for f in add
                ]
                entries[start : start + delete_count] = new_entries
                data["folders"] = entries

                tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
                tmp_path.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
                os.replace(tmp_path, self.path)
        except FileLockTimeout:
            logger.warning(f"Workspace file lock timeout after {self.LOCK_TIMEOUT}s")
            return False
        except OSError as e:
            logger.warning(f"Failed to update workspace file {self.path}: {e}")
            return False
        return True


class FocusArbiter:
    """Keeps at most one session focused in the workspace folder list.

    USAGE:
        arbiter = FocusArbiter(WorkspaceFile(path), store=db, close_repository=git.close)
        arbiter.focus(session)      # swap focus to session
        arbiter.unfocus()
        arbiter.on_session_removed(session.id)
    """

    def __init__(
        self,
        folder_list: FolderList,
        store: FocusStore,
        close_repository: Callable[[str], None] | None = None,
    ):
        self.folder_list = folder_list
        self.store = store
        self.close_repository = close_repository
        self._state = store.load_focus_state()

    def reload(self) -> None:
        """Re-read the persisted state; another process may have moved focus."""
        self._state = self.store.load_focus_state()

    @property
    def state(self) -> FocusState:
        return self._state

    @property
    def focused_session_id(self) -> str | None:
        return self._state.focused_session_id

    def is_focused(self, session_id: str) -> bool:
        return self._state.focused_session_id == session_id

    @staticmethod
    def _index_of(folders: list[WorkspaceFolder], directory: str) -> int:
        for index, folder in enumerate(folders):
            if normalize_directory(folder.path) == directory:
                return index
        return -1

    def _close(self, directory: str) -> None:
        if self.close_repository is None:
            return
        try:
            self.close_repository(directory)
        except Exception as e:
            logger.debug(f"Closing repository handle for {directory} failed: {e}")

    def focus(self, session: Session) -> bool:
        """Focus session's directory. Returns False if the folder list rejected it."""
        self.reload()
        if self.is_focused(session.id):
            return True

        directory = normalize_directory(session.directory)
        folders = self.folder_list.folders()

        if self._index_of(folders, directory) >= 0:
            # Already present (e.g. the workspace root): adopt without mutating
            self._commit(FocusState(focused_session_id=session.id, focused_directory=directory))
            return True

        remove_index = -1
        previous = self._state.focused_directory
        if previous is not None:
            remove_index = self._index_of(folders, previous)
            self._close(previous)

        entry = WorkspaceFolder(path=directory, name=session.name)
        if remove_index >= 0:
            success = self.folder_list.splice(remove_index, 1, entry)
        else:
            success = self.folder_list.splice(len(folders), 0, entry)

        if not success:
            logger.warning(f"Workspace rejected focus change to {session.name}")
            return False

        self._commit(FocusState(focused_session_id=session.id, focused_directory=directory))
        logger.info(f"Focused workspace on {session.name}")
        return True

    def unfocus(self) -> bool:
        """Remove the focused folder. Returns False if the folder list rejected it."""
        self.reload()
        directory = self._state.focused_directory
        if directory is None:
            return True

        self._close(directory)
        remove_index = self._index_of(self.folder_list.folders(), directory)
        if remove_index < 0:
            # Removed externally; just stop tracking it
            self._commit(FocusState())
            return True

        if not self.folder_list.splice(remove_index, 1):
            logger.warning(f"Workspace rejected removal of {directory}")
            return False

        self._commit(FocusState())
        return True

    def on_session_removed(self, session_id: str) -> bool:
        self.reload()
        if self.is_focused(session_id):
            return self.unfocus()
        return True

    def _commit(self, state: FocusState) -> None:
        self.store.save_focus_state(state)
        self._state = state
