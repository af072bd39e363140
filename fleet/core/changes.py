"""Change-set aggregation across one or more git repositories.

A session directory is either a repository root itself, or a plain directory
whose immediate children are independent repository roots (several worktrees
checked out side by side). ChangeSetAggregator merges the uncommitted changes
of every root into one session-relative list.
"""

import logging
import os
import subprocess
import time
from collections.abc import Callable
from pathlib import Path

from fleet.core.errors import GitCommandError
from fleet.core.models import ChangedFile, FileStatus, Session
from fleet.core.utils import normalize_directory, relative_prefix

logger = logging.getLogger(__name__)

# Unmerged status codes in git porcelain v1
UNMERGED_STATUSES = {"DD", "AU", "UD", "UA", "DU", "AA", "UU"}


def parse_porcelain_z(output: str) -> list[tuple[FileStatus, str]]:
    """Parse ``git status --porcelain=v1 -z`` output into (status, path) pairs.

    Porcelain v1 -z format:
    - Standard: "XY path\\0" where XY is 2 chars (e.g., " M", "A ", "??")
    - Renames/copies: "XY new_path\\0old_path\\0" (destination first, no "->")

    Paths are relative to the repository root. Ignored entries ("!!") are
    skipped.
    """
    changes: list[tuple[FileStatus, str]] = []
    entries = output.split("\x00")

    i = 0
    while i < len(entries):
        entry = entries[i]
        i += 1
        if len(entry) < 4:  # Minimum: "XY " + at least 1 char path
            continue

        xy = entry[:2]
        path = entry[3:]

        if xy == "!!":
            continue
        if xy in UNMERGED_STATUSES or "U" in xy:
            changes.append((FileStatus.CONFLICTED, path))
        elif xy == "??":
            changes.append((FileStatus.UNTRACKED, path))
        elif "R" in xy or "C" in xy:
            # Source path follows as its own NUL-separated entry
            i += 1
            if "R" in xy:
                changes.append((FileStatus.RENAMED, path))
            else:
                changes.append((FileStatus.ADDED, path))
        elif "A" in xy:
            # Includes intent-to-add (" A")
            changes.append((FileStatus.ADDED, path))
        elif "D" in xy:
            changes.append((FileStatus.DELETED, path))
        else:
            # Modified or type change (" M", "M ", "MM", " T", ...)
            changes.append((FileStatus.MODIFIED, path))

    return changes


class GitClient:
    """Thin subprocess wrapper around the git CLI.

    Keeps one lightweight handle per repository root (its resolved toplevel)
    so repeated root checks don't re-spawn git. close() drops a handle, e.g.
    when a folder leaves the workspace.
    """

    GIT_TIMEOUT = 10  # seconds

    def __init__(self, git_timeout: float | None = None):
        self.git_timeout = git_timeout if git_timeout is not None else self.GIT_TIMEOUT
        self._toplevels: dict[str, str] = {}

    def _run(self, args: list[str], cwd: str) -> str:
        try:
            result = subprocess.run(
                ["git", *args],
                cwd=cwd,
                capture_output=True,
                text=True,
                timeout=self.git_timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise GitCommandError(
                f"git {args[0]} timed out after {self.git_timeout}s in {cwd}"
            ) from e
        except OSError as e:
            # git missing, or cwd vanished
            raise GitCommandError(f"git {args[0]} could not run in {cwd}: {e}") from e
        if result.returncode != 0:
            raise GitCommandError(f"git {args[0]} failed in {cwd}: {result.stderr.strip()}")
        return result.stdout

    def toplevel(self, directory: str) -> str | None:
        """Resolved repository toplevel containing directory, or None."""
        directory = normalize_directory(directory)
        if directory in self._toplevels:
            return self._toplevels[directory]
        try:
            top = normalize_directory(self._run(["rev-parse", "--show-toplevel"], directory).strip())
        except GitCommandError:
            # Not cached: the directory may become a repository later
            return None
        self._toplevels[directory] = top
        return top

    def is_repo_root(self, directory: str) -> bool:
        """True if directory is itself the toplevel of a repository."""
        return self.toplevel(directory) == normalize_directory(directory)

    def status(self, root: str) -> list[tuple[FileStatus, str]]:
        """Changed files of one repository, root-relative.

        Raises:
            GitCommandError: If git status fails or times out
        """
        output = self._run(["status", "--porcelain=v1", "-z", "--untracked-files=all"], root)
        return parse_porcelain_z(output)

    def file_at_head(self, root: str, rel_path: str) -> str:
        """Content of rel_path at HEAD, or "" if it doesn't exist there."""
        try:
            return self._run(["show", f"HEAD:{rel_path}"], root)
        except GitCommandError:
            return ""

    def diff_head(self, root: str, rel_path: str) -> str:
        """Unified diff of rel_path between HEAD and the working tree, or ""."""
        try:
            return self._run(["diff", "HEAD", "--", rel_path], root)
        except GitCommandError as e:
            logger.warning(str(e))
            return ""

    def close(self, directory: str) -> None:
        """Forget any cached handle for directory."""
        self._toplevels.pop(normalize_directory(directory), None)

    def close_all(self) -> None:
        self._toplevels.clear()


class ChangeSetAggregator:
    """Merged, cached change sets for sessions.

    Cache entries are keyed by session id and expire ``ttl`` seconds after
    they were created, whether or not they were read in between.

    USAGE:
        aggregator = ChangeSetAggregator(GitClient(), ttl=5.0)
        files = aggregator.get_changed_files(session)
    """

    def __init__(
        self,
        git: GitClient,
        ttl: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.git = git
        self.ttl = ttl
        self.clock = clock
        self._cache: dict[str, tuple[float, list[ChangedFile]]] = {}

    def discover_roots(self, directory: str) -> list[str]:
        """Repository roots for a session directory (depth <= 1)."""
        directory = normalize_directory(directory)
        if self.git.is_repo_root(directory):
            return [directory]

        roots = []
        try:
            children = sorted(os.scandir(directory), key=lambda entry: entry.name)
        except OSError as e:
            logger.warning(f"Cannot scan {directory} for repositories: {e}")
            return []
        for entry in children:
            if entry.name.startswith("."):
                continue
            try:
                if not entry.is_dir():
                    continue
            except OSError:
                continue
            child = os.path.join(directory, entry.name)
            if self.git.is_repo_root(child):
                roots.append(child)
        return roots

    def collect(self, directory: str) -> list[ChangedFile]:
        """Uncached merged change set for a directory."""
        directory = normalize_directory(directory)
        merged: list[ChangedFile] = []
        for root in self.discover_roots(directory):
            try:
                entries = self.git.status(root)
            except GitCommandError as e:
                logger.warning(f"Skipping repository {root}: {e}")
                continue

            prefix = relative_prefix(root, directory)
            for status, rel_path in entries:
                merged.append(
                    ChangedFile(
                        path=f"{prefix}/{rel_path}" if prefix else rel_path,
                        status=status,
                        absolute_path=str(Path(root) / rel_path),
                        git_root=root,
                    )
                )
        return merged

    def get_changed_files(self, session: Session) -> list[ChangedFile]:
        """Cached change set for a session."""
        now = self.clock()
        cached = self._cache.get(session.id)
        if cached is not None:
            created, files = cached
            if now - created < self.ttl:
                return files
            del self._cache[session.id]

        files = self.collect(session.directory)
        self._cache[session.id] = (now, files)
        return files

    def invalidate(self, session_id: str | None = None) -> None:
        """Drop one cached entry, or all of them (explicit user refresh only)."""
        if session_id is None:
            self._cache.clear()
        else:
            self._cache.pop(session_id, None)
