"""Hook event ingestion from the events drop-box directory.

The external CLI appends one JSON file per hook invocation. HookWatcher turns
those files into at most one HookEvent delivery each:

- Dedup: each path is processed exactly once, however many filesystem
  notifications fire for it.
- Partial writes: reads are delayed by ``read_delay`` after a notification.
- Backlog: on start, only the newest ``backlog_limit`` files are replayed.
- Cleanup: consumed files are deleted ``cleanup_delay`` seconds later.
- Isolation: a malformed file is marked processed and reported, never retried.

The OS watch mechanism is hidden behind EventSource so tests can push files
straight into on_file_ready() without touching watchdog.
"""

import asyncio
import fnmatch
import json
import logging
import os
from collections.abc import Callable
from pathlib import Path
from typing import Any, Protocol

from pydantic import ValidationError
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from fleet.core.errors import HookEventParseError
from fleet.core.models import HookEvent

logger = logging.getLogger(__name__)

EVENT_FILE_PATTERN = "*.json"


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Anything with loop-style call_later (an asyncio loop qualifies)."""

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle: ...


class EventSource(Protocol):
    """Push-style source of "this file is ready" notifications."""

    def start(self, on_file_ready: Callable[[Path], None]) -> None: ...

    def stop(self) -> None: ...


def parse_event_file(path: Path) -> HookEvent:
    """Read and validate one notification file.

    Raises:
        HookEventParseError: If the file is missing, unreadable, not JSON,
            or lacks required fields
    """
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise HookEventParseError(str(path), f"unreadable: {e}") from e
    except UnicodeDecodeError as e:
        raise HookEventParseError(str(path), f"not UTF-8: {e}") from e
    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise HookEventParseError(str(path), f"invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise HookEventParseError(str(path), "expected a JSON object")
    try:
        return HookEvent.model_validate(data)
    except ValidationError as e:
        raise HookEventParseError(str(path), f"schema error: {e.error_count()} field(s) invalid") from e


class _ReadyFileHandler(FileSystemEventHandler):
    """watchdog handler that forwards created/modified/moved-in files."""

    def __init__(self, notify: Callable[[Path], None]):
        super().__init__()
        self._notify = notify

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._notify(Path(os.fsdecode(event.src_path)))

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._notify(Path(os.fsdecode(event.src_path)))

    def on_moved(self, event: FileSystemEvent) -> None:
        # Producers that write to a temp name and rename show up as moves
        if not event.is_directory:
            self._notify(Path(os.fsdecode(event.dest_path)))


class WatchdogEventSource:
    """EventSource backed by a watchdog Observer.

    watchdog calls back on its own thread; notifications are handed to the
    asyncio loop with call_soon_threadsafe so all core logic stays on the
    loop's single thread.
    """

    def __init__(self, directory: Path, loop: asyncio.AbstractEventLoop):
        self.directory = directory
        self.loop = loop
        self._observer: Any = None

    def start(self, on_file_ready: Callable[[Path], None]) -> None:
        def notify(path: Path) -> None:
            self.loop.call_soon_threadsafe(on_file_ready, path)

        self._observer = Observer()
        self._observer.schedule(_ReadyFileHandler(notify), str(self.directory), recursive=False)
        self._observer.daemon = True
        self._observer.start()
        logger.debug(f"Watching {self.directory} for hook events")

    def stop(self) -> None:
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None


class HookWatcher:
    """Turns notification files into HookEvent deliveries.

    USAGE:
        watcher = HookWatcher(events_dir, loop, deliver=tracker.apply_event,
                              source=WatchdogEventSource(events_dir, loop))
        watcher.start()   # replays backlog, then follows the source
        ...
        watcher.stop()
    """

    def __init__(
        self,
        events_dir: Path,
        scheduler: Scheduler,
        deliver: Callable[[HookEvent], None],
        source: EventSource | None = None,
        on_error: Callable[[HookEventParseError], None] | None = None,
        read_delay: float = 0.1,
        cleanup_delay: float = 5.0,
        backlog_limit: int = 100,
        pattern: str = EVENT_FILE_PATTERN,
    ):
        self.events_dir = Path(events_dir)
        self.scheduler = scheduler
        self.deliver = deliver
        self.source = source
        self.on_error = on_error
        self.read_delay = read_delay
        self.cleanup_delay = cleanup_delay
        self.backlog_limit = backlog_limit
        self.pattern = pattern

        self._processed: set[str] = set()
        # Pending timers keyed by ("read" | "cleanup", path)
        self._timers: dict[tuple[str, str], TimerHandle] = {}
        self.delivered_count = 0
        self.error_count = 0

    # --- lifecycle ---

    def start(self) -> None:
        """Ensure the drop-box exists, follow the source, then replay backlog.

        The source starts first so a file written during replay is not missed;
        dedup absorbs any overlap between the two.
        """
        try:
            self.events_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning(f"Failed to create events directory {self.events_dir}: {e}")
        if self.source is not None:
            self.source.start(self.on_file_ready)
        self.replay_backlog()

    def stop(self) -> None:
        """Stop the source and cancel pending reads/cleanups."""
        if self.source is not None:
            self.source.stop()
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()

    # --- ingestion ---

    def _matches(self, path: Path) -> bool:
        return fnmatch.fnmatch(path.name, self.pattern)

    def on_file_ready(self, path: Path) -> None:
        """Filesystem notification for a created/modified file.

        The read is delayed because the producer may still be writing.
        """
        path = Path(path)
        key = str(path)
        if not self._matches(path) or key in self._processed or ("read", key) in self._timers:
            return
        if not path.exists():
            # Late notification for a file already consumed and removed
            return
        self._timers[("read", key)] = self.scheduler.call_later(
            self.read_delay, self._process, path
        )

    def replay_backlog(self) -> int:
        """Deliver the newest backlog_limit pending files; clean up the rest.

        Selected files are delivered oldest-first so the newest event for a
        directory is applied last. Returns the number delivered.
        """
        try:
            candidates = [p for p in self.events_dir.iterdir() if p.is_file() and self._matches(p)]
        except OSError as e:
            logger.warning(f"Failed to list events directory {self.events_dir}: {e}")
            return 0

        with_mtime: list[tuple[float, Path]] = []
        for path in candidates:
            try:
                with_mtime.append((path.stat().st_mtime, path))
            except OSError:
                continue  # Removed by another reader between listing and stat

        with_mtime.sort(key=lambda item: item[0], reverse=True)
        recent = [p for _, p in with_mtime[: self.backlog_limit]]
        stale = [p for _, p in with_mtime[self.backlog_limit :]]

        for path in stale:
            self._processed.add(str(path))
            self._schedule_cleanup(path)
        if stale:
            logger.info(f"Skipping {len(stale)} stale hook event file(s) beyond backlog limit")

        before = self.delivered_count
        for path in reversed(recent):
            self._process(path)
        return self.delivered_count - before

    def _process(self, path: Path) -> None:
        key = str(path)
        self._timers.pop(("read", key), None)
        if key in self._processed:
            return
        if not path.exists():
            logger.debug(f"Hook event file {path.name} vanished before it was read")
            return
        # Mark first: a malformed file must not be retried
        self._processed.add(key)

        try:
            event = parse_event_file(path)
        except HookEventParseError as e:
            self.error_count += 1
            logger.warning(str(e))
            if self.on_error is not None:
                self.on_error(e)
            self._schedule_cleanup(path)
            return

        self.delivered_count += 1
        try:
            self.deliver(event)
        except Exception as e:
            # A consumer bug must not stall the pipeline
            logger.error(f"Hook event delivery failed for {path.name}: {e}")
        self._schedule_cleanup(path)

    def is_processed(self, path: Path) -> bool:
        return str(path) in self._processed

    # --- cleanup ---

    def _schedule_cleanup(self, path: Path) -> None:
        key = ("cleanup", str(path))
        if key not in self._timers:
            self._timers[key] = self.scheduler.call_later(self.cleanup_delay, self._cleanup, path)

    def _cleanup(self, path: Path) -> None:
        self._timers.pop(("cleanup", str(path)), None)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.debug(f"Cleanup of {path.name} failed: {e}")
            return
        # Gone for good; a late notification is ignored by the existence check
        self._processed.discard(str(path))
        logger.debug(f"Removed consumed hook event file {path.name}")
