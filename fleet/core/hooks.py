"""Install/uninstall the fleet's hook entries in the Claude Code settings file.

Only entries whose command contains HOOK_MARKER are ever touched; every other
hook (and every other settings key) is preserved as-is. Install always does
remove-then-add, so repeating it converges on the same file.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from filelock import FileLock
from filelock import Timeout as FileLockTimeout

logger = logging.getLogger(__name__)

HOOK_MARKER = ".agent-fleet"

# (event name, matcher). "*" matches every tool/notification; None = no matcher key.
HOOKED_EVENTS: list[tuple[str, str | None]] = [
    ("PreToolUse", "*"),
    ("PostToolUse", "*"),
    ("Notification", "*"),
    ("Stop", None),
    ("PreCompact", None),
    ("SessionStart", None),
    ("SessionEnd", None),
]


def hook_command(events_dir: Path) -> str:
    """Shell command that copies the hook's stdin JSON into a unique event file.

    The CLI passes hook data as JSON on stdin; the file name is
    ``<unix nanos>_<pid>.json`` so concurrent hooks never collide. HOOK_MARKER
    is passed as the script's $0 so the entry is recognizable wherever
    events_dir lives.
    """
    script = f'mkdir -p "{events_dir}" && cat > "{events_dir}/$(date +%s%N)_$$.json"'
    return f"bash -c '{script}' {HOOK_MARKER}"


@dataclass
class HookInstallResult:
    success: bool
    message: str


def _is_our_entry(entry: Any) -> bool:
    if not isinstance(entry, dict):
        return False
    actions = entry.get("hooks")
    if not isinstance(actions, list):
        return False
    return any(
        isinstance(action, dict) and HOOK_MARKER in str(action.get("command", ""))
        for action in actions
    )


def remove_our_hooks(settings: dict[str, Any]) -> bool:
    """Strip marker entries from settings in place. Returns True if any were removed."""
    hooks = settings.get("hooks")
    if not isinstance(hooks, dict):
        return False

    removed = False
    for event_name in list(hooks.keys()):
        entries = hooks[event_name]
        if not isinstance(entries, list):
            continue
        kept = [entry for entry in entries if not _is_our_entry(entry)]
        if len(kept) != len(entries):
            removed = True
        if kept:
            hooks[event_name] = kept
        else:
            del hooks[event_name]

    if not hooks:
        del settings["hooks"]
    return removed


def add_hook(settings: dict[str, Any], event_name: str, matcher: str | None, command: str) -> bool:
    """Append a command hook unless an identical one exists. Returns True if added."""
    hooks = settings.setdefault("hooks", {})
    entries = hooks.setdefault(event_name, [])

    for entry in entries:
        if not isinstance(entry, dict) or entry.get("matcher") != matcher:
            continue
        actions = entry.get("hooks") or []
        if any(isinstance(a, dict) and a.get("command") == command for a in actions):
            return False

    entry: dict[str, Any] = {}
    if matcher:
        entry["matcher"] = matcher
    entry["hooks"] = [{"type": "command", "command": command}]
    entries.append(entry)
    return True


class HookInstaller:
    """Reads and writes the host CLI's settings.json.

    USAGE:
        installer = HookInstaller(Path("~/.claude/settings.json"), events_dir)
        result = installer.install()
    """

    LOCK_TIMEOUT = 10

    def __init__(self, settings_path: Path, events_dir: Path):
        self.settings_path = Path(settings_path).expanduser()
        self.events_dir = Path(events_dir).expanduser()
        self._lock_path = self.settings_path.with_name(self.settings_path.name + ".lock")

    def host_installed(self) -> bool:
        """The host CLI's config directory exists."""
        return self.settings_path.parent.exists()

    def read_settings(self) -> dict[str, Any]:
        """Current settings; missing or unreadable files count as empty."""
        try:
            data = json.loads(self.settings_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Unreadable settings file {self.settings_path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _write_settings(self, settings: dict[str, Any]) -> None:
        self.settings_path.parent.mkdir(parents=True, exist_ok=True)
        self.settings_path.write_text(json.dumps(settings, indent=2) + "\n", encoding="utf-8")

    def hooks_installed(self) -> bool:
        hooks = self.read_settings().get("hooks")
        if not isinstance(hooks, dict):
            return False
        return any(
            isinstance(entries, list) and any(_is_our_entry(e) for e in entries)
            for entries in hooks.values()
        )

    def install(self) -> HookInstallResult:
        try:
            self.events_dir.mkdir(parents=True, exist_ok=True)
            self.settings_path.parent.mkdir(parents=True, exist_ok=True)
            with FileLock(str(self._lock_path), timeout=self.LOCK_TIMEOUT):
                settings = self.read_settings()
                command = hook_command(self.events_dir)

                remove_our_hooks(settings)
                for event_name, matcher in HOOKED_EVENTS:
                    add_hook(settings, event_name, matcher, command)

                self._write_settings(settings)
        except FileLockTimeout:
            return HookInstallResult(False, "Failed to install hooks: settings file is locked")
        except OSError as e:
            return HookInstallResult(False, f"Failed to install hooks: {e}")

        logger.info(f"Installed hooks into {self.settings_path}")
        return HookInstallResult(
            True,
            "Agent Fleet hooks installed successfully. "
            "Restart Claude Code sessions for changes to take effect.",
        )

    def uninstall(self) -> HookInstallResult:
        if not self.settings_path.exists():
            return HookInstallResult(True, "No Claude Code settings found. Nothing to uninstall.")
        try:
            with FileLock(str(self._lock_path), timeout=self.LOCK_TIMEOUT):
                settings = self.read_settings()
                if not isinstance(settings.get("hooks"), dict):
                    return HookInstallResult(True, "No hooks configured. Nothing to uninstall.")

                removed = remove_our_hooks(settings)
                if removed:
                    self._write_settings(settings)
        except FileLockTimeout:
            return HookInstallResult(False, "Failed to uninstall hooks: settings file is locked")
        except OSError as e:
            return HookInstallResult(False, f"Failed to uninstall hooks: {e}")

        if removed:
            return HookInstallResult(True, "Agent Fleet hooks uninstalled successfully.")
        return HookInstallResult(True, "Agent Fleet hooks were not installed. Nothing to uninstall.")
