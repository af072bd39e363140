"""Fleet configuration, loaded from ``<home>/config.yaml``."""

import logging
import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

HOME_ENV_VAR = "AGENT_FLEET_HOME"
DEFAULT_HOME = Path("~/.agent-fleet")
CONFIG_FILE_NAME = "config.yaml"

DEFAULT_CONFIG_YAML = """# Agent Fleet configuration
# Paths default to locations under this directory.

# Where hook notification files are dropped
# events_dir: ~/.agent-fleet/events

# Session registry and persisted focus state
# db_path: ~/.agent-fleet/state.db

# Workspace file whose folder list holds the focused session
# workspace_file: ~/.agent-fleet/fleet.code-workspace

# Claude Code settings file that install-hooks edits
# settings_path: ~/.claude/settings.json

# Watcher timings (seconds)
read_delay: 0.1       # Wait before reading a new notification file
cleanup_delay: 5.0    # Wait before deleting a processed file
backlog_limit: 100    # Newest files replayed at startup

# Change sets
changes_ttl: 5.0      # Seconds a cached change set stays valid
git_timeout: 10       # Per git invocation

log_level: WARNING
"""


def resolve_home(home: str | Path | None = None) -> Path:
    """Fleet home directory: explicit value, then $AGENT_FLEET_HOME, then ~/.agent-fleet."""
    if home is None:
        home = os.environ.get(HOME_ENV_VAR) or DEFAULT_HOME
    return Path(home).expanduser()


class FleetConfig(BaseModel):
    """Validated fleet settings. Unset paths are filled in relative to home."""

    home: Path = Field(default_factory=lambda: DEFAULT_HOME.expanduser())
    events_dir: Path | None = None
    db_path: Path | None = None
    workspace_file: Path | None = None
    settings_path: Path = Path("~/.claude/settings.json")
    read_delay: float = Field(default=0.1, ge=0)
    cleanup_delay: float = Field(default=5.0, ge=0)
    backlog_limit: int = Field(default=100, ge=0)
    changes_ttl: float = Field(default=5.0, ge=0)
    git_timeout: float = Field(default=10, gt=0)
    log_level: str = "WARNING"

    model_config = {"extra": "ignore"}

    @field_validator("log_level")
    @classmethod
    def _check_level(cls, value: str) -> str:
        level = value.upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"unknown log level '{value}'")
        return level

    def model_post_init(self, __context: object) -> None:
        self.home = self.home.expanduser()
        if self.events_dir is None:
            self.events_dir = self.home / "events"
        if self.db_path is None:
            self.db_path = self.home / "state.db"
        if self.workspace_file is None:
            self.workspace_file = self.home / "fleet.code-workspace"
        self.events_dir = self.events_dir.expanduser()
        self.db_path = self.db_path.expanduser()
        self.workspace_file = self.workspace_file.expanduser()
        self.settings_path = self.settings_path.expanduser()


def load_config(home: str | Path | None = None) -> FleetConfig:
    """Load ``<home>/config.yaml``.

    A missing file yields defaults. Invalid YAML or values are reported and
    also fall back to defaults; configuration errors are never fatal.
    """
    home_path = resolve_home(home)
    config_path = home_path / CONFIG_FILE_NAME
    if not config_path.exists():
        return FleetConfig(home=home_path)

    try:
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError("top level must be a mapping")
        data.pop("home", None)
        return FleetConfig(home=home_path, **data)
    except (OSError, yaml.YAMLError, ValueError, ValidationError) as e:
        logger.warning(f"Invalid config {config_path}, using defaults: {e}")
        return FleetConfig(home=home_path)
