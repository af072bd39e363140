"""Tests for configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from fleet.core.config import DEFAULT_CONFIG_YAML, FleetConfig, load_config, resolve_home


class TestResolveHome:
    def test_explicit_home(self, tmp_path):
        assert resolve_home(tmp_path) == tmp_path

    def test_env_var(self, tmp_path, monkeypatch):
        monkeypatch.setenv("AGENT_FLEET_HOME", str(tmp_path / "env-home"))
        assert resolve_home() == tmp_path / "env-home"

    def test_default(self, monkeypatch):
        monkeypatch.delenv("AGENT_FLEET_HOME", raising=False)
        assert resolve_home() == Path("~/.agent-fleet").expanduser()


class TestFleetConfig:
    def test_paths_default_under_home(self, tmp_path):
        config = FleetConfig(home=tmp_path)

        assert config.events_dir == tmp_path / "events"
        assert config.db_path == tmp_path / "state.db"
        assert config.workspace_file == tmp_path / "fleet.code-workspace"
        assert config.read_delay == 0.1
        assert config.cleanup_delay == 5.0
        assert config.backlog_limit == 100
        assert config.changes_ttl == 5.0

    def test_log_level_normalized(self, tmp_path):
        assert FleetConfig(home=tmp_path, log_level="debug").log_level == "DEBUG"

    def test_bad_log_level(self, tmp_path):
        with pytest.raises(ValueError):
            FleetConfig(home=tmp_path, log_level="LOUD")


class TestLoadConfig:
    """Tests for load_config()."""

    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_config(tmp_path)
        assert config.home == tmp_path
        assert config.backlog_limit == 100

    def test_default_yaml_is_valid(self, tmp_path):
        """The file written by 'fleet init' loads to the defaults."""
        (tmp_path / "config.yaml").write_text(DEFAULT_CONFIG_YAML)
        assert load_config(tmp_path) == FleetConfig(home=tmp_path)

    def test_overrides(self, tmp_path):
        (tmp_path / "config.yaml").write_text(
            yaml.safe_dump(
                {
                    "events_dir": str(tmp_path / "drop"),
                    "backlog_limit": 10,
                    "changes_ttl": 1.5,
                    "unknown_key": True,
                }
            )
        )

        config = load_config(tmp_path)

        assert config.events_dir == tmp_path / "drop"
        assert config.backlog_limit == 10
        assert config.changes_ttl == 1.5
        assert config.db_path == tmp_path / "state.db"

    @pytest.mark.parametrize(
        "content",
        ["backlog_limit: [1, 2", "- just\n- a list\n", "backlog_limit: -5\n", "read_delay: soon\n"],
    )
    def test_invalid_config_falls_back(self, tmp_path, content):
        (tmp_path / "config.yaml").write_text(content)
        assert load_config(tmp_path) == FleetConfig(home=tmp_path)

    def test_empty_file(self, tmp_path):
        (tmp_path / "config.yaml").write_text("")
        assert load_config(tmp_path).backlog_limit == 100
