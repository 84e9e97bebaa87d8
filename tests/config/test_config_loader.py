"""Tests for configuration loading and precedence."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from overseer.config import load_config, save_config
from overseer.config.env import EnvSettings
from overseer.config.loader import (
    deep_merge,
    find_project_config,
    load_env_config,
    load_yaml_config,
    merge_configs,
)
from overseer.exceptions import ConfigError
from overseer.permissions import PolicyMode


@pytest.fixture
def no_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> EnvSettings:
    """Provide environment settings with no OVERSEER_ variables set."""
    import os

    for key in list(os.environ):
        if key.startswith("OVERSEER_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)
    return EnvSettings()


def _write(path: Path, data: dict) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(data))
    return path


class TestMerging:
    """deep_merge and merge_configs."""

    def test_deep_merge_nested(self) -> None:
        base = {"permissions": {"mode": "ask", "remember_decisions": True}}
        override = {"permissions": {"mode": "deny"}}
        assert deep_merge(base, override) == {
            "permissions": {"mode": "deny", "remember_decisions": True}
        }
        assert base["permissions"]["mode"] == "ask"

    def test_lists_replaced(self) -> None:
        assert deep_merge({"a": [1, 2]}, {"a": [3]}) == {"a": [3]}

    def test_merge_configs_skips_empty(self) -> None:
        assert merge_configs({"a": 1}, None, {}, {"b": 2}) == {"a": 1, "b": 2}


class TestYaml:
    """load_yaml_config."""

    def test_missing_file(self, tmp_path: Path) -> None:
        assert load_yaml_config(tmp_path / "nope.yaml") == {}

    def test_empty_file(self, tmp_path: Path) -> None:
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_yaml_config(path) == {}

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("permissions: [unclosed")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_yaml_config(path)

    def test_not_a_mapping(self, tmp_path: Path) -> None:
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError, match="mapping"):
            load_yaml_config(path)


class TestLoadConfig:
    """Precedence across sources."""

    def test_defaults(self, tmp_path: Path, no_env: EnvSettings) -> None:
        config = load_config(
            global_config_path=tmp_path / "none.yaml",
            project_config_path=tmp_path / "none2.yaml",
            env_settings=no_env,
        )
        assert config.permissions.mode == PolicyMode.SMART_APPROVE

    def test_precedence(self, tmp_path: Path, no_env: EnvSettings) -> None:
        global_path = _write(
            tmp_path / "global.yaml",
            {"permissions": {"mode": "ask"}, "agent": {"max_rounds": 5, "max_tool_calls": 7}},
        )
        project_path = _write(tmp_path / "project.yaml", {"agent": {"max_rounds": 9}})
        env = EnvSettings(max_tool_calls=11)

        config = load_config(
            global_config_path=global_path,
            project_config_path=project_path,
            env_settings=env,
            overrides={"permissions": {"mode": "deny"}},
        )

        assert config.permissions.mode == PolicyMode.DENY
        assert config.agent.max_rounds == 9
        assert config.agent.max_tool_calls == 11

    def test_environment_variables(
        self, tmp_path: Path, no_env: EnvSettings, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("OVERSEER_PERMISSION_MODE", "deny")
        monkeypatch.setenv("OVERSEER_SHELL_TIMEOUT", "45")

        env_config = load_env_config(EnvSettings())

        assert env_config == {
            "permissions": {"mode": "deny"},
            "tools": {"shell_timeout": 45},
        }

    def test_invalid_values(self, tmp_path: Path, no_env: EnvSettings) -> None:
        path = _write(tmp_path / "bad.yaml", {"agent": {"max_rounds": -1}})
        with pytest.raises(ConfigError, match="Invalid configuration"):
            load_config(
                global_config_path=path,
                project_config_path=tmp_path / "none.yaml",
                env_settings=no_env,
            )

    def test_unknown_keys(self, tmp_path: Path, no_env: EnvSettings) -> None:
        path = _write(tmp_path / "typo.yaml", {"permisions": {"mode": "deny"}})
        with pytest.raises(ConfigError):
            load_config(
                global_config_path=path,
                project_config_path=tmp_path / "none.yaml",
                env_settings=no_env,
            )

    def test_save_round_trip(self, tmp_path: Path, no_env: EnvSettings) -> None:
        original = load_config(
            global_config_path=tmp_path / "none.yaml",
            project_config_path=tmp_path / "none2.yaml",
            overrides={"permissions": {"risk_overrides": {"run_shell": "critical"}}},
            env_settings=no_env,
        )
        path = tmp_path / "saved" / "config.yaml"

        save_config(original, path)
        reloaded = load_config(
            global_config_path=path,
            project_config_path=tmp_path / "none.yaml",
            env_settings=no_env,
        )

        assert reloaded == original


class TestProjectDiscovery:
    """find_project_config."""

    def test_found_in_parent(self, tmp_path: Path) -> None:
        config_path = _write(tmp_path / "repo" / ".overseer" / "config.yaml", {})
        (tmp_path / "repo" / ".git").mkdir()
        nested = tmp_path / "repo" / "src" / "pkg"
        nested.mkdir(parents=True)

        assert find_project_config(nested) == config_path.resolve()

    def test_stops_at_git_root(self, tmp_path: Path) -> None:
        _write(tmp_path / ".overseer" / "config.yaml", {})
        repo = tmp_path / "repo"
        (repo / ".git").mkdir(parents=True)

        assert find_project_config(repo) is None
