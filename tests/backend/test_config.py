"""
Tests for configuration loading and persistence.

Tests cover:
- Defaults when the file is absent
- Config path resolution (explicit, env var, default)
- Bare and mapping predefined commands
- Validation errors surfaced as ConfigFileError
- ConfigStore.update preserves untouched keys and bare entries
- Atomic text writes
"""
from pathlib import Path

import pytest
import yaml

from boxrun.config import (
    CONFIG_ENV_VAR,
    DEFAULT_CONTAINER_NAME,
    BoxrunConfig,
    ConfigStore,
    PredefinedCommand,
    atomic_write_text,
    load_config,
    resolve_config_path,
)
from boxrun.core.exceptions import ConfigFileError


def _write_yaml(path: Path, data) -> Path:
    path.write_text(yaml.safe_dump(data, sort_keys=False))
    return path


# =============================================================================
# Loading
# =============================================================================

class TestLoadConfig:
    """YAML → BoxrunConfig."""

    def test_missing_file_yields_defaults(self, tmp_path: Path) -> None:
        config = load_config(tmp_path / "absent.yaml")
        assert config.container_name == DEFAULT_CONTAINER_NAME
        assert config.sandbox_root == "/sandbox"
        assert config.artifact_name == "compile_commands.json"
        assert config.rewrite_timeout_seconds == 120
        assert config.stop_grace_seconds == 3
        assert config.history_size == 10
        assert config.global_execute_locally is False
        assert config.predefined_commands == []
        assert config.history_file.is_absolute()

    def test_full_file(self, tmp_path: Path) -> None:
        path = _write_yaml(tmp_path / "boxrun.yaml", {
            "workspace_root": str(tmp_path),
            "container_name": "  dev-box  ",
            "sandbox_root": "/sandbox/",
            "env": {"JOBS": 8},
            "refresh_command": "pkill -HUP clangd",
            "predefined_commands": [
                "make -j8",
                {"command": "./build.sh", "working_directory": "blc", "alias": "Build BLC"},
                {"command": "cmake --build build", "cwd": "", "execute_locally": True},
            ],
        })
        config = load_config(path)

        assert config.container_name == "dev-box"
        assert config.sandbox_root == "/sandbox"
        assert config.env == {"JOBS": "8"}
        assert config.refresh_command == ["pkill", "-HUP", "clangd"]

        bare, build, local = config.predefined_commands
        assert bare.bare is True
        assert bare.display_name == "make -j8"
        assert build.cwd == "blc"
        assert build.display_name == "Build BLC"
        assert local.cwd is None
        assert local.execute_locally is True

    def test_relative_sandbox_root_rejected(self, tmp_path: Path) -> None:
        path = _write_yaml(tmp_path / "boxrun.yaml", {"sandbox_root": "sandbox"})
        with pytest.raises(ConfigFileError) as exc_info:
            load_config(path)
        assert "sandbox_root" in exc_info.value.message

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "boxrun.yaml"
        path.write_text("container_name: [unclosed\n")
        with pytest.raises(ConfigFileError, match="YAML parse error"):
            load_config(path)

    def test_top_level_must_be_mapping(self, tmp_path: Path) -> None:
        path = tmp_path / "boxrun.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigFileError, match="mapping"):
            load_config(path)

    def test_empty_command_rejected(self, tmp_path: Path) -> None:
        path = _write_yaml(tmp_path / "boxrun.yaml", {"predefined_commands": [{"command": "  "}]})
        with pytest.raises(ConfigFileError):
            load_config(path)


class TestResolveConfigPath:
    def test_explicit_wins(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(CONFIG_ENV_VAR, str(tmp_path / "env.yaml"))
        assert resolve_config_path(tmp_path / "x.yaml") == tmp_path / "x.yaml"

    def test_env_var(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(CONFIG_ENV_VAR, str(tmp_path / "env.yaml"))
        assert resolve_config_path() == tmp_path / "env.yaml"

    def test_default(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
        path = resolve_config_path()
        assert path.name == "boxrun.yaml"
        assert "~" not in str(path)


# =============================================================================
# Execution mode switches
# =============================================================================

class TestModeFlags:
    """Global flag combines execute_locally and containerized_by_default."""

    @pytest.mark.parametrize(
        "execute_locally,containerized,expected",
        [
            (False, True, False),
            (True, True, True),
            (False, False, True),
            (True, False, True),
        ],
    )
    def test_global_flag(self, execute_locally, containerized, expected) -> None:
        config = BoxrunConfig(
            execute_locally=execute_locally, containerized_by_default=containerized
        )
        assert config.global_execute_locally is expected

    def test_bare_entry_has_no_override(self) -> None:
        entry = PredefinedCommand(command="make", bare=True)
        assert entry.to_request().mode_override is None

    def test_mapping_entry_override(self) -> None:
        assert PredefinedCommand(command="make").to_request().mode_override is False
        assert PredefinedCommand(
            command="make", execute_locally=True
        ).to_request().mode_override is True


# =============================================================================
# ConfigStore
# =============================================================================

class TestConfigStore:
    """Partial rewrites of the YAML file."""

    def test_update_preserves_other_keys(self, tmp_path: Path) -> None:
        path = _write_yaml(tmp_path / "boxrun.yaml", {
            "container_name": "old",
            "custom_note": "kept",
            "predefined_commands": ["make -j8", {"command": "./b.sh", "alias": "B"}],
        })
        store = ConfigStore(path)

        store.update(container_name="new")

        raw = yaml.safe_load(path.read_text())
        assert raw["container_name"] == "new"
        assert raw["custom_note"] == "kept"
        assert raw["predefined_commands"] == ["make -j8", {"command": "./b.sh", "alias": "B"}]
        assert store.config.container_name == "new"

    def test_update_commands_keeps_bare_strings(self, tmp_path: Path) -> None:
        path = _write_yaml(tmp_path / "boxrun.yaml", {"predefined_commands": ["make"]})
        store = ConfigStore(path)
        commands = store.config.predefined_commands + [
            PredefinedCommand(command="ninja", cwd="out", execute_locally=True)
        ]

        store.update(predefined_commands=commands)

        raw = yaml.safe_load(path.read_text())
        assert raw["predefined_commands"] == [
            "make",
            {"command": "ninja", "cwd": "out", "execute_locally": True},
        ]

    def test_creates_missing_file(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "boxrun.yaml"
        store = ConfigStore(path)
        store.update(execute_locally=True)
        assert yaml.safe_load(path.read_text()) == {"execute_locally": True}

    def test_invalid_update_not_written(self, tmp_path: Path) -> None:
        path = _write_yaml(tmp_path / "boxrun.yaml", {"sandbox_root": "/sandbox"})
        store = ConfigStore(path)
        with pytest.raises(ConfigFileError):
            store.update(sandbox_root="relative")
        assert yaml.safe_load(path.read_text()) == {"sandbox_root": "/sandbox"}


class TestAtomicWrite:
    def test_writes_and_leaves_no_temp_files(self, tmp_path: Path) -> None:
        target = tmp_path / "out.json"
        atomic_write_text(target, "one")
        atomic_write_text(target, "two")
        assert target.read_text() == "two"
        assert [p.name for p in tmp_path.iterdir()] == ["out.json"]
