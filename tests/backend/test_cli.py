"""
Tests for the boxrun command-line interface.

Tests cover:
- Catalog subcommands (add, list, alias, toggle-local, remove)
- Settings subcommands (set-container, toggle-global-local)
- run / exec exit codes and history recording
- Configuration errors reported without a traceback
"""
import sys
from pathlib import Path

import pytest
import yaml

from boxrun.cli.main import EXIT_FAILED, EXIT_OK, main

requires_linux = pytest.mark.skipif(
    sys.platform != "linux",
    reason="Test requires a POSIX shell"
)


@pytest.fixture
def config_path(tmp_path: Path, workspace: Path) -> Path:
    path = tmp_path / "boxrun.yaml"
    path.write_text(yaml.safe_dump({
        "workspace_root": str(workspace),
        "container_name": "dev-box",
        "history_file": str(tmp_path / "history.json"),
        "output_log": str(tmp_path / "output.log"),
        "predefined_commands": ["echo from-catalog"],
    }, sort_keys=False))
    return path


def _raw(path: Path) -> dict:
    return yaml.safe_load(path.read_text())


class TestCatalogCommands:
    def test_list(self, config_path: Path, capsys: pytest.CaptureFixture) -> None:
        assert main(["--config", str(config_path), "list"]) == EXIT_OK
        out = capsys.readouterr().out
        assert "docker" in out
        assert "echo from-catalog" in out

    def test_add_then_list(self, config_path: Path, capsys: pytest.CaptureFixture) -> None:
        rc = main([
            "--config", str(config_path),
            "add", "./build.sh", "--cwd", "blc", "--alias", "Build BLC", "--local",
        ])
        assert rc == EXIT_OK
        assert "Command added: Build BLC" in capsys.readouterr().err

        main(["--config", str(config_path), "list"])
        out = capsys.readouterr().out
        row = next(line for line in out.splitlines() if "Build BLC" in line)
        assert "local" in row
        assert "blc" in row
        assert "./build.sh" in row

    def test_add_duplicate_fails(self, config_path: Path, capsys: pytest.CaptureFixture) -> None:
        assert main(["--config", str(config_path), "add", "echo from-catalog"]) == EXIT_FAILED
        assert "Command already exists" in capsys.readouterr().err

    def test_alias_toggle_remove(self, config_path: Path) -> None:
        base = ["--config", str(config_path)]
        assert main(base + ["alias", "echo from-catalog", "Echo"]) == EXIT_OK
        assert main(base + ["toggle-local", "echo from-catalog"]) == EXIT_OK
        assert _raw(config_path)["predefined_commands"] == [
            {"command": "echo from-catalog", "alias": "Echo", "execute_locally": True}
        ]
        assert main(base + ["remove", "echo from-catalog"]) == EXIT_OK
        assert _raw(config_path)["predefined_commands"] == []


class TestSettingsCommands:
    def test_set_container(self, config_path: Path) -> None:
        assert main(["--config", str(config_path), "set-container", "other"]) == EXIT_OK
        assert _raw(config_path)["container_name"] == "other"

    def test_toggle_global_local(self, config_path: Path, capsys: pytest.CaptureFixture) -> None:
        assert main(["--config", str(config_path), "toggle-global-local"]) == EXIT_OK
        assert _raw(config_path)["execute_locally"] is True
        assert "Global execution mode: Local (Host)" in capsys.readouterr().err

    def test_clear_output(self, config_path: Path, tmp_path: Path) -> None:
        log = tmp_path / "output.log"
        log.write_text("old")
        assert main(["--config", str(config_path), "clear-output"]) == EXIT_OK
        assert log.read_text() == ""

    def test_broken_config(self, tmp_path: Path, capsys: pytest.CaptureFixture) -> None:
        path = tmp_path / "broken.yaml"
        path.write_text("sandbox_root: relative\n")
        assert main(["--config", str(path), "list"]) == EXIT_FAILED
        assert "Invalid configuration file" in capsys.readouterr().err


@requires_linux
@pytest.mark.integration
class TestRunCommands:
    def test_run_local(self, config_path: Path, tmp_path: Path, capsys: pytest.CaptureFixture) -> None:
        rc = main(["--config", str(config_path), "run", "echo hello-boxrun", "--local"])

        assert rc == EXIT_OK
        assert "hello-boxrun" in capsys.readouterr().out
        assert "hello-boxrun" in (tmp_path / "output.log").read_text()

        main(["--config", str(config_path), "history"])
        assert "echo hello-boxrun" in capsys.readouterr().out

    def test_run_failure_exit_code(self, config_path: Path) -> None:
        assert main(["--config", str(config_path), "run", "exit 5", "--local"]) == EXIT_FAILED

    def test_exec_predefined_locally(self, config_path: Path, capsys: pytest.CaptureFixture) -> None:
        main(["--config", str(config_path), "toggle-local", "echo from-catalog"])
        capsys.readouterr()

        assert main(["--config", str(config_path), "exec", "echo from-catalog"]) == EXIT_OK
        assert "from-catalog" in capsys.readouterr().out

    def test_exec_unknown(self, config_path: Path, capsys: pytest.CaptureFixture) -> None:
        assert main(["--config", str(config_path), "exec", "nope"]) == EXIT_FAILED
        assert "No predefined command named 'nope'" in capsys.readouterr().err

    def test_run_without_container(self, config_path: Path, capsys: pytest.CaptureFixture) -> None:
        main(["--config", str(config_path), "set-container"])
        capsys.readouterr()

        assert main(["--config", str(config_path), "run", "make"]) == EXIT_FAILED
        assert "How to configure:" in capsys.readouterr().out
