"""
Configuration for boxrun.

Settings are read from a YAML file into pydantic models. The file location is
taken from the ``--config`` CLI option, then ``$BOXRUN_CONFIG``, then
``~/.config/boxrun/boxrun.yaml``. A missing file yields the defaults.

Predefined commands may be written either as bare strings or as mappings:

    predefined_commands:
      - make -j8
      - command: ./build.sh --compdb
        cwd: blc
        alias: Build BLC
        execute_locally: false

Both forms are normalized to ``PredefinedCommand`` when the file is loaded.
"""
from __future__ import annotations

import logging
import os
import shlex
import tempfile
from pathlib import Path
from typing import Any, Optional, Union

import yaml
from pydantic import AliasChoices, BaseModel, Field, ValidationError, field_validator

from boxrun.core.exceptions import ConfigFileError
from boxrun.core.models import ExecutionRequest

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "BOXRUN_CONFIG"
DEFAULT_CONFIG_PATH = Path("~/.config/boxrun/boxrun.yaml")
DEFAULT_HISTORY_PATH = Path("~/.config/boxrun/history.json")

DEFAULT_CONTAINER_NAME = "deeproute-dev-x86-2004"
DEFAULT_SANDBOX_ROOT = "/sandbox"
DEFAULT_ARTIFACT_NAME = "compile_commands.json"

# Path rewrite bound (seconds)
DEFAULT_REWRITE_TIMEOUT_SECONDS: float = 120

# Grace period between SIGTERM and SIGKILL (seconds)
DEFAULT_STOP_GRACE_SECONDS: float = 3

DEFAULT_HISTORY_SIZE = 10


class PredefinedCommand(BaseModel):
    """A configured command, normalized from either the bare or mapping form."""

    command: str = Field(description="Command text executed in a shell")
    cwd: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("cwd", "working_directory"),
        description="Working directory relative to the workspace (or sandbox) root",
    )
    alias: Optional[str] = Field(default=None, description="Display name")
    execute_locally: Optional[bool] = Field(
        default=None,
        description="Per-command override: run on the host",
    )
    bare: bool = Field(
        default=False,
        exclude=True,
        description="Entry was written as a plain string",
    )

    @field_validator("command")
    @classmethod
    def validate_command(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Command cannot be empty")
        return value

    @field_validator("cwd", "alias", mode="before")
    @classmethod
    def blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = str(value).strip()
        return value or None

    @property
    def display_name(self) -> str:
        return self.alias or self.command

    def to_request(self) -> ExecutionRequest:
        # A bare string carries no mode override
        override = None if self.bare else self.execute_locally is True
        return ExecutionRequest(
            command=self.command,
            working_directory=self.cwd,
            mode_override=override,
        )

    def to_config_value(self) -> Union[str, dict[str, Any]]:
        """Return the YAML form, keeping plain strings for untouched bare entries."""
        if self.bare and self.cwd is None and self.alias is None and self.execute_locally is None:
            return self.command
        value: dict[str, Any] = {"command": self.command}
        if self.cwd is not None:
            value["cwd"] = self.cwd
        if self.alias is not None:
            value["alias"] = self.alias
        if self.execute_locally is not None:
            value["execute_locally"] = self.execute_locally
        return value


class BoxrunConfig(BaseModel):
    """Complete boxrun configuration."""

    workspace_root: Path = Field(
        default_factory=Path.cwd,
        description="Host directory mounted at the sandbox root",
    )
    required_workspace_root: Optional[Path] = Field(
        default=None,
        description="Refuse to execute unless workspace_root equals this path",
    )
    container_name: str = Field(default=DEFAULT_CONTAINER_NAME)
    containerized_by_default: bool = Field(default=True)
    execute_locally: bool = Field(
        default=False, description="Global switch: run every command on the host"
    )
    sandbox_root: str = Field(default=DEFAULT_SANDBOX_ROOT)
    docker_binary: str = Field(default="docker")
    shell: str = Field(default="", description="Custom shell for host mode")
    env: dict[str, str] = Field(
        default_factory=dict, description="Environment overlay for host mode"
    )
    artifact_name: str = Field(default=DEFAULT_ARTIFACT_NAME)
    rewrite_timeout_seconds: float = Field(default=DEFAULT_REWRITE_TIMEOUT_SECONDS, gt=0)
    stop_grace_seconds: float = Field(default=DEFAULT_STOP_GRACE_SECONDS, ge=0)
    refresh_command: list[str] = Field(
        default_factory=list,
        description="External command that makes the language server reload",
    )
    history_file: Path = Field(default_factory=DEFAULT_HISTORY_PATH.expanduser)
    history_size: int = Field(default=DEFAULT_HISTORY_SIZE, ge=1)
    output_log: Optional[Path] = Field(
        default=None, description="File that mirrors all command output"
    )
    predefined_commands: list[PredefinedCommand] = Field(default_factory=list)

    @field_validator(
        "workspace_root", "required_workspace_root", "history_file", "output_log",
        mode="before",
    )
    @classmethod
    def expand_paths(cls, value: Any) -> Any:
        if value is None or value == "":
            return None
        return Path(str(value)).expanduser()

    @field_validator("container_name", "shell", mode="before")
    @classmethod
    def strip_text(cls, value: Optional[str]) -> str:
        return (value or "").strip()

    @field_validator("sandbox_root")
    @classmethod
    def validate_sandbox_root(cls, value: str) -> str:
        value = value.strip()
        if not value.startswith("/"):
            raise ValueError("sandbox_root must be an absolute path")
        return value.rstrip("/") or "/"

    @field_validator("env", mode="before")
    @classmethod
    def normalize_env(cls, value: Optional[dict[str, Any]]) -> dict[str, str]:
        if not value:
            return {}
        return {str(k): str(v) for k, v in value.items() if v is not None}

    @field_validator("refresh_command", mode="before")
    @classmethod
    def split_refresh_command(cls, value: Union[str, list[str], None]) -> list[str]:
        if not value:
            return []
        if isinstance(value, str):
            return shlex.split(value)
        return [str(part) for part in value]

    @field_validator("predefined_commands", mode="before")
    @classmethod
    def normalize_commands(cls, value: Optional[list[Any]]) -> list[Any]:
        if not value:
            return []
        normalized = []
        for entry in value:
            if isinstance(entry, str):
                normalized.append(PredefinedCommand(command=entry, bare=True))
            else:
                normalized.append(entry)
        return normalized

    @property
    def global_execute_locally(self) -> bool:
        """Global local-execution flag combined from both switches."""
        return self.execute_locally or not self.containerized_by_default

    @property
    def effective_workspace_root(self) -> Path:
        return self.workspace_root.resolve()


def resolve_config_path(explicit: Optional[str | Path] = None) -> Path:
    """Pick the configuration file: explicit path, then env var, then default."""
    if explicit:
        return Path(explicit).expanduser()
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_CONFIG_PATH.expanduser()


def _read_raw(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with path.open("r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigFileError(str(path), f"YAML parse error: {exc}") from exc
    except OSError as exc:
        raise ConfigFileError(str(path), str(exc)) from exc
    if not isinstance(raw, dict):
        raise ConfigFileError(str(path), "top level must be a mapping")
    return raw


def _validate(path: Path, raw: dict[str, Any]) -> BoxrunConfig:
    try:
        return BoxrunConfig(**raw)
    except ValidationError as exc:
        raise ConfigFileError(str(path), str(exc)) from exc


def load_config(path: Optional[str | Path] = None) -> BoxrunConfig:
    """Load configuration, falling back to defaults when the file is absent."""
    config_path = resolve_config_path(path)
    raw = _read_raw(config_path)
    config = _validate(config_path, raw)
    logger.info(
        f"Loaded config from {config_path}: container={config.container_name or '-'}, "
        f"global_local={config.global_execute_locally}, "
        f"commands={len(config.predefined_commands)}"
    )
    return config


def atomic_write_text(path: Path, content: str) -> None:
    """
    Write a text file atomically.

    Uses a temporary file in the same directory and an atomic rename to
    prevent corruption if the process crashes mid-write.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_fd = None
    temp_path = None
    try:
        temp_fd, temp_path = tempfile.mkstemp(
            dir=path.parent,
            prefix=f".{path.name}_",
            suffix=".tmp",
        )
        os.write(temp_fd, content.encode("utf-8"))
        os.fsync(temp_fd)
        os.close(temp_fd)
        temp_fd = None

        os.replace(temp_path, path)
        temp_path = None
    finally:
        if temp_fd is not None:
            os.close(temp_fd)
        if temp_path is not None and os.path.exists(temp_path):
            os.unlink(temp_path)


class ConfigStore:
    """
    Read/write access to the configuration file.

    Only the keys that are explicitly updated are rewritten; every other key
    in the YAML file is preserved as written.
    """

    def __init__(self, path: Optional[str | Path] = None) -> None:
        self._path = resolve_config_path(path)
        self._raw = _read_raw(self._path)
        self._config = _validate(self._path, self._raw)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def config(self) -> BoxrunConfig:
        return self._config

    def update(self, **changes: Any) -> BoxrunConfig:
        """Apply changes, validate them and persist the file."""
        raw = dict(self._raw)
        for key, value in changes.items():
            if key == "predefined_commands":
                value = [entry.to_config_value() for entry in value]
            raw[key] = value
        config = _validate(self._path, raw)

        try:
            atomic_write_text(
                self._path,
                yaml.safe_dump(raw, sort_keys=False, allow_unicode=True),
            )
        except OSError as exc:
            raise ConfigFileError(str(self._path), str(exc)) from exc

        self._raw = raw
        self._config = config
        logger.info(f"Saved config to {self._path}: updated {', '.join(changes)}")
        return config
