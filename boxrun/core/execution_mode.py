"""
Execution mode resolution.

Decides, per invocation, whether a command runs on the host or inside the
sandbox container, and computes the working directories for both sides:

    request cwd "blc"  → host:      <workspace_root>/blc
                       → container: /sandbox/blc
"""
from __future__ import annotations

import logging
import re
from typing import Optional

from boxrun.config import BoxrunConfig
from boxrun.core.exceptions import ConfigurationInvalidError
from boxrun.core.models import ExecutionRequest, ResolvedTarget

logger = logging.getLogger(__name__)

_LEADING_RELATIVE = re.compile(r"^\.?/")


def resolve_is_local(explicit_override: Optional[bool], global_flag: bool) -> bool:
    """Per-command override OR global switch selects host execution."""
    return explicit_override is True or global_flag is True


def clean_relative_directory(directory: Optional[str]) -> str:
    """Trim and drop one leading ``./`` or ``/`` so the path joins under a root."""
    if not directory or not directory.strip():
        return ""
    return _LEADING_RELATIVE.sub("", directory.strip(), count=1)


def container_directory(sandbox_root: str, directory: Optional[str]) -> str:
    cleaned = clean_relative_directory(directory)
    if not cleaned:
        return sandbox_root
    return f"{sandbox_root.rstrip('/')}/{cleaned}"


def resolve_target(request: ExecutionRequest, config: BoxrunConfig) -> ResolvedTarget:
    """
    Compute the ResolvedTarget for a request.

    Raises:
        ConfigurationInvalidError: container mode with no container configured.
    """
    workspace_root = config.effective_workspace_root
    is_local = resolve_is_local(request.mode_override, config.global_execute_locally)

    if is_local:
        host_dir = workspace_root
        if request.working_directory and request.working_directory.strip():
            # Absolute directories are honoured as-is on the host
            host_dir = (workspace_root / request.working_directory.strip()).resolve()
        return ResolvedTarget(
            is_containerized=False,
            container_name=None,
            host_working_directory=host_dir,
            container_working_directory=config.sandbox_root,
        )

    if not config.container_name:
        raise ConfigurationInvalidError(
            "Docker container is not configured. "
            "Run 'boxrun set-container <name>' or set container_name in the config file.",
            setting="container_name",
        )

    cleaned = clean_relative_directory(request.working_directory)
    host_dir = (workspace_root / cleaned).resolve() if cleaned else workspace_root
    return ResolvedTarget(
        is_containerized=True,
        container_name=config.container_name,
        host_working_directory=host_dir,
        container_working_directory=container_directory(
            config.sandbox_root, request.working_directory
        ),
    )
