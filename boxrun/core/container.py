"""
Container lifecycle management through the docker CLI.

Verifies that the named sandbox container exists and is running, starts it
when it is stopped, and re-verifies after the start call. Nothing here is
retried: every failure is terminal for the current invocation.

Runtime calls used:

    docker inspect --format {{.State.Running}} <name>   → "true" / "false"
    docker start <name>
    docker ps -a --format {{.Names}}                    (diagnostics only)
    docker exec -i -w <root> -u <uid>:<gid> <name> bash -c "cd <dir> && <cmd>"
"""
from __future__ import annotations

import asyncio
import logging
import os
import shlex
from dataclasses import dataclass
from typing import Optional

from boxrun.core.exceptions import (
    ContainerNotFoundError,
    ContainerRuntimeError,
    ContainerStartFailedError,
    ContainerVerifyFailedError,
    RuntimeUnavailableError,
)
from boxrun.core.models import ContainerStatus
from boxrun.core.output import OutputSink

logger = logging.getLogger(__name__)

_NOT_FOUND_MARKERS = ("No such object", "No such container")
_DAEMON_DOWN_MARKERS = (
    "Cannot connect to the Docker daemon",
    "Is the docker daemon running",
    "error during connect",
)


@dataclass(frozen=True)
class CliResult:
    returncode: int
    stdout: str
    stderr: str


class DockerCli:
    """Thin async wrapper around the docker binary."""

    def __init__(self, binary: str = "docker") -> None:
        self._binary = binary

    @property
    def binary(self) -> str:
        return self._binary

    async def run(self, *args: str) -> CliResult:
        """
        Run a docker subcommand and capture its output.

        Raises:
            OSError: the binary could not be spawned.
        """
        process = await asyncio.create_subprocess_exec(
            self._binary,
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate()
        return CliResult(
            returncode=process.returncode or 0,
            stdout=stdout.decode("utf-8", errors="replace").strip(),
            stderr=stderr.decode("utf-8", errors="replace").strip(),
        )


class ContainerLifecycleManager:
    """Ensure the sandbox container is running before anything is exec'd in it."""

    def __init__(self, cli: Optional[DockerCli] = None) -> None:
        self._cli = cli or DockerCli()

    @property
    def cli(self) -> DockerCli:
        return self._cli

    async def inspect(self, name: str) -> ContainerStatus:
        """
        Query existence and running state in one call.

        Raises:
            RuntimeUnavailableError: docker binary or daemon unreachable.
            ContainerRuntimeError: any other query failure.
        """
        try:
            result = await self._cli.run(
                "inspect", "--format", "{{.State.Running}}", name
            )
        except OSError as e:
            raise RuntimeUnavailableError(name, str(e)) from e

        if result.returncode != 0:
            if any(marker in result.stderr for marker in _NOT_FOUND_MARKERS):
                return ContainerStatus(exists=False, running=False)
            if any(marker in result.stderr for marker in _DAEMON_DOWN_MARKERS):
                raise RuntimeUnavailableError(name, result.stderr)
            raise ContainerRuntimeError(name, result.stderr or f"exit code {result.returncode}")

        return ContainerStatus(exists=True, running=result.stdout == "true")

    async def list_containers(self) -> list[str]:
        """Best-effort enumeration of all known containers; never raises."""
        try:
            result = await self._cli.run("ps", "-a", "--format", "{{.Names}}")
        except OSError as e:
            logger.debug(f"CONTAINER: Listing containers failed: {e}")
            return []
        if result.returncode != 0:
            logger.debug(f"CONTAINER: Listing containers failed: {result.stderr}")
            return []
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    async def ensure_running(self, name: str, sink: Optional[OutputSink] = None) -> None:
        """
        Return only once the container is freshly confirmed running.

        Raises:
            RuntimeUnavailableError, ContainerNotFoundError, ContainerRuntimeError,
            ContainerStartFailedError, ContainerVerifyFailedError
        """
        status = await self.inspect(name)

        if not status.exists:
            known = await self.list_containers()
            logger.warning(
                f"CONTAINER: '{name}' does not exist ({len(known)} known containers)"
            )
            raise ContainerNotFoundError(name, known)

        if status.running:
            logger.debug(f"CONTAINER: '{name}' is running")
            return

        if sink is not None:
            sink.append_line(f"Container '{name}' is stopped")
            sink.append_line("Starting container...")
        logger.info(f"CONTAINER: '{name}' is stopped, starting")

        try:
            result = await self._cli.run("start", name)
        except OSError as e:
            raise ContainerStartFailedError(name, str(e)) from e
        if result.returncode != 0:
            raise ContainerStartFailedError(name, result.stderr or "Unknown error")

        # Verify: a container can exit immediately after a successful start
        try:
            verified = await self.inspect(name)
        except (RuntimeUnavailableError, ContainerRuntimeError) as e:
            logger.warning(f"CONTAINER: Verification query failed for '{name}': {e}")
            raise ContainerVerifyFailedError(name) from e
        if not verified.running:
            raise ContainerVerifyFailedError(name)

        if sink is not None:
            sink.append_line("Container started and verified running\n")
        logger.info(f"CONTAINER: '{name}' started and verified running")


def build_exec_argv(
    binary: str,
    container: str,
    sandbox_root: str,
    container_directory: str,
    command: str,
    uid: Optional[int] = None,
    gid: Optional[int] = None,
) -> list[str]:
    """
    Build the docker exec invocation for a command.

    The exec primitive accepts a single working directory, so the command is
    wrapped in ``cd <dir> && <command>`` to honour sub-directories of the
    sandbox root. The process runs as the invoking user's uid:gid, not root.
    """
    uid = os.getuid() if uid is None else uid
    gid = os.getgid() if gid is None else gid
    return [
        binary,
        "exec",
        "-i",
        "-w", sandbox_root,
        "-u", f"{uid}:{gid}",
        container,
        "bash", "-c",
        f"cd {shlex.quote(container_directory)} && {command}",
    ]
