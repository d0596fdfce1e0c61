"""
Process spawning, streaming and shutdown.

Host mode runs the command text in a shell in the resolved host directory,
with ``os.environ`` overlaid by the configured environment and either the
configured shell or the platform default. Container mode runs a ``docker exec``
invocation (see ``build_exec_argv``).

stdout and stderr are merged and forwarded verbatim to the output sink as they
arrive. Many build tools print ordinary progress on stderr, so nothing is
tagged as an error here.

Stopping is a two-phase shutdown: SIGTERM to the whole process group, a grace
period (3 seconds by default), then SIGKILL if and only if the process is
still alive.
"""
from __future__ import annotations

import asyncio
import codecs
import logging
import os
import signal
from dataclasses import dataclass
from typing import Optional

from boxrun.config import DEFAULT_STOP_GRACE_SECONDS
from boxrun.core.container import build_exec_argv
from boxrun.core.exceptions import ProcessSpawnError
from boxrun.core.models import ExitOutcome, ResolvedTarget
from boxrun.core.output import OutputSink

logger = logging.getLogger(__name__)

_READ_CHUNK_BYTES = 64 * 1024


@dataclass
class RunningProcess:
    """The live OS process of the current command."""
    process: asyncio.subprocess.Process
    command: str
    target: ResolvedTarget
    cancelled: bool = False

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def finished(self) -> bool:
        return self.process.returncode is not None


def _signal_name(returncode: int) -> str:
    try:
        return signal.Signals(-returncode).name
    except ValueError:
        return f"SIG{-returncode}"


class ProcessRunner:
    """Spawn, stream and stop one command process."""

    def __init__(
        self,
        docker_binary: str = "docker",
        sandbox_root: str = "/sandbox",
        shell: str = "",
        env: Optional[dict[str, str]] = None,
        stop_grace_seconds: float = DEFAULT_STOP_GRACE_SECONDS,
    ) -> None:
        self._docker_binary = docker_binary
        self._sandbox_root = sandbox_root
        self._shell = shell
        self._env = env or {}
        self._stop_grace_seconds = stop_grace_seconds

    @property
    def stop_grace_seconds(self) -> float:
        return self._stop_grace_seconds

    def build_environment(self) -> dict[str, str]:
        return {**os.environ, **self._env}

    async def spawn(self, target: ResolvedTarget, command: str) -> RunningProcess:
        """
        Start the command for the given target.

        Raises:
            ProcessSpawnError: the spawn primitive failed.
        """
        try:
            if target.is_containerized:
                argv = build_exec_argv(
                    self._docker_binary,
                    target.container_name or "",
                    self._sandbox_root,
                    target.container_working_directory,
                    command,
                )
                logger.info(
                    f"PROCESS: docker exec in '{target.container_name}' "
                    f"at {target.container_working_directory}: {command[:80]}"
                )
                process = await asyncio.create_subprocess_exec(
                    *argv,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.STDOUT,
                    start_new_session=True,
                )
            else:
                logger.info(
                    f"PROCESS: host exec at {target.host_working_directory}: {command[:80]}"
                )
                kwargs = {}
                if self._shell:
                    kwargs["executable"] = self._shell
                process = await asyncio.create_subprocess_shell(
                    command,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.STDOUT,
                    cwd=str(target.host_working_directory),
                    env=self.build_environment(),
                    start_new_session=True,
                    **kwargs,
                )
        except OSError as e:
            logger.error(f"PROCESS: Spawn failed: {e}")
            raise ProcessSpawnError(command, str(e)) from e

        logger.debug(f"PROCESS: Spawned pid={process.pid}")
        return RunningProcess(process=process, command=command, target=target)

    async def stream(self, running: RunningProcess, sink: OutputSink) -> ExitOutcome:
        """
        Forward merged output to the sink until EOF, then wait for close.

        The outcome is only produced after the process has fully exited.
        """
        process = running.process
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        if process.stdout is not None:
            while True:
                chunk = await process.stdout.read(_READ_CHUNK_BYTES)
                if not chunk:
                    break
                text = decoder.decode(chunk)
                if text:
                    sink.append(text)
            tail = decoder.decode(b"", final=True)
            if tail:
                sink.append(tail)

        returncode = await process.wait()
        return self.outcome(running, returncode)

    def outcome(self, running: RunningProcess, returncode: int) -> ExitOutcome:
        if returncode < 0:
            return ExitOutcome(
                exit_code=None,
                signal_name=_signal_name(returncode),
                cancelled=running.cancelled,
            )
        return ExitOutcome(exit_code=returncode, cancelled=running.cancelled)

    def _send(self, running: RunningProcess, sig: signal.Signals) -> bool:
        """Signal the process group; False if the process is already gone."""
        if running.finished:
            return False
        try:
            os.killpg(os.getpgid(running.pid), sig)
        except ProcessLookupError:
            return False
        except PermissionError:
            # Group not ours any more; fall back to the direct child
            try:
                running.process.send_signal(sig)
            except ProcessLookupError:
                return False
        return True

    async def stop(self, running: RunningProcess) -> bool:
        """
        Graceful terminate, then forced kill after the grace window.

        Returns:
            True if SIGKILL had to be sent.
        """
        if running.finished:
            return False
        running.cancelled = True
        if not self._send(running, signal.SIGTERM):
            return False
        logger.info(f"PROCESS: Sent SIGTERM to pid={running.pid}")

        try:
            await asyncio.wait_for(
                asyncio.shield(running.process.wait()),
                timeout=self._stop_grace_seconds,
            )
            return False
        except asyncio.TimeoutError:
            pass

        killed = self._send(running, signal.SIGKILL)
        if killed:
            logger.warning(
                f"PROCESS: pid={running.pid} still alive after "
                f"{self._stop_grace_seconds}s, sent SIGKILL"
            )
            await running.process.wait()
        return killed

    def kill(self, running: RunningProcess) -> None:
        """Immediate SIGKILL, used on shutdown."""
        running.cancelled = True
        if self._send(running, signal.SIGKILL):
            logger.info(f"PROCESS: Killed pid={running.pid}")
