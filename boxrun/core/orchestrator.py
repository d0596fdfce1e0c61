"""
Command execution orchestrator.

Composition root for one invocation:

    resolve mode → (container) ensure running → snapshot artifact → run
    → on exit 0: snapshot again → if changed: rewrite paths → refresh

The orchestrator is the only owner of the running process. At most one
invocation is in flight at any time, counted from admission (before the
container is prepared) until release; a new request while one is in flight
needs explicit confirmation, and declining leaves it untouched.

Every error is handled here: it is written to the output sink, sent to the
notifier and logged once. None of them propagates to the caller.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from boxrun.config import BoxrunConfig
from boxrun.core import artifact
from boxrun.core.artifact import PathRewriter
from boxrun.core.container import ContainerLifecycleManager, DockerCli
from boxrun.core.exceptions import (
    BoxrunError,
    ConfigurationInvalidError,
    ContainerNotFoundError,
    ContainerStartFailedError,
    ContainerVerifyFailedError,
    DirectoryNotFoundError,
    ProcessSpawnError,
    RefreshFailedError,
    RefreshUnavailableError,
    RewriteError,
    RuntimeUnavailableError,
    WorkspaceRootInvalidError,
)
from boxrun.core.execution_mode import resolve_target
from boxrun.core.models import (
    ExecutionRequest,
    ExitOutcome,
    InvocationResult,
    InvocationStatus,
    ResolvedTarget,
    RewriteOutcome,
    RewriteStatus,
)
from boxrun.core.notifier import Notifier
from boxrun.core.output import OutputSink
from boxrun.core.process import ProcessRunner, RunningProcess
from boxrun.core.refresh import MANUAL_REFRESH_HINT, CommandRefresher, RefreshCollaborator

logger = logging.getLogger(__name__)

BANNER = "=" * 40
FOOTER = "-" * 40

CONFIRM_REPLACE_MESSAGE = "A command is currently running. Stop it?"
CONFIRM_REPLACE_ACCEPT = "Stop and Execute New Command"


class Invocation:
    """
    One in-flight ``execute`` call, from the single-flight check to release.

    ``process`` stays None while the container is prepared and the command
    spawned; a stop arriving in that window only sets ``stop_requested``.
    """

    def __init__(self, command: str) -> None:
        self.command = command
        self.process: Optional[RunningProcess] = None
        self.stop_requested = False
        self.finished = asyncio.Event()


class Orchestrator:
    """
    Execute commands on the host or in the sandbox container.

    Exposes the three external verbs: ``execute``, ``stop`` and
    ``clear_output``.
    """

    def __init__(
        self,
        config: BoxrunConfig,
        sink: OutputSink,
        notifier: Notifier,
        refresher: Optional[RefreshCollaborator] = None,
        container_manager: Optional[ContainerLifecycleManager] = None,
        runner: Optional[ProcessRunner] = None,
        rewriter: Optional[PathRewriter] = None,
    ) -> None:
        self._config = config
        self._sink = sink
        self._notifier = notifier
        self._refresher = refresher or CommandRefresher(config.refresh_command)
        self._containers = container_manager or ContainerLifecycleManager(
            DockerCli(config.docker_binary)
        )
        self._runner = runner or ProcessRunner(
            docker_binary=config.docker_binary,
            sandbox_root=config.sandbox_root,
            shell=config.shell,
            env=config.env,
            stop_grace_seconds=config.stop_grace_seconds,
        )
        self._rewriter = rewriter or PathRewriter(config.rewrite_timeout_seconds)
        self._active: Optional[Invocation] = None

    @property
    def config(self) -> BoxrunConfig:
        return self._config

    @property
    def is_running(self) -> bool:
        """True from the moment an invocation is admitted until it is released."""
        return self._active is not None

    # -------------------------------------------------------------------------
    # execute
    # -------------------------------------------------------------------------

    async def execute(self, request: ExecutionRequest) -> InvocationResult:
        """Run one command to completion and report the outcome."""
        while self._active is not None:
            previous = self._active
            confirmed = await self._notifier.confirm(
                CONFIRM_REPLACE_MESSAGE, CONFIRM_REPLACE_ACCEPT
            )
            if not confirmed:
                logger.info(f"INVOCATION: Declined to replace running command: {request.command[:80]}")
                return InvocationResult(status=InvocationStatus.REJECTED)
            if not previous.stop_requested:
                await self.stop()
            await previous.finished.wait()

        # No await between the check above and claiming the slot
        invocation = Invocation(request.command)
        self._active = invocation
        try:
            return await self._run(invocation, request)
        finally:
            self._release(invocation)

    async def _run(self, invocation: Invocation, request: ExecutionRequest) -> InvocationResult:
        try:
            target = await self._prepare(request)
        except BoxrunError as e:
            self._report_error(e)
            return InvocationResult(status=InvocationStatus.ABORTED, error_kind=e.kind)

        if invocation.stop_requested:
            return self._cancelled_before_spawn(request)

        artifact_path = target.host_working_directory / self._config.artifact_name
        before = artifact.snapshot(artifact_path)

        try:
            running = await self._runner.spawn(target, request.command)
        except ProcessSpawnError as e:
            self._report_error(e)
            return InvocationResult(status=InvocationStatus.FAILED, error_kind=e.kind)

        invocation.process = running
        try:
            if invocation.stop_requested:
                await self._runner.stop(running)
            outcome = await self._runner.stream(running, self._sink)
        except asyncio.CancelledError:
            logger.info(f"INVOCATION: Cancelled, stopping pid={running.pid}")
            invocation.process = None
            await self._runner.stop(running)
            self._sink.append_line(f"\n{FOOTER}")
            self._sink.append_line("Command cancelled")
            self._sink.append_line(f"{FOOTER}\n")
            self._notifier.warning("Command terminated")
            raise
        finally:
            invocation.process = None

        self._sink.append_line(f"\n{FOOTER}")
        try:
            return await self._finish(outcome, artifact_path, before)
        finally:
            self._sink.append_line(f"{FOOTER}\n")

    def _cancelled_before_spawn(self, request: ExecutionRequest) -> InvocationResult:
        logger.info(f"INVOCATION: Stopped before spawn: {request.command[:80]}")
        self._sink.append_line(f"\n{FOOTER}")
        self._sink.append_line("Command cancelled before it started")
        self._sink.append_line(f"{FOOTER}\n")
        self._notifier.warning("Command terminated")
        return InvocationResult(status=InvocationStatus.CANCELLED)

    async def _prepare(self, request: ExecutionRequest) -> ResolvedTarget:
        """Resolve the target and make sure it can be run; nothing is spawned here."""
        self._check_workspace_root()
        target = resolve_target(request, self._config)

        if target.is_containerized:
            self._write_banner(request.command, target)
            await self._containers.ensure_running(target.container_name or "", self._sink)
        else:
            if not target.host_working_directory.is_dir():
                raise DirectoryNotFoundError(str(target.host_working_directory))
            self._write_banner(request.command, target)
        return target

    def _check_workspace_root(self) -> None:
        required = self._config.required_workspace_root
        if required is None:
            return
        actual = self._config.effective_workspace_root
        if actual != required.resolve():
            raise WorkspaceRootInvalidError(str(required), str(actual))

    def _write_banner(self, command: str, target: ResolvedTarget) -> None:
        self._sink.show()
        self._sink.append_line(f"\n{BANNER}")
        self._sink.append_line(f"Executing: {command}")
        if target.is_containerized:
            self._sink.append_line("Execution Mode: Docker")
            self._sink.append_line(f"Container: {target.container_name}")
            self._sink.append_line(f"Working Dir: {target.container_working_directory}")
        else:
            self._sink.append_line("Execution Mode: Local")
            self._sink.append_line(f"Working Dir: {target.host_working_directory}")
        self._sink.append_line(f"Time: {datetime.now():%Y-%m-%d %H:%M:%S}")
        self._sink.append_line(f"{BANNER}\n")

    async def _finish(
        self,
        outcome: ExitOutcome,
        artifact_path: Path,
        before: artifact.ArtifactSnapshot,
    ) -> InvocationResult:
        if outcome.cancelled or outcome.signaled:
            if outcome.signaled:
                self._sink.append_line(f"Command terminated by signal: {outcome.signal_name}")
            else:
                self._sink.append_line(f"Command stopped (exit code: {outcome.exit_code})")
            self._notifier.warning("Command terminated")
            status = InvocationStatus.CANCELLED if outcome.cancelled else InvocationStatus.FAILED
            logger.warning(
                f"INVOCATION: kind=ProcessSignalTerminated signal={outcome.signal_name} "
                f"cancelled={outcome.cancelled}"
            )
            return InvocationResult(
                status=status,
                error_kind=None if outcome.cancelled else "ProcessSignalTerminated",
                exit_code=outcome.exit_code,
                signal_name=outcome.signal_name,
            )

        if outcome.exit_code != 0:
            self._sink.append_line(f"Command execution failed (exit code: {outcome.exit_code})")
            self._notifier.error(f"Command failed with exit code: {outcome.exit_code}")
            logger.warning(f"INVOCATION: kind=ProcessNonZeroExit exit_code={outcome.exit_code}")
            return InvocationResult(
                status=InvocationStatus.FAILED,
                error_kind="ProcessNonZeroExit",
                exit_code=outcome.exit_code,
            )

        self._sink.append_line(f"Command executed successfully (exit code: {outcome.exit_code})")

        # The process has fully closed at this point
        after = artifact.snapshot(artifact_path)
        if not artifact.changed(before, after):
            self._notifier.info("Command executed successfully")
            return InvocationResult(status=InvocationStatus.SUCCEEDED, exit_code=0)

        self._sink.append_line(f"[Clangd] {self._config.artifact_name} has been updated")
        rewrite = await self._rewrite(artifact_path)
        refreshed = await self._refresh(artifact_path)
        return InvocationResult(
            status=InvocationStatus.SUCCEEDED,
            exit_code=0,
            artifact_changed=True,
            rewrite=rewrite,
            refreshed=refreshed,
        )

    async def _rewrite(self, artifact_path: Path) -> Optional[RewriteOutcome]:
        """Best-effort path correction; failures are logged, never raised."""
        sandbox_root = self._config.sandbox_root
        host_root = str(self._config.effective_workspace_root)
        self._sink.append_line(f"[Clangd] Updating real paths in {artifact_path.name}...")
        try:
            size_mb = artifact_path.stat().st_size / 1024 / 1024
            self._sink.append_line(f"[Clangd] File size: {size_mb:.2f} MB")
        except OSError:
            pass

        try:
            result = await self._rewriter.rewrite(artifact_path, sandbox_root, host_root)
        except RewriteError as e:
            self._sink.append_line(f"[Clangd] Path replacement failed: {e.message}")
            self._sink.append_line(f"[Clangd] Hint: Run manually: {e.manual_command}")
            logger.error(f"INVOCATION: kind={e.kind} {e}")
            return None

        if result.status is RewriteStatus.REWRITTEN:
            self._sink.append_line(
                f"[Clangd] Path replacement completed ({result.duration_seconds:.2f}s, "
                f"{result.occurrences} occurrences): {sandbox_root} -> {host_root}"
            )
        elif result.status is RewriteStatus.NO_MATCH:
            self._sink.append_line(
                f"[Clangd] No {sandbox_root} path found in file, no replacement needed"
            )
        else:
            self._sink.append_line(f"[Clangd] File does not exist: {artifact_path}")
        return result

    async def _refresh(self, artifact_path: Path) -> bool:
        """Ask the refresh collaborator to reload; attempted whatever the rewrite did."""
        if not self._refresher.is_available():
            error = RefreshUnavailableError(
                "Refresh collaborator not detected, cannot auto-restart language server"
            )
            self._sink.append_line(f"[Clangd] {error.message}")
            self._sink.append_line(f"[Clangd] Hint: {MANUAL_REFRESH_HINT}")
            self._notifier.warning(f"{error.message}. {MANUAL_REFRESH_HINT}")
            logger.warning(f"INVOCATION: kind={error.kind}")
            return False

        try:
            await self._refresher.refresh(artifact_path)
        except (RefreshUnavailableError, RefreshFailedError) as e:
            self._sink.append_line(f"[Clangd] Failed to restart language server: {e.message}")
            self._sink.append_line(f"[Clangd] Hint: {MANUAL_REFRESH_HINT}")
            self._report_notification(e)
            return False

        self._sink.append_line("[Clangd] Refresh command sent successfully")
        self._notifier.info(
            f"{self._config.artifact_name} updated, language server is re-indexing"
        )
        return True

    # -------------------------------------------------------------------------
    # stop / clear / dispose
    # -------------------------------------------------------------------------

    async def stop(self) -> bool:
        """
        Stop the running command: SIGTERM, grace period, then SIGKILL.

        An invocation that has not spawned yet (container still starting) is
        marked so that it returns ``CANCELLED`` instead of spawning.

        Returns:
            True if a command was in flight.
        """
        invocation = self._active
        if invocation is None or invocation.stop_requested:
            self._notifier.info("No command is currently running")
            return False

        invocation.stop_requested = True
        self._sink.append_line("\n[Stop] Terminating command execution...")
        running = invocation.process
        if running is not None:
            await self._runner.stop(running)
        else:
            logger.info(f"INVOCATION: Stop requested before spawn: {invocation.command[:80]}")
        self._notifier.info("Command execution stopped")
        return True

    def clear_output(self) -> None:
        self._sink.clear()
        self._notifier.info("Output cleared")

    def dispose(self) -> None:
        """Force-kill anything still running; used on shutdown."""
        invocation = self._active
        if invocation is None:
            return
        invocation.stop_requested = True
        if invocation.process is not None:
            self._runner.kill(invocation.process)

    def _release(self, invocation: Invocation) -> None:
        if self._active is invocation:
            self._active = None
        invocation.finished.set()

    # -------------------------------------------------------------------------
    # error reporting
    # -------------------------------------------------------------------------

    def _report_error(self, error: BoxrunError) -> None:
        self._sink.show()
        self._sink.append_line(f"[Error] {error.message}")

        if isinstance(error, ConfigurationInvalidError):
            self._sink.append_line("How to configure:")
            self._sink.append_line("   boxrun set-container <container-name>")
            self._sink.append_line(f"   or set '{error.setting}' in the boxrun config file")
        elif isinstance(error, RuntimeUnavailableError):
            self._sink.append_line("Please ensure Docker Desktop/Engine is running.")
        elif isinstance(error, ContainerNotFoundError):
            self._sink.append_line("\nAvailable containers:")
            if error.known_containers:
                for name in error.known_containers:
                    self._sink.append_line(name)
            else:
                self._sink.append_line("   (No containers found)")
        elif isinstance(error, (ContainerStartFailedError, ContainerVerifyFailedError)):
            self._sink.append_line(f"Check container logs: docker logs {error.container}")

        self._report_notification(error)

    def _report_notification(self, error: BoxrunError) -> None:
        if isinstance(error, ContainerNotFoundError):
            message = (
                f"Docker container '{error.container}' does not exist. "
                "Please check container name in settings."
            )
        elif isinstance(error, RuntimeUnavailableError):
            message = "Docker is not running. Please start Docker Desktop/Engine and try again."
        elif isinstance(error, (ContainerStartFailedError, ContainerVerifyFailedError)):
            message = f"{error.message}. Check logs: docker logs {error.container}"
        else:
            message = error.message
        self._notifier.error(message)
        logger.error(f"INVOCATION: kind={error.kind} {error}")
