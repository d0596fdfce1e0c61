"""
Refresh collaborator: tells host tooling (e.g. clangd) to reload the artifact.

The collaborator is external. The core only checks that the capability exists
before invoking it; a missing or failing collaborator never fails the
invocation.
"""
from __future__ import annotations

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Optional, Protocol, Sequence

from boxrun.core.exceptions import RefreshFailedError, RefreshUnavailableError

logger = logging.getLogger(__name__)

MANUAL_REFRESH_HINT = 'Please manually execute "clangd: Restart language server"'


class RefreshCollaborator(Protocol):
    def is_available(self) -> bool:
        ...

    async def refresh(self, artifact_path: Path) -> None:
        ...


class CommandRefresher:
    """
    Run a configured command to make the language server reload.

    ``{artifact}`` in any argument is replaced with the artifact path, e.g.

        refresh_command: ["pkill", "-HUP", "clangd"]
        refresh_command: "touch {artifact}.reload"
    """

    def __init__(self, command: Optional[Sequence[str]] = None, timeout_seconds: float = 30) -> None:
        self._command = list(command or [])
        self._timeout = timeout_seconds

    @property
    def command(self) -> list[str]:
        return list(self._command)

    def is_available(self) -> bool:
        if not self._command:
            return False
        return shutil.which(self._command[0]) is not None

    async def refresh(self, artifact_path: Path) -> None:
        """
        Raises:
            RefreshUnavailableError: no command configured or not on PATH.
            RefreshFailedError: the command failed or timed out.
        """
        if not self.is_available():
            raise RefreshUnavailableError(
                "Refresh command not available. " + MANUAL_REFRESH_HINT,
                context={"command": " ".join(self._command) or "-"},
            )

        argv = [part.replace("{artifact}", str(artifact_path)) for part in self._command]
        logger.info(f"REFRESH: Running {' '.join(argv)}")
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
            _, stderr = await asyncio.wait_for(process.communicate(), timeout=self._timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise RefreshFailedError(
                f"Refresh command timed out after {self._timeout}s",
                context={"command": argv[0]},
            )
        except OSError as e:
            raise RefreshFailedError(f"Refresh command failed: {e}", context={"command": argv[0]}) from e

        if process.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()
            raise RefreshFailedError(
                f"Refresh command failed (exit code: {process.returncode}) {detail}".strip(),
                context={"command": argv[0]},
            )
