"""
Artifact change detection and sandbox → host path rewriting.

After a successful run, ``compile_commands.json`` is compared with its
pre-run snapshot. When it changed, every occurrence of the sandbox root
(``/sandbox``) is replaced in place with the host workspace root so host-side
tooling can resolve the paths.

The artifact can be tens of MB, so the rewrite is two-phase: a cheap
``grep -q`` probe first, and the ``sed -i`` substitution only when the probe
matched. The substitution is bounded by a timeout.
"""
from __future__ import annotations

import asyncio
import logging
import shlex
import time
from pathlib import Path

from boxrun.config import DEFAULT_REWRITE_TIMEOUT_SECONDS
from boxrun.core.exceptions import RewriteFailedError, RewriteTimedOutError
from boxrun.core.models import ArtifactSnapshot, RewriteOutcome, RewriteStatus

logger = logging.getLogger(__name__)

# Characters with special meaning in a sed BRE pattern (plus our delimiter)
_SED_PATTERN_SPECIAL = set("\\.*[^$|")
# Characters with special meaning in a sed replacement (plus our delimiter)
_SED_REPLACEMENT_SPECIAL = set("\\&|")

_READ_CHUNK_BYTES = 1024 * 1024
DEFAULT_COUNT_OUTPUT_CAP_BYTES = 50 * 1024 * 1024


# =============================================================================
# Change detection
# =============================================================================

def snapshot(path: Path) -> ArtifactSnapshot:
    """Existence and mtime of a file. Missing files and I/O errors both mean absent."""
    try:
        stat_info = path.stat()
    except OSError:
        return ArtifactSnapshot(exists=False)
    return ArtifactSnapshot(exists=True, modified_at=stat_info.st_mtime)


def changed(before: ArtifactSnapshot, after: ArtifactSnapshot) -> bool:
    """
    True iff the file appeared, or its mtime moved strictly forward.

    Equal timestamps are not a change: a no-op build must not trigger a
    rewrite and refresh.
    """
    if not before.exists and after.exists:
        return True
    if before.exists and after.exists:
        if before.modified_at is None or after.modified_at is None:
            return False
        return after.modified_at > before.modified_at
    return False


# =============================================================================
# Path rewriting
# =============================================================================

def _escape(text: str, special: set[str]) -> str:
    return "".join(f"\\{ch}" if ch in special else ch for ch in text)


def sed_expression(sandbox_root: str, host_root: str) -> str:
    pattern = _escape(sandbox_root, _SED_PATTERN_SPECIAL)
    replacement = _escape(host_root, _SED_REPLACEMENT_SPECIAL)
    return f"s|{pattern}|{replacement}|g"


def manual_rewrite_command(artifact_path: Path, sandbox_root: str, host_root: str) -> str:
    return shlex.join(["sed", "-i", sed_expression(sandbox_root, host_root), str(artifact_path)])


class PathRewriter:
    """Replace the sandbox root with the host root inside an artifact file."""

    def __init__(
        self,
        timeout_seconds: float = DEFAULT_REWRITE_TIMEOUT_SECONDS,
        grep_binary: str = "grep",
        sed_binary: str = "sed",
        count_output_cap_bytes: int = DEFAULT_COUNT_OUTPUT_CAP_BYTES,
    ) -> None:
        self._timeout = timeout_seconds
        self._count_cap = count_output_cap_bytes
        self._grep = grep_binary
        self._sed = sed_binary

    @property
    def timeout_seconds(self) -> float:
        return self._timeout

    async def contains(self, artifact_path: Path, marker: str, manual: str = "") -> bool:
        """Cheap probe: does the marker occur anywhere in the file?"""
        try:
            process = await asyncio.create_subprocess_exec(
                self._grep, "-q", "-F", "--", marker, str(artifact_path),
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise RewriteFailedError(str(artifact_path), str(e), manual) from e
        _, stderr = await process.communicate()
        if process.returncode == 0:
            return True
        if process.returncode == 1:
            return False
        raise RewriteFailedError(
            str(artifact_path),
            stderr.decode("utf-8", errors="replace").strip() or f"grep exit {process.returncode}",
            manual,
        )

    async def count_occurrences(self, artifact_path: Path, marker: str) -> int:
        """
        Count marker occurrences (``grep -o``), streaming rather than buffering.

        Reading stops after ``count_output_cap_bytes`` of grep output or the
        rewrite timeout, whichever comes first; the count is then partial.
        """
        try:
            process = await asyncio.create_subprocess_exec(
                self._grep, "-o", "-F", "--", marker, str(artifact_path),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            logger.debug(f"REWRITE: Counting occurrences failed: {e}")
            return 0

        counted = [0]
        try:
            complete = await asyncio.wait_for(
                self._read_count(process, counted), timeout=self._timeout
            )
        except asyncio.TimeoutError:
            logger.warning(f"REWRITE: Counting occurrences timed out after {self._timeout}s")
            complete = False
        if not complete:
            logger.info(f"REWRITE: Occurrence count is partial ({counted[0]}) for {artifact_path}")
            if process.returncode is None:
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
        await process.wait()
        return counted[0]

    async def _read_count(self, process: asyncio.subprocess.Process, counted: list[int]) -> bool:
        received = 0
        if process.stdout is not None:
            while True:
                chunk = await process.stdout.read(_READ_CHUNK_BYTES)
                if not chunk:
                    break
                received += len(chunk)
                counted[0] += chunk.count(b"\n")
                if received >= self._count_cap:
                    return False
        return True

    async def rewrite(
        self,
        artifact_path: Path,
        sandbox_root: str,
        host_root: str,
    ) -> RewriteOutcome:
        """
        Rewrite sandbox-absolute paths to host-absolute paths in place.

        Returns:
            RewriteOutcome (MISSING / NO_MATCH are no-ops, not errors).

        Raises:
            RewriteFailedError: probe or substitution failed.
            RewriteTimedOutError: substitution exceeded the timeout.
        """
        if not artifact_path.exists():
            logger.info(f"REWRITE: File does not exist: {artifact_path}")
            return RewriteOutcome(status=RewriteStatus.MISSING)

        manual = manual_rewrite_command(artifact_path, sandbox_root, host_root)
        if not await self.contains(artifact_path, sandbox_root, manual):
            logger.info(f"REWRITE: No {sandbox_root} path found in {artifact_path}")
            return RewriteOutcome(status=RewriteStatus.NO_MATCH)

        occurrences = await self.count_occurrences(artifact_path, sandbox_root)

        start = time.monotonic()
        try:
            process = await asyncio.create_subprocess_exec(
                self._sed, "-i", "-e", sed_expression(sandbox_root, host_root),
                str(artifact_path),
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise RewriteFailedError(str(artifact_path), str(e), manual) from e

        try:
            _, stderr = await asyncio.wait_for(process.communicate(), timeout=self._timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            logger.warning(f"REWRITE: sed timed out after {self._timeout}s on {artifact_path}")
            raise RewriteTimedOutError(str(artifact_path), self._timeout, manual)

        if process.returncode != 0:
            raise RewriteFailedError(
                str(artifact_path),
                stderr.decode("utf-8", errors="replace").strip() or f"sed exit {process.returncode}",
                manual,
            )

        duration = time.monotonic() - start
        logger.info(
            f"REWRITE: Replaced {occurrences} occurrences of {sandbox_root} "
            f"with {host_root} in {artifact_path} ({duration:.2f}s)"
        )
        return RewriteOutcome(
            status=RewriteStatus.REWRITTEN,
            occurrences=occurrences,
            duration_seconds=duration,
        )
