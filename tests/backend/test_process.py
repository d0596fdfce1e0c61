"""
Integration tests for ProcessRunner with real host processes.

Tests cover:
- Merged stdout/stderr streaming
- Exit code reporting
- Environment overlay and working directory
- Spawn failure for a missing working directory
- Two-phase stop: SIGTERM honoured, SIGKILL after the grace period
"""
import asyncio
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from boxrun.core.exceptions import ProcessSpawnError
from boxrun.core.models import ResolvedTarget
from boxrun.core.process import ProcessRunner

requires_linux = pytest.mark.skipif(
    sys.platform != "linux",
    reason="Test requires POSIX process groups"
)


def _host_target(directory: Path) -> ResolvedTarget:
    return ResolvedTarget(
        is_containerized=False,
        container_name=None,
        host_working_directory=directory,
        container_working_directory="/sandbox",
    )


@requires_linux
@pytest.mark.integration
class TestProcessRunner:
    """Host mode spawning and streaming."""

    @pytest.mark.asyncio
    async def test_streams_merged_output(self, tmp_path: Path, sink) -> None:
        runner = ProcessRunner()
        running = await runner.spawn(_host_target(tmp_path), "echo out; echo err >&2")
        outcome = await runner.stream(running, sink)

        assert outcome.exit_code == 0
        assert outcome.succeeded
        assert "out\n" in sink.text
        assert "err\n" in sink.text

    @pytest.mark.asyncio
    async def test_nonzero_exit(self, tmp_path: Path, sink) -> None:
        runner = ProcessRunner()
        running = await runner.spawn(_host_target(tmp_path), "exit 2")
        outcome = await runner.stream(running, sink)

        assert outcome.exit_code == 2
        assert outcome.signaled is False
        assert outcome.succeeded is False

    @pytest.mark.asyncio
    async def test_env_overlay_and_cwd(self, tmp_path: Path, sink) -> None:
        runner = ProcessRunner(env={"BOXRUN_TEST_VALUE": "hello"})
        running = await runner.spawn(_host_target(tmp_path), 'echo "$BOXRUN_TEST_VALUE"; pwd')
        await runner.stream(running, sink)

        assert "hello" in sink.text
        assert str(tmp_path.resolve()) in sink.text

    @pytest.mark.asyncio
    async def test_missing_directory_is_spawn_error(self, tmp_path: Path) -> None:
        runner = ProcessRunner()
        with pytest.raises(ProcessSpawnError) as exc_info:
            await runner.spawn(_host_target(tmp_path / "missing"), "true")
        assert exc_info.value.kind == "ProcessSpawnError"

    @pytest.mark.asyncio
    async def test_stop_with_sigterm(self, tmp_path: Path, sink) -> None:
        """A process that honours SIGTERM is not killed."""
        runner = ProcessRunner(stop_grace_seconds=3)
        running = await runner.spawn(_host_target(tmp_path), "sleep 30")
        stream_task = asyncio.create_task(runner.stream(running, sink))
        await asyncio.sleep(0.2)

        killed = await runner.stop(running)
        outcome = await asyncio.wait_for(stream_task, timeout=5)

        assert killed is False
        assert outcome.cancelled is True
        assert outcome.signal_name == "SIGTERM"

    @pytest.mark.asyncio
    @pytest.mark.slow
    async def test_stop_escalates_to_sigkill(self, tmp_path: Path, sink) -> None:
        """SIGKILL follows if SIGTERM is ignored for the grace period."""
        runner = ProcessRunner(stop_grace_seconds=0.5)
        running = await runner.spawn(
            _host_target(tmp_path),
            "trap '' TERM; echo ready; while true; do sleep 0.1; done",
        )
        stream_task = asyncio.create_task(runner.stream(running, sink))
        for _ in range(50):
            if "ready" in sink.text:
                break
            await asyncio.sleep(0.05)

        killed = await runner.stop(running)
        outcome = await asyncio.wait_for(stream_task, timeout=5)

        assert killed is True
        assert outcome.cancelled is True
        assert outcome.signal_name == "SIGKILL"

    @pytest.mark.asyncio
    async def test_stop_after_exit_is_noop(self, tmp_path: Path, sink) -> None:
        runner = ProcessRunner()
        running = await runner.spawn(_host_target(tmp_path), "true")
        await runner.stream(running, sink)

        assert await runner.stop(running) is False
        assert running.cancelled is False


class TestProcessRunnerContainerSpawn:
    """Container mode builds a docker exec invocation."""

    @pytest.mark.asyncio
    async def test_docker_exec_argv(self, tmp_path: Path) -> None:
        target = ResolvedTarget(
            is_containerized=True,
            container_name="dev-box",
            host_working_directory=tmp_path,
            container_working_directory="/sandbox/blc",
        )
        fake_process = MagicMock(pid=1234)
        with patch(
            "boxrun.core.process.asyncio.create_subprocess_exec",
            new=AsyncMock(return_value=fake_process),
        ) as mock_exec:
            running = await ProcessRunner().spawn(target, "make -j8")

        argv = mock_exec.call_args.args
        assert argv[:5] == ("docker", "exec", "-i", "-w", "/sandbox")
        assert argv[7:] == ("dev-box", "bash", "-c", "cd /sandbox/blc && make -j8")
        assert mock_exec.call_args.kwargs["start_new_session"] is True
        assert running.pid == 1234
