"""Data models for command execution."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional


@dataclass(frozen=True)
class ExecutionRequest:
    """Immutable input to one invocation."""
    command: str
    working_directory: Optional[str] = None
    mode_override: Optional[bool] = None


@dataclass(frozen=True)
class ResolvedTarget:
    """Where a single invocation runs. Computed once, never mutated."""
    is_containerized: bool
    container_name: Optional[str]
    host_working_directory: Path
    container_working_directory: str


@dataclass(frozen=True)
class ContainerStatus:
    exists: bool
    running: bool


@dataclass(frozen=True)
class ArtifactSnapshot:
    exists: bool
    modified_at: Optional[float] = None


@dataclass(frozen=True)
class ExitOutcome:
    """Terminal shape of a finished process."""
    exit_code: Optional[int]
    signal_name: Optional[str] = None
    cancelled: bool = False

    @property
    def signaled(self) -> bool:
        return self.signal_name is not None

    @property
    def succeeded(self) -> bool:
        return not self.signaled and not self.cancelled and self.exit_code == 0


class RewriteStatus(Enum):
    """Result of a path rewrite attempt.

    MISSING: artifact file does not exist (no-op)
    NO_MATCH: artifact contains no sandbox root path (no-op)
    REWRITTEN: all occurrences were substituted
    """
    MISSING = "missing"
    NO_MATCH = "no_match"
    REWRITTEN = "rewritten"


@dataclass(frozen=True)
class RewriteOutcome:
    status: RewriteStatus
    occurrences: int = 0
    duration_seconds: float = 0.0


class InvocationStatus(Enum):
    """Overall result of Orchestrator.execute()."""
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    ABORTED = "aborted"      # rejected before spawn (configuration, container, directory)
    REJECTED = "rejected"    # user declined to stop the running command


@dataclass(frozen=True)
class InvocationResult:
    status: InvocationStatus
    error_kind: Optional[str] = None
    exit_code: Optional[int] = None
    signal_name: Optional[str] = None
    artifact_changed: bool = False
    rewrite: Optional[RewriteOutcome] = None
    refreshed: bool = False

    @property
    def ok(self) -> bool:
        return self.status is InvocationStatus.SUCCEEDED
