"""
Exceptions raised by the boxrun execution core.

All exceptions inherit from BoxrunError for easy catching. Each carries a
``kind`` (the name used in notifications and log lines) plus a context
dict for structured logging. None of them is retried: every one is terminal
for the invocation that raised it.
"""


class BoxrunError(Exception):
    """Base exception for all boxrun errors."""

    kind = "Error"

    def __init__(self, message: str, context: dict | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} [{ctx}]"
        return self.message


# =============================================================================
# Configuration
# =============================================================================

class ConfigurationInvalidError(BoxrunError):
    """Container mode was selected but no container is configured."""

    kind = "ConfigurationInvalid"

    def __init__(self, message: str, setting: str):
        super().__init__(message, context={"setting": setting})
        self.setting = setting


class WorkspaceRootInvalidError(BoxrunError):
    """Workspace root does not match the required location."""

    kind = "WorkspaceRootInvalid"

    def __init__(self, expected: str, actual: str):
        super().__init__(
            f"Workspace root must be {expected} (actual: {actual})",
            context={"expected": expected, "actual": actual},
        )
        self.expected = expected
        self.actual = actual


class ConfigFileError(BoxrunError):
    """Configuration file could not be read, parsed or written."""

    kind = "ConfigFileError"

    def __init__(self, path: str, reason: str):
        super().__init__(
            f"Invalid configuration file {path}: {reason}",
            context={"path": path},
        )
        self.path = path
        self.reason = reason


# =============================================================================
# Container lifecycle
# =============================================================================

class ContainerError(BoxrunError):
    """Base class for container lifecycle failures."""

    kind = "ContainerError"

    def __init__(self, message: str, container: str, **context):
        super().__init__(message, context={"container": container, **context})
        self.container = container


class RuntimeUnavailableError(ContainerError):
    """The container runtime CLI or daemon cannot be reached."""

    kind = "RuntimeUnavailable"

    def __init__(self, container: str, reason: str):
        super().__init__(
            f"Docker is not accessible: {reason}",
            container,
            reason=reason,
        )
        self.reason = reason


class ContainerNotFoundError(ContainerError):
    """The target container does not exist."""

    kind = "ContainerNotFound"

    def __init__(self, container: str, known_containers: list[str]):
        super().__init__(f"Container '{container}' does not exist", container)
        self.known_containers = known_containers


class ContainerRuntimeError(ContainerError):
    """The runtime answered the status query with an unexpected error."""

    kind = "RuntimeError"

    def __init__(self, container: str, diagnostic: str):
        super().__init__(f"Docker error: {diagnostic}", container)
        self.diagnostic = diagnostic


class ContainerStartFailedError(ContainerError):
    """Starting a stopped container failed."""

    kind = "ContainerStartFailed"

    def __init__(self, container: str, diagnostic: str):
        super().__init__(f"Failed to start container: {diagnostic}", container)
        self.diagnostic = diagnostic


class ContainerVerifyFailedError(ContainerError):
    """The container was started but is not running afterwards."""

    kind = "ContainerVerifyFailed"

    def __init__(self, container: str):
        super().__init__(
            "Container started but not running (may have crashed)", container
        )


# =============================================================================
# Process execution
# =============================================================================

class DirectoryNotFoundError(BoxrunError):
    """Resolved host working directory does not exist."""

    kind = "DirectoryNotFound"

    def __init__(self, directory: str):
        super().__init__(
            f"Specified directory does not exist: {directory}",
            context={"directory": directory},
        )
        self.directory = directory


class ProcessSpawnError(BoxrunError):
    """The underlying spawn primitive failed."""

    kind = "ProcessSpawnError"

    def __init__(self, command: str, reason: str):
        super().__init__(
            f"Command execution failed: {reason}",
            context={"command": command[:100]},
        )
        self.command = command
        self.reason = reason


# =============================================================================
# Artifact handling
# =============================================================================

class RewriteError(BoxrunError):
    """Base class for path rewrite failures. Always best-effort."""

    kind = "RewriteError"

    def __init__(self, message: str, artifact: str, manual_command: str, **context):
        super().__init__(message, context={"artifact": artifact, **context})
        self.artifact = artifact
        self.manual_command = manual_command


class RewriteFailedError(RewriteError):
    """The substitution step exited with an error."""

    kind = "RewriteFailed"

    def __init__(self, artifact: str, diagnostic: str, manual_command: str):
        super().__init__(
            f"sed command failed: {diagnostic}", artifact, manual_command
        )
        self.diagnostic = diagnostic


class RewriteTimedOutError(RewriteError):
    """The substitution step exceeded its time bound."""

    kind = "RewriteTimedOut"

    def __init__(self, artifact: str, timeout: float, manual_command: str):
        super().__init__(
            f"Path replacement timed out after {timeout}s",
            artifact,
            manual_command,
            timeout=timeout,
        )
        self.timeout = timeout


# =============================================================================
# Refresh collaborator
# =============================================================================

class RefreshUnavailableError(BoxrunError):
    """The refresh collaborator is not available."""

    kind = "RefreshUnavailable"


class RefreshFailedError(BoxrunError):
    """The refresh collaborator was invoked but failed."""

    kind = "RefreshFailed"
