"""
Pytest configuration and shared fixtures for boxrun tests.

Provides fixtures for:
- Recording output sink (captures everything the core writes)
- Fake notifier with a scripted confirmation answer
- Config factory rooted at a temporary workspace
"""
import sys
from pathlib import Path
from typing import Any, Callable

import pytest

# Add project root to path before importing project modules
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from boxrun.config import BoxrunConfig  # noqa: E402


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "unit: marks tests as unit tests (fast, no external dependencies)"
    )
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests (spawn real processes)"
    )
    config.addinivalue_line(
        "markers",
        "slow: marks tests as slow"
    )


class RecordingSink:
    """OutputSink that keeps everything in memory."""

    def __init__(self) -> None:
        self.chunks: list[str] = []
        self.shown = 0
        self.cleared = 0

    def show(self) -> None:
        self.shown += 1

    def append(self, text: str) -> None:
        self.chunks.append(text)

    def append_line(self, text: str) -> None:
        self.chunks.append(f"{text}\n")

    def clear(self) -> None:
        self.cleared += 1
        self.chunks = []

    @property
    def text(self) -> str:
        return "".join(self.chunks)


class FakeNotifier:
    """Notifier that records messages and answers confirmations from a script."""

    def __init__(self, confirm_answer: bool = False) -> None:
        self.confirm_answer = confirm_answer
        self.infos: list[str] = []
        self.warnings: list[str] = []
        self.errors: list[str] = []
        self.confirmations: list[tuple[str, str]] = []

    def info(self, message: str) -> None:
        self.infos.append(message)

    def warning(self, message: str) -> None:
        self.warnings.append(message)

    def error(self, message: str) -> None:
        self.errors.append(message)

    async def confirm(self, message: str, accept: str, decline: str = "Cancel") -> bool:
        self.confirmations.append((message, accept))
        return self.confirm_answer


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """Temporary host workspace root."""
    root = tmp_path / "repo"
    root.mkdir()
    return root


@pytest.fixture
def make_config(workspace: Path, tmp_path: Path) -> Callable[..., BoxrunConfig]:
    """Build a BoxrunConfig rooted at the temporary workspace."""

    def factory(**overrides: Any) -> BoxrunConfig:
        values: dict[str, Any] = {
            "workspace_root": str(workspace),
            "history_file": str(tmp_path / "history.json"),
            "container_name": "dev-box",
        }
        values.update(overrides)
        return BoxrunConfig(**values)

    return factory
