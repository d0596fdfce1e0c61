"""
Command history.

Keeps the most recent executions as ``(command, cwd, timestamp)`` entries in a
JSON file. Re-running the same command in the same directory moves it to the
end instead of adding a duplicate. Entries are listed newest first.

The file is also accepted in the legacy format (a plain list of strings).
"""
from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError

from boxrun.config import DEFAULT_HISTORY_SIZE, atomic_write_text

logger = logging.getLogger(__name__)


class HistoryItem(BaseModel):
    command: str
    cwd: Optional[str] = None
    timestamp: Optional[float] = Field(default=None, description="Unix time of execution")


class CommandHistory:
    """Bounded, persisted list of executed commands."""

    def __init__(self, path: Path, max_size: int = DEFAULT_HISTORY_SIZE) -> None:
        self._path = path
        self._max_size = max_size
        self._items: list[HistoryItem] = self._load()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> list[HistoryItem]:
        if not self._path.exists():
            return []
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"HISTORY: Ignoring unreadable history file {self._path}: {e}")
            return []
        if not isinstance(data, list):
            logger.warning(f"HISTORY: Ignoring history file {self._path}: not a list")
            return []

        items: list[HistoryItem] = []
        for entry in data:
            try:
                if isinstance(entry, str):
                    items.append(HistoryItem(command=entry))
                else:
                    items.append(HistoryItem(**entry))
            except (TypeError, ValidationError) as e:
                logger.debug(f"HISTORY: Skipping invalid entry {entry!r}: {e}")
        return items[-self._max_size:]

    def _save(self) -> None:
        content = json.dumps(
            [item.model_dump(exclude_none=True) for item in self._items],
            indent=2,
        )
        atomic_write_text(self._path, content)

    def add(self, command: str, cwd: Optional[str] = None) -> HistoryItem:
        """Record an execution, de-duplicating on (command, cwd)."""
        cwd = cwd or None
        self._items = [
            item for item in self._items
            if not (item.command == command and item.cwd == cwd)
        ]
        item = HistoryItem(command=command, cwd=cwd, timestamp=time.time())
        self._items.append(item)
        if len(self._items) > self._max_size:
            self._items = self._items[-self._max_size:]
        self._save()
        return item

    def clear(self) -> None:
        self._items = []
        self._save()
        logger.info(f"HISTORY: Cleared {self._path}")

    def entries(self) -> list[HistoryItem]:
        """Newest first."""
        return list(reversed(self._items))

    def __len__(self) -> int:
        return len(self._items)
