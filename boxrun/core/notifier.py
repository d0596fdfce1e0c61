"""User-facing notifications and confirmation prompts."""
from __future__ import annotations

import asyncio
import logging
import sys
from typing import Optional, Protocol, TextIO

from rich.console import Console
from rich.markup import escape
from rich.prompt import Confirm

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def info(self, message: str) -> None:
        ...

    def warning(self, message: str) -> None:
        ...

    def error(self, message: str) -> None:
        ...

    async def confirm(self, message: str, accept: str, decline: str = "Cancel") -> bool:
        ...


class ConsoleNotifier:
    """
    Print notifications to stderr and ask questions on the terminal.

    With ``assume_yes`` every confirmation is accepted without prompting;
    without a terminal every confirmation is declined.
    """

    _STYLES = {"INFO": "green", "WARNING": "yellow", "ERROR": "bold red"}

    def __init__(self, stream: Optional[TextIO] = None, assume_yes: bool = False) -> None:
        self._console = Console(file=stream, stderr=True, highlight=False)
        self._assume_yes = assume_yes

    @property
    def console(self) -> Console:
        return self._console

    def _emit(self, level: str, message: str) -> None:
        style = self._STYLES[level]
        self._console.print(f"[{style}]\\[{level}][/{style}] {escape(message)}", soft_wrap=True)

    def info(self, message: str) -> None:
        self._emit("INFO", message)

    def warning(self, message: str) -> None:
        self._emit("WARNING", message)

    def error(self, message: str) -> None:
        self._emit("ERROR", message)

    async def confirm(self, message: str, accept: str, decline: str = "Cancel") -> bool:
        if self._assume_yes:
            return True
        if not sys.stdin or not sys.stdin.isatty():
            logger.info(f"Declining '{message}': no terminal to confirm on")
            return False
        return await asyncio.to_thread(
            Confirm.ask,
            f"{escape(message)} [dim](y = {escape(accept)} / n = {escape(decline)})[/dim]",
            console=self._console,
            default=False,
        )
