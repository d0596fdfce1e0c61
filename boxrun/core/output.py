"""
Output sinks for streamed command output.

The sink is append-only text. Terminal color/control escape sequences are
stripped before text reaches any sink, since neither the console mirror nor
the log file can render them faithfully.
"""
from __future__ import annotations

import logging
import re
import sys
from pathlib import Path
from typing import Optional, Protocol, TextIO

logger = logging.getLogger(__name__)

# ESC [ followed by parameters and a final letter (colors, cursor movement, erase)
_ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;]*[a-zA-Z]")


def strip_ansi_codes(text: str) -> str:
    return _ANSI_ESCAPE.sub("", text)


class OutputSink(Protocol):
    def show(self) -> None:
        ...

    def append(self, text: str) -> None:
        ...

    def append_line(self, text: str) -> None:
        ...

    def clear(self) -> None:
        ...


class ConsoleOutputSink:
    """Write output to a text stream (stdout by default)."""

    def __init__(self, stream: Optional[TextIO] = None) -> None:
        self._stream = stream or sys.stdout

    def show(self) -> None:
        self._stream.flush()

    def append(self, text: str) -> None:
        self._stream.write(strip_ansi_codes(text))
        self._stream.flush()

    def append_line(self, text: str) -> None:
        self.append(f"{text}\n")

    def clear(self) -> None:
        # Scrollback belongs to the terminal
        pass


class FileOutputSink:
    """Mirror output into a log file; clear() truncates it."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def show(self) -> None:
        pass

    def append(self, text: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._path.open("a", encoding="utf-8") as f:
            f.write(strip_ansi_codes(text))

    def append_line(self, text: str) -> None:
        self.append(f"{text}\n")

    def clear(self) -> None:
        if self._path.exists():
            self._path.write_text("", encoding="utf-8")
            logger.info(f"Cleared output log {self._path}")


class TeeOutputSink:
    """Fan out every call to several sinks."""

    def __init__(self, *sinks: OutputSink) -> None:
        self._sinks = sinks

    def show(self) -> None:
        for sink in self._sinks:
            sink.show()

    def append(self, text: str) -> None:
        for sink in self._sinks:
            sink.append(text)

    def append_line(self, text: str) -> None:
        for sink in self._sinks:
            sink.append_line(text)

    def clear(self) -> None:
        for sink in self._sinks:
            sink.clear()
