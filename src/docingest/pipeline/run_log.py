from __future__ import annotations

import sys
from threading import Lock
from typing import TextIO

QUIET = 0
NORMAL = 1
VERBOSE = 2


def _format_value(value: object) -> str:
    rendered = str(value)
    if not rendered or any(character.isspace() for character in rendered):
        return repr(rendered)
    return rendered


class RunLog:
    """Writes ``[docingest] message key=value ...`` lines from any worker thread."""

    def __init__(
        self,
        *,
        verbosity: int = NORMAL,
        stream: TextIO | None = None,
        prefix: str = "docingest",
    ) -> None:
        self.verbosity = verbosity
        self._stream = stream
        self._prefix = prefix
        self._lock = Lock()

    def _emit(self, message: str, fields: dict[str, object]) -> None:
        rendered = " ".join(f"{key}={_format_value(value)}" for key, value in fields.items())
        line = f"[{self._prefix}] {message}" + (f" {rendered}" if rendered else "")
        with self._lock:
            print(line, file=self._stream or sys.stderr, flush=True)

    def error(self, message: str, **fields: object) -> None:
        self._emit(message, fields)

    def info(self, message: str, **fields: object) -> None:
        if self.verbosity >= NORMAL:
            self._emit(message, fields)

    def debug(self, message: str, **fields: object) -> None:
        if self.verbosity >= VERBOSE:
            self._emit(message, fields)
