"""
Transcript ("copy") sinks recording what goes to and comes back from R.

A target is one of:
  None / "null"        recording disabled
  an open file object  written to, never closed by rpipe
  "path" or ("once", path)
                       opened once (truncated, or appended to when a halted
                       session is being respawned) and closed at session close
  ("many", path)       opened for append and closed around every write

What is recorded is one of "both", "in", "out" or "none".
"""
from __future__ import annotations

import os
from typing import Any, Iterable, Optional, TextIO

from rpipe.rpipe_datatypes import OptionError

ERROR_PREFIX = "!  "


def format_lines(lines: Iterable[str], kind: str) -> str:
    """Renders lines the way they are shown to users: errors get a prefix."""
    prefix = ERROR_PREFIX if kind == "error" else ""
    return "".join(f"{prefix}{line}\n" for line in lines)


class Transcript:
    """A record of one session's traffic."""

    def __init__(self, target: Any = None, what: str = "none", recovering: bool = False):
        self.what = what
        self._stream: Optional[TextIO] = None
        self._owns_stream = False
        self._path: Optional[str] = None
        self._many = False

        if target is None or target == "null":
            self.mode = "null"
            return
        if hasattr(target, "write"):
            self.mode = "stream"
            self._stream = target
            return
        if isinstance(target, (str, os.PathLike)):
            kind, path = "once", target
        elif isinstance(target, (tuple, list)) and len(target) == 2:
            kind, path = target
        else:
            raise OptionError("I cannot decipher 1st argument of copy/2 option", target)

        if kind == "once":
            self.mode = "once"
            self._path = os.fspath(path)
            self._stream = open(self._path, "a" if recovering else "w", encoding="utf-8")
            self._owns_stream = True
        elif kind == "many":
            self.mode = "many"
            self._path = os.fspath(path)
            self._many = True
        else:
            raise OptionError("I cannot decipher 1st argument of copy/2 option", target)

    @property
    def enabled(self) -> bool:
        return self.mode != "null"

    @property
    def records_input(self) -> bool:
        return self.enabled and self.what in ("in", "both")

    @property
    def records_output(self) -> bool:
        return self.enabled and self.what in ("out", "both")

    def record_command(self, text: str) -> None:
        if self.records_input:
            self._write(f"{text}\n")

    def record_lines(self, lines: Iterable[str], kind: str) -> None:
        lines = list(lines)
        if lines and self.records_output:
            self._write(format_lines(lines, kind))

    def _write(self, text: str) -> None:
        if self._many:
            with open(self._path, "a", encoding="utf-8") as handle:
                handle.write(text)
            return
        if self._stream is None:
            return
        self._stream.write(text)
        self._stream.flush()

    def close(self) -> None:
        if self._owns_stream and self._stream is not None:
            self._stream.close()
            self._stream = None

    def __repr__(self) -> str:
        target = self._path or ("stream" if self.mode == "stream" else None)
        return f"<Transcript {self.mode} {target!r} what={self.what}>"
