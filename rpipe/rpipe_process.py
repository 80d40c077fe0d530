"""
Process adapters: locating R, building its argument list and spawning it
with three pipes.
"""
from __future__ import annotations

import asyncio
import os
import re
import shutil
import sys
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple

from rpipe.rpipe_datatypes import SessionOpenError
from rpipe.rpipe_settings import Settings, OpenOptions

_VERSION_RE = re.compile(r"R version (\d+)\.(\d+)\.(\d+)")


@dataclass
class SlaveStreams:
    """The three pipes of one R process.

    `input` is a writer (`write`, `drain`, `close`); `output` and `error`
    are readers whose `readline()` returns bytes, or b"" at end of stream.
    """
    input: Any
    output: Any
    error: Any
    process: Any = None

    async def aclose(self) -> None:
        try:
            self.input.close()
        except (BrokenPipeError, ConnectionResetError, RuntimeError):
            pass
        process = self.process
        if process is None:
            return
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
        await process.wait()


class Spawner:
    """Starts R processes. Subclass to run R some other way."""

    async def spawn(self, executable: str, args: Sequence[str]) -> SlaveStreams:
        raise NotImplementedError

    async def version(self, executable: str) -> Optional[Tuple[int, int, int]]:
        raise NotImplementedError


class SubprocessSpawner(Spawner):
    """Runs R locally through asyncio subprocess pipes."""

    async def spawn(self, executable: str, args: Sequence[str]) -> SlaveStreams:
        try:
            process = await asyncio.create_subprocess_exec(
                executable, *args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise SessionOpenError(f"could not start {executable}: {e}") from e
        return SlaveStreams(process.stdin, process.stdout, process.stderr, process)

    async def version(self, executable: str) -> Optional[Tuple[int, int, int]]:
        try:
            process = await asyncio.create_subprocess_exec(
                executable, "--version",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError:
            return None
        out, err = await process.communicate()
        # Some R builds report the version on stderr.
        for data in (out, err):
            version = parse_version(data.decode("utf-8", errors="replace"))
            if version is not None:
                return version
        return None


def parse_version(text: str) -> Optional[Tuple[int, int, int]]:
    m = _VERSION_RE.search(text)
    if m is None:
        return None
    return int(m.group(1)), int(m.group(2)), int(m.group(3))


def locate_rbin(options: OpenOptions, settings: Settings) -> str:
    """Order: explicit option, registered binary, $R_BIN, R on $PATH."""
    if options.rbin:
        return options.rbin
    if settings.rbin:
        return settings.rbin
    env_bin = os.environ.get("R_BIN")
    if env_bin:
        settings.verbose(1, "There is no registered R executable. Using R_BIN:", env_bin)
        return env_bin
    found = shutil.which("R")
    if found:
        settings.verbose(1, "There is no registered R executable. Using the one found by searching:", found)
        settings.verbose(2, "which(R) ->", found)
        return found
    raise SessionOpenError("Use rbin in open(), or RSessions.bin('Rbin') or set R_BIN.")


def r_arguments(options: OpenOptions, windows: Optional[bool] = None) -> Tuple[List[str], bool]:
    """Returns (argv tail, interactive) for the given open options."""
    if windows is None:
        windows = sys.platform.startswith("win")
    withs = set(options.with_)
    if windows:
        args = ["--ess", "--slave"]
        interactive = False
    elif "non_interactive" in withs:
        args = ["--slave"]
        interactive = False
    else:
        args = ["--interactive", "--slave"]
        interactive = True
    for flag in ("environ", "restore", "save"):
        if flag not in withs:
            args.append(f"--no-{flag}")
    return args, interactive
