"""
The public face of rpipe: open R sessions, send them commands, read values
back and close them again.

    async with RSessions() as r:
        await r.open(alias="main")
        await r.send(Assign(Symbol("y"), call("rnorm", 50)))
        await r.print_value("summary(y)")
        y = ResultSlot()
        await r.assign(y, Symbol("y"))
"""
from __future__ import annotations

import asyncio
import sys
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from rpipe.rpipe_datatypes import (
    Assign, Call, Exchange, OptionError, ParsedValue, ResultSlot, SlaveHalted,
    UnknownSessionAlias
)
from rpipe.rpipe_engine import ProtocolEngine
from rpipe.rpipe_printer import CommandPrinter
from rpipe.rpipe_process import Spawner, SubprocessSpawner, locate_rbin, r_arguments
from rpipe.rpipe_reader import ResponseReader
from rpipe.rpipe_recovery import HaltRecovery
from rpipe.rpipe_session import Session, SessionRegistry
from rpipe.rpipe_settings import OpenOptions, Settings
from rpipe.rpipe_transcript import Transcript, format_lines

ALL = "all"
RPIPE_VERSION = (0, 1, 0)

CHANNELS = ("output", "error")


class RSessions:
    """A registry of R sessions plus everything needed to drive them."""

    def __init__(self, settings: Optional[Settings] = None, spawner: Optional[Spawner] = None,
                 stdout=None, stderr=None, close_grace: float = 0.25):
        self.settings = settings or Settings()
        self.spawner = spawner or SubprocessSpawner()
        self.registry = SessionRegistry()
        self.printer = CommandPrinter(self.settings)
        self.reader = ResponseReader()
        self.engine = ProtocolEngine(self.settings, self.printer, self.reader)
        self.recovery = HaltRecovery(self.registry, self.engine, self._open_session,
                                     self.settings, stderr)
        self.close_grace = close_grace
        self._stdout = stdout
        self._stderr = stderr
        self._versions: Dict[str, Optional[Tuple[int, int, int]]] = {}

    @property
    def stdout(self):
        return self._stdout or sys.stdout

    @property
    def stderr(self):
        return self._stderr or sys.stderr

    async def __aenter__(self) -> "RSessions":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close(ALL)

    # ===================================================================
    # Opening and closing
    # ===================================================================

    async def open(self, options: Optional[Dict[str, Any]] = None, **kwargs) -> Any:
        """Opens a new session and returns its alias.

        Options may be passed as a mapping, as keyword arguments, or both:
        alias, assert_ ("a" or "z"), at_r_halt, copy=(target, what), rbin,
        with_ (environ, non_interactive, restore, save) and history.
        Settings' open_options fill in whatever is not given.
        """
        explicit = dict(options or {})
        explicit.update(kwargs)
        opts = OpenOptions.build(explicit, self.settings.open_options)
        session = await self._open_session(opts, opts.alias, False)
        return session.alias

    async def start(self) -> Any:
        """Opens a session only if none is open. Returns the default alias."""
        if len(self.registry):
            return self.registry.default().alias
        return await self.open()

    async def _open_session(self, options: OpenOptions, alias: Any, recovering: bool) -> Session:
        alias = self.registry.reserve(alias)
        transcript = None
        streams = None
        try:
            rbin = locate_rbin(options, self.settings)
            args, interactive = r_arguments(options)
            transcript = Transcript(*options.copy, recovering=recovering)
            self.settings.verbose(3, "r_process", rbin, args)
            streams = await self.spawner.spawn(rbin, args)
            await self.engine.handshake(alias, streams, interactive)
            version = await self._bin_version(rbin)
        except BaseException:
            self.registry.release(alias)
            if transcript is not None:
                transcript.close()
            raise
        session = Session(alias, streams, options, interactive, transcript, version)
        self.registry.add(session, at_tail=options.assert_ == "z")
        self.settings.verbose(1, "opened r session", alias)
        return session

    async def close(self, alias: Any = None) -> None:
        """Closes the default session, the named one, or every session with ALL."""
        if alias == ALL:
            for session in self.registry.pop_all():
                await self._close_session(session)
            return
        if alias is None:
            try:
                alias = self.registry.default().alias
            except UnknownSessionAlias:
                raise UnknownSessionAlias("no default open r session could be found to close")
        session = self.registry.remove(alias)
        await self._close_session(session)

    async def _close_session(self, session: Session) -> None:
        async with session.lock:
            quit_command = self.settings.quit_command
            await self.engine.write_line(session.streams, quit_command, session.alias)
            # Closing the pipes straight away can leave R spinning.
            await asyncio.sleep(self.close_grace)
            session.transcript.record_command(quit_command)
            session.transcript.close()
            await session.streams.aclose()
            session.history = None
        self.settings.verbose(1, "closed r session", session.alias)

    # ===================================================================
    # Commands
    # ===================================================================

    def _session(self, alias: Any) -> Session:
        return self.registry.resolve(alias)

    async def _submit(self, expr: Any, alias: Any) -> Exchange:
        session = self._session(alias)
        async with session.lock:
            if session not in list(self.registry):
                raise UnknownSessionAlias("session closed while waiting", session.alias)
            try:
                return await self.engine.submit(session, expr, self.recovery.recover)
            except SlaveHalted as e:
                self.lines_print(e.error, "error", self.stderr)
                raise

    async def send(self, expr: Any, alias: Any = None) -> Exchange:
        """Sends expr, printing its output and errors on the console."""
        exchange = await self._submit(expr, alias)
        self.lines_print(exchange.output, "output", self.stdout)
        self.lines_print(exchange.error, "error", self.stderr)
        return exchange

    async def push(self, expr: Any, alias: Any = None) -> bool:
        """Writes expr without consuming output or errors."""
        session = self._session(alias)
        text = self.printer.to_text(expr)
        async with session.lock:
            return await self.engine.push(session, text)

    async def out(self, expr: Any, alias: Any = None) -> List[str]:
        """Sends expr and returns its output lines; errors go to the console."""
        exchange = await self._submit(expr, alias)
        self.lines_print(exchange.error, "error", self.stderr)
        return exchange.output

    async def evaluate(self, expr: Any, alias: Any = None) -> Tuple[List[str], List[str]]:
        """Sends expr and returns (output lines, error lines)."""
        exchange = await self._submit(expr, alias)
        return exchange.output, exchange.error

    async def print_value(self, expr: Any, alias: Any = None) -> List[str]:
        lines = await self.out(expr, alias)
        self.lines_print(lines, "output", self.stdout)
        return lines

    async def read(self, expr: Any, alias: Any = None) -> ParsedValue:
        """Evaluates expr and parses what R prints for it."""
        return self.reader.read(await self.out(expr, alias))

    async def assign(self, dest: Any, expr: Any, alias: Any = None) -> Any:
        """`dest <- expr`. With a ResultSlot destination, returns the value read back."""
        await self.send(Assign(dest, expr), alias)
        if isinstance(dest, ResultSlot):
            return dest.value
        return None

    async def lib(self, library: str, alias: Any = None) -> Exchange:
        return await self.send(Call("library", [library]), alias)

    async def flush(self, alias: Any = None) -> None:
        """Prints whatever is waiting on the session's output and error."""
        output, errors = await self.flush_onto(list(CHANNELS), alias)
        self.lines_print(output, "output", self.stdout)
        self.lines_print(errors, "error", self.stderr)

    async def flush_onto(self, channels: Union[str, Sequence[str]], alias: Any = None):
        """Collects waiting lines for "output", "error" or a list of both."""
        single = isinstance(channels, str)
        wanted = [channels] if single else list(channels)
        for channel in wanted:
            if channel not in CHANNELS:
                raise OptionError("superfluous entries in input streams list", channels)
        if len(set(wanted)) != len(wanted):
            raise OptionError("duplicate entries in input streams list", channels)
        session = self._session(alias)
        async with session.lock:
            output, errors = await self.engine.flush(session)
        collected = {"output": output, "error": errors}
        if single:
            return collected[channels]
        return [collected[c] for c in wanted]

    # ===================================================================
    # Introspection
    # ===================================================================

    def history(self, alias: Any = None) -> List[str]:
        """Commands sent to the session, most recent first."""
        return list(self._session(alias).history or [])

    def print_history(self, alias: Any = None) -> None:
        session = self._session(alias)
        print(f"history({session.alias})", file=self.stdout)
        print("---", file=self.stdout)
        for command in reversed(session.history or []):
            print(command, file=self.stdout)
        print("---", file=self.stdout)

    def default_session(self) -> Any:
        return self.registry.default().alias

    def current_sessions(self) -> List[Any]:
        return self.registry.aliases()

    def session_data(self, key: str, alias: Any = None) -> Any:
        return self._session(alias).data(key)

    def bin(self, rbin: Optional[str] = None) -> Optional[str]:
        """Registers rbin as the R binary, or returns the binary open() would use."""
        if rbin is not None:
            self.settings.rbin = rbin
            return rbin
        return locate_rbin(OpenOptions(), self.settings)

    def retract_bin(self) -> None:
        self.settings.rbin = None

    async def bin_version(self, rbin: Optional[str] = None) -> Optional[Tuple[int, int, int]]:
        return await self._bin_version(rbin or self.bin())

    async def _bin_version(self, rbin: str) -> Optional[Tuple[int, int, int]]:
        if rbin not in self._versions:
            self._versions[rbin] = await self.spawner.version(rbin)
        return self._versions[rbin]

    @staticmethod
    def session_version() -> Tuple[int, int, int]:
        return RPIPE_VERSION

    def verbosity(self, level: Any = None) -> int:
        if level is None:
            return self.settings.verbosity
        return self.settings.set_verbosity(level)

    @staticmethod
    def lines_print(lines: Sequence[str], kind: str = "output", stream=None) -> None:
        """Writes lines to stream; error lines are prefixed with `!  `."""
        if stream is None:
            stream = sys.stderr if kind == "error" else sys.stdout
        text = format_lines(lines, kind)
        if text:
            stream.write(text)
            stream.flush()
