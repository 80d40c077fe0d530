"""
The command/response protocol spoken with an R slave.

R gives no framing on its pipes, so every command is followed by two
sentinel commands: one that R answers on stderr and one that it answers on
stdout. Reading a channel up to its sentinel's answer yields exactly the
lines produced by the command. When R dies mid-command it prints the halt
line on stderr instead, and no sentinel ever arrives.

In interactive mode R echoes every input line on stdout. The echo of the
command itself is consumed immediately; the echoes of the sentinel commands
are remembered as pending and dropped when they turn up.
"""
from __future__ import annotations

from typing import Any, Awaitable, Callable, List, Optional, Tuple

from rpipe.rpipe_datatypes import (
    Exchange, ProtocolDesync, SessionOpenError, ParsedValue
)
from rpipe.rpipe_printer import CommandPrinter
from rpipe.rpipe_process import SlaveStreams
from rpipe.rpipe_reader import ResponseReader
from rpipe.rpipe_session import Session
from rpipe.rpipe_settings import Settings, HALT_LINE

HaltHandler = Callable[[Session, Exchange], Awaitable[Exchange]]

_WRITE_ERRORS = (BrokenPipeError, ConnectionResetError)


class ProtocolEngine:
    """Writes commands to a session and reads back their framed output."""

    def __init__(self, settings: Settings, printer: Optional[CommandPrinter] = None,
                 reader: Optional[ResponseReader] = None):
        self.settings = settings
        self.printer = printer or CommandPrinter(settings)
        self.reader = reader or ResponseReader()

    # ===================================================================
    # Line I/O
    # ===================================================================

    async def write_line(self, streams: SlaveStreams, text: str, alias: Any = None) -> bool:
        """Writes one line. Returns False when the input pipe is already broken."""
        try:
            streams.input.write(f"{text}\n".encode("utf-8"))
            await streams.input.drain()
        except _WRITE_ERRORS as e:
            self.settings.verbose(2, "write failed on", alias, repr(text), type(e).__name__)
            return False
        return True

    @staticmethod
    async def read_line(reader) -> Optional[str]:
        data = await reader.readline()
        if not data:
            return None
        return data.decode("utf-8", errors="replace").rstrip("\r\n")

    async def _read_until(self, reader, terminator: Optional[str], pending: List[str],
                          watch_halt: bool = False) -> Tuple[List[str], bool]:
        """Reads lines up to terminator (exclusive), end of stream or the halt line.

        Lines equal to a pending echo are dropped, each echo once. Returns
        (lines, halted).
        """
        lines: List[str] = []
        while True:
            line = await self.read_line(reader)
            if line is None:
                return lines, False
            if terminator is not None and line == terminator:
                return lines, False
            if watch_halt and line == HALT_LINE:
                return lines, True
            if line in pending:
                pending.remove(line)
                continue
            lines.append(line)

    async def _consume_echo(self, session_alias: Any, streams: SlaveStreams, expected: str) -> None:
        found = await self.read_line(streams.output)
        if found != expected:
            raise ProtocolDesync(
                f"could not consume specific echo line {expected!r}, found {found!r}", session_alias)

    # ===================================================================
    # Channel synchronisation
    # ===================================================================

    async def read_error_channel(self, session: Session) -> Tuple[List[str], bool, List[str]]:
        """Sends the error sentinel and reads stderr up to it.

        Returns (error lines, halted, echoes now pending on stdout).
        """
        sentinel = self.settings.error_sentinel
        await self.write_line(session.streams, sentinel, session.alias)
        lines, halted = await self._read_until(
            session.streams.error, self.settings.error_terminator, [], watch_halt=True)
        pending = [sentinel] if session.interactive else []
        return lines, halted, pending

    async def read_output_channel(self, session: Session, pending: List[str]) -> List[str]:
        """Sends the output sentinel and reads stdout up to its printed form."""
        sentinel = self.settings.output_sentinel
        await self.write_line(session.streams, sentinel, session.alias)
        if session.interactive:
            pending.append(sentinel)
        lines, _ = await self._read_until(
            session.streams.output, self.settings.output_terminator, pending)
        if pending:
            raise ProtocolDesync(
                f"{len(pending)} expected echo line(s) not found in output: {pending!r}", session.alias)
        return lines

    async def drain_output(self, session: Session) -> List[str]:
        """Reads stdout to end of stream. Only used once the slave is dying."""
        lines, _ = await self._read_until(session.streams.output, None, [])
        return lines

    async def flush(self, session: Session) -> Tuple[List[str], List[str]]:
        """Collects whatever is waiting on both channels. Returns (output, error)."""
        errors, _, pending = await self.read_error_channel(session)
        output = await self.read_output_channel(session, pending)
        return output, errors

    async def handshake(self, alias: Any, streams: SlaveStreams, interactive: bool) -> None:
        """Checks a freshly spawned slave answers the error sentinel cleanly."""
        sentinel = self.settings.error_sentinel
        wrote = await self.write_line(streams, sentinel, alias)
        lines: List[str] = []
        if wrote:
            lines, halted = await self._read_until(
                streams.error, self.settings.error_terminator, [], watch_halt=True)
            if not halted and interactive:
                await self._consume_echo(alias, streams, sentinel)
            if halted:
                lines.append(HALT_LINE)
        if not wrote or lines:
            for line in lines:
                self.settings.verbose(0, f"!  {line}")
            await streams.aclose()
            raise SessionOpenError("failed to open session", alias)

    # ===================================================================
    # Commands
    # ===================================================================

    async def push(self, session: Session, command: str) -> bool:
        """Writes a command without reading anything back."""
        wrote = await self.write_line(session.streams, command, session.alias)
        session.transcript.record_command(command)
        return wrote

    async def exchange(self, session: Session, command: str) -> Exchange:
        """Sends one command line and collects its framed output and errors."""
        self.settings.verbose(3, "->", session.alias, command)
        streams = session.streams
        wrote = await self.write_line(streams, command, session.alias)
        if wrote and session.interactive:
            await self._consume_echo(session.alias, streams, command)
        session.transcript.record_command(command)

        errors, halted, pending = await self.read_error_channel(session)
        if halted:
            output = await self.drain_output(session)
        else:
            output = await self.read_output_channel(session, pending)

        session.transcript.record_lines(output, "output")
        session.transcript.record_lines(errors, "error")
        if not halted:
            session.record_history(command)
        self.settings.verbose(3, "<-", session.alias, f"{len(output)} output, {len(errors)} error line(s)",
                              "(halted)" if halted else "")
        return Exchange(command, output, errors, halted)

    async def submit(self, session: Session, expr: Any, on_halt: HaltHandler) -> Exchange:
        """Serializes expr, exchanges it, then resolves any replacement obligations.

        A halt at any point is handed to on_halt, whose result is returned.
        """
        text, replacements, _ = self.printer.serialize(expr)
        result = await self.exchange(session, text)
        if result.halted:
            return await on_halt(session, result)
        for replacement in replacements:
            lookup = await self.exchange(session, replacement.var_name)
            if lookup.halted:
                return await on_halt(session, lookup)
            replacement.slot.bind(self.read_value(lookup.output))
        return result

    def read_value(self, lines: List[str]) -> ParsedValue:
        return self.reader.read(lines)
