import collections
from typing import Callable, Dict, List, Optional

import pytest

from rpipe.rpipe_process import SlaveStreams, Spawner
from rpipe.rpipe_runtime import RSessions
from rpipe.rpipe_settings import Settings

ERROR_SENTINEL = 'message("rpipe_eoc")'
OUTPUT_SENTINEL = 'print("rpipe_eoc")'
OUTPUT_TERMINATOR = '[1] "rpipe_eoc"'


class FakeReader:
    """A stdout/stderr pipe fed synchronously by FakeSlave."""

    def __init__(self, name: str):
        self.name = name
        self.lines = collections.deque()
        self.eof = False

    def feed(self, line: str) -> None:
        self.lines.append(f"{line}\n".encode("utf-8"))

    def feed_eof(self) -> None:
        self.lines.append(b"")

    async def readline(self) -> bytes:
        if self.eof:
            return b""
        if not self.lines:
            raise AssertionError(f"fake slave has nothing more to say on {self.name}")
        data = self.lines.popleft()
        if data == b"":
            self.eof = True
        return data


class FakeWriter:
    def __init__(self, slave: "FakeSlave"):
        self.slave = slave
        self.buffer = ""
        self.closed = False

    def write(self, data: bytes) -> None:
        if self.slave.dead:
            raise BrokenPipeError("slave is gone")
        self.buffer += data.decode("utf-8")
        while "\n" in self.buffer:
            line, self.buffer = self.buffer.split("\n", 1)
            self.slave.handle(line)

    async def drain(self) -> None:
        return None

    def close(self) -> None:
        self.closed = True


class FakeSlave:
    """Scripted stand-in for an R process.

    `responses` maps a command line to its output lines, to a dict with
    "output" and "error" lists, or to a callable returning either.
    Commands listed in `halt_on` make the slave print `halt_output` on
    stdout, then the halt line, and die. `banner` lines wait on stdout
    from the start.
    """

    def __init__(self, responses: Optional[Dict[str, object]] = None, interactive: bool = True,
                 halt_on=(), open_errors: Optional[List[str]] = None,
                 echo_override: Optional[Callable[[str], str]] = None,
                 halt_output: Optional[List[str]] = None, banner: Optional[List[str]] = None,
                 error_sentinel: str = ERROR_SENTINEL, error_answer: str = "rpipe_eoc"):
        self.responses = dict(responses or {})
        self.interactive = interactive
        self.halt_on = set(halt_on)
        self.open_errors = list(open_errors or [])
        self.echo_override = echo_override
        self.halt_output = list(halt_output or [])
        self.error_sentinel = error_sentinel
        self.error_answer = error_answer
        self.received: List[str] = []
        self.dead = False
        self.out = FakeReader("stdout")
        self.err = FakeReader("stderr")
        self.stdin = FakeWriter(self)
        self._opened = False
        for line in banner or []:
            self.out.feed(line)

    @property
    def commands(self) -> List[str]:
        """Received lines other than sentinels."""
        return [c for c in self.received if c not in (self.error_sentinel, OUTPUT_SENTINEL)]

    def streams(self) -> SlaveStreams:
        return SlaveStreams(self.stdin, self.out, self.err)

    def _die(self) -> None:
        self.dead = True
        self.out.feed_eof()
        self.err.feed_eof()

    def handle(self, line: str) -> None:
        self.received.append(line)
        if self.interactive:
            self.out.feed(self.echo_override(line) if self.echo_override else line)
        if line == self.error_sentinel:
            if not self._opened:
                self._opened = True
                for error in self.open_errors:
                    self.err.feed(error)
            self.err.feed(self.error_answer)
            return
        if line == OUTPUT_SENTINEL:
            self.out.feed(OUTPUT_TERMINATOR)
            return
        if line == "q()":
            self._die()
            return
        if line in self.halt_on:
            for out_line in self.halt_output:
                self.out.feed(out_line)
            self.err.feed("Error: object 'boom' not found")
            self.err.feed("Execution halted")
            self._die()
            return
        response = self.responses.get(line, [])
        if callable(response):
            response = response(line)
        if isinstance(response, dict):
            output, errors = response.get("output", []), response.get("error", [])
        else:
            output, errors = response, []
        for out_line in output:
            self.out.feed(out_line)
        for err_line in errors:
            self.err.feed(err_line)


class FakeSpawner(Spawner):
    """Hands out FakeSlaves built by `factory`, one per spawn."""

    def __init__(self, factory: Optional[Callable[[], FakeSlave]] = None, version=(4, 3, 1)):
        self.factory = factory or FakeSlave
        self.slaves: List[FakeSlave] = []
        self.spawned = []
        self.version_calls = 0
        self._version = version

    async def spawn(self, executable, args):
        self.spawned.append((executable, list(args)))
        slave = self.factory()
        if "--interactive" not in args:
            slave.interactive = False
        self.slaves.append(slave)
        return slave.streams()

    async def version(self, executable):
        self.version_calls += 1
        return self._version


@pytest.fixture
def spawner():
    return FakeSpawner()


@pytest.fixture
def settings():
    return Settings(rbin="/opt/R/bin/R", verbosity=0)


@pytest.fixture
def sessions(settings, spawner):
    return RSessions(settings=settings, spawner=spawner, close_grace=0)
