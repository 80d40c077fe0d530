import pytest
from rpipe.rpipe_process import (
    SlaveStreams, SubprocessSpawner, locate_rbin, parse_version, r_arguments
)
from rpipe.rpipe_settings import OpenOptions, Settings
from rpipe.rpipe_datatypes import SessionOpenError


def test_parse_version():
    text = 'R version 4.3.1 (2023-06-16) -- "Beagle Scouts"\nCopyright (C) 2023'
    assert parse_version(text) == (4, 3, 1)
    assert parse_version("no version here") is None


@pytest.mark.parametrize("with_, expected, interactive", [
    ((), ["--interactive", "--slave", "--no-environ", "--no-restore", "--no-save"], True),
    (("non_interactive",), ["--slave", "--no-environ", "--no-restore", "--no-save"], False),
    (("save", "environ"), ["--interactive", "--slave", "--no-restore"], True),
])
def test_r_arguments(with_, expected, interactive):
    args, is_interactive = r_arguments(OpenOptions(with_=with_), windows=False)
    assert args == expected
    assert is_interactive is interactive


def test_r_arguments_windows():
    args, interactive = r_arguments(OpenOptions(), windows=True)
    assert args == ["--ess", "--slave", "--no-environ", "--no-restore", "--no-save"]
    assert interactive is False


def test_locate_rbin_order(monkeypatch):
    monkeypatch.setenv("R_BIN", "/env/R")
    monkeypatch.setattr("shutil.which", lambda name: "/path/R")
    settings = Settings(rbin="/registered/R", verbosity=0)
    assert locate_rbin(OpenOptions(rbin="/explicit/R"), settings) == "/explicit/R"
    assert locate_rbin(OpenOptions(), settings) == "/registered/R"
    settings.rbin = None
    assert locate_rbin(OpenOptions(), settings) == "/env/R"
    monkeypatch.delenv("R_BIN")
    assert locate_rbin(OpenOptions(), settings) == "/path/R"


def test_locate_rbin_nothing_found(monkeypatch):
    monkeypatch.delenv("R_BIN", raising=False)
    monkeypatch.setattr("shutil.which", lambda name: None)
    with pytest.raises(SessionOpenError):
        locate_rbin(OpenOptions(), Settings(verbosity=0))


class _Closable:
    def __init__(self):
        self.closed = False

    def close(self):
        self.closed = True


class _Process:
    def __init__(self, returncode=None):
        self.returncode = returncode
        self.killed = False
        self.waited = False

    def kill(self):
        self.killed = True
        self.returncode = -9

    async def wait(self):
        self.waited = True
        return self.returncode


@pytest.mark.asyncio
async def test_streams_aclose_kills_live_process():
    stdin, process = _Closable(), _Process()
    await SlaveStreams(stdin, None, None, process).aclose()
    assert stdin.closed
    assert process.killed and process.waited


@pytest.mark.asyncio
async def test_streams_aclose_leaves_exited_process():
    process = _Process(returncode=0)
    await SlaveStreams(_Closable(), None, None, process).aclose()
    assert not process.killed
    assert process.waited


@pytest.mark.asyncio
async def test_spawn_missing_binary_raises_open_error(tmp_path):
    missing = str(tmp_path / "no-such-R")
    with pytest.raises(SessionOpenError):
        await SubprocessSpawner().spawn(missing, ["--slave"])
    assert await SubprocessSpawner().version(missing) is None
