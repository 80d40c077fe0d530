from rpipe.rpipe_datatypes import (
    RSessionError, ProtocolDesync, SlaveHalted, MalformedResponse, UnknownSessionAlias,
    ReinstateFailed, SessionOpenError, OptionError, SerializationUnsupported,
    GeneratedAlias, ResultSlot, Literal, Symbol, RList, Option, Call, Infix, Assign, Seq,
    call, Scalar, Vector, NamedList, Table, Exchange
)
from rpipe.rpipe_settings import Settings, OpenOptions, HaltPolicy
from rpipe.rpipe_process import Spawner, SubprocessSpawner, SlaveStreams
from rpipe.rpipe_reader import read_response
from rpipe.rpipe_runtime import RSessions, ALL, RPIPE_VERSION

__version__ = ".".join(str(n) for n in RPIPE_VERSION)
