"""
Defines the core data types for the rpipe runtime.

This module provides the expression node classes that are serialized into
R command text, the result slots that receive values read back from R, the
parsed-value classes produced by the response reader, and the error
taxonomy shared by every layer.
"""

from dataclasses import dataclass, field
from typing import List, Any, Optional, Tuple, Union

# =================================================================
# Errors
# =================================================================

class RSessionError(Exception):
    """Base class for every error raised on behalf of an R session."""
    def __init__(self, message: str, alias: Any = None):
        super().__init__(message)
        self.message = message
        self.alias = alias

    def format_error(self) -> str:
        if self.alias is None:
            return f"{type(self).__name__}: {self.message}"
        return f"{type(self).__name__}: {self.message}: {self.alias}"


class ProtocolDesync(RSessionError):
    """An interactive echo did not match what was sent; the session is out of step."""


class SlaveHalted(RSessionError):
    """R printed the halt line while a command was running."""
    def __init__(self, message: str, alias: Any = None, policy: str = "fail",
                 recovered: bool = False, output: Optional[List[str]] = None,
                 error: Optional[List[str]] = None):
        super().__init__(message, alias)
        self.policy = policy
        self.recovered = recovered
        self.output = list(output or [])
        self.error = list(error or [])


class MalformedResponse(RSessionError):
    """The reader could not match printed output against any known shape."""


class UnknownSessionAlias(RSessionError):
    """Lookup against an alias that is closed or was never opened."""


class ReinstateFailed(RSessionError):
    """No history was available (or replay halted) when reinstating a session."""


class SessionOpenError(RSessionError):
    """The slave could not be started or did not complete the open handshake."""


class OptionError(RSessionError):
    """An open option or setting could not be deciphered."""
    def __init__(self, message: str, which: Any = None):
        super().__init__(message)
        self.which = which

    def format_error(self) -> str:
        return f"OptionError: {self.message}: {self.which!r}"


class SerializationUnsupported(RSessionError):
    """Reserved. The printer passes unknown constructs through as text instead."""


# =================================================================
# Aliases and result slots
# =================================================================

@dataclass(frozen=True)
class GeneratedAlias:
    """Opaque alias handed out when a session is opened without one."""
    index: int

    def __str__(self) -> str:
        return f"$rsalias({self.index})"


class ResultSlot:
    """An unbound destination. Assigning into it asks for the R value back.

    The slot stays unbound until the command that mentions it completes;
    the runtime then prints the minted R variable, parses the output and
    binds the parsed value here.
    """
    _UNSET = object()

    def __init__(self, name: Optional[str] = None):
        self.name = name
        self._value = ResultSlot._UNSET

    @property
    def bound(self) -> bool:
        return self._value is not ResultSlot._UNSET

    @property
    def value(self) -> Any:
        if not self.bound:
            raise ValueError(f"result slot {self.name or id(self)} is unbound")
        return self._value

    def bind(self, value: Any) -> None:
        if self.bound:
            raise ValueError(f"result slot {self.name or id(self)} is already bound")
        self._value = value

    def __repr__(self) -> str:
        state = repr(self._value) if self.bound else "unbound"
        return f"<ResultSlot {self.name or hex(id(self))} {state}>"


# =================================================================
# Expression nodes
# =================================================================

class Expr:
    """Marker base class for all R expression nodes."""
    pass


class Literal(Expr):
    """A number, boolean, NULL (None) or a string that must be quoted for R."""
    def __init__(self, value: Union[int, float, str, bool, None]):
        self.value = value

    def __repr__(self) -> str:
        return f"Literal({self.value!r})"

    def __eq__(self, other):
        return isinstance(other, Literal) and type(self.value) is type(other.value) and self.value == other.value

    def __hash__(self):
        return hash((Literal, self.value))


class Symbol(Expr):
    """An R name. `call=True` forces rendering as a no-argument call."""
    def __init__(self, name: str, call: bool = False):
        self.name = name
        self.call = call

    def __repr__(self) -> str:
        suffix = ", call=True" if self.call else ""
        return f"Symbol({self.name!r}{suffix})"

    def __eq__(self, other):
        return isinstance(other, Symbol) and self.name == other.name and self.call == other.call

    def __hash__(self):
        return hash((Symbol, self.name, self.call))


class RList(Expr):
    """An ordered sequence of values, rendered as a combine call `c(...)`."""
    def __init__(self, items: List[Any]):
        self.items = list(items)

    def __iter__(self):
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)

    def __repr__(self) -> str:
        return f"RList({self.items!r})"

    def __eq__(self, other):
        return isinstance(other, RList) and self.items == other.items


class Option(Expr):
    """A `name=value` pair, used for named call arguments."""
    def __init__(self, name: str, value: Any):
        self.name = name
        self.value = value

    def __repr__(self) -> str:
        return f"Option({self.name!r}, {self.value!r})"

    def __eq__(self, other):
        return isinstance(other, Option) and self.name == other.name and self.value == other.value


class Call(Expr):
    """A function call. Positional args are expressions; named args are Options."""
    def __init__(self, fn: Union[str, Symbol], args: Optional[List[Any]] = None):
        self.fn = fn.name if isinstance(fn, Symbol) else fn
        self.args = list(args or [])

    @property
    def named(self) -> List[str]:
        return [a.name for a in self.args if isinstance(a, Option)]

    def __repr__(self) -> str:
        return f"Call({self.fn!r}, {self.args!r})"

    def __eq__(self, other):
        return isinstance(other, Call) and self.fn == other.fn and self.args == other.args


class Infix(Expr):
    """A binary operator application that R itself parses as infix."""
    def __init__(self, op: str, lhs: Any, rhs: Any):
        self.op = op
        self.lhs = lhs
        self.rhs = rhs

    def __repr__(self) -> str:
        return f"Infix({self.op!r}, {self.lhs!r}, {self.rhs!r})"

    def __eq__(self, other):
        return (isinstance(other, Infix) and self.op == other.op
                and self.lhs == other.lhs and self.rhs == other.rhs)


class Assign(Expr):
    """`dest <- expr`. An unbound ResultSlot destination asks for the value back."""
    def __init__(self, dest: Any, expr: Any):
        self.dest = dest
        self.expr = expr

    def __repr__(self) -> str:
        return f"Assign({self.dest!r}, {self.expr!r})"

    def __eq__(self, other):
        # ResultSlot compares by identity.
        return isinstance(other, Assign) and self.dest == other.dest and self.expr == other.expr


class Seq(Expr):
    """Statements sent as one command line, joined with `; `."""
    def __init__(self, items: List[Any]):
        self.items = list(items)

    def __iter__(self):
        return iter(self.items)

    def __repr__(self) -> str:
        return f"Seq({self.items!r})"

    def __eq__(self, other):
        return isinstance(other, Seq) and self.items == other.items


def call(fn: Union[str, Symbol], *args: Any, **options: Any) -> Call:
    """Convenience constructor: `call("rnorm", 50, mean=1)`."""
    opts = [Option(name, value) for name, value in options.items()]
    return Call(fn, list(args) + opts)


@dataclass(frozen=True)
class Replacement:
    """A deferred binding of `slot` to the value of R variable `var_name`."""
    slot: ResultSlot
    var_name: str


# =================================================================
# Parsed values
# =================================================================

Token = str


@dataclass(frozen=True)
class Scalar:
    token: Token


@dataclass(frozen=True)
class Vector:
    tokens: Tuple[Token, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "tokens", tuple(self.tokens))

    def __len__(self) -> int:
        return len(self.tokens)


@dataclass(frozen=True)
class NamedList:
    entries: Tuple[Tuple[str, Any], ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "entries", tuple((k, v) for k, v in self.entries))

    def names(self) -> List[str]:
        return [k for k, _ in self.entries]

    def __getitem__(self, name: str) -> Any:
        for key, value in self.entries:
            if key == name:
                return value
        raise KeyError(name)


@dataclass(frozen=True)
class Table:
    row_names: Tuple[Union[str, int], ...] = ()
    col_names: Tuple[Union[str, int], ...] = ()
    cells: Tuple[Tuple[Token, ...], ...] = field(default_factory=tuple)

    def __post_init__(self):
        object.__setattr__(self, "row_names", tuple(self.row_names))
        object.__setattr__(self, "col_names", tuple(self.col_names))
        object.__setattr__(self, "cells", tuple(tuple(row) for row in self.cells))


ParsedValue = Union[Scalar, Vector, NamedList, Table]


@dataclass
class Exchange:
    """Output and error lines captured for exactly one submitted command."""
    command: str
    output: List[str] = field(default_factory=list)
    error: List[str] = field(default_factory=list)
    halted: bool = False
    # Set when a halt handler took over; holds what the handler returned.
    outcome: Any = None
