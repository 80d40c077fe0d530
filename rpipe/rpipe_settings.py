"""
Configuration for rpipe sessions.

Settings are plain data read from YAML. They carry the registered R binary,
the verbosity level, open options appended to every `open`, per-function
default arguments, names that expand to no-argument calls, and the
templates used for the sentinel commands.
"""
from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import pystache
import yaml

from rpipe.rpipe_datatypes import OptionError

DEFAULT_TEMPLATES = {
    "error_sentinel": 'message("{{marker}}")',
    "error_terminator": "{{marker}}",
    "output_sentinel": 'print("{{marker}}")',
    "output_terminator": '[1] "{{marker}}"',
    "quit": "q()",
}

SENTINEL_MARKER = "rpipe_eoc"
HALT_LINE = "Execution halted"

WITH_FLAGS = ("environ", "non_interactive", "restore", "save")
COPY_WHAT = ("both", "in", "out", "none")


def coerce_verbosity(level: Any, warn: Callable[[str], None] = None) -> int:
    """Maps true/false/0..3 onto an integer level, clamping out-of-range ints."""
    if level is True:
        return 3
    if level is False or level is None:
        return 0
    if isinstance(level, str) and level.strip().lstrip("-").isdigit():
        level = int(level)
    if not isinstance(level, int):
        raise OptionError("Unknown verbosity level. Use : true, false, 0-3", level)
    if level < 0:
        if warn:
            warn("Adjusting verbosity level to = 0.")
        return 0
    if level > 3:
        if warn:
            warn("Adjusting verbosity level to = 3.")
        return 3
    return level


# ===================================================================
# Halt policy
# ===================================================================

class HaltPolicy:
    """What to do when the slave halts mid-command. Never mutated once set."""
    ABORT = "abort"
    FAIL = "fail"
    RESTART = "restart"
    REINSTATE = "reinstate"
    INVOKE = "call"
    INVOKE_GROUND = "call_ground"

    _KINDS = (ABORT, FAIL, RESTART, REINSTATE, INVOKE, INVOKE_GROUND)

    def __init__(self, kind: str, handler: Optional[Callable] = None):
        if kind not in self._KINDS:
            raise OptionError("Cannot decipher argument to at_r_halt option", kind)
        if kind in (self.INVOKE, self.INVOKE_GROUND) and not callable(handler):
            raise OptionError("at_r_halt handler must be callable", kind)
        self.kind = kind
        self.handler = handler

    @classmethod
    def invoke(cls, handler: Callable) -> "HaltPolicy":
        """Hand control to handler(alias, streams)."""
        return cls(cls.INVOKE, handler)

    @classmethod
    def invoke_ground(cls, handler: Callable) -> "HaltPolicy":
        """Hand control to handler() with no access to the dead streams."""
        return cls(cls.INVOKE_GROUND, handler)

    @classmethod
    def parse(cls, value: Any) -> "HaltPolicy":
        if isinstance(value, HaltPolicy):
            return value
        if value is None:
            return cls(cls.FAIL)
        if isinstance(value, str) and value in (cls.ABORT, cls.FAIL, cls.RESTART, cls.REINSTATE):
            return cls(value)
        raise OptionError("Cannot decipher argument to at_r_halt option", value)

    def __eq__(self, other):
        return isinstance(other, HaltPolicy) and self.kind == other.kind and self.handler is other.handler

    def __hash__(self):
        return hash((self.kind, id(self.handler)))

    def __repr__(self) -> str:
        if self.handler is not None:
            return f"HaltPolicy({self.kind!r}, {getattr(self.handler, '__name__', self.handler)!r})"
        return f"HaltPolicy({self.kind!r})"


# ===================================================================
# Open options
# ===================================================================

@dataclass
class OpenOptions:
    """The exact options a session was opened with, kept for respawning."""
    alias: Any = None
    assert_: str = "a"
    at_r_halt: HaltPolicy = field(default_factory=lambda: HaltPolicy(HaltPolicy.FAIL))
    copy: Tuple[Any, str] = (None, "none")
    rbin: Optional[str] = None
    with_: Tuple[str, ...] = ()
    history: bool = True

    @classmethod
    def build(cls, explicit: Optional[Dict[str, Any]] = None,
              inherited: Optional[Dict[str, Any]] = None) -> "OpenOptions":
        """Explicit options win; inherited (settings) options fill the gaps.

        `with` flags accumulate from both sources, as a repeated option would.
        """
        explicit = _normalize_keys(explicit or {})
        inherited = _normalize_keys(inherited or {})
        merged = dict(inherited)
        merged.update(explicit)
        withs = list(_as_list(explicit.get("with_"))) + list(_as_list(inherited.get("with_")))
        merged["with_"] = withs

        unknown = set(merged) - {"alias", "assert_", "at_r_halt", "copy", "rbin", "with_", "history"}
        if unknown:
            raise OptionError("Unknown open option", sorted(unknown)[0])

        assert_ = merged.get("assert_", "a")
        if assert_ not in ("a", "z"):
            raise OptionError("Cannot decipher argument to assert/1 option", assert_)

        for w in withs:
            if w not in WITH_FLAGS:
                raise OptionError("Cannot decipher argument to option with/1", w)
        if len(set(withs)) != len(withs):
            raise OptionError("Multiple identical args in with/1 option", withs)

        copy = merged.get("copy") or (None, "none")
        if not isinstance(copy, (tuple, list)) or len(copy) != 2:
            raise OptionError("copy option expects (target, what)", copy)
        target, what = copy
        if what not in COPY_WHAT:
            raise OptionError("I cannot decipher 2nd arg. to copy/2 option", what)

        policy = HaltPolicy.parse(merged.get("at_r_halt"))
        history = bool(merged.get("history", True)) or policy.kind == HaltPolicy.REINSTATE

        return cls(
            alias=merged.get("alias"),
            assert_=assert_,
            at_r_halt=policy,
            copy=(target, what),
            rbin=merged.get("rbin"),
            with_=tuple(withs),
            history=history,
        )


def _normalize_keys(opts: Dict[str, Any]) -> Dict[str, Any]:
    out = {}
    for key, value in opts.items():
        key = {"with": "with_", "assert": "assert_"}.get(key, key)
        out[key] = value
    return out


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


# ===================================================================
# Settings
# ===================================================================

class Settings:
    """Process-scoped configuration shared by a RSessions registry."""

    def __init__(self, rbin: Optional[str] = None, verbosity: Any = None,
                 open_options: Optional[Dict[str, Any]] = None,
                 function_defaults: Optional[Dict[str, Any]] = None,
                 no_arg_functions: Optional[List[str]] = None,
                 templates: Optional[Dict[str, str]] = None,
                 stderr=None):
        self.rbin = rbin
        self._stderr = stderr
        if verbosity is None:
            verbosity = os.environ.get("RPIPE_VERBOSITY", 0)
        self.verbosity = coerce_verbosity(verbosity, self._notice)
        self.open_options: Dict[str, Any] = dict(open_options or {})
        self.function_defaults: Dict[str, List[Tuple[str, Any]]] = {}
        for fn, defaults in (function_defaults or {}).items():
            self.add_function_default(fn, defaults)
        self.no_arg_functions = set(no_arg_functions or [])
        self.templates = dict(DEFAULT_TEMPLATES)
        self.templates.update(templates or {})
        self._renderer = pystache.Renderer(escape=lambda u: u)

    @classmethod
    def from_mapping(cls, data: Optional[Dict[str, Any]], **kwargs) -> "Settings":
        data = dict(data or {})
        known = {"rbin", "verbosity", "open_options", "function_defaults", "no_arg_functions", "templates"}
        unknown = set(data) - known
        if unknown:
            raise OptionError("Unknown setting", sorted(unknown)[0])
        data.update(kwargs)
        return cls(**data)

    @classmethod
    def from_file(cls, path, **kwargs) -> "Settings":
        text = Path(path).read_text(encoding="utf-8")
        return cls.from_mapping(yaml.safe_load(text) or {}, **kwargs)

    # --- function defaults -------------------------------------------------

    def add_function_default(self, fn: str, defaults: Any) -> None:
        """Registers `name=value` defaults for R function `fn`, keeping order."""
        pairs = self.function_defaults.setdefault(fn, [])
        if isinstance(defaults, dict):
            items = list(defaults.items())
        elif isinstance(defaults, (list, tuple)):
            items = []
            for d in defaults:
                if isinstance(d, dict):
                    items.extend(d.items())
                elif isinstance(d, (list, tuple)) and len(d) == 2:
                    items.append((d[0], d[1]))
                else:
                    raise OptionError("Only Arg=Value pairs are allowed as function defaults", fn)
        else:
            raise OptionError("Only Arg=Value pairs are allowed as function defaults", fn)
        pairs.extend((str(k), v) for k, v in items)

    def defaults_for(self, fn: str) -> List[Tuple[str, Any]]:
        return list(self.function_defaults.get(fn, []))

    def is_no_arg_function(self, name: str) -> bool:
        return name in self.no_arg_functions

    # --- templates -----------------------------------------------------------

    def render(self, template_name: str, marker: str = SENTINEL_MARKER) -> str:
        return self._renderer.render(self.templates[template_name], {"marker": marker})

    @property
    def error_sentinel(self) -> str:
        return self.render("error_sentinel")

    @property
    def error_terminator(self) -> str:
        return self.render("error_terminator")

    @property
    def output_sentinel(self) -> str:
        return self.render("output_sentinel")

    @property
    def output_terminator(self) -> str:
        return self.render("output_terminator")

    @property
    def quit_command(self) -> str:
        return self.render("quit")

    # --- verbosity -----------------------------------------------------------

    def set_verbosity(self, level: Any) -> int:
        self.verbosity = coerce_verbosity(level, self._notice)
        return self.verbosity

    def verbose(self, cutoff: int, *parts: Any) -> None:
        """Prints parts on stderr when the verbosity level reaches cutoff."""
        if cutoff > self.verbosity:
            return
        print("[rpipe]", *parts, file=self._stderr or sys.stderr)

    def _notice(self, message: str) -> None:
        print(message, file=self._stderr or sys.stderr)
