"""
Formats rpipe expression nodes into R command text.
"""
import math
from typing import Any, List, Optional, Tuple

from rpipe.rpipe_datatypes import (
    Literal, Symbol, RList, Option, Call, Infix, Assign, Seq,
    ResultSlot, Replacement, Scalar, Vector
)
from rpipe.rpipe_settings import Settings

PLACEHOLDER_PREFIX = "pl_Rv_"


def escape_for_r_string(value: str) -> str:
    value = value.replace("\\", "\\\\")
    value = value.replace('"', r'\"')
    value = value.replace("\n", r"\n")
    return value


class _PrintState:
    """Per-command state: the placeholder counter and queued replacements."""
    __slots__ = ("counter", "replacements")

    def __init__(self, counter: int):
        self.counter = counter
        self.replacements: List[Replacement] = []

    def mint(self, slot: ResultSlot) -> str:
        name = f"{PLACEHOLDER_PREFIX}{self.counter}"
        self.counter += 1
        self.replacements.append(Replacement(slot, name))
        return name


class CommandPrinter:
    """Formats expressions into single-line R source."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or Settings(verbosity=0)
        self._handlers = self._create_handlers()

    def serialize(self, expr: Any, counter: int = 0) -> Tuple[str, List[Replacement], int]:
        """Returns (text, replacement obligations, next counter)."""
        state = _PrintState(counter)
        text = self.pformat(expr, state)
        return text, state.replacements, state.counter

    def to_text(self, expr: Any) -> str:
        """Formats an expression, discarding any replacement obligations."""
        return self.serialize(expr)[0]

    def pformat(self, obj: Any, state: _PrintState) -> str:
        handler = self._get_handler(obj)
        return handler(obj, state)

    def _get_handler(self, obj):
        obj_type = type(obj)
        if obj_type in self._handlers:
            return self._handlers[obj_type]
        if isinstance(obj, tuple):
            return self._pformat_list
        # Anything else passes through as its literal text.
        return lambda o, s: str(o)

    def _create_handlers(self):
        return {
            str: self._pformat_raw,
            int: self._pformat_number,
            float: self._pformat_number,
            bool: self._pformat_bool,
            type(None): self._pformat_none,
            list: self._pformat_list,
            Literal: self._pformat_literal,
            Symbol: self._pformat_symbol,
            RList: self._pformat_rlist,
            Option: self._pformat_option,
            Call: self._pformat_call,
            Infix: self._pformat_infix,
            Assign: self._pformat_assign,
            Seq: self._pformat_seq,
            ResultSlot: self._pformat_slot,
            Scalar: self._pformat_scalar,
            Vector: self._pformat_vector,
        }

    # --- primitives ----------------------------------------------------------

    def _pformat_raw(self, obj, state):
        return obj

    def _pformat_number(self, obj, state):
        if isinstance(obj, float):
            if math.isnan(obj):
                return "NaN"
            if math.isinf(obj):
                return "Inf" if obj > 0 else "-Inf"
            return repr(obj)
        return str(obj)

    def _pformat_bool(self, obj, state):
        return "TRUE" if obj else "FALSE"

    def _pformat_none(self, obj, state):
        return "NULL"

    def _pformat_literal(self, obj, state):
        if isinstance(obj.value, str):
            return f'"{escape_for_r_string(obj.value)}"'
        return self.pformat(obj.value, state)

    # --- compound nodes ------------------------------------------------------

    def _pformat_list(self, obj, state):
        return self._pformat_rlist(RList(list(obj)), state)

    def _pformat_rlist(self, obj, state):
        inner = ",".join(self.pformat(item, state) for item in obj.items)
        return f"c({inner})"

    def _pformat_option(self, obj, state):
        return f"{obj.name}={self.pformat(obj.value, state)}"

    def _pformat_symbol(self, obj, state):
        name = obj.name
        wants_call = obj.call
        if name.endswith("()"):
            name = name[:-2]
            wants_call = True
        elif self.settings.is_no_arg_function(name):
            wants_call = True
        if not wants_call:
            return name
        return self._pformat_call(Call(name, []), state)

    def _pformat_call(self, obj, state):
        args = list(obj.args)
        named = set(obj.named)
        for key, value in self.settings.defaults_for(obj.fn):
            if key not in named:
                args.append(Option(key, value))
        tuple_str = ",".join(self.pformat(a, state) for a in args)
        return f"{obj.fn}({tuple_str})"

    def _pformat_infix(self, obj, state):
        return f"{self._pformat_operand(obj.lhs, state)}{obj.op}{self._pformat_operand(obj.rhs, state)}"

    def _pformat_operand(self, obj, state):
        text = self.pformat(obj, state)
        if isinstance(obj, Infix):
            return f"({text})"
        return text

    def _pformat_assign(self, obj, state):
        dest = obj.dest
        if isinstance(dest, ResultSlot) and not dest.bound:
            dest_str = state.mint(dest)
        else:
            dest_str = self.pformat(dest, state)
        return f"{dest_str} <- {self.pformat(obj.expr, state)}"

    def _pformat_seq(self, obj, state):
        return "; ".join(self.pformat(item, state) for item in obj.items)

    # --- values read back from R --------------------------------------------

    def _pformat_slot(self, obj, state):
        if obj.bound:
            return self.pformat(obj.value, state)
        return str(obj)

    def _pformat_scalar(self, obj, state):
        return obj.token

    def _pformat_vector(self, obj, state):
        return f"c({','.join(obj.tokens)})"
