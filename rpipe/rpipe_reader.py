"""
Reads R console output back into parsed values.

R prints values for people, not programs. The reader recognizes the shapes
produced by printing a named list, an atomic vector, a matrix or data
frame, and a bare single-token value. Each recognizer is tried in order and
either commits to the lines or declines without side effects.
"""
import re
from typing import Callable, List, Optional, Sequence, Tuple, Union

from rpipe.rpipe_datatypes import (
    Scalar, Vector, NamedList, Table, ParsedValue, MalformedResponse
)

_DECLINE = object()

_TOKEN_RE = re.compile(r'"(?:[^"\\]|\\.)*"|\S+')
_INDEX_PREFIX_RE = re.compile(r'^\[\d+\]\s*')
_MARKER_PART_RE = re.compile(r'\[\[[^\]]+\]\]|\$(?:`[^`]*`|[^$\[\s]+)')
_ROW_HEADER_RE = re.compile(r'^\[(\d+),\]$')
_COL_HEADER_RE = re.compile(r'^\[,(\d+)\]$')


def tokenize(line: str) -> List[str]:
    """Splits on whitespace, keeping double-quoted strings intact."""
    return _TOKEN_RE.findall(line)


def clean_header(token: str) -> Union[str, int]:
    """`[3,]` and `[,3]` become 3; other header tokens are names."""
    m = _ROW_HEADER_RE.match(token) or _COL_HEADER_RE.match(token)
    if m:
        return int(m.group(1))
    return token


def _is_blank(line: str) -> bool:
    return line.strip() == ""


def _is_header_like(line: str) -> bool:
    if not line or not line[0].isspace() or _is_blank(line):
        return False
    # Matrix row labels are right-aligned, so `[9,]` is indented next to `[10,]`.
    return not _ROW_HEADER_RE.match(tokenize(line)[0])


class ResponseReader:
    """Parses the output lines of one printed expression."""

    def __init__(self):
        self._matchers: List[Callable[[List[str]], object]] = [
            self._match_named_list,
            self._match_vector,
            self._match_table,
            self._match_bare,
        ]

    def read(self, lines: Sequence[str]) -> ParsedValue:
        lines = [line.rstrip("\r\n") for line in lines]
        while lines and _is_blank(lines[-1]):
            lines.pop()
        while lines and _is_blank(lines[0]):
            lines.pop(0)
        if not lines:
            return Vector(())
        for matcher in self._matchers:
            result = matcher(lines)
            if result is not _DECLINE:
                return result
        raise MalformedResponse(f"unrecognized output starting with {lines[0]!r}")

    # --- named list ----------------------------------------------------------

    @staticmethod
    def _marker_parts(line: str) -> Optional[List[str]]:
        """`$a[[2]]` becomes ['$a', '[[2]]']; None when the line is not a marker."""
        stripped = line.strip()
        parts = _MARKER_PART_RE.findall(stripped)
        if not parts or "".join(parts) != stripped:
            return None
        return parts

    @staticmethod
    def _part_name(part: str) -> str:
        if part.startswith("[["):
            return part[2:-2]
        return part[1:].strip("`")

    def _match_named_list(self, lines: List[str]):
        if self._marker_parts(lines[0]) is None:
            return _DECLINE
        entries: List[Tuple[str, ParsedValue]] = []
        i = 0
        while i < len(lines):
            parts = self._marker_parts(lines[i])
            if parts is None:
                raise MalformedResponse(f"expected a list element marker, found {lines[i]!r}")
            head = parts[0]
            start = i + 1 if len(parts) == 1 else i
            end = start
            # Nested markers repeat the parent's prefix.
            while end < len(lines):
                inner = self._marker_parts(lines[end])
                if inner is not None and (inner[0] != head or len(inner) == 1):
                    break
                end += 1
            name = self._part_name(head)
            entries.append((name, self._read_entry(name, head, lines[start:end])))
            i = end
        return NamedList(entries)

    def _read_entry(self, name: str, head: str, body: List[str]) -> ParsedValue:
        while body and _is_blank(body[-1]):
            body = body[:-1]
        while body and _is_blank(body[0]):
            body = body[1:]
        if not body:
            raise MalformedResponse(f"list element {name!r} has no content")
        stripped = []
        for line in body:
            parts = self._marker_parts(line)
            if parts is not None and len(parts) > 1 and parts[0] == head:
                line = "".join(parts[1:])
            stripped.append(line)
        return self.read(stripped)

    # --- vector ----------------------------------------------------------------

    def _match_vector(self, lines: List[str]):
        if not _INDEX_PREFIX_RE.match(lines[0].lstrip()):
            return _DECLINE
        tokens: List[str] = []
        for line in lines:
            stripped = line.lstrip()
            if _is_blank(stripped):
                raise MalformedResponse("blank line inside a vector")
            if stripped.startswith("["):
                m = _INDEX_PREFIX_RE.match(stripped)
                if m is None:
                    raise MalformedResponse(f"bad index prefix in {line!r}")
                stripped = stripped[m.end():]
            tokens.extend(tokenize(stripped))
        if len(tokens) == 1:
            return Scalar(tokens[0])
        return Vector(tokens)

    # --- table -----------------------------------------------------------------

    def _match_table(self, lines: List[str]):
        if not _is_header_like(lines[0]):
            return _DECLINE
        blocks = self._split_blocks(lines)
        row_names, col_names, cells = self._read_block(blocks[0])
        for block in blocks[1:]:
            more_rows, more_cols, more_cells = self._read_block(block)
            if more_rows != row_names:
                raise MalformedResponse(
                    f"row names differ between table blocks: {row_names!r} vs {more_rows!r}")
            col_names = col_names + more_cols
            cells = [left + right for left, right in zip(cells, more_cells)]
        return Table(row_names, col_names, cells)

    @staticmethod
    def _split_blocks(lines: List[str]) -> List[List[str]]:
        blocks: List[List[str]] = []
        current: List[str] = []
        for line in lines:
            if _is_blank(line):
                if current:
                    blocks.append(current)
                    current = []
                continue
            if _is_header_like(line) and current:
                blocks.append(current)
                current = []
            if not current and not _is_header_like(line):
                raise MalformedResponse(f"table block does not start with a header: {line!r}")
            current.append(line)
        if current:
            blocks.append(current)
        return blocks

    @staticmethod
    def _read_block(block: List[str]):
        col_names = [clean_header(t) for t in tokenize(block[0])]
        row_names = []
        cells = []
        for line in block[1:]:
            tokens = tokenize(line)
            row, values = tokens[0], tokens[1:]
            if len(values) != len(col_names):
                raise MalformedResponse(
                    f"row {row!r} has {len(values)} cells for {len(col_names)} columns")
            row_names.append(clean_header(row))
            cells.append(values)
        return row_names, col_names, cells

    # --- bare value ------------------------------------------------------------

    def _match_bare(self, lines: List[str]):
        if len(lines) != 1:
            return _DECLINE
        tokens = tokenize(lines[0])
        if len(tokens) != 1:
            return _DECLINE
        return Scalar(tokens[0])


def read_response(lines: Sequence[str]) -> ParsedValue:
    return ResponseReader().read(lines)
