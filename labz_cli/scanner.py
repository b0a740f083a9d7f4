"""Comment- and string-aware lexical scanning for Solidity and TypeScript sources.

Every structural pass in the engine (brace matching, signature detection,
operation-call scanning) runs over a *masked* copy of the source produced
here.  The mask has exactly the same length and line layout as the input;
comment bodies and (optionally) string literals are overwritten with spaces,
so offsets, line numbers and columns computed on the mask are valid for the
original text while stray ``{``, ``}`` or ``(`` inside comments and literals
can no longer perturb depth counters.
"""

from __future__ import annotations

import re
from bisect import bisect_right
from enum import Enum
from typing import List, Optional

QUOTES = ('"', "'", "`")

_PAIRS = {"{": "}", "(": ")", "[": "]"}


class Mode(Enum):
    """States of the masking scanner."""

    NORMAL = "normal"
    LINE_COMMENT = "line-comment"
    BLOCK_COMMENT = "block-comment"
    STRING = "string"


def mask_source(source: str, strip_strings: bool = True) -> str:
    """Return *source* with comments (and string literals) blanked out.

    The scanner is a four-state machine.  Transitions:

    - NORMAL -> LINE_COMMENT on ``//``, back on newline
    - NORMAL -> BLOCK_COMMENT on ``/*``, back on ``*/``
    - NORMAL -> STRING on a quote character, back on the same unescaped quote
      (``"`` and ``'`` literals also end at a newline; backtick templates may
      span lines)

    Newlines are always preserved.  Unterminated comments or strings simply
    run to the end of input.
    """
    out: List[str] = list(source)
    mode = Mode.NORMAL
    quote = ""
    i = 0
    n = len(source)

    while i < n:
        ch = source[i]
        nxt = source[i + 1] if i + 1 < n else ""

        if mode is Mode.NORMAL:
            if ch == "/" and nxt == "/":
                mode = Mode.LINE_COMMENT
                out[i] = out[i + 1] = " "
                i += 2
                continue
            if ch == "/" and nxt == "*":
                mode = Mode.BLOCK_COMMENT
                out[i] = out[i + 1] = " "
                i += 2
                continue
            if ch in QUOTES:
                mode = Mode.STRING
                quote = ch
                if strip_strings:
                    out[i] = " "
            i += 1
            continue

        if mode is Mode.LINE_COMMENT:
            if ch == "\n":
                mode = Mode.NORMAL
            else:
                out[i] = " "
            i += 1
            continue

        if mode is Mode.BLOCK_COMMENT:
            if ch == "*" and nxt == "/":
                out[i] = out[i + 1] = " "
                mode = Mode.NORMAL
                i += 2
                continue
            if ch != "\n":
                out[i] = " "
            i += 1
            continue

        # Mode.STRING
        if ch == "\\" and nxt:
            if strip_strings:
                out[i] = " "
                if nxt != "\n":
                    out[i + 1] = " "
            i += 2
            continue
        if ch == quote:
            mode = Mode.NORMAL
            if strip_strings:
                out[i] = " "
            i += 1
            continue
        if ch == "\n":
            if quote != "`":
                mode = Mode.NORMAL
            i += 1
            continue
        if strip_strings:
            out[i] = " "
        i += 1

    return "".join(out)


def match_delimiter(text: str, open_pos: int, limit: Optional[int] = None) -> Optional[int]:
    """Return the offset of the delimiter closing the one at *open_pos*.

    *text* should be masked.  Only the delimiter kind found at *open_pos* is
    counted.  Returns ``None`` when the delimiter is never closed before
    *limit* (default: end of text).
    """
    if open_pos < 0 or open_pos >= len(text):
        return None
    opener = text[open_pos]
    closer = _PAIRS.get(opener)
    if closer is None:
        return None
    end = len(text) if limit is None else min(limit, len(text))
    depth = 0
    for pos in range(open_pos, end):
        ch = text[pos]
        if ch == opener:
            depth += 1
        elif ch == closer:
            depth -= 1
            if depth == 0:
                return pos
    return None


def split_top_level(text: str, sep: str = ",") -> List[str]:
    """Split *text* on *sep* occurring outside any bracket pair."""
    parts: List[str] = []
    depth = 0
    current: List[str] = []
    for ch in text:
        if ch in "([{":
            depth += 1
        elif ch in ")]}":
            depth = max(depth - 1, 0)
        if ch == sep and depth == 0:
            parts.append("".join(current))
            current = []
            continue
        current.append(ch)
    parts.append("".join(current))
    return [p.strip() for p in parts if p.strip()]


class LineIndex:
    """Maps character offsets to 1-based line and column numbers."""

    def __init__(self, text: str) -> None:
        self._starts = [0] + [m.end() for m in re.finditer("\n", text)]
        self._length = len(text)

    @property
    def line_count(self) -> int:
        return len(self._starts)

    def line_of(self, offset: int) -> int:
        return bisect_right(self._starts, offset)

    def column_of(self, offset: int) -> int:
        return offset - self._starts[self.line_of(offset) - 1] + 1

    def line_start(self, line: int) -> int:
        return self._starts[line - 1]
