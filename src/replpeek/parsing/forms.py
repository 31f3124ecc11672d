"""
Source buffer model and s-expression scanning.

All offsets are 0-based character indices into the buffer text; lines and
columns are 1-based, the way the runtime reports them.
"""
from __future__ import annotations

import bisect
import re
from dataclasses import dataclass, field
from typing import Iterator, List, NamedTuple, Optional

from ..errors import SourceNotFound

OPENERS = {"(": ")", "[": "]", "{": "}"}
CLOSERS = set(OPENERS.values())
PREFIXES = ("~@", "'", "`", "~", "@", "^")
_TOKEN_END = set(" \t\r\n,\"();[]{}")
_SYMBOL_RE = re.compile(r"[^\s,()\[\]{}\"';@^`~\\]")
_NS_FORM_RE = re.compile(
    r"\(\s*ns\s+(?:\^\{[^}]*\}\s+|\^:\S+\s+)*([^\s()\[\]{}\"]+)"
)


class Span(NamedTuple):
    start: int
    end: int


@dataclass
class SourceBuffer:
    path: str = ""
    text: str = ""
    lines: List[str] = field(init=False)
    _starts: List[int] = field(init=False, repr=False)

    def __post_init__(self):
        self.lines = self.text.split("\n")
        self._starts = [0]
        for line in self.lines[:-1]:
            self._starts.append(self._starts[-1] + len(line) + 1)

    @classmethod
    def from_file(cls, path: str) -> "SourceBuffer":
        try:
            with open(path, "r", encoding="utf-8") as f:
                return cls(path=path, text=f.read())
        except OSError as e:
            raise SourceNotFound(f"Cannot open {path}: {e.strerror or e}") from e
        except UnicodeDecodeError as e:
            raise SourceNotFound(f"Cannot decode {path}: {e.reason}") from e

    @property
    def line_count(self) -> int:
        return len(self.lines)

    def has_line(self, line: int) -> bool:
        return 1 <= line <= len(self.lines)

    def offset(self, line: int, column: int = 1) -> int:
        if not self.has_line(line):
            raise IndexError(f"line {line} outside buffer of {len(self.lines)} lines")
        return self._starts[line - 1] + max(column, 1) - 1

    def position(self, offset: int) -> tuple:
        """Returns (line, column) for an offset."""
        idx = bisect.bisect_right(self._starts, offset) - 1
        idx = max(idx, 0)
        return idx + 1, offset - self._starts[idx] + 1

    def line_span(self, line: int) -> Span:
        start = self.offset(line)
        return Span(start, start + len(self.lines[line - 1]))

    def substring(self, start: int, end: int) -> str:
        return self.text[start:end]


# ── Scanning ────────────────────────────────────────────────

def skip_blank(text: str, i: int, limit: Optional[int] = None) -> int:
    """Skip whitespace, commas and line comments."""
    limit = len(text) if limit is None else limit
    while i < limit:
        c = text[i]
        if c in " \t\r\n,":
            i += 1
        elif c == ";":
            nl = text.find("\n", i)
            i = limit if nl == -1 else nl + 1
        else:
            break
    return min(i, limit)


def _string_end(text: str, i: int) -> Optional[int]:
    """i points at the opening quote."""
    j = i + 1
    while j < len(text):
        if text[j] == "\\":
            j += 2
            continue
        if text[j] == '"':
            return j + 1
        j += 1
    return None


def _char_end(text: str, i: int) -> int:
    """i points at the backslash of a character literal."""
    j = i + 2
    if i + 1 < len(text) and text[i + 1].isalnum():
        while j < len(text) and text[j].isalnum():
            j += 1
    return min(j, len(text))


def _token_end(text: str, i: int) -> int:
    while i < len(text) and text[i] not in _TOKEN_END:
        i += 1
    return i


def _group_end(text: str, i: int) -> Optional[int]:
    """i points at an opening delimiter; returns the index past its match."""
    stack = [OPENERS[text[i]]]
    j = i + 1
    while j < len(text):
        c = text[j]
        if c == '"':
            end = _string_end(text, j)
            if end is None:
                return None
            j = end
            continue
        if c == "\\":
            j = _char_end(text, j)
            continue
        if c == ";":
            nl = text.find("\n", j)
            if nl == -1:
                return None
            j = nl + 1
            continue
        if c in OPENERS:
            stack.append(OPENERS[c])
        elif c in CLOSERS:
            if c != stack.pop():
                return None
            if not stack:
                return j + 1
        j += 1
    return None


def sexp_end(text: str, start: int) -> Optional[int]:
    """
    Returns the index just past the single expression that begins at `start`,
    or None when it is unbalanced or `start` is not the start of a form.
    """
    i = start
    if i >= len(text):
        return None
    c = text[i]

    for prefix in PREFIXES:
        if text.startswith(prefix, i):
            return sexp_end(text, skip_blank(text, i + len(prefix)))

    if c == "#":
        nxt = text[i + 1] if i + 1 < len(text) else ""
        if nxt in ("(", "{"):
            return _group_end(text, i + 1)
        if nxt == '"':
            return _string_end(text, i + 1)
        if nxt in ("'", "_"):
            return sexp_end(text, skip_blank(text, i + 2))
        if nxt == "?":
            j = i + 2
            if text.startswith("@", j):
                j += 1
            return sexp_end(text, j)
        # tagged literal: #inst "..."
        tag_end = _token_end(text, i + 1)
        if tag_end == i + 1:
            return None
        return sexp_end(text, skip_blank(text, tag_end))

    if c == '"':
        return _string_end(text, i)
    if c == "\\":
        return _char_end(text, i)
    if c in OPENERS:
        return _group_end(text, i)
    if c in CLOSERS or c in " \t\r\n,;":
        return None

    end = _token_end(text, i)
    return end if end > i else None


def iter_forms(text: str, lo: int = 0, hi: Optional[int] = None) -> Iterator[Span]:
    """Yields the consecutive forms in text[lo:hi], stopping at the first unbalanced one."""
    hi = len(text) if hi is None else hi
    i = skip_blank(text, lo, hi)
    while i < hi:
        end = sexp_end(text, i)
        if end is None or end > hi:
            return
        yield Span(i, end)
        i = skip_blank(text, end, hi)


def _body_start(text: str, span: Span) -> Optional[int]:
    """Index just inside the first opening delimiter of a collection form."""
    i = span.start
    while i < span.end and text[i] not in "([{\"\\":
        i += 1
    if i < span.end and text[i] in OPENERS:
        return i + 1
    return None


# ── Queries ─────────────────────────────────────────────────

def top_level_form_at(buffer: SourceBuffer, offset: int) -> Optional[Span]:
    """
    The outermost form containing offset. Between forms, the preceding one
    is used; before the first form, the first one.
    """
    text = buffer.text
    previous = None
    i = skip_blank(text, 0)
    while i < len(text):
        end = sexp_end(text, i)
        if end is None:
            # unbalanced trailing form still counts if point is inside it
            return Span(i, len(text)) if offset >= i else previous
        span = Span(i, end)
        if offset < span.start:
            return previous or span
        if offset < span.end:
            return span
        previous = span
        i = skip_blank(text, end)
    return previous


def last_sexp_before(buffer: SourceBuffer, offset: int) -> Optional[Span]:
    """The innermost complete expression that ends at or before offset."""
    text = buffer.text
    lo, hi = 0, len(text)
    while True:
        best = None
        descend = None
        for span in iter_forms(text, lo, hi):
            if span.end <= offset:
                best = span
                continue
            if span.start < offset:
                body = _body_start(text, span)
                if body is not None and body <= offset:
                    descend = (body, span.end - 1)
            break
        if descend is None:
            return best
        lo, hi = descend


def symbol_at(buffer: SourceBuffer, offset: int) -> Optional[str]:
    text = buffer.text
    if offset >= len(text) or not _SYMBOL_RE.match(text[offset]):
        # cursor sits just past the symbol
        offset -= 1
    if offset < 0 or offset >= len(text) or not _SYMBOL_RE.match(text[offset]):
        return None
    start = offset
    while start > 0 and _SYMBOL_RE.match(text[start - 1]):
        start -= 1
    end = offset + 1
    while end < len(text) and _SYMBOL_RE.match(text[end]):
        end += 1
    symbol = text[start:end].lstrip("#:")
    return symbol or None


def ns_form_span(buffer: SourceBuffer) -> Optional[Span]:
    for span in iter_forms(buffer.text):
        if _NS_FORM_RE.match(buffer.text, span.start, span.end):
            return span
    return None


def namespace_of(buffer: SourceBuffer) -> Optional[str]:
    """Namespace declared by the buffer's (ns ...) form, if any."""
    span = ns_form_span(buffer)
    if span is None:
        return None
    return _NS_FORM_RE.match(buffer.text, span.start, span.end).group(1)
