"""
Diagnostic placement
====================
Turns a parsed Diagnostic into a concrete region of a buffer.

Diagnostics that name a file are absolute: line N of that file.
Diagnostics without a file (the runtime reports NO_SOURCE_PATH for forms
sent over the wire) count lines from the top-level form the evaluation
started in, so line 1 is the first line of that form, not of the buffer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from ..errors import SourceNotFound
from .diagnostics import Diagnostic, Severity
from .forms import SourceBuffer, sexp_end, skip_blank

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EvalOrigin:
    path: str
    form_line: int = 1


@dataclass(frozen=True)
class Placement:
    target: str
    start: int
    end: int
    severity: Severity
    text: str
    line: int
    column: Optional[int] = None


BufferOpener = Callable[[str], SourceBuffer]


def expression_span(buffer: SourceBuffer, line: int, column: int) -> tuple:
    """
    Span of the single expression beginning at (line, column). Scans forward
    over blanks on that line first; falls back to the rest of the line when
    no balanced expression starts there.
    """
    line_start, line_end = buffer.line_span(line)
    start = line_start + max(column, 1) - 1
    if start >= line_end:
        return line_start, line_end
    start = skip_blank(buffer.text, start, line_end)
    if start >= line_end:
        return line_start, line_end
    end = sexp_end(buffer.text, start)
    if end is None:
        return start, line_end
    return start, end


def place(
    diagnostic: Diagnostic,
    origin: EvalOrigin,
    open_buffer: BufferOpener,
) -> Optional[Placement]:
    """
    Resolve where a diagnostic should be drawn.
    Returns None if its file cannot be opened or its line is outside the buffer.
    """
    if diagnostic.has_file:
        target = diagnostic.file
        line = diagnostic.line
    else:
        target = origin.path
        line = origin.form_line + diagnostic.line - 1

    try:
        buffer = open_buffer(target)
    except SourceNotFound as e:
        logger.info("Dropping diagnostic for %s: %s", target, e.message)
        return None

    if not buffer.has_line(line):
        logger.info("Dropping diagnostic: line %d outside %s", line, target)
        return None

    if diagnostic.column is None:
        start, end = buffer.line_span(line)
    else:
        start, end = expression_span(buffer, line, diagnostic.column)

    return Placement(
        target=buffer.path or target,
        start=start,
        end=end,
        severity=diagnostic.severity,
        text=diagnostic.message,
        line=line,
        column=diagnostic.column,
    )
