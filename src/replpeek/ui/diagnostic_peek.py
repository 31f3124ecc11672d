"""
Diagnostic Peek Widget
======================
A small panel under the source that shows the diagnostic decorating the
line under the cursor, with the lines around it. When the cursor line is
clean it shows the last doc lookup instead.
"""

from __future__ import annotations

from typing import List, Optional

from rich.text import Text
from textual.widgets import Static

from .decorations import Decoration

SEVERITY_LABELS = {
    "warning": ("WARNING", "bold yellow"),
    "compile-error": ("COMPILE ERROR", "bold red"),
    "error": ("ERROR", "bold red"),
}


class DiagnosticPeekPanel(Static):
    """
    Bottom panel for the diagnostic on the cursor line, or the current doc text.
    """

    DEFAULT_CSS = """
    DiagnosticPeekPanel {
        height: 7;
        dock: bottom;
        background: #252526;
        color: #e0e0e0;
        border-top: solid #3c3c3c;
        padding: 0 1;
    }
    """

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._source_lines: List[str] = []
        self._decorations: List[Decoration] = []
        self._doc_text: str = ""
        self._current: Optional[Decoration] = None

    # ── Public API ──────────────────────────────────────────

    def update_context(
        self,
        source_lines: List[str],
        decorations: List[Decoration],
        doc_text: str = "",
    ) -> None:
        """
        Called whenever the engine produces new state.

        Args:
            source_lines: The current buffer split by line.
            decorations:  Decorations on the current buffer.
            doc_text:     Output of the last doc lookup.
        """
        self._source_lines = source_lines
        self._decorations = decorations
        self._doc_text = doc_text

    def show_for_line(self, line_num: int) -> None:
        """
        Show the decoration covering line_num (1-based), falling back to
        the doc text.
        """
        self._current = next((d for d in self._decorations if d.line == line_num), None)
        if self._current is not None:
            self._render_diagnostic(self._current)
        elif self._doc_text:
            self._render_doc()
        else:
            self._render_empty()

    # ── Internal rendering ──────────────────────────────────

    def _render_diagnostic(self, deco: Decoration) -> None:
        label, style = SEVERITY_LABELS.get(deco.style, SEVERITY_LABELS["error"])
        t = Text()
        t.append(f"{label} ", style=style)
        t.append(deco.text.strip())
        t.append("\n")

        line_num = deco.line
        for n in (line_num - 1, line_num, line_num + 1):
            if 1 <= n <= len(self._source_lines):
                marker = "►" if n == line_num else " "
                row_style = "bold white" if n == line_num else "dim"
                t.append(f"{marker} {n:>4} │ ", style=row_style)
                t.append(self._source_lines[n - 1], style=row_style)
                t.append("\n")
        self.update(t)

    def _render_doc(self) -> None:
        t = Text()
        t.append("DOC ", style="bold cyan")
        t.append(self._doc_text.strip())
        self.update(t)

    def _render_empty(self) -> None:
        t = Text()
        t.append("REPL ", style="bold cyan")
        t.append("│ ", style="dim")
        t.append("(e: eval form  d: doc  .: jump to definition)", style="dim italic")
        self.update(t)
