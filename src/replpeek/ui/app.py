from typing import Optional

from textual.app import App, ComposeResult
from textual.widgets import Footer, Static
from textual.containers import VerticalScroll, Horizontal, Vertical
from textual.binding import Binding
from textual.message import Message
from rich.text import Text

from ..engine import ReplEngine
from ..nrepl.session import Transport
from ..parsing.forms import symbol_at
from ..utils.config import ConfigManager
from ..utils.state import ReplState, SourceLocation
from ..utils.highlighter import highlight_line, decorate_line
from ..utils.lang import detect_dialect, source_label
from .diagnostic_peek import DiagnosticPeekPanel
from .prompt_popup import PromptPopup
from .widgets import ReplOutput, StatusBar

# User Palette
C_BG = "#EBEEEE"
C_TEXT = "#191A1A"
C_ACCENT1 = "#45d3ee" # Cyan
C_ACCENT2 = "#9FBFC5" # Muted Blue
C_ACCENT4 = "#fecd91" # Orange


class SourceLine(Static): pass
class SourceScroll(VerticalScroll): BINDINGS = []


class ReplPeekApp(App):
    """Source view wired to a live REPL session."""

    CSS = f"""
    Screen {{
        background: {C_BG};
        color: {C_TEXT};
        layers: base popups;
        align: center middle;
    }}

    #main-layout {{ height: 1fr; width: 100%; layer: base; }}
    #panes {{ height: 1fr; }}

    #source-container {{
        width: 3fr;
        border: solid {C_ACCENT2};
        margin: 0 1;
    }}

    #repl-container {{
        width: 2fr;
        border: solid {C_ACCENT1};
        margin: 0 1;
    }}

    DiagnosticPeekPanel {{ layer: base; }}
    PromptPopup {{ layer: popups; }}
    #status-bar {{ height: 1; background: {C_TEXT}; color: {C_ACCENT4}; padding: 0 1; }}

    SourceLine {{ width: 100%; height: 1; }}
    SourceLine.diag-warning       {{ background: #fff3cd; }}
    SourceLine.diag-compile-error {{ background: #f8d7da; }}
    SourceLine.diag-error         {{ background: #f8d7da; }}
    SourceLine.cursor             {{ background: {C_ACCENT2}; }}

    Footer {{ background: {C_TEXT}; color: {C_ACCENT1}; }}
    """

    BINDINGS = [
        Binding("q", "quit", "Quit", show=True),
        Binding("e", "eval_form", "Eval Form", show=True),
        Binding("l", "eval_last_sexp", "Eval Last", show=False),
        Binding("b", "eval_buffer", "Load File", show=True),
        Binding("x", "prompt_eval", "Eval…", show=True),
        Binding("n", "prompt_ns", "Namespace", show=True),
        Binding("s", "eval_ns_form", "Eval ns", show=False),
        Binding("d", "doc", "Doc", show=True),
        Binding("full_stop", "jump", "Definition", show=True),
        Binding("i", "interrupt", "Interrupt", show=False),
        Binding("c", "clear", "Clear", show=False),
        Binding("up", "cursor_up", "Up", show=False, priority=True),
        Binding("down", "cursor_down", "Down", show=False, priority=True),
        Binding("left", "cursor_left", show=False, priority=True),
        Binding("right", "cursor_right", show=False, priority=True),
        Binding("k", "cursor_up", show=False),
        Binding("j", "cursor_down", show=False),
    ]

    class StateUpdated(Message):
        def __init__(self, state: ReplState) -> None:
            super().__init__()
            self.state = state

    def __init__(self, source_file: str, transport: Transport, config: Optional[ConfigManager] = None):
        super().__init__()
        self.engine = ReplEngine(source_file, transport, config)
        # Engine callbacks arrive on the transport's thread; post_message hops to the UI loop
        self.engine.on_update_callback = lambda state: self.post_message(self.StateUpdated(state))
        self._cursor = 0
        self._column = 0
        self._lines: list[str] = []
        self._rendered_source: Optional[tuple] = None
        self._last_definition: Optional[SourceLocation] = None
        self._generation = 0

    def compose(self) -> ComposeResult:
        with Vertical(id="main-layout"):
            with Horizontal(id="panes"):
                yield SourceScroll(id="source-container")
                with VerticalScroll(id="repl-container"):
                    yield ReplOutput()
            yield DiagnosticPeekPanel(id="diagnostic-peek")
            yield StatusBar()
        yield PromptPopup(id="prompt")
        yield Footer()

    def on_mount(self) -> None:
        self.engine.start()

    def on_unmount(self) -> None:
        self.engine.stop()

    # ── Source rendering ────────────────────────────────────

    def _line_start(self, idx: int) -> int:
        return self.engine.buffer.offset(idx + 1)

    def _line_decorations(self, idx: int) -> list:
        start = self._line_start(idx)
        end = start + len(self._lines[idx])
        return self.engine.decorations.overlapping(self.engine.buffer.path, start, end)

    def _render_line(self, idx: int) -> Text:
        if idx >= len(self._lines):
            return Text("")
        line = self._lines[idx]
        row = Text()
        row.append("▶ " if idx == self._cursor else "  ", style=f"bold {C_ACCENT4}")
        row.append(f"{idx + 1:>4} ", style="dim")
        body = decorate_line(highlight_line(line), self._line_decorations(idx), self._line_start(idx), len(line))
        if idx == self._cursor and self._column <= len(line):
            body.stylize("reverse", self._column, self._column + 1)
        row.append_text(body)
        return row

    def _apply_classes(self, widget: SourceLine, idx: int) -> None:
        for cls in ("diag-warning", "diag-compile-error", "diag-error"):
            widget.remove_class(cls)
        decorations = self._line_decorations(idx)
        if decorations:
            widget.add_class(f"diag-{decorations[0].style}")
        widget.set_class(idx == self._cursor, "cursor")

    def _populate_source(self) -> None:
        scroll = self.query_one("#source-container", SourceScroll)
        scroll.query(SourceLine).remove()
        self._generation += 1
        widgets = []
        for i in range(len(self._lines)):
            widget = SourceLine(self._render_line(i), id=f"src-line-{self._generation}-{i}")
            self._apply_classes(widget, i)
            widgets.append(widget)
        if widgets:
            scroll.mount(*widgets)

    def _repaint(self, indices) -> None:
        for idx in indices:
            try:
                w = self.query_one(f"#src-line-{self._generation}-{idx}", SourceLine)
            except Exception:
                continue
            self._apply_classes(w, idx)
            w.update(self._render_line(idx))
            if idx == self._cursor:
                w.scroll_visible()

    def _move_cursor(self, line: int, column: Optional[int] = None) -> None:
        if line < 0 or line >= len(self._lines):
            return
        old, self._cursor = self._cursor, line
        if column is not None:
            self._column = column
        self._column = min(self._column, len(self._lines[line]))
        self._repaint({old, line})
        self._sync_peek()

    # ── Cursor ──────────────────────────────────────────────

    @property
    def cursor_offset(self) -> int:
        if not self._lines:
            return 0
        return self.engine.buffer.offset(self._cursor + 1, self._column + 1)

    def symbol_at_cursor(self) -> Optional[str]:
        return symbol_at(self.engine.buffer, self.cursor_offset)

    def check_action(self, action: str, parameters) -> Optional[bool]:
        # arrows belong to the prompt while it is open
        if action.startswith("cursor_"):
            popup = next(iter(self.query(PromptPopup)), None)
            if popup is not None and popup.display:
                return False
        return True

    def action_cursor_up(self) -> None: self._move_cursor(self._cursor - 1)
    def action_cursor_down(self) -> None: self._move_cursor(self._cursor + 1)
    def action_cursor_left(self) -> None: self._move_cursor(self._cursor, max(self._column - 1, 0))
    def action_cursor_right(self) -> None: self._move_cursor(self._cursor, self._column + 1)

    # ── REPL actions ────────────────────────────────────────

    def action_eval_form(self) -> None:
        self.engine.eval_top_level_form(self.cursor_offset)

    def action_eval_last_sexp(self) -> None:
        line_end = self._line_start(self._cursor) + len(self._lines[self._cursor]) if self._lines else 0
        self.engine.eval_last_sexp(line_end)

    def action_eval_buffer(self) -> None:
        self.engine.eval_buffer()

    def action_eval_ns_form(self) -> None:
        self.engine.eval_namespace_form()

    def action_prompt_eval(self) -> None:
        self.query_one("#prompt", PromptPopup).show("eval")

    def action_prompt_ns(self) -> None:
        self.query_one("#prompt", PromptPopup).show("ns", self.engine.state.namespace)

    def action_doc(self) -> None:
        symbol = self.symbol_at_cursor()
        if symbol:
            self.engine.doc(symbol)
        else:
            self.notify("No symbol at cursor", severity="warning")

    def action_jump(self) -> None:
        symbol = self.symbol_at_cursor()
        if symbol:
            self.engine.jump_to_definition(symbol)
        else:
            self.notify("No symbol at cursor", severity="warning")

    def action_interrupt(self) -> None:
        self.engine.interrupt()

    def action_clear(self) -> None:
        self.engine.clear_decorations()

    def on_prompt_popup_submitted(self, message: PromptPopup.Submitted) -> None:
        if message.mode == "ns":
            self.engine.set_namespace(message.value)
        else:
            self.engine.eval_code(message.value)

    # ── State updates ───────────────────────────────────────

    def on_repl_peek_app_state_updated(self, message: StateUpdated) -> None:
        state = message.state
        source_key = (state.source_path, state.source_code)
        if source_key != self._rendered_source:
            self._rendered_source = source_key
            self._lines = self.engine.buffer.lines if state.source_code else []
            self._cursor = min(self._cursor, max(len(self._lines) - 1, 0))
            self._populate_source()
        else:
            self._repaint(range(len(self._lines)))

        if state.definition is not None and state.definition is not self._last_definition:
            self._last_definition = state.definition
            self._move_cursor(max(state.definition.line - 1, 0), max((state.definition.column or 1) - 1, 0))

        self.query_one(ReplOutput).set_transcript(state.transcript, state.namespace)
        self.query_one(StatusBar).set_status(
            file=state.source_path,
            namespace=state.namespace,
            status=state.status,
            connected=state.connected,
            diagnostics=len(state.diagnostics),
            dialect=source_label(detect_dialect(state.source_path)),
        )
        self._sync_peek()

    def _sync_peek(self) -> None:
        state = self.engine.state
        peek = self.query_one("#diagnostic-peek", DiagnosticPeekPanel)
        peek.update_context(
            state.source_lines,
            self.engine.decorations.for_surface(self.engine.buffer.path),
            state.doc_text,
        )
        peek.show_for_line(self._cursor + 1)


def run_tui(source_file: str, transport: Transport, config: Optional[ConfigManager] = None):
    app = ReplPeekApp(source_file, transport, config)
    app.run()
