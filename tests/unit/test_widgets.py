"""
Tests for ReplOutput, StatusBar, PromptPopup and DiagnosticPeekPanel, in
isolation, using Textual's async test harness.
"""
from __future__ import annotations

import pytest
from textual.app import App, ComposeResult
from textual.widgets import Input

from replpeek.ui.decorations import Decoration
from replpeek.ui.diagnostic_peek import DiagnosticPeekPanel
from replpeek.ui.prompt_popup import PromptPopup
from replpeek.ui.widgets import ReplOutput, StatusBar
from replpeek.utils.state import TranscriptEntry


class _WidgetTestApp(App):
    def __init__(self):
        super().__init__()
        self.submitted = []

    def compose(self) -> ComposeResult:
        yield ReplOutput()
        yield StatusBar()
        yield DiagnosticPeekPanel(id="diagnostic-peek")
        yield PromptPopup(id="prompt")

    def on_prompt_popup_submitted(self, message: PromptPopup.Submitted) -> None:
        self.submitted.append((message.mode, message.value))


class TestReplOutput:
    def test_render_prefixes_input_with_namespace(self):
        entries = [TranscriptEntry("input", "(+ 1 2)"), TranscriptEntry("value", "3")]
        assert ReplOutput.render_transcript(entries, "app.core").plain == "app.core=> (+ 1 2)\n3\n"

    def test_render_strips_trailing_newlines(self):
        entries = [TranscriptEntry("out", "hello\n")]
        assert ReplOutput.render_transcript(entries).plain == "hello\n"

    @pytest.mark.asyncio
    async def test_has_correct_id(self):
        async with _WidgetTestApp().run_test() as pilot:
            assert pilot.app.query_one(ReplOutput).id == "repl-output"

    @pytest.mark.asyncio
    async def test_set_transcript(self):
        async with _WidgetTestApp().run_test() as pilot:
            out = pilot.app.query_one(ReplOutput)
            out.set_transcript([TranscriptEntry("err", "boom")] * 500, "user")
            await pilot.pause()


class TestStatusBar:
    @pytest.mark.asyncio
    async def test_has_correct_id(self):
        async with _WidgetTestApp().run_test() as pilot:
            assert pilot.app.query_one(StatusBar).id == "status-bar"

    @pytest.mark.asyncio
    async def test_render_bar(self):
        async with _WidgetTestApp().run_test() as pilot:
            bar = pilot.app.query_one(StatusBar)
            bar.set_status(file="core.clj", namespace="app.core", status="done", connected=True, diagnostics=2)
            assert bar.render_bar() == "core.clj  │  ns app.core  │  connected  │  done  │  2 diagnostic(s)"

    @pytest.mark.asyncio
    async def test_partial_update_keeps_other_fields(self):
        async with _WidgetTestApp().run_test() as pilot:
            bar = pilot.app.query_one(StatusBar)
            bar.set_status(file="core.clj", connected=True)
            bar.set_status(status="evaluating")
            assert bar.render_bar() == "core.clj  │  connected  │  evaluating"

    @pytest.mark.asyncio
    async def test_disconnected_no_diagnostics(self):
        async with _WidgetTestApp().run_test() as pilot:
            bar = pilot.app.query_one(StatusBar)
            bar.set_status(status="idle", diagnostics=0)
            assert "disconnected" in bar.render_bar()
            assert "diagnostic" not in bar.render_bar()

    @pytest.mark.asyncio
    async def test_dialect_prefixes_file(self):
        async with _WidgetTestApp().run_test() as pilot:
            bar = pilot.app.query_one(StatusBar)
            bar.set_status(file="core.cljs", dialect="CLJS", connected=True, status="done")
            assert bar.render_bar() == "CLJS core.cljs  │  connected  │  done"


class TestPromptPopup:
    @pytest.mark.asyncio
    async def test_hidden_by_default(self):
        async with _WidgetTestApp().run_test() as pilot:
            assert pilot.app.query_one(PromptPopup).display is False

    @pytest.mark.asyncio
    async def test_show_prefills_and_submits(self):
        async with _WidgetTestApp().run_test() as pilot:
            popup = pilot.app.query_one(PromptPopup)
            popup.show("ns", "user")
            await pilot.pause()
            assert popup.display is True
            field = popup.query_one("#prompt-input", Input)
            assert field.value == "user"
            field.value = "app.core"
            await pilot.press("enter")
            await pilot.pause()
            assert pilot.app.submitted == [("ns", "app.core")]
            assert popup.display is False

    @pytest.mark.asyncio
    async def test_blank_input_not_submitted(self):
        async with _WidgetTestApp().run_test() as pilot:
            popup = pilot.app.query_one(PromptPopup)
            popup.show("eval")
            await pilot.pause()
            await pilot.press("enter")
            await pilot.pause()
            assert pilot.app.submitted == []

    @pytest.mark.asyncio
    async def test_escape_hides(self):
        async with _WidgetTestApp().run_test() as pilot:
            popup = pilot.app.query_one(PromptPopup)
            popup.show("eval")
            await pilot.pause()
            await pilot.press("escape")
            await pilot.pause()
            assert popup.display is False


class TestDiagnosticPeekPanel:
    LINES = ["(ns a)", "", "(defn f []", "  (boom))"]

    @pytest.mark.asyncio
    async def test_shows_decoration_on_line(self):
        async with _WidgetTestApp().run_test() as pilot:
            peek = pilot.app.query_one(DiagnosticPeekPanel)
            deco = Decoration("a.clj", 20, 26, "compile-error", "Unable to resolve symbol: boom", 4)
            peek.update_context(self.LINES, [deco])
            peek.show_for_line(4)
            assert peek._current == deco
            peek.show_for_line(1)
            assert peek._current is None

    @pytest.mark.asyncio
    async def test_doc_fallback(self):
        async with _WidgetTestApp().run_test() as pilot:
            peek = pilot.app.query_one(DiagnosticPeekPanel)
            peek.update_context(self.LINES, [], "clojure.core/inc\n([x])")
            peek.show_for_line(1)
            await pilot.pause()
            assert peek._current is None
