"""
Widgets
=======
Exposes: ReplOutput, StatusBar

ReplOutput is the transcript pane: what was sent, what came back.
StatusBar sits under it with the file, namespace, connection and the
outcome of the last request.
"""

from __future__ import annotations

from typing import Iterable

from rich.text import Text
from textual.widgets import Static

from ..utils.state import TranscriptEntry

TRANSCRIPT_STYLES = {
    "input": "bold cyan",
    "value": "green",
    "out": "",
    "err": "red",
    "status": "dim italic",
}


class ReplOutput(Static):
    """
    Transcript pane.
    ID: #repl-output
    """

    def __init__(self, max_entries: int = 200, **kwargs) -> None:
        super().__init__(id="repl-output", **kwargs)
        self.max_entries = max_entries

    @staticmethod
    def render_transcript(entries: Iterable[TranscriptEntry], namespace: str = "user") -> Text:
        out = Text()
        for entry in entries:
            text = entry.text.rstrip("\n")
            if entry.kind == "input":
                out.append(f"{namespace}=> ", style="bold")
            out.append(text, style=TRANSCRIPT_STYLES.get(entry.kind, "") or None)
            out.append("\n")
        return out

    def set_transcript(self, entries, namespace: str = "user") -> None:
        self.update(self.render_transcript(list(entries)[-self.max_entries:], namespace))


class StatusBar(Static):
    """
    Bottom bar: dialect and file, namespace, connection, last status, diagnostic count.
    ID: #status-bar
    """

    def __init__(self, **kwargs) -> None:
        super().__init__(id="status-bar", **kwargs)
        self._file: str = ""
        self._namespace: str = ""
        self._status: str = "idle"
        self._connected: bool = False
        self._diagnostics: int = 0
        self._dialect: str = ""

    def set_status(
        self,
        *,
        file: str | None = None,
        namespace: str | None = None,
        status: str | None = None,
        connected: bool | None = None,
        diagnostics: int | None = None,
        dialect: str | None = None,
    ) -> None:
        if file is not None:
            self._file = file
        if namespace is not None:
            self._namespace = namespace
        if status is not None:
            self._status = status
        if connected is not None:
            self._connected = connected
        if diagnostics is not None:
            self._diagnostics = diagnostics
        if dialect is not None:
            self._dialect = dialect
        self.update(self.render_bar())

    def render_bar(self) -> str:
        parts = []
        if self._file:
            parts.append(f"{self._dialect} {self._file}" if self._dialect else self._file)
        if self._namespace:
            parts.append(f"ns {self._namespace}")
        parts.append("connected" if self._connected else "disconnected")
        parts.append(self._status)
        if self._diagnostics:
            parts.append(f"{self._diagnostics} diagnostic(s)")
        return "  │  ".join(parts)
