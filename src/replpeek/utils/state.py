from dataclasses import dataclass, field
from typing import List, NamedTuple, Optional

from ..parsing.diagnostics import Diagnostic, Severity


class TranscriptEntry(NamedTuple):
    kind: str  # input | value | out | err | status
    text: str


@dataclass
class SourceLocation:
    path: str
    line: int = 1
    column: Optional[int] = None
    jar: Optional[str] = None  # set when path is an entry inside this jar


@dataclass
class ReplState:
    """
    The single source of truth for the application's data.
    """
    source_path: str = ""
    source_code: str = ""
    source_lines: List[str] = field(default_factory=list)

    # Session
    namespace: str = "user"
    session_id: Optional[str] = None
    connected: bool = False

    # Evaluation results
    transcript: List[TranscriptEntry] = field(default_factory=list)
    transcript_limit: int = 500
    last_value: Optional[str] = None
    doc_text: str = ""
    definition: Optional[SourceLocation] = None

    # Diagnostics of the current evaluation cycle
    diagnostics: List[Diagnostic] = field(default_factory=list)
    status: str = "idle"
    pending: Optional[str] = None
    last_update: float = 0.0

    @property
    def has_errors(self) -> bool:
        """Returns True if any diagnostic is an error rather than a warning."""
        return any(d.severity != Severity.WARNING for d in self.diagnostics)

    def append(self, kind: str, text: str):
        self.transcript.append(TranscriptEntry(kind, text))
        overflow = len(self.transcript) - self.transcript_limit
        if overflow > 0:
            del self.transcript[:overflow]

    def reset_cycle(self):
        self.diagnostics = []
        self.pending = None

    def update_source(self, text: str):
        self.source_code = text
        self.source_lines = text.splitlines()

    def get_line(self, line_num: int) -> Optional[str]:
        if 0 < line_num <= len(self.source_lines):
            return self.source_lines[line_num - 1]
        return None
