import re
from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, List, Optional, Tuple

from ..errors import MalformedDiagnostic


class Severity(str, Enum):
    WARNING = "warning"
    COMPILE_ERROR = "compile-error"
    ERROR = "error"


@dataclass(frozen=True)
class Diagnostic:
    line: int
    severity: Severity
    message: str
    file: Optional[str] = None
    column: Optional[int] = None  # None: highlight the whole line

    @property
    def has_file(self) -> bool:
        return self.file is not None


@dataclass(frozen=True)
class PatternSpec:
    """
    One compiled expression plus the numbered groups that carry each field.

    file/line/column hold alternative group indices, one per message shape;
    the first group that took part in the match wins.
    """
    regex: re.Pattern
    file_groups: Tuple[int, ...]
    line_groups: Tuple[int, ...]
    column_groups: Tuple[int, ...]
    warning_group: Optional[int] = None
    compiling_group: Optional[int] = None
    no_source_paths: FrozenSet[str] = field(default_factory=frozenset)


# --- CLOJURE COMPILER OUTPUT ---
# 1-4:  "Reflection warning, src/app/core.clj:42:7 - call to foo can't be resolved."
# 5-8:  "CompilerException java.lang.Exception: boom, compiling:(NO_SOURCE_PATH:3:1)"
#       "Syntax error compiling at (src/app/core.clj:42:7)."
# 9-11: "src/app/core.clj:42: message" / "src/app/core.clj:42:7 - message"
_LOCATION_FILE = r"([^\s:()]+)"

CLOJURE_DIAGNOSTIC_RE = re.compile(
    r"\s*(?:"
    r"[\w ]*?\b([Ww]arning),\s+" + _LOCATION_FILE + r":(\d+):(\d+)"
    r"|.*?\b(compiling)(?::|\s+at\s+)\(" + _LOCATION_FILE + r":(\d+)(?::(\d+))?\)"
    r"|" + _LOCATION_FILE + r":(\d+)(?::(\d+))?(?::\s+|\s+-\s+)"
    r")"
)

# 1.10+ prints REPL for forms read without a file
NO_SOURCE_PATHS = frozenset({"NO_SOURCE_PATH", "NO_SOURCE_FILE", "REPL"})

CLOJURE_PATTERN = PatternSpec(
    regex=CLOJURE_DIAGNOSTIC_RE,
    file_groups=(2, 6, 9),
    line_groups=(3, 7, 10),
    column_groups=(4, 8, 11),
    warning_group=1,
    compiling_group=5,
    no_source_paths=NO_SOURCE_PATHS,
)


def _first_group(match, groups: Tuple[int, ...]) -> Optional[str]:
    for idx in groups:
        value = match.group(idx)
        if value is not None:
            return value
    return None


def _to_int(value: Optional[str], name: str, text: str) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        raise MalformedDiagnostic(
            f"Unparseable {name} '{value}' in diagnostic: {text}"
        ) from None


def extract(spec: PatternSpec, text: str) -> Optional[Diagnostic]:
    """
    Parses one line of runtime output into a Diagnostic.
    Returns None when the text carries no diagnostic.
    Raises MalformedDiagnostic when a numeric group does not convert.
    """
    match = spec.regex.match(text)
    if not match:
        return None

    line = _to_int(_first_group(match, spec.line_groups), "line", text)
    if line is None:
        return None

    file = _first_group(match, spec.file_groups)
    if not file or file in spec.no_source_paths:
        file = None

    column = _to_int(_first_group(match, spec.column_groups), "column", text)

    if spec.warning_group is not None and match.group(spec.warning_group):
        severity = Severity.WARNING
    elif spec.compiling_group is not None and match.group(spec.compiling_group):
        severity = Severity.COMPILE_ERROR
    else:
        severity = Severity.ERROR

    return Diagnostic(
        file=file,
        line=line,
        column=column,
        severity=severity,
        message=text,
    )


def extract_diagnostic(text: str) -> Optional[Diagnostic]:
    return extract(CLOJURE_PATTERN, text)


def parse_diagnostics(stderr: str, spec: PatternSpec = CLOJURE_PATTERN) -> List[Diagnostic]:
    """
    Parses a block of error output, one candidate diagnostic per line.
    Example: Reflection warning, core.clj:10:5 - call to foo can't be resolved.
    """
    diagnostics = []
    for line in stderr.splitlines():
        diagnostic = extract(spec, line)
        if diagnostic:
            diagnostics.append(diagnostic)
    return diagnostics
