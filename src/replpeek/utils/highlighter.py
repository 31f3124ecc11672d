import re
from typing import Iterable, List, Optional

from rich.text import Text

SPECIAL_FORMS = re.compile(
    r"(?<=\()\s*("
    r"def|defn-?|defmacro|defmulti|defmethod|defprotocol|defrecord|deftype|defonce"
    r"|ns|fn\*?|let|letfn|loop|recur|if|if-not|if-let|when|when-not|when-let|cond|condp|case"
    r"|do|doseq|dotimes|for|try|catch|finally|throw|quote|var|binding|new|set!"
    r")(?=[\s)\]]|$)"
)

KEYWORDS = re.compile(r"(?<![\w*+!?<>=/-])::?[\w*+!?<>=/.\-]+")

NUMBERS = re.compile(r"(?<![\w-])[-+]?\d+(?:\.\d+)?(?:[MNr]\w*|/\d+)?\b")

STRINGS = re.compile(r'"(?:\\.|[^"\\])*"?')

COMMENT = re.compile(r"(?<!\\);.*$")

SEVERITY_STYLES = {
    "warning": "on #5c4a00",
    "compile-error": "underline on #5a1a1a",
    "error": "on #5a1a1a",
}


def severity_style(style: str) -> str:
    """Background style for a decoration's severity class."""
    return SEVERITY_STYLES.get(style, SEVERITY_STYLES["error"])


def highlight_line(line: str) -> Text:
    """
    Syntax-highlight one line of Clojure source.

    Rules, later ones winning where they overlap:
      - Special forms right after "(" -> bold blue
      - Keywords (:foo, ::bar/baz)   -> magenta
      - Numbers (42, 1.5, 22/7, 10M) -> cyan
      - Strings                      -> green
      - Comments (; to end of line)  -> dim grey
    """
    token_styles: List[Optional[str]] = [None] * len(line)

    def paint(pattern, style: str, group: int = 0):
        for m in pattern.finditer(line):
            for j in range(m.start(group), m.end(group)):
                token_styles[j] = style

    paint(SPECIAL_FORMS, "bold blue", 1)
    paint(KEYWORDS, "magenta")
    paint(NUMBERS, "cyan")

    string_spans = [(m.start(), m.end()) for m in STRINGS.finditer(line)]
    for start, end in string_spans:
        for j in range(start, end):
            token_styles[j] = "green"

    for m in COMMENT.finditer(line):
        if any(start <= m.start() < end for start, end in string_spans):
            continue
        for j in range(m.start(), len(line)):
            token_styles[j] = "dim grey"
        break

    segment = Text()
    i = 0
    while i < len(line):
        cur_style = token_styles[i]
        j = i
        while j < len(line) and token_styles[j] == cur_style:
            j += 1
        segment.append(line[i:j], style=cur_style)
        i = j
    return segment


def decorate_line(text: Text, decorations: Iterable, line_start: int, line_length: int) -> Text:
    """
    Overlay decoration spans on an already highlighted line. Decorations use
    buffer offsets; line_start is the offset of column 1 of this line.
    """
    for deco in decorations:
        start = max(deco.start - line_start, 0)
        end = min(deco.end - line_start, line_length)
        if end <= start:
            # whole-line decoration on an empty line still needs a mark
            if line_length == 0:
                text.append(" ", style=severity_style(deco.style))
            continue
        text.stylize(severity_style(deco.style), start, end)
    return text
