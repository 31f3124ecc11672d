from .diagnostics import (
    CLOJURE_PATTERN,
    Diagnostic,
    PatternSpec,
    Severity,
    extract,
    extract_diagnostic,
    parse_diagnostics,
)
from .forms import (
    SourceBuffer,
    Span,
    last_sexp_before,
    namespace_of,
    sexp_end,
    symbol_at,
    top_level_form_at,
)
from .placement import EvalOrigin, Placement, place
