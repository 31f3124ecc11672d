from .parsing.diagnostics import Diagnostic, Severity, extract, extract_diagnostic

__version__ = "0.1.0"
