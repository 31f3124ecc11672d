"""Exceptions shared across replpeek."""

from typing import Optional


class ReplError(Exception):
    """Base exception for replpeek errors.

    Attributes:
        message: User-facing error message.
        hint: Optional actionable suggestion.
    """

    def __init__(self, message: str, hint: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint


class MalformedDiagnostic(ReplError):
    """A diagnostic matched but one of its numeric fields did not convert."""

    pass


class TransportError(ReplError):
    """The network REPL transport could not be loaded or failed to send."""

    pass


class SourceNotFound(ReplError):
    """A file named by a diagnostic or definition could not be opened."""

    pass
