"""Error taxonomy shared by the graph, impact and architecture layers."""

from __future__ import annotations


class CodeIntelError(Exception):
    """Base exception for code-intelligence failures"""

    pass


class NotFoundError(CodeIntelError):
    """Raised when a symbol or file cannot be resolved"""

    pass


class ParseError(CodeIntelError):
    """Raised when a single file fails to parse (recoverable)"""

    pass


class EnrichmentError(CodeIntelError):
    """Raised when a knowledge-source query fails (recoverable)"""

    pass


class ConstructionError(CodeIntelError):
    """Raised when a graph build cannot proceed at all"""

    pass
