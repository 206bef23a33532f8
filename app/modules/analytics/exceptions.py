"""
Exceptions raised by the analytics engine
"""


class AnalyticsError(Exception):
    """Base class for analytics engine errors."""


class InvalidTransactionError(AnalyticsError, ValueError):
    """Raised when a transaction or line cannot be valued (negative quantity or price)."""


class RepositoryReadError(AnalyticsError):
    """Raised when a repository read fails for a given source."""

    def __init__(self, source: str, original: Exception):
        self.source = source
        self.original = original
        super().__init__(f"Failed to read {source}: {original}")


class InvalidWindowError(AnalyticsError, ValueError):
    """Raised when the requested number of months is outside the allowed range."""
