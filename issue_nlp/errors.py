"""
Exceptions raised by the issue command parser.

Validation problems and ambiguous input are never raised; they come back as
``Clarification`` entries on the parse result.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import ParseResult


class IssueNLPError(Exception):
    """Base class for parser errors."""


class EmptyInputError(IssueNLPError, ValueError):
    """The input was empty or whitespace only."""

    def __init__(self, message: str = "empty input") -> None:
        super().__init__(message)


class NoMatchError(IssueNLPError):
    """No intent pattern matched above the confidence floor.

    Carries the UNKNOWN-intent result so callers that prefer exceptions still
    get the suggestions.
    """

    def __init__(self, result: "ParseResult") -> None:
        super().__init__(f"could not understand command: {result.intent.raw}")
        self.result = result


class ConfigError(IssueNLPError, ValueError):
    """Invalid parser configuration."""
