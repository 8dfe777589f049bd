"""
Keyword-triggered command suggestions.

Offered when an utterance could not be understood, and alongside
low-confidence parses so the user can rephrase.
"""

from typing import List, Tuple

from .models import Suggestion

SUGGESTION_CONFIDENCE = 0.7

# (trigger words, suggestion), checked in order
_KEYWORD_SUGGESTIONS: List[Tuple[Tuple[str, ...], Suggestion]] = [
    (
        ("create", "new"),
        Suggestion(
            text="Create a new issue",
            description="Create a new issue in a project",
            example="create a bug in PROJ",
            confidence=SUGGESTION_CONFIDENCE,
        ),
    ),
    (
        ("find", "search"),
        Suggestion(
            text="Search for issues",
            description="Find issues based on criteria",
            example="find all bugs assigned to me",
            confidence=SUGGESTION_CONFIDENCE,
        ),
    ),
    (
        ("assign",),
        Suggestion(
            text="Assign an issue",
            description="Assign an issue to someone",
            example="assign PROJ-123 to john.doe",
            confidence=SUGGESTION_CONFIDENCE,
        ),
    ),
    (
        ("move", "transition", "close", "status"),
        Suggestion(
            text="Transition an issue",
            description="Move an issue to a new status",
            example="move PROJ-456 to In Progress",
            confidence=SUGGESTION_CONFIDENCE,
        ),
    ),
    (
        ("comment", "note"),
        Suggestion(
            text="Comment on an issue",
            description="Add a comment to an issue",
            example="comment on PROJ-789: Ready for testing",
            confidence=SUGGESTION_CONFIDENCE,
        ),
    ),
]

GENERIC_SUGGESTIONS: List[Suggestion] = [
    Suggestion(
        text="create a bug",
        description="Create a new bug issue",
        example="create a high priority bug in PROJ",
        confidence=0.5,
    ),
    Suggestion(
        text="find all issues assigned to me",
        description="Search for your assigned issues",
        example="find all bugs assigned to me in current sprint",
        confidence=0.5,
    ),
    Suggestion(
        text="move ISSUE-123 to Done",
        description="Transition an issue to a new status",
        example="move PROJ-456 to In Progress",
        confidence=0.5,
    ),
    Suggestion(
        text="help",
        description="List the commands that are understood",
        example="what can you do",
        confidence=0.5,
    ),
]


def keyword_suggestions(text: str, limit: int) -> List[Suggestion]:
    """Suggestions whose trigger words appear in ``text``, at most ``limit``."""
    lowered = text.lower()
    matched = [
        suggestion
        for triggers, suggestion in _KEYWORD_SUGGESTIONS
        if any(word in lowered for word in triggers)
    ]
    return matched[: max(limit, 0)]


def suggestions_for_failure(text: str, limit: int) -> List[Suggestion]:
    """Suggestions for an utterance nothing matched. Never empty."""
    limit = max(limit, 1)
    matched = keyword_suggestions(text, limit)
    if matched:
        return matched
    return GENERIC_SUGGESTIONS[:limit]
