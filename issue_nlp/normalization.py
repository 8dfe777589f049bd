"""
Synonym tables mapping free-form words to canonical issue-tracker values.

All functions are pure and idempotent: normalizing an already canonical value
returns it unchanged.
"""

from typing import Dict, List, Optional, Tuple

from .models import EntityType

_PRIORITY_SYNONYMS: Dict[str, str] = {
    "blocker": "Highest",
    "critical": "Highest",
    "highest": "Highest",
    "urgent": "Highest",
    "p0": "Highest",
    "high": "High",
    "major": "High",
    "p1": "High",
    "medium": "Medium",
    "normal": "Medium",
    "p2": "Medium",
    "low": "Low",
    "minor": "Low",
    "p3": "Low",
    "lowest": "Lowest",
    "trivial": "Lowest",
    "p4": "Lowest",
}

_P_NOTATION: Dict[str, str] = {
    "0": "Highest",
    "1": "High",
    "2": "Medium",
    "3": "Low",
    "4": "Lowest",
}

_ISSUE_TYPE_SYNONYMS: Dict[str, str] = {
    "bug": "Bug",
    "defect": "Bug",
    "incident": "Bug",
    "story": "Story",
    "feature": "Story",
    "task": "Task",
    "epic": "Epic",
    "sub-task": "Sub-task",
    "subtask": "Sub-task",
    "improvement": "Improvement",
}

_STATUS_SYNONYMS: Dict[str, str] = {
    "open": "To Do",
    "todo": "To Do",
    "to do": "To Do",
    "to-do": "To Do",
    "backlog": "To Do",
    "in progress": "In Progress",
    "doing": "In Progress",
    "done": "Done",
    "closed": "Done",
    "resolved": "Done",
    "review": "In Review",
    "reviewing": "In Review",
    "in review": "In Review",
    "testing": "Testing",
    "test": "Testing",
    "blocked": "Blocked",
    "reopened": "Reopened",
    "ready": "Ready",
}

# Common workflow transitions, used to guess a target status
_TRANSITIONS: Dict[str, Tuple[str, ...]] = {
    "To Do": ("In Progress",),
    "In Progress": ("In Review", "Testing", "Done", "Blocked"),
    "In Review": ("In Progress", "Testing", "Done"),
    "Testing": ("In Progress", "Done", "In Review"),
    "Blocked": ("To Do", "In Progress"),
    "Done": ("Reopened",),
}

_COMMON_WORDS = frozenset(
    {
        "the", "a", "an", "in", "on", "at", "to", "for", "of", "with", "by",
        "from", "as", "is", "was", "are", "were", "me", "it", "this", "that",
    }
)

ISSUE_TYPES: List[str] = ["Bug", "Task", "Story", "Epic", "Sub-task"]
PRIORITIES: List[str] = ["Highest", "High", "Medium", "Low", "Lowest"]
STATUSES: List[str] = ["To Do", "In Progress", "In Review", "Testing", "Done"]
COMPONENTS: List[str] = ["frontend", "backend", "api", "database", "ui", "core", "auth", "payments"]

# Accepted priority names, canonical and legacy
VALID_PRIORITIES = frozenset({"highest", "high", "medium", "low", "lowest", "blocker", "critical", "major", "minor", "trivial"})


def _squash(value: str) -> str:
    return " ".join(value.split()).lower()


def _title_words(value: str) -> str:
    return " ".join(w[:1].upper() + w[1:].lower() for w in value.split())


def normalize_priority(priority: str) -> str:
    return _PRIORITY_SYNONYMS.get(_squash(priority), priority)


def priority_from_p_notation(level: str) -> str:
    """Map the digit of P0..P4 to a priority name."""
    return _P_NOTATION.get(level.strip(), "Medium")


def normalize_issue_type(issue_type: str) -> str:
    key = _squash(issue_type)
    if key in _ISSUE_TYPE_SYNONYMS:
        return _ISSUE_TYPE_SYNONYMS[key]
    if not issue_type:
        return issue_type
    return issue_type[:1].upper() + issue_type[1:].lower()


def normalize_status(status: str) -> str:
    key = _squash(status)
    if key in _STATUS_SYNONYMS:
        return _STATUS_SYNONYMS[key]
    return _title_words(status)


def normalize(entity_type: EntityType, value: object) -> Optional[str]:
    """Canonical form for priority, status and issue-type values, else None."""
    if not isinstance(value, str):
        return None
    if entity_type == EntityType.PRIORITY:
        return normalize_priority(value)
    if entity_type == EntityType.STATUS:
        return normalize_status(value)
    if entity_type == EntityType.ISSUE_TYPE:
        return normalize_issue_type(value)
    return None


def is_valid_priority(priority: str) -> bool:
    return priority.lower() in VALID_PRIORITIES


def is_common_word(word: str) -> bool:
    return word.lower() in _COMMON_WORDS


def common_transitions(status: str) -> Tuple[str, ...]:
    """Statuses usually reachable from ``status``."""
    return _TRANSITIONS.get(normalize_status(status), ())
