"""
Pydantic models for the issue command parser.

Defines intent and entity types, the parsed intent structures, clarification
requests, conversational context, and the reference data snapshot that drives
confidence scoring and validation.
"""

from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field


class IntentType(str, Enum):
    """High-level actions a user can ask for."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    SEARCH = "SEARCH"
    TRANSITION = "TRANSITION"
    REPORT = "REPORT"
    DELETE = "DELETE"
    ASSIGN = "ASSIGN"
    COMMENT = "COMMENT"
    LINK = "LINK"
    HELP = "HELP"
    UNKNOWN = "UNKNOWN"


class EntityType(str, Enum):
    """Typed values that can be pulled out of free text.

    The value doubles as the key used in ``Intent.entities``.
    """

    PROJECT = "project"
    ISSUE_TYPE = "issue_type"
    ISSUE_KEY = "issue_key"
    PRIORITY = "priority"
    ASSIGNEE = "assignee"
    REPORTER = "reporter"
    SPRINT = "sprint"
    STATUS = "status"
    LABEL = "label"
    COMPONENT = "component"
    DATE = "date"
    TIME = "time"
    DURATION = "duration"
    NUMBER = "number"
    TEXT = "text"
    FIX_VERSION = "fix_version"
    EPIC = "epic"
    STORY_POINTS = "story_points"


# Token emitted for "me"/"myself"; resolved to the configured user later
CURRENT_USER = "current_user"


# ---------------------------------------------------------------------------
# Reference records
# ---------------------------------------------------------------------------


class ProjectRecord(BaseModel):
    """Simplified issue-tracker project."""

    model_config = ConfigDict(frozen=True)

    key: str
    name: str
    id: str = ""
    description: str = ""


class UserRecord(BaseModel):
    """Simplified issue-tracker user."""

    model_config = ConfigDict(frozen=True)

    username: str
    display_name: str = ""
    email: str = ""
    active: bool = True


class StatusRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    id: str = ""
    description: str = ""
    category: str = ""


class PriorityRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    id: str = ""
    description: str = ""
    level: int = 0


# Entity values are one of these; see entity_value_text() for consumption.
EntityValue = Union[ProjectRecord, UserRecord, datetime, int, str]


def entity_value_text(value: EntityValue) -> str:
    """Render an entity value as the identifier used for lookups and context."""
    if isinstance(value, ProjectRecord):
        return value.key
    if isinstance(value, UserRecord):
        return value.username
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, bool):
        raise TypeError(f"Unsupported entity value type: {type(value).__name__}")
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        return value
    raise TypeError(f"Unsupported entity value type: {type(value).__name__}")


# ---------------------------------------------------------------------------
# Parse structures
# ---------------------------------------------------------------------------


class Entity(BaseModel):
    """A typed value extracted from the input."""

    type: EntityType
    value: EntityValue
    text: str = ""
    position: Optional[Tuple[int, int]] = None
    confidence: float = Field(ge=0.0, le=1.0)
    normalized: Optional[str] = None

    @property
    def value_text(self) -> str:
        return entity_value_text(self.value)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Intent(BaseModel):
    """Classified action plus the entities that go with it."""

    type: IntentType
    confidence: float = Field(ge=0.0, le=1.0)
    action: str = ""
    entities: Dict[str, Entity] = Field(default_factory=dict)
    context: Dict[str, Any] = Field(default_factory=dict)
    raw: str = ""
    timestamp: datetime = Field(default_factory=_utcnow)


class Clarification(BaseModel):
    """Request for missing, invalid or ambiguous information."""

    field: str
    message: str
    options: List[str] = Field(default_factory=list)
    required: bool = False
    entity_type: EntityType


class Suggestion(BaseModel):
    """Hint offered to the user when the input was unclear."""

    text: str
    description: str = ""
    example: str = ""
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class ParseResult(BaseModel):
    """Complete result of parsing one utterance."""

    intent: Intent
    clarifications: List[Clarification] = Field(default_factory=list)
    suggestions: List[Suggestion] = Field(default_factory=list)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    alternate_intents: List[Intent] = Field(default_factory=list)

    @property
    def needs_clarification(self) -> bool:
        return any(c.required for c in self.clarifications)


class ConversationContext(BaseModel):
    """Per-conversation memory of recently used values."""

    last_project: str = ""
    last_issue: str = ""
    last_sprint: str = ""
    last_assignee: str = ""
    last_status: str = ""
    last_search: str = ""
    history: List[Intent] = Field(default_factory=list)
    user_preferences: Dict[str, str] = Field(default_factory=dict)
    session_id: str
    start_time: datetime = Field(default_factory=_utcnow)


# ---------------------------------------------------------------------------
# Reference data snapshot
# ---------------------------------------------------------------------------

DEFAULT_STATUSES = ("To Do", "Ready", "In Progress", "In Review", "Testing", "Done", "Blocked", "Reopened")
DEFAULT_PRIORITIES = ("Highest", "High", "Medium", "Low", "Lowest")


class ReferenceData:
    """Read-only snapshot of issue-tracker metadata.

    Instances are never mutated; refreshing a cache produces a new snapshot via
    the ``with_*`` methods so parses already in flight keep a consistent view.
    """

    __slots__ = ("projects", "users", "statuses", "priorities")

    def __init__(
        self,
        projects: Optional[Mapping[str, ProjectRecord]] = None,
        users: Optional[Mapping[str, UserRecord]] = None,
        statuses: Optional[Mapping[str, StatusRecord]] = None,
        priorities: Optional[Mapping[str, PriorityRecord]] = None,
    ) -> None:
        if statuses is None:
            statuses = {name: StatusRecord(name=name) for name in DEFAULT_STATUSES}
        if priorities is None:
            priorities = {name: PriorityRecord(name=name, level=i + 1) for i, name in enumerate(DEFAULT_PRIORITIES)}
        object.__setattr__(self, "projects", MappingProxyType(dict(projects or {})))
        object.__setattr__(self, "users", MappingProxyType(dict(users or {})))
        object.__setattr__(self, "statuses", MappingProxyType(dict(statuses)))
        object.__setattr__(self, "priorities", MappingProxyType(dict(priorities)))

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError("ReferenceData is immutable")

    def with_projects(self, projects: Mapping[str, ProjectRecord]) -> "ReferenceData":
        return ReferenceData(projects, self.users, self.statuses, self.priorities)

    def with_users(self, users: Mapping[str, UserRecord]) -> "ReferenceData":
        return ReferenceData(self.projects, users, self.statuses, self.priorities)

    def with_statuses(self, statuses: Mapping[str, StatusRecord]) -> "ReferenceData":
        return ReferenceData(self.projects, self.users, statuses, self.priorities)

    def with_priorities(self, priorities: Mapping[str, PriorityRecord]) -> "ReferenceData":
        return ReferenceData(self.projects, self.users, self.statuses, priorities)

    def find_project(self, text: str) -> Optional[ProjectRecord]:
        """Look up a project by key or name, case-insensitively."""
        if not text:
            return None
        if text in self.projects:
            return self.projects[text]
        lowered = text.lower()
        for key, project in self.projects.items():
            if key.lower() == lowered or project.name.lower() == lowered:
                return project
        return None

    def stats(self) -> Dict[str, int]:
        return {
            "projects": len(self.projects),
            "users": len(self.users),
            "statuses": len(self.statuses),
        }
