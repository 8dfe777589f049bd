"""
Natural-language command parser for issue trackers.

Turns utterances such as "create a high priority bug in PROJ" into a typed
intent with entities, filling gaps from the conversation and asking for
clarification when it cannot.

Usage:
    from issue_nlp import IssueNLP, ProjectRecord

    nlp = IssueNLP()
    nlp.set_project_cache([ProjectRecord(key="PROJ", name="Project")])
    result = nlp.parse("create a bug in PROJ", session_id="alice")
    print(result.intent.action, result.intent.entities["project"].value_text)
"""

from typing import Dict, Iterable, Optional

from .config import ParseConfig
from .errors import ConfigError, EmptyInputError, IssueNLPError, NoMatchError
from .models import (
    Clarification,
    ConversationContext,
    Entity,
    EntityType,
    Intent,
    IntentType,
    ParseResult,
    PriorityRecord,
    ProjectRecord,
    ReferenceData,
    StatusRecord,
    Suggestion,
    UserRecord,
)
from .parser import NLPParser, ParseState
from .session import SessionStore


class IssueNLP:
    """High-level interface: parsing with per-session context."""

    def __init__(self, config: Optional[ParseConfig] = None, parser: Optional[NLPParser] = None) -> None:
        self.parser = parser or NLPParser(config or ParseConfig.from_env())
        self.sessions = SessionStore(self.parser)

    @property
    def config(self) -> ParseConfig:
        return self.parser.config

    def parse(self, text: str, session_id: str = "default") -> ParseResult:
        """Parse text in the given session (raises EmptyInputError on blank input)."""
        return self.sessions.parse(text, session_id)

    def extract_entities(self, text: str, session_id: Optional[str] = None) -> Dict[str, Entity]:
        context = self.sessions.peek(session_id) if session_id else None
        return self.parser.extract_entities(text, context)

    def set_project_cache(self, projects: Iterable[ProjectRecord]) -> None:
        self.parser.set_project_cache(projects)

    def set_user_cache(self, users: Iterable[UserRecord]) -> None:
        self.parser.set_user_cache(users)

    def set_status_cache(self, statuses: Iterable[StatusRecord]) -> None:
        self.parser.set_status_cache(statuses)

    def set_priority_cache(self, priorities: Iterable[PriorityRecord]) -> None:
        self.parser.set_priority_cache(priorities)

    def get_context(self, session_id: str = "default") -> ConversationContext:
        return self.sessions.get(session_id)

    def set_context(self, context: ConversationContext) -> None:
        self.sessions.set(context)

    def get_cache_stats(self) -> Dict[str, int]:
        return self.parser.get_cache_stats()


__all__ = [
    "IssueNLP",
    "NLPParser",
    "ParseState",
    "SessionStore",
    "ParseConfig",
    "IssueNLPError",
    "EmptyInputError",
    "NoMatchError",
    "ConfigError",
    "Clarification",
    "ConversationContext",
    "Entity",
    "EntityType",
    "Intent",
    "IntentType",
    "ParseResult",
    "PriorityRecord",
    "ProjectRecord",
    "ReferenceData",
    "StatusRecord",
    "Suggestion",
    "UserRecord",
]
