"""
Parser façade tying the pipeline together.

    text -> extract entities -> classify -> disambiguate -> update context

The parser holds configuration and a reference-data snapshot but no
conversation state: the caller passes a ``ConversationContext`` in and gets
the advanced one back with the result.
"""

import logging
import threading
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from .classifier import IntentClassifier
from .config import ParseConfig
from .context_store import ContextStore
from .disambiguator import Disambiguator
from .entity_extractor import EntityExtractor
from .errors import EmptyInputError, NoMatchError
from .models import (
    ConversationContext,
    Entity,
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
from .suggestions import keyword_suggestions, suggestions_for_failure

logger = logging.getLogger("issue-nlp.parser")


class ParseState(str, Enum):
    """Stages a single parse moves through."""

    IDLE = "idle"
    EXTRACTING = "extracting"
    CLASSIFYING = "classifying"
    DISAMBIGUATING = "disambiguating"
    CONTEXT_UPDATE = "context_update"
    DONE = "done"
    FAILED = "failed"


_TRANSITIONS: Dict[ParseState, Tuple[ParseState, ...]] = {
    ParseState.IDLE: (ParseState.EXTRACTING, ParseState.FAILED),
    ParseState.EXTRACTING: (ParseState.CLASSIFYING,),
    ParseState.CLASSIFYING: (ParseState.DISAMBIGUATING, ParseState.FAILED),
    ParseState.DISAMBIGUATING: (ParseState.CONTEXT_UPDATE,),
    ParseState.CONTEXT_UPDATE: (ParseState.DONE,),
    ParseState.DONE: (),
    ParseState.FAILED: (),
}


def _advance(current: ParseState, target: ParseState) -> ParseState:
    if target not in _TRANSITIONS[current]:
        raise RuntimeError(f"Illegal parse state transition {current.value} -> {target.value}")
    logger.debug(f"Parse state: {current.value} -> {target.value}")
    return target


def _records(items: Union[Mapping[str, Any], Iterable[Any]]) -> Iterable[Any]:
    if isinstance(items, Mapping):
        return items.values()
    return items


class NLPParser:
    """Converts utterances into intents, entities and clarifications."""

    def __init__(
        self,
        config: Optional[ParseConfig] = None,
        reference: Optional[ReferenceData] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.config = config or ParseConfig()
        self._clock = clock
        self._reference = reference or ReferenceData()
        self._cache_lock = threading.Lock()

        self.context_store = ContextStore(self.config)
        self.extractor = EntityExtractor(self.config, clock=clock)
        self.classifier = IntentClassifier(self.config, clock=clock)
        self.disambiguator = Disambiguator(self.config, self.context_store)

    @property
    def reference(self) -> ReferenceData:
        """Current reference-data snapshot."""
        return self._reference

    # -----------------------------------------------------------------------
    # Parsing
    # -----------------------------------------------------------------------

    def parse(
        self,
        text: str,
        context: Optional[ConversationContext] = None,
    ) -> Tuple[ParseResult, ConversationContext]:
        """
        Parse one utterance.

        Returns the result together with the advanced context. When nothing
        matches, the result carries an UNKNOWN intent with suggestions and the
        context comes back unchanged.

        Raises:
            EmptyInputError: if ``text`` is empty or whitespace.
        """
        state = ParseState.IDLE
        if context is None:
            context = self.context_store.new_context()

        if text is None or not text.strip():
            _advance(state, ParseState.FAILED)
            raise EmptyInputError()

        text = text.strip()
        reference = self._reference
        logger.debug(f"Parsing (session={context.session_id}): {text!r}")

        state = _advance(state, ParseState.EXTRACTING)
        entities = self.extractor.extract(text, reference, context)

        state = _advance(state, ParseState.CLASSIFYING)
        candidates = self.classifier.classify_all(text, reference)
        if not candidates or candidates[0].confidence < self.config.min_confidence:
            _advance(state, ParseState.FAILED)
            return self._unknown_result(text), context

        intent = candidates[0]
        intent.entities = entities
        intent.context = self.build_intent_context(context)

        state = _advance(state, ParseState.DISAMBIGUATING)
        intent, clarifications = self.disambiguator.disambiguate(intent, context, reference)

        result = ParseResult(
            intent=intent,
            clarifications=clarifications,
            suggestions=self._low_confidence_suggestions(text, intent),
            confidence=intent.confidence,
            alternate_intents=self._alternates(candidates[1:]),
        )

        state = _advance(state, ParseState.CONTEXT_UPDATE)
        updated = self.context_store.update(context, intent)

        _advance(state, ParseState.DONE)
        logger.debug(
            f"Parsed {intent.type.value}/{intent.action} confidence={intent.confidence:.2f} "
            f"entities={len(intent.entities)} clarifications={len(clarifications)}"
        )
        return result, updated

    def parse_strict(
        self,
        text: str,
        context: Optional[ConversationContext] = None,
    ) -> Tuple[ParseResult, ConversationContext]:
        """Like ``parse`` but raises ``NoMatchError`` for UNKNOWN results."""
        result, updated = self.parse(text, context)
        if result.intent.type == IntentType.UNKNOWN:
            raise NoMatchError(result)
        return result, updated

    def extract_entities(self, text: str, context: Optional[ConversationContext] = None) -> Dict[str, Entity]:
        """Run entity extraction alone."""
        if text is None or not text.strip():
            raise EmptyInputError()
        return self.extractor.extract(text.strip(), self._reference, context)

    def build_intent_context(self, context: ConversationContext) -> Dict[str, Any]:
        """Session id, last-used values and configured defaults for an intent."""
        values: Dict[str, Any] = {"sessionId": context.session_id}
        if context.last_project:
            values["lastProject"] = context.last_project
        if context.last_issue:
            values["lastIssue"] = context.last_issue
        if context.last_assignee:
            values["lastAssignee"] = context.last_assignee
        if self.config.default_project:
            values["defaultProject"] = self.config.default_project
        if self.config.default_assignee:
            values["defaultAssignee"] = self.config.default_assignee
        return values

    def _unknown_result(self, text: str) -> ParseResult:
        logger.debug("No intent matched; returning suggestions")
        kwargs = {}
        if self._clock is not None:
            kwargs["timestamp"] = self._clock()
        intent = Intent(type=IntentType.UNKNOWN, confidence=0.0, raw=text, **kwargs)
        suggestions = suggestions_for_failure(text, self.config.max_suggestions)
        return ParseResult(
            intent=intent,
            suggestions=[s.model_copy() for s in suggestions],
            confidence=0.0,
        )

    def _low_confidence_suggestions(self, text: str, intent: Intent) -> List[Suggestion]:
        if not self.config.enable_suggestions:
            return []
        if intent.confidence >= self.config.suggestion_confidence_ceiling:
            return []
        return [s.model_copy() for s in keyword_suggestions(text, self.config.max_suggestions)]

    def _alternates(self, candidates: List[Intent]) -> List[Intent]:
        floor = self.config.min_confidence
        alternates = [c for c in candidates if c.confidence >= floor]
        return alternates[: self.config.max_suggestions]

    # -----------------------------------------------------------------------
    # Reference caches
    # -----------------------------------------------------------------------

    def set_project_cache(self, projects: Union[Mapping[str, ProjectRecord], Iterable[ProjectRecord]]) -> None:
        """Replace the project cache in one step."""
        table = {p.key: p for p in _records(projects)}
        with self._cache_lock:
            self._reference = self._reference.with_projects(table)
        logger.info(f"Project cache refreshed: {len(table)} projects")

    def set_user_cache(self, users: Union[Mapping[str, UserRecord], Iterable[UserRecord]]) -> None:
        table = {u.username: u for u in _records(users)}
        with self._cache_lock:
            self._reference = self._reference.with_users(table)
        logger.info(f"User cache refreshed: {len(table)} users")

    def set_status_cache(self, statuses: Union[Mapping[str, StatusRecord], Iterable[StatusRecord]]) -> None:
        table = {s.name: s for s in _records(statuses)}
        with self._cache_lock:
            self._reference = self._reference.with_statuses(table)
        logger.info(f"Status cache refreshed: {len(table)} statuses")

    def set_priority_cache(self, priorities: Union[Mapping[str, PriorityRecord], Iterable[PriorityRecord]]) -> None:
        table = {p.name: p for p in _records(priorities)}
        with self._cache_lock:
            self._reference = self._reference.with_priorities(table)
        logger.info(f"Priority cache refreshed: {len(table)} priorities")

    def get_cache_stats(self) -> Dict[str, int]:
        return self._reference.stats()
