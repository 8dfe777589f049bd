"""
Disambiguation of classified intents.

Fills in missing required entities from context or configured defaults,
validates the entities that are present against reference data, detects
ambiguous project/user mentions, and turns everything it cannot resolve into
``Clarification`` requests. Nothing here raises on bad input.
"""

import logging
import re
from typing import Dict, Iterable, List, Optional, Tuple

from .config import ParseConfig
from .context_store import ContextStore
from .models import (
    CURRENT_USER,
    Clarification,
    ConversationContext,
    Entity,
    EntityType,
    Intent,
    IntentType,
    ProjectRecord,
    ReferenceData,
    UserRecord,
)
from .normalization import COMPONENTS, ISSUE_TYPES, PRIORITIES, is_valid_priority

logger = logging.getLogger("issue-nlp.disambiguator")

VALID_ISSUE_KEY = re.compile(r"^[A-Z][A-Z0-9]{1,9}-\d+$")

DEFAULT_CONFIDENCE = 0.6
RESOLVED_REFERENCE_CONFIDENCE = 0.9

_REQUIRED_ENTITIES: Dict[IntentType, Tuple[str, ...]] = {
    IntentType.CREATE: ("project", "issue_type"),
    IntentType.UPDATE: ("issue_key",),
    IntentType.TRANSITION: ("issue_key", "status"),
    IntentType.ASSIGN: ("issue_key", "assignee"),
    IntentType.COMMENT: ("issue_key",),
    IntentType.DELETE: ("issue_key",),
    IntentType.LINK: ("issue_key",),
    IntentType.SEARCH: (),
    IntentType.REPORT: (),
    IntentType.HELP: (),
}

# Actions whose requirements differ from their intent type
_ACTION_REQUIREMENTS: Dict[str, Tuple[str, ...]] = {
    "unassign_issue": ("issue_key",),
}

_MESSAGES = {
    "project": "Which project should this be created in?",
    "issue_key": "Which issue would you like to work with?",
    "issue_type": "What type of issue would you like to create?",
    "assignee": "Who should this be assigned to?",
    "status": "What status should the issue be moved to?",
    "priority": "What priority should this issue have?",
    "sprint": "Which sprint are you referring to?",
    "component": "Which component does this relate to?",
}


def required_entities(intent: Intent) -> Tuple[str, ...]:
    """Entity keys an intent needs before it can be executed."""
    if intent.action in _ACTION_REQUIREMENTS:
        return _ACTION_REQUIREMENTS[intent.action]
    return _REQUIRED_ENTITIES.get(intent.type, ())


def field_entity_type(field: str) -> EntityType:
    """Map an entity key such as ``issue_key_1`` back to its type."""
    return EntityType(re.sub(r"_\d+$", "", field))


def is_valid_issue_key(key: str) -> bool:
    return bool(VALID_ISSUE_KEY.match(key))


def string_similarity(a: str, b: str) -> float:
    """
    Cheap similarity score in [0, 1].

    Exact (case-insensitive) match is 1.0, containment either way is 0.8,
    otherwise the shared-prefix length over the longer string's length.
    """
    a = a.lower()
    b = b.lower()
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    if a in b or b in a:
        return 0.8

    prefix = 0
    for left, right in zip(a, b):
        if left != right:
            break
        prefix += 1
    return prefix / max(len(a), len(b))


def _project_label(project: ProjectRecord) -> str:
    return f"{project.key} ({project.name})" if project.name else project.key


def _user_label(user: UserRecord) -> str:
    return f"{user.username} ({user.display_name})" if user.display_name else user.username


class Disambiguator:
    """Resolves missing, invalid and ambiguous entities on an intent."""

    def __init__(self, config: Optional[ParseConfig] = None, context_store: Optional[ContextStore] = None) -> None:
        self.config = config or ParseConfig()
        self.context_store = context_store or ContextStore(self.config)

    def disambiguate(
        self,
        intent: Intent,
        context: ConversationContext,
        reference: ReferenceData,
    ) -> Tuple[Intent, List[Clarification]]:
        """
        Augment ``intent`` with inferred entities and collect clarifications.

        An empty clarification list means the intent is ready to execute.
        """
        logger.debug(f"Disambiguating {intent.type.value} (confidence={intent.confidence:.2f})")
        clarifications: List[Clarification] = []

        for field in required_entities(intent):
            if field in intent.entities:
                continue
            inferred = self._infer(field, context, reference)
            if inferred is not None:
                intent.entities[field] = inferred
                logger.debug(f"Inferred {field} = {inferred.value_text!r} (confidence={inferred.confidence:.2f})")
                continue
            clarifications.append(
                Clarification(
                    field=field,
                    message=self.clarification_message(field),
                    options=self.field_options(field, context, reference),
                    required=True,
                    entity_type=field_entity_type(field),
                )
            )

        for key, entity in list(intent.entities.items()):
            problem = self.validate_entity(entity, reference)
            if problem is None:
                continue
            value = entity.value_text
            options = self.find_similar_options(entity, reference) if self.config.enable_spell_check else []
            clarifications.append(
                Clarification(
                    field=key,
                    message=f"'{value}' is not a valid {entity.type.value.replace('_', ' ')}: {problem}.",
                    options=options,
                    required=False,
                    entity_type=entity.type,
                )
            )

        clarifications.extend(self.find_ambiguous_entities(intent, reference))
        self.resolve_references(intent)

        if clarifications:
            logger.debug(f"{len(clarifications)} clarification(s) for {intent.type.value}")
        return intent, clarifications

    # -----------------------------------------------------------------------
    # Inference
    # -----------------------------------------------------------------------

    def _infer(self, field: str, context: ConversationContext, reference: ReferenceData) -> Optional[Entity]:
        if self.config.enable_context_infer:
            entity = self.context_store.infer(context, field, reference)
            if entity is not None:
                return entity
        return self._infer_default(field, reference)

    def _infer_default(self, field: str, reference: ReferenceData) -> Optional[Entity]:
        cfg = self.config
        if field == EntityType.PROJECT.value and cfg.default_project:
            project = reference.projects.get(cfg.default_project)
            if project is not None:
                return Entity(
                    type=EntityType.PROJECT,
                    value=project,
                    text=cfg.default_project,
                    confidence=DEFAULT_CONFIDENCE,
                )
        if field == EntityType.ASSIGNEE.value and cfg.default_assignee:
            return Entity(
                type=EntityType.ASSIGNEE,
                value=cfg.default_assignee,
                text=cfg.default_assignee,
                confidence=DEFAULT_CONFIDENCE,
            )
        return None

    # -----------------------------------------------------------------------
    # Clarification content
    # -----------------------------------------------------------------------

    @staticmethod
    def clarification_message(field: str) -> str:
        if field in _MESSAGES:
            return _MESSAGES[field]
        return f"Please specify the {field.replace('_', ' ')}"

    def field_options(self, field: str, context: ConversationContext, reference: ReferenceData) -> List[str]:
        """Alphabetical, bounded option list for a missing field."""
        entity_type = field_entity_type(field)
        if entity_type == EntityType.PROJECT:
            options: Iterable[str] = (_project_label(p) for p in reference.projects.values())
        elif entity_type == EntityType.ISSUE_TYPE:
            options = ISSUE_TYPES
        elif entity_type == EntityType.PRIORITY:
            options = reference.priorities.keys() or PRIORITIES
        elif entity_type == EntityType.STATUS:
            options = reference.statuses.keys()
        elif entity_type == EntityType.ASSIGNEE:
            options = (_user_label(u) for u in reference.users.values() if u.active)
        elif entity_type == EntityType.COMPONENT:
            options = COMPONENTS
        elif entity_type == EntityType.ISSUE_KEY:
            options = self._recent_issue_keys(context)
        else:
            options = ()
        return sorted(set(options))[: self.config.max_clarification_options]

    @staticmethod
    def _recent_issue_keys(context: ConversationContext) -> List[str]:
        keys = {context.last_issue} if context.last_issue else set()
        for past in context.history:
            for entity in past.entities.values():
                if entity.type == EntityType.ISSUE_KEY:
                    keys.add(entity.value_text)
        return sorted(keys)

    # -----------------------------------------------------------------------
    # Validation
    # -----------------------------------------------------------------------

    def validate_entity(self, entity: Entity, reference: ReferenceData) -> Optional[str]:
        """Return a reason string when the entity fails validation."""
        value = entity.value

        if entity.type in (EntityType.ISSUE_KEY, EntityType.EPIC):
            if not is_valid_issue_key(entity.value_text):
                return "invalid issue key format"

        elif entity.type == EntityType.PROJECT:
            key = value.key if isinstance(value, ProjectRecord) else entity.value_text
            if key not in reference.projects:
                return "project not found"

        elif entity.type in (EntityType.ASSIGNEE, EntityType.REPORTER):
            if isinstance(value, UserRecord):
                username = value.username
            elif isinstance(value, str):
                username = value
            else:
                return "not a user"
            if username == CURRENT_USER:
                return None
            user = self._lookup_user(username, reference)
            if user is None:
                return "user not found"
            if not user.active:
                return "user is not active"

        elif entity.type == EntityType.PRIORITY:
            if not is_valid_priority(entity.normalized or entity.value_text):
                return "invalid priority level"

        elif entity.type == EntityType.STATUS:
            name = (entity.normalized or entity.value_text).lower()
            if not any(status.lower() == name for status in reference.statuses):
                return "status not found"

        return None

    @staticmethod
    def _lookup_user(username: str, reference: ReferenceData) -> Optional[UserRecord]:
        if username in reference.users:
            return reference.users[username]
        lowered = username.lower()
        for user in reference.users.values():
            if user.username.lower() == lowered or (user.email and user.email.lower() == lowered):
                return user
        return None

    def find_similar_options(self, entity: Entity, reference: ReferenceData) -> List[str]:
        """Top similarity matches for an invalid entity, alphabetically."""
        target = entity.value_text
        scored: Dict[str, float] = {}

        def consider(label: str, *candidates: str) -> None:
            best = max(string_similarity(target, c) for c in candidates if c is not None)
            if best > self.config.similarity_threshold:
                scored[label] = max(best, scored.get(label, 0.0))

        if entity.type == EntityType.PROJECT:
            for key, project in reference.projects.items():
                consider(_project_label(project), key, project.name)
        elif entity.type in (EntityType.ASSIGNEE, EntityType.REPORTER):
            for username, user in reference.users.items():
                if user.active:
                    consider(_user_label(user), username, user.display_name)
        elif entity.type == EntityType.STATUS:
            for name in reference.statuses:
                consider(name, name)
        elif entity.type == EntityType.PRIORITY:
            for name in reference.priorities or PRIORITIES:
                consider(name, name)

        ranked = sorted(scored.items(), key=lambda item: (-item[1], item[0]))
        return sorted(label for label, _ in ranked[: self.config.max_similar_options])

    # -----------------------------------------------------------------------
    # Ambiguity
    # -----------------------------------------------------------------------

    def find_ambiguous_entities(self, intent: Intent, reference: ReferenceData) -> List[Clarification]:
        clarifications: List[Clarification] = []
        threshold = self.config.ambiguity_threshold

        for key, entity in intent.entities.items():
            if entity.confidence >= threshold:
                continue
            needle = (entity.text or entity.value_text).lstrip("@").lower()
            if not needle:
                continue

            if entity.type == EntityType.PROJECT:
                if any(needle == k.lower() for k in reference.projects):
                    continue
                alternatives = sorted(
                    _project_label(p)
                    for k, p in reference.projects.items()
                    if needle in k.lower() or needle in p.name.lower()
                )
                noun = "projects"
            elif entity.type == EntityType.ASSIGNEE and entity.value != CURRENT_USER:
                if any(needle == name.lower() for name in reference.users):
                    continue
                alternatives = sorted(
                    _user_label(u)
                    for name, u in reference.users.items()
                    if u.active and (needle in name.lower() or needle in u.display_name.lower())
                )
                noun = "users"
            else:
                continue

            if len(alternatives) > 1:
                clarifications.append(
                    Clarification(
                        field=key,
                        message=f"Multiple {noun} match '{entity.text or entity.value_text}'. Which one did you mean?",
                        options=alternatives,
                        required=True,
                        entity_type=entity.type,
                    )
                )
        return clarifications

    # -----------------------------------------------------------------------
    # Reference resolution
    # -----------------------------------------------------------------------

    def resolve_references(self, intent: Intent) -> None:
        """Rewrite special tokens such as ``current_user`` to real identities."""
        current_user = self.config.default_assignee
        if not current_user:
            return
        for key, entity in list(intent.entities.items()):
            if entity.type in (EntityType.ASSIGNEE, EntityType.REPORTER) and entity.value == CURRENT_USER:
                intent.entities[key] = Entity(
                    type=entity.type,
                    value=current_user,
                    text=entity.text or "me",
                    position=entity.position,
                    confidence=RESOLVED_REFERENCE_CONFIDENCE,
                    normalized=current_user,
                )
