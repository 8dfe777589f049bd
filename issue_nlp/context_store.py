"""
Conversational context: last-used values and bounded intent history.

The store itself holds no session state. ``update`` returns a new
``ConversationContext`` so the caller (the session layer) owns every context
value and decides when to persist it.
"""

import logging
import uuid
from typing import Optional

from .config import ParseConfig
from .models import (
    CURRENT_USER,
    ConversationContext,
    Entity,
    EntityType,
    Intent,
    IntentType,
    ReferenceData,
)
from .normalization import common_transitions

logger = logging.getLogger("issue-nlp.context")

CONTEXT_CONFIDENCE = 0.7
TRANSITION_GUESS_CONFIDENCE = 0.6


def generate_session_id() -> str:
    return f"session_{uuid.uuid4().hex}"


class ContextStore:
    """Reads and advances conversation contexts."""

    def __init__(self, config: Optional[ParseConfig] = None) -> None:
        self.config = config or ParseConfig()

    def new_context(self, session_id: Optional[str] = None) -> ConversationContext:
        return ConversationContext(session_id=session_id or generate_session_id())

    def update(self, context: ConversationContext, intent: Intent) -> ConversationContext:
        """Return a copy of ``context`` advanced by a completed parse."""
        changes = {}
        entities = intent.entities

        project = entities.get(EntityType.PROJECT.value)
        if project is not None:
            changes["last_project"] = project.value_text

        issue = entities.get(EntityType.ISSUE_KEY.value)
        if issue is not None:
            changes["last_issue"] = issue.value_text

        sprint = entities.get(EntityType.SPRINT.value)
        if sprint is not None:
            changes["last_sprint"] = sprint.value_text

        assignee = entities.get(EntityType.ASSIGNEE.value)
        if assignee is not None and assignee.value != CURRENT_USER:
            changes["last_assignee"] = assignee.normalized or assignee.value_text

        status = entities.get(EntityType.STATUS.value)
        if status is not None:
            changes["last_status"] = status.normalized or status.value_text

        if intent.type == IntentType.SEARCH:
            terms = entities.get(EntityType.TEXT.value)
            changes["last_search"] = terms.value_text if terms is not None else intent.raw

        limit = self.config.max_history_size
        if limit > 0:
            history = list(context.history)
            history.append(intent)
            changes["history"] = history[-limit:]
        else:
            changes["history"] = []

        updated = context.model_copy(update=changes)
        logger.debug(
            f"Context {updated.session_id} updated: project={updated.last_project!r} "
            f"issue={updated.last_issue!r} history={len(updated.history)}"
        )
        return updated

    def infer(self, context: ConversationContext, field: str, reference: ReferenceData) -> Optional[Entity]:
        """Recover a missing entity from the context's last-used values."""
        if field == EntityType.PROJECT.value:
            project = reference.projects.get(context.last_project) if context.last_project else None
            if project is not None:
                return Entity(
                    type=EntityType.PROJECT,
                    value=project,
                    text=context.last_project,
                    confidence=CONTEXT_CONFIDENCE,
                )

        elif field == EntityType.ISSUE_KEY.value:
            if context.last_issue:
                return Entity(
                    type=EntityType.ISSUE_KEY,
                    value=context.last_issue,
                    text=context.last_issue,
                    confidence=CONTEXT_CONFIDENCE,
                )

        elif field == EntityType.SPRINT.value:
            if context.last_sprint:
                return Entity(
                    type=EntityType.SPRINT,
                    value=context.last_sprint,
                    text=context.last_sprint,
                    confidence=CONTEXT_CONFIDENCE,
                )

        elif field == EntityType.STATUS.value:
            # Only guess when the workflow leaves a single way forward
            next_states = common_transitions(context.last_status) if context.last_status else ()
            if len(next_states) == 1:
                return Entity(
                    type=EntityType.STATUS,
                    value=next_states[0],
                    text=next_states[0],
                    confidence=TRANSITION_GUESS_CONFIDENCE,
                    normalized=next_states[0],
                )

        return None
