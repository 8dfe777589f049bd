"""
Per-session conversation contexts.

Parses on the same session are serialized so that each one sees the context
left behind by the previous one. Distinct sessions never block each other.
"""

import logging
import threading
from typing import Dict, List, Optional

from .models import ConversationContext, ParseResult
from .parser import NLPParser

logger = logging.getLogger("issue-nlp.session")


class SessionStore:
    """Holds one ``ConversationContext`` per session id."""

    def __init__(self, parser: NLPParser) -> None:
        self.parser = parser
        self._contexts: Dict[str, ConversationContext] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, session_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(session_id)
            if lock is None:
                lock = self._locks[session_id] = threading.Lock()
            return lock

    def get(self, session_id: str) -> ConversationContext:
        """Return the session's context, creating an empty one on first use."""
        with self._lock_for(session_id):
            return self._get_or_create(session_id)

    def _get_or_create(self, session_id: str) -> ConversationContext:
        context = self._contexts.get(session_id)
        if context is None:
            context = self.parser.context_store.new_context(session_id)
            self._store(session_id, context)
            logger.debug(f"Session {session_id} created")
        return context

    def _store(self, session_id: str, context: ConversationContext) -> None:
        with self._registry_lock:
            self._contexts[session_id] = context

    def set(self, context: ConversationContext) -> None:
        """Store ``context`` under its own session id, replacing any previous one."""
        with self._lock_for(context.session_id):
            self._store(context.session_id, context)

    def parse(self, text: str, session_id: str) -> ParseResult:
        """Parse ``text`` against the session's context and keep the result."""
        with self._lock_for(session_id):
            context = self._get_or_create(session_id)
            result, updated = self.parser.parse(text, context)
            self._store(session_id, updated)
            return result

    def reset(self, session_id: str) -> None:
        """Forget the session's context and its lock."""
        with self._lock_for(session_id):
            with self._registry_lock:
                self._contexts.pop(session_id, None)
                self._locks.pop(session_id, None)
            logger.debug(f"Session {session_id} reset")

    def session_ids(self) -> List[str]:
        with self._registry_lock:
            return sorted(self._contexts)

    def peek(self, session_id: str) -> Optional[ConversationContext]:
        """Stored context without creating one."""
        return self._contexts.get(session_id)
