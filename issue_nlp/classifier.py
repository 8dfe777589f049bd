"""
Deterministic regex intent classifier.

No language models are used. Each IntentType owns an ordered list of regex
patterns; every pattern that matches is scored and the best score wins.
Registration order is the tie-break: on equal scores the intent declared
first keeps the win.
"""

import logging
import re
from typing import Callable, Dict, List, Optional, Tuple

from .config import ParseConfig
from .entity_extractor import contains_known_entities
from .models import Intent, IntentType, ReferenceData

logger = logging.getLogger("issue-nlp.classifier")

_KIND = r"(?P<kind>issue|ticket|bug|story|task|epic|sub-?task|feature|improvement|problem|defect)"
_PLURAL = r"(issues?|bugs?|tasks?|stories|tickets?|epics?)"
_KEY = r"(\w+-\d+)"
_WHO = r"(@?[\w.]+)"

# Words in the "kind" group that mean a generic issue
_GENERIC_KINDS = frozenset({"issue", "ticket", "problem"})

IntentRules = List[Tuple[IntentType, List[re.Pattern]]]


def _p(pattern: str) -> re.Pattern:
    return re.compile(pattern, re.I)


def _build_rules() -> IntentRules:
    """Build classification patterns, in tie-break order."""
    rules: IntentRules = []

    rules.append(
        (
            IntentType.CREATE,
            [
                _p(rf"\bcreate\s+(?:a\s+|an\s+|new\s+)*((?:[\w-]+\s+){{0,3}}?){_KIND}\b"),
                _p(rf"\bnew\s+((?:[\w-]+\s+){{0,2}}?){_KIND}\b(?:\s+(in|for)\s+([\w-]+))?"),
                _p(rf"\badd\s+(?:a\s+|an\s+|new\s+)*((?:[\w-]+\s+){{0,2}}?){_KIND}\s+(?:to|in)\s+([\w-]+)"),
                _p(rf"\bfile\s+(?:a\s+|an\s+)?((?:[\w-]+\s+){{0,2}}?)(?P<kind>bug|issue|ticket)\b"),
                _p(rf"\breport\s+(?:a\s+|an\s+)((?:[\w-]+\s+){{0,2}}?)(?P<kind>bug|issue|problem|defect)\b"),
                _p(r"\bopen\s+(?:a\s+|an\s+)(?:new\s+)?(?P<kind>issue|ticket|bug)\b"),
            ],
        )
    )

    rules.append(
        (
            IntentType.UPDATE,
            [
                _p(rf"\bupdate\s+(?:issue\s+|ticket\s+)?{_KEY}"),
                _p(rf"\bchange\s+(?:the\s+)?(\w+)\s+of\s+{_KEY}\s+to\s+(.+)"),
                _p(rf"\bset\s+(?:the\s+)?(\w+)\s+(?:to|as)\s+(.+?)\s+(?:for|on)\s+{_KEY}"),
                _p(rf"\bset\s+(?:the\s+)?(\w+)\s+of\s+{_KEY}\s+to\s+(.+)"),
                _p(rf"\bmodify\s+{_KEY}"),
                _p(rf"\bedit\s+{_KEY}"),
            ],
        )
    )

    rules.append(
        (
            IntentType.TRANSITION,
            [
                _p(rf"\bmove\s+{_KEY}\s+(?:to|into)\s+(.+)"),
                _p(rf"\btransition\s+{_KEY}\s+to\s+(.+)"),
                _p(rf"\bmark\s+{_KEY}\s+as\s+(.+)"),
                _p(rf"\bclose\s+{_KEY}"),
                _p(rf"\bresolve\s+{_KEY}"),
                _p(rf"\breopen\s+{_KEY}"),
                _p(rf"\bstart\s+(?:work(?:ing)?\s+on\s+)?{_KEY}"),
                _p(rf"\b(?:finish|complete)\s+{_KEY}"),
            ],
        )
    )

    rules.append(
        (
            IntentType.SEARCH,
            [
                _p(rf"\bfind\s+(?:all\s+|me\s+|the\s+)*(?:(\w+)\s+)?{_PLURAL}\b(?:\s+(?:in|for|from)\s+([\w-]+))?"),
                _p(rf"\bshow\s+(?:me\s+)?(?:all\s+)?(?:(\w+)\s+)?{_PLURAL}\s+assigned\s+to\s+{_WHO}"),
                _p(rf"\blist\s+(?:all\s+)?(?:(\w+)\s+)?{_PLURAL}\s+in\s+sprint\s+(.+)"),
                _p(r"\bsearch\s+(?:for\s+)?(.+)"),
                _p(rf"\bget\s+(?:all\s+|my\s+)*(?:(\w+)\s+)?{_PLURAL}\b"),
                _p(r"\bwhat\s+(?:issues?\s+)?(?:are|is)\s+(\w+(?:\.\w+)?)\s+working\s+on\b"),
                _p(rf"\b(?:show|list)\s+(?:me\s+)?(?:all\s+|my\s+|the\s+)*(?:(\w+)\s+)?{_PLURAL}\b(?:\s+(?:in|for|from)\s+([\w-]+))?"),
                _p(r"\b(?:find|look\s+for)\s+(.+)"),
            ],
        )
    )

    rules.append(
        (
            IntentType.ASSIGN,
            [
                _p(rf"\bassign\s+{_KEY}\s+to\s+{_WHO}"),
                _p(rf"\breassign\s+{_KEY}\s+to\s+{_WHO}"),
                _p(rf"\bgive\s+{_KEY}\s+to\s+{_WHO}"),
                _p(rf"\bunassign\s+{_KEY}"),
                _p(rf"\bassign\s+(?:it|this|that)\s+to\s+{_WHO}"),
            ],
        )
    )

    rules.append(
        (
            IntentType.COMMENT,
            [
                _p(rf"\bcomment\s+on\s+{_KEY}\s*:?\s*(.+)"),
                _p(rf"\badd\s+(?:a\s+)?comment\s+to\s+{_KEY}\s*:?\s*(.+)"),
                _p(rf"\bnote\s+on\s+{_KEY}\s*:?\s*(.+)"),
            ],
        )
    )

    rules.append(
        (
            IntentType.DELETE,
            [
                _p(rf"\bdelete\s+(?:issue\s+|ticket\s+)?{_KEY}"),
                _p(rf"\bremove\s+(?:issue\s+|ticket\s+)?{_KEY}"),
            ],
        )
    )

    rules.append(
        (
            IntentType.LINK,
            [
                _p(rf"\blink\s+{_KEY}\s+(?:to|with)\s+{_KEY}"),
                _p(rf"\bconnect\s+{_KEY}\s+(?:to|with)\s+{_KEY}"),
                _p(rf"{_KEY}\s+blocks\s+{_KEY}"),
                _p(rf"{_KEY}\s+is\s+blocked\s+by\s+{_KEY}"),
                _p(rf"{_KEY}\s+relates\s+to\s+{_KEY}"),
                _p(rf"{_KEY}\s+duplicates\s+{_KEY}"),
            ],
        )
    )

    rules.append(
        (
            IntentType.REPORT,
            [
                _p(r"\b(?:generate\s+)?report\s+(?:for\s+|on\s+)?(.+)"),
                _p(r"\b(?:generate|create|show|get|give\s+me)\s+(?:a\s+|an\s+|the\s+|me\s+)?((?:[\w-]+\s+){0,2}?)(?:report|chart|summary)\b(?:\s+(?:for|on)\s+(.+))?"),
                _p(r"\bsprint\s+report\s*(\d+)?"),
                _p(r"\bvelocity\s+(?:report|chart)\b"),
                _p(r"\bburndown\s+(?:report|chart)\b"),
            ],
        )
    )

    rules.append(
        (
            IntentType.HELP,
            [
                _p(r"\bhelp\b\s*(.*)"),
                _p(r"\bhow\s+(?:do\s+i|to|can\s+i)\s+(.+)"),
                _p(r"\bwhat\s+can\s+(?:i|you)\s+do\b"),
                _p(r"\bshow\s+(?:me\s+)?(?:the\s+)?commands\b"),
            ],
        )
    )

    return rules


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


def _create_action(match: re.Match) -> str:
    kind = (match.groupdict().get("kind") or "").lower()
    if not kind or kind in _GENERIC_KINDS:
        return "create_issue"
    if kind == "defect":
        return "create_bug"
    return "create_" + kind.replace("-", "")


_STATIC_ACTIONS: Dict[IntentType, str] = {
    IntentType.UPDATE: "update_issue",
    IntentType.TRANSITION: "transition_issue",
    IntentType.SEARCH: "search_issues",
    IntentType.ASSIGN: "assign_issue",
    IntentType.COMMENT: "add_comment",
    IntentType.DELETE: "delete_issue",
    IntentType.LINK: "link_issues",
    IntentType.REPORT: "generate_report",
    IntentType.HELP: "show_help",
}


def extract_action(intent_type: IntentType, match: re.Match) -> str:
    """Name the concrete action for a matched intent."""
    if intent_type == IntentType.CREATE:
        return _create_action(match)
    if intent_type == IntentType.ASSIGN and re.match(r"\s*unassign\b", match.group(0), re.I):
        return "unassign_issue"
    return _STATIC_ACTIONS.get(intent_type, "unknown")


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------


class IntentClassifier:
    """Scores every registered pattern and picks the best intent."""

    def __init__(self, config: Optional[ParseConfig] = None, clock: Optional[Callable] = None) -> None:
        self.config = config or ParseConfig()
        self._clock = clock
        self._rules = _build_rules()

    @property
    def rules(self) -> IntentRules:
        return self._rules

    def score(self, text: str, match: re.Match, known_entities: bool) -> float:
        """
        Score a single pattern match.

        base + coverage of the input + a bonus for two or more capture groups
        + a bonus when the text mentions a known issue key, project or user.
        """
        cfg = self.config
        confidence = cfg.base_score
        if text:
            confidence += (len(match.group(0)) / len(text)) * cfg.coverage_weight
        if len(match.groups()) >= 2:
            confidence += cfg.capture_group_bonus
        if known_entities:
            confidence += cfg.known_entity_bonus
        return min(confidence, 1.0)

    def classify_all(self, text: str, reference: ReferenceData) -> List[Intent]:
        """
        Best-scoring intent per type, highest score first.

        Ties keep registration order. Scores below the configured minimum are
        still returned; callers decide what to accept.
        """
        known = contains_known_entities(text, reference)
        best: List[Intent] = []

        for intent_type, patterns in self._rules:
            top: Optional[Intent] = None
            for pattern in patterns:
                match = pattern.search(text)
                if match is None:
                    continue
                confidence = round(self.score(text, match, known), 4)
                if top is None or confidence > top.confidence:
                    top = self._make_intent(intent_type, confidence, match, text)
            if top is not None:
                best.append(top)

        best.sort(key=lambda intent: intent.confidence, reverse=True)
        return best

    def classify(self, text: str, reference: ReferenceData) -> Optional[Intent]:
        """Return the winning intent, or None when nothing clears the floor."""
        candidates = self.classify_all(text, reference)
        if not candidates:
            logger.debug("No intent pattern matched")
            return None

        winner = candidates[0]
        if winner.confidence < self.config.min_confidence:
            logger.debug(f"Best intent {winner.type.value} below threshold ({winner.confidence:.2f})")
            return None

        logger.debug(f"Classified as {winner.type.value} (confidence={winner.confidence:.2f}, action={winner.action})")
        return winner

    def _make_intent(self, intent_type: IntentType, confidence: float, match: re.Match, text: str) -> Intent:
        kwargs = {}
        if self._clock is not None:
            kwargs["timestamp"] = self._clock()
        return Intent(
            type=intent_type,
            confidence=confidence,
            action=extract_action(intent_type, match),
            raw=text,
            **kwargs,
        )
