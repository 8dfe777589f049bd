"""
Rule-based entity extraction from natural language.

Each entity type owns an ordered list of rules (a compiled regex plus an
extraction function). Every non-overlapping match whose extraction function
returns a value becomes a candidate ``Entity``. Rule order is significant: it
decides which entity gets the plain ``type`` key and which ones are suffixed
``type_1``, ``type_2``, ...
"""

import calendar
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

from .config import ParseConfig
from .models import (
    CURRENT_USER,
    ConversationContext,
    Entity,
    EntityType,
    EntityValue,
    ProjectRecord,
    ReferenceData,
)
from .normalization import (
    is_common_word,
    normalize,
    normalize_issue_type,
    normalize_priority,
    normalize_status,
    priority_from_p_notation,
)

logger = logging.getLogger("issue-nlp.extractor")

ISSUE_KEY_PATTERN = re.compile(r"\b([A-Z][A-Z0-9]{1,9}-\d+)\b")
_LOOSE_ISSUE_KEY = re.compile(r"\b[A-Z]+-\d+\b")

# Words after "to" that are never a person
_NOT_A_USER = frozenset(
    {
        "done", "closed", "resolved", "open", "blocked", "review", "testing", "ready",
        "reopened", "backlog", "todo", "progress", "high", "highest", "medium", "low",
        "lowest", "critical", "blocker", "major", "minor", "trivial", "normal",
        "sprint", "project", "epic", "version", "it", "them", "everyone", "nobody",
    }
)

_TRANSITION_VERBS = {
    "close": "Done",
    "resolve": "Done",
    "finish": "Done",
    "reopen": "Reopened",
    "start": "In Progress",
}

CONFIDENCE_DEFAULT = 0.8
CONFIDENCE_ISSUE_KEY = 0.95
CONFIDENCE_DATE = 0.9
CONFIDENCE_ENUMERATED = 0.85
CONFIDENCE_KNOWN = 0.95
CONFIDENCE_UNKNOWN_USER = 0.6
CONFIDENCE_INFERRED = 0.7


@dataclass(frozen=True)
class _Scope:
    """Per-call inputs available to extraction functions."""

    reference: ReferenceData
    now: datetime


ExtractFunc = Callable[[re.Match, _Scope], Optional[EntityValue]]


@dataclass(frozen=True)
class EntityRule:
    """A pattern plus the function turning a match into a value."""

    name: str
    pattern: re.Pattern
    extract: ExtractFunc


# ---------------------------------------------------------------------------
# Extraction functions
# ---------------------------------------------------------------------------


def _group(index: int = 1) -> ExtractFunc:
    def extract(match: re.Match, scope: _Scope) -> Optional[EntityValue]:
        return match.group(index)

    return extract


def _int_group(match: re.Match, scope: _Scope) -> Optional[EntityValue]:
    try:
        return int(match.group(1))
    except (TypeError, ValueError):
        return None


def _known_project(match: re.Match, scope: _Scope) -> Optional[EntityValue]:
    return scope.reference.find_project(match.group(1))


def _priority_word(match: re.Match, scope: _Scope) -> Optional[EntityValue]:
    return normalize_priority(match.group(1))


def _priority_p(match: re.Match, scope: _Scope) -> Optional[EntityValue]:
    return priority_from_p_notation(match.group(1))


def _issue_type(match: re.Match, scope: _Scope) -> Optional[EntityValue]:
    return normalize_issue_type(match.group(1))


def _status_word(match: re.Match, scope: _Scope) -> Optional[EntityValue]:
    return normalize_status(match.group(1))


def _status_from_verb(match: re.Match, scope: _Scope) -> Optional[EntityValue]:
    return _TRANSITION_VERBS.get(match.group(1).lower())


def _current_user(match: re.Match, scope: _Scope) -> Optional[EntityValue]:
    return CURRENT_USER


def _user_after_to(match: re.Match, scope: _Scope) -> Optional[EntityValue]:
    name = match.group(1)
    if is_common_word(name) or name.lower() in _NOT_A_USER:
        return None
    if scope.reference.find_project(name) is not None:
        return None
    return name


def _sprint_number(match: re.Match, scope: _Scope) -> Optional[EntityValue]:
    return f"Sprint {match.group(1)}"


def _current_sprint(match: re.Match, scope: _Scope) -> Optional[EntityValue]:
    return "current"


def _iso_date(match: re.Match, scope: _Scope) -> Optional[EntityValue]:
    try:
        parsed = datetime.strptime(match.group(1), "%Y-%m-%d")
    except ValueError:
        return None
    return parsed.replace(tzinfo=scope.now.tzinfo)


def _add_months(moment: datetime, months: int) -> datetime:
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def _relative_day(match: re.Match, scope: _Scope) -> Optional[EntityValue]:
    offsets = {"today": 0, "tomorrow": 1, "yesterday": -1}
    return scope.now + timedelta(days=offsets[match.group(1).lower()])


def _relative_period(match: re.Match, scope: _Scope) -> Optional[EntityValue]:
    sign = -1 if match.group(1).lower() == "last" else 1
    period = match.group(2).lower()
    if period == "week":
        return scope.now + timedelta(days=7 * sign)
    if period == "sprint":
        # Two-week sprints
        return scope.now + timedelta(days=14 * sign)
    if period == "month":
        return _add_months(scope.now, sign)
    if period == "quarter":
        return _add_months(scope.now, 3 * sign)
    if period == "year":
        return _add_months(scope.now, 12 * sign)
    return None


def _future_date(match: re.Match, scope: _Scope) -> Optional[EntityValue]:
    amount = int(match.group(1))
    unit = match.group(2).lower().rstrip("s")
    if unit == "day":
        return scope.now + timedelta(days=amount)
    if unit == "week":
        return scope.now + timedelta(days=7 * amount)
    if unit == "month":
        return _add_months(scope.now, amount)
    return None


def _clock_time(match: re.Match, scope: _Scope) -> Optional[EntityValue]:
    hour = int(match.group(1))
    minute = int(match.group(2) or 0)
    meridiem = (match.group(3) or "").lower()
    if meridiem:
        if not 1 <= hour <= 12:
            return None
        hour = hour % 12 + (12 if meridiem == "pm" else 0)
    if hour > 23 or minute > 59:
        return None
    return f"{hour:02d}:{minute:02d}"


_DURATION_UNITS = {"w": "w", "week": "w", "d": "d", "day": "d", "h": "h", "hr": "h", "hour": "h", "min": "m", "minute": "m"}


def _duration(match: re.Match, scope: _Scope) -> Optional[EntityValue]:
    unit = match.group(2).lower()
    if unit not in ("h", "d", "w") and unit.endswith("s"):
        unit = unit[:-1]
    short = _DURATION_UNITS.get(unit)
    if short is None:
        return None
    return f"{int(match.group(1))}{short}"


def _quoted(match: re.Match, scope: _Scope) -> Optional[EntityValue]:
    value = next((g for g in match.groups() if g), None)
    return value.strip() if value and value.strip() else None


def _trailing_text(match: re.Match, scope: _Scope) -> Optional[EntityValue]:
    value = match.group(1).strip().strip("\"'")
    return value or None


# ---------------------------------------------------------------------------
# Rule registry
# ---------------------------------------------------------------------------


def _build_rules() -> List[Tuple[EntityType, List[EntityRule]]]:
    """Build the ordered extraction rules for each entity type."""
    rules: List[Tuple[EntityType, List[EntityRule]]] = []

    rules.append(
        (
            EntityType.ISSUE_KEY,
            [EntityRule("standard_issue_key", ISSUE_KEY_PATTERN, _group())],
        )
    )

    rules.append(
        (
            EntityType.PROJECT,
            [
                EntityRule(
                    "project_keyword",
                    re.compile(r"\b(?:in|for|to|into|under)\s+(?:the\s+)?(?:project\s+)?([A-Za-z][\w]*)\b(?!-\d)", re.I),
                    _known_project,
                ),
                EntityRule(
                    "project_named",
                    re.compile(r"\bproject\s+([A-Za-z][\w]*)\b(?!-\d)", re.I),
                    _known_project,
                ),
            ],
        )
    )

    rules.append(
        (
            EntityType.ISSUE_TYPE,
            [
                EntityRule(
                    "issue_type",
                    re.compile(r"\b(bug|task|story|epic|sub-?task|improvement|feature|defect|incident)s?\b(?!\s+points?\b)", re.I),
                    _issue_type,
                ),
            ],
        )
    )

    rules.append(
        (
            EntityType.PRIORITY,
            [
                EntityRule(
                    "priority_level",
                    re.compile(r"\b(blocker|critical|urgent|highest|high|medium|normal|lowest|low|trivial|minor|major)\b", re.I),
                    _priority_word,
                ),
                EntityRule("priority_p_notation", re.compile(r"\bP([0-4])\b", re.I), _priority_p),
            ],
        )
    )

    rules.append(
        (
            EntityType.STATUS,
            [
                EntityRule(
                    "status",
                    re.compile(
                        r"\b(open|in\s+progress|in\s+review|done|closed|resolved|reopened|blocked|ready|review|testing|todo|to-do|backlog)\b",
                        re.I,
                    ),
                    _status_word,
                ),
                EntityRule(
                    "transition_verb",
                    re.compile(r"^\s*(close|resolve|finish|reopen|start)\b(?=.*\b[A-Z][A-Z0-9]{1,9}-\d+)", re.I),
                    _status_from_verb,
                ),
            ],
        )
    )

    rules.append(
        (
            EntityType.DATE,
            [
                EntityRule("iso_date", re.compile(r"\b(\d{4}-\d{2}-\d{2})\b"), _iso_date),
                EntityRule("relative_date", re.compile(r"\b(today|tomorrow|yesterday)\b", re.I), _relative_day),
                EntityRule(
                    "next_last_date",
                    re.compile(r"\b(next|last)\s+(week|month|sprint|quarter|year)\b", re.I),
                    _relative_period,
                ),
                EntityRule("in_date", re.compile(r"\bin\s+(\d+)\s+(days?|weeks?|months?)\b", re.I), _future_date),
            ],
        )
    )

    rules.append(
        (
            EntityType.SPRINT,
            [
                EntityRule("sprint_number", re.compile(r"\bsprint\s+(\d+)\b", re.I), _sprint_number),
                EntityRule("current_sprint", re.compile(r"\b(current|active)\s+sprint\b", re.I), _current_sprint),
            ],
        )
    )

    rules.append(
        (
            EntityType.ASSIGNEE,
            [
                EntityRule("at_mention", re.compile(r"(?<![\w.])@(\w+(?:\.\w+)*)"), _group()),
                EntityRule(
                    "email",
                    re.compile(r"\b([a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,})\b"),
                    _group(),
                ),
                EntityRule("to_assignee", re.compile(r"\bto\s+(\w+(?:\.\w+)?)(?![-.]?\w|@)", re.I), _user_after_to),
                EntityRule(
                    "me_myself",
                    re.compile(r"(?<!show )(?<!tell )(?<!give )\b(me|myself|my|mine)\b", re.I),
                    _current_user,
                ),
            ],
        )
    )

    rules.append(
        (
            EntityType.REPORTER,
            [
                EntityRule("reported_by", re.compile(r"\breported\s+by\s+@?(\w+(?:\.\w+)?)\b", re.I), _group()),
            ],
        )
    )

    rules.append(
        (
            EntityType.LABEL,
            [
                EntityRule("hashtag_label", re.compile(r"(?<![\w&])#([A-Za-z_][\w-]*)"), _group()),
                EntityRule(
                    "label_keyword",
                    re.compile(r"\blabel(?:ed|led)?\s+(?:as\s+|with\s+)?[\"']?(\w+(?:[-_]\w+)*)[\"']?", re.I),
                    _group(),
                ),
            ],
        )
    )

    rules.append(
        (
            EntityType.COMPONENT,
            [
                EntityRule("component", re.compile(r"\bcomponent\s+[\"']?(\w+(?:[-_]\w+)*)[\"']?", re.I), _group()),
            ],
        )
    )

    rules.append(
        (
            EntityType.EPIC,
            [
                EntityRule("epic_link", re.compile(r"\b(?i:epic)\s+([A-Z][A-Z0-9]{1,9}-\d+)\b"), _group()),
            ],
        )
    )

    rules.append(
        (
            EntityType.FIX_VERSION,
            [
                EntityRule("version_number", re.compile(r"\bversion\s+v?(\d+(?:\.\d+)*)\b", re.I), _group()),
                EntityRule("version_name", re.compile(r"\bversion\s+[\"']?(\w+(?:[-_.]\w+)*)[\"']?", re.I), _group()),
            ],
        )
    )

    rules.append(
        (
            EntityType.STORY_POINTS,
            [
                EntityRule("story_points", re.compile(r"\b(\d+)\s+(?:story\s+)?points?\b", re.I), _int_group),
                EntityRule("fibonacci_points", re.compile(r"\bSP\s*[:=]?\s*(\d+)\b", re.I), _int_group),
            ],
        )
    )

    rules.append(
        (
            EntityType.DURATION,
            [
                EntityRule(
                    "duration",
                    re.compile(r"\b(\d+)\s*(w|weeks?|d|days?|h|hrs?|hours?|mins?|minutes?)\b", re.I),
                    _duration,
                ),
            ],
        )
    )

    rules.append(
        (
            EntityType.TIME,
            [
                EntityRule("clock_time", re.compile(r"\b(\d{1,2}):(\d{2})\s*(am|pm)?\b", re.I), _clock_time),
                EntityRule("meridiem_time", re.compile(r"\b(\d{1,2})()\s*(am|pm)\b", re.I), _clock_time),
            ],
        )
    )

    rules.append(
        (
            EntityType.TEXT,
            [
                EntityRule(
                    "quoted_text",
                    re.compile(r"\"([^\"]+)\"|“([^”]+)”|(?:^|(?<=\s))'([^']+)'"),
                    _quoted,
                ),
                EntityRule(
                    "comment_body",
                    re.compile(r"\b(?:comment|note)\s+(?:on|to)\s+[A-Z][A-Z0-9]{1,9}-\d+\s*:?\s*(.+)$", re.I),
                    _trailing_text,
                ),
                EntityRule("search_terms", re.compile(r"\bsearch\s+for\s+(.+)$", re.I), _trailing_text),
            ],
        )
    )

    rules.append(
        (
            EntityType.NUMBER,
            [
                EntityRule("number", re.compile(r"(?<![\w.:@#-])(\d+)(?![\w.:-])"), _int_group),
            ],
        )
    )

    return rules


def contains_known_entities(text: str, reference: ReferenceData) -> bool:
    """True when the text mentions an issue key, known project or known user."""
    if _LOOSE_ISSUE_KEY.search(text.upper()):
        return True
    for key in reference.projects:
        if re.search(rf"\b{re.escape(key)}\b", text, re.I):
            return True
    lowered = text.lower()
    return any(username.lower() in lowered for username in reference.users)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _overlaps(span: Tuple[int, int], taken: List[Tuple[int, int]]) -> bool:
    start, end = span
    return any(start < t_end and t_start < end for t_start, t_end in taken)


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------


class EntityExtractor:
    """Scans text and produces typed entities with confidence scores."""

    def __init__(self, config: Optional[ParseConfig] = None, clock: Optional[Callable[[], datetime]] = None) -> None:
        self.config = config or ParseConfig()
        self._clock = clock or _utc_now
        self._rules = _build_rules()

    @property
    def rules(self) -> List[Tuple[EntityType, List[EntityRule]]]:
        return self._rules

    def now(self) -> datetime:
        """Current time in the configured time zone."""
        tz = ZoneInfo(self.config.timezone)
        return self._clock().astimezone(tz)

    def extract(
        self,
        text: str,
        reference: ReferenceData,
        context: Optional[ConversationContext] = None,
    ) -> Dict[str, Entity]:
        """
        Extract all entities from text.

        Returns a dict keyed by entity type value, with ``_N`` suffixes for
        repeated types. Never mutates ``context``.
        """
        scope = _Scope(reference=reference, now=self.now())
        entities: Dict[str, Entity] = {}

        for entity_type, rules in self._rules:
            taken: List[Tuple[int, int]] = []
            for rule in rules:
                for match in rule.pattern.finditer(text):
                    span = match.span()
                    if _overlaps(span, taken):
                        continue
                    value = rule.extract(match, scope)
                    if value is None:
                        continue
                    taken.append(span)

                    entity = Entity(
                        type=entity_type,
                        value=value,
                        text=match.group(0).strip(),
                        position=span,
                        confidence=self.entity_confidence(entity_type, value, reference),
                        normalized=normalize(entity_type, value),
                    )
                    key = self._free_key(entities, entity_type.value)
                    entities[key] = entity
                    logger.debug(f"Entity extracted: {key} via {rule.name} (confidence={entity.confidence:.2f})")

        if EntityType.PROJECT.value not in entities:
            project = self._fallback_project(text, reference, context)
            if project is not None:
                entities[EntityType.PROJECT.value] = project

        return entities

    @staticmethod
    def _free_key(entities: Dict[str, Entity], base: str) -> str:
        if base not in entities:
            return base
        index = 1
        while f"{base}_{index}" in entities:
            index += 1
        return f"{base}_{index}"

    def entity_confidence(self, entity_type: EntityType, value: EntityValue, reference: ReferenceData) -> float:
        """Type-specific base confidence, adjusted by reference-cache lookups."""
        if entity_type == EntityType.ISSUE_KEY:
            return CONFIDENCE_ISSUE_KEY
        if entity_type == EntityType.DATE:
            return CONFIDENCE_DATE
        if entity_type in (EntityType.PRIORITY, EntityType.STATUS):
            return CONFIDENCE_ENUMERATED
        if entity_type in (EntityType.ASSIGNEE, EntityType.REPORTER) and isinstance(value, str):
            if value == CURRENT_USER:
                return CONFIDENCE_DEFAULT
            return CONFIDENCE_KNOWN if value in reference.users else CONFIDENCE_UNKNOWN_USER
        if entity_type == EntityType.PROJECT and isinstance(value, ProjectRecord):
            return CONFIDENCE_KNOWN if value.key in reference.projects else CONFIDENCE_DEFAULT
        return CONFIDENCE_DEFAULT

    def _fallback_project(
        self,
        text: str,
        reference: ReferenceData,
        context: Optional[ConversationContext],
    ) -> Optional[Entity]:
        """Find a project mentioned implicitly, or fall back to context/defaults."""
        for key, project in reference.projects.items():
            candidates = [key]
            if project.name:
                candidates.append(project.name)
            for candidate in candidates:
                match = re.search(rf"\b{re.escape(candidate)}\b", text, re.I)
                if match:
                    return Entity(
                        type=EntityType.PROJECT,
                        value=project,
                        text=match.group(0),
                        position=match.span(),
                        confidence=CONFIDENCE_KNOWN,
                    )

        fallbacks = []
        if context is not None and self.config.enable_context_infer:
            fallbacks.append(context.last_project)
        fallbacks.append(self.config.default_project)

        for key in fallbacks:
            if key and key in reference.projects:
                logger.debug(f"Project '{key}' taken from context/defaults")
                return Entity(
                    type=EntityType.PROJECT,
                    value=reference.projects[key],
                    text=key,
                    confidence=CONFIDENCE_INFERRED,
                )
        return None
