"""
Tests for the disambiguator.

Covers required-entity checks, inference from context and defaults,
validation against reference data, ambiguity detection, similarity scoring
and the ``current_user`` rewrite.
"""

import pytest

from issue_nlp.config import ParseConfig
from issue_nlp.disambiguator import (
    Disambiguator,
    field_entity_type,
    is_valid_issue_key,
    required_entities,
    string_similarity,
)
from issue_nlp.entity_extractor import EntityExtractor
from issue_nlp.models import (
    CURRENT_USER,
    ConversationContext,
    Entity,
    EntityType,
    Intent,
    IntentType,
    ProjectRecord,
    ReferenceData,
    UserRecord,
)


def entity(entity_type, value, confidence=0.95, normalized=None, text=None):
    return Entity(
        type=entity_type,
        value=value,
        text=text if text is not None else str(value),
        confidence=confidence,
        normalized=normalized,
    )


def make_intent(intent_type, action="", **entities):
    return Intent(type=intent_type, confidence=0.9, action=action, entities=entities)


@pytest.fixture
def context():
    return ConversationContext(session_id="s1")


@pytest.fixture
def disambiguator():
    return Disambiguator(ParseConfig())


class TestRequiredEntities:
    @pytest.mark.parametrize(
        "intent_type,expected",
        [
            (IntentType.CREATE, ("project", "issue_type")),
            (IntentType.UPDATE, ("issue_key",)),
            (IntentType.TRANSITION, ("issue_key", "status")),
            (IntentType.ASSIGN, ("issue_key", "assignee")),
            (IntentType.COMMENT, ("issue_key",)),
            (IntentType.DELETE, ("issue_key",)),
            (IntentType.LINK, ("issue_key",)),
            (IntentType.SEARCH, ()),
            (IntentType.REPORT, ()),
            (IntentType.HELP, ()),
        ],
    )
    def test_table(self, intent_type, expected):
        assert required_entities(make_intent(intent_type)) == expected

    def test_unassign_needs_no_assignee(self):
        assert required_entities(make_intent(IntentType.ASSIGN, action="unassign_issue")) == ("issue_key",)

    def test_field_entity_type(self):
        assert field_entity_type("issue_key_1") == EntityType.ISSUE_KEY
        assert field_entity_type("project") == EntityType.PROJECT

    def test_missing_fields_become_required_clarifications(self, disambiguator, context, reference):
        _, clarifications = disambiguator.disambiguate(make_intent(IntentType.CREATE), context, reference)
        assert [c.field for c in clarifications] == ["project", "issue_type"]
        assert all(c.required for c in clarifications)
        assert clarifications[0].options == ["PROJ (Main Project)", "WEB (Website)"]
        assert clarifications[1].options == ["Bug", "Epic", "Story", "Sub-task", "Task"]
        assert clarifications[0].message == "Which project should this be created in?"

    def test_nothing_required(self, disambiguator, context, reference):
        _, clarifications = disambiguator.disambiguate(make_intent(IntentType.SEARCH), context, reference)
        assert clarifications == []


class TestInference:
    def test_project_from_context(self, disambiguator, reference):
        context = ConversationContext(session_id="s1", last_project="WEB")
        intent, clarifications = disambiguator.disambiguate(make_intent(IntentType.CREATE), context, reference)
        assert intent.entities["project"].value_text == "WEB"
        assert intent.entities["project"].confidence == 0.7
        assert [c.field for c in clarifications] == ["issue_type"]

    def test_default_project_when_inference_disabled(self, reference):
        disambiguator = Disambiguator(ParseConfig(enable_context_infer=False, default_project="PROJ"))
        context = ConversationContext(session_id="s1", last_project="WEB")
        intent, _ = disambiguator.disambiguate(make_intent(IntentType.CREATE), context, reference)
        assert intent.entities["project"].value_text == "PROJ"
        assert intent.entities["project"].confidence == 0.6

    def test_default_project_must_be_cached(self, context, reference):
        disambiguator = Disambiguator(ParseConfig(default_project="NOPE"))
        _, clarifications = disambiguator.disambiguate(make_intent(IntentType.CREATE), context, reference)
        assert "project" in [c.field for c in clarifications]

    def test_default_assignee(self, context, reference):
        disambiguator = Disambiguator(ParseConfig(default_assignee="jane.smith"))
        intent = make_intent(IntentType.ASSIGN, issue_key=entity(EntityType.ISSUE_KEY, "PROJ-1"))
        intent, clarifications = disambiguator.disambiguate(intent, context, reference)
        assert intent.entities["assignee"].value == "jane.smith"
        assert intent.entities["assignee"].confidence == 0.6
        assert clarifications == []

    def test_status_from_workflow(self, disambiguator, reference):
        context = ConversationContext(session_id="s1", last_status="To Do")
        intent = make_intent(IntentType.TRANSITION, issue_key=entity(EntityType.ISSUE_KEY, "PROJ-1"))
        intent, clarifications = disambiguator.disambiguate(intent, context, reference)
        assert intent.entities["status"].normalized == "In Progress"
        assert clarifications == []

    def test_issue_key_options_from_history(self, reference):
        disambiguator = Disambiguator(ParseConfig(enable_context_infer=False))
        past = make_intent(IntentType.UPDATE, issue_key=entity(EntityType.ISSUE_KEY, "WEB-2"))
        context = ConversationContext(session_id="s1", last_issue="PROJ-5", history=[past])
        _, clarifications = disambiguator.disambiguate(make_intent(IntentType.UPDATE), context, reference)
        assert clarifications[0].options == ["PROJ-5", "WEB-2"]

    def test_options_bounded(self, context):
        projects = {f"P{n:02d}": ProjectRecord(key=f"P{n:02d}", name="") for n in range(15)}
        _, clarifications = Disambiguator().disambiguate(
            make_intent(IntentType.CREATE), context, ReferenceData(projects=projects)
        )
        options = clarifications[0].options
        assert len(options) == 10
        assert options == sorted(options)


class TestValidation:
    def _single(self, disambiguator, context, reference, **entities):
        intent = make_intent(IntentType.SEARCH, **entities)
        _, clarifications = disambiguator.disambiguate(intent, context, reference)
        return clarifications

    def test_bad_issue_key(self, disambiguator, context, reference):
        clarifications = self._single(disambiguator, context, reference, issue_key=entity(EntityType.ISSUE_KEY, "proj-12"))
        assert len(clarifications) == 1
        assert not clarifications[0].required
        assert "'proj-12'" in clarifications[0].message

    @pytest.mark.parametrize("key,valid", [("PROJ-1", True), ("AB-99999", True), ("A-1", False), ("PROJ1", False)])
    def test_issue_key_format(self, key, valid):
        assert is_valid_issue_key(key) is valid

    def test_unknown_project_with_suggestion(self, disambiguator, context, reference):
        project = entity(EntityType.PROJECT, ProjectRecord(key="PROJX", name=""))
        clarifications = self._single(disambiguator, context, reference, project=project)
        assert clarifications[0].field == "project"
        assert clarifications[0].options == ["PROJ (Main Project)"]

    def test_unknown_user_with_suggestion(self, disambiguator, context, reference):
        clarifications = self._single(
            disambiguator, context, reference, assignee=entity(EntityType.ASSIGNEE, "john", confidence=0.6)
        )
        assert len(clarifications) == 1
        assert clarifications[0].message.startswith("'john' is not a valid assignee")
        assert clarifications[0].options == ["john.doe (John Doe)"]

    def test_spell_check_disabled(self, context, reference):
        disambiguator = Disambiguator(ParseConfig(enable_spell_check=False))
        clarifications = self._single(
            disambiguator, context, reference, assignee=entity(EntityType.ASSIGNEE, "john", confidence=0.6)
        )
        assert clarifications[0].options == []

    def test_inactive_user(self, disambiguator, context, reference):
        clarifications = self._single(disambiguator, context, reference, assignee=entity(EntityType.ASSIGNEE, "old.timer"))
        assert "not active" in clarifications[0].message

    def test_user_by_email(self, disambiguator, context, reference):
        email = entity(EntityType.ASSIGNEE, "john.doe@example.com")
        assert self._single(disambiguator, context, reference, assignee=email) == []

    def test_current_user_is_valid(self, disambiguator, context, reference):
        me = entity(EntityType.ASSIGNEE, CURRENT_USER, confidence=0.8, text="me")
        assert self._single(disambiguator, context, reference, assignee=me) == []

    def test_invalid_priority(self, disambiguator, context, reference):
        priority = entity(EntityType.PRIORITY, "Someday", normalized="Someday")
        clarifications = self._single(disambiguator, context, reference, priority=priority)
        assert clarifications[0].entity_type == EntityType.PRIORITY

    def test_status_must_be_cached(self, disambiguator, context, reference):
        status = entity(EntityType.STATUS, "Waiting", normalized="Waiting")
        clarifications = self._single(disambiguator, context, reference, status=status)
        assert "status not found" in clarifications[0].message

    def test_valid_status(self, disambiguator, context, reference):
        status = entity(EntityType.STATUS, "Done", normalized="Done")
        assert self._single(disambiguator, context, reference, status=status) == []

    @pytest.mark.parametrize(
        "text",
        [
            "mark PROJ-1 as open",
            "mark PROJ-1 as in progress",
            "mark PROJ-1 as in review",
            "mark PROJ-1 as done",
            "mark PROJ-1 as closed",
            "mark PROJ-1 as resolved",
            "mark PROJ-1 as reopened",
            "mark PROJ-1 as blocked",
            "mark PROJ-1 as ready",
            "mark PROJ-1 as review",
            "mark PROJ-1 as testing",
            "mark PROJ-1 as todo",
            "mark PROJ-1 as to-do",
            "mark PROJ-1 as backlog",
            "close PROJ-1",
            "resolve PROJ-1",
            "finish PROJ-1",
            "reopen PROJ-1",
            "start PROJ-1",
        ],
    )
    def test_extracted_statuses_valid_by_default(self, disambiguator, clock, text):
        reference = ReferenceData()
        status = EntityExtractor(ParseConfig(), clock=clock).extract(text, reference)["status"]
        assert disambiguator.validate_entity(status, reference) is None


class TestAmbiguity:
    def test_ambiguous_user(self, disambiguator, context):
        reference = ReferenceData(
            users={
                "john.doe": UserRecord(username="john.doe", display_name="John Doe"),
                "johnny.b": UserRecord(username="johnny.b", display_name="Johnny B"),
            }
        )
        intent = make_intent(IntentType.SEARCH, assignee=entity(EntityType.ASSIGNEE, "john", confidence=0.6))
        _, clarifications = disambiguator.disambiguate(intent, context, reference)
        ambiguous = [c for c in clarifications if c.required]
        assert len(ambiguous) == 1
        assert ambiguous[0].options == ["john.doe (John Doe)", "johnny.b (Johnny B)"]

    def test_ambiguous_project_name(self, disambiguator, context):
        reference = ReferenceData(
            projects={
                "MOB": ProjectRecord(key="MOB", name="Mobile App"),
                "WEBA": ProjectRecord(key="WEBA", name="Web App"),
            }
        )
        project = entity(EntityType.PROJECT, reference.projects["MOB"], confidence=0.7, text="app")
        intent = make_intent(
            IntentType.CREATE,
            project=project,
            issue_type=entity(EntityType.ISSUE_TYPE, "Bug", normalized="Bug"),
        )
        _, clarifications = disambiguator.disambiguate(intent, context, reference)
        assert [c.field for c in clarifications] == ["project"]
        assert clarifications[0].required
        assert clarifications[0].options == ["MOB (Mobile App)", "WEBA (Web App)"]

    @pytest.mark.parametrize("intent_type", [IntentType.CREATE, IntentType.HELP])
    def test_exact_project_key_not_ambiguous(self, disambiguator, intent_type):
        reference = ReferenceData(
            projects={
                "PROJ": ProjectRecord(key="PROJ", name="Main Project"),
                "PROJX": ProjectRecord(key="PROJX", name="Project X"),
            }
        )
        context = ConversationContext(session_id="s1", last_project="PROJ")
        project = entity(EntityType.PROJECT, reference.projects["PROJ"], confidence=0.7, text="PROJ")
        intent = make_intent(
            intent_type,
            project=project,
            issue_type=entity(EntityType.ISSUE_TYPE, "Bug", normalized="Bug"),
        )
        _, clarifications = disambiguator.disambiguate(intent, context, reference)
        assert clarifications == []

    def test_exact_username_not_ambiguous(self, disambiguator, context):
        reference = ReferenceData(
            users={
                "john": UserRecord(username="john", display_name="John"),
                "johnny.b": UserRecord(username="johnny.b", display_name="Johnny B"),
            }
        )
        intent = make_intent(IntentType.SEARCH, assignee=entity(EntityType.ASSIGNEE, "john", confidence=0.6))
        _, clarifications = disambiguator.disambiguate(intent, context, reference)
        assert clarifications == []

    def test_confident_entities_not_checked(self, disambiguator, context):
        reference = ReferenceData(
            users={
                "john.doe": UserRecord(username="john.doe"),
                "johnny.b": UserRecord(username="johnny.b"),
            }
        )
        intent = make_intent(IntentType.SEARCH, assignee=entity(EntityType.ASSIGNEE, "john.doe", confidence=0.95))
        _, clarifications = disambiguator.disambiguate(intent, context, reference)
        assert clarifications == []


class TestReferenceResolution:
    def test_current_user_resolved(self, context, reference):
        disambiguator = Disambiguator(ParseConfig(default_assignee="test.user"))
        intent = make_intent(
            IntentType.ASSIGN,
            action="assign_issue",
            issue_key=entity(EntityType.ISSUE_KEY, "PROJ-1"),
            assignee=entity(EntityType.ASSIGNEE, CURRENT_USER, confidence=0.8, text="me"),
        )
        intent, clarifications = disambiguator.disambiguate(intent, context, reference)
        assert intent.entities["assignee"].value == "test.user"
        assert intent.entities["assignee"].normalized == "test.user"
        assert intent.entities["assignee"].confidence == 0.9
        assert clarifications == []

    def test_left_alone_without_default(self, disambiguator, context, reference):
        intent = make_intent(
            IntentType.ASSIGN,
            issue_key=entity(EntityType.ISSUE_KEY, "PROJ-1"),
            assignee=entity(EntityType.ASSIGNEE, CURRENT_USER, confidence=0.8, text="me"),
        )
        intent, _ = disambiguator.disambiguate(intent, context, reference)
        assert intent.entities["assignee"].value == CURRENT_USER

    def test_unassign_without_assignee(self, disambiguator, context, reference):
        intent = make_intent(
            IntentType.ASSIGN,
            action="unassign_issue",
            issue_key=entity(EntityType.ISSUE_KEY, "PROJ-1"),
        )
        _, clarifications = disambiguator.disambiguate(intent, context, reference)
        assert clarifications == []


class TestSimilarity:
    @pytest.mark.parametrize(
        "a,b,expected",
        [
            ("abc", "abc", 1.0),
            ("ABC", "abc", 1.0),
            ("proj", "project", 0.8),
            ("project", "proj", 0.8),
            ("abcd", "abxy", 0.5),
            ("xyz", "abc", 0.0),
            ("", "abc", 0.0),
            ("", "", 1.0),
        ],
    )
    def test_scores(self, a, b, expected):
        assert string_similarity(a, b) == pytest.approx(expected)

    def test_symmetric(self):
        assert string_similarity("jira", "jim") == string_similarity("jim", "jira")
