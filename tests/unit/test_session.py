"""
Tests for per-session context storage and the IssueNLP interface.
"""

import threading

import pytest

from issue_nlp import IssueNLP
from issue_nlp.config import ParseConfig
from issue_nlp.errors import EmptyInputError
from issue_nlp.models import ConversationContext, IntentType, ProjectRecord, StatusRecord, UserRecord
from issue_nlp.parser import NLPParser
from issue_nlp.session import SessionStore


@pytest.fixture
def store(reference, clock):
    return SessionStore(NLPParser(ParseConfig(), reference=reference, clock=clock))


@pytest.fixture
def nlp():
    nlp = IssueNLP(ParseConfig())
    nlp.set_project_cache([ProjectRecord(key="PROJ", name="Main Project")])
    nlp.set_user_cache([UserRecord(username="jane.smith", display_name="Jane Smith")])
    return nlp


class TestSessionStore:
    def test_get_creates_context(self, store):
        context = store.get("alice")
        assert context.session_id == "alice"
        assert store.get("alice") is context

    def test_parse_advances_session(self, store):
        store.parse("update PROJ-7", "alice")
        assert store.get("alice").last_issue == "PROJ-7"

    def test_sessions_isolated(self, store):
        store.parse("update PROJ-7", "alice")
        store.parse("update WEB-2", "bob")
        assert store.get("alice").last_issue == "PROJ-7"
        assert store.get("bob").last_issue == "WEB-2"

    def test_set_replaces(self, store):
        store.set(ConversationContext(session_id="carol", last_issue="WEB-9"))
        result = store.parse("assign it to jane.smith", "carol")
        assert result.intent.entities["issue_key"].value == "WEB-9"

    def test_unknown_command_keeps_context(self, store):
        store.parse("update PROJ-7", "alice")
        before = store.get("alice")
        store.parse("xyz abc def", "alice")
        assert store.get("alice") is before

    def test_empty_input_keeps_context(self, store):
        before = store.get("alice")
        with pytest.raises(EmptyInputError):
            store.parse("", "alice")
        assert store.get("alice") is before

    def test_reset(self, store):
        store.parse("update PROJ-7", "alice")
        store.reset("alice")
        assert store.peek("alice") is None
        assert store.get("alice").last_issue == ""

    def test_session_ids(self, store):
        store.get("b")
        store.get("a")
        assert store.session_ids() == ["a", "b"]

    def test_concurrent_parses_on_one_session(self, store):
        texts = [f"update PROJ-{n}" for n in range(1, 21)]
        threads = [threading.Thread(target=store.parse, args=(text, "shared")) for text in texts]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert len(store.get("shared").history) == len(texts)

    def test_session_ids_while_sessions_created(self, store):
        errors = []
        done = threading.Event()

        def list_sessions():
            try:
                while not done.is_set():
                    store.session_ids()
            except RuntimeError as e:
                errors.append(e)

        def create_sessions(prefix):
            for n in range(200):
                store.get(f"{prefix}-{n}")
                store.reset(f"{prefix}-{n // 2}")

        reader = threading.Thread(target=list_sessions)
        writers = [threading.Thread(target=create_sessions, args=(p,)) for p in ("a", "b", "c")]
        reader.start()
        for thread in writers:
            thread.start()
        for thread in writers:
            thread.join()
        done.set()
        reader.join()

        assert errors == []
        assert all(store.peek(sid) is not None for sid in store.session_ids())

    def test_reset_releases_lock(self, store):
        store.parse("update PROJ-7", "alice")
        store.reset("alice")
        assert "alice" not in store._locks
        assert "alice" not in store.session_ids()


class TestIssueNLP:
    def test_parse_default_session(self, nlp):
        result = nlp.parse("update PROJ-1")
        assert result.intent.type == IntentType.UPDATE
        assert nlp.get_context().last_issue == "PROJ-1"

    def test_named_sessions(self, nlp):
        nlp.parse("update PROJ-1", session_id="x")
        assert nlp.get_context("x").last_issue == "PROJ-1"
        assert nlp.get_context("y").last_issue == ""

    def test_context_round_trip(self, nlp):
        nlp.set_context(ConversationContext(session_id="z", last_project="PROJ"))
        result = nlp.parse("create a bug", session_id="z")
        assert result.intent.entities["project"].value_text == "PROJ"

    def test_extract_entities_with_session(self, nlp):
        nlp.set_context(ConversationContext(session_id="z", last_project="PROJ"))
        entities = nlp.extract_entities("find bugs", session_id="z")
        assert entities["project"].value_text == "PROJ"
        assert "project" not in nlp.extract_entities("find bugs")

    def test_extract_entities_does_not_create_session(self, nlp):
        entities = nlp.extract_entities("find bugs", session_id="ghost")
        assert "project" not in entities
        assert "ghost" not in nlp.sessions.session_ids()

    def test_cache_stats(self, nlp):
        nlp.set_status_cache([StatusRecord(name="Open"), StatusRecord(name="Closed")])
        assert nlp.get_cache_stats() == {"projects": 1, "users": 1, "statuses": 2}

    def test_config_from_environment(self, monkeypatch):
        monkeypatch.setenv("ISSUE_NLP_DEFAULT_ASSIGNEE", "env.user")
        assert IssueNLP().config.default_assignee == "env.user"
