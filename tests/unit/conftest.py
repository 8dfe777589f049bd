"""Shared fixtures: a small reference-data snapshot and a frozen clock."""

from datetime import datetime, timezone

import pytest

from issue_nlp.config import ParseConfig
from issue_nlp.models import ProjectRecord, ReferenceData, UserRecord

FIXED_NOW = datetime(2024, 3, 15, 10, 30, tzinfo=timezone.utc)


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def reference():
    return ReferenceData(
        projects={
            "PROJ": ProjectRecord(key="PROJ", name="Main Project"),
            "WEB": ProjectRecord(key="WEB", name="Website"),
        },
        users={
            "john.doe": UserRecord(username="john.doe", display_name="John Doe", email="john.doe@example.com"),
            "jane.smith": UserRecord(username="jane.smith", display_name="Jane Smith"),
            "old.timer": UserRecord(username="old.timer", display_name="Old Timer", active=False),
        },
    )


@pytest.fixture
def config():
    return ParseConfig()
