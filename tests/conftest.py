"""Shared fixtures: a temporary SQLite database with a small curriculum."""

import os
import sys
from datetime import datetime, timezone

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from core.dto.curriculum import DetailLevel
from core.service import ProgressService
from storage.database import Database

LEARNER = "alice"

# A Wednesday
NOW = datetime(2026, 3, 11, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def db(tmp_path):
    """Initialized database in a temporary directory."""
    database = Database(tmp_path / "studytrack.db")
    database.initialize()
    yield database
    database.close()


@pytest.fixture
def curriculum(db):
    """Spanish: Grammar(Verbs, Nouns) and Reading(Stories without subtopics).

    Returns a dict of ids keyed by short names.
    """
    ids = {}
    ids["subject"] = db.add_subject("Spanish")
    ids["grammar"] = db.add_section(ids["subject"], "Grammar", position=0)
    ids["reading"] = db.add_section(ids["subject"], "Reading", position=1)

    ids["verbs"] = db.add_topic(ids["grammar"], "Verbs", position=0)
    ids["nouns"] = db.add_topic(ids["grammar"], "Nouns", position=1)
    ids["stories"] = db.add_topic(ids["reading"], "Stories", position=0)

    ids["present"] = db.add_subtopic(ids["verbs"], "present tense", importance=3)
    ids["past"] = db.add_subtopic(ids["verbs"], "past tense", importance=5)
    ids["future"] = db.add_subtopic(
        ids["verbs"], "future tense", importance=1, detail_level=DetailLevel.DESIRABLE
    )
    ids["gender"] = db.add_subtopic(ids["nouns"], "gender", importance=2)
    ids["plural"] = db.add_subtopic(ids["nouns"], "plural", importance=4)
    return ids


@pytest.fixture
def service(db):
    return ProgressService(db)


def score(service, topic_id, results, now=NOW, learner=LEARNER):
    """Create a session linked to the named subtopics and score it."""
    session = service.create_session(learner, topic_id, [name for name, _ in results], now=now)
    return service.record_subtopic_results(learner, session.id, results, now=now)
