"""
End-to-end tests of the click CLI against a temporary database.
"""

import sys
import os
import json

import pytest
from click.testing import CliRunner

# Add parent directory to path for imports
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from cli import cli
from storage.database import Database

SEED = """
subject: Spanish
sections:
  - name: Grammar
    topics:
      - name: Verbs
        subtopics:
          - {name: present tense, importance: 3}
          - {name: past tense, importance: 5}
        words: [[hablar, 12], [comer, 7]]
  - name: Reading
    topics:
      - name: Stories
"""


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def app(runner, tmp_path):
    """Invoke the CLI against a seeded temporary database."""
    db_path = tmp_path / "cli.db"
    seed_path = tmp_path / "seed.yaml"
    seed_path.write_text(SEED, encoding="utf-8")

    def invoke(*args):
        return runner.invoke(cli, ["--db", str(db_path), *args])

    result = invoke("seed", str(seed_path), "--learner", "alice")
    assert result.exit_code == 0, result.output
    invoke.db_path = db_path
    return invoke


def test_init_creates_database(runner, tmp_path):
    db_path = tmp_path / "fresh.db"
    result = runner.invoke(cli, ["--db", str(db_path), "init"])
    assert result.exit_code == 0, result.output
    assert "initialized successfully" in result.output
    assert db_path.exists()


def test_seed_and_list_subjects(app):
    result = app("subjects")
    assert result.exit_code == 0
    assert "Spanish" in result.output


def test_progress_of_untouched_subject(app):
    result = app("progress", "--learner", "alice", "--subject", "1")
    assert result.exit_code == 0, result.output
    assert "Overall: 0% started" in result.output
    assert "Vocabulary: 2 words" in result.output


def test_unknown_subject_aborts(app):
    result = app("progress", "--learner", "alice", "--subject", "99")
    assert result.exit_code == 1
    assert "subject not found" in result.output.lower()


def test_practice_score_and_weak_subtopics(app):
    result = app("practice", "--learner", "alice", "--topic", "1", "--subtopic", "present tense")
    assert result.exit_code == 0, result.output
    assert "Session #1 created (order 1)" in result.output

    result = app("score", "--learner", "alice", "--session", "1", "--result", "present tense=80")
    assert result.exit_code == 0, result.output
    assert "Session scored: 80%" in result.output

    result = app("weak", "--learner", "alice", "--topic", "1", "--json")
    assert result.exit_code == 0, result.output
    payload = json.loads(result.output.strip().splitlines()[-1])
    assert payload == [["past tense", 0, 5]]
    print("✓ test_practice_score_and_weak_subtopics passed")


def test_score_rejects_malformed_result(app):
    app("practice", "--learner", "alice", "--topic", "1", "--subtopic", "present tense")
    result = app("score", "--learner", "alice", "--session", "1", "--result", "present tense")
    assert result.exit_code == 2


def test_word_round_through_score(app):
    app("practice", "--learner", "alice", "--topic", "1", "--word", "1", "--word", "2")
    result = app("score", "--learner", "alice", "--session", "1", "--wrong", "Comer")
    assert result.exit_code == 0, result.output
    assert "Words: 1/2 correct" in result.output


def test_result_only_score_leaves_words_untouched(app):
    app("practice", "--learner", "alice", "--topic", "1", "--subtopic", "present tense", "--word", "1")
    result = app("score", "--learner", "alice", "--session", "1", "--result", "present tense=80")
    assert result.exit_code == 0, result.output
    assert "Words:" not in result.output

    with Database(app.db_path) as db:
        word = db.get_word(1)
        assert (word.total_attempt_count, word.session_count) == (0, 1)
        assert db.get_session(1).percent_words == 0


def test_words_flag_records_clean_round(app):
    app("practice", "--learner", "alice", "--topic", "1", "--word", "1", "--word", "2")
    result = app("score", "--learner", "alice", "--session", "1", "--words")
    assert result.exit_code == 0, result.output
    assert "Words: 2/2 correct" in result.output


def test_score_needs_something_to_record(app):
    app("practice", "--learner", "alice", "--topic", "1", "--subtopic", "present tense")
    result = app("score", "--learner", "alice", "--session", "1")
    assert result.exit_code == 2
    assert "Nothing to record" in result.output


def test_words_for_generation(app):
    result = app("words", "--learner", "alice", "--subject", "1", "--for-generation")
    assert result.exit_code == 0, result.output
    assert "hablar, comer" in result.output


def test_block_requires_exactly_one_unit(app):
    result = app("block", "--subject", "1")
    assert result.exit_code == 2

    result = app("block", "--subject", "1", "--section", "1", "--topic", "1")
    assert result.exit_code == 2


def test_block_toggles(app):
    result = app("block", "--subject", "1", "--section", "1")
    assert result.exit_code == 0, result.output
    assert "Section 1 blocked" in result.output

    result = app("block", "--subject", "1", "--section", "1")
    assert "Section 1 unblocked" in result.output


def test_stats_current_week(app):
    app("practice", "--learner", "alice", "--topic", "1", "--subtopic", "past tense")
    app("score", "--learner", "alice", "--session", "1", "--result", "past tense=60")

    result = app("stats", "--learner", "alice", "--subject", "1")
    assert result.exit_code == 0, result.output
    assert "Sessions solved: 1 (1 at or above 50%)" in result.output
    assert "Subtopics closed: 1" in result.output
    assert "Forecast:" in result.output


def test_preference_update_and_validation(app):
    result = app("preference", "--learner", "alice", "--subject", "1", "--threshold", "70")
    assert result.exit_code == 0, result.output
    assert "threshold 70%" in result.output

    result = app("preference", "--learner", "alice", "--subject", "1", "--detail-level", "optional")
    assert "threshold 70%, detail level OPTIONAL" in result.output

    result = app("preference", "--learner", "alice", "--subject", "1", "--threshold", "150")
    assert result.exit_code == 2
