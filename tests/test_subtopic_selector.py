"""
Tests for SubtopicSelector: pure selection rule, payload parsing and
repository-backed selection per topic and per session.
"""

import sys
import os
from datetime import timedelta

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from conftest import LEARNER, NOW, score
from core.dto.curriculum import DetailLevel, UnitKind
from core.dto.practice import SubtopicWeight
from core.errors import NotFound, ValidationError
from core.mastery_aggregator import HierarchyAggregator
from core.subtopic_selector import SubtopicSelector


def _w(name, percent, importance):
    return SubtopicWeight(name=name, percent=percent, importance=importance)


# ============================================================================
# Test select()
# ============================================================================


def test_select_returns_only_weak_sorted_by_importance():
    weights = [_w("a", 10, 5), _w("b", 90, 1), _w("c", 40, 2), _w("d", 49, 9)]
    selection = SubtopicSelector.select(weights, threshold=50)
    assert [w.name for w in selection] == ["c", "a", "d"]
    assert all(w.percent < 50 for w in selection)
    print("✓ test_select_returns_only_weak_sorted_by_importance passed")


def test_select_falls_back_to_all_when_nothing_is_weak():
    weights = [_w("a", 80, 3), _w("b", 90, 1), _w("c", 50, 2)]
    selection = SubtopicSelector.select(weights, threshold=50)
    assert [w.name for w in selection] == ["b", "c", "a"]


def test_select_empty():
    assert SubtopicSelector.select([], threshold=50) == []


def test_select_keeps_input_order_for_equal_importance():
    weights = [_w("x", 0, 1), _w("y", 0, 1)]
    assert [w.name for w in SubtopicSelector.select(weights, 50)] == ["x", "y"]


def test_triples_and_payload():
    weight = _w("verbs", 30, 4)
    assert weight.as_triple() == ("verbs", 30, 4)
    assert SubtopicSelector.as_payload([weight]) == [["verbs", 30, 4]]


# ============================================================================
# Test parse_weighted()
# ============================================================================


def test_parse_triples():
    parsed = SubtopicSelector.parse_weighted([["a", 20, 3], ("b", 75.5, 0)])
    assert parsed == [_w("a", 20, 3), _w("b", 76, 0)]


def test_parse_rounds_fractional_percent_half_up():
    parsed = SubtopicSelector.parse_weighted([["a", 49.9, 1], ["b", 49.4, 1]])
    assert [w.percent for w in parsed] == [50, 49]


def test_parse_pairs():
    parsed = SubtopicSelector.parse_weighted([["a", 20]], with_importance=False)
    assert parsed == [_w("a", 20, 0)]


@pytest.mark.parametrize(
    "payload",
    [
        "not a list",
        [["a", 20]],
        [["a", 20, 1, 2]],
        [[1, 20, 1]],
        [["", 20, 1]],
        [["a", "20", 1]],
        [["a", 120, 1]],
        [["a", 20, -1]],
        [["a", 20, "high"]],
        [["a", 20, 2.5]],
    ],
)
def test_parse_rejects_bad_shapes(payload):
    with pytest.raises(ValidationError):
        SubtopicSelector.parse_weighted(payload)


# ============================================================================
# Repository-backed selection
# ============================================================================


class TestSelectForTopic:
    def test_weak_subtopics_of_topic(self, db, curriculum, service):
        score(service, curriculum["verbs"], [["present tense", 90], ["past tense", 30]])

        selection = SubtopicSelector(db).select_for_topic(LEARNER, curriculum["verbs"])
        assert [w.as_triple() for w in selection] == [("past tense", 30, 5)]

    def test_all_subtopics_when_all_mastered(self, db, curriculum, service):
        score(service, curriculum["nouns"], [["gender", 90], ["plural", 60]])

        selection = SubtopicSelector(db).select_for_topic(LEARNER, curriculum["nouns"])
        assert [w.as_triple() for w in selection] == [("gender", 90, 2), ("plural", 60, 4)]

    def test_unscored_subtopics_are_weak(self, db, curriculum):
        selection = SubtopicSelector(db).select_for_topic(LEARNER, curriculum["verbs"])
        assert [w.name for w in selection] == ["present tense", "past tense"]

    def test_unfinished_session_observations_ignored(self, db, curriculum, service):
        session = service.create_session(LEARNER, curriculum["verbs"], ["present tense"], now=NOW)
        db.add_observation(LEARNER, curriculum["present"], session.id, 100, NOW)

        selection = SubtopicSelector(db).select_for_topic(LEARNER, curriculum["verbs"])
        present = next(w for w in selection if w.name == "present tense")
        assert present.percent == 0

    def test_smoothing_applies_across_sessions(self, db, curriculum, service):
        score(service, curriculum["verbs"], [["past tense", 0]], now=NOW)
        score(service, curriculum["verbs"], [["past tense", 100]], now=NOW + timedelta(hours=1))

        selection = SubtopicSelector(db).select_for_topic(LEARNER, curriculum["verbs"])
        past = next(w for w in selection if w.name == "past tense")
        assert past.percent == 70

    def test_blocked_weak_subtopic_still_selected(self, db, curriculum, service):
        score(service, curriculum["verbs"], [["present tense", 90]])
        HierarchyAggregator(db).set_block(
            curriculum["subject"], UnitKind.SUBTOPIC, curriculum["past"], True
        )

        selection = SubtopicSelector(db).select_for_topic(LEARNER, curriculum["verbs"])
        assert [w.name for w in selection] == ["past tense"]

    def test_detail_level_decides_candidates(self, db, curriculum, service):
        selection = SubtopicSelector(db).select_for_topic(LEARNER, curriculum["verbs"])
        assert "future tense" not in [w.name for w in selection]

        service.set_preference(LEARNER, curriculum["subject"], detail_level=DetailLevel.OPTIONAL)
        selection = SubtopicSelector(db).select_for_topic(LEARNER, curriculum["verbs"])
        assert [w.name for w in selection] == ["future tense", "present tense", "past tense"]

    def test_topic_without_subtopics_is_empty(self, db, curriculum):
        assert SubtopicSelector(db).select_for_topic(LEARNER, curriculum["stories"]) == []

    def test_unknown_topic(self, db, curriculum):
        with pytest.raises(NotFound):
            SubtopicSelector(db).select_for_topic(LEARNER, 999)


class TestSelectForSession:
    def test_only_linked_subtopics(self, db, curriculum, service):
        score(service, curriculum["verbs"], [["present tense", 20], ["past tense", 10]])
        session = service.create_session(LEARNER, curriculum["verbs"], ["present tense"], now=NOW)

        selection = SubtopicSelector(db).select_for_session(LEARNER, session.id)
        assert [w.as_triple() for w in selection] == [("present tense", 20, 3)]

    def test_session_of_another_learner(self, db, curriculum, service):
        session = service.create_session("bob", curriculum["verbs"], ["present tense"], now=NOW)
        with pytest.raises(NotFound):
            SubtopicSelector(db).select_for_session(LEARNER, session.id)
