"""
Tests for VocabularyRanker: review ordering, generation eligibility,
round updates and their atomic persistence.
"""

import sys
import os

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from conftest import LEARNER
from core.dto.curriculum import Status
from core.dto.practice import VocabularyItem
from core.errors import NotFound, StateConflict, ValidationError
from core.vocabulary_ranker import VocabularyRanker


def _word(text, attempts=0, correct=0, frequency=0, streak=0, sessions=0, word_id=1):
    return VocabularyItem(
        id=word_id,
        learner_id=LEARNER,
        subject_id=1,
        text=text,
        frequency=frequency,
        total_attempt_count=attempts,
        total_correct_count=correct,
        streak_correct_count=streak,
        session_count=sessions,
    )


# ============================================================================
# Percent and review ordering
# ============================================================================


class TestWordPercent:
    def test_unattempted_is_zero(self):
        assert VocabularyRanker.word_percent(_word("a")) == 0

    def test_ceil_of_ratio(self):
        assert VocabularyRanker.word_percent(_word("a", attempts=3, correct=1)) == 34

    def test_capped_at_100(self):
        assert VocabularyRanker.word_percent(_word("a", attempts=2, correct=2)) == 100


class TestReviewOrder:
    def test_needs_practice_then_unseen_then_mastered(self):
        """A(0%, freq 5), B(30%, freq 10), C(80%, freq 1) -> [B, A, C]."""
        a = _word("a", frequency=5)
        b = _word("b", attempts=10, correct=3, frequency=10)
        c = _word("c", attempts=10, correct=8, frequency=1)

        ordered = VocabularyRanker.review_order([a, b, c], threshold=50)
        assert [w.text for w in ordered] == ["b", "a", "c"]
        print("✓ test_needs_practice_then_unseen_then_mastered passed")

    def test_within_group_frequency_then_correct_then_text(self):
        words = [
            _word("zeta", attempts=10, correct=2, frequency=5),
            _word("alpha", attempts=10, correct=2, frequency=5),
            _word("beta", attempts=10, correct=4, frequency=5),
            _word("gamma", attempts=10, correct=1, frequency=9),
        ]
        ordered = VocabularyRanker.review_order(words, threshold=50)
        assert [w.text for w in ordered] == ["gamma", "beta", "alpha", "zeta"]

    def test_priority_groups(self):
        assert VocabularyRanker.review_priority(_word("a", 10, 3), 50) == 0
        assert VocabularyRanker.review_priority(_word("a"), 50) == 1
        assert VocabularyRanker.review_priority(_word("a", 10, 0), 50) == 1
        assert VocabularyRanker.review_priority(_word("a", 10, 5), 50) == 2


# ============================================================================
# Generation eligibility
# ============================================================================


class TestGenerationOrder:
    def test_only_least_exposed_words(self):
        words = [
            _word("often", frequency=100, sessions=3),
            _word("rare", frequency=1, sessions=1),
            _word("also", frequency=2, sessions=1),
        ]
        assert VocabularyRanker.generation_texts(words) == ["also", "rare"]

    def test_frequency_first(self):
        words = [_word("low", frequency=1), _word("high", frequency=9)]
        assert VocabularyRanker.generation_texts(words) == ["high", "low"]

    def test_streak_tiers_break_frequency_ties(self):
        practicing = _word("practicing", attempts=4, correct=2, streak=1, frequency=5)
        new = _word("new", frequency=5)
        mastered = _word("mastered", attempts=4, correct=4, streak=3, frequency=5)

        texts = VocabularyRanker.generation_texts([mastered, new, practicing])
        assert texts == ["practicing", "new", "mastered"]

    def test_then_correct_attempts_and_text(self):
        words = [
            _word("b", attempts=5, correct=2, streak=1, frequency=5),
            _word("a", attempts=5, correct=2, streak=1, frequency=5),
            _word("c", attempts=3, correct=2, streak=1, frequency=5),
            _word("d", attempts=6, correct=1, streak=1, frequency=5),
        ]
        assert VocabularyRanker.generation_texts(words) == ["d", "c", "a", "b"]

    def test_limit_and_empty(self):
        words = [_word("a", frequency=3), _word("b", frequency=2), _word("c", frequency=1)]
        assert VocabularyRanker.generation_texts(words, limit=2) == ["a", "b"]
        assert VocabularyRanker.generation_texts([]) == []

    def test_streak_boundary_is_a_parameter(self):
        word = _word("w", attempts=2, correct=2, streak=2)
        assert VocabularyRanker.streak_tier(word, mastered_streak=3) == 0
        assert VocabularyRanker.streak_tier(word, mastered_streak=2) == 2


# ============================================================================
# Round update
# ============================================================================


class TestApplyRound:
    def test_error_words_update(self):
        """cat wrong, dog right."""
        cat = _word("cat", attempts=2, correct=1, streak=1)
        dog = _word("dog", attempts=2, correct=1, streak=1)

        updated = {w.text: w for w in VocabularyRanker.apply_round([cat, dog], ["cat"])}

        assert updated["cat"].total_attempt_count == 3
        assert updated["cat"].total_correct_count == 1
        assert updated["cat"].finished is False
        assert updated["cat"].streak_correct_count == 0
        assert updated["dog"].total_attempt_count == 3
        assert updated["dog"].total_correct_count == 2
        assert updated["dog"].finished is True
        assert updated["dog"].streak_correct_count == 2
        print("✓ test_error_words_update passed")

    def test_error_words_normalized(self):
        updated = VocabularyRanker.apply_round([_word("cat")], ["  CAT "])
        assert updated[0].finished is False

    def test_inputs_not_mutated(self):
        cat = _word("cat")
        VocabularyRanker.apply_round([cat], [])
        assert cat.total_attempt_count == 0


class TestSummary:
    def test_empty(self):
        summary = VocabularyRanker.summarize([], threshold=50)
        assert (summary.total, summary.percent, summary.status) == (0, 0, Status.STARTED)

    def test_ceil_of_mean(self):
        words = [_word("a", 10, 5), _word("b", 10, 2), _word("c")]
        summary = VocabularyRanker.summarize(words, threshold=50)
        # (50 + 20 + 0) / 3 = 23.3 -> 24
        assert summary.percent == 24
        assert summary.status == Status.PROGRESS


def test_normalize_text():
    assert VocabularyRanker.normalize_text("  Hola ") == "hola"
    with pytest.raises(ValidationError):
        VocabularyRanker.normalize_text("   ")


@pytest.mark.parametrize("payload", ["cat", [["cat"]], [["cat", 1, 2]], [[3, 1]], [["cat", "1"]]])
def test_parse_word_pairs_rejects_bad_shapes(payload):
    with pytest.raises(ValidationError):
        VocabularyRanker.parse_word_pairs(payload)


# ============================================================================
# Repository-backed round
# ============================================================================


class TestRecordRound:
    def test_persists_counters(self, db, curriculum, service):
        service.add_words(LEARNER, curriculum["subject"], [["cat", 5], ["dog", 3]])
        ids = {w.text: w.id for w in db.get_words(LEARNER, curriculum["subject"])}

        VocabularyRanker(db).record_round(
            LEARNER, curriculum["subject"], [ids["cat"], ids["dog"]], ["cat"]
        )

        cat = db.get_word(ids["cat"])
        dog = db.get_word(ids["dog"])
        assert (cat.total_attempt_count, cat.total_correct_count, cat.finished) == (1, 0, False)
        assert (dog.total_attempt_count, dog.total_correct_count, dog.finished) == (1, 1, True)
        assert dog.streak_correct_count == 1

    def test_foreign_word_rejects_whole_batch(self, db, curriculum, service):
        service.add_words(LEARNER, curriculum["subject"], [["cat", 5]])
        service.add_words("bob", curriculum["subject"], [["dog", 3]])
        cat = db.find_word(LEARNER, curriculum["subject"], "cat")
        dog = db.find_word("bob", curriculum["subject"], "dog")

        with pytest.raises(StateConflict):
            VocabularyRanker(db).record_round(LEARNER, curriculum["subject"], [cat.id, dog.id], [])

        assert db.get_word(cat.id).total_attempt_count == 0

    def test_failure_mid_batch_rolls_back(self, db, curriculum, service, monkeypatch):
        service.add_words(LEARNER, curriculum["subject"], [["cat", 5], ["dog", 3]])
        words = db.get_words(LEARNER, curriculum["subject"])
        original = db.update_word_counters
        calls = []

        def flaky(word_id, *args):
            calls.append(word_id)
            if len(calls) == 2:
                raise RuntimeError("simulated storage failure")
            original(word_id, *args)

        monkeypatch.setattr(db, "update_word_counters", flaky)
        with pytest.raises(RuntimeError):
            VocabularyRanker(db).record_round(
                LEARNER, curriculum["subject"], [w.id for w in words], []
            )

        assert all(w.total_attempt_count == 0 for w in db.get_words(LEARNER, curriculum["subject"]))

    def test_unknown_word(self, db, curriculum):
        with pytest.raises(NotFound):
            VocabularyRanker(db).record_round(LEARNER, curriculum["subject"], [999], [])

    def test_empty_round_rejected(self, db, curriculum):
        with pytest.raises(ValidationError):
            VocabularyRanker(db).record_round(LEARNER, curriculum["subject"], [], ["cat"])

    def test_review_list_uses_preference_threshold(self, db, curriculum, service):
        service.add_words(LEARNER, curriculum["subject"], [["cat", 1], ["dog", 1]])
        cat = db.find_word(LEARNER, curriculum["subject"], "cat")
        db.update_word_counters(cat.id, 10, 6, 0, False)

        ranker = VocabularyRanker(db)
        assert [w.text for w in ranker.review_list(LEARNER, curriculum["subject"])] == ["dog", "cat"]

        service.set_preference(LEARNER, curriculum["subject"], threshold=70)
        assert [w.text for w in ranker.review_list(LEARNER, curriculum["subject"])] == ["cat", "dog"]
