"""Vocabulary ordering for review and for new generated exercises.

Two orderings are produced:

* Review ordering lists words needing practice first, unseen words next and
  mastered words last.
* Generation eligibility keeps only the words that appeared in the fewest
  past sessions (exposure fairness) and ranks them by frequency.

After a round, ``apply_round`` derives the new counters from the list of
words the learner got wrong.
"""

import logging
import math
from dataclasses import replace
from typing import Iterable, List, Optional, Sequence, Tuple

from core.dto.curriculum import Status
from core.dto.practice import DEFAULT_THRESHOLD, VocabularyItem, VocabularySummary
from core.errors import NotFound, StateConflict, ValidationError
from core.mastery_aggregator import load_preference
from core.ports.progress_repository import ProgressRepository
from core.status import StatusClassifier

logger = logging.getLogger(__name__)

DEFAULT_MASTERED_STREAK = 3

# Review priority groups
NEEDS_PRACTICE = 0
UNSEEN = 1
MASTERED = 2


class VocabularyRanker:
    """Orders a learner's words and applies practice-round results.

    Static methods are pure; instance methods read and write through the
    injected repository.
    """

    def __init__(
        self,
        repo: Optional[ProgressRepository] = None,
        default_threshold: int = DEFAULT_THRESHOLD,
        mastered_streak: int = DEFAULT_MASTERED_STREAK,
    ):
        self._repo = repo
        self.default_threshold = default_threshold
        self.mastered_streak = mastered_streak

    # ==================== STATIC METHODS (Pure Calculations) ====================

    @staticmethod
    def normalize_text(text: str) -> str:
        """Trim and lower-case a word; blank words are rejected."""
        if not isinstance(text, str):
            raise ValidationError(f"Word must be a string, got {text!r}")
        normalized = text.strip().lower()
        if not normalized:
            raise ValidationError("Word must not be blank")
        return normalized

    @staticmethod
    def word_percent(item: VocabularyItem) -> int:
        if item.total_attempt_count <= 0:
            return 0
        return min(100, math.ceil(item.total_correct_count * 100 / item.total_attempt_count))

    @classmethod
    def review_priority(cls, item: VocabularyItem, threshold: int) -> int:
        percent = cls.word_percent(item)
        if 0 < percent < threshold:
            return NEEDS_PRACTICE
        if percent == 0:
            return UNSEEN
        return MASTERED

    @classmethod
    def review_order(
        cls, items: Iterable[VocabularyItem], threshold: int
    ) -> List[VocabularyItem]:
        """
        Sort words for a review listing.

        Key: (priority group, -frequency, -total correct, text).

        Args:
            items: Words to order
            threshold: Learner threshold

        Returns:
            New list in review order
        """
        return sorted(
            items,
            key=lambda w: (
                cls.review_priority(w, threshold),
                -w.frequency,
                -w.total_correct_count,
                w.text,
            ),
        )

    @staticmethod
    def streak_tier(item: VocabularyItem, mastered_streak: int = DEFAULT_MASTERED_STREAK) -> int:
        """Generation tie-break tier.

        0: attempted but the current streak is short (needs practice)
        1: never attempted
        2: streak reached ``mastered_streak`` (looks mastered)
        """
        if item.streak_correct_count >= mastered_streak:
            return 2
        if item.total_attempt_count == 0:
            return 1
        return 0

    @staticmethod
    def least_exposed(items: Iterable[VocabularyItem]) -> List[VocabularyItem]:
        """Words whose session count equals the minimum session count."""
        items = list(items)
        if not items:
            return []
        fewest = min(w.session_count for w in items)
        return [w for w in items if w.session_count == fewest]

    @classmethod
    def generation_order(
        cls,
        items: Iterable[VocabularyItem],
        mastered_streak: int = DEFAULT_MASTERED_STREAK,
    ) -> List[VocabularyItem]:
        """
        Pick and order the words eligible for a new interactive exercise.

        Only the least exposed words are eligible. They are sorted by
        frequency (descending), streak tier, total correct, total attempts
        (ascending) and finally text.
        """
        return sorted(
            cls.least_exposed(items),
            key=lambda w: (
                -w.frequency,
                cls.streak_tier(w, mastered_streak),
                w.total_correct_count,
                w.total_attempt_count,
                w.text,
            ),
        )

    @classmethod
    def generation_texts(
        cls,
        items: Iterable[VocabularyItem],
        limit: Optional[int] = None,
        mastered_streak: int = DEFAULT_MASTERED_STREAK,
    ) -> List[str]:
        texts = [w.text for w in cls.generation_order(items, mastered_streak)]
        return texts if limit is None else texts[:limit]

    @classmethod
    def summarize(cls, items: Sequence[VocabularyItem], threshold: int) -> VocabularySummary:
        """Ceil of the mean word percent, classified against the threshold."""
        if not items:
            return VocabularySummary(total=0, percent=0, status=Status.STARTED)
        mean = sum(cls.word_percent(w) for w in items) / len(items)
        percent = min(100, math.ceil(mean))
        return VocabularySummary(
            total=len(items),
            percent=percent,
            status=StatusClassifier.classify(percent, threshold),
        )

    @staticmethod
    def parse_word_pairs(items) -> List[Tuple[str, int]]:
        """Parse ``[text, frequency]`` pairs; raises ValidationError on bad shape."""
        if not isinstance(items, (list, tuple)):
            raise ValidationError(f"Expected a list of [word, frequency] pairs, got {items!r}")
        pairs = []
        for index, item in enumerate(items):
            if not isinstance(item, (list, tuple)) or len(item) != 2:
                raise ValidationError(f"Item {index} must be a [word, frequency] pair: {item!r}")
            text, frequency = item
            if not isinstance(text, str):
                raise ValidationError(f"Item {index} word must be a string")
            if isinstance(frequency, bool) or not isinstance(frequency, (int, float)):
                raise ValidationError(f"Item {index} frequency must be a number")
            pairs.append((text, int(frequency)))
        return pairs

    @classmethod
    def apply_round(
        cls, items: Iterable[VocabularyItem], error_words: Iterable[str]
    ) -> List[VocabularyItem]:
        """
        Derive updated counters after a practice round.

        A word is correct when its text is not among ``error_words``
        (compared trimmed and lower-cased). Every word gets one more attempt;
        correct words get one more correct answer and a longer streak,
        wrong words lose their streak. ``finished`` reflects this round only.
        """
        errors = {e.strip().lower() for e in error_words if isinstance(e, str)}
        updated = []
        for item in items:
            is_correct = item.text not in errors
            updated.append(
                replace(
                    item,
                    total_attempt_count=item.total_attempt_count + 1,
                    total_correct_count=item.total_correct_count + (1 if is_correct else 0),
                    streak_correct_count=item.streak_correct_count + 1 if is_correct else 0,
                    finished=is_correct,
                )
            )
        return updated

    # ==================== INSTANCE METHODS (Require Repository) ====================

    def _require_repo(self) -> ProgressRepository:
        if self._repo is None:
            raise RuntimeError("VocabularyRanker needs a repository for this operation")
        return self._repo

    def _threshold(self, learner_id: str, subject_id: int) -> int:
        repo = self._require_repo()
        if repo.get_subject(subject_id) is None:
            raise NotFound("subject", subject_id)
        return load_preference(repo, learner_id, subject_id, self.default_threshold).threshold

    def review_list(
        self, learner_id: str, subject_id: int, topic_id: Optional[int] = None
    ) -> List[VocabularyItem]:
        threshold = self._threshold(learner_id, subject_id)
        words = self._require_repo().get_words(learner_id, subject_id, topic_id)
        return self.review_order(words, threshold)

    def words_for_generation(
        self,
        learner_id: str,
        subject_id: int,
        topic_id: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[str]:
        """Texts to feed a new interactive exercise, most relevant first."""
        self._threshold(learner_id, subject_id)
        words = self._require_repo().get_words(learner_id, subject_id, topic_id)
        texts = self.generation_texts(words, limit, self.mastered_streak)
        logger.debug(f"{len(texts)} of {len(words)} words eligible for generation")
        return texts

    def summary(
        self, learner_id: str, subject_id: int, topic_id: Optional[int] = None
    ) -> VocabularySummary:
        threshold = self._threshold(learner_id, subject_id)
        words = self._require_repo().get_words(learner_id, subject_id, topic_id)
        return self.summarize(words, threshold)

    def record_round(
        self,
        learner_id: str,
        subject_id: int,
        word_ids: Sequence[int],
        error_words: Iterable[str],
    ) -> List[VocabularyItem]:
        """
        Apply one round's results to the learner's words, all or nothing.

        Args:
            learner_id: Learner identifier
            subject_id: Subject the words must belong to
            word_ids: Words reviewed in the round
            error_words: Texts the learner got wrong

        Returns:
            The updated words

        Raises:
            ValidationError: If no word ids are given
            NotFound: If a word does not exist
            StateConflict: If a word belongs to another learner or subject
        """
        repo = self._require_repo()
        word_ids = list(dict.fromkeys(word_ids))
        if not word_ids:
            raise ValidationError("At least one word id is required")
        error_words = list(error_words)
        with repo.transaction():
            words = []
            for word_id in word_ids:
                word = repo.get_word(word_id)
                if word is None:
                    raise NotFound("word", word_id)
                if word.learner_id != learner_id or word.subject_id != subject_id:
                    raise StateConflict(
                        f"Word {word_id} does not belong to learner {learner_id} "
                        f"in subject {subject_id}"
                    )
                words.append(word)

            updated = self.apply_round(words, error_words)
            for word in updated:
                repo.update_word_counters(
                    word.id,
                    word.total_attempt_count,
                    word.total_correct_count,
                    word.streak_correct_count,
                    word.finished,
                )

        correct = sum(1 for w in updated if w.finished)
        logger.info(f"Recorded word round for {learner_id}: {correct}/{len(updated)} correct")
        return updated
