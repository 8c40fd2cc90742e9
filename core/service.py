"""
ProgressService - Service Layer for StudyTrack

This module provides a stateless service interface over the progress core.
A web or CLI layer authenticates the learner, then calls one method per
request; every multi-row write runs inside one repository transaction.

Usage:
    with Database() as db:
        service = ProgressService(db)
        session = service.create_session("alice", topic_id, ["past tense"], word_ids=[word_id])
        service.record_subtopic_results("alice", session.id, [["past tense", 80]])
        service.record_word_round("alice", session.id, ["cat"])
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence

from core.dto.curriculum import DetailLevel, Status, SubjectProgress, Topic
from core.dto.practice import (
    DEFAULT_THRESHOLD,
    LearnerPreference,
    PracticeSession,
    SubtopicWeight,
    VocabularyItem,
    VocabularySummary,
)
from core.errors import NotFound, StateConflict, ValidationError
from core.mastery import MasteryCalculator
from core.mastery_aggregator import HierarchyAggregator, round_half_up
from core.ports.progress_repository import ProgressRepository
from core.status import StatusClassifier
from core.subtopic_selector import SubtopicSelector
from core.vocabulary_ranker import DEFAULT_MASTERED_STREAK, VocabularyRanker

logger = logging.getLogger(__name__)


class ProgressService:
    """
    Stateless service layer for progress operations.

    Key Features:
        - Explicit dependency injection: repository and tuning parameters
          are passed in, nothing is read from global configuration
        - Transactional writes: sessions, observations and word counters
          change all together or not at all
        - Errors surface as core.errors exceptions for the caller to map
    """

    def __init__(
        self,
        repo: ProgressRepository,
        alpha: Optional[float] = None,
        default_threshold: int = DEFAULT_THRESHOLD,
        default_detail_level: DetailLevel = DetailLevel.MANDATORY,
        mastered_streak: int = DEFAULT_MASTERED_STREAK,
    ):
        """
        Initialize service.

        Args:
            repo: Repository implementing core.ports.ProgressRepository
            alpha: Smoothing factor (0.7 when omitted)
            default_threshold: Threshold for learners without a preference
            default_detail_level: Detail level for learners without a preference
            mastered_streak: Correct-answer streak at which a word looks mastered
        """
        self.repo = repo
        self.calculator = MasteryCalculator() if alpha is None else MasteryCalculator(alpha)
        self.default_threshold = StatusClassifier.validate_threshold(default_threshold)
        self.default_detail_level = default_detail_level

        self.aggregator = HierarchyAggregator(
            repo, self.calculator, self.default_threshold, default_detail_level
        )
        self.selector = SubtopicSelector(
            repo, self.calculator, self.default_threshold, default_detail_level
        )
        self.ranker = VocabularyRanker(repo, self.default_threshold, mastered_streak)

    @classmethod
    def from_config(cls, repo: ProgressRepository) -> "ProgressService":
        """Build a service with defaults taken from Config."""
        from config import Config

        return cls(
            repo,
            alpha=Config.SMOOTHING_ALPHA,
            default_threshold=Config.DEFAULT_THRESHOLD,
            default_detail_level=DetailLevel.from_string(Config.DEFAULT_DETAIL_LEVEL),
            mastered_streak=Config.MASTERED_STREAK,
        )

    @staticmethod
    def _now(now: Optional[datetime]) -> datetime:
        return now if now is not None else datetime.now(timezone.utc)

    # ==================== Lookups ====================

    def _topic(self, topic_id: int) -> Topic:
        topic = self.repo.get_topic(topic_id)
        if topic is None:
            raise NotFound("topic", topic_id)
        return topic

    def _own_session(self, learner_id: str, session_id: int) -> PracticeSession:
        session = self.repo.get_session(session_id)
        if session is None or session.learner_id != learner_id:
            raise NotFound("session", session_id)
        return session

    def _own_words(
        self, learner_id: str, subject_id: int, word_ids: Iterable[int]
    ) -> List[VocabularyItem]:
        words = []
        for word_id in dict.fromkeys(word_ids):
            word = self.repo.get_word(word_id)
            if word is None:
                raise NotFound("word", word_id)
            if word.learner_id != learner_id or word.subject_id != subject_id:
                raise StateConflict(
                    f"Word {word_id} does not belong to learner {learner_id} "
                    f"in subject {subject_id}"
                )
            words.append(word)
        return words

    # ==================== Preferences ====================

    def get_preference(self, learner_id: str, subject_id: int) -> LearnerPreference:
        if self.repo.get_subject(subject_id) is None:
            raise NotFound("subject", subject_id)
        return self.aggregator.learner_preference(learner_id, subject_id)

    def set_preference(
        self,
        learner_id: str,
        subject_id: int,
        threshold: Optional[int] = None,
        detail_level: Optional[DetailLevel] = None,
    ) -> LearnerPreference:
        """Create or update a learner's threshold and detail level."""
        current = self.get_preference(learner_id, subject_id)
        preference = LearnerPreference(
            learner_id=learner_id,
            subject_id=subject_id,
            threshold=(
                current.threshold
                if threshold is None
                else StatusClassifier.validate_threshold(threshold)
            ),
            detail_level=current.detail_level if detail_level is None else detail_level,
        )
        self.repo.save_learner_preference(preference)
        return preference

    # ==================== Read models ====================

    def subject_progress(self, learner_id: str, subject_id: int) -> SubjectProgress:
        return self.aggregator.subject_progress(learner_id, subject_id)

    def select_subtopics(
        self, learner_id: str, topic_id: int, session_id: Optional[int] = None
    ) -> List[SubtopicWeight]:
        """Weak subtopics for the next exercise; strict per-session when given."""
        if session_id is not None:
            return self.selector.select_for_session(learner_id, session_id)
        return self.selector.select_for_topic(learner_id, topic_id)

    def review_words(
        self, learner_id: str, subject_id: int, topic_id: Optional[int] = None
    ) -> List[VocabularyItem]:
        return self.ranker.review_list(learner_id, subject_id, topic_id)

    def generation_words(
        self,
        learner_id: str,
        subject_id: int,
        topic_id: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[str]:
        return self.ranker.words_for_generation(learner_id, subject_id, topic_id, limit)

    def words_summary(
        self, learner_id: str, subject_id: int, topic_id: Optional[int] = None
    ) -> VocabularySummary:
        return self.ranker.summary(learner_id, subject_id, topic_id)

    def session_status(self, learner_id: str, session_id: int) -> Status:
        session = self._own_session(learner_id, session_id)
        topic = self._topic(session.topic_id)
        threshold = self.aggregator.learner_preference(learner_id, topic.subject_id).threshold
        return StatusClassifier.classify(session.percent, threshold)

    # ==================== Practice sessions ====================

    def refresh_topic_percent(self, learner_id: str, topic_id: int) -> int:
        """Store the mean percent of the learner's finished top-level sessions."""
        percent = HierarchyAggregator.session_mean_percent(
            self.repo.get_sessions(learner_id, topic_id)
        )
        self.repo.set_topic_percent(learner_id, topic_id, percent)
        return percent

    def create_session(
        self,
        learner_id: str,
        topic_id: int,
        subtopic_names: Sequence[str] = (),
        parent_session_id: Optional[int] = None,
        correct_option_index: Optional[int] = None,
        word_ids: Sequence[int] = (),
        now: Optional[datetime] = None,
    ) -> PracticeSession:
        """
        Create a practice session at the end of the learner's topic sequence.

        Args:
            learner_id: Learner identifier
            topic_id: Topic being practiced
            subtopic_names: Subtopics the generated content covers
            parent_session_id: Owning multi-part session, for a part
            correct_option_index: Expected option, for a multiple-choice part
            word_ids: Vocabulary used by the generated content
            now: Creation time (defaults to UTC now)

        Returns:
            The created session

        Raises:
            NotFound: Unknown topic, subtopic name, parent session or word
            StateConflict: Parent of another topic, or words of another subject
        """
        now = self._now(now)
        with self.repo.transaction():
            topic = self._topic(topic_id)
            by_name = {s.name: s for s in self.repo.get_subtopics(topic_id)}
            subtopic_ids = []
            for name in subtopic_names:
                if name not in by_name:
                    raise NotFound("subtopic", name)
                subtopic_ids.append(by_name[name].id)

            if parent_session_id is not None:
                parent = self._own_session(learner_id, parent_session_id)
                if parent.topic_id != topic_id:
                    raise StateConflict(
                        f"Parent session {parent_session_id} belongs to topic {parent.topic_id}"
                    )
            words = self._own_words(learner_id, topic.subject_id, word_ids)

            order = self.repo.next_session_order(learner_id, topic_id)
            session_id = self.repo.add_session(
                learner_id,
                topic_id,
                order,
                now,
                parent_session_id=parent_session_id,
                correct_option_index=correct_option_index,
            )
            self.repo.link_session_subtopics(session_id, subtopic_ids)
            self.repo.link_session_words(session_id, [w.id for w in words])

        logger.info(f"Created session {session_id} (order {order}) for {learner_id} in topic {topic_id}")
        return self.repo.get_session(session_id)

    def link_words_to_session(
        self, learner_id: str, session_id: int, word_ids: Sequence[int]
    ) -> None:
        with self.repo.transaction():
            session = self._own_session(learner_id, session_id)
            topic = self._topic(session.topic_id)
            words = self._own_words(learner_id, topic.subject_id, word_ids)
            self.repo.link_session_words(session_id, [w.id for w in words])

    def record_subtopic_results(
        self,
        learner_id: str,
        session_id: int,
        results,
        percent_audio: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> PracticeSession:
        """
        Score a session from per-subtopic results.

        Appends one observation per result, marks the session finished and
        answered with the mean percent, then refreshes the stored topic
        percent.

        Args:
            learner_id: Learner identifier
            session_id: Session being scored
            results: ``[[subtopic name, percent], ...]`` or ``{name: percent}``
            percent_audio: Optional audio score for the session
            now: Observation time (defaults to UTC now)

        Raises:
            NotFound: If the session does not exist for this learner
            ValidationError: Malformed or empty results, percent outside [0, 100]
            StateConflict: A result names a subtopic not linked to the session
        """
        if isinstance(results, dict):
            results = [[name, percent] for name, percent in results.items()]
        parsed = SubtopicSelector.parse_weighted(results, with_importance=False)
        if not parsed:
            raise ValidationError("At least one subtopic result is required")
        # parse_weighted truncates to int; keep the raw values for observations
        raw = [MasteryCalculator.validate_percent(item[1]) for item in results]
        if percent_audio is not None:
            percent_audio = MasteryCalculator.validate_percent(percent_audio, "percent_audio")

        now = self._now(now)
        with self.repo.transaction():
            session = self._own_session(learner_id, session_id)
            linked = {s.name: s for s in self.repo.get_session_subtopics(session_id)}

            for weight, percent in zip(parsed, raw):
                subtopic = linked.get(weight.name)
                if subtopic is None:
                    raise StateConflict(
                        f"Subtopic '{weight.name}' is not linked to session {session_id}"
                    )
                self.repo.add_observation(learner_id, subtopic.id, session_id, percent, now)

            fields: Dict[str, object] = {
                "percent": round_half_up(sum(raw) / len(raw)),
                "finished": True,
                "answered": True,
            }
            if percent_audio is not None:
                fields["percent_audio"] = round_half_up(percent_audio)
            self.repo.update_session(session_id, now, **fields)
            topic_percent = self.refresh_topic_percent(learner_id, session.topic_id)

        logger.info(
            f"Scored session {session_id} for {learner_id}: {fields['percent']}% "
            f"(topic {session.topic_id} now {topic_percent}%)"
        )
        return self.repo.get_session(session_id)

    def record_session_percent(
        self,
        learner_id: str,
        session_id: int,
        percent: float,
        percent_audio: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> PracticeSession:
        """Score a session directly, for exercises without subtopic results.

        Raises:
            NotFound: If the session does not exist for this learner
            ValidationError: Percent outside [0, 100]
        """
        fields: Dict[str, object] = {
            "percent": round_half_up(MasteryCalculator.validate_percent(percent)),
            "finished": True,
            "answered": True,
        }
        if percent_audio is not None:
            fields["percent_audio"] = round_half_up(
                MasteryCalculator.validate_percent(percent_audio, "percent_audio")
            )

        now = self._now(now)
        with self.repo.transaction():
            session = self._own_session(learner_id, session_id)
            self.repo.update_session(session_id, now, **fields)
            self.refresh_topic_percent(learner_id, session.topic_id)
        return self.repo.get_session(session_id)

    def resolve_multipart_session(
        self,
        learner_id: str,
        session_id: int,
        chosen_options: Sequence[int],
        now: Optional[datetime] = None,
    ) -> PracticeSession:
        """
        Score a multi-part session from the learner's chosen options.

        Each part is correct when the chosen option equals its expected one.
        Parts and parent are marked answered and finished; the parent's
        percent is ``100 * correct / parts``.

        Raises:
            NotFound: If the session does not exist for this learner
            StateConflict: If the answer count differs from the part count
        """
        now = self._now(now)
        with self.repo.transaction():
            session = self._own_session(learner_id, session_id)
            parts = self.repo.get_child_sessions(session_id)
            if not parts or len(parts) != len(chosen_options):
                raise StateConflict(
                    f"Session {session_id} has {len(parts)} parts "
                    f"but {len(chosen_options)} answers were given"
                )

            correct = 0
            for part, chosen in zip(parts, chosen_options):
                is_correct = part.correct_option_index == chosen
                correct += 1 if is_correct else 0
                self.repo.update_session(
                    part.id,
                    now,
                    user_option_index=chosen,
                    percent=100 if is_correct else 0,
                    answered=True,
                    finished=True,
                )

            percent = round_half_up(100 * correct / len(parts))
            self.repo.update_session(session_id, now, percent=percent, answered=True, finished=True)
            self.refresh_topic_percent(learner_id, session.topic_id)

        logger.info(f"Resolved session {session_id} for {learner_id}: {correct}/{len(parts)} correct")
        return self.repo.get_session(session_id)

    def delete_session(self, learner_id: str, session_id: int) -> int:
        """
        Delete a session with its parts and observations.

        Returns:
            The recomputed stored percent of the session's topic
        """
        with self.repo.transaction():
            session = self._own_session(learner_id, session_id)
            self.repo.delete_session(session_id)
            percent = self.refresh_topic_percent(learner_id, session.topic_id)

        logger.info(f"Deleted session {session_id} for {learner_id}")
        return percent

    # ==================== Vocabulary ====================

    def add_words(
        self,
        learner_id: str,
        subject_id: int,
        pairs,
        topic_id: Optional[int] = None,
    ) -> Dict[str, int]:
        """
        Add words from ``[text, frequency]`` pairs.

        Texts are trimmed and lower-cased; words the learner already has in
        the subject (or repeated within ``pairs``) are skipped.

        Returns:
            {"created": n, "skipped": m}

        Raises:
            NotFound: Unknown subject or topic
            ValidationError: Malformed pairs or blank words
            StateConflict: Topic of another subject
        """
        parsed = VocabularyRanker.parse_word_pairs(pairs)
        normalized = [(VocabularyRanker.normalize_text(text), freq) for text, freq in parsed]

        created = skipped = 0
        with self.repo.transaction():
            if self.repo.get_subject(subject_id) is None:
                raise NotFound("subject", subject_id)
            if topic_id is not None and self._topic(topic_id).subject_id != subject_id:
                raise StateConflict(f"Topic {topic_id} does not belong to subject {subject_id}")

            seen = set()
            for text, frequency in normalized:
                if text in seen or self.repo.find_word(learner_id, subject_id, text):
                    skipped += 1
                    continue
                seen.add(text)
                self.repo.add_word(learner_id, subject_id, text, frequency, topic_id)
                created += 1

        if skipped:
            logger.warning(f"Skipped {skipped} duplicate words for {learner_id}")
        logger.info(f"Added {created} words for {learner_id} in subject {subject_id}")
        return {"created": created, "skipped": skipped}

    def record_words(
        self,
        learner_id: str,
        subject_id: int,
        word_ids: Sequence[int],
        error_words: Iterable[str],
    ) -> List[VocabularyItem]:
        return self.ranker.record_round(learner_id, subject_id, word_ids, error_words)

    def record_word_round(
        self,
        learner_id: str,
        session_id: int,
        error_words: Iterable[str],
        now: Optional[datetime] = None,
    ) -> List[VocabularyItem]:
        """
        Apply a round's wrong words to every word linked to a session.

        Word counters and the session's ``percent_words`` change together.

        Raises:
            StateConflict: If the session has no linked words
        """
        now = self._now(now)
        with self.repo.transaction():
            session = self._own_session(learner_id, session_id)
            topic = self._topic(session.topic_id)
            word_ids = [w.id for w in self.repo.get_session_words(session_id)]
            if not word_ids:
                raise StateConflict(f"Session {session_id} has no linked words")
            updated = self.ranker.record_round(learner_id, topic.subject_id, word_ids, error_words)
            correct = sum(1 for w in updated if w.finished)
            self.repo.update_session(
                session_id, now, percent_words=round_half_up(100 * correct / len(updated))
            )
        return updated

    def delete_word(self, learner_id: str, word_id: int) -> None:
        word = self.repo.get_word(word_id)
        if word is None:
            raise NotFound("word", word_id)
        if word.learner_id != learner_id:
            raise StateConflict(f"Word {word_id} does not belong to learner {learner_id}")
        self.repo.delete_word(word_id)
        logger.info(f"Deleted word '{word.text}' for {learner_id}")

    def delete_topic_words(self, learner_id: str, topic_id: int) -> int:
        self._topic(topic_id)
        with self.repo.transaction():
            deleted = self.repo.delete_topic_words(learner_id, topic_id)
        logger.info(f"Deleted {deleted} words of topic {topic_id} for {learner_id}")
        return deleted
