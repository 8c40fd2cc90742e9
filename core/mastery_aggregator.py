"""
Mastery Aggregation Module for StudyTrack.

Provides hierarchical roll-up and cascading block/unblock:
    Subtopic → Topic → Section → Subject

Roll-ups are pure functions recomputed on every read; nothing derived here
is persisted. The only write is the block cascade, which runs inside a
single repository transaction.

Usage:
    from core.mastery_aggregator import HierarchyAggregator
    from storage.database import Database

    with Database() as db:
        aggregator = HierarchyAggregator(db)

        progress = aggregator.subject_progress("learner-1", subject_id)
        aggregator.toggle_block(subject_id, UnitKind.SECTION, section_id)
"""

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from core.dto.curriculum import (
    DetailLevel,
    Section,
    SectionProgress,
    Subject,
    SubjectProgress,
    Subtopic,
    SubtopicProgress,
    Status,
    Topic,
    TopicProgress,
    UnitKind,
)
from core.dto.practice import DEFAULT_THRESHOLD, LearnerPreference, PracticeSession
from core.errors import NotFound
from core.mastery import MasteryCalculator
from core.ports.progress_repository import ProgressRepository
from core.status import StatusClassifier

logger = logging.getLogger(__name__)

BREAKDOWN_KEYS = ("blocked", "started", "progress", "completed")


def round_half_up(value: float) -> int:
    """Round .5 away from zero for non-negative percentages."""
    return int(value + 0.5)


def load_preference(
    repo: ProgressRepository,
    learner_id: str,
    subject_id: int,
    default_threshold: int = DEFAULT_THRESHOLD,
    default_detail_level: DetailLevel = DetailLevel.MANDATORY,
) -> LearnerPreference:
    """Return the stored preference or one built from the defaults."""
    preference = repo.get_learner_preference(learner_id, subject_id)
    if preference is None:
        return LearnerPreference(
            learner_id=learner_id,
            subject_id=subject_id,
            threshold=default_threshold,
            detail_level=default_detail_level,
        )
    return preference


class HierarchyAggregator:
    """
    Rolls leaf mastery up the curriculum tree and cascades blocks down it.

    Each level's percent is the mean of its active (non-blocked) children;
    its status is derived from the set of active children's statuses, never
    from its own percent. A topic without visible subtopics falls back to
    its stored percent.
    """

    def __init__(
        self,
        repo: Optional[ProgressRepository] = None,
        calculator: Optional[MasteryCalculator] = None,
        default_threshold: int = DEFAULT_THRESHOLD,
        default_detail_level: DetailLevel = DetailLevel.MANDATORY,
    ):
        """
        Initialize aggregator.

        Args:
            repo: Repository for data access. Required for instance methods.
            calculator: Mastery calculator (alpha = 0.7 when omitted)
            default_threshold: Threshold used when a learner has no preference
            default_detail_level: Detail level used when a learner has no preference
        """
        self._repo = repo
        self.calculator = calculator or MasteryCalculator()
        self.default_threshold = StatusClassifier.validate_threshold(default_threshold)
        self.default_detail_level = default_detail_level

    # =========================================================================
    # Pure roll-up rules
    # =========================================================================

    @staticmethod
    def rollup_percent(children: Sequence[Tuple[int, Status]]) -> int:
        """Mean percent of the non-blocked children, 0 when there are none.

        Args:
            children: (percent, status) pairs
        """
        active = [percent for percent, status in children if status != Status.BLOCKED]
        if not active:
            return 0
        return round_half_up(sum(active) / len(active))

    @staticmethod
    def rollup_status(child_statuses: Iterable[Status], parent_blocked: bool = False) -> Status:
        """Classify a parent from the set of its children's statuses."""
        active = {s for s in child_statuses if s != Status.BLOCKED}
        if parent_blocked or not active:
            return Status.BLOCKED
        if active == {Status.STARTED}:
            return Status.STARTED
        if Status.PROGRESS in active:
            return Status.PROGRESS
        if active == {Status.COMPLETED}:
            return Status.COMPLETED
        if active == {Status.STARTED, Status.COMPLETED}:
            return Status.PROGRESS
        return Status.STARTED

    @staticmethod
    def status_breakdown(statuses: Sequence[Status]) -> Dict[str, int]:
        """Share of each status among children, in rounded percent.

        An empty set is reported as fully started.
        """
        breakdown = {key: 0 for key in BREAKDOWN_KEYS}
        if not statuses:
            breakdown["started"] = 100
            return breakdown
        total = len(statuses)
        for key in BREAKDOWN_KEYS:
            count = sum(1 for s in statuses if s.value == key)
            breakdown[key] = round_half_up(count / total * 100)
        return breakdown

    @staticmethod
    def weighted_breakdown(sections: Sequence[SectionProgress]) -> Dict[str, int]:
        """Subject-wide shares weighted by each section's percent.

        Blocked, completed and in-progress sections contribute their percent
        to their bucket; whatever is left of the subject is ``started``.
        """
        max_percent = max(len(sections), 1) * 100
        sums = {"blocked": 0, "progress": 0, "completed": 0}
        for section in sections:
            if section.status == Status.BLOCKED:
                sums["blocked"] += section.percent
            elif section.status == Status.COMPLETED:
                sums["completed"] += section.percent
            elif section.status == Status.PROGRESS:
                sums["progress"] += section.percent

        breakdown = {key: round_half_up(value / max_percent * 100) for key, value in sums.items()}
        breakdown["started"] = 100 - sum(breakdown.values())
        return {key: breakdown[key] for key in BREAKDOWN_KEYS}

    @staticmethod
    def session_mean_percent(sessions: Iterable[PracticeSession]) -> int:
        """Mean percent of finished top-level sessions, 0 when there are none."""
        finished = [s.percent for s in sessions if s.finished and s.parent_session_id is None]
        if not finished:
            return 0
        return round_half_up(sum(finished) / len(finished))

    @staticmethod
    def visible_subtopics(
        subtopics: Iterable[Subtopic], detail_level: DetailLevel
    ) -> List[Subtopic]:
        """Subtopics a learner at ``detail_level`` sees."""
        return [s for s in subtopics if detail_level.includes(s.detail_level)]

    # =========================================================================
    # Pure builders
    # =========================================================================

    @classmethod
    def build_topic_progress(
        cls,
        topic: Topic,
        subtopics: Sequence[SubtopicProgress],
        threshold: int,
        stored_percent: int = 0,
    ) -> TopicProgress:
        """Roll a topic up from its subtopics or from its stored percent."""
        if not subtopics:
            percent = stored_percent
            status = StatusClassifier.classify(percent, threshold, topic.blocked)
        else:
            percent = cls.rollup_percent([(s.percent, s.status) for s in subtopics])
            status = cls.rollup_status([s.status for s in subtopics], topic.blocked)

        return TopicProgress(
            topic=topic,
            percent=percent,
            status=status,
            subtopics=list(subtopics),
            breakdown=cls.status_breakdown([s.status for s in subtopics]),
        )

    @classmethod
    def build_section_progress(
        cls, section: Section, topics: Sequence[TopicProgress]
    ) -> SectionProgress:
        return SectionProgress(
            section=section,
            percent=cls.rollup_percent([(t.percent, t.status) for t in topics]),
            status=cls.rollup_status([t.status for t in topics], section.blocked),
            topics=list(topics),
            breakdown=cls.status_breakdown([t.status for t in topics]),
        )

    @classmethod
    def build_subject_progress(
        cls,
        subject: Subject,
        learner_id: str,
        threshold: int,
        sections: Sequence[SectionProgress],
    ) -> SubjectProgress:
        return SubjectProgress(
            subject=subject,
            learner_id=learner_id,
            threshold=threshold,
            percent=cls.rollup_percent([(s.percent, s.status) for s in sections]),
            status=cls.rollup_status([s.status for s in sections]),
            sections=list(sections),
            breakdown=cls.weighted_breakdown(sections),
        )

    # =========================================================================
    # Repository-backed reads
    # =========================================================================

    def _require_repo(self) -> ProgressRepository:
        if self._repo is None:
            raise RuntimeError("HierarchyAggregator needs a repository for this operation")
        return self._repo

    def learner_preference(self, learner_id: str, subject_id: int) -> LearnerPreference:
        return load_preference(
            self._require_repo(),
            learner_id,
            subject_id,
            self.default_threshold,
            self.default_detail_level,
        )

    def subtopic_percents(
        self,
        learner_id: str,
        subtopics: Sequence[Subtopic],
        until: Optional[datetime] = None,
    ) -> Dict[int, int]:
        """Smoothed mastery per subtopic id, from finished sessions only."""
        repo = self._require_repo()
        observations = repo.get_observations(learner_id, [s.id for s in subtopics], until)
        return {
            s.id: self.calculator.from_observations(observations.get(s.id, []))
            for s in subtopics
        }

    def subtopic_progress(
        self,
        learner_id: str,
        subtopics: Sequence[Subtopic],
        threshold: int,
        until: Optional[datetime] = None,
    ) -> List[SubtopicProgress]:
        percents = self.subtopic_percents(learner_id, subtopics, until)
        return [
            SubtopicProgress(
                subtopic=s,
                percent=percents[s.id],
                status=StatusClassifier.classify(percents[s.id], threshold, s.blocked),
            )
            for s in subtopics
        ]

    def _stored_topic_percent(
        self, learner_id: str, topic_id: int, until: Optional[datetime]
    ) -> int:
        repo = self._require_repo()
        if until is None:
            return repo.get_topic_percent(learner_id, topic_id)
        sessions = [
            s
            for s in repo.get_sessions(learner_id, topic_id)
            if s.updated_at is not None and s.updated_at <= until
        ]
        return self.session_mean_percent(sessions)

    def _topic_progress(
        self,
        learner_id: str,
        topic: Topic,
        preference: LearnerPreference,
        until: Optional[datetime],
    ) -> TopicProgress:
        repo = self._require_repo()
        subtopics = self.visible_subtopics(repo.get_subtopics(topic.id), preference.detail_level)
        progress = self.subtopic_progress(learner_id, subtopics, preference.threshold, until)
        stored = 0 if subtopics else self._stored_topic_percent(learner_id, topic.id, until)
        return self.build_topic_progress(topic, progress, preference.threshold, stored)

    def _section_progress(
        self,
        learner_id: str,
        section: Section,
        preference: LearnerPreference,
        until: Optional[datetime],
    ) -> SectionProgress:
        topics = [
            self._topic_progress(learner_id, topic, preference, until)
            for topic in self._require_repo().get_topics(section.id)
        ]
        return self.build_section_progress(section, topics)

    def topic_progress(
        self, learner_id: str, topic_id: int, until: Optional[datetime] = None
    ) -> TopicProgress:
        """
        Compute a topic's percent and status for a learner.

        Args:
            learner_id: Learner identifier
            topic_id: Topic to roll up
            until: Only count observations recorded up to this moment

        Raises:
            NotFound: If the topic does not exist
        """
        topic = self._require_repo().get_topic(topic_id)
        if topic is None:
            raise NotFound("topic", topic_id)
        preference = self.learner_preference(learner_id, topic.subject_id)
        result = self._topic_progress(learner_id, topic, preference, until)
        logger.debug(f"Topic {topic_id} for {learner_id}: {result.percent}% {result.status.value}")
        return result

    def section_progress(
        self, learner_id: str, section_id: int, until: Optional[datetime] = None
    ) -> SectionProgress:
        section = self._require_repo().get_section(section_id)
        if section is None:
            raise NotFound("section", section_id)
        preference = self.learner_preference(learner_id, section.subject_id)
        return self._section_progress(learner_id, section, preference, until)

    def subject_progress(
        self, learner_id: str, subject_id: int, until: Optional[datetime] = None
    ) -> SubjectProgress:
        """
        Compute the full progress tree of a subject for a learner.

        Raises:
            NotFound: If the subject does not exist
        """
        repo = self._require_repo()
        subject = repo.get_subject(subject_id)
        if subject is None:
            raise NotFound("subject", subject_id)
        preference = self.learner_preference(learner_id, subject_id)
        sections = [
            self._section_progress(learner_id, section, preference, until)
            for section in repo.get_sections(subject_id)
        ]
        result = self.build_subject_progress(subject, learner_id, preference.threshold, sections)
        logger.debug(
            f"Subject {subject_id} for {learner_id}: {result.percent}% {result.status.value}"
        )
        return result

    # =========================================================================
    # Cascade
    # =========================================================================

    def _get_unit(self, kind: UnitKind, unit_id: int):
        repo = self._require_repo()
        getters = {
            UnitKind.SECTION: repo.get_section,
            UnitKind.TOPIC: repo.get_topic,
            UnitKind.SUBTOPIC: repo.get_subtopic,
        }
        return getters[kind](unit_id)

    def set_block(self, subject_id: int, kind: UnitKind, unit_id: int, blocked: bool) -> int:
        """
        Set a unit's blocked flag and overwrite every descendant with it.

        Pre-existing blocks on descendants are not preserved. The whole
        subtree is written in one transaction, so a failure leaves it
        untouched.

        Args:
            subject_id: Subject that must own the unit
            kind: Kind of unit
            unit_id: Unit identifier
            blocked: New flag value

        Returns:
            Number of descendant rows overwritten

        Raises:
            NotFound: If the subject or the unit does not exist
        """
        repo = self._require_repo()
        with repo.transaction():
            if repo.get_subject(subject_id) is None:
                raise NotFound("subject", subject_id)
            unit = self._get_unit(kind, unit_id)
            if unit is None or unit.subject_id != subject_id:
                raise NotFound(kind.value, unit_id)

            repo.set_blocked(kind, unit_id, blocked)
            touched = repo.set_descendants_blocked(kind, unit_id, blocked)

        logger.info(
            f"{'Blocked' if blocked else 'Unblocked'} {kind.value} {unit_id} "
            f"and {touched} descendants"
        )
        return touched

    def toggle_block(self, subject_id: int, kind: UnitKind, unit_id: int) -> bool:
        """Flip a unit's blocked flag and cascade it. Returns the new value."""
        repo = self._require_repo()
        with repo.transaction():
            unit = self._get_unit(kind, unit_id)
            if unit is None:
                if repo.get_subject(subject_id) is None:
                    raise NotFound("subject", subject_id)
                raise NotFound(kind.value, unit_id)
            new_value = not unit.blocked
            self.set_block(subject_id, kind, unit_id, new_value)
        return new_value
