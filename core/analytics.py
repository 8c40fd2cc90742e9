"""
Progress analytics for StudyTrack.
Week-over-week deltas, closed-unit counts, solved sessions and a
completion forecast for one learner in one subject.
"""

import logging
import math
from datetime import datetime, time, timedelta, timezone
from typing import Dict, List, Optional

from core.dto.curriculum import SubjectProgress, SubtopicProgress, TopicProgress
from core.dto.progress import DeltaStatus, UnitDelta, WeeklyReport, WeekWindow
from core.errors import NotFound
from core.mastery_aggregator import HierarchyAggregator
from core.ports.progress_repository import ProgressRepository

logger = logging.getLogger(__name__)

ONE_MICROSECOND = timedelta(microseconds=1)


class ProgressAnalytics:
    """Analytics engine for weekly learner statistics."""

    def __init__(self, repo: ProgressRepository, aggregator: Optional[HierarchyAggregator] = None):
        """Initialize analytics engine.

        Args:
            repo: Repository for data access
            aggregator: Aggregator used to compute windowed progress trees
        """
        self._repo = repo
        self.aggregator = aggregator or HierarchyAggregator(repo)

    # ==================== STATIC METHODS ====================

    @staticmethod
    def week_bounds(now: datetime, week_offset: int = 0) -> WeekWindow:
        """Monday-to-Sunday window containing ``now``, shifted by whole weeks.

        Positive offsets are treated as the current week. Naive datetimes
        are taken as UTC.
        """
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        week_offset = min(week_offset, 0)
        monday = datetime.combine(
            now.date() - timedelta(days=now.weekday()), time.min, tzinfo=now.tzinfo
        )
        start = monday + timedelta(weeks=week_offset)
        end = start + timedelta(days=7) - ONE_MICROSECOND
        return WeekWindow(start=start, end=end, offset=week_offset)

    @staticmethod
    def delta_status(delta: float) -> DeltaStatus:
        return DeltaStatus.UP if delta >= 0 else DeltaStatus.DOWN

    @staticmethod
    def mean_nonzero(deltas: List[float]) -> float:
        """Mean of the non-zero deltas, 0 when nothing moved."""
        moved = [d for d in deltas if d != 0]
        return sum(moved) / len(moved) if moved else 0.0

    @staticmethod
    def combine_statuses(children: List[UnitDelta]) -> DeltaStatus:
        if all(c.delta_status == DeltaStatus.UP for c in children):
            return DeltaStatus.UP
        if all(c.delta_status == DeltaStatus.DOWN for c in children):
            return DeltaStatus.DOWN
        return DeltaStatus.MIXED

    @staticmethod
    def _subtopics(progress: SubjectProgress) -> List[SubtopicProgress]:
        return [s for section in progress.sections for t in section.topics for s in t.subtopics]

    @staticmethod
    def _topics(progress: SubjectProgress) -> List[TopicProgress]:
        return [t for section in progress.sections for t in section.topics]

    @classmethod
    def count_closed(cls, progress: SubjectProgress, threshold: int) -> Dict[str, int]:
        """Subtopics at or above threshold, and topics whose subtopics all are."""
        subtopics = sum(1 for s in cls._subtopics(progress) if s.percent >= threshold)
        topics = 0
        for topic in cls._topics(progress):
            if topic.subtopics and all(s.percent >= threshold for s in topic.subtopics):
                topics += 1
        return {"subtopics": subtopics, "topics": topics}

    @classmethod
    def forecast_days(
        cls,
        now_progress: SubjectProgress,
        then_progress: SubjectProgress,
        threshold: int,
        elapsed_days: int,
    ) -> Optional[float]:
        """
        Days until importance-weighted mastery reaches the threshold.

        The gain in importance-weighted mastery between the two snapshots is
        extrapolated linearly over ``elapsed_days``.

        Returns:
            Days left (may be <= 0 when already reached), or None without progress
        """
        then_by_id = {s.subtopic.id: s.percent for s in cls._subtopics(then_progress)}
        now_subtopics = cls._subtopics(now_progress)

        target = sum(s.subtopic.importance for s in now_subtopics) * threshold / 100
        achieved = sum(
            s.subtopic.importance * min(then_by_id.get(s.subtopic.id, 0), 100) / 100
            for s in now_subtopics
        )
        gained = sum(
            s.subtopic.importance
            * max(0, min(s.percent, 100) - min(then_by_id.get(s.subtopic.id, 0), 100))
            / 100
            for s in now_subtopics
        )
        if gained <= 0:
            return None
        return (target - achieved) / gained * elapsed_days

    # ==================== DELTAS ====================

    def _topic_delta(self, now: TopicProgress, then: Optional[TopicProgress]) -> UnitDelta:
        then_subtopics = {s.subtopic.id: s.percent for s in then.subtopics} if then else {}
        children = []
        for sub in now.subtopics:
            delta = sub.percent - then_subtopics.get(sub.subtopic.id, 0)
            children.append(
                UnitDelta(
                    unit_id=sub.subtopic.id,
                    name=sub.subtopic.name,
                    percent=sub.percent,
                    delta=delta,
                    delta_status=self.delta_status(delta),
                )
            )

        if children:
            delta = self.mean_nonzero([c.delta for c in children])
        else:
            delta = now.percent - (then.percent if then else 0)
        return UnitDelta(
            unit_id=now.topic.id,
            name=now.topic.name,
            percent=now.percent,
            delta=delta,
            delta_status=self.delta_status(delta),
            children=children,
        )

    def section_deltas(
        self, now: SubjectProgress, then: SubjectProgress
    ) -> List[UnitDelta]:
        """Per-section deltas between two progress snapshots."""
        then_topics = {t.topic.id: t for t in self._topics(then)}
        sections = []
        for section in now.sections:
            topics = [self._topic_delta(t, then_topics.get(t.topic.id)) for t in section.topics]
            sections.append(
                UnitDelta(
                    unit_id=section.section.id,
                    name=section.section.name,
                    percent=section.percent,
                    delta=self.mean_nonzero([t.delta for t in topics]),
                    delta_status=self.combine_statuses(topics),
                    children=topics,
                )
            )
        return sections

    # ==================== REPORT ====================

    def weekly_report(
        self,
        learner_id: str,
        subject_id: int,
        week_offset: int = 0,
        now: Optional[datetime] = None,
    ) -> WeeklyReport:
        """
        Build a learner's statistics for one week of a subject.

        Args:
            learner_id: Learner identifier
            subject_id: Subject identifier
            week_offset: 0 for the current week, negative for past weeks
            now: Reference time (defaults to UTC now)

        Returns:
            WeeklyReport; the forecast is only computed for the current week

        Raises:
            NotFound: If the subject does not exist
        """
        if now is None:
            now = datetime.now(timezone.utc)
        elif now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        if self._repo.get_subject(subject_id) is None:
            raise NotFound("subject", subject_id)

        window = self.week_bounds(now, week_offset)
        previous_end = window.start - ONE_MICROSECOND
        threshold = self.aggregator.learner_preference(learner_id, subject_id).threshold

        progress_now = self.aggregator.subject_progress(learner_id, subject_id, until=window.end)
        progress_then = self.aggregator.subject_progress(learner_id, subject_id, until=previous_end)

        closed_now = self.count_closed(progress_now, threshold)
        closed_then = self.count_closed(progress_then, threshold)

        report = WeeklyReport(
            learner_id=learner_id,
            subject_id=subject_id,
            window=window,
            threshold=threshold,
            sections=self.section_deltas(progress_now, progress_then),
            solved_sessions=self._repo.count_finished_sessions(
                learner_id, subject_id, window.start, window.end
            ),
            solved_sessions_completed=self._repo.count_finished_sessions(
                learner_id, subject_id, window.start, window.end, min_percent=threshold
            ),
            closed_subtopics=closed_now["subtopics"] - closed_then["subtopics"],
            closed_topics=closed_now["topics"] - closed_then["topics"],
        )

        if window.offset == 0:
            report.forecast = self._forecast(learner_id, subject_id, window, now, threshold)

        logger.debug(
            f"Weekly report for {learner_id} in subject {subject_id} "
            f"(offset {window.offset}): {report.solved_sessions} sessions"
        )
        return report

    def _forecast(
        self,
        learner_id: str,
        subject_id: int,
        window: WeekWindow,
        now: datetime,
        threshold: int,
    ):
        # Baseline: end of the week before last
        baseline = window.start - timedelta(weeks=1) - ONE_MICROSECOND
        elapsed_days = math.floor((now - baseline) / timedelta(days=1))

        current = self.aggregator.subject_progress(learner_id, subject_id, until=now)
        past = self.aggregator.subject_progress(learner_id, subject_id, until=baseline)
        days = self.forecast_days(current, past, threshold, elapsed_days)
        if days is None:
            return None
        return (now + timedelta(days=max(0, math.ceil(days)))).date()
