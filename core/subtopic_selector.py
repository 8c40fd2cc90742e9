"""Weak-subtopic selection for adaptive content generation.

The selection biases the next generated exercise toward material the
learner has not mastered yet. It is handed to the content-generation
collaborator as ``[name, percent, importance]`` items.
"""

import logging
from numbers import Real
from typing import Iterable, List, Optional, Sequence

from core.dto.curriculum import DetailLevel, Subtopic
from core.dto.practice import DEFAULT_THRESHOLD, SubtopicWeight
from core.errors import NotFound, ValidationError
from core.mastery import MasteryCalculator
from core.mastery_aggregator import load_preference, round_half_up
from core.ports.progress_repository import ProgressRepository

logger = logging.getLogger(__name__)


class SubtopicSelector:
    """Chooses which subtopics to emphasize next.

    Static methods handle the pure selection rule.
    Instance methods use the injected repository to compute mastery first.
    """

    def __init__(
        self,
        repo: Optional[ProgressRepository] = None,
        calculator: Optional[MasteryCalculator] = None,
        default_threshold: int = DEFAULT_THRESHOLD,
        default_detail_level: DetailLevel = DetailLevel.MANDATORY,
    ):
        self._repo = repo
        self.calculator = calculator or MasteryCalculator()
        self.default_threshold = default_threshold
        self.default_detail_level = default_detail_level

    # ==================== STATIC METHODS (Pure Selection) ====================

    @staticmethod
    def select(weights: Iterable[SubtopicWeight], threshold: int) -> List[SubtopicWeight]:
        """
        Pick the weak subtopics, or all of them when none is weak.

        Args:
            weights: Subtopics with their current mastery and importance
            threshold: Learner threshold

        Returns:
            Selected subtopics sorted ascending by importance (stable)
        """
        candidates = list(weights)
        weak = [w for w in candidates if w.percent < threshold]
        chosen = weak if weak else candidates
        return sorted(chosen, key=lambda w: w.importance)

    @staticmethod
    def as_payload(selection: Iterable[SubtopicWeight]) -> List[list]:
        """Serialize a selection for the generation request."""
        return [w.as_payload() for w in selection]

    @staticmethod
    def parse_weighted(items, with_importance: bool = True) -> List[SubtopicWeight]:
        """
        Parse ``[name, percent, importance]`` (or ``[name, percent]``) items.

        Args:
            items: Sequence of list/tuple items
            with_importance: Expect triples when True, pairs otherwise

        Returns:
            Parsed weights (importance 0 for pairs)

        Raises:
            ValidationError: If the payload or any item has the wrong shape
        """
        arity = 3 if with_importance else 2
        if not isinstance(items, (list, tuple)):
            raise ValidationError(f"Expected a list of items, got {type(items).__name__}")

        parsed = []
        for index, item in enumerate(items):
            if not isinstance(item, (list, tuple)) or len(item) != arity:
                raise ValidationError(f"Item {index} must have exactly {arity} elements: {item!r}")
            name, percent = item[0], item[1]
            if not isinstance(name, str) or not name.strip():
                raise ValidationError(f"Item {index} name must be a non-empty string")
            percent = MasteryCalculator.validate_percent(percent, f"Item {index} percent")
            importance = 0
            if with_importance:
                importance = item[2]
                if isinstance(importance, bool) or not isinstance(importance, Real):
                    raise ValidationError(f"Item {index} importance must be a number")
                if importance < 0:
                    raise ValidationError(f"Item {index} importance must be >= 0")
                if importance != int(importance):
                    raise ValidationError(f"Item {index} importance must be a whole number")
            parsed.append(
                SubtopicWeight(name=name, percent=round_half_up(percent), importance=int(importance))
            )
        return parsed

    # ==================== INSTANCE METHODS (Require Repository) ====================

    def _require_repo(self) -> ProgressRepository:
        if self._repo is None:
            raise RuntimeError("SubtopicSelector needs a repository for this operation")
        return self._repo

    def weigh(self, learner_id: str, subtopics: Sequence[Subtopic]) -> List[SubtopicWeight]:
        """Pair each subtopic's fresh mastery with its importance."""
        observations = self._require_repo().get_observations(learner_id, [s.id for s in subtopics])
        return [
            SubtopicWeight(
                name=s.name,
                percent=self.calculator.from_observations(observations.get(s.id, [])),
                importance=s.importance,
            )
            for s in subtopics
        ]

    def select_for_topic(self, learner_id: str, topic_id: int) -> List[SubtopicWeight]:
        """
        Select subtopics of a topic for the next generated exercise.

        Subtopics above the learner's detail level are not candidates. A topic
        with no candidates yields an empty selection.

        Raises:
            NotFound: If the topic does not exist
        """
        repo = self._require_repo()
        topic = repo.get_topic(topic_id)
        if topic is None:
            raise NotFound("topic", topic_id)
        preference = load_preference(
            repo, learner_id, topic.subject_id, self.default_threshold, self.default_detail_level
        )

        subtopics = [
            s
            for s in repo.get_subtopics(topic_id)
            if preference.detail_level.includes(s.detail_level)
        ]
        selection = self.select(self.weigh(learner_id, subtopics), preference.threshold)
        logger.debug(f"Selected {len(selection)} of {len(subtopics)} subtopics for topic {topic_id}")
        return selection

    def select_for_session(self, learner_id: str, session_id: int) -> List[SubtopicWeight]:
        """
        Select among the subtopics already linked to an in-progress session.

        Raises:
            NotFound: If the session does not exist or belongs to another learner
        """
        repo = self._require_repo()
        session = repo.get_session(session_id)
        if session is None or session.learner_id != learner_id:
            raise NotFound("session", session_id)
        topic = repo.get_topic(session.topic_id)
        if topic is None:
            raise NotFound("topic", session.topic_id)
        preference = load_preference(
            repo, learner_id, topic.subject_id, self.default_threshold, self.default_detail_level
        )

        linked = {}
        for subtopic in repo.get_session_subtopics(session_id):
            linked.setdefault(subtopic.id, subtopic)
        return self.select(self.weigh(learner_id, list(linked.values())), preference.threshold)
