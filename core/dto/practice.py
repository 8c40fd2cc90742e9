"""Practice-related Data Transfer Objects.

Observations, practice sessions, vocabulary items and learner preferences
as read from the persistence layer, plus the selection payload handed to
the content-generation collaborator.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple

from core.dto.curriculum import DetailLevel, Status

DEFAULT_THRESHOLD = 50


@dataclass(frozen=True)
class MasteryObservation:
    """One raw percentage sample for a (learner, subtopic) pair.

    Attributes:
        subtopic_id: Subtopic the sample belongs to
        session_id: Practice session that produced the sample
        percent: Raw percentage, clamped to [0, 100] before use
        recorded_at: When the sample was recorded
        sequence: Insertion order, used to break timestamp ties
    """

    subtopic_id: int
    session_id: int
    percent: float
    recorded_at: datetime
    sequence: int = 0


@dataclass(frozen=True)
class PracticeSession:
    """One attempt at a generated exercise.

    Attributes:
        id: Unique identifier
        learner_id: Owning learner
        topic_id: Topic the session practices
        order: Strictly increasing per (learner, topic)
        percent: Score derived from sub-results
        percent_audio: Score of the audio part, if any
        percent_words: Score of the vocabulary part, if any
        finished: Whether the session has been scored
        answered: Whether the learner submitted an answer
        parent_session_id: Owning multi-part session, if this is a part
        correct_option_index: Expected option for a multiple-choice part
        user_option_index: Option the learner picked
        created_at: Creation time
        updated_at: Last modification time
    """

    id: int
    learner_id: str
    topic_id: int
    order: int
    percent: int = 0
    percent_audio: int = 0
    percent_words: int = 0
    finished: bool = False
    answered: bool = False
    parent_session_id: Optional[int] = None
    correct_option_index: Optional[int] = None
    user_option_index: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class VocabularyItem:
    """A word tracked for one learner in one subject.

    ``session_count`` is derived: the number of practice sessions the word
    has been linked to.
    """

    id: int
    learner_id: str
    subject_id: int
    text: str
    frequency: int = 0
    total_attempt_count: int = 0
    total_correct_count: int = 0
    streak_correct_count: int = 0
    finished: bool = False
    topic_id: Optional[int] = None
    session_count: int = 0


@dataclass(frozen=True)
class LearnerPreference:
    """Per (learner, subject) classification settings."""

    learner_id: str
    subject_id: int
    threshold: int = DEFAULT_THRESHOLD
    detail_level: DetailLevel = DetailLevel.MANDATORY


@dataclass(frozen=True)
class SubtopicWeight:
    """A subtopic selected to bias the next generated exercise."""

    name: str
    percent: int
    importance: int

    def as_triple(self) -> Tuple[str, int, int]:
        return (self.name, self.percent, self.importance)

    def as_payload(self) -> List:
        return [self.name, self.percent, self.importance]


@dataclass(frozen=True)
class VocabularySummary:
    """Aggregate mastery of a learner's word list."""

    total: int
    percent: int
    status: Status
