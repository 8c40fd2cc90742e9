"""Repository interface for progress data access.

This Protocol defines everything the core needs from storage, enabling
database-agnostic business logic. storage.database.Database implements it
over SQLite; tests may substitute in-memory fakes.
"""

from datetime import datetime
from typing import ContextManager, Dict, Iterable, List, Optional, Protocol

from core.dto.curriculum import Section, Subject, Subtopic, Topic, UnitKind
from core.dto.practice import (
    LearnerPreference,
    MasteryObservation,
    PracticeSession,
    VocabularyItem,
)


class ProgressRepository(Protocol):
    """Protocol for curriculum, practice and vocabulary persistence.

    All multi-row writes issued by the core are wrapped in ``transaction()``;
    implementations must make that block all-or-nothing and serialize it
    against other writers.
    """

    def transaction(self) -> ContextManager[None]:
        """Open an atomic write block. Nested blocks join the outer one."""
        ...

    # ==================== CURRICULUM ====================

    def get_subject(self, subject_id: int) -> Optional[Subject]:
        ...

    def get_section(self, section_id: int) -> Optional[Section]:
        ...

    def get_topic(self, topic_id: int) -> Optional[Topic]:
        ...

    def get_subtopic(self, subtopic_id: int) -> Optional[Subtopic]:
        ...

    def get_sections(self, subject_id: int) -> List[Section]:
        ...

    def get_topics(self, section_id: int) -> List[Topic]:
        ...

    def get_topics_by_subject(self, subject_id: int) -> List[Topic]:
        ...

    def get_subtopics(self, topic_id: int) -> List[Subtopic]:
        ...

    def get_subtopics_by_subject(self, subject_id: int) -> List[Subtopic]:
        ...

    def set_blocked(self, kind: UnitKind, unit_id: int, blocked: bool) -> None:
        """Write the blocked flag of a single unit."""
        ...

    def set_descendants_blocked(self, kind: UnitKind, unit_id: int, blocked: bool) -> int:
        """Overwrite the blocked flag of every descendant; returns rows touched."""
        ...

    # ==================== LEARNER STATE ====================

    def get_learner_preference(
        self, learner_id: str, subject_id: int
    ) -> Optional[LearnerPreference]:
        ...

    def save_learner_preference(self, preference: LearnerPreference) -> None:
        ...

    def get_observations(
        self,
        learner_id: str,
        subtopic_ids: Iterable[int],
        until: Optional[datetime] = None,
    ) -> Dict[int, List[MasteryObservation]]:
        """Observations from finished sessions, grouped by subtopic.

        Each list is ordered by (recorded_at, insertion order). Subtopics
        without observations map to an empty list.
        """
        ...

    def add_observation(
        self,
        learner_id: str,
        subtopic_id: int,
        session_id: int,
        percent: float,
        recorded_at: datetime,
    ) -> int:
        ...

    def get_topic_percent(self, learner_id: str, topic_id: int) -> int:
        """Stored percent of a topic (0 when never recorded)."""
        ...

    def set_topic_percent(self, learner_id: str, topic_id: int, percent: int) -> None:
        ...

    # ==================== PRACTICE SESSIONS ====================

    def get_session(self, session_id: int) -> Optional[PracticeSession]:
        ...

    def get_sessions(
        self, learner_id: str, topic_id: int, top_level_only: bool = True
    ) -> List[PracticeSession]:
        ...

    def get_child_sessions(self, parent_session_id: int) -> List[PracticeSession]:
        """Parts of a multi-part session ordered by ``order``."""
        ...

    def next_session_order(self, learner_id: str, topic_id: int) -> int:
        ...

    def add_session(
        self,
        learner_id: str,
        topic_id: int,
        order: int,
        created_at: datetime,
        parent_session_id: Optional[int] = None,
        correct_option_index: Optional[int] = None,
    ) -> int:
        ...

    def update_session(self, session_id: int, updated_at: datetime, **fields) -> None:
        ...

    def delete_session(self, session_id: int) -> None:
        """Delete a session with its parts, links and observations."""
        ...

    def link_session_subtopics(self, session_id: int, subtopic_ids: Iterable[int]) -> None:
        ...

    def get_session_subtopics(self, session_id: int) -> List[Subtopic]:
        ...

    def count_finished_sessions(
        self,
        learner_id: str,
        subject_id: int,
        start: datetime,
        end: datetime,
        min_percent: Optional[int] = None,
    ) -> int:
        """Finished top-level sessions updated within [start, end]."""
        ...

    # ==================== VOCABULARY ====================

    def get_word(self, word_id: int) -> Optional[VocabularyItem]:
        ...

    def find_word(self, learner_id: str, subject_id: int, text: str) -> Optional[VocabularyItem]:
        ...

    def get_words(
        self, learner_id: str, subject_id: int, topic_id: Optional[int] = None
    ) -> List[VocabularyItem]:
        ...

    def add_word(
        self,
        learner_id: str,
        subject_id: int,
        text: str,
        frequency: int,
        topic_id: Optional[int] = None,
    ) -> int:
        ...

    def update_word_counters(
        self,
        word_id: int,
        total_attempt_count: int,
        total_correct_count: int,
        streak_correct_count: int,
        finished: bool,
    ) -> None:
        ...

    def link_session_words(self, session_id: int, word_ids: Iterable[int]) -> None:
        ...

    def get_session_words(self, session_id: int) -> List[VocabularyItem]:
        ...

    def delete_word(self, word_id: int) -> None:
        ...

    def delete_topic_words(self, learner_id: str, topic_id: int) -> int:
        ...
