"""Data Transfer Objects for studytrack-core business logic."""

from .curriculum import (
    DetailLevel,
    Section,
    SectionProgress,
    Status,
    Subject,
    SubjectProgress,
    Subtopic,
    SubtopicProgress,
    Topic,
    TopicProgress,
    UnitKind,
)
from .practice import (
    DEFAULT_THRESHOLD,
    LearnerPreference,
    MasteryObservation,
    PracticeSession,
    SubtopicWeight,
    VocabularyItem,
    VocabularySummary,
)
from .progress import DeltaStatus, UnitDelta, WeeklyReport, WeekWindow

__all__ = [
    # Enums
    "Status",
    "DetailLevel",
    "UnitKind",
    "DeltaStatus",
    # Curriculum DTOs
    "Subject",
    "Section",
    "Topic",
    "Subtopic",
    "SubtopicProgress",
    "TopicProgress",
    "SectionProgress",
    "SubjectProgress",
    # Practice DTOs
    "DEFAULT_THRESHOLD",
    "MasteryObservation",
    "PracticeSession",
    "VocabularyItem",
    "LearnerPreference",
    "SubtopicWeight",
    "VocabularySummary",
    # Progress DTOs
    "WeekWindow",
    "UnitDelta",
    "WeeklyReport",
]
